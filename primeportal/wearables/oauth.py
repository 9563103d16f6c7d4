"""Linking a WHOOP account (OAuth2 authorization code flow).

``begin_authorization`` stores a one-time ``state`` for the athlete and
returns the WHOOP consent URL.  ``complete_authorization`` consumes that
state, exchanges the code for tokens, stores them encrypted and activates
the device connection.  The next cron run performs the initial sync.
"""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta
from uuid import UUID

from primeportal.errors import PortalError, UpstreamFailure
from primeportal.wearables.base import WearableAdapter
from primeportal.wearables.sync.store import SyncStore

logger = logging.getLogger("primeportal.wearables.oauth")

CALLBACK_PATH = "/api/auth/whoop/callback"

# Bytes of randomness in the state; hex-encoded to twice that length
STATE_BYTES = 32


class OAuthCallbackError(Exception):
    """The callback could not link the account.

    ``code`` is what the dashboard shows (``?error=<code>``).
    """

    def __init__(self, code: str) -> None:
        super().__init__(code)
        self.code = code


def callback_url(base_url: str) -> str:
    return f"{base_url.rstrip('/')}{CALLBACK_PATH}"


async def begin_authorization(
    user_id: UUID,
    redirect_uri: str,
    store: SyncStore,
    adapter: WearableAdapter,
) -> str:
    state = secrets.token_hex(STATE_BYTES)
    await store.save_oauth_state(state, user_id)
    logger.info("Starting %s authorization for user %s", adapter.DISPLAY_NAME, user_id)
    return adapter.authorization_url(state, redirect_uri)


async def complete_authorization(
    store: SyncStore,
    adapter: WearableAdapter,
    redirect_uri: str,
    state_ttl: timedelta,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
) -> UUID:
    """Finish linking and return the athlete's user id.

    Checks run in order: provider error, state present, state valid and
    unexpired, code present.  The state is spent even if a later step fails.

    Raises:
        OAuthCallbackError: ``whoop_oauth_error``, ``missing_state``,
            ``invalid_state``, ``missing_code``, ``token_exchange_failed`` or
            ``save_tokens_failed``.
    """
    if error:
        logger.warning("%s returned an OAuth error: %s", adapter.DISPLAY_NAME, error)
        raise OAuthCallbackError("whoop_oauth_error")
    if not state:
        raise OAuthCallbackError("missing_state")

    user_id = await store.consume_oauth_state(state, state_ttl)
    if user_id is None:
        logger.warning("OAuth callback with an unknown or expired state")
        raise OAuthCallbackError("invalid_state")
    if not code:
        raise OAuthCallbackError("missing_code")

    try:
        tokens = await adapter.authenticate(code, redirect_uri)
    except UpstreamFailure as exc:
        logger.error("Token exchange failed for user %s: %s", user_id, exc.message)
        raise OAuthCallbackError("token_exchange_failed") from exc

    try:
        await store.save_tokens(user_id, tokens)
        await store.activate_connection(user_id, adapter.SOURCE_ID)
    except PortalError as exc:
        logger.error("Could not store tokens for user %s: %s", user_id, exc.message)
        raise OAuthCallbackError("save_tokens_failed") from exc

    logger.info("%s connected for user %s", adapter.DISPLAY_NAME, user_id)
    return user_id
