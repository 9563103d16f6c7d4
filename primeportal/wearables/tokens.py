"""Valid WHOOP access tokens for a user.

Tokens live encrypted in the database.  An access token that expires within
the configured buffer is refreshed and the new pair saved before use.  When
the refresh grant is gone for good, the connection is deactivated and the
stored tokens deleted so the athlete is asked to reconnect.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable
from uuid import UUID

from primeportal.errors import UpstreamFailure
from primeportal.wearables.base import OAuthTokens, WearableAdapter
from primeportal.wearables.sync.store import SyncStore

logger = logging.getLogger("primeportal.wearables.tokens")

Clock = Callable[[], datetime]

NO_TOKENS_MESSAGE = "No Whoop tokens found"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TokenManager:
    def __init__(
        self,
        store: SyncStore,
        adapter: WearableAdapter,
        expiry_buffer_seconds: int = 60,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._adapter = adapter
        self._buffer = timedelta(seconds=expiry_buffer_seconds)
        self._clock = clock

    def is_expiring(self, tokens: OAuthTokens) -> bool:
        if tokens.expires_at is None:
            return False
        expires_at = tokens.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at - self._clock() <= self._buffer

    async def ensure_valid_token(self, user_id: UUID) -> str:
        """Return an access token good for at least the buffer period.

        Raises:
            UpstreamFailure: no stored tokens, or the refresh failed.  A
                permanent failure (``transient=False``) has already deactivated
                the connection.
        """
        platform = self._adapter.SOURCE_ID
        tokens = await self._store.get_tokens(user_id)
        if tokens is None:
            await self._store.deactivate_connection(user_id, platform)
            raise UpstreamFailure(NO_TOKENS_MESSAGE)

        if not self.is_expiring(tokens):
            return tokens.access_token

        if not tokens.refresh_token:
            await self._store.deactivate_connection(user_id, platform, delete_tokens=True)
            raise UpstreamFailure("WHOOP refresh token missing")

        logger.info("Refreshing %s token for user %s", platform, user_id)
        try:
            fresh = await self._adapter.refresh_token(tokens.refresh_token)
        except UpstreamFailure as exc:
            if not exc.transient:
                await self._store.deactivate_connection(user_id, platform, delete_tokens=True)
            raise

        await self._store.save_tokens(user_id, fresh)
        return fresh.access_token
