"""Supabase session resolution middleware for FastAPI.

Reads the access token from ``Authorization: Bearer <jwt>`` or from the
Supabase auth cookie, verifies it, and sets ``request.state.session`` to a
``SessionContext`` (or ``None``).  It never rejects a request itself: routes
that need a session depend on ``get_current_user``, which answers 401.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import uuid
from typing import Any

import jwt as pyjwt
from fastapi import Request, Response
from jwt import PyJWKClient
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from primeportal.config import Settings, get_settings
from primeportal.dependencies import SessionContext

logger = logging.getLogger("primeportal.auth")

ACCESS_TOKEN_COOKIE = "sb-access-token"
AUTH_COOKIE_SUFFIX = "-auth-token"
BASE64_PREFIX = "base64-"


def _decode_cookie_session(raw: str) -> str | None:
    """Pull ``access_token`` out of a ``sb-<ref>-auth-token`` cookie value.

    The value is a JSON session object, optionally ``base64-`` prefixed.
    """
    if raw.startswith(BASE64_PREFIX):
        encoded = raw[len(BASE64_PREFIX):]
        try:
            raw = base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4)).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            return None
    try:
        data = json.loads(raw)
    except ValueError:
        return None
    if isinstance(data, dict):
        token = data.get("access_token")
        return token if isinstance(token, str) else None
    # Older clients stored [access_token, refresh_token, ...]
    if isinstance(data, list) and data and isinstance(data[0], str):
        return data[0]
    return None


def extract_access_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        token = auth_header.removeprefix("Bearer ").strip()
        return token or None

    cookies = request.cookies
    if cookies.get(ACCESS_TOKEN_COOKIE):
        return cookies[ACCESS_TOKEN_COOKIE]

    # Large sessions are split into sb-<ref>-auth-token.0, .1, ...
    for name in sorted(cookies):
        if name.startswith("sb-") and name.endswith(AUTH_COOKIE_SUFFIX):
            return _decode_cookie_session(cookies[name])
    chunks = [
        cookies[name]
        for name in sorted(cookies)
        if name.startswith("sb-") and AUTH_COOKIE_SUFFIX + "." in name
    ]
    if chunks:
        return _decode_cookie_session("".join(chunks))
    return None


class SupabaseSessionMiddleware(BaseHTTPMiddleware):
    """Verify Supabase-issued JWTs and populate request.state.session."""

    def __init__(self, app: Any, settings: Settings | None = None) -> None:
        super().__init__(app)
        self._settings = settings or get_settings()
        self._jwks_client: PyJWKClient | None = None
        if not self._settings.supabase_jwt_secret and self._settings.supabase_jwks_url:
            self._jwks_client = PyJWKClient(
                self._settings.supabase_jwks_url,
                cache_keys=True,
                lifespan=3600,
            )

    def _decode(self, token: str) -> dict[str, Any]:
        if self._settings.supabase_jwt_secret:
            return pyjwt.decode(
                token,
                self._settings.supabase_jwt_secret,
                algorithms=["HS256"],
                audience="authenticated",
            )
        if self._jwks_client is None:
            raise pyjwt.InvalidTokenError("No verification key configured")
        signing_key = self._jwks_client.get_signing_key_from_jwt(token)
        return pyjwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256", "ES256"],
            audience="authenticated",
        )

    def resolve_session(self, token: str | None) -> SessionContext | None:
        if not token:
            return None
        try:
            payload = self._decode(token)
        except pyjwt.ExpiredSignatureError:
            logger.info("Session token expired")
            return None
        except pyjwt.DecodeError:
            # e.g. the cron shared secret, which is not a JWT
            logger.debug("Bearer value is not a JWT")
            return None
        except pyjwt.PyJWKClientError as exc:
            logger.warning("JWKS lookup failed: %s", exc)
            return None
        except pyjwt.InvalidTokenError as exc:
            logger.warning("JWT validation failed: %s", exc)
            return None

        try:
            user_id = uuid.UUID(str(payload.get("sub", "")))
        except ValueError:
            logger.warning("JWT has no usable sub claim")
            return None

        return SessionContext(
            user_id=user_id,
            email=payload.get("email"),
            session_id=payload.get("session_id"),
            claims=payload,
        )

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request.state.session = self.resolve_session(extract_access_token(request))
        return await call_next(request)
