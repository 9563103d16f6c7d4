"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass, field
from typing import Annotated, Any, Awaitable, Callable

from fastapi import Depends, Request

from primeportal.config import Settings, get_settings
from primeportal.errors import Forbidden, Unauthorized
from primeportal.services.supabase import DatabaseClient, create_server_client

logger = logging.getLogger("primeportal.auth")


class UserRole(str, enum.Enum):
    """Values of ``profiles.role``."""

    ATHLETE = "athlete"
    DOCTOR = "doctor"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value: Any) -> UserRole | None:
        try:
            return cls(value)
        except ValueError:
            return None


@dataclass(frozen=True)
class SessionContext:
    """Verified Supabase session extracted from the access token."""

    user_id: uuid.UUID  # auth.users.id (the ``sub`` claim)
    email: str | None = None
    session_id: str | None = None
    claims: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


async def get_current_user(request: Request) -> SessionContext:
    """Return the caller's session or raise ``Unauthorized``.

    The session middleware sets ``request.state.session`` before routes run.
    """
    session: SessionContext | None = getattr(request.state, "session", None)
    if session is None:
        raise Unauthorized()
    return session


CurrentUser = Annotated[SessionContext, Depends(get_current_user)]
AppSettings = Annotated[Settings, Depends(get_settings)]


def get_server_client(session: CurrentUser) -> DatabaseClient:
    """Request-scoped, RLS-bound database client for the caller."""
    return create_server_client(session)


ServerClient = Annotated[DatabaseClient, Depends(get_server_client)]


def get_optional_server_client(request: Request) -> DatabaseClient:
    """Server client for public routes: the caller's session if any, else ``anon``."""
    return create_server_client(getattr(request.state, "session", None))


PublicClient = Annotated[DatabaseClient, Depends(get_optional_server_client)]


async def fetch_user_role(client: DatabaseClient, user_id: uuid.UUID) -> UserRole | None:
    role = await client.fetchval("SELECT role FROM profiles WHERE id = $1", user_id)
    return UserRole.parse(role)


def require_role(*allowed: UserRole) -> Callable[..., Awaitable[SessionContext]]:
    """Dependency factory: authenticate, then check ``profiles.role``.

    Usage::

        @router.get("/athletes")
        async def list_athletes(
            session: SessionContext = Depends(require_role(UserRole.DOCTOR)),
        ): ...
    """
    allowed_roles = frozenset(allowed)

    async def _check(session: CurrentUser, client: ServerClient) -> SessionContext:
        role = await fetch_user_role(client, session.user_id)
        if role not in allowed_roles:
            logger.info("User %s denied: role %s", session.user_id, role)
            raise Forbidden()
        return session

    return _check
