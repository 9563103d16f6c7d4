"""Supabase Postgres clients with RLS context.

Two kinds of database client share one ``asyncpg`` pool:

* the **server client** runs every statement as the ``authenticated`` role with
  the caller's JWT claims in ``request.jwt.claims``, exactly what PostgREST does,
  so Row-Level Security policies (``auth.uid()``) see the caller;
* the **service-role client** runs as ``service_role`` and bypasses RLS.  It is
  only handed out inside the server process, after the lifespan hook opened the
  pool, and only when the service-role credential is configured.

Both ``SET LOCAL`` calls are scoped to the transaction, so they vanish when the
connection goes back to the pool.
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, AsyncGenerator

import asyncpg

from primeportal.config import Settings, get_settings
from primeportal.errors import ConfigurationError, UpstreamFailure

if TYPE_CHECKING:
    from primeportal.dependencies import SessionContext

logger = logging.getLogger("primeportal.db")

ROLE_ANON = "anon"
ROLE_AUTHENTICATED = "authenticated"
ROLE_SERVICE = "service_role"
_ALLOWED_ROLES = frozenset({ROLE_ANON, ROLE_AUTHENTICATED, ROLE_SERVICE})

# Module-level connection pool — initialized once at app startup
_pool: asyncpg.Pool | None = None


async def init_pool(settings: Settings | None = None) -> asyncpg.Pool:
    """Create the asyncpg connection pool. Call once at app startup."""
    global _pool
    s = settings or get_settings()
    if not s.supabase_db_url:
        raise ConfigurationError("Missing SUPABASE_DB_URL")
    _pool = await asyncpg.create_pool(
        s.supabase_db_url,
        min_size=1,
        max_size=10,
        command_timeout=30,
        # Supabase's transaction pooler does not support prepared statements
        statement_cache_size=0,
    )
    logger.info("Database pool initialized (min=1, max=10)")
    return _pool


async def close_pool() -> None:
    """Drain the pool. Call at app shutdown."""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


def get_pool() -> asyncpg.Pool:
    if _pool is None:
        raise ConfigurationError("Database pool not initialized — call init_pool() first")
    return _pool


def pool_ready() -> bool:
    return _pool is not None


class DatabaseClient:
    """Run statements under a fixed Postgres role and JWT claim set."""

    def __init__(
        self,
        pool: asyncpg.Pool,
        role: str,
        claims: dict[str, Any] | None = None,
    ) -> None:
        if role not in _ALLOWED_ROLES:
            raise ConfigurationError(f"Unsupported database role {role!r}")
        self._pool = pool
        self.role = role
        self._claims = claims

    @property
    def bypasses_rls(self) -> bool:
        return self.role == ROLE_SERVICE

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[asyncpg.Connection, None]:
        """Acquire a connection inside a transaction with the RLS context set.

        Usage::

            async with client.connection() as conn:
                await conn.execute("INSERT ...")
                await conn.execute("UPDATE ...")

        Everything inside the block commits or rolls back together.
        """
        try:
            async with self._pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute(f"SET LOCAL ROLE {self.role}")
                    if self._claims is not None:
                        await conn.execute(
                            "SELECT set_config('request.jwt.claims', $1, true)",
                            json.dumps(self._claims, default=str),
                        )
                    yield conn
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            logger.error("Database error (%s): %s", self.role, exc)
            raise UpstreamFailure("Database request failed") from exc

    async def execute(self, query: str, *args: Any) -> str:
        async with self.connection() as conn:
            return await conn.execute(query, *args)

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        async with self.connection() as conn:
            return await conn.fetch(query, *args)

    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        async with self.connection() as conn:
            return await conn.fetchrow(query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        async with self.connection() as conn:
            return await conn.fetchval(query, *args)


# ---------- Factories ----------


def create_server_client(session: SessionContext | None) -> DatabaseClient:
    """Request-scoped client bound to the caller's verified session.

    Without a session the client runs as ``anon``, like an unauthenticated
    PostgREST call.

    Cheap to call; a new client is built for every request and nothing is
    shared between requests except the pool itself.
    """
    if session is None:
        return DatabaseClient(get_pool(), role=ROLE_ANON, claims={"role": ROLE_ANON})
    return DatabaseClient(get_pool(), role=ROLE_AUTHENTICATED, claims=session.claims)


def create_service_role_client(settings: Settings | None = None) -> DatabaseClient:
    """Privileged client that bypasses RLS. Server-side code only.

    Raises:
        ConfigurationError: credentials are missing, or the server lifespan has
            not opened the pool (i.e. we are not inside the trusted server).
    """
    s = settings or get_settings()
    if not s.supabase_url or not s.supabase_service_role_key:
        raise ConfigurationError("Missing Supabase Service Role credentials")
    if not pool_ready():
        raise ConfigurationError(
            "create_service_role_client can only be used inside the running server"
        )
    return DatabaseClient(get_pool(), role=ROLE_SERVICE, claims={"role": ROLE_SERVICE})
