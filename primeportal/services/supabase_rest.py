"""Public (anon-key) Supabase REST client.

This is the only client that may be handed to browser-side code paths: it
authenticates with the public anon key, so every read it makes is subject to
RLS.  One instance is shared by the whole process and created on first use.
"""

from __future__ import annotations

import logging
import threading

import httpx

from primeportal.config import Settings, get_settings
from primeportal.errors import UpstreamFailure

logger = logging.getLogger("primeportal.supabase_rest")


class SupabaseRestClient:
    """Anon-key PostgREST client built on httpx.

    Holds only immutable connection details; each call opens its own
    ``httpx.AsyncClient`` unless one is injected, so concurrent use is safe.
    """

    is_configured = True

    def __init__(
        self,
        url: str,
        anon_key: str,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url.rstrip("/")
        self._anon_key = anon_key
        self._http_client = http_client

    @property
    def rest_url(self) -> str:
        return f"{self.url}/rest/v1"

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {self._anon_key}",
            "Accept": "application/json",
        }

    async def _get(self, path: str) -> httpx.Response:
        url = f"{self.rest_url}{path}"
        headers = self._headers()
        try:
            if self._http_client is not None:
                resp = await self._http_client.get(url, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=10.0) as client:
                    resp = await client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            raise UpstreamFailure("Supabase REST request failed", transient=True) from exc
        return resp

    async def ping(self) -> bool:
        """True when the REST endpoint answers at all."""
        try:
            resp = await self._get("/")
        except UpstreamFailure as exc:
            logger.warning("Supabase REST check failed: %s", exc)
            return False
        return resp.status_code < 500


class PlaceholderClient:
    """Stand-in used when the public Supabase config is missing.

    Lets preview and build environments run without credentials; every call
    logs a warning and reports the service as unavailable.
    """

    is_configured = False

    async def ping(self) -> bool:
        logger.warning("Supabase not configured; REST check skipped")
        return False


BrowserClient = SupabaseRestClient | PlaceholderClient

_browser_client: BrowserClient | None = None
_browser_lock = threading.Lock()


def create_browser_client(settings: Settings | None = None) -> BrowserClient:
    """Return the process-wide public client, creating it on first call."""
    global _browser_client
    if _browser_client is not None:
        return _browser_client

    with _browser_lock:
        if _browser_client is None:
            s = settings or get_settings()
            if not s.supabase_url or not s.supabase_anon_key:
                logger.warning(
                    "Supabase URL or anon key missing; using placeholder browser client"
                )
                _browser_client = PlaceholderClient()
            else:
                _browser_client = SupabaseRestClient(s.supabase_url, s.supabase_anon_key)
        return _browser_client
