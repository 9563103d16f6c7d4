"""Health check endpoint — public, no auth required."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from primeportal.config import get_settings
from primeportal.env import get_base_url
from primeportal.errors import PortalError
from primeportal.routers.cron import LAST_CRON_SYNC_KEY
from primeportal.services.supabase import create_server_client, pool_ready
from primeportal.services.supabase_rest import create_browser_client
from primeportal.storage import safe_get_item

router = APIRouter(tags=["system"])
logger = logging.getLogger("primeportal.health")


@router.get("/health")
async def health_check() -> dict:
    """Liveness check. Returns 200 if the API process is up.

    Also checks the database pool and the public REST endpoint.
    """
    settings = get_settings()
    db_ok = False
    if pool_ready():
        try:
            await create_server_client(None).fetchval("SELECT 1")
            db_ok = True
        except PortalError as exc:
            logger.warning("Health check DB query failed: %s", exc.message)

    rest = create_browser_client(settings)
    rest_ok = await rest.ping()

    return {
        "status": "healthy" if db_ok else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "database": "connected" if db_ok else "unreachable",
        "rest": "connected" if rest_ok else ("unreachable" if rest.is_configured else "unconfigured"),
        "baseUrl": get_base_url(settings=settings),
        "lastCronSync": safe_get_item(LAST_CRON_SYNC_KEY),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
