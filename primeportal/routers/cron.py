"""Scheduled jobs, called by the platform scheduler with ``CRON_SECRET``."""

from __future__ import annotations

import hmac
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from primeportal.dependencies import AppSettings
from primeportal.errors import PortalError, Unauthorized
from primeportal.storage import safe_set_item
from primeportal.wearables.sync.orchestrator import run_cron_sync

router = APIRouter(prefix="/cron", tags=["cron"])
logger = logging.getLogger("primeportal.routers.cron")

LAST_CRON_SYNC_KEY = "last_cron_sync"


def verify_cron_secret(request: Request, secret: str | None) -> None:
    """Exact match of the whole header against ``Bearer <secret>``."""
    header = request.headers.get("authorization")
    if not secret or header is None:
        raise Unauthorized()
    if not hmac.compare_digest(header.encode(), f"Bearer {secret}".encode()):
        raise Unauthorized()


@router.get("/sync-whoop")
async def cron_sync_whoop(request: Request, settings: AppSettings) -> JSONResponse:
    try:
        verify_cron_secret(request, settings.cron_secret)
    except Unauthorized:
        logger.warning("Unauthorized cron request")
        raise

    logger.info("Cron job triggered: sync-whoop")
    try:
        batch = await run_cron_sync()
    except PortalError as exc:
        logger.error("[cron/sync-whoop] %s", exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": False,
                "error": exc.message,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )

    timestamp = datetime.now(timezone.utc).isoformat()
    safe_set_item(LAST_CRON_SYNC_KEY, timestamp)

    if batch.total_failure:
        logger.error("[cron/sync-whoop] all %d user syncs failed", batch.failed)
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "All user syncs failed",
                "timestamp": timestamp,
                **batch.to_dict(),
            },
        )

    return JSONResponse(content={"success": True, "timestamp": timestamp, **batch.to_dict()})
