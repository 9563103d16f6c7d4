"""Sync monitoring (doctor views) and manual WHOOP sync."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from primeportal.dependencies import (
    CurrentUser,
    PublicClient,
    ServerClient,
    SessionContext,
    UserRole,
    require_role,
)
from primeportal.errors import InvalidInput
from primeportal.queries.sync_stats import (
    get_athlete_sync_status,
    get_recent_sync_errors,
    get_sync_stats_by_period,
    get_sync_trend_data,
)
from primeportal.routers.responses import parse_int_param, respond
from primeportal.wearables.sync.orchestrator import PLATFORM, sync_user_now

router = APIRouter(prefix="/sync", tags=["sync"])
logger = logging.getLogger("primeportal.routers.sync")

Doctor = Annotated[SessionContext, Depends(require_role(UserRole.DOCTOR))]


@router.get("/athletes")
async def athletes_sync_status(doctor: Doctor, client: ServerClient) -> JSONResponse:
    result = await get_athlete_sync_status(client, doctor.user_id)
    return respond(result, "athletes", route="sync/athletes")


@router.get("/stats")
async def sync_stats(client: PublicClient, period: str = Query(default="7")) -> JSONResponse:
    days = parse_int_param(period or "7", "period", 1, 365)
    result = await get_sync_stats_by_period(client, days)
    return respond(result, "stats", route="sync/stats")


@router.get("/trends")
async def sync_trends(
    doctor: Doctor, client: ServerClient, days: str = Query(default="30")
) -> JSONResponse:
    window = parse_int_param(days or "30", "days", 1, 365)
    result = await get_sync_trend_data(client, window)
    return respond(result, "trendData", route="sync/trends")


@router.get("/errors")
async def sync_errors(
    doctor: Doctor, client: ServerClient, limit: str = Query(default="20")
) -> JSONResponse:
    count = parse_int_param(limit or "20", "limit", 1, 100)
    result = await get_recent_sync_errors(client, count)
    return respond(result, "errors", route="sync/errors")


@router.post("/whoop/manual")
async def manual_whoop_sync(user: CurrentUser, client: ServerClient) -> JSONResponse:
    connected = await client.fetchval(
        "SELECT EXISTS (SELECT 1 FROM device_connections "
        "WHERE user_id = $1 AND platform = $2)",
        user.user_id,
        PLATFORM,
    )
    if not connected:
        raise InvalidInput("Whoop not connected")

    result = await sync_user_now(user.user_id)
    if not result.success:
        logger.error("[sync/whoop/manual] user %s: %s", user.user_id, result.error)
        return JSONResponse(
            status_code=500, content={"success": False, "error": result.error or "Sync failed"}
        )
    return JSONResponse(
        content={"success": True, "message": "Sync completed successfully", **result.to_dict()}
    )
