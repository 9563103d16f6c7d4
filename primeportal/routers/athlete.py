"""Athlete-facing endpoints."""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from primeportal.dependencies import CurrentUser, ServerClient
from primeportal.queries.athlete_dashboard import get_athlete_dashboard_data
from primeportal.routers.responses import respond

router = APIRouter(prefix="/athlete", tags=["athlete"])


@router.get("/dashboard")
async def athlete_dashboard(user: CurrentUser, client: ServerClient) -> JSONResponse:
    result = await get_athlete_dashboard_data(client, user.user_id)
    return respond(
        result, "data", route="athlete/dashboard", fallback="Failed to fetch dashboard data"
    )
