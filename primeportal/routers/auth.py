"""WHOOP account linking: redirect to the consent page and handle the callback."""

from __future__ import annotations

import logging
from datetime import timedelta

from fastapi import APIRouter
from fastapi.responses import RedirectResponse

from primeportal.dependencies import AppSettings, CurrentUser
from primeportal.env import get_base_url
from primeportal.errors import PortalError
from primeportal.wearables.config_loader import get_sync_config
from primeportal.wearables.oauth import (
    OAuthCallbackError,
    begin_authorization,
    callback_url,
    complete_authorization,
)
from primeportal.wearables.sync.orchestrator import create_adapter, create_sync_store

router = APIRouter(prefix="/auth/whoop", tags=["auth"])
logger = logging.getLogger("primeportal.routers.auth")

DASHBOARD_PATH = "/athlete/dashboard"


@router.get("/authorize")
async def whoop_authorize(user: CurrentUser, settings: AppSettings) -> RedirectResponse:
    redirect_uri = callback_url(get_base_url(settings=settings))
    url = await begin_authorization(
        user.user_id, redirect_uri, create_sync_store(), create_adapter()
    )
    return RedirectResponse(url, status_code=302)


@router.get("/callback")
async def whoop_callback(
    settings: AppSettings,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
) -> RedirectResponse:
    base_url = get_base_url(settings=settings)
    dashboard = f"{base_url}{DASHBOARD_PATH}"
    try:
        await complete_authorization(
            create_sync_store(),
            create_adapter(),
            callback_url(base_url),
            timedelta(seconds=get_sync_config().whoop.state_ttl_seconds),
            code=code,
            state=state,
            error=error,
        )
    except OAuthCallbackError as exc:
        return RedirectResponse(f"{dashboard}?error={exc.code}", status_code=302)
    except PortalError as exc:
        logger.error("[auth/whoop/callback] %s", exc.message)
        return RedirectResponse(f"{dashboard}?error=unexpected_error", status_code=302)
    return RedirectResponse(f"{dashboard}?success=whoop_connected", status_code=302)
