"""Prime Portal API — FastAPI application entry point.

Run locally:
    uvicorn primeportal.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from primeportal.config import get_settings
from primeportal.errors import ConfigurationError, PortalError
from primeportal.middleware.supabase_auth import SupabaseSessionMiddleware
from primeportal.routers import athlete, auth, cron, health, sync
from primeportal.routers.responses import error_response
from primeportal.services.supabase import close_pool, init_pool

# ---------- Logging ----------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("primeportal")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logger.info(
        "Starting %s v%s [%s]",
        settings.app_name,
        settings.app_version,
        settings.environment,
    )
    try:
        await init_pool(settings)
    except ConfigurationError as exc:
        # Preview builds run without a database; data routes answer 500
        logger.warning("Database pool not started: %s", exc.message)
    yield
    await close_pool()
    logger.info("%s shut down", settings.app_name)


# ---------- Error handling ----------

async def portal_error_handler(request: Request, exc: PortalError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return error_response(exc)


# ---------- App factory ----------

def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Prime Portal API",
        description="Athlete health dashboard backed by Supabase and WHOOP.",
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_exception_handler(PortalError, portal_error_handler)

    # ---------- Middleware (order matters — outermost first) ----------

    # Supabase session resolution; never rejects by itself
    app.add_middleware(SupabaseSessionMiddleware, settings=settings)

    # CORS — must be the innermost middleware so it can handle preflight
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------- Health check (outside /api — always at /health) ----------
    app.include_router(health.router)

    # ---------- API routes ----------
    api_prefix = "/api"

    app.include_router(athlete.router, prefix=api_prefix)
    app.include_router(auth.router, prefix=api_prefix)
    app.include_router(sync.router, prefix=api_prefix)
    app.include_router(cron.router, prefix=api_prefix)

    return app


app = create_app()
