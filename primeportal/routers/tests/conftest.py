"""App, session tokens and a fake database client for route tests."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import jwt as pyjwt
import pytest
from fastapi.testclient import TestClient

from primeportal.config import get_settings
from primeportal.dependencies import get_optional_server_client, get_server_client
from primeportal.main import create_app
from primeportal.services import supabase_rest

JWT_SECRET = "test-supabase-jwt-secret-0123456789abcdef"
CRON_SECRET = "test-cron-secret"

ATHLETE_ID = uuid.UUID("12345678-1234-5678-1234-567812345678")
DOCTOR_ID = uuid.UUID("aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa")

# Env vars that would change client construction if set on the test host
_UNSET = (
    "NEXT_PUBLIC_SUPABASE_URL",
    "NEXT_PUBLIC_SUPABASE_ANON_KEY",
    "SUPABASE_SERVICE_ROLE_KEY",
    "SUPABASE_DB_URL",
    "NEXTAUTH_URL",
    "NEXT_PUBLIC_APP_URL",
    "NEXT_PUBLIC_SITE_URL",
    "VERCEL_URL",
)


def make_token(
    user_id: uuid.UUID,
    secret: str = JWT_SECRET,
    expires_in: int = 3600,
    **claims,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "aud": "authenticated",
        "role": "authenticated",
        "email": "user@example.com",
        "session_id": "session-1",
        "iat": now,
        "exp": now + timedelta(seconds=expires_in),
        **claims,
    }
    return pyjwt.encode(payload, secret, algorithm="HS256")


def auth_headers(user_id: uuid.UUID = ATHLETE_ID) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


def make_db_client() -> AsyncMock:
    client = AsyncMock()
    client.fetch.return_value = []
    client.fetchrow.return_value = None
    client.fetchval.return_value = None
    return client


@pytest.fixture
def app_env(monkeypatch: pytest.MonkeyPatch, tmp_path):
    monkeypatch.setenv("SUPABASE_JWT_SECRET", JWT_SECRET)
    monkeypatch.setenv("CRON_SECRET", CRON_SECRET)
    monkeypatch.setenv("LOCAL_STORAGE_PATH", str(tmp_path / "storage.json"))
    for name in _UNSET:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    supabase_rest._browser_client = None
    yield
    get_settings.cache_clear()
    supabase_rest._browser_client = None


@pytest.fixture
def db_client() -> AsyncMock:
    return make_db_client()


@pytest.fixture
def client(app_env, db_client: AsyncMock) -> TestClient:
    app = create_app()
    app.dependency_overrides[get_server_client] = lambda: db_client
    app.dependency_overrides[get_optional_server_client] = lambda: db_client
    return TestClient(app)
