"""Tests for base URL resolution."""

from __future__ import annotations

import pytest
from starlette.requests import Request

from primeportal.config import Settings
from primeportal.env import LOCAL_DEVELOPMENT_URL, get_base_url

_URL_VARS = ("NEXTAUTH_URL", "NEXT_PUBLIC_APP_URL", "NEXT_PUBLIC_SITE_URL", "VERCEL_URL")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _URL_VARS:
        monkeypatch.delenv(name, raising=False)


def settings(**values) -> Settings:
    return Settings(_env_file=None, **values)


def make_request(host: str, scheme: str = "https") -> Request:
    return Request(
        {
            "type": "http",
            "scheme": scheme,
            "server": (host, 443 if scheme == "https" else 80),
            "path": "/",
            "headers": [(b"host", host.encode())],
        }
    )


class TestGetBaseUrl:
    def test_request_origin_wins(self) -> None:
        s = settings(NEXTAUTH_URL="https://auth.example.com")
        assert get_base_url(make_request("portal.example.com"), s) == "https://portal.example.com"

    def test_nextauth_url_first(self) -> None:
        s = settings(
            NEXTAUTH_URL="https://auth.example.com",
            NEXT_PUBLIC_APP_URL="https://app.example.com",
            VERCEL_URL="myapp.vercel.app",
        )
        assert get_base_url(settings=s) == "https://auth.example.com"

    def test_app_url_before_site_url(self) -> None:
        s = settings(
            NEXT_PUBLIC_APP_URL="https://app.example.com",
            NEXT_PUBLIC_SITE_URL="https://site.example.com",
        )
        assert get_base_url(settings=s) == "https://app.example.com"

    def test_site_url(self) -> None:
        s = settings(NEXT_PUBLIC_SITE_URL="https://site.example.com")
        assert get_base_url(settings=s) == "https://site.example.com"

    def test_vercel_url_gets_https(self) -> None:
        s = settings(VERCEL_URL="myapp.vercel.app")
        assert get_base_url(settings=s) == "https://myapp.vercel.app"

    def test_local_default(self) -> None:
        assert get_base_url(settings=settings()) == LOCAL_DEVELOPMENT_URL
        assert LOCAL_DEVELOPMENT_URL == "http://localhost:3000"

    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("VERCEL_URL", "preview-123.vercel.app")
        assert get_base_url(settings=settings()) == "https://preview-123.vercel.app"
