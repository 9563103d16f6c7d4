"""Base URL resolution for OAuth redirects and absolute links."""

from __future__ import annotations

from fastapi import Request

from primeportal.config import Settings, get_settings

LOCAL_DEVELOPMENT_URL = "http://localhost:3000"


def get_base_url(request: Request | None = None, settings: Settings | None = None) -> str:
    """Return the application base URL.

    When a request is available the caller's own origin wins, mirroring what a
    browser would see.  Otherwise the first configured value is used:
    ``NEXTAUTH_URL``, ``NEXT_PUBLIC_APP_URL``, ``NEXT_PUBLIC_SITE_URL``, then
    ``VERCEL_URL`` (prefixed with ``https://``), then the local dev server.
    """
    if request is not None:
        return f"{request.url.scheme}://{request.url.netloc}"

    s = settings or get_settings()

    if s.nextauth_url:
        return s.nextauth_url
    if s.app_url:
        return s.app_url
    if s.site_url:
        return s.site_url
    if s.vercel_url:
        return f"https://{s.vercel_url}"

    return LOCAL_DEVELOPMENT_URL
