"""Exponential backoff for WHOOP HTTP calls.

Retries rate limits (429), server errors (5xx) and network failures.  Any
other status is returned to the caller straight away.  After the last attempt
a retryable response is returned as-is, and a network error becomes a
transient ``UpstreamFailure``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import httpx

from primeportal.errors import UpstreamFailure
from primeportal.wearables.config_loader import RetryConfig

logger = logging.getLogger("primeportal.wearables.retry")

Sleeper = Callable[[float], Awaitable[None]]


def retry_after_seconds(response: httpx.Response) -> float | None:
    """Parse a numeric ``Retry-After`` header; HTTP-date values are ignored."""
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return max(seconds, 0.0)


async def send_with_retry(
    send: Callable[[], Awaitable[httpx.Response]],
    policy: RetryConfig,
    label: str,
    sleep: Sleeper = asyncio.sleep,
) -> httpx.Response:
    """Call ``send`` until it returns a non-retryable response or attempts run out."""
    attempt = 1
    while True:
        try:
            response = await send()
        except httpx.TransportError as exc:
            if attempt >= policy.max_attempts:
                raise UpstreamFailure(
                    f"Network error calling {label}", transient=True
                ) from exc
            delay = policy.delay_for_attempt(attempt)
            logger.warning(
                "%s: network error (%s), retry %d/%d in %.1fs",
                label, type(exc).__name__, attempt, policy.max_attempts - 1, delay,
            )
        else:
            if response.status_code not in policy.retryable_statuses:
                return response
            if attempt >= policy.max_attempts:
                return response
            delay = policy.delay_for_attempt(attempt)
            hinted = retry_after_seconds(response)
            if hinted is not None:
                delay = min(hinted, policy.max_delay_seconds)
            logger.warning(
                "%s: HTTP %d, retry %d/%d in %.1fs",
                label, response.status_code, attempt, policy.max_attempts - 1, delay,
            )

        await sleep(delay)
        attempt += 1
