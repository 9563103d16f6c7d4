"""JSON envelopes shared by the API routes.

Success: ``{"success": true, <key>: <payload>}``.
Failure: ``{"success": false, "error": <short message>}`` with the status of
the error kind.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from fastapi.responses import JSONResponse
from pydantic import BaseModel

from primeportal.errors import Err, InvalidInput, PortalError, Result

logger = logging.getLogger("primeportal.routers")

_DIGITS = re.compile(r"[0-9]+")


def to_json(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True, mode="json")
    if isinstance(value, list):
        return [to_json(v) for v in value]
    return value


def error_response(error: PortalError, fallback: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=error.status_code,
        content={"success": False, "error": fallback or error.message},
    )


def respond(
    result: Result[Any], key: str, route: str, fallback: str | None = None
) -> JSONResponse:
    """Map a data-access ``Result`` onto the response envelope."""
    if isinstance(result, Err):
        logger.error("[%s] %s", route, result.error.message)
        return error_response(result.error, fallback)
    return JSONResponse(content={"success": True, key: to_json(result.value)})


def parse_int_param(value: str, name: str, low: int, high: int) -> int:
    """Strict base-10 integer in [low, high]; anything else is ``InvalidInput``."""
    if not _DIGITS.fullmatch(value):
        raise InvalidInput(f"Invalid {name} parameter")
    number = int(value)
    if not low <= number <= high:
        raise InvalidInput(f"Invalid {name} parameter")
    return number
