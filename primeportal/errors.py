"""Error taxonomy and the ``Result`` type returned by the data-access layer.

Every error carries the HTTP status it maps to and a short message that is
safe to hand to a client.  ``ConfigurationError`` is raised where a client is
built; the others are caught at the route boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class PortalError(Exception):
    """Base class for all errors the API knows how to render."""

    status_code: int = 500
    default_message: str = "Internal error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthorized(PortalError):
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(PortalError):
    status_code = 403
    default_message = "Forbidden"


class InvalidInput(PortalError):
    status_code = 400
    default_message = "Invalid input"


class UpstreamFailure(PortalError):
    """A database or WHOOP API call failed.

    ``transient`` marks failures worth retrying (rate limits, 5xx, network).
    """

    status_code = 500
    default_message = "Upstream service failure"

    def __init__(
        self,
        message: str | None = None,
        *,
        transient: bool = False,
        status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.transient = transient
        self.status = status


class ConfigurationError(PortalError):
    """A required credential is missing or a privileged client was misused."""

    status_code = 500
    default_message = "Server misconfigured"


# ---------- Result ----------


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err:
    error: PortalError


Result = Union[Ok[T], Err]
