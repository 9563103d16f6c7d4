"""Load, validate, and hot-reload the WHOOP sync configuration.

The config lives in ``sync_config.yaml`` alongside this module.  At startup
it is loaded once and cached.  Call ``reload_sync_config()`` to re-read from
disk after an edit — no restart required.

Usage::

    from primeportal.wearables.config_loader import get_sync_config

    config = get_sync_config()
    config.scheduling.max_concurrent_users   # 5
    config.retry.delay_for_attempt(2)        # 2.0
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger("primeportal.wearables.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "sync_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class WindowConfig:
    """How far back each sync reaches."""

    regular_days: int = 7
    initial_days: int = 15
    rescore_lookback_days: int = 2


@dataclass
class SchedulingConfig:
    """Multi-user iteration limits for the cron run."""

    max_concurrent_users: int = 5
    time_budget_seconds: float = 50.0
    user_retries: int = 1


@dataclass
class RetryConfig:
    """Exponential backoff for WHOOP HTTP calls."""

    max_attempts: int = 3
    initial_delay_seconds: float = 1.0
    max_delay_seconds: float = 8.0
    multiplier: float = 2.0
    retryable_statuses: frozenset[int] = frozenset({429, 500, 502, 503, 504})

    def delay_for_attempt(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (1-based), capped."""
        delay = self.initial_delay_seconds * (self.multiplier ** (attempt - 1))
        return min(delay, self.max_delay_seconds)


@dataclass
class WhoopApiConfig:
    api_base_url: str = "https://api.prod.whoop.com/developer/v2"
    auth_url: str = "https://api.prod.whoop.com/oauth/oauth2/auth"
    token_url: str = "https://api.prod.whoop.com/oauth/oauth2/token"
    scopes: tuple[str, ...] = (
        "offline",
        "read:recovery",
        "read:sleep",
        "read:workout",
        "read:cycles",
        "read:profile",
        "read:body_measurement",
    )
    # Lifetime of the OAuth state handed to the consent page
    state_ttl_seconds: int = 600
    page_size: int = 25
    request_timeout_seconds: float = 10.0
    token_expiry_buffer_seconds: int = 60
    kilojoule_to_kcal: float = 0.239


@dataclass
class SyncConfig:
    """Complete, validated sync configuration.

    Attributes:
        version:     Config schema version string.
        windows:     Fetch window sizes.
        scheduling:  Concurrency, time budget and per-user retries.
        retry:       HTTP backoff policy.
        whoop:       WHOOP endpoints and unit conversion.
    """

    version: str
    windows: WindowConfig
    scheduling: SchedulingConfig
    retry: RetryConfig
    whoop: WhoopApiConfig
    _raw: dict = field(default_factory=dict, repr=False)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when sync_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Sync config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> SyncConfig:
    """Validate the raw YAML dict and construct a SyncConfig.

    Missing keys fall back to the dataclass defaults; present keys must be
    positive numbers of the right kind.

    Raises:
        ConfigValidationError: If any value is invalid.
    """
    errors: list[str] = []

    def _section(name: str) -> dict[str, Any]:
        value = raw.get(name) or {}
        if not isinstance(value, dict):
            errors.append(f"'{name}' must be a mapping")
            return {}
        return value

    def _positive(section: dict, key: str, name: str, default: Any, cast: type) -> Any:
        if key not in section:
            return default
        try:
            value = cast(section[key])
        except (TypeError, ValueError):
            errors.append(f"{name}.{key} must be a number, got {section[key]!r}")
            return default
        if value <= 0:
            errors.append(f"{name}.{key} = {value} must be positive")
        return value

    version = str(raw.get("version", "1.0"))

    # ── Windows ──
    w_raw = _section("windows")
    d = WindowConfig()
    windows = WindowConfig(
        regular_days=_positive(w_raw, "regular_days", "windows", d.regular_days, int),
        initial_days=_positive(w_raw, "initial_days", "windows", d.initial_days, int),
        rescore_lookback_days=_positive(
            w_raw, "rescore_lookback_days", "windows", d.rescore_lookback_days, int
        ),
    )
    if windows.initial_days < windows.regular_days:
        errors.append("windows.initial_days must be >= windows.regular_days")

    # ── Scheduling ──
    s_raw = _section("scheduling")
    sd = SchedulingConfig()
    scheduling = SchedulingConfig(
        max_concurrent_users=_positive(
            s_raw, "max_concurrent_users", "scheduling", sd.max_concurrent_users, int
        ),
        time_budget_seconds=_positive(
            s_raw, "time_budget_seconds", "scheduling", sd.time_budget_seconds, float
        ),
        user_retries=int(s_raw.get("user_retries", sd.user_retries)),
    )
    if scheduling.user_retries < 0:
        errors.append("scheduling.user_retries must be >= 0")

    # ── Retry ──
    r_raw = _section("retry")
    rd = RetryConfig()
    statuses_raw = r_raw.get("retryable_statuses", sorted(rd.retryable_statuses))
    try:
        statuses = frozenset(int(s) for s in statuses_raw)
    except (TypeError, ValueError):
        errors.append(f"retry.retryable_statuses must be a list of ints, got {statuses_raw!r}")
        statuses = rd.retryable_statuses
    retry = RetryConfig(
        max_attempts=_positive(r_raw, "max_attempts", "retry", rd.max_attempts, int),
        initial_delay_seconds=_positive(
            r_raw, "initial_delay_seconds", "retry", rd.initial_delay_seconds, float
        ),
        max_delay_seconds=_positive(
            r_raw, "max_delay_seconds", "retry", rd.max_delay_seconds, float
        ),
        multiplier=_positive(r_raw, "multiplier", "retry", rd.multiplier, float),
        retryable_statuses=statuses,
    )

    # ── WHOOP ──
    wh_raw = _section("whoop")
    wd = WhoopApiConfig()
    whoop = WhoopApiConfig(
        api_base_url=str(wh_raw.get("api_base_url", wd.api_base_url)).rstrip("/"),
        auth_url=str(wh_raw.get("auth_url", wd.auth_url)),
        token_url=str(wh_raw.get("token_url", wd.token_url)),
        scopes=tuple(str(s) for s in wh_raw.get("scopes", wd.scopes)),
        state_ttl_seconds=_positive(
            wh_raw, "state_ttl_seconds", "whoop", wd.state_ttl_seconds, int
        ),
        page_size=_positive(wh_raw, "page_size", "whoop", wd.page_size, int),
        request_timeout_seconds=_positive(
            wh_raw, "request_timeout_seconds", "whoop", wd.request_timeout_seconds, float
        ),
        token_expiry_buffer_seconds=_positive(
            wh_raw, "token_expiry_buffer_seconds", "whoop", wd.token_expiry_buffer_seconds, int
        ),
        kilojoule_to_kcal=_positive(
            wh_raw, "kilojoule_to_kcal", "whoop", wd.kilojoule_to_kcal, float
        ),
    )
    if whoop.page_size > 25:
        # WHOOP rejects larger pages
        errors.append(f"whoop.page_size = {whoop.page_size} exceeds the API maximum of 25")
    if whoop.request_timeout_seconds >= scheduling.time_budget_seconds:
        # One hung request must not eat the whole cron budget
        errors.append(
            "whoop.request_timeout_seconds must be below scheduling.time_budget_seconds"
        )
    if "offline" not in whoop.scopes:
        errors.append("whoop.scopes must include 'offline' to receive a refresh token")

    if errors:
        raise ConfigValidationError(
            f"sync_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return SyncConfig(
        version=version,
        windows=windows,
        scheduling=scheduling,
        retry=retry,
        whoop=whoop,
        _raw=raw,
    )


def load_sync_config(path: Path | None = None) -> SyncConfig:
    """Load and validate the sync config from disk.

    Args:
        path: Override path to YAML. Uses the bundled sync_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded sync config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: SyncConfig | None = None
_config_lock = threading.Lock()


def get_sync_config() -> SyncConfig:
    """Return the global SyncConfig singleton, loading it on first call.

    Thread-safe.  Use ``reload_sync_config()`` to refresh after YAML changes.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_sync_config()
    return _config


def reload_sync_config(path: Path | None = None) -> SyncConfig:
    """Reload the sync config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error is re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_sync_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded sync config: %s → %s", old_version, new_config.version)
    return new_config
