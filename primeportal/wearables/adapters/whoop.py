"""WHOOP API v2 adapter.

Uses OAuth2: accounts are linked through ``primeportal.wearables.oauth`` and
access tokens are refreshed by ``primeportal.wearables.tokens``.

Environment variables:
    WHOOP_CLIENT_ID     — OAuth2 client ID
    WHOOP_CLIENT_SECRET — OAuth2 client secret

API base: https://api.prod.whoop.com/developer/v2

Endpoints used:
    /cycle                    — Physiological cycles (day strain, kJ, heart rate)
    /recovery                 — Recovery scores (HRV, RHR, SpO2, skin temp)
    /activity/sleep           — Sleep sessions and naps
    /activity/workout         — Workout sessions
    /user/profile/basic       — Name and email
    /user/measurement/body    — Height, weight, max heart rate

Collection endpoints page with ``limit`` (max 25) and ``nextToken``.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlencode
from uuid import UUID

import httpx
from pydantic import ValidationError

from primeportal.config import get_settings
from primeportal.errors import UpstreamFailure
from primeportal.wearables.base import (
    CycleMetrics,
    FetchedData,
    OAuthTokens,
    RecoveryMetrics,
    RejectedRecord,
    SleepMetrics,
    UserProfileSnapshot,
    WearableAdapter,
    WorkoutMetrics,
)
from primeportal.wearables.config_loader import SyncConfig, get_sync_config
from primeportal.wearables.retry import Sleeper, send_with_retry
from primeportal.wearables.schemas import (
    SCHEMAS,
    WhoopBodyMeasurement,
    WhoopProfile,
    format_validation_error,
)

logger = logging.getLogger("primeportal.wearables.whoop")

_CYCLE_PATH = "/cycle"
_RECOVERY_PATH = "/recovery"
_SLEEP_PATH = "/activity/sleep"
_WORKOUT_PATH = "/activity/workout"
_PROFILE_PATH = "/user/profile/basic"
_BODY_PATH = "/user/measurement/body"

# Upper bound on pages per collection; a 15-day window needs at most a handful
_MAX_PAGES = 100

# WHOOP sport id → activity type, used when the record carries no sport_name
_WHOOP_SPORT_MAP: dict[int, str] = {
    -1: "activity",
    0: "running",
    1: "cycling",
    16: "baseball",
    17: "basketball",
    18: "rowing",
    22: "golf",
    24: "ice_hockey",
    30: "soccer",
    33: "swimming",
    34: "tennis",
    39: "boxing",
    42: "dance",
    43: "pilates",
    44: "yoga",
    45: "weightlifting",
    48: "functional_fitness",
    52: "hiking",
    56: "martial_arts",
    57: "mountain_biking",
    59: "powerlifting",
    60: "rock_climbing",
    63: "walking",
    71: "other",
}

_ZONE_KEYS = ("zero", "one", "two", "three", "four", "five")

# Refresh responses that mean the grant is gone for good
_PERMANENT_REFRESH_STATUSES = {400, 401, 403}


def map_sport(sport_id: int | None, sport_name: str | None = None) -> str:
    if sport_name:
        return sport_name.strip().lower().replace(" ", "_").replace("-", "_")
    if sport_id is None:
        return "other"
    return _WHOOP_SPORT_MAP.get(sport_id, "other")


class WhoopAdapter(WearableAdapter):
    """WHOOP API v2 adapter.

    WHOOP focuses on strain, recovery and HRV.  Every request goes through
    the retry policy from ``sync_config.yaml``.
    """

    SOURCE_ID = "whoop"
    DISPLAY_NAME = "WHOOP"

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        config: SyncConfig | None = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        """Initialize the WHOOP adapter.

        Args:
            client_id:     OAuth2 client ID (defaults to WHOOP_CLIENT_ID).
            client_secret: OAuth2 client secret (defaults to WHOOP_CLIENT_SECRET).
            http_client:   Optional pre-configured httpx client (for testing).
            config:        Sync config; the bundled YAML by default.
            sleep:         Backoff sleeper (tests pass a no-op).
        """
        settings = get_settings()
        self._client_id = client_id or settings.whoop_client_id
        self._client_secret = client_secret or settings.whoop_client_secret
        self._http_client = http_client
        self._config = config or get_sync_config()
        self._sleep = sleep

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def authorization_url(self, state: str, redirect_uri: str) -> str:
        whoop = self._config.whoop
        query = urlencode(
            {
                "client_id": self._client_id,
                "redirect_uri": redirect_uri,
                "response_type": "code",
                "scope": " ".join(whoop.scopes),
                "state": state,
            }
        )
        return f"{whoop.auth_url}?{query}"

    async def authenticate(self, auth_code: str, redirect_uri: str) -> OAuthTokens:
        """Exchange an authorization code for tokens (client_secret_post).

        Codes are single-use, so the exchange is sent once without retries.

        Raises:
            UpstreamFailure: On a non-2xx response, a network error, or a
                response without an access token.
        """
        form = {
            "grant_type": "authorization_code",
            "code": auth_code,
            "redirect_uri": redirect_uri,
            "client_id": self._client_id,
            "client_secret": self._client_secret,
        }
        try:
            response = await self._request("POST", self._config.whoop.token_url, data=form)
        except httpx.HTTPError as exc:
            logger.warning("WHOOP code exchange failed: %s", type(exc).__name__)
            raise UpstreamFailure("WHOOP token exchange failed", transient=True) from exc

        if response.status_code >= 400:
            body = _json_or_empty(response)
            error_code = str(body.get("error", "")) if isinstance(body, dict) else ""
            logger.warning(
                "WHOOP code exchange failed: HTTP %d %s", response.status_code, error_code
            )
            raise UpstreamFailure(
                f"WHOOP token exchange failed (HTTP {response.status_code})",
                status=response.status_code,
            )

        data = _json_or_empty(response)
        if not isinstance(data, dict) or not data.get("access_token"):
            raise UpstreamFailure("WHOOP token response has no access token")
        return _tokens_from_response(data, fallback_refresh_token=None)

    async def refresh_token(self, refresh_token: str) -> OAuthTokens:
        """Exchange a refresh token for a new token pair.

        Raises:
            UpstreamFailure: ``transient=False`` when the grant is invalid or
                revoked (400/401/403, ``invalid_grant``), ``transient=True`` for
                rate limits, 5xx and network errors.
        """
        whoop = self._config.whoop
        form = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "scope": "offline",
        }

        async def _send() -> httpx.Response:
            return await self._request("POST", whoop.token_url, data=form)

        response = await send_with_retry(
            _send, self._config.retry, "WHOOP token refresh", sleep=self._sleep
        )

        if response.status_code >= 400:
            body = _json_or_empty(response)
            error_code = str(body.get("error", "")) if isinstance(body, dict) else ""
            permanent = (
                response.status_code in _PERMANENT_REFRESH_STATUSES
                or error_code == "invalid_grant"
            )
            logger.warning(
                "WHOOP token refresh failed: HTTP %d %s", response.status_code, error_code
            )
            raise UpstreamFailure(
                "WHOOP refresh token revoked or invalid"
                if permanent
                else f"WHOOP token refresh failed (HTTP {response.status_code})",
                transient=not permanent,
                status=response.status_code,
            )

        return _tokens_from_response(response.json(), fallback_refresh_token=refresh_token)

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    async def fetch_all(
        self,
        user_id: UUID,
        access_token: str,
        start: datetime,
        end: datetime,
    ) -> FetchedData:
        """Fetch cycles, recovery, sleep and workouts in [start, end), then
        validate and normalize each record.
        """
        result = FetchedData()
        collections = (
            ("cycle", _CYCLE_PATH, self.normalize_cycle, result.cycles),
            ("recovery", _RECOVERY_PATH, self.normalize_recovery, result.recovery),
            ("sleep", _SLEEP_PATH, self.normalize_sleep, result.sleep),
            ("workout", _WORKOUT_PATH, self.normalize_workout, result.workouts),
        )

        for data_type, path, normalize, target in collections:
            raw_records = await self.fetch_collection(path, access_token, start, end)
            schema = SCHEMAS[data_type]
            for raw in raw_records:
                try:
                    validated = schema.model_validate(raw)
                except ValidationError as exc:
                    result.rejected.append(
                        RejectedRecord(
                            data_type=data_type,
                            error_message=format_validation_error(exc),
                            raw_data=raw,
                        )
                    )
                    continue
                if getattr(validated, "score", None) is None or (
                    getattr(validated, "score_state", "SCORED") not in (None, "SCORED")
                ):
                    result.unscored += 1
                    continue
                target.append(normalize(raw, user_id))

        if result.rejected:
            logger.warning(
                "WHOOP: %d invalid records dropped for user %s (%s)",
                len(result.rejected), user_id, result.validation_errors,
            )
        logger.info(
            "WHOOP fetch for %s: %d cycles, %d recovery, %d sleep, %d workouts",
            user_id, len(result.cycles), len(result.recovery), len(result.sleep), len(result.workouts),
        )
        return result

    async def fetch_collection(
        self,
        path: str,
        access_token: str,
        start: datetime,
        end: datetime,
    ) -> list[dict[str, Any]]:
        """Follow ``next_token`` until the collection is exhausted."""
        records: list[dict[str, Any]] = []
        next_token: str | None = None
        seen_tokens: set[str] = set()

        for _ in range(_MAX_PAGES):
            params: dict[str, Any] = {
                "start": _iso(start),
                "end": _iso(end),
                "limit": self._config.whoop.page_size,
            }
            if next_token:
                params["nextToken"] = next_token

            page = await self._get(path, params=params, access_token=access_token)
            records.extend(page.get("records") or [])

            next_token = page.get("next_token") or page.get("nextToken")
            if not next_token or next_token in seen_tokens:
                break
            seen_tokens.add(next_token)
        else:
            logger.warning("WHOOP %s: stopped after %d pages", path, _MAX_PAGES)

        return records

    async def fetch_profile(self, access_token: str) -> UserProfileSnapshot | None:
        """Basic profile plus body measurements.

        Raises ``UpstreamFailure`` / ``ValidationError``; callers treat the
        profile as best-effort.
        """
        profile = WhoopProfile.model_validate(
            await self._get(_PROFILE_PATH, params=None, access_token=access_token)
        )
        body = WhoopBodyMeasurement.model_validate(
            await self._get(_BODY_PATH, params=None, access_token=access_token)
        )
        name = " ".join(p for p in (profile.first_name, profile.last_name) if p) or None
        return UserProfileSnapshot(
            external_user_id=str(profile.user_id),
            full_name=name,
            email=profile.email,
            height_cm=round(body.height_meter * 100) if body.height_meter else None,
            weight_kg=body.weight_kilogram,
            max_heart_rate=body.max_heart_rate,
        )

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    def normalize_cycle(self, raw: dict, user_id: UUID) -> CycleMetrics:
        """Convert a WHOOP cycle to CycleMetrics, dated by its start (UTC)."""
        score = raw.get("score") or {}
        start = self._parse_iso_datetime(raw.get("start"))
        kilojoule = self._safe_float(score.get("kilojoule"))
        return CycleMetrics(
            user_id=user_id,
            source_platform=self.SOURCE_ID,
            metric_date=start.date(),
            cycle_id=str(raw["id"]),
            start_time=start,
            end_time=self._parse_iso_datetime(raw.get("end")),
            timezone_offset=raw.get("timezone_offset"),
            strain_score=self._safe_float(score.get("strain")),
            kilojoule=kilojoule,
            calories_burned=(
                round(kilojoule * self._config.whoop.kilojoule_to_kcal)
                if kilojoule is not None
                else None
            ),
            avg_heart_rate=self._safe_int(score.get("average_heart_rate")),
            max_heart_rate=self._safe_int(score.get("max_heart_rate")),
            raw_data=raw,
        )

    def normalize_recovery(self, raw: dict, user_id: UUID) -> RecoveryMetrics:
        """Convert a WHOOP recovery record to RecoveryMetrics.

        Dated by ``created_at`` (UTC), which is when WHOOP scored the
        recovery on waking.
        """
        score = raw.get("score") or {}
        created = self._parse_iso_datetime(raw.get("created_at"))
        return RecoveryMetrics(
            user_id=user_id,
            source_platform=self.SOURCE_ID,
            metric_date=created.date(),
            recovery_score=self._safe_float(score.get("recovery_score")),
            hrv_rmssd=self._safe_float(score.get("hrv_rmssd_milli")),
            resting_heart_rate=self._safe_float(score.get("resting_heart_rate")),
            spo2_percentage=self._safe_float(score.get("spo2_percentage")),
            skin_temp_celsius=self._safe_float(score.get("skin_temp_celsius")),
            user_calibrating=bool(score.get("user_calibrating", False)),
            raw_data=raw,
        )

    def normalize_sleep(self, raw: dict, user_id: UUID) -> SleepMetrics:
        """Convert a WHOOP sleep record to SleepMetrics, dated by its start."""
        score = raw.get("score") or {}
        stages = score.get("stage_summary") or {}
        start = self._parse_iso_datetime(raw.get("start"))

        light_ms = stages.get("total_light_sleep_time_milli") or 0
        deep_ms = stages.get("total_slow_wave_sleep_time_milli") or 0
        rem_ms = stages.get("total_rem_sleep_time_milli") or 0

        performance = self._safe_float(score.get("sleep_performance_percentage"))

        return SleepMetrics(
            user_id=user_id,
            source_platform=self.SOURCE_ID,
            metric_date=start.date(),
            sleep_start=start,
            sleep_end=self._parse_iso_datetime(raw.get("end")),
            sleep_duration_minutes=round((light_ms + deep_ms + rem_ms) / 60000),
            sleep_stage_light_minutes=self._ms_to_minutes(stages.get("total_light_sleep_time_milli")),
            sleep_stage_deep_minutes=self._ms_to_minutes(stages.get("total_slow_wave_sleep_time_milli")),
            sleep_stage_rem_minutes=self._ms_to_minutes(stages.get("total_rem_sleep_time_milli")),
            sleep_stage_awake_minutes=self._ms_to_minutes(stages.get("total_awake_time_milli")),
            sleep_efficiency_percentage=self._safe_float(score.get("sleep_efficiency_percentage")),
            sleep_quality_score=round(performance) if performance is not None else None,
            sleep_consistency_percentage=self._safe_float(score.get("sleep_consistency_percentage")),
            respiratory_rate=self._safe_float(score.get("respiratory_rate")),
            disturbances_count=self._safe_int(stages.get("disturbance_count")),
            is_nap=bool(raw.get("nap", False)),
            raw_data=raw,
        )

    def normalize_workout(self, raw: dict, user_id: UUID) -> WorkoutMetrics:
        """Convert a WHOOP workout record to WorkoutMetrics."""
        score = raw.get("score") or {}
        start = self._parse_iso_datetime(raw.get("start"))
        end = self._parse_iso_datetime(raw.get("end"))

        duration = round((end - start).total_seconds() / 60) if start and end else None
        kilojoule = self._safe_float(score.get("kilojoule"))
        calories = (
            round(kilojoule * self._config.whoop.kilojoule_to_kcal)
            if kilojoule is not None
            else None
        )

        zones_raw = score.get("zone_durations") or {}
        zone_durations = {
            f"zone_{name}": self._ms_to_minutes(zones_raw.get(f"zone_{name}_milli"))
            for name in _ZONE_KEYS
            if zones_raw.get(f"zone_{name}_milli") is not None
        }

        sport_id = self._safe_int(raw.get("sport_id"))
        return WorkoutMetrics(
            user_id=user_id,
            source_platform=self.SOURCE_ID,
            metric_date=start.date(),
            workout_id=str(raw["id"]),
            start_time=start,
            end_time=end,
            activity_duration_minutes=duration,
            strain_score=self._safe_float(score.get("strain")),
            avg_heart_rate=self._safe_int(score.get("average_heart_rate")),
            max_heart_rate=self._safe_int(score.get("max_heart_rate")),
            calories_burned=calories,
            distance_meters=self._safe_float(score.get("distance_meter")),
            altitude_gain_meters=self._safe_float(score.get("altitude_gain_meter")),
            sport_id=sport_id,
            activity_type=map_sport(sport_id, raw.get("sport_name")),
            zone_durations=zone_durations,
            raw_data=raw,
        )

    # ------------------------------------------------------------------
    # Private HTTP helpers
    # ------------------------------------------------------------------

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        timeout = self._config.whoop.request_timeout_seconds
        if self._http_client:
            return await self._http_client.request(method, url, timeout=timeout, **kwargs)
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.request(method, url, **kwargs)

    async def _get(
        self, path: str, params: dict | None, access_token: str
    ) -> dict:
        """Authenticated GET against the WHOOP API, with retries.

        Raises:
            UpstreamFailure: 401 (``transient=False``, status 401), rate limit
                or 5xx after retries (``transient=True``), other 4xx.
        """
        url = f"{self._config.whoop.api_base_url}{path}"
        headers = {"Authorization": f"Bearer {access_token}"}

        async def _send() -> httpx.Response:
            return await self._request("GET", url, params=params, headers=headers)

        response = await send_with_retry(
            _send, self._config.retry, f"WHOOP GET {path}", sleep=self._sleep
        )

        status = response.status_code
        if status == 401:
            raise UpstreamFailure("WHOOP rejected the access token", status=401)
        if status == 429:
            raise UpstreamFailure("WHOOP rate limit exceeded", transient=True, status=429)
        if status >= 500:
            raise UpstreamFailure(
                f"WHOOP API error (HTTP {status})", transient=True, status=status
            )
        if status >= 400:
            raise UpstreamFailure(f"WHOOP API error (HTTP {status})", status=status)
        return response.json()


def _iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _tokens_from_response(data: dict, fallback_refresh_token: str | None) -> OAuthTokens:
    expires_in = int(data.get("expires_in", 3600))
    return OAuthTokens(
        access_token=data["access_token"],
        refresh_token=data.get("refresh_token", fallback_refresh_token),
        expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        token_type=data.get("token_type", "Bearer"),
    )


def _json_or_empty(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {}
