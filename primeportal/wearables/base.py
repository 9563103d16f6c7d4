"""Base classes and normalized metric records for wearable sync.

Every device adapter subclasses WearableAdapter and turns validated upstream
records into the normalized shapes below.  These types are what the
sync store writes and what the daily summaries are computed from.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, ClassVar
from uuid import UUID

logger = logging.getLogger("primeportal.wearables")


# ---------------------------------------------------------------------------
# OAuth / Auth tokens
# ---------------------------------------------------------------------------


@dataclass
class OAuthTokens:
    """OAuth token pair returned after a refresh.

    Attributes:
        access_token:  Bearer token for API calls.
        refresh_token: Long-lived token used to obtain a new access_token.
        expires_at:    UTC datetime when the access_token expires.
        token_type:    Token type, typically "Bearer".
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    token_type: str = "Bearer"


# ---------------------------------------------------------------------------
# Normalized metric records
# ---------------------------------------------------------------------------


class MetricRecord:
    """Shared behaviour of the normalized records.

    Subclasses are dataclasses that declare the destination table, the
    columns of its UNIQUE constraint, and which columns hold JSON.
    """

    TABLE: ClassVar[str]
    CONFLICT_COLUMNS: ClassVar[tuple[str, ...]]
    JSON_COLUMNS: ClassVar[tuple[str, ...]] = ("raw_data",)

    user_id: UUID
    source_platform: str
    metric_date: date

    @property
    def key(self) -> tuple:
        """Value of the conflict target, used to dedupe before writing."""
        return tuple(getattr(self, col) for col in self.CONFLICT_COLUMNS)

    def to_row(self) -> dict[str, Any]:
        """Column → value mapping ready for asyncpg, JSON columns serialized."""
        row: dict[str, Any] = {}
        for name in self.__dataclass_fields__:  # type: ignore[attr-defined]
            value = getattr(self, name)
            if name in self.JSON_COLUMNS:
                value = json.dumps(value, default=str)
            row[name] = value
        return row


@dataclass
class RecoveryMetrics(MetricRecord):
    """One day's recovery reading.

    Attributes:
        user_id:            Supabase auth user UUID.
        source_platform:    Provider slug ('whoop').
        metric_date:        UTC date the recovery was created.
        recovery_score:     0–100.
        hrv_rmssd:          RMSSD in milliseconds.
        resting_heart_rate: bpm.
        spo2_percentage:    Blood oxygen, 0–100 (4.0 straps and later).
        skin_temp_celsius:  Skin temperature.
        user_calibrating:   True during the first days after a user joins.
        raw_data:           Verbatim upstream record.
    """

    TABLE: ClassVar[str] = "recovery_metrics"
    CONFLICT_COLUMNS: ClassVar[tuple[str, ...]] = ("user_id", "source_platform", "metric_date")

    user_id: UUID
    source_platform: str
    metric_date: date
    recovery_score: float | None = None
    hrv_rmssd: float | None = None
    resting_heart_rate: float | None = None
    spo2_percentage: float | None = None
    skin_temp_celsius: float | None = None
    user_calibrating: bool = False
    raw_data: dict = field(default_factory=dict)


@dataclass
class SleepMetrics(MetricRecord):
    """A sleep session, dated by the UTC date it started.

    Durations are whole minutes.  ``sleep_duration_minutes`` is light + deep +
    REM, i.e. time actually asleep.

    Attributes:
        sleep_quality_score:          WHOOP sleep performance %, rounded.
        sleep_efficiency_percentage:  Asleep / in bed.
        sleep_consistency_percentage: Regularity of sleep timing.
        disturbances_count:           Wake events.
        is_nap:                       True for daytime naps.
    """

    TABLE: ClassVar[str] = "sleep_metrics"
    CONFLICT_COLUMNS: ClassVar[tuple[str, ...]] = ("user_id", "source_platform", "metric_date")

    user_id: UUID
    source_platform: str
    metric_date: date
    sleep_start: datetime | None = None
    sleep_end: datetime | None = None
    sleep_duration_minutes: int | None = None
    sleep_stage_light_minutes: int | None = None
    sleep_stage_deep_minutes: int | None = None
    sleep_stage_rem_minutes: int | None = None
    sleep_stage_awake_minutes: int | None = None
    sleep_efficiency_percentage: float | None = None
    sleep_quality_score: int | None = None
    sleep_consistency_percentage: float | None = None
    respiratory_rate: float | None = None
    disturbances_count: int | None = None
    is_nap: bool = False
    raw_data: dict = field(default_factory=dict)


@dataclass
class WorkoutMetrics(MetricRecord):
    """A workout session.

    Several workouts can fall on one date, so the external workout id is part
    of the conflict target.

    Attributes:
        workout_id:                External id from the device API.
        activity_duration_minutes: end - start, rounded.
        calories_burned:           kcal, from kilojoules.
        zone_durations:            Heart-rate zone name → minutes.
    """

    TABLE: ClassVar[str] = "workout_metrics"
    CONFLICT_COLUMNS: ClassVar[tuple[str, ...]] = ("user_id", "source_platform", "workout_id")
    JSON_COLUMNS: ClassVar[tuple[str, ...]] = ("raw_data", "zone_durations")

    user_id: UUID
    source_platform: str
    metric_date: date
    workout_id: str
    start_time: datetime | None = None
    end_time: datetime | None = None
    activity_duration_minutes: int | None = None
    strain_score: float | None = None
    avg_heart_rate: int | None = None
    max_heart_rate: int | None = None
    calories_burned: int | None = None
    distance_meters: float | None = None
    altitude_gain_meters: float | None = None
    sport_id: int | None = None
    activity_type: str = "other"
    zone_durations: dict[str, int] = field(default_factory=dict)
    raw_data: dict = field(default_factory=dict)


@dataclass
class CycleMetrics(MetricRecord):
    """One physiological cycle (waking to waking) and its day strain.

    Dated by the UTC date the cycle started.  ``end_time`` is None while the
    cycle is still open; later syncs overwrite it as strain accumulates.

    Attributes:
        cycle_id:        External id from the device API.
        strain_score:    Day strain, 0–21.
        calories_burned: kcal, from kilojoules.
    """

    TABLE: ClassVar[str] = "cycle_metrics"
    CONFLICT_COLUMNS: ClassVar[tuple[str, ...]] = ("user_id", "source_platform", "metric_date")

    user_id: UUID
    source_platform: str
    metric_date: date
    cycle_id: str
    start_time: datetime | None = None
    end_time: datetime | None = None
    timezone_offset: str | None = None
    strain_score: float | None = None
    kilojoule: float | None = None
    calories_burned: int | None = None
    avg_heart_rate: int | None = None
    max_heart_rate: int | None = None
    raw_data: dict = field(default_factory=dict)


@dataclass
class UserProfileSnapshot:
    """Basic profile and body measurements from the device account."""

    external_user_id: str | None = None
    full_name: str | None = None
    email: str | None = None
    height_cm: float | None = None
    weight_kg: float | None = None
    max_heart_rate: int | None = None


@dataclass
class RejectedRecord:
    """An upstream record that failed schema validation."""

    data_type: str  # 'cycle' | 'recovery' | 'sleep' | 'workout'
    error_message: str
    raw_data: dict


@dataclass
class FetchedData:
    """Everything one sync pulled for a user, already normalized.

    Attributes:
        cycles / recovery / sleep / workouts: Normalized, not yet deduplicated.
        rejected:                    Records dropped by validation.
        unscored:                    Records skipped because WHOOP has not
                                     scored them yet (picked up next sync).
    """

    cycles: list[CycleMetrics] = field(default_factory=list)
    recovery: list[RecoveryMetrics] = field(default_factory=list)
    sleep: list[SleepMetrics] = field(default_factory=list)
    workouts: list[WorkoutMetrics] = field(default_factory=list)
    rejected: list[RejectedRecord] = field(default_factory=list)
    unscored: int = 0

    @property
    def validation_errors(self) -> dict[str, int]:
        counts = {"cycle": 0, "recovery": 0, "sleep": 0, "workout": 0}
        for record in self.rejected:
            counts[record.data_type] = counts.get(record.data_type, 0) + 1
        return counts


# ---------------------------------------------------------------------------
# Abstract base adapter
# ---------------------------------------------------------------------------


class WearableAdapter(ABC):
    """Abstract base class for wearable device adapters.

    Subclasses must implement:
        - authorization_url()
        - authenticate()
        - refresh_token()
        - fetch_all()
        - normalize_cycle()
        - normalize_recovery()
        - normalize_sleep()
        - normalize_workout()
    """

    #: Unique slug stored in ``source_platform`` / ``device_connections.platform``.
    SOURCE_ID: str = "unknown"

    #: Human-readable name for logging.
    DISPLAY_NAME: str = "Unknown Device"

    @abstractmethod
    def authorization_url(self, state: str, redirect_uri: str) -> str:
        """Consent page URL the athlete is redirected to."""

    @abstractmethod
    async def authenticate(self, auth_code: str, redirect_uri: str) -> OAuthTokens:
        """Exchange an OAuth authorization code for tokens."""

    @abstractmethod
    async def refresh_token(self, refresh_token: str) -> OAuthTokens:
        """Exchange a refresh token for a new token pair."""

    @abstractmethod
    async def fetch_all(
        self,
        user_id: UUID,
        access_token: str,
        start: datetime,
        end: datetime,
    ) -> FetchedData:
        """Fetch, validate and normalize every collection in [start, end)."""

    @abstractmethod
    def normalize_cycle(self, raw: dict, user_id: UUID) -> CycleMetrics:
        """Pure conversion of one validated cycle record."""

    @abstractmethod
    def normalize_recovery(self, raw: dict, user_id: UUID) -> RecoveryMetrics:
        """Pure conversion of one validated recovery record."""

    @abstractmethod
    def normalize_sleep(self, raw: dict, user_id: UUID) -> SleepMetrics:
        """Pure conversion of one validated sleep record."""

    @abstractmethod
    def normalize_workout(self, raw: dict, user_id: UUID) -> WorkoutMetrics:
        """Pure conversion of one validated workout record."""

    # ------------------------------------------------------------------
    # Optional overrides
    # ------------------------------------------------------------------

    async def fetch_profile(self, access_token: str) -> UserProfileSnapshot | None:
        """Fetch the account profile and body measurements if supported.

        Default returns None.
        """
        return None

    # ------------------------------------------------------------------
    # Shared helpers — available to all adapters
    # ------------------------------------------------------------------

    @staticmethod
    def _safe_int(value: object) -> int | None:
        """Safely coerce a value to int, returning None on failure."""
        if value is None:
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _safe_float(value: object) -> float | None:
        """Safely coerce a value to float, returning None on failure."""
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _ms_to_minutes(value: object) -> int | None:
        if value is None:
            return None
        try:
            return round(float(value) / 60000)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _parse_iso_datetime(value: str | None) -> datetime | None:
        """Parse an ISO-8601 datetime string to an aware UTC datetime.

        Naive strings are assumed to be UTC.  Returns None if the value is
        None or unparseable.
        """
        if not value:
            return None
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except (ValueError, AttributeError):
            logger.warning("Could not parse datetime string: %r", value)
            return None
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
