"""Pydantic schemas for WHOOP API v2 records.

Records are validated before normalization; anything that fails is dropped,
counted and written to ``data_validation_errors`` by the sync store.  Bounds
mirror what the WHOOP app itself can report.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

ScoreState = Literal["SCORED", "PENDING_SCORE", "UNSCORABLE"]


class WhoopModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


# ---------- Cycle ----------


class CycleScore(WhoopModel):
    strain: float = Field(ge=0, le=21)
    kilojoule: float = Field(ge=0)
    average_heart_rate: int = Field(ge=30, le=220)
    max_heart_rate: int = Field(ge=30, le=220)


class WhoopCycle(WhoopModel):
    id: int | str
    user_id: int | str
    created_at: datetime | None = None
    updated_at: datetime | None = None
    start: datetime
    end: datetime | None = None
    timezone_offset: str | None = None
    score_state: ScoreState
    score: CycleScore | None = None


# ---------- Recovery ----------


class RecoveryScore(WhoopModel):
    user_calibrating: bool
    recovery_score: float = Field(ge=0, le=100)
    resting_heart_rate: float = Field(ge=30, le=200)
    hrv_rmssd_milli: float = Field(ge=0)
    spo2_percentage: float | None = Field(default=None, ge=0, le=100)
    skin_temp_celsius: float | None = Field(default=None, ge=-10, le=50)


class WhoopRecovery(WhoopModel):
    cycle_id: int = Field(gt=0)
    sleep_id: str
    user_id: int = Field(gt=0)
    created_at: datetime
    updated_at: datetime
    score_state: ScoreState
    score: RecoveryScore | None = None


# ---------- Sleep ----------


class SleepStageSummary(WhoopModel):
    total_in_bed_time_milli: int = Field(ge=0)
    total_awake_time_milli: int = Field(ge=0)
    total_no_data_time_milli: int = Field(ge=0)
    total_light_sleep_time_milli: int = Field(ge=0)
    total_slow_wave_sleep_time_milli: int = Field(ge=0)
    total_rem_sleep_time_milli: int = Field(ge=0)
    sleep_cycle_count: int = Field(ge=0)
    disturbance_count: int = Field(ge=0)


class SleepNeeded(WhoopModel):
    baseline_milli: int = Field(ge=0)
    need_from_sleep_debt_milli: int
    need_from_recent_strain_milli: int
    need_from_recent_nap_milli: int


class SleepScore(WhoopModel):
    stage_summary: SleepStageSummary
    sleep_needed: SleepNeeded | None = None
    respiratory_rate: float | None = Field(default=None, ge=5, le=40)
    sleep_performance_percentage: float | None = Field(default=None, ge=0, le=200)
    sleep_consistency_percentage: float | None = Field(default=None, ge=0, le=100)
    sleep_efficiency_percentage: float | None = Field(default=None, ge=0, le=100)


class WhoopSleep(WhoopModel):
    id: int | str
    user_id: int
    created_at: datetime
    updated_at: datetime
    start: datetime
    end: datetime
    timezone_offset: str
    nap: bool
    score_state: ScoreState
    score: SleepScore | None = None


# ---------- Workout ----------


class ZoneDurations(WhoopModel):
    zone_zero_milli: int | None = Field(default=None, ge=0)
    zone_one_milli: int | None = Field(default=None, ge=0)
    zone_two_milli: int | None = Field(default=None, ge=0)
    zone_three_milli: int | None = Field(default=None, ge=0)
    zone_four_milli: int | None = Field(default=None, ge=0)
    zone_five_milli: int | None = Field(default=None, ge=0)


class WorkoutScore(WhoopModel):
    strain: float | None = Field(default=None, ge=0, le=21)
    average_heart_rate: int | None = Field(default=None, ge=30, le=220)
    max_heart_rate: int | None = Field(default=None, ge=30, le=220)
    kilojoule: float | None = Field(default=None, ge=0)
    percent_recorded: float | None = Field(default=None, ge=0, le=100)
    distance_meter: float | None = Field(default=None, ge=0)
    altitude_gain_meter: float | None = None
    altitude_change_meter: float | None = None
    zone_durations: ZoneDurations | None = None


class WhoopWorkout(WhoopModel):
    id: int | str
    user_id: int | str
    created_at: datetime | None = None
    updated_at: datetime | None = None
    start: datetime
    end: datetime
    timezone_offset: str | None = None
    sport_id: int | None = None
    sport_name: str | None = None
    score_state: ScoreState | None = None
    score: WorkoutScore | None = None


# ---------- Profile ----------


class WhoopProfile(WhoopModel):
    user_id: int
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None


class WhoopBodyMeasurement(WhoopModel):
    height_meter: float | None = Field(default=None, gt=0, le=3)
    weight_kilogram: float | None = Field(default=None, gt=0, le=500)
    max_heart_rate: int | None = Field(default=None, ge=30, le=250)


SCHEMAS: dict[str, type[WhoopModel]] = {
    "cycle": WhoopCycle,
    "recovery": WhoopRecovery,
    "sleep": WhoopSleep,
    "workout": WhoopWorkout,
}


def format_validation_error(exc: ValidationError) -> str:
    """``path: message`` pairs joined with ``; ``."""
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
