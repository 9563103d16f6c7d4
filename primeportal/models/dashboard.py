"""Athlete dashboard response models."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import Field

from primeportal.models.base import PortalBase


class SleepDetail(PortalBase):
    """Latest row of ``sleep_metrics``, stage durations in minutes."""

    metric_date: date | None = None
    sleep_duration_minutes: int | None = None
    sleep_stage_light_minutes: int | None = None
    sleep_stage_deep_minutes: int | None = None
    sleep_stage_rem_minutes: int | None = None
    sleep_stage_awake_minutes: int | None = None
    sleep_efficiency_percentage: float | None = None
    sleep_quality_score: int | None = None
    respiratory_rate: float | None = None
    disturbances_count: int | None = None


class ChartPoint(PortalBase):
    date: date
    performance: float  # recovery score
    stress: float  # day strain


class DashboardMetrics(PortalBase):
    # Latest values
    recovery_score: float | None = None
    hrv_rmssd: float | None = None
    resting_heart_rate: float | None = None
    sleep_duration_minutes: int | None = None
    sleep_quality_score: float | None = None
    strain_score: float | None = None

    # Latest vs 7-day average, in percent
    hrv_trend: float | None = None
    recovery_trend: float | None = None
    sleep_trend: float | None = None

    chart_data: list[ChartPoint] = Field(default_factory=list, serialization_alias="chartData")

    last_sync: datetime | None = None
    has_data: bool = False
    connected_services: list[str] = Field(default_factory=list)

    latest_sleep_metrics: SleepDetail | None = Field(
        default=None, serialization_alias="latestSleepMetrics"
    )
