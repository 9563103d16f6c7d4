"""Per-day roll-up of the metric tables into ``daily_summaries``.

The dashboard reads only ``daily_summaries``, so every date a sync touches is
recomputed from what is stored for that date (not just from the batch that
was written), inside the same transaction as the metric upserts.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Mapping, Sequence
from uuid import UUID

from primeportal.wearables.sync.dedup import build_upsert_query

# Number of metric families a complete day has: recovery, sleep, workouts
_METRIC_FAMILIES = 3


@dataclass
class DailySummary:
    user_id: UUID
    summary_date: date
    avg_recovery_score: float | None = None
    avg_hrv_rmssd: float | None = None
    avg_resting_hr: float | None = None
    total_strain: float | None = None
    total_sleep_minutes: int | None = None
    avg_sleep_quality_score: float | None = None
    total_calories: int | None = None
    total_workouts: int = 0
    data_completeness: float = 0.0
    sources: list[str] = field(default_factory=list)

    def to_row(self) -> dict[str, Any]:
        return asdict(self)


SUMMARY_COLUMNS = list(DailySummary.__dataclass_fields__)

UPSERT_DAILY_SUMMARY = build_upsert_query(
    "daily_summaries",
    SUMMARY_COLUMNS,
    ["user_id", "summary_date"],
)

# Main sleep preferred over naps, then the longest
SELECT_DAY_METRICS = {
    "recovery": (
        "SELECT recovery_score, hrv_rmssd, resting_heart_rate, source_platform "
        "FROM recovery_metrics WHERE user_id = $1 AND metric_date = $2 "
        "ORDER BY recovery_score DESC NULLS LAST LIMIT 1"
    ),
    "sleep": (
        "SELECT sleep_duration_minutes, sleep_quality_score, source_platform "
        "FROM sleep_metrics WHERE user_id = $1 AND metric_date = $2 "
        "ORDER BY is_nap ASC, sleep_duration_minutes DESC NULLS LAST LIMIT 1"
    ),
    "workouts": (
        "SELECT strain_score, calories_burned, source_platform "
        "FROM workout_metrics WHERE user_id = $1 AND metric_date = $2"
    ),
}


def build_daily_summary(
    user_id: UUID,
    summary_date: date,
    recovery: Mapping[str, Any] | None,
    sleep: Mapping[str, Any] | None,
    workouts: Sequence[Mapping[str, Any]],
) -> DailySummary:
    """Combine one day's stored rows into a DailySummary.

    ``data_completeness`` is the share of metric families present (0..1).
    Workout totals are None when there were no workouts.
    """
    recovery_score = recovery.get("recovery_score") if recovery else None
    sleep_minutes = sleep.get("sleep_duration_minutes") if sleep else None

    present = sum(
        [recovery_score is not None, sleep_minutes is not None, len(workouts) > 0]
    )

    sources: list[str] = []
    for row in [recovery, sleep, *workouts]:
        platform = row.get("source_platform") if row else None
        if platform and platform not in sources:
            sources.append(platform)

    total_strain = None
    total_calories = None
    if workouts:
        total_strain = round(sum(float(w.get("strain_score") or 0) for w in workouts), 2)
        total_calories = sum(int(w.get("calories_burned") or 0) for w in workouts)

    return DailySummary(
        user_id=user_id,
        summary_date=summary_date,
        avg_recovery_score=_float(recovery_score),
        avg_hrv_rmssd=_float(recovery.get("hrv_rmssd")) if recovery else None,
        avg_resting_hr=_float(recovery.get("resting_heart_rate")) if recovery else None,
        total_strain=total_strain,
        total_sleep_minutes=sleep_minutes,
        avg_sleep_quality_score=_float(sleep.get("sleep_quality_score")) if sleep else None,
        total_calories=total_calories,
        total_workouts=len(workouts),
        data_completeness=round(present / _METRIC_FAMILIES, 4),
        sources=sources,
    )


def _float(value: Any) -> float | None:
    return None if value is None else float(value)

