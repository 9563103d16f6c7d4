"""Athlete dashboard aggregate, built from ``daily_summaries``."""

from __future__ import annotations

import logging
import uuid
from datetime import date, timedelta
from typing import Any, Callable, Mapping, Sequence

from primeportal.errors import Err, Ok, Result, UpstreamFailure
from primeportal.models.dashboard import ChartPoint, DashboardMetrics, SleepDetail
from primeportal.services.supabase import DatabaseClient

logger = logging.getLogger("primeportal.queries.dashboard")

DASHBOARD_DAYS = 7

_SUMMARIES_SQL = """
    SELECT summary_date, avg_recovery_score, avg_hrv_rmssd, avg_resting_hr,
           total_strain, total_sleep_minutes, avg_sleep_quality_score
    FROM daily_summaries
    WHERE user_id = $1 AND summary_date >= $2
    ORDER BY summary_date DESC
    LIMIT $3
"""

_CONNECTIONS_SQL = """
    SELECT platform, last_sync_at FROM device_connections WHERE user_id = $1
"""

_LATEST_SLEEP_SQL = """
    SELECT metric_date, sleep_duration_minutes, sleep_stage_light_minutes,
           sleep_stage_deep_minutes, sleep_stage_rem_minutes,
           sleep_stage_awake_minutes, sleep_efficiency_percentage,
           sleep_quality_score, respiratory_rate, disturbances_count
    FROM sleep_metrics
    WHERE user_id = $1
    ORDER BY metric_date DESC
    LIMIT 1
"""


def _average(values: Sequence[Any]) -> float | None:
    valid = [float(v) for v in values if v is not None]
    if not valid:
        return None
    return sum(valid) / len(valid)


def _trend(latest: Any, average: float | None) -> float | None:
    """Percent change of ``latest`` against ``average``; None when either is 0/None."""
    if not latest or not average:
        return None
    return (float(latest) - average) / average * 100


def _first_positive(rows: Sequence[Mapping[str, Any]], column: str) -> Mapping[str, Any]:
    for row in rows:
        value = row[column]
        if value is not None and value > 0:
            return row
    return rows[0]


def _float(value: Any) -> float | None:
    return None if value is None else float(value)


def build_dashboard(
    summaries: Sequence[Mapping[str, Any]],
    connections: Sequence[Mapping[str, Any]],
    latest_sleep: Mapping[str, Any] | None,
) -> DashboardMetrics:
    """Assemble the dashboard from rows already read (newest summary first)."""
    if not summaries:
        return DashboardMetrics()

    latest = summaries[0]
    sleep_day = _first_positive(summaries, "total_sleep_minutes")
    hrv_day = _first_positive(summaries, "avg_hrv_rmssd")

    avg_recovery = _average([s["avg_recovery_score"] for s in summaries])
    avg_hrv = _average([s["avg_hrv_rmssd"] for s in summaries])
    avg_sleep = _average([s["total_sleep_minutes"] for s in summaries])

    chart = [
        ChartPoint(
            date=s["summary_date"],
            performance=float(s["avg_recovery_score"] or 0),
            stress=float(s["total_strain"] or 0),
        )
        for s in reversed(summaries)
    ]

    whoop = next((c for c in connections if c["platform"] == "whoop"), None)

    return DashboardMetrics(
        recovery_score=_float(latest["avg_recovery_score"]),
        hrv_rmssd=_float(hrv_day["avg_hrv_rmssd"]),
        resting_heart_rate=_float(hrv_day["avg_resting_hr"]),
        sleep_duration_minutes=sleep_day["total_sleep_minutes"],
        sleep_quality_score=_float(sleep_day["avg_sleep_quality_score"]),
        strain_score=_float(latest["total_strain"]),
        hrv_trend=_trend(hrv_day["avg_hrv_rmssd"], avg_hrv),
        recovery_trend=_trend(latest["avg_recovery_score"], avg_recovery),
        sleep_trend=_trend(sleep_day["total_sleep_minutes"], avg_sleep),
        chart_data=chart,
        last_sync=whoop["last_sync_at"] if whoop else None,
        has_data=True,
        connected_services=[c["platform"] for c in connections],
        latest_sleep_metrics=SleepDetail.model_validate(dict(latest_sleep))
        if latest_sleep
        else None,
    )


async def get_athlete_dashboard_data(
    client: DatabaseClient,
    user_id: uuid.UUID,
    today: Callable[[], date] = date.today,
) -> Result[DashboardMetrics]:
    """Latest values, 7-day trends and chart data for one athlete."""
    since = today() - timedelta(days=DASHBOARD_DAYS)
    try:
        summaries = await client.fetch(_SUMMARIES_SQL, user_id, since, DASHBOARD_DAYS)
        if not summaries:
            return Ok(DashboardMetrics())
        connections = await client.fetch(_CONNECTIONS_SQL, user_id)
        latest_sleep = await client.fetchrow(_LATEST_SLEEP_SQL, user_id)
    except UpstreamFailure as exc:
        logger.error("Dashboard query failed for %s: %s", user_id, exc.message)
        return Err(exc)

    return Ok(build_dashboard(summaries, connections, latest_sleep))
