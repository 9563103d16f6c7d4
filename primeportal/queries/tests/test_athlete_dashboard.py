"""Tests for the athlete dashboard aggregate."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock

import pytest

from primeportal.errors import Err, Ok, UpstreamFailure
from primeportal.queries.athlete_dashboard import (
    build_dashboard,
    get_athlete_dashboard_data,
)

USER_ID = uuid.UUID("12345678-1234-5678-1234-567812345678")
TODAY = date(2026, 2, 23)
LAST_SYNC = datetime(2026, 2, 23, 6, 0, tzinfo=timezone.utc)


def summary(day: int, recovery, hrv, sleep, strain=10.0, quality=85, rhr=52) -> dict:
    return {
        "summary_date": date(2026, 2, day),
        "avg_recovery_score": recovery,
        "avg_hrv_rmssd": hrv,
        "avg_resting_hr": rhr,
        "total_strain": strain,
        "total_sleep_minutes": sleep,
        "avg_sleep_quality_score": quality,
    }


# Newest first, as the query orders them
SUMMARIES = [
    summary(23, 60, 50.0, 420, strain=12.5),
    summary(22, 50, 45.0, 300),
    summary(21, 40, 40.0, 180, strain=None),
]

CONNECTIONS = [{"platform": "whoop", "last_sync_at": LAST_SYNC}]

LATEST_SLEEP = {
    "metric_date": date(2026, 2, 22),
    "sleep_duration_minutes": 445,
    "sleep_stage_light_minutes": 225,
    "sleep_stage_deep_minutes": 105,
    "sleep_stage_rem_minutes": 115,
    "sleep_stage_awake_minutes": 30,
    "sleep_efficiency_percentage": 91.7,
    "sleep_quality_score": 98,
    "respiratory_rate": 16.1,
    "disturbances_count": 12,
}


def make_client(summaries=SUMMARIES, connections=CONNECTIONS, latest_sleep=LATEST_SLEEP):
    client = AsyncMock()
    client.fetch.side_effect = [summaries, connections]
    client.fetchrow.return_value = latest_sleep
    return client


class TestBuildDashboard:
    def test_latest_values(self) -> None:
        metrics = build_dashboard(SUMMARIES, CONNECTIONS, LATEST_SLEEP)

        assert metrics.has_data is True
        assert metrics.recovery_score == 60.0
        assert metrics.hrv_rmssd == 50.0
        assert metrics.resting_heart_rate == 52.0
        assert metrics.sleep_duration_minutes == 420
        assert metrics.strain_score == 12.5
        assert metrics.last_sync == LAST_SYNC
        assert metrics.connected_services == ["whoop"]

    def test_trends_against_average(self) -> None:
        metrics = build_dashboard(SUMMARIES, CONNECTIONS, LATEST_SLEEP)

        assert metrics.recovery_trend == pytest.approx(20.0)
        assert metrics.hrv_trend == pytest.approx(11.11, abs=0.01)
        assert metrics.sleep_trend == pytest.approx(40.0)

    def test_chart_oldest_first_with_zero_fill(self) -> None:
        metrics = build_dashboard(SUMMARIES, CONNECTIONS, LATEST_SLEEP)

        assert [p.date.day for p in metrics.chart_data] == [21, 22, 23]
        assert metrics.chart_data[0].stress == 0.0
        assert metrics.chart_data[-1].performance == 60.0

    def test_sleep_falls_back_to_last_positive_day(self) -> None:
        rows = [summary(23, 60, 50.0, 0), summary(22, 50, 45.0, 390, quality=77)]
        metrics = build_dashboard(rows, CONNECTIONS, None)

        assert metrics.sleep_duration_minutes == 390
        assert metrics.sleep_quality_score == 77.0

    def test_missing_latest_value_gives_no_trend(self) -> None:
        rows = [summary(23, None, 50.0, 420), summary(22, 50, 45.0, 300)]
        metrics = build_dashboard(rows, CONNECTIONS, None)

        assert metrics.recovery_score is None
        assert metrics.recovery_trend is None

    def test_no_whoop_connection(self) -> None:
        metrics = build_dashboard(SUMMARIES, [], None)

        assert metrics.last_sync is None
        assert metrics.connected_services == []
        assert metrics.latest_sleep_metrics is None

    def test_serialized_keys(self) -> None:
        body = build_dashboard(SUMMARIES, CONNECTIONS, LATEST_SLEEP).model_dump(by_alias=True)

        assert "chartData" in body
        assert body["latestSleepMetrics"]["sleep_stage_deep_minutes"] == 105
        assert body["recovery_score"] == 60.0


class TestGetAthleteDashboardData:
    async def test_returns_dashboard(self) -> None:
        client = make_client()

        result = await get_athlete_dashboard_data(client, USER_ID, today=lambda: TODAY)

        assert isinstance(result, Ok)
        assert result.value.has_data is True
        args = client.fetch.await_args_list[0].args
        assert args[1:] == (USER_ID, date(2026, 2, 16), 7)

    async def test_no_summaries_is_empty_dashboard(self) -> None:
        client = make_client(summaries=[])

        result = await get_athlete_dashboard_data(client, USER_ID, today=lambda: TODAY)

        assert isinstance(result, Ok)
        assert result.value.has_data is False
        assert result.value.chart_data == []
        assert result.value.recovery_score is None
        assert client.fetch.await_count == 1
        client.fetchrow.assert_not_awaited()

    async def test_database_failure_is_err(self) -> None:
        client = AsyncMock()
        client.fetch.side_effect = UpstreamFailure("Database request failed")

        result = await get_athlete_dashboard_data(client, USER_ID, today=lambda: TODAY)

        assert isinstance(result, Err)
        assert result.error.message == "Database request failed"
