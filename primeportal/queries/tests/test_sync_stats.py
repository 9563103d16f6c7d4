"""Tests for the sync monitoring aggregates."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

from primeportal.errors import Err, Ok, UpstreamFailure
from primeportal.queries.sync_stats import (
    get_athlete_sync_status,
    get_recent_sync_errors,
    get_sync_stats_by_period,
    get_sync_trend_data,
    sync_status_label,
)

NOW = datetime(2026, 2, 23, 12, 0, tzinfo=timezone.utc)
DOCTOR_ID = uuid.UUID("aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa")
ATHLETE_A = uuid.UUID("12345678-1234-5678-1234-567812345678")
ATHLETE_B = uuid.UUID("87654321-4321-8765-4321-876543218765")


def log(status: str, seconds: float | None = 10.0, platform: str = "whoop") -> dict:
    started = NOW - timedelta(hours=1)
    return {
        "status": status,
        "sync_started_at": started,
        "sync_completed_at": started + timedelta(seconds=seconds) if seconds is not None else None,
        "platform": platform,
    }


def error_row(**overrides) -> dict:
    row = {
        "id": uuid.uuid4(),
        "user_id": ATHLETE_A,
        "platform": "whoop",
        "error_message": "Rate limit reached. Please try again later.",
        "created_at": NOW - timedelta(hours=2),
        "full_name": "Ana Silva",
    }
    row.update(overrides)
    return row


def failing_client() -> AsyncMock:
    client = AsyncMock()
    client.fetch.side_effect = UpstreamFailure("Database request failed")
    return client


class TestSyncStatusLabel:
    def test_completed(self) -> None:
        assert sync_status_label("completed") == "success"

    def test_failed(self) -> None:
        assert sync_status_label("failed") == "failed"

    def test_never(self) -> None:
        assert sync_status_label(None) == "never"


class TestSyncStatsByPeriod:
    async def test_aggregates(self) -> None:
        client = AsyncMock()
        client.fetch.side_effect = [
            [log("completed", 10), log("completed", 20), log("failed", 4.5)],
            [error_row()],
        ]

        result = await get_sync_stats_by_period(client, days=7, now=lambda: NOW)

        assert isinstance(result, Ok)
        stats = result.value
        assert stats.total_syncs == 3
        assert stats.success_rate == 66.7
        assert stats.avg_duration == 11.5
        assert stats.by_platform == {"whoop": 3}
        assert len(stats.recent_errors) == 1
        assert stats.recent_errors[0].user_name == "Ana Silva"
        assert client.fetch.await_args_list[0].args[1] == NOW - timedelta(days=7)

    async def test_incomplete_logs_excluded_from_duration(self) -> None:
        client = AsyncMock()
        client.fetch.side_effect = [[log("completed", 30), log("failed", None)], []]

        result = await get_sync_stats_by_period(client, now=lambda: NOW)

        assert result.value.avg_duration == 30.0
        assert result.value.success_rate == 50.0

    async def test_no_logs(self) -> None:
        client = AsyncMock()
        client.fetch.side_effect = [[], []]

        result = await get_sync_stats_by_period(client, now=lambda: NOW)

        assert result.value.total_syncs == 0
        assert result.value.success_rate == 0.0
        assert result.value.avg_duration == 0.0
        assert result.value.by_platform == {}

    async def test_camel_case_output(self) -> None:
        client = AsyncMock()
        client.fetch.side_effect = [[log("completed")], []]

        result = await get_sync_stats_by_period(client, now=lambda: NOW)
        body = result.value.model_dump(by_alias=True)

        assert set(body) == {"successRate", "totalSyncs", "avgDuration", "byPlatform", "recentErrors"}

    async def test_failure_is_err(self) -> None:
        result = await get_sync_stats_by_period(failing_client(), now=lambda: NOW)
        assert isinstance(result, Err)


class TestAthleteSyncStatus:
    async def test_statuses_per_athlete(self) -> None:
        client = AsyncMock()
        client.fetch.return_value = [
            {"id": ATHLETE_A, "full_name": "Ana Silva", "email": "ana@example.com"},
            {"id": ATHLETE_B, "full_name": None, "email": None},
        ]
        client.fetchrow.side_effect = [
            {"sync_completed_at": NOW, "status": "completed", "platform": "whoop"},
            {"cycles": 7, "sleep": 8, "workouts": 3},
            None,
            {"cycles": 0, "sleep": 0, "workouts": 0},
        ]

        result = await get_athlete_sync_status(client, DOCTOR_ID, now=lambda: NOW)

        assert isinstance(result, Ok)
        first, second = result.value
        assert first.sync_status == "success"
        assert first.last_sync_at == NOW
        assert (first.cycles_count, first.sleep_count, first.workouts_count) == (7, 8, 3)
        assert second.full_name == "Unknown"
        assert second.email == ""
        assert second.sync_status == "never"
        assert second.last_sync_at is None
        assert second.platform == "whoop"
        assert client.fetch.await_args.args[1] == DOCTOR_ID

    async def test_no_athletes(self) -> None:
        client = AsyncMock()
        client.fetch.return_value = []

        result = await get_athlete_sync_status(client, DOCTOR_ID, now=lambda: NOW)

        assert result.value == []
        client.fetchrow.assert_not_awaited()

    async def test_failure_is_err(self) -> None:
        result = await get_athlete_sync_status(failing_client(), DOCTOR_ID, now=lambda: NOW)
        assert isinstance(result, Err)


class TestSyncTrendData:
    async def test_days_filled_oldest_first(self) -> None:
        client = AsyncMock()
        client.fetch.return_value = [
            {"created_at": NOW - timedelta(days=2), "status": "completed"},
            {"created_at": NOW - timedelta(days=2), "status": "failed"},
            {"created_at": NOW, "status": "completed"},
            {"created_at": NOW, "status": "completed"},
        ]

        result = await get_sync_trend_data(client, days=3, now=lambda: NOW)

        points = result.value
        assert [p.date.isoformat() for p in points] == ["2026-02-21", "2026-02-22", "2026-02-23"]
        assert [(p.success, p.failed) for p in points] == [(1, 1), (0, 0), (2, 0)]

    async def test_length_matches_days(self) -> None:
        client = AsyncMock()
        client.fetch.return_value = []

        result = await get_sync_trend_data(client, days=30, now=lambda: NOW)

        assert len(result.value) == 30
        assert all(p.success == 0 and p.failed == 0 for p in result.value)

    async def test_failure_is_err(self) -> None:
        result = await get_sync_trend_data(failing_client(), now=lambda: NOW)
        assert isinstance(result, Err)


class TestRecentSyncErrors:
    async def test_entries(self) -> None:
        client = AsyncMock()
        client.fetch.return_value = [
            error_row(email="ana@example.com", sync_started_at=NOW),
            error_row(full_name=None, error_message=None),
        ]

        result = await get_recent_sync_errors(client, limit=5)

        first, second = result.value
        assert first.user_email == "ana@example.com"
        assert first.sync_started_at == NOW
        assert second.user_name == "Unknown"
        assert second.error_message == "No error message"
        assert client.fetch.await_args.args[-1] == 5

    async def test_failure_is_err(self) -> None:
        result = await get_recent_sync_errors(failing_client())
        assert isinstance(result, Err)
