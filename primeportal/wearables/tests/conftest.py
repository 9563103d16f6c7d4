"""Shared fixtures, fakes and WHOOP API samples for wearable sync tests."""

from __future__ import annotations

import asyncio
import copy
import json
from collections import Counter
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Sequence
from uuid import UUID

import pytest

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
from primeportal.wearables.config_loader import SyncConfig, load_sync_config
from primeportal.wearables.sync.alerts import Alert, AlertThreshold
from primeportal.wearables.sync.store import DeviceConnection, UserWrite
from primeportal.wearables.sync.summaries import DailySummary, build_daily_summary

# Fixtures directory
FIXTURES_DIR = Path(__file__).parent / "fixtures"

# Canonical test users
TEST_USER_ID = UUID("12345678-1234-5678-1234-567812345678")
OTHER_USER_ID = UUID("87654321-4321-8765-4321-876543218765")
TEST_DATE = date(2026, 2, 23)


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sync_config() -> SyncConfig:
    """Load the real sync config for tests."""
    return load_sync_config()


async def no_sleep(delay: float) -> None:
    return None


# ---------------------------------------------------------------------------
# JSON fixture loaders
# ---------------------------------------------------------------------------


def load_fixture(name: str) -> dict:
    return json.loads((FIXTURES_DIR / name).read_text())


@pytest.fixture
def whoop_cycle_raw() -> dict:
    return load_fixture("whoop_cycle.json")


@pytest.fixture
def whoop_recovery_raw() -> dict:
    return load_fixture("whoop_recovery.json")


@pytest.fixture
def whoop_sleep_raw() -> dict:
    return load_fixture("whoop_sleep.json")


@pytest.fixture
def whoop_workout_raw() -> dict:
    return load_fixture("whoop_workout.json")


# ---------------------------------------------------------------------------
# Record builders
# ---------------------------------------------------------------------------


def make_cycle(user_id: UUID = TEST_USER_ID, day: date = TEST_DATE, strain: float | None = 14.2) -> CycleMetrics:
    return CycleMetrics(
        user_id=user_id,
        source_platform="whoop",
        metric_date=day,
        cycle_id=f"c-{day.isoformat()}",
        strain_score=strain,
        kilojoule=8288.3,
        calories_burned=1981,
    )


def make_recovery(user_id: UUID = TEST_USER_ID, day: date = TEST_DATE, score: float | None = 60.0) -> RecoveryMetrics:
    return RecoveryMetrics(
        user_id=user_id,
        source_platform="whoop",
        metric_date=day,
        recovery_score=score,
        hrv_rmssd=45.0,
        resting_heart_rate=52.0,
    )


def make_sleep(
    user_id: UUID = TEST_USER_ID,
    day: date = TEST_DATE,
    minutes: int = 450,
    is_nap: bool = False,
) -> SleepMetrics:
    return SleepMetrics(
        user_id=user_id,
        source_platform="whoop",
        metric_date=day,
        sleep_duration_minutes=minutes,
        sleep_quality_score=88,
        is_nap=is_nap,
    )


def make_workout(
    workout_id: str,
    user_id: UUID = TEST_USER_ID,
    day: date = TEST_DATE,
    strain: float | None = 10.0,
) -> WorkoutMetrics:
    return WorkoutMetrics(
        user_id=user_id,
        source_platform="whoop",
        metric_date=day,
        workout_id=workout_id,
        strain_score=strain,
        calories_burned=400,
    )


def fetched_for(user_id: UUID) -> FetchedData:
    """Two days of data with a rescored cycle, a duplicate recovery and a nap."""
    yesterday = TEST_DATE - timedelta(days=1)
    return FetchedData(
        cycles=[make_cycle(user_id, TEST_DATE, 11.0), make_cycle(user_id, TEST_DATE, 14.2)],
        recovery=[
            make_recovery(user_id, yesterday, 55.0),
            make_recovery(user_id, TEST_DATE, 40.0),
            make_recovery(user_id, TEST_DATE, 62.0),
        ],
        sleep=[
            make_sleep(user_id, TEST_DATE, 470),
            make_sleep(user_id, TEST_DATE, 35, is_nap=True),
        ],
        workouts=[make_workout("w-1", user_id), make_workout("w-2", user_id)],
    )


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


def valid_tokens() -> OAuthTokens:
    return OAuthTokens(
        access_token="access-token",
        refresh_token="refresh-token",
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
    )


class InMemorySyncStore:
    """SyncStore kept in dicts, with the same conflict keys as the database."""

    def __init__(self) -> None:
        self.connections: dict[UUID, DeviceConnection] = {}
        self.tokens: dict[UUID, OAuthTokens] = {}
        self.tables: dict[str, dict[tuple, dict]] = {
            "cycle_metrics": {},
            "recovery_metrics": {},
            "sleep_metrics": {},
            "workout_metrics": {},
        }
        self.summaries: dict[tuple[UUID, date], DailySummary] = {}
        self.sync_logs: list[dict] = []
        self.rejected: list[RejectedRecord] = []
        self.profiles: dict[UUID, UserProfileSnapshot] = {}
        self.deactivated: list[tuple[UUID, bool]] = []
        self.oauth_states: dict[str, tuple[UUID, datetime]] = {}
        self.roles: dict[UUID, str] = {}
        self.doctors: list[UUID] = []
        self.relationships: set[tuple[UUID, UUID]] = set()
        self.thresholds: list[AlertThreshold] = []
        self.alerts: dict[tuple, Alert] = {}
        self.fail_list_users = False

    def add_user(self, user_id: UUID, initial_sync_completed: bool = False) -> None:
        self.connections[user_id] = DeviceConnection(
            user_id=user_id,
            platform="whoop",
            initial_sync_completed=initial_sync_completed,
        )
        self.tokens[user_id] = valid_tokens()

    def row_count(self, table: str) -> int:
        return len(self.tables[table])

    async def list_active_users(self, platform: str) -> list[UUID]:
        if self.fail_list_users:
            raise UpstreamFailure("Database request failed")
        return [
            c.user_id
            for c in self.connections.values()
            if c.is_active and c.platform == platform
        ]

    async def get_connection(self, user_id: UUID, platform: str) -> DeviceConnection | None:
        return self.connections.get(user_id)

    async def get_tokens(self, user_id: UUID) -> OAuthTokens | None:
        return self.tokens.get(user_id)

    async def save_tokens(self, user_id: UUID, tokens: OAuthTokens) -> None:
        self.tokens[user_id] = tokens

    async def deactivate_connection(
        self, user_id: UUID, platform: str, delete_tokens: bool = False
    ) -> None:
        if user_id in self.connections:
            self.connections[user_id].is_active = False
        if delete_tokens:
            self.tokens.pop(user_id, None)
        self.deactivated.append((user_id, delete_tokens))

    async def activate_connection(self, user_id: UUID, platform: str) -> None:
        connection = self.connections.get(user_id)
        if connection is None:
            self.connections[user_id] = DeviceConnection(user_id=user_id, platform=platform)
        else:
            connection.is_active = True

    async def save_oauth_state(self, state: str, user_id: UUID) -> None:
        self.oauth_states[state] = (user_id, datetime.now(timezone.utc))

    async def consume_oauth_state(self, state: str, max_age: timedelta) -> UUID | None:
        entry = self.oauth_states.pop(state, None)
        if entry is None:
            return None
        user_id, created_at = entry
        if datetime.now(timezone.utc) - created_at >= max_age:
            return None
        return user_id

    async def get_active_thresholds(self, patient_id: UUID) -> list[AlertThreshold]:
        return [t for t in self.thresholds if t.patient_id == patient_id]

    async def get_day_metric_values(self, user_id: UUID, metric_date: date) -> dict[str, float]:
        def rows(table: str) -> list[dict]:
            return [
                r for r in self.tables[table].values()
                if r["user_id"] == user_id and r["metric_date"] == metric_date
            ]

        values: dict[str, float] = {}
        for row in rows("recovery_metrics")[:1]:
            for name in ("recovery_score", "hrv_rmssd", "resting_heart_rate"):
                if row.get(name) is not None:
                    values[name] = float(row[name])
        for row in [r for r in rows("sleep_metrics") if not r["is_nap"]][:1]:
            for name in ("sleep_duration_minutes", "sleep_efficiency_percentage"):
                if row.get(name) is not None:
                    values[name] = float(row[name])
        strains = [r["strain_score"] for r in rows("workout_metrics") if r["strain_score"] is not None]
        if strains:
            values["strain_score"] = float(sum(strains))
        return values

    async def create_alerts(self, alerts: Sequence[Alert]) -> int:
        created = 0
        for alert in alerts:
            key = (alert.patient_id, alert.doctor_id, alert.metric_name, alert.metric_date, alert.priority)
            if key not in self.alerts:
                self.alerts[key] = alert
                created += 1
        return created

    async def create_thresholds(self, thresholds: Sequence[AlertThreshold]) -> None:
        self.thresholds.extend(thresholds)

    async def get_user_role(self, user_id: UUID) -> str | None:
        return self.roles.get(user_id)

    async def first_doctor_id(self) -> UUID | None:
        return self.doctors[0] if self.doctors else None

    async def relationship_exists(self, doctor_id: UUID, patient_id: UUID) -> bool:
        return (doctor_id, patient_id) in self.relationships

    async def create_relationship(self, doctor_id: UUID, patient_id: UUID) -> None:
        self.relationships.add((doctor_id, patient_id))

    async def write_user_sync(self, write: UserWrite) -> int:
        for record in write.records:
            self.tables[record.TABLE][record.key] = record.to_row()
        for day in write.touched_dates:
            rows = {
                table: [
                    r for r in self.tables[table].values()
                    if r["user_id"] == write.user_id and r["metric_date"] == day
                ]
                for table in ("recovery_metrics", "sleep_metrics", "workout_metrics")
            }
            self.summaries[(write.user_id, day)] = build_daily_summary(
                write.user_id,
                day,
                (rows["recovery_metrics"] or [None])[0],
                (rows["sleep_metrics"] or [None])[0],
                rows["workout_metrics"],
            )
        connection = self.connections[write.user_id]
        connection.last_sync_at = write.synced_at
        connection.initial_sync_completed = True
        return len(write.records)

    async def log_validation_errors(
        self, user_id: UUID, platform: str, rejected: Sequence[RejectedRecord]
    ) -> None:
        self.rejected.extend(rejected)

    async def save_profile(self, user_id: UUID, profile: UserProfileSnapshot) -> None:
        self.profiles[user_id] = profile

    async def log_sync(self, user_id, platform, started_at, completed_at, status, records_synced, error_message=None) -> None:
        self.sync_logs.append(
            {
                "user_id": user_id,
                "platform": platform,
                "status": status,
                "records_synced": records_synced,
                "error_message": error_message,
            }
        )


class FakeAdapter(WearableAdapter):
    """Returns canned FetchedData per user, or raises queued errors first.

    ``fetch_delay`` makes every fetch sleep first, like a hung WHOOP API.
    """

    SOURCE_ID = "whoop"
    DISPLAY_NAME = "Fake WHOOP"

    def __init__(
        self,
        data: dict[UUID, FetchedData] | None = None,
        errors: dict[UUID, list[Exception]] | None = None,
        fetch_delay: float = 0.0,
    ) -> None:
        self.data = data or {}
        self.errors = {k: list(v) for k, v in (errors or {}).items()}
        self.fetch_delay = fetch_delay
        self.calls: Counter = Counter()
        self.windows: list[tuple[datetime, datetime]] = []
        self.exchanged: list[tuple[str, str]] = []
        self.exchange_error: Exception | None = None

    def authorization_url(self, state: str, redirect_uri: str) -> str:
        return f"https://whoop.test/oauth?state={state}"

    async def authenticate(self, auth_code: str, redirect_uri: str) -> OAuthTokens:
        self.exchanged.append((auth_code, redirect_uri))
        if self.exchange_error is not None:
            raise self.exchange_error
        return valid_tokens()

    async def refresh_token(self, refresh_token: str) -> OAuthTokens:
        return valid_tokens()

    async def fetch_all(self, user_id, access_token, start, end) -> FetchedData:
        self.calls[user_id] += 1
        self.windows.append((start, end))
        if self.fetch_delay:
            await asyncio.sleep(self.fetch_delay)
        queued = self.errors.get(user_id)
        if queued:
            raise queued.pop(0)
        return copy.deepcopy(self.data.get(user_id, FetchedData()))

    def normalize_cycle(self, raw, user_id):
        raise NotImplementedError

    def normalize_recovery(self, raw, user_id):
        raise NotImplementedError

    def normalize_sleep(self, raw, user_id):
        raise NotImplementedError

    def normalize_workout(self, raw, user_id):
        raise NotImplementedError


@pytest.fixture
def store() -> InMemorySyncStore:
    return InMemorySyncStore()
