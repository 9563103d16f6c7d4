"""Persistence used by the sync orchestrator.

``SyncStore`` is the seam between the orchestrator and Postgres.
``PostgresSyncStore`` implements it on a service-role ``DatabaseClient``;
tests use an in-memory implementation.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Protocol, Sequence
from uuid import UUID

from primeportal.errors import ConfigurationError
from primeportal.services.supabase import DatabaseClient
from primeportal.wearables.base import (
    CycleMetrics,
    MetricRecord,
    OAuthTokens,
    RecoveryMetrics,
    RejectedRecord,
    SleepMetrics,
    UserProfileSnapshot,
    WorkoutMetrics,
)
from primeportal.wearables.sync.alerts import Alert, AlertStore, AlertThreshold
from primeportal.wearables.sync.assignment import AssignmentStore
from primeportal.wearables.sync.dedup import upsert_statement
from primeportal.wearables.sync.summaries import (
    SELECT_DAY_METRICS,
    SUMMARY_COLUMNS,
    UPSERT_DAILY_SUMMARY,
    DailySummary,
    build_daily_summary,
)

logger = logging.getLogger("primeportal.wearables.sync.store")


@dataclass
class DeviceConnection:
    """Row of ``device_connections`` for one user and platform."""

    user_id: UUID
    platform: str
    is_active: bool = True
    last_sync_at: datetime | None = None
    initial_sync_completed: bool = False


@dataclass
class UserWrite:
    """Everything written for one user in a single transaction.

    Attributes:
        cycles / recovery / sleep / workouts: Deduplicated records to upsert.
        synced_at:                   New ``last_sync_at``.
    """

    user_id: UUID
    platform: str
    cycles: list[CycleMetrics] = field(default_factory=list)
    recovery: list[RecoveryMetrics] = field(default_factory=list)
    sleep: list[SleepMetrics] = field(default_factory=list)
    workouts: list[WorkoutMetrics] = field(default_factory=list)
    synced_at: datetime | None = None

    @property
    def records(self) -> list[MetricRecord]:
        return [*self.cycles, *self.recovery, *self.sleep, *self.workouts]

    @property
    def touched_dates(self) -> list[date]:
        """Days whose summary is rebuilt; cycles do not feed the summary."""
        return sorted({r.metric_date for r in (*self.recovery, *self.sleep, *self.workouts)})


class SyncStore(AlertStore, AssignmentStore, Protocol):
    async def list_active_users(self, platform: str) -> list[UUID]: ...

    async def get_connection(self, user_id: UUID, platform: str) -> DeviceConnection | None: ...

    async def get_tokens(self, user_id: UUID) -> OAuthTokens | None: ...

    async def save_tokens(self, user_id: UUID, tokens: OAuthTokens) -> None: ...

    async def deactivate_connection(
        self, user_id: UUID, platform: str, delete_tokens: bool = False
    ) -> None: ...

    async def activate_connection(self, user_id: UUID, platform: str) -> None: ...

    async def save_oauth_state(self, state: str, user_id: UUID) -> None: ...

    async def consume_oauth_state(self, state: str, max_age: timedelta) -> UUID | None:
        """Delete the state and return its user if it was younger than ``max_age``.

        A state can be consumed once; an expired one is deleted and yields None.
        """
        ...

    async def write_user_sync(self, write: UserWrite) -> int:
        """Upsert records, rebuild daily summaries, advance the connection.

        Atomic: either everything lands or nothing does.  Returns rows written.
        """
        ...

    async def log_validation_errors(
        self, user_id: UUID, platform: str, rejected: Sequence[RejectedRecord]
    ) -> None: ...

    async def save_profile(self, user_id: UUID, profile: UserProfileSnapshot) -> None: ...

    async def log_sync(
        self,
        user_id: UUID,
        platform: str,
        started_at: datetime,
        completed_at: datetime,
        status: str,
        records_synced: int,
        error_message: str | None = None,
    ) -> None: ...


class PostgresSyncStore:
    """``SyncStore`` over a service-role client (bypasses RLS).

    WHOOP tokens are stored encrypted by the ``get_whoop_tokens`` /
    ``save_whoop_tokens`` database functions; this class only passes the key.
    """

    def __init__(self, client: DatabaseClient, encryption_key: str | None) -> None:
        if not client.bypasses_rls:
            raise ConfigurationError("Sync store requires the service-role client")
        self._client = client
        self._encryption_key = encryption_key

    def _require_key(self) -> str:
        if not self._encryption_key:
            raise ConfigurationError("Missing WHOOP_ENCRYPTION_KEY")
        return self._encryption_key

    # ---------- Connections ----------

    async def list_active_users(self, platform: str) -> list[UUID]:
        rows = await self._client.fetch(
            "SELECT user_id FROM device_connections "
            "WHERE platform = $1 AND is_active = true ORDER BY user_id",
            platform,
        )
        return [row["user_id"] for row in rows]

    async def get_connection(self, user_id: UUID, platform: str) -> DeviceConnection | None:
        row = await self._client.fetchrow(
            "SELECT user_id, platform, is_active, last_sync_at, "
            "COALESCE(initial_sync_completed, false) AS initial_sync_completed "
            "FROM device_connections WHERE user_id = $1 AND platform = $2",
            user_id,
            platform,
        )
        if row is None:
            return None
        return DeviceConnection(**dict(row))

    async def deactivate_connection(
        self, user_id: UUID, platform: str, delete_tokens: bool = False
    ) -> None:
        async with self._client.connection() as conn:
            await conn.execute(
                "UPDATE device_connections SET is_active = false, updated_at = NOW() "
                "WHERE user_id = $1 AND platform = $2",
                user_id,
                platform,
            )
            if delete_tokens:
                await conn.execute("DELETE FROM whoop_tokens WHERE user_id = $1", user_id)
        logger.warning("Deactivated %s connection for user %s", platform, user_id)

    async def activate_connection(self, user_id: UUID, platform: str) -> None:
        await self._client.execute(
            "INSERT INTO device_connections (user_id, platform, is_active, initial_sync_completed) "
            "VALUES ($1, $2, true, false) "
            "ON CONFLICT (user_id, platform) DO UPDATE SET is_active = true, updated_at = NOW()",
            user_id,
            platform,
        )
        logger.info("Activated %s connection for user %s", platform, user_id)

    # ---------- OAuth state ----------

    async def save_oauth_state(self, state: str, user_id: UUID) -> None:
        await self._client.execute(
            "INSERT INTO oauth_states (state, user_id) VALUES ($1, $2)", state, user_id
        )

    async def consume_oauth_state(self, state: str, max_age: timedelta) -> UUID | None:
        row = await self._client.fetchrow(
            "DELETE FROM oauth_states WHERE state = $1 "
            "RETURNING user_id, created_at > NOW() - $2::interval AS fresh",
            state,
            max_age,
        )
        if row is None or not row["fresh"]:
            return None
        return row["user_id"]

    # ---------- Tokens ----------

    async def get_tokens(self, user_id: UUID) -> OAuthTokens | None:
        row = await self._client.fetchrow(
            "SELECT access_token, refresh_token, expires_at "
            "FROM get_whoop_tokens(p_user_id => $1, p_encryption_key => $2)",
            user_id,
            self._require_key(),
        )
        if row is None or not row["access_token"]:
            return None
        return OAuthTokens(
            access_token=row["access_token"],
            refresh_token=row["refresh_token"],
            expires_at=row["expires_at"],
        )

    async def save_tokens(self, user_id: UUID, tokens: OAuthTokens) -> None:
        await self._client.execute(
            "SELECT save_whoop_tokens("
            "p_access_token => $1, p_encryption_key => $2, p_expires_at => $3, "
            "p_refresh_token => $4, p_user_id => $5)",
            tokens.access_token,
            self._require_key(),
            tokens.expires_at,
            tokens.refresh_token,
            user_id,
        )

    # ---------- Metrics ----------

    async def write_user_sync(self, write: UserWrite) -> int:
        written = 0
        async with self._client.connection() as conn:
            for batch in (write.cycles, write.recovery, write.sleep, write.workouts):
                if not batch:
                    continue
                rows = [record.to_row() for record in batch]
                columns = list(rows[0])
                await conn.executemany(
                    upsert_statement(type(batch[0]), columns),
                    [tuple(row[c] for c in columns) for row in rows],
                )
                written += len(rows)

            for summary_date in write.touched_dates:
                summary = await self._rebuild_summary(conn, write.user_id, summary_date)
                await conn.execute(
                    UPSERT_DAILY_SUMMARY,
                    *(summary.to_row()[c] for c in SUMMARY_COLUMNS),
                )

            await conn.execute(
                "UPDATE device_connections SET last_sync_at = $3, "
                "initial_sync_completed = true, updated_at = NOW() "
                "WHERE user_id = $1 AND platform = $2",
                write.user_id,
                write.platform,
                write.synced_at,
            )
        return written

    async def _rebuild_summary(self, conn, user_id: UUID, summary_date: date) -> DailySummary:
        recovery = await conn.fetchrow(SELECT_DAY_METRICS["recovery"], user_id, summary_date)
        sleep = await conn.fetchrow(SELECT_DAY_METRICS["sleep"], user_id, summary_date)
        workouts = await conn.fetch(SELECT_DAY_METRICS["workouts"], user_id, summary_date)
        return build_daily_summary(user_id, summary_date, recovery, sleep, workouts)

    # ---------- Alerts ----------

    async def get_active_thresholds(self, patient_id: UUID) -> list[AlertThreshold]:
        rows = await self._client.fetch(
            "SELECT doctor_id, patient_id, metric_name, threshold_value, "
            "comparison_operator, priority FROM alert_thresholds "
            "WHERE patient_id = $1 AND is_active = true",
            patient_id,
        )
        return [
            AlertThreshold(
                doctor_id=row["doctor_id"],
                patient_id=row["patient_id"],
                metric_name=row["metric_name"],
                threshold_value=float(row["threshold_value"]),
                comparison_operator=row["comparison_operator"],
                priority=row["priority"],
            )
            for row in rows
        ]

    async def get_day_metric_values(self, user_id: UUID, metric_date: date) -> dict[str, float]:
        async with self._client.connection() as conn:
            recovery = await conn.fetchrow(
                "SELECT recovery_score, hrv_rmssd, resting_heart_rate FROM recovery_metrics "
                "WHERE user_id = $1 AND metric_date = $2 "
                "ORDER BY recovery_score DESC NULLS LAST LIMIT 1",
                user_id,
                metric_date,
            )
            sleep = await conn.fetchrow(
                "SELECT sleep_duration_minutes, sleep_efficiency_percentage FROM sleep_metrics "
                "WHERE user_id = $1 AND metric_date = $2 AND NOT is_nap "
                "ORDER BY sleep_duration_minutes DESC NULLS LAST LIMIT 1",
                user_id,
                metric_date,
            )
            strain = await conn.fetchval(
                "SELECT SUM(strain_score) FROM workout_metrics "
                "WHERE user_id = $1 AND metric_date = $2",
                user_id,
                metric_date,
            )
        values: dict[str, float] = {}
        for row, names in (
            (recovery, ("recovery_score", "hrv_rmssd", "resting_heart_rate")),
            (sleep, ("sleep_duration_minutes", "sleep_efficiency_percentage")),
        ):
            if row is None:
                continue
            for name in names:
                if row.get(name) is not None:
                    values[name] = float(row[name])
        if strain is not None:
            values["strain_score"] = float(strain)
        return values

    async def create_alerts(self, alerts: Sequence[Alert]) -> int:
        created = 0
        async with self._client.connection() as conn:
            for alert in alerts:
                status = await conn.execute(
                    "INSERT INTO alerts (patient_id, doctor_id, metric_name, metric_value, "
                    "threshold_value, priority, message, metric_date, status, email_sent, "
                    "in_app_notified) "
                    "VALUES ($1, $2, $3, $4, $5, $6, $7, $8, 'unread', false, true) "
                    "ON CONFLICT (patient_id, doctor_id, metric_name, metric_date, priority) "
                    "DO NOTHING",
                    alert.patient_id,
                    alert.doctor_id,
                    alert.metric_name,
                    alert.metric_value,
                    alert.threshold_value,
                    alert.priority,
                    alert.message,
                    alert.metric_date,
                )
                # asyncpg returns the command tag, e.g. "INSERT 0 1"
                if status.endswith(" 1"):
                    created += 1
        return created

    async def create_thresholds(self, thresholds: Sequence[AlertThreshold]) -> None:
        if not thresholds:
            return
        async with self._client.connection() as conn:
            await conn.executemany(
                "INSERT INTO alert_thresholds (doctor_id, patient_id, metric_name, "
                "threshold_value, comparison_operator, priority, is_active) "
                "VALUES ($1, $2, $3, $4, $5, $6, true) "
                "ON CONFLICT (doctor_id, patient_id, metric_name, priority) DO NOTHING",
                [
                    (
                        t.doctor_id,
                        t.patient_id,
                        t.metric_name,
                        t.threshold_value,
                        t.comparison_operator,
                        t.priority,
                    )
                    for t in thresholds
                ],
            )

    # ---------- Doctor assignment ----------

    async def get_user_role(self, user_id: UUID) -> str | None:
        return await self._client.fetchval("SELECT role FROM profiles WHERE id = $1", user_id)

    async def first_doctor_id(self) -> UUID | None:
        return await self._client.fetchval(
            "SELECT id FROM profiles WHERE role = 'doctor' ORDER BY created_at ASC LIMIT 1"
        )

    async def relationship_exists(self, doctor_id: UUID, patient_id: UUID) -> bool:
        found = await self._client.fetchval(
            "SELECT 1 FROM doctor_patient_relationships "
            "WHERE doctor_id = $1 AND patient_id = $2",
            doctor_id,
            patient_id,
        )
        return found is not None

    async def create_relationship(self, doctor_id: UUID, patient_id: UUID) -> None:
        await self._client.execute(
            "INSERT INTO doctor_patient_relationships (doctor_id, patient_id, status) "
            "VALUES ($1, $2, 'active') ON CONFLICT (doctor_id, patient_id) DO NOTHING",
            doctor_id,
            patient_id,
        )

    # ---------- Logs / profile ----------

    async def log_validation_errors(
        self, user_id: UUID, platform: str, rejected: Sequence[RejectedRecord]
    ) -> None:
        if not rejected:
            return
        async with self._client.connection() as conn:
            await conn.executemany(
                "INSERT INTO data_validation_errors "
                "(user_id, platform, data_type, error_message, raw_data) "
                "VALUES ($1, $2, $3, $4, $5::jsonb)",
                [
                    (user_id, platform, r.data_type, r.error_message, json.dumps(r.raw_data, default=str))
                    for r in rejected
                ],
            )

    async def save_profile(self, user_id: UUID, profile: UserProfileSnapshot) -> None:
        async with self._client.connection() as conn:
            await conn.execute(
                "UPDATE profiles SET "
                "full_name = COALESCE($2, full_name), "
                "whoop_user_id = COALESCE($3, whoop_user_id), "
                "height_cm = COALESCE($4, height_cm), "
                "weight_kg = COALESCE($5, weight_kg), "
                "max_heart_rate = COALESCE($6, max_heart_rate), "
                "updated_at = NOW() "
                "WHERE id = $1",
                user_id,
                profile.full_name,
                profile.external_user_id,
                profile.height_cm,
                profile.weight_kg,
                profile.max_heart_rate,
            )
            if profile.height_cm or profile.weight_kg or profile.max_heart_rate:
                await conn.execute(
                    "INSERT INTO body_measurements_history "
                    "(user_id, measured_at, height_cm, weight_kg, max_heart_rate, source) "
                    "VALUES ($1, CURRENT_DATE, $2, $3, $4, 'whoop') "
                    "ON CONFLICT (user_id, measured_at) DO UPDATE SET "
                    "height_cm = EXCLUDED.height_cm, weight_kg = EXCLUDED.weight_kg, "
                    "max_heart_rate = EXCLUDED.max_heart_rate",
                    user_id,
                    profile.height_cm,
                    profile.weight_kg,
                    profile.max_heart_rate,
                )

    async def log_sync(
        self,
        user_id: UUID,
        platform: str,
        started_at: datetime,
        completed_at: datetime,
        status: str,
        records_synced: int,
        error_message: str | None = None,
    ) -> None:
        await self._client.execute(
            "INSERT INTO sync_logs (user_id, platform, sync_started_at, sync_completed_at, "
            "status, records_synced, error_message) VALUES ($1, $2, $3, $4, $5, $6, $7)",
            user_id,
            platform,
            started_at,
            completed_at,
            status,
            records_synced,
            error_message,
        )
