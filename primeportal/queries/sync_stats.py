"""Sync monitoring aggregates over ``sync_logs`` for the doctor views."""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping

from primeportal.errors import Err, Ok, Result, UpstreamFailure
from primeportal.models.sync import (
    AthleteSyncStatus,
    SyncErrorEntry,
    SyncStats,
    SyncStatusLabel,
    SyncTrendPoint,
)
from primeportal.services.supabase import DatabaseClient

logger = logging.getLogger("primeportal.queries.sync")

# sync_logs.status values written by the orchestrator
LOG_COMPLETED = "completed"
LOG_FAILED = "failed"

RECENT_ERRORS_IN_STATS = 10
RECORD_COUNT_DAYS = 30

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def sync_status_label(status: str | None) -> SyncStatusLabel:
    if status is None:
        return "never"
    return "success" if status == LOG_COMPLETED else "failed"


def _error_entry(row: Mapping[str, Any]) -> SyncErrorEntry:
    return SyncErrorEntry(
        id=row["id"],
        user_id=row["user_id"],
        user_name=row["full_name"] or "Unknown",
        user_email=row.get("email") or "",
        platform=row["platform"],
        error_message=row["error_message"] or "No error message",
        sync_started_at=row.get("sync_started_at"),
        created_at=row["created_at"],
    )


async def get_sync_stats_by_period(
    client: DatabaseClient, days: int = 7, now: Clock = utc_now
) -> Result[SyncStats]:
    """Success rate, volume, average duration and recent errors for ``days``."""
    since = now() - timedelta(days=days)
    try:
        logs = await client.fetch(
            "SELECT status, sync_started_at, sync_completed_at, platform "
            "FROM sync_logs WHERE created_at >= $1",
            since,
        )
        errors = await client.fetch(
            "SELECT s.id, s.user_id, s.platform, s.error_message, s.created_at, "
            "p.full_name FROM sync_logs s JOIN profiles p ON p.id = s.user_id "
            "WHERE s.status = $1 AND s.created_at >= $2 "
            "ORDER BY s.created_at DESC LIMIT $3",
            LOG_FAILED,
            since,
            RECENT_ERRORS_IN_STATS,
        )
    except UpstreamFailure as exc:
        logger.error("Sync stats query failed: %s", exc.message)
        return Err(exc)

    total = len(logs)
    completed = sum(1 for log in logs if log["status"] == LOG_COMPLETED)
    success_rate = completed / total * 100 if total else 0.0

    durations = [
        (log["sync_completed_at"] - log["sync_started_at"]).total_seconds()
        for log in logs
        if log["sync_started_at"] and log["sync_completed_at"]
    ]
    avg_duration = sum(durations) / len(durations) if durations else 0.0

    return Ok(
        SyncStats(
            success_rate=round(success_rate, 1),
            total_syncs=total,
            avg_duration=round(avg_duration, 1),
            by_platform=dict(Counter(log["platform"] for log in logs)),
            recent_errors=[_error_entry(row) for row in errors],
        )
    )


async def get_athlete_sync_status(
    client: DatabaseClient, doctor_id: uuid.UUID, now: Clock = utc_now
) -> Result[list[AthleteSyncStatus]]:
    """Last sync and 30-day record counts for every athlete of ``doctor_id``."""
    since = now() - timedelta(days=RECORD_COUNT_DAYS)
    try:
        athletes = await client.fetch(
            "SELECT p.id, p.full_name, p.email FROM doctor_patient_relationships r "
            "JOIN profiles p ON p.id = r.patient_id "
            "WHERE r.doctor_id = $1 AND p.role = 'athlete' ORDER BY p.full_name",
            doctor_id,
        )
        statuses = []
        for athlete in athletes:
            last_sync = await client.fetchrow(
                "SELECT sync_completed_at, status, platform FROM sync_logs "
                "WHERE user_id = $1 ORDER BY created_at DESC LIMIT 1",
                athlete["id"],
            )
            counts = await client.fetchrow(
                "SELECT "
                "(SELECT count(*) FROM recovery_metrics WHERE user_id = $1 AND created_at >= $2) AS cycles, "
                "(SELECT count(*) FROM sleep_metrics WHERE user_id = $1 AND created_at >= $2) AS sleep, "
                "(SELECT count(*) FROM workout_metrics WHERE user_id = $1 AND created_at >= $2) AS workouts",
                athlete["id"],
                since,
            )
            statuses.append(
                AthleteSyncStatus(
                    id=athlete["id"],
                    full_name=athlete["full_name"] or "Unknown",
                    email=athlete["email"] or "",
                    last_sync_at=last_sync["sync_completed_at"] if last_sync else None,
                    sync_status=sync_status_label(last_sync["status"] if last_sync else None),
                    cycles_count=counts["cycles"] if counts else 0,
                    sleep_count=counts["sleep"] if counts else 0,
                    workouts_count=counts["workouts"] if counts else 0,
                    platform=(last_sync["platform"] if last_sync else None) or "whoop",
                )
            )
    except UpstreamFailure as exc:
        logger.error("Athlete sync status failed for doctor %s: %s", doctor_id, exc.message)
        return Err(exc)

    return Ok(statuses)


async def get_sync_trend_data(
    client: DatabaseClient, days: int = 30, now: Clock = utc_now
) -> Result[list[SyncTrendPoint]]:
    """Per-day success/failed counts, oldest first, with empty days filled in."""
    current = now()
    try:
        logs = await client.fetch(
            "SELECT created_at, status FROM sync_logs "
            "WHERE created_at >= $1 ORDER BY created_at ASC",
            current - timedelta(days=days),
        )
    except UpstreamFailure as exc:
        logger.error("Sync trend query failed: %s", exc.message)
        return Err(exc)

    success: Counter = Counter()
    failed: Counter = Counter()
    for log in logs:
        day = log["created_at"].astimezone(timezone.utc).date()
        if log["status"] == LOG_COMPLETED:
            success[day] += 1
        else:
            failed[day] += 1

    today = current.astimezone(timezone.utc).date()
    points = []
    for offset in range(days - 1, -1, -1):
        day = today - timedelta(days=offset)
        points.append(SyncTrendPoint(date=day, success=success[day], failed=failed[day]))
    return Ok(points)


async def get_recent_sync_errors(
    client: DatabaseClient, limit: int = 20
) -> Result[list[SyncErrorEntry]]:
    try:
        rows = await client.fetch(
            "SELECT s.id, s.user_id, s.platform, s.error_message, s.sync_started_at, "
            "s.created_at, p.full_name, p.email "
            "FROM sync_logs s JOIN profiles p ON p.id = s.user_id "
            "WHERE s.status = $1 ORDER BY s.created_at DESC LIMIT $2",
            LOG_FAILED,
            limit,
        )
    except UpstreamFailure as exc:
        logger.error("Recent sync errors query failed: %s", exc.message)
        return Err(exc)
    return Ok([_error_entry(row) for row in rows])
