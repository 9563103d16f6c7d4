"""Deduplication and idempotent writes for wearable metrics.

WHOOP can return several records for one day (rescored recoveries, two sleeps
starting on the same date).  Records are collapsed to one per conflict key
before the upsert, so the batch never hits the same row twice.

The orchestrator drops naps before calling ``dedupe_sleep``: a sync window
that only holds a nap must not overwrite the main sleep stored for that day.

Dedup keys (UNIQUE constraints):
    - cycle_metrics:    (user_id, source_platform, metric_date)
    - recovery_metrics: (user_id, source_platform, metric_date)
    - sleep_metrics:    (user_id, source_platform, metric_date)
    - workout_metrics:  (user_id, source_platform, workout_id)
    - daily_summaries:  (user_id, summary_date)
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, TypeVar

from primeportal.wearables.base import (
    CycleMetrics,
    MetricRecord,
    RecoveryMetrics,
    SleepMetrics,
    WorkoutMetrics,
)

logger = logging.getLogger("primeportal.wearables.sync.dedup")

R = TypeVar("R", bound=MetricRecord)


def dedupe(records: Iterable[R], rank: Callable[[R], tuple]) -> list[R]:
    """Keep the highest-ranked record per conflict key.

    Ties keep the record seen first.  Output order follows first appearance
    of each key.
    """
    best: dict[tuple, R] = {}
    total = 0
    for record in records:
        total += 1
        current = best.get(record.key)
        if current is None or rank(record) > rank(current):
            best[record.key] = record
    removed = total - len(best)
    if removed:
        logger.debug("Removed %d duplicate records", removed)
    return list(best.values())


def _cycle_rank(record: CycleMetrics) -> tuple:
    strain = record.strain_score
    return (strain is not None, strain or 0.0)


def _recovery_rank(record: RecoveryMetrics) -> tuple:
    score = record.recovery_score
    return (score is not None, score or 0.0)


def _sleep_rank(record: SleepMetrics) -> tuple:
    # A main sleep beats a nap; then the longest wins
    return (not record.is_nap, record.sleep_duration_minutes or 0)


def _workout_rank(record: WorkoutMetrics) -> tuple:
    # Same workout id twice: the later-scored copy carries more data
    return (record.strain_score is not None, len(record.zone_durations))


def dedupe_cycles(records: Iterable[CycleMetrics]) -> list[CycleMetrics]:
    """Highest day strain per day."""
    return dedupe(records, _cycle_rank)


def dedupe_recovery(records: Iterable[RecoveryMetrics]) -> list[RecoveryMetrics]:
    """Best recovery score per day."""
    return dedupe(records, _recovery_rank)


def dedupe_sleep(records: Iterable[SleepMetrics]) -> list[SleepMetrics]:
    """Longest sleep per day, main sleep ahead of naps."""
    return dedupe(records, _sleep_rank)


def dedupe_workouts(records: Iterable[WorkoutMetrics]) -> list[WorkoutMetrics]:
    return dedupe(records, _workout_rank)


def build_upsert_query(
    table: str,
    columns: list[str],
    conflict_columns: list[str],
    update_columns: list[str] | None = None,
    casts: dict[str, str] | None = None,
) -> str:
    """Build a PostgreSQL INSERT ... ON CONFLICT DO UPDATE (upsert) query.

    Generates idempotent writes — safe to call multiple times with the same
    data.  On conflict, updates the non-key columns.

    Args:
        table:            Target table name.
        columns:          All columns to insert.
        conflict_columns: Columns that define the UNIQUE constraint.
        update_columns:   Columns to update on conflict (defaults to non-key columns).
        casts:            Column → SQL type for placeholders that need one
                          (e.g. ``{"raw_data": "jsonb"}``).

    Returns:
        Parameterized SQL string.
    """
    if update_columns is None:
        update_columns = [c for c in columns if c not in conflict_columns]
    casts = casts or {}

    placeholders = ", ".join(
        f"${i + 1}::{casts[col]}" if col in casts else f"${i + 1}"
        for i, col in enumerate(columns)
    )
    col_list = ", ".join(columns)
    conflict_target = ", ".join(conflict_columns)

    if update_columns:
        update_set = ", ".join(
            f"{col} = EXCLUDED.{col}" for col in update_columns
        )
        update_set += ", updated_at = NOW()"
        do_clause = f"DO UPDATE SET {update_set}"
    else:
        do_clause = "DO NOTHING"

    return (
        f"INSERT INTO {table} ({col_list}) "
        f"VALUES ({placeholders}) "
        f"ON CONFLICT ({conflict_target}) {do_clause}"
    )


def upsert_statement(record_type: type[MetricRecord], columns: list[str]) -> str:
    """Upsert for one of the metric record classes."""
    return build_upsert_query(
        record_type.TABLE,
        columns,
        list(record_type.CONFLICT_COLUMNS),
        casts={col: "jsonb" for col in record_type.JSON_COLUMNS},
    )
