"""Sync monitoring response models (doctor views and stats)."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Literal

from pydantic import Field

from primeportal.models.base import CamelBase

SyncStatusLabel = Literal["success", "failed", "never"]


class SyncErrorEntry(CamelBase):
    id: uuid.UUID
    user_id: uuid.UUID
    user_name: str = "Unknown"
    user_email: str | None = None
    platform: str
    error_message: str = "No error message"
    sync_started_at: datetime | None = None
    created_at: datetime


class SyncStats(CamelBase):
    success_rate: float = 0.0  # percent, one decimal
    total_syncs: int = 0
    avg_duration: float = 0.0  # seconds, one decimal
    by_platform: dict[str, int] = Field(default_factory=dict)
    recent_errors: list[SyncErrorEntry] = Field(default_factory=list)


class AthleteSyncStatus(CamelBase):
    id: uuid.UUID
    full_name: str = "Unknown"
    email: str = ""
    last_sync_at: datetime | None = None
    sync_status: SyncStatusLabel = "never"
    cycles_count: int = 0
    sleep_count: int = 0
    workouts_count: int = 0
    platform: str = "whoop"


class SyncTrendPoint(CamelBase):
    date: date
    success: int = 0
    failed: int = 0
