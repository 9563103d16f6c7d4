"""WHOOP wearable ingestion.

This package pulls recovery, sleep and workout data from the WHOOP API,
validates and normalizes it, and writes it idempotently to Supabase.

Subpackages:
    adapters/ — Device-specific API adapters (WHOOP)
    sync/     — Orchestration, deduplication, daily summaries, persistence

Core modules:
    base          — WearableAdapter ABC and normalized metric records
    config_loader — Load/validate/hot-reload sync_config.yaml
    schemas       — Pydantic schemas for upstream records
    retry         — Exponential backoff for HTTP calls
    tokens        — Access-token refresh and connection deactivation
"""

from primeportal.wearables.base import (
    FetchedData,
    OAuthTokens,
    RecoveryMetrics,
    SleepMetrics,
    WearableAdapter,
    WorkoutMetrics,
)
from primeportal.wearables.config_loader import SyncConfig, get_sync_config

__all__ = [
    "WearableAdapter",
    "RecoveryMetrics",
    "SleepMetrics",
    "WorkoutMetrics",
    "FetchedData",
    "OAuthTokens",
    "SyncConfig",
    "get_sync_config",
]
