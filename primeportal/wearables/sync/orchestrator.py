"""WHOOP sync orchestration.

One user's sync:
1. Work out the window (15 days on the first sync, otherwise from the last
   sync minus a rescore lookback, never further back than 7 days)
2. Obtain a valid access token, refreshing it if needed
3. Save the profile and body measurements (best effort)
4. Fetch, validate and normalize cycles, recovery, sleep and workouts
5. Drop naps, dedupe and write everything in one transaction (metrics, daily
   summaries, ``last_sync_at``)
6. Check the latest synced day against the doctors' alert thresholds and, on
   the first sync, assign the athlete a doctor (both best effort)
7. Record a ``sync_logs`` row

The cron job runs that for every active connection with bounded concurrency
and stops starting new users once the time budget is spent.  A user that is
still running when the budget runs out is cancelled and reported as failed.
Per-user failures are collected in the result, never raised.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from uuid import UUID

from pydantic import ValidationError

from primeportal.config import get_settings
from primeportal.errors import PortalError, UpstreamFailure
from primeportal.services.supabase import create_service_role_client
from primeportal.wearables.adapters import get_adapter
from primeportal.wearables.base import FetchedData, WearableAdapter
from primeportal.wearables.config_loader import SyncConfig, WindowConfig, get_sync_config
from primeportal.wearables.sync.alerts import check_patient_metrics
from primeportal.wearables.sync.assignment import auto_assign_doctor, parse_doctor_id
from primeportal.wearables.sync.dedup import (
    dedupe_cycles,
    dedupe_recovery,
    dedupe_sleep,
    dedupe_workouts,
)
from primeportal.wearables.sync.store import (
    DeviceConnection,
    PostgresSyncStore,
    SyncStore,
    UserWrite,
)
from primeportal.wearables.tokens import NO_TOKENS_MESSAGE, TokenManager

logger = logging.getLogger("primeportal.wearables.sync.orchestrator")

PLATFORM = "whoop"

STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

_GENERIC_FAILURE = "Sync failed"
TIMEOUT_MESSAGE = "Sync did not finish within the time limit. Please try again later."


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class UserSyncResult:
    """Outcome of syncing one user.

    Attributes:
        records_written:   Rows upserted across the metric tables.
        validation_errors: Records dropped by schema validation, per type.
        unscored:          Records skipped because WHOOP has not scored them.
        attempts:          1, or 2 when a transient failure was retried.
        initial_sync:      This was the user's first sync.
        alerts_created:    Threshold alerts raised for the latest synced day.
        doctor_assigned:   A doctor relationship was created on this sync.
        error:             Short user-facing message when ``success`` is False.
    """

    user_id: UUID
    success: bool
    records_written: int = 0
    cycles_count: int = 0
    recovery_count: int = 0
    sleep_count: int = 0
    workouts_count: int = 0
    validation_errors: dict[str, int] = field(default_factory=dict)
    unscored: int = 0
    profile_saved: bool = False
    initial_sync: bool = False
    alerts_created: int = 0
    doctor_assigned: bool = False
    attempts: int = 1
    error: str | None = None
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "userId": str(self.user_id),
            "success": self.success,
            "recordsWritten": self.records_written,
            "cyclesCount": self.cycles_count,
            "recoveryCount": self.recovery_count,
            "sleepCount": self.sleep_count,
            "workoutsCount": self.workouts_count,
            "validationErrors": self.validation_errors,
            "unscored": self.unscored,
            "profileSaved": self.profile_saved,
            "initialSync": self.initial_sync,
            "alertsCreated": self.alerts_created,
            "doctorAssigned": self.doctor_assigned,
            "attempts": self.attempts,
            "durationSeconds": round(self.duration_seconds, 3),
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class SyncBatchResult:
    """Aggregate of one cron run."""

    total: int = 0
    results: list[UserSyncResult] = field(default_factory=list)
    deferred_users: list[UUID] = field(default_factory=list)

    @property
    def successful(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def deferred(self) -> int:
        return len(self.deferred_users)

    @property
    def records_written(self) -> int:
        return sum(r.records_written for r in self.results)

    @property
    def failures(self) -> list[dict[str, Any]]:
        return [
            {"userId": str(r.user_id), "error": r.error}
            for r in self.results
            if not r.success
        ]

    @property
    def total_failure(self) -> bool:
        """Every user that ran failed (deferred users do not count)."""
        return self.failed > 0 and self.successful == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "deferred": self.deferred,
            "recordsWritten": self.records_written,
            "results": [r.to_dict() for r in self.results],
            "failures": self.failures,
            "deferredUsers": [str(u) for u in self.deferred_users],
        }


def sync_window(
    connection: DeviceConnection | None,
    windows: WindowConfig,
    now: datetime,
) -> tuple[datetime, datetime]:
    """Return ``(start, end)`` for the next fetch."""
    if (
        connection is None
        or not connection.initial_sync_completed
        or connection.last_sync_at is None
    ):
        return now - timedelta(days=windows.initial_days), now

    last_sync = connection.last_sync_at
    if last_sync.tzinfo is None:
        last_sync = last_sync.replace(tzinfo=timezone.utc)
    start = max(
        last_sync - timedelta(days=windows.rescore_lookback_days),
        now - timedelta(days=windows.regular_days),
    )
    return start, now


def user_facing_error(exc: BaseException) -> str:
    """Short message for the sync log and the API response."""
    if not isinstance(exc, PortalError):
        return _GENERIC_FAILURE
    if exc.message == NO_TOKENS_MESSAGE:
        return "No WHOOP tokens found. Please reconnect your account."
    status = getattr(exc, "status", None)
    if status == 401:
        return "Unauthorized access. Please reconnect your WHOOP account."
    if status == 429:
        return "Rate limit reached. Please try again later."
    if isinstance(exc, UpstreamFailure) and exc.transient and status is None:
        return "Could not reach the WHOOP API. Please try again later."
    return exc.message


async def _sync_once(
    user_id: UUID,
    store: SyncStore,
    adapter: WearableAdapter,
    config: SyncConfig,
    now: datetime,
    result: UserSyncResult,
) -> UserWrite:
    connection = await store.get_connection(user_id, PLATFORM)
    start, end = sync_window(connection, config.windows, now)
    result.initial_sync = connection is None or not connection.initial_sync_completed
    logger.info(
        "Syncing user %s from %s to %s%s",
        user_id,
        start.date(),
        end.date(),
        " (initial)" if result.initial_sync else "",
    )

    tokens = TokenManager(
        store, adapter, expiry_buffer_seconds=config.whoop.token_expiry_buffer_seconds
    )
    access_token = await tokens.ensure_valid_token(user_id)

    try:
        profile = await adapter.fetch_profile(access_token)
        if profile is not None:
            await store.save_profile(user_id, profile)
            result.profile_saved = True
    except PortalError as exc:
        logger.warning("Profile save failed for user %s: %s", user_id, exc.message)
    except ValidationError as exc:
        logger.warning("WHOOP profile for user %s did not validate: %s", user_id, exc)

    fetched: FetchedData = await adapter.fetch_all(user_id, access_token, start, end)
    result.validation_errors = fetched.validation_errors
    result.unscored = fetched.unscored

    if fetched.rejected:
        logger.warning(
            "User %s: %d records failed validation %s",
            user_id,
            len(fetched.rejected),
            fetched.validation_errors,
        )
        try:
            await store.log_validation_errors(user_id, PLATFORM, fetched.rejected)
        except PortalError as exc:
            logger.warning("Could not log validation errors for %s: %s", user_id, exc.message)

    # sleep_metrics holds one row per day; a nap would replace the stored main sleep
    main_sleep = [s for s in fetched.sleep if not s.is_nap]
    if len(main_sleep) < len(fetched.sleep):
        logger.debug(
            "User %s: skipped %d naps", user_id, len(fetched.sleep) - len(main_sleep)
        )

    write = UserWrite(
        user_id=user_id,
        platform=PLATFORM,
        cycles=dedupe_cycles(fetched.cycles),
        recovery=dedupe_recovery(fetched.recovery),
        sleep=dedupe_sleep(main_sleep),
        workouts=dedupe_workouts(fetched.workouts),
        synced_at=now,
    )
    result.records_written = await store.write_user_sync(write)
    result.cycles_count = len(write.cycles)
    result.recovery_count = len(write.recovery)
    result.sleep_count = len(write.sleep)
    result.workouts_count = len(write.workouts)
    return write


async def _sync_with_retries(
    user_id: UUID,
    store: SyncStore,
    adapter: WearableAdapter,
    config: SyncConfig,
    started_at: datetime,
    result: UserSyncResult,
) -> tuple[UserWrite | None, BaseException | None]:
    """Run ``_sync_once``, retrying transient upstream failures.

    Returns the write on success, otherwise the last error.
    """
    max_attempts = 1 + config.scheduling.user_retries
    error: BaseException | None = None
    for attempt in range(1, max_attempts + 1):
        result.attempts = attempt
        try:
            write = await _sync_once(user_id, store, adapter, config, started_at, result)
            result.success = True
            return write, None
        except UpstreamFailure as exc:
            error = exc
            if exc.transient and attempt < max_attempts:
                logger.warning(
                    "Transient failure for user %s (attempt %d/%d): %s",
                    user_id,
                    attempt,
                    max_attempts,
                    exc.message,
                )
                continue
            break
        except PortalError as exc:
            error = exc
            break
        except Exception as exc:
            logger.exception("Unexpected error syncing user %s", user_id)
            error = exc
            break
    return None, error


async def _after_sync(
    user_id: UUID, store: SyncStore, write: UserWrite, result: UserSyncResult
) -> None:
    """Alert check on the latest synced day, doctor assignment on the first sync.

    Failures are logged; the sync itself already succeeded.
    """
    if write.touched_dates:
        try:
            result.alerts_created = await check_patient_metrics(
                store, user_id, write.touched_dates[-1]
            )
        except PortalError as exc:
            logger.warning("Alert check failed for user %s: %s", user_id, exc.message)

    if result.initial_sync:
        default_doctor = parse_doctor_id(get_settings().default_doctor_id)
        try:
            assignment = await auto_assign_doctor(store, user_id, default_doctor)
            result.doctor_assigned = assignment.relationship_created
        except PortalError as exc:
            logger.warning("Doctor assignment failed for user %s: %s", user_id, exc.message)


async def sync_user(
    user_id: UUID,
    store: SyncStore,
    adapter: WearableAdapter,
    config: SyncConfig | None = None,
    now: Callable[[], datetime] = utc_now,
    timeout: float | None = None,
) -> UserSyncResult:
    """Sync one user.  Never raises; failures are reported in the result.

    A transient ``UpstreamFailure`` (rate limit, 5xx, network) is retried
    ``scheduling.user_retries`` times.  A 401 from WHOOP deactivates the
    connection.  ``timeout`` bounds the whole sync including retries; when it
    expires the work in flight is cancelled and the sync is a failure.
    """
    config = config or get_sync_config()
    started_at = now()
    started = time.monotonic()
    result = UserSyncResult(user_id=user_id, success=False)

    error: BaseException | None = None
    try:
        async with asyncio.timeout(timeout):
            write, error = await _sync_with_retries(
                user_id, store, adapter, config, started_at, result
            )
            if write is not None:
                await _after_sync(user_id, store, write, result)
    except TimeoutError:
        if result.success:
            logger.warning("Post-sync checks for user %s cut short by the time limit", user_id)
        else:
            logger.warning("Sync for user %s stopped after %.1fs time limit", user_id, timeout)
            error = UpstreamFailure(TIMEOUT_MESSAGE)

    if error is not None:
        result.error = user_facing_error(error)
        logger.error("Sync failed for user %s: %s", user_id, result.error)
        if getattr(error, "status", None) == 401:
            try:
                await store.deactivate_connection(user_id, PLATFORM)
            except PortalError as exc:
                logger.warning("Could not deactivate %s: %s", user_id, exc.message)

    result.duration_seconds = time.monotonic() - started

    try:
        await store.log_sync(
            user_id,
            PLATFORM,
            started_at=started_at,
            completed_at=now(),
            status=STATUS_COMPLETED if result.success else STATUS_FAILED,
            records_synced=result.records_written,
            error_message=result.error,
        )
    except PortalError as exc:
        logger.warning("Could not write sync log for %s: %s", user_id, exc.message)

    if result.success:
        logger.info(
            "Synced user %s: %d records (cycles=%d recovery=%d sleep=%d workouts=%d) in %.2fs",
            user_id,
            result.records_written,
            result.cycles_count,
            result.recovery_count,
            result.sleep_count,
            result.workouts_count,
            result.duration_seconds,
        )
    return result


async def sync_all_users(
    store: SyncStore,
    adapter: WearableAdapter,
    config: SyncConfig | None = None,
    clock: Callable[[], float] = time.monotonic,
    now: Callable[[], datetime] = utc_now,
) -> SyncBatchResult:
    """Sync every user with an active WHOOP connection.

    At most ``max_concurrent_users`` run at once.  A user whose turn comes
    after ``time_budget_seconds`` is deferred to the next run; a user that
    starts in time only gets what is left of the budget.

    Raises:
        PortalError: only when the list of users cannot be read.
    """
    config = config or get_sync_config()
    scheduling = config.scheduling
    deadline = clock() + scheduling.time_budget_seconds

    user_ids = await store.list_active_users(PLATFORM)
    batch = SyncBatchResult(total=len(user_ids))
    if not user_ids:
        logger.info("No active WHOOP connections")
        return batch

    logger.info("Syncing %d WHOOP users", len(user_ids))
    semaphore = asyncio.Semaphore(scheduling.max_concurrent_users)

    async def _run(user_id: UUID) -> UserSyncResult | None:
        async with semaphore:
            remaining = deadline - clock()
            if remaining <= 0:
                batch.deferred_users.append(user_id)
                return None
            return await sync_user(
                user_id, store, adapter, config, now=now, timeout=remaining
            )

    outcomes = await asyncio.gather(*(_run(u) for u in user_ids))
    batch.results = [r for r in outcomes if r is not None]

    if batch.deferred:
        logger.warning("Time budget spent; deferred %d users", batch.deferred)
    logger.info(
        "WHOOP batch complete: total=%d successful=%d failed=%d deferred=%d records=%d",
        batch.total,
        batch.successful,
        batch.failed,
        batch.deferred,
        batch.records_written,
    )
    return batch


def create_sync_store() -> PostgresSyncStore:
    """Store backed by the service-role client.

    Raises:
        ConfigurationError: credentials missing or no database pool.
    """
    return PostgresSyncStore(
        create_service_role_client(), get_settings().whoop_encryption_key
    )


def create_adapter() -> WearableAdapter:
    return get_adapter(PLATFORM)()


async def run_cron_sync() -> SyncBatchResult:
    return await sync_all_users(create_sync_store(), create_adapter())


async def sync_user_now(user_id: UUID) -> UserSyncResult:
    """Manual sync for one user, outside the cron schedule."""
    logger.info("Manual sync requested for user %s", user_id)
    config = get_sync_config()
    return await sync_user(
        user_id,
        create_sync_store(),
        create_adapter(),
        config,
        timeout=config.scheduling.time_budget_seconds,
    )
