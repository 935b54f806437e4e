# ============================================================================
# SYNC ORCHESTRATOR
# ============================================================================
# STATUS: Service - storage sync orchestration
# PURPOSE: Copy a job's delivered object set to a destination with progress,
#          idempotent repeat calls, forced re-runs and cooperative cancellation
# EXPORTS: SyncOrchestrator, DayProgressTracker, day_of
# DEPENDENCIES: infrastructure (StatusStore, LockManager, IBlobRepository),
#               core.abort_registry, core.logic.sync_status, config
# PATTERNS: Begin/execute split (HTTP takes the lock, queue worker copies)
# ============================================================================

"""
Sync Orchestrator.

A sync runs in two halves so that no HTTP request waits for a full copy:

    begin(job_id, destination, force)       HTTP trigger, synchronous
        1. idempotency short-circuit (already synced to the same place)
        2. take the job lock (force breaks a held lock)
        3. reset progress fields, record destination and sync_started_at

    execute(job_id, lock_token)             sync-jobs queue trigger
        4. enumerate the source, record expected counts
        5. copy loop, per-object failures skipped and counted
        6. verification: partitions, object set and a size/MD5 sample of
           the destination checked against the source
        7. completion: synced_at only when every object copied and verified
        8. fatal errors recorded in error_message

Checkpoints in the copy loop (both raise CancellationRequested):
    - in-process AbortRegistry token, before every object (fast path)
    - the durable record, re-read at every progress write: a set
      sync_cancelled_at or a lock that is no longer ours stops the loop

Progress writes from an attempt are only applied while the record still
belongs to that attempt (same sync_started_at, lock ours or released), so
a late writer never overwrites a newer attempt's counters.
"""

import math
import re
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from config import SyncConfig
from core.abort_registry import AbortRegistry, get_abort_registry
from core.logic import determine_sync_status
from core.models import (
    CancelResult,
    DayProgress,
    JobRecord,
    JobStatus,
    StorageLocation,
    SyncProgress,
    SyncResult,
    SyncStartResult,
)
from exceptions import (
    CancellationRequested,
    ExternalServiceError,
    LockConflictError,
    ResourceNotFoundError,
    ValidationError,
)
from infrastructure.blob import IBlobRepository
from infrastructure.lock_manager import LockManager
from infrastructure.status_store import StatusStore
from util_logger import LoggerFactory, ComponentType

logger = LoggerFactory.create_logger(ComponentType.ORCHESTRATOR, "SyncOrchestrator")

_DAY_RE = re.compile(r"date=(\d{4}-\d{2}-\d{2})")


def day_of(key: str) -> Optional[str]:
    """Partition date of an object key ("…/date=2025-01-31/…"), if any."""
    match = _DAY_RE.search(key)
    return match.group(1) if match else None


def _preview(items: List[str], limit: int = 3) -> str:
    shown = ", ".join(items[:limit])
    return shown + ("..." if len(items) > limit else "")


class DayProgressTracker:
    """Per-day copy counters for sources partitioned by date=YYYY-MM-DD."""

    def __init__(self, objects: List[Dict[str, Any]]):
        days: Dict[str, DayProgress] = {}
        for obj in objects:
            day = day_of(obj["name"])
            if day is None:
                continue
            entry = days.setdefault(day, DayProgress(date=day))
            entry.total_objects += 1
            entry.total_bytes += obj.get("size") or 0

        self.progress: Optional[SyncProgress] = None
        if days:
            self.progress = SyncProgress(
                total_days=len(days),
                days={d: days[d] for d in sorted(days)},
            )

    def record(self, key: str, size: int, copied: bool) -> None:
        day = day_of(key)
        if self.progress is None or day not in self.progress.days:
            return
        entry = self.progress.days[day]
        self.progress.current_day = day
        if copied:
            entry.copied_objects += 1
            entry.copied_bytes += size
        else:
            entry.failed_objects += 1

        if entry.copied_objects + entry.failed_objects >= entry.total_objects:
            entry.status = "completed" if entry.failed_objects == 0 else "failed"
        else:
            entry.status = "copying"

    def snapshot(self) -> Optional[SyncProgress]:
        return self.progress.model_copy(deep=True) if self.progress else None


class _Counters:
    def __init__(self):
        self.copied = 0
        self.copied_bytes = 0
        self.failed = 0


class SyncOrchestrator:
    """
    Copies a job's source object set to a destination.

    Args:
        store: Durable job records
        lock_manager: Per-job advisory lock
        blob_repo: Object storage used for listing and copying
        config: Progress flush and stall settings
        registry: In-process abort registry (process singleton by default)
        now_fn: UTC clock for persisted timestamps
        clock: Monotonic clock for flush throttling
    """

    def __init__(
        self,
        store: StatusStore,
        lock_manager: LockManager,
        blob_repo: IBlobRepository,
        config: Optional[SyncConfig] = None,
        registry: Optional[AbortRegistry] = None,
        now_fn: Optional[Callable[[], datetime]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.lock_manager = lock_manager
        self.blob_repo = blob_repo
        self.config = config or SyncConfig()
        self.registry = registry or get_abort_registry()
        self.now_fn = now_fn or (lambda: datetime.now(timezone.utc))
        self.clock = clock

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    def sync(self, job_id: str, destination: Union[str, StorageLocation], force: bool = False) -> SyncResult:
        """Run a whole sync in the calling invocation (begin + execute)."""
        start = self.begin(job_id, destination, force)
        if start.already_completed:
            job = self.store.get_job(job_id)
            return SyncResult(
                job_id=job_id,
                already_completed=True,
                completed=True,
                copied_objects=job.object_count if job else 0,
                copied_bytes=job.total_bytes if job else 0,
                expected_objects=job.expected_object_count if job else 0,
                message=start.message,
            )
        return self.execute(job_id, start.lock_token)

    def begin(self, job_id: str, destination: Union[str, StorageLocation], force: bool = False) -> SyncStartResult:
        """
        Steps 1-3: short-circuit, lock, reset.

        Raises:
            ResourceNotFoundError: Unknown job
            ValidationError: Upstream job not successful, no source, bad destination
            LockConflictError: Lock held and force not set (or lost a forced race)
        """
        job = self._require_job(job_id)
        dest = self._parse_destination(destination)

        if job.status != JobStatus.SUCCESS:
            raise ValidationError(
                f"Job {job_id} is {job.status.value}; only successful jobs can be synced"
            )
        if job.source_location is None:
            raise ValidationError(f"Job {job_id} has no source location")

        if (not force and job.synced_at is not None and job.destination_location == dest
                and job.expected_object_count > 0 and job.object_count >= job.expected_object_count):
            logger.info(f"⏭️ Job {job_id} already synced to {dest}, skipping")
            return SyncStartResult(
                job_id=job_id,
                already_completed=True,
                destination=str(dest),
                message=f"Already synced {job.object_count} objects to {dest}",
            )

        token = self.lock_manager.try_acquire(job_id)
        if token is None and force:
            logger.warning(f"⚠️ Force re-sync of job {job_id}: breaking held lock")
            self.lock_manager.release(job_id)
            token = self.lock_manager.try_acquire(job_id)
        if token is None:
            raise LockConflictError(f"Sync already in progress for job {job_id}", job_id=job_id)

        now = self.now_fn()

        def _reset(record: JobRecord) -> Optional[JobRecord]:
            if record.lock_token != token:
                return None
            record.reset_sync_progress(now)
            record.destination_location = dest
            return record

        result = self.store.update_job(job_id, _reset)
        if not result.written:
            raise LockConflictError(f"Lost the lock for job {job_id} while starting", job_id=job_id)

        logger.info(f"▶️ Sync of job {job_id} started: {job.source_location} -> {dest}")
        return SyncStartResult(
            job_id=job_id,
            started=True,
            lock_token=token,
            destination=str(dest),
            message=f"Sync started to {dest}",
        )

    def execute(self, job_id: str, lock_token: str) -> SyncResult:
        """
        Steps 4-8: enumerate, copy, verify, complete.

        Raises:
            ResourceNotFoundError: Unknown job
            ExternalServiceError: Fatal storage failure (recorded on the job)
        """
        abort = self.registry.register(job_id)
        owns_lock = True
        try:
            job = self._require_job(job_id)
            if job.lock_token != lock_token:
                owns_lock = False
                logger.info(f"Job {job_id} lock no longer held by this sync, nothing to do")
                return SyncResult(job_id=job_id, cancelled=True,
                                  message="Sync was cancelled or superseded before it started")

            attempt = job.sync_started_at
            try:
                return self._copy_all(job, lock_token, attempt, abort)
            except _OwnershipLost:
                owns_lock = False
                return SyncResult(job_id=job_id, cancelled=True,
                                  message="Sync superseded by another attempt")
            except Exception as e:
                message = f"Sync failed: {e}"
                logger.error(f"❌ {message} (job {job_id})")
                try:
                    self._write_progress(job_id, lock_token, attempt, error_message=message)
                except _OwnershipLost:
                    owns_lock = False
                if isinstance(e, ExternalServiceError):
                    raise
                raise ExternalServiceError(message, service="storage") from e
        finally:
            self.registry.unregister(job_id, abort)
            if owns_lock:
                self.lock_manager.release_if_owner(job_id, lock_token)

    def cancel(self, job_id: str) -> CancelResult:
        """
        Stop a running sync and always release the lock.

        Returns:
            CancelResult with action:
                cancelled  a sync was in progress and is now marked cancelled
                completed  the copy had already covered every object
                released   nothing was running; the lock (if any) was cleared
        """
        job = self._require_job(job_id)
        signalled = self.registry.signal(job_id)
        was_locked = job.is_locked
        released = self.lock_manager.release(job_id)

        if not (signalled or was_locked or released):
            return CancelResult(job_id=job_id, action="released", signalled=False,
                                message="No sync in progress")

        now = self.now_fn()

        def _mark(record: JobRecord) -> Optional[JobRecord]:
            if record.synced_at is not None:
                return None
            if record.expected_object_count > 0 and record.object_count >= record.expected_object_count:
                record.synced_at = now
            else:
                record.sync_cancelled_at = now
            record.updated_at = now
            return record

        record = self.store.update_job(job_id, _mark).record
        completed = record is not None and record.synced_at is not None
        action = "completed" if completed else "cancelled"
        logger.info(f"🛑 Sync of job {job_id} {action} on request (signalled={signalled})")
        return CancelResult(
            job_id=job_id,
            action=action,
            signalled=signalled,
            message="Sync already copied every object, marked completed" if completed else "Sync cancelled",
        )

    def get_status(self, job_id: str) -> Dict[str, Any]:
        job = self._require_job(job_id)
        return determine_sync_status(job, self.now_fn(), self.config.stall_after)

    # ========================================================================
    # COPY LOOP
    # ========================================================================

    def _copy_all(self, job: JobRecord, token: str, attempt: Optional[datetime], abort) -> SyncResult:
        job_id = job.job_id
        source = job.source_location
        dest = job.destination_location

        try:
            objects = [
                o for o in self.blob_repo.list_blobs(source.container, source.prefix)
                if not o["name"].endswith("/")
            ]
        except Exception as e:
            raise ExternalServiceError(f"Failed to list source {source}: {e}", service="storage") from e

        expected = len(objects)
        expected_bytes = sum(o.get("size") or 0 for o in objects)
        days = DayProgressTracker(objects)
        logger.info(f"📋 Job {job_id}: {expected} objects, {expected_bytes} bytes to copy")

        self._write_progress(job_id, token, attempt, expected=expected, expected_bytes=expected_bytes,
                             progress=days.snapshot(), counters=_Counters())

        counters = _Counters()
        pending = 0
        last_flush = self.clock()

        try:
            for obj in objects:
                self._checkpoint(counters, abort=abort)

                key = obj["name"]
                size = obj.get("size") or 0
                try:
                    self.blob_repo.copy_blob(source.container, key, dest.container,
                                             dest.key_for(source.relative_key(key)))
                    counters.copied += 1
                    counters.copied_bytes += size
                    days.record(key, size, copied=True)
                except Exception as e:
                    counters.failed += 1
                    days.record(key, size, copied=False)
                    logger.warning(f"⚠️ Job {job_id}: copy of {key} failed, skipping: {e}")

                pending += 1
                if pending >= self.config.progress_flush_every or \
                        self.clock() - last_flush >= self.config.progress_flush_seconds:
                    record = self._write_progress(job_id, token, attempt, counters=counters,
                                                  progress=days.snapshot())
                    pending = 0
                    last_flush = self.clock()
                    self._checkpoint(counters, record=record, token=token)
        except CancellationRequested as stop:
            logger.info(f"🛑 Job {job_id}: {stop} after {stop.completed} objects")
            self._write_progress(job_id, token, attempt, counters=counters, progress=days.snapshot(),
                                 cancelled_at=self.now_fn())
            return SyncResult(
                job_id=job_id, cancelled=True,
                copied_objects=counters.copied, copied_bytes=counters.copied_bytes,
                failed_objects=counters.failed, expected_objects=expected,
                message=f"Sync cancelled after {counters.copied} of {expected} objects",
            )

        if counters.failed:
            message = f"Sync incomplete: {counters.failed} of {expected} objects failed to copy"
            self._write_progress(job_id, token, attempt, counters=counters, progress=days.snapshot(),
                                 error_message=message)
            logger.warning(f"⚠️ Job {job_id}: {message}")
            return SyncResult(
                job_id=job_id, copied_objects=counters.copied, copied_bytes=counters.copied_bytes,
                failed_objects=counters.failed, expected_objects=expected, message=message,
            )

        failure = self._verify(job, objects)
        if failure:
            self._write_progress(job_id, token, attempt, counters=counters, progress=days.snapshot(),
                                 error_message=failure)
            logger.error(f"❌ Job {job_id}: {failure}")
            return SyncResult(
                job_id=job_id, copied_objects=counters.copied, copied_bytes=counters.copied_bytes,
                expected_objects=expected, message=failure,
            )

        now = self.now_fn()
        self._write_progress(job_id, token, attempt, counters=counters, progress=days.snapshot(), synced_at=now)
        logger.info(f"✅ Job {job_id}: synced {counters.copied} objects ({counters.copied_bytes} bytes)")
        return SyncResult(
            job_id=job_id, completed=True,
            copied_objects=counters.copied, copied_bytes=counters.copied_bytes,
            expected_objects=expected, message=f"Synced {counters.copied} objects",
        )

    def _checkpoint(self, counters: _Counters, abort=None, record: Optional[JobRecord] = None,
                    token: Optional[str] = None) -> None:
        if abort is not None and self.registry.is_signaled(abort):
            raise CancellationRequested("abort signalled", completed=counters.copied)
        if record is not None and (record.sync_cancelled_at is not None or record.lock_token != token):
            raise CancellationRequested("cancellation found in record", completed=counters.copied)

    # ========================================================================
    # VERIFICATION
    # ========================================================================

    def _verify(self, job: JobRecord, objects: List[Dict[str, Any]]) -> Optional[str]:
        """
        Check the destination against the copied source set.

        In order: every date= partition of the source is present, every
        source object is present, and a deterministic sample matches by
        size and MD5. ETags are not compared, a server-side copy gets a
        fresh one.

        Returns:
            Failure message, or None when the destination checks out

        Raises:
            ExternalServiceError: Destination listing failed
        """
        if not objects:
            return None
        source = job.source_location
        dest = job.destination_location
        try:
            listed = self.blob_repo.list_blobs(dest.container, dest.key_for("") if dest.prefix else "")
        except Exception as e:
            raise ExternalServiceError(f"Failed to list destination {dest}: {e}", service="storage") from e
        at_dest = {dest.relative_key(o["name"]): o for o in listed if not o["name"].endswith("/")}

        relative = [source.relative_key(o["name"]) for o in objects]
        source_days = {day_of(k) for k in relative} - {None}
        missing_days = sorted(source_days - {day_of(k) for k in at_dest})
        if missing_days:
            return (f"Sync verification failed: {len(missing_days)} date partitions missing at "
                    f"destination: {_preview(missing_days)}")

        missing = [k for k in relative if k not in at_dest]
        if missing:
            return (f"Sync verification failed: destination has {len(relative) - len(missing)} of "
                    f"{len(relative)} objects, missing {_preview(missing)}")

        size = min(math.ceil(len(objects) * self.config.verify_sample_ratio), self.config.verify_sample_max)
        size = max(1, size)
        step = max(1, len(objects) // size)
        mismatched = []
        for i in range(size):
            index = min(i * step, len(objects) - 1)
            original, copy = objects[index], at_dest[relative[index]]
            if (original.get("size") or 0) != (copy.get("size") or 0):
                mismatched.append(f"{relative[index]} (size {original.get('size')} vs {copy.get('size')})")
            elif original.get("content_md5") and copy.get("content_md5") \
                    and original["content_md5"] != copy["content_md5"]:
                mismatched.append(f"{relative[index]} (MD5)")
        if mismatched:
            return (f"Sync verification failed: {len(mismatched)} of {size} sampled objects differ: "
                    f"{_preview(mismatched)}")

        logger.info(f"🔍 Job {job.job_id}: verified {len(relative)} objects, "
                    f"{len(source_days)} partitions, {size} sampled")
        return None

    def _write_progress(
        self,
        job_id: str,
        token: str,
        attempt: Optional[datetime],
        counters: Optional[_Counters] = None,
        expected: Optional[int] = None,
        expected_bytes: Optional[int] = None,
        progress: Optional[SyncProgress] = None,
        synced_at: Optional[datetime] = None,
        cancelled_at: Optional[datetime] = None,
        error_message: Optional[str] = None,
    ) -> JobRecord:
        """
        Apply progress fields while the record still belongs to this attempt.

        Raises:
            _OwnershipLost: Another attempt has taken over the record
        """
        now = self.now_fn()

        def _apply(record: JobRecord) -> Optional[JobRecord]:
            if record.sync_started_at != attempt or record.lock_token not in (None, token):
                return None
            if counters is not None:
                record.object_count = counters.copied
                record.total_bytes = counters.copied_bytes
                record.failed_object_count = counters.failed
            if expected is not None:
                record.expected_object_count = expected
                record.expected_total_bytes = expected_bytes or 0
            if progress is not None:
                record.sync_progress = progress
            if synced_at is not None and record.sync_cancelled_at is None:
                record.synced_at = synced_at
            if cancelled_at is not None and record.sync_cancelled_at is None and record.synced_at is None:
                record.sync_cancelled_at = cancelled_at
            if error_message is not None:
                record.error_message = error_message
            record.updated_at = now
            return record

        result = self.store.update_job(job_id, _apply)
        record = result.record
        if not result.written and (record.sync_started_at != attempt or record.lock_token not in (None, token)):
            raise _OwnershipLost(job_id)
        return record

    # ========================================================================
    # HELPERS
    # ========================================================================

    def _require_job(self, job_id: str) -> JobRecord:
        job = self.store.get_job(job_id)
        if job is None:
            raise ResourceNotFoundError(f"Job not found: {job_id}")
        return job

    @staticmethod
    def _parse_destination(destination: Union[str, StorageLocation]) -> StorageLocation:
        if isinstance(destination, StorageLocation):
            return destination
        try:
            return StorageLocation.parse(destination)
        except ValueError as e:
            raise ValidationError(f"Invalid destination: {e}") from e


class _OwnershipLost(Exception):
    """A forced re-sync replaced this attempt."""
