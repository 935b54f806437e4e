"""
Sync Status Derivation.

Pure function computing the display state of a sync from a JobRecord.
No side effects and no repair: a stalled sync is reported, never fixed here.

Exports:
    determine_sync_status: JobRecord -> status payload dict
"""

from datetime import datetime, timedelta
from typing import Any, Dict

from ..models.enums import SyncState
from ..models.job import JobRecord


def _payload(state: SyncState, message: str, job: JobRecord, copied: int, copied_bytes: int,
             total: int, total_bytes: int, progress: int) -> Dict[str, Any]:
    return {
        "job_id": job.job_id,
        "sync_state": state.value,
        "message": message,
        "progress": progress,
        "copied": copied,
        "copied_bytes": copied_bytes,
        "total": total,
        "total_bytes": total_bytes,
        "failed": job.failed_object_count,
        "locked": job.is_locked,
        "destination": str(job.destination_location) if job.destination_location else None,
        "sync_started_at": job.sync_started_at,
        "synced_at": job.synced_at,
        "sync_cancelled_at": job.sync_cancelled_at,
        "error_message": job.error_message or None,
        "sync_progress": job.sync_progress.model_dump(mode="json") if job.sync_progress else None,
    }


def determine_sync_status(job: JobRecord, now: datetime, stall_after: timedelta) -> Dict[str, Any]:
    """
    Compute the canonical sync status for a job.

    Precedence: not_started (no destination) > cancelled > error > completed
    > stalled > syncing > not_started.

    Args:
        job: The stored job record
        now: Current UTC time
        stall_after: Lock held without a progress write for this long => stalled

    Returns:
        Status payload dict (see _payload)
    """
    if job.destination_location is None:
        return _payload(SyncState.NOT_STARTED, "Sync not started", job, 0, 0, 0, 0, 0)

    copied = job.object_count
    copied_bytes = job.total_bytes
    total = job.expected_object_count
    total_bytes = job.expected_total_bytes

    # Day progress can be fresher than the counters between throttled flushes
    if job.sync_progress and job.sync_progress.days:
        days = job.sync_progress.days.values()
        copied = max(copied, sum(d.copied_objects for d in days))
        copied_bytes = max(copied_bytes, sum(d.copied_bytes for d in days))
        if total == 0:
            total = sum(d.total_objects for d in days)
            total_bytes = sum(d.total_bytes for d in days)

    if total == 0 and copied > 0:
        total, total_bytes = copied, copied_bytes

    progress = round(copied / total * 100) if total > 0 else 0

    if job.sync_cancelled_at is not None:
        return _payload(SyncState.CANCELLED, "Sync stopped by user", job,
                        copied, copied_bytes, total, total_bytes, progress)

    if job.error_message and job.synced_at is None:
        return _payload(SyncState.ERROR, job.error_message, job,
                        copied, copied_bytes, total, total_bytes, progress)

    if job.synced_at is not None or (not job.is_locked and total > 0 and copied >= total):
        return _payload(SyncState.COMPLETED, "Sync completed", job,
                        copied, copied_bytes, total, total_bytes, 100)

    if job.is_locked:
        last_activity = job.updated_at or job.lock_acquired_at
        idle = now - last_activity if last_activity else timedelta(0)
        if idle > stall_after:
            minutes = int(idle.total_seconds() // 60)
            return _payload(
                SyncState.STALLED,
                f"Sync appears stalled (no activity for {minutes} min). Cancel or force a resync to continue.",
                job, copied, copied_bytes, total, total_bytes, progress,
            )
        return _payload(SyncState.SYNCING, f"Syncing... {copied}/{total} objects", job,
                        copied, copied_bytes, total, total_bytes, progress)

    if copied > 0:
        # Lock gone without a completion write: the worker died mid-copy
        return _payload(SyncState.STALLED,
                        f"Sync interrupted at {copied}/{total} objects. Start a resync to continue.",
                        job, copied, copied_bytes, total, total_bytes, progress)

    return _payload(SyncState.NOT_STARTED, "Sync not started", job,
                    0, 0, total, total_bytes, 0)
