# ============================================================================
# LOCK MANAGER
# ============================================================================
# STATUS: Infrastructure - per-job advisory lock
# PURPOSE: Acquire, release and break the sync lock held on a JobRecord
# EXPORTS: LockManager
# DEPENDENCIES: infrastructure.status_store, core.models
# PATTERNS: Compare-and-swap on the record's ETag
# ============================================================================

"""
Lock Manager - advisory, breakable per-job lock.

The lock lives in the job record itself (lock_token / lock_acquired_at) so
a single compare-and-swap decides between concurrent acquirers: whoever
writes first against the ETag they read wins, the other re-reads, sees a
token and gives up.

The lock is advisory: release() clears it unconditionally, which is how a
forced re-sync and the cancel endpoint break a lock held by a crashed or
stuck worker.

Exports:
    LockManager
"""

import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from core.models import JobRecord
from util_logger import LoggerFactory, ComponentType

from .status_store import StatusStore

logger = LoggerFactory.create_logger(ComponentType.REPOSITORY, "LockManager")


def _new_token() -> str:
    return uuid.uuid4().hex


class LockManager:
    """Per-job lock stored on the JobRecord."""

    def __init__(self, store: StatusStore,
                 token_factory: Callable[[], str] = _new_token,
                 now_fn: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.token_factory = token_factory
        self.now_fn = now_fn or (lambda: datetime.now(timezone.utc))

    def try_acquire(self, job_id: str) -> Optional[str]:
        """
        Take the lock if nobody holds it.

        Returns:
            The new lock token, or None when the lock is already held

        Raises:
            ResourceNotFoundError: No record for job_id
        """
        token = self.token_factory()

        def _acquire(job: JobRecord) -> Optional[JobRecord]:
            if job.lock_token is not None:
                return None
            now = self.now_fn()
            job.lock_token = token
            job.lock_acquired_at = now
            job.updated_at = now
            return job

        result = self.store.update_job(job_id, _acquire)
        if result.written:
            logger.info(f"🔒 Lock acquired for job {job_id}")
            return token

        logger.info(f"Lock for job {job_id} is held by another operation")
        return None

    def release(self, job_id: str) -> bool:
        """
        Clear the lock unconditionally.

        Returns:
            True if a lock was held
        """
        def _release(job: JobRecord) -> Optional[JobRecord]:
            if job.lock_token is None:
                return None
            job.lock_token = None
            job.lock_acquired_at = None
            job.updated_at = self.now_fn()
            return job

        result = self.store.update_job(job_id, _release)
        if result.written:
            logger.info(f"🔓 Lock released for job {job_id}")
        return result.written

    def release_if_owner(self, job_id: str, token: str) -> bool:
        """
        Clear the lock only while it still carries token.

        Returns:
            True if this token was the holder and has been released
        """
        def _release(job: JobRecord) -> Optional[JobRecord]:
            if job.lock_token != token:
                return None
            job.lock_token = None
            job.lock_acquired_at = None
            job.updated_at = self.now_fn()
            return job

        result = self.store.update_job(job_id, _release)
        if not result.written:
            logger.warning(f"⚠️ Lock for job {job_id} was taken over, not releasing")
        return result.written

    def is_locked(self, job_id: str) -> bool:
        job = self.store.get_job(job_id)
        return job is not None and job.is_locked
