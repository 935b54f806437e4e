"""
LockManager tests: advisory per-job lock on the JobRecord.
"""

import threading

import pytest

from core.models import JobRecord
from exceptions import ResourceNotFoundError


@pytest.fixture
def job(status_store, job_record_data):
    return status_store.save_job(JobRecord(**job_record_data))


class TestTryAcquire:

    def test_acquire_free_lock_returns_token(self, lock_manager, status_store, job, clock):
        token = lock_manager.try_acquire(job.job_id)

        assert token
        stored = status_store.get_job(job.job_id)
        assert stored.lock_token == token
        assert stored.lock_acquired_at == clock.now

    def test_second_acquire_is_refused(self, lock_manager, job):
        assert lock_manager.try_acquire(job.job_id) is not None
        assert lock_manager.try_acquire(job.job_id) is None

    def test_unknown_job_raises(self, lock_manager):
        with pytest.raises(ResourceNotFoundError):
            lock_manager.try_acquire("missing-job")

    def test_concurrent_acquires_have_single_winner(self, lock_manager, job):
        tokens = []
        barrier = threading.Barrier(8)

        def _worker():
            barrier.wait()
            tokens.append(lock_manager.try_acquire(job.job_id))

        threads = [threading.Thread(target=_worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        winners = [t for t in tokens if t is not None]
        assert len(winners) == 1


class TestRelease:

    def test_release_clears_lock(self, lock_manager, status_store, job):
        lock_manager.try_acquire(job.job_id)

        assert lock_manager.release(job.job_id) is True
        assert status_store.get_job(job.job_id).lock_token is None
        assert lock_manager.is_locked(job.job_id) is False

    def test_release_without_lock_reports_false(self, lock_manager, job):
        assert lock_manager.release(job.job_id) is False

    def test_release_if_owner_ignores_other_token(self, lock_manager, job):
        token = lock_manager.try_acquire(job.job_id)

        assert lock_manager.release_if_owner(job.job_id, "someone-else") is False
        assert lock_manager.is_locked(job.job_id) is True
        assert lock_manager.release_if_owner(job.job_id, token) is True
        assert lock_manager.is_locked(job.job_id) is False

    def test_reacquire_after_forced_release(self, lock_manager, job):
        first = lock_manager.try_acquire(job.job_id)
        lock_manager.release(job.job_id)
        second = lock_manager.try_acquire(job.job_id)

        assert second is not None
        assert second != first
