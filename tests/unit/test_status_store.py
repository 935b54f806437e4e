"""
StatusStore tests: JSON documents with ETag compare-and-swap.
"""

import threading
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from pydantic import ValidationError as PydanticValidationError

from core.models import JobRecord, JobStatus, RunStatus
from exceptions import ContractViolationError, ExternalServiceError, LockConflictError, ResourceNotFoundError
from infrastructure.blob import ETagConflictError
from infrastructure.status_store import StatusStore


class TestPaths:

    def test_layout(self, status_store):
        assert status_store.job_path("abc") == "jobs/abc.json"
        assert status_store.run_path("ds1", "ES") == "runs/ds1/es/status.json"


class TestJobs:

    def test_missing_job_is_none(self, status_store):
        assert status_store.get_job("nope") is None

    def test_create_then_read(self, status_store, job_record_data):
        job = JobRecord(**job_record_data)
        status_store.create_job(job)

        loaded = status_store.get_job(job.job_id)
        assert loaded.job_id == job.job_id
        assert loaded.source_location == job.source_location

    def test_create_existing_job_conflicts(self, status_store, job_record_data):
        status_store.create_job(JobRecord(**job_record_data))
        with pytest.raises(LockConflictError):
            status_store.create_job(JobRecord(**job_record_data))

    def test_update_missing_job_raises(self, status_store):
        with pytest.raises(ResourceNotFoundError):
            status_store.update_job("nope", lambda job: job)

    def test_mutator_returning_none_skips_write(self, status_store, blob_repo, job_record_data):
        status_store.save_job(JobRecord(**job_record_data))
        writes = blob_repo.writes

        result = status_store.update_job(job_record_data["job_id"], lambda job: None)

        assert result.written is False
        assert result.record.job_id == job_record_data["job_id"]
        assert blob_repo.writes == writes

    def test_concurrent_increments_are_not_lost(self, status_store, job_record_data):
        job_id = job_record_data["job_id"]
        status_store.save_job(JobRecord(**job_record_data))
        barrier = threading.Barrier(5)

        def _increment(job):
            job.object_count += 1
            return job

        def _worker():
            barrier.wait()
            for _ in range(4):
                status_store.update_job(job_id, _increment)

        threads = [threading.Thread(target=_worker) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert status_store.get_job(job_id).object_count == 20


class TestJobInvariants:

    def test_synced_record_requires_full_copy(self, job_record_data):
        with pytest.raises(PydanticValidationError, match="40 of 120"):
            JobRecord(**job_record_data, object_count=40, expected_object_count=120,
                      synced_at=datetime(2025, 3, 1, tzinfo=timezone.utc))

    def test_store_refuses_to_persist_partial_sync(self, status_store, blob_repo, job_record_data):
        job = status_store.save_job(JobRecord(**job_record_data, object_count=40, expected_object_count=120))
        before = blob_repo.read_blob(status_store.container, status_store.job_path(job.job_id))

        def _complete(record):
            record.synced_at = datetime(2025, 3, 1, tzinfo=timezone.utc)
            return record

        with pytest.raises(ContractViolationError):
            status_store.update_job(job.job_id, _complete)

        assert blob_repo.read_blob(status_store.container, status_store.job_path(job.job_id)) == before

    def test_full_copy_may_be_marked_synced(self, status_store, job_record_data):
        job = status_store.save_job(JobRecord(**job_record_data, object_count=120, expected_object_count=120))

        def _complete(record):
            record.synced_at = datetime(2025, 3, 1, tzinfo=timezone.utc)
            return record

        assert status_store.update_job(job.job_id, _complete).written
        assert status_store.get_job(job.job_id).is_sync_complete()

    def test_successful_job_cannot_go_back_to_running(self, status_store, job_record_data):
        job = status_store.save_job(JobRecord(**job_record_data))

        def _rerun(record):
            record.status = JobStatus.RUNNING
            return record

        with pytest.raises(ContractViolationError, match="success -> running"):
            status_store.update_job(job.job_id, _rerun)
        assert status_store.get_job(job.job_id).status == JobStatus.SUCCESS

    def test_failed_job_may_be_queued_again(self, status_store, job_record_data):
        job = status_store.save_job(JobRecord(**{**job_record_data, "status": JobStatus.FAILED}))

        def _requeue(record):
            record.status = JobStatus.QUEUED
            return record

        assert status_store.update_job(job.job_id, _requeue).written
        assert status_store.get_job(job.job_id).status == JobStatus.QUEUED


class TestRuns:

    def test_update_run_creates_document(self, status_store, run_status_data):
        run = RunStatus(**run_status_data)

        result = status_store.update_run(run.dataset_id, run.country, lambda current: run)

        assert result.written is True
        assert status_store.get_run(run.dataset_id, run.country).run_id == run.run_id

    def test_mutator_sees_none_for_missing_scope(self, status_store):
        seen = []
        status_store.update_run("ds", "FR", lambda current: seen.append(current))
        assert seen == [None]


class TestFailures:

    def test_exhausted_retries_raise_lock_conflict(self, job_record_data):
        repo = MagicMock()
        repo.read_blob_with_etag.return_value = (JobRecord(**job_record_data).model_dump_json().encode(), '"e1"')
        repo.write_blob.side_effect = ETagConflictError("orchestration", "jobs/x.json")
        store = StatusStore(repo, container="orchestration", retry_count=3)

        with pytest.raises(LockConflictError):
            store.update_job(job_record_data["job_id"], lambda job: job)
        assert repo.write_blob.call_count == 3

    def test_storage_errors_become_external_service_errors(self):
        repo = MagicMock()
        repo.read_blob_with_etag.side_effect = RuntimeError("connection reset")
        store = StatusStore(repo, container="orchestration")

        with pytest.raises(ExternalServiceError) as exc:
            store.get_job("abc")
        assert exc.value.service == "storage"
