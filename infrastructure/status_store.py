# ============================================================================
# STATUS STORE
# ============================================================================
# STATUS: Infrastructure - durable orchestration state
# PURPOSE: Read/write JobRecord and RunStatus documents as JSON blobs with
#          ETag compare-and-swap updates
# EXPORTS: StatusStore, UpdateResult
# DEPENDENCIES: pydantic, infrastructure.blob
# PATTERNS: Repository, optimistic concurrency (read-modify-write + If-Match)
# ============================================================================

"""
Status Store - JSON documents in the status container.

Layout:
    jobs/{job_id}.json                       JobRecord
    runs/{dataset_id}/{country}/status.json  RunStatus (one per scope)

Every update is a read-modify-write loop:

    1. read the document and its ETag
    2. hand a freshly parsed model to the mutator
    3. write with If-Match (or If-None-Match: * when creating)
    4. on a precondition failure, start over from 1

The mutator returns the model to write, or None to leave the document as
it is. Mutators must be pure with respect to the model they receive: they
can run several times when writers collide.
"""

from dataclasses import dataclass
from typing import Callable, Generic, Optional, Type, TypeVar

from azure.core.exceptions import ResourceNotFoundError as BlobNotFoundError
from pydantic import BaseModel, ValidationError as PydanticValidationError

from core.logic.transitions import can_job_transition
from core.models import JobRecord, RunStatus
from exceptions import ContractViolationError, ExternalServiceError, LockConflictError, ResourceNotFoundError
from util_logger import LoggerFactory, ComponentType

from .blob import ETagConflictError, IBlobRepository

logger = LoggerFactory.create_logger(ComponentType.REPOSITORY, "StatusStore")

T = TypeVar("T", bound=BaseModel)


@dataclass
class UpdateResult(Generic[T]):
    """Outcome of a compare-and-swap update."""
    record: Optional[T]
    written: bool


class StatusStore:
    """
    Durable store for job records and run status documents.

    Args:
        blob_repo: Blob repository (real or in-memory fake)
        container: Status container name
        retry_count: Compare-and-swap attempts before giving up
    """

    def __init__(self, blob_repo: IBlobRepository, container: str, retry_count: int = 5,
                 jobs_prefix: str = "jobs", runs_prefix: str = "runs"):
        self.blob_repo = blob_repo
        self.container = container
        self.retry_count = retry_count
        self.jobs_prefix = jobs_prefix.strip("/")
        self.runs_prefix = runs_prefix.strip("/")

    # ========================================================================
    # PATHS
    # ========================================================================

    def job_path(self, job_id: str) -> str:
        return f"{self.jobs_prefix}/{job_id}.json"

    def run_path(self, dataset_id: str, country: str) -> str:
        return f"{self.runs_prefix}/{dataset_id}/{country.lower()}/status.json"

    # ========================================================================
    # JOBS
    # ========================================================================

    def get_job(self, job_id: str) -> Optional[JobRecord]:
        return self._read(self.job_path(job_id), JobRecord)

    def create_job(self, job: JobRecord) -> JobRecord:
        """
        Store a new job record.

        Raises:
            LockConflictError: A record with this job_id already exists
        """
        path = self.job_path(job.job_id)
        try:
            self._write(path, job, if_none_match="*")
        except ETagConflictError:
            raise LockConflictError(f"Job {job.job_id} already exists", job_id=job.job_id)
        logger.info(f"📝 Created job record {job.job_id}")
        return job

    def save_job(self, job: JobRecord) -> JobRecord:
        """Unconditional write (seeding and admin paths only)."""
        self._write(self.job_path(job.job_id), job)
        return job

    def update_job(self, job_id: str,
                   mutate: Callable[[JobRecord], Optional[JobRecord]]) -> UpdateResult[JobRecord]:
        """
        Compare-and-swap update of a job record.

        Raises:
            ResourceNotFoundError: No record for job_id
            LockConflictError: Retries exhausted by concurrent writers
            ContractViolationError: Mutator made a disallowed status change
        """
        def _require(current: Optional[JobRecord]) -> Optional[JobRecord]:
            if current is None:
                raise ResourceNotFoundError(f"Job not found: {job_id}")
            before = current.status
            updated = mutate(current)
            if updated is not None and not can_job_transition(before, updated.status):
                raise ContractViolationError(
                    f"Job {job_id}: status {before.value} -> {updated.status.value} is not allowed"
                )
            return updated

        return self._update(self.job_path(job_id), JobRecord, _require)

    # ========================================================================
    # RUNS
    # ========================================================================

    def get_run(self, dataset_id: str, country: str) -> Optional[RunStatus]:
        return self._read(self.run_path(dataset_id, country), RunStatus)

    def save_run(self, run: RunStatus) -> RunStatus:
        """Unconditional write of the scope's run document."""
        self._write(self.run_path(run.dataset_id, run.country), run)
        return run

    def update_run(self, dataset_id: str, country: str,
                   mutate: Callable[[Optional[RunStatus]], Optional[RunStatus]]) -> UpdateResult[RunStatus]:
        """
        Compare-and-swap update of a scope's run document.

        The mutator receives None when the scope has no document yet; returning
        a model then creates it.
        """
        return self._update(self.run_path(dataset_id, country), RunStatus, mutate)

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _read(self, path: str, model_cls: Type[T]) -> Optional[T]:
        loaded = self._read_with_etag(path, model_cls)
        return loaded[0] if loaded else None

    def _read_with_etag(self, path: str, model_cls: Type[T]):
        try:
            data, etag = self.blob_repo.read_blob_with_etag(self.container, path)
        except BlobNotFoundError:
            return None
        except Exception as e:
            raise ExternalServiceError(f"Failed to read {self.container}/{path}: {e}", service="storage") from e
        return model_cls.model_validate_json(data), etag

    def _write(self, path: str, model: BaseModel, if_match: Optional[str] = None,
               if_none_match: Optional[str] = None) -> None:
        # mutators edit fields in place, which pydantic does not re-validate
        try:
            model = type(model).model_validate(model.model_dump())
        except PydanticValidationError as e:
            raise ContractViolationError(f"Refusing to persist invalid {type(model).__name__} at {path}: {e}") from e
        payload = model.model_dump_json(indent=2).encode("utf-8")
        try:
            self.blob_repo.write_blob(
                self.container, path, payload,
                content_type="application/json",
                if_match=if_match,
                if_none_match=if_none_match,
            )
        except ETagConflictError:
            raise
        except Exception as e:
            raise ExternalServiceError(f"Failed to write {self.container}/{path}: {e}", service="storage") from e

    def _update(self, path: str, model_cls: Type[T],
                mutate: Callable[[Optional[T]], Optional[T]]) -> UpdateResult[T]:
        for attempt in range(1, self.retry_count + 1):
            loaded = self._read_with_etag(path, model_cls)
            current, etag = loaded if loaded else (None, None)

            updated = mutate(current.model_copy(deep=True) if current is not None else None)
            if updated is None:
                return UpdateResult(record=current, written=False)

            try:
                if etag is None:
                    self._write(path, updated, if_none_match="*")
                else:
                    self._write(path, updated, if_match=etag)
                return UpdateResult(record=updated, written=True)
            except ETagConflictError:
                logger.debug(f"ETag conflict on {path} (attempt {attempt}/{self.retry_count})")

        logger.warning(f"⚠️ Gave up updating {path} after {self.retry_count} conflicting attempts")
        raise LockConflictError(f"Concurrent updates to {path}, retry later")
