"""
In-memory fakes for the cloud collaborators.

    InMemoryBlobRepository  IBlobRepository with real ETag semantics
    FakeQueryService        IQueryService whose query states tests set by hand
    RecordingDispatcher     IWorkDispatcher that records instead of sending
    FakeWorkload            IBatchWorkload driving FakeQueryService

All of them are thread-safe so concurrency tests can share one instance.
"""

import hashlib
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from azure.core.exceptions import ResourceNotFoundError

from core.models import (
    AudienceResult,
    AudienceResultStatus,
    QueryResult,
    QueryState,
    QueryStatistics,
    QueryStatus,
    RunStatus,
)
from exceptions import ExternalServiceError
from infrastructure.blob import ETagConflictError, IBlobRepository
from infrastructure.dispatcher import IWorkDispatcher
from infrastructure.query_service import IQueryService
from services.workload import IBatchWorkload, SpatialSubmission


# ============================================================================
# BLOB STORAGE
# ============================================================================

class InMemoryBlobRepository(IBlobRepository):
    """
    Dict-backed blob storage.

    Args:
        copy_hook: Called with the source path after every successful copy,
            outside the internal lock (tests use it to cancel mid-sync)
        failing_copies: Source paths whose copy raises
    """

    def __init__(self, copy_hook: Optional[Callable[[str], None]] = None,
                 failing_copies: Optional[Set[str]] = None):
        self._blobs: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self._lock = threading.RLock()
        self.copy_hook = copy_hook
        self.failing_copies = set(failing_copies or ())
        self.copies: List[Tuple[str, str, str, str]] = []
        self.writes = 0

    def seed(self, container: str, blob_path: str, data: bytes = b"x") -> None:
        self.write_blob(container, blob_path, data)

    def _get(self, container: str, blob_path: str) -> Dict[str, Any]:
        entry = self._blobs.get((container, blob_path))
        if entry is None:
            raise ResourceNotFoundError(f"Blob not found: {container}/{blob_path}")
        return entry

    def read_blob(self, container: str, blob_path: str) -> bytes:
        with self._lock:
            return self._get(container, blob_path)["data"]

    def read_blob_with_etag(self, container: str, blob_path: str) -> Tuple[bytes, str]:
        with self._lock:
            entry = self._get(container, blob_path)
            return entry["data"], entry["etag"]

    def write_blob(self, container: str, blob_path: str, data, overwrite: bool = True,
                   content_type: str = "application/octet-stream", metadata: Optional[Dict[str, str]] = None,
                   if_match: Optional[str] = None, if_none_match: Optional[str] = None) -> Dict[str, Any]:
        if hasattr(data, "read"):
            data = data.read()
        with self._lock:
            existing = self._blobs.get((container, blob_path))
            if if_match is not None and (existing is None or existing["etag"] != if_match):
                raise ETagConflictError(container, blob_path, "If-Match failed")
            if (if_none_match == "*" or not overwrite) and existing is not None:
                raise ETagConflictError(container, blob_path, "Blob already exists")
            etag = f'"{uuid.uuid4().hex}"'
            now = datetime.now(timezone.utc)
            self._blobs[(container, blob_path)] = {
                "data": bytes(data),
                "etag": etag,
                "content_type": content_type,
                "last_modified": now,
            }
            self.writes += 1
            return {"container": container, "blob_path": blob_path, "etag": etag, "last_modified": now}

    def list_blobs(self, container: str, prefix: str = "", limit: Optional[int] = None) -> List[Dict[str, Any]]:
        with self._lock:
            names = sorted(p for (c, p) in self._blobs if c == container and p.startswith(prefix))
            if limit is not None:
                names = names[:limit]
            return [
                {
                    "name": name,
                    "size": len(self._blobs[(container, name)]["data"]),
                    "etag": self._blobs[(container, name)]["etag"],
                    "last_modified": self._blobs[(container, name)]["last_modified"],
                    "content_type": self._blobs[(container, name)]["content_type"],
                    "content_md5": hashlib.md5(self._blobs[(container, name)]["data"]).hexdigest(),
                }
                for name in names
            ]

    def copy_blob(self, source_container: str, source_path: str,
                  dest_container: str, dest_path: str) -> Dict[str, Any]:
        if source_path in self.failing_copies:
            raise ExternalServiceError(f"Copy of {source_path} failed", service="storage")
        with self._lock:
            data = self._get(source_container, source_path)["data"]
            result = self.write_blob(dest_container, dest_path, data)
            self.copies.append((source_container, source_path, dest_container, dest_path))
        if self.copy_hook is not None:
            self.copy_hook(source_path)
        return result

    def blob_exists(self, container: str, blob_path: str) -> bool:
        with self._lock:
            return (container, blob_path) in self._blobs

    def delete_blob(self, container: str, blob_path: str) -> bool:
        with self._lock:
            return self._blobs.pop((container, blob_path), None) is not None


# ============================================================================
# QUERY SERVICE
# ============================================================================

class FakeQueryService(IQueryService):
    """Queries start QUEUED and only move when a test calls set_state."""

    def __init__(self):
        self._lock = threading.Lock()
        self._counter = 0
        self.statuses: Dict[str, QueryStatus] = {}
        self.sql: Dict[str, str] = {}
        self.cancelled: List[str] = []
        self.dropped: List[str] = []
        self.results: Dict[str, QueryResult] = {}
        self.fail_status_checks = False
        self.fail_submissions = False

    def _next_id(self, sql: str) -> str:
        if self.fail_submissions:
            raise ExternalServiceError("Athena StartQueryExecution failed: throttled", service="athena")
        with self._lock:
            self._counter += 1
            query_id = f"q-{self._counter}"
            self.statuses[query_id] = QueryStatus(query_id=query_id, state=QueryState.QUEUED)
            self.sql[query_id] = sql
            return query_id

    def submit_query(self, sql: str) -> str:
        return self._next_id(sql)

    def submit_ctas(self, table_name: str, select_sql: str) -> str:
        return self._next_id(f"CREATE TABLE {table_name} AS {select_sql}")

    def set_state(self, query_id: str, state: QueryState, error: Optional[str] = None,
                  bytes_scanned: Optional[int] = None, elapsed_ms: Optional[int] = None) -> None:
        stats = None
        if bytes_scanned is not None or elapsed_ms is not None:
            stats = QueryStatistics(bytes_scanned=bytes_scanned, elapsed_ms=elapsed_ms)
        with self._lock:
            self.statuses[query_id] = QueryStatus(query_id=query_id, state=state, statistics=stats, error=error)

    def check_status(self, query_id: str) -> QueryStatus:
        if self.fail_status_checks:
            raise ExternalServiceError("Athena GetQueryExecution failed: access denied", service="athena")
        with self._lock:
            return self.statuses[query_id]

    def fetch_results(self, query_id: str, max_rows: Optional[int] = None) -> QueryResult:
        return self.results.get(query_id, QueryResult())

    def run_query(self, sql: str, timeout_seconds: Optional[int] = None) -> QueryResult:
        query_id = self._next_id(sql)
        self.set_state(query_id, QueryState.SUCCEEDED)
        return self.results.get(sql, QueryResult())

    def cancel_query(self, query_id: str) -> None:
        with self._lock:
            self.cancelled.append(query_id)
            self.statuses[query_id] = QueryStatus(query_id=query_id, state=QueryState.CANCELLED)

    def drop_table(self, table_name: str) -> str:
        self.dropped.append(table_name)
        return f"drop-{len(self.dropped)}"


# ============================================================================
# DISPATCH
# ============================================================================

class RecordingDispatcher(IWorkDispatcher):
    def __init__(self, fail: bool = False):
        self._lock = threading.Lock()
        self.sync_calls: List[Tuple[str, str]] = []
        self.batch_calls: List[Tuple[str, str, str]] = []
        self.fail = fail

    def dispatch_sync(self, job_id: str, lock_token: str, correlation_id: Optional[str] = None) -> str:
        if self.fail:
            raise ExternalServiceError("Service Bus send failed", service="servicebus")
        with self._lock:
            self.sync_calls.append((job_id, lock_token))
            return f"msg-sync-{len(self.sync_calls)}"

    def dispatch_batch(self, dataset_id: str, country: str, run_id: str,
                       correlation_id: Optional[str] = None) -> str:
        if self.fail:
            raise ExternalServiceError("Service Bus send failed", service="servicebus")
        with self._lock:
            self.batch_calls.append((dataset_id, country, run_id))
            return f"msg-batch-{len(self.batch_calls)}"


# ============================================================================
# WORKLOAD
# ============================================================================

class FakeWorkload(IBatchWorkload):
    """
    Submits placeholder queries and completes sub-tasks instantly.

    Args:
        query_service: Receives the submitted queries
        subtask_hook: Called with the audience id after each sub-task
        failing_subtasks: Audience ids whose sub-task reports failure
    """

    def __init__(self, query_service: FakeQueryService,
                 subtask_hook: Optional[Callable[[str], None]] = None,
                 failing_subtasks: Optional[Set[str]] = None):
        self.query_service = query_service
        self.subtask_hook = subtask_hook
        self.failing_subtasks = set(failing_subtasks or ())
        self.processed: List[str] = []
        self.cleaned_up: List[str] = []
        self.context_loads = 0
        self.fail_context = False

    def submit_spatial(self, run: RunStatus) -> SpatialSubmission:
        spatial = self.query_service.submit_ctas(f"temp_visits_{run.run_id}", "SELECT visits")
        total = self.query_service.submit_query("SELECT COUNT(DISTINCT ad_id) AS total")
        return SpatialSubmission(spatial, total, f"temp_visits_{run.run_id}")

    def submit_origins(self, run: RunStatus) -> Tuple[str, str]:
        table = f"temp_origins_{run.run_id}"
        return self.query_service.submit_ctas(table, "SELECT origins"), table

    def load_context(self, run: RunStatus) -> Any:
        if self.fail_context:
            raise ExternalServiceError("Athena query failed: table not found", service="athena")
        self.context_loads += 1
        return {"run_id": run.run_id}

    def process_subtask(self, context: Any, run: RunStatus, audience_id: str) -> AudienceResult:
        self.processed.append(audience_id)
        status = (AudienceResultStatus.FAILED if audience_id in self.failing_subtasks
                  else AudienceResultStatus.COMPLETED)
        result = AudienceResult(audience_id=audience_id, dataset_id=run.dataset_id,
                                country=run.country, run_id=run.run_id, status=status)
        if self.subtask_hook is not None:
            self.subtask_hook(audience_id)
        return result

    def cleanup(self, run: RunStatus) -> None:
        self.cleaned_up.append(run.run_id)
