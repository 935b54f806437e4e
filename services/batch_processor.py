# ============================================================================
# BATCH PROCESSOR
# ============================================================================
# STATUS: Service - processing phase of a pipeline run
# PURPOSE: Run a run's sub-tasks in order with durable progress checkpoints
#          and cancellation checked before every sub-task
# EXPORTS: BatchProcessor
# DEPENDENCIES: infrastructure.status_store, services.workload, core.models
# ============================================================================

"""
Batch Processor.

Invoked from the pipeline-batches queue (and again by /continue). The
processing phase may outlive any single process, so the stop flag is read
from the durable run document before every sub-task; the in-process abort
registry is only consulted as an additional fast path.

Progress layout:
    68        batch step accepted
    80        shared context loaded
    80 .. 98  one step per sub-task
    100       completed

completed_audiences is written after every sub-task, so a re-dispatch of
the same run resumes after the last persisted sub-task.
"""

import traceback
from datetime import datetime, timezone
from typing import Callable, Optional

from core.abort_registry import AbortRegistry, get_abort_registry
from core.models import AudienceResultStatus, PipelinePhase, RunState, RunStatus
from exceptions import ExternalServiceError, ResourceNotFoundError, StaleRunError, ValidationError
from infrastructure.status_store import StatusStore
from util_logger import LoggerFactory, ComponentType

from .audience_catalog import get_audience
from .workload import IBatchWorkload

logger = LoggerFactory.create_logger(ComponentType.SERVICE, "BatchProcessor")

PERCENT_BATCH_ACCEPTED = 68
PERCENT_CONTEXT_LOADED = 80
PERCENT_SUBTASKS_SPAN = 18


class BatchProcessor:
    """Runs the processing phase of one pipeline run."""

    def __init__(
        self,
        store: StatusStore,
        workload: IBatchWorkload,
        registry: Optional[AbortRegistry] = None,
        now_fn: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.workload = workload
        self.registry = registry or get_abort_registry()
        self.now_fn = now_fn or (lambda: datetime.now(timezone.utc))

    def process(self, dataset_id: str, country: str, run_id: str) -> RunStatus:
        """
        Process every remaining sub-task of the run.

        Raises:
            ResourceNotFoundError: No run document for the scope
            StaleRunError: The scope now holds another run, or the run left
                the processing phase
        """
        run = self.store.get_run(dataset_id, country)
        if run is None:
            raise ResourceNotFoundError(f"No pipeline run for {dataset_id}/{country}")
        if run.run_id != run_id:
            raise StaleRunError(f"Batch for run {run_id} superseded by run {run.run_id}")
        if not run.is_running or run.pipeline_phase != PipelinePhase.PROCESSING:
            raise StaleRunError(
                f"Run {run_id} is {run.status.value} in phase {run.pipeline_phase.value}"
            )

        token = self.registry.register(run.scope)
        try:
            return self._run(run, token)
        finally:
            self.registry.unregister(run.scope, token)

    def _run(self, run: RunStatus, token) -> RunStatus:
        run_id = run.run_id
        run = self._update(run, percent=PERCENT_BATCH_ACCEPTED, message="Loading query results...") or run

        try:
            context = self.workload.load_context(run)
        except (ExternalServiceError, ValidationError) as e:
            logger.error(f"❌ Run {run_id}: loading results failed: {e}")
            return self._finish(run, RunState.FAILED, f"Processing failed: {e}", error=str(e))

        run = self._update(run, percent=PERCENT_CONTEXT_LOADED, message="Processing audiences...") or run
        total = len(run.audience_ids)

        for index, audience_id in enumerate(run.audience_ids):
            if audience_id in run.completed_audiences or audience_id in run.failed_audiences:
                continue

            latest = self.store.get_run(run.dataset_id, run.country)
            if latest is None or latest.run_id != run_id or not latest.is_running:
                logger.warning(f"⚠️ Run {run_id} no longer active, abandoning batch")
                return latest or run
            if latest.cancel_requested or self.registry.is_signaled(token):
                done = len(latest.completed_audiences)
                logger.info(f"🛑 Run {run_id} cancelled after {done}/{total} audiences")
                return self._finish(
                    latest, RunState.CANCELLED, f"Cancelled by user ({done}/{total} audiences completed)"
                )
            run = latest

            audience = get_audience(audience_id)
            name = audience.name if audience else audience_id
            run = self._update(run, current_audience_name=name,
                               message=f"Processing {name} ({index + 1}/{total})...") or run

            try:
                result = self.workload.process_subtask(context, run, audience_id)
                succeeded = result.status == AudienceResultStatus.COMPLETED
            except (ExternalServiceError, ValidationError) as e:
                logger.error(f"❌ Run {run_id}: audience {audience_id} failed: {e}")
                succeeded = False
            except Exception as e:
                logger.error(f"❌ Run {run_id}: audience {audience_id} failed: {type(e).__name__}: {e}")
                logger.debug(f"📍 Full traceback: {traceback.format_exc()}")
                succeeded = False

            percent = PERCENT_CONTEXT_LOADED + round((index + 1) / total * PERCENT_SUBTASKS_SPAN)
            run = self._record_subtask(run, audience_id, succeeded, index + 1, percent) or run

        failed = len(run.failed_audiences)
        message = f"Completed {len(run.completed_audiences)}/{total} audiences"
        if failed:
            message += f" ({failed} failed)"
        return self._finish(run, RunState.COMPLETED, message)

    def _record_subtask(self, run: RunStatus, audience_id: str, succeeded: bool,
                        current: int, percent: int) -> Optional[RunStatus]:
        def _mutate(doc: Optional[RunStatus]) -> Optional[RunStatus]:
            if doc is None or doc.run_id != run.run_id or not doc.is_running:
                return None
            target = doc.completed_audiences if succeeded else doc.failed_audiences
            if audience_id not in target:
                target.append(audience_id)
            doc.current = max(doc.current, current)
            doc.percent = max(doc.percent, percent)
            return doc

        result = self.store.update_run(run.dataset_id, run.country, _mutate)
        return result.record if result.written else None

    def _update(self, run: RunStatus, **changes) -> Optional[RunStatus]:
        def _mutate(doc: Optional[RunStatus]) -> Optional[RunStatus]:
            if doc is None or doc.run_id != run.run_id or not doc.is_running:
                return None
            for key, value in changes.items():
                setattr(doc, key, value)
            return doc

        result = self.store.update_run(run.dataset_id, run.country, _mutate)
        return result.record if result.written else None

    def _finish(self, run: RunStatus, state: RunState, message: str,
                error: Optional[str] = None) -> RunStatus:
        now = self.now_fn()

        def _mutate(doc: Optional[RunStatus]) -> Optional[RunStatus]:
            if doc is None or doc.run_id != run.run_id or not doc.is_running:
                return None
            doc.status = state
            doc.pipeline_phase = PipelinePhase.DONE
            doc.completed_at = now
            doc.message = message
            doc.current_audience_name = None
            if state == RunState.COMPLETED:
                doc.percent = 100
            if error:
                doc.error = error
            return doc

        result = self.store.update_run(run.dataset_id, run.country, _mutate)
        final = result.record or run
        if result.written:
            logger.info(f"⏹️ Run {run.run_id} finished as {state.value}: {message}")
            self.workload.cleanup(final)
        return final
