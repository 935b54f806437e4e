# ============================================================================
# PIPELINE ORCHESTRATOR
# ============================================================================
# STATUS: Service - poll-driven multi-phase Athena pipeline
# PURPOSE: Start runs, advance them one transition per status poll, stop them
# EXPORTS: PipelineOrchestrator, PipelineStartRequest
# DEPENDENCIES: core.logic.pipeline_machine, infrastructure (StatusStore,
#               IQueryService, IWorkDispatcher), services.workload, config
# PATTERNS: Pure decision + compare-and-swap apply, fire-and-forget dispatch
# ============================================================================

"""
Pipeline Orchestrator.

There is no worker holding the pipeline in memory. Each GET of a run's
status calls poll(), which:

    1. loads the run document for the scope
    2. observes the Athena queries the current phase waits on
    3. asks the pure state machine (advance) for at most one decision
    4. performs the decision's side effect that must precede the write
       (submitting the origins query)
    5. writes the new state with a compare-and-swap guarded on run_id and
       pipeline_phase
    6. performs the side effect that must follow the write (dispatching
       the batch step), only when this poll's write won

Concurrent polls therefore race on step 5. The loser of a SUBMIT_ORIGINS
race cancels the origins query it submitted; the loser of a
DISPATCH_PROCESSING race never dispatches.
"""

import re
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from config import PipelineConfig
from core.abort_registry import AbortRegistry, get_abort_registry
from core.logic.pipeline_machine import (
    PERCENT_STARTED,
    Action,
    Decision,
    advance,
    apply_decision,
    observed_queries,
)
from core.models import PipelinePhase, QueryNames, QueryStatus, RunStatus, run_scope
from exceptions import ExternalServiceError, ResourceNotFoundError, RunInProgressError, ValidationError
from infrastructure.dispatcher import IWorkDispatcher
from infrastructure.query_service import IQueryService
from infrastructure.status_store import StatusStore
from util_logger import LoggerFactory, ComponentType

from .audience_catalog import validate_audience_ids
from .workload import IBatchWorkload

logger = LoggerFactory.create_logger(ComponentType.ORCHESTRATOR, "PipelineOrchestrator")

_COUNTRY_RE = re.compile(r"^[A-Za-z]{2}$")


class PipelineStartRequest(BaseModel):
    """Body of POST /pipeline/{dataset_id}/{country}/start."""
    audience_ids: List[str] = Field(..., min_length=1)
    dataset_name: Optional[str] = None
    date_from: Optional[str] = Field(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$")
    date_to: Optional[str] = Field(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$")

    @field_validator("date_to")
    @classmethod
    def _range_order(cls, v, info):
        date_from = info.data.get("date_from")
        if v and date_from and v < date_from:
            raise ValueError("date_to is before date_from")
        return v


class PipelineOrchestrator:
    """
    Drives RunStatus documents through athena_spatial -> athena_origins ->
    processing -> done.

    Args:
        store: Run status documents
        query_service: Athena
        workload: Builds and submits the queries of each phase
        dispatcher: Fire-and-forget hand-off of the batch step
        config: Max run duration and CAS settings
        registry: In-process abort registry
        now_fn: UTC clock
        run_id_factory: New run ids
    """

    def __init__(
        self,
        store: StatusStore,
        query_service: IQueryService,
        workload: IBatchWorkload,
        dispatcher: IWorkDispatcher,
        config: Optional[PipelineConfig] = None,
        registry: Optional[AbortRegistry] = None,
        now_fn: Optional[Callable[[], datetime]] = None,
        run_id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ):
        self.store = store
        self.query_service = query_service
        self.workload = workload
        self.dispatcher = dispatcher
        self.config = config or PipelineConfig()
        self.registry = registry or get_abort_registry()
        self.now_fn = now_fn or (lambda: datetime.now(timezone.utc))
        self.run_id_factory = run_id_factory

    # ========================================================================
    # START
    # ========================================================================

    def start(self, dataset_id: str, country: str, request: PipelineStartRequest) -> RunStatus:
        """
        Create a run and submit the first-phase queries.

        Raises:
            ValidationError: Bad country or audience ids
            RunInProgressError: A younger running run exists for the scope
            ExternalServiceError: Query submission failed (run recorded as failed)
        """
        if not _COUNTRY_RE.match(country or ""):
            raise ValidationError(f"Invalid country code: {country!r}")
        audience_ids = validate_audience_ids(request.audience_ids)

        now = self.now_fn()
        run = RunStatus(
            run_id=self.run_id_factory(),
            dataset_id=dataset_id,
            dataset_name=request.dataset_name or dataset_id,
            country=country.upper(),
            audience_ids=audience_ids,
            total=len(audience_ids),
            date_from=request.date_from,
            date_to=request.date_to,
            started_at=now,
            percent=0,
            message="Submitting Athena queries...",
        )
        superseded: Dict[str, RunStatus] = {}

        def _claim(current: Optional[RunStatus]) -> Optional[RunStatus]:
            if current is not None and current.is_running:
                if now - current.started_at <= self.config.max_run_duration:
                    raise RunInProgressError(
                        f"Run {current.run_id} is still running for {run.scope}"
                    )
                superseded["run"] = current
            return run

        self.store.update_run(dataset_id, country, _claim)
        if "run" in superseded:
            logger.warning(f"⚠️ Replacing stale run {superseded['run'].run_id} for {run.scope}")
            self._cancel_queries(superseded["run"])

        try:
            submission = self.workload.submit_spatial(run)
        except (ExternalServiceError, ValidationError) as e:
            self._finish(run, Decision(Action.FAIL, error=str(e)))
            raise

        def _record(current: Optional[RunStatus]) -> Optional[RunStatus]:
            if current is None or current.run_id != run.run_id or not current.is_running:
                return None
            current.athena_query_ids[QueryNames.SPATIAL_JOIN] = submission.spatial_query_id
            current.athena_query_ids[QueryNames.TOTAL_DEVICES] = submission.total_devices_query_id
            current.visits_table_name = submission.visits_table_name
            current.percent = PERCENT_STARTED
            current.message = "Athena CTAS spatial join submitted..."
            return current

        result = self.store.update_run(dataset_id, country, _record)
        logger.info(f"🚀 Run {run.run_id} started for {run.scope} with {run.total} audiences")
        return result.record

    # ========================================================================
    # POLL
    # ========================================================================

    def poll(self, dataset_id: str, country: str) -> Optional[RunStatus]:
        """
        Read the run and advance it by at most one transition.

        Returns:
            The run as stored after this poll, or None if the scope has no run
        """
        run = self.store.get_run(dataset_id, country)
        if run is None or not run.is_running:
            return run

        now = self.now_fn()
        decision = None
        observations: Dict[str, QueryStatus] = {}

        if now - run.started_at <= self.config.max_run_duration:
            try:
                for name in observed_queries(run):
                    query_id = run.athena_query_ids.get(name)
                    if query_id:
                        observations[name] = self.query_service.check_status(query_id)
            except ExternalServiceError as e:
                decision = Decision(Action.FAIL, error=str(e))

        if decision is None:
            decision = advance(run, observations, now, self.config.max_run_duration)
        if decision.action == Action.NONE:
            return run
        return self._apply(run, decision, now)

    def _apply(self, run: RunStatus, decision: Decision, now: datetime) -> RunStatus:
        origins_id = origins_table = None
        if decision.action == Action.SUBMIT_ORIGINS:
            try:
                origins_id, origins_table = self.workload.submit_origins(run)
            except (ExternalServiceError, ValidationError) as e:
                decision = Decision(Action.FAIL, error=str(e))

        def _transition(current: Optional[RunStatus]) -> Optional[RunStatus]:
            if (current is None or current.run_id != run.run_id or not current.is_running
                    or current.pipeline_phase != run.pipeline_phase):
                return None
            if decision.action == Action.DISPATCH_PROCESSING and current.continue_triggered:
                return None
            return apply_decision(current, decision, now, origins_id, origins_table)

        result = self.store.update_run(run.dataset_id, run.country, _transition)
        if not result.written:
            if origins_id:
                logger.info(f"Run {run.run_id}: lost the origins race, cancelling orphan query {origins_id}")
                self._cancel_quietly(origins_id)
            return result.record

        updated = result.record
        action = decision.action
        if action == Action.SUBMIT_ORIGINS:
            logger.info(f"➡️ Run {run.run_id}: athena_spatial -> athena_origins")
        elif action == Action.DISPATCH_PROCESSING:
            logger.info(f"➡️ Run {run.run_id}: athena_origins -> processing")
            updated = self._dispatch(updated)
        elif updated.is_terminal:
            logger.info(f"⏹️ Run {run.run_id} finished as {updated.status.value}: {updated.message}")
            self._cancel_queries(updated)
            self.workload.cleanup(updated)
        return updated

    def _dispatch(self, run: RunStatus) -> RunStatus:
        try:
            self.dispatcher.dispatch_batch(run.dataset_id, run.country, run.run_id)
            return run
        except ExternalServiceError as e:
            logger.error(f"❌ Run {run.run_id}: batch dispatch failed: {e}")
            message = f"Batch dispatch failed ({e}); retry with continue"

            def _note(current: Optional[RunStatus]) -> Optional[RunStatus]:
                if current is None or current.run_id != run.run_id or not current.is_running:
                    return None
                current.message = message
                return current

            return self.store.update_run(run.dataset_id, run.country, _note).record or run

    # ========================================================================
    # STOP / CONTINUE / STATUS
    # ========================================================================

    def stop(self, dataset_id: str, country: str) -> RunStatus:
        """
        Request cancellation of the scope's running run.

        Raises:
            ResourceNotFoundError: No running run for the scope
        """
        scope = run_scope(dataset_id, country)

        def _request(current: Optional[RunStatus]) -> Optional[RunStatus]:
            if current is None or not current.is_running:
                raise ResourceNotFoundError(f"No running pipeline run for {scope}")
            if current.cancel_requested:
                return None
            current.cancel_requested = True
            current.message = "Cancellation requested..."
            return current

        run = self.store.update_run(dataset_id, country, _request).record
        self.registry.signal(scope)
        if run.pipeline_phase in (PipelinePhase.ATHENA_SPATIAL, PipelinePhase.ATHENA_ORIGINS):
            self._cancel_queries(run)
        logger.info(f"🛑 Stop requested for run {run.run_id} ({scope})")
        return run

    def continue_processing(self, dataset_id: str, country: str, run_id: str) -> RunStatus:
        """
        Re-dispatch the batch step of a run already in the processing phase.

        Raises:
            ResourceNotFoundError: No run with this run_id for the scope
            ValidationError: Run not running or not in the processing phase
        """
        run = self.store.get_run(dataset_id, country)
        if run is None or run.run_id != run_id:
            raise ResourceNotFoundError(f"Run {run_id} not found for {run_scope(dataset_id, country)}")
        if not run.is_running or run.pipeline_phase != PipelinePhase.PROCESSING:
            raise ValidationError(
                f"Run {run_id} is {run.status.value} in phase {run.pipeline_phase.value}; "
                f"only running runs in the processing phase can be continued"
            )
        self.dispatcher.dispatch_batch(dataset_id, run.country, run_id)
        logger.info(f"🔁 Re-dispatched batch step for run {run_id}")
        return run

    def get_status(self, dataset_id: str, country: str) -> Optional[RunStatus]:
        """Stored run, no side effects."""
        return self.store.get_run(dataset_id, country)

    # ========================================================================
    # HELPERS
    # ========================================================================

    def _finish(self, run: RunStatus, decision: Decision) -> Optional[RunStatus]:
        now = self.now_fn()

        def _terminal(current: Optional[RunStatus]) -> Optional[RunStatus]:
            if current is None or current.run_id != run.run_id or not current.is_running:
                return None
            return apply_decision(current, decision, now)

        return self.store.update_run(run.dataset_id, run.country, _terminal).record

    def _cancel_queries(self, run: RunStatus) -> None:
        for name, query_id in run.athena_query_ids.items():
            self._cancel_quietly(query_id, name)

    def _cancel_quietly(self, query_id: str, name: str = "") -> None:
        try:
            status = self.query_service.check_status(query_id)
            if status.is_active:
                self.query_service.cancel_query(query_id)
        except ExternalServiceError as e:
            logger.warning(f"⚠️ Could not cancel query {name or query_id}: {e}")

    def describe(self, run: Optional[RunStatus]) -> Dict[str, object]:
        """Status payload, including an explicit idle marker for scopes without a run."""
        if run is None:
            return {"active": False, "status": None, "message": "No pipeline run for this scope"}
        return run.to_response()
