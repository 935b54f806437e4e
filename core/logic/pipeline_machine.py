# ============================================================================
# PIPELINE STATE MACHINE
# ============================================================================
# STATUS: Core logic - pure, no I/O
# PURPOSE: Decide the next step of an audience pipeline run from observed
#          query states and apply it to RunStatus
# EXPORTS: Action, Decision, advance, apply_decision, observed_queries,
#          format_query_progress
# DEPENDENCIES: core.models, core.logic.transitions
# ============================================================================

"""
Pipeline State Machine - Pure Transition Logic.

The pipeline has no long-lived worker. Every status poll loads the stored
RunStatus, observes the Athena queries the current phase waits on, and
calls advance() to decide the single thing to do next. apply_decision()
turns that decision into the next RunStatus. Neither function performs I/O,
so calling them twice with the same inputs yields the same result.

Phase table:
    athena_spatial  waits on spatial_join (A) + total_devices (B)
                    A SUCCEEDED -> submit origins (C), go to athena_origins
    athena_origins  waits on total_devices (B) + origins (C)
                    B and C SUCCEEDED -> set continue_triggered, go to processing
    processing      owned by the batch step, polls only report
    done            terminal

Exports:
    Action: Kind of decision
    Decision: advance() result
    advance: (run, observations, now, max_duration) -> Decision
    apply_decision: (run, decision, now, ...) -> RunStatus
    observed_queries: Query names the current phase waits on
    format_query_progress: Progress message from query statistics
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional

from ..models.enums import PipelinePhase, QueryState, RunState
from ..models.query import QueryStatus
from ..models.run import QueryNames, RunStatus
from .transitions import can_phase_transition


# Progress milestones
PERCENT_STARTED = 5
PERCENT_SPATIAL_RUNNING = 10
PERCENT_ORIGINS_SUBMITTED = 30
PERCENT_ORIGINS_RUNNING = 45
PERCENT_PROCESSING_DISPATCHED = 65


class Action(str, Enum):
    NONE = "none"
    PROGRESS = "progress"
    SUBMIT_ORIGINS = "submit_origins"
    DISPATCH_PROCESSING = "dispatch_processing"
    FAIL = "fail"
    CANCEL = "cancel"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class Decision:
    action: Action
    percent: Optional[int] = None
    message: Optional[str] = None
    error: Optional[str] = None


_NO_CHANGE = Decision(Action.NONE)

_WAITS_ON: Dict[PipelinePhase, List[str]] = {
    PipelinePhase.ATHENA_SPATIAL: [QueryNames.SPATIAL_JOIN, QueryNames.TOTAL_DEVICES],
    PipelinePhase.ATHENA_ORIGINS: [QueryNames.TOTAL_DEVICES, QueryNames.ORIGINS],
}


def observed_queries(run: RunStatus) -> List[str]:
    """Logical query names whose status the current phase depends on."""
    if not run.is_running:
        return []
    return list(_WAITS_ON.get(run.pipeline_phase, []))


def format_query_progress(label: str, status: Optional[QueryStatus]) -> str:
    """Human-readable progress line from Athena execution statistics."""
    stats = status.statistics if status else None
    if stats is None or stats.scanned_gb is None:
        return f"Athena CTAS {label} running..."
    message = f"Athena CTAS {label}... {stats.scanned_gb:.1f} GB scanned"
    if stats.elapsed_ms:
        message += f", {round(stats.elapsed_ms / 1000)}s elapsed"
    return message


def _failed(status: Optional[QueryStatus]) -> bool:
    return status is not None and status.state == QueryState.FAILED


def _cancelled(status: Optional[QueryStatus]) -> bool:
    return status is not None and status.state == QueryState.CANCELLED


def _succeeded(status: Optional[QueryStatus]) -> bool:
    return status is not None and status.state == QueryState.SUCCEEDED


def advance(
    run: RunStatus,
    observations: Dict[str, QueryStatus],
    now: datetime,
    max_duration: timedelta,
) -> Decision:
    """
    Decide the next step for a run.

    At most one transition is returned. Terminal runs and runs in the
    processing phase never change here, except through the max-duration
    check which applies to every running run regardless of phase.

    Args:
        run: Stored run status
        observations: Query name -> latest QueryStatus for observed_queries(run)
        now: Current UTC time
        max_duration: Maximum wall-clock duration of a run

    Returns:
        Decision
    """
    if not run.is_running or run.is_terminal:
        return _NO_CHANGE

    if now - run.started_at > max_duration:
        minutes = int(max_duration.total_seconds() // 60)
        return Decision(
            Action.TIMEOUT,
            error=f"Run timed out (exceeded maximum execution time of {minutes} min)",
        )

    phase = run.pipeline_phase
    if phase == PipelinePhase.PROCESSING:
        return _NO_CHANGE

    if run.cancel_requested:
        return Decision(Action.CANCEL, message="Cancelled by user")

    if phase == PipelinePhase.ATHENA_SPATIAL:
        spatial = observations.get(QueryNames.SPATIAL_JOIN)
        total = observations.get(QueryNames.TOTAL_DEVICES)

        if spatial is None:
            return Decision(Action.FAIL, error="No spatial join query recorded for run")
        if _failed(spatial):
            return Decision(Action.FAIL, error=f"Spatial join CTAS failed: {spatial.error}")
        if _failed(total):
            return Decision(Action.FAIL, error=f"Total devices query failed: {total.error}")
        if _cancelled(spatial) or _cancelled(total):
            return Decision(Action.CANCEL, message="Athena query cancelled")
        if _succeeded(spatial):
            return Decision(
                Action.SUBMIT_ORIGINS,
                percent=PERCENT_ORIGINS_SUBMITTED,
                message="Spatial join done, resolving device origins (CTAS)...",
            )
        return Decision(
            Action.PROGRESS,
            percent=PERCENT_SPATIAL_RUNNING,
            message=format_query_progress("spatial join", spatial),
        )

    if phase == PipelinePhase.ATHENA_ORIGINS:
        total = observations.get(QueryNames.TOTAL_DEVICES)
        origins = observations.get(QueryNames.ORIGINS)

        if total is None:
            return Decision(Action.FAIL, error="No total devices query recorded for run")
        if origins is None:
            return Decision(Action.FAIL, error="No origins query recorded for run")
        if _failed(total):
            return Decision(Action.FAIL, error=f"Total devices query failed: {total.error}")
        if _failed(origins):
            return Decision(Action.FAIL, error=f"Origins CTAS failed: {origins.error}")
        if _cancelled(total) or _cancelled(origins):
            return Decision(Action.CANCEL, message="Athena query cancelled")
        if _succeeded(total) and _succeeded(origins):
            if run.continue_triggered:
                return _NO_CHANGE
            return Decision(
                Action.DISPATCH_PROCESSING,
                percent=PERCENT_PROCESSING_DISPATCHED,
                message="All Athena queries complete, processing results...",
            )
        if origins.is_active:
            message = format_query_progress("origins", origins)
        else:
            message = "Waiting for total devices count..."
        return Decision(Action.PROGRESS, percent=PERCENT_ORIGINS_RUNNING, message=message)

    return _NO_CHANGE


def apply_decision(
    run: RunStatus,
    decision: Decision,
    now: datetime,
    origins_query_id: Optional[str] = None,
    origins_table_name: Optional[str] = None,
) -> RunStatus:
    """
    Produce the RunStatus that results from a decision.

    The input is not modified. SUBMIT_ORIGINS needs the id and table of the
    already-submitted origins query.

    Raises:
        ValueError: Illegal phase change or missing origins details
    """
    updated = run.model_copy(deep=True)
    action = decision.action

    if action == Action.NONE:
        return updated

    if action == Action.PROGRESS:
        updated.percent = decision.percent if decision.percent is not None else updated.percent
        updated.message = decision.message or updated.message
        return updated

    if action == Action.SUBMIT_ORIGINS:
        if not origins_query_id or not origins_table_name:
            raise ValueError("SUBMIT_ORIGINS requires the origins query id and table name")
        _move(updated, PipelinePhase.ATHENA_ORIGINS)
        updated.athena_query_ids[QueryNames.ORIGINS] = origins_query_id
        updated.origins_table_name = origins_table_name
        updated.percent = decision.percent
        updated.message = decision.message
        return updated

    if action == Action.DISPATCH_PROCESSING:
        if updated.continue_triggered:
            raise ValueError(f"Processing already dispatched for run {run.run_id}")
        _move(updated, PipelinePhase.PROCESSING)
        updated.continue_triggered = True
        updated.percent = decision.percent
        updated.message = decision.message
        return updated

    # Terminal outcomes
    _move(updated, PipelinePhase.DONE)
    updated.completed_at = now
    if action == Action.CANCEL:
        updated.status = RunState.CANCELLED
        updated.message = decision.message or "Cancelled"
    else:
        updated.status = RunState.FAILED
        updated.error = decision.error
        updated.message = decision.error or "Failed"
    return updated


def _move(run: RunStatus, target: PipelinePhase) -> None:
    if not can_phase_transition(run.pipeline_phase, target):
        raise ValueError(
            f"Illegal phase transition {run.pipeline_phase.value} -> {target.value} for run {run.run_id}"
        )
    run.pipeline_phase = target
