"""
State Transition Logic for Jobs and Pipeline Runs.

Contains business rules for valid state transitions.
Separated from data models for clean architecture.

Exports:
    can_job_transition: Check if upstream job status change is valid
    can_phase_transition: Check if a pipeline phase change is valid
    PHASE_ORDER: Pipeline phases in visiting order

Dependencies:
    core.models.enums: JobStatus, PipelinePhase
"""

from typing import List

from ..models.enums import JobStatus, PipelinePhase


PHASE_ORDER: List[PipelinePhase] = [
    PipelinePhase.ATHENA_SPATIAL,
    PipelinePhase.ATHENA_ORIGINS,
    PipelinePhase.PROCESSING,
    PipelinePhase.DONE,
]


def can_job_transition(current: JobStatus, target: JobStatus) -> bool:
    """
    Check if a job can transition from current to target status.

    Forward-only, except a failed or scheduled job may be queued again.

    Args:
        current: Current job status
        target: Target job status

    Returns:
        True if transition is valid, False otherwise
    """
    if current == target:
        return True

    transitions = {
        JobStatus.SCHEDULED: [JobStatus.QUEUED, JobStatus.RUNNING, JobStatus.FAILED],
        JobStatus.QUEUED: [JobStatus.RUNNING, JobStatus.SUCCESS, JobStatus.FAILED],
        JobStatus.RUNNING: [JobStatus.SUCCESS, JobStatus.FAILED],
        JobStatus.FAILED: [JobStatus.QUEUED],
        JobStatus.SUCCESS: [],  # Terminal state
    }

    return target in transitions.get(current, [])


def can_phase_transition(current: PipelinePhase, target: PipelinePhase) -> bool:
    """
    Check if a pipeline run may move from current to target phase.

    Only the immediate successor is allowed, plus a jump to DONE from any
    non-terminal phase (failure/cancellation). DONE is final.
    """
    if current == PipelinePhase.DONE:
        return False
    if target == PipelinePhase.DONE:
        return True
    return PHASE_ORDER.index(target) == PHASE_ORDER.index(current) + 1

