"""
Core Business Logic Package.

Pure functions separated from the data models.

Exports:
    Transitions: can_job_transition, can_phase_transition
    Sync status: determine_sync_status
    Pipeline machine: advance, apply_decision, Action, Decision
"""

from .transitions import (
    PHASE_ORDER,
    can_job_transition,
    can_phase_transition,
)

from .sync_status import determine_sync_status

from .pipeline_machine import (
    Action,
    Decision,
    advance,
    apply_decision,
    observed_queries,
    format_query_progress,
)

__all__ = [
    'PHASE_ORDER',
    'can_job_transition',
    'can_phase_transition',
    'determine_sync_status',
    'Action',
    'Decision',
    'advance',
    'apply_decision',
    'observed_queries',
    'format_query_progress',
]
