"""
Pure Enumeration Types for Core Framework.

Defines valid states for sync jobs, pipeline runs and Athena queries.
No business logic - pure type definitions only.

Exports:
    JobStatus: Upstream job state enumeration
    RunState: Pipeline run state enumeration
    PipelinePhase: Pipeline phase enumeration
    QueryState: Distributed query state enumeration
    SyncState: Derived sync display state
    AudienceResultStatus: Per-audience outcome
"""

from enum import Enum


class JobStatus(str, Enum):
    """
    Valid status values for jobs (mirrors the upstream provider).

    State transitions:
    - QUEUED -> RUNNING -> SUCCESS (normal flow, data ready to sync)
    - QUEUED -> RUNNING -> FAILED
    - SCHEDULED -> QUEUED (recurring jobs)
    """

    QUEUED = "queued"
    RUNNING = "running"
    SCHEDULED = "scheduled"
    SUCCESS = "success"
    FAILED = "failed"


class RunState(str, Enum):
    """
    Valid status values for a pipeline run.

    State transitions:
    - RUNNING -> COMPLETED
    - RUNNING -> FAILED (query failure, processing failure, timeout)
    - RUNNING -> CANCELLED (stop request observed at a checkpoint)
    """

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PipelinePhase(str, Enum):
    """
    Phases of the three-stage CTAS pipeline.

    Visited strictly in order:
    ATHENA_SPATIAL -> ATHENA_ORIGINS -> PROCESSING -> DONE
    (any phase may jump to DONE on failure or cancellation)
    """

    ATHENA_SPATIAL = "athena_spatial"
    ATHENA_ORIGINS = "athena_origins"
    PROCESSING = "processing"
    DONE = "done"


class QueryState(str, Enum):
    """Athena query execution states."""

    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class SyncState(str, Enum):
    """
    Display state of a sync derived from the job record.

    Computed by core.logic.sync_status.determine_sync_status, never stored.
    """

    NOT_STARTED = "not_started"
    SYNCING = "syncing"
    STALLED = "stalled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ERROR = "error"


class AudienceResultStatus(str, Enum):
    """Outcome of one batch sub-task."""

    COMPLETED = "completed"
    FAILED = "failed"
