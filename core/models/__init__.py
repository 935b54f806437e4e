"""
Core Data Models Package.

Contains pure data structures without business logic.
All business logic is in the core.logic package.

Exports:
    JobRecord, StorageLocation, SyncProgress, DayProgress: Sync job models
    RunStatus, QueryNames, run_scope: Pipeline run models
    QueryStatus, QueryStatistics, QueryResult: Query service models
    SyncStartResult, SyncResult, CancelResult, AudienceResult, ZoneAffinity: Results
    JobStatus, RunState, PipelinePhase, QueryState, SyncState, AudienceResultStatus: Enums
"""

from .enums import (
    JobStatus,
    RunState,
    PipelinePhase,
    QueryState,
    SyncState,
    AudienceResultStatus,
)

from .job import (
    StorageLocation,
    DayProgress,
    SyncProgress,
    JobRecord,
)

from .run import (
    QueryNames,
    RunStatus,
    run_scope,
)

from .query import (
    QueryStatistics,
    QueryStatus,
    QueryResult,
)

from .results import (
    SyncStartResult,
    SyncResult,
    CancelResult,
    ZoneAffinity,
    AudienceResult,
)

__all__ = [
    'JobStatus',
    'RunState',
    'PipelinePhase',
    'QueryState',
    'SyncState',
    'AudienceResultStatus',
    'StorageLocation',
    'DayProgress',
    'SyncProgress',
    'JobRecord',
    'QueryNames',
    'RunStatus',
    'run_scope',
    'QueryStatistics',
    'QueryStatus',
    'QueryResult',
    'SyncStartResult',
    'SyncResult',
    'CancelResult',
    'ZoneAffinity',
    'AudienceResult',
]
