# ============================================================================
# CORE MODELS - PIPELINE RUN
# ============================================================================
# STATUS: Core data models - pipeline run status document
# PURPOSE: Pydantic model for runs/{dataset_id}/{country}/status.json
# EXPORTS: QueryNames, RunStatus, run_scope
# DEPENDENCIES: pydantic, datetime, typing
# ============================================================================

"""
Pipeline Run Models.

One RunStatus document exists per dataset + country scope and always holds
the active or most recent run. The run_id changes on every start, so late
writers from an older run can be detected and ignored.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .enums import PipelinePhase, RunState


class QueryNames:
    """Logical names of the Athena queries tracked in athena_query_ids."""
    SPATIAL_JOIN = "spatial_join"   # query A: CTAS visits table
    TOTAL_DEVICES = "total_devices"  # query B: denominator count
    ORIGINS = "origins"             # query C: CTAS origins table


def run_scope(dataset_id: str, country: str) -> str:
    """Canonical scope string for a run ("{dataset_id}/{country}")."""
    return f"{dataset_id}/{country.lower()}"


class RunStatus(BaseModel):
    """
    Durable status of a pipeline run.

    Invariants:
    - pipeline_phase == DONE iff status is terminal
    - continue_triggered is set once, before processing is dispatched,
      and never unset within the same run_id
    """

    run_id: str = Field(..., description="Unique per start; detects stale or duplicate triggers")
    dataset_id: str
    dataset_name: Optional[str] = None
    country: str

    status: RunState = Field(default=RunState.RUNNING)
    pipeline_phase: PipelinePhase = Field(default=PipelinePhase.ATHENA_SPATIAL)

    athena_query_ids: Dict[str, str] = Field(default_factory=dict, description="Logical query name -> Athena QueryExecutionId")
    visits_table_name: Optional[str] = None
    origins_table_name: Optional[str] = None

    # Sub-tasks
    audience_ids: List[str] = Field(default_factory=list, description="Ordered sub-tasks for the batch step")
    completed_audiences: List[str] = Field(default_factory=list)
    failed_audiences: List[str] = Field(default_factory=list)
    current: int = 0
    total: int = 0
    current_audience_name: Optional[str] = None

    # Progress
    percent: int = Field(default=0, ge=0, le=100)
    message: str = ""

    # Guards
    continue_triggered: bool = False
    cancel_requested: bool = False

    date_from: Optional[str] = None
    date_to: Optional[str] = None

    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def scope(self) -> str:
        return run_scope(self.dataset_id, self.country)

    @property
    def is_running(self) -> bool:
        return self.status == RunState.RUNNING

    @property
    def is_terminal(self) -> bool:
        return self.pipeline_phase == PipelinePhase.DONE

    def to_response(self) -> dict:
        """Status payload for the HTTP surface."""
        data = self.model_dump(mode="json")
        data["active"] = self.is_running
        data["scope"] = self.scope
        return data
