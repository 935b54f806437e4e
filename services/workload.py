"""
Batch Workload Interface.

The pipeline orchestrator and the batch processor only sequence phases;
what the queries compute and what a sub-task does is delegated to a
workload. The audience pipeline is the production workload; tests plug in
a fake.

Exports:
    SpatialSubmission: ids and table of the first-phase queries
    IBatchWorkload: Workload contract
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Tuple

from core.models import AudienceResult, RunStatus


@dataclass(frozen=True)
class SpatialSubmission:
    spatial_query_id: str
    total_devices_query_id: str
    visits_table_name: str


class IBatchWorkload(ABC):
    """Phases of a batch run, as seen by the orchestrators."""

    @abstractmethod
    def submit_spatial(self, run: RunStatus) -> SpatialSubmission:
        """Submit query A (spatial-join CTAS) and query B (total devices)."""
        pass

    @abstractmethod
    def submit_origins(self, run: RunStatus) -> Tuple[str, str]:
        """Submit query C (origins CTAS); returns (query_id, table_name)."""
        pass

    @abstractmethod
    def load_context(self, run: RunStatus) -> Any:
        """Read the materialized results shared by every sub-task."""
        pass

    @abstractmethod
    def process_subtask(self, context: Any, run: RunStatus, audience_id: str) -> AudienceResult:
        """Evaluate and persist one sub-task."""
        pass

    @abstractmethod
    def cleanup(self, run: RunStatus) -> None:
        """Drop the run's temp tables."""
        pass
