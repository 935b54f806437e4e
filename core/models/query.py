"""
Query Service Models.

Shapes returned by the distributed SQL query service (Athena) so that the
orchestrators and the pure state machine never see raw boto3 dictionaries.

Exports:
    QueryStatistics: bytes scanned / elapsed engine time
    QueryStatus: state + optional statistics and error
    QueryResult: column names + rows as dicts
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .enums import QueryState


class QueryStatistics(BaseModel):
    bytes_scanned: Optional[int] = None
    elapsed_ms: Optional[int] = None

    @property
    def scanned_gb(self) -> Optional[float]:
        if not self.bytes_scanned:
            return None
        return self.bytes_scanned / (1024 ** 3)


class QueryStatus(BaseModel):
    query_id: str
    state: QueryState
    statistics: Optional[QueryStatistics] = None
    error: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.state in (QueryState.QUEUED, QueryState.RUNNING)


class QueryResult(BaseModel):
    columns: List[str] = Field(default_factory=list)
    rows: List[Dict[str, Any]] = Field(default_factory=list)
