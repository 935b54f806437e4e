"""
Operation Result Models.

Return types of the orchestrators and of individual batch sub-tasks.

Exports:
    SyncStartResult: Outcome of SyncOrchestrator.begin
    SyncResult: Outcome of a full sync attempt
    CancelResult: Outcome of a sync cancellation request
    ZoneAffinity: One origin zone's affinity score
    AudienceResult: Outcome of one audience sub-task
"""

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field

from .enums import AudienceResultStatus


class SyncStartResult(BaseModel):
    job_id: str
    started: bool = False
    already_completed: bool = False
    lock_token: Optional[str] = Field(default=None, exclude=True)
    destination: Optional[str] = None
    message: str = ""


class SyncResult(BaseModel):
    job_id: str
    already_completed: bool = False
    completed: bool = False
    cancelled: bool = False
    copied_objects: int = 0
    copied_bytes: int = 0
    failed_objects: int = 0
    expected_objects: int = 0
    message: str = ""


class CancelResult(BaseModel):
    job_id: str
    action: str = Field(..., description="cancelled | completed | released")
    signalled: bool = Field(default=False, description="A live in-process operation was signalled")
    lock_released: bool = True
    message: str = ""


class ZoneAffinity(BaseModel):
    zone_id: str
    lat: float
    lng: float
    segment_devices: int
    total_devices: int
    affinity_index: float


class AudienceResult(BaseModel):
    audience_id: str
    dataset_id: str
    country: str
    run_id: Optional[str] = None
    status: AudienceResultStatus = AudienceResultStatus.COMPLETED
    started_at: Optional[datetime] = None
    completed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    error: Optional[str] = None

    segment_size: int = 0
    segment_percent: float = 0.0
    total_devices_in_dataset: int = 0
    avg_dwell_minutes: float = 0.0
    total_zones: int = 0
    avg_affinity_index: float = 0.0
    top_zones: List[ZoneAffinity] = Field(default_factory=list)
    result_path: Optional[str] = None
