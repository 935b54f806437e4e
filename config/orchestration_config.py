"""
Orchestration Configuration.

Tunables of the two orchestrators.

Exports:
    SyncConfig: SyncOrchestrator settings
    PipelineConfig: PipelineOrchestrator / batch step settings
"""

import os
from datetime import timedelta
from pydantic import BaseModel, Field

from .defaults import SyncDefaults, PipelineDefaults


class SyncConfig(BaseModel):
    """SyncOrchestrator settings."""

    progress_flush_every: int = Field(
        default=SyncDefaults.PROGRESS_FLUSH_EVERY,
        ge=1,
        description="Persist counters every N copied objects (1 = every copy)"
    )

    progress_flush_seconds: float = Field(
        default=SyncDefaults.PROGRESS_FLUSH_SECONDS,
        ge=0,
        description="Also persist when this many seconds passed since the last write"
    )

    stall_seconds: int = Field(
        default=SyncDefaults.STALL_SECONDS,
        ge=60,
        description="Lock held without progress for this long is reported as stalled"
    )

    verify_sample_ratio: float = Field(
        default=SyncDefaults.VERIFY_SAMPLE_RATIO,
        ge=0.05,
        le=0.10,
        description="Fraction of copied objects compared by size and MD5 after a sync"
    )

    verify_sample_max: int = Field(
        default=SyncDefaults.VERIFY_SAMPLE_MAX,
        ge=1,
        description="Upper bound on the verification sample"
    )

    @property
    def stall_after(self) -> timedelta:
        return timedelta(seconds=self.stall_seconds)

    @classmethod
    def from_environment(cls):
        """Load from environment variables."""
        return cls(
            progress_flush_every=int(os.environ.get(
                "SYNC_PROGRESS_FLUSH_EVERY", str(SyncDefaults.PROGRESS_FLUSH_EVERY))),
            progress_flush_seconds=float(os.environ.get(
                "SYNC_PROGRESS_FLUSH_SECONDS", str(SyncDefaults.PROGRESS_FLUSH_SECONDS))),
            stall_seconds=int(os.environ.get("SYNC_STALL_SECONDS", str(SyncDefaults.STALL_SECONDS))),
            verify_sample_ratio=float(os.environ.get(
                "SYNC_VERIFY_SAMPLE_RATIO", str(SyncDefaults.VERIFY_SAMPLE_RATIO))),
        )


class PipelineConfig(BaseModel):
    """PipelineOrchestrator settings."""

    max_run_minutes: int = Field(
        default=PipelineDefaults.MAX_RUN_MINUTES,
        ge=1,
        description="Running runs older than this are force-failed on the next poll"
    )

    status_retry_count: int = Field(
        default=PipelineDefaults.STATUS_RETRY_COUNT,
        ge=1,
        le=20,
        description="Compare-and-swap attempts for status document updates"
    )

    spatial_radius_meters: int = Field(
        default=PipelineDefaults.SPATIAL_RADIUS_METERS,
        ge=1,
        description="Visit detection radius around each POI"
    )

    zone_grid_degrees: float = Field(
        default=PipelineDefaults.ZONE_GRID_DEGREES,
        gt=0,
        description="Grid size used to bucket device origins into zones"
    )

    top_zones: int = Field(default=PipelineDefaults.TOP_ZONES, ge=1)

    @property
    def max_run_duration(self) -> timedelta:
        return timedelta(minutes=self.max_run_minutes)

    @classmethod
    def from_environment(cls):
        """Load from environment variables."""
        return cls(
            max_run_minutes=int(os.environ.get("PIPELINE_MAX_RUN_MINUTES", str(PipelineDefaults.MAX_RUN_MINUTES))),
            status_retry_count=int(os.environ.get(
                "PIPELINE_STATUS_RETRY_COUNT", str(PipelineDefaults.STATUS_RETRY_COUNT))),
            spatial_radius_meters=int(os.environ.get(
                "PIPELINE_SPATIAL_RADIUS_METERS", str(PipelineDefaults.SPATIAL_RADIUS_METERS))),
            zone_grid_degrees=float(os.environ.get(
                "PIPELINE_ZONE_GRID_DEGREES", str(PipelineDefaults.ZONE_GRID_DEGREES))),
            top_zones=int(os.environ.get("PIPELINE_TOP_ZONES", str(PipelineDefaults.TOP_ZONES))),
        )
