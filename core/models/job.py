# ============================================================================
# CORE MODELS - JOB
# ============================================================================
# STATUS: Core data models - sync-able job record
# PURPOSE: Pydantic model for job records persisted under jobs/ in blob storage
# EXPORTS: StorageLocation, DayProgress, SyncProgress, JobRecord
# DEPENDENCIES: pydantic, datetime, typing
# ENTRY_POINTS: from core.models.job import JobRecord
# ============================================================================

"""
Job Record Models - Persistence Boundary

A JobRecord is the durable state of one sync-able unit of work: the upstream
job's status, where its data lives, where it is being copied to, and the
progress/lock fields written by the SyncOrchestrator.

Lock and progress fields:
    lock_token         opaque, non-null while a sync holds the job
    object_count       objects actually copied in the current attempt
    expected_*         known once the source has been enumerated
    synced_at          set only when every source object was copied
    sync_cancelled_at  set when a running sync was cancelled
"""

import re
from datetime import datetime, timezone
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .enums import JobStatus


_SCHEME_RE = re.compile(r"^(az|azure|abfs|wasbs?)://", re.IGNORECASE)


class StorageLocation(BaseModel):
    """
    A container + key prefix in object storage.

    Accepts "container/prefix", "az://container/prefix" or
    "https://account.blob.core.windows.net/container/prefix".
    """

    container: str = Field(..., min_length=1, description="Blob container name")
    prefix: str = Field(default="", description="Key prefix inside the container (no leading slash)")

    @field_validator("prefix")
    @classmethod
    def _strip_leading_slash(cls, v: str) -> str:
        return v.lstrip("/")

    @classmethod
    def parse(cls, value: str) -> "StorageLocation":
        """
        Parse a location string.

        Raises:
            ValueError: If the string has no container part
        """
        if not value or not value.strip():
            raise ValueError("Storage location is empty")

        raw = value.strip()
        if raw.lower().startswith("https://"):
            # https://{account}.blob.core.windows.net/{container}/{prefix}
            raw = raw.split("/", 3)[3] if raw.count("/") >= 3 else ""
        else:
            raw = _SCHEME_RE.sub("", raw)

        container, _, prefix = raw.strip("/").partition("/")
        if not container:
            raise ValueError(f"Storage location has no container: {value!r}")
        return cls(container=container, prefix=prefix)

    def key_for(self, relative_key: str) -> str:
        """Join a relative key onto this location's prefix."""
        if not self.prefix:
            return relative_key.lstrip("/")
        return f"{self.prefix.rstrip('/')}/{relative_key.lstrip('/')}"

    def relative_key(self, key: str) -> str:
        """Strip this location's prefix from a full key."""
        if self.prefix and key.startswith(self.prefix):
            return key[len(self.prefix):].lstrip("/")
        return key

    def __str__(self) -> str:
        return f"{self.container}/{self.prefix}" if self.prefix else self.container


class DayProgress(BaseModel):
    """Copy progress for one date=YYYY-MM-DD partition."""

    date: str
    total_objects: int = 0
    copied_objects: int = 0
    failed_objects: int = 0
    total_bytes: int = 0
    copied_bytes: int = 0
    status: str = Field(default="pending", description="pending | copying | completed | failed")


class SyncProgress(BaseModel):
    """Per-day breakdown of the current sync attempt."""

    current_day: Optional[str] = None
    total_days: int = 0
    days: Dict[str, DayProgress] = Field(default_factory=dict)


class JobRecord(BaseModel):
    """
    Durable record of one sync-able job.

    Invariants:
    - lock_token is non-null while a sync is in progress or was abandoned
      without release
    - synced_at non-null implies object_count >= expected_object_count
    """

    job_id: str = Field(..., min_length=1, description="Job identifier")
    status: JobStatus = Field(default=JobStatus.QUEUED, description="Upstream job status")

    source_location: Optional[StorageLocation] = Field(default=None, description="Where the delivered data lives")
    destination_location: Optional[StorageLocation] = Field(default=None, description="Last sync destination")

    # Lock
    lock_token: Optional[str] = Field(default=None, description="Opaque token, non-null while locked")
    lock_acquired_at: Optional[datetime] = None

    # Progress
    object_count: int = Field(default=0, ge=0)
    total_bytes: int = Field(default=0, ge=0)
    expected_object_count: int = Field(default=0, ge=0)
    expected_total_bytes: int = Field(default=0, ge=0)
    failed_object_count: int = Field(default=0, ge=0)
    sync_progress: Optional[SyncProgress] = None

    # Outcome
    sync_started_at: Optional[datetime] = None
    synced_at: Optional[datetime] = None
    sync_cancelled_at: Optional[datetime] = None
    error_message: str = Field(default="", description="Latest human-readable sync error")

    # Audit
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def _synced_implies_full_copy(self) -> "JobRecord":
        if self.synced_at is not None and self.object_count < self.expected_object_count:
            raise ValueError(
                f"Job {self.job_id}: synced_at set with {self.object_count} of "
                f"{self.expected_object_count} objects copied"
            )
        return self

    @property
    def is_locked(self) -> bool:
        return self.lock_token is not None

    def is_sync_complete(self) -> bool:
        """Completed sync with full coverage of a non-empty source."""
        return (
            self.synced_at is not None
            and self.expected_object_count > 0
            and self.object_count >= self.expected_object_count
        )

    def reset_sync_progress(self, now: datetime) -> None:
        """Clear progress so a retried sync does not show stale numbers."""
        self.object_count = 0
        self.total_bytes = 0
        self.failed_object_count = 0
        self.expected_object_count = 0
        self.expected_total_bytes = 0
        self.synced_at = None
        self.sync_cancelled_at = None
        self.error_message = ""
        self.sync_progress = None
        self.sync_started_at = now
        self.updated_at = now
