"""
Queue Message Schemas - Transport Boundary.

Message formats for the Service Bus queues that carry fire-and-forget work
out of the HTTP request that decided it should happen.

Exports:
    SyncQueueMessage: Execute the copy loop of a sync that holds its lock
    BatchQueueMessage: Run the batch-processing step of a pipeline run
"""

from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel, Field


class SyncQueueMessage(BaseModel):
    """
    Sync execution message (sync-jobs queue).

    lock_token lets the worker detect that the lock was broken (forced
    re-run or cancel) before it even started copying.
    """

    job_id: str = Field(..., min_length=1)
    lock_token: str = Field(..., min_length=1)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    correlation_id: Optional[str] = Field(default=None, max_length=16)


class BatchQueueMessage(BaseModel):
    """
    Batch-processing message (pipeline-batches queue).

    run_id must still match the stored run when the worker picks it up,
    otherwise the message belongs to a superseded run and is dropped.
    """

    dataset_id: str = Field(..., min_length=1)
    country: str = Field(..., min_length=2)
    run_id: str = Field(..., min_length=1)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    correlation_id: Optional[str] = Field(default=None, max_length=16)
