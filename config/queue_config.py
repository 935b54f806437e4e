"""
Azure Service Bus Queue Configuration.

Provides configuration for:
    - Service Bus connection settings
    - Queue names (sync-jobs, pipeline-batches)
    - Retry configuration

Queue Architecture:
    - sync-jobs: copy loop of a sync whose lock was taken by POST /sync/{job_id}
    - pipeline-batches: batch-processing step dispatched by a status poll

Exports:
    QueueConfig: Pydantic queue configuration model
    QueueNames: Queue name constants
"""

import os
from typing import Optional
from pydantic import BaseModel, Field

from .defaults import QueueDefaults


class QueueNames:
    """Queue name constants for easy access."""
    SYNC = QueueDefaults.SYNC_QUEUE
    PIPELINE = QueueDefaults.PIPELINE_QUEUE


class QueueConfig(BaseModel):
    """
    Azure Service Bus queue configuration.
    """

    connection_string: Optional[str] = Field(
        default=None,
        repr=False,
        description="Service Bus connection string (ServiceBusConnection env var or Azure Functions binding)"
    )

    namespace: Optional[str] = Field(
        default=None,
        description="Service Bus namespace for managed identity auth (alternative to connection string)"
    )

    sync_queue: str = Field(
        default=QueueDefaults.SYNC_QUEUE,
        description="Queue carrying SyncQueueMessage"
    )

    pipeline_queue: str = Field(
        default=QueueDefaults.PIPELINE_QUEUE,
        description="Queue carrying BatchQueueMessage"
    )

    retry_count: int = Field(
        default=QueueDefaults.RETRY_COUNT,
        ge=0,
        le=10,
        description="Number of retry attempts for Service Bus sends"
    )

    message_ttl_hours: int = Field(
        default=QueueDefaults.MESSAGE_TTL_HOURS,
        ge=1,
        description="Time-to-live for dispatched messages"
    )

    @classmethod
    def from_environment(cls):
        """Load from environment variables."""
        return cls(
            connection_string=os.environ.get("ServiceBusConnection"),
            # Check both SERVICE_BUS_NAMESPACE and Azure Functions binding variable
            namespace=os.environ.get("SERVICE_BUS_NAMESPACE") or os.environ.get("ServiceBusConnection__fullyQualifiedNamespace"),
            sync_queue=os.environ.get("SYNC_QUEUE", QueueDefaults.SYNC_QUEUE),
            pipeline_queue=os.environ.get("PIPELINE_QUEUE", QueueDefaults.PIPELINE_QUEUE),
            retry_count=int(os.environ.get("SERVICE_BUS_RETRY_COUNT", str(QueueDefaults.RETRY_COUNT))),
            message_ttl_hours=int(os.environ.get("SERVICE_BUS_MESSAGE_TTL_HOURS", str(QueueDefaults.MESSAGE_TTL_HOURS))),
        )
