# ============================================================================
# WORK DISPATCHER (SERVICE BUS)
# ============================================================================
# STATUS: Infrastructure - fire-and-forget dispatch
# PURPOSE: Hand a sync's copy loop or a run's batch step to a queue-triggered
#          function so the HTTP request that decided it can return at once
# EXPORTS: IWorkDispatcher, ServiceBusDispatcher
# DEPENDENCIES: azure-servicebus, azure-identity, pydantic, config
# PATTERNS: Singleton client, cached senders, retry with exponential backoff
# ============================================================================

"""
Work Dispatcher.

    dispatch_sync(job_id, lock_token)        -> sync-jobs queue
    dispatch_batch(dataset_id, country, run_id) -> pipeline-batches queue

Authentication mirrors the blob repository: connection string first,
otherwise DefaultAzureCredential against the fully qualified namespace.
Send failures surface as ExternalServiceError(service="servicebus").
"""

import threading
import time
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Dict, Optional

from azure.identity import DefaultAzureCredential
from azure.servicebus import ServiceBusClient, ServiceBusMessage, ServiceBusSender
from azure.servicebus.exceptions import ServiceBusError
from pydantic import BaseModel

from config import QueueConfig
from core.schema import BatchQueueMessage, SyncQueueMessage
from exceptions import ExternalServiceError
from util_logger import LoggerFactory, ComponentType

logger = LoggerFactory.create_logger(ComponentType.REPOSITORY, "ServiceBusDispatcher")


class IWorkDispatcher(ABC):
    """Hands long-running work to another invocation."""

    @abstractmethod
    def dispatch_sync(self, job_id: str, lock_token: str, correlation_id: Optional[str] = None) -> str:
        pass

    @abstractmethod
    def dispatch_batch(self, dataset_id: str, country: str, run_id: str,
                       correlation_id: Optional[str] = None) -> str:
        pass


class ServiceBusDispatcher(IWorkDispatcher):
    """
    IWorkDispatcher over Azure Service Bus queues.

    Senders are cached per queue and shared by every invocation handled by
    this worker process.
    """

    def __init__(self, config: QueueConfig, retry_delay: float = 1.0):
        self.config = config
        self.retry_delay = retry_delay
        self.max_retries = max(1, config.retry_count)
        self._senders: Dict[str, ServiceBusSender] = {}
        self._lock = threading.Lock()

        if config.connection_string:
            logger.info("Initializing ServiceBusDispatcher with connection string")
            self.client = ServiceBusClient.from_connection_string(config.connection_string)
        elif config.namespace:
            namespace = config.namespace
            if not namespace.endswith(".servicebus.windows.net"):
                namespace = f"{namespace}.servicebus.windows.net"
            logger.info(f"Initializing ServiceBusDispatcher with DefaultAzureCredential for {namespace}")
            self.client = ServiceBusClient(
                fully_qualified_namespace=namespace,
                credential=DefaultAzureCredential(),
            )
        else:
            raise ExternalServiceError("Service Bus is not configured", service="servicebus")

    def dispatch_sync(self, job_id: str, lock_token: str, correlation_id: Optional[str] = None) -> str:
        message = SyncQueueMessage(job_id=job_id, lock_token=lock_token, correlation_id=correlation_id)
        return self._send(self.config.sync_queue, message, {"job_id": job_id})

    def dispatch_batch(self, dataset_id: str, country: str, run_id: str,
                       correlation_id: Optional[str] = None) -> str:
        message = BatchQueueMessage(dataset_id=dataset_id, country=country, run_id=run_id,
                                    correlation_id=correlation_id)
        return self._send(self.config.pipeline_queue, message,
                          {"dataset_id": dataset_id, "country": country, "run_id": run_id})

    def _get_sender(self, queue_name: str) -> ServiceBusSender:
        with self._lock:
            if queue_name not in self._senders:
                logger.debug(f"🚌 Creating new sender for queue: {queue_name}")
                self._senders[queue_name] = self.client.get_queue_sender(queue_name)
            return self._senders[queue_name]

    def _send(self, queue_name: str, message: BaseModel, properties: Dict[str, str]) -> str:
        sb_message = ServiceBusMessage(
            body=message.model_dump_json(),
            content_type="application/json",
            time_to_live=timedelta(hours=self.config.message_ttl_hours),
            application_properties=properties,
        )

        for attempt in range(self.max_retries):
            try:
                self._get_sender(queue_name).send_messages(sb_message)
                message_id = sb_message.message_id or ""
                logger.info(f"✅ Dispatched {type(message).__name__} to {queue_name}")
                return message_id
            except ServiceBusError as e:
                logger.warning(f"⚠️ Send attempt {attempt + 1}/{self.max_retries} to {queue_name} failed: {e}")
                with self._lock:
                    self._senders.pop(queue_name, None)
                if attempt == self.max_retries - 1:
                    logger.error(f"❌ Failed to send message to {queue_name} after {self.max_retries} attempts")
                    raise ExternalServiceError(
                        f"Failed to send message to {queue_name}: {e}", service="servicebus"
                    ) from e
                time.sleep(self.retry_delay * (2 ** attempt))

        raise ExternalServiceError(f"Failed to send message to {queue_name}", service="servicebus")
