# ============================================================================
# SERVICE BUS QUEUE HANDLERS
# ============================================================================
# STATUS: Trigger layer - queue message processing
# PURPOSE: Run the long halves of sync and pipeline work off the HTTP path
# EXPORTS: handle_sync_message, handle_batch_message
# DEPENDENCIES: core.schema.queue, services (SyncOrchestrator, BatchProcessor)
# ============================================================================
"""
Queue Message Handlers.

    sync-jobs          SyncQueueMessage   -> SyncOrchestrator.execute
    pipeline-batches   BatchQueueMessage  -> BatchProcessor.process

Handlers never re-raise. The outcome of the work is already persisted in
the job or run document, and a redelivered message could only repeat it:
a sync whose lock token no longer matches returns immediately, and a batch
for a superseded run_id is dropped. Unexpected failures of a batch mark
the run failed so it cannot stay in processing forever.

Usage:
    @app.service_bus_queue_trigger(arg_name="msg", queue_name="sync-jobs",
                                   connection="ServiceBusConnection")
    def process_sync_job(msg: func.ServiceBusMessage) -> None:
        handle_sync_message(msg, ServiceFactory.create_sync_orchestrator())
"""

import json
import time
import traceback
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import azure.functions as func
from pydantic import ValidationError as PydanticValidationError

from core.models import PipelinePhase, RunState, RunStatus
from core.schema.queue import BatchQueueMessage, SyncQueueMessage
from exceptions import BusinessLogicError, ResourceNotFoundError, StaleRunError
from util_logger import LoggerFactory, ComponentType, Logger

logger = LoggerFactory.create_logger(ComponentType.TRIGGER, "QueueHandlers")


def handle_sync_message(msg: func.ServiceBusMessage, orchestrator: Any) -> Dict[str, Any]:
    """
    Execute the copy loop of a sync started over HTTP.

    Returns:
        Processing result dict with success status and details
    """
    correlation_id = str(uuid.uuid4())[:8]
    start_time = time.time()
    _log_message_received(msg, correlation_id, "sync-jobs")

    message = _parse(msg, SyncQueueMessage, correlation_id)
    if message is None:
        return {"success": False, "error": "invalid_message"}
    log = LoggerFactory.with_context(logger, job_id=message.job_id,
                                     correlation_id=message.correlation_id or correlation_id)

    try:
        result = orchestrator.execute(message.job_id, message.lock_token)
        elapsed = time.time() - start_time
        log.info(f"Sync {message.job_id} processed in {elapsed:.3f}s: {result.message}")
        return {"success": True, "job_id": message.job_id, **result.model_dump(mode="json")}

    except BusinessLogicError as e:
        # execute() has already recorded error_message on the job
        log.error(f"❌ Sync {message.job_id} failed: {type(e).__name__}: {e}")
        return {"success": False, "job_id": message.job_id, "error": str(e)}

    except Exception as e:
        log.error(f"❌ EXCEPTION in sync {message.job_id}: {type(e).__name__}: {e}")
        log.error(f"Full traceback:\n{traceback.format_exc()}")
        return {"success": False, "job_id": message.job_id, "error": f"{type(e).__name__}: {e}"}


def handle_batch_message(msg: func.ServiceBusMessage, processor: Any) -> Dict[str, Any]:
    """
    Run the processing phase of a pipeline run.

    Returns:
        Processing result dict with success status and details
    """
    correlation_id = str(uuid.uuid4())[:8]
    start_time = time.time()
    _log_message_received(msg, correlation_id, "pipeline-batches")

    message = _parse(msg, BatchQueueMessage, correlation_id)
    if message is None:
        return {"success": False, "error": "invalid_message"}
    log = LoggerFactory.with_context(logger, run_id=message.run_id,
                                     scope=f"{message.dataset_id}/{message.country}",
                                     correlation_id=message.correlation_id or correlation_id)

    try:
        run = processor.process(message.dataset_id, message.country, message.run_id)
        elapsed = time.time() - start_time
        log.info(f"Run {message.run_id} batch finished in {elapsed:.3f}s as {run.status.value}: {run.message}")
        return {"success": True, "run_id": message.run_id, "status": run.status.value}

    except (StaleRunError, ResourceNotFoundError) as e:
        log.warning(f"⚠️ Dropping batch message for run {message.run_id}: {e}")
        return {"success": False, "run_id": message.run_id, "error": str(e), "dropped": True}

    except Exception as e:
        log.error(f"❌ EXCEPTION in batch for run {message.run_id}: {type(e).__name__}: {e}")
        log.error(f"Full traceback:\n{traceback.format_exc()}")
        _mark_run_failed(processor, message, f"{type(e).__name__}: {e}", log)
        return {"success": False, "run_id": message.run_id, "error": f"{type(e).__name__}: {e}"}


# ============================================================================
# HELPERS
# ============================================================================

def _parse(msg: func.ServiceBusMessage, model, correlation_id: str):
    try:
        body = msg.get_body().decode("utf-8")
        return model.model_validate(json.loads(body))
    except (UnicodeDecodeError, ValueError, PydanticValidationError) as e:
        logger.error(f"[{correlation_id}] Invalid {model.__name__}: {e}")
        return None


def _log_message_received(msg: func.ServiceBusMessage, correlation_id: str, queue_name: str) -> None:
    logger.info(
        f"[{correlation_id}] SERVICE BUS MESSAGE RECEIVED ({queue_name})",
        extra={'custom_dimensions': {
            'checkpoint': 'MESSAGE_RECEIVED',
            'correlation_id': correlation_id,
            'queue_name': queue_name,
            'message_id': msg.message_id,
            'delivery_count': msg.delivery_count,
            'enqueued_time': msg.enqueued_time_utc.isoformat() if msg.enqueued_time_utc else None,
        }}
    )


def _mark_run_failed(processor: Any, message: BatchQueueMessage, error: str, log: Logger) -> None:
    """Best effort: move a run stuck in processing to failed."""
    now = datetime.now(timezone.utc)

    def _fail(current: Optional[RunStatus]) -> Optional[RunStatus]:
        if current is None or current.run_id != message.run_id or not current.is_running:
            return None
        current.status = RunState.FAILED
        current.pipeline_phase = PipelinePhase.DONE
        current.completed_at = now
        current.error = error
        current.message = f"Processing failed: {error}"
        return current

    try:
        processor.store.update_run(message.dataset_id, message.country, _fail)
    except BusinessLogicError as e:
        log.error(f"Could not mark run {message.run_id} failed: {e}")
