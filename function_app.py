"""
Azure Functions entry point for the Mobility Dataset Orchestrator.

Two long-running workflows are driven from short, stateless invocations:

    Storage sync
        HTTP begin (lock + reset) -> sync-jobs queue -> copy loop
    Audience pipeline
        HTTP start (queries A + B) -> status polls advance the run
        (query C, dispatch) -> pipeline-batches queue -> batch step

All durable state lives in blob storage (jobs/ and runs/ documents written
with ETag compare-and-swap), so any instance can serve any request.

Exports:
    app: Azure Function App instance

Endpoints:
    Core System:
        GET  /api/health - Configuration and status storage health

    Sync:
        POST /api/sync/{job_id} - Start or no-op a sync (body: destination, force)
        GET  /api/sync/{job_id}/status - Sync progress, no side effects
        POST /api/sync/{job_id}/cancel - Signal cancellation and release the lock

    Pipeline:
        POST /api/pipeline/{dataset_id}/{country}/start - Start a run
        GET  /api/pipeline/{dataset_id}/{country}/status - Read and advance the run
        POST /api/pipeline/{dataset_id}/{country}/stop - Request cancellation
        POST /api/pipeline/{dataset_id}/{country}/continue - Re-dispatch the batch step
        GET  /api/pipeline/{dataset_id}/{country}/results - Stored audience results
        GET  /api/pipeline/audiences - Audience catalog

    Service Bus:
        sync-jobs - SyncOrchestrator.execute
        pipeline-batches - BatchProcessor.process
"""

import logging

import azure.functions as func

# Azure SDK loggers are chatty at INFO (one line per HTTP call)
logging.getLogger("azure.identity").setLevel(logging.WARNING)
logging.getLogger("azure.core.pipeline.policies.http_logging_policy").setLevel(logging.WARNING)
logging.getLogger("azure.storage").setLevel(logging.WARNING)
logging.getLogger("azure.servicebus").setLevel(logging.WARNING)
logging.getLogger("azure.core").setLevel(logging.WARNING)
logging.getLogger("msal").setLevel(logging.WARNING)
logging.getLogger("botocore").setLevel(logging.WARNING)

from config import QueueNames
from services import ServiceFactory
from triggers.health import health_check_trigger
from triggers.pipeline_triggers import (
    audience_catalog_trigger,
    pipeline_continue_trigger,
    pipeline_results_trigger,
    pipeline_start_trigger,
    pipeline_status_trigger,
    pipeline_stop_trigger,
)
from triggers.queue_handlers import handle_batch_message, handle_sync_message
from triggers.sync_triggers import sync_cancel_trigger, sync_start_trigger, sync_status_trigger


app = func.FunctionApp(http_auth_level=func.AuthLevel.ANONYMOUS)


# ============================================================================
# CORE SYSTEM
# ============================================================================

@app.route(route="health", methods=["GET"])
def health(req: func.HttpRequest) -> func.HttpResponse:
    """Health check endpoint using HTTP trigger base class."""
    return health_check_trigger.handle_request(req)


# ============================================================================
# SYNC
# ============================================================================

@app.route(route="sync/{job_id}", methods=["POST"])
def sync_start(req: func.HttpRequest) -> func.HttpResponse:
    """Start a sync: 202 when queued, 200 when already synced, 409 when locked."""
    return sync_start_trigger.handle_request(req)


@app.route(route="sync/{job_id}/status", methods=["GET"])
def sync_status(req: func.HttpRequest) -> func.HttpResponse:
    return sync_status_trigger.handle_request(req)


@app.route(route="sync/{job_id}/cancel", methods=["POST"])
def sync_cancel(req: func.HttpRequest) -> func.HttpResponse:
    return sync_cancel_trigger.handle_request(req)


# ============================================================================
# PIPELINE
# ============================================================================

@app.route(route="pipeline/audiences", methods=["GET"])
def pipeline_audiences(req: func.HttpRequest) -> func.HttpResponse:
    return audience_catalog_trigger.handle_request(req)


@app.route(route="pipeline/{dataset_id}/{country}/start", methods=["POST"])
def pipeline_start(req: func.HttpRequest) -> func.HttpResponse:
    """Start a run: 202 on success, 409 when a run is already active."""
    return pipeline_start_trigger.handle_request(req)


@app.route(route="pipeline/{dataset_id}/{country}/status", methods=["GET"])
def pipeline_status(req: func.HttpRequest) -> func.HttpResponse:
    """Read the run; advances it by at most one phase transition."""
    return pipeline_status_trigger.handle_request(req)


@app.route(route="pipeline/{dataset_id}/{country}/stop", methods=["POST"])
def pipeline_stop(req: func.HttpRequest) -> func.HttpResponse:
    return pipeline_stop_trigger.handle_request(req)


@app.route(route="pipeline/{dataset_id}/{country}/continue", methods=["POST"])
def pipeline_continue(req: func.HttpRequest) -> func.HttpResponse:
    return pipeline_continue_trigger.handle_request(req)


@app.route(route="pipeline/{dataset_id}/{country}/results", methods=["GET"])
def pipeline_results(req: func.HttpRequest) -> func.HttpResponse:
    return pipeline_results_trigger.handle_request(req)


# ============================================================================
# SERVICE BUS
# ============================================================================

@app.service_bus_queue_trigger(
    arg_name="msg",
    queue_name=QueueNames.SYNC,
    connection="ServiceBusConnection"
)
def process_sync_job(msg: func.ServiceBusMessage) -> None:
    """Run the copy loop of a sync whose lock was taken over HTTP."""
    handle_sync_message(msg, ServiceFactory.create_sync_orchestrator())


@app.service_bus_queue_trigger(
    arg_name="msg",
    queue_name=QueueNames.PIPELINE,
    connection="ServiceBusConnection"
)
def process_pipeline_batch(msg: func.ServiceBusMessage) -> None:
    """Run the processing phase of a pipeline run."""
    handle_batch_message(msg, ServiceFactory.create_batch_processor())
