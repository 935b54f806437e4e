"""
Sync HTTP Triggers.

    POST /api/sync/{job_id}           begin inline, execute via the sync queue
    GET  /api/sync/{job_id}/status    progress, no side effects
    POST /api/sync/{job_id}/cancel    signal + force-release the lock

Exports:
    SyncStartTrigger, SyncStatusTrigger, SyncCancelTrigger
    sync_start_trigger, sync_status_trigger, sync_cancel_trigger: Singletons
"""

from typing import List

import azure.functions as func

from exceptions import ExternalServiceError, ValidationError

from .http_base import ResponseData, SyncTrigger


class SyncStartTrigger(SyncTrigger):
    """
    Start (or no-op) a sync.

    Body: {"destination": "container/prefix", "force": false}

    Returns 202 when a sync was started and queued, 200 when the job was
    already synced to the same destination.
    """

    def __init__(self, orchestrator=None, dispatcher=None):
        super().__init__("sync_start", orchestrator, dispatcher)

    def get_allowed_methods(self) -> List[str]:
        return ["POST"]

    def process_request(self, req: func.HttpRequest) -> ResponseData:
        job_id = self.job_id(req)
        body = self.extract_json_body(req, required=True)
        destination = body.get("destination")
        if not destination or not isinstance(destination, str):
            raise ValidationError("destination is required")
        force = self.flag_param(req, "force", body)

        result = self.orchestrator.begin(job_id, destination, force=force)
        if not result.started:
            return result.model_dump(mode="json")

        try:
            self.dispatcher.dispatch_sync(job_id, result.lock_token)
        except ExternalServiceError:
            # Nothing will run the copy; give the lock back so a retry can start.
            self.orchestrator.lock_manager.release_if_owner(job_id, result.lock_token)
            raise
        return result.model_dump(mode="json"), 202


class SyncStatusTrigger(SyncTrigger):
    def __init__(self, orchestrator=None):
        super().__init__("sync_status", orchestrator)

    def get_allowed_methods(self) -> List[str]:
        return ["GET"]

    def process_request(self, req: func.HttpRequest) -> ResponseData:
        return self.orchestrator.get_status(self.job_id(req))


class SyncCancelTrigger(SyncTrigger):
    def __init__(self, orchestrator=None):
        super().__init__("sync_cancel", orchestrator)

    def get_allowed_methods(self) -> List[str]:
        return ["POST"]

    def process_request(self, req: func.HttpRequest) -> ResponseData:
        return self.orchestrator.cancel(self.job_id(req)).model_dump(mode="json")


sync_start_trigger = SyncStartTrigger()
sync_status_trigger = SyncStatusTrigger()
sync_cancel_trigger = SyncCancelTrigger()
