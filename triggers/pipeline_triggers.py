"""
Pipeline HTTP Triggers.

    POST /api/pipeline/{dataset_id}/{country}/start
    GET  /api/pipeline/{dataset_id}/{country}/status     advances the run
    POST /api/pipeline/{dataset_id}/{country}/stop
    POST /api/pipeline/{dataset_id}/{country}/continue   body {"run_id": ...}
    GET  /api/pipeline/{dataset_id}/{country}/results
    GET  /api/pipeline/audiences

Exports:
    PipelineStartTrigger, PipelineStatusTrigger, PipelineStopTrigger,
    PipelineContinueTrigger, PipelineResultsTrigger, AudienceCatalogTrigger
    and a module-level singleton of each
"""

from typing import List

import azure.functions as func
from pydantic import ValidationError as PydanticValidationError

from exceptions import ValidationError

from .http_base import BaseHttpTrigger, PipelineTrigger, ResponseData


class PipelineStartTrigger(PipelineTrigger):
    def __init__(self, orchestrator=None):
        super().__init__("pipeline_start", orchestrator)

    def get_allowed_methods(self) -> List[str]:
        return ["POST"]

    def process_request(self, req: func.HttpRequest) -> ResponseData:
        from services import PipelineStartRequest

        dataset_id, country = self.scope(req)
        body = self.extract_json_body(req, required=True)
        try:
            request = PipelineStartRequest.model_validate(body)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid start request: {e.errors(include_url=False)}")

        run = self.orchestrator.start(dataset_id, country, request)
        return run.to_response(), 202


class PipelineStatusTrigger(PipelineTrigger):
    """Reading the status is what moves the run forward."""

    def __init__(self, orchestrator=None):
        super().__init__("pipeline_status", orchestrator)

    def get_allowed_methods(self) -> List[str]:
        return ["GET"]

    def process_request(self, req: func.HttpRequest) -> ResponseData:
        dataset_id, country = self.scope(req)
        return self.orchestrator.describe(self.orchestrator.poll(dataset_id, country))


class PipelineStopTrigger(PipelineTrigger):
    def __init__(self, orchestrator=None):
        super().__init__("pipeline_stop", orchestrator)

    def get_allowed_methods(self) -> List[str]:
        return ["POST"]

    def process_request(self, req: func.HttpRequest) -> ResponseData:
        dataset_id, country = self.scope(req)
        return self.orchestrator.stop(dataset_id, country).to_response()


class PipelineContinueTrigger(PipelineTrigger):
    def __init__(self, orchestrator=None):
        super().__init__("pipeline_continue", orchestrator)

    def get_allowed_methods(self) -> List[str]:
        return ["POST"]

    def process_request(self, req: func.HttpRequest) -> ResponseData:
        dataset_id, country = self.scope(req)
        body = self.extract_json_body(req, required=True)
        run_id = body.get("run_id")
        if not run_id:
            raise ValidationError("run_id is required")
        run = self.orchestrator.continue_processing(dataset_id, country, run_id)
        return run.to_response(), 202


class PipelineResultsTrigger(PipelineTrigger):
    def __init__(self, orchestrator=None):
        super().__init__("pipeline_results", orchestrator)

    def get_allowed_methods(self) -> List[str]:
        return ["GET"]

    def process_request(self, req: func.HttpRequest) -> ResponseData:
        dataset_id, country = self.scope(req)
        results = self.orchestrator.workload.load_results(dataset_id, country)
        return {
            "dataset_id": dataset_id,
            "country": country.upper(),
            "count": len(results),
            "results": [r.model_dump(mode="json") for r in results],
        }


class AudienceCatalogTrigger(BaseHttpTrigger):
    def __init__(self):
        super().__init__("audience_catalog")

    def get_allowed_methods(self) -> List[str]:
        return ["GET"]

    def process_request(self, req: func.HttpRequest) -> ResponseData:
        from services.audience_catalog import catalog_response
        return catalog_response()


pipeline_start_trigger = PipelineStartTrigger()
pipeline_status_trigger = PipelineStatusTrigger()
pipeline_stop_trigger = PipelineStopTrigger()
pipeline_continue_trigger = PipelineContinueTrigger()
pipeline_results_trigger = PipelineResultsTrigger()
audience_catalog_trigger = AudienceCatalogTrigger()
