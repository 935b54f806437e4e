"""
HTTP Trigger Base Class.

Abstract base class for all Azure Functions HTTP triggers providing consistent
request parsing, error mapping and JSON responses.

Specialized Trigger Types:
    BaseHttpTrigger: Generic HTTP endpoint
    SyncTrigger: Sync job endpoints (job_id route parameter)
    PipelineTrigger: Pipeline run endpoints (dataset_id + country route parameters)

Exports:
    BaseHttpTrigger: Base class for HTTP triggers
    SyncTrigger: Base class for sync endpoints
    PipelineTrigger: Base class for pipeline endpoints
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple, Union
import json
import traceback
import uuid
from datetime import datetime, timezone

import azure.functions as func

from core.errors import ErrorCode, create_error_response, error_code_for_exception, get_http_status_code
from exceptions import BusinessLogicError, ValidationError
from util_logger import LoggerFactory, ComponentType

ResponseData = Union[Dict[str, Any], Tuple[Dict[str, Any], int]]


class BaseHttpTrigger(ABC):
    """
    Abstract base class for Azure Functions HTTP triggers.

    Subclasses implement process_request and return either a dict (200) or
    a (dict, status_code) tuple. Domain exceptions are mapped to status
    codes through core.errors.
    """

    def __init__(self, trigger_name: str):
        """
        Args:
            trigger_name: Name of the trigger for logging (e.g., "sync_start")
        """
        self.trigger_name = trigger_name
        self.logger = LoggerFactory.create_logger(ComponentType.TRIGGER, f"HttpTrigger.{trigger_name}")

    # ========================================================================
    # ABSTRACT METHODS - Must be implemented by concrete triggers
    # ========================================================================

    @abstractmethod
    def process_request(self, req: func.HttpRequest) -> ResponseData:
        """
        Process the HTTP request and return response data.

        Raises:
            ValidationError / ValueError: 400
            ResourceNotFoundError: 404
            LockConflictError / RunInProgressError: 409
            ExternalServiceError: 502 / 503
        """
        pass

    @abstractmethod
    def get_allowed_methods(self) -> List[str]:
        pass

    # ========================================================================
    # CONCRETE INFRASTRUCTURE METHODS
    # ========================================================================

    def handle_request(self, req: func.HttpRequest) -> func.HttpResponse:
        """Main entry point: method check, processing, error mapping."""
        request_id = self._generate_request_id()
        log = LoggerFactory.with_context(self.logger, request_id=request_id)
        log.info(f"🌐 [{self.trigger_name}] Request {request_id} started: {req.method} {req.url}")

        if req.method not in self.get_allowed_methods():
            return self._create_error_response(
                ErrorCode.VALIDATION_ERROR,
                f"Method {req.method} not allowed. Allowed: {', '.join(self.get_allowed_methods())}",
                request_id,
                status_code=405,
            )

        try:
            result = self.process_request(req)
            data, status_code = result if isinstance(result, tuple) else (result, 200)
            log.info(f"✅ [{self.trigger_name}] Request {request_id} completed ({status_code})")
            return self._create_success_response(data, request_id, status_code)

        except (BusinessLogicError, ValueError) as e:
            code = error_code_for_exception(e)
            status = get_http_status_code(code)
            if status >= 500:
                log.error(f"❌ [{self.trigger_name}] {code.value}: {e}")
            else:
                log.warning(f"⚠️ [{self.trigger_name}] {code.value}: {e}")
            return self._create_error_response(code, str(e), request_id, error_type=type(e).__name__)

        except Exception as e:
            code = error_code_for_exception(e)
            log.error(f"💥 [{self.trigger_name}] Internal error: {e}")
            log.debug(f"📍 Full traceback: {traceback.format_exc()}")
            return self._create_error_response(code, str(e), request_id, error_type=type(e).__name__)

    # ========================================================================
    # UTILITY METHODS FOR SUBCLASSES
    # ========================================================================

    def extract_path_params(self, req: func.HttpRequest, required_params: List[str]) -> Dict[str, str]:
        """
        Extract and validate path parameters.

        Raises:
            ValidationError: If required parameters are missing
        """
        params = {}
        missing_params = []
        for param_name in required_params:
            value = req.route_params.get(param_name)
            if not value:
                missing_params.append(param_name)
            else:
                params[param_name] = value
        if missing_params:
            raise ValidationError(f"Missing required path parameters: {', '.join(missing_params)}")
        return params

    def extract_json_body(self, req: func.HttpRequest, required: bool = True) -> Optional[Dict[str, Any]]:
        """
        Extract and parse the JSON request body.

        An empty body is None; a body that is not a JSON object is an error.

        Raises:
            ValidationError: Body required but missing, or invalid JSON
        """
        raw = req.get_body() or b""
        if not raw.strip():
            if required:
                raise ValidationError("Request body is required")
            return None
        try:
            body = json.loads(raw)
        except ValueError as e:
            raise ValidationError(f"Invalid JSON in request body: {e}")
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")
        return body

    def flag_param(self, req: func.HttpRequest, name: str, body: Optional[Dict[str, Any]] = None) -> bool:
        """Boolean flag from the JSON body or the query string (?force=true)."""
        if body and name in body:
            return bool(body[name])
        return str(req.params.get(name, "")).lower() in ("1", "true", "yes")

    # ========================================================================
    # PRIVATE INFRASTRUCTURE METHODS
    # ========================================================================

    def _generate_request_id(self) -> str:
        return str(uuid.uuid4())[:8]

    def _create_success_response(self, data: Dict[str, Any], request_id: str,
                                 status_code: int = 200) -> func.HttpResponse:
        response_data = {
            **data,
            "request_id": request_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        return func.HttpResponse(
            json.dumps(response_data, default=str),
            status_code=status_code,
            mimetype="application/json",
            headers={"X-Request-ID": request_id},
        )

    def _create_error_response(self, error_code: ErrorCode, message: str, request_id: str,
                               status_code: Optional[int] = None, **kwargs: Any) -> func.HttpResponse:
        response_data = create_error_response(error_code, message, request_id=request_id, **kwargs)
        response_data["timestamp"] = datetime.now(timezone.utc).isoformat()
        status = status_code or response_data["http_status"]
        response_data["http_status"] = status
        return func.HttpResponse(
            json.dumps(response_data, default=str),
            status_code=status,
            mimetype="application/json",
            headers={"X-Request-ID": request_id},
        )


# ============================================================================
# SPECIALIZED BASE CLASSES FOR COMMON PATTERNS
# ============================================================================

class SyncTrigger(BaseHttpTrigger):
    """Base class for sync endpoints. The orchestrator is built on first use."""

    def __init__(self, trigger_name: str, orchestrator=None, dispatcher=None):
        super().__init__(trigger_name)
        self._orchestrator = orchestrator
        self._dispatcher = dispatcher

    @property
    def orchestrator(self):
        if self._orchestrator is None:
            from services import ServiceFactory
            self._orchestrator = ServiceFactory.create_sync_orchestrator()
        return self._orchestrator

    @property
    def dispatcher(self):
        if self._dispatcher is None:
            from infrastructure import RepositoryFactory
            self._dispatcher = RepositoryFactory.create_dispatcher()
        return self._dispatcher

    def job_id(self, req: func.HttpRequest) -> str:
        return self.extract_path_params(req, ["job_id"])["job_id"]


class PipelineTrigger(BaseHttpTrigger):
    """Base class for pipeline endpoints scoped by dataset_id and country."""

    def __init__(self, trigger_name: str, orchestrator=None):
        super().__init__(trigger_name)
        self._orchestrator = orchestrator

    @property
    def orchestrator(self):
        if self._orchestrator is None:
            from services import ServiceFactory
            self._orchestrator = ServiceFactory.create_pipeline_orchestrator()
        return self._orchestrator

    def scope(self, req: func.HttpRequest) -> Tuple[str, str]:
        params = self.extract_path_params(req, ["dataset_id", "country"])
        return params["dataset_id"], params["country"]
