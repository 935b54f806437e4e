"""
Health Check HTTP Trigger.

System health monitoring endpoint for GET /api/health.

Components Monitored:
    - Configuration (storage, Service Bus, Athena settings present)
    - Status storage (status container reachable)

Exports:
    HealthCheckTrigger: Health check trigger class
    health_check_trigger: Singleton trigger instance
"""

from typing import Any, Callable, Dict, List, Optional
import sys
from datetime import datetime, timezone

import azure.functions as func
from azure.core.exceptions import AzureError

from config import debug_config, get_config
from exceptions import BusinessLogicError, ConfigurationError

from .http_base import BaseHttpTrigger, ResponseData


class HealthCheckTrigger(BaseHttpTrigger):
    """Health check HTTP trigger implementation."""

    def __init__(self, blob_repo_factory: Optional[Callable[[], Any]] = None):
        super().__init__("health_check")
        self._blob_repo_factory = blob_repo_factory

    def get_allowed_methods(self) -> List[str]:
        return ["GET"]

    def process_request(self, req: func.HttpRequest) -> ResponseData:
        health_data = {
            "status": "healthy",
            "components": {},
            "environment": {
                "environment": get_config().environment,
                "python_version": sys.version.split()[0],
                "function_runtime": "python",
            },
            "errors": [],
        }

        checks = [
            ("configuration", self._check_configuration, "Mandatory settings for storage, queues and Athena"),
            ("status_storage", self._check_status_storage, "Blob container holding job and run documents"),
        ]
        for name, check, description in checks:
            component = self.check_component_health(name, check, description)
            health_data["components"][name] = component
            if component["status"] == "unhealthy":
                health_data["status"] = "unhealthy"
                health_data["errors"].append(component.get("error") or f"{name} unhealthy")

        status_code = 200 if health_data["status"] == "healthy" else 503
        return health_data, status_code

    def check_component_health(self, component_name: str, check_function,
                               description: Optional[str] = None) -> Dict[str, Any]:
        """
        Run one component check.

        A check that raises is unhealthy; a returned dict may carry an
        explicit "_status" or a truthy "error".
        """
        checked_at = datetime.now(timezone.utc).isoformat()
        try:
            result = check_function()
        except (AzureError, BusinessLogicError, ConfigurationError) as e:
            return {
                "component": component_name,
                "description": description,
                "status": "unhealthy",
                "error": str(e),
                "checked_at": checked_at,
            }
        if "_status" in result:
            status = result.pop("_status")
        elif result.get("error"):
            status = "unhealthy"
        else:
            status = "healthy"
        return {
            "component": component_name,
            "description": description,
            "status": status,
            "details": result,
            "checked_at": checked_at,
        }

    def _check_configuration(self) -> Dict[str, Any]:
        config = get_config()
        missing = []
        for label, require in (
            ("storage", config.require_storage),
            ("service_bus", config.require_queues),
            ("athena", config.require_query_service),
        ):
            try:
                require()
            except ConfigurationError as e:
                missing.append(f"{label}: {e}")
        details = {"settings": debug_config()}
        if missing:
            details["error"] = "; ".join(missing)
        return details

    def _check_status_storage(self) -> Dict[str, Any]:
        if self._blob_repo_factory is None:
            from infrastructure import RepositoryFactory
            self._blob_repo_factory = RepositoryFactory.create_blob_repository
        container = get_config().storage.status_container
        blobs = self._blob_repo_factory().list_blobs(container, prefix="jobs/", limit=1)
        return {"container": container, "reachable": True, "sample_count": len(blobs)}


health_check_trigger = HealthCheckTrigger()
