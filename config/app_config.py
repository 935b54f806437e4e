# ============================================================================
# APPLICATION CONFIGURATION
# ============================================================================
# STATUS: Main config - composes domain configs
# PURPOSE: Single AppConfig object loaded from the environment
# EXPORTS: AppConfig
# INTERFACES: Pydantic BaseModel
# DEPENDENCIES: pydantic, os, domain config modules
# ENTRY_POINTS: from config import get_config
# ============================================================================

"""
Application Configuration - composition of domain configs.

Each domain config manages its own validation and defaults:
    storage   Azure Blob Storage (status documents, audience results)
    queues    Service Bus (sync-jobs, pipeline-batches)
    query     Amazon Athena
    sync      SyncOrchestrator tunables
    pipeline  PipelineOrchestrator tunables
"""

import os
from pydantic import BaseModel, Field

from exceptions import ConfigurationError

from .storage_config import StorageConfig
from .queue_config import QueueConfig
from .query_config import QueryConfig
from .orchestration_config import SyncConfig, PipelineConfig
from .defaults import AppDefaults


class AppConfig(BaseModel):
    """
    Application configuration - composition of domain configs.
    """

    # ========================================================================
    # Core Application Settings
    # ========================================================================

    debug_mode: bool = Field(
        default=AppDefaults.DEBUG_MODE,
        description="Enable debug mode for verbose diagnostics. "
                    "Set DEBUG_MODE=true in environment to enable.",
        examples=[True, False]
    )

    environment: str = Field(
        default=AppDefaults.ENVIRONMENT,
        description="Environment name (dev, qa, prod)",
        examples=["dev", "qa", "prod"]
    )

    log_level: str = Field(
        default=AppDefaults.LOG_LEVEL,
        description="Root log level"
    )

    function_timeout_minutes: int = Field(
        default=AppDefaults.FUNCTION_TIMEOUT_MINUTES,
        description="Function timeout in minutes (must match host.json functionTimeout)"
    )

    # ========================================================================
    # Domain Configurations
    # ========================================================================

    storage: StorageConfig = Field(default_factory=StorageConfig)
    queues: QueueConfig = Field(default_factory=QueueConfig)
    query: QueryConfig = Field(default_factory=QueryConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)

    def require_storage(self) -> None:
        """Raise ConfigurationError when no storage target is configured."""
        if not self.storage.is_configured:
            raise ConfigurationError(
                "Blob storage is not configured: set STORAGE_ACCOUNT_NAME or STORAGE_CONNECTION_STRING"
            )

    def require_query_service(self) -> None:
        """Raise ConfigurationError when Athena has no result location."""
        if not self.query.is_configured:
            raise ConfigurationError("Athena is not configured: set ATHENA_OUTPUT_LOCATION")

    def require_queues(self) -> None:
        """Raise ConfigurationError when Service Bus has neither connection string nor namespace."""
        if not (self.queues.connection_string or self.queues.namespace):
            raise ConfigurationError(
                "Service Bus is not configured: set ServiceBusConnection or SERVICE_BUS_NAMESPACE"
            )

    @classmethod
    def from_environment(cls):
        """Load all configs from environment."""
        return cls(
            debug_mode=os.environ.get("DEBUG_MODE", str(AppDefaults.DEBUG_MODE).lower()).lower() == "true",
            environment=os.environ.get("ENVIRONMENT", AppDefaults.ENVIRONMENT),
            log_level=os.environ.get("LOG_LEVEL", AppDefaults.LOG_LEVEL),
            function_timeout_minutes=int(os.environ.get(
                "FUNCTION_TIMEOUT_MINUTES", str(AppDefaults.FUNCTION_TIMEOUT_MINUTES))),

            storage=StorageConfig.from_environment(),
            queues=QueueConfig.from_environment(),
            query=QueryConfig.from_environment(),
            sync=SyncConfig.from_environment(),
            pipeline=PipelineConfig.from_environment(),
        )
