# ============================================================================
# SERVICE FACTORY
# ============================================================================
# STATUS: Service - wiring of orchestrators from configuration
# PURPOSE: Build SyncOrchestrator, PipelineOrchestrator and BatchProcessor
#          over the repositories created by RepositoryFactory
# EXPORTS: ServiceFactory
# DEPENDENCIES: config, infrastructure.factory, services.*
# PATTERNS: Factory pattern, Dependency Injection
# ============================================================================

"""
Service Factory.

Triggers never construct infrastructure themselves; they ask this factory,
which pulls every client from RepositoryFactory so a misconfigured setting
fails before any state is touched.
"""

from typing import Optional

from config import AppConfig, get_config
from infrastructure.factory import RepositoryFactory

from .audience_pipeline import AudiencePipeline
from .batch_processor import BatchProcessor
from .pipeline_orchestrator import PipelineOrchestrator
from .sync_orchestrator import SyncOrchestrator


class ServiceFactory:
    """Factory for the orchestration services."""

    @staticmethod
    def create_sync_orchestrator(config: Optional[AppConfig] = None) -> SyncOrchestrator:
        config = config or get_config()
        repos = RepositoryFactory.create_repositories(config)
        return SyncOrchestrator(
            store=repos['status_store'],
            lock_manager=repos['lock_manager'],
            blob_repo=repos['blob_repo'],
            config=config.sync,
        )

    @staticmethod
    def create_audience_pipeline(config: Optional[AppConfig] = None) -> AudiencePipeline:
        config = config or get_config()
        return AudiencePipeline(
            query_service=RepositoryFactory.create_query_service(config),
            blob_repo=RepositoryFactory.create_blob_repository(config),
            results_container=config.storage.results_container,
            query_config=config.query,
            pipeline_config=config.pipeline,
        )

    @staticmethod
    def create_pipeline_orchestrator(config: Optional[AppConfig] = None) -> PipelineOrchestrator:
        config = config or get_config()
        workload = ServiceFactory.create_audience_pipeline(config)
        return PipelineOrchestrator(
            store=RepositoryFactory.create_status_store(config),
            query_service=workload.query_service,
            workload=workload,
            dispatcher=RepositoryFactory.create_dispatcher(config),
            config=config.pipeline,
        )

    @staticmethod
    def create_batch_processor(config: Optional[AppConfig] = None) -> BatchProcessor:
        config = config or get_config()
        return BatchProcessor(
            store=RepositoryFactory.create_status_store(config),
            workload=ServiceFactory.create_audience_pipeline(config),
        )
