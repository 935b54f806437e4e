# ============================================================================
# REPOSITORY FACTORY
# ============================================================================
# STATUS: Infrastructure - central factory for all repository instances
# PURPOSE: Build blob, status, lock, query and dispatch clients from AppConfig
# EXPORTS: RepositoryFactory
# DEPENDENCIES: config, infrastructure.*
# PATTERNS: Factory pattern, Dependency Injection
# ENTRY_POINTS: RepositoryFactory.create_repositories()
# ============================================================================

"""
Repository Factory - Central Creation Point

Single place where infrastructure clients are constructed from
configuration. Missing mandatory settings raise ConfigurationError here,
at construction time, never halfway through an operation.
"""

from typing import Any, Dict, Optional

from config import AppConfig, get_config
from util_logger import LoggerFactory, ComponentType

from .blob import BlobRepository, IBlobRepository
from .dispatcher import IWorkDispatcher, ServiceBusDispatcher
from .lock_manager import LockManager
from .query_service import AthenaQueryService, IQueryService
from .status_store import StatusStore

logger = LoggerFactory.create_logger(ComponentType.FACTORY, "RepositoryFactory")


class RepositoryFactory:
    """Factory for infrastructure clients."""

    @staticmethod
    def create_blob_repository(config: Optional[AppConfig] = None) -> IBlobRepository:
        config = config or get_config()
        config.require_storage()
        return BlobRepository.instance(
            connection_string=config.storage.connection_string,
            storage_account=config.storage.account_name,
        )

    @staticmethod
    def create_status_store(config: Optional[AppConfig] = None,
                            blob_repo: Optional[IBlobRepository] = None) -> StatusStore:
        config = config or get_config()
        blob_repo = blob_repo or RepositoryFactory.create_blob_repository(config)
        return StatusStore(
            blob_repo,
            container=config.storage.status_container,
            retry_count=config.pipeline.status_retry_count,
        )

    @staticmethod
    def create_query_service(config: Optional[AppConfig] = None) -> IQueryService:
        config = config or get_config()
        config.require_query_service()
        return AthenaQueryService(config.query)

    @staticmethod
    def create_dispatcher(config: Optional[AppConfig] = None) -> IWorkDispatcher:
        config = config or get_config()
        config.require_queues()
        return ServiceBusDispatcher(config.queues)

    @staticmethod
    def create_repositories(config: Optional[AppConfig] = None) -> Dict[str, Any]:
        """
        Create the blob-backed repositories used by the sync side.

        Returns:
            Dict with 'blob_repo', 'status_store' and 'lock_manager'
        """
        config = config or get_config()
        blob_repo = RepositoryFactory.create_blob_repository(config)
        status_store = RepositoryFactory.create_status_store(config, blob_repo)
        logger.debug("Created blob, status and lock repositories")
        return {
            'blob_repo': blob_repo,
            'status_store': status_store,
            'lock_manager': LockManager(status_store),
        }
