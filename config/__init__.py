# ============================================================================
# CONFIG PACKAGE INIT
# ============================================================================
# PURPOSE: Configuration package exports
# EXPORTS: All config classes, get_config singleton, debug_config helper
# PYDANTIC_MODELS: AppConfig, StorageConfig, QueueConfig, QueryConfig, SyncConfig, PipelineConfig
# PATTERNS: Singleton, composition, facade
# ENTRY_POINTS: from config import get_config, QueueNames
# ============================================================================

"""
Configuration Package - Domain-Specific Configuration Modules

Structure:
    config/
    ├── __init__.py              # This file - exports and singleton
    ├── app_config.py            # Main config (composes domain configs)
    ├── defaults.py              # Default values
    ├── storage_config.py        # Blob storage
    ├── queue_config.py          # Service Bus queues
    ├── query_config.py          # Athena
    └── orchestration_config.py  # Sync + pipeline tunables

Usage:
    from config import get_config
    config = get_config()
    max_duration = config.pipeline.max_run_duration

    from config import debug_config
    info = debug_config()  # Secrets masked
"""

from typing import Optional

from .storage_config import StorageConfig
from .queue_config import QueueConfig, QueueNames
from .query_config import QueryConfig
from .orchestration_config import SyncConfig, PipelineConfig
from .app_config import AppConfig


# ============================================================================
# SINGLETON PATTERN
# ============================================================================

_config_instance: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """
    Get global configuration singleton.

    Returns:
        AppConfig instance loaded from environment
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = AppConfig.from_environment()
    return _config_instance


def reset_config() -> None:
    """Drop the cached singleton (tests, or after changing environment variables)."""
    global _config_instance
    _config_instance = None


def debug_config() -> dict:
    """
    Get sanitized configuration for debugging (masks sensitive values).
    """
    try:
        config = get_config()
        return {
            'storage': config.storage.debug_dict(),
            'queues': {
                'sync_queue': config.queues.sync_queue,
                'pipeline_queue': config.queues.pipeline_queue,
                'namespace': config.queues.namespace,
                'connection': '***MASKED***' if config.queues.connection_string else None,
            },
            'query': config.query.debug_dict(),
            'sync': config.sync.model_dump(),
            'pipeline': config.pipeline.model_dump(),
            'debug_mode': config.debug_mode,
            'environment': config.environment,
            'function_timeout_minutes': config.function_timeout_minutes,
            'log_level': config.log_level,
        }
    except Exception as e:
        return {'error': f'Configuration validation failed: {e}'}


__all__ = [
    'AppConfig',
    'get_config',
    'reset_config',
    'debug_config',
    'StorageConfig',
    'QueueConfig',
    'QueueNames',
    'QueryConfig',
    'SyncConfig',
    'PipelineConfig',
]
