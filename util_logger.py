"""
Structured Logger.

JSON logging for Azure Functions, shaped so Application Insights lifts
every key under customDimensions into a queryable column.

    logger = LoggerFactory.create_logger(ComponentType.ORCHESTRATOR, "SyncOrchestrator")
    log = LoggerFactory.with_context(logger, job_id="abc", correlation_id="1f2e3d4c")
    log.info("📦 Copy loop started")

A sync is correlated by job_id, a pipeline run by scope + run_id. Context
is bound per invocation through a LoggerAdapter, never stored on the
module-level logger, because one worker process serves many invocations.

Exports:
    ComponentType, LogLevel, LogContext, JSONFormatter, ContextAdapter,
    LoggerFactory
"""

from enum import Enum
from typing import Optional, Dict, Any, MutableMapping, Tuple, Union
from datetime import datetime, timezone
from dataclasses import dataclass, asdict
import logging
import sys
import os
import json


# ============================================================================
# COMPONENT TYPES
# ============================================================================

class ComponentType(Enum):
    """Layer a logger belongs to; drives its default level."""
    ORCHESTRATOR = "orchestrator"  # SyncOrchestrator, PipelineOrchestrator, BatchProcessor
    SERVICE = "service"            # audience workload
    REPOSITORY = "repository"      # blob, status store, Athena, Service Bus
    FACTORY = "factory"
    TRIGGER = "trigger"            # HTTP + Service Bus entry points


class LogLevel(Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"

    def to_python_level(self) -> int:
        return getattr(logging, self.value)

    @classmethod
    def from_env(cls, default: 'LogLevel' = None) -> 'LogLevel':
        """DEBUG_LOGGING=true wins, then LOG_LEVEL, then the default."""
        if os.getenv('DEBUG_LOGGING', '').lower() == 'true':
            return cls.DEBUG
        raw = os.getenv('LOG_LEVEL', '').upper()
        if raw in cls.__members__:
            return cls[raw]
        return default or cls.INFO


# ============================================================================
# LOG CONTEXT
# ============================================================================

@dataclass
class LogContext:
    """Correlation fields for one stateless invocation."""
    job_id: Optional[str] = None
    run_id: Optional[str] = None
    scope: Optional[str] = None  # "{dataset_id}/{country}"
    correlation_id: Optional[str] = None
    request_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


# ============================================================================
# JSON FORMATTER
# ============================================================================

class JSONFormatter(logging.Formatter):
    """One JSON object per line, Application Insights friendly."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name,
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        dims = getattr(record, 'custom_dimensions', None)
        if dims:
            log_obj['customDimensions'] = dims

        if record.exc_info:
            log_obj['exception'] = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
                'traceback': self.formatException(record.exc_info)
            }

        return json.dumps(log_obj, default=str)


class ContextAdapter(logging.LoggerAdapter):
    """
    Merges bound context and the component identity into
    extra['custom_dimensions'] of every record.
    """

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get('extra') or {})
        dims = dict(self.extra)
        dims.update(extra.get('custom_dimensions') or {})
        extra['custom_dimensions'] = dims
        kwargs['extra'] = extra
        return msg, kwargs


Logger = Union[logging.Logger, ContextAdapter]


# ============================================================================
# LOGGER FACTORY
# ============================================================================

class LoggerFactory:
    """
    Creates component loggers with a single JSON stdout handler each.

    Azure SDK and botocore loggers are quietened in function_app.py.
    """

    _default_level = LogLevel.from_env()

    DEFAULT_LEVELS: Dict[ComponentType, LogLevel] = {
        ComponentType.ORCHESTRATOR: _default_level,
        ComponentType.SERVICE: _default_level,
        ComponentType.REPOSITORY: _default_level,
        ComponentType.FACTORY: _default_level,
        ComponentType.TRIGGER: _default_level,
    }

    @classmethod
    def create_logger(
        cls,
        component_type: ComponentType,
        name: str,
        level: Optional[LogLevel] = None
    ) -> ContextAdapter:
        """
        Args:
            component_type: Layer of the component
            name: Component name (e.g., "SyncOrchestrator")
            level: Override of the component default

        Returns:
            Adapter tagging every record with component_type and component_name
        """
        level = level or cls.DEFAULT_LEVELS.get(component_type, LogLevel.INFO)
        base = logging.getLogger(f"{component_type.value}.{name}")
        base.setLevel(level.to_python_level())

        # one JSON handler per named logger
        if not any(isinstance(h.formatter, JSONFormatter) for h in base.handlers):
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(JSONFormatter())
            base.addHandler(handler)

        # Azure's root logger forwards to Application Insights
        base.propagate = True

        return ContextAdapter(base, {
            'component_type': component_type.value,
            'component_name': name,
        })

    @staticmethod
    def with_context(logger: Logger, context: Optional[LogContext] = None, **fields: Any) -> ContextAdapter:
        """
        Bind correlation fields to an existing logger for one invocation.

        Accepts a LogContext, keyword fields, or both (keywords win).
        """
        dims: Dict[str, Any] = {}
        base = logger
        if isinstance(logger, ContextAdapter):
            dims.update(logger.extra)
            base = logger.logger
        if context is not None:
            dims.update(context.to_dict())
        dims.update({k: v for k, v in fields.items() if v is not None})
        return ContextAdapter(base, dims)
