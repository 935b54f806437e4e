# ============================================================================
# ABORT REGISTRY
# ============================================================================
# STATUS: Core - in-process cancellation signals
# PURPOSE: Map a running sync or pipeline batch to a token its checkpoints poll
# EXPORTS: AbortToken, AbortRegistry, get_abort_registry
# DEPENDENCIES: threading
# PATTERNS: Process-wide singleton
# ============================================================================

"""
Abort Registry - in-process cancellation fast path.

Maps a job id (sync) or run scope (pipeline) to a cancellation token for an
operation currently executing in THIS process. It does not survive a
restart and cannot see operations in other Function App instances, so it is
only an optimisation: the durable flags (JobRecord.sync_cancelled_at,
RunStatus.cancel_requested) are what every checkpoint must honour.

Exports:
    AbortToken: Cancellation flag polled by a running operation
    AbortRegistry: id -> token map
    get_abort_registry: Process-wide registry singleton
"""

import threading
from typing import Dict, Optional

from util_logger import LoggerFactory, ComponentType

logger = LoggerFactory.create_logger(ComponentType.SERVICE, "AbortRegistry")


class AbortToken:
    """Cancellation flag for one registered operation."""

    def __init__(self, operation_id: str):
        self.operation_id = operation_id
        self._event = threading.Event()

    def signal(self) -> None:
        self._event.set()

    @property
    def signaled(self) -> bool:
        return self._event.is_set()


class AbortRegistry:
    """
    Thread-safe registry of live, cancellable operations.

    Usage:
        token = registry.register(job_id)
        try:
            for item in work:
                if registry.is_signaled(token):
                    break
                ...
        finally:
            registry.unregister(job_id, token)
    """

    def __init__(self):
        self._tokens: Dict[str, AbortToken] = {}
        self._lock = threading.Lock()

    def register(self, operation_id: str) -> AbortToken:
        """
        Create a fresh token for an operation.

        A previous token under the same id is replaced; its holder keeps its
        own reference and will simply never be signalled again.
        """
        token = AbortToken(operation_id)
        with self._lock:
            self._tokens[operation_id] = token
        logger.debug(f"Registered abort token for {operation_id}")
        return token

    def signal(self, operation_id: str) -> bool:
        """
        Signal the live operation registered under operation_id.

        Returns:
            True if an operation was found in this process. False only means
            nothing to cancel HERE, not that nothing is running elsewhere.
        """
        with self._lock:
            token = self._tokens.get(operation_id)
        if token is None:
            logger.debug(f"No in-process operation to signal for {operation_id}")
            return False
        token.signal()
        logger.info(f"🛑 Abort signalled for {operation_id}")
        return True

    def is_signaled(self, token: Optional[AbortToken]) -> bool:
        return token is not None and token.signaled

    def unregister(self, operation_id: str, token: Optional[AbortToken] = None) -> None:
        """
        Drop the token for operation_id.

        When token is given, only that exact token is removed, so a finishing
        operation cannot remove the token of a newer one with the same id.
        """
        with self._lock:
            current = self._tokens.get(operation_id)
            if current is None:
                return
            if token is None or current is token:
                del self._tokens[operation_id]

    def is_registered(self, operation_id: str) -> bool:
        with self._lock:
            return operation_id in self._tokens


_registry: Optional[AbortRegistry] = None
_registry_lock = threading.Lock()


def get_abort_registry() -> AbortRegistry:
    """Process-wide registry singleton."""
    global _registry
    if _registry is None:
        with _registry_lock:
            if _registry is None:
                _registry = AbortRegistry()
    return _registry
