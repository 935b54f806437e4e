"""
Infrastructure Package - Lazy Loading Implementation.

Repository classes are imported on first attribute access, not when the
package is imported. Azure Functions imports function_app.py (and with it
this package) before application settings and managed identity are
guaranteed to be ready; deferring the imports keeps SDK clients, config
reads and credentials out of module load.

Usage:
    from infrastructure import RepositoryFactory
    repos = RepositoryFactory.create_repositories()
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .factory import RepositoryFactory as _RepositoryFactory
    from .blob import BlobRepository as _BlobRepository
    from .status_store import StatusStore as _StatusStore
    from .lock_manager import LockManager as _LockManager
    from .query_service import AthenaQueryService as _AthenaQueryService
    from .dispatcher import ServiceBusDispatcher as _ServiceBusDispatcher


_LAZY_IMPORTS = {
    "RepositoryFactory": ("factory", "RepositoryFactory"),
    "IBlobRepository": ("blob", "IBlobRepository"),
    "BlobRepository": ("blob", "BlobRepository"),
    "ETagConflictError": ("blob", "ETagConflictError"),
    "StatusStore": ("status_store", "StatusStore"),
    "UpdateResult": ("status_store", "UpdateResult"),
    "LockManager": ("lock_manager", "LockManager"),
    "IQueryService": ("query_service", "IQueryService"),
    "AthenaQueryService": ("query_service", "AthenaQueryService"),
    "IWorkDispatcher": ("dispatcher", "IWorkDispatcher"),
    "ServiceBusDispatcher": ("dispatcher", "ServiceBusDispatcher"),
}


def __getattr__(name: str):
    """Import repository classes on first use."""
    if name in _LAZY_IMPORTS:
        import importlib
        module_name, attr = _LAZY_IMPORTS[name]
        module = importlib.import_module(f".{module_name}", __name__)
        return getattr(module, attr)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = list(_LAZY_IMPORTS)
