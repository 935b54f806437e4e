"""
Core Orchestration Components.

Contains the building blocks shared by the sync and pipeline orchestrators,
separated from Azure/AWS specific infrastructure.

Structure:
    models/: Pure data structures (no business logic)
    logic/: Pure business rules (transitions, sync status, pipeline machine)
    schema/: Queue message schemas
    errors.py: Error codes and HTTP mapping
    abort_registry.py: In-process cancellation fast path
"""

from . import models
from . import logic
from . import schema

__all__ = [
    'models',
    'logic',
    'schema',
]
