"""
Triggers Package.

Azure Functions HTTP and Service Bus trigger implementations.

HTTP Endpoints:
    /api/health: System health check
    /api/sync/{job_id}[/status|/cancel]: Storage sync
    /api/pipeline/{dataset_id}/{country}/[start|status|stop|continue|results]: Pipeline runs
    /api/pipeline/audiences: Audience catalog

Exports:
    Base classes for HTTP triggers
"""

# Only import base classes to avoid initialization at import time
# Trigger instances should be imported directly from their modules
from .http_base import BaseHttpTrigger, PipelineTrigger, SyncTrigger

__all__ = [
    'BaseHttpTrigger',
    'PipelineTrigger',
    'SyncTrigger',
]
