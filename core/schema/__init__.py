"""
Transport schemas.

Exports:
    SyncQueueMessage, BatchQueueMessage
"""

from .queue import SyncQueueMessage, BatchQueueMessage

__all__ = [
    'SyncQueueMessage',
    'BatchQueueMessage',
]
