"""
Services Package - orchestration and workload logic.

Exports:
    SyncOrchestrator: Storage sync with locking and cooperative cancel
    PipelineOrchestrator: Poll-driven three-phase Athena pipeline
    BatchProcessor: Processing phase of a pipeline run
    AudiencePipeline: Production workload (audience segmentation)
    ServiceFactory: Builds the above from configuration
"""

from .audience_pipeline import AudiencePipeline
from .batch_processor import BatchProcessor
from .factory import ServiceFactory
from .pipeline_orchestrator import PipelineOrchestrator, PipelineStartRequest
from .sync_orchestrator import SyncOrchestrator

__all__ = [
    'AudiencePipeline',
    'BatchProcessor',
    'ServiceFactory',
    'PipelineOrchestrator',
    'PipelineStartRequest',
    'SyncOrchestrator',
]
