"""
Unit test fixtures: factory-built models and wired orchestrators.
"""

import pytest

from tests.factories.fakes import FakeQueryService, FakeWorkload, RecordingDispatcher
from tests.factories.model_factories import make_job_record, make_run_status


@pytest.fixture
def job_record_data():
    """Return randomized job record data dict."""
    return make_job_record()


@pytest.fixture
def run_status_data():
    """Return randomized run status data dict."""
    return make_run_status()


@pytest.fixture
def lock_manager(status_store, clock):
    from infrastructure.lock_manager import LockManager
    return LockManager(status_store, now_fn=clock)


@pytest.fixture
def query_service():
    return FakeQueryService()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def workload(query_service):
    return FakeWorkload(query_service)


@pytest.fixture
def pipeline(status_store, query_service, workload, dispatcher, registry, clock):
    from config import PipelineConfig
    from services.pipeline_orchestrator import PipelineOrchestrator
    return PipelineOrchestrator(
        store=status_store,
        query_service=query_service,
        workload=workload,
        dispatcher=dispatcher,
        config=PipelineConfig(max_run_minutes=45),
        registry=registry,
        now_fn=clock,
    )
