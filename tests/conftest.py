"""
Root conftest.py: sys.path, env vars, shared fixtures.

Sets up the test environment so all production code can be imported
without Azure or AWS credentials. Every collaborator that would talk to
a cloud service is replaced by an in-memory fake from tests/factories.
"""

import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

# Add project root to sys.path so 'core', 'services', 'config', etc. are importable
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)


@pytest.fixture(autouse=True, scope="session")
def set_minimal_env_vars():
    """
    Set minimal environment variables to prevent import crashes.

    function_app and the trigger singletons read configuration lazily, but
    config objects built in tests should still see sane values.
    """
    defaults = {
        "STORAGE_ACCOUNT_NAME": "teststorage",
        "STATUS_CONTAINER": "orchestration",
        "RESULTS_CONTAINER": "audiences",
        "SERVICE_BUS_NAMESPACE": "test.servicebus.windows.net",
        "ATHENA_DATABASE": "mobility",
        "ATHENA_OUTPUT_LOCATION": "s3://test-athena-results/",
        "AWS_REGION": "us-east-1",
        "ENVIRONMENT": "dev",
    }
    for key, value in defaults.items():
        os.environ.setdefault(key, value)


@pytest.fixture(autouse=True)
def fresh_config():
    """Drop the cached config singleton around every test."""
    from config import reset_config
    reset_config()
    yield
    reset_config()


class FakeClock:
    """Settable UTC clock passed as now_fn."""

    def __init__(self, start: datetime = None):
        self.now = start or datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def blob_repo():
    from tests.factories.fakes import InMemoryBlobRepository
    return InMemoryBlobRepository()


@pytest.fixture
def status_store(blob_repo):
    from infrastructure.status_store import StatusStore
    return StatusStore(blob_repo, container="orchestration", retry_count=10)


@pytest.fixture
def registry():
    from core.abort_registry import AbortRegistry
    return AbortRegistry()
