"""
Configuration tests: environment loading and fail-fast placeholders.
"""

import pytest

from config import AppConfig, QueryConfig, StorageConfig, SyncConfig, get_config, reset_config
from config.defaults import QueryDefaults, StorageDefaults
from exceptions import ConfigurationError


class TestFromEnvironment:

    def test_reads_overrides(self, monkeypatch):
        monkeypatch.setenv("PIPELINE_MAX_RUN_MINUTES", "30")
        monkeypatch.setenv("SYNC_PROGRESS_FLUSH_EVERY", "25")
        monkeypatch.setenv("STATUS_CONTAINER", "orch-test")

        config = AppConfig.from_environment()

        assert config.pipeline.max_run_minutes == 30
        assert config.sync.progress_flush_every == 25
        assert config.storage.status_container == "orch-test"

    def test_singleton_is_cached_until_reset(self, monkeypatch):
        first = get_config()
        assert get_config() is first
        reset_config()
        assert get_config() is not first

    def test_defaults(self):
        config = AppConfig()
        assert config.pipeline.max_run_minutes == 45
        assert config.queues.sync_queue == "sync-jobs"
        assert config.queues.pipeline_queue == "pipeline-batches"
        assert config.storage.results_container == "audiences"


class TestFailFast:

    def test_placeholder_storage_is_not_configured(self):
        storage = StorageConfig(account_name=StorageDefaults.DEFAULT_ACCOUNT_NAME)
        assert storage.is_configured is False
        with pytest.raises(ConfigurationError):
            AppConfig(storage=storage).require_storage()

    def test_placeholder_athena_is_not_configured(self):
        query = QueryConfig(output_location=QueryDefaults.OUTPUT_LOCATION)
        with pytest.raises(ConfigurationError, match="ATHENA_OUTPUT_LOCATION"):
            AppConfig(query=query).require_query_service()

    def test_temp_location_derived_from_output(self):
        query = QueryConfig(output_location="s3://bucket/results")
        assert query.resolved_temp_location == "s3://bucket/results/athena-temp/"

    def test_flush_every_must_be_positive(self):
        with pytest.raises(ValueError):
            SyncConfig(progress_flush_every=0)
