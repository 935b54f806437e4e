"""
AudiencePipeline tests: table naming, SQL builders, workload steps.
"""

import json
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from azure.core.exceptions import HttpResponseError

from config import PipelineConfig, QueryConfig
from core.models import AudienceResultStatus, QueryNames, QueryResult, RunStatus
from exceptions import ExternalServiceError, ValidationError
from infrastructure.query_service import IQueryService
from services.audience_pipeline import (
    AudiencePipeline,
    build_origins_select,
    build_spatial_select,
    build_total_devices_query,
    dataset_table_name,
    temp_table_name,
)
from tests.factories.fakes import FakeQueryService
from tests.factories.model_factories import make_run_status


FIXED_NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def query_config():
    return QueryConfig(database="mobility", output_location="s3://results/", poi_table="pois")


@pytest.fixture
def audience_pipeline(blob_repo, query_config):
    return AudiencePipeline(
        query_service=FakeQueryService(),
        blob_repo=blob_repo,
        results_container="audiences",
        query_config=query_config,
        pipeline_config=PipelineConfig(zone_grid_degrees=0.01, top_zones=5),
        now_fn=lambda: FIXED_NOW,
    )


def _run(**overrides):
    overrides.setdefault("run_id", "Run-ABC-123")
    overrides.setdefault("dataset_id", "spain_q1")
    overrides.setdefault("audience_ids", ["moviegoers", "golfers"])
    return RunStatus(**make_run_status(**overrides))


class TestNaming:

    def test_temp_table_strips_run_id(self):
        assert temp_table_name("visits", "Run-ABC-123") == "temp_visits_runabc123"

    def test_dataset_table_prefixes_digits(self):
        assert dataset_table_name("2024-Spain") == "ds_2024_spain"
        assert dataset_table_name("Spain Q1") == "spain_q1"

    def test_dataset_table_rejects_empty(self):
        with pytest.raises(ValidationError):
            dataset_table_name("")


class TestSqlBuilders:

    def test_spatial_select(self):
        sql = build_spatial_select("spain_q1", "pois", ["cinema", "golf_course"], "es", 50,
                                   "2025-01-01", "2025-01-31")

        assert "FROM spain_q1" in sql
        assert "country = 'ES'" in sql
        assert "category IN ('cinema', 'golf_course')" in sql
        assert "date >= '2025-01-01' AND date <= '2025-01-31'" in sql
        assert "<= 50" in sql

    def test_spatial_select_rejects_injected_category(self):
        with pytest.raises(ValidationError):
            build_spatial_select("spain_q1", "pois", ["cinema'; DROP TABLE x; --"], "ES", 50)

    def test_spatial_select_rejects_bad_country(self):
        with pytest.raises(ValidationError):
            build_spatial_select("spain_q1", "pois", ["cinema"], "ESP", 50)

    def test_total_devices_without_dates(self):
        assert build_total_devices_query("spain_q1") == \
            "SELECT COUNT(DISTINCT ad_id) AS total FROM spain_q1 WHERE TRUE"

    def test_bad_date_rejected(self):
        with pytest.raises(ValidationError):
            build_total_devices_query("spain_q1", date_from="2025-1-1")

    def test_origins_select_reads_visits_table(self):
        sql = build_origins_select("spain_q1", "mobility", "temp_visits_abc")
        assert "FROM mobility.temp_visits_abc" in sql
        assert "rn = 1" in sql


class TestAthenaPhases:

    def test_submit_spatial(self, audience_pipeline):
        run = _run()
        submission = audience_pipeline.submit_spatial(run)
        service = audience_pipeline.query_service

        assert submission.visits_table_name == "temp_visits_runabc123"
        assert service.sql[submission.spatial_query_id].startswith("CREATE TABLE temp_visits_runabc123 AS")
        assert "golf_course" in service.sql[submission.spatial_query_id]
        assert service.sql[submission.total_devices_query_id].startswith("SELECT COUNT(DISTINCT ad_id)")

    def test_submit_origins_requires_visits_table(self, audience_pipeline):
        with pytest.raises(ValidationError):
            audience_pipeline.submit_origins(_run())

    def test_submit_origins(self, audience_pipeline):
        query_id, table = audience_pipeline.submit_origins(_run(visits_table_name="temp_visits_runabc123"))
        assert table == "temp_origins_runabc123"
        assert "FROM mobility.temp_visits_runabc123" in audience_pipeline.query_service.sql[query_id]


class TestBatchStep:

    @pytest.fixture
    def context_service(self):
        service = MagicMock(spec=IQueryService)
        service.run_query.side_effect = [
            QueryResult(columns=["ad_id"], rows=[
                {"ad_id": "d1", "date": "2025-01-01", "poi_id": "p1", "category": "cinema",
                 "dwell_minutes": 95, "visit_hour": 20},
                {"ad_id": "d2", "date": "2025-01-01", "poi_id": "p2", "category": "golf_course",
                 "dwell_minutes": 120, "visit_hour": 9},
            ]),
            QueryResult(columns=["ad_id"], rows=[
                {"ad_id": "d1", "date": "2025-01-01", "origin_lat": 40.4168, "origin_lng": -3.7038},
                {"ad_id": "d2", "date": "2025-01-01", "origin_lat": 41.3851, "origin_lng": 2.1734},
            ]),
        ]
        service.fetch_results.return_value = QueryResult(columns=["total"], rows=[{"total": 10}])
        return service

    def _processing_run(self):
        return _run(
            visits_table_name="temp_visits_runabc123",
            origins_table_name="temp_origins_runabc123",
            athena_query_ids={QueryNames.TOTAL_DEVICES: "q-total"},
        )

    def test_load_context(self, audience_pipeline, context_service):
        audience_pipeline.query_service = context_service

        context = audience_pipeline.load_context(self._processing_run())

        assert context.total_devices == 10
        assert len(context.visits) == 2
        assert set(context.device_zones) == {"d1", "d2"}
        context_service.fetch_results.assert_called_once_with("q-total", max_rows=1)

    def test_process_subtask_writes_results(self, audience_pipeline, context_service, blob_repo):
        audience_pipeline.query_service = context_service
        run = self._processing_run()
        context = audience_pipeline.load_context(run)

        result = audience_pipeline.process_subtask(context, run, "moviegoers")

        assert result.status == AudienceResultStatus.COMPLETED
        assert result.segment_size == 1
        assert result.segment_percent == 10.0
        latest = json.loads(blob_repo.read_blob("audiences", "spain_q1/es/moviegoers/latest.json"))
        assert latest["segment_size"] == 1
        csv_body = blob_repo.read_blob("audiences", "spain_q1/es/moviegoers/2025-03-01T12-00-00-segment.csv")
        assert csv_body.decode().splitlines() == ["ad_id", "d1"]

    def test_unknown_audience(self, audience_pipeline, context_service):
        audience_pipeline.query_service = context_service
        run = self._processing_run()
        with pytest.raises(ValidationError):
            audience_pipeline.process_subtask(audience_pipeline.load_context(run), run, "astronauts")

    def test_storage_failure_is_external_service_error(self, audience_pipeline, context_service):
        audience_pipeline.query_service = context_service
        run = self._processing_run()
        context = audience_pipeline.load_context(run)
        audience_pipeline.blob_repo = MagicMock()
        audience_pipeline.blob_repo.write_blob.side_effect = HttpResponseError("503 Server Busy")

        with pytest.raises(ExternalServiceError) as exc_info:
            audience_pipeline.process_subtask(context, run, "moviegoers")

        assert exc_info.value.service == "storage"

    def test_load_results_sorted(self, audience_pipeline, context_service):
        audience_pipeline.query_service = context_service
        run = self._processing_run()
        context = audience_pipeline.load_context(run)
        audience_pipeline.process_subtask(context, run, "moviegoers")
        audience_pipeline.process_subtask(context, run, "golfers")

        results = audience_pipeline.load_results("spain_q1", "ES")

        assert [r.audience_id for r in results] == ["golfers", "moviegoers"]

    def test_cleanup_drops_both_tables(self, audience_pipeline):
        audience_pipeline.cleanup(self._processing_run())
        assert audience_pipeline.query_service.dropped == ["temp_visits_runabc123", "temp_origins_runabc123"]
