"""
PipelineOrchestrator tests: poll-driven phase progression.

FakeQueryService queries stay QUEUED until a test moves them with
set_state, so every poll observes exactly the Athena state the test set up.
"""

import threading
from datetime import timedelta

import pytest

from core.models import PipelinePhase, QueryNames, QueryState, RunState
from exceptions import ExternalServiceError, ResourceNotFoundError, RunInProgressError, ValidationError
from services.pipeline_orchestrator import PipelineStartRequest
from tests.factories.model_factories import TEN_AUDIENCES


DATASET = "ds42"
COUNTRY = "es"


def _request(**overrides):
    body = {"audience_ids": TEN_AUDIENCES[:3], "dataset_name": "Spain Q1",
            "date_from": "2025-01-01", "date_to": "2025-01-31"}
    body.update(overrides)
    return PipelineStartRequest(**body)


@pytest.fixture
def started(pipeline):
    return pipeline.start(DATASET, COUNTRY, _request())


def _to_origins(pipeline, query_service):
    """Finish query A and poll once; returns the polled run."""
    query_service.set_state("q-1", QueryState.SUCCEEDED)
    return pipeline.poll(DATASET, COUNTRY)


def _to_processing(pipeline, query_service):
    _to_origins(pipeline, query_service)
    query_service.set_state("q-2", QueryState.SUCCEEDED)
    query_service.set_state("q-3", QueryState.SUCCEEDED)
    return pipeline.poll(DATASET, COUNTRY)


class TestStartRequest:

    def test_empty_audiences_rejected(self):
        with pytest.raises(ValueError):
            PipelineStartRequest(audience_ids=[])

    def test_reversed_dates_rejected(self):
        with pytest.raises(ValueError):
            _request(date_from="2025-02-01", date_to="2025-01-01")

    def test_malformed_date_rejected(self):
        with pytest.raises(ValueError):
            _request(date_from="01/02/2025")


class TestStart:

    def test_start_submits_spatial_and_total(self, started, query_service):
        assert started.status == RunState.RUNNING
        assert started.pipeline_phase == PipelinePhase.ATHENA_SPATIAL
        assert started.country == "ES"
        assert started.percent == 5
        assert started.athena_query_ids == {QueryNames.SPATIAL_JOIN: "q-1", QueryNames.TOTAL_DEVICES: "q-2"}
        assert started.visits_table_name == f"temp_visits_{started.run_id}"
        assert started.total == 3
        assert set(query_service.statuses) == {"q-1", "q-2"}

    def test_start_is_persisted_under_lowercase_scope(self, started, status_store):
        stored = status_store.get_run(DATASET, "ES")
        assert stored.run_id == started.run_id
        assert status_store.run_path(DATASET, "ES") == f"runs/{DATASET}/es/status.json"

    def test_second_start_conflicts(self, pipeline, started):
        with pytest.raises(RunInProgressError):
            pipeline.start(DATASET, "ES", _request())

    def test_stale_run_is_replaced(self, pipeline, started, query_service, clock):
        clock.advance(minutes=46)

        fresh = pipeline.start(DATASET, COUNTRY, _request())

        assert fresh.run_id != started.run_id
        assert fresh.status == RunState.RUNNING
        assert {"q-1", "q-2"} <= set(query_service.cancelled)

    def test_start_after_terminal_run(self, pipeline, started, query_service):
        query_service.set_state("q-1", QueryState.FAILED, error="boom")
        pipeline.poll(DATASET, COUNTRY)

        fresh = pipeline.start(DATASET, COUNTRY, _request())
        assert fresh.run_id != started.run_id

    def test_bad_country_rejected(self, pipeline):
        with pytest.raises(ValidationError):
            pipeline.start(DATASET, "ESP", _request())

    def test_unknown_audience_rejected(self, pipeline, status_store):
        with pytest.raises(ValidationError):
            pipeline.start(DATASET, COUNTRY, _request(audience_ids=["moviegoers", "astronauts"]))
        assert status_store.get_run(DATASET, COUNTRY) is None

    def test_submission_failure_records_failed_run(self, pipeline, query_service, status_store):
        query_service.fail_submissions = True

        with pytest.raises(ExternalServiceError):
            pipeline.start(DATASET, COUNTRY, _request())

        stored = status_store.get_run(DATASET, COUNTRY)
        assert stored.status == RunState.FAILED
        assert stored.pipeline_phase == PipelinePhase.DONE
        assert "throttled" in stored.error


class TestPoll:

    def test_poll_without_run(self, pipeline):
        assert pipeline.poll(DATASET, COUNTRY) is None
        assert pipeline.describe(None)["active"] is False

    def test_queued_queries_report_progress(self, pipeline, started):
        run = pipeline.poll(DATASET, COUNTRY)
        assert run.pipeline_phase == PipelinePhase.ATHENA_SPATIAL
        assert run.percent == 10

    def test_spatial_done_submits_origins(self, pipeline, started, query_service):
        run = _to_origins(pipeline, query_service)

        assert run.pipeline_phase == PipelinePhase.ATHENA_ORIGINS
        assert run.percent == 30
        assert run.athena_query_ids[QueryNames.ORIGINS] == "q-3"
        assert run.origins_table_name == f"temp_origins_{started.run_id}"

    def test_full_phase_order_and_single_dispatch(self, pipeline, started, query_service, dispatcher):
        phases = [started.pipeline_phase]
        phases.append(pipeline.poll(DATASET, COUNTRY).pipeline_phase)
        phases.append(_to_origins(pipeline, query_service).pipeline_phase)
        phases.append(pipeline.poll(DATASET, COUNTRY).pipeline_phase)
        query_service.set_state("q-2", QueryState.SUCCEEDED)
        query_service.set_state("q-3", QueryState.SUCCEEDED)
        run = pipeline.poll(DATASET, COUNTRY)
        phases.append(run.pipeline_phase)
        pipeline.poll(DATASET, COUNTRY)

        assert phases == [
            PipelinePhase.ATHENA_SPATIAL, PipelinePhase.ATHENA_SPATIAL,
            PipelinePhase.ATHENA_ORIGINS, PipelinePhase.ATHENA_ORIGINS,
            PipelinePhase.PROCESSING,
        ]
        assert run.continue_triggered is True
        assert run.percent == 65
        assert dispatcher.batch_calls == [(DATASET, "ES", started.run_id)]

    def test_concurrent_polls_dispatch_once(self, pipeline, started, query_service, dispatcher):
        _to_origins(pipeline, query_service)
        query_service.set_state("q-2", QueryState.SUCCEEDED)
        query_service.set_state("q-3", QueryState.SUCCEEDED)

        barrier = threading.Barrier(8)
        errors = []

        def _poll():
            barrier.wait()
            try:
                pipeline.poll(DATASET, COUNTRY)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=_poll) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(dispatcher.batch_calls) == 1
        assert pipeline.get_status(DATASET, COUNTRY).pipeline_phase == PipelinePhase.PROCESSING

    def test_concurrent_origins_race_cancels_orphans(self, pipeline, started, query_service):
        query_service.set_state("q-1", QueryState.SUCCEEDED)
        barrier = threading.Barrier(4)

        def _poll():
            barrier.wait()
            pipeline.poll(DATASET, COUNTRY)

        threads = [threading.Thread(target=_poll) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        run = pipeline.get_status(DATASET, COUNTRY)
        winner = run.athena_query_ids[QueryNames.ORIGINS]
        submitted = set(query_service.statuses) - {"q-1", "q-2"}
        assert winner in submitted
        assert set(query_service.cancelled) == submitted - {winner}

    def test_query_failure_fails_run_and_cleans_up(self, pipeline, started, query_service, workload):
        query_service.set_state("q-1", QueryState.FAILED, error="SYNTAX_ERROR: line 1:8")

        run = pipeline.poll(DATASET, COUNTRY)

        assert run.status == RunState.FAILED
        assert run.pipeline_phase == PipelinePhase.DONE
        assert "SYNTAX_ERROR: line 1:8" in run.error
        assert "q-2" in query_service.cancelled
        assert workload.cleaned_up == [started.run_id]

    def test_status_check_error_kept_verbatim(self, pipeline, started, query_service):
        query_service.fail_status_checks = True

        run = pipeline.poll(DATASET, COUNTRY)

        assert run.status == RunState.FAILED
        assert run.error == "Athena GetQueryExecution failed: access denied"

    def test_max_duration_forces_failure(self, pipeline, started, query_service, clock):
        clock.advance(minutes=46)

        run = pipeline.poll(DATASET, COUNTRY)

        assert run.status == RunState.FAILED
        assert run.error == "Run timed out (exceeded maximum execution time of 45 min)"
        assert {"q-1", "q-2"} <= set(query_service.cancelled)

    def test_max_duration_applies_during_processing(self, pipeline, started, query_service, clock):
        _to_processing(pipeline, query_service)
        clock.advance(minutes=46)

        run = pipeline.poll(DATASET, COUNTRY)

        assert run.status == RunState.FAILED
        assert run.pipeline_phase == PipelinePhase.DONE

    def test_terminal_run_unchanged_by_poll(self, pipeline, started, query_service, status_store, clock):
        query_service.set_state("q-1", QueryState.FAILED, error="boom")
        first = pipeline.poll(DATASET, COUNTRY)
        clock.advance(hours=3)

        again = pipeline.poll(DATASET, COUNTRY)

        assert again == first

    def test_dispatch_failure_leaves_run_continuable(self, pipeline, started, query_service, dispatcher):
        dispatcher.fail = True

        run = _to_processing(pipeline, query_service)

        assert run.pipeline_phase == PipelinePhase.PROCESSING
        assert run.status == RunState.RUNNING
        assert run.message.startswith("Batch dispatch failed")

        dispatcher.fail = False
        pipeline.continue_processing(DATASET, COUNTRY, started.run_id)
        assert dispatcher.batch_calls == [(DATASET, "ES", started.run_id)]


class TestStop:

    def test_stop_then_poll_cancels(self, pipeline, started, query_service, registry):
        token = registry.register(started.scope)

        stopped = pipeline.stop(DATASET, COUNTRY)

        assert stopped.cancel_requested is True
        assert stopped.message == "Cancellation requested..."
        assert registry.is_signaled(token)
        assert {"q-1", "q-2"} <= set(query_service.cancelled)

        run = pipeline.poll(DATASET, COUNTRY)
        assert run.status == RunState.CANCELLED
        assert run.pipeline_phase == PipelinePhase.DONE

    def test_stop_without_run(self, pipeline):
        with pytest.raises(ResourceNotFoundError):
            pipeline.stop(DATASET, COUNTRY)

    def test_stop_twice_is_idempotent(self, pipeline, started):
        pipeline.stop(DATASET, COUNTRY)
        again = pipeline.stop(DATASET, COUNTRY)
        assert again.cancel_requested is True

    def test_stop_during_processing_leaves_queries(self, pipeline, started, query_service):
        _to_processing(pipeline, query_service)
        cancelled_before = list(query_service.cancelled)

        run = pipeline.stop(DATASET, COUNTRY)

        assert run.cancel_requested is True
        assert run.status == RunState.RUNNING
        assert query_service.cancelled == cancelled_before


class TestContinue:

    def test_wrong_run_id(self, pipeline, started, query_service):
        _to_processing(pipeline, query_service)
        with pytest.raises(ResourceNotFoundError):
            pipeline.continue_processing(DATASET, COUNTRY, "not-this-run")

    def test_not_in_processing(self, pipeline, started):
        with pytest.raises(ValidationError):
            pipeline.continue_processing(DATASET, COUNTRY, started.run_id)

    def test_redispatches(self, pipeline, started, query_service, dispatcher):
        _to_processing(pipeline, query_service)

        pipeline.continue_processing(DATASET, COUNTRY, started.run_id)

        assert len(dispatcher.batch_calls) == 2


class TestDescribe:

    def test_running_run_payload(self, pipeline, started):
        payload = pipeline.describe(started)
        assert payload["active"] is True
        assert payload["scope"] == f"{DATASET}/es"
        assert payload["pipeline_phase"] == "athena_spatial"

    def test_clock_not_advanced_keeps_run(self, pipeline, started, clock):
        clock.advance(minutes=44)
        assert pipeline.poll(DATASET, COUNTRY).status == RunState.RUNNING

    def test_timedelta_guard_uses_config(self, pipeline):
        assert pipeline.config.max_run_duration == timedelta(minutes=45)
