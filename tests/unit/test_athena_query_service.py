"""
AthenaQueryService tests: boto3 client replaced by MagicMock.
"""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from config import QueryConfig
from core.models import QueryState
from exceptions import ExternalServiceError, ValidationError
from infrastructure.query_service import AthenaQueryService, validate_identifier


def _client_error(message="Rate exceeded", code="ThrottlingException", operation="StartQueryExecution"):
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


def _execution(state, reason=None, scanned=None, elapsed=None):
    status = {"State": state}
    if reason:
        status["StateChangeReason"] = reason
    return {"QueryExecution": {
        "Status": status,
        "Statistics": {"DataScannedInBytes": scanned, "EngineExecutionTimeInMillis": elapsed},
    }}


@pytest.fixture
def client():
    mock = MagicMock()
    mock.start_query_execution.return_value = {"QueryExecutionId": "exec-1"}
    return mock


@pytest.fixture
def service(client):
    config = QueryConfig(
        database="mobility",
        workgroup="primary",
        output_location="s3://athena-results/",
        temp_location="s3://athena-temp/tables",
        poll_interval_seconds=1,
        query_timeout_seconds=3,
    )
    return AthenaQueryService(config, client=client, sleep_fn=lambda _s: None)


class TestIdentifiers:

    @pytest.mark.parametrize("name", ["temp_visits_abc", "pois", "_x1"])
    def test_valid(self, name):
        assert validate_identifier(name) == name

    @pytest.mark.parametrize("name", ["", "Temp", "a.b", "x y", "t`", "1abc"])
    def test_invalid(self, name):
        with pytest.raises(ValidationError):
            validate_identifier(name)


class TestSubmission:

    def test_submit_query(self, service, client):
        assert service.submit_query("SELECT 1") == "exec-1"
        kwargs = client.start_query_execution.call_args.kwargs
        assert kwargs["QueryExecutionContext"] == {"Database": "mobility"}
        assert kwargs["ResultConfiguration"] == {"OutputLocation": "s3://athena-results/"}
        assert kwargs["WorkGroup"] == "primary"

    def test_submit_ctas_wraps_select(self, service, client):
        service.submit_ctas("temp_visits_abc", "SELECT * FROM x")
        sql = client.start_query_execution.call_args.kwargs["QueryString"]
        assert sql.startswith("CREATE TABLE mobility.temp_visits_abc")
        assert "external_location = 's3://athena-temp/tables/temp_visits_abc/'" in sql
        assert sql.endswith("SELECT * FROM x")

    def test_submission_error_is_verbatim(self, service, client):
        client.start_query_execution.side_effect = _client_error()
        with pytest.raises(ExternalServiceError) as exc_info:
            service.submit_query("SELECT 1")
        assert exc_info.value.service == "athena"
        assert "Rate exceeded" in str(exc_info.value)


class TestObservation:

    def test_running_with_statistics(self, service, client):
        client.get_query_execution.return_value = _execution("RUNNING", scanned=2048, elapsed=1500)

        status = service.check_status("exec-1")

        assert status.state == QueryState.RUNNING
        assert status.is_active
        assert status.statistics.bytes_scanned == 2048
        assert status.error is None

    def test_failed_carries_reason(self, service, client):
        client.get_query_execution.return_value = _execution("FAILED", reason="SYNTAX_ERROR: line 1:8")

        status = service.check_status("exec-1")

        assert status.state == QueryState.FAILED
        assert status.error == "SYNTAX_ERROR: line 1:8"

    def test_status_error(self, service, client):
        client.get_query_execution.side_effect = _client_error(operation="GetQueryExecution")
        with pytest.raises(ExternalServiceError):
            service.check_status("exec-1")


class TestResults:

    def _page(self, rows, header=True):
        info = [{"Name": "ad_id", "Type": "varchar"}, {"Name": "total", "Type": "bigint"},
                {"Name": "lat", "Type": "double"}]
        data = [{"Data": [{"VarCharValue": v} for v in row]} for row in rows]
        if header:
            data.insert(0, {"Data": [{"VarCharValue": "ad_id"}, {"VarCharValue": "total"},
                                     {"VarCharValue": "lat"}]})
        return {"ResultSet": {"ResultSetMetadata": {"ColumnInfo": info}, "Rows": data}}

    def test_fetch_skips_header_and_converts(self, service, client):
        paginator = MagicMock()
        paginator.paginate.return_value = [
            self._page([["d1", "3", "40.5"]]),
            self._page([["d2", "7", "41.0"]], header=False),
        ]
        client.get_paginator.return_value = paginator

        result = service.fetch_results("exec-1")

        assert result.columns == ["ad_id", "total", "lat"]
        assert result.rows == [
            {"ad_id": "d1", "total": 3, "lat": 40.5},
            {"ad_id": "d2", "total": 7, "lat": 41.0},
        ]

    def test_max_rows(self, service, client):
        paginator = MagicMock()
        paginator.paginate.return_value = [self._page([["d1", "1", "1"], ["d2", "2", "2"]])]
        client.get_paginator.return_value = paginator

        assert len(service.fetch_results("exec-1", max_rows=1).rows) == 1


class TestRunQuery:

    def test_polls_until_succeeded(self, service, client):
        client.get_query_execution.side_effect = [_execution("QUEUED"), _execution("RUNNING"),
                                                  _execution("SUCCEEDED")]
        paginator = MagicMock()
        paginator.paginate.return_value = []
        client.get_paginator.return_value = paginator

        result = service.run_query("SELECT 1")

        assert result.rows == []
        assert client.get_query_execution.call_count == 3

    def test_failure_raises(self, service, client):
        client.get_query_execution.return_value = _execution("FAILED", reason="TABLE_NOT_FOUND")
        with pytest.raises(ExternalServiceError, match="TABLE_NOT_FOUND"):
            service.run_query("SELECT 1")

    def test_timeout_cancels(self, service, client):
        client.get_query_execution.return_value = _execution("RUNNING")
        with pytest.raises(ExternalServiceError, match="did not finish"):
            service.run_query("SELECT 1")
        client.stop_query_execution.assert_called_once_with(QueryExecutionId="exec-1")

    def test_drop_table(self, service, client):
        assert service.drop_table("temp_visits_abc") == "exec-1"

        sql = client.start_query_execution.call_args.kwargs["QueryString"]
        assert sql == "DROP TABLE IF EXISTS `mobility`.`temp_visits_abc`"

    def test_drop_table_does_not_wait(self, client):
        sleeps = []
        client.get_query_execution.return_value = _execution("QUEUED")
        service = AthenaQueryService(QueryConfig(database="mobility", output_location="s3://athena-results/"),
                                     client=client, sleep_fn=sleeps.append)

        service.drop_table("temp_origins_abc")

        assert sleeps == []
        client.get_query_execution.assert_not_called()

    def test_drop_table_rejects_bad_name(self, service, client):
        with pytest.raises(ValidationError):
            service.drop_table("x; DROP")
        client.start_query_execution.assert_not_called()
