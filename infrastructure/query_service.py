# ============================================================================
# QUERY SERVICE (AMAZON ATHENA)
# ============================================================================
# STATUS: Infrastructure - distributed SQL query service client
# PURPOSE: Submit, observe, read and cancel Athena queries, including CTAS
#          statements that materialize temp tables between pipeline phases
# EXPORTS: IQueryService, AthenaQueryService, validate_identifier
# DEPENDENCIES: boto3, botocore, config
# PATTERNS: Repository, dependency injection (client is injectable)
# ============================================================================

"""
Athena Query Service.

Submission is asynchronous: submit_query / submit_ctas return the
QueryExecutionId immediately and the caller observes it with check_status on
later invocations. run_query is the blocking helper for small statements
(context reads, DROP TABLE).

Every boto3 failure is raised as ExternalServiceError(service="athena") with
the provider message kept verbatim, so it can be recorded on a run as-is.
"""

import re
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from config import QueryConfig
from core.models import QueryResult, QueryState, QueryStatistics, QueryStatus
from exceptions import ExternalServiceError, ValidationError
from util_logger import LoggerFactory, ComponentType

logger = LoggerFactory.create_logger(ComponentType.REPOSITORY, "AthenaQueryService")

_IDENTIFIER_RE = re.compile(r"^[a-z_][a-z0-9_]{0,127}$")

_INT_TYPES = {"tinyint", "smallint", "integer", "int", "bigint"}
_FLOAT_TYPES = {"float", "real", "double", "decimal"}


def validate_identifier(name: str) -> str:
    """
    Reject anything that is not a plain lowercase SQL identifier.

    Table names are interpolated into DDL, so they must never carry quotes,
    dots or whitespace.
    """
    if not name or not _IDENTIFIER_RE.match(name):
        raise ValidationError(f"Invalid table identifier: {name!r}")
    return name


# ============================================================================
# QUERY SERVICE INTERFACE
# ============================================================================

class IQueryService(ABC):
    """Distributed SQL query service used by the pipeline."""

    @abstractmethod
    def submit_query(self, sql: str) -> str:
        """Start a query, return its id"""
        pass

    @abstractmethod
    def submit_ctas(self, table_name: str, select_sql: str) -> str:
        """Start a CREATE TABLE AS SELECT into table_name, return its id"""
        pass

    @abstractmethod
    def check_status(self, query_id: str) -> QueryStatus:
        pass

    @abstractmethod
    def fetch_results(self, query_id: str, max_rows: Optional[int] = None) -> QueryResult:
        pass

    @abstractmethod
    def run_query(self, sql: str, timeout_seconds: Optional[int] = None) -> QueryResult:
        """Submit, wait for completion and fetch results"""
        pass

    @abstractmethod
    def cancel_query(self, query_id: str) -> None:
        pass

    @abstractmethod
    def drop_table(self, table_name: str) -> str:
        """Start a DROP TABLE IF EXISTS without waiting for it, return its id"""
        pass


# ============================================================================
# ATHENA IMPLEMENTATION
# ============================================================================

class AthenaQueryService(IQueryService):
    """
    IQueryService over boto3's Athena client.

    Args:
        config: QueryConfig (database, workgroup, result/temp locations)
        client: Pre-built boto3 athena client (tests); built from config if None
        sleep_fn: Sleep used by run_query polling
    """

    def __init__(self, config: QueryConfig, client: Any = None,
                 sleep_fn: Callable[[float], None] = time.sleep):
        self.config = config
        self.sleep_fn = sleep_fn
        if client is None:
            client_kwargs: Dict[str, Any] = {"region_name": config.region}
            if config.access_key_id and config.secret_access_key:
                client_kwargs["aws_access_key_id"] = config.access_key_id
                client_kwargs["aws_secret_access_key"] = config.secret_access_key
            client = boto3.client("athena", **client_kwargs)
            logger.info(f"Athena client created for region {config.region}, workgroup {config.workgroup}")
        self.client = client

    # ------------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------------

    def submit_query(self, sql: str) -> str:
        try:
            response = self.client.start_query_execution(
                QueryString=sql,
                QueryExecutionContext={"Database": self.config.database},
                ResultConfiguration={"OutputLocation": self.config.output_location},
                WorkGroup=self.config.workgroup,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"❌ Athena submission failed: {e}")
            raise ExternalServiceError(f"Athena query submission failed: {e}", service="athena") from e

        query_id = response["QueryExecutionId"]
        logger.info(f"📤 Submitted Athena query {query_id}")
        return query_id

    def submit_ctas(self, table_name: str, select_sql: str) -> str:
        table = validate_identifier(table_name)
        location = f"{self.config.resolved_temp_location}{table}/"
        sql = (
            f"CREATE TABLE {self.config.database}.{table} "
            f"WITH (format = 'PARQUET', external_location = '{location}') AS\n"
            f"{select_sql}"
        )
        return self.submit_query(sql)

    # ------------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------------

    def check_status(self, query_id: str) -> QueryStatus:
        try:
            response = self.client.get_query_execution(QueryExecutionId=query_id)
        except (ClientError, BotoCoreError) as e:
            raise ExternalServiceError(f"Athena status check failed for {query_id}: {e}", service="athena") from e

        execution = response.get("QueryExecution", {})
        status = execution.get("Status", {})
        stats = execution.get("Statistics") or {}

        state = QueryState(status.get("State", QueryState.QUEUED.value))
        return QueryStatus(
            query_id=query_id,
            state=state,
            statistics=QueryStatistics(
                bytes_scanned=stats.get("DataScannedInBytes"),
                elapsed_ms=stats.get("EngineExecutionTimeInMillis"),
            ),
            error=status.get("StateChangeReason") if state in (QueryState.FAILED, QueryState.CANCELLED) else None,
        )

    def fetch_results(self, query_id: str, max_rows: Optional[int] = None) -> QueryResult:
        """
        Read a finished query's rows.

        The first row of the first page is the header and is skipped.
        Values are converted using the column types Athena reports.
        """
        columns: List[str] = []
        types: List[str] = []
        rows: List[Dict[str, Any]] = []
        try:
            paginator = self.client.get_paginator("get_query_results")
            first_page = True
            for page in paginator.paginate(QueryExecutionId=query_id):
                result_set = page.get("ResultSet", {})
                if not columns:
                    info = result_set.get("ResultSetMetadata", {}).get("ColumnInfo", [])
                    columns = [c["Name"] for c in info]
                    types = [c.get("Type", "varchar").lower() for c in info]

                page_rows = result_set.get("Rows", [])
                if first_page and page_rows:
                    page_rows = page_rows[1:]
                first_page = False

                for row in page_rows:
                    values = [cell.get("VarCharValue") for cell in row.get("Data", [])]
                    rows.append({
                        name: _convert(value, types[i] if i < len(types) else "varchar")
                        for i, (name, value) in enumerate(zip(columns, values))
                    })
                    if max_rows and len(rows) >= max_rows:
                        return QueryResult(columns=columns, rows=rows)
        except (ClientError, BotoCoreError) as e:
            raise ExternalServiceError(f"Athena result fetch failed for {query_id}: {e}", service="athena") from e

        return QueryResult(columns=columns, rows=rows)

    def run_query(self, sql: str, timeout_seconds: Optional[int] = None) -> QueryResult:
        timeout = timeout_seconds or self.config.query_timeout_seconds
        query_id = self.submit_query(sql)
        waited = 0.0

        while True:
            status = self.check_status(query_id)
            if status.state == QueryState.SUCCEEDED:
                return self.fetch_results(query_id)
            if status.state in (QueryState.FAILED, QueryState.CANCELLED):
                raise ExternalServiceError(
                    f"Athena query {query_id} {status.state.value}: {status.error}", service="athena"
                )
            if waited >= timeout:
                self.cancel_query(query_id)
                raise ExternalServiceError(
                    f"Athena query {query_id} did not finish within {timeout}s", service="athena"
                )
            self.sleep_fn(self.config.poll_interval_seconds)
            waited += self.config.poll_interval_seconds

    # ------------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------------

    def cancel_query(self, query_id: str) -> None:
        try:
            self.client.stop_query_execution(QueryExecutionId=query_id)
            logger.info(f"🛑 Cancelled Athena query {query_id}")
        except (ClientError, BotoCoreError) as e:
            raise ExternalServiceError(f"Athena cancel failed for {query_id}: {e}", service="athena") from e

    def drop_table(self, table_name: str) -> str:
        # not awaited: cleanup runs inside status polls
        table = validate_identifier(table_name)
        query_id = self.submit_query(f"DROP TABLE IF EXISTS `{self.config.database}`.`{table}`")
        logger.info(f"🗑️ Drop of temp table {table} submitted as {query_id}")
        return query_id


def _convert(value: Optional[str], column_type: str) -> Any:
    if value is None:
        return None
    try:
        if column_type in _INT_TYPES:
            return int(value)
        if column_type.split("(")[0] in _FLOAT_TYPES:
            return float(value)
    except ValueError:
        return value
    return value
