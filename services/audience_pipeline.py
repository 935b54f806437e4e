# ============================================================================
# AUDIENCE PIPELINE WORKLOAD
# ============================================================================
# STATUS: Service - production IBatchWorkload
# PURPOSE: Build the Athena CTAS statements of a run, read the materialized
#          temp tables, score each audience and persist its results
# EXPORTS: AudiencePipeline, temp_table_name, dataset_table_name,
#          build_spatial_select, build_total_devices_query, build_origins_select
# DEPENDENCIES: infrastructure (blob, query service), services.audience_*
# ============================================================================

"""
Audience Pipeline.

    Query A  spatial join of the dataset's pings against the POIs of every
             requested audience, one row per device-day-POI visit,
             materialized as temp_visits_{run_id}
    Query B  COUNT(DISTINCT ad_id) over the dataset (segment denominator)
    Query C  first ping of the day for every device-day in A,
             materialized as temp_origins_{run_id}

The batch step reads A and C once, builds the shared AudienceContext and
scores audiences one by one. Each audience writes:

    {results}/{dataset}/{country}/{audience}/latest.json
    {results}/{dataset}/{country}/{audience}/{timestamp}-segment.csv
"""

import csv
import io
import json
import re
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from azure.core.exceptions import AzureError, ResourceNotFoundError as BlobNotFoundError

from config import PipelineConfig, QueryConfig
from core.models import AudienceResult, AudienceResultStatus, QueryNames, RunStatus
from exceptions import ExternalServiceError, ValidationError
from infrastructure.blob import IBlobRepository
from infrastructure.query_service import IQueryService, validate_identifier
from util_logger import LoggerFactory, ComponentType

from .audience_catalog import collect_categories, get_audience
from .audience_scoring import AudienceContext, build_context, parse_visits, score_audience
from .workload import IBatchWorkload, SpatialSubmission

logger = LoggerFactory.create_logger(ComponentType.SERVICE, "AudiencePipeline")

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_COUNTRY_RE = re.compile(r"^[A-Za-z]{2}$")
_METERS_PER_DEGREE = 111320


# ============================================================================
# NAMING
# ============================================================================

def temp_table_name(kind: str, run_id: str) -> str:
    """temp_{kind}_{run_id} with the run id reduced to identifier characters."""
    safe_run = re.sub(r"[^a-z0-9]", "", run_id.lower())
    return validate_identifier(f"temp_{kind}_{safe_run}")


def dataset_table_name(dataset_id: str) -> str:
    """Athena table holding a dataset's pings."""
    name = re.sub(r"[^a-z0-9_]", "_", dataset_id.lower())
    if name[:1].isdigit():
        name = f"ds_{name}"
    return validate_identifier(name)


# ============================================================================
# SQL BUILDERS
# ============================================================================

def _date_filter(column: str, date_from: Optional[str], date_to: Optional[str]) -> str:
    clauses = []
    for value in (date_from, date_to):
        if value is not None and not _DATE_RE.match(value):
            raise ValidationError(f"Invalid date {value!r}, expected YYYY-MM-DD")
    if date_from:
        clauses.append(f"{column} >= '{date_from}'")
    if date_to:
        clauses.append(f"{column} <= '{date_to}'")
    return " AND ".join(clauses) if clauses else "TRUE"


def build_spatial_select(
    dataset_table: str,
    poi_table: str,
    categories: List[str],
    country: str,
    radius_meters: int,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
) -> str:
    """SELECT body of query A: one row per device, day and visited POI."""
    if not _COUNTRY_RE.match(country):
        raise ValidationError(f"Invalid country code {country!r}")
    for category in categories:
        validate_identifier(category)
    category_list = ", ".join(f"'{c}'" for c in categories)
    delta = radius_meters / _METERS_PER_DEGREE

    return f"""WITH pois AS (
    SELECT id AS poi_id, category, latitude AS poi_lat, longitude AS poi_lng
    FROM {poi_table}
    WHERE country = '{country.upper()}' AND category IN ({category_list})
),
pings AS (
    SELECT ad_id, date, utc_timestamp, latitude, longitude
    FROM {dataset_table}
    WHERE {_date_filter('date', date_from, date_to)}
),
matched AS (
    SELECT p.ad_id, p.date, o.poi_id, o.category, p.utc_timestamp
    FROM pings p
    JOIN pois o
      ON p.latitude BETWEEN o.poi_lat - {delta:.6f} AND o.poi_lat + {delta:.6f}
     AND abs(p.longitude - o.poi_lng) <= {delta:.6f} / cos(radians(o.poi_lat))
    WHERE great_circle_distance(p.latitude, p.longitude, o.poi_lat, o.poi_lng) * 1000 <= {radius_meters}
)
SELECT ad_id, date, poi_id, category,
       date_diff('minute', min(utc_timestamp), max(utc_timestamp)) AS dwell_minutes,
       hour(min(utc_timestamp)) AS visit_hour,
       count(*) AS ping_count
FROM matched
GROUP BY ad_id, date, poi_id, category"""


def build_total_devices_query(dataset_table: str, date_from: Optional[str] = None,
                              date_to: Optional[str] = None) -> str:
    """Query B: distinct devices of the dataset in the date range."""
    return (
        f"SELECT COUNT(DISTINCT ad_id) AS total FROM {dataset_table} "
        f"WHERE {_date_filter('date', date_from, date_to)}"
    )


def build_origins_select(dataset_table: str, database: str, visits_table: str,
                         date_from: Optional[str] = None, date_to: Optional[str] = None) -> str:
    """SELECT body of query C: first ping of the day for each visiting device-day."""
    return f"""WITH visitors AS (
    SELECT DISTINCT ad_id, date FROM {database}.{visits_table}
),
ranked AS (
    SELECT p.ad_id, p.date, p.latitude, p.longitude,
           row_number() OVER (PARTITION BY p.ad_id, p.date ORDER BY p.utc_timestamp) AS rn
    FROM {dataset_table} p
    JOIN visitors v ON p.ad_id = v.ad_id AND p.date = v.date
    WHERE {_date_filter('p.date', date_from, date_to)}
)
SELECT ad_id, date, latitude AS origin_lat, longitude AS origin_lng
FROM ranked
WHERE rn = 1"""


# ============================================================================
# WORKLOAD
# ============================================================================

class AudiencePipeline(IBatchWorkload):
    """Audience segmentation over Athena with results in blob storage."""

    def __init__(
        self,
        query_service: IQueryService,
        blob_repo: IBlobRepository,
        results_container: str,
        query_config: QueryConfig,
        pipeline_config: PipelineConfig,
        now_fn: Optional[Callable[[], datetime]] = None,
    ):
        self.query_service = query_service
        self.blob_repo = blob_repo
        self.results_container = results_container
        self.query_config = query_config
        self.pipeline_config = pipeline_config
        self.now_fn = now_fn or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------------
    # Athena phases
    # ------------------------------------------------------------------------

    def submit_spatial(self, run: RunStatus) -> SpatialSubmission:
        dataset_table = dataset_table_name(run.dataset_id)
        visits_table = temp_table_name("visits", run.run_id)
        categories = collect_categories(run.audience_ids)

        select_sql = build_spatial_select(
            dataset_table, self.query_config.poi_table, categories, run.country,
            self.pipeline_config.spatial_radius_meters, run.date_from, run.date_to,
        )
        spatial_id = self.query_service.submit_ctas(visits_table, select_sql)
        total_id = self.query_service.submit_query(
            build_total_devices_query(dataset_table, run.date_from, run.date_to)
        )
        logger.info(
            f"🚀 Run {run.run_id}: {len(run.audience_ids)} audiences, {len(categories)} categories, "
            f"spatial={spatial_id} -> {visits_table}, total_devices={total_id}"
        )
        return SpatialSubmission(
            spatial_query_id=spatial_id,
            total_devices_query_id=total_id,
            visits_table_name=visits_table,
        )

    def submit_origins(self, run: RunStatus) -> Tuple[str, str]:
        if not run.visits_table_name:
            raise ValidationError(f"Run {run.run_id} has no visits table")
        origins_table = temp_table_name("origins", run.run_id)
        select_sql = build_origins_select(
            dataset_table_name(run.dataset_id), self.query_config.database,
            run.visits_table_name, run.date_from, run.date_to,
        )
        query_id = self.query_service.submit_ctas(origins_table, select_sql)
        logger.info(f"🚀 Run {run.run_id}: origins={query_id} -> {origins_table}")
        return query_id, origins_table

    # ------------------------------------------------------------------------
    # Batch step
    # ------------------------------------------------------------------------

    def load_context(self, run: RunStatus) -> AudienceContext:
        database = self.query_config.database
        visits = self.query_service.run_query(
            f"SELECT ad_id, date, poi_id, category, dwell_minutes, visit_hour "
            f"FROM {database}.{validate_identifier(run.visits_table_name or '')}"
        )
        origins = self.query_service.run_query(
            f"SELECT ad_id, date, origin_lat, origin_lng "
            f"FROM {database}.{validate_identifier(run.origins_table_name or '')}"
        )
        total_query_id = run.athena_query_ids.get(QueryNames.TOTAL_DEVICES)
        if not total_query_id:
            raise ValidationError(f"Run {run.run_id} has no total devices query")
        total = self.query_service.fetch_results(total_query_id, max_rows=1)
        total_devices = int(total.rows[0].get("total") or 0) if total.rows else 0

        context = build_context(
            parse_visits(visits.rows), origins.rows, total_devices,
            self.pipeline_config.zone_grid_degrees,
        )
        logger.info(
            f"📥 Run {run.run_id}: {len(context.visits)} visits, {len(context.device_zones)} devices with origins, "
            f"{total_devices} total devices"
        )
        return context

    def process_subtask(self, context: AudienceContext, run: RunStatus, audience_id: str) -> AudienceResult:
        audience = get_audience(audience_id)
        if audience is None:
            raise ValidationError(f"Unknown audience: {audience_id}")

        started_at = self.now_fn()
        score = score_audience(audience, context, top_n=self.pipeline_config.top_zones)

        prefix = f"{run.dataset_id}/{run.country.lower()}/{audience.id}"
        stamp = started_at.strftime("%Y-%m-%dT%H-%M-%S")
        self._write_result(f"{prefix}/{stamp}-segment.csv", _segment_csv(score.segment_devices), "text/csv")

        latest_key = f"{prefix}/latest.json"
        result = AudienceResult(
            audience_id=audience.id,
            dataset_id=run.dataset_id,
            country=run.country,
            run_id=run.run_id,
            status=AudienceResultStatus.COMPLETED,
            started_at=started_at,
            completed_at=self.now_fn(),
            segment_size=score.segment_size,
            segment_percent=score.segment_percent,
            total_devices_in_dataset=context.total_devices,
            avg_dwell_minutes=score.avg_dwell_minutes,
            total_zones=score.total_zones,
            avg_affinity_index=score.avg_affinity_index,
            top_zones=score.top_zones,
            result_path=f"{self.results_container}/{latest_key}",
        )
        self._write_result(latest_key, result.model_dump_json(indent=2).encode("utf-8"), "application/json")
        logger.info(f"✅ {audience.name}: {score.segment_size} devices, affinity {score.avg_affinity_index}")
        return result

    def _write_result(self, path: str, data: bytes, content_type: str) -> None:
        try:
            self.blob_repo.write_blob(self.results_container, path, data, content_type=content_type)
        except AzureError as e:
            raise ExternalServiceError(
                f"Failed to write {self.results_container}/{path}: {e}", service="storage"
            ) from e

    def cleanup(self, run: RunStatus) -> None:
        for table in (run.visits_table_name, run.origins_table_name):
            if not table:
                continue
            try:
                self.query_service.drop_table(table)
            except (ExternalServiceError, ValidationError) as e:
                logger.warning(f"⚠️ Could not drop temp table {table}: {e}")

    # ------------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------------

    def load_results(self, dataset_id: str, country: str) -> List[AudienceResult]:
        """Latest result of every audience computed for a dataset and country."""
        prefix = f"{dataset_id}/{country.lower()}/"
        results = []
        for blob in self.blob_repo.list_blobs(self.results_container, prefix):
            if not blob["name"].endswith("/latest.json"):
                continue
            try:
                data = self.blob_repo.read_blob(self.results_container, blob["name"])
            except BlobNotFoundError:
                continue
            try:
                results.append(AudienceResult.model_validate(json.loads(data)))
            except ValueError as e:
                logger.warning(f"⚠️ Skipping unreadable result {blob['name']}: {e}")
        return sorted(results, key=lambda r: r.audience_id)


def _segment_csv(devices) -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(["ad_id"])
    for ad_id in sorted(devices):
        writer.writerow([ad_id])
    return buffer.getvalue().encode("utf-8")
