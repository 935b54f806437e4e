"""
Configuration Defaults - Single source of truth for all default values.

FAIL-FAST DESIGN:
Tenant-specific defaults use INTENTIONALLY INVALID placeholder values.
This ensures deployments fail loudly if required environment variables aren't set.

Organization:
    - StorageDefaults.DEFAULT_ACCOUNT_NAME: MUST be overridden (fail-fast)
    - QueryDefaults.OUTPUT_LOCATION: MUST be overridden (fail-fast)
    - All other *Defaults: Safe universal defaults that work for any deployment

Required Environment Variables (will fail if not set):
    STORAGE_ACCOUNT_NAME (or AzureWebJobsStorage / STORAGE_CONNECTION_STRING)
    ATHENA_OUTPUT_LOCATION - s3:// prefix for Athena query results

Usage:
    from config.defaults import PipelineDefaults

    max_run_minutes: int = Field(default=PipelineDefaults.MAX_RUN_MINUTES, ...)
"""


# =============================================================================
# STORAGE DEFAULTS
# =============================================================================

class StorageDefaults:
    """
    Blob storage defaults.

    DEFAULT_ACCOUNT_NAME is a placeholder - set STORAGE_ACCOUNT_NAME.
    """

    DEFAULT_ACCOUNT_NAME = "your-storage-account"

    # Orchestration documents: jobs/{job_id}.json, runs/{dataset}/{country}/status.json
    STATUS_CONTAINER = "orchestration"

    # Audience outputs: audiences/{dataset}/{country}/{audience}/latest.json
    RESULTS_CONTAINER = "audiences"

    JOBS_PREFIX = "jobs"
    RUNS_PREFIX = "runs"


# =============================================================================
# QUEUE DEFAULTS
# =============================================================================

class QueueDefaults:
    """Service Bus queue defaults."""

    SYNC_QUEUE = "sync-jobs"
    PIPELINE_QUEUE = "pipeline-batches"
    RETRY_COUNT = 3
    MESSAGE_TTL_HOURS = 24


# =============================================================================
# QUERY SERVICE DEFAULTS (Athena)
# =============================================================================

class QueryDefaults:
    """
    Athena defaults.

    OUTPUT_LOCATION is a placeholder - set ATHENA_OUTPUT_LOCATION.
    """

    REGION = "us-west-2"
    DATABASE = "mobility"
    WORKGROUP = "primary"
    OUTPUT_LOCATION = "s3://your-athena-results-bucket/query-results/"
    TEMP_LOCATION = ""  # defaults to {OUTPUT_LOCATION}athena-temp/
    POI_TABLE = "lab_pois"

    # Blocking run_query() used only inside the batch step
    POLL_INTERVAL_SECONDS = 1.0
    QUERY_TIMEOUT_SECONDS = 240


# =============================================================================
# SYNC DEFAULTS
# =============================================================================

class SyncDefaults:
    """SyncOrchestrator defaults."""

    # Persist counters every N copied objects (1 = every copy)
    PROGRESS_FLUSH_EVERY = 1

    # ... or when this many seconds passed since the last write
    PROGRESS_FLUSH_SECONDS = 5.0

    # Lock held without a progress write for this long => reported as stalled
    STALL_SECONDS = 600

    # Post-sync check: fraction of copied objects compared by size and MD5
    VERIFY_SAMPLE_RATIO = 0.08

    # ... capped at this many objects
    VERIFY_SAMPLE_MAX = 50


# =============================================================================
# PIPELINE DEFAULTS
# =============================================================================

class PipelineDefaults:
    """PipelineOrchestrator defaults."""

    # Safety ceiling: a running run older than this is force-failed on poll
    MAX_RUN_MINUTES = 45

    # Compare-and-swap retries for status document updates
    STATUS_RETRY_COUNT = 5

    # Spatial join radius for visit detection
    SPATIAL_RADIUS_METERS = 50

    # Origin zone grid (degrees) used for affinity scoring
    ZONE_GRID_DEGREES = 0.01

    TOP_ZONES = 20


# =============================================================================
# APPLICATION DEFAULTS
# =============================================================================

class AppDefaults:
    """Core application defaults."""

    DEBUG_MODE = False
    ENVIRONMENT = "dev"
    LOG_LEVEL = "INFO"
    FUNCTION_TIMEOUT_MINUTES = 10
