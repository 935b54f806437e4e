"""
Randomized model factories: anti-overfitting design.

Every factory call generates randomized non-identity fields
(timestamps, suffixes) so tests cannot rely on specific default values.
"""

import random
import string
import uuid
from datetime import datetime, timezone, timedelta


# Ten catalog audiences, in catalog order
TEN_AUDIENCES = [
    "moviegoers", "sports_event_attendees", "nightlife", "live_music_fans", "gym_visitors",
    "golfers", "swimmers", "students", "fast_food_visitors", "fine_diners",
]


def _random_suffix(length: int = 6) -> str:
    """Generate random alphanumeric suffix."""
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=length))


def _random_timestamp() -> datetime:
    """Generate random timestamp within last 30 days."""
    offset = random.randint(0, 30 * 24 * 3600)
    return datetime.now(timezone.utc) - timedelta(seconds=offset)


def make_job_record(job_id: str = None, status=None, **overrides):
    """
    Build a sync-able JobRecord payload.

    Returns:
        dict suitable for JobRecord(**result)
    """
    from core.models.enums import JobStatus

    suffix = _random_suffix()
    _job_id = job_id or f"job-{suffix}-{uuid.uuid4().hex[:8]}"
    created = _random_timestamp()

    base = {
        "job_id": _job_id,
        "status": status or JobStatus.SUCCESS,
        "source_location": {"container": "deliveries", "prefix": f"{_job_id}/export"},
        "created_at": created,
        "updated_at": created,
    }
    base.update(overrides)
    return base


def make_run_status(run_id: str = None, **overrides):
    """
    Build a running RunStatus payload in the athena_spatial phase.

    Returns:
        dict suitable for RunStatus(**result)
    """
    from core.models.enums import PipelinePhase, RunState

    suffix = _random_suffix()
    audience_ids = overrides.pop("audience_ids", list(TEN_AUDIENCES[:3]))

    base = {
        "run_id": run_id or uuid.uuid4().hex,
        "dataset_id": f"ds{suffix}",
        "dataset_name": f"Dataset {suffix}",
        "country": "ES",
        "status": RunState.RUNNING,
        "pipeline_phase": PipelinePhase.ATHENA_SPATIAL,
        "audience_ids": audience_ids,
        "total": len(audience_ids),
        "percent": 5,
        "message": f"seed {suffix}",
        "started_at": _random_timestamp(),
    }
    base.update(overrides)
    return base


def seed_source_objects(blob_repo, container: str, prefix: str, count: int, days: int = 3):
    """Write count objects spread over date=YYYY-MM-DD partitions; returns their keys."""
    keys = []
    for i in range(count):
        day = f"2025-01-{(i % days) + 1:02d}"
        key = f"{prefix}/date={day}/part-{i:04d}.parquet"
        blob_repo.seed(container, key, b"p" * (10 + i % 7))
        keys.append(key)
    return keys
