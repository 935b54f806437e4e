"""
Distributed Query Service Configuration (Amazon Athena).

Provides configuration for:
    - AWS region and optional static credentials (otherwise boto3's default chain)
    - Athena database, workgroup and result location
    - Location of CTAS temp tables
    - Polling settings for the blocking run_query() helper

Exports:
    QueryConfig: Pydantic Athena configuration model
"""

import os
from typing import Optional
from pydantic import BaseModel, Field

from .defaults import QueryDefaults


class QueryConfig(BaseModel):
    """
    Athena configuration.
    """

    region: str = Field(default=QueryDefaults.REGION, description="AWS region of the Athena workgroup")

    access_key_id: Optional[str] = Field(default=None, repr=False, description="Static AWS key (optional)")
    secret_access_key: Optional[str] = Field(default=None, repr=False, description="Static AWS secret (optional)")

    database: str = Field(default=QueryDefaults.DATABASE, description="Glue/Athena database")
    workgroup: str = Field(default=QueryDefaults.WORKGROUP, description="Athena workgroup")

    output_location: str = Field(
        default=QueryDefaults.OUTPUT_LOCATION,
        description="s3:// prefix for query results (placeholder must be overridden)"
    )

    temp_location: str = Field(
        default=QueryDefaults.TEMP_LOCATION,
        description="s3:// prefix under which CTAS temp tables are written"
    )

    poi_table: str = Field(default=QueryDefaults.POI_TABLE, description="Table of points of interest")

    poll_interval_seconds: float = Field(default=QueryDefaults.POLL_INTERVAL_SECONDS, gt=0)
    query_timeout_seconds: int = Field(default=QueryDefaults.QUERY_TIMEOUT_SECONDS, ge=1)

    @property
    def is_configured(self) -> bool:
        return self.output_location != QueryDefaults.OUTPUT_LOCATION

    @property
    def resolved_temp_location(self) -> str:
        """Temp table prefix, always ending with a slash."""
        base = self.temp_location or f"{self.output_location.rstrip('/')}/athena-temp/"
        return base if base.endswith("/") else f"{base}/"

    @classmethod
    def from_environment(cls):
        """Load from environment variables."""
        return cls(
            region=os.environ.get("AWS_REGION", QueryDefaults.REGION),
            access_key_id=os.environ.get("AWS_ACCESS_KEY_ID"),
            secret_access_key=os.environ.get("AWS_SECRET_ACCESS_KEY"),
            database=os.environ.get("ATHENA_DATABASE", QueryDefaults.DATABASE),
            workgroup=os.environ.get("ATHENA_WORKGROUP", QueryDefaults.WORKGROUP),
            output_location=os.environ.get("ATHENA_OUTPUT_LOCATION", QueryDefaults.OUTPUT_LOCATION),
            temp_location=os.environ.get("ATHENA_TEMP_LOCATION", QueryDefaults.TEMP_LOCATION),
            poi_table=os.environ.get("ATHENA_POI_TABLE", QueryDefaults.POI_TABLE),
            poll_interval_seconds=float(os.environ.get(
                "ATHENA_POLL_INTERVAL_SECONDS", str(QueryDefaults.POLL_INTERVAL_SECONDS))),
            query_timeout_seconds=int(os.environ.get(
                "ATHENA_QUERY_TIMEOUT_SECONDS", str(QueryDefaults.QUERY_TIMEOUT_SECONDS))),
        )

    def debug_dict(self) -> dict:
        return {
            "region": self.region,
            "database": self.database,
            "workgroup": self.workgroup,
            "output_location": self.output_location,
            "temp_location": self.resolved_temp_location,
            "static_credentials": bool(self.access_key_id),
        }
