# ============================================================================
# STORAGE CONFIGURATION
# ============================================================================
# STATUS: Azure Blob Storage configuration
# PURPOSE: Storage account, authentication mode and container names
# EXPORTS: StorageConfig
# INTERFACES: Pydantic BaseModel
# DEPENDENCIES: pydantic, os, typing
# SOURCE: Environment variables (STORAGE_ACCOUNT_NAME, STORAGE_CONNECTION_STRING)
# ENTRY_POINTS: from config import StorageConfig
# ============================================================================

"""
Azure Storage Configuration.

Provides configuration for:
- Storage account name (DefaultAzureCredential, production)
- Connection string (local development / Azurite)
- Status container holding job and run documents
- Results container holding audience outputs
"""

import os
from typing import Optional
from pydantic import BaseModel, Field

from .defaults import StorageDefaults


class StorageConfig(BaseModel):
    """
    Blob storage configuration.

    Authentication order: connection string first (local development),
    otherwise DefaultAzureCredential against the named account.
    """

    account_name: str = Field(
        default=StorageDefaults.DEFAULT_ACCOUNT_NAME,
        description="Storage account name for DefaultAzureCredential auth"
    )

    connection_string: Optional[str] = Field(
        default=None,
        repr=False,
        description="Connection string (local development). Takes precedence over account_name."
    )

    status_container: str = Field(
        default=StorageDefaults.STATUS_CONTAINER,
        description="Container for jobs/ and runs/ orchestration documents"
    )

    results_container: str = Field(
        default=StorageDefaults.RESULTS_CONTAINER,
        description="Container for persisted audience results"
    )

    @property
    def is_configured(self) -> bool:
        return bool(self.connection_string) or self.account_name != StorageDefaults.DEFAULT_ACCOUNT_NAME

    @classmethod
    def from_environment(cls):
        """Load from environment variables."""
        return cls(
            account_name=os.environ.get("STORAGE_ACCOUNT_NAME", StorageDefaults.DEFAULT_ACCOUNT_NAME),
            connection_string=os.environ.get("STORAGE_CONNECTION_STRING"),
            status_container=os.environ.get("STATUS_CONTAINER", StorageDefaults.STATUS_CONTAINER),
            results_container=os.environ.get("RESULTS_CONTAINER", StorageDefaults.RESULTS_CONTAINER),
        )

    def debug_dict(self) -> dict:
        """Return debug-friendly configuration showing resolved values."""
        return {
            "account_name": self.account_name,
            "connection_string": "***MASKED***" if self.connection_string else None,
            "status_container": self.status_container,
            "results_container": self.results_container,
        }
