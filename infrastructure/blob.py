# ============================================================================
# BLOB REPOSITORY
# ============================================================================
# STATUS: Infrastructure - Azure Blob Storage repository
# PURPOSE: Single authentication point for blob access: status documents,
#          audience results and the object copies of a sync
# EXPORTS: IBlobRepository, BlobRepository, ETagConflictError
# INTERFACES: IBlobRepository for dependency injection
# DEPENDENCIES: azure-storage-blob, azure-identity, azure-core, config
# PATTERNS: Singleton, Repository, DefaultAzureCredential, container client cache
# ENTRY_POINTS: BlobRepository.instance(), RepositoryFactory.create_blob_repository()
# ============================================================================

"""
Blob Storage Repository - Central Authentication Point

All blob access goes through this repository. Two kinds of callers use it:

    StatusStore / LockManager
        Small JSON documents written with ETag preconditions
        (read_blob_with_etag + write_blob(if_match=...)) so that concurrent
        writers never overwrite each other silently.

    SyncOrchestrator
        list_blobs over the source prefix and server-side copy_blob of each
        object into the destination.

Authentication Hierarchy:
    1. Connection string (local development / Azurite)
    2. DefaultAzureCredential against https://{account}.blob.core.windows.net

Usage:
    from infrastructure import RepositoryFactory

    blob_repo = RepositoryFactory.create_blob_repository()
    data, etag = blob_repo.read_blob_with_etag('orchestration', 'jobs/abc.json')
    blob_repo.write_blob('orchestration', 'jobs/abc.json', new_data, if_match=etag)
"""

# ============================================================================
# IMPORTS - Top of file for fail-fast behavior
# ============================================================================

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import List, Dict, Any, Optional, Tuple, BinaryIO, Union

# Azure SDK imports - These will fail fast if not installed
from azure.core import MatchConditions
from azure.core.exceptions import ResourceExistsError, ResourceModifiedError, ResourceNotFoundError
from azure.identity import DefaultAzureCredential
from azure.storage.blob import (
    BlobServiceClient,
    ContainerClient,
    ContentSettings,
    BlobSasPermissions,
    generate_blob_sas,
)

from util_logger import LoggerFactory, ComponentType

logger = LoggerFactory.create_logger(ComponentType.REPOSITORY, __name__)


class ETagConflictError(Exception):
    """
    A conditional write lost its precondition.

    Raised when if_match no longer matches the stored ETag (someone else
    wrote first) or when if_none_match="*" finds the blob already exists.
    """

    def __init__(self, container: str, blob_path: str, message: str = ""):
        super().__init__(message or f"Precondition failed for {container}/{blob_path}")
        self.container = container
        self.blob_path = blob_path


def _md5_hex(content_settings) -> Optional[str]:
    md5 = content_settings.content_md5 if content_settings else None
    return bytes(md5).hex() if md5 else None


# ============================================================================
# BLOB REPOSITORY INTERFACE
# ============================================================================

class IBlobRepository(ABC):
    """
    Interface for blob storage operations.

    Enables dependency injection and in-memory fakes in tests.
    Missing blobs raise azure.core.exceptions.ResourceNotFoundError.
    """

    @abstractmethod
    def read_blob(self, container: str, blob_path: str) -> bytes:
        """Read entire blob to memory"""
        pass

    @abstractmethod
    def read_blob_with_etag(self, container: str, blob_path: str) -> Tuple[bytes, str]:
        """Read blob content together with its current ETag"""
        pass

    @abstractmethod
    def write_blob(self, container: str, blob_path: str, data: Union[bytes, BinaryIO],
                   overwrite: bool = True, content_type: str = "application/octet-stream",
                   metadata: Optional[Dict[str, str]] = None,
                   if_match: Optional[str] = None,
                   if_none_match: Optional[str] = None) -> Dict[str, Any]:
        """
        Write blob from bytes or stream.

        if_match: only write when the stored ETag equals this value.
        if_none_match="*": only write when the blob does not exist.
        Either precondition failing raises ETagConflictError.
        """
        pass

    @abstractmethod
    def list_blobs(self, container: str, prefix: str = "", limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """List blobs under a prefix (name, size, etag, last_modified)"""
        pass

    @abstractmethod
    def copy_blob(self, source_container: str, source_path: str,
                  dest_container: str, dest_path: str) -> Dict[str, Any]:
        """Copy one blob server-side; returns when the copy is complete"""
        pass

    @abstractmethod
    def blob_exists(self, container: str, blob_path: str) -> bool:
        """Check if blob exists"""
        pass

    @abstractmethod
    def delete_blob(self, container: str, blob_path: str) -> bool:
        """Delete a blob"""
        pass


# ============================================================================
# BLOB REPOSITORY IMPLEMENTATION
# ============================================================================

class BlobRepository(IBlobRepository):
    """
    Centralized blob storage repository with managed authentication.

    Singleton: the BlobServiceClient and its container clients are reused
    for every invocation handled by the same worker process.
    """

    _instance: Optional['BlobRepository'] = None
    _initialized: bool = False

    def __new__(cls, connection_string: Optional[str] = None, *args, **kwargs):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self, connection_string: Optional[str] = None, storage_account: Optional[str] = None):
        """
        Initialize once per process.

        Args:
            connection_string: Connection string (takes precedence)
            storage_account: Storage account name (config value if not provided)
        """
        if self._initialized:
            return

        try:
            if connection_string:
                logger.info("Initializing BlobRepository with connection string")
                self.blob_service = BlobServiceClient.from_connection_string(connection_string)
                self.storage_account = self.blob_service.account_name
            else:
                from config import get_config
                config = get_config()
                config.require_storage()
                self.storage_account = storage_account or config.storage.account_name
                account_url = f"https://{self.storage_account}.blob.core.windows.net"

                logger.info(f"Initializing BlobRepository with DefaultAzureCredential for account: {self.storage_account}")
                self.blob_service = BlobServiceClient(
                    account_url=account_url,
                    credential=DefaultAzureCredential()
                )

            self._container_clients: Dict[str, ContainerClient] = {}
            self._delegation_key = None
            self._delegation_key_expiry: Optional[datetime] = None

            BlobRepository._initialized = True
            logger.info(f"✅ BlobRepository initialized successfully for account: {self.storage_account}")

        except Exception as e:
            logger.error(f"Failed to initialize BlobRepository: {e}")
            raise

    @classmethod
    def instance(cls, connection_string: Optional[str] = None, storage_account: Optional[str] = None) -> 'BlobRepository':
        """Get singleton instance."""
        if cls._instance is None or not cls._initialized:
            cls._instance = cls(connection_string=connection_string, storage_account=storage_account)
        return cls._instance

    def _get_container_client(self, container: str) -> ContainerClient:
        """Get or create cached container client."""
        if container not in self._container_clients:
            self._container_clients[container] = self.blob_service.get_container_client(container)
            logger.debug(f"Created new container client for: {container}")
        return self._container_clients[container]

    # ========================================================================
    # CORE BLOB OPERATIONS
    # ========================================================================

    def read_blob(self, container: str, blob_path: str) -> bytes:
        data, _ = self.read_blob_with_etag(container, blob_path)
        return data

    def read_blob_with_etag(self, container: str, blob_path: str) -> Tuple[bytes, str]:
        """
        Read a blob and the ETag of the version that was read.

        Raises:
            ResourceNotFoundError: If blob doesn't exist
        """
        try:
            blob_client = self._get_container_client(container).get_blob_client(blob_path)
            downloader = blob_client.download_blob()
            data = downloader.readall()
            etag = downloader.properties.etag
            logger.debug(f"Read {len(data)} bytes from {container}/{blob_path} (etag {etag})")
            return data, etag

        except ResourceNotFoundError:
            logger.debug(f"Blob not found: {container}/{blob_path}")
            raise
        except Exception as e:
            logger.error(f"Failed to read blob {container}/{blob_path}: {e}")
            raise

    def write_blob(self, container: str, blob_path: str, data: Union[bytes, BinaryIO],
                   overwrite: bool = True, content_type: str = "application/octet-stream",
                   metadata: Optional[Dict[str, str]] = None,
                   if_match: Optional[str] = None,
                   if_none_match: Optional[str] = None) -> Dict[str, Any]:
        """
        Write blob from bytes or stream, optionally conditional on its ETag.

        Returns:
            Dict with container, blob_path, etag and last_modified
        """
        blob_client = self._get_container_client(container).get_blob_client(blob_path)
        kwargs: Dict[str, Any] = {
            'overwrite': overwrite,
            'content_settings': ContentSettings(content_type=content_type),
            'metadata': metadata or {},
        }
        if if_match:
            kwargs['etag'] = if_match
            kwargs['match_condition'] = MatchConditions.IfNotModified
            kwargs['overwrite'] = True
        elif if_none_match == "*":
            kwargs['overwrite'] = False

        try:
            result = blob_client.upload_blob(data, **kwargs)
        except (ResourceModifiedError, ResourceExistsError) as e:
            logger.debug(f"Conditional write lost on {container}/{blob_path}: {type(e).__name__}")
            raise ETagConflictError(container, blob_path) from e
        except Exception as e:
            logger.error(f"Failed to write blob {container}/{blob_path}: {e}")
            raise

        logger.debug(f"✅ Wrote blob {container}/{blob_path}")
        return {
            'container': container,
            'blob_path': blob_path,
            'etag': result.get('etag'),
            'last_modified': result.get('last_modified'),
        }

    def list_blobs(self, container: str, prefix: str = "", limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        List blobs under a prefix.

        Returns:
            List of dicts with name, size, etag, last_modified, content_type,
            content_md5 (hex, None when the service holds no MD5)
        """
        try:
            container_client = self._get_container_client(container)
            blobs = []
            for blob in container_client.list_blobs(name_starts_with=prefix or None):
                blobs.append({
                    'name': blob.name,
                    'size': blob.size,
                    'etag': blob.etag,
                    'last_modified': blob.last_modified.isoformat() if blob.last_modified else None,
                    'content_type': blob.content_settings.content_type if blob.content_settings else None,
                    'content_md5': _md5_hex(blob.content_settings),
                })
                if limit and len(blobs) >= limit:
                    break

            logger.info(f"Listed {len(blobs)} blobs in {container}/{prefix}")
            return blobs

        except Exception as e:
            logger.error(f"Failed to list blobs in {container}/{prefix}: {e}")
            raise

    def copy_blob(self, source_container: str, source_path: str,
                  dest_container: str, dest_path: str) -> Dict[str, Any]:
        """
        Copy a blob with Put Blob From URL.

        The source is read through a short-lived read-only SAS (account key
        when connected by connection string, user delegation key otherwise).
        The call is synchronous: when it returns the destination is complete.
        """
        try:
            source_url = self._source_url_with_sas(source_container, source_path)
            dest_client = self._get_container_client(dest_container).get_blob_client(dest_path)
            result = dest_client.upload_blob_from_url(source_url, overwrite=True)

            logger.debug(f"Copied {source_container}/{source_path} -> {dest_container}/{dest_path}")
            return {
                'source': f"{source_container}/{source_path}",
                'destination': f"{dest_container}/{dest_path}",
                'etag': result.get('etag'),
            }

        except Exception as e:
            logger.warning(f"Failed to copy {source_container}/{source_path}: {e}")
            raise

    def blob_exists(self, container: str, blob_path: str) -> bool:
        try:
            blob_client = self._get_container_client(container).get_blob_client(blob_path)
            blob_client.get_blob_properties()
            return True
        except ResourceNotFoundError:
            return False

    def delete_blob(self, container: str, blob_path: str) -> bool:
        """
        Delete a blob.

        Returns:
            True if deleted, False if it did not exist
        """
        try:
            blob_client = self._get_container_client(container).get_blob_client(blob_path)
            blob_client.delete_blob()
            logger.info(f"Deleted blob: {container}/{blob_path}")
            return True
        except ResourceNotFoundError:
            return False
        except Exception as e:
            logger.error(f"Failed to delete blob {container}/{blob_path}: {e}")
            raise

    # ========================================================================
    # SAS HELPERS
    # ========================================================================

    def _source_url_with_sas(self, container: str, blob_path: str, hours: int = 1) -> str:
        blob_client = self._get_container_client(container).get_blob_client(blob_path)
        start_time = datetime.now(timezone.utc)
        expiry_time = start_time + timedelta(hours=hours)

        account_key = getattr(self.blob_service.credential, 'account_key', None)
        if account_key:
            sas_token = generate_blob_sas(
                account_name=self.storage_account,
                container_name=container,
                blob_name=blob_path,
                account_key=account_key,
                permission=BlobSasPermissions(read=True),
                expiry=expiry_time,
            )
        else:
            sas_token = generate_blob_sas(
                account_name=self.storage_account,
                container_name=container,
                blob_name=blob_path,
                user_delegation_key=self._get_delegation_key(start_time),
                permission=BlobSasPermissions(read=True),
                expiry=expiry_time,
                start=start_time,
            )
        return f"{blob_client.url}?{sas_token}"

    def _get_delegation_key(self, now: datetime):
        # One key is reused for the many copies of a sync
        if self._delegation_key is None or self._delegation_key_expiry <= now + timedelta(hours=1):
            self._delegation_key_expiry = now + timedelta(hours=4)
            self._delegation_key = self.blob_service.get_user_delegation_key(
                key_start_time=now,
                key_expiry_time=self._delegation_key_expiry,
            )
            logger.debug("✅ User delegation key obtained successfully")
        return self._delegation_key
