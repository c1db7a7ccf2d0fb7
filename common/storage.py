import hashlib
import hmac
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import requests

# STORAGE_BACKEND determines which logic branch (local/gcp/azure) runs.
from common.config import (
    AZURE_CONN_STR,
    AZURE_CONTAINER,
    GCS_BUCKET,
    LOCAL_OUTPUT_DIR,
    LOCAL_PUBLIC_BASE_URL,
    LOCAL_SIGNING_SECRET,
    REQUEST_TIMEOUT_SECONDS,
    STORAGE_BACKEND,
)
from common.errors import StorageError
from common.logger import logger

# ------------------------------------------------------------------------------
# CONDITIONAL IMPORTS
# Only the SDK of the configured backend has to be importable at runtime.
# ------------------------------------------------------------------------------

# 1. Google Cloud Storage SDK
try:
    from google.cloud import storage as gcs
except ImportError:
    gcs = None

# 2. Azure Blob Storage SDK
try:
    from azure.storage.blob import BlobSasPermissions, BlobServiceClient, ContentSettings, generate_blob_sas
except ImportError:
    BlobServiceClient = None


def _get_gcs_client():
    """Returns an authenticated GCS client."""
    if not gcs:
        raise RuntimeError("google-cloud-storage library is not installed.")
    return gcs.Client()


def _get_azure_client():
    """Creates a BlobServiceClient using the connection string."""
    if not BlobServiceClient:
        raise RuntimeError("azure-storage-blob library is not installed.")
    if not AZURE_CONN_STR:
        raise ValueError("AZURE_STORAGE_CONNECTION_STRING env var is missing.")
    return BlobServiceClient.from_connection_string(AZURE_CONN_STR)


def object_key(tenant_id: str, directory: str, filename: str) -> str:
    """Tenant-scoped object key: {tenant}/{directory}/{filename}."""
    parts = [tenant_id.lower(), directory.strip("/"), filename]
    return "/".join(p for p in parts if p)


def sign_local_path(full_path: str, expires: int, secret: str = LOCAL_SIGNING_SECRET) -> str:
    msg = f"{full_path}.{expires}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), msg, hashlib.sha256).hexdigest()


class StorageClient:
    """
    Object storage used to persist generated artifacts.

    One instance is created per process and shared by every job; the
    underlying SDK client is built lazily on first use. All paths are
    tenant-qualified keys as produced by object_key().
    """

    def __init__(
        self,
        backend: str = STORAGE_BACKEND,
        local_dir: Optional[Path] = None,
        gcs_bucket: Optional[str] = GCS_BUCKET,
        azure_container: Optional[str] = AZURE_CONTAINER,
        http: Optional[requests.Session] = None,
    ):
        if backend not in ("local", "gcp", "azure"):
            raise RuntimeError(f"Unsupported STORAGE_BACKEND: {backend}")
        self.backend = backend
        self.local_dir = Path(local_dir or LOCAL_OUTPUT_DIR)
        self.gcs_bucket = gcs_bucket
        self.azure_container = azure_container
        # plain client, never carries service credentials
        self.http = http or requests.Session()
        self._client = None

    # --------------------------------------------------------------------------
    # SDK access
    # --------------------------------------------------------------------------

    def _sdk(self):
        if self._client is None:
            if self.backend == "gcp":
                if not self.gcs_bucket:
                    raise StorageError("GCS_BUCKET is required for GCP backend")
                self._client = _get_gcs_client()
            elif self.backend == "azure":
                if not self.azure_container:
                    raise StorageError("AZURE_CONTAINER env var is required for Azure backend")
                self._client = _get_azure_client()
        return self._client

    def _gcs_blob(self, key: str):
        return self._sdk().bucket(self.gcs_bucket).blob(key)

    def _azure_blob(self, key: str):
        return self._sdk().get_blob_client(container=self.azure_container, blob=key)

    # --------------------------------------------------------------------------
    # Public API
    # --------------------------------------------------------------------------

    def upload(self, tenant_id: str, directory: str, filename: str, data: bytes, content_type: str) -> bool:
        """Writes data under the tenant's directory. Returns False when the write fails."""
        key = object_key(tenant_id, directory, filename)
        try:
            if self.backend == "local":
                dest = self.local_dir / key
                dest.parent.mkdir(parents=True, exist_ok=True)
                dest.write_bytes(data)
            elif self.backend == "gcp":
                self._gcs_blob(key).upload_from_string(data, content_type=content_type)
            else:
                self._azure_blob(key).upload_blob(
                    data, overwrite=True, content_settings=ContentSettings(content_type=content_type)
                )
        except StorageError:
            raise
        except Exception as e:
            logger.error("Upload of %s failed: %s", key, e)
            return False
        logger.debug("Uploaded %d bytes to %s (%s)", len(data), key, self.backend)
        return True

    def generate_time_bounded_url(self, full_path: str, ttl: timedelta) -> str:
        """Returns a read URL for full_path that stops working after ttl."""
        if ttl.total_seconds() <= 0:
            raise ValueError("ttl must be positive")

        if self.backend == "local":
            expires = int(time.time() + ttl.total_seconds())
            sig = sign_local_path(full_path, expires)
            return f"{LOCAL_PUBLIC_BASE_URL.rstrip('/')}/{full_path}?expires={expires}&sig={sig}"

        elif self.backend == "gcp":
            return self._gcs_blob(full_path).generate_signed_url(version="v4", expiration=ttl, method="GET")

        else:
            client = self._sdk()
            blob_client = self._azure_blob(full_path)
            sas = generate_blob_sas(
                account_name=client.account_name,
                container_name=self.azure_container,
                blob_name=full_path,
                account_key=client.credential.account_key,
                permission=BlobSasPermissions(read=True),
                expiry=datetime.now(timezone.utc) + ttl,
            )
            return f"{blob_client.url}?{sas}"

    def download(self, full_path: str) -> bytes:
        """Reads an object back by its tenant-qualified path."""
        if self.backend == "local":
            path = self.local_dir / full_path
            if not path.exists():
                raise StorageError(f"Object not found: {full_path}")
            return path.read_bytes()

        elif self.backend == "gcp":
            blob = self._gcs_blob(full_path)
            if not blob.exists():
                raise StorageError(f"Object not found: gs://{self.gcs_bucket}/{full_path}")
            return blob.download_as_bytes()

        else:
            blob_client = self._azure_blob(full_path)
            if not blob_client.exists():
                raise StorageError(f"Object not found: az://{self.azure_container}/{full_path}")
            return blob_client.download_blob().readall()

    def download_url(self, url: str) -> bytes:
        """Plain unauthenticated HTTP GET, for pre-signed or public URLs."""
        resp = self.http.get(url, timeout=REQUEST_TIMEOUT_SECONDS)
        resp.raise_for_status()
        return resp.content
