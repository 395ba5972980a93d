"""Object storage backends for finished exports.

``LocalStorageService`` copies into a directory served by the app during
development; ``GCSStorageService`` uploads to a bucket and signs V4 URLs.
Which one is used is decided by ``use_local_storage``.
"""

import asyncio
import logging
import shutil
from datetime import timedelta
from pathlib import Path
from typing import Optional

from reelsmith.config import Settings, get_settings

logger = logging.getLogger(__name__)


class LocalStorageService:
    """Local file storage for development without GCS."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        self.base_path = Path(self.settings.local_storage_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _get_full_path(self, storage_key: str) -> Path:
        full_path = (self.base_path / storage_key).resolve()
        if self.base_path.resolve() not in full_path.parents:
            raise ValueError(f"Storage key escapes storage root: {storage_key}")
        full_path.parent.mkdir(parents=True, exist_ok=True)
        return full_path

    def get_public_url(self, storage_key: str) -> str:
        """Get URL for accessing the file."""
        return f"{self.settings.local_storage_base_url.rstrip('/')}/{storage_key}"

    async def upload_file(self, local_path: str, storage_key: str, content_type: Optional[str] = None) -> int:
        """Copy a local file into storage and return its size."""
        full_path = self._get_full_path(storage_key)
        await asyncio.to_thread(shutil.copyfile, local_path, full_path)
        return full_path.stat().st_size

    async def generate_signed_url(self, storage_key: str, expires_s: int) -> str:
        """Local files are served unsigned."""
        return self.get_public_url(storage_key)

    def delete_file(self, storage_key: str) -> bool:
        """Delete file."""
        full_path = self._get_full_path(storage_key)
        if full_path.exists():
            full_path.unlink()
            return True
        return False

    def file_exists(self, storage_key: str) -> bool:
        """Check if file exists."""
        return self._get_full_path(storage_key).exists()

    def get_file_path(self, storage_key: str) -> Path:
        """Get the actual file path for serving."""
        return self._get_full_path(storage_key)


class GCSStorageService:
    """Google Cloud Storage service for production."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        from google.auth import compute_engine, default
        from google.auth.transport import requests as auth_requests
        from google.cloud import storage

        self.settings = settings or get_settings()
        self._storage = storage
        self._client: storage.Client | None = None
        self._bucket: storage.Bucket | None = None

        self._credentials, self._project = default()
        self._auth_request = auth_requests.Request()
        self._service_account_email: str | None = None
        # Compute Engine / Cloud Run credentials hold no private key, so
        # signing goes through IAM with the access token
        self._sign_with_token = isinstance(self._credentials, compute_engine.Credentials)
        if self._sign_with_token:
            self._credentials.refresh(self._auth_request)
            self._service_account_email = self._credentials.service_account_email

    @property
    def client(self):
        if self._client is None:
            if self.settings.gcs_project_id:
                self._client = self._storage.Client(project=self.settings.gcs_project_id)
            else:
                self._client = self._storage.Client()
        return self._client

    @property
    def bucket(self):
        if self._bucket is None:
            self._bucket = self.client.bucket(self.settings.gcs_bucket_name)
        return self._bucket

    def get_public_url(self, storage_key: str) -> str:
        """Get the public URL for a stored file."""
        return f"https://storage.googleapis.com/{self.settings.gcs_bucket_name}/{storage_key}"

    async def upload_file(self, local_path: str, storage_key: str, content_type: Optional[str] = None) -> int:
        """Upload a local file to GCS and return its size."""
        blob = self.bucket.blob(storage_key)
        await asyncio.to_thread(blob.upload_from_filename, local_path, content_type=content_type)
        return Path(local_path).stat().st_size

    def _signed_url(self, storage_key: str, expires_s: int) -> str:
        blob = self.bucket.blob(storage_key)
        kwargs = {
            "version": "v4",
            "expiration": timedelta(seconds=expires_s),
            "method": "GET",
        }
        if self._sign_with_token:
            if not self._credentials.valid:
                self._credentials.refresh(self._auth_request)
            kwargs["service_account_email"] = self._service_account_email
            kwargs["access_token"] = self._credentials.token
        return blob.generate_signed_url(**kwargs)

    async def generate_signed_url(self, storage_key: str, expires_s: int) -> str:
        """Generate a V4 signed download URL."""
        return await asyncio.to_thread(self._signed_url, storage_key, expires_s)

    def delete_file(self, storage_key: str) -> bool:
        """Delete a file from GCS."""
        blob = self.bucket.blob(storage_key)
        if blob.exists():
            blob.delete()
            return True
        return False

    def file_exists(self, storage_key: str) -> bool:
        """Check if a file exists in GCS."""
        return self.bucket.blob(storage_key).exists()


_storage_service: LocalStorageService | GCSStorageService | None = None


def get_storage_service() -> LocalStorageService | GCSStorageService:
    """Process-wide storage backend chosen by ``use_local_storage``."""
    global _storage_service
    if _storage_service is None:
        settings = get_settings()
        StorageService = LocalStorageService if settings.use_local_storage else GCSStorageService
        _storage_service = StorageService(settings)
        logger.info(f"[PUBLISH] Using {StorageService.__name__}")
    return _storage_service
