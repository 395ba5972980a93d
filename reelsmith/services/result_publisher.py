"""Publishing of finished exports and completion webhooks."""

import hashlib
import hmac
import json
import logging
from pathlib import Path
from typing import Any, Optional, Union

import httpx

from reelsmith.config import Settings, get_settings
from reelsmith.exceptions import UploadError

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".webm": "video/webm",
}
SIGNATURE_HEADER = "X-Callback-Signature"


def content_type_for(path: Union[str, Path]) -> str:
    return CONTENT_TYPES.get(Path(path).suffix.lower(), "application/octet-stream")


def sign_payload(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of the exact request body bytes."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class ResultPublisher:
    """Uploads an export and returns a URL the client can download it from."""

    def __init__(self, storage, settings: Optional[Settings] = None):
        self.storage = storage
        self.settings = settings or get_settings()

    async def publish(self, local_path: Union[str, Path], destination_key: str) -> str:
        """Upload ``local_path`` to ``destination_key``.

        Returns a public URL when public reads are enabled, otherwise a
        signed URL valid for ``signed_url_expiry_s``.

        Raises:
            UploadError: if the storage backend rejects the upload or signing.
        """
        local_path = Path(local_path)
        content_type = content_type_for(local_path)
        try:
            size = await self.storage.upload_file(str(local_path), destination_key, content_type)
            if self.settings.storage_public_read:
                url = self.storage.get_public_url(destination_key)
            else:
                url = await self.storage.generate_signed_url(destination_key, self.settings.signed_url_expiry_s)
        except UploadError:
            raise
        except Exception as e:
            logger.error(f"[PUBLISH] Upload of {local_path.name} to {destination_key} failed: {e}")
            raise UploadError(f"Failed to upload result: {e}")

        logger.info(f"[PUBLISH] Uploaded {destination_key} ({size} bytes, {content_type})")
        return url


class CallbackNotifier:
    """POSTs job completion payloads to client-supplied URLs."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self._transport = transport

    async def notify(self, url: str, payload: dict[str, Any]) -> bool:
        """Deliver ``payload``; returns whether the receiver accepted it.

        Failures are logged and never raised: the job outcome is already
        recorded by the time the callback is sent.
        """
        body = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.settings.fetch_user_agent,
        }
        if self.settings.callback_secret:
            headers[SIGNATURE_HEADER] = sign_payload(self.settings.callback_secret, body)

        try:
            async with httpx.AsyncClient(
                timeout=self.settings.callback_timeout_s,
                transport=self._transport,
            ) as client:
                response = await client.post(url, content=body, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(f"[CALLBACK] {payload.get('jobId')} delivery to {url} failed: {e}")
            return False

        if not response.is_success:
            logger.warning(f"[CALLBACK] {payload.get('jobId')} receiver returned HTTP {response.status_code}")
            return False
        logger.info(f"[CALLBACK] {payload.get('jobId')} delivered ({payload.get('status')})")
        return True
