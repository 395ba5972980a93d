"""Remote asset downloads with redirect handling and an on-disk cache.

Redirects are followed manually so the hop limit and relative ``Location``
headers behave the same regardless of the HTTP client's defaults. Cached
files are keyed by ``md5(url)`` and written via a temp file plus
``os.replace`` so a crashed download never leaves a truncated cache entry.
"""

import asyncio
import hashlib
import logging
import mimetypes
import os
import time
import uuid
from pathlib import Path, PurePosixPath
from typing import Optional, Union
from urllib.parse import urljoin, urlparse

import httpx

from reelsmith.config import Settings, get_settings
from reelsmith.exceptions import FetchError

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = {301, 302, 303, 307, 308}
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp"}
CHUNK_SIZE = 1024 * 1024


def is_image_url(url: str) -> bool:
    """Guess whether a URL points at a still image from its extension."""
    path = urlparse(url).path or url
    return PurePosixPath(path).suffix.lower() in IMAGE_EXTENSIONS


def url_extension(url: str) -> str:
    """File extension of the URL path, or '' when it has none."""
    suffix = PurePosixPath(urlparse(url).path).suffix.lower()
    if 1 < len(suffix) <= 6 and suffix[1:].isalnum():
        return suffix
    return ""


def cache_key(url: str) -> str:
    return hashlib.md5(url.encode("utf-8")).hexdigest()


def purge_cache_dir(cache_dir: Union[str, Path], ttl_s: float, now: Optional[float] = None) -> int:
    """Delete cache files (finished or partial) older than ``ttl_s``."""
    cache_dir = Path(cache_dir)
    if not cache_dir.exists():
        return 0
    now = time.time() if now is None else now
    removed = 0
    for path in cache_dir.iterdir():
        if path.is_file() and now - path.stat().st_mtime > ttl_s:
            path.unlink(missing_ok=True)
            removed += 1
    if removed:
        logger.info(f"[FETCH] Purged {removed} expired cache files")
    return removed


class AssetFetcher:
    """Downloads job inputs into a job directory, reusing cached copies."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self._transport = transport
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self.cache_dir = Path(self.settings.asset_cache_dir)

    def _client(self) -> httpx.AsyncClient:
        timeout = httpx.Timeout(
            self.settings.fetch_timeout_s,
            connect=self.settings.fetch_connect_timeout_s,
        )
        return httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=False,
            headers={"User-Agent": self.settings.fetch_user_agent},
            transport=self._transport,
        )

    def _cached_file(self, key: str) -> Optional[Path]:
        """Fresh cache entry for ``key`` if one exists."""
        if not self.cache_dir.exists():
            return None
        for candidate in self.cache_dir.glob(f"{key}*"):
            if candidate.name.endswith(".part"):
                continue
            age = time.time() - candidate.stat().st_mtime
            if age <= self.settings.asset_cache_ttl_s and candidate.stat().st_size > 0:
                return candidate
        return None

    async def fetch(
        self,
        url: str,
        dest_dir: Union[str, Path],
        index: Optional[int] = None,
        label: str = "clip",
    ) -> Path:
        """Download ``url`` and return the local path.

        Raises:
            FetchError: on non-2xx status, too many redirects, timeout, or an
                empty body. The error carries ``index`` and ``label``.
        """
        if not self.settings.asset_cache_enabled:
            name = f"{label}_{index}" if index is not None else label
            return await self._download_with_timeout(url, Path(dest_dir), name, index, label)

        key = cache_key(url)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                cached = self._cached_file(key)
                if cached is not None:
                    logger.info(f"[FETCH] Cache hit for {label} {index}: {cached.name}")
                    return cached
                self.cache_dir.mkdir(parents=True, exist_ok=True)
                return await self._download_with_timeout(url, self.cache_dir, key, index, label)
        finally:
            # Drop the lock once no fetch of this URL holds or awaits it
            self._lock_users[key] -= 1
            if self._lock_users[key] == 0:
                del self._lock_users[key]
                del self._locks[key]

    async def _download_with_timeout(
        self,
        url: str,
        directory: Path,
        name: str,
        index: Optional[int],
        label: str,
    ) -> Path:
        try:
            return await asyncio.wait_for(
                self._download(url, directory, name, index, label),
                timeout=self.settings.fetch_timeout_s,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            raise FetchError(
                f"timed out after {self.settings.fetch_timeout_s}s",
                url=url,
                index=index,
                label=label,
            )
        except httpx.HTTPError as e:
            raise FetchError(str(e) or type(e).__name__, url=url, index=index, label=label)

    async def _download(
        self,
        url: str,
        directory: Path,
        name: str,
        index: Optional[int],
        label: str,
    ) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        current_url = url
        redirects = 0

        async with self._client() as client:
            while True:
                async with client.stream("GET", current_url) as response:
                    if response.status_code in REDIRECT_STATUSES:
                        location = response.headers.get("location")
                        if not location:
                            raise FetchError(
                                f"HTTP {response.status_code} without Location header",
                                url=url,
                                index=index,
                                label=label,
                            )
                        redirects += 1
                        if redirects > self.settings.fetch_max_redirects:
                            raise FetchError(
                                f"too many redirects (>{self.settings.fetch_max_redirects})",
                                url=url,
                                index=index,
                                label=label,
                            )
                        current_url = urljoin(str(response.url), location)
                        logger.debug(f"[FETCH] Redirect {redirects} for {label} {index} -> {current_url}")
                        continue

                    if not 200 <= response.status_code < 300:
                        raise FetchError(
                            f"HTTP {response.status_code}",
                            url=url,
                            index=index,
                            label=label,
                        )

                    ext = url_extension(current_url) or url_extension(url)
                    if not ext:
                        content_type = response.headers.get("content-type", "").split(";")[0].strip()
                        ext = mimetypes.guess_extension(content_type) or ".bin"
                    target = directory / f"{name}{ext}"
                    tmp_path = directory / f"{name}.{uuid.uuid4().hex[:8]}.part"

                    size = 0
                    try:
                        with open(tmp_path, "wb") as f:
                            async for chunk in response.aiter_bytes(CHUNK_SIZE):
                                f.write(chunk)
                                size += len(chunk)
                        if size == 0:
                            raise FetchError("empty response body", url=url, index=index, label=label)
                        os.replace(tmp_path, target)
                    finally:
                        if tmp_path.exists():
                            tmp_path.unlink()

                    logger.info(f"[FETCH] Downloaded {label} {index}: {size} bytes -> {target.name}")
                    return target
