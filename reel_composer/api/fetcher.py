"""Concurrent, all-or-nothing download of job assets.

WHY: A job starts from a handful of remote image URLs and one video URL.
Downloading them one after another wastes minutes, while a half-finished
batch would leave hundreds of megabytes of residue in the job directory.
The fetcher downloads a list of URLs concurrently into one directory and
guarantees that either every file arrives or none remains.

HOW: AssetFetcher is an async context manager around httpx.AsyncClient.
fetch() first validates every URL against the host allowlist (no network
activity on rejection), then starts one asyncio task per URL. Each task
streams its response to ``file_<index><ext>`` while counting bytes, under
an asyncio.wait_for deadline. If any task fails the siblings are
cancelled and every file the call wrote is deleted before the error
propagates. The extension guessed from the URL is corrected from the
response Content-Type once it is known.

RULES:
- Validate all URLs, then act; never a partial start
- Output order mirrors input order regardless of completion order
- Size bound checked against Content-Length and while streaming
- Every failure surfaces as DownloadFailedError carrying the offending URL
  (SourceRejectedError for allowlist failures)
- No automatic retry
- Always use the async context manager (async with AssetFetcher() as f:)
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, FrozenSet, List, Optional, Sequence
from urllib.parse import urlsplit

import httpx

from reel_composer.config import (
    ALLOWED_SOURCE_HOSTS,
    DOWNLOAD_TIMEOUT_S,
    DOWNLOAD_USER_AGENT,
    MAX_DOWNLOAD_BYTES,
)
from reel_composer.errors import DownloadFailedError, SourceRejectedError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_EXTENSION = ".mp4"

MIME_EXTENSIONS: Dict[str, str] = {
    "video/mp4": ".mp4",
    "video/webm": ".webm",
    "video/ogg": ".ogv",
    "video/avi": ".avi",
    "video/mov": ".mov",
    "video/quicktime": ".mov",
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
}

_EXTENSION_RE = re.compile(r"^\.[A-Za-z0-9]{1,4}$")
_DRIVE_FILE_RE = re.compile(r"/file/d/([A-Za-z0-9_-]+)")

_CHUNK_SIZE = 64 * 1024


@dataclass
class DownloadResult:
    """One successfully stored asset.

    RULES:
    - local_path: final path after any extension correction
    - size_bytes: bytes written to disk
    - declared_type: Content-Type media type without parameters, or None
    - original_url: the URL as supplied by the caller
    """

    local_path: Path
    size_bytes: int
    declared_type: Optional[str]
    original_url: str


# ---------------------------------------------------------------------------
# URL helpers
# ---------------------------------------------------------------------------


def is_allowed_source(url: str, allowed_hosts: FrozenSet[str]) -> bool:
    """Return True if url is http(s) and its host is in allowed_hosts."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    if parts.scheme not in ("http", "https"):
        return False
    return (parts.hostname or "").lower() in allowed_hosts


def resolve_drive_url(url: str) -> str:
    """Convert a Google Drive share link into a direct download URL.

    URLs that are not ``/file/d/<id>`` share links are returned unchanged.
    """
    if "drive.google.com/file/d/" in url:
        match = _DRIVE_FILE_RE.search(url)
        if match:
            return (
                "https://drive.usercontent.google.com/download"
                f"?id={match.group(1)}&export=download&authuser=0"
            )
    return url


def guess_extension(url: str) -> str:
    """Guess a file extension from the URL path, defaulting to .mp4.

    Download links without a usable suffix (e.g. Drive ``export=download``
    URLs) get the default; the Content-Type corrects it later.
    """
    try:
        path = urlsplit(url).path
    except ValueError:
        return DEFAULT_EXTENSION
    dot = path.rfind(".")
    if dot != -1 and "/" not in path[dot:]:
        ext = path[dot:]
        if _EXTENSION_RE.match(ext):
            return ext.lower()
    return DEFAULT_EXTENSION


def extension_for_content_type(content_type: str) -> Optional[str]:
    """Map a Content-Type to a file extension, or None if it is not a known media type."""
    media_type = content_type.split(";", 1)[0].strip().lower()
    return MIME_EXTENSIONS.get(media_type)


# ---------------------------------------------------------------------------
# Fetcher
# ---------------------------------------------------------------------------


class AssetFetcher:
    """Async, atomic multi-URL downloader.

    WHY: Provides a single call that turns an ordered URL list into an
    ordered list of local files, with the allowlist, size and time bounds
    enforced uniformly.

    HOW: Wraps httpx.AsyncClient (redirects followed, browser user agent).
    Use as an async context manager to ensure the connection pool is
    closed. A custom transport can be injected for tests.

    RULES:
    - allowed_hosts defaults to ALLOWED_SOURCE_HOSTS from config
    - max_bytes / timeout_s bound every single download
    - url_resolver maps a validated URL to the URL actually requested
    """

    def __init__(
        self,
        allowed_hosts: Optional[FrozenSet[str]] = None,
        max_bytes: int = MAX_DOWNLOAD_BYTES,
        timeout_s: float = DOWNLOAD_TIMEOUT_S,
        url_resolver: Callable[[str], str] = resolve_drive_url,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.allowed_hosts = (
            ALLOWED_SOURCE_HOSTS if allowed_hosts is None else allowed_hosts
        )
        self.max_bytes = max_bytes
        self.timeout_s = timeout_s
        self._url_resolver = url_resolver
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> AssetFetcher:
        self._client = httpx.AsyncClient(
            follow_redirects=True,
            headers={"User-Agent": DOWNLOAD_USER_AGENT},
            timeout=httpx.Timeout(self.timeout_s, connect=30.0),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._client:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError(
                "AssetFetcher must be used as an async context manager: "
                "async with AssetFetcher() as fetcher: ..."
            )
        return self._client

    def validate_sources(self, urls: Sequence[str]) -> None:
        """Raise SourceRejectedError for the first URL outside the allowlist."""
        for url in urls:
            if not is_allowed_source(url, self.allowed_hosts):
                raise SourceRejectedError(url, "source host is not allowed")

    async def fetch(
        self,
        urls: Sequence[str],
        destination_dir: Path,
    ) -> List[DownloadResult]:
        """Download every URL into destination_dir, all or nothing.

        Args:
            urls: Ordered source URLs.
            destination_dir: Directory for ``file_<index><ext>`` outputs,
                created if missing.

        Returns:
            One DownloadResult per URL, in input order.

        Raises:
            SourceRejectedError: A URL failed the allowlist (nothing fetched).
            DownloadFailedError: Any download failed; no file of this call
                remains on disk.
        """
        client = self._ensure_client()
        self.validate_sources(urls)
        if not urls:
            return []

        destination_dir = Path(destination_dir)
        destination_dir.mkdir(parents=True, exist_ok=True)

        # Every path this call may have written, for rollback.
        written: List[Path] = []
        tasks = [
            asyncio.ensure_future(
                self._download_bounded(client, index, url, destination_dir, written)
            )
            for index, url in enumerate(urls)
        ]

        try:
            results = await asyncio.gather(*tasks)
        except BaseException as exc:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            removed = self._remove_written(written)
            logger.warning(
                "Download batch into %s failed, removed %d file(s): %s",
                destination_dir, removed, exc,
            )
            raise

        logger.info("Downloaded %d file(s) into %s", len(results), destination_dir)
        return list(results)

    async def _download_bounded(
        self,
        client: httpx.AsyncClient,
        index: int,
        url: str,
        destination_dir: Path,
        written: List[Path],
    ) -> DownloadResult:
        try:
            return await asyncio.wait_for(
                self._download_one(client, index, url, destination_dir, written),
                timeout=self.timeout_s,
            )
        except asyncio.TimeoutError:
            raise DownloadFailedError(
                url, f"timed out after {self.timeout_s:.0f}s"
            ) from None
        except httpx.HTTPError as exc:
            raise DownloadFailedError(url, str(exc) or type(exc).__name__) from exc
        except OSError as exc:
            raise DownloadFailedError(url, f"could not write file: {exc}") from exc

    async def _download_one(
        self,
        client: httpx.AsyncClient,
        index: int,
        url: str,
        destination_dir: Path,
        written: List[Path],
    ) -> DownloadResult:
        download_url = self._url_resolver(url)
        if download_url != url:
            logger.debug("Resolved URL %s -> %s", url, download_url)

        extension = guess_extension(download_url)
        path = destination_dir / f"file_{index}{extension}"

        async with client.stream("GET", download_url) as response:
            if response.status_code >= 400:
                raise DownloadFailedError(url, f"HTTP {response.status_code}")

            content_length = response.headers.get("content-length")
            if content_length and content_length.isdigit():
                if int(content_length) > self.max_bytes:
                    raise DownloadFailedError(
                        url, f"file too large: {content_length} bytes"
                    )

            content_type = response.headers.get("content-type")
            size = 0
            written.append(path)
            # Disk I/O runs in a worker thread; other jobs share this loop.
            f = await asyncio.to_thread(open, path, "wb")
            try:
                async for chunk in response.aiter_bytes(_CHUNK_SIZE):
                    size += len(chunk)
                    if size > self.max_bytes:
                        raise DownloadFailedError(
                            url, f"file too large: more than {self.max_bytes} bytes"
                        )
                    await asyncio.to_thread(f.write, chunk)
            finally:
                await asyncio.to_thread(f.close)

        declared_type = None
        if content_type:
            declared_type = content_type.split(";", 1)[0].strip().lower()
            corrected = extension_for_content_type(content_type)
            if corrected and corrected != extension:
                renamed = destination_dir / f"file_{index}{corrected}"
                written.append(renamed)
                path.replace(renamed)
                path = renamed

        return DownloadResult(
            local_path=path,
            size_bytes=size,
            declared_type=declared_type,
            original_url=url,
        )

    @staticmethod
    def _remove_written(paths: List[Path]) -> int:
        removed = 0
        for path in paths:
            try:
                path.unlink()
                removed += 1
            except FileNotFoundError:
                continue
            except OSError:
                logger.warning("Failed to remove partial download: %s", path)
        return removed
