"""Download Manager Module

HTTP transport for asset downloads.

Philosophy:
- Fire and forget: enqueue returns an id immediately, workers do the rest
- Per-id status: one failure never cancels sibling downloads
- Push completions: a listener is called with each finished id

Public API (Studs):
    HttpDownloadManager - Streaming downloads on a thread pool
    DownloadStatus - Lifecycle of a single download
    DownloadError - Raised for unknown download ids
"""

import itertools
import logging
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

import requests

logger = logging.getLogger(__name__)

CompletionListener = Callable[[int], None]


class DownloadError(Exception):
    """Raised when a download id is not known to the manager."""

    pass


class DownloadStatus(StrEnum):
    """Download lifecycle."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESSFUL = "successful"
    FAILED = "failed"


@dataclass
class DownloadRecord:
    """Bookkeeping for one enqueued download."""

    download_id: int
    url: str
    title: str
    destination: Path
    status: DownloadStatus = DownloadStatus.PENDING
    error: str | None = None


class HttpDownloadManager:
    """Download files into a directory on a worker pool.

    Example:
        >>> manager = HttpDownloadManager(Path("~/.rootfsprep/downloads").expanduser())
        >>> manager.set_completion_listener(print)
        >>> download_id = manager.enqueue(url, "rootfsprep-support-busybox")
        1
        >>> manager.status(download_id)
        <DownloadStatus.SUCCESSFUL: 'successful'>
    """

    DEFAULT_MAX_WORKERS = 4
    DEFAULT_TIMEOUT = 60
    CHUNK_SIZE = 64 * 1024

    def __init__(
        self,
        downloads_directory: Path,
        max_workers: int | None = None,
        timeout: int | None = None,
        on_complete: CompletionListener | None = None,
    ):
        """Initialize download manager.

        Args:
            downloads_directory: Directory finished downloads are written to
            max_workers: Concurrent downloads (default: 4)
            timeout: Per-request timeout in seconds (default: 60)
            on_complete: Called with the id of every finished download
        """
        self.downloads_directory = downloads_directory
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or self.DEFAULT_MAX_WORKERS,
            thread_name_prefix="rootfsprep-download",
        )
        self._records: dict[int, DownloadRecord] = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._active = 0
        self._on_complete = on_complete

    def set_completion_listener(self, listener: CompletionListener | None) -> None:
        self._on_complete = listener

    def enqueue(self, url: str, title: str) -> int:
        """Start downloading url into the downloads directory as title.

        Args:
            url: Source URL
            title: Destination file name

        Returns:
            int: Download id, unique for the lifetime of the manager
        """
        with self._lock:
            download_id = next(self._ids)
            record = DownloadRecord(
                download_id=download_id,
                url=url,
                title=title,
                destination=self.downloads_directory / title,
            )
            self._records[download_id] = record
            self._active += 1

        logger.debug(f"Enqueued download {download_id}: {url}")
        try:
            self._executor.submit(self._run, record)
        except RuntimeError:
            with self._lock:
                self._active -= 1
            raise
        return download_id

    @property
    def active_downloads(self) -> int:
        """Downloads enqueued whose completion has not yet been reported."""
        with self._lock:
            return self._active

    def status(self, download_id: int) -> DownloadStatus:
        """Status of a download.

        Raises:
            DownloadError: If the id was never enqueued
        """
        return self._get_record(download_id).status

    def title(self, download_id: int) -> str:
        """Title the download was enqueued with.

        Raises:
            DownloadError: If the id was never enqueued
        """
        return self._get_record(download_id).title

    def _get_record(self, download_id: int) -> DownloadRecord:
        with self._lock:
            record = self._records.get(download_id)
        if record is None:
            raise DownloadError(f"Unknown download id: {download_id}")
        return record

    def _set_status(self, record: DownloadRecord, status: DownloadStatus, error: str | None = None) -> None:
        with self._lock:
            record.status = status
            record.error = error

    def _run(self, record: DownloadRecord) -> None:
        try:
            self._download_and_report(record)
        finally:
            with self._lock:
                self._active -= 1

    def _download_and_report(self, record: DownloadRecord) -> None:
        self._set_status(record, DownloadStatus.RUNNING)
        try:
            self._fetch(record)
        except (requests.RequestException, OSError) as e:
            logger.error(f"Download {record.download_id} ({record.title}) failed: {e}")
            self._set_status(record, DownloadStatus.FAILED, str(e))
        else:
            logger.debug(f"Download {record.download_id} ({record.title}) finished")
            self._set_status(record, DownloadStatus.SUCCESSFUL)

        listener = self._on_complete
        if listener is not None:
            try:
                listener(record.download_id)
            except Exception as e:
                logger.exception(f"Completion listener failed for download {record.download_id}: {e}")

    def _fetch(self, record: DownloadRecord) -> None:
        self.downloads_directory.mkdir(parents=True, exist_ok=True)
        partial = record.destination.with_name(record.destination.name + ".part")
        try:
            with requests.get(record.url, stream=True, timeout=self.timeout) as response:
                response.raise_for_status()
                with open(partial, "wb") as f:
                    for chunk in response.iter_content(chunk_size=self.CHUNK_SIZE):
                        f.write(chunk)
            partial.replace(record.destination)
        finally:
            if partial.exists():
                partial.unlink()

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting downloads; optionally wait for running ones."""
        self._executor.shutdown(wait=wait)


__all__ = ["DownloadError", "DownloadRecord", "DownloadStatus", "HttpDownloadManager"]
