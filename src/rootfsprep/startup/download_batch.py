"""Bookkeeping for one in-flight download batch.

Completion is decided by counting resolved ids against the batch size, so the
order in which completions arrive never matters. Completions are pushed from
download worker threads, hence the lock.
"""

import threading
from collections.abc import Iterable

from rootfsprep.models import DownloadHandle


class DownloadBatch:
    """Downloads enqueued together by one DownloadAssets submission.

    Example:
        >>> batch = DownloadBatch(1, coordinator.enqueue(assets))
        >>> batch.resolve(handle.download_id)
        True
        >>> batch.is_complete
        False
    """

    def __init__(self, batch_id: int, handles: Iterable[DownloadHandle]):
        self.batch_id = batch_id
        self._lock = threading.Lock()
        self._downloading: list[DownloadHandle] = list(handles)
        self._resolved_ids: list[int] = []

    def contains(self, download_id: int) -> bool:
        """Whether download_id was issued for this batch."""
        return any(handle.download_id == download_id for handle in self._downloading)

    def resolve(self, download_id: int) -> bool:
        """Record download_id as resolved.

        Returns:
            False if the id is not part of this batch or was already resolved
        """
        if not self.contains(download_id):
            return False
        with self._lock:
            if download_id in self._resolved_ids:
                return False
            self._resolved_ids.append(download_id)
            return True

    @property
    def handles(self) -> list[DownloadHandle]:
        return list(self._downloading)

    @property
    def resolved_ids(self) -> list[int]:
        with self._lock:
            return list(self._resolved_ids)

    @property
    def completed(self) -> int:
        with self._lock:
            return len(self._resolved_ids)

    @property
    def total(self) -> int:
        return len(self._downloading)

    @property
    def is_complete(self) -> bool:
        return self.completed == self.total


__all__ = ["DownloadBatch"]
