"""Unit tests for DownloadBatch."""

from rootfsprep.models import Asset, DownloadHandle
from rootfsprep.startup import DownloadBatch

ASSET = Asset(name="busybox", architecture_type="arm64", distribution_type="support")


def _batch(*download_ids):
    return DownloadBatch(7, [DownloadHandle(asset=ASSET, download_id=i) for i in download_ids])


class TestDownloadBatch:
    """Tests for DownloadBatch bookkeeping."""

    def test_new_batch(self):
        batch = _batch(1, 2)
        assert batch.batch_id == 7
        assert batch.total == 2
        assert batch.completed == 0
        assert not batch.is_complete

    def test_resolve_counts_each_id_once(self):
        """Test duplicates are not counted twice."""
        batch = _batch(1, 2)
        assert batch.resolve(1)
        assert not batch.resolve(1)
        assert batch.completed == 1
        assert batch.resolved_ids == [1]

    def test_resolve_rejects_foreign_id(self):
        batch = _batch(1, 2)
        assert not batch.resolve(3)
        assert batch.completed == 0

    def test_complete_in_any_order(self):
        batch = _batch(1, 2, 3)
        for download_id in (3, 1, 2):
            batch.resolve(download_id)
        assert batch.is_complete

    def test_empty_batch_is_complete(self):
        assert _batch().is_complete

    def test_contains(self):
        batch = _batch(5)
        assert batch.contains(5)
        assert not batch.contains(6)

    def test_handles_preserve_order(self):
        batch = _batch(9, 4, 6)
        assert [h.download_id for h in batch.handles] == [9, 4, 6]
