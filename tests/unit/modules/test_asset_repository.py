"""Unit tests for asset_repository module."""

from unittest.mock import MagicMock, Mock, patch

import pytest
import requests

from rootfsprep.models import Asset, Filesystem
from rootfsprep.modules.asset_preferences import AssetPreferences
from rootfsprep.modules.asset_repository import (
    AssetRepository,
    parse_asset_manifest,
    repository_branch,
    repository_url,
)

SUPPORT_MANIFEST = "busybox 1500\nproot 1600\n"
DEBIAN_MANIFEST = "rootfs.tar.gz 2000\nstartup.sh 2100\n"


def _response(text):
    response = Mock()
    response.text = text
    response.raise_for_status.return_value = None
    return response


@pytest.fixture
def preferences(tmp_path):
    return AssetPreferences(tmp_path / "assets.toml")


@pytest.fixture
def repository(files_dir, preferences):
    return AssetRepository(files_dir, preferences, base_url="https://assets.example.com", timeout=5)


class TestManifestParsing:
    """Tests for manifest parsing and URL helpers."""

    def test_parse_manifest(self):
        assets = parse_asset_manifest(SUPPORT_MANIFEST, "support", "arm64")
        assert assets == [
            Asset(name="busybox", architecture_type="arm64", distribution_type="support", remote_timestamp=1500),
            Asset(name="proot", architecture_type="arm64", distribution_type="support", remote_timestamp=1600),
        ]

    def test_parse_skips_malformed_lines(self):
        """Test blank lines, extra fields and bad timestamps are skipped."""
        text = "\nbusybox 1500\nbroken\nthree fields here\nproot notanumber\n"
        assert [a.name for a in parse_asset_manifest(text, "support", "arm64")] == ["busybox"]

    @pytest.mark.parametrize(
        "repository,branch",
        [("support", "staging"), ("Support", "staging"), ("debian", "master"), ("ubuntu", "master")],
    )
    def test_branch(self, repository, branch):
        assert repository_branch(repository) == branch

    def test_repository_url(self):
        assert (
            repository_url("https://github.com/CypherpunkArmory/", "debian")
            == "https://github.com/CypherpunkArmory/UserLAnd-Assets-debian/raw/master/assets"
        )


class TestGetAllAssetLists:
    """Tests for AssetRepository.get_all_asset_lists."""

    @patch("rootfsprep.modules.asset_repository.requests.get")
    def test_fetches_support_then_distribution(self, mock_get, repository):
        mock_get.side_effect = [_response(SUPPORT_MANIFEST), _response(DEBIAN_MANIFEST)]

        lists = repository.get_all_asset_lists("debian", "arm64")

        assert [[a.name for a in asset_list] for asset_list in lists] == [
            ["busybox", "proot"],
            ["rootfs.tar.gz", "startup.sh"],
        ]
        urls = [c.args[0] for c in mock_get.call_args_list]
        assert urls == [
            "https://assets.example.com/UserLAnd-Assets-support/raw/staging/assets/arm64/assets.txt",
            "https://assets.example.com/UserLAnd-Assets-debian/raw/master/assets/arm64/assets.txt",
        ]
        assert all(c.kwargs["timeout"] == 5 for c in mock_get.call_args_list)

    @patch("rootfsprep.modules.asset_repository.requests.get")
    def test_falls_back_to_cache_on_network_error(self, mock_get, repository):
        """Test a failed fetch returns the last cached manifest."""
        mock_get.side_effect = [_response(SUPPORT_MANIFEST), _response(DEBIAN_MANIFEST)]
        repository.get_all_asset_lists("debian", "arm64")

        mock_get.side_effect = requests.ConnectionError("offline")
        lists = repository.get_all_asset_lists("debian", "arm64")

        assert [len(asset_list) for asset_list in lists] == [2, 2]

    @patch("rootfsprep.modules.asset_repository.requests.get")
    def test_no_cache_and_offline_gives_empty_lists(self, mock_get, repository):
        mock_get.side_effect = requests.Timeout("slow")
        assert repository.get_all_asset_lists("debian", "arm64") == [[], []]

    @patch("rootfsprep.modules.asset_repository.requests.get")
    def test_http_error_falls_back(self, mock_get, repository):
        response = MagicMock()
        response.raise_for_status.side_effect = requests.HTTPError("404")
        mock_get.return_value = response

        assert repository.get_all_asset_lists("debian", "arm64") == [[], []]

    @patch("rootfsprep.modules.asset_repository.requests.get")
    def test_unreadable_cache_while_offline_gives_empty_lists(self, mock_get, files_dir, tmp_path):
        """Test a preferences file that cannot be read is treated as an empty cache."""
        preferences_path = tmp_path / "assets.toml"
        preferences_path.mkdir()
        repository = AssetRepository(files_dir, AssetPreferences(preferences_path))
        mock_get.side_effect = requests.ConnectionError("offline")

        assert repository.get_all_asset_lists("debian", "arm64") == [[], []]

    @patch("rootfsprep.modules.asset_repository.requests.get")
    def test_unwritable_cache_still_returns_fetched_lists(self, mock_get, files_dir, tmp_path):
        preferences_path = tmp_path / "assets.toml"
        preferences_path.mkdir()
        repository = AssetRepository(files_dir, AssetPreferences(preferences_path))
        mock_get.side_effect = [_response(SUPPORT_MANIFEST), _response(DEBIAN_MANIFEST)]

        lists = repository.get_all_asset_lists("debian", "arm64")

        assert [len(asset_list) for asset_list in lists] == [2, 2]


class TestStaleness:
    """Tests for does_asset_need_to_update."""

    ASSET = Asset(name="busybox", architecture_type="arm64", distribution_type="support", remote_timestamp=100)

    def test_missing_local_file_needs_update(self, repository):
        assert repository.does_asset_need_to_update(self.ASSET)

    def test_older_saved_timestamp_needs_update(self, repository, files_dir, preferences):
        (files_dir / "support").mkdir()
        (files_dir / "support" / "busybox").write_text("bin")
        with patch("rootfsprep.modules.asset_preferences.time.time", return_value=50):
            preferences.set_saved_timestamp_for_file_to_now(self.ASSET.concatenated_name)

        assert repository.does_asset_need_to_update(self.ASSET)

    def test_newer_saved_timestamp_is_current(self, repository, files_dir, preferences):
        (files_dir / "support").mkdir()
        (files_dir / "support" / "busybox").write_text("bin")
        with patch("rootfsprep.modules.asset_preferences.time.time", return_value=150):
            preferences.set_saved_timestamp_for_file_to_now(self.ASSET.concatenated_name)

        assert not repository.does_asset_need_to_update(self.ASSET)


class TestDistributionAssets:
    """Tests for distribution update timestamps and existing-filesystem assets."""

    def test_last_distribution_update_roundtrip(self, repository):
        repository.set_last_distribution_update("debian", 42)
        assert repository.get_last_distribution_update("debian") == 42

    @patch("rootfsprep.modules.asset_repository.requests.get")
    def test_existing_filesystem_assets_exclude_large(self, mock_get, repository):
        """Test rootfs archives are not required once a filesystem exists."""
        mock_get.side_effect = [_response(SUPPORT_MANIFEST), _response(DEBIAN_MANIFEST)]
        repository.get_all_asset_lists("debian", "arm64")
        filesystem = Filesystem(id=1, name="fs", distribution_type="debian", arch_type="arm64")

        assets = repository.get_distribution_assets_for_existing_filesystem(filesystem)

        assert [a.name for a in assets] == ["startup.sh"]
