"""Asset Repository Module

Resolve which assets a distribution/architecture needs and whether each one is
stale.

Manifests are plain text, one asset per line: ``<name> <remote_timestamp>``.
Each distribution needs two manifests: the shared ``support`` repository and the
distribution's own repository.

Security Requirements:
- HTTPS only for manifest retrieval
- Timeout on every request
- Cached manifest used when the network is unavailable
"""

import logging
from pathlib import Path

import requests

from rootfsprep.models import Asset, Filesystem
from rootfsprep.modules.asset_preferences import AssetPreferences, AssetPreferencesError

logger = logging.getLogger(__name__)

SUPPORT_REPOSITORY = "support"
DEFAULT_ASSETS_BASE_URL = "https://github.com/CypherpunkArmory"


def repository_branch(repository: str) -> str:
    """Branch assets are served from: support tracks staging, distributions track master."""
    return "staging" if repository.lower() == SUPPORT_REPOSITORY else "master"


def repository_url(base_url: str, repository: str) -> str:
    """Root URL of a repository's published assets."""
    return f"{base_url.rstrip('/')}/UserLAnd-Assets-{repository}/raw/{repository_branch(repository)}/assets"


def parse_asset_manifest(text: str, repository: str, arch_type: str) -> list[Asset]:
    """Parse manifest text into assets, skipping blank and malformed lines.

    Args:
        text: Manifest contents
        repository: Distribution type the manifest belongs to
        arch_type: Architecture the manifest describes

    Returns:
        list[Asset]: Assets in manifest order
    """
    assets = []
    for line in text.splitlines():
        parts = line.split()
        if len(parts) != 2:
            continue
        name, timestamp = parts
        try:
            remote_timestamp = int(timestamp)
        except ValueError:
            logger.debug(f"Skipping manifest line with bad timestamp: {line!r}")
            continue
        assets.append(
            Asset(
                name=name,
                architecture_type=arch_type,
                distribution_type=repository,
                remote_timestamp=remote_timestamp,
            )
        )
    return assets


class AssetRepository:
    """Asset manifests, staleness checks and distribution update timestamps.

    Example:
        >>> repository = AssetRepository(files_dir, AssetPreferences(prefs_path))
        >>> lists = repository.get_all_asset_lists("debian", "arm64")
        >>> [asset.name for asset in lists[1]]
        ['rootfs.tar.gz', 'busybox']
    """

    API_TIMEOUT = 30

    def __init__(
        self,
        application_files_dir: Path,
        preferences: AssetPreferences,
        base_url: str = DEFAULT_ASSETS_BASE_URL,
        timeout: int | None = None,
    ):
        """Initialize asset repository.

        Args:
            application_files_dir: Root of the managed files tree
            preferences: Persistent timestamps and manifest cache
            base_url: Host of the UserLAnd-Assets-<distribution> repositories
            timeout: Request timeout in seconds (default: 30)
        """
        self.application_files_dir = application_files_dir
        self.preferences = preferences
        self.base_url = base_url
        self.timeout = timeout or self.API_TIMEOUT

    def get_all_asset_lists(self, distribution_type: str, arch_type: str) -> list[list[Asset]]:
        """Retrieve the support and distribution manifests.

        Each manifest falls back to its cached copy when the remote fetch fails;
        a manifest with neither comes back empty.

        Args:
            distribution_type: Distribution (e.g. "debian")
            arch_type: Architecture (e.g. "arm64")

        Returns:
            list[list[Asset]]: Support manifest, then distribution manifest
        """
        return [
            self._get_asset_list(repository, arch_type)
            for repository in (SUPPORT_REPOSITORY, distribution_type)
        ]

    def _get_asset_list(self, repository: str, arch_type: str) -> list[Asset]:
        try:
            assets = self._retrieve_remote_asset_list(repository, arch_type)
        except requests.RequestException as e:
            logger.warning(f"Could not fetch {repository} manifest for {arch_type}, using cache: {e}")
            return self._cached_asset_list(repository, arch_type)

        if assets:
            try:
                self.preferences.set_cached_asset_list(repository, arch_type, assets)
            except AssetPreferencesError as e:
                logger.warning(f"Could not cache {repository} manifest for {arch_type}: {e}")
            return assets
        return self._cached_asset_list(repository, arch_type)

    def _cached_asset_list(self, repository: str, arch_type: str) -> list[Asset]:
        try:
            return self.preferences.get_cached_asset_list(repository, arch_type)
        except AssetPreferencesError as e:
            logger.warning(f"Could not read cached {repository} manifest for {arch_type}: {e}")
            return []

    def _retrieve_remote_asset_list(self, repository: str, arch_type: str) -> list[Asset]:
        url = f"{repository_url(self.base_url, repository)}/{arch_type}/assets.txt"
        response = requests.get(url, timeout=self.timeout)
        response.raise_for_status()
        return parse_asset_manifest(response.text, repository, arch_type)

    def does_asset_need_to_update(self, asset: Asset) -> bool:
        """An asset is stale when its local file is missing or older than the remote copy."""
        if not (self.application_files_dir / asset.path_name).exists():
            return True
        saved = self.preferences.get_saved_timestamp_for_file(asset.concatenated_name)
        return saved < asset.remote_timestamp

    def get_last_distribution_update(self, distribution_type: str) -> int:
        return self.preferences.get_last_distribution_update(distribution_type)

    def set_last_distribution_update(self, distribution_type: str, timestamp: int) -> None:
        self.preferences.set_last_distribution_update(distribution_type, timestamp)

    def get_distribution_assets_for_existing_filesystem(self, filesystem: Filesystem) -> list[Asset]:
        """Distribution assets an extracted filesystem must still hold.

        Large assets are excluded: their files are removed once extracted.
        """
        assets = self.preferences.get_cached_asset_list(
            filesystem.distribution_type, filesystem.arch_type
        )
        return [asset for asset in assets if not asset.is_large]


__all__ = [
    "DEFAULT_ASSETS_BASE_URL",
    "SUPPORT_REPOSITORY",
    "AssetRepository",
    "parse_asset_manifest",
    "repository_branch",
    "repository_url",
]
