"""Download Coordinator Module

Bridges assets and the download transport: builds asset URLs, clears stale
copies before re-downloading, stamps finished downloads and moves them into the
files tree.

Naming convention: a download for ``<distribution>/<name>`` is written to the
downloads directory as ``rootfsprep-<distribution>-<name>``. Relocation splits
on the first two hyphens to recover the target subdirectory and file name.

Public API (Studs):
    DownloadCoordinator - Enqueue, status, timestamps and relocation
    RelocationError - Moving finished downloads into place failed
"""

import logging
import os
import shutil
from pathlib import Path

from rootfsprep.models import DOWNLOAD_MARKER, Asset, DownloadHandle
from rootfsprep.modules.asset_preferences import AssetPreferences, AssetPreferencesError
from rootfsprep.modules.asset_repository import DEFAULT_ASSETS_BASE_URL, repository_url
from rootfsprep.modules.download_manager import DownloadError, DownloadStatus, HttpDownloadManager

logger = logging.getLogger(__name__)


class RelocationError(Exception):
    """Raised when finished downloads cannot be moved into the files tree."""

    pass


class DownloadCoordinator:
    """Coordinate asset downloads through an HttpDownloadManager."""

    def __init__(
        self,
        download_manager: HttpDownloadManager,
        preferences: AssetPreferences,
        application_files_dir: Path,
        base_url: str = DEFAULT_ASSETS_BASE_URL,
    ):
        """Initialize coordinator.

        Args:
            download_manager: Transport downloads are submitted to
            preferences: Where download timestamps are recorded
            application_files_dir: Root of the files tree downloads are moved into
            base_url: Host of the UserLAnd-Assets-<distribution> repositories
        """
        self.download_manager = download_manager
        self.preferences = preferences
        self.application_files_dir = application_files_dir
        self.base_url = base_url

    @property
    def downloads_directory(self) -> Path:
        return self.download_manager.downloads_directory

    def asset_url(self, asset: Asset) -> str:
        """Remote location of an asset."""
        return (
            f"{repository_url(self.base_url, asset.distribution_type)}"
            f"/{asset.architecture_type}/{asset.name}"
        )

    def enqueue(self, assets: list[Asset]) -> list[DownloadHandle]:
        """Submit every asset for download.

        Previously downloaded and previously relocated copies are deleted first so a
        stale file can never be mistaken for a fresh one.

        Args:
            assets: Assets to download

        Returns:
            list[DownloadHandle]: One handle per asset, in the given order

        Raises:
            DownloadError: If a stale copy cannot be removed
        """
        handles = []
        for asset in assets:
            for stale in (
                self.downloads_directory / asset.concatenated_name,
                self.application_files_dir / asset.path_name,
            ):
                if stale.exists():
                    logger.debug(f"Removing stale copy {stale}")
                    try:
                        stale.unlink()
                    except OSError as e:
                        raise DownloadError(f"Failed to remove stale copy {stale}: {e}") from e

            download_id = self.download_manager.enqueue(self.asset_url(asset), asset.concatenated_name)
            handles.append(DownloadHandle(asset=asset, download_id=download_id))
        return handles

    def downloaded_successfully(self, download_id: int) -> bool:
        """Only an explicit SUCCESSFUL status counts; unknown ids are failures."""
        try:
            return self.download_manager.status(download_id) is DownloadStatus.SUCCESSFUL
        except DownloadError:
            logger.warning(f"Status requested for unknown download {download_id}")
            return False

    def set_timestamp_for_downloaded_file(self, download_id: int) -> None:
        """Record "now" as the download time of a finished download.

        Titles that are empty or were not produced by this coordinator are ignored.
        """
        try:
            title = self.download_manager.title(download_id)
        except DownloadError:
            return
        if not title or not title.startswith(f"{DOWNLOAD_MARKER}-"):
            return
        try:
            self.preferences.set_saved_timestamp_for_file_to_now(title)
        except AssetPreferencesError as e:
            logger.warning(f"Could not record download time of {title}: {e}")

    def move_assets_to_local_directories(self) -> None:
        """Move every finished download into ``<files>/<subdir>/<filename>``.

        Raises:
            RelocationError: If any file cannot be copied, chmodded or removed
        """
        if not self.downloads_directory.exists():
            return

        try:
            for source in sorted(self.downloads_directory.iterdir()):
                parts = source.name.split("-", 2)
                if (
                    not source.is_file()
                    or source.suffix == ".part"
                    or len(parts) != 3
                    or parts[0] != DOWNLOAD_MARKER
                ):
                    continue
                _, subdirectory, filename = parts

                target_dir = self.application_files_dir / subdirectory
                target_dir.mkdir(parents=True, exist_ok=True)
                target = target_dir / filename
                shutil.copyfile(source, target)
                os.chmod(target, 0o755)
                source.unlink()
                logger.debug(f"Moved {source.name} to {target}")
        except OSError as e:
            raise RelocationError(f"Failed to move downloads into {self.application_files_dir}: {e}") from e


__all__ = ["DownloadCoordinator", "RelocationError"]
