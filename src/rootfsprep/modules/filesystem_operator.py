"""Filesystem Operator Module

On-disk operations for a filesystem's working directory
(``<files>/<filesystem id>/``).

Layout:
    <files>/<distribution>/             relocated distribution assets
    <files>/<id>/support/               per-filesystem copy of those assets
    <files>/<id>/support/rootfs.tar.gz  archive extracted into <files>/<id>/
    <files>/<id>/support/.success_filesystem_extraction
                                        written once extraction completes

Public API (Studs):
    FilesystemOperator - Extract, presence checks and copy-into-place
    FilesystemOperationError - Copy or extraction failure
"""

import logging
import os
import shutil
import tarfile
from collections.abc import Callable
from pathlib import Path

from rootfsprep.models import Asset, Filesystem

logger = logging.getLogger(__name__)

SUPPORT_DIRECTORY = "support"
SUCCESS_MARKER = ".success_filesystem_extraction"
ROOTFS_ARCHIVE = "rootfs.tar.gz"


class FilesystemOperationError(Exception):
    """Raised when copying assets into or extracting a filesystem fails."""

    pass


class FilesystemOperator:
    """Filesystem directory operations rooted at the application files directory."""

    def __init__(self, application_files_dir: Path):
        self.application_files_dir = application_files_dir

    def support_directory(self, directory_name: str) -> Path:
        return self.application_files_dir / directory_name / SUPPORT_DIRECTORY

    def has_filesystem_been_successfully_extracted(self, directory_name: str) -> bool:
        return (self.support_directory(directory_name) / SUCCESS_MARKER).exists()

    def copy_distribution_assets_to_filesystem(self, directory_name: str, distribution_type: str) -> None:
        """Copy every relocated distribution asset into the filesystem's support directory.

        Args:
            directory_name: Filesystem directory (the filesystem id)
            distribution_type: Distribution whose assets are copied

        Raises:
            FilesystemOperationError: If the assets are missing or cannot be copied
        """
        source_dir = self.application_files_dir / distribution_type
        if not source_dir.is_dir():
            raise FilesystemOperationError(f"No assets found for distribution {distribution_type} in {source_dir}")

        target_dir = self.support_directory(directory_name)
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            for source in source_dir.iterdir():
                if not source.is_file():
                    continue
                target = target_dir / source.name
                shutil.copyfile(source, target)
                os.chmod(target, 0o755)
        except OSError as e:
            raise FilesystemOperationError(
                f"Failed to copy {distribution_type} assets into {target_dir}: {e}"
            ) from e
        logger.debug(f"Copied {distribution_type} assets into {target_dir}")

    def extract_filesystem(self, filesystem: Filesystem, on_progress_line: Callable[[str], None]) -> None:
        """Extract the filesystem's rootfs archive into its directory.

        The success marker is written only after every member is extracted.

        Args:
            filesystem: Filesystem to extract
            on_progress_line: Called with the name of each extracted member

        Raises:
            FilesystemOperationError: If the archive is missing or corrupt
        """
        target_dir = self.application_files_dir / filesystem.directory_name
        archive = self.support_directory(filesystem.directory_name) / ROOTFS_ARCHIVE
        if not archive.exists():
            raise FilesystemOperationError(f"Rootfs archive not found: {archive}")

        logger.info(f"Extracting {archive} into {target_dir}")
        try:
            with tarfile.open(archive, "r:*") as tar:
                for member in tar:
                    tar.extract(member, target_dir, filter="tar")
                    on_progress_line(member.name)
            (self.support_directory(filesystem.directory_name) / SUCCESS_MARKER).touch()
        except (tarfile.TarError, OSError) as e:
            raise FilesystemOperationError(f"Failed to extract {archive}: {e}") from e

    def are_all_required_assets_present(self, directory_name: str, assets: list[Asset]) -> bool:
        support_dir = self.support_directory(directory_name)
        return all((support_dir / asset.name).exists() for asset in assets)

    def remove_rootfs_files_from_filesystem(self, directory_name: str) -> None:
        """Delete rootfs archives from the support directory once they are no longer needed."""
        support_dir = self.support_directory(directory_name)
        if not support_dir.is_dir():
            return
        for path in support_dir.iterdir():
            if path.is_file() and "rootfs" in path.name:
                logger.debug(f"Removing {path}")
                path.unlink()


__all__ = [
    "ROOTFS_ARCHIVE",
    "SUCCESS_MARKER",
    "SUPPORT_DIRECTORY",
    "FilesystemOperationError",
    "FilesystemOperator",
]
