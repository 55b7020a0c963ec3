"""Asset Preferences - Persistent asset timestamps and manifest cache.

Philosophy:
- Ruthless simplicity: one TOML file, basic get/set
- Single responsibility: asset bookkeeping persistence only
- Self-contained: atomic writes, secure permissions

Public API (Studs):
    AssetPreferences - TOML-backed asset bookkeeping
    AssetPreferencesError - Read/write failures
    current_timestamp - Epoch seconds used for every stored timestamp

File layout (~/.rootfsprep/assets.toml):
    [timestamps]             download title -> epoch seconds of last download
    [distribution_updates]   distribution -> epoch seconds of last asset copy
    [asset_lists]            "<repository>-<arch>" -> cached manifest entries
"""

import logging
import os
import threading
import time
from pathlib import Path
from typing import Any

import tomlkit
from tomlkit.exceptions import TOMLKitError

from rootfsprep.models import Asset

logger = logging.getLogger(__name__)


class AssetPreferencesError(Exception):
    """Raised when the asset preferences file cannot be read or written."""

    pass


def current_timestamp() -> int:
    """Current time in epoch seconds."""
    return int(time.time())


class AssetPreferences:
    """Persist asset download timestamps, distribution update times and manifests.

    Example:
        >>> prefs = AssetPreferences(Path("~/.rootfsprep/assets.toml").expanduser())
        >>> prefs.set_saved_timestamp_for_file_to_now("rootfsprep-debian-rootfs.tar.gz")
        >>> prefs.get_saved_timestamp_for_file("rootfsprep-debian-rootfs.tar.gz")
        1735689600
    """

    def __init__(self, preferences_path: Path):
        """Initialize asset preferences.

        Args:
            preferences_path: Path to the TOML file (created on first write)
        """
        self.preferences_path = preferences_path
        self._lock = threading.Lock()

    def _read(self) -> dict[str, Any]:
        """Read preferences, returning an empty mapping when the file is absent."""
        if not self.preferences_path.exists():
            return {}
        try:
            with open(self.preferences_path) as f:
                return tomlkit.load(f).unwrap()
        except (OSError, TOMLKitError) as e:
            raise AssetPreferencesError(f"Failed to read asset preferences: {e}") from e

    def _write(self, data: dict[str, Any]) -> None:
        """Write preferences atomically with owner-only permissions."""
        temp_path = self.preferences_path.with_suffix(".tmp")
        try:
            self.preferences_path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "w") as f:
                tomlkit.dump(data, f)
            os.chmod(temp_path, 0o600)
            temp_path.replace(self.preferences_path)
        except (OSError, TOMLKitError) as e:
            if temp_path.exists():
                temp_path.unlink()
            raise AssetPreferencesError(f"Failed to write asset preferences: {e}") from e

    def _set(self, section: str, key: str, value: Any) -> None:
        with self._lock:
            data = self._read()
            data.setdefault(section, {})[key] = value
            self._write(data)

    def _get(self, section: str, key: str, default: Any) -> Any:
        with self._lock:
            return self._read().get(section, {}).get(key, default)

    def get_saved_timestamp_for_file(self, title: str) -> int:
        """Epoch seconds of the last completed download for title (0 if never)."""
        return int(self._get("timestamps", title, 0))

    def set_saved_timestamp_for_file_to_now(self, title: str) -> None:
        """Record that title finished downloading now."""
        self._set("timestamps", title, current_timestamp())
        logger.debug(f"Recorded download timestamp for {title}")

    def get_last_distribution_update(self, distribution_type: str) -> int:
        """Epoch seconds of the last asset copy for distribution_type (0 if never)."""
        return int(self._get("distribution_updates", distribution_type, 0))

    def set_last_distribution_update(self, distribution_type: str, timestamp: int) -> None:
        self._set("distribution_updates", distribution_type, int(timestamp))

    def get_cached_asset_list(self, repository: str, arch_type: str) -> list[Asset]:
        """Last manifest fetched for repository/arch (empty if never fetched)."""
        entries = self._get("asset_lists", f"{repository}-{arch_type}", [])
        return [
            Asset(
                name=entry["name"],
                architecture_type=arch_type,
                distribution_type=repository,
                remote_timestamp=int(entry.get("remote_timestamp", 0)),
            )
            for entry in entries
        ]

    def set_cached_asset_list(self, repository: str, arch_type: str, assets: list[Asset]) -> None:
        entries = [{"name": asset.name, "remote_timestamp": asset.remote_timestamp} for asset in assets]
        self._set("asset_lists", f"{repository}-{arch_type}", entries)


__all__ = ["AssetPreferences", "AssetPreferencesError", "current_timestamp"]
