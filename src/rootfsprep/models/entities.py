"""
Provisioning Entities

Shared dataclasses for sessions, filesystems and distribution assets.

Philosophy:
- Single responsibility: entity data structures only
- Zero dependencies: No imports from other rootfsprep modules
- Plain data: persistence helpers only, no behaviour
"""

from dataclasses import dataclass
from typing import Any

# Prefix marking files in the downloads directory as ours.
# Must not contain a hyphen: relocation splits names on the first two hyphens.
DOWNLOAD_MARKER = "rootfsprep"

SERVICE_TYPES = ("ssh", "vnc")


@dataclass
class Session:
    """A user's saved environment instance.

    Attributes:
        id: Session identifier
        name: Display name
        filesystem_id: Identifier of the owning filesystem
        service_type: Remote service used to reach the session ("ssh" or "vnc")
        is_apps_session: Whether the session was created for a single app
        pid: Server process id, set only while the session runs
        active: Whether the session is currently running
    """

    id: int
    name: str
    filesystem_id: int
    service_type: str = "ssh"
    is_apps_session: bool = False
    pid: int = 0
    active: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for persistence."""
        return {
            "id": self.id,
            "name": self.name,
            "filesystem_id": self.filesystem_id,
            "service_type": self.service_type,
            "is_apps_session": self.is_apps_session,
            "pid": self.pid,
            "active": self.active,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Session":
        """Create from persisted dictionary."""
        return cls(
            id=int(data["id"]),
            name=str(data["name"]),
            filesystem_id=int(data["filesystem_id"]),
            service_type=str(data.get("service_type", "ssh")),
            is_apps_session=bool(data.get("is_apps_session", False)),
            pid=int(data.get("pid", 0)),
            active=bool(data.get("active", False)),
        )


@dataclass
class Filesystem:
    """A provisioned Linux root filesystem instance.

    The string form of ``id`` names the filesystem's on-disk directory and is
    the key for every extraction and asset-presence query.

    Attributes:
        id: Filesystem identifier
        name: Display name
        distribution_type: Distribution (e.g. "debian", "ubuntu")
        arch_type: CPU architecture (e.g. "arm64", "x86_64")
        last_updated: Epoch seconds of the last distribution asset copy
    """

    id: int
    name: str = ""
    distribution_type: str = ""
    arch_type: str = ""
    last_updated: int = 0

    @property
    def directory_name(self) -> str:
        """Name of the filesystem's directory under the files directory."""
        return str(self.id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for persistence."""
        return {
            "id": self.id,
            "name": self.name,
            "distribution_type": self.distribution_type,
            "arch_type": self.arch_type,
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Filesystem":
        """Create from persisted dictionary."""
        return cls(
            id=int(data["id"]),
            name=str(data.get("name", "")),
            distribution_type=str(data.get("distribution_type", "")),
            arch_type=str(data.get("arch_type", "")),
            last_updated=int(data.get("last_updated", 0)),
        )


@dataclass(frozen=True)
class Asset:
    """A named, versioned file belonging to a distribution/architecture pair.

    Identity is (name, architecture_type, distribution_type); the remote
    timestamp only drives staleness checks.
    """

    name: str
    architecture_type: str
    distribution_type: str
    remote_timestamp: int = 0

    @property
    def is_large(self) -> bool:
        """Rootfs-class assets need extraction and are expensive to re-download."""
        return "rootfs" in self.name

    @property
    def concatenated_name(self) -> str:
        """Download title, parsed back by relocation as marker-subdirectory-filename."""
        return f"{DOWNLOAD_MARKER}-{self.distribution_type}-{self.name}"

    @property
    def path_name(self) -> str:
        """Location relative to the application files directory."""
        return f"{self.distribution_type}/{self.name}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for caching."""
        return {
            "name": self.name,
            "architecture_type": self.architecture_type,
            "distribution_type": self.distribution_type,
            "remote_timestamp": self.remote_timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Asset":
        """Create from cached dictionary."""
        return cls(
            name=str(data["name"]),
            architecture_type=str(data["architecture_type"]),
            distribution_type=str(data["distribution_type"]),
            remote_timestamp=int(data.get("remote_timestamp", 0)),
        )


@dataclass(frozen=True)
class DownloadHandle:
    """An asset paired with the identifier issued when its download was enqueued."""

    asset: Asset
    download_id: int


__all__ = [
    "DOWNLOAD_MARKER",
    "SERVICE_TYPES",
    "Asset",
    "DownloadHandle",
    "Filesystem",
    "Session",
]
