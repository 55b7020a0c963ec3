"""Session startup events.

Each event is its own frozen dataclass; ``SessionStartupEvent`` is the closed
union of them. Handlers dispatch on the concrete type.
"""

from dataclasses import dataclass, field

from rootfsprep.models import Asset, Filesystem, Session


@dataclass(frozen=True)
class SessionSelected:
    session: Session


@dataclass(frozen=True)
class RetrieveAssetLists:
    filesystem: Filesystem


@dataclass(frozen=True)
class GenerateDownloads:
    filesystem: Filesystem
    asset_lists: list[list[Asset]] = field(default_factory=list)


@dataclass(frozen=True)
class DownloadAssets:
    assets: list[Asset] = field(default_factory=list)


@dataclass(frozen=True)
class AssetDownloadComplete:
    """A download resolved (success or failure).

    ``batch_id`` is optional; when present, completions tagged with a
    superseded batch are discarded.
    """

    download_id: int
    batch_id: int | None = None


@dataclass(frozen=True)
class CopyDownloadsToLocalStorage:
    pass


@dataclass(frozen=True)
class ExtractFilesystem:
    filesystem: Filesystem


@dataclass(frozen=True)
class VerifyFilesystemAssets:
    filesystem: Filesystem


@dataclass(frozen=True)
class ResetState:
    pass


SessionStartupEvent = (
    SessionSelected
    | RetrieveAssetLists
    | GenerateDownloads
    | DownloadAssets
    | AssetDownloadComplete
    | CopyDownloadsToLocalStorage
    | ExtractFilesystem
    | VerifyFilesystemAssets
    | ResetState
)

EVENT_TYPES: tuple[type, ...] = (
    SessionSelected,
    RetrieveAssetLists,
    GenerateDownloads,
    DownloadAssets,
    AssetDownloadComplete,
    CopyDownloadsToLocalStorage,
    ExtractFilesystem,
    VerifyFilesystemAssets,
    ResetState,
)


__all__ = [
    "EVENT_TYPES",
    "AssetDownloadComplete",
    "CopyDownloadsToLocalStorage",
    "DownloadAssets",
    "ExtractFilesystem",
    "GenerateDownloads",
    "ResetState",
    "RetrieveAssetLists",
    "SessionSelected",
    "SessionStartupEvent",
    "VerifyFilesystemAssets",
]
