"""Session startup states.

The provisioning state is a tagged union: one frozen dataclass per state, no
shared base class, and ``SessionStartupState`` naming the closed set. The
concrete class is the tag; payload-free states compare equal to any other
instance of the same class.
"""

from dataclasses import dataclass, field

from rootfsprep.models import Asset, Filesystem, Session
from rootfsprep.startup.events import SessionStartupEvent


@dataclass(frozen=True)
class WaitingForSelection:
    pass


@dataclass(frozen=True)
class SingleSessionSupported:
    pass


@dataclass(frozen=True)
class SessionRestartable:
    session: Session


@dataclass(frozen=True)
class ReadyForPreparation:
    session: Session
    filesystem: Filesystem


@dataclass(frozen=True)
class RetrievingAssetLists:
    pass


@dataclass(frozen=True)
class AssetListsRetrieved:
    asset_lists: list[list[Asset]] = field(default_factory=list)


@dataclass(frozen=True)
class AssetListsRetrievalFailed:
    pass


@dataclass(frozen=True)
class GeneratingDownloadRequirements:
    pass


@dataclass(frozen=True)
class DownloadsRequired:
    required_downloads: list[Asset] = field(default_factory=list)
    large_download_required: bool = False


@dataclass(frozen=True)
class NoDownloadsRequired:
    pass


@dataclass(frozen=True)
class DownloadingRequirements:
    num_completed: int
    num_total: int


@dataclass(frozen=True)
class DownloadsSucceeded:
    pass


@dataclass(frozen=True)
class DownloadsFailed:
    reason: str = ""


@dataclass(frozen=True)
class CopyingToLocalDirectories:
    pass


@dataclass(frozen=True)
class CopySucceeded:
    pass


@dataclass(frozen=True)
class CopyFailed:
    pass


@dataclass(frozen=True)
class DistributionCopyFailed:
    pass


@dataclass(frozen=True)
class ExtractingFilesystem:
    extraction_target: str


@dataclass(frozen=True)
class ExtractionSucceeded:
    pass


@dataclass(frozen=True)
class ExtractionFailed:
    pass


@dataclass(frozen=True)
class VerifyingAssets:
    pass


@dataclass(frozen=True)
class AssetsPresent:
    pass


@dataclass(frozen=True)
class AssetsMissing:
    pass


@dataclass(frozen=True)
class RejectedTransition:
    """The submitted event was not acceptable in the state it was submitted against."""

    event: SessionStartupEvent
    state: "SessionStartupState"


SessionStartupState = (
    WaitingForSelection
    | SingleSessionSupported
    | SessionRestartable
    | ReadyForPreparation
    | RetrievingAssetLists
    | AssetListsRetrieved
    | AssetListsRetrievalFailed
    | GeneratingDownloadRequirements
    | DownloadsRequired
    | NoDownloadsRequired
    | DownloadingRequirements
    | DownloadsSucceeded
    | DownloadsFailed
    | CopyingToLocalDirectories
    | CopySucceeded
    | CopyFailed
    | DistributionCopyFailed
    | ExtractingFilesystem
    | ExtractionSucceeded
    | ExtractionFailed
    | VerifyingAssets
    | AssetsPresent
    | AssetsMissing
    | RejectedTransition
)

STATE_TYPES: tuple[type, ...] = (
    WaitingForSelection,
    SingleSessionSupported,
    SessionRestartable,
    ReadyForPreparation,
    RetrievingAssetLists,
    AssetListsRetrieved,
    AssetListsRetrievalFailed,
    GeneratingDownloadRequirements,
    DownloadsRequired,
    NoDownloadsRequired,
    DownloadingRequirements,
    DownloadsSucceeded,
    DownloadsFailed,
    CopyingToLocalDirectories,
    CopySucceeded,
    CopyFailed,
    DistributionCopyFailed,
    ExtractingFilesystem,
    ExtractionSucceeded,
    ExtractionFailed,
    VerifyingAssets,
    AssetsPresent,
    AssetsMissing,
    RejectedTransition,
)


def state_name(state: SessionStartupState) -> str:
    """Tag of a state, for logs and progress output."""
    return type(state).__name__


__all__ = [
    "STATE_TYPES",
    "AssetListsRetrievalFailed",
    "AssetListsRetrieved",
    "AssetsMissing",
    "AssetsPresent",
    "CopyFailed",
    "CopySucceeded",
    "CopyingToLocalDirectories",
    "DistributionCopyFailed",
    "DownloadingRequirements",
    "DownloadsFailed",
    "DownloadsRequired",
    "DownloadsSucceeded",
    "ExtractingFilesystem",
    "ExtractionFailed",
    "ExtractionSucceeded",
    "GeneratingDownloadRequirements",
    "NoDownloadsRequired",
    "ReadyForPreparation",
    "RejectedTransition",
    "RetrievingAssetLists",
    "SessionRestartable",
    "SessionStartupState",
    "SingleSessionSupported",
    "VerifyingAssets",
    "WaitingForSelection",
    "state_name",
]
