"""Session Startup Module.

Decides when a selected session's root filesystem is ready: retrieves asset
manifests, downloads what is missing or stale, relocates and extracts it, and
verifies the result.

Core Components:
- SessionStartupFsm: The provisioning state machine
- StateStream: Observable of the current provisioning state
- DownloadBatch: Bookkeeping for one in-flight download batch
- states / events: Closed unions of provisioning states and events
- transitions: Acceptance table and pure transition rules
"""

from .download_batch import DownloadBatch
from .events import (
    EVENT_TYPES,
    AssetDownloadComplete,
    CopyDownloadsToLocalStorage,
    DownloadAssets,
    ExtractFilesystem,
    GenerateDownloads,
    ResetState,
    RetrieveAssetLists,
    SessionSelected,
    SessionStartupEvent,
    VerifyFilesystemAssets,
)
from .session_startup_fsm import FilesystemNotFoundError, SessionStartupFsm
from .state_stream import StateStream
from .states import (
    STATE_TYPES,
    AssetListsRetrievalFailed,
    AssetListsRetrieved,
    AssetsMissing,
    AssetsPresent,
    CopyFailed,
    CopySucceeded,
    CopyingToLocalDirectories,
    DistributionCopyFailed,
    DownloadingRequirements,
    DownloadsFailed,
    DownloadsRequired,
    DownloadsSucceeded,
    ExtractingFilesystem,
    ExtractionFailed,
    ExtractionSucceeded,
    GeneratingDownloadRequirements,
    NoDownloadsRequired,
    ReadyForPreparation,
    RejectedTransition,
    RetrievingAssetLists,
    SessionRestartable,
    SessionStartupState,
    SingleSessionSupported,
    VerifyingAssets,
    WaitingForSelection,
    state_name,
)
from .transitions import (
    ACCEPTANCE_TABLE,
    VerificationOutcome,
    select_required_downloads,
    transition_is_acceptable,
    verification_outcome,
)

__all__ = [
    # State machine
    "SessionStartupFsm",
    "FilesystemNotFoundError",
    "StateStream",
    "DownloadBatch",
    # Events
    "EVENT_TYPES",
    "SessionStartupEvent",
    "SessionSelected",
    "RetrieveAssetLists",
    "GenerateDownloads",
    "DownloadAssets",
    "AssetDownloadComplete",
    "CopyDownloadsToLocalStorage",
    "ExtractFilesystem",
    "VerifyFilesystemAssets",
    "ResetState",
    # States
    "STATE_TYPES",
    "SessionStartupState",
    "WaitingForSelection",
    "SingleSessionSupported",
    "SessionRestartable",
    "ReadyForPreparation",
    "RetrievingAssetLists",
    "AssetListsRetrieved",
    "AssetListsRetrievalFailed",
    "GeneratingDownloadRequirements",
    "DownloadsRequired",
    "NoDownloadsRequired",
    "DownloadingRequirements",
    "DownloadsSucceeded",
    "DownloadsFailed",
    "CopyingToLocalDirectories",
    "CopySucceeded",
    "CopyFailed",
    "DistributionCopyFailed",
    "ExtractingFilesystem",
    "ExtractionSucceeded",
    "ExtractionFailed",
    "VerifyingAssets",
    "AssetsPresent",
    "AssetsMissing",
    "RejectedTransition",
    "state_name",
    # Transition rules
    "ACCEPTANCE_TABLE",
    "VerificationOutcome",
    "select_required_downloads",
    "transition_is_acceptable",
    "verification_outcome",
]
