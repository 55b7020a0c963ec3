"""Transition rules for the session startup state machine.

Pure functions only: the acceptance table, the download-requirement filter and
the verification decision. Nothing here touches collaborators, so every rule
is testable without I/O.
"""

from collections.abc import Callable, Iterable
from enum import StrEnum

from rootfsprep.models import Asset
from rootfsprep.startup.events import (
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
from rootfsprep.startup.states import (
    AssetListsRetrieved,
    CopySucceeded,
    DownloadingRequirements,
    DownloadsRequired,
    DownloadsSucceeded,
    ExtractionSucceeded,
    NoDownloadsRequired,
    ReadyForPreparation,
    SessionStartupState,
    WaitingForSelection,
)

# Event type -> state types in which it is accepted.
# ResetState is absent: it is accepted unconditionally.
ACCEPTANCE_TABLE: dict[type, tuple[type, ...]] = {
    SessionSelected: (WaitingForSelection,),
    RetrieveAssetLists: (ReadyForPreparation,),
    GenerateDownloads: (AssetListsRetrieved,),
    DownloadAssets: (DownloadsRequired,),
    AssetDownloadComplete: (DownloadingRequirements,),
    CopyDownloadsToLocalStorage: (DownloadsSucceeded,),
    ExtractFilesystem: (NoDownloadsRequired, CopySucceeded),
    VerifyFilesystemAssets: (ExtractionSucceeded,),
}


class VerificationOutcome(StrEnum):
    """Result of comparing a filesystem against its required assets."""

    PRESENT = "present"
    STALE = "stale"
    MISSING = "missing"


def transition_is_acceptable(event: SessionStartupEvent, state: SessionStartupState) -> bool:
    """Check whether event may be handled while the machine is in state.

    Args:
        event: Submitted event
        state: Current state

    Returns:
        True if the acceptance table allows the pair
    """
    if isinstance(event, ResetState):
        return True
    required_states = ACCEPTANCE_TABLE.get(type(event))
    if not required_states:
        return False
    return isinstance(state, required_states)


def select_required_downloads(
    asset_lists: Iterable[Iterable[Asset]],
    needs_update: Callable[[Asset], bool],
    filesystem_extracted: Callable[[], bool],
) -> list[Asset]:
    """Flatten asset lists into the assets that must be downloaded.

    A large asset that needs updating is still skipped when its filesystem has
    already been extracted; existing filesystems are refreshed through the
    verify/copy path instead of a full re-download.

    Args:
        asset_lists: Asset manifests, one list per source
        needs_update: Staleness check for a single asset
        filesystem_extracted: Lazily evaluated extraction check for the target filesystem

    Returns:
        Required assets, in manifest order
    """
    required: list[Asset] = []
    extracted: bool | None = None
    for asset_list in asset_lists:
        for asset in asset_list:
            if not needs_update(asset):
                continue
            if asset.is_large:
                if extracted is None:
                    extracted = filesystem_extracted()
                if extracted:
                    continue
            required.append(asset)
    return required


def verification_outcome(assets_present: bool, last_updated: int, last_distribution_update: int) -> VerificationOutcome:
    """Decide how verification proceeds.

    Args:
        assets_present: Whether every required asset exists in the filesystem
        last_updated: Filesystem's last update timestamp
        last_distribution_update: Timestamp of the newest distribution asset copy

    Returns:
        VerificationOutcome
    """
    if not assets_present:
        return VerificationOutcome.MISSING
    if last_updated >= last_distribution_update:
        return VerificationOutcome.PRESENT
    return VerificationOutcome.STALE


__all__ = [
    "ACCEPTANCE_TABLE",
    "VerificationOutcome",
    "select_required_downloads",
    "transition_is_acceptable",
    "verification_outcome",
]
