"""Provisioning controller - drives the session startup state machine.

Observes every state the machine emits, submits the event that moves
provisioning forward and publishes a user-facing update describing progress.

Philosophy:
- The machine decides, the controller only sequences
- One update per observed state that the user should see
- Failures become IllegalState updates carrying a readable reason

Public API (Studs):
    ProvisioningController - State-to-event driver
    ProvisioningUpdate - Union of the updates published to subscribers
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field

from rootfsprep.models import Asset, Filesystem, Session
from rootfsprep.startup import (
    AssetDownloadComplete,
    AssetListsRetrievalFailed,
    AssetListsRetrieved,
    AssetsMissing,
    AssetsPresent,
    CopyDownloadsToLocalStorage,
    CopyFailed,
    CopySucceeded,
    CopyingToLocalDirectories,
    DistributionCopyFailed,
    DownloadAssets,
    DownloadingRequirements,
    DownloadsFailed,
    DownloadsRequired,
    DownloadsSucceeded,
    ExtractFilesystem,
    ExtractingFilesystem,
    ExtractionFailed,
    ExtractionSucceeded,
    GenerateDownloads,
    GeneratingDownloadRequirements,
    NoDownloadsRequired,
    ReadyForPreparation,
    RejectedTransition,
    ResetState,
    RetrieveAssetLists,
    RetrievingAssetLists,
    SessionRestartable,
    SessionSelected,
    SessionStartupFsm,
    SessionStartupState,
    SingleSessionSupported,
    VerifyFilesystemAssets,
    VerifyingAssets,
    WaitingForSelection,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StartingSetup:
    pass


@dataclass(frozen=True)
class FetchingAssetLists:
    pass


@dataclass(frozen=True)
class CheckingForAssetsUpdates:
    pass


@dataclass(frozen=True)
class LargeDownloadRequired:
    """Downloads include a rootfs archive and wait for approval."""

    downloads: list[Asset] = field(default_factory=list)


@dataclass(frozen=True)
class DownloadProgress:
    num_completed: int
    num_total: int


@dataclass(frozen=True)
class CopyingDownloads:
    pass


@dataclass(frozen=True)
class FilesystemExtraction:
    extraction_target: str


@dataclass(frozen=True)
class VerifyingFilesystem:
    pass


@dataclass(frozen=True)
class SessionCanBeStarted:
    session: Session


@dataclass(frozen=True)
class SessionCanBeRestarted:
    session: Session


@dataclass(frozen=True)
class CanOnlyStartSingleSession:
    pass


@dataclass(frozen=True)
class IllegalState:
    """Provisioning stopped; reason says why."""

    reason: str


ProvisioningUpdate = (
    StartingSetup
    | FetchingAssetLists
    | CheckingForAssetsUpdates
    | LargeDownloadRequired
    | DownloadProgress
    | CopyingDownloads
    | FilesystemExtraction
    | VerifyingFilesystem
    | SessionCanBeStarted
    | SessionCanBeRestarted
    | CanOnlyStartSingleSession
    | IllegalState
)

UpdateCallback = Callable[[ProvisioningUpdate], None]

# States that may be observed before a session has been prepared
SELECTION_STATES = (
    WaitingForSelection,
    SingleSessionSupported,
    SessionRestartable,
    ReadyForPreparation,
    RejectedTransition,
)

FAILURE_REASONS: dict[type, str] = {
    AssetListsRetrievalFailed: "Failed to retrieve asset lists.",
    CopyFailed: "Failed to copy assets to local storage.",
    DistributionCopyFailed: "Failed to copy assets to filesystem.",
    ExtractionFailed: "Failed to extract filesystem.",
    AssetsMissing: "Filesystem is missing assets.",
}

NOT_SELECTED_REASON = "Trying to handle session preparation before one has been selected."


class ProvisioningController:
    """Turn observed provisioning states into the next event and a user update.

    Example:
        >>> controller = ProvisioningController(fsm)
        >>> controller.subscribe(print)
        >>> controller.select_session(session)
        StartingSetup()
        FetchingAssetLists()
        ...
        SessionCanBeStarted(session=Session(...))
    """

    def __init__(self, fsm: SessionStartupFsm, auto_approve_large_downloads: bool = False):
        """Initialize controller and start observing the machine.

        Args:
            fsm: State machine to drive
            auto_approve_large_downloads: Start rootfs downloads without waiting for approval
        """
        self.fsm = fsm
        self.auto_approve_large_downloads = auto_approve_large_downloads

        self._lock = threading.Lock()
        self._session: Session | None = None
        self._filesystem: Filesystem | None = None
        self._awaiting_approval: list[Asset] = []
        self._subscribers: list[UpdateCallback] = []

        self._unsubscribe = fsm.state_stream.subscribe(self._on_state)

    def subscribe(self, callback: UpdateCallback) -> Callable[[], None]:
        """Register callback for every published update.

        Returns:
            Callable that removes the callback
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def close(self) -> None:
        """Stop observing the machine."""
        self._unsubscribe()

    @property
    def selected_session(self) -> Session | None:
        with self._lock:
            return self._session

    def select_session(self, session: Session) -> bool:
        """Start provisioning for session.

        Returns:
            bool: False when the machine is busy with another selection
        """
        if not isinstance(self.fsm.effective_state, WaitingForSelection):
            logger.warning(f"Ignoring selection of session {session.id}: provisioning already in progress")
            return False
        self.fsm.submit_event(SessionSelected(session=session))
        return True

    def submit_completed_download_id(self, download_id: int) -> None:
        """Report a finished download, tagged with the batch currently in flight.

        Runs on download worker threads. Failures are published as
        IllegalState, never raised.
        """
        try:
            self.fsm.submit_event(
                AssetDownloadComplete(download_id=download_id, batch_id=self.fsm.current_batch_id)
            )
        except Exception as e:
            logger.exception(f"Handling completion of download {download_id} failed: {e}")
            self._publish(IllegalState(str(e)))

    def approve_large_downloads(self) -> bool:
        """Start downloads held back by LargeDownloadRequired.

        Returns:
            bool: False when no downloads were awaiting approval
        """
        with self._lock:
            downloads, self._awaiting_approval = self._awaiting_approval, []
        if not downloads:
            return False
        self.fsm.submit_event(DownloadAssets(assets=downloads))
        return True

    def cancel(self) -> None:
        """Abandon the current selection and return the machine to WaitingForSelection."""
        self._clear_selection()
        self.fsm.submit_event(ResetState())

    def _clear_selection(self) -> None:
        with self._lock:
            self._session = None
            self._filesystem = None
            self._awaiting_approval = []

    def _publish(self, update: ProvisioningUpdate) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            callback(update)

    def _on_state(self, state: SessionStartupState) -> None:
        if isinstance(state, SELECTION_STATES):
            self._handle_selection_state(state)
            return

        with self._lock:
            session, filesystem = self._session, self._filesystem
        if session is None or filesystem is None:
            self._publish(IllegalState(NOT_SELECTED_REASON))
            return

        self._handle_preparation_state(state, session, filesystem)

    def _handle_selection_state(self, state: SessionStartupState) -> None:
        if isinstance(state, ReadyForPreparation):
            with self._lock:
                self._session = state.session
                self._filesystem = state.filesystem
            self._publish(StartingSetup())
            self.fsm.submit_event(RetrieveAssetLists(filesystem=state.filesystem))
        elif isinstance(state, SingleSessionSupported):
            self._publish(CanOnlyStartSingleSession())
        elif isinstance(state, SessionRestartable):
            self._publish(SessionCanBeRestarted(session=state.session))
        elif isinstance(state, RejectedTransition):
            self._publish(IllegalState(f"Bad state transition: {state}"))

    def _handle_preparation_state(
        self, state: SessionStartupState, session: Session, filesystem: Filesystem
    ) -> None:
        if isinstance(state, RetrievingAssetLists):
            self._publish(FetchingAssetLists())
        elif isinstance(state, AssetListsRetrieved):
            self.fsm.submit_event(GenerateDownloads(filesystem=filesystem, asset_lists=state.asset_lists))
        elif isinstance(state, GeneratingDownloadRequirements):
            self._publish(CheckingForAssetsUpdates())
        elif isinstance(state, DownloadsRequired):
            self._handle_downloads_required(state)
        elif isinstance(state, NoDownloadsRequired | CopySucceeded):
            self.fsm.submit_event(ExtractFilesystem(filesystem=filesystem))
        elif isinstance(state, DownloadingRequirements):
            self._publish(DownloadProgress(state.num_completed, state.num_total))
        elif isinstance(state, DownloadsSucceeded):
            self.fsm.submit_event(CopyDownloadsToLocalStorage())
        elif isinstance(state, DownloadsFailed):
            self._publish(IllegalState(f"Downloads have failed: {state.reason}"))
        elif isinstance(state, CopyingToLocalDirectories):
            self._publish(CopyingDownloads())
        elif isinstance(state, ExtractingFilesystem):
            self._publish(FilesystemExtraction(state.extraction_target))
        elif isinstance(state, ExtractionSucceeded):
            self.fsm.submit_event(VerifyFilesystemAssets(filesystem=filesystem))
        elif isinstance(state, VerifyingAssets):
            self._publish(VerifyingFilesystem())
        elif isinstance(state, AssetsPresent):
            self._clear_selection()
            self._publish(SessionCanBeStarted(session=session))
            self.fsm.submit_event(ResetState())
        elif type(state) in FAILURE_REASONS:
            self._publish(IllegalState(FAILURE_REASONS[type(state)]))

    def _handle_downloads_required(self, state: DownloadsRequired) -> None:
        downloads = list(state.required_downloads)
        if state.large_download_required:
            self._publish(LargeDownloadRequired(downloads=downloads))
            if not self.auto_approve_large_downloads:
                with self._lock:
                    self._awaiting_approval = downloads
                return
        self.fsm.submit_event(DownloadAssets(assets=downloads))


__all__ = [
    "CanOnlyStartSingleSession",
    "CheckingForAssetsUpdates",
    "CopyingDownloads",
    "DownloadProgress",
    "FetchingAssetLists",
    "FilesystemExtraction",
    "IllegalState",
    "LargeDownloadRequired",
    "ProvisioningController",
    "ProvisioningUpdate",
    "SessionCanBeRestarted",
    "SessionCanBeStarted",
    "StartingSetup",
    "VerifyingFilesystem",
]
