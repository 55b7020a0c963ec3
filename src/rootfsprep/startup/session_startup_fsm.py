"""Session Startup State Machine - Orchestrates filesystem provisioning.

Philosophy:
- Single logical actor: one event is fully handled before the next
- Every outcome is a state value; only contract violations raise
- Idempotent: never re-download or re-extract what is already in place
- Push model: downloads are enqueued, completions are submitted back as events

Public API (Studs):
    SessionStartupFsm - The provisioning state machine
    FilesystemNotFoundError - Selected session references an unknown filesystem

Flow:
    SessionSelected -> RetrieveAssetLists -> GenerateDownloads
        -> [DownloadAssets -> AssetDownloadComplete* -> CopyDownloadsToLocalStorage]
        -> ExtractFilesystem -> VerifyFilesystemAssets

An external driver observes ``state_stream`` and turns each emitted state into
the next event (see ``rootfsprep.provisioning_controller``).
"""

import itertools
import logging
import threading
from collections import deque
from collections.abc import Callable

from rootfsprep.cache import CollectionCache
from rootfsprep.models import Asset, Filesystem, Session
from rootfsprep.modules.asset_preferences import AssetPreferencesError, current_timestamp
from rootfsprep.modules.asset_repository import AssetRepository
from rootfsprep.modules.download_coordinator import DownloadCoordinator, RelocationError
from rootfsprep.modules.download_manager import DownloadError
from rootfsprep.modules.filesystem_operator import FilesystemOperationError, FilesystemOperator
from rootfsprep.startup.download_batch import DownloadBatch
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
from rootfsprep.startup.state_stream import StateStream
from rootfsprep.startup.states import (
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
from rootfsprep.startup.transitions import (
    VerificationOutcome,
    select_required_downloads,
    transition_is_acceptable,
    verification_outcome,
)

logger = logging.getLogger(__name__)


class FilesystemNotFoundError(LookupError):
    """Raised when a selected session references a filesystem that is not known."""

    pass


class SessionStartupFsm:
    """Provisioning state machine for starting a session.

    Example:
        >>> fsm = SessionStartupFsm(repository, operator, coordinator, active_sessions, filesystems)
        >>> fsm.state_stream.subscribe(print)
        WaitingForSelection()
        >>> fsm.submit_event(SessionSelected(session))
        ReadyForPreparation(session=..., filesystem=...)
    """

    def __init__(
        self,
        asset_repository: AssetRepository,
        filesystem_operator: FilesystemOperator,
        download_coordinator: DownloadCoordinator,
        active_sessions: CollectionCache[Session] | None = None,
        filesystems: CollectionCache[Filesystem] | None = None,
        clock: Callable[[], int] = current_timestamp,
    ):
        """Initialize state machine.

        Args:
            asset_repository: Asset manifests, staleness and update timestamps
            filesystem_operator: Extraction, presence checks and copy-into-place
            download_coordinator: Enqueues downloads and relocates finished ones
            active_sessions: Cache of running sessions, replaced by the store subscription
            filesystems: Cache of known filesystems, replaced by the store subscription
            clock: Source of "now" for distribution update timestamps
        """
        self.asset_repository = asset_repository
        self.filesystem_operator = filesystem_operator
        self.download_coordinator = download_coordinator
        self.active_sessions: CollectionCache[Session] = active_sessions or CollectionCache()
        self.filesystems: CollectionCache[Filesystem] = filesystems or CollectionCache()
        self._clock = clock

        self.state_stream = StateStream(WaitingForSelection())

        self._batch: DownloadBatch | None = None
        self._batch_ids = itertools.count(1)

        self._queue_lock = threading.Lock()
        self._pending: deque[SessionStartupEvent] = deque()
        self._draining = False

    @property
    def state(self) -> SessionStartupState:
        """Current provisioning state."""
        return self.state_stream.value

    @property
    def effective_state(self) -> SessionStartupState:
        """State events are checked against; a rejection leaves it unchanged."""
        current = self.state_stream.value
        if isinstance(current, RejectedTransition):
            return current.state
        return current

    @property
    def current_batch_id(self) -> int | None:
        """Identifier of the download batch in flight, if any."""
        return self._batch.batch_id if self._batch else None

    @property
    def is_processing(self) -> bool:
        """True while some thread is handling submitted events."""
        with self._queue_lock:
            return self._draining

    def force_state(self, new_state: SessionStartupState) -> None:
        """Test hook: set the state directly. Production code never calls this."""
        self.state_stream.emit(new_state)

    def submit_event(self, event: SessionStartupEvent) -> None:
        """Submit an event; returns once it and any events queued meanwhile are handled.

        Events submitted while another event is being handled (from an observer
        callback or another thread) are queued and handled in order by the
        thread already draining the queue.

        Args:
            event: Event to apply

        Raises:
            FilesystemNotFoundError: If a selected session's filesystem is unknown
        """
        with self._queue_lock:
            self._pending.append(event)
            if self._draining:
                return
            self._draining = True

        try:
            while True:
                with self._queue_lock:
                    if not self._pending:
                        self._draining = False
                        return
                    next_event = self._pending.popleft()
                self._handle(next_event)
        except BaseException:
            with self._queue_lock:
                self._pending.clear()
                self._draining = False
            raise

    def _emit(self, new_state: SessionStartupState) -> None:
        logger.debug(f"Session startup state: {state_name(new_state)}")
        self.state_stream.emit(new_state)

    def _handle(self, event: SessionStartupEvent) -> None:
        current = self.effective_state
        if not transition_is_acceptable(event, current):
            logger.warning(
                f"Rejected {type(event).__name__} while in {state_name(current)}"
            )
            self._emit(RejectedTransition(event=event, state=current))
            return

        if isinstance(event, SessionSelected):
            self._handle_session_selected(event.session)
        elif isinstance(event, RetrieveAssetLists):
            self._handle_retrieve_asset_lists(event.filesystem)
        elif isinstance(event, GenerateDownloads):
            self._handle_generate_downloads(event.filesystem, event.asset_lists)
        elif isinstance(event, DownloadAssets):
            self._handle_download_assets(event.assets)
        elif isinstance(event, AssetDownloadComplete):
            self._handle_asset_download_complete(event.download_id, event.batch_id)
        elif isinstance(event, CopyDownloadsToLocalStorage):
            self._handle_copy_downloads()
        elif isinstance(event, ExtractFilesystem):
            self._handle_extract_filesystem(event.filesystem)
        elif isinstance(event, VerifyFilesystemAssets):
            self._handle_verify_filesystem_assets(event.filesystem)
        elif isinstance(event, ResetState):
            self._batch = None
            self._emit(WaitingForSelection())

    def _find_filesystem_for_session(self, session: Session) -> Filesystem:
        filesystem = self.filesystems.find(lambda fs: fs.id == session.filesystem_id)
        if filesystem is None:
            raise FilesystemNotFoundError(
                f"Session '{session.name}' (id {session.id}) references unknown "
                f"filesystem {session.filesystem_id}"
            )
        return filesystem

    def _handle_session_selected(self, session: Session) -> None:
        active_sessions = self.active_sessions.snapshot()
        if active_sessions:
            if any(active.id == session.id for active in active_sessions):
                self._emit(SessionRestartable(session=session))
                return
            self._emit(SingleSessionSupported())
            return

        filesystem = self._find_filesystem_for_session(session)
        self._emit(ReadyForPreparation(session=session, filesystem=filesystem))

    def _handle_retrieve_asset_lists(self, filesystem: Filesystem) -> None:
        self._emit(RetrievingAssetLists())

        asset_lists = self.asset_repository.get_all_asset_lists(
            filesystem.distribution_type, filesystem.arch_type
        )

        # One missing manifest invalidates the whole set. An empty outer list
        # means no manifest was fetched at all and fails the same way.
        if not asset_lists or any(not asset_list for asset_list in asset_lists):
            self._emit(AssetListsRetrievalFailed())
            return

        self._emit(AssetListsRetrieved(asset_lists=asset_lists))

    def _handle_generate_downloads(
        self, filesystem: Filesystem, asset_lists: list[list[Asset]]
    ) -> None:
        self._emit(GeneratingDownloadRequirements())

        required_downloads = select_required_downloads(
            asset_lists,
            needs_update=self.asset_repository.does_asset_need_to_update,
            filesystem_extracted=lambda: self.filesystem_operator.has_filesystem_been_successfully_extracted(
                filesystem.directory_name
            ),
        )

        if not required_downloads:
            self._emit(NoDownloadsRequired())
            return

        large_download_required = any(asset.is_large for asset in required_downloads)
        self._emit(
            DownloadsRequired(
                required_downloads=required_downloads,
                large_download_required=large_download_required,
            )
        )

    def _handle_download_assets(self, assets: list[Asset]) -> None:
        try:
            handles = self.download_coordinator.enqueue(assets)
        except DownloadError as e:
            logger.error(f"Failed to enqueue downloads: {e}")
            self._emit(DownloadsFailed(reason=str(e)))
            return
        self._batch = DownloadBatch(next(self._batch_ids), handles)
        logger.info(f"Downloading {self._batch.total} asset(s) in batch {self._batch.batch_id}")

        self._emit(DownloadingRequirements(num_completed=0, num_total=self._batch.total))
        if self._batch.total == 0:
            self._emit(DownloadsSucceeded())

    def _handle_asset_download_complete(self, download_id: int, batch_id: int | None) -> None:
        batch = self._batch
        if (
            batch is None
            or (batch_id is not None and batch_id != batch.batch_id)
            or not batch.contains(download_id)
        ):
            logger.warning(f"Discarding completion of download {download_id} from a superseded batch")
            if batch is not None:
                self._emit(DownloadingRequirements(batch.completed, batch.total))
            return

        # Fail fast: the first failed download fails the batch.
        if not self.download_coordinator.downloaded_successfully(download_id):
            self._emit(DownloadsFailed(reason=f"Download {download_id} did not complete successfully"))
            return

        if batch.resolve(download_id):
            self.download_coordinator.set_timestamp_for_downloaded_file(download_id)

        if not batch.is_complete:
            self._emit(DownloadingRequirements(batch.completed, batch.total))
            return

        self._emit(DownloadsSucceeded())

    def _handle_copy_downloads(self) -> None:
        self._emit(CopyingToLocalDirectories())
        try:
            self.download_coordinator.move_assets_to_local_directories()
        except (RelocationError, OSError) as e:
            logger.error(f"Failed to move downloads into place: {e}")
            self._emit(CopyFailed())
            return
        self._emit(CopySucceeded())

    def _handle_extract_filesystem(self, filesystem: Filesystem) -> None:
        directory_name = filesystem.directory_name

        if self.filesystem_operator.has_filesystem_been_successfully_extracted(directory_name):
            self._emit(ExtractionSucceeded())
            return

        if not self._copy_distribution_assets_to_filesystem(filesystem):
            self._emit(DistributionCopyFailed())
            return

        try:
            self.filesystem_operator.extract_filesystem(filesystem, self._log_extraction_line)
        except FilesystemOperationError as e:
            logger.error(f"Extraction of filesystem {directory_name} failed: {e}")

        if self.filesystem_operator.has_filesystem_been_successfully_extracted(directory_name):
            self._emit(ExtractionSucceeded())
            return

        self._emit(ExtractionFailed())

    def _log_extraction_line(self, line: str) -> None:
        self._emit(ExtractingFilesystem(extraction_target=line))

    def _copy_distribution_assets_to_filesystem(self, filesystem: Filesystem) -> bool:
        try:
            self.filesystem_operator.copy_distribution_assets_to_filesystem(
                filesystem.directory_name, filesystem.distribution_type
            )
            self.asset_repository.set_last_distribution_update(
                filesystem.distribution_type, self._clock()
            )
        except (FilesystemOperationError, AssetPreferencesError, OSError) as e:
            logger.error(f"Failed to copy {filesystem.distribution_type} assets into filesystem: {e}")
            return False
        return True

    def _handle_verify_filesystem_assets(self, filesystem: Filesystem) -> None:
        self._emit(VerifyingAssets())

        directory_name = filesystem.directory_name
        required_assets = self.asset_repository.get_distribution_assets_for_existing_filesystem(filesystem)
        outcome = verification_outcome(
            assets_present=self.filesystem_operator.are_all_required_assets_present(
                directory_name, required_assets
            ),
            last_updated=filesystem.last_updated,
            last_distribution_update=self.asset_repository.get_last_distribution_update(
                filesystem.distribution_type
            ),
        )

        if outcome is VerificationOutcome.PRESENT:
            self._emit(AssetsPresent())
        elif outcome is VerificationOutcome.STALE:
            if not self._copy_distribution_assets_to_filesystem(filesystem):
                self._emit(DistributionCopyFailed())
                return
            self.filesystem_operator.remove_rootfs_files_from_filesystem(directory_name)
            self._emit(AssetsPresent())
        else:
            self._emit(AssetsMissing())


__all__ = ["FilesystemNotFoundError", "SessionStartupFsm"]
