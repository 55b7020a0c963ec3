"""Unit tests for provisioning_controller module.

Drives a real state machine whose collaborators are mocks, and records every
update the controller publishes.
"""

import pytest

from rootfsprep.models import Asset, DownloadHandle, Session
from rootfsprep.modules.asset_preferences import AssetPreferencesError
from rootfsprep.modules.download_manager import DownloadError
from rootfsprep.provisioning_controller import (
    NOT_SELECTED_REASON,
    CanOnlyStartSingleSession,
    CheckingForAssetsUpdates,
    CopyingDownloads,
    DownloadProgress,
    FetchingAssetLists,
    FilesystemExtraction,
    IllegalState,
    LargeDownloadRequired,
    ProvisioningController,
    SessionCanBeRestarted,
    SessionCanBeStarted,
    StartingSetup,
    VerifyingFilesystem,
)
from rootfsprep.startup import (
    CopyFailed,
    DistributionCopyFailed,
    DownloadsRequired,
    ExtractionFailed,
    ReadyForPreparation,
    RetrievingAssetLists,
    WaitingForSelection,
)

STARTUP_SCRIPT = Asset(name="startup.sh", architecture_type="arm64", distribution_type="debian", remote_timestamp=100)


@pytest.fixture
def collaborators(mock_asset_repository, mock_filesystem_operator, mock_download_coordinator, small_asset):
    """Configure mocks for a filesystem that is already extracted and up to date."""
    mock_asset_repository.get_all_asset_lists.return_value = [[small_asset], [STARTUP_SCRIPT]]
    mock_asset_repository.does_asset_need_to_update.return_value = False
    mock_asset_repository.get_distribution_assets_for_existing_filesystem.return_value = [STARTUP_SCRIPT]
    mock_asset_repository.get_last_distribution_update.return_value = 0
    mock_filesystem_operator.has_filesystem_been_successfully_extracted.return_value = True
    mock_filesystem_operator.are_all_required_assets_present.return_value = True
    mock_download_coordinator.downloaded_successfully.return_value = True
    return mock_asset_repository, mock_filesystem_operator, mock_download_coordinator


@pytest.fixture
def controller(fsm, collaborators):
    controller = ProvisioningController(fsm)
    yield controller
    controller.close()


@pytest.fixture
def updates(controller):
    published = []
    controller.subscribe(published.append)
    return published


class TestHappyPaths:
    """Tests for complete provisioning runs."""

    def test_nothing_to_download(self, controller, updates, fsm, session):
        """Test an up to date filesystem goes straight to verification."""
        assert controller.select_session(session)

        assert updates == [
            StartingSetup(),
            FetchingAssetLists(),
            CheckingForAssetsUpdates(),
            VerifyingFilesystem(),
            SessionCanBeStarted(session=session),
        ]
        assert isinstance(fsm.state, WaitingForSelection)
        assert controller.selected_session is None

    def test_small_download(self, controller, updates, fsm, session, small_asset, collaborators):
        """Test downloads start without approval and finish through copy and verify."""
        repository, _, coordinator = collaborators
        repository.does_asset_need_to_update.side_effect = lambda asset: asset == small_asset
        coordinator.enqueue.return_value = [DownloadHandle(asset=small_asset, download_id=7)]

        controller.select_session(session)
        coordinator.enqueue.assert_called_once_with([small_asset])
        assert updates[-1] == DownloadProgress(0, 1)

        controller.submit_completed_download_id(7)

        assert updates[-3:] == [CopyingDownloads(), VerifyingFilesystem(), SessionCanBeStarted(session=session)]
        coordinator.move_assets_to_local_directories.assert_called_once()
        coordinator.set_timestamp_for_downloaded_file.assert_called_once_with(7)

    def test_extraction_progress_is_published(
        self, controller, updates, session, small_asset, collaborators
    ):
        _, operator, _ = collaborators
        extracted = []
        operator.has_filesystem_been_successfully_extracted.side_effect = lambda name: bool(extracted)

        def extract(filesystem, on_progress_line):
            on_progress_line("etc/hostname")
            extracted.append(filesystem.id)

        operator.extract_filesystem.side_effect = extract

        controller.select_session(session)

        assert FilesystemExtraction("etc/hostname") in updates
        assert updates[-1] == SessionCanBeStarted(session=session)


class TestLargeDownloads:
    """Tests for the approval flow around rootfs archives."""

    @pytest.fixture
    def large_required(self, collaborators, large_asset):
        repository, operator, coordinator = collaborators
        repository.get_all_asset_lists.return_value = [[STARTUP_SCRIPT], [large_asset]]
        repository.does_asset_need_to_update.side_effect = lambda asset: asset == large_asset
        operator.has_filesystem_been_successfully_extracted.return_value = False
        coordinator.enqueue.return_value = [DownloadHandle(asset=large_asset, download_id=3)]
        return coordinator

    def test_waits_for_approval(self, controller, updates, fsm, session, large_asset, large_required):
        controller.select_session(session)

        assert updates[-1] == LargeDownloadRequired(downloads=[large_asset])
        assert isinstance(fsm.state, DownloadsRequired)
        large_required.enqueue.assert_not_called()

        assert controller.approve_large_downloads()

        large_required.enqueue.assert_called_once_with([large_asset])
        assert updates[-1] == DownloadProgress(0, 1)

    def test_auto_approve(self, fsm, session, large_asset, large_required):
        controller = ProvisioningController(fsm, auto_approve_large_downloads=True)
        updates = []
        controller.subscribe(updates.append)

        controller.select_session(session)

        assert LargeDownloadRequired(downloads=[large_asset]) in updates
        large_required.enqueue.assert_called_once_with([large_asset])
        controller.close()

    def test_approve_without_pending_downloads(self, controller):
        assert not controller.approve_large_downloads()

    def test_cancel_discards_pending_downloads(self, controller, fsm, session, large_required):
        controller.select_session(session)

        controller.cancel()

        assert isinstance(fsm.state, WaitingForSelection)
        assert controller.selected_session is None
        assert not controller.approve_large_downloads()
        large_required.enqueue.assert_not_called()


class TestSelectionOutcomes:
    """Tests for selections that do not start provisioning."""

    def test_single_session_supported(self, controller, updates, fsm, session):
        fsm.active_sessions.replace([Session(id=9, name="other", filesystem_id=1, active=True)])

        controller.select_session(session)

        assert updates == [CanOnlyStartSingleSession()]

    def test_session_restartable(self, controller, updates, fsm, session):
        fsm.active_sessions.replace([session])

        controller.select_session(session)

        assert updates == [SessionCanBeRestarted(session=session)]

    def test_selection_refused_while_busy(self, controller, fsm, session):
        fsm.force_state(RetrievingAssetLists())

        assert not controller.select_session(session)


class TestFailures:
    """Tests for failure states becoming IllegalState updates."""

    def test_asset_list_retrieval_failed(self, controller, updates, session, collaborators):
        repository, _, _ = collaborators
        repository.get_all_asset_lists.return_value = [[], []]

        controller.select_session(session)

        assert updates[-1] == IllegalState("Failed to retrieve asset lists.")

    def test_download_failed(self, controller, updates, session, small_asset, collaborators):
        repository, _, coordinator = collaborators
        repository.does_asset_need_to_update.side_effect = lambda asset: asset == small_asset
        coordinator.enqueue.return_value = [DownloadHandle(asset=small_asset, download_id=7)]
        coordinator.downloaded_successfully.return_value = False

        controller.select_session(session)
        controller.submit_completed_download_id(7)

        assert updates[-1] == IllegalState("Downloads have failed: Download 7 did not complete successfully")

    def test_completion_error_is_published(self, controller, updates, fsm, session, small_asset, collaborators):
        """Test an exception while handling a completion becomes IllegalState instead of escaping."""
        repository, _, coordinator = collaborators
        repository.does_asset_need_to_update.side_effect = lambda asset: asset == small_asset
        coordinator.enqueue.return_value = [DownloadHandle(asset=small_asset, download_id=7)]
        coordinator.set_timestamp_for_downloaded_file.side_effect = AssetPreferencesError("disk full")
        controller.select_session(session)

        controller.submit_completed_download_id(7)

        assert updates[-1] == IllegalState("disk full")
        assert not fsm.is_processing

    def test_enqueue_error(self, controller, updates, session, small_asset, collaborators):
        repository, _, coordinator = collaborators
        repository.does_asset_need_to_update.side_effect = lambda asset: asset == small_asset
        coordinator.enqueue.side_effect = DownloadError("Failed to remove stale copy")

        controller.select_session(session)

        assert updates[-1] == IllegalState("Downloads have failed: Failed to remove stale copy")

    def test_verification_missing_assets(self, controller, updates, session, collaborators):
        _, operator, _ = collaborators
        operator.are_all_required_assets_present.return_value = False

        controller.select_session(session)

        assert updates[-1] == IllegalState("Filesystem is missing assets.")

    @pytest.mark.parametrize(
        "state,reason",
        [
            (CopyFailed(), "Failed to copy assets to local storage."),
            (DistributionCopyFailed(), "Failed to copy assets to filesystem."),
            (ExtractionFailed(), "Failed to extract filesystem."),
        ],
    )
    def test_failure_reasons(self, state, reason, controller, updates, fsm, session):
        """Test each failure state maps to its reason once a session is selected."""
        controller._session = session
        controller._filesystem = fsm.filesystems.snapshot()[0]

        fsm.force_state(state)

        assert updates == [IllegalState(reason)]

    def test_preparation_state_without_selection(self, controller, updates, fsm):
        fsm.force_state(RetrievingAssetLists())
        assert updates == [IllegalState(NOT_SELECTED_REASON)]

    def test_rejected_transition(self, controller, updates):
        """Test a completion with nothing in flight is reported as a bad transition."""
        controller.submit_completed_download_id(5)

        assert len(updates) == 1
        assert isinstance(updates[0], IllegalState)
        assert updates[0].reason.startswith("Bad state transition")


class TestSubscriptions:
    """Tests for subscribe and close."""

    def test_unsubscribe(self, controller, session):
        published = []
        unsubscribe = controller.subscribe(published.append)
        unsubscribe()

        controller.select_session(session)

        assert published == []

    def test_close_stops_driving(self, controller, fsm, session):
        controller.close()

        controller.select_session(session)

        assert isinstance(fsm.state, ReadyForPreparation)
        assert fsm.state.session == session
