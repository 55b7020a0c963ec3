"""
Shared test fixtures and configuration for rootfsprep tests.

This module provides common fixtures used across all test types:
- Sample sessions, filesystems and assets
- Mocked state machine collaborators
- A state machine wired to those mocks, recording every emitted state
- Temporary data directories
"""

from unittest.mock import MagicMock

import pytest

from rootfsprep.cache import CollectionCache
from rootfsprep.models import Asset, Filesystem, Session
from rootfsprep.modules.asset_repository import AssetRepository
from rootfsprep.modules.download_coordinator import DownloadCoordinator
from rootfsprep.modules.filesystem_operator import FilesystemOperator
from rootfsprep.startup import SessionStartupFsm

# ============================================================================
# ENTITY FIXTURES
# ============================================================================


@pytest.fixture
def filesystem():
    """Debian arm64 filesystem with id 1."""
    return Filesystem(id=1, name="debian-fs", distribution_type="debian", arch_type="arm64")


@pytest.fixture
def session(filesystem):
    """Inactive SSH session on the sample filesystem."""
    return Session(id=1, name="debian-session", filesystem_id=filesystem.id)


@pytest.fixture
def small_asset():
    return Asset(name="busybox", architecture_type="arm64", distribution_type="support", remote_timestamp=100)


@pytest.fixture
def large_asset():
    return Asset(name="rootfs.tar.gz", architecture_type="arm64", distribution_type="debian", remote_timestamp=100)


# ============================================================================
# STATE MACHINE FIXTURES
# ============================================================================


@pytest.fixture
def mock_asset_repository():
    return MagicMock(spec=AssetRepository)


@pytest.fixture
def mock_filesystem_operator():
    operator = MagicMock(spec=FilesystemOperator)
    operator.has_filesystem_been_successfully_extracted.return_value = False
    return operator


@pytest.fixture
def mock_download_coordinator():
    return MagicMock(spec=DownloadCoordinator)


@pytest.fixture
def fsm(mock_asset_repository, mock_filesystem_operator, mock_download_coordinator, filesystem):
    """State machine with mocked collaborators, no active sessions and one filesystem."""
    return SessionStartupFsm(
        mock_asset_repository,
        mock_filesystem_operator,
        mock_download_coordinator,
        active_sessions=CollectionCache(),
        filesystems=CollectionCache([filesystem]),
        clock=lambda: 1000,
    )


@pytest.fixture
def emitted_states(fsm):
    """Every state the fixture machine emits after subscription (initial replay excluded)."""
    states = []
    fsm.state_stream.subscribe(states.append)
    states.clear()
    return states


# ============================================================================
# DIRECTORY FIXTURES
# ============================================================================


@pytest.fixture
def files_dir(tmp_path):
    """Temporary application files directory."""
    path = tmp_path / "files"
    path.mkdir()
    return path


@pytest.fixture
def rootfsprep_home(tmp_path, monkeypatch):
    """Temporary data directory exported as ROOTFSPREP_HOME."""
    home = tmp_path / "rootfsprep-home"
    home.mkdir()
    monkeypatch.setenv("ROOTFSPREP_HOME", str(home))
    return home
