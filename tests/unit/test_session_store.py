"""Unit tests for session_store module."""

import os
from unittest.mock import Mock

import pytest

from rootfsprep.session_store import SessionStore, SessionStoreError


@pytest.fixture
def store(tmp_path):
    return SessionStore(tmp_path / "data" / "store.toml")


class TestFilesystemsAndSessions:
    """Tests for adding and listing records."""

    def test_empty_store(self, store):
        assert store.list_filesystems() == []
        assert store.list_sessions() == []
        assert store.find_active_sessions() == []

    def test_add_filesystem_assigns_ids(self, store):
        first = store.add_filesystem("debian-fs", "debian", "arm64")
        second = store.add_filesystem("ubuntu-fs", "ubuntu", "x86_64")

        assert (first.id, second.id) == (1, 2)
        assert [fs.name for fs in store.list_filesystems()] == ["debian-fs", "ubuntu-fs"]

    def test_add_filesystem_requires_fields(self, store):
        with pytest.raises(SessionStoreError, match="required"):
            store.add_filesystem("fs", "", "arm64")

    def test_add_filesystem_rejects_hyphenated_distribution(self, store):
        """Test a distribution that would break download file name parsing is refused."""
        with pytest.raises(SessionStoreError, match="must not contain"):
            store.add_filesystem("fs", "arch-linux", "arm64")
        assert store.list_filesystems() == []

    def test_add_session(self, store):
        filesystem = store.add_filesystem("debian-fs", "debian", "arm64")

        session = store.add_session("work", filesystem.id, service_type="vnc")

        assert store.get_session(session.id) == session
        assert session.service_type == "vnc"
        assert not session.active

    def test_add_session_unknown_filesystem(self, store):
        with pytest.raises(SessionStoreError, match="Filesystem not found"):
            store.add_session("work", 42)

    def test_add_session_invalid_service_type(self, store):
        filesystem = store.add_filesystem("debian-fs", "debian", "arm64")
        with pytest.raises(SessionStoreError, match="Invalid service type"):
            store.add_session("work", filesystem.id, service_type="telnet")

    def test_get_unknown_session(self, store):
        with pytest.raises(SessionStoreError, match="Session not found"):
            store.get_session(7)

    def test_set_session_active(self, store):
        """Test activation persists pid and deactivation clears it."""
        filesystem = store.add_filesystem("debian-fs", "debian", "arm64")
        session = store.add_session("work", filesystem.id)

        store.set_session_active(session.id, True, pid=4321)
        assert [(s.id, s.pid) for s in store.find_active_sessions()] == [(session.id, 4321)]

        store.set_session_active(session.id, False)
        assert store.find_active_sessions() == []
        assert store.get_session(session.id).pid == 0

    def test_persists_across_instances(self, store):
        filesystem = store.add_filesystem("debian-fs", "debian", "arm64")
        store.add_session("work", filesystem.id)

        reopened = SessionStore(store.store_path)

        assert [s.name for s in reopened.list_sessions()] == ["work"]

    def test_file_permissions(self, store):
        store.add_filesystem("debian-fs", "debian", "arm64")
        assert os.stat(store.store_path).st_mode & 0o777 == 0o600

    def test_malformed_store(self, store):
        store.store_path.parent.mkdir(parents=True)
        store.store_path.write_text("[[sessions]]\nname = 'missing id'\n")
        with pytest.raises(SessionStoreError, match="Malformed"):
            store.list_sessions()


class TestSubscriptions:
    """Tests for push subscriptions."""

    def test_filesystems_delivered_on_subscribe_and_change(self, store):
        """Test subscribers get the full collection every time."""
        store.add_filesystem("debian-fs", "debian", "arm64")
        callback = Mock()

        store.subscribe_filesystems(callback)
        store.add_filesystem("ubuntu-fs", "ubuntu", "arm64")

        deliveries = [[fs.name for fs in c.args[0]] for c in callback.call_args_list]
        assert deliveries == [["debian-fs"], ["debian-fs", "ubuntu-fs"]]

    def test_active_sessions_delivered_on_change(self, store):
        filesystem = store.add_filesystem("debian-fs", "debian", "arm64")
        session = store.add_session("work", filesystem.id)
        callback = Mock()

        store.subscribe_active_sessions(callback)
        store.set_session_active(session.id, True, pid=10)
        store.set_session_active(session.id, False)

        deliveries = [[s.id for s in c.args[0]] for c in callback.call_args_list]
        assert deliveries == [[], [session.id], []]

    def test_unsubscribe(self, store):
        callback = Mock()
        unsubscribe = store.subscribe_filesystems(callback)

        unsubscribe()
        store.add_filesystem("debian-fs", "debian", "arm64")

        callback.assert_called_once_with([])
