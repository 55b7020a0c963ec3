"""Session store for rootfsprep.

Persists filesystems and sessions to ~/.rootfsprep/store.toml and pushes the
current collections to subscribers whenever they change.

Philosophy:
- TOML format for a human-readable store
- Security: File permissions 0600
- Push model: subscribers receive the full collection on subscribe and on
  every change, never a delta

File layout:
    [[filesystems]]   one table per Filesystem
    [[sessions]]      one table per Session
"""

import logging
import os
import threading
import tomllib  # Python 3.11+ (requires-python >= 3.11)
from collections.abc import Callable
from pathlib import Path

import tomlkit  # For writing TOML (preserves formatting)

from rootfsprep.models import SERVICE_TYPES, Filesystem, Session

logger = logging.getLogger(__name__)

SessionsCallback = Callable[[list[Session]], None]
FilesystemsCallback = Callable[[list[Filesystem]], None]


class SessionStoreError(Exception):
    """Raised when store operations fail."""

    pass


class SessionStore:
    """TOML-backed store of filesystems and sessions."""

    def __init__(self, store_path: Path):
        """Initialize store.

        Args:
            store_path: Path to the TOML store (created on first write)
        """
        self.store_path = store_path
        self._lock = threading.RLock()
        self._active_session_subscribers: list[SessionsCallback] = []
        self._filesystem_subscribers: list[FilesystemsCallback] = []

    def _load(self) -> tuple[list[Filesystem], list[Session]]:
        if not self.store_path.exists():
            return [], []
        try:
            with open(self.store_path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise SessionStoreError(f"Failed to read store {self.store_path}: {e}") from e

        try:
            filesystems = [Filesystem.from_dict(entry) for entry in data.get("filesystems", [])]
            sessions = [Session.from_dict(entry) for entry in data.get("sessions", [])]
        except (KeyError, TypeError, ValueError) as e:
            raise SessionStoreError(f"Malformed store {self.store_path}: {e}") from e
        return filesystems, sessions

    def _save(self, filesystems: list[Filesystem], sessions: list[Session]) -> None:
        doc = tomlkit.document()

        filesystems_array = tomlkit.aot()
        for filesystem in filesystems:
            table = tomlkit.table()
            table.update(filesystem.to_dict())
            filesystems_array.append(table)
        doc.add("filesystems", filesystems_array)

        sessions_array = tomlkit.aot()
        for session in sessions:
            table = tomlkit.table()
            table.update(session.to_dict())
            sessions_array.append(table)
        doc.add("sessions", sessions_array)

        temp_path = self.store_path.with_suffix(".tmp")
        try:
            self.store_path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
            temp_path.write_text(tomlkit.dumps(doc))
            os.chmod(temp_path, 0o600)
            temp_path.replace(self.store_path)
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise SessionStoreError(f"Failed to write store {self.store_path}: {e}") from e

    def list_filesystems(self) -> list[Filesystem]:
        with self._lock:
            return self._load()[0]

    def list_sessions(self) -> list[Session]:
        with self._lock:
            return self._load()[1]

    def find_active_sessions(self) -> list[Session]:
        return [session for session in self.list_sessions() if session.active]

    def get_session(self, session_id: int) -> Session:
        """Look up a session by id.

        Raises:
            SessionStoreError: If no session has that id
        """
        for session in self.list_sessions():
            if session.id == session_id:
                return session
        raise SessionStoreError(f"Session not found: {session_id}")

    def add_filesystem(
        self, name: str, distribution_type: str, arch_type: str, last_updated: int = 0
    ) -> Filesystem:
        """Create a filesystem with the next free id.

        Args:
            name: Display name
            distribution_type: Distribution (e.g. "debian")
            arch_type: Architecture (e.g. "arm64")
            last_updated: Epoch seconds its assets were last refreshed

        Returns:
            Filesystem: The stored filesystem

        Raises:
            SessionStoreError: If a field is empty or the distribution contains a hyphen
        """
        if not name or not distribution_type or not arch_type:
            raise SessionStoreError("Filesystem name, distribution and architecture are required")
        if "-" in distribution_type:
            # Download file names encode the distribution between hyphens
            raise SessionStoreError(f"Distribution must not contain '-': {distribution_type}")

        with self._lock:
            filesystems, sessions = self._load()
            filesystem = Filesystem(
                id=max((fs.id for fs in filesystems), default=0) + 1,
                name=name,
                distribution_type=distribution_type,
                arch_type=arch_type,
                last_updated=last_updated,
            )
            filesystems.append(filesystem)
            self._save(filesystems, sessions)

        logger.info(f"Added filesystem {filesystem.id} ({name})")
        self._notify_filesystems(filesystems)
        return filesystem

    def add_session(
        self, name: str, filesystem_id: int, service_type: str = "ssh", is_apps_session: bool = False
    ) -> Session:
        """Create a session on an existing filesystem.

        Raises:
            SessionStoreError: If the filesystem is unknown or the service type invalid
        """
        if service_type not in SERVICE_TYPES:
            raise SessionStoreError(
                f"Invalid service type: {service_type} (expected one of {', '.join(SERVICE_TYPES)})"
            )

        with self._lock:
            filesystems, sessions = self._load()
            if not any(fs.id == filesystem_id for fs in filesystems):
                raise SessionStoreError(f"Filesystem not found: {filesystem_id}")
            session = Session(
                id=max((s.id for s in sessions), default=0) + 1,
                name=name,
                filesystem_id=filesystem_id,
                service_type=service_type,
                is_apps_session=is_apps_session,
            )
            sessions.append(session)
            self._save(filesystems, sessions)

        logger.info(f"Added session {session.id} ({name})")
        return session

    def set_session_active(self, session_id: int, active: bool, pid: int = 0) -> Session:
        """Mark a session running (with its pid) or stopped.

        Raises:
            SessionStoreError: If no session has that id
        """
        with self._lock:
            filesystems, sessions = self._load()
            for session in sessions:
                if session.id == session_id:
                    session.active = active
                    session.pid = pid if active else 0
                    break
            else:
                raise SessionStoreError(f"Session not found: {session_id}")
            self._save(filesystems, sessions)

        self._notify_active_sessions([s for s in sessions if s.active])
        return session

    def subscribe_active_sessions(self, callback: SessionsCallback) -> Callable[[], None]:
        """Deliver the active sessions now and after every change.

        Returns:
            Callable that cancels the subscription
        """
        with self._lock:
            self._active_session_subscribers.append(callback)
        callback(self.find_active_sessions())
        return lambda: self._unsubscribe(self._active_session_subscribers, callback)

    def subscribe_filesystems(self, callback: FilesystemsCallback) -> Callable[[], None]:
        """Deliver all filesystems now and after every change.

        Returns:
            Callable that cancels the subscription
        """
        with self._lock:
            self._filesystem_subscribers.append(callback)
        callback(self.list_filesystems())
        return lambda: self._unsubscribe(self._filesystem_subscribers, callback)

    def _unsubscribe(self, subscribers: list, callback: Callable) -> None:
        with self._lock:
            if callback in subscribers:
                subscribers.remove(callback)

    def _notify_active_sessions(self, active_sessions: list[Session]) -> None:
        with self._lock:
            subscribers = list(self._active_session_subscribers)
        for callback in subscribers:
            callback(list(active_sessions))

    def _notify_filesystems(self, filesystems: list[Filesystem]) -> None:
        with self._lock:
            subscribers = list(self._filesystem_subscribers)
        for callback in subscribers:
            callback(list(filesystems))


__all__ = ["SessionStore", "SessionStoreError"]
