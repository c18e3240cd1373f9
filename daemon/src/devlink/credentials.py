"""On-disk credential stores, one directory per linking session.

This module provides:
- CredentialStore: a single session's directory (credential state and
  session-info record)
- CredentialRoot: the parent directory holding every session's store
- delete_store_tree: idempotent recursive removal

Security features:
- File permissions (600 for files, 700 for directories)
- Session ID validation (prevent path traversal)
- Atomic writes via temp file and rename
"""

import json
import logging
import os
import re
import shutil
import time
from pathlib import Path
from typing import Any, Optional

from devlink.errors import StorageError

logger = logging.getLogger(__name__)

__all__ = [
    "CREDENTIALS_FILE",
    "SESSION_INFO_FILE",
    "CredentialRoot",
    "CredentialStore",
    "StorageError",
    "delete_store_tree",
    "is_valid_store_name",
]

CREDENTIALS_FILE = "creds.json"
SESSION_INFO_FILE = "session-info.json"

# Valid store name: alphanumeric, hyphens, underscores
STORE_NAME_PATTERN = re.compile(r"[a-zA-Z0-9_-]+")


def is_valid_store_name(name: str) -> bool:
    """Check a session ID is safe to use as a directory name."""
    return isinstance(name, str) and STORE_NAME_PATTERN.fullmatch(name) is not None


def delete_store_tree(path: Path) -> bool:
    """Recursively remove a store directory.

    Args:
        path: Store directory.

    Returns:
        True if something was removed, False if it was already gone.

    Raises:
        StorageError: If removal failed for a reason other than absence.
    """
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        return False
    except OSError as e:
        raise StorageError(f"Failed to remove {path}: {e}") from e
    return True


def _write_private(path: Path, content: str) -> None:
    """Write a file atomically, readable by the owner only."""
    temp_path = path.with_suffix(".tmp")
    fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    try:
        os.write(fd, content.encode())
    finally:
        os.close(fd)
    temp_path.replace(path)


class CredentialStore:
    """Credential material for one linking session.

    Attributes:
        path: Store directory, owned by its session until cleanup.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    @property
    def credentials_path(self) -> Path:
        return self.path / CREDENTIALS_FILE

    @property
    def session_info_path(self) -> Path:
        return self.path / SESSION_INFO_FILE

    def create(self) -> None:
        """Create the store directory.

        Raises:
            StorageError: If the directory cannot be created.
        """
        try:
            self.path.mkdir(parents=True, exist_ok=True)
            os.chmod(self.path, 0o700)
        except OSError as e:
            raise StorageError(f"Failed to create store {self.path}: {e}") from e

    def exists(self) -> bool:
        return self.path.is_dir()

    def load(self) -> dict[str, Any]:
        """Load the persisted credential state.

        Returns:
            Stored state, or an empty dict for a fresh store.
        """
        if not self.credentials_path.exists():
            return {}
        try:
            data = json.loads(self.credentials_path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Failed to read credentials: {e}") from e
        if not isinstance(data, dict):
            raise StorageError("Credential file does not hold an object")
        return data

    def persist(self, state: dict[str, Any]) -> None:
        """Replace the persisted credential state.

        Raises:
            StorageError: If the store is gone or the state cannot be written.
        """
        if not self.exists():
            raise StorageError(f"Store does not exist: {self.path}")
        try:
            content = json.dumps(state, indent=2)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Credential state is not serializable: {e}") from e
        try:
            _write_private(self.credentials_path, content)
        except OSError as e:
            raise StorageError(f"Failed to write credentials: {e}") from e

    def write_session_info(self, info: dict[str, Any]) -> None:
        """Write the session-info record next to the credentials."""
        if not self.exists():
            raise StorageError(f"Store does not exist: {self.path}")
        try:
            _write_private(self.session_info_path, json.dumps(info, indent=2))
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Failed to write session info: {e}") from e

    def read_session_info(self) -> Optional[dict[str, Any]]:
        """Read the session-info record.

        Returns:
            The record, or None if it has not been written.

        Raises:
            StorageError: If the record exists but cannot be parsed.
        """
        if not self.session_info_path.exists():
            return None
        try:
            return json.loads(self.session_info_path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Failed to read session info: {e}") from e

    def age(self, now: Optional[float] = None) -> float:
        """Seconds since the directory was last modified."""
        now = time.time() if now is None else now
        return now - self.path.stat().st_mtime

    def delete_tree(self) -> bool:
        """Remove the whole store. Safe to call more than once."""
        return delete_store_tree(self.path)


class CredentialRoot:
    """Parent directory of all session credential stores."""

    def __init__(self, directory: Path | str) -> None:
        """Initialize root.

        Creates directory if it doesn't exist, with secure permissions.

        Args:
            directory: Path to sessions directory.
        """
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        os.chmod(self.directory, 0o700)

    def path_for(self, session_id: str) -> Path:
        """Get the store directory for a session.

        Raises:
            StorageError: If the session ID is not a safe directory name.
        """
        if not is_valid_store_name(session_id):
            raise StorageError(f"Invalid session ID: {session_id!r}")
        return self.directory / session_id

    def store_for(self, session_id: str) -> CredentialStore:
        """Get a handle on a session's store without creating it."""
        return CredentialStore(self.path_for(session_id))

    def create_store(self, session_id: str) -> CredentialStore:
        """Create and return a fresh store for a session."""
        store = self.store_for(session_id)
        store.create()
        return store

    def list_stores(self) -> list[CredentialStore]:
        """List every store directory currently on disk."""
        try:
            entries = list(self.directory.iterdir())
        except FileNotFoundError:
            return []
        return [CredentialStore(p) for p in entries if p.is_dir()]

    def find_stale(self, max_age: float, now: Optional[float] = None) -> list[CredentialStore]:
        """List stores whose directory mtime is more than ``max_age`` seconds old."""
        now = time.time() if now is None else now
        stale = []
        for store in self.list_stores():
            try:
                age = store.age(now)
            except FileNotFoundError:
                continue  # removed concurrently
            if age > max_age:
                stale.append(store)
        return stale

    def count(self) -> int:
        return len(self.list_stores())

    def status(self, session_id: str) -> dict[str, Any]:
        """Report whether a session's store and session info exist.

        Returns:
            ``{"exists", "active"}``, plus ``"info"`` once the device linked,
            or ``"error"`` if the session info cannot be read.
        """
        if not is_valid_store_name(session_id):
            return {"exists": False, "active": False}

        store = self.store_for(session_id)
        try:
            if not store.exists():
                return {"exists": False, "active": False}
            info = store.read_session_info()
        except StorageError as e:
            return {"exists": False, "active": False, "error": str(e)}

        if info is None:
            return {"exists": True, "active": False}
        return {"exists": True, "active": True, "info": info}

    def remove_stores(self, stores: list[CredentialStore]) -> int:
        """Delete several stores, skipping any that cannot be removed.

        Returns:
            Number of stores actually removed.
        """
        removed = 0
        for store in stores:
            try:
                if store.delete_tree():
                    removed += 1
            except StorageError as e:
                logger.warning(f"Could not remove stale store {store.path.name}: {e}")
        return removed
