"""Tests for on-disk credential stores."""

import json
import os
import stat
import time

import pytest

from devlink.credentials import (
    CREDENTIALS_FILE,
    CredentialRoot,
    CredentialStore,
    delete_store_tree,
    is_valid_store_name,
)
from devlink.errors import StorageError


def _age(path, seconds):
    """Backdate a directory's mtime."""
    then = time.time() - seconds
    os.utime(path, (then, then))


class TestCredentialStore:
    """Tests for a single session's store."""

    @pytest.fixture
    def store(self, tmp_path):
        store = CredentialStore(tmp_path / "DEVLINK_V1_1_abcdefgh_001")
        store.create()
        return store

    def test_create_makes_private_directory(self, store):
        """Store directory is owner-only."""
        assert store.exists()
        mode = stat.S_IMODE(store.path.stat().st_mode)
        assert mode == 0o700

    def test_load_fresh_store_is_empty(self, store):
        assert store.load() == {}

    def test_persist_and_load(self, store):
        """Persisted state reads back unchanged."""
        state = {"creds": {"me": {"id": "15550100"}}, "keys": [1, 2, 3]}
        store.persist(state)
        assert store.load() == state

    def test_persist_file_is_private(self, store):
        store.persist({"a": 1})
        mode = stat.S_IMODE((store.path / CREDENTIALS_FILE).stat().st_mode)
        assert mode == 0o600

    def test_persist_replaces_previous_state(self, store):
        store.persist({"a": 1})
        store.persist({"b": 2})
        assert store.load() == {"b": 2}

    def test_persist_after_delete_raises(self, store):
        """Writing into a removed store is an error, not a re-creation."""
        store.delete_tree()
        with pytest.raises(StorageError):
            store.persist({"a": 1})
        assert not store.exists()

    def test_persist_unserializable_raises(self, store):
        with pytest.raises(StorageError):
            store.persist({"a": object()})

    def test_load_corrupt_file_raises(self, store):
        (store.path / CREDENTIALS_FILE).write_text("{not json")
        with pytest.raises(StorageError):
            store.load()

    def test_session_info_round_trip(self, store):
        """Session info is read back verbatim."""
        info = {
            "sessionId": store.path.name,
            "user": "15550100@s.link",
            "timestamp": "2026-01-01T00:00:00Z",
            "connectionType": "QR",
        }
        store.write_session_info(info)
        assert store.read_session_info() == info

    def test_session_info_missing(self, store):
        assert store.read_session_info() is None

    def test_session_info_corrupt_raises(self, store):
        store.session_info_path.write_text("][")
        with pytest.raises(StorageError):
            store.read_session_info()

    def test_delete_tree_removes_everything(self, store):
        store.persist({"a": 1})
        (store.path / "nested").mkdir()
        (store.path / "nested" / "key").write_text("x")

        assert store.delete_tree() is True
        assert not store.path.exists()

    def test_delete_tree_is_idempotent(self, store):
        """Deleting twice is not an error."""
        assert store.delete_tree() is True
        assert store.delete_tree() is False

    def test_delete_store_tree_missing_path(self, tmp_path):
        assert delete_store_tree(tmp_path / "never-existed") is False

    def test_age(self, store):
        _age(store.path, 120)
        assert 119 < store.age() < 130


class TestCredentialRoot:
    """Tests for the sessions directory."""

    @pytest.fixture
    def root(self, tmp_path):
        return CredentialRoot(tmp_path / "sessions")

    def test_creates_directory(self, root):
        assert root.directory.is_dir()

    def test_create_store(self, root):
        store = root.create_store("DEVLINK_V1_1_abcdefgh_001")
        assert store.exists()
        assert store.path.parent == root.directory

    @pytest.mark.parametrize("bad", ["../escape", "a/b", "", ".", "id with space"])
    def test_rejects_unsafe_names(self, root, bad):
        """Session IDs cannot escape the sessions directory."""
        with pytest.raises(StorageError):
            root.path_for(bad)

    def test_is_valid_store_name(self):
        assert is_valid_store_name("DEVLINK_V1_1_abcdefgh_001")
        assert not is_valid_store_name("../x")
        assert not is_valid_store_name(None)

    def test_list_stores_ignores_files(self, root):
        root.create_store("one")
        root.create_store("two")
        (root.directory / "stray.txt").write_text("x")

        names = sorted(s.path.name for s in root.list_stores())
        assert names == ["one", "two"]
        assert root.count() == 2

    def test_find_stale(self, root):
        """Only directories older than the threshold are stale."""
        fresh = root.create_store("fresh")
        old = root.create_store("old")
        _age(fresh.path, 10 * 60)
        _age(old.path, 2 * 3600)

        stale = root.find_stale(3600)
        assert [s.path.name for s in stale] == ["old"]

    def test_find_stale_empty_root(self, root):
        assert root.find_stale(0) == []

    def test_persisted_json_is_readable(self, root):
        store = root.create_store("s1")
        store.persist({"k": "v"})
        assert json.loads((store.path / CREDENTIALS_FILE).read_text()) == {"k": "v"}


class TestRootStatus:
    """Tests for the filesystem status report."""

    @pytest.fixture
    def root(self, tmp_path):
        return CredentialRoot(tmp_path / "sessions")

    @pytest.mark.parametrize("name", ["../etc", "", "missing"])
    def test_absent(self, root, name):
        assert root.status(name) == {"exists": False, "active": False}

    def test_pending(self, root):
        root.create_store("s1")
        assert root.status("s1") == {"exists": True, "active": False}

    def test_active(self, root):
        info = {"sessionId": "s1", "connectionType": "QR"}
        root.create_store("s1").write_session_info(info)
        assert root.status("s1") == {"exists": True, "active": True, "info": info}

    def test_unreadable(self, root):
        root.create_store("s1").session_info_path.write_text("{")
        status = root.status("s1")
        assert status["exists"] is False
        assert "error" in status


class TestRemoveStores:
    """Tests for bulk store removal."""

    def test_counts_removed(self, tmp_path):
        root = CredentialRoot(tmp_path / "sessions")
        stores = [root.create_store("a"), root.create_store("b")]
        stores[1].delete_tree()

        assert root.remove_stores(stores) == 1
        assert root.count() == 0

    def test_failure_skipped(self, tmp_path, monkeypatch, caplog):
        """One undeletable store does not stop the others."""
        root = CredentialRoot(tmp_path / "sessions")
        stuck, other = root.create_store("stuck"), root.create_store("other")

        def refuse():
            raise StorageError("permission denied")

        monkeypatch.setattr(stuck, "delete_tree", refuse)

        assert root.remove_stores([stuck, other]) == 1
        assert stuck.exists()
        assert not other.exists()
        assert "Could not remove stale store stuck" in caplog.text
