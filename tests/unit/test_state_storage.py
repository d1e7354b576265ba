"""
Unit tests for StateStorage.
"""
import threading
import time

import pytest
import yaml

from workflow_guidance.core.exceptions import StorageFailureError
from workflow_guidance.core.state_storage import FileStateStorage, InMemoryStateStorage


class TestInMemoryStateStorage:
    """Test the in-memory backend."""

    def test_save_and_load_are_copies(self):
        storage = InMemoryStateStorage()
        data = {"items": [1, 2]}

        storage.save("snap", data)
        data["items"].append(3)
        loaded = storage.load("snap")
        loaded["items"].append(4)

        assert storage.load("snap") == {"items": [1, 2]}
        assert storage.exists("snap")
        assert not storage.exists("other")
        assert storage.load("other") is None


class TestFileStateStorage:
    """Test the YAML file backend."""

    def test_file_storage_save_and_load(self, temp_workspace):
        """Test saving and loading a snapshot."""
        storage = FileStateStorage(temp_workspace / ".workflow" / "state")

        storage.save("executions", {"executions": [{"id": "e1"}]})

        path = storage.path_for("executions")
        assert path.exists()
        assert not path.with_suffix(".yaml.tmp").exists()
        assert storage.load("executions") == {"executions": [{"id": "e1"}]}
        storage.close()

    def test_file_storage_load_nonexistent(self, temp_workspace):
        storage = FileStateStorage(temp_workspace / "state")

        assert storage.load("missing") is None
        assert not storage.exists("missing")
        storage.close()

    def test_corrupt_file_warns_and_returns_none(self, temp_workspace):
        """Test that an unreadable snapshot degrades to fresh state."""
        storage = FileStateStorage(temp_workspace / "state")
        path = storage.path_for("tasks")
        path.parent.mkdir(parents=True)
        path.write_text("tasks: [unclosed", encoding="utf-8")

        with pytest.warns(UserWarning):
            assert storage.load("tasks") is None
        storage.close()

    def test_non_mapping_file_warns(self, temp_workspace):
        storage = FileStateStorage(temp_workspace / "state")
        path = storage.path_for("tasks")
        path.parent.mkdir(parents=True)
        path.write_text(yaml.safe_dump([1, 2]), encoding="utf-8")

        with pytest.warns(UserWarning):
            assert storage.load("tasks") is None
        storage.close()

    def test_unwritable_location_raises_storage_failure(self, temp_workspace):
        blocker = temp_workspace / "blocker"
        blocker.write_text("not a directory", encoding="utf-8")
        storage = FileStateStorage(blocker / "state")

        with pytest.raises(StorageFailureError):
            storage.save("executions", {"executions": []})
        storage.close()

    def test_io_timeout(self, temp_workspace):
        """Test that a stalled worker surfaces as a storage failure."""
        storage = FileStateStorage(temp_workspace / "state", io_timeout=0.05)
        release = threading.Event()
        storage._executor.submit(release.wait, 5)

        try:
            with pytest.raises(StorageFailureError) as exc_info:
                storage.save("executions", {"executions": []})
            assert "Timed out" in str(exc_info.value)
        finally:
            release.set()
            time.sleep(0.05)
            storage.close()

    def test_timed_out_write_never_reaches_disk(self, temp_workspace, monkeypatch):
        """Test that a write still running when the save gives up is discarded."""
        storage = FileStateStorage(temp_workspace / "state", io_timeout=0.05)
        original_dump = yaml.safe_dump

        def slow_dump(*args, **kwargs):
            time.sleep(0.3)
            return original_dump(*args, **kwargs)

        monkeypatch.setattr(yaml, "safe_dump", slow_dump)

        try:
            with pytest.raises(StorageFailureError):
                storage.save("executions", {"executions": ["x"]})
            time.sleep(0.6)

            assert storage.load("executions") is None
            assert not storage.exists("executions")
            assert not storage.path_for("executions").with_suffix(".yaml.tmp").exists()
        finally:
            storage.close()

    def test_timed_out_write_keeps_previous_snapshot(self, temp_workspace, monkeypatch):
        storage = FileStateStorage(temp_workspace / "state")
        storage.save("executions", {"executions": ["old"]})
        storage.io_timeout = 0.05
        original_dump = yaml.safe_dump

        def slow_dump(*args, **kwargs):
            time.sleep(0.3)
            return original_dump(*args, **kwargs)

        monkeypatch.setattr(yaml, "safe_dump", slow_dump)

        try:
            with pytest.raises(StorageFailureError):
                storage.save("executions", {"executions": ["new"]})
            time.sleep(0.6)

            assert storage.load("executions") == {"executions": ["old"]}
        finally:
            storage.close()
