"""
Snapshot storage backends for the execution and task stores.
Stores persist whole snapshots (plain dicts) under a name.
"""

import copy
import threading
import warnings
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from pathlib import Path
from typing import Any, Callable, Dict, Optional, TypeVar

import yaml

from .exceptions import StorageFailureError

T = TypeVar("T")


class StateStorage(ABC):
    """Abstract base class for snapshot storage backends"""

    @abstractmethod
    def save(self, name: str, data: Dict[str, Any]) -> None:
        """Persist a snapshot; raises StorageFailureError when it cannot"""

    @abstractmethod
    def load(self, name: str) -> Optional[Dict[str, Any]]:
        """Load a snapshot, returns None if not found"""

    @abstractmethod
    def exists(self, name: str) -> bool:
        """Check if a snapshot exists"""


class InMemoryStateStorage(StateStorage):
    """Process-local storage, used by tests and throwaway engines"""

    def __init__(self):
        self._snapshots: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def save(self, name: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._snapshots[name] = copy.deepcopy(data)

    def load(self, name: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            data = self._snapshots.get(name)
            return copy.deepcopy(data) if data is not None else None

    def exists(self, name: str) -> bool:
        with self._lock:
            return name in self._snapshots


class FileStateStorage(StateStorage):
    """
    YAML file storage rooted at a directory.

    Every read and write runs on a worker thread and is bounded by
    ``io_timeout`` seconds.
    """

    def __init__(self, root: Path, io_timeout: float = 10.0):
        self.root = Path(root)
        self.io_timeout = io_timeout
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="state-io")

    def path_for(self, name: str) -> Path:
        return self.root / f"{name}.yaml"

    def _bounded(self, action: str, func: Callable[[], T]) -> T:
        future = self._executor.submit(func)
        try:
            return future.result(timeout=self.io_timeout)
        except FutureTimeoutError:
            future.cancel()
            raise StorageFailureError(
                f"Timed out after {self.io_timeout}s while trying to {action}",
                context={"root": str(self.root)}
            )

    def save(self, name: str, data: Dict[str, Any]) -> None:
        """
        Write the snapshot through a temporary file and rename it into place.

        A save that timed out is abandoned: a write still running on the
        worker discards its temporary file instead of replacing the snapshot.
        """
        path = self.path_for(name)
        outcome = {"abandoned": False, "replaced": False}
        outcome_lock = threading.Lock()

        def write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(".yaml.tmp")
            with open(tmp_path, 'w', encoding='utf-8') as f:
                yaml.safe_dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)
            with outcome_lock:
                if outcome["abandoned"]:
                    tmp_path.unlink()
                    return
                tmp_path.replace(path)
                outcome["replaced"] = True

        try:
            self._bounded(f"save {path}", write)
        except StorageFailureError:
            with outcome_lock:
                if outcome["replaced"]:
                    return
                outcome["abandoned"] = True
            raise
        except (OSError, yaml.YAMLError) as e:
            raise StorageFailureError(f"Failed to save state to {path}: {e}", context={"snapshot": name})

    def load(self, name: str) -> Optional[Dict[str, Any]]:
        path = self.path_for(name)
        if not path.exists():
            return None

        def read() -> Any:
            with open(path, 'r', encoding='utf-8') as f:
                return yaml.safe_load(f)

        try:
            data = self._bounded(f"load {path}", read)
        except StorageFailureError:
            raise
        except (OSError, yaml.YAMLError) as e:
            warnings.warn(f"Failed to load state from {path}: {e}. Starting with fresh state.", UserWarning)
            return None
        if data is None:
            return None
        if not isinstance(data, dict):
            warnings.warn(f"State file {path} does not hold a mapping. Starting with fresh state.", UserWarning)
            return None
        return data

    def exists(self, name: str) -> bool:
        return self.path_for(name).exists()

    def close(self) -> None:
        self._executor.shutdown(wait=False)
