"""
Shared pytest fixtures and configuration for all tests.
"""
import copy
import random
import shutil
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Generator

import pytest

from workflow_guidance.core.catalog import WorkflowCatalog
from workflow_guidance.core.execution_store import ExecutionStore
from workflow_guidance.core.state_storage import InMemoryStateStorage
from workflow_guidance.core.task_store import TaskStore
from workflow_guidance.core.workflow_engine import WorkflowEngine


class FakeClock:
    """Deterministic datetime source; call it to read, ``advance`` to move it"""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 9, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeTimer:
    """Deterministic seconds source for the context cache"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


SCENARIO_CATALOG: Dict[str, Any] = {
    "schema_version": "1.0",
    "roles": [
        {
            "id": "architect",
            "name": "architect",
            "priority": 1,
            "milestone": "Design Ready",
            "steps": [
                {"id": "s1", "name": "design", "sequence_number": 1,
                 "guidance": ["Sketch the components"], "quality_checks": ["Components named"]},
                {"id": "s2", "name": "plan", "sequence_number": 2, "dependencies": ["design"]},
            ],
        },
        {
            "id": "developer",
            "name": "developer",
            "priority": 2,
            "terminal": True,
            "milestone": "Code Complete",
            "steps": [
                {"id": "d1", "name": "implement", "sequence_number": 1},
                {"id": "d2", "name": "verify", "sequence_number": 2},
            ],
        },
    ],
    "transitions": [
        {
            "transition_name": "architect_to_developer",
            "from_role": "architect",
            "to_role": "developer",
            "conditions": [{"name": "allStepsCompleted", "required": True}],
        },
        {
            "transition_name": "architect_fast_track",
            "from_role": "architect",
            "to_role": "developer",
            "conditions": [
                {"name": "taskStatusReady", "required": True},
                {"name": "someFutureCheck", "required": True},
            ],
        },
        {
            "transition_name": "architect_disabled",
            "from_role": "architect",
            "to_role": "developer",
            "is_active": False,
        },
        {
            "transition_name": "developer_to_architect",
            "from_role": "developer",
            "to_role": "architect",
        },
    ],
}


@pytest.fixture
def temp_workspace() -> Generator[Path, None, None]:
    """Create a temporary workspace directory for testing."""
    temp_dir = tempfile.mkdtemp(prefix="workflow_guidance_test_")
    workspace = Path(temp_dir)
    (workspace / ".workflow").mkdir(parents=True, exist_ok=True)

    yield workspace

    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def catalog_data() -> Dict[str, Any]:
    """A fresh copy of the two-role scenario catalog document."""
    return copy.deepcopy(SCENARIO_CATALOG)


@pytest.fixture
def catalog(catalog_data) -> WorkflowCatalog:
    return WorkflowCatalog.from_dict(catalog_data)


@pytest.fixture
def default_catalog() -> WorkflowCatalog:
    return WorkflowCatalog.load_default()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def timer() -> FakeTimer:
    return FakeTimer()


@pytest.fixture
def storage() -> InMemoryStateStorage:
    return InMemoryStateStorage()


@pytest.fixture
def executions(storage, catalog, clock) -> ExecutionStore:
    return ExecutionStore(storage, catalog=catalog, lock_timeout=0.5, clock=clock)


@pytest.fixture
def tasks(storage, clock) -> TaskStore:
    return TaskStore(storage, clock=clock)


@pytest.fixture
def engine(catalog, storage, clock, timer) -> WorkflowEngine:
    """Engine over the scenario catalog with in-memory state and fake clocks."""
    return WorkflowEngine(catalog, storage=storage, clock=clock, cache_clock=timer,
                          rng=random.Random(7))


@pytest.fixture
def default_engine(default_catalog, clock, timer) -> WorkflowEngine:
    """Engine over the bundled catalog."""
    return WorkflowEngine(default_catalog, clock=clock, cache_clock=timer, rng=random.Random(7))
