"""
Collaborator records the engine reads and writes around executions:
tasks, code reviews, delegation history, subtasks and their dependency edges.
"""

import copy
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from .enums import IdKind, ReviewStatus, TaskStatus
from .exceptions import NotFoundError, StorageFailureError, ValidationError
from .identifiers import new_id
from .models import CodeReview, DelegationRecord, Subtask, SubtaskDependencyEdge, Task
from .state_storage import StateStorage

logger = logging.getLogger(__name__)

SNAPSHOT_NAME = "tasks"


class TaskStore:
    """In-memory view of the task snapshot, persisted on every change"""

    def __init__(self, storage: StateStorage, clock: Callable[[], datetime] = datetime.now):
        self.storage = storage
        self.clock = clock
        self._lock = threading.RLock()
        self._tasks: Dict[int, Task] = {}
        self._reviews: List[CodeReview] = []
        self._delegations: List[DelegationRecord] = []
        self._subtasks: Dict[str, Subtask] = {}
        self._edges: List[SubtaskDependencyEdge] = []
        self._completed_batches: Set[Tuple[int, str]] = set()
        self._load()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> None:
        data = self.storage.load(SNAPSHOT_NAME)
        if not data:
            return
        try:
            self._tasks = {t.id: t for t in (Task.from_dict(d) for d in data.get("tasks", []))}
            self._reviews = [CodeReview.from_dict(d) for d in data.get("reviews", [])]
            self._delegations = [DelegationRecord.from_dict(d) for d in data.get("delegations", [])]
            self._subtasks = {s.id: s for s in (Subtask.from_dict(d) for d in data.get("subtasks", []))}
            self._edges = [SubtaskDependencyEdge.from_dict(d) for d in data.get("subtask_dependencies", [])]
            self._completed_batches = {
                (int(b["task_id"]), b["batch_id"]) for b in data.get("completed_batches", [])
            }
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            raise StorageFailureError(f"Task snapshot is corrupt: {e}", context={"snapshot": SNAPSHOT_NAME})

    def _snapshot(self, **overrides: Any) -> Dict[str, Any]:
        state = {
            "tasks": self._tasks,
            "reviews": self._reviews,
            "delegations": self._delegations,
            "subtasks": self._subtasks,
            "subtask_dependencies": self._edges,
            "completed_batches": self._completed_batches,
        }
        state.update(overrides)
        return state

    def _commit(self, **overrides: Any) -> None:
        """Persist the next state, then swap it in; memory is untouched on failure"""
        with self._lock:
            state = self._snapshot(**overrides)
            self.storage.save(SNAPSHOT_NAME, {
                "tasks": [t.to_dict() for t in state["tasks"].values()],
                "reviews": [r.to_dict() for r in state["reviews"]],
                "delegations": [d.to_dict() for d in state["delegations"]],
                "subtasks": [s.to_dict() for s in state["subtasks"].values()],
                "subtask_dependencies": [e.to_dict() for e in state["subtask_dependencies"]],
                "completed_batches": [
                    {"task_id": task_id, "batch_id": batch_id}
                    for task_id, batch_id in sorted(state["completed_batches"])
                ],
            })
            self._tasks = state["tasks"]
            self._reviews = state["reviews"]
            self._delegations = state["delegations"]
            self._subtasks = state["subtasks"]
            self._edges = state["subtask_dependencies"]
            self._completed_batches = state["completed_batches"]

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_task(self, name: str, status: TaskStatus = TaskStatus.NOT_STARTED,
                    description: str = "", priority: str = "Medium",
                    owner: Optional[str] = None) -> Task:
        if not name or not name.strip():
            raise ValidationError("Task name cannot be empty", field="name")
        with self._lock:
            task = Task(
                id=max(self._tasks, default=0) + 1,
                name=name.strip(),
                status=status,
                description=description,
                priority=priority,
                owner=owner,
                current_mode=owner,
            )
            tasks = dict(self._tasks)
            tasks[task.id] = task
            self._commit(tasks=tasks)
            return copy.deepcopy(task)

    def find_task(self, task_id: Optional[int]) -> Optional[Task]:
        if not task_id:
            return None
        with self._lock:
            task = self._tasks.get(task_id)
            return copy.deepcopy(task) if task else None

    def get_task(self, task_id: int) -> Task:
        task = self.find_task(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found", context={"task_id": task_id})
        return task

    def list_tasks(self) -> List[Task]:
        with self._lock:
            return [copy.deepcopy(t) for t in self._tasks.values()]

    def update_task(self, task_id: int, **fields: Any) -> Task:
        with self._lock:
            task = copy.deepcopy(self.get_task(task_id))
            for name, value in fields.items():
                if name == "id" or not hasattr(task, name):
                    raise ValidationError(f"Cannot update task field '{name}'", field=name)
                setattr(task, name, value)
            tasks = dict(self._tasks)
            tasks[task_id] = task
            self._commit(tasks=tasks)
            return copy.deepcopy(task)

    # ------------------------------------------------------------------
    # Reviews and delegations
    # ------------------------------------------------------------------

    def add_review(self, task_id: int, status: ReviewStatus = ReviewStatus.PENDING,
                   summary: str = "") -> CodeReview:
        self.get_task(task_id)
        review = CodeReview(id=new_id(IdKind.REVIEW), task_id=task_id, status=status, summary=summary)
        with self._lock:
            self._commit(reviews=self._reviews + [review])
        return copy.deepcopy(review)

    def reviews_for(self, task_id: int) -> List[CodeReview]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._reviews if r.task_id == task_id]

    def has_approved_review(self, task_id: Optional[int]) -> bool:
        return bool(task_id) and any(r.status == ReviewStatus.APPROVED for r in self.reviews_for(task_id))

    def record_delegation(self, record: DelegationRecord) -> None:
        with self._lock:
            self._commit(delegations=self._delegations + [copy.deepcopy(record)])

    def delegations_for(self, task_id: Optional[int] = None,
                        execution_id: Optional[str] = None) -> List[DelegationRecord]:
        """Delegation history, newest first"""
        with self._lock:
            records = [
                copy.deepcopy(d) for d in self._delegations
                if (task_id is None or d.task_id == task_id)
                and (execution_id is None or d.execution_id == execution_id)
            ]
        records.reverse()
        return sorted(records, key=lambda d: d.timestamp, reverse=True)

    # ------------------------------------------------------------------
    # Subtasks
    # ------------------------------------------------------------------

    def insert_subtask_graph(self, subtasks: List[Subtask], edges: List[SubtaskDependencyEdge]) -> None:
        """
        Store a request's subtasks and edges as one unit.

        Raises:
            ValidationError: If an id collides with an existing subtask
            StorageFailureError: If the snapshot cannot be written
        """
        with self._lock:
            merged = dict(self._subtasks)
            for subtask in subtasks:
                if subtask.id in merged:
                    raise ValidationError(f"Duplicate subtask id '{subtask.id}'", field="id", value=subtask.id)
                merged[subtask.id] = copy.deepcopy(subtask)
            self._commit(subtasks=merged, subtask_dependencies=self._edges + copy.deepcopy(edges))

    def find_subtask(self, subtask_id: Optional[str]) -> Optional[Subtask]:
        if not subtask_id:
            return None
        with self._lock:
            subtask = self._subtasks.get(subtask_id)
            return copy.deepcopy(subtask) if subtask else None

    def get_subtask(self, subtask_id: str) -> Subtask:
        subtask = self.find_subtask(subtask_id)
        if subtask is None:
            raise NotFoundError(f"Subtask '{subtask_id}' not found", context={"subtask_id": subtask_id})
        return subtask

    def subtasks_for(self, task_id: int, batch_id: Optional[str] = None) -> List[Subtask]:
        """Subtasks of a task (optionally one batch) ordered by sequence number"""
        with self._lock:
            subtasks = [
                copy.deepcopy(s) for s in self._subtasks.values()
                if s.task_id == task_id and (batch_id is None or s.batch_id == batch_id)
            ]
        return sorted(subtasks, key=lambda s: s.sequence_number)

    def required_subtask_ids(self, subtask_id: str) -> List[str]:
        with self._lock:
            return [e.required_subtask_id for e in self._edges if e.dependent_subtask_id == subtask_id]

    def update_subtask(self, subtask_id: str, mutator: Callable[[Subtask], None]) -> Subtask:
        with self._lock:
            subtask = self.get_subtask(subtask_id)
            mutator(subtask)
            subtasks = dict(self._subtasks)
            subtasks[subtask_id] = subtask
            self._commit(subtasks=subtasks)
            return copy.deepcopy(subtask)

    def mark_batch_completed(self, task_id: int, batch_id: str) -> bool:
        """Remember a completed batch; True only the first time"""
        with self._lock:
            key = (task_id, batch_id)
            if key in self._completed_batches:
                return False
            self._commit(completed_batches=self._completed_batches | {key})
            return True
