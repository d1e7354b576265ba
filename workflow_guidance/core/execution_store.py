"""
Execution store: persistent Execution records and append-only StepProgress.

Every mutation is a read-modify-write serialized by a per-execution lock and
checked against the record's ``version``. The whole snapshot is persisted
before the in-memory copy is swapped, so a failed write leaves memory as it was.
"""

import copy
import json
import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional

from .catalog import WorkflowCatalog
from .enums import ExecutionMode, IdKind, StepProgressStatus, StepResult
from .exceptions import (
    ConcurrentModificationError, InconsistentStateError, NotFoundError,
    StorageFailureError, ValidationError,
)
from .identifiers import new_id
from .models import Execution, ExecutionState, StepProgress
from .state_storage import StateStorage

logger = logging.getLogger(__name__)

SNAPSHOT_NAME = "executions"
MAX_EXECUTION_CONTEXT_BYTES = 10 * 1024


class ExecutionStore:
    """Executions and their step progress, persisted as one snapshot"""

    def __init__(self, storage: StateStorage, catalog: Optional[WorkflowCatalog] = None,
                 lock_timeout: float = 5.0, clock: Callable[[], datetime] = datetime.now):
        self.storage = storage
        self.catalog = catalog
        self.lock_timeout = lock_timeout
        self.clock = clock

        self._lock = threading.RLock()
        self._locks: Dict[str, threading.RLock] = {}
        self._executions: Dict[str, Execution] = {}
        self._progress: List[StepProgress] = []
        self._load()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> None:
        data = self.storage.load(SNAPSHOT_NAME)
        if not data:
            return
        try:
            executions = [Execution.from_dict(e) for e in data.get("executions", [])]
            progress = [StepProgress.from_dict(p) for p in data.get("step_progress", [])]
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            raise StorageFailureError(f"Execution snapshot is corrupt: {e}",
                                      context={"snapshot": SNAPSHOT_NAME})
        self._executions = {e.id: e for e in executions}
        self._progress = progress
        logger.debug("Loaded %d executions and %d progress records", len(executions), len(progress))

    def _persist(self, executions: Dict[str, Execution], progress: List[StepProgress]) -> None:
        self.storage.save(SNAPSHOT_NAME, {
            "executions": [e.to_dict() for e in executions.values()],
            "step_progress": [p.to_dict() for p in progress],
        })

    def _commit(self, execution: Optional[Execution] = None,
                progress: Optional[List[StepProgress]] = None) -> None:
        """Persist the next snapshot, then make it the in-memory state"""
        with self._lock:
            executions = dict(self._executions)
            if execution is not None:
                executions[execution.id] = execution
            next_progress = progress if progress is not None else self._progress
            self._persist(executions, next_progress)
            self._executions = executions
            self._progress = next_progress

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    def _lock_for(self, execution_id: str) -> threading.RLock:
        with self._lock:
            if execution_id not in self._executions:
                raise NotFoundError(f"Execution '{execution_id}' not found",
                                    context={"execution_id": execution_id})
            lock = self._locks.get(execution_id)
            if lock is None:
                lock = self._locks[execution_id] = threading.RLock()
            return lock

    @contextmanager
    def locked(self, execution_id: str) -> Iterator[None]:
        """
        Hold the execution's lock for a multi-step read-modify-write.

        Raises:
            NotFoundError: If the execution does not exist
            StorageFailureError: If the lock is not acquired within ``lock_timeout``
        """
        lock = self._lock_for(execution_id)
        if not lock.acquire(timeout=self.lock_timeout):
            raise StorageFailureError(
                f"Timed out waiting for lock on execution {execution_id}",
                context={"timeout": self.lock_timeout}
            )
        try:
            yield
        finally:
            lock.release()

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate(self, execution: Execution) -> None:
        execution.state.validate()
        if not execution.current_role_id:
            raise ValidationError("Execution must have a current role", field="current_role_id")
        if execution.max_recovery_attempts < 0 or execution.recovery_attempts < 0:
            raise ValidationError("Recovery counters must not be negative", field="recovery_attempts")
        if not 0 <= execution.progress_percentage <= 100:
            raise ValidationError("Progress percentage must be within 0..100",
                                  field="progress_percentage", value=execution.progress_percentage)

        size = len(json.dumps(execution.execution_context, default=str).encode("utf-8"))
        if size > MAX_EXECUTION_CONTEXT_BYTES:
            raise ValidationError(
                f"Execution context exceeds {MAX_EXECUTION_CONTEXT_BYTES} bytes",
                field="execution_context",
                context={"size": size}
            )

        if self.catalog is not None:
            if not self.catalog.has_role(execution.current_role_id):
                raise ValidationError(f"Unknown role '{execution.current_role_id}'",
                                      field="current_role_id")
            if execution.current_step_id and not self.catalog.step_belongs_to_role(
                    execution.current_step_id, execution.current_role_id):
                raise InconsistentStateError(
                    "Current step does not belong to the current role",
                    role_id=execution.current_role_id,
                    step_id=execution.current_step_id,
                    context={"execution_id": execution.id}
                )

    # ------------------------------------------------------------------
    # Executions
    # ------------------------------------------------------------------

    def create(self, role_id: str, task_id: Optional[int] = None,
               current_step_id: Optional[str] = None,
               state: Optional[ExecutionState] = None,
               total_steps: int = 0,
               execution_mode: ExecutionMode = ExecutionMode.GUIDED,
               max_recovery_attempts: int = 3,
               auto_created_task: bool = False,
               execution_context: Optional[Dict[str, Any]] = None) -> Execution:
        """Create and persist a new execution with a fresh typed id"""
        now = self.clock()
        role = self.catalog.get_role(role_id) if self.catalog is not None else None
        execution = Execution(
            id=new_id(IdKind.EXECUTION),
            current_role_id=role.id if role else role_id,
            task_id=task_id or None,
            current_step_id=current_step_id,
            state=state or ExecutionState(),
            total_steps=total_steps,
            execution_mode=execution_mode,
            max_recovery_attempts=max_recovery_attempts,
            auto_created_task=auto_created_task,
            execution_context=dict(execution_context or {}),
            created_at=now,
            updated_at=now,
        )
        self._validate(execution)
        self._commit(execution=execution)
        logger.info("Created execution %s in role %s", execution.id, execution.current_role_id)
        return copy.deepcopy(execution)

    def find(self, execution_id: Optional[str]) -> Optional[Execution]:
        if not execution_id:
            return None
        with self._lock:
            execution = self._executions.get(execution_id)
            return copy.deepcopy(execution) if execution else None

    def get(self, execution_id: str) -> Execution:
        execution = self.find(execution_id)
        if execution is None:
            raise NotFoundError(f"Execution '{execution_id}' not found",
                                context={"execution_id": execution_id})
        return execution

    def exists(self, execution_id: Optional[str]) -> bool:
        with self._lock:
            return bool(execution_id) and execution_id in self._executions

    def list(self, active_only: bool = False) -> List[Execution]:
        with self._lock:
            executions = [copy.deepcopy(e) for e in self._executions.values()]
        if active_only:
            executions = [e for e in executions if e.is_active]
        return executions

    def find_by_task(self, task_id: int) -> List[Execution]:
        return [e for e in self.list() if e.task_id == task_id]

    def update(self, execution_id: str, mutator: Callable[[Execution], None],
               expected_version: Optional[int] = None) -> Execution:
        """
        Apply ``mutator`` to a working copy and commit it.

        The mutator receives a deep copy; nothing it does is visible unless the
        result validates and persists.

        Raises:
            NotFoundError: If the execution does not exist
            ConcurrentModificationError: If ``expected_version`` is stale
            ValidationError: If the mutated record is invalid
        """
        with self.locked(execution_id):
            with self._lock:
                current = self._executions.get(execution_id)
            if current is None:
                raise NotFoundError(f"Execution '{execution_id}' not found",
                                    context={"execution_id": execution_id})
            if expected_version is not None and expected_version != current.version:
                raise ConcurrentModificationError(
                    f"Execution {execution_id} was modified concurrently",
                    context={"expected_version": expected_version, "actual_version": current.version}
                )

            working = copy.deepcopy(current)
            mutator(working)
            if working.id != execution_id:
                raise ValidationError("Execution id cannot change", field="id", value=working.id)
            working.version = current.version + 1
            working.updated_at = self.clock()
            self._validate(working)
            self._commit(execution=working)
            return copy.deepcopy(working)

    # ------------------------------------------------------------------
    # Step progress
    # ------------------------------------------------------------------

    def progress_for(self, execution_id: str, step_id: Optional[str] = None) -> List[StepProgress]:
        """Progress records of an execution in the order they were appended"""
        with self._lock:
            records = [p for p in self._progress if p.execution_id == execution_id
                       and (step_id is None or p.step_id == step_id)]
            return copy.deepcopy(records)

    def latest_status_by_step(self, execution_id: str) -> Dict[str, StepProgressStatus]:
        """Latest recorded status per step id"""
        latest: Dict[str, StepProgressStatus] = {}
        for record in self.progress_for(execution_id):
            latest[record.step_id] = record.status
        return latest

    def _open_record_index(self, execution_id: str, step_id: str) -> Optional[int]:
        for index in range(len(self._progress) - 1, -1, -1):
            record = self._progress[index]
            if record.execution_id == execution_id and record.step_id == step_id:
                return index if record.status == StepProgressStatus.IN_PROGRESS else None
        return None

    def start_step(self, execution_id: str, step_id: str, role_id: str,
                   task_id: Optional[int] = None) -> StepProgress:
        """Open an IN_PROGRESS record; an already open record is returned as is"""
        with self._lock:
            index = self._open_record_index(execution_id, step_id)
            if index is not None:
                return copy.deepcopy(self._progress[index])
            record = StepProgress(
                id=new_id(IdKind.PROGRESS),
                execution_id=execution_id,
                step_id=step_id,
                role_id=role_id,
                task_id=task_id,
                status=StepProgressStatus.IN_PROGRESS,
                started_at=self.clock(),
            )
            self._commit(progress=self._progress + [record])
            return copy.deepcopy(record)

    def record_step_result(self, execution_id: str, step_id: str, role_id: str,
                           success: bool, task_id: Optional[int] = None,
                           execution_data: Optional[Dict[str, Any]] = None,
                           validation_results: Optional[Dict[str, Any]] = None,
                           error_details: Optional[Dict[str, Any]] = None) -> StepProgress:
        """
        Close the open record of the step, or append a new terminal one.

        Terminal records are never modified.
        """
        now = self.clock()
        status = StepProgressStatus.COMPLETED if success else StepProgressStatus.FAILED
        with self._lock:
            progress = list(self._progress)
            index = self._open_record_index(execution_id, step_id)
            if index is not None:
                record = copy.deepcopy(progress[index])
            else:
                record = StepProgress(
                    id=new_id(IdKind.PROGRESS),
                    execution_id=execution_id,
                    step_id=step_id,
                    role_id=role_id,
                    task_id=task_id,
                    status=StepProgressStatus.NOT_STARTED,
                    started_at=now,
                )
            if record.status.is_terminal:
                raise ValidationError("Terminal step progress cannot be modified",
                                      field="status", value=record.status.value)

            record.status = status
            record.result = StepResult.SUCCESS if success else StepResult.FAILURE
            if success:
                record.completed_at = now
            else:
                record.failed_at = now
            if record.started_at:
                record.duration = max((now - record.started_at).total_seconds(), 0.0)
            record.execution_data = execution_data
            record.validation_results = validation_results
            record.error_details = error_details

            if index is not None:
                progress[index] = record
            else:
                progress.append(record)
            self._commit(progress=progress)
            return copy.deepcopy(record)
