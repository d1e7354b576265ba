"""
Workflow engine facade.

Wires the catalog, stores, resolver, transition engine, scheduler, progress
calculator, context cache and identity guard together. Every public operation
returns an ``OperationResult``; expected failures never escape as exceptions.
"""

import functools
import logging
import random
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from .catalog import WorkflowCatalog
from .condition_evaluator import TransitionConditionEvaluator
from .config_loader import CONFIG_DIR, ConfigLoader, GuidanceConfig
from .context_cache import CachedContext, ContextCache
from .dependency_scheduler import DependencyScheduler
from .enums import (
    ContextSource, ExecutionMode, ExecutionPhase, ReviewStatus, StepProgressStatus,
    StepResult, SubtaskStatus, TaskStatus,
)
from .exceptions import (
    InconsistentStateError, SecurityError, ValidationError, WorkflowError, error_code,
)
from .execution_store import ExecutionStore
from .identity_guard import ID_FIELDS, GuardResult, IdentityGuard
from .models import (
    BatchDependency, BatchOptions, BatchSpec, CompletedStep, Execution, ExecutionErrorRecord,
    ExecutionState, OperationResult, RecoveryStatus, StepPointer,
)
from .progress_calculator import ProgressCalculator
from .state_storage import FileStateStorage, InMemoryStateStorage, StateStorage
from .step_resolver import ResolutionContext, StepResolver
from .task_store import TaskStore
from .transition_engine import TransitionEngine
from .workflow_events import EventLogger

logger = logging.getLogger(__name__)

CATALOG_FILE = "catalog.yaml"
STATE_DIR = "state"
EVENTS_FILE = "events.json"


def operation(func: Callable[..., Any]) -> Callable[..., OperationResult]:
    """Run an engine operation and turn its outcome into an OperationResult"""
    @functools.wraps(func)
    def wrapper(self: 'WorkflowEngine', *args: Any, **kwargs: Any) -> OperationResult:
        try:
            result = func(self, *args, **kwargs)
        except (WorkflowError, ValidationError, SecurityError) as e:
            logger.info("%s failed: %s", func.__name__, e)
            return OperationResult.fail(str(e), error_code(e))
        except Exception as e:
            logger.exception("%s failed unexpectedly", func.__name__)
            return OperationResult.fail(f"{type(e).__name__}: {e}", "INTERNAL_ERROR")
        if isinstance(result, OperationResult):
            return result
        return OperationResult.ok(result)
    return wrapper


class WorkflowEngine:
    """Engine-facing operations of the guidance engine"""

    def __init__(
        self,
        catalog: WorkflowCatalog,
        config: Optional[GuidanceConfig] = None,
        storage: Optional[StateStorage] = None,
        event_logger: Optional[EventLogger] = None,
        cache: Optional[ContextCache] = None,
        clock: Callable[[], datetime] = datetime.now,
        cache_clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize the engine.

        Args:
            catalog: Roles, steps and transitions
            config: Engine configuration (defaults when omitted)
            storage: Snapshot backend for executions and tasks (in-memory when omitted)
            event_logger: Event log (in-memory when omitted)
            cache: Context cache (built from ``config.cache`` when omitted)
            clock: Source of timestamps for records
            cache_clock: Source of monotonic-ish seconds for the cache TTL
            rng: Random source for recommendation tie-breaking
        """
        self.catalog = catalog
        self.config = config or GuidanceConfig()
        self.storage = storage or InMemoryStateStorage()
        self.events = event_logger or EventLogger()
        self.clock = clock

        self.executions = ExecutionStore(self.storage, catalog=catalog,
                                         lock_timeout=self.config.storage.lock_timeout, clock=clock)
        self.tasks = TaskStore(self.storage, clock=clock)
        self.cache = cache or ContextCache(capacity=self.config.cache.capacity,
                                           ttl_seconds=self.config.cache.ttl_seconds,
                                           clock=cache_clock)
        self.evaluator = TransitionConditionEvaluator(catalog, self.executions, self.tasks)
        self.resolver = StepResolver(catalog, self.executions)
        self.transitions = TransitionEngine(catalog, self.executions, self.tasks,
                                            evaluator=self.evaluator, scoring=self.config.scoring,
                                            clock=clock, rng=rng)
        self.scheduler = DependencyScheduler(self.tasks)
        self.progress = ProgressCalculator(catalog, self.executions)
        self.guard = IdentityGuard(self.cache, config=self.config.guard, catalog=catalog,
                                   executions=self.executions)

    @classmethod
    def for_workspace(cls, workspace_path: Path, catalog_file: Optional[Path] = None,
                      config_file: Optional[Path] = None) -> 'WorkflowEngine':
        """
        Build an engine persisting under ``<workspace>/.workflow/``.

        The catalog is ``catalog_file``, else ``.workflow/catalog.yaml`` when it
        exists, else the bundled default catalog.
        """
        workspace_path = Path(workspace_path)
        workflow_dir = workspace_path / CONFIG_DIR
        config = ConfigLoader(workspace_path).load(config_file)

        if catalog_file:
            catalog = WorkflowCatalog.load(Path(catalog_file))
        elif (workflow_dir / CATALOG_FILE).exists():
            catalog = WorkflowCatalog.load(workflow_dir / CATALOG_FILE)
        else:
            catalog = WorkflowCatalog.load_default()

        return cls(
            catalog,
            config=config,
            storage=FileStateStorage(workflow_dir / STATE_DIR, io_timeout=config.storage.io_timeout),
            event_logger=EventLogger(workflow_dir / EVENTS_FILE),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _guard(self, params: Dict[str, Any], required: Iterable[str] = ()) -> GuardResult:
        """Guard the required ids plus every id the caller did pass"""
        checked = list(required) + [k for k in ID_FIELDS if params.get(k) not in (None, "") and k not in required]
        return self.guard.guard(params, checked)

    def _remember(self, execution: Execution, source: ContextSource) -> None:
        role = self.catalog.find_role(execution.current_role_id)
        step = self.catalog.find_step(execution.current_step_id)
        task = self.tasks.find_task(execution.task_id)
        self.cache.store(ContextCache.generate_key(execution.id, source), CachedContext(
            execution_id=execution.id,
            task_id=execution.task_id,
            current_role_id=execution.current_role_id,
            current_step_id=execution.current_step_id,
            role_name=role.name if role else None,
            step_name=step.name if step else None,
            task_name=task.name if task else None,
            project_path=execution.execution_context.get("project_path"),
            source=source,
        ))

    def _active_execution(self, execution_id: str) -> Execution:
        execution = self.executions.get(execution_id)
        if not execution.is_active:
            raise ValidationError(f"Execution {execution_id} is already completed",
                                  field="execution_id", value=execution_id)
        return execution

    def _step_of_current_role(self, execution: Execution, step_id: str):
        step = self.catalog.get_step(step_id)
        if step.role_id != execution.current_role_id:
            raise InconsistentStateError(
                f"Step belongs to role '{step.role_id}', execution is in role '{execution.current_role_id}'",
                role_id=execution.current_role_id,
                step_id=step_id,
                context={"execution_id": execution.id}
            )
        return step

    @staticmethod
    def _parse_result(result: Union[StepResult, str, bool]) -> StepResult:
        if isinstance(result, StepResult):
            return result
        if isinstance(result, bool):
            return StepResult.SUCCESS if result else StepResult.FAILURE
        try:
            return StepResult(str(result).strip().lower())
        except ValueError:
            raise ValidationError("Step result must be 'success' or 'failure'", field="result", value=result)

    @staticmethod
    def _parse_enum(enum_type, value: Any, field_name: str):
        if isinstance(value, enum_type):
            return value
        try:
            return enum_type(value)
        except ValueError:
            raise ValidationError(f"Unknown {enum_type.__name__} value: {value}", field=field_name, value=value)

    # ------------------------------------------------------------------
    # Executions
    # ------------------------------------------------------------------

    @operation
    def bootstrap(self, initial_role: Optional[str] = None,
                  execution_mode: Optional[ExecutionMode] = None,
                  project_path: Optional[str] = None) -> Dict[str, Any]:
        """Create a task-less execution pointing at the role's first step"""
        role = self.catalog.get_role(initial_role) if initial_role else self.catalog.roles[0]
        first = role.steps[0] if role.steps else None
        now = self.clock()
        context = {"project_path": project_path} if project_path else {}
        execution = self.executions.create(
            role.id,
            current_step_id=first.id if first else None,
            state=ExecutionState(
                phase=ExecutionPhase.INITIALIZED,
                current_step=StepPointer.for_step(first, now) if first else None,
            ),
            total_steps=self.catalog.total_steps,
            execution_mode=execution_mode or self.config.execution.default_mode,
            max_recovery_attempts=self.config.execution.max_recovery_attempts,
            execution_context=context,
        )
        self._remember(execution, ContextSource.BOOTSTRAP)
        return {"execution": execution, "current_step": first}

    @operation
    def create_execution(self, role: str, task_id: Optional[int] = None,
                         execution_mode: Optional[ExecutionMode] = None) -> Execution:
        params = self._guard({"role_id": role, "task_id": task_id}, ["role_id"]).params
        if params.get("task_id"):
            self.tasks.get_task(params["task_id"])
        execution = self.executions.create(
            params["role_id"],
            task_id=params.get("task_id"),
            total_steps=self.catalog.total_steps,
            execution_mode=execution_mode or self.config.execution.default_mode,
            max_recovery_attempts=self.config.execution.max_recovery_attempts,
        )
        self._remember(execution, ContextSource.MANUAL)
        return execution

    @operation
    def get_execution(self, execution_id: str) -> Execution:
        params = self._guard({"execution_id": execution_id}, ["execution_id"]).params
        return self.executions.get(params["execution_id"])

    @operation
    def attach_task(self, execution_id: str, task_id: int) -> Execution:
        """Link a bootstrap execution to the task created for it"""
        self.tasks.get_task(task_id)

        def attach(execution: Execution) -> None:
            execution.task_id = task_id

        execution = self.executions.update(execution_id, attach)
        self._remember(execution, ContextSource.MANUAL)
        return execution

    @operation
    def complete_execution(self, execution_id: str, completion_percentage: int = 100) -> Execution:
        now = self.clock()

        def complete(execution: Execution) -> None:
            execution.completed_at = now
            execution.progress_percentage = completion_percentage
            execution.state = execution.state.merged(phase=ExecutionPhase.COMPLETED, last_progress_update=now)

        execution = self.executions.update(execution_id, complete)
        self.events.log_execution(execution.id, "execution_completed", role_id=execution.current_role_id,
                                  task_id=execution.task_id)
        return execution

    @operation
    def record_execution_error(self, execution_id: str, message: str,
                               code: str = "INTERNAL_ERROR") -> RecoveryStatus:
        """Count a failed attempt and report whether another retry is allowed"""
        now = self.clock()

        def record(execution: Execution) -> None:
            execution.recovery_attempts += 1
            execution.last_error = ExecutionErrorRecord(message=message, code=code, timestamp=now)

        execution = self.executions.update(execution_id, record)
        self.events.log_execution(execution.id, "execution_error", role_id=execution.current_role_id,
                                  task_id=execution.task_id, error=message, metadata={"code": code})
        return RecoveryStatus(
            can_retry=execution.recovery_attempts < execution.max_recovery_attempts,
            retry_count=execution.recovery_attempts,
            max_retries=execution.max_recovery_attempts,
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    @operation
    def resolve_next_step(self, role_id: Optional[str] = None, task_id: Optional[int] = None,
                          execution_id: Optional[str] = None):
        params = self._guard({"role_id": role_id, "task_id": task_id, "execution_id": execution_id},
                             ["role_id"]).params
        step = self.resolver.resolve(ResolutionContext(
            role_id=params.get("role_id"),
            task_id=params.get("task_id"),
            execution_id=params.get("execution_id"),
        ))
        execution = self.executions.find(params.get("execution_id"))
        if execution is not None:
            self._remember(execution, ContextSource.MANUAL)
        return step

    @operation
    def start_step(self, execution_id: str, step_id: str):
        """Open an IN_PROGRESS record and make the step the current one"""
        params = self._guard({"execution_id": execution_id, "step_id": step_id},
                             ["execution_id", "step_id"]).params
        execution_id = params["execution_id"]
        with self.executions.locked(execution_id):
            execution = self._active_execution(execution_id)
            step = self._step_of_current_role(execution, params["step_id"])
            record = self.executions.start_step(execution.id, step.id, step.role_id, execution.task_id)
            now = self.clock()

            def assign(target: Execution) -> None:
                target.current_step_id = step.id
                target.state = target.state.merged(
                    phase=ExecutionPhase.IN_PROGRESS,
                    current_step=StepPointer.for_step(step, now),
                )

            execution = self.executions.update(execution_id, assign)
        self.events.log_step(execution.id, step.id, step.role_id, "step_started", task_id=execution.task_id)
        self._remember(execution, ContextSource.MANUAL)
        return record

    @operation
    def report_step_completion(self, execution_id: str, step_id: str,
                               result: Union[StepResult, str, bool] = StepResult.SUCCESS,
                               evidence: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Record the outcome of a step.

        On success the execution advances to the next step of its role; the
        final step of the terminal role completes the execution.
        """
        outcome = self._parse_result(result)
        evidence = evidence or {}
        params = self._guard({"execution_id": execution_id, "step_id": step_id},
                             ["execution_id", "step_id"]).params
        execution_id = params["execution_id"]
        success = outcome == StepResult.SUCCESS

        with self.executions.locked(execution_id):
            execution = self._active_execution(execution_id)
            step = self._step_of_current_role(execution, params["step_id"])
            latest = self.executions.latest_status_by_step(execution.id).get(step.id)
            if latest == StepProgressStatus.COMPLETED and execution.current_step_id != step.id:
                raise ValidationError(
                    f"Step '{step.name}' is already completed; start it again to redo it",
                    field="step_id", value=step.id
                )

            record = self.executions.record_step_result(
                execution.id, step.id, step.role_id, success,
                task_id=execution.task_id,
                execution_data=evidence.get("execution_data", evidence or None),
                validation_results=evidence.get("validation_results"),
                error_details=evidence.get("error_details"),
            )
            next_step = self.catalog.next_step_after(step.id) if success else None
            finished = success and next_step is None and self.catalog.is_terminal(step.role_id)
            overall = self.progress.calculate(execution.id).overall_progress
            now = self.clock()

            def advance(target: Execution) -> None:
                state_patch: Dict[str, Any] = {
                    "last_completed_step": CompletedStep(id=step.id, completed_at=now, result=outcome),
                    "last_progress_update": now,
                    "phase": ExecutionPhase.IN_PROGRESS,
                }
                target.progress_percentage = overall
                if success:
                    target.steps_completed += 1
                    target.current_step_id = next_step.id if next_step else None
                    state_patch["current_step"] = StepPointer.for_step(next_step, now) if next_step else None
                    state_patch["progress_markers"] = target.state.progress_markers + [step.id]
                if finished:
                    state_patch["phase"] = ExecutionPhase.COMPLETED
                    target.completed_at = now
                    target.progress_percentage = 100
                target.state = target.state.merged(**state_patch)

            execution = self.executions.update(execution_id, advance)

        self.events.log_step(execution.id, step.id, step.role_id,
                             "step_completed" if success else "step_failed",
                             task_id=execution.task_id, duration=record.duration or 0.0)
        if finished:
            self.events.log_execution(execution.id, "execution_completed", role_id=step.role_id,
                                      task_id=execution.task_id)
            logger.info("Execution %s completed", execution.id)
        self._remember(execution, ContextSource.STEP_COMPLETION)
        return {
            "next_step": next_step,
            "progress": record,
            "execution_completed": finished,
            "execution": execution,
        }

    @operation
    def get_progress(self, execution_id: str):
        return self.progress.calculate(execution_id)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    @operation
    def list_transitions(self, from_role: str):
        return self.transitions.list_transitions(from_role)

    @operation
    def validate_transition(self, transition_id: str, execution_id: str):
        params = self._guard({"execution_id": execution_id}, ["execution_id"]).params
        return self.transitions.validate_for_execution(transition_id, params["execution_id"])

    @operation
    def execute_transition(self, transition_id: str, execution_id: str,
                           handoff_message: Optional[str] = None,
                           stage_first_step: bool = False):
        params = self._guard({"execution_id": execution_id}, ["execution_id"]).params
        execution_id = params["execution_id"]
        before = self.executions.get(execution_id)
        result = self.transitions.execute(transition_id, execution_id, handoff_message=handoff_message,
                                          stage_first_step=stage_first_step)
        if not result.success:
            return OperationResult.fail(
                f"{result.message}: {'; '.join(result.errors)}", ValidationError.code
            )
        execution = self.executions.get(execution_id)
        self.events.log_transition(execution_id, before.current_role_id, execution.current_role_id,
                                   self.catalog.get_transition(transition_id).transition_name,
                                   task_id=execution.task_id, message=result.message)
        self._remember(execution, ContextSource.TRANSITION)
        return result

    @operation
    def recommend_transitions(self, execution_id: str, limit: int = 3):
        execution = self.executions.get(execution_id)
        return self.transitions.recommend(execution.current_role_id, execution.id, limit=limit)

    @operation
    def transition_history(self, task_id: Optional[int] = None, execution_id: Optional[str] = None):
        return self.transitions.history(task_id=task_id, execution_id=execution_id)

    # ------------------------------------------------------------------
    # Tasks, reviews and subtasks
    # ------------------------------------------------------------------

    @operation
    def create_task(self, name: str, description: str = "", priority: str = "Medium",
                    status: Union[TaskStatus, str] = TaskStatus.NOT_STARTED):
        return self.tasks.create_task(name, status=self._parse_enum(TaskStatus, status, "status"),
                                      description=description, priority=priority)

    @operation
    def update_task_status(self, task_id: int, status: Union[TaskStatus, str]):
        return self.tasks.update_task(task_id, status=self._parse_enum(TaskStatus, status, "status"))

    @operation
    def record_review(self, task_id: int, status: Union[ReviewStatus, str], summary: str = ""):
        return self.tasks.add_review(task_id, status=self._parse_enum(ReviewStatus, status, "status"),
                                     summary=summary)

    @operation
    def create_subtask_batch(self, task_id: int,
                             batches: List[Union[BatchSpec, Dict[str, Any]]],
                             batch_dependencies: Optional[List[Union[BatchDependency, Dict[str, Any]]]] = None,
                             options: Optional[BatchOptions] = None):
        params = self._guard({"task_id": task_id}, ["task_id"]).params
        specs = [b if isinstance(b, BatchSpec) else BatchSpec.from_dict(b) for b in batches]
        dependencies = [
            d if isinstance(d, BatchDependency) else BatchDependency.from_dict(d)
            for d in batch_dependencies or []
        ]
        result = self.scheduler.create_batches(params["task_id"], specs, dependencies, options)
        for summary in result.batch_summary:
            self.events.log_batch(params["task_id"], summary["batch_id"], "batch_created",
                                  metadata={"subtask_count": summary["subtask_count"]})
        return result

    @operation
    def update_subtask_status(self, subtask_id: str, status: Union[SubtaskStatus, str],
                              evidence: Optional[Dict[str, Any]] = None):
        status = self._parse_enum(SubtaskStatus, status, "status")
        subtask, completion = self.scheduler.update_subtask_status(subtask_id, status, evidence)
        if completion is not None and completion.completion_triggered:
            self.events.log_batch(subtask.task_id, subtask.batch_id, "batch_completed",
                                  metadata={"files_modified": completion.aggregated_evidence.files_modified})
        return {"subtask": subtask, "batch_completion": completion}

    @operation
    def check_batch_completion(self, task_id: int, batch_id: str):
        return self.scheduler.check_batch_completion(task_id, batch_id)

    @operation
    def next_eligible_subtasks(self, task_id: int):
        return self.scheduler.next_eligible(task_id)
