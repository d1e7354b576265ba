"""
Condition evaluator for role transitions.
Maps named transition conditions to checks against live execution state.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .catalog import WorkflowCatalog
from .enums import StepProgressStatus, TaskStatus
from .execution_store import ExecutionStore
from .models import Execution, Task
from .task_store import TaskStore


@dataclass
class TransitionContext:
    """Live state a transition is evaluated against"""
    execution: Execution
    role_id: str
    task: Optional[Task] = None


ConditionCheck = Callable[[TransitionContext], bool]


class TransitionConditionEvaluator:
    """
    Evaluates named transition conditions.

    Built-in conditions:
    - allStepsCompleted: every required step of the role has COMPLETED progress
    - taskStatusReady: the task status is ``ready``
    - reviewCompleted: the task has an APPROVED code review

    Unknown condition names are not evaluated; callers treat them as passing.
    """

    def __init__(self, catalog: WorkflowCatalog, executions: ExecutionStore, tasks: TaskStore):
        self.catalog = catalog
        self.executions = executions
        self.tasks = tasks
        self._checks: Dict[str, ConditionCheck] = {
            "allStepsCompleted": self._all_steps_completed,
            "taskStatusReady": self._task_status_ready,
            "reviewCompleted": self._review_completed,
        }

    def register(self, name: str, check: ConditionCheck) -> None:
        """Add or replace a named condition"""
        self._checks[name] = check

    def is_known(self, name: str) -> bool:
        return name in self._checks

    @property
    def known_conditions(self) -> List[str]:
        return sorted(self._checks)

    def evaluate(self, name: str, context: TransitionContext) -> Optional[bool]:
        """Return the condition's value, or None for an unknown name"""
        check = self._checks.get(name)
        if check is None:
            return None
        return bool(check(context))

    def incomplete_steps(self, context: TransitionContext) -> List[str]:
        """Names of required role steps without COMPLETED progress"""
        completed = {
            p.step_id for p in self.executions.progress_for(context.execution.id)
            if p.status == StepProgressStatus.COMPLETED
        }
        return [
            step.name for step in self.catalog.steps_for_role(context.role_id)
            if step.is_required and step.id not in completed
        ]

    def _all_steps_completed(self, context: TransitionContext) -> bool:
        return not self.incomplete_steps(context)

    def _task_status_ready(self, context: TransitionContext) -> bool:
        return context.task is not None and context.task.status == TaskStatus.READY

    def _review_completed(self, context: TransitionContext) -> bool:
        return context.task is not None and self.tasks.has_approved_review(context.task.id)
