"""
Progress calculator: completion metrics of an execution.
"""

import logging
import math
from typing import Dict, Iterable, Optional

from .catalog import WorkflowCatalog
from .enums import StepProgressStatus
from .execution_store import ExecutionStore
from .models import ProgressMetrics, Step

logger = logging.getLogger(__name__)

MINUTES_PER_PERCENT = 2

_STEP_WEIGHT = {
    StepProgressStatus.COMPLETED: 1.0,
    StepProgressStatus.IN_PROGRESS: 0.5,
}


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves rounded up"""
    return int(math.floor(value + 0.5))


def completion_percentage(steps: Iterable[Step], latest: Dict[str, StepProgressStatus]) -> int:
    """100 * (completed + 0.5 * in_progress) / total, rounded half up; 0 for no steps"""
    steps = list(steps)
    if not steps:
        return 0
    done = sum(_STEP_WEIGHT.get(latest.get(step.id), 0.0) for step in steps)
    return round_half_up(100 * done / len(steps))


def format_remaining(percent_remaining: int) -> Optional[str]:
    """Rough time estimate at two minutes per remaining percentage point"""
    if percent_remaining <= 0:
        return None
    minutes = percent_remaining * MINUTES_PER_PERCENT
    if minutes < 60:
        return f"{minutes} minutes"
    hours = round_half_up(minutes / 60)
    return f"{hours} hour" if hours == 1 else f"{hours} hours"


class ProgressCalculator:
    """Aggregates StepProgress records into per-role and overall metrics"""

    def __init__(self, catalog: WorkflowCatalog, executions: ExecutionStore):
        self.catalog = catalog
        self.executions = executions

    def calculate(self, execution_id: Optional[str]) -> ProgressMetrics:
        """Metrics for an execution; zeroed metrics when it cannot be found"""
        execution = self.executions.find(execution_id)
        if execution is None:
            logger.debug("No execution %s, reporting zero progress", execution_id)
            return ProgressMetrics()
        role = self.catalog.find_role(execution.current_role_id)
        if role is None:
            return ProgressMetrics()

        latest = self.executions.latest_status_by_step(execution.id)
        all_steps = self.catalog.all_steps()

        current_step_progress = 0
        if execution.current_step_id:
            status = latest.get(execution.current_step_id)
            current_step_progress = round_half_up(100 * _STEP_WEIGHT.get(status, 0.0))

        role_progress = completion_percentage(role.steps, latest)
        overall = completion_percentage(all_steps, latest)
        completed = sum(1 for s in all_steps if latest.get(s.id) == StepProgressStatus.COMPLETED)

        return ProgressMetrics(
            current_step_progress=current_step_progress,
            role_progress=role_progress,
            overall_progress=overall,
            completed_steps=completed,
            total_steps=len(all_steps),
            estimated_time_remaining=format_remaining(100 - role_progress),
            next_milestone=role.milestone if role_progress < 100 else self._following_milestone(role.id),
        )

    def _following_milestone(self, role_id: str) -> Optional[str]:
        transitions = self.catalog.transitions_from(role_id)
        if not transitions:
            return None
        return self.catalog.get_role(transitions[0].to_role_id).milestone

    def role_progress(self, execution_id: str, role_id: str) -> int:
        role = self.catalog.find_role(role_id)
        if role is None or self.executions.find(execution_id) is None:
            return 0
        return completion_percentage(role.steps, self.executions.latest_status_by_step(execution_id))
