"""
Transition engine: lists, validates and commits role-to-role transitions.
"""

import logging
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from .catalog import WorkflowCatalog
from .condition_evaluator import TransitionConditionEvaluator, TransitionContext
from .config_loader import ScoringConfig
from .enums import ExecutionPhase
from .exceptions import WorkflowError
from .execution_store import ExecutionStore
from .models import (
    DelegationRecord, Execution, RoleTransition, Step, StepPointer, TransitionExecutionResult,
    TransitionRecord, TransitionValidationResult,
)
from .task_store import TaskStore

logger = logging.getLogger(__name__)


@dataclass
class TransitionRecommendation:
    """Advisory ranking entry; never a validity gate"""
    transition: RoleTransition
    score: float
    validation: TransitionValidationResult


class TransitionEngine:
    """Role transition state machine"""

    def __init__(self, catalog: WorkflowCatalog, executions: ExecutionStore, tasks: TaskStore,
                 evaluator: Optional[TransitionConditionEvaluator] = None,
                 scoring: Optional[ScoringConfig] = None,
                 clock: Callable[[], datetime] = datetime.now,
                 rng: Optional[random.Random] = None):
        self.catalog = catalog
        self.executions = executions
        self.tasks = tasks
        self.evaluator = evaluator or TransitionConditionEvaluator(catalog, executions, tasks)
        self.scoring = scoring or ScoringConfig()
        self.clock = clock
        self.rng = rng or random.Random()

    def list_transitions(self, from_role: str) -> List[RoleTransition]:
        """
        Active transitions leaving a role.

        Raises:
            NotFoundError: If the role does not exist
        """
        return self.catalog.transitions_from(from_role)

    def context_for(self, execution: Execution) -> TransitionContext:
        return TransitionContext(
            execution=execution,
            role_id=execution.current_role_id,
            task=self.tasks.find_task(execution.task_id),
        )

    def validate(self, transition_ref: str, context: TransitionContext) -> TransitionValidationResult:
        """
        Evaluate a transition's conditions against live state.

        A required condition that is not met is an error; a condition that is
        met but not required is a warning. Unknown conditions pass.
        """
        transition = self.catalog.find_transition(transition_ref)
        if transition is None:
            return TransitionValidationResult(valid=False, errors=[f"Transition not found: {transition_ref}"])

        errors: List[str] = []
        warnings: List[str] = []
        execution = context.execution

        if not transition.is_active:
            errors.append(f"Transition '{transition.transition_name}' is not active")
        if not execution.is_active or execution.state.phase == ExecutionPhase.COMPLETED:
            errors.append(f"Execution {execution.id} is already completed")
        if execution.current_role_id != transition.from_role_id:
            errors.append(
                f"Execution is in role '{execution.current_role_id}' but transition "
                f"'{transition.transition_name}' starts from '{transition.from_role_id}'"
            )

        context = TransitionContext(execution=execution, role_id=transition.from_role_id, task=context.task)
        for condition in transition.conditions:
            try:
                value = self.evaluator.evaluate(condition.name, context)
            except Exception as e:
                logger.warning("Condition %s raised during evaluation: %s", condition.name, e)
                errors.append(f"Condition '{condition.name}' could not be evaluated: {e}")
                continue

            if value is None:
                logger.debug("Unknown condition %s treated as met", condition.name)
                continue
            if condition.required and not value:
                errors.append(self._unmet_message(condition.name, context))
            elif not condition.required and value:
                warnings.append(f"Condition '{condition.name}' is met but not required")

        return TransitionValidationResult(valid=not errors, errors=errors, warnings=warnings)

    def _unmet_message(self, name: str, context: TransitionContext) -> str:
        message = f"Required condition '{name}' is not met"
        if name == "allStepsCompleted":
            pending = self.evaluator.incomplete_steps(context)
            if pending:
                message += f" (incomplete steps: {', '.join(pending)})"
        return message

    def validate_for_execution(self, transition_ref: str, execution_id: str) -> TransitionValidationResult:
        execution = self.executions.get(execution_id)
        return self.validate(transition_ref, self.context_for(execution))

    def execute(self, transition_ref: str, execution_id: str,
                handoff_message: Optional[str] = None,
                stage_first_step: bool = False) -> TransitionExecutionResult:
        """
        Re-validate and commit a transition.

        Validation and the role change happen under the execution lock, so an
        invalid transition can never commit. The new role's first step is not
        assigned here; the resolver completes the handoff on the next request.

        Raises:
            NotFoundError: If the execution does not exist
            StorageFailureError: If the lock or the role change write fails

        The delegation record and task owner are written after the role
        change commits; a failure there comes back in ``warnings``.
        """
        with self.executions.locked(execution_id):
            execution = self.executions.get(execution_id)
            validation = self.validate(transition_ref, self.context_for(execution))
            if not validation.valid:
                logger.info("Transition %s rejected for %s: %s",
                            transition_ref, execution_id, "; ".join(validation.errors))
                return TransitionExecutionResult(
                    success=False,
                    message="Transition validation failed",
                    errors=validation.errors,
                )

            transition = self.catalog.get_transition(transition_ref)
            to_role = self.catalog.get_role(transition.to_role_id)
            message = handoff_message or f"Transitioned via {transition.transition_name}"
            now = self.clock()
            staged: Optional[Step] = to_role.steps[0] if stage_first_step and to_role.steps else None

            def commit(record: Execution) -> None:
                record.current_role_id = to_role.id
                record.current_step_id = None
                record.state = record.state.merged(
                    phase=ExecutionPhase.ROLE_TRANSITIONED,
                    current_step=StepPointer.for_step(staged, now) if staged else None,
                    last_transition=TransitionRecord(new_role_id=to_role.id, timestamp=now,
                                                     handoff_message=message),
                )

            updated = self.executions.update(execution_id, commit, expected_version=execution.version)

        logger.info("Execution %s transitioned %s -> %s via %s",
                    execution_id, transition.from_role_id, to_role.id, transition.transition_name)
        warnings = []
        try:
            self._record_handoff(updated, transition, message, now)
        except WorkflowError as e:
            logger.warning("Transition %s committed for %s but the handoff was not recorded: %s",
                           transition.transition_name, execution_id, e)
            warnings.append(f"Handoff not recorded: {e}")
        return TransitionExecutionResult(
            success=True,
            message=message,
            new_role_id=to_role.id,
            staged_step=staged,
            warnings=warnings,
        )

    def _record_handoff(self, execution: Execution, transition: RoleTransition,
                        message: str, timestamp: datetime) -> None:
        to_role = self.catalog.get_role(transition.to_role_id)
        self.tasks.record_delegation(DelegationRecord(
            task_id=execution.task_id,
            execution_id=execution.id,
            from_role=self.catalog.get_role(transition.from_role_id).name,
            to_role=to_role.name,
            timestamp=timestamp,
            message=message,
        ))
        if execution.task_id and self.tasks.find_task(execution.task_id):
            self.tasks.update_task(execution.task_id, owner=to_role.name, current_mode=to_role.name)

    def recommend(self, current_role: str, execution_id: str,
                  limit: int = 3) -> List[TransitionRecommendation]:
        """
        Rank valid transitions out of ``current_role``.

        Score is the base score, plus a bonus for common transition names, plus
        a random tie-breaker.
        """
        execution = self.executions.get(execution_id)
        context = self.context_for(execution)
        common = set(self.scoring.common_transitions)

        ranked = []
        for transition in self.list_transitions(current_role):
            validation = self.validate(transition.id, context)
            if validation.errors:
                continue
            score = self.scoring.base_score
            if transition.transition_name in common:
                score += self.scoring.common_transition_bonus
            score += self.rng.random() * self.scoring.random_variance
            ranked.append(TransitionRecommendation(transition=transition, score=score, validation=validation))

        ranked.sort(key=lambda r: r.score, reverse=True)
        return ranked[:limit]

    def history(self, task_id: Optional[int] = None,
                execution_id: Optional[str] = None) -> List[DelegationRecord]:
        """Delegation records, newest first"""
        return self.tasks.delegations_for(task_id=task_id, execution_id=execution_id)
