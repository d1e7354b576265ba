"""
Step resolver: decides which step of a role should execute next.

Resolution paths, tried in order:
1. bootstrap: no task yet, trust the execution's own step pointers
2. standard: the persisted current step, self-healing it from the state blob
3. post-transition: the step after the one staged for the new role
4. fallback: the role's lowest-sequence step
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .catalog import WorkflowCatalog
from .enums import ExecutionPhase
from .exceptions import InconsistentStateError, StorageFailureError, ValidationError
from .execution_store import ExecutionStore
from .models import Execution, Role, Step

logger = logging.getLogger(__name__)

# Marker for "this path has no opinion, try the next one"
_CONTINUE = object()


@dataclass
class ResolutionContext:
    """What the caller knows when asking for guidance"""
    role_id: str
    task_id: Optional[int] = None
    execution_id: Optional[str] = None


@dataclass
class SyncResult:
    """Outcome of checking an execution's step pointer against a role"""
    is_valid: bool
    corrected: bool = False
    current_step: Optional[Step] = None
    message: str = ""


class StepResolver:
    """Resolves the next step for a role, never raising"""

    def __init__(self, catalog: WorkflowCatalog, executions: ExecutionStore):
        self.catalog = catalog
        self.executions = executions

    def resolve(self, context: ResolutionContext) -> Optional[Step]:
        """
        Determine the step that should execute next.

        Identical persisted state always yields the same step. Errors are
        logged and answered with the fallback step.
        """
        role = self.catalog.find_role(context.role_id)
        if role is None:
            logger.warning("Cannot resolve step: unknown role %r", context.role_id)
            return None

        try:
            execution = self.executions.find(context.execution_id)
            if context.execution_id and execution is None:
                logger.info("Execution %s not found, using fallback step", context.execution_id)

            if execution is not None and execution.current_role_id != role.id:
                logger.info(
                    "Execution %s is in role %s, not %s; using fallback step",
                    execution.id, execution.current_role_id, role.id
                )
                return self._fallback(role)

            if execution is not None:
                if not context.task_id:
                    result = self._resolve_bootstrap(execution, role)
                    if result is not _CONTINUE:
                        return result
                result = self._resolve_standard(execution, role)
                if result is not _CONTINUE:
                    return result
                result = self._resolve_post_transition(execution, role)
                if result is not _CONTINUE:
                    return result

            return self._fallback(role)
        except Exception:
            logger.exception("Step resolution failed for role %s, using fallback step", role.id)
            return self._fallback(role)

    def _resolve_bootstrap(self, execution: Execution, role: Role):
        if not execution.current_step_id:
            return _CONTINUE
        if not self.catalog.step_belongs_to_role(execution.current_step_id, role.id):
            return _CONTINUE

        last_completed = execution.state.last_completed_step
        if execution.steps_completed > 0 and last_completed and last_completed.id == execution.current_step_id:
            next_step = self.catalog.next_step_after(execution.current_step_id)
            logger.debug("Bootstrap: step %s already completed, next is %s",
                         execution.current_step_id, next_step.id if next_step else None)
            return next_step

        logger.debug("Bootstrap: continuing current step %s", execution.current_step_id)
        return self.catalog.get_step(execution.current_step_id)

    def _resolve_standard(self, execution: Execution, role: Role):
        if execution.current_step_id:
            if self.catalog.step_belongs_to_role(execution.current_step_id, role.id):
                return self.catalog.get_step(execution.current_step_id)
            error = InconsistentStateError(
                "Current step does not belong to the execution's role",
                role_id=role.id,
                step_id=execution.current_step_id,
                context={"execution_id": execution.id}
            )
            logger.warning("%s", error)
            return _CONTINUE

        # The staged step of a fresh transition is handled by the post-transition path
        if execution.state.phase == ExecutionPhase.ROLE_TRANSITIONED:
            return _CONTINUE

        pointer = execution.state.current_step
        if pointer and self.catalog.step_belongs_to_role(pointer.id, role.id):
            self._persist_current_step(execution.id, pointer.id)
            return self.catalog.get_step(pointer.id)
        return _CONTINUE

    def _resolve_post_transition(self, execution: Execution, role: Role):
        if execution.state.phase != ExecutionPhase.ROLE_TRANSITIONED:
            return _CONTINUE
        staged = execution.state.current_step
        if staged is None or not self.catalog.step_belongs_to_role(staged.id, role.id):
            return _CONTINUE
        next_step = self.catalog.next_step_after(staged.id)
        logger.debug("Post-transition: %s already assigned, next available is %s",
                     staged.id, next_step.id if next_step else None)
        return next_step

    def _fallback(self, role: Role) -> Optional[Step]:
        return role.steps[0] if role.steps else None

    def _persist_current_step(self, execution_id: str, step_id: str) -> None:
        """Write a recovered step pointer back; repeated calls are no-ops"""
        def heal(execution: Execution) -> None:
            if not execution.current_step_id:
                execution.current_step_id = step_id

        try:
            self.executions.update(execution_id, heal)
            logger.info("Recovered current step %s for execution %s from state", step_id, execution_id)
        except (StorageFailureError, ValidationError, InconsistentStateError) as e:
            logger.warning("Could not persist recovered step for %s: %s", execution_id, e)

    def validate_and_sync(self, execution_id: str, role_id: str) -> SyncResult:
        """
        Check the execution's step pointer against ``role_id`` and repair it
        from the state blob when it is missing.

        Raises:
            NotFoundError: If the execution or role does not exist
        """
        role = self.catalog.get_role(role_id)
        execution = self.executions.get(execution_id)

        if execution.current_step_id:
            if self.catalog.step_belongs_to_role(execution.current_step_id, role.id):
                return SyncResult(is_valid=True, current_step=self.catalog.get_step(execution.current_step_id))
            return SyncResult(
                is_valid=False,
                message=f"Step {execution.current_step_id} does not belong to role {role.id}"
            )

        pointer = execution.state.current_step
        if (execution.state.phase != ExecutionPhase.ROLE_TRANSITIONED and pointer
                and self.catalog.step_belongs_to_role(pointer.id, role.id)):
            self._persist_current_step(execution.id, pointer.id)
            return SyncResult(is_valid=True, corrected=True, current_step=self.catalog.get_step(pointer.id),
                              message="Recovered current step from execution state")
        return SyncResult(is_valid=True, message="No current step assigned")
