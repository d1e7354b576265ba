"""
Unit tests for StepResolver.
"""
import pytest

from workflow_guidance.core.enums import ExecutionPhase, StepResult
from workflow_guidance.core.exceptions import NotFoundError
from workflow_guidance.core.models import CompletedStep, ExecutionState, StepPointer
from workflow_guidance.core.step_resolver import ResolutionContext, StepResolver


@pytest.fixture
def resolver(catalog, executions) -> StepResolver:
    return StepResolver(catalog, executions)


def _pointer(catalog, step_id, clock):
    return StepPointer.for_step(catalog.get_step(step_id), clock())


class TestResolutionPaths:
    """Test the ordered resolution paths."""

    def test_fresh_execution_gets_first_step(self, resolver, executions):
        """Scenario: no current step and nothing completed yields the first step."""
        execution = executions.create("architect")

        step = resolver.resolve(ResolutionContext(role_id="architect", execution_id=execution.id))

        assert step.id == "s1"

    def test_bootstrap_advances_past_completed_step(self, resolver, executions, clock):
        """Scenario: s1 is current and was the last completed step, so s2 is next."""
        execution = executions.create(
            "architect",
            current_step_id="s1",
            state=ExecutionState(
                phase=ExecutionPhase.IN_PROGRESS,
                last_completed_step=CompletedStep(id="s1", completed_at=clock(), result=StepResult.SUCCESS),
            ),
        )

        def completed_one(e):
            e.steps_completed = 1

        executions.update(execution.id, completed_one)

        step = resolver.resolve(ResolutionContext(role_id="architect", execution_id=execution.id))

        assert step.id == "s2"

    def test_bootstrap_after_last_step_returns_none(self, resolver, executions, clock):
        execution = executions.create(
            "architect",
            current_step_id="s2",
            state=ExecutionState(last_completed_step=CompletedStep(id="s2", completed_at=clock())),
        )

        def completed_two(e):
            e.steps_completed = 2

        executions.update(execution.id, completed_two)

        assert resolver.resolve(ResolutionContext(role_id="architect", execution_id=execution.id)) is None

    def test_bootstrap_keeps_unfinished_current_step(self, resolver, executions):
        execution = executions.create("architect", current_step_id="s2")

        step = resolver.resolve(ResolutionContext(role_id="architect", execution_id=execution.id))

        assert step.id == "s2"

    def test_standard_path_with_task_returns_current_step(self, resolver, executions, clock):
        execution = executions.create(
            "architect",
            task_id=4,
            current_step_id="s1",
            state=ExecutionState(last_completed_step=CompletedStep(id="s1", completed_at=clock())),
        )

        step = resolver.resolve(ResolutionContext(role_id="architect", task_id=4, execution_id=execution.id))

        assert step.id == "s1"

    def test_standard_path_self_heals_from_state(self, resolver, executions, catalog, clock):
        """Test that a lost step pointer is recovered from the state blob and persisted."""
        execution = executions.create(
            "architect",
            task_id=4,
            state=ExecutionState(phase=ExecutionPhase.IN_PROGRESS,
                                 current_step=_pointer(catalog, "s2", clock)),
        )

        context = ResolutionContext(role_id="architect", task_id=4, execution_id=execution.id)
        first = resolver.resolve(context)
        healed = executions.get(execution.id)
        second = resolver.resolve(context)

        assert first.id == second.id == "s2"
        assert healed.current_step_id == "s2"
        assert healed.version == 1
        # Repeating resolution does not write again
        assert executions.get(execution.id).version == 1

    def test_post_transition_returns_step_after_staged(self, resolver, executions, catalog, clock):
        execution = executions.create(
            "developer",
            task_id=4,
            state=ExecutionState(phase=ExecutionPhase.ROLE_TRANSITIONED,
                                 current_step=_pointer(catalog, "d1", clock)),
        )

        step = resolver.resolve(ResolutionContext(role_id="developer", task_id=4, execution_id=execution.id))

        assert step.id == "d2"
        # Transition state is not rewritten into a current step
        assert executions.get(execution.id).current_step_id is None

    def test_post_transition_without_staged_step_falls_back(self, resolver, executions):
        execution = executions.create("developer", task_id=4,
                                      state=ExecutionState(phase=ExecutionPhase.ROLE_TRANSITIONED))

        step = resolver.resolve(ResolutionContext(role_id="developer", task_id=4, execution_id=execution.id))

        assert step.id == "d1"


class TestFallbacks:
    """Test that resolution never raises."""

    def test_unknown_role_returns_none(self, resolver):
        assert resolver.resolve(ResolutionContext(role_id="tester")) is None

    def test_missing_execution_uses_first_step(self, resolver):
        step = resolver.resolve(ResolutionContext(role_id="developer", execution_id="exec-v1-" + "f" * 32))

        assert step.id == "d1"

    def test_execution_in_other_role_uses_first_step(self, resolver, executions):
        execution = executions.create("developer", current_step_id="d2")

        step = resolver.resolve(ResolutionContext(role_id="architect", execution_id=execution.id))

        assert step.id == "s1"

    def test_store_failure_uses_first_step(self, resolver, executions, monkeypatch):
        execution = executions.create("architect", current_step_id="s2")

        def explode(execution_id):
            raise RuntimeError("store offline")

        monkeypatch.setattr(executions, "find", explode)

        step = resolver.resolve(ResolutionContext(role_id="architect", execution_id=execution.id))

        assert step.id == "s1"

    def test_same_state_resolves_the_same(self, resolver, executions):
        execution = executions.create("architect", current_step_id="s2")
        context = ResolutionContext(role_id="architect", execution_id=execution.id)

        assert {resolver.resolve(context).id for _ in range(5)} == {"s2"}


class TestValidateAndSync:

    def test_valid_pointer(self, resolver, executions):
        execution = executions.create("architect", current_step_id="s1")

        result = resolver.validate_and_sync(execution.id, "architect")

        assert result.is_valid
        assert result.current_step.id == "s1"

    def test_pointer_of_other_role_is_invalid(self, resolver, executions):
        execution = executions.create("developer", current_step_id="d1")

        result = resolver.validate_and_sync(execution.id, "architect")

        assert not result.is_valid

    def test_recovers_from_state(self, resolver, executions, catalog, clock):
        execution = executions.create("architect",
                                      state=ExecutionState(current_step=_pointer(catalog, "s1", clock)))

        result = resolver.validate_and_sync(execution.id, "architect")

        assert result.corrected
        assert executions.get(execution.id).current_step_id == "s1"

    def test_unknown_execution(self, resolver):
        with pytest.raises(NotFoundError):
            resolver.validate_and_sync("exec-v1-" + "0" * 32, "architect")
