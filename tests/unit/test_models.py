"""
Unit tests for data models.
"""
import pytest
from datetime import datetime

from workflow_guidance.core.enums import ExecutionMode, ExecutionPhase, StepResult
from workflow_guidance.core.exceptions import ValidationError
from workflow_guidance.core.models import (
    BatchSpec, CompletedStep, Execution, ExecutionState, OperationResult, Step, StepPointer,
    SubtaskSpec, TransitionRecord,
)


NOW = datetime(2024, 1, 1, 12, 0, 0)


class TestExecutionState:
    """Test the structured execution state blob."""

    def test_default_state_is_valid(self):
        state = ExecutionState()

        state.validate()
        assert state.phase == ExecutionPhase.INITIALIZED

    def test_to_dict_and_from_dict(self):
        """Test serializing a fully populated state."""
        state = ExecutionState(
            phase=ExecutionPhase.ROLE_TRANSITIONED,
            current_step=StepPointer(id="s1", name="design", sequence_number=1, assigned_at=NOW),
            last_completed_step=CompletedStep(id="s0", completed_at=NOW, result=StepResult.SUCCESS),
            last_transition=TransitionRecord(new_role_id="architect", timestamp=NOW, handoff_message="go"),
            progress_markers=["s0"],
            extra_context={"notes": ["a"]},
        )

        restored = ExecutionState.from_dict(state.to_dict())

        assert restored == state

    def test_unknown_field_in_document_is_rejected(self):
        with pytest.raises(ValidationError):
            ExecutionState.from_dict({"phase": "initialized", "mystery": 1})

    def test_unknown_phase_is_rejected(self):
        with pytest.raises(ValidationError):
            ExecutionState.from_dict({"phase": "paused"})

    def test_wrongly_typed_pointer_fails_validation(self):
        state = ExecutionState(current_step={"id": "s1"})

        with pytest.raises(ValidationError):
            state.validate()

    def test_merged_returns_copy(self):
        """Test that merging leaves the original untouched."""
        state = ExecutionState(progress_markers=["s1"])
        merged = state.merged(phase=ExecutionPhase.IN_PROGRESS)

        merged.progress_markers.append("s2")

        assert state.phase == ExecutionPhase.INITIALIZED
        assert state.progress_markers == ["s1"]
        assert merged.phase == ExecutionPhase.IN_PROGRESS

    def test_merged_rejects_unknown_fields(self):
        """Test that free-form keys must go into extra_context."""
        with pytest.raises(ValidationError) as exc_info:
            ExecutionState().merged(random_note="x")

        assert "extra_context" in str(exc_info.value)


class TestExecution:
    """Test the execution record."""

    def test_round_trip(self):
        execution = Execution(
            id="exec-v1-" + "0" * 32,
            current_role_id="architect",
            task_id=3,
            current_step_id="s1",
            execution_mode=ExecutionMode.HYBRID,
            created_at=NOW,
            updated_at=NOW,
            version=4,
        )

        restored = Execution.from_dict(execution.to_dict())

        assert restored == execution

    def test_activity_flags(self):
        execution = Execution(id="x", current_role_id="architect")

        assert execution.is_active
        assert execution.is_bootstrap

        execution.completed_at = NOW
        execution.task_id = 1
        assert not execution.is_active
        assert not execution.is_bootstrap


class TestRequestSpecs:
    """Test parsing of batch creation requests."""

    def test_batch_spec_from_dict(self):
        spec = BatchSpec.from_dict({
            "batch_id": "B001",
            "batch_title": "Models",
            "subtasks": [{"name": "Create model", "dependencies": ["Setup"]}],
        })

        assert spec.batch_id == "B001"
        assert spec.subtasks[0] == SubtaskSpec(name="Create model", dependencies=["Setup"])

    def test_batch_without_id_is_rejected(self):
        with pytest.raises(ValidationError):
            BatchSpec.from_dict({"subtasks": []})

    def test_subtask_without_name_is_rejected(self):
        with pytest.raises(ValidationError):
            SubtaskSpec.from_dict({"description": "nameless"})


class TestOperationResult:

    def test_ok_and_fail(self):
        assert OperationResult.ok(5) == OperationResult(success=True, data=5)

        failed = OperationResult.fail("boom", "NOT_FOUND")
        assert not failed.success
        assert failed.error == {"message": "boom", "code": "NOT_FOUND"}


class TestStep:

    def test_to_dict_lists_are_copies(self):
        step = Step(id="s1", role_id="architect", name="design", sequence_number=1, guidance=["a"])
        data = step.to_dict()
        data["guidance"].append("b")

        assert step.guidance == ["a"]
