"""
Unit tests for the WorkflowEngine facade.
"""
import pytest

from workflow_guidance.core.enums import (
    ExecutionPhase, IdKind, StepProgressStatus, SubtaskStatus, TaskStatus,
)
from workflow_guidance.core.exceptions import StorageFailureError
from workflow_guidance.core.identifiers import new_id


def _data(result):
    assert result.success, result.error
    return result.data


class TestOperationResults:
    """Test that failures come back as structured results."""

    def test_not_found(self, engine):
        result = engine.get_execution(new_id(IdKind.EXECUTION))

        assert not result.success
        assert result.error["code"] == "NOT_FOUND"

    def test_validation_failure(self, engine):
        execution = _data(engine.bootstrap("architect"))["execution"]

        result = engine.report_step_completion(execution.id, "s1", result="maybe")

        assert not result.success
        assert result.error["code"] == "VALIDATION_FAILED"

    def test_step_of_other_role(self, engine):
        execution = _data(engine.bootstrap("architect"))["execution"]

        result = engine.start_step(execution.id, "d1")

        assert result.error["code"] == "INCONSISTENT_STATE"

    def test_unexpected_error_is_internal(self, engine, monkeypatch):
        execution = _data(engine.bootstrap("architect"))["execution"]

        def explode(execution_id):
            raise RuntimeError("boom")

        monkeypatch.setattr(engine.progress, "calculate", explode)

        result = engine.get_progress(execution.id)

        assert result.error["code"] == "INTERNAL_ERROR"
        assert "boom" in result.error["message"]


class TestExecutions:

    def test_bootstrap(self, engine):
        data = _data(engine.bootstrap("architect", project_path="/tmp/project"))

        execution = data["execution"]
        assert data["current_step"].id == "s1"
        assert execution.current_step_id == "s1"
        assert execution.task_id is None
        assert execution.total_steps == 4
        assert execution.execution_context == {"project_path": "/tmp/project"}
        assert engine.cache.most_recent().execution_id == execution.id

    def test_bootstrap_defaults_to_first_role(self, engine):
        assert _data(engine.bootstrap())["execution"].current_role_id == "architect"

    def test_create_execution_requires_known_task(self, engine):
        result = engine.create_execution("architect", task_id=99)

        assert result.error["code"] == "NOT_FOUND"

    def test_create_and_attach_task(self, engine):
        execution = _data(engine.bootstrap("architect"))["execution"]
        task = _data(engine.create_task("Feature", status="ready"))

        attached = _data(engine.attach_task(execution.id, task.id))

        assert attached.task_id == task.id
        assert task.status == TaskStatus.READY

    def test_complete_execution(self, engine):
        execution = _data(engine.bootstrap("architect"))["execution"]

        completed = _data(engine.complete_execution(execution.id))

        assert completed.completed_at is not None
        assert completed.progress_percentage == 100
        assert completed.state.phase == ExecutionPhase.COMPLETED
        assert engine.events.get_events(event_type="execution_completed")

    def test_record_execution_error(self, engine):
        execution = _data(engine.bootstrap("architect"))["execution"]

        statuses = [_data(engine.record_execution_error(execution.id, "tool crashed")) for _ in range(3)]

        assert [s.can_retry for s in statuses] == [True, True, False]
        assert statuses[-1].retry_count == 3
        assert engine.executions.get(execution.id).last_error.message == "tool crashed"


class TestSteps:
    """Test step start and completion through the facade."""

    def test_completion_advances_current_step(self, engine, clock):
        execution = _data(engine.bootstrap("architect"))["execution"]
        _data(engine.start_step(execution.id, "s1"))
        clock.advance(90)

        data = _data(engine.report_step_completion(execution.id, "s1", evidence={"files_modified": ["a.py"]}))

        assert data["next_step"].id == "s2"
        assert data["progress"].status == StepProgressStatus.COMPLETED
        assert data["progress"].duration == 90
        assert not data["execution_completed"]
        updated = data["execution"]
        assert updated.current_step_id == "s2"
        assert updated.steps_completed == 1
        assert updated.progress_percentage == 25
        assert updated.state.last_completed_step.id == "s1"
        assert updated.state.progress_markers == ["s1"]

    def test_failure_keeps_current_step(self, engine):
        execution = _data(engine.bootstrap("architect"))["execution"]

        data = _data(engine.report_step_completion(execution.id, "s1", result=False,
                                                   evidence={"error_details": {"reason": "lint"}}))

        assert data["next_step"] is None
        assert data["progress"].status == StepProgressStatus.FAILED
        assert data["execution"].current_step_id == "s1"
        assert engine.events.get_events(event_type="step_failed")

    def test_completed_step_must_be_restarted(self, engine):
        execution = _data(engine.bootstrap("architect"))["execution"]
        _data(engine.report_step_completion(execution.id, "s1"))

        assert engine.report_step_completion(execution.id, "s1").error["code"] == "VALIDATION_FAILED"

        _data(engine.start_step(execution.id, "s1"))
        assert engine.report_step_completion(execution.id, "s1").success

    def test_last_step_of_terminal_role_completes_execution(self, engine):
        execution = _data(engine.create_execution("developer"))
        _data(engine.report_step_completion(execution.id, "d1"))

        data = _data(engine.report_step_completion(execution.id, "d2"))

        assert data["execution_completed"]
        assert data["execution"].state.phase == ExecutionPhase.COMPLETED
        assert engine.start_step(execution.id, "d1").error["code"] == "VALIDATION_FAILED"

    def test_resolve_next_step_repairs_stale_execution_id(self, engine):
        """Test that a descriptive id from an old conversation is swapped for the cached one."""
        execution = _data(engine.bootstrap("architect"))["execution"]
        _data(engine.report_step_completion(execution.id, "s1"))

        step = _data(engine.resolve_next_step("architect", execution_id="architect_session_01"))

        assert step.id == "s2"

    def test_resolve_for_unknown_role(self, engine):
        assert _data(engine.resolve_next_step("tester")) is None


class TestTransitions:

    def test_invalid_transition_fails(self, engine):
        execution = _data(engine.bootstrap("architect"))["execution"]

        result = engine.execute_transition("architect_to_developer", execution.id)

        assert result.error["code"] == "VALIDATION_FAILED"
        assert "Transition validation failed" in result.error["message"]
        assert engine.executions.get(execution.id).current_role_id == "architect"

    def test_transition_after_all_steps(self, engine):
        execution = _data(engine.bootstrap("architect"))["execution"]
        _data(engine.report_step_completion(execution.id, "s1"))
        _data(engine.report_step_completion(execution.id, "s2"))

        assert _data(engine.validate_transition("architect_to_developer", execution.id)).valid
        assert [r.transition.id for r in _data(engine.recommend_transitions(execution.id))] == [
            "architect_to_developer"
        ]

        result = _data(engine.execute_transition("architect_to_developer", execution.id))

        assert result.new_role_id == "developer"
        assert _data(engine.resolve_next_step("developer", execution_id=execution.id)).id == "d1"
        assert len(_data(engine.transition_history(execution_id=execution.id))) == 1
        transition_event = engine.events.get_events(event_type="transition")[0]
        assert transition_event.metadata["from_role"] == "architect"

    def test_failed_handoff_is_reported_as_success(self, engine, monkeypatch):
        """Test that the outcome matches what was persisted when the delegation write fails."""
        execution = _data(engine.bootstrap("architect"))["execution"]
        _data(engine.report_step_completion(execution.id, "s1"))
        _data(engine.report_step_completion(execution.id, "s2"))

        def fail(record):
            raise StorageFailureError("disk full")

        monkeypatch.setattr(engine.tasks, "record_delegation", fail)

        result = _data(engine.execute_transition("architect_to_developer", execution.id))

        assert result.warnings
        assert engine.executions.get(execution.id).current_role_id == "developer"
        assert engine.events.get_events(event_type="transition")
        assert engine.cache.most_recent().current_role_id == "developer"

    def test_list_transitions(self, engine):
        assert [t.id for t in _data(engine.list_transitions("architect"))] == [
            "architect_to_developer", "architect_fast_track",
        ]
        assert engine.list_transitions("tester").error["code"] == "NOT_FOUND"


class TestTasksAndSubtasks:

    def test_unknown_task_status(self, engine):
        assert engine.create_task("Feature", status="bogus").error["code"] == "VALIDATION_FAILED"

    def test_task_status_and_review(self, engine):
        task = _data(engine.create_task("Feature"))

        assert _data(engine.update_task_status(task.id, "in-progress")).status == TaskStatus.IN_PROGRESS
        _data(engine.record_review(task.id, "APPROVED", summary="ok"))
        assert engine.tasks.has_approved_review(task.id)

    def test_batches_from_documents(self, engine):
        task = _data(engine.create_task("Feature"))

        created = _data(engine.create_subtask_batch(task.id, [
            {"batch_id": "B001", "subtasks": [{"name": "schema"}]},
            {"batch_id": "B002", "subtasks": [{"name": "api", "dependencies": ["schema"]}]},
        ], [{"batch_id": "B002", "depends_on_batches": ["B001"]}]))

        named = {s.name: s for s in created.subtasks}
        assert [s.name for s in _data(engine.next_eligible_subtasks(task.id))] == ["schema"]
        assert engine.update_subtask_status(named["api"].id, "in-progress").error["code"] == "VALIDATION_FAILED"

        data = _data(engine.update_subtask_status(named["schema"].id, "completed",
                                                  evidence={"files_modified": ["schema.sql"]}))

        assert data["subtask"].status == SubtaskStatus.COMPLETED
        assert data["batch_completion"].completion_triggered
        assert _data(engine.check_batch_completion(task.id, "B001")).batch_completed
        assert len(engine.events.get_events(event_type="batch_created")) == 2
        assert engine.events.get_events(event_type="batch_completed")[0].metadata["files_modified"] == [
            "schema.sql"
        ]

    def test_batch_cycle_is_reported(self, engine):
        task = _data(engine.create_task("Feature"))

        result = engine.create_subtask_batch(
            task.id,
            [{"batch_id": "A", "subtasks": [{"name": "a"}]}, {"batch_id": "B", "subtasks": [{"name": "b"}]}],
            [{"batch_id": "A", "depends_on_batches": ["B"]}, {"batch_id": "B", "depends_on_batches": ["A"]}],
        )

        assert result.error["code"] == "VALIDATION_FAILED"
        assert "Circular dependency" in result.error["message"]
