"""
Integration tests for a complete guided workflow over the bundled catalog.
"""
import yaml

from workflow_guidance.core.enums import ExecutionPhase, SubtaskStatus
from workflow_guidance.core.workflow_engine import WorkflowEngine


def _data(result):
    assert result.success, result.error
    return result.data


def _work_through_role(engine, role_id, task_id, execution_id):
    """Resolve, start and complete every step of the role in order."""
    outcome = None
    for expected in engine.catalog.steps_for_role(role_id):
        step = _data(engine.resolve_next_step(role_id, task_id=task_id, execution_id=execution_id))
        assert step.id == expected.id
        _data(engine.start_step(execution_id, step.id))
        outcome = _data(engine.report_step_completion(execution_id, step.id,
                                                      evidence={"files_modified": [f"{step.name}.md"]}))
    return outcome


class TestGuidedWorkflow:
    """Test the boomerang -> architect -> senior-developer -> code-review cycle."""

    def test_full_cycle(self, default_engine):
        engine = default_engine
        bootstrap = _data(engine.bootstrap("boomerang", project_path="/work/shop"))
        execution_id = bootstrap["execution"].id
        assert bootstrap["current_step"].id == "boomerang-verify-workspace"

        task = _data(engine.create_task("Checkout flow", description="Add a checkout page", status="ready"))
        _data(engine.attach_task(execution_id, task.id))

        _work_through_role(engine, "boomerang", task.id, execution_id)
        _data(engine.execute_transition("boomerang_to_architect", execution_id,
                                        handoff_message="Design the checkout page"))

        _data(engine.create_subtask_batch(task.id, [
            {"batch_id": "B001", "batch_title": "Data", "subtasks": [
                {"name": "order model", "sequence_number": 1},
                {"name": "order repository", "sequence_number": 2, "dependencies": ["order_model"]},
            ]},
            {"batch_id": "B002", "batch_title": "UI", "subtasks": [
                {"name": "checkout page", "sequence_number": 1, "dependencies": ["order repository"]},
            ]},
        ], [{"batch_id": "B002", "depends_on_batches": ["B001"]}]))
        _work_through_role(engine, "architect", task.id, execution_id)
        _data(engine.execute_transition("architect_to_senior_developer", execution_id))

        completed_batches = []
        while True:
            eligible = _data(engine.next_eligible_subtasks(task.id))
            if not eligible:
                break
            subtask = eligible[0]
            _data(engine.update_subtask_status(subtask.id, SubtaskStatus.IN_PROGRESS))
            data = _data(engine.update_subtask_status(subtask.id, "completed",
                                                      evidence={"files_modified": [f"{subtask.name}.py"]}))
            if data["batch_completion"].completion_triggered:
                completed_batches.append(subtask.batch_id)
        assert completed_batches == ["B001", "B002"]

        _work_through_role(engine, "senior-developer", task.id, execution_id)
        _data(engine.execute_transition("senior_developer_to_code_review", execution_id))
        _data(engine.record_review(task.id, "APPROVED", summary="Looks good"))
        final = _work_through_role(engine, "code-review", task.id, execution_id)

        assert final["execution_completed"]
        execution = _data(engine.get_execution(execution_id))
        assert execution.state.phase == ExecutionPhase.COMPLETED
        assert execution.progress_percentage == 100
        assert _data(engine.get_progress(execution_id)).overall_progress == 100

        history = _data(engine.transition_history(task_id=task.id))
        assert [(d.from_role, d.to_role) for d in history] == [
            ("senior-developer", "code-review"),
            ("architect", "senior-developer"),
            ("boomerang", "architect"),
        ]
        assert engine.tasks.get_task(task.id).owner == "code-review"
        assert len(engine.events.get_events(event_type="step_completed")) == engine.catalog.total_steps
        assert len(engine.events.get_events(event_type="transition")) == 3
        assert not _data(engine.validate_transition("code_review_to_boomerang", execution_id)).valid

    def test_rework_loop(self, default_engine):
        """Test sending work back from review to the developer."""
        engine = default_engine
        task = _data(engine.create_task("Fix typo"))
        execution = _data(engine.create_execution("code-review", task_id=task.id))

        result = _data(engine.execute_transition("code_review_to_senior_developer", execution.id,
                                                 stage_first_step=True))

        assert result.staged_step.id == "senior-developer-claim-batch"
        step = _data(engine.resolve_next_step("senior-developer", task_id=task.id, execution_id=execution.id))
        assert step.id == "senior-developer-implement"


class TestWorkspacePersistence:
    """Test the file-backed engine built for a workspace."""

    def test_state_survives_a_new_engine(self, temp_workspace):
        engine = WorkflowEngine.for_workspace(temp_workspace)
        execution_id = _data(engine.bootstrap("boomerang"))["execution"].id
        task = _data(engine.create_task("Persisted"))
        _data(engine.attach_task(execution_id, task.id))
        _data(engine.report_step_completion(execution_id, "boomerang-verify-workspace"))
        engine.storage.close()

        reopened = WorkflowEngine.for_workspace(temp_workspace)
        try:
            execution = _data(reopened.get_execution(execution_id))
            assert execution.task_id == task.id
            assert execution.current_step_id == "boomerang-analyze-request"
            assert reopened.tasks.get_task(task.id).name == "Persisted"
            assert len(reopened.events.get_events(execution_id=execution_id)) == 1
            assert (temp_workspace / ".workflow" / "state").is_dir()
            assert (temp_workspace / ".workflow" / "events.json").exists()
        finally:
            reopened.storage.close()

    def test_workspace_catalog_and_config(self, temp_workspace, catalog_data):
        workflow_dir = temp_workspace / ".workflow"
        (workflow_dir / "catalog.yaml").write_text(yaml.safe_dump(catalog_data), encoding="utf-8")
        (workflow_dir / "guidance.yaml").write_text(
            yaml.safe_dump({"execution": {"max_recovery_attempts": 1}}), encoding="utf-8"
        )

        engine = WorkflowEngine.for_workspace(temp_workspace)
        try:
            assert [r.id for r in engine.catalog.roles] == ["architect", "developer"]
            execution = _data(engine.bootstrap())["execution"]
            assert not _data(engine.record_execution_error(execution.id, "crash")).can_retry
        finally:
            engine.storage.close()
