"""
CLI commands for driving executions: bootstrap, next, start-step, complete-step,
validate-transition, transition, progress, create-task, create-batches,
subtask-status, events
"""

import sys
from pathlib import Path

from .base import _init_engine, _unwrap, _parse_json_arg, _load_document
from ..core.enums import ExecutionMode, StepResult
from ..core.models import BatchOptions


def _print_step(step, prefix: str = "👉 Next step") -> None:
    if step is None:
        print("🏁 No further step in this role")
        return
    print(f"{prefix}: {step.name} ({step.id})")
    if step.description:
        print(f"   {step.description}")
    for i, line in enumerate(step.guidance, 1):
        print(f"   {i}. {line}")
    if step.quality_checks:
        print("   Quality checks:")
        for check in step.quality_checks:
            print(f"     - {check.criterion}")


def cmd_bootstrap(args):
    """Start a task-less execution"""
    engine = _init_engine(args)
    mode = ExecutionMode(args.mode) if args.mode else None
    data = _unwrap(engine.bootstrap(initial_role=args.role, execution_mode=mode,
                                    project_path=str(Path(args.workspace or ".").resolve())),
                   "Bootstrap")
    execution = data["execution"]
    print(f"✅ Execution started: {execution.id}")
    print(f"   Role: {execution.current_role_id}")
    _print_step(data["current_step"], prefix="👉 Current step")


def cmd_next(args):
    """Show the step the agent should work on"""
    engine = _init_engine(args)
    step = _unwrap(engine.resolve_next_step(role_id=args.role, task_id=args.task,
                                            execution_id=args.execution),
                   "Resolving next step")
    _print_step(step)


def cmd_start_step(args):
    engine = _init_engine(args)
    record = _unwrap(engine.start_step(args.execution_id, args.step_id), "Starting step")
    print(f"✅ Step started: {record.step_id} ({record.id})")


def cmd_complete_step(args):
    """Report a step outcome"""
    engine = _init_engine(args)
    evidence = _parse_json_arg(args.evidence, "--evidence")
    result = StepResult.FAILURE if args.failed else StepResult.SUCCESS
    data = _unwrap(engine.report_step_completion(args.execution_id, args.step_id,
                                                 result=result, evidence=evidence),
                   "Reporting step")
    if result == StepResult.FAILURE:
        print(f"⚠️  Step {args.step_id} recorded as failed")
        return
    print(f"✅ Step completed: {args.step_id}")
    if data["execution_completed"]:
        print("🎉 Execution completed")
    else:
        _print_step(data["next_step"])


def cmd_validate_transition(args):
    engine = _init_engine(args)
    validation = _unwrap(engine.validate_transition(args.transition_id, args.execution_id),
                         "Validating transition")
    for warning in validation.warnings:
        print(f"⚠️  {warning}")
    if not validation.valid:
        for error in validation.errors:
            print(f"❌ {error}", file=sys.stderr)
        sys.exit(1)
    print(f"✅ Transition {args.transition_id} is allowed")


def cmd_transition(args):
    """Hand the execution over to another role"""
    engine = _init_engine(args)
    result = _unwrap(engine.execute_transition(args.transition_id, args.execution_id,
                                               handoff_message=args.message,
                                               stage_first_step=args.stage_first_step),
                     "Transition")
    print(f"✅ {result.message}")
    print(f"   New role: {result.new_role_id}")
    for warning in result.warnings:
        print(f"⚠️  {warning}")
    if result.staged_step:
        _print_step(result.staged_step, prefix="👉 Staged step")


def cmd_progress(args):
    engine = _init_engine(args)
    metrics = _unwrap(engine.get_progress(args.execution_id), "Progress")
    print(f"📊 Progress of {args.execution_id}")
    print(f"   Overall: {metrics.overall_progress}% ({metrics.completed_steps}/{metrics.total_steps} steps)")
    print(f"   Role: {metrics.role_progress}%")
    print(f"   Current step: {metrics.current_step_progress}%")
    if metrics.estimated_time_remaining:
        print(f"   Estimated remaining: {metrics.estimated_time_remaining}")
    if metrics.next_milestone:
        print(f"   Next milestone: {metrics.next_milestone}")


def cmd_create_task(args):
    engine = _init_engine(args)
    task = _unwrap(engine.create_task(args.name, description=args.description or ""), "Creating task")
    print(f"✅ Task created: #{task.id} {task.name}")


def cmd_create_batches(args):
    """Create batches and subtasks from a YAML or JSON request file"""
    engine = _init_engine(args)
    request = _load_document(Path(args.file))
    options = BatchOptions(allow_parallel_execution=not args.sequential)
    result = _unwrap(engine.create_subtask_batch(args.task_id, request.get("batches", []),
                                                 request.get("batch_dependencies"), options),
                     "Creating batches")
    print(f"✅ {result.message}")
    for summary in result.batch_summary:
        print(f"   {summary['batch_id']}: {summary['subtask_count']} subtasks")
    for subtask in result.subtasks:
        print(f"   - {subtask.id} [{subtask.batch_id}] {subtask.name}")


def cmd_subtask_status(args):
    engine = _init_engine(args)
    evidence = _parse_json_arg(args.evidence, "--evidence")
    data = _unwrap(engine.update_subtask_status(args.subtask_id, args.status, evidence),
                   "Updating subtask")
    subtask = data["subtask"]
    print(f"✅ {subtask.name} is now {subtask.status.value}")
    completion = data["batch_completion"]
    if completion is not None and completion.completion_triggered:
        print(f"🎉 {completion.message}")


def cmd_events(args):
    """List or export the event log"""
    engine = _init_engine(args)
    filters = {k: v for k, v in (("execution_id", args.execution), ("event_type", args.type)) if v}
    if args.output:
        count = engine.events.export_events(Path(args.output), format=args.format, filters=filters)
        print(f"✅ Exported {count} events to {args.output}")
        return
    events = engine.events.get_events(**filters)
    if not events:
        print("⏳ No events recorded")
        return
    for event in events:
        target = event.step or event.role or event.metadata.get("batch_id") or ""
        print(f"{event.timestamp.isoformat()}  {event.event_type:<20} {event.status:<8} {target}")
