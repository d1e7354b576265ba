"""
CLI parser setup.
"""

import argparse

from ..core.enums import ExecutionMode, SubtaskStatus
from .inspect import cmd_roles, cmd_steps, cmd_transitions
from .workflow import (
    cmd_bootstrap, cmd_next, cmd_start_step, cmd_complete_step, cmd_validate_transition,
    cmd_transition, cmd_progress, cmd_create_task, cmd_create_batches, cmd_subtask_status,
    cmd_events,
)


def setup_parser():
    parser = argparse.ArgumentParser(
        prog="workflow-guidance",
        description="Role-based workflow guidance command line tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s bootstrap --role boomerang
  %(prog)s next --role boomerang --execution exec-v1-...
  %(prog)s complete-step exec-v1-... boomerang-verify-workspace
  %(prog)s validate-transition boomerang_to_architect exec-v1-...
  %(prog)s progress exec-v1-...
        """
    )

    parser.add_argument("--workspace", "-w", help="Workspace path (default: current directory)")
    parser.add_argument("--catalog", "-c", help="Catalog file (default: .workflow/catalog.yaml or the bundled catalog)")
    parser.add_argument("--config", help="Config file (default: .workflow/guidance.yaml)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # roles
    roles_parser = subparsers.add_parser("roles", help="List roles")
    roles_parser.set_defaults(func=cmd_roles)

    # steps
    steps_parser = subparsers.add_parser("steps", help="List the steps of a role")
    steps_parser.add_argument("role", help="Role id or name")
    steps_parser.set_defaults(func=cmd_steps)

    # transitions
    transitions_parser = subparsers.add_parser("transitions", help="List transitions")
    transitions_parser.add_argument("--from", dest="from_role", help="Only transitions leaving this role")
    transitions_parser.set_defaults(func=cmd_transitions)

    # bootstrap
    bootstrap_parser = subparsers.add_parser("bootstrap", help="Start an execution without a task")
    bootstrap_parser.add_argument("--role", help="Initial role (default: first role)")
    bootstrap_parser.add_argument("--mode", choices=[m.value for m in ExecutionMode], help="Execution mode")
    bootstrap_parser.set_defaults(func=cmd_bootstrap)

    # next
    next_parser = subparsers.add_parser("next", help="Resolve the step to work on")
    next_parser.add_argument("--role", help="Role id or name")
    next_parser.add_argument("--execution", help="Execution id")
    next_parser.add_argument("--task", type=int, help="Task id")
    next_parser.set_defaults(func=cmd_next)

    # start-step
    start_parser = subparsers.add_parser("start-step", help="Mark a step as in progress")
    start_parser.add_argument("execution_id", help="Execution id")
    start_parser.add_argument("step_id", help="Step id")
    start_parser.set_defaults(func=cmd_start_step)

    # complete-step
    complete_parser = subparsers.add_parser("complete-step", help="Report a step outcome")
    complete_parser.add_argument("execution_id", help="Execution id")
    complete_parser.add_argument("step_id", help="Step id")
    complete_parser.add_argument("--failed", action="store_true", help="Report the step as failed")
    complete_parser.add_argument("--evidence", help="Evidence (JSON object)")
    complete_parser.set_defaults(func=cmd_complete_step)

    # validate-transition
    validate_parser = subparsers.add_parser("validate-transition", help="Check whether a transition is allowed")
    validate_parser.add_argument("transition_id", help="Transition id or name")
    validate_parser.add_argument("execution_id", help="Execution id")
    validate_parser.set_defaults(func=cmd_validate_transition)

    # transition
    transition_parser = subparsers.add_parser("transition", help="Hand the execution to another role")
    transition_parser.add_argument("transition_id", help="Transition id or name")
    transition_parser.add_argument("execution_id", help="Execution id")
    transition_parser.add_argument("--message", "-m", help="Handoff message")
    transition_parser.add_argument("--stage-first-step", action="store_true",
                                   help="Stage the first step of the new role")
    transition_parser.set_defaults(func=cmd_transition)

    # progress
    progress_parser = subparsers.add_parser("progress", help="Show execution progress")
    progress_parser.add_argument("execution_id", help="Execution id")
    progress_parser.set_defaults(func=cmd_progress)

    # create-task
    task_parser = subparsers.add_parser("create-task", help="Create a task")
    task_parser.add_argument("name", help="Task name")
    task_parser.add_argument("--description", "-d", help="Task description")
    task_parser.set_defaults(func=cmd_create_task)

    # create-batches
    batches_parser = subparsers.add_parser("create-batches", help="Create subtask batches from a file")
    batches_parser.add_argument("task_id", type=int, help="Task id")
    batches_parser.add_argument("file", help="YAML or JSON file with 'batches' and 'batch_dependencies'")
    batches_parser.add_argument("--sequential", action="store_true",
                                help="Chain subtasks so they run one after another")
    batches_parser.set_defaults(func=cmd_create_batches)

    # subtask-status
    subtask_parser = subparsers.add_parser("subtask-status", help="Change a subtask status")
    subtask_parser.add_argument("subtask_id", help="Subtask id")
    subtask_parser.add_argument("status", choices=[s.value for s in SubtaskStatus], help="New status")
    subtask_parser.add_argument("--evidence", help="Completion evidence (JSON object)")
    subtask_parser.set_defaults(func=cmd_subtask_status)

    # events
    events_parser = subparsers.add_parser("events", help="List or export workflow events")
    events_parser.add_argument("--execution", help="Only events of this execution")
    events_parser.add_argument("--type", help="Only events of this type")
    events_parser.add_argument("--output", "-o", help="Export to this file")
    events_parser.add_argument("--format", choices=["json", "yaml"], default="json", help="Export format")
    events_parser.set_defaults(func=cmd_events)

    return parser
