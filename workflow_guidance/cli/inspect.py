"""
CLI commands for inspecting the catalog: roles, steps, transitions
"""

import sys

from .base import _init_engine


def cmd_roles(args):
    """List all roles in priority order"""
    engine = _init_engine(args)

    print("\n👤 Roles:")
    print("=" * 60)
    for role in engine.catalog.roles:
        marker = " (terminal)" if engine.catalog.is_terminal(role.id) else ""
        print(f"\n{role.name} ({role.id}){marker}")
        if role.description:
            print(f"  Description: {role.description}")
        print(f"  Steps: {len(role.steps)}")
        if role.milestone:
            print(f"  Milestone: {role.milestone}")


def cmd_steps(args):
    """List the ordered steps of a role"""
    engine = _init_engine(args)
    role = engine.catalog.find_role(args.role)
    if role is None:
        print(f"❌ Role '{args.role}' not found", file=sys.stderr)
        sys.exit(1)

    print(f"\n📋 Steps of {role.name}")
    print("=" * 60)
    for step in role.steps:
        print(f"\n{step.sequence_number}. {step.name}")
        print(f"  ID: {step.id}")
        if step.dependencies:
            print(f"  Depends on: {', '.join(d.depends_on_step for d in step.dependencies)}")
        if step.quality_checks:
            print(f"  Quality checks: {len(step.quality_checks)}")


def cmd_transitions(args):
    engine = _init_engine(args)
    if args.from_role:
        if not engine.catalog.has_role(args.from_role):
            print(f"❌ Role '{args.from_role}' not found", file=sys.stderr)
            sys.exit(1)
        transitions = engine.catalog.transitions_from(args.from_role)
    else:
        transitions = engine.catalog.transitions

    if not transitions:
        print("⏳ No transitions")
        return
    print("\n🔀 Transitions:")
    print("=" * 60)
    for transition in transitions:
        print(f"\n{transition.transition_name}: {transition.from_role_id} -> {transition.to_role_id}")
        if transition.conditions:
            conditions = ", ".join(
                c.name if c.required else f"not {c.name}" for c in transition.conditions
            )
            print(f"  Conditions: {conditions}")
        if not transition.is_active:
            print("  (inactive)")
