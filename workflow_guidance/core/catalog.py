"""
Workflow catalog: roles, their ordered steps and the transitions between them.
Loaded once from YAML/JSON and read-only afterwards.
"""

import logging
from importlib import resources
from pathlib import Path
from typing import Dict, List, Optional, Any

import yaml

from .exceptions import NotFoundError, ValidationError
from .models import (
    QualityCheck, Role, RoleTransition, Step, StepDependency, TransitionCondition,
)
from .schema_loader import SchemaLoader

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_RESOURCE = "default_catalog.yaml"

_STRING_LIST = {"type": "array", "items": {"type": "string"}}

CATALOG_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["roles"],
    "properties": {
        "schema_version": {"type": "string"},
        "roles": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["id", "name"],
                "properties": {
                    "id": {"type": "string", "minLength": 1},
                    "name": {"type": "string", "minLength": 1},
                    "description": {"type": "string"},
                    "priority": {"type": "integer"},
                    "is_active": {"type": "boolean"},
                    "terminal": {"type": "boolean"},
                    "milestone": {"type": "string"},
                    "steps": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "required": ["id", "name", "sequence_number"],
                            "properties": {
                                "id": {"type": "string", "minLength": 1},
                                "name": {"type": "string", "minLength": 1},
                                "sequence_number": {"type": "integer"},
                                "step_type": {"type": "string"},
                                "description": {"type": "string"},
                                "guidance": _STRING_LIST,
                                "quality_checks": _STRING_LIST,
                                "dependencies": {
                                    "type": "array",
                                    "items": {
                                        "anyOf": [
                                            {"type": "string"},
                                            {
                                                "type": "object",
                                                "required": ["step"],
                                                "properties": {
                                                    "step": {"type": "string"},
                                                    "is_required": {"type": "boolean"},
                                                },
                                            },
                                        ]
                                    },
                                },
                                "is_required": {"type": "boolean"},
                                "approach": {"type": "string"},
                            },
                        },
                    },
                },
            },
        },
        "transitions": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["transition_name", "from_role", "to_role"],
                "properties": {
                    "id": {"type": "string"},
                    "transition_name": {"type": "string", "minLength": 1},
                    "from_role": {"type": "string"},
                    "to_role": {"type": "string"},
                    "conditions": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "required": ["name"],
                            "properties": {
                                "name": {"type": "string"},
                                "required": {"type": "boolean"},
                            },
                        },
                    },
                    "requirements": _STRING_LIST,
                    "description": {"type": "string"},
                    "handoff_template": {"type": "string"},
                    "deliverables": _STRING_LIST,
                    "context_elements": _STRING_LIST,
                    "is_active": {"type": "boolean"},
                },
            },
        },
    },
}


class WorkflowCatalog:
    """
    Read-only lookup over roles, steps and transitions.

    Roles may be referenced by id or by name everywhere a role is expected.
    """

    def __init__(self, roles: List[Role], transitions: List[RoleTransition]):
        self._roles: Dict[str, Role] = {}
        self._role_names: Dict[str, str] = {}
        self._steps: Dict[str, Step] = {}
        self._transitions: Dict[str, RoleTransition] = {}
        self._transition_names: Dict[str, str] = {}

        for role in roles:
            self._add_role(role)
        for transition in transitions:
            self._add_transition(transition)
        self._check_step_dependencies()

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def _add_role(self, role: Role) -> None:
        if role.id in self._roles:
            raise ValidationError(f"Duplicate role id '{role.id}'", field="roles", value=role.id)
        if role.name in self._role_names:
            raise ValidationError(f"Duplicate role name '{role.name}'", field="roles", value=role.name)

        last_sequence = None
        for step in role.steps:
            if step.role_id != role.id:
                raise ValidationError(
                    f"Step '{step.id}' is attached to role '{role.id}' but names role '{step.role_id}'",
                    field="steps",
                    value=step.id
                )
            if step.id in self._steps:
                raise ValidationError(f"Duplicate step id '{step.id}'", field="steps", value=step.id)
            if last_sequence is not None and step.sequence_number <= last_sequence:
                raise ValidationError(
                    f"Step sequence numbers of role '{role.id}' must be unique and strictly increasing",
                    field="sequence_number",
                    value=step.sequence_number,
                    context={"step": step.id, "previous": last_sequence}
                )
            last_sequence = step.sequence_number
            self._steps[step.id] = step

        self._roles[role.id] = role
        self._role_names[role.name] = role.id

    def _add_transition(self, transition: RoleTransition) -> None:
        for role_ref in (transition.from_role_id, transition.to_role_id):
            if role_ref not in self._roles:
                raise ValidationError(
                    f"Transition '{transition.transition_name}' references unknown role '{role_ref}'",
                    field="transitions",
                    value=role_ref
                )
        if transition.id in self._transitions:
            raise ValidationError(f"Duplicate transition id '{transition.id}'", field="transitions")
        if transition.transition_name in self._transition_names:
            raise ValidationError(
                f"Duplicate transition name '{transition.transition_name}'",
                field="transitions",
                value=transition.transition_name
            )
        self._transitions[transition.id] = transition
        self._transition_names[transition.transition_name] = transition.id

    def _check_step_dependencies(self) -> None:
        for role in self._roles.values():
            names = {s.name for s in role.steps}
            for step in role.steps:
                for dependency in step.dependencies:
                    if dependency.depends_on_step not in names:
                        raise ValidationError(
                            f"Step '{step.id}' depends on unknown step '{dependency.depends_on_step}'",
                            field="dependencies",
                            context={"role": role.id}
                        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkflowCatalog':
        """
        Build a catalog from a parsed catalog document.

        Raises:
            ValidationError: If the document is malformed or inconsistent
        """
        SchemaLoader.validate(data, CATALOG_SCHEMA, "workflow catalog")

        roles: List[Role] = []
        name_to_id: Dict[str, str] = {}
        for role_data in data["roles"]:
            role_id = role_data["id"]
            steps = [cls._parse_step(role_id, s) for s in role_data.get("steps", [])]
            roles.append(Role(
                id=role_id,
                name=role_data["name"],
                description=role_data.get("description", ""),
                priority=role_data.get("priority", 0),
                is_active=role_data.get("is_active", True),
                terminal=role_data.get("terminal", False),
                milestone=role_data.get("milestone"),
                steps=steps,
            ))
            name_to_id[role_data["name"]] = role_id

        transitions = []
        for t in data.get("transitions", []):
            transitions.append(RoleTransition(
                id=t.get("id") or t["transition_name"],
                transition_name=t["transition_name"],
                from_role_id=name_to_id.get(t["from_role"], t["from_role"]),
                to_role_id=name_to_id.get(t["to_role"], t["to_role"]),
                conditions=[
                    TransitionCondition(name=c["name"], required=c.get("required", True))
                    for c in t.get("conditions", [])
                ],
                requirements=list(t.get("requirements", [])),
                description=t.get("description", ""),
                handoff_template=t.get("handoff_template", ""),
                deliverables=list(t.get("deliverables", [])),
                context_elements=list(t.get("context_elements", [])),
                is_active=t.get("is_active", True),
            ))
        return cls(roles, transitions)

    @staticmethod
    def _parse_step(role_id: str, data: Dict[str, Any]) -> Step:
        dependencies = []
        for dep in data.get("dependencies", []):
            if isinstance(dep, str):
                dependencies.append(StepDependency(depends_on_step=dep))
            else:
                dependencies.append(StepDependency(depends_on_step=dep["step"],
                                                   is_required=dep.get("is_required", True)))
        return Step(
            id=data["id"],
            role_id=role_id,
            name=data["name"],
            sequence_number=data["sequence_number"],
            step_type=data.get("step_type", "ACTION"),
            description=data.get("description", ""),
            guidance=list(data.get("guidance", [])),
            quality_checks=[
                QualityCheck(criterion=c, sequence_order=i + 1)
                for i, c in enumerate(data.get("quality_checks", []))
            ],
            dependencies=dependencies,
            is_required=data.get("is_required", True),
            approach=data.get("approach", ""),
        )

    @classmethod
    def load(cls, path: Path) -> 'WorkflowCatalog':
        """Load a catalog file (YAML or JSON)"""
        catalog = cls.from_dict(SchemaLoader.load_schema(Path(path)))
        logger.debug("Loaded catalog from %s (%d roles)", path, len(catalog.roles))
        return catalog

    @classmethod
    def load_default(cls) -> 'WorkflowCatalog':
        """Load the catalog bundled with the package"""
        text = resources.files("workflow_guidance.catalogs").joinpath(DEFAULT_CATALOG_RESOURCE).read_text(
            encoding="utf-8"
        )
        return cls.from_dict(yaml.safe_load(text))

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    @property
    def roles(self) -> List[Role]:
        """Roles ordered by priority, then declaration order"""
        return sorted(self._roles.values(), key=lambda r: r.priority)

    def find_role(self, role_ref: Optional[str]) -> Optional[Role]:
        if not role_ref:
            return None
        role = self._roles.get(role_ref)
        if role is None and role_ref in self._role_names:
            role = self._roles[self._role_names[role_ref]]
        return role

    def get_role(self, role_ref: str) -> Role:
        role = self.find_role(role_ref)
        if role is None:
            raise NotFoundError(f"Role '{role_ref}' not found", role_id=role_ref)
        return role

    def has_role(self, role_ref: Optional[str]) -> bool:
        return self.find_role(role_ref) is not None

    def is_terminal(self, role_ref: str) -> bool:
        """
        A role is terminal when flagged so; if no role carries the flag, a
        role without outgoing active transitions is terminal.
        """
        role = self.get_role(role_ref)
        if any(r.terminal for r in self._roles.values()):
            return role.terminal
        return not self.transitions_from(role.id)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def steps_for_role(self, role_ref: str) -> List[Step]:
        return list(self.get_role(role_ref).steps)

    def all_steps(self) -> List[Step]:
        return [step for role in self.roles for step in role.steps]

    @property
    def total_steps(self) -> int:
        return len(self._steps)

    def find_step(self, step_id: Optional[str]) -> Optional[Step]:
        if not step_id:
            return None
        return self._steps.get(step_id)

    def get_step(self, step_id: str) -> Step:
        step = self.find_step(step_id)
        if step is None:
            raise NotFoundError(f"Step '{step_id}' not found", step_id=step_id)
        return step

    def has_step(self, step_id: Optional[str]) -> bool:
        return self.find_step(step_id) is not None

    def step_belongs_to_role(self, step_id: Optional[str], role_ref: Optional[str]) -> bool:
        step = self.find_step(step_id)
        role = self.find_role(role_ref)
        return step is not None and role is not None and step.role_id == role.id

    def first_step(self, role_ref: str) -> Optional[Step]:
        """Lowest-sequence step of the role, None when it has no steps"""
        steps = self.get_role(role_ref).steps
        return steps[0] if steps else None

    def next_step_after(self, step_id: str) -> Optional[Step]:
        """Step immediately after ``step_id`` in its role, None for the last one"""
        step = self.get_step(step_id)
        siblings = self._roles[step.role_id].steps
        index = next(i for i, s in enumerate(siblings) if s.id == step.id)
        return siblings[index + 1] if index + 1 < len(siblings) else None

    def is_last_step(self, step_id: str) -> bool:
        return self.next_step_after(step_id) is None

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    @property
    def transitions(self) -> List[RoleTransition]:
        return list(self._transitions.values())

    def transitions_from(self, role_ref: str) -> List[RoleTransition]:
        """Active transitions leaving the role, in declaration order"""
        role = self.get_role(role_ref)
        return [t for t in self._transitions.values() if t.from_role_id == role.id and t.is_active]

    def find_transition(self, transition_ref: Optional[str]) -> Optional[RoleTransition]:
        if not transition_ref:
            return None
        transition = self._transitions.get(transition_ref)
        if transition is None and transition_ref in self._transition_names:
            transition = self._transitions[self._transition_names[transition_ref]]
        return transition

    def get_transition(self, transition_ref: str) -> RoleTransition:
        transition = self.find_transition(transition_ref)
        if transition is None:
            raise NotFoundError(f"Transition '{transition_ref}' not found",
                                context={"transition": transition_ref})
        return transition
