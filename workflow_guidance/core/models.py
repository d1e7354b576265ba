"""
Data model classes for the workflow guidance engine.
Following Single Responsibility Principle - all data models in one module.
"""

import copy
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, List, Optional, Any

import jsonschema

from .enums import (
    ExecutionMode, ExecutionPhase, ReviewStatus, StepProgressStatus,
    StepResult, SubtaskStatus, TaskStatus,
)
from .exceptions import ValidationError


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


# ============================================================================
# Catalog Models
# ============================================================================

@dataclass
class QualityCheck:
    """Criterion the agent verifies before reporting a step done"""
    criterion: str
    sequence_order: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"criterion": self.criterion, "sequence_order": self.sequence_order}


@dataclass
class StepDependency:
    """Named predecessor step within the same role"""
    depends_on_step: str
    is_required: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {"depends_on_step": self.depends_on_step, "is_required": self.is_required}


@dataclass
class Step:
    """An atomic unit of guidance within a role"""
    id: str
    role_id: str
    name: str
    sequence_number: int
    step_type: str = "ACTION"
    description: str = ""
    guidance: List[str] = field(default_factory=list)  # step-by-step instructions
    quality_checks: List[QualityCheck] = field(default_factory=list)
    dependencies: List[StepDependency] = field(default_factory=list)
    is_required: bool = True
    approach: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role_id": self.role_id,
            "name": self.name,
            "sequence_number": self.sequence_number,
            "step_type": self.step_type,
            "description": self.description,
            "guidance": list(self.guidance),
            "quality_checks": [q.to_dict() for q in self.quality_checks],
            "dependencies": [d.to_dict() for d in self.dependencies],
            "is_required": self.is_required,
            "approach": self.approach,
        }


@dataclass
class Role:
    """A named phase of the workflow owning an ordered set of steps"""
    id: str
    name: str
    description: str = ""
    priority: int = 0
    is_active: bool = True
    terminal: bool = False
    milestone: Optional[str] = None
    steps: List[Step] = field(default_factory=list)

    def to_dict(self, include_steps: bool = True) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "priority": self.priority,
            "is_active": self.is_active,
            "terminal": self.terminal,
            "milestone": self.milestone,
        }
        if include_steps:
            data["steps"] = [s.to_dict() for s in self.steps]
        return data


@dataclass
class TransitionCondition:
    """Named condition gating a transition; ``required`` is the expected value"""
    name: str
    required: bool = True


@dataclass
class RoleTransition:
    """Rule permitting movement from one role to another"""
    id: str
    transition_name: str
    from_role_id: str
    to_role_id: str
    conditions: List[TransitionCondition] = field(default_factory=list)
    requirements: List[str] = field(default_factory=list)
    description: str = ""
    handoff_template: str = ""
    deliverables: List[str] = field(default_factory=list)
    context_elements: List[str] = field(default_factory=list)
    is_active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "transition_name": self.transition_name,
            "from_role_id": self.from_role_id,
            "to_role_id": self.to_role_id,
            "conditions": [{"name": c.name, "required": c.required} for c in self.conditions],
            "requirements": list(self.requirements),
            "description": self.description,
            "handoff_template": self.handoff_template,
            "deliverables": list(self.deliverables),
            "context_elements": list(self.context_elements),
            "is_active": self.is_active,
        }


# ============================================================================
# Execution Models
# ============================================================================

EXECUTION_STATE_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["phase"],
    "additionalProperties": False,
    "properties": {
        "phase": {"enum": [p.value for p in ExecutionPhase]},
        "current_step": {
            "type": ["object", "null"],
            "required": ["id", "name", "sequence_number", "assigned_at"],
            "properties": {
                "id": {"type": "string", "minLength": 1},
                "name": {"type": "string"},
                "sequence_number": {"type": "integer"},
                "assigned_at": {"type": "string"},
            },
        },
        "last_completed_step": {
            "type": ["object", "null"],
            "required": ["id", "completed_at", "result"],
            "properties": {
                "id": {"type": "string", "minLength": 1},
                "completed_at": {"type": "string"},
                "result": {"enum": [r.value for r in StepResult]},
            },
        },
        "last_transition": {
            "type": ["object", "null"],
            "required": ["new_role_id", "timestamp"],
            "properties": {
                "new_role_id": {"type": "string", "minLength": 1},
                "timestamp": {"type": "string"},
                "handoff_message": {"type": ["string", "null"]},
            },
        },
        "progress_markers": {"type": "array", "items": {"type": "string"}},
        "last_progress_update": {"type": ["string", "null"]},
        "extra_context": {"type": "object"},
    },
}

_STATE_VALIDATOR = jsonschema.Draft7Validator(EXECUTION_STATE_SCHEMA)


@dataclass
class StepPointer:
    """Step assigned to the execution, as recorded in the state blob"""
    id: str
    name: str
    sequence_number: int
    assigned_at: datetime

    @classmethod
    def for_step(cls, step: Step, assigned_at: datetime) -> 'StepPointer':
        return cls(id=step.id, name=step.name, sequence_number=step.sequence_number,
                   assigned_at=assigned_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "sequence_number": self.sequence_number,
            "assigned_at": self.assigned_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StepPointer':
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            sequence_number=int(data.get("sequence_number", 0)),
            assigned_at=_parse_dt(data.get("assigned_at")) or datetime.now(),
        )


@dataclass
class CompletedStep:
    """Last step the agent reported on"""
    id: str
    completed_at: datetime
    result: StepResult = StepResult.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "completed_at": self.completed_at.isoformat(),
            "result": self.result.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CompletedStep':
        return cls(
            id=data["id"],
            completed_at=_parse_dt(data.get("completed_at")) or datetime.now(),
            result=StepResult(data.get("result", StepResult.SUCCESS.value)),
        )


@dataclass
class TransitionRecord:
    """Most recent committed role transition"""
    new_role_id: str
    timestamp: datetime
    handoff_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "new_role_id": self.new_role_id,
            "timestamp": self.timestamp.isoformat(),
            "handoff_message": self.handoff_message,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TransitionRecord':
        return cls(
            new_role_id=data["new_role_id"],
            timestamp=_parse_dt(data.get("timestamp")) or datetime.now(),
            handoff_message=data.get("handoff_message"),
        )


@dataclass
class ExecutionState:
    """
    Structured state blob of an execution.

    The phase and the three optional sub-structs are typed; anything genuinely
    free-form goes into ``extra_context`` and nowhere else. ``validate`` runs
    on every write through the execution store.
    """
    phase: ExecutionPhase = ExecutionPhase.INITIALIZED
    current_step: Optional[StepPointer] = None
    last_completed_step: Optional[CompletedStep] = None
    last_transition: Optional[TransitionRecord] = None
    progress_markers: List[str] = field(default_factory=list)
    last_progress_update: Optional[datetime] = None
    extra_context: Dict[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        """
        Validate structure and types.

        Raises:
            ValidationError: If the blob does not match the state schema
        """
        if not isinstance(self.phase, ExecutionPhase):
            raise ValidationError("Execution phase must be an ExecutionPhase",
                                  field="phase", value=self.phase)
        typed = (
            ("current_step", self.current_step, StepPointer),
            ("last_completed_step", self.last_completed_step, CompletedStep),
            ("last_transition", self.last_transition, TransitionRecord),
        )
        for name, value, expected in typed:
            if value is not None and not isinstance(value, expected):
                raise ValidationError(f"Invalid {name} in execution state",
                                      field=name, value=value)
        if not isinstance(self.extra_context, dict):
            raise ValidationError("extra_context must be a mapping",
                                  field="extra_context", value=self.extra_context)

        errors = sorted(_STATE_VALIDATOR.iter_errors(self.to_dict()), key=lambda e: list(e.path))
        if errors:
            raise ValidationError(
                "Execution state does not match schema",
                field="execution_state",
                errors=[f"{'/'.join(str(p) for p in e.path) or '<root>'}: {e.message}" for e in errors]
            )

    def merged(self, **patch: Any) -> 'ExecutionState':
        """Return a copy with the given fields replaced"""
        unknown = set(patch) - set(self.__dataclass_fields__)
        if unknown:
            raise ValidationError(
                f"Unknown execution state fields: {', '.join(sorted(unknown))}",
                field="execution_state",
                context={"hint": "put free-form data in extra_context"}
            )
        return replace(copy.deepcopy(self), **patch)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value if isinstance(self.phase, ExecutionPhase) else self.phase,
            "current_step": self.current_step.to_dict() if self.current_step else None,
            "last_completed_step": self.last_completed_step.to_dict() if self.last_completed_step else None,
            "last_transition": self.last_transition.to_dict() if self.last_transition else None,
            "progress_markers": list(self.progress_markers),
            "last_progress_update": _iso(self.last_progress_update),
            "extra_context": copy.deepcopy(self.extra_context),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'ExecutionState':
        if not data:
            return cls()
        errors = list(_STATE_VALIDATOR.iter_errors(data))
        if errors:
            raise ValidationError(
                "Execution state does not match schema",
                field="execution_state",
                errors=[e.message for e in errors]
            )
        return cls(
            phase=ExecutionPhase(data["phase"]),
            current_step=StepPointer.from_dict(data["current_step"]) if data.get("current_step") else None,
            last_completed_step=(CompletedStep.from_dict(data["last_completed_step"])
                                 if data.get("last_completed_step") else None),
            last_transition=(TransitionRecord.from_dict(data["last_transition"])
                             if data.get("last_transition") else None),
            progress_markers=list(data.get("progress_markers", [])),
            last_progress_update=_parse_dt(data.get("last_progress_update")),
            extra_context=dict(data.get("extra_context", {})),
        )


@dataclass
class ExecutionErrorRecord:
    """Structured last error of an execution"""
    message: str
    code: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "code": self.code, "timestamp": self.timestamp.isoformat()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ExecutionErrorRecord':
        return cls(
            message=data.get("message", ""),
            code=data.get("code", "INTERNAL_ERROR"),
            timestamp=_parse_dt(data.get("timestamp")) or datetime.now(),
        )


@dataclass
class Execution:
    """Persistent record of one run of the workflow"""
    id: str
    current_role_id: str
    task_id: Optional[int] = None
    current_step_id: Optional[str] = None
    state: ExecutionState = field(default_factory=ExecutionState)
    steps_completed: int = 0
    total_steps: int = 0
    progress_percentage: int = 0
    recovery_attempts: int = 0
    max_recovery_attempts: int = 3
    last_error: Optional[ExecutionErrorRecord] = None
    execution_mode: ExecutionMode = ExecutionMode.GUIDED
    auto_created_task: bool = False
    execution_context: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    version: int = 0

    @property
    def is_active(self) -> bool:
        return self.completed_at is None

    @property
    def is_bootstrap(self) -> bool:
        return not self.task_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "current_role_id": self.current_role_id,
            "task_id": self.task_id,
            "current_step_id": self.current_step_id,
            "state": self.state.to_dict(),
            "steps_completed": self.steps_completed,
            "total_steps": self.total_steps,
            "progress_percentage": self.progress_percentage,
            "recovery_attempts": self.recovery_attempts,
            "max_recovery_attempts": self.max_recovery_attempts,
            "last_error": self.last_error.to_dict() if self.last_error else None,
            "execution_mode": self.execution_mode.value,
            "auto_created_task": self.auto_created_task,
            "execution_context": copy.deepcopy(self.execution_context),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "completed_at": _iso(self.completed_at),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Execution':
        return cls(
            id=data["id"],
            current_role_id=data["current_role_id"],
            task_id=data.get("task_id"),
            current_step_id=data.get("current_step_id"),
            state=ExecutionState.from_dict(data.get("state")),
            steps_completed=int(data.get("steps_completed", 0)),
            total_steps=int(data.get("total_steps", 0)),
            progress_percentage=int(data.get("progress_percentage", 0)),
            recovery_attempts=int(data.get("recovery_attempts", 0)),
            max_recovery_attempts=int(data.get("max_recovery_attempts", 3)),
            last_error=ExecutionErrorRecord.from_dict(data["last_error"]) if data.get("last_error") else None,
            execution_mode=ExecutionMode(data.get("execution_mode", ExecutionMode.GUIDED.value)),
            auto_created_task=bool(data.get("auto_created_task", False)),
            execution_context=dict(data.get("execution_context", {})),
            created_at=_parse_dt(data.get("created_at")) or datetime.now(),
            updated_at=_parse_dt(data.get("updated_at")) or datetime.now(),
            completed_at=_parse_dt(data.get("completed_at")),
            version=int(data.get("version", 0)),
        )


@dataclass
class StepProgress:
    """Append-only record of one attempt at a step"""
    id: str
    execution_id: str
    step_id: str
    role_id: str
    status: StepProgressStatus
    task_id: Optional[int] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    duration: Optional[float] = None  # seconds
    result: Optional[StepResult] = None
    execution_data: Optional[Dict[str, Any]] = None
    validation_results: Optional[Dict[str, Any]] = None
    error_details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "execution_id": self.execution_id,
            "step_id": self.step_id,
            "role_id": self.role_id,
            "status": self.status.value,
            "task_id": self.task_id,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "failed_at": _iso(self.failed_at),
            "duration": self.duration,
            "result": self.result.value if self.result else None,
            "execution_data": self.execution_data,
            "validation_results": self.validation_results,
            "error_details": self.error_details,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StepProgress':
        return cls(
            id=data["id"],
            execution_id=data["execution_id"],
            step_id=data["step_id"],
            role_id=data["role_id"],
            status=StepProgressStatus(data["status"]),
            task_id=data.get("task_id"),
            started_at=_parse_dt(data.get("started_at")),
            completed_at=_parse_dt(data.get("completed_at")),
            failed_at=_parse_dt(data.get("failed_at")),
            duration=data.get("duration"),
            result=StepResult(data["result"]) if data.get("result") else None,
            execution_data=data.get("execution_data"),
            validation_results=data.get("validation_results"),
            error_details=data.get("error_details"),
        )


# ============================================================================
# Task Models
# ============================================================================

@dataclass
class Task:
    """Task an execution works on (collaborator record)"""
    id: int
    name: str
    status: TaskStatus = TaskStatus.NOT_STARTED
    owner: Optional[str] = None
    current_mode: Optional[str] = None
    priority: str = "Medium"
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "owner": self.owner,
            "current_mode": self.current_mode,
            "priority": self.priority,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Task':
        return cls(
            id=int(data["id"]),
            name=data.get("name", ""),
            status=TaskStatus(data.get("status", TaskStatus.NOT_STARTED.value)),
            owner=data.get("owner"),
            current_mode=data.get("current_mode"),
            priority=data.get("priority", "Medium"),
            description=data.get("description", ""),
        )


@dataclass
class CodeReview:
    """Review verdict for a task"""
    id: str
    task_id: int
    status: ReviewStatus = ReviewStatus.PENDING
    summary: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "task_id": self.task_id, "status": self.status.value, "summary": self.summary}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CodeReview':
        return cls(
            id=data["id"],
            task_id=int(data["task_id"]),
            status=ReviewStatus(data.get("status", ReviewStatus.PENDING.value)),
            summary=data.get("summary", ""),
        )


@dataclass
class DelegationRecord:
    """One committed role hand-off for a task"""
    task_id: Optional[int]
    execution_id: str
    from_role: str
    to_role: str
    timestamp: datetime
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "execution_id": self.execution_id,
            "from_role": self.from_role,
            "to_role": self.to_role,
            "timestamp": self.timestamp.isoformat(),
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DelegationRecord':
        return cls(
            task_id=data.get("task_id"),
            execution_id=data.get("execution_id", ""),
            from_role=data["from_role"],
            to_role=data["to_role"],
            timestamp=_parse_dt(data.get("timestamp")) or datetime.now(),
            message=data.get("message", ""),
        )


@dataclass
class Subtask:
    """Fine-grained unit of work inside a batch"""
    id: str
    task_id: int
    batch_id: str
    name: str
    sequence_number: int
    batch_title: str = "Untitled Batch"
    description: str = ""
    dependencies: List[str] = field(default_factory=list)  # subtask names
    status: SubtaskStatus = SubtaskStatus.NOT_STARTED
    implementation_approach: str = ""
    acceptance_criteria: List[str] = field(default_factory=list)
    completion_evidence: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "batch_id": self.batch_id,
            "name": self.name,
            "sequence_number": self.sequence_number,
            "batch_title": self.batch_title,
            "description": self.description,
            "dependencies": list(self.dependencies),
            "status": self.status.value,
            "implementation_approach": self.implementation_approach,
            "acceptance_criteria": list(self.acceptance_criteria),
            "completion_evidence": self.completion_evidence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Subtask':
        return cls(
            id=data["id"],
            task_id=int(data["task_id"]),
            batch_id=data["batch_id"],
            name=data["name"],
            sequence_number=int(data.get("sequence_number", 0)),
            batch_title=data.get("batch_title", "Untitled Batch"),
            description=data.get("description", ""),
            dependencies=list(data.get("dependencies", [])),
            status=SubtaskStatus(data.get("status", SubtaskStatus.NOT_STARTED.value)),
            implementation_approach=data.get("implementation_approach", ""),
            acceptance_criteria=list(data.get("acceptance_criteria", [])),
            completion_evidence=data.get("completion_evidence"),
        )


@dataclass
class SubtaskDependencyEdge:
    """Resolved dependency between two subtasks of the same request"""
    dependent_subtask_id: str
    required_subtask_id: str
    dependency_type: str = "sequential"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dependent_subtask_id": self.dependent_subtask_id,
            "required_subtask_id": self.required_subtask_id,
            "dependency_type": self.dependency_type,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SubtaskDependencyEdge':
        return cls(
            dependent_subtask_id=data["dependent_subtask_id"],
            required_subtask_id=data["required_subtask_id"],
            dependency_type=data.get("dependency_type", "sequential"),
        )


@dataclass
class SubtaskSpec:
    """Subtask as described in a creation request"""
    name: str
    description: str = ""
    sequence_number: int = 0
    dependencies: List[str] = field(default_factory=list)
    acceptance_criteria: List[str] = field(default_factory=list)
    implementation_approach: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SubtaskSpec':
        if not data.get("name"):
            raise ValidationError("Subtask is missing a name", field="name", value=data)
        return cls(
            name=data["name"],
            description=data.get("description", ""),
            sequence_number=int(data.get("sequence_number", 0)),
            dependencies=list(data.get("dependencies") or []),
            acceptance_criteria=list(data.get("acceptance_criteria") or []),
            implementation_approach=data.get("implementation_approach", ""),
        )


@dataclass
class BatchSpec:
    """Batch as described in a creation request"""
    batch_id: str
    batch_title: str = ""
    batch_description: str = ""
    subtasks: List[SubtaskSpec] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BatchSpec':
        if not data.get("batch_id"):
            raise ValidationError("Batch is missing a batch_id", field="batch_id", value=data)
        return cls(
            batch_id=data["batch_id"],
            batch_title=data.get("batch_title", ""),
            batch_description=data.get("batch_description", ""),
            subtasks=[SubtaskSpec.from_dict(s) for s in data.get("subtasks", [])],
        )


@dataclass
class BatchDependency:
    """Batch-level dependency list"""
    batch_id: str
    depends_on_batches: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BatchDependency':
        return cls(batch_id=data["batch_id"], depends_on_batches=list(data.get("depends_on_batches", [])))


@dataclass
class BatchOptions:
    """Switches for bulk subtask creation"""
    validate_dependencies: bool = True
    optimize_sequencing: bool = True
    allow_parallel_execution: bool = True


# ============================================================================
# Result Models
# ============================================================================

@dataclass
class TransitionValidationResult:
    """Outcome of checking a transition's conditions"""
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"valid": self.valid, "errors": list(self.errors), "warnings": list(self.warnings)}


@dataclass
class TransitionExecutionResult:
    """Outcome of committing a transition"""
    success: bool
    message: str
    new_role_id: Optional[str] = None
    staged_step: Optional[Step] = None
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "new_role_id": self.new_role_id,
            "staged_step": self.staged_step.to_dict() if self.staged_step else None,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


@dataclass
class RecoveryStatus:
    """Retry bookkeeping after an execution error"""
    can_retry: bool
    retry_count: int
    max_retries: int


@dataclass
class DependencyStatus:
    """Dependency satisfaction of a subtask"""
    can_start: bool
    total_dependencies: int = 0
    completed_dependencies: int = 0
    pending_dependencies: List[str] = field(default_factory=list)


@dataclass
class AggregatedEvidence:
    """Evidence synthesized when a whole batch is complete"""
    completion_summary: str
    files_modified: List[str]
    implementation_notes: str
    total_subtasks: int
    completed_subtasks: int
    automatic_completion: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "completion_summary": self.completion_summary,
            "files_modified": list(self.files_modified),
            "implementation_notes": self.implementation_notes,
            "total_subtasks": self.total_subtasks,
            "completed_subtasks": self.completed_subtasks,
            "automatic_completion": self.automatic_completion,
        }


@dataclass
class BatchCompletionResult:
    """Outcome of a batch completion check"""
    batch_completed: bool
    completion_triggered: bool
    message: str
    aggregated_evidence: Optional[AggregatedEvidence] = None


@dataclass
class BulkValidationSummary:
    total_subtasks: int
    total_batches: int
    dependencies_resolved: int
    optimization_applied: bool


@dataclass
class BulkResult:
    """Result of creating a request's batches and subtasks"""
    subtasks: List[Subtask]
    dependency_graph: List[Dict[str, Any]]  # {subtask_id, depends_on: [ids]}
    batch_summary: List[Dict[str, Any]]
    validation: BulkValidationSummary
    message: str = ""


@dataclass
class ProgressMetrics:
    """Completion metrics for an execution"""
    current_step_progress: int = 0
    role_progress: int = 0
    overall_progress: int = 0
    completed_steps: int = 0
    total_steps: int = 0
    estimated_time_remaining: Optional[str] = None
    next_milestone: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_step_progress": self.current_step_progress,
            "role_progress": self.role_progress,
            "overall_progress": self.overall_progress,
            "completed_steps": self.completed_steps,
            "total_steps": self.total_steps,
            "estimated_time_remaining": self.estimated_time_remaining,
            "next_milestone": self.next_milestone,
        }


@dataclass
class OperationResult:
    """Structured outcome returned by every engine-facing operation"""
    success: bool
    data: Any = None
    error: Optional[Dict[str, str]] = None  # {"message": ..., "code": ...}

    @classmethod
    def ok(cls, data: Any = None) -> 'OperationResult':
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, message: str, code: str) -> 'OperationResult':
        return cls(success=False, error={"message": message, "code": code})
