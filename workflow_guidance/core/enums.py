"""
Enumeration classes for the workflow guidance engine.
"""

from enum import Enum


class ExecutionPhase(Enum):
    """Phase recorded in the execution state blob"""
    INITIALIZED = "initialized"
    IN_PROGRESS = "in-progress"
    ROLE_TRANSITIONED = "role_transitioned"
    COMPLETED = "completed"


class ExecutionMode(Enum):
    """How the agent is driven through the workflow"""
    GUIDED = "GUIDED"
    AUTOMATED = "AUTOMATED"
    HYBRID = "HYBRID"


class StepProgressStatus(Enum):
    """Status of a single step attempt"""
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (StepProgressStatus.COMPLETED, StepProgressStatus.FAILED)


class StepResult(Enum):
    """Outcome reported by the agent for a step"""
    SUCCESS = "success"
    FAILURE = "failure"


class SubtaskStatus(Enum):
    """Status of a subtask inside a batch"""
    NOT_STARTED = "not-started"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    NEEDS_REVIEW = "needs-review"
    NEEDS_CHANGES = "needs-changes"


class TaskStatus(Enum):
    """Status of the task an execution works on"""
    NOT_STARTED = "not-started"
    IN_PROGRESS = "in-progress"
    READY = "ready"
    NEEDS_REVIEW = "needs-review"
    NEEDS_CHANGES = "needs-changes"
    COMPLETED = "completed"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class ReviewStatus(Enum):
    """Code review verdict"""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    NEEDS_CHANGES = "NEEDS_CHANGES"


class ContextSource(Enum):
    """What produced a cached workflow context"""
    BOOTSTRAP = "bootstrap"
    TRANSITION = "transition"
    STEP_COMPLETION = "step_completion"
    MANUAL = "manual"


class ContextSelectionStrategy(Enum):
    """How the identity guard picks a cached context for a missing id"""
    MOST_RECENT = "mostRecent"
    BY_TASK_ID = "byTaskId"
    BY_EXECUTION_ID = "byExecutionId"


class IdKind(Enum):
    """Kinds of engine-minted identifiers (value is the textual prefix)"""
    EXECUTION = "exec"
    PROGRESS = "prog"
    SUBTASK = "sub"
    REVIEW = "rev"
