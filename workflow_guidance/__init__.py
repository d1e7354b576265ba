"""
Workflow Guidance Engine

Steers an agent through a role-based software delivery workflow: which step
comes next, when a role may hand off to another, and how batched subtasks
unblock each other.
"""

from .core import (
    WorkflowEngine,
    WorkflowCatalog,
    GuidanceConfig,
    OperationResult,
    WorkflowError,
    ValidationError,
    NotFoundError,
    StaleIdentifierError,
    ExecutionMode,
    StepResult,
    SubtaskStatus,
    TaskStatus,
    ReviewStatus,
)

__version__ = "0.1.0"
__all__ = [
    "WorkflowEngine",
    "WorkflowCatalog",
    "GuidanceConfig",
    "OperationResult",
    "WorkflowError",
    "ValidationError",
    "NotFoundError",
    "StaleIdentifierError",
    "ExecutionMode",
    "StepResult",
    "SubtaskStatus",
    "TaskStatus",
    "ReviewStatus",
]
