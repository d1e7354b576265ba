"""
Core workflow guidance modules.
Following SOLID principles - modules are organized by responsibility.
"""

# Exceptions
from .exceptions import (
    ValidationError, WorkflowError, SecurityError, NotFoundError, InconsistentStateError,
    StaleIdentifierError, StorageFailureError, ConcurrentModificationError, error_code,
)

# Enums
from .enums import (
    ExecutionPhase, ExecutionMode, StepProgressStatus, StepResult, SubtaskStatus,
    TaskStatus, ReviewStatus, ContextSource, ContextSelectionStrategy, IdKind,
)

# Identifiers and graph
from .identifiers import TypedId, new_id, legacy_stale_reason
from .graph import DependencyGraph

# Models
from .models import (
    QualityCheck, StepDependency, Step, Role, TransitionCondition, RoleTransition,
    StepPointer, CompletedStep, TransitionRecord, ExecutionState, ExecutionErrorRecord,
    Execution, StepProgress, Task, CodeReview, DelegationRecord, Subtask,
    SubtaskDependencyEdge, SubtaskSpec, BatchSpec, BatchDependency, BatchOptions,
    TransitionValidationResult, TransitionExecutionResult, RecoveryStatus,
    DependencyStatus, AggregatedEvidence, BatchCompletionResult, BulkResult,
    ProgressMetrics, OperationResult,
)

# Loading and persistence
from .schema_loader import SchemaLoader, normalize_path
from .config_loader import ConfigLoader, GuidanceConfig
from .state_storage import StateStorage, InMemoryStateStorage, FileStateStorage
from .catalog import WorkflowCatalog
from .execution_store import ExecutionStore
from .task_store import TaskStore

# Guidance components
from .condition_evaluator import TransitionConditionEvaluator, TransitionContext
from .step_resolver import StepResolver, ResolutionContext
from .transition_engine import TransitionEngine, TransitionRecommendation
from .dependency_scheduler import DependencyScheduler
from .progress_calculator import ProgressCalculator
from .context_cache import ContextCache, CachedContext
from .identity_guard import IdentityGuard, GuardResult
from .workflow_events import EventLogger, WorkflowEvent
from .workflow_engine import WorkflowEngine

__all__ = [
    "ValidationError", "WorkflowError", "SecurityError", "NotFoundError",
    "InconsistentStateError", "StaleIdentifierError", "StorageFailureError",
    "ConcurrentModificationError", "error_code",
    "ExecutionPhase", "ExecutionMode", "StepProgressStatus", "StepResult", "SubtaskStatus",
    "TaskStatus", "ReviewStatus", "ContextSource", "ContextSelectionStrategy", "IdKind",
    "TypedId", "new_id", "legacy_stale_reason", "DependencyGraph",
    "QualityCheck", "StepDependency", "Step", "Role", "TransitionCondition", "RoleTransition",
    "StepPointer", "CompletedStep", "TransitionRecord", "ExecutionState", "ExecutionErrorRecord",
    "Execution", "StepProgress", "Task", "CodeReview", "DelegationRecord", "Subtask",
    "SubtaskDependencyEdge", "SubtaskSpec", "BatchSpec", "BatchDependency", "BatchOptions",
    "TransitionValidationResult", "TransitionExecutionResult", "RecoveryStatus",
    "DependencyStatus", "AggregatedEvidence", "BatchCompletionResult", "BulkResult",
    "ProgressMetrics", "OperationResult",
    "SchemaLoader", "normalize_path", "ConfigLoader", "GuidanceConfig",
    "StateStorage", "InMemoryStateStorage", "FileStateStorage",
    "WorkflowCatalog", "ExecutionStore", "TaskStore",
    "TransitionConditionEvaluator", "TransitionContext", "StepResolver", "ResolutionContext",
    "TransitionEngine", "TransitionRecommendation", "DependencyScheduler", "ProgressCalculator",
    "ContextCache", "CachedContext", "IdentityGuard", "GuardResult",
    "EventLogger", "WorkflowEvent", "WorkflowEngine",
]
