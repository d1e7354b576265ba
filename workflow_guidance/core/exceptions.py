"""
Exception classes for the workflow guidance engine.

Every error carries a stable ``code`` so the engine facade can turn it into a
structured ``{message, code}`` outcome instead of letting it escape.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Any


@dataclass
class ValidationError(Exception):
    """
    Enhanced validation error with context information.

    Raised for unmet transition conditions, cyclic batch dependencies and
    malformed catalog or state documents. ``errors`` holds the individual
    failures when more than one was collected.
    """
    message: str
    field: Optional[str] = None
    value: Any = None
    context: Optional[Dict[str, Any]] = None
    errors: Optional[List[str]] = None

    code = "VALIDATION_FAILED"

    def __init__(self, message: str, field: Optional[str] = None,
                 value: Any = None, context: Optional[Dict[str, Any]] = None,
                 errors: Optional[List[str]] = None):
        self.message = message
        self.field = field
        self.value = value
        self.context = context or {}
        self.errors = list(errors or [])
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format error message with context"""
        parts = [self.message]
        if self.field:
            parts.append(f"Field: {self.field}")
        if self.value is not None:
            parts.append(f"Value: {repr(self.value)}")
        if self.context:
            ctx_parts = [f"{k}={v}" for k, v in self.context.items()]
            parts.append(f"Context: {', '.join(ctx_parts)}")
        return " | ".join(parts)

    def __str__(self) -> str:
        return self._format_message()


@dataclass
class WorkflowError(Exception):
    """
    Enhanced workflow error with role and step context.

    Base class for the domain failures the engine reports.
    """
    message: str
    role_id: Optional[str] = None
    step_id: Optional[str] = None
    context: Optional[Dict[str, Any]] = None

    code = "WORKFLOW_ERROR"

    def __init__(self, message: str, role_id: Optional[str] = None,
                 step_id: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        self.message = message
        self.role_id = role_id
        self.step_id = step_id
        self.context = context or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format error message with context"""
        parts = [self.message]
        if self.role_id:
            parts.append(f"Role: {self.role_id}")
        if self.step_id:
            parts.append(f"Step: {self.step_id}")
        if self.context:
            ctx_parts = [f"{k}={v}" for k, v in self.context.items()]
            parts.append(f"Context: {', '.join(ctx_parts)}")
        return " | ".join(parts)

    def __str__(self) -> str:
        return self._format_message()


class NotFoundError(WorkflowError):
    """Role, step, execution, transition, task or subtask is absent"""
    code = "NOT_FOUND"


class InconsistentStateError(WorkflowError):
    """Persisted pointers contradict each other (e.g. step of another role)"""
    code = "INCONSISTENT_STATE"


class StaleIdentifierError(WorkflowError):
    """Caller supplied an identifier that is malformed or outdated"""
    code = "STALE_IDENTIFIER"


class StorageFailureError(WorkflowError):
    """Storage backend I/O failed or timed out"""
    code = "STORAGE_FAILURE"


class ConcurrentModificationError(StorageFailureError):
    """Optimistic version check failed on write"""
    code = "CONCURRENT_MODIFICATION"


class SecurityError(Exception):
    """Security-related error for path validation"""
    code = "SECURITY_ERROR"


def error_code(error: BaseException) -> str:
    """Return the structured error code for an exception"""
    return getattr(error, "code", None) or "INTERNAL_ERROR"
