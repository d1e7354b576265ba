"""
Workflow event log for observability and replay.
Records step starts/completions, role transitions and batch creation.
"""

import json
import logging
import threading
import warnings
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

EVENT_TYPES = ("step_started", "step_completed", "step_failed", "transition", "batch_created",
               "batch_completed", "execution_completed", "execution_error")


@dataclass
class WorkflowEvent:
    """
    A single point-in-time event of an execution.
    """
    event_type: str
    execution_id: Optional[str] = None
    role: Optional[str] = None
    step: Optional[str] = None
    task_id: Optional[int] = None
    status: str = "success"  # "success" | "failed" | "pending"
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    duration: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "event_type": self.event_type,
            "role": self.role,
            "step": self.step,
            "task_id": self.task_id,
            "status": self.status,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
            "error": self.error,
            "duration": self.duration,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkflowEvent':
        return cls(
            event_type=data["event_type"],
            execution_id=data.get("execution_id"),
            role=data.get("role"),
            step=data.get("step"),
            task_id=data.get("task_id"),
            status=data.get("status", "success"),
            timestamp=datetime.fromisoformat(data.get("timestamp", datetime.now().isoformat())),
            metadata=data.get("metadata") or {},
            error=data.get("error"),
            duration=data.get("duration", 0.0),
        )


class EventLogger:
    """
    Append-only log of workflow events.

    With a ``log_file`` the log is mirrored to JSON or YAML (chosen by suffix).
    File problems only produce warnings; they never fail the operation that
    emitted the event.
    """

    def __init__(self, log_file: Optional[Path] = None):
        self.events: List[WorkflowEvent] = []
        self.log_file = Path(log_file) if log_file else None
        self._lock = threading.Lock()
        if self.log_file and self.log_file.exists():
            self._load_from_file()

    def log_event(self, event: WorkflowEvent) -> WorkflowEvent:
        if event.event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event.event_type}")
        with self._lock:
            self.events.append(event)
            if self.log_file:
                self._write_file()
        logger.debug("Event %s for %s (%s)", event.event_type, event.execution_id, event.step or event.role)
        return event

    def log_step(self, execution_id: str, step_id: str, role_id: str, event_type: str,
                 task_id: Optional[int] = None, duration: float = 0.0,
                 error: Optional[str] = None,
                 metadata: Optional[Dict[str, Any]] = None) -> WorkflowEvent:
        """Record a step start, completion or failure"""
        return self.log_event(WorkflowEvent(
            execution_id=execution_id,
            event_type=event_type,
            role=role_id,
            step=step_id,
            task_id=task_id,
            status="failed" if event_type == "step_failed" else "success",
            duration=duration,
            error=error,
            metadata=metadata or {},
        ))

    def log_transition(self, execution_id: str, from_role: str, to_role: str,
                       transition_name: str, task_id: Optional[int] = None,
                       message: Optional[str] = None) -> WorkflowEvent:
        return self.log_event(WorkflowEvent(
            execution_id=execution_id,
            event_type="transition",
            role=to_role,
            task_id=task_id,
            metadata={"from_role": from_role, "transition": transition_name, "message": message},
        ))

    def log_execution(self, execution_id: str, event_type: str, role_id: Optional[str] = None,
                      task_id: Optional[int] = None, error: Optional[str] = None,
                      metadata: Optional[Dict[str, Any]] = None) -> WorkflowEvent:
        """Record an execution-level event (completion or error)"""
        return self.log_event(WorkflowEvent(
            execution_id=execution_id,
            event_type=event_type,
            role=role_id,
            task_id=task_id,
            status="failed" if error else "success",
            error=error,
            metadata=metadata or {},
        ))

    def log_batch(self, task_id: int, batch_id: str, event_type: str,
                  metadata: Optional[Dict[str, Any]] = None) -> WorkflowEvent:
        return self.log_event(WorkflowEvent(
            event_type=event_type,
            task_id=task_id,
            metadata={"batch_id": batch_id, **(metadata or {})},
        ))

    def get_events(self, execution_id: Optional[str] = None, event_type: Optional[str] = None,
                   role: Optional[str] = None, step: Optional[str] = None,
                   status: Optional[str] = None) -> List[WorkflowEvent]:
        """Events matching every given filter, oldest first"""
        filtered = list(self.events)
        if execution_id:
            filtered = [e for e in filtered if e.execution_id == execution_id]
        if event_type:
            filtered = [e for e in filtered if e.event_type == event_type]
        if role:
            filtered = [e for e in filtered if e.role == role]
        if step:
            filtered = [e for e in filtered if e.step == step]
        if status:
            filtered = [e for e in filtered if e.status == status]
        return filtered

    def export_events(self, output_file: Path, format: str = "json",
                      filters: Optional[Dict[str, Any]] = None) -> int:
        """
        Export events to a file.

        Args:
            output_file: Output file path
            format: "json" or "yaml"
            filters: Keyword filters accepted by ``get_events``

        Returns:
            Number of exported events
        """
        if format not in ("json", "yaml"):
            raise ValueError(f"Unsupported format: {format}")
        events = self.get_events(**filters) if filters else list(self.events)
        self._dump([e.to_dict() for e in events], Path(output_file), format)
        return len(events)

    @staticmethod
    def _dump(data: List[Dict[str, Any]], path: Path, format: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open('w', encoding='utf-8') as f:
            if format == "yaml":
                yaml.safe_dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)
            else:
                json.dump(data, f, indent=2, ensure_ascii=False, default=str)

    def _file_format(self) -> str:
        return "yaml" if self.log_file and self.log_file.suffix in ('.yaml', '.yml') else "json"

    def _load_from_file(self) -> None:
        try:
            with self.log_file.open('r', encoding='utf-8') as f:
                data = yaml.safe_load(f) if self._file_format() == "yaml" else json.load(f)
            if isinstance(data, list):
                self.events = [WorkflowEvent.from_dict(e) for e in data]
        except (OSError, ValueError, KeyError, yaml.YAMLError) as e:
            warnings.warn(f"Failed to load events from {self.log_file}: {e}", UserWarning)

    def _write_file(self) -> None:
        try:
            self._dump([e.to_dict() for e in self.events], self.log_file, self._file_format())
        except (OSError, yaml.YAMLError, TypeError) as e:
            warnings.warn(f"Failed to write events to {self.log_file}: {e}", UserWarning)
