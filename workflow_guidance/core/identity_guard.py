"""
Identity guard: validates the identifiers a caller passes in and fills in or
repairs missing and stale ones from the context cache.

The guard is fail-open by default: problems are logged and reported in the
result, and the operation proceeds. With ``strict`` enabled, unresolved or
stale required identifiers raise ``StaleIdentifierError`` instead.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from .catalog import WorkflowCatalog
from .config_loader import GuardConfig
from .context_cache import CachedContext, ContextCache
from .enums import ContextSelectionStrategy, IdKind
from .exceptions import StaleIdentifierError
from .execution_store import ExecutionStore
from .identifiers import TypedId, legacy_stale_reason

logger = logging.getLogger(__name__)

ID_FIELDS = ("execution_id", "task_id", "role_id", "step_id")

# Identifier name -> attribute of a cached context
_CACHE_FIELDS = {
    "execution_id": "execution_id",
    "task_id": "task_id",
    "role_id": "current_role_id",
    "step_id": "current_step_id",
}


@dataclass
class GuardResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    corrections: List[str] = field(default_factory=list)
    provided_ids: Dict[str, Any] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)


class IdentityGuard:
    """Checks and repairs caller-supplied identifiers"""

    def __init__(self, cache: ContextCache, config: Optional[GuardConfig] = None,
                 catalog: Optional[WorkflowCatalog] = None,
                 executions: Optional[ExecutionStore] = None):
        self.cache = cache
        self.config = config or GuardConfig()
        self.catalog = catalog
        self.executions = executions

    def guard(self, params: Dict[str, Any], required: Iterable[str] = ()) -> GuardResult:
        """
        Validate ``params`` and return a corrected copy.

        Args:
            params: Operation parameters, possibly holding identifier fields
            required: Identifier names the operation cannot run without

        Raises:
            StaleIdentifierError: In strict mode, if a required id stays unresolved
        """
        provided = {k: params[k] for k in ID_FIELDS if params.get(k) not in (None, "")}
        working = dict(params)
        errors: List[str] = []
        corrections: List[str] = []

        for name in provided:
            corrected, note = self._correct_format(name, working[name])
            if note:
                corrections.append(note)
            working[name] = corrected

        for name in required:
            value = working.get(name)
            if value in (None, ""):
                if name == "task_id" and self.config.allow_bootstrap:
                    continue
                self._recover(name, working, None, f"Missing required identifier: {name}",
                              errors, corrections)
                continue

            reason = self.stale_reason(name, value)
            if reason:
                self._recover(name, working, value, reason, errors, corrections)

        if corrections and self.config.log_corrections:
            logger.info("Identifier corrections: %s", "; ".join(corrections))
        if errors:
            logger.warning("Unresolved identifiers: %s", "; ".join(errors))
            if self.config.strict:
                raise StaleIdentifierError(
                    "; ".join(errors),
                    context={"provided": ", ".join(sorted(provided))}
                )

        return GuardResult(
            is_valid=not errors,
            errors=errors,
            corrections=corrections,
            provided_ids=provided,
            params=working,
        )

    def _recover(self, name: str, working: Dict[str, Any], stale_value: Any, problem: str,
                 errors: List[str], corrections: List[str]) -> None:
        resolved, source = self._resolve(name, working, stale_value) if self.config.auto_correct else (None, "")
        if resolved is None:
            errors.append(problem)
            return
        working[name] = resolved
        if stale_value is None:
            corrections.append(f"{name}: filled with {resolved!r} from {source}")
        else:
            corrections.append(f"{name}: replaced {stale_value!r} with {resolved!r} from {source}")

    # ------------------------------------------------------------------
    # Validity
    # ------------------------------------------------------------------

    @staticmethod
    def _correct_format(name: str, value: Any) -> Tuple[Any, Optional[str]]:
        if name == "task_id":
            if isinstance(value, bool):
                return value, None
            if isinstance(value, int):
                return value, None
            try:
                corrected = int(str(value).strip())
            except ValueError:
                return value, None
            return corrected, f"task_id: converted {value!r} to {corrected}"
        if isinstance(value, str) and value != value.strip():
            return value.strip(), f"{name}: trimmed whitespace"
        return value, None

    def stale_reason(self, name: str, value: Any) -> Optional[str]:
        """Why ``value`` is not a usable ``name``, or None when it is"""
        if name == "task_id":
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                return f"task_id must be a positive integer: {value!r}"
            return None
        if not isinstance(value, str):
            return f"{name} must be a string: {value!r}"

        if name == "execution_id":
            if TypedId.is_valid(value, IdKind.EXECUTION):
                if self.executions is not None and not self.executions.exists(value):
                    return f"execution_id refers to no known execution: {value}"
                return None
            if self.config.legacy_heuristics:
                return legacy_stale_reason(name, value, self.config.stale_keywords)
            return f"execution_id is not a valid identifier: {value}"

        if name == "role_id":
            if self.catalog is not None:
                return None if self.catalog.has_role(value) else f"role_id names no known role: {value}"
        elif name == "step_id":
            if self.catalog is not None:
                return None if self.catalog.has_step(value) else f"step_id names no known step: {value}"
        else:
            return None

        if self.config.legacy_heuristics:
            return legacy_stale_reason(name, value, self.config.stale_keywords)
        return None

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def _resolve(self, name: str, working: Dict[str, Any], stale_value: Any) -> Tuple[Any, str]:
        try:
            for source, context in self._candidates(name, working):
                if context is None:
                    continue
                value = getattr(context, _CACHE_FIELDS[name])
                if value not in (None, "") and value != stale_value:
                    return value, source
        except Exception:
            logger.warning("Identifier resolution for %s failed", name, exc_info=True)
        return None, ""

    def _candidates(self, name: str,
                    working: Dict[str, Any]) -> Iterator[Tuple[str, Optional[CachedContext]]]:
        execution_id = working.get("execution_id")
        task_id = working.get("task_id")
        valid_execution = (name != "execution_id" and execution_id
                           and self.stale_reason("execution_id", execution_id) is None)
        valid_task = name != "task_id" and task_id and self.stale_reason("task_id", task_id) is None

        # (a) another valid identifier the caller did supply
        if valid_execution:
            yield "cache (execution_id)", self.cache.find_by_execution_id(execution_id)
        if valid_task:
            yield "cache (task_id)", self.cache.find_by_task_id(task_id)

        # (b) configured strategy
        strategy = self.config.strategy
        if strategy == ContextSelectionStrategy.MOST_RECENT:
            yield "most recent context", self.cache.most_recent()
        elif strategy == ContextSelectionStrategy.BY_TASK_ID and valid_task:
            yield "context of task", self.cache.find_by_task_id(task_id)
        elif strategy == ContextSelectionStrategy.BY_EXECUTION_ID and valid_execution:
            yield "context of execution", self.cache.find_by_execution_id(execution_id)

        # (c) any cached context sharing an identifier with the request
        known = {f: working.get(f) for f in ID_FIELDS if f != name and working.get(f) not in (None, "")}
        for context in self.cache.entries():
            if any(getattr(context, _CACHE_FIELDS[f]) == v for f, v in known.items()):
                yield "fuzzy cache match", context
