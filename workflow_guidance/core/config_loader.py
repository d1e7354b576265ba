"""
Configuration loader for the guidance engine.
Reads ``.workflow/guidance.yaml`` into a ``GuidanceConfig`` tree.
"""

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Dict, Any, List, Optional

from .enums import ContextSelectionStrategy, ExecutionMode
from .exceptions import ValidationError
from .identifiers import DEFAULT_STALE_KEYWORDS
from .schema_loader import SchemaLoader

logger = logging.getLogger(__name__)

CONFIG_DIR = ".workflow"
CONFIG_FILE = "guidance.yaml"

DEFAULT_COMMON_TRANSITIONS = [
    "boomerang_to_architect",
    "architect_to_senior_developer",
    "senior_developer_to_code_review",
    "code_review_to_boomerang",
]


@dataclass
class CacheConfig:
    capacity: int = 100
    ttl_seconds: float = 30 * 60


@dataclass
class GuardConfig:
    strict: bool = False
    auto_correct: bool = True
    allow_bootstrap: bool = False
    strategy: ContextSelectionStrategy = ContextSelectionStrategy.MOST_RECENT
    log_corrections: bool = True
    legacy_heuristics: bool = True
    stale_keywords: List[str] = field(default_factory=lambda: list(DEFAULT_STALE_KEYWORDS))


@dataclass
class StorageConfig:
    lock_timeout: float = 5.0
    io_timeout: float = 10.0


@dataclass
class ExecutionConfig:
    max_recovery_attempts: int = 3
    default_mode: ExecutionMode = ExecutionMode.GUIDED


@dataclass
class ScoringConfig:
    """Advisory ranking of recommended transitions"""
    base_score: float = 50
    common_transition_bonus: float = 20
    random_variance: float = 30
    common_transitions: List[str] = field(default_factory=lambda: list(DEFAULT_COMMON_TRANSITIONS))


@dataclass
class GuidanceConfig:
    cache: CacheConfig = field(default_factory=CacheConfig)
    guard: GuardConfig = field(default_factory=GuardConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["guard"]["strategy"] = self.guard.strategy.value
        data["execution"]["default_mode"] = self.execution.default_mode.value
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'GuidanceConfig':
        """
        Build a config from a (possibly partial) mapping.

        Raises:
            ValidationError: On unknown keys or wrongly typed values
        """
        data = data or {}
        SchemaLoader.validate(data, CONFIG_SCHEMA, "guidance config")

        guard = dict(data.get("guard", {}))
        if "strategy" in guard:
            guard["strategy"] = ContextSelectionStrategy(guard["strategy"])
        execution = dict(data.get("execution", {}))
        if "default_mode" in execution:
            execution["default_mode"] = ExecutionMode(execution["default_mode"])

        return cls(
            cache=CacheConfig(**data.get("cache", {})),
            guard=GuardConfig(**guard),
            storage=StorageConfig(**data.get("storage", {})),
            execution=ExecutionConfig(**execution),
            scoring=ScoringConfig(**data.get("scoring", {})),
        )


_NUMBER = {"type": "number", "minimum": 0}

CONFIG_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "cache": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "capacity": {"type": "integer", "minimum": 1},
                "ttl_seconds": {"type": "number", "exclusiveMinimum": 0},
            },
        },
        "guard": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "strict": {"type": "boolean"},
                "auto_correct": {"type": "boolean"},
                "allow_bootstrap": {"type": "boolean"},
                "strategy": {"enum": [s.value for s in ContextSelectionStrategy]},
                "log_corrections": {"type": "boolean"},
                "legacy_heuristics": {"type": "boolean"},
                "stale_keywords": {"type": "array", "items": {"type": "string"}},
            },
        },
        "storage": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "lock_timeout": {"type": "number", "exclusiveMinimum": 0},
                "io_timeout": {"type": "number", "exclusiveMinimum": 0},
            },
        },
        "execution": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "max_recovery_attempts": {"type": "integer", "minimum": 0},
                "default_mode": {"enum": [m.value for m in ExecutionMode]},
            },
        },
        "scoring": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "base_score": _NUMBER,
                "common_transition_bonus": _NUMBER,
                "random_variance": _NUMBER,
                "common_transitions": {"type": "array", "items": {"type": "string"}},
            },
        },
    },
}


class ConfigLoader:
    """Loads the guidance configuration of a workspace"""

    def __init__(self, workspace_path: Path):
        self.workspace_path = Path(workspace_path)

    @property
    def config_path(self) -> Path:
        return self.workspace_path / CONFIG_DIR / CONFIG_FILE

    def load(self, config_file: Optional[Path] = None) -> GuidanceConfig:
        """
        Load configuration, falling back to defaults when no file exists.

        Args:
            config_file: Explicit file to read instead of the workspace default

        Raises:
            ValidationError: If the file is malformed or has unknown keys
        """
        path = Path(config_file) if config_file else self.config_path
        if not path.exists():
            if config_file:
                raise ValidationError(f"Config file not found: {path}", field="config_file", value=str(path))
            logger.debug("No guidance config at %s, using defaults", path)
            return GuidanceConfig()
        data = SchemaLoader.load_schema(path)
        logger.debug("Loaded guidance config from %s", path)
        return GuidanceConfig.from_dict(data)
