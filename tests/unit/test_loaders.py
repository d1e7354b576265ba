"""
Unit tests for SchemaLoader and ConfigLoader.
"""
import pytest
import yaml

from workflow_guidance.core.config_loader import ConfigLoader, GuidanceConfig
from workflow_guidance.core.enums import ContextSelectionStrategy, ExecutionMode
from workflow_guidance.core.exceptions import SecurityError, ValidationError
from workflow_guidance.core.schema_loader import SchemaLoader, normalize_path


class TestSchemaLoader:
    """Test document loading."""

    def test_normalize_path_inside_base(self, temp_workspace):
        assert normalize_path(temp_workspace, "a/b.yaml") == (temp_workspace / "a" / "b.yaml").resolve()

    def test_normalize_path_traversal(self, temp_workspace):
        with pytest.raises(SecurityError):
            normalize_path(temp_workspace, "../../etc/passwd")

    def test_invalid_yaml(self, temp_workspace):
        path = temp_workspace / "broken.yaml"
        path.write_text("roles: [unclosed", encoding="utf-8")

        with pytest.raises(ValidationError):
            SchemaLoader.load_yaml(path)

    def test_yaml_root_must_be_mapping(self, temp_workspace):
        path = temp_workspace / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")

        with pytest.raises(ValidationError):
            SchemaLoader.load_yaml(path)

    def test_unsupported_suffix(self, temp_workspace):
        path = temp_workspace / "catalog.toml"
        path.write_text("x = 1", encoding="utf-8")

        with pytest.raises(ValidationError):
            SchemaLoader.load_schema(path)

    def test_file_size_limit(self, temp_workspace, monkeypatch):
        path = temp_workspace / "big.yaml"
        path.write_text("a: 1\n", encoding="utf-8")
        monkeypatch.setattr(SchemaLoader, "MAX_FILE_SIZE", 2)

        with pytest.raises(SecurityError):
            SchemaLoader.load_yaml(path)

    def test_validate_collects_all_errors(self):
        schema = {
            "type": "object",
            "properties": {"a": {"type": "integer"}, "b": {"type": "string"}},
        }

        with pytest.raises(ValidationError) as exc_info:
            SchemaLoader.validate({"a": "x", "b": 1}, schema, "sample")

        assert len(exc_info.value.errors) == 2
        assert exc_info.value.errors[0].startswith("a:")


class TestConfigLoader:
    """Test guidance configuration loading."""

    def test_defaults_without_file(self, temp_workspace):
        config = ConfigLoader(temp_workspace).load()

        assert config == GuidanceConfig()
        assert config.cache.capacity == 100
        assert config.cache.ttl_seconds == 1800
        assert config.guard.strict is False
        assert config.execution.max_recovery_attempts == 3

    def test_partial_file_overrides_defaults(self, temp_workspace):
        (temp_workspace / ".workflow" / "guidance.yaml").write_text(yaml.safe_dump({
            "cache": {"capacity": 5},
            "guard": {"strict": True, "strategy": "byTaskId"},
            "execution": {"default_mode": "AUTOMATED"},
        }), encoding="utf-8")

        config = ConfigLoader(temp_workspace).load()

        assert config.cache.capacity == 5
        assert config.cache.ttl_seconds == 1800
        assert config.guard.strict is True
        assert config.guard.strategy == ContextSelectionStrategy.BY_TASK_ID
        assert config.execution.default_mode == ExecutionMode.AUTOMATED

    def test_unknown_key_is_rejected(self, temp_workspace):
        (temp_workspace / ".workflow" / "guidance.yaml").write_text(
            yaml.safe_dump({"cache": {"size": 5}}), encoding="utf-8"
        )

        with pytest.raises(ValidationError):
            ConfigLoader(temp_workspace).load()

    def test_invalid_value_is_rejected(self):
        with pytest.raises(ValidationError):
            GuidanceConfig.from_dict({"cache": {"capacity": 0}})

    def test_explicit_missing_file(self, temp_workspace):
        with pytest.raises(ValidationError):
            ConfigLoader(temp_workspace).load(temp_workspace / "nope.yaml")

    def test_to_dict_round_trip(self):
        config = GuidanceConfig.from_dict({"guard": {"strategy": "byExecutionId"}})

        assert GuidanceConfig.from_dict(config.to_dict()) == config
