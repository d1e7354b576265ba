"""
Unit tests for WorkflowCatalog.
"""
import json

import pytest
import yaml

from workflow_guidance.core.catalog import WorkflowCatalog
from workflow_guidance.core.exceptions import NotFoundError, ValidationError


class TestCatalogLoading:
    """Test building catalogs from documents."""

    def test_from_dict(self, catalog):
        assert [r.id for r in catalog.roles] == ["architect", "developer"]
        assert catalog.total_steps == 4
        assert catalog.get_step("s2").dependencies[0].depends_on_step == "design"
        assert catalog.get_step("s1").quality_checks[0].criterion == "Components named"

    def test_transition_id_defaults_to_name(self, catalog):
        transition = catalog.get_transition("architect_to_developer")

        assert transition.id == "architect_to_developer"
        assert transition.from_role_id == "architect"
        assert transition.conditions[0].name == "allStepsCompleted"

    def test_load_yaml_and_json(self, temp_workspace, catalog_data):
        """Test loading the same catalog from YAML and JSON files."""
        yaml_file = temp_workspace / "catalog.yaml"
        json_file = temp_workspace / "catalog.json"
        yaml_file.write_text(yaml.safe_dump(catalog_data), encoding="utf-8")
        json_file.write_text(json.dumps(catalog_data), encoding="utf-8")

        assert WorkflowCatalog.load(yaml_file).total_steps == 4
        assert WorkflowCatalog.load(json_file).total_steps == 4

    def test_default_catalog(self, default_catalog):
        """Test the bundled catalog."""
        assert [r.id for r in default_catalog.roles] == [
            "boomerang", "architect", "senior-developer", "code-review"
        ]
        assert default_catalog.first_step("boomerang").id == "boomerang-verify-workspace"
        assert default_catalog.is_terminal("code-review")
        assert not default_catalog.is_terminal("boomerang")

    def test_schema_violation_collects_errors(self, catalog_data):
        del catalog_data["roles"][0]["name"]
        catalog_data["roles"][1]["steps"][0]["sequence_number"] = "one"

        with pytest.raises(ValidationError) as exc_info:
            WorkflowCatalog.from_dict(catalog_data)

        assert len(exc_info.value.errors) == 2


class TestCatalogInvariants:
    """Test that inconsistent catalogs are rejected."""

    def test_non_increasing_sequence_is_rejected(self, catalog_data):
        catalog_data["roles"][0]["steps"][1]["sequence_number"] = 1

        with pytest.raises(ValidationError) as exc_info:
            WorkflowCatalog.from_dict(catalog_data)
        assert "strictly increasing" in str(exc_info.value)

    def test_duplicate_step_id_is_rejected(self, catalog_data):
        catalog_data["roles"][1]["steps"][0]["id"] = "s1"

        with pytest.raises(ValidationError):
            WorkflowCatalog.from_dict(catalog_data)

    def test_duplicate_role_name_is_rejected(self, catalog_data):
        catalog_data["roles"][1]["name"] = "architect"

        with pytest.raises(ValidationError):
            WorkflowCatalog.from_dict(catalog_data)

    def test_duplicate_transition_name_is_rejected(self, catalog_data):
        catalog_data["transitions"].append(dict(catalog_data["transitions"][0], id="other"))

        with pytest.raises(ValidationError):
            WorkflowCatalog.from_dict(catalog_data)

    def test_transition_to_unknown_role_is_rejected(self, catalog_data):
        catalog_data["transitions"][0]["to_role"] = "tester"

        with pytest.raises(ValidationError):
            WorkflowCatalog.from_dict(catalog_data)

    def test_unknown_step_dependency_is_rejected(self, catalog_data):
        catalog_data["roles"][0]["steps"][1]["dependencies"] = ["imagine"]

        with pytest.raises(ValidationError):
            WorkflowCatalog.from_dict(catalog_data)


class TestCatalogLookups:
    """Test role, step and transition queries."""

    def test_roles_by_id_or_name(self, catalog):
        assert catalog.get_role("developer").name == "developer"
        assert catalog.find_role("nobody") is None
        with pytest.raises(NotFoundError):
            catalog.get_role("nobody")

    def test_step_ordering(self, catalog):
        assert catalog.first_step("architect").id == "s1"
        assert catalog.next_step_after("s1").id == "s2"
        assert catalog.next_step_after("s2") is None
        assert catalog.is_last_step("s2")

    def test_step_belongs_to_role(self, catalog):
        assert catalog.step_belongs_to_role("s1", "architect")
        assert not catalog.step_belongs_to_role("d1", "architect")
        assert not catalog.step_belongs_to_role("missing", "architect")

    def test_transitions_from_skips_inactive(self, catalog):
        names = [t.transition_name for t in catalog.transitions_from("architect")]

        assert names == ["architect_to_developer", "architect_fast_track"]
        assert len(catalog.transitions) == 4

    def test_terminal_flag(self, catalog):
        assert catalog.is_terminal("developer")
        assert not catalog.is_terminal("architect")

    def test_terminal_without_flag_uses_outgoing_transitions(self, catalog_data):
        catalog_data["roles"][1]["terminal"] = False
        catalog_data["transitions"] = [catalog_data["transitions"][0]]

        catalog = WorkflowCatalog.from_dict(catalog_data)

        assert catalog.is_terminal("developer")
        assert not catalog.is_terminal("architect")

    def test_unknown_transition(self, catalog):
        assert catalog.find_transition("nowhere") is None
        with pytest.raises(NotFoundError):
            catalog.get_transition("nowhere")
