"""
Document loader for catalog, configuration and snapshot files.
Reads YAML/JSON with path and size checks and validates against JSON schemas.
"""

from pathlib import Path
from typing import Dict, Any, cast
import json

import jsonschema
import yaml

from .exceptions import ValidationError, SecurityError


def normalize_path(base: Path, relative_path: str) -> Path:
    """
    Resolve ``relative_path`` under ``base``.

    Raises:
        SecurityError: If the path escapes the base directory
    """
    base_resolved = base.resolve()
    try:
        target = (base / relative_path).resolve()
    except (ValueError, OSError) as e:
        raise SecurityError(f"Invalid path: '{relative_path}': {e}")
    if target != base_resolved and base_resolved not in target.parents:
        raise SecurityError(
            f"Path traversal detected: '{relative_path}' resolves outside base directory '{base}'"
        )
    return target


class SchemaLoader:
    """Loads workflow documents and checks them against JSON schemas"""

    MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB

    @staticmethod
    def _check_file_size(file_path: Path) -> None:
        try:
            size = file_path.stat().st_size
        except OSError as e:
            raise SecurityError(f"Cannot access file '{file_path}': {e}")
        if size > SchemaLoader.MAX_FILE_SIZE:
            raise SecurityError(
                f"File '{file_path}' exceeds maximum size limit ({SchemaLoader.MAX_FILE_SIZE} bytes)"
            )

    @staticmethod
    def _read_text(file_path: Path) -> str:
        normalized_path = normalize_path(file_path.parent, file_path.name)
        SchemaLoader._check_file_size(normalized_path)
        try:
            return normalized_path.read_text(encoding='utf-8')
        except (OSError, UnicodeDecodeError) as e:
            raise ValidationError(
                f"Failed to read {file_path}: {e}",
                field="file",
                value=str(file_path)
            )

    @staticmethod
    def load_yaml(file_path: Path) -> Dict[str, Any]:
        """Load a YAML mapping (an empty file yields an empty dict)"""
        text = SchemaLoader._read_text(file_path)
        try:
            data = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise ValidationError(
                f"Invalid YAML syntax in {file_path}: {e}",
                field="yaml",
                context={"file": str(file_path)}
            )
        if not isinstance(data, dict):
            raise ValidationError(
                f"YAML root must be a mapping in {file_path}",
                field="yaml",
                context={"file": str(file_path)}
            )
        return cast(Dict[str, Any], data)

    @staticmethod
    def load_json(file_path: Path) -> Dict[str, Any]:
        """Load a JSON object"""
        text = SchemaLoader._read_text(file_path)
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValidationError(
                f"Invalid JSON syntax in {file_path}: {e}",
                field="json",
                context={"file": str(file_path)}
            )
        if not isinstance(data, dict):
            raise ValidationError(
                f"JSON root must be an object in {file_path}",
                field="json",
                context={"file": str(file_path)}
            )
        return cast(Dict[str, Any], data)

    @staticmethod
    def load_schema(file_path: Path) -> Dict[str, Any]:
        """Load a YAML or JSON document, chosen by file suffix"""
        if file_path.suffix in ['.yaml', '.yml']:
            return SchemaLoader.load_yaml(file_path)
        elif file_path.suffix == '.json':
            return SchemaLoader.load_json(file_path)
        raise ValidationError(
            f"Unsupported file format: {file_path.suffix}",
            field="format",
            value=file_path.suffix,
            context={"supported_formats": [".yaml", ".yml", ".json"]}
        )

    @staticmethod
    def validate(data: Dict[str, Any], schema: Dict[str, Any], document: str) -> None:
        """
        Validate a loaded document against a Draft 7 schema.

        All violations are collected into the raised error's ``errors`` list.

        Raises:
            ValidationError: If the document does not match
        """
        validator = jsonschema.Draft7Validator(schema)
        problems = sorted(validator.iter_errors(data), key=lambda e: list(e.path))
        if problems:
            raise ValidationError(
                f"Invalid {document}: {problems[0].message}",
                field=document,
                errors=[
                    f"{'/'.join(str(p) for p in e.path) or '<root>'}: {e.message}"
                    for e in problems
                ]
            )
