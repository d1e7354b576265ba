"""
Base utilities for CLI commands.
"""

import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ..core.models import OperationResult
from ..core.workflow_engine import WorkflowEngine


def _init_engine(args) -> WorkflowEngine:
    """Build an engine persisting under the workspace's .workflow directory"""
    workspace = Path(getattr(args, 'workspace', None) or ".")
    catalog = getattr(args, 'catalog', None)
    config = getattr(args, 'config', None)
    return WorkflowEngine.for_workspace(
        workspace,
        catalog_file=Path(catalog) if catalog else None,
        config_file=Path(config) if config else None,
    )


def _unwrap(result: OperationResult, action: str) -> Any:
    """Return the operation data, or report the failure and exit"""
    if not result.success:
        error = result.error or {}
        print(f"❌ {action} failed: {error.get('message')} [{error.get('code')}]", file=sys.stderr)
        sys.exit(1)
    return result.data


def _parse_json_arg(value: Optional[str], name: str) -> Optional[Dict[str, Any]]:
    if not value:
        return None
    try:
        data = json.loads(value)
    except json.JSONDecodeError as e:
        print(f"❌ Invalid JSON for {name}: {e}", file=sys.stderr)
        sys.exit(1)
    if not isinstance(data, dict):
        print(f"❌ {name} must be a JSON object", file=sys.stderr)
        sys.exit(1)
    return data


def _load_document(path: Path) -> Dict[str, Any]:
    """Read a YAML or JSON request file"""
    if not path.exists():
        print(f"❌ File not found: {path}", file=sys.stderr)
        sys.exit(1)
    with path.open('r', encoding='utf-8') as f:
        if path.suffix == '.json':
            data = json.load(f)
        else:
            data = yaml.safe_load(f)
    if not isinstance(data, dict):
        print(f"❌ {path} must contain a mapping", file=sys.stderr)
        sys.exit(1)
    return data
