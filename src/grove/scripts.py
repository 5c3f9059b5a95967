"""Read and write the per-worktree ``grove.json`` script configuration."""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import ValidationError

from . import paths
from .errors import IoFailedError, ValidationFailedError
from .models import ScriptsConfig


def load_scripts_config(worktree_path: Path) -> ScriptsConfig:
    """Load ``grove.json`` from a worktree.

    A missing file yields an empty configuration.

    Raises:
        IoFailedError: The file exists but cannot be read.
        ValidationFailedError: The file is not valid JSON or fails validation.
    """
    config_path = paths.scripts_config_path(worktree_path)
    if not config_path.exists():
        return ScriptsConfig()
    try:
        raw = config_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise IoFailedError(f"failed to read {config_path}: {exc}") from exc
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValidationFailedError(f"invalid {config_path.name}: {exc}") from exc
    try:
        return ScriptsConfig.model_validate(payload)
    except ValidationError as exc:
        raise ValidationFailedError(f"invalid {config_path.name}: {exc}") from exc


def save_scripts_config(worktree_path: Path, config: ScriptsConfig) -> Path:
    """Write ``grove.json`` into a worktree and return its path."""
    config_path = paths.scripts_config_path(worktree_path)
    payload = config.model_dump(mode="json", exclude_none=True)
    try:
        config_path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    except OSError as exc:
        raise IoFailedError(f"failed to write {config_path}: {exc}") from exc
    return config_path
