"""Path helpers for locating Grove data files and workspace directories."""

from __future__ import annotations

import os
from pathlib import Path

from platformdirs import user_data_dir

GROVE_APP_NAME = "grove"
STORE_FILENAME = "grove-store.json"
WORKTREES_DIRNAME = ".worktrees"
SCRIPTS_CONFIG_FILENAME = "grove.json"


def grove_data_dir() -> Path:
    """Return the base Grove data directory.

    ``GROVE_DATA_DIR`` overrides the platform default.

    Returns:
        Path to the user data directory for Grove.

    Example:
        >>> isinstance(grove_data_dir(), Path)
        True
    """
    override = os.environ.get("GROVE_DATA_DIR", "").strip()
    if override:
        return Path(override).expanduser()
    return Path(user_data_dir(GROVE_APP_NAME))


def store_path() -> Path:
    """Return the path of the durable JSON store.

    Example:
        >>> store_path().name == STORE_FILENAME
        True
    """
    return grove_data_dir() / STORE_FILENAME


def worktrees_root(repo_root: Path) -> Path:
    """Return the container directory for a repository's worktrees.

    Example:
        >>> worktrees_root(Path("/repo")).as_posix()
        '/repo/.worktrees'
    """
    return repo_root / WORKTREES_DIRNAME


def scripts_config_path(worktree_path: Path) -> Path:
    """Return the script configuration file for a worktree.

    Example:
        >>> scripts_config_path(Path("/repo/.worktrees/a")).name
        'grove.json'
    """
    return worktree_path / SCRIPTS_CONFIG_FILENAME


def strip_trailing_separators(value: str) -> str:
    """Remove trailing path separators, keeping a bare root intact.

    Example:
        >>> strip_trailing_separators("/repo/")
        '/repo'
        >>> strip_trailing_separators("/")
        '/'
    """
    stripped = value.rstrip("/\\")
    return stripped or value[:1]


def ensure_dir(path: Path) -> None:
    """Create a directory (and parents) if it does not exist."""
    path.mkdir(parents=True, exist_ok=True)
