"""Worktree provisioning for workspaces.

Workspace worktrees live under ``<repo>/.worktrees/<name>``. The main
workspace never gets a worktree of its own: it resolves to the repository's
working directory.
"""

from __future__ import annotations

import shutil
from pathlib import Path

from . import git, paths
from . import log as grove_log
from .errors import IoFailedError, ValidationFailedError, VcsOperationFailedError
from .models import WorktreeInfo


def worktree_dir(repo_root: Path, name: str) -> Path:
    """Return the worktree directory for a workspace name.

    Example:
        >>> worktree_dir(Path("/repo"), "feature-x").as_posix()
        '/repo/.worktrees/feature-x'
    """
    if not name or name in {".", ".."} or "/" in name or "\\" in name:
        raise ValidationFailedError(f"invalid workspace name: {name!r}")
    return paths.worktrees_root(repo_root) / name


def validate_repo(repo_root: Path) -> Path:
    """Check that ``repo_root`` is the top level of a git repository.

    A directory nested inside a repository is rejected, so worktrees and
    ``ROOT_PATH`` always hang off the real repository root.

    Returns:
        The repository's top-level working directory as reported by git.

    Raises:
        ValidationFailedError: The path is missing, is not inside a
            repository, or is not the repository root.
    """
    if not repo_root.exists():
        raise ValidationFailedError(f"repository path does not exist: {repo_root}")
    if not git.git_is_repo(repo_root):
        raise ValidationFailedError(f"not a valid git repository: {repo_root}")
    toplevel = git.git_workdir(repo_root)
    if toplevel is None:
        raise ValidationFailedError(f"repository has no working directory: {repo_root}")
    if toplevel.resolve() != repo_root.resolve():
        raise ValidationFailedError(
            f"not the repository root: {repo_root}",
            recovery_hint=f"use {paths.strip_trailing_separators(str(toplevel))}",
        )
    return toplevel


def create_worktree(
    repo_root: Path,
    name: str,
    branch: str | None = None,
    base_branch: str | None = None,
) -> Path:
    """Create a worktree for ``name`` on a new branch and return its path.

    Args:
        repo_root: Repository to add the worktree to.
        name: Workspace name; also the directory name under ``.worktrees``.
        branch: New branch name (defaults to ``name``).
        base_branch: Start point for the branch (defaults to ``HEAD``).

    Raises:
        ValidationFailedError: ``repo_root`` is missing or not a repository.
        IoFailedError: The ``.worktrees`` container cannot be created.
        VcsOperationFailedError: ``git worktree add`` failed.
    """
    validate_repo(repo_root)
    wt_path = worktree_dir(repo_root, name)
    try:
        paths.ensure_dir(wt_path.parent)
    except OSError as exc:
        raise IoFailedError(
            f"failed to create {paths.WORKTREES_DIRNAME} directory: {exc}"
        ) from exc
    new_branch = (branch or "").strip() or name
    base = (base_branch or "").strip() or None
    grove_log.debug(f"git worktree add -b {new_branch} {wt_path} {base or 'HEAD'}")
    git.git_worktree_add(repo_root, wt_path, new_branch, base)
    return wt_path


def _prune_quietly(repo_root: Path) -> None:
    try:
        git.git_worktree_prune(repo_root)
    except VcsOperationFailedError as exc:
        grove_log.debug(f"worktree prune skipped: {exc}")


def _delete_dir(worktree_path: Path) -> None:
    if not worktree_path.exists():
        return
    try:
        shutil.rmtree(worktree_path)
    except OSError as exc:
        raise IoFailedError(
            f"failed to remove worktree directory {worktree_path}: {exc}"
        ) from exc


def remove_worktree(repo_root: Path, worktree_path: Path) -> None:
    """Remove a worktree, tolerating a git index and disk that disagree.

    ``git worktree remove --force`` is tried first. When git refuses (the
    directory was deleted by hand, or git no longer knows the worktree), stale
    records are pruned, the directory is deleted, and records are pruned
    again. A directory that is already gone is not an error.

    Raises:
        IoFailedError: The directory exists and cannot be deleted.
    """
    try:
        git.git_worktree_remove(repo_root, worktree_path, force=True)
    except VcsOperationFailedError as exc:
        grove_log.debug(f"falling back to manual worktree removal: {exc}")
        _prune_quietly(repo_root)
        _delete_dir(worktree_path)
        _prune_quietly(repo_root)
    _delete_dir(worktree_path)


def resolve_main_worktree(repo_root: Path) -> tuple[Path, str]:
    """Return the repository's own working directory and current branch.

    Raises:
        ValidationFailedError: ``repo_root`` is not a repository root.
    """
    toplevel = validate_repo(repo_root)
    main_path = Path(paths.strip_trailing_separators(str(toplevel)))
    branch = git.git_current_branch(repo_root) or "main"
    return main_path, branch


def list_worktrees(repo_root: Path) -> list[WorktreeInfo]:
    """List the main worktree followed by every linked worktree."""
    validate_repo(repo_root)
    entries = git.git_worktree_list(repo_root)
    infos: list[WorktreeInfo] = []
    for index, entry in enumerate(entries):
        if entry.get("bare"):
            continue
        path = paths.strip_trailing_separators(entry["worktree"])
        is_main = index == 0
        infos.append(
            WorktreeInfo(
                name="main" if is_main else Path(path).name,
                path=path,
                branch=entry.get("branch") or ("HEAD" if entry.get("detached") else None),
                is_main=is_main,
            )
        )
    return infos
