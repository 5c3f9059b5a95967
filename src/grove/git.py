"""Git helper functions used by the workspace lifecycle.

Every helper shells out to the ``git`` executable (``GROVE_GIT`` overrides
the path) through :mod:`grove.exec`. Helpers that answer questions return
``None``/``False`` when git says no; helpers that change repository state
raise :class:`~grove.errors.VcsOperationFailedError` with git's stderr.
"""

from __future__ import annotations

import os
from pathlib import Path

from . import exec as exec_util
from .errors import VcsOperationFailedError
from .models import BranchInfo


def git_executable() -> str:
    resolved = os.environ.get("GROVE_GIT", "").strip()
    return resolved or "git"


def git_command(args: list[str], *, git_path: str | None = None) -> list[str]:
    """Build a git command using an optional executable path.

    Example:
        >>> git_command(["status"], git_path="/usr/bin/git")
        ['/usr/bin/git', 'status']
    """
    resolved = git_path.strip() if isinstance(git_path, str) else ""
    if not resolved:
        resolved = git_executable()
    return [resolved, *args]


def _run_git(repo_dir: Path, args: list[str]) -> exec_util.CommandResult:
    cmd = git_command(["-C", str(repo_dir), *args])
    result = exec_util.try_run_command(cmd)
    if result is None:
        raise VcsOperationFailedError(exec_util.missing_command_detail(cmd))
    return result


def _run_git_or_raise(
    repo_dir: Path, args: list[str], *, action: str
) -> exec_util.CommandResult:
    result = _run_git(repo_dir, args)
    if result.returncode != 0:
        detail = (result.stderr or result.stdout or "").strip()
        message = f"git {action} failed"
        if detail:
            message = f"{message}: {detail}"
        raise VcsOperationFailedError(message)
    return result


def git_is_repo(repo_dir: Path) -> bool:
    """Return true when ``repo_dir`` is inside a git repository."""
    if not repo_dir.is_dir():
        return False
    result = _run_git(repo_dir, ["rev-parse", "--git-dir"])
    return result.returncode == 0


def git_workdir(repo_dir: Path) -> Path | None:
    """Return the top-level working directory of the repository."""
    result = _run_git(repo_dir, ["rev-parse", "--show-toplevel"])
    if result.returncode != 0:
        return None
    resolved = result.stdout.strip()
    if not resolved:
        return None
    return Path(resolved)


def git_current_branch(repo_dir: Path) -> str | None:
    """Return the short name of ``HEAD``.

    Works for unborn branches; a detached ``HEAD`` yields ``"HEAD"``.
    """
    result = _run_git(repo_dir, ["symbolic-ref", "--short", "-q", "HEAD"])
    if result.returncode == 0 and result.stdout.strip():
        return result.stdout.strip()
    result = _run_git(repo_dir, ["rev-parse", "--abbrev-ref", "HEAD"])
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def git_ref_exists(repo_dir: Path, ref: str) -> bool:
    result = _run_git(repo_dir, ["show-ref", "--verify", "--quiet", ref])
    return result.returncode == 0


def git_default_branch(repo_dir: Path) -> str:
    """Return the branch new work should start from.

    Prefers ``origin/HEAD``, then ``origin/main`` and ``origin/master``, then
    the current branch, then ``main``.
    """
    result = _run_git(
        repo_dir, ["symbolic-ref", "--short", "-q", "refs/remotes/origin/HEAD"]
    )
    if result.returncode == 0 and result.stdout.strip():
        return result.stdout.strip()
    for candidate in ("origin/main", "origin/master"):
        if git_ref_exists(repo_dir, f"refs/remotes/{candidate}"):
            return candidate
    return git_current_branch(repo_dir) or "main"


def git_list_branches(repo_dir: Path) -> list[BranchInfo]:
    """List local branches followed by remote-tracking branches."""
    result = _run_git_or_raise(
        repo_dir,
        [
            "for-each-ref",
            "--format=%(HEAD)%09%(refname)",
            "refs/heads",
            "refs/remotes",
        ],
        action="for-each-ref",
    )
    local: list[BranchInfo] = []
    remote: list[BranchInfo] = []
    for line in result.stdout.splitlines():
        head_marker, _, refname = line.partition("\t")
        if refname.startswith("refs/heads/"):
            local.append(
                BranchInfo(
                    name=refname[len("refs/heads/") :],
                    is_head=head_marker.strip() == "*",
                )
            )
        elif refname.startswith("refs/remotes/"):
            name = refname[len("refs/remotes/") :]
            if name.endswith("/HEAD"):
                continue
            remote.append(BranchInfo(name=name, is_remote=True))
    return local + remote


def git_worktree_add(
    repo_dir: Path,
    worktree_path: Path,
    branch: str,
    base_ref: str | None = None,
) -> None:
    """Create ``worktree_path`` on a new ``branch`` starting at ``base_ref``."""
    args = ["worktree", "add", "-b", branch, str(worktree_path)]
    if base_ref:
        args.append(base_ref)
    _run_git_or_raise(repo_dir, args, action="worktree add")


def git_worktree_remove(repo_dir: Path, worktree_path: Path, *, force: bool = True) -> None:
    args = ["worktree", "remove"]
    if force:
        args.append("--force")
    args.append(str(worktree_path))
    _run_git_or_raise(repo_dir, args, action="worktree remove")


def git_worktree_prune(repo_dir: Path) -> None:
    _run_git_or_raise(repo_dir, ["worktree", "prune"], action="worktree prune")


def git_worktree_list(repo_dir: Path) -> list[dict[str, str]]:
    """Parse ``git worktree list --porcelain`` into one dict per worktree.

    Each dict has a ``worktree`` key and, when present, ``branch`` (short
    name), ``head``, ``detached`` and ``bare``.
    """
    result = _run_git_or_raise(
        repo_dir, ["worktree", "list", "--porcelain"], action="worktree list"
    )
    entries: list[dict[str, str]] = []
    current: dict[str, str] = {}
    for line in result.stdout.splitlines():
        if not line.strip():
            if current:
                entries.append(current)
                current = {}
            continue
        key, _, value = line.partition(" ")
        if key == "worktree":
            if current:
                entries.append(current)
            current = {"worktree": value.strip()}
        elif key == "branch":
            current["branch"] = value.strip().removeprefix("refs/heads/")
        elif key == "HEAD":
            current["head"] = value.strip()
        elif key in {"detached", "bare", "locked", "prunable"}:
            current[key] = value.strip() or "true"
    if current:
        entries.append(current)
    return entries


def git_branch_delete(repo_dir: Path, branch: str, *, force: bool = True) -> None:
    flag = "-D" if force else "-d"
    _run_git_or_raise(repo_dir, ["branch", flag, branch], action="branch delete")
