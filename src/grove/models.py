"""Pydantic models for Grove workspaces, processes, and script configuration."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

WORKSPACE_STATUS_VALUES = ("Active", "Archived")
WorkspaceStatus = Literal["Active", "Archived"]

PROCESS_STATUS_VALUES = ("Running", "Exited", "Failed")
ProcessStatus = Literal["Running", "Exited", "Failed"]

SCRIPT_PHASE_VALUES = ("setup", "run", "archive")
ScriptPhase = Literal["setup", "run", "archive"]

ENV_WORKSPACE_PATH = "WORKSPACE_PATH"
ENV_ROOT_PATH = "ROOT_PATH"
ENV_PORT = "PORT"
ENV_WORKSPACE_NAME = "WORKSPACE_NAME"


class Workspace(BaseModel):
    """A unit of isolated work: a worktree plus a private port range.

    Attributes:
        id: Opaque unique identifier.
        name: User-facing label.
        repo_path: Absolute path to the origin repository.
        worktree_path: Working directory (the repo root for the main worktree).
        branch: Branch checked out in the worktree.
        is_main_worktree: True only for the repository's own working directory.
        env_vars: Environment injected into every spawned script.
        port_base: First port of the exclusively-owned range.
        status: ``Active`` or ``Archived``.
        created_at: ISO-8601 UTC creation timestamp.

    Example:
        >>> Workspace(id="w1", name="demo", repo_path="/repo",
        ...           worktree_path="/repo/.worktrees/demo", branch="demo",
        ...           port_base=3000, created_at="2026-01-01T00:00:00Z").status
        'Active'
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    repo_path: str
    worktree_path: str
    branch: str
    is_main_worktree: bool = False
    env_vars: dict[str, str] = Field(default_factory=dict)
    port_base: int = Field(ge=1, le=65535)
    status: WorkspaceStatus = "Active"
    created_at: str


class RunningProcess(BaseModel):
    """A background OS process launched on behalf of a workspace."""

    id: str
    workspace_id: str
    script_name: str
    pid: int
    status: ProcessStatus = "Running"


class RepoEntry(BaseModel):
    """A repository registered with Grove."""

    path: str
    name: str


class WorktreeInfo(BaseModel):
    """A git worktree as reported by ``git worktree list``."""

    name: str
    path: str
    branch: str | None = None
    is_main: bool = False


class ScriptDef(BaseModel):
    """A script definition with optional Windows overrides.

    Attributes:
        name: Human-readable label.
        command: Executable to run.
        args: Arguments for ``command``.
        command_windows: Executable override on Windows.
        args_windows: Argument override on Windows.
        cwd: Working directory relative to the worktree root.

    Example:
        >>> ScriptDef(name="dev", command="npm", args=["run", "dev"]).cwd is None
        True
    """

    model_config = ConfigDict(extra="ignore")

    name: str
    command: str
    args: list[str] = Field(default_factory=list)
    command_windows: str | None = None
    args_windows: list[str] | None = None
    cwd: str | None = None

    @field_validator("name", "command", mode="before")
    @classmethod
    def normalize_required(cls, value: object) -> object:
        if isinstance(value, str):
            normalized = value.strip()
            if not normalized:
                raise ValueError("must not be empty")
            return normalized
        return value

    @field_validator("command_windows", "cwd", mode="before")
    @classmethod
    def normalize_optional(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip() or None
        return value

    @field_validator("args", mode="before")
    @classmethod
    def normalize_args(cls, value: object) -> object:
        if value is None:
            return []
        return value


class ScriptsConfig(BaseModel):
    """The per-worktree ``grove.json`` file.

    Example:
        >>> ScriptsConfig().run
        []
    """

    model_config = ConfigDict(extra="ignore")

    setup: list[ScriptDef] = Field(default_factory=list)
    run: list[ScriptDef] = Field(default_factory=list)
    archive: list[ScriptDef] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)

    def scripts_for(self, phase: ScriptPhase) -> list[ScriptDef]:
        """Return the scripts declared for ``phase``."""
        if phase == "setup":
            return list(self.setup)
        if phase == "run":
            return list(self.run)
        return list(self.archive)


class BranchInfo(BaseModel):
    """A local or remote-tracking branch."""

    name: str
    is_remote: bool = False
    is_head: bool = False
