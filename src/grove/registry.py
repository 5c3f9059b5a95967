"""Workspace registry: the authoritative table of workspaces and processes.

Every operation holds ``AppState.lock`` for its full duration, including
port allocation, git calls, and the write to the durable store. Two
concurrent creations therefore can never pick the same port. The in-memory
table changes only after the store has accepted the new contents, so a failed
write leaves both exactly as they were.
"""

from __future__ import annotations

import datetime as dt
import uuid
from pathlib import Path
from typing import Mapping

from pydantic import TypeAdapter, ValidationError

from . import git, ports, scripts, worktrees
from . import log as grove_log
from .errors import (
    GroveError,
    IoFailedError,
    NotFoundError,
    ProcessNotFoundError,
    ValidationFailedError,
    VcsOperationFailedError,
)
from .models import (
    ENV_PORT,
    ENV_ROOT_PATH,
    ENV_WORKSPACE_NAME,
    ENV_WORKSPACE_PATH,
    SCRIPT_PHASE_VALUES,
    RunningProcess,
    ScriptDef,
    ScriptPhase,
    Workspace,
    WorkspaceStatus,
)
from .processes import ProcessSupervisor
from .state import AppState
from .store import JsonStore

WORKSPACES_KEY = "workspace_configs"
NOTES_KEY_PREFIX = "workspace_notes_"

_WORKSPACE_LIST = TypeAdapter(list[Workspace])


def utc_now() -> str:
    """Return the current UTC timestamp in ISO-8601 format.

    Example:
        >>> utc_now().endswith("Z")
        True
    """
    now = dt.datetime.now(tz=dt.timezone.utc).replace(microsecond=0)
    return now.isoformat().replace("+00:00", "Z")


def new_workspace_id() -> str:
    return str(uuid.uuid4())


def make_process_id(workspace_id: str, pid: int) -> str:
    """Return the tracking id of a spawned process.

    Example:
        >>> make_process_id("ws-1", 4242)
        'ws-1-4242'
    """
    return f"{workspace_id}-{pid}"


def build_env_vars(
    worktree_path: str, repo_path: str, port_base: int, name: str
) -> dict[str, str]:
    """Return the environment bundle injected into a workspace's scripts.

    Example:
        >>> build_env_vars("/r/.worktrees/a", "/r", 3000, "a")["PORT"]
        '3000'
    """
    return {
        ENV_WORKSPACE_PATH: worktree_path,
        ENV_ROOT_PATH: repo_path,
        ENV_PORT: str(port_base),
        ENV_WORKSPACE_NAME: name,
    }


def _normalize_repo_path(repo_path: str | Path) -> Path:
    text = str(repo_path).strip()
    if not text:
        raise ValidationFailedError("repository path must not be empty")
    return Path(text).expanduser().resolve()


def _require_name(name: str) -> str:
    normalized = (name or "").strip()
    if not normalized:
        raise ValidationFailedError("workspace name must not be empty")
    return normalized


class WorkspaceRegistry:
    """Creates, tracks, and tears down workspaces and their processes.

    Args:
        state: Shared table guarded by ``state.lock``.
        store: Durable store the workspace table is written to.
        supervisor: Process supervisor for workspace scripts.
        probe: Port bind check handed to the allocator.
    """

    def __init__(
        self,
        state: AppState,
        store: JsonStore,
        *,
        supervisor: ProcessSupervisor | None = None,
        probe: ports.PortProbe | None = None,
    ) -> None:
        self.state = state
        self.store = store
        self.supervisor = supervisor or ProcessSupervisor()
        self.probe = probe

    # Persistence -----------------------------------------------------------

    def load(self) -> list[Workspace]:
        """Repopulate the table from the durable store.

        Every stored ``port_base`` is marked allocated before any new
        allocation can happen, even when the OS port is free again.

        Raises:
            IoFailedError: The stored table cannot be parsed.
        """
        raw = self.store.get(WORKSPACES_KEY)
        if raw is None:
            return []
        try:
            loaded = _WORKSPACE_LIST.validate_python(raw)
        except ValidationError as exc:
            raise IoFailedError(f"stored workspace table is invalid: {exc}") from exc
        with self.state.lock:
            self.state.workspaces = loaded
            self.state.allocated_ports.update(ws.port_base for ws in loaded)
            grove_log.debug(f"loaded {len(loaded)} workspace(s) from store")
            return [ws.model_copy(deep=True) for ws in loaded]

    def _commit(self, workspaces: list[Workspace], allocated: set[int]) -> None:
        # Caller holds the lock. The table changes only once the store has
        # accepted the new contents.
        payload = [ws.model_dump(mode="json") for ws in workspaces]
        self.store.put(WORKSPACES_KEY, payload)
        self.state.workspaces = workspaces
        self.state.allocated_ports = allocated

    def _find(self, workspace_id: str) -> Workspace:
        # Caller holds the lock.
        for ws in self.state.workspaces:
            if ws.id == workspace_id:
                return ws
        raise NotFoundError(f"workspace {workspace_id!r} not found")

    def _discard_worktree(self, repo_root: Path, worktree_path: Path) -> None:
        try:
            worktrees.remove_worktree(repo_root, worktree_path)
        except GroveError as exc:
            grove_log.warning(f"left worktree {worktree_path} behind: {exc}")

    # Workspaces ------------------------------------------------------------

    def create_workspace(
        self,
        repo_path: str | Path,
        name: str,
        branch: str | None = None,
        base_branch: str | None = None,
    ) -> Workspace:
        """Provision a new worktree workspace with its own port range.

        When the store write fails the new worktree is removed again and the
        table is left as it was.

        Raises:
            ValidationFailedError: Bad repository path or workspace name.
            ResourceExhaustedError: No free port range.
            VcsOperationFailedError: ``git worktree add`` failed.
            IoFailedError: The worktree container or the store write failed.
        """
        repo_root = _normalize_repo_path(repo_path)
        name = _require_name(name)
        worktrees.validate_repo(repo_root)
        with self.state.lock:
            port_base = ports.allocate_port_range(
                self.state.allocated_ports, probe=self.probe
            )
            wt_path = worktrees.create_worktree(repo_root, name, branch, base_branch)
            new_branch = (branch or "").strip() or name
            worktree_path = str(wt_path)
            repo_text = str(repo_root)
            workspace = Workspace(
                id=new_workspace_id(),
                name=name,
                repo_path=repo_text,
                worktree_path=worktree_path,
                branch=new_branch,
                is_main_worktree=False,
                env_vars=build_env_vars(worktree_path, repo_text, port_base, name),
                port_base=port_base,
                status="Active",
                created_at=utc_now(),
            )
            try:
                self._commit(
                    [*self.state.workspaces, workspace],
                    self.state.allocated_ports | {port_base},
                )
            except IoFailedError:
                self._discard_worktree(repo_root, wt_path)
                raise
            grove_log.info(
                f"created at {worktree_path} (ports {port_base}+)", workspace=name
            )
            return workspace.model_copy(deep=True)

    def create_workspace_for_main(self, repo_path: str | Path, name: str) -> Workspace:
        """Register the repository's own working directory as a workspace."""
        repo_root = _normalize_repo_path(repo_path)
        name = _require_name(name)
        main_path, branch = worktrees.resolve_main_worktree(repo_root)
        with self.state.lock:
            port_base = ports.allocate_port_range(
                self.state.allocated_ports, probe=self.probe
            )
            worktree_path = str(main_path)
            repo_text = str(repo_root)
            workspace = Workspace(
                id=new_workspace_id(),
                name=name,
                repo_path=repo_text,
                worktree_path=worktree_path,
                branch=branch,
                is_main_worktree=True,
                env_vars=build_env_vars(worktree_path, repo_text, port_base, name),
                port_base=port_base,
                status="Active",
                created_at=utc_now(),
            )
            self._commit(
                [*self.state.workspaces, workspace],
                self.state.allocated_ports | {port_base},
            )
            grove_log.info(f"registered main worktree {worktree_path}", workspace=name)
            return workspace.model_copy(deep=True)

    def delete_workspace(self, workspace_id: str) -> None:
        """Remove a workspace, its worktree, and its branch; release its port.

        Branch deletion is best effort: a dangling branch is left behind with
        a debug message when git refuses. If the store write fails the entry
        stays in the table and the delete can be retried.
        """
        with self.state.lock:
            workspace = self._find(workspace_id)
            if not workspace.is_main_worktree:
                repo_root = Path(workspace.repo_path)
                worktrees.remove_worktree(repo_root, Path(workspace.worktree_path))
                try:
                    git.git_branch_delete(repo_root, workspace.branch, force=True)
                except VcsOperationFailedError as exc:
                    grove_log.debug(
                        f"kept branch {workspace.branch!r}: {exc}", workspace=workspace.name
                    )
            self._commit(
                [ws for ws in self.state.workspaces if ws.id != workspace_id],
                self.state.allocated_ports - {workspace.port_base},
            )
            grove_log.info("deleted", workspace=workspace.name)

    def _set_status(self, workspace_id: str, status: WorkspaceStatus) -> Workspace:
        with self.state.lock:
            current = self._find(workspace_id)
            updated = current.model_copy(update={"status": status}, deep=True)
            self._commit(
                [updated if ws.id == workspace_id else ws for ws in self.state.workspaces],
                set(self.state.allocated_ports),
            )
            return updated.model_copy(deep=True)

    def archive_workspace(self, workspace_id: str) -> Workspace:
        return self._set_status(workspace_id, "Archived")

    def restore_workspace(self, workspace_id: str) -> Workspace:
        return self._set_status(workspace_id, "Active")

    def get_workspace(self, workspace_id: str) -> Workspace:
        with self.state.lock:
            return self._find(workspace_id).model_copy(deep=True)

    def get_workspace_env(self, workspace_id: str) -> dict[str, str]:
        with self.state.lock:
            return dict(self._find(workspace_id).env_vars)

    def list_workspaces(self) -> list[Workspace]:
        with self.state.lock:
            return [ws.model_copy(deep=True) for ws in self.state.workspaces]

    # Notes -----------------------------------------------------------------

    def save_workspace_notes(self, workspace_id: str, notes: str) -> None:
        """Store free-form notes for a workspace.

        Raises:
            NotFoundError: No workspace has this id.
        """
        with self.state.lock:
            self._find(workspace_id)
            self.store.put(f"{NOTES_KEY_PREFIX}{workspace_id}", notes)

    def load_workspace_notes(self, workspace_id: str) -> str:
        value = self.store.get(f"{NOTES_KEY_PREFIX}{workspace_id}")
        return value if isinstance(value, str) else ""

    # Processes -------------------------------------------------------------

    def _spawn(
        self,
        workspace: Workspace,
        script: ScriptDef,
        config_env: Mapping[str, str],
        extra_env: Mapping[str, str] | None,
    ) -> RunningProcess:
        # Caller holds the lock.
        env = {**config_env, **workspace.env_vars, **(extra_env or {})}
        pid = self.supervisor.spawn(script, Path(workspace.worktree_path), env)
        process = RunningProcess(
            id=make_process_id(workspace.id, pid),
            workspace_id=workspace.id,
            script_name=script.name,
            pid=pid,
            status="Running",
        )
        self.state.running_processes.append(process)
        grove_log.info(f"started {script.name!r} (pid {pid})", workspace=workspace.name)
        return process.model_copy()

    def run_script(
        self,
        workspace_id: str,
        script: ScriptDef,
        extra_env: Mapping[str, str] | None = None,
    ) -> RunningProcess:
        """Spawn ``script`` in the workspace and start tracking it.

        The child sees, in increasing precedence: the inherited environment,
        ``grove.json``'s ``env``, the workspace bundle, and ``extra_env``.
        """
        with self.state.lock:
            workspace = self._find(workspace_id)
            config = scripts.load_scripts_config(Path(workspace.worktree_path))
            return self._spawn(workspace, script, config.env, extra_env)

    def run_phase(
        self,
        workspace_id: str,
        phase: ScriptPhase,
        extra_env: Mapping[str, str] | None = None,
    ) -> list[RunningProcess]:
        """Spawn every script ``grove.json`` declares for ``phase``."""
        if phase not in SCRIPT_PHASE_VALUES:
            raise ValidationFailedError(f"unknown script phase: {phase!r}")
        with self.state.lock:
            workspace = self._find(workspace_id)
            config = scripts.load_scripts_config(Path(workspace.worktree_path))
            return [
                self._spawn(workspace, script, config.env, extra_env)
                for script in config.scripts_for(phase)
            ]

    def list_running_processes(
        self, workspace_id: str | None = None
    ) -> list[RunningProcess]:
        """Return tracked processes after refreshing their liveness."""
        with self.state.lock:
            for process in self.state.running_processes:
                if process.status == "Running" and not self.supervisor.is_alive(
                    process.pid
                ):
                    process.status = "Exited"
            return [
                process.model_copy()
                for process in self.state.running_processes
                if workspace_id is None or process.workspace_id == workspace_id
            ]

    def stop_process(self, process_id: str) -> None:
        """Stop a tracked process and its process group.

        Processes already marked ``Exited`` are not signalled again, since
        their pid may have been reused.

        Raises:
            ProcessNotFoundError: No tracked process has this id.
        """
        with self.state.lock:
            process = next(
                (p for p in self.state.running_processes if p.id == process_id),
                None,
            )
            if process is None:
                raise ProcessNotFoundError(f"process {process_id!r} not found")
            if process.status == "Running":
                self.supervisor.stop(process.pid)
            process.status = "Exited"
            grove_log.info(f"stopped {process.script_name!r} (pid {process.pid})")

    def cleanup_processes(self) -> int:
        """Forget every process that is not running; return how many."""
        with self.state.lock:
            kept = [p for p in self.state.running_processes if p.status == "Running"]
            removed = len(self.state.running_processes) - len(kept)
            self.state.running_processes = kept
            return removed
