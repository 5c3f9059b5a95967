"""Background process supervision for workspace scripts.

Scripts run as fire-and-forget children in their own process group so that
stopping one also stops everything it spawned. Platform differences live
behind :class:`ProcessBackend`; :func:`default_backend` picks the
implementation for the host once.
"""

from __future__ import annotations

import os
import signal
import subprocess
import threading
from pathlib import Path
from typing import Mapping, Protocol, Sequence

from . import exec as exec_util
from . import log as grove_log
from .errors import IoFailedError, ValidationFailedError
from .models import ScriptDef

_WINDOWS_NEW_PROCESS_GROUP = 0x00000200


class ProcessBackend(Protocol):
    """Spawn, terminate, and probe OS processes."""

    def spawn(self, argv: Sequence[str], cwd: Path, env: Mapping[str, str]) -> int: ...

    def terminate(self, pid: int) -> None: ...

    def is_alive(self, pid: int) -> bool: ...


class _ChildTable:
    """Keeps ``Popen`` handles so exited children get reaped when probed."""

    def __init__(self) -> None:
        self._children: dict[int, subprocess.Popen[bytes]] = {}
        self._lock = threading.Lock()

    def _track(self, proc: subprocess.Popen[bytes]) -> int:
        with self._lock:
            self._children[proc.pid] = proc
        return proc.pid

    def _poll_child(self, pid: int) -> bool | None:
        """Return liveness for a tracked child, or ``None`` if untracked."""
        with self._lock:
            proc = self._children.get(pid)
            if proc is None:
                return None
            if proc.poll() is None:
                return True
            del self._children[pid]
            return False

    def _popen(
        self,
        argv: Sequence[str],
        cwd: Path,
        env: Mapping[str, str],
        **kwargs: object,
    ) -> int:
        try:
            proc = subprocess.Popen(
                list(argv),
                cwd=cwd,
                env=dict(env),
                stdin=subprocess.DEVNULL,
                **kwargs,
            )
        except OSError as exc:
            raise IoFailedError(f"failed to spawn {argv[0]!r}: {exc}") from exc
        return self._track(proc)


class PosixProcessBackend(_ChildTable):
    """Process groups via ``setsid``; liveness via signal 0."""

    def spawn(self, argv: Sequence[str], cwd: Path, env: Mapping[str, str]) -> int:
        return self._popen(argv, cwd, env, start_new_session=True)

    def terminate(self, pid: int) -> None:
        # The child is a session leader, so its pid is also its group id.
        try:
            os.killpg(pid, signal.SIGKILL)
        except ProcessLookupError:
            grove_log.debug(f"process group {pid} already gone")
        except PermissionError as exc:
            raise IoFailedError(f"not permitted to stop process {pid}: {exc}") from exc
        self._poll_child(pid)

    def is_alive(self, pid: int) -> bool:
        tracked = self._poll_child(pid)
        if tracked is not None:
            return tracked
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            return True
        return True


class WindowsProcessBackend(_ChildTable):
    """New process groups; ``taskkill``/``tasklist`` for stop and probe."""

    def spawn(self, argv: Sequence[str], cwd: Path, env: Mapping[str, str]) -> int:
        flags = getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", _WINDOWS_NEW_PROCESS_GROUP)
        return self._popen(argv, cwd, env, creationflags=flags)

    def terminate(self, pid: int) -> None:
        result = exec_util.try_run_command(["taskkill", "/F", "/T", "/PID", str(pid)])
        if result is None:
            raise IoFailedError(f"failed to stop process {pid}: taskkill not found")
        if result.returncode != 0:
            grove_log.debug(f"taskkill {pid}: {exec_util.command_failure_detail(result)}")
        self._poll_child(pid)

    def is_alive(self, pid: int) -> bool:
        tracked = self._poll_child(pid)
        if tracked is not None:
            return tracked
        result = exec_util.try_run_command(
            ["tasklist", "/FI", f"PID eq {pid}", "/NH"]
        )
        if result is None or result.returncode != 0:
            return False
        return str(pid) in result.stdout.split()


def is_windows() -> bool:
    return os.name == "nt"


def default_backend() -> ProcessBackend:
    """Return the process backend for the host operating system."""
    if is_windows():
        return WindowsProcessBackend()
    return PosixProcessBackend()


def resolve_platform_command(
    script: ScriptDef, *, windows: bool | None = None
) -> tuple[str, list[str]]:
    """Return the command and arguments to run for ``script`` on this host.

    Example:
        >>> script = ScriptDef(name="dev", command="./dev.sh", command_windows="dev.cmd")
        >>> resolve_platform_command(script, windows=True)
        ('dev.cmd', [])
        >>> resolve_platform_command(script, windows=False)
        ('./dev.sh', [])
    """
    on_windows = is_windows() if windows is None else windows
    if on_windows:
        command = script.command_windows or script.command
        args = script.args_windows if script.args_windows is not None else script.args
        return command, list(args)
    return script.command, list(script.args)


def resolve_working_dir(script: ScriptDef, worktree_path: Path) -> Path:
    """Return the directory ``script`` runs in.

    ``cwd`` is relative to the worktree and must stay inside it.

    Raises:
        ValidationFailedError: ``cwd`` resolves outside the worktree.

    Example:
        >>> resolve_working_dir(ScriptDef(name="web", command="npm", cwd="web"),
        ...                     Path("/repo")).as_posix()
        '/repo/web'
    """
    if not script.cwd:
        return worktree_path
    working_dir = worktree_path / script.cwd
    root = worktree_path.resolve()
    resolved = working_dir.resolve()
    if resolved != root and root not in resolved.parents:
        raise ValidationFailedError(
            f"script {script.name!r} working directory leaves the worktree: {script.cwd}"
        )
    return working_dir


class ProcessSupervisor:
    """Spawns workspace scripts and answers stop/liveness requests."""

    def __init__(self, backend: ProcessBackend | None = None) -> None:
        self.backend = backend or default_backend()

    def spawn(
        self,
        script: ScriptDef,
        worktree_path: Path,
        env_overrides: Mapping[str, str] | None = None,
    ) -> int:
        """Start ``script`` in the background and return its pid.

        Raises:
            ValidationFailedError: The working directory does not exist or
                lies outside the worktree.
            IoFailedError: The executable could not be started.
        """
        command, args = resolve_platform_command(script)
        working_dir = resolve_working_dir(script, worktree_path)
        if not working_dir.is_dir():
            raise ValidationFailedError(
                f"working directory does not exist: {working_dir}"
            )
        env = {**os.environ, **(env_overrides or {})}
        pid = self.backend.spawn([command, *args], working_dir, env)
        grove_log.debug(f"spawned {script.name!r} as pid {pid} in {working_dir}")
        return pid

    def stop(self, pid: int) -> None:
        """Forcibly stop the process group rooted at ``pid``."""
        self.backend.terminate(pid)

    def is_alive(self, pid: int) -> bool:
        return self.backend.is_alive(pid)
