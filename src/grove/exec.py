"""Subprocess helpers for running external commands."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Protocol


@dataclass(frozen=True)
class CommandRequest:
    """Typed command invocation request."""

    argv: tuple[str, ...]
    cwd: Path | None = None
    env: Mapping[str, str] | None = None
    timeout_seconds: float | None = None


@dataclass(frozen=True)
class CommandResult:
    """Typed command execution result."""

    argv: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out


class CommandRunner(Protocol):
    """Runtime command-execution interface."""

    def run(self, request: CommandRequest) -> CommandResult | None: ...


class SubprocessCommandRunner:
    """Default command-runner adapter backed by subprocess.

    Output is always captured as text. Returns ``None`` when the executable
    cannot be found.
    """

    def run(self, request: CommandRequest) -> CommandResult | None:
        run_kwargs: dict[str, object] = {
            "cwd": request.cwd,
            "env": request.env,
            "check": False,
            "capture_output": True,
            "text": True,
            "stdin": subprocess.DEVNULL,
        }
        if request.timeout_seconds is not None:
            run_kwargs["timeout"] = request.timeout_seconds
        try:
            completed = subprocess.run(list(request.argv), **run_kwargs)
        except FileNotFoundError:
            return None
        except subprocess.TimeoutExpired as exc:
            stdout = (exc.stdout or "") if isinstance(exc.stdout, str) else ""
            stderr = (exc.stderr or "") if isinstance(exc.stderr, str) else ""
            return CommandResult(
                argv=request.argv,
                returncode=124,
                stdout=stdout,
                stderr=stderr,
                timed_out=True,
            )

        stdout = completed.stdout if isinstance(completed.stdout, str) else ""
        stderr = completed.stderr if isinstance(completed.stderr, str) else ""
        return CommandResult(
            argv=request.argv,
            returncode=completed.returncode,
            stdout=stdout,
            stderr=stderr,
        )


_DEFAULT_COMMAND_RUNNER: CommandRunner = SubprocessCommandRunner()


def run_with_runner(
    request: CommandRequest, *, runner: CommandRunner | None = None
) -> CommandResult | None:
    """Execute a typed command request with the given runner."""
    active_runner = runner or _DEFAULT_COMMAND_RUNNER
    return active_runner.run(request)


def missing_command_detail(argv: tuple[str, ...] | list[str]) -> str:
    if not argv:
        return "missing required command"
    return f"missing required command: {argv[0]}"


def command_failure_detail(result: CommandResult) -> str:
    """Describe a failed command using its stderr (or stdout) text."""
    output = (result.stderr or result.stdout or "").strip()
    command_text = " ".join(result.argv)
    if output:
        return f"command failed: {command_text}\n{output}"
    return f"command failed: {command_text}"


def try_run_command(
    cmd: list[str],
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> CommandResult | None:
    """Run a command and return ``None`` if the executable is missing.

    Args:
        cmd: Command and arguments to execute.
        cwd: Optional working directory.
        env: Optional full environment for the child.

    Returns:
        ``CommandResult`` on execution, otherwise ``None``.

    Example:
        >>> try_run_command(["true"]).returncode
        0
    """
    return run_with_runner(CommandRequest(argv=tuple(cmd), cwd=cwd, env=env))
