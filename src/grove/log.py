"""Leveled terminal logging for Grove.

Lifecycle messages can be scoped to a workspace; the workspace name is then
printed as a bold ``[name]`` prefix so output from several workspaces stays
readable when commands run back to back.
"""

from __future__ import annotations

import os
import sys
from enum import IntEnum

from rich.console import Console
from rich.text import Text


class LogLevel(IntEnum):
    DEBUG = 20
    INFO = 30
    SUCCESS = 35
    WARNING = 40
    ERROR = 50


LEVEL_BY_NAME = {level.name.lower(): level for level in LogLevel}
LEVEL_BY_NAME["warn"] = LogLevel.WARNING

_STYLES = {
    LogLevel.DEBUG: "cyan",
    LogLevel.INFO: "",
    LogLevel.SUCCESS: "green",
    LogLevel.WARNING: "yellow",
    LogLevel.ERROR: "bold red",
}
_DEFAULT_LEVEL = LogLevel.INFO
_configured_level: LogLevel | None = None
_no_color_override: bool | None = None


def parse_level(value: str | None) -> LogLevel:
    """Map a level name to a :class:`LogLevel`, defaulting to ``INFO``.

    Example:
        >>> parse_level("WARN").name
        'WARNING'
        >>> parse_level("chatty").name
        'INFO'
    """
    normalized = (value or "").strip().lower()
    return LEVEL_BY_NAME.get(normalized, _DEFAULT_LEVEL)


def configured_level() -> LogLevel:
    global _configured_level
    if _configured_level is None:
        _configured_level = parse_level(os.environ.get("GROVE_LOG_LEVEL"))
    return _configured_level


def set_level(value: str | None) -> None:
    """Set the active log level (``--log-level`` on the command line)."""
    global _configured_level
    _configured_level = parse_level(value)


def set_no_color(value: bool) -> None:
    """Force colour off, or hand the decision back to the environment."""
    global _no_color_override
    _no_color_override = True if value else None


def is_enabled(level: LogLevel) -> bool:
    return level >= configured_level()


def _no_color() -> bool:
    if _no_color_override is not None:
        return _no_color_override
    return bool(os.environ.get("NO_COLOR") or os.environ.get("GROVE_NO_COLOR"))


def _render(level: LogLevel, message: str, workspace: str | None) -> Text:
    text = Text()
    if workspace:
        text.append(f"[{workspace}] ", style="bold")
    text.append(message, style=_STYLES[level])
    return text


def emit(level: LogLevel, message: str, *, workspace: str | None = None) -> None:
    """Print ``message`` if ``level`` is enabled.

    Warnings and errors go to stderr, everything else to stdout.
    """
    if not is_enabled(level):
        return
    stream = sys.stderr if level >= LogLevel.WARNING else sys.stdout
    console = Console(file=stream, soft_wrap=True, highlight=False, no_color=_no_color())
    console.print(_render(level, message, workspace))


def debug(message: str, *, workspace: str | None = None) -> None:
    emit(LogLevel.DEBUG, message, workspace=workspace)


def info(message: str, *, workspace: str | None = None) -> None:
    emit(LogLevel.INFO, message, workspace=workspace)


def success(message: str, *, workspace: str | None = None) -> None:
    emit(LogLevel.SUCCESS, message, workspace=workspace)


def warning(message: str, *, workspace: str | None = None) -> None:
    emit(LogLevel.WARNING, message, workspace=workspace)


def error(message: str, *, workspace: str | None = None) -> None:
    emit(LogLevel.ERROR, message, workspace=workspace)
