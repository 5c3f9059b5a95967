"""Console I/O helpers for user-facing messages and prompts."""

from __future__ import annotations

import sys
from typing import NoReturn

import questionary


def _use_questionary() -> bool:
    return sys.stdin.isatty() and sys.stdout.isatty()


def say(message: str) -> None:
    """Print a normal message to stdout."""
    print(message)


def warn(message: str) -> None:
    """Print a warning message to stderr."""
    print(f"warning: {message}", file=sys.stderr)


def die(message: str, code: int = 1) -> NoReturn:
    """Print an error message and exit.

    Args:
        message: Error message to display.
        code: Exit code to use.
    """
    print(f"error: {message}", file=sys.stderr)
    sys.exit(code)


def confirm(text: str, default: bool = False) -> bool:
    """Prompt for a yes/no confirmation.

    Args:
        text: Prompt label shown to the user.
        default: Default answer when the user presses enter.

    Returns:
        ``True`` when the user confirms.
    """
    if _use_questionary():
        response = questionary.confirm(text, default=default).ask()
        return bool(response)
    suffix = "[Y/n]" if default else "[y/N]"
    response = input(f"{text} {suffix}: ").strip().lower()
    if response == "":
        return default
    return response in {"y", "yes"}
