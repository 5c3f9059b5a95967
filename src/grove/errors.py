"""Failure contracts for workspace lifecycle operations.

Operations return typed values on success and raise ``GroveError`` on
expected failures: unknown ids, invalid paths, port exhaustion, failed git
calls, unknown processes, and I/O errors. Programmer bugs raise normal
exceptions. Callers catch ``GroveError`` and present ``str(error)`` to the
user (the CLI dies, a desktop shell shows a dialog).
"""

from __future__ import annotations

from typing import Literal

GroveErrorCode = Literal[
    "not_found",
    "validation_failed",
    "resource_exhausted",
    "vcs_operation_failed",
    "process_not_found",
    "io_failed",
]


class GroveError(Exception):
    """Expected failure with a stable code and a human-readable message.

    Use ``raise GroveError(...) from exc`` to chain a causing exception; it is
    available as ``__cause__``.
    """

    def __init__(
        self,
        code: GroveErrorCode,
        message: str,
        *,
        recovery_hint: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.recovery_hint = recovery_hint


class NotFoundError(GroveError):
    """Unknown workspace or repository."""

    def __init__(self, message: str, *, recovery_hint: str | None = None) -> None:
        super().__init__("not_found", message, recovery_hint=recovery_hint)


class ValidationFailedError(GroveError):
    """Invalid input: missing path, not a repository, malformed config."""

    def __init__(self, message: str, *, recovery_hint: str | None = None) -> None:
        super().__init__("validation_failed", message, recovery_hint=recovery_hint)


class ResourceExhaustedError(GroveError):
    """No free port range is left."""

    def __init__(self, message: str, *, recovery_hint: str | None = None) -> None:
        super().__init__("resource_exhausted", message, recovery_hint=recovery_hint)


class VcsOperationFailedError(GroveError):
    """A git invocation failed; the message carries git's diagnostic text."""

    def __init__(self, message: str, *, recovery_hint: str | None = None) -> None:
        super().__init__("vcs_operation_failed", message, recovery_hint=recovery_hint)


class ProcessNotFoundError(GroveError):
    """Stop requested for a process the registry does not track."""

    def __init__(self, message: str, *, recovery_hint: str | None = None) -> None:
        super().__init__("process_not_found", message, recovery_hint=recovery_hint)


class IoFailedError(GroveError):
    """Filesystem or durable-store I/O failed."""

    def __init__(self, message: str, *, recovery_hint: str | None = None) -> None:
        super().__init__("io_failed", message, recovery_hint=recovery_hint)
