"""Durable key/value store backed by a single JSON document.

The store keeps the whole document in memory. ``set`` only changes the
in-memory copy; ``save`` flushes it to disk atomically.

Example:
    >>> import tempfile
    >>> from pathlib import Path
    >>> with tempfile.TemporaryDirectory() as tmp:
    ...     store = JsonStore(Path(tmp) / "store.json")
    ...     store.set("repos", [])
    ...     store.save()
    ...     JsonStore(Path(tmp) / "store.json").get("repos")
    []
"""

from __future__ import annotations

import copy
import json
import os
import tempfile
import threading
from pathlib import Path

from . import paths
from .errors import IoFailedError

JsonValue = object


def load_json(path: Path) -> dict | None:
    """Load a JSON object from disk.

    Args:
        path: Path to the JSON file.

    Returns:
        Parsed payload, or ``None`` if the file does not exist.

    Raises:
        IoFailedError: The file cannot be read or is not a JSON object.
    """
    if not path.exists():
        return None
    try:
        with path.open("r", encoding="utf-8") as fh:
            payload = json.load(fh)
    except (OSError, json.JSONDecodeError) as exc:
        raise IoFailedError(f"failed to read {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise IoFailedError(f"failed to read {path}: expected a JSON object")
    return payload


def write_json(path: Path, payload: dict) -> None:
    """Write a JSON payload to disk via a temp file and ``os.replace``."""
    try:
        paths.ensure_dir(path.parent)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.name}.", suffix=".tmp", dir=path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, indent=2)
                fh.write("\n")
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as exc:
        raise IoFailedError(f"failed to write {path}: {exc}") from exc


class JsonStore:
    """A JSON document keyed by logical names."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.RLock()
        self._data: dict[str, JsonValue] = load_json(path) or {}

    @classmethod
    def default(cls) -> JsonStore:
        """Open the store at the user data directory."""
        return cls(paths.store_path())

    def get(self, key: str) -> JsonValue | None:
        with self._lock:
            if key not in self._data:
                return None
            return copy.deepcopy(self._data[key])

    def set(self, key: str, value: JsonValue) -> None:
        with self._lock:
            self._data[key] = copy.deepcopy(value)

    def delete(self, key: str) -> bool:
        with self._lock:
            if key not in self._data:
                return False
            del self._data[key]
            return True

    def save(self) -> None:
        """Flush the document to disk."""
        with self._lock:
            write_json(self.path, self._data)

    def put(self, key: str, value: JsonValue) -> None:
        """Set ``key`` and flush the document in one step.

        When the write fails the in-memory document keeps its previous value
        for ``key``, so a later ``save`` cannot flush the rejected change.

        Raises:
            IoFailedError: The document could not be written.
        """
        with self._lock:
            missing = key not in self._data
            previous = self._data.get(key)
            self._data[key] = copy.deepcopy(value)
            try:
                write_json(self.path, self._data)
            except IoFailedError:
                if missing:
                    del self._data[key]
                else:
                    self._data[key] = previous
                raise
