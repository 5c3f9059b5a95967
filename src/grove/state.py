"""Process-wide shared state for the workspace lifecycle.

One :class:`AppState` is built at startup and handed to every component that
reads or mutates workspaces, repositories, or tracked processes. Every access
goes through ``lock``.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from .models import RepoEntry, RunningProcess, Workspace


@dataclass
class AppState:
    repos: list[RepoEntry] = field(default_factory=list)
    workspaces: list[Workspace] = field(default_factory=list)
    allocated_ports: set[int] = field(default_factory=set)
    running_processes: list[RunningProcess] = field(default_factory=list)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
