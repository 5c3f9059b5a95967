"""Startup wiring: one shared state, one store, and the components using them."""

from __future__ import annotations

from dataclasses import dataclass

from .processes import ProcessSupervisor
from .registry import WorkspaceRegistry
from .repos import RepoCatalog
from .state import AppState
from .store import JsonStore


@dataclass
class Runtime:
    state: AppState
    store: JsonStore
    registry: WorkspaceRegistry
    repos: RepoCatalog


def bootstrap(
    store: JsonStore | None = None,
    *,
    supervisor: ProcessSupervisor | None = None,
) -> Runtime:
    """Build the shared state and load persisted repos and workspaces."""
    active_store = store or JsonStore.default()
    state = AppState()
    registry = WorkspaceRegistry(state, active_store, supervisor=supervisor)
    repos = RepoCatalog(state, active_store)
    repos.load()
    registry.load()
    return Runtime(state=state, store=active_store, registry=registry, repos=repos)
