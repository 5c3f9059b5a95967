"""Catalog of repositories the user has registered."""

from __future__ import annotations

from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from . import worktrees
from .errors import IoFailedError, ValidationFailedError
from .models import RepoEntry
from .state import AppState
from .store import JsonStore

REPOS_KEY = "repos"

_REPO_LIST = TypeAdapter(list[RepoEntry])


class RepoCatalog:
    """Adds, removes, and lists repositories under the shared state lock."""

    def __init__(self, state: AppState, store: JsonStore) -> None:
        self.state = state
        self.store = store

    def load(self) -> list[RepoEntry]:
        raw = self.store.get(REPOS_KEY)
        if raw is None:
            return []
        try:
            loaded = _REPO_LIST.validate_python(raw)
        except ValidationError as exc:
            raise IoFailedError(f"stored repository list is invalid: {exc}") from exc
        with self.state.lock:
            self.state.repos = loaded
            return list(loaded)

    def _commit(self, repos: list[RepoEntry]) -> None:
        # Caller holds the lock.
        self.store.put(REPOS_KEY, [repo.model_dump(mode="json") for repo in repos])
        self.state.repos = repos

    def add_repo(self, path: str | Path) -> RepoEntry:
        """Register a repository.

        Raises:
            ValidationFailedError: The path is missing, is not a repository
                root, or is already registered.
        """
        repo_path = Path(str(path)).expanduser()
        worktrees.validate_repo(repo_path)
        repo_text = str(repo_path.resolve())
        entry = RepoEntry(path=repo_text, name=Path(repo_text).name or repo_text)
        with self.state.lock:
            if any(repo.path == repo_text for repo in self.state.repos):
                raise ValidationFailedError(f"repository already added: {repo_text}")
            self._commit([*self.state.repos, entry])
        return entry

    def remove_repo(self, path: str | Path) -> bool:
        """Forget a repository; return whether it was registered."""
        repo_text = str(Path(str(path)).expanduser().resolve())
        with self.state.lock:
            kept = [repo for repo in self.state.repos if repo.path != repo_text]
            removed = len(kept) != len(self.state.repos)
            self._commit(kept)
        return removed

    def list_repos(self) -> list[RepoEntry]:
        with self.state.lock:
            return list(self.state.repos)
