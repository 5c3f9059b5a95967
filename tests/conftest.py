# ruff: noqa: E402

import builtins
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

import grove.io as io
import grove.log as grove_log
from grove.models import ScriptDef
from grove.state import AppState
from grove.store import JsonStore


class FakeSupervisor:
    """In-memory stand-in for ``ProcessSupervisor``."""

    def __init__(self, first_pid: int = 4000) -> None:
        self.next_pid = first_pid
        self.alive: set[int] = set()
        self.spawned: list[tuple[ScriptDef, Path, dict[str, str]]] = []
        self.stopped: list[int] = []

    def spawn(self, script: ScriptDef, worktree_path: Path, env_overrides=None) -> int:
        pid = self.next_pid
        self.next_pid += 1
        self.alive.add(pid)
        self.spawned.append((script, worktree_path, dict(env_overrides or {})))
        return pid

    def stop(self, pid: int) -> None:
        self.stopped.append(pid)
        self.alive.discard(pid)

    def is_alive(self, pid: int) -> bool:
        return pid in self.alive


@pytest.fixture(autouse=True)
def _isolated_environment(
    monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory
) -> None:
    monkeypatch.setenv("GROVE_DATA_DIR", str(tmp_path_factory.mktemp("grove-data")))
    monkeypatch.delenv("GROVE_LOG_LEVEL", raising=False)
    monkeypatch.delenv("GROVE_GIT", raising=False)
    monkeypatch.setattr(grove_log, "_configured_level", None)
    monkeypatch.setattr(grove_log, "_no_color_override", None)
    monkeypatch.setattr(io, "_use_questionary", lambda: False)

    def fail_input(prompt: str = "") -> str:
        raise AssertionError("prompted unexpectedly")

    monkeypatch.setattr(builtins, "input", fail_input)


@pytest.fixture
def fake_supervisor() -> FakeSupervisor:
    return FakeSupervisor()


@pytest.fixture
def store(tmp_path: Path) -> JsonStore:
    return JsonStore(tmp_path / "data" / "grove-store.json")


@pytest.fixture
def state() -> AppState:
    return AppState()
