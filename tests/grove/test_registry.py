import json
import threading
from pathlib import Path
from unittest.mock import patch

import pytest

from grove import git, registry, worktrees
from grove.errors import (
    IoFailedError,
    NotFoundError,
    ProcessNotFoundError,
    ResourceExhaustedError,
    ValidationFailedError,
    VcsOperationFailedError,
)
from grove.models import ScriptDef
from grove.registry import WorkspaceRegistry
from grove.store import JsonStore


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    root = (tmp_path / "repo").resolve()
    root.mkdir()
    return root


@pytest.fixture
def git_calls(monkeypatch: pytest.MonkeyPatch) -> dict[str, list]:
    calls: dict[str, list] = {"create": [], "remove": [], "branch_delete": []}

    def fake_create(repo_root, name, branch=None, base_branch=None):
        calls["create"].append((repo_root, name, branch, base_branch))
        path = repo_root / ".worktrees" / name
        path.mkdir(parents=True)
        return path

    def fake_remove(repo_root, worktree_path):
        calls["remove"].append((repo_root, worktree_path))

    def fake_branch_delete(repo_root, branch, *, force=True):
        calls["branch_delete"].append((repo_root, branch))

    monkeypatch.setattr(worktrees, "validate_repo", lambda repo_root: None)
    monkeypatch.setattr(worktrees, "create_worktree", fake_create)
    monkeypatch.setattr(worktrees, "remove_worktree", fake_remove)
    monkeypatch.setattr(git, "git_branch_delete", fake_branch_delete)
    return calls


@pytest.fixture
def reg(state, store, fake_supervisor) -> WorkspaceRegistry:
    return WorkspaceRegistry(state, store, supervisor=fake_supervisor, probe=lambda port: True)


def test_create_workspace_provisions_first_range(
    reg: WorkspaceRegistry, repo: Path, git_calls, store: JsonStore
) -> None:
    ws = reg.create_workspace(repo, "feature-x")

    assert ws.port_base == 3000
    assert ws.is_main_worktree is False
    assert ws.status == "Active"
    assert ws.branch == "feature-x"
    assert Path(ws.worktree_path) == repo / ".worktrees" / "feature-x"
    assert ws.env_vars == {
        "WORKSPACE_PATH": ws.worktree_path,
        "ROOT_PATH": str(repo),
        "PORT": "3000",
        "WORKSPACE_NAME": "feature-x",
    }
    assert reg.state.allocated_ports == {3000}

    on_disk = json.loads(store.path.read_text(encoding="utf-8"))
    assert [item["id"] for item in on_disk["workspace_configs"]] == [ws.id]


def test_create_workspace_passes_branch_and_base(
    reg: WorkspaceRegistry, repo: Path, git_calls
) -> None:
    ws = reg.create_workspace(repo, "task", branch="feat/task", base_branch="origin/main")

    assert git_calls["create"] == [(repo, "task", "feat/task", "origin/main")]
    assert ws.branch == "feat/task"


def test_successive_workspaces_get_distinct_ranges(
    reg: WorkspaceRegistry, repo: Path, git_calls
) -> None:
    first = reg.create_workspace(repo, "a")
    second = reg.create_workspace(repo, "b")
    assert (first.port_base, second.port_base) == (3000, 3010)


def test_create_skips_bases_that_fail_probe(
    state, store, fake_supervisor, repo: Path, git_calls
) -> None:
    reg = WorkspaceRegistry(
        state, store, supervisor=fake_supervisor, probe=lambda port: port != 3000
    )
    assert reg.create_workspace(repo, "a").port_base == 3010


def test_blank_name_is_rejected(reg: WorkspaceRegistry, repo: Path, git_calls) -> None:
    with pytest.raises(ValidationFailedError):
        reg.create_workspace(repo, "   ")
    assert git_calls["create"] == []


def test_failed_provisioning_leaves_table_untouched(
    reg: WorkspaceRegistry, repo: Path, git_calls, monkeypatch: pytest.MonkeyPatch, store
) -> None:
    def boom(*args, **kwargs):
        raise VcsOperationFailedError("git worktree add failed: fatal: already exists")

    monkeypatch.setattr(worktrees, "create_worktree", boom)

    with pytest.raises(VcsOperationFailedError):
        reg.create_workspace(repo, "a")

    assert reg.list_workspaces() == []
    assert reg.state.allocated_ports == set()
    assert store.get(registry.WORKSPACES_KEY) is None


def test_exhausted_ports_raise(
    state, store, fake_supervisor, repo: Path, git_calls
) -> None:
    reg = WorkspaceRegistry(state, store, supervisor=fake_supervisor, probe=lambda port: False)
    with pytest.raises(ResourceExhaustedError):
        reg.create_workspace(repo, "a")
    assert git_calls["create"] == []


def test_delete_releases_port_for_reuse(
    reg: WorkspaceRegistry, repo: Path, git_calls
) -> None:
    first = reg.create_workspace(repo, "a")
    reg.create_workspace(repo, "b")

    reg.delete_workspace(first.id)

    assert git_calls["remove"] == [(repo, Path(first.worktree_path))]
    assert git_calls["branch_delete"] == [(repo, "a")]
    assert reg.state.allocated_ports == {3010}
    assert reg.create_workspace(repo, "c").port_base == 3000


def test_delete_tolerates_branch_delete_failure(
    reg: WorkspaceRegistry, repo: Path, git_calls, monkeypatch: pytest.MonkeyPatch
) -> None:
    ws = reg.create_workspace(repo, "a")

    def refuse(*args, **kwargs):
        raise VcsOperationFailedError("git branch -D failed: error: branch not found")

    monkeypatch.setattr(git, "git_branch_delete", refuse)

    reg.delete_workspace(ws.id)
    assert reg.list_workspaces() == []


def test_delete_unknown_workspace_raises(reg: WorkspaceRegistry) -> None:
    with pytest.raises(NotFoundError) as excinfo:
        reg.delete_workspace("missing")
    assert excinfo.value.code == "not_found"


def test_delete_main_workspace_keeps_checkout(
    reg: WorkspaceRegistry, repo: Path, git_calls, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(worktrees, "resolve_main_worktree", lambda root: (root, "main"))
    ws = reg.create_workspace_for_main(repo, "main")
    assert ws.is_main_worktree is True
    assert ws.worktree_path == str(repo)
    assert ws.branch == "main"

    reg.delete_workspace(ws.id)

    assert git_calls["remove"] == []
    assert git_calls["branch_delete"] == []
    assert repo.is_dir()
    assert reg.state.allocated_ports == set()


def test_delete_after_manual_directory_removal(
    state, store, fake_supervisor, repo: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(worktrees, "validate_repo", lambda repo_root: None)

    def fake_add(repo_root, path, branch, base_ref=None):
        path.mkdir(parents=True)

    def git_fails(*args, **kwargs):
        raise VcsOperationFailedError("git worktree remove failed: fatal: not a working tree")

    monkeypatch.setattr(git, "git_worktree_add", fake_add)
    monkeypatch.setattr(git, "git_worktree_remove", git_fails)
    monkeypatch.setattr(git, "git_worktree_prune", git_fails)
    monkeypatch.setattr(git, "git_branch_delete", git_fails)
    reg = WorkspaceRegistry(state, store, supervisor=fake_supervisor, probe=lambda port: True)
    ws = reg.create_workspace(repo, "gone")
    Path(ws.worktree_path).rmdir()

    reg.delete_workspace(ws.id)

    assert reg.list_workspaces() == []
    assert reg.state.allocated_ports == set()


def test_archive_and_restore_round_trip(
    reg: WorkspaceRegistry, repo: Path, git_calls, store: JsonStore
) -> None:
    ws = reg.create_workspace(repo, "a")

    assert reg.archive_workspace(ws.id).status == "Archived"
    assert store.get(registry.WORKSPACES_KEY)[0]["status"] == "Archived"
    restored = reg.restore_workspace(ws.id)

    assert restored.status == "Active"
    assert restored.port_base == ws.port_base
    assert restored.worktree_path == ws.worktree_path


def test_archive_unknown_workspace_raises(reg: WorkspaceRegistry) -> None:
    with pytest.raises(NotFoundError):
        reg.archive_workspace("missing")


def test_load_marks_stored_ports_allocated(
    reg: WorkspaceRegistry, repo: Path, git_calls, store: JsonStore, fake_supervisor
) -> None:
    from grove.state import AppState

    created = reg.create_workspace(repo, "a")
    fresh = WorkspaceRegistry(
        AppState(), JsonStore(store.path), supervisor=fake_supervisor, probe=lambda p: True
    )

    loaded = fresh.load()

    assert [ws.id for ws in loaded] == [created.id]
    assert fresh.state.allocated_ports == {3000}
    assert fresh.create_workspace(repo, "b").port_base == 3010


def test_returned_workspaces_are_snapshots(
    reg: WorkspaceRegistry, repo: Path, git_calls
) -> None:
    ws = reg.create_workspace(repo, "a")
    ws.env_vars["PORT"] = "1"
    listed = reg.list_workspaces()
    listed[0].status = "Archived"

    assert reg.get_workspace_env(ws.id)["PORT"] == "3000"
    assert reg.get_workspace(ws.id).status == "Active"


def test_get_workspace_env_unknown_raises(reg: WorkspaceRegistry) -> None:
    with pytest.raises(NotFoundError):
        reg.get_workspace_env("missing")


def test_run_script_tracks_process_with_layered_env(
    reg: WorkspaceRegistry, repo: Path, git_calls, fake_supervisor
) -> None:
    ws = reg.create_workspace(repo, "a")
    Path(ws.worktree_path, "grove.json").write_text(
        json.dumps({"env": {"NODE_ENV": "development", "PORT": "9999"}}),
        encoding="utf-8",
    )
    script = ScriptDef(name="dev", command="npm", args=["run", "dev"])

    process = reg.run_script(ws.id, script, {"DEBUG": "1"})

    assert process.id == f"{ws.id}-4000"
    assert process.pid == 4000
    assert process.status == "Running"
    assert process.script_name == "dev"
    _, cwd, env = fake_supervisor.spawned[0]
    assert cwd == Path(ws.worktree_path)
    assert env["NODE_ENV"] == "development"
    assert env["PORT"] == "3000"
    assert env["DEBUG"] == "1"


def test_extra_env_overrides_workspace_bundle(
    reg: WorkspaceRegistry, repo: Path, git_calls, fake_supervisor
) -> None:
    ws = reg.create_workspace(repo, "a")
    reg.run_script(ws.id, ScriptDef(name="dev", command="npm"), {"PORT": "8080"})
    assert fake_supervisor.spawned[0][2]["PORT"] == "8080"


def test_run_script_unknown_workspace_raises(reg: WorkspaceRegistry) -> None:
    with pytest.raises(NotFoundError):
        reg.run_script("missing", ScriptDef(name="dev", command="npm"))


def test_run_phase_spawns_each_declared_script(
    reg: WorkspaceRegistry, repo: Path, git_calls, fake_supervisor
) -> None:
    ws = reg.create_workspace(repo, "a")
    Path(ws.worktree_path, "grove.json").write_text(
        json.dumps(
            {
                "setup": [{"name": "install", "command": "npm", "args": ["install"]}],
                "run": [
                    {"name": "web", "command": "npm", "args": ["start"]},
                    {"name": "api", "command": "cargo", "args": ["run"]},
                ],
            }
        ),
        encoding="utf-8",
    )

    started = reg.run_phase(ws.id, "run")

    assert [p.script_name for p in started] == ["web", "api"]
    assert [s.name for s, _, _ in fake_supervisor.spawned] == ["web", "api"]


def test_run_phase_rejects_unknown_phase(
    reg: WorkspaceRegistry, repo: Path, git_calls
) -> None:
    ws = reg.create_workspace(repo, "a")
    with pytest.raises(ValidationFailedError):
        reg.run_phase(ws.id, "teardown")  # type: ignore[arg-type]


def test_list_running_processes_refreshes_liveness(
    reg: WorkspaceRegistry, repo: Path, git_calls, fake_supervisor
) -> None:
    a = reg.create_workspace(repo, "a")
    b = reg.create_workspace(repo, "b")
    first = reg.run_script(a.id, ScriptDef(name="web", command="npm"))
    reg.run_script(b.id, ScriptDef(name="api", command="npm"))
    fake_supervisor.alive.discard(first.pid)

    listed = reg.list_running_processes()
    only_a = reg.list_running_processes(a.id)

    assert [(p.script_name, p.status) for p in listed] == [
        ("web", "Exited"),
        ("api", "Running"),
    ]
    assert [p.id for p in only_a] == [first.id]


def test_cleanup_forgets_exited_processes(
    reg: WorkspaceRegistry, repo: Path, git_calls, fake_supervisor
) -> None:
    ws = reg.create_workspace(repo, "a")
    first = reg.run_script(ws.id, ScriptDef(name="web", command="npm"))
    second = reg.run_script(ws.id, ScriptDef(name="api", command="npm"))
    fake_supervisor.alive.discard(first.pid)
    reg.list_running_processes()

    assert reg.cleanup_processes() == 1
    assert [p.id for p in reg.list_running_processes()] == [second.id]


def test_stop_process_signals_running_entry(
    reg: WorkspaceRegistry, repo: Path, git_calls, fake_supervisor
) -> None:
    ws = reg.create_workspace(repo, "a")
    process = reg.run_script(ws.id, ScriptDef(name="web", command="npm"))

    reg.stop_process(process.id)

    assert fake_supervisor.stopped == [process.pid]
    assert reg.list_running_processes()[0].status == "Exited"


def test_stop_process_does_not_resignal_exited_entry(
    reg: WorkspaceRegistry, repo: Path, git_calls, fake_supervisor
) -> None:
    ws = reg.create_workspace(repo, "a")
    process = reg.run_script(ws.id, ScriptDef(name="web", command="npm"))
    fake_supervisor.alive.discard(process.pid)
    reg.list_running_processes()

    reg.stop_process(process.id)

    assert fake_supervisor.stopped == []


def test_stop_unknown_process_leaves_table_unchanged(
    reg: WorkspaceRegistry, repo: Path, git_calls
) -> None:
    ws = reg.create_workspace(repo, "a")
    reg.run_script(ws.id, ScriptDef(name="web", command="npm"))
    before = reg.list_running_processes()

    with pytest.raises(ProcessNotFoundError) as excinfo:
        reg.stop_process("nope")

    assert excinfo.value.code == "process_not_found"
    assert reg.list_running_processes() == before


def test_notes_round_trip(
    reg: WorkspaceRegistry, repo: Path, git_calls, store: JsonStore
) -> None:
    ws = reg.create_workspace(repo, "a")
    assert reg.load_workspace_notes(ws.id) == ""
    reg.save_workspace_notes(ws.id, "remember the migration")
    assert JsonStore(store.path).get(f"workspace_notes_{ws.id}") == "remember the migration"
    assert reg.load_workspace_notes(ws.id) == "remember the migration"


def test_notes_for_unknown_workspace_raise(reg: WorkspaceRegistry, store: JsonStore) -> None:
    with pytest.raises(NotFoundError):
        reg.save_workspace_notes("missing", "text")
    assert store.get("workspace_notes_missing") is None


def test_concurrent_creations_get_distinct_ports(
    reg: WorkspaceRegistry, repo: Path, git_calls
) -> None:
    results: list[int] = []
    errors: list[BaseException] = []

    def create(index: int) -> None:
        try:
            results.append(reg.create_workspace(repo, f"ws-{index}").port_base)
        except BaseException as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=create, args=(i,)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert sorted(results) == [3000 + 10 * i for i in range(8)]


def test_failed_store_write_rolls_back_creation(
    reg: WorkspaceRegistry, repo: Path, git_calls, store: JsonStore
) -> None:
    with patch("grove.store.os.replace", side_effect=OSError("disk full")):
        with pytest.raises(IoFailedError, match="disk full"):
            reg.create_workspace(repo, "feature-x")

    worktree = repo / ".worktrees" / "feature-x"
    assert git_calls["remove"] == [(repo, worktree)]
    assert reg.list_workspaces() == []
    assert reg.state.allocated_ports == set()
    assert store.get(registry.WORKSPACES_KEY) is None
    assert reg.create_workspace(repo, "other").port_base == 3000


def test_failed_store_write_keeps_status(
    reg: WorkspaceRegistry, repo: Path, git_calls, store: JsonStore
) -> None:
    ws = reg.create_workspace(repo, "a")

    with patch("grove.store.os.replace", side_effect=OSError("read-only")):
        with pytest.raises(IoFailedError):
            reg.archive_workspace(ws.id)

    assert reg.get_workspace(ws.id).status == "Active"
    assert store.get(registry.WORKSPACES_KEY)[0]["status"] == "Active"


def test_failed_store_write_keeps_deleted_entry(
    reg: WorkspaceRegistry, repo: Path, git_calls
) -> None:
    ws = reg.create_workspace(repo, "a")

    with patch("grove.store.os.replace", side_effect=OSError("read-only")):
        with pytest.raises(IoFailedError):
            reg.delete_workspace(ws.id)

    assert [w.id for w in reg.list_workspaces()] == [ws.id]
    assert reg.state.allocated_ports == {3000}
    reg.delete_workspace(ws.id)
    assert reg.list_workspaces() == []
