from __future__ import annotations

import os
from pathlib import Path

import pytest

from openclaw_migrate.domain.errors import CommandFailed
from openclaw_migrate.engine.execution import AccountView, Action, ApplyStrategy, DescribeStrategy, ExecutionContext
from openclaw_migrate.engine.file_view import ShadowView
from openclaw_migrate.presentation.console import Console

from .util import FakeHost, FakeSystem


def _exercise(ctx: ExecutionContext, root: Path) -> None:
    ex = ctx.executor
    ex.mkdir(root / "a")
    ex.write_text(root / "a" / "f.txt", "hello\n", mode=0o600)
    ex.copy_file(root / "a" / "f.txt", root / "b" / "g.txt")
    ex.move(root / "a", root / "c")
    ex.symlink(root / "a", "c")
    ex.chmod(root / "c" / "f.txt", 0o640)
    ex.remove(root / "b" / "g.txt")


@pytest.mark.migration
def test_describe_mode_changes_nothing_but_sees_its_own_plan(tmp_path: Path, system: FakeSystem, capsys):
    ctx = ExecutionContext(dry_run=True, runner=system, host=FakeHost(system), console=Console())
    _exercise(ctx, tmp_path)

    assert list(tmp_path.iterdir()) == []
    view = ctx.view
    assert view.read_text(tmp_path / "a" / "f.txt") == "hello\n"
    assert view.mode(tmp_path / "c" / "f.txt") == 0o640
    assert not view.lexists(tmp_path / "b" / "g.txt")
    out = capsys.readouterr().out
    assert "[DRY-RUN] Would move" in out


@pytest.mark.migration
def test_apply_and_describe_produce_the_same_journal(tmp_path: Path, system: FakeSystem):
    dry = ExecutionContext(dry_run=True, runner=system, host=FakeHost(system), console=Console())
    _exercise(dry, tmp_path)
    live = ExecutionContext(dry_run=False, runner=system, host=FakeHost(system), console=Console())
    _exercise(live, tmp_path)

    assert dry.descriptions() == live.descriptions()
    assert (tmp_path / "a").is_symlink()
    assert (tmp_path / "a" / "f.txt").read_text(encoding="utf-8") == "hello\n"
    assert os.stat(tmp_path / "c" / "f.txt").st_mode & 0o777 == 0o640
    assert not (tmp_path / "b" / "g.txt").exists()


@pytest.mark.migration
def test_failed_command_raises_and_is_not_journaled(tmp_path: Path, system: FakeSystem):
    system.fail("chown", stderr="chown: invalid user")
    ctx = ExecutionContext(dry_run=False, runner=system, host=FakeHost(system), console=Console())
    with pytest.raises(CommandFailed) as exc:
        ctx.executor.change_owner("agent1", tmp_path)
    assert "invalid user" in str(exc.value)
    assert ctx.journal == []


@pytest.mark.migration
def test_describe_mode_never_runs_mutating_commands(tmp_path: Path, system: FakeSystem):
    system.add_user("moltbot", tmp_path / "moltbot")
    (tmp_path / "moltbot").mkdir()
    ctx = ExecutionContext(dry_run=True, runner=system, host=FakeHost(system), console=Console())
    ctx.executor.rename_account("moltbot", "agent1")
    ctx.executor.relocate_home("agent1", tmp_path / "moltbot", tmp_path / "agent1", move=True)
    ctx.executor.replace_crontab("agent1", "* * * * * true\n")

    assert system.mutating_calls() == []
    assert "moltbot" in system.users
    accounts = ctx.accounts
    assert not accounts.user_exists("moltbot")
    assert accounts.user_exists("agent1")
    assert accounts.home_of("agent1") == tmp_path / "agent1"
    assert accounts.read_crontab("agent1") == "* * * * * true\n"
    assert ctx.view.is_dir(tmp_path / "agent1")
    assert not ctx.view.lexists(tmp_path / "moltbot")


@pytest.mark.migration
def test_signal_processes_tolerates_nothing_matched(tmp_path: Path, system: FakeSystem):
    ctx = ExecutionContext(dry_run=False, runner=system, host=FakeHost(system), console=Console())
    ctx.executor.signal_processes("nobody", "TERM")
    assert system.calls[-1] == ("pkill", "-TERM", "-u", "nobody")


@pytest.mark.migration
@pytest.mark.parametrize("dry_run", [False, True])
@pytest.mark.parametrize(
    "action, missing",
    [
        (Action("move", "move nowhere", path=Path("x")), "dest"),
        (Action("copy", "copy nowhere", path=Path("x")), "dest"),
        (Action("chmod", "chmod x", path=Path("x")), "mode"),
        (Action("remove", "remove nothing"), "path"),
    ],
)
def test_incomplete_actions_are_rejected(system: FakeSystem, dry_run, action, missing):
    if dry_run:
        strategy = DescribeStrategy(ShadowView(), AccountView(FakeHost(system)), Console())
    else:
        strategy = ApplyStrategy(system, Console())
    with pytest.raises(ValueError, match=f"without {missing}"):
        strategy.perform(action)
