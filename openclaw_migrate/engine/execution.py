"""Dry-run / execution shim.

Every mutation a step wants is turned into an ``Action`` by the ``Executor``
and handed to one strategy: ``ApplyStrategy`` performs it, ``DescribeStrategy``
prints it and lays its effect over a ``ShadowView``. ``ExecutionContext`` is
the only place that picks between the two.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
import shlex
import shutil
import time
from typing import Any, Literal, Protocol, Sequence

from openclaw_migrate.domain.errors import CommandFailed
from openclaw_migrate.engine.file_view import FileView, RealView, ShadowView
from openclaw_migrate.infrastructure.commands import CommandResult, CommandRunner
from openclaw_migrate.infrastructure.fs_atomic import atomic_write_text
from openclaw_migrate.infrastructure.host import HostProbe
from openclaw_migrate.presentation.console import Console

ActionKind = Literal["write", "move", "copy", "mkdir", "remove", "symlink", "chmod", "command"]


@dataclass(frozen=True)
class Action:
    kind: ActionKind
    description: str
    path: Path | None = None
    dest: Path | None = None
    link_target: str | None = None
    text: str | None = None
    mode: int | None = None
    argv: tuple[str, ...] = ()
    input_text: str | None = None
    ok_returncodes: tuple[int, ...] = (0,)
    # what a command does to the tree or the account database, for dry runs
    effects: tuple[tuple[Any, ...], ...] = ()


class AccountView:
    """Account, service, and cron state as the current run sees it.

    Apply runs read straight through to the host. Dry runs additionally
    remember the effect of commands they only described.
    """

    def __init__(self, host: HostProbe):
        self._host = host
        self._renamed: dict[str, str] = {}
        self._gone: set[str] = set()
        self._renamed_groups: dict[str, str] = {}
        self._gone_groups: set[str] = set()
        self._homes: dict[str, Path] = {}
        self._crontabs: dict[str, str] = {}
        self._stopped: set[tuple[str, str]] = set()
        self._ended_sessions: set[str] = set()
        self._ended_processes: set[str] = set()

    def _real_name(self, name: str) -> str:
        return self._renamed.get(name, name)

    def record(self, effect: tuple[Any, ...]) -> None:
        kind = effect[0]
        if kind == "rename_user":
            old, new = effect[1], effect[2]
            self._renamed[new] = self._real_name(old)
            self._gone.add(old)
            self._gone.discard(new)
        elif kind == "rename_group":
            old, new = effect[1], effect[2]
            self._renamed_groups[new] = self._renamed_groups.get(old, old)
            self._gone_groups.add(old)
            self._gone_groups.discard(new)
        elif kind == "home":
            self._homes[effect[1]] = Path(effect[2])
        elif kind == "crontab":
            self._crontabs[effect[1]] = effect[2]
        elif kind == "service_stopped":
            self._stopped.add((effect[1], effect[2]))
        elif kind == "session_ended":
            self._ended_sessions.add(self._real_name(effect[1]))
        elif kind == "processes_ended":
            self._ended_processes.add(self._real_name(effect[1]))
        else:
            raise ValueError(f"unknown account effect: {kind}")

    def user_exists(self, name: str) -> bool:
        if name in self._gone:
            return False
        return self._host.user_exists(self._real_name(name))

    def group_exists(self, name: str) -> bool:
        if name in self._gone_groups:
            return False
        return self._host.group_exists(self._renamed_groups.get(name, name))

    def home_of(self, name: str) -> Path | None:
        if name in self._homes:
            return self._homes[name]
        if name in self._gone:
            return None
        return self._host.home_of(self._real_name(name))

    def service_active(self, unit: str, *, user: str | None = None) -> bool:
        if (unit, user or "") in self._stopped:
            return False
        real = self._real_name(user) if user is not None else None
        return self._host.service_active(unit, user=real)

    def has_session(self, user: str) -> bool:
        real = self._real_name(user)
        return real not in self._ended_sessions and self._host.has_session(real)

    def has_processes(self, user: str) -> bool:
        real = self._real_name(user)
        return real not in self._ended_processes and self._host.has_processes(real)

    def read_crontab(self, user: str) -> str | None:
        if user in self._crontabs:
            return self._crontabs[user]
        if user in self._gone:
            return None
        return self._host.read_crontab(self._real_name(user))


def _required(action: Action, name: str) -> Any:
    value = getattr(action, name)
    if value is None:
        raise ValueError(f"{action.kind} action without {name}: {action.description}")
    return value


class ExecutionStrategy(Protocol):
    def perform(self, action: Action) -> CommandResult | None:
        ...

    def pause(self, seconds: float) -> None:
        ...


class ApplyStrategy:
    def __init__(self, runner: CommandRunner, console: Console):
        self._runner = runner
        self._console = console

    def perform(self, action: Action) -> CommandResult | None:
        result: CommandResult | None = None
        kind = action.kind
        if kind == "command":
            result = self._runner.run(action.argv, input_text=action.input_text)
            if result.returncode not in action.ok_returncodes:
                raise CommandFailed(result.argv, result.returncode, result.stderr)
        else:
            path = _required(action, "path")
            if kind == "write":
                atomic_write_text(path, action.text or "", mode=action.mode)
            elif kind == "move":
                dest = _required(action, "dest")
                if os.path.isdir(dest) and not os.path.islink(dest):
                    raise FileExistsError(f"refusing to move into existing directory: {dest}")
                dest.parent.mkdir(parents=True, exist_ok=True)
                shutil.move(str(path), str(dest))
            elif kind == "copy":
                dest = _required(action, "dest")
                dest.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(str(path), str(dest), follow_symlinks=False)
            elif kind == "mkdir":
                path.mkdir(parents=True, exist_ok=True)
                if action.mode is not None:
                    os.chmod(path, action.mode)
            elif kind == "remove":
                if os.path.isdir(path) and not os.path.islink(path):
                    shutil.rmtree(path)
                else:
                    os.unlink(path)
            elif kind == "symlink":
                os.symlink(str(action.link_target), path)
            elif kind == "chmod":
                os.chmod(path, _required(action, "mode"))
            else:
                raise ValueError(f"unknown action kind: {kind}")
        self._console.ok(action.description)
        return result

    def pause(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


class DescribeStrategy:
    def __init__(self, view: ShadowView, accounts: AccountView, console: Console):
        self._view = view
        self._accounts = accounts
        self._console = console

    def perform(self, action: Action) -> CommandResult | None:
        self._console.dry_run(action.description)
        view = self._view
        kind = action.kind
        if kind == "command":
            for effect in action.effects:
                if effect[0] == "move":
                    view.record_move(Path(effect[1]), Path(effect[2]))
                else:
                    self._accounts.record(effect)
            return CommandResult(argv=action.argv, returncode=0)
        path = _required(action, "path")
        if kind == "write":
            mode = action.mode if action.mode is not None else view.mode(path)
            view.record_put(path, (action.text or "").encode("utf-8"), 0o644 if mode is None else mode)
        elif kind == "move":
            view.record_move(path, _required(action, "dest"))
        elif kind == "copy":
            dest = _required(action, "dest")
            if view.is_symlink(path):
                view.record_symlink(dest, view.readlink(path))
            else:
                mode = view.mode(path)
                view.record_put(dest, view.read_bytes(path), 0o644 if mode is None else mode)
        elif kind == "mkdir":
            view.record_mkdir(path, action.mode)
        elif kind == "remove":
            view.record_remove(path)
        elif kind == "symlink":
            view.record_symlink(path, str(action.link_target))
        elif kind == "chmod":
            view.record_chmod(path, _required(action, "mode"))
        else:
            raise ValueError(f"unknown action kind: {kind}")
        return None

    def pause(self, seconds: float) -> None:
        return None


class Executor:
    """Semantic mutation primitives. Descriptions never depend on the mode."""

    def __init__(self, strategy: ExecutionStrategy, journal: list[Action]):
        self._strategy = strategy
        self._journal = journal

    def _submit(self, action: Action) -> CommandResult | None:
        result = self._strategy.perform(action)
        self._journal.append(action)
        return result

    # filesystem

    def write_text(self, path: Path, text: str, *, mode: int | None = None, description: str | None = None) -> None:
        self._submit(Action("write", description or f"write {path}", path=path, text=text, mode=mode))

    def move(self, src: Path, dst: Path) -> None:
        self._submit(Action("move", f"move {src} -> {dst}", path=src, dest=dst))

    def copy_file(self, src: Path, dst: Path) -> None:
        self._submit(Action("copy", f"copy {src} -> {dst}", path=src, dest=dst))

    def mkdir(self, path: Path, mode: int | None = None) -> None:
        self._submit(Action("mkdir", f"create directory {path}", path=path, mode=mode))

    def remove(self, path: Path) -> None:
        self._submit(Action("remove", f"remove {path}", path=path))

    def remove_tree(self, path: Path) -> None:
        self._submit(Action("remove", f"remove tree {path}", path=path))

    def symlink(self, path: Path, target: Path | str) -> None:
        self._submit(Action("symlink", f"link {path} -> {target}", path=path, link_target=str(target)))

    def chmod(self, path: Path, mode: int) -> None:
        self._submit(Action("chmod", f"chmod {mode:04o} {path}", path=path, mode=mode))

    # commands

    def run(
        self,
        argv: Sequence[str],
        *,
        input_text: str | None = None,
        effects: tuple[tuple[Any, ...], ...] = (),
        ok_returncodes: tuple[int, ...] = (0,),
        description: str | None = None,
    ) -> CommandResult:
        args = tuple(str(a) for a in argv)
        action = Action(
            "command",
            description or f"run {shlex.join(args)}",
            argv=args,
            input_text=input_text,
            effects=effects,
            ok_returncodes=ok_returncodes,
        )
        result = self._submit(action)
        if result is None:
            raise ValueError(f"command action produced no result: {action.description}")
        return result

    def rename_account(self, old: str, new: str) -> None:
        self.run(["usermod", "-l", new, old], effects=(("rename_user", old, new),))

    def rename_group(self, old: str, new: str) -> None:
        self.run(["groupmod", "-n", new, old], effects=(("rename_group", old, new),))

    def relocate_home(self, user: str, old_home: Path, new_home: Path, *, move: bool) -> None:
        argv = ["usermod", "-d", str(new_home)]
        effects: tuple[tuple[Any, ...], ...] = (("home", user, new_home),)
        if move:
            argv.append("-m")
            effects += (("move", old_home, new_home),)
        argv.append(user)
        self.run(argv, effects=effects)

    def service(self, action: str, unit: str, *, user: str | None = None) -> None:
        argv = ["systemctl"]
        if user is not None:
            argv += ["--user", "-M", f"{user}@"]
        argv += [action, unit]
        effects: tuple[tuple[Any, ...], ...] = ()
        if action == "stop":
            effects = (("service_stopped", unit, user or ""),)
        self.run(argv, effects=effects)

    def reload_units(self) -> None:
        self.run(["systemctl", "daemon-reload"])

    def terminate_session(self, user: str) -> None:
        self.run(["loginctl", "terminate-user", user], effects=(("session_ended", user),))

    def signal_processes(self, user: str, signal: str) -> None:
        # pkill exits 1 when nothing matched, which is the state we want
        self.run(
            ["pkill", f"-{signal}", "-u", user],
            effects=(("processes_ended", user),),
            ok_returncodes=(0, 1),
        )

    def replace_crontab(self, user: str, text: str) -> None:
        self.run(["crontab", "-u", user, "-"], input_text=text, effects=(("crontab", user, text),))

    def validate_grant(self, path: Path) -> None:
        self.run(["visudo", "-cf", str(path)])

    def change_owner(self, user: str, path: Path) -> None:
        self.run(["chown", "-R", f"{user}:", str(path)])

    def pause(self, seconds: float) -> None:
        self._strategy.pause(seconds)


class ExecutionContext:
    """Wires views, strategy, and journal for one run."""

    def __init__(self, *, dry_run: bool, runner: CommandRunner, host: HostProbe, console: Console):
        self.dry_run = dry_run
        self.journal: list[Action] = []
        self.accounts = AccountView(host)
        self.view: FileView
        strategy: ExecutionStrategy
        if dry_run:
            shadow = ShadowView()
            self.view = shadow
            strategy = DescribeStrategy(shadow, self.accounts, console)
        else:
            self.view = RealView()
            strategy = ApplyStrategy(runner, console)
        self.executor = Executor(strategy, self.journal)

    def descriptions(self) -> list[str]:
        return [a.description for a in self.journal]
