from __future__ import annotations

import errno
import json
import os
from pathlib import Path
import shutil
import subprocess
import sys
from typing import Sequence

import yaml

from openclaw_migrate.infrastructure.commands import CommandResult
from openclaw_migrate.infrastructure.host import LocalHost
from openclaw_migrate.infrastructure.policy_loader import MigrationSettings, default_policy_path, load_settings

REPO_ROOT = Path(__file__).resolve().parents[1]


def run(cmd: list[str], *, env: dict[str, str] | None = None, cwd: Path | None = None) -> subprocess.CompletedProcess:
    e = os.environ.copy()
    if env:
        e.update(env)
    return subprocess.run(
        cmd,
        cwd=str(cwd or REPO_ROOT),
        env=e,
        text=True,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        check=False,
    )


def run_migrate(args: list[str], *, env: dict[str, str] | None = None) -> subprocess.CompletedProcess:
    # Always use the current interpreter.
    return run([sys.executable, "-X", "utf8", "migrate.py", *args], env=env)


def read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def write_policy(tmp_path: Path, **overrides) -> Path:
    """Copy of the shipped policy with every system path moved under ``tmp_path``."""

    data = yaml.safe_load(default_policy_path().read_text(encoding="utf-8"))
    data["paths"] = {
        "home_root": str(tmp_path / "home"),
        "grant_dir": str(tmp_path / "sudoers.d"),
        "system_unit_dir": str(tmp_path / "systemd"),
        "log_dir": str(tmp_path / "log"),
    }
    data["services"]["stop_grace_seconds"] = 0
    for dotted, value in overrides.items():
        section, key = dotted.split("__", 1)
        data[section][key] = value
    for key in ("home_root", "grant_dir", "system_unit_dir"):
        Path(data["paths"][key]).mkdir(parents=True, exist_ok=True)
    target = tmp_path / "policy.yaml"
    target.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    return target


def make_settings(tmp_path: Path, **overrides) -> MigrationSettings:
    return load_settings(write_policy(tmp_path, **overrides))


class FakeSystem:
    """CommandRunner over an in-memory account database, systemd, and cron.

    Home directory moves (``usermod -d -m``) happen on the real tmp tree so
    the file side of a migration is exercised for real.
    """

    def __init__(self) -> None:
        self.users: dict[str, Path] = {}
        self.groups: set[str] = set()
        self.active_units: set[tuple[str, str | None]] = set()
        self.sessions: set[str] = set()
        self.processes: set[str] = set()
        self.stubborn: set[str] = set()
        self.crontabs: dict[str, str] = {}
        self.open_files = 0
        self.failures: dict[str, tuple[int, str]] = {}
        self.calls: list[tuple[str, ...]] = []

    def add_user(self, name: str, home: Path, *, group: bool = True) -> None:
        self.users[name] = home
        if group:
            self.groups.add(name)

    def fail(self, command: str, returncode: int = 1, stderr: str = "simulated failure") -> None:
        """Make every call whose argv starts with ``command`` fail."""

        self.failures[command] = (returncode, stderr)

    def mutating_calls(self) -> list[tuple[str, ...]]:
        readers = {"getent", "pgrep", "lsof"}
        out = []
        for argv in self.calls:
            if argv[0] in readers:
                continue
            if argv[0] == "systemctl" and "is-active" in argv:
                continue
            if argv[0] == "loginctl" and argv[1] == "show-user":
                continue
            if argv[0] == "crontab" and argv[-1] == "-l":
                continue
            out.append(argv)
        return out

    def _rename(self, old: str, new: str) -> None:
        self.users[new] = self.users.pop(old)
        for bucket in (self.sessions, self.processes, self.stubborn):
            if old in bucket:
                bucket.discard(old)
                bucket.add(new)
        if old in self.crontabs:
            self.crontabs[new] = self.crontabs.pop(old)
        self.active_units = {(u, new if who == old else who) for u, who in self.active_units}

    def run(self, argv: Sequence[str], *, input_text: str | None = None) -> CommandResult:
        args = tuple(str(a) for a in argv)
        self.calls.append(args)
        for prefix, (code, stderr) in self.failures.items():
            if " ".join(args).startswith(prefix):
                return CommandResult(args, code, "", stderr)

        def ok(stdout: str = "") -> CommandResult:
            return CommandResult(args, 0, stdout, "")

        def err(code: int, stderr: str = "") -> CommandResult:
            return CommandResult(args, code, "", stderr)

        cmd = args[0]
        if cmd == "getent":
            db, name = args[1], args[2]
            if db == "passwd" and name in self.users:
                return ok(f"{name}:x:1000:1000::{self.users[name]}:/bin/bash\n")
            if db == "group" and name in self.groups:
                return ok(f"{name}:x:1000:\n")
            return err(2)
        if cmd == "usermod":
            if args[1] == "-l":
                new, old = args[2], args[3]
                if old not in self.users or new in self.users:
                    return err(6, f"usermod: user '{old}' does not exist or '{new}' is taken")
                self._rename(old, new)
                return ok()
            if args[1] == "-d":
                new_home = Path(args[2])
                user = args[-1]
                if user not in self.users:
                    return err(6, f"usermod: user '{user}' does not exist")
                if "-m" in args:
                    current = self.users[user]
                    if new_home.exists():
                        return err(12, f"usermod: directory {new_home} exists")
                    if current.exists():
                        shutil.move(str(current), str(new_home))
                self.users[user] = new_home
                return ok()
        if cmd == "groupmod" and args[1] == "-n":
            new, old = args[2], args[3]
            if old not in self.groups:
                return err(6, f"groupmod: group '{old}' does not exist")
            self.groups.discard(old)
            self.groups.add(new)
            return ok()
        if cmd == "systemctl":
            user = None
            rest = list(args[1:])
            if rest[:1] == ["--user"]:
                user = rest[2].rstrip("@")
                rest = rest[3:]
            if rest[0] == "is-active":
                return ok() if (rest[-1], user) in self.active_units else err(3)
            if rest[0] == "stop":
                self.active_units.discard((rest[1], user))
                return ok()
            if rest[0] in ("disable", "daemon-reload"):
                return ok()
        if cmd == "loginctl":
            if args[1] == "show-user":
                return ok() if args[2] in self.sessions else err(1)
            if args[1] == "terminate-user":
                self.sessions.discard(args[2])
                return ok()
        if cmd == "pgrep":
            return ok("1234\n") if args[-1] in self.processes else err(1)
        if cmd == "pkill":
            user = args[-1]
            if user not in self.processes:
                return err(1)
            if args[1] == "-KILL" or user not in self.stubborn:
                self.processes.discard(user)
            return ok()
        if cmd == "crontab":
            user = args[2]
            if args[-1] == "-l":
                if user in self.crontabs:
                    return ok(self.crontabs[user])
                return err(1, f"no crontab for {user}")
            if args[-1] == "-":
                self.crontabs[user] = input_text or ""
                return ok()
        if cmd == "visudo":
            content = Path(args[-1]).read_text(encoding="utf-8")
            if "INVALID" in content:
                return err(1, f"{args[-1]}: syntax error near line 1")
            return ok(f"{args[-1]}: parsed OK\n")
        if cmd == "chown":
            return ok()
        if cmd == "lsof":
            if self.open_files:
                lines = ["COMMAND PID USER FD TYPE DEVICE SIZE/OFF NODE NAME"]
                lines += [f"node 42 x {i}r REG 8,1 0 1 file{i}" for i in range(self.open_files)]
                return ok("\n".join(lines) + "\n")
            return err(1)
        return err(127, f"{cmd}: command not found")


class FakeHost(LocalHost):
    """LocalHost with fixed disk numbers and hostname."""

    def __init__(self, system: FakeSystem, *, free: int = 10**12, used: int | None = None, hostname: str = "agent1"):
        super().__init__(system)
        self._free = free
        self._used = used
        self._hostname = hostname

    def free_bytes(self, path: Path) -> int:
        return self._free

    def tree_bytes(self, path: Path) -> int:
        if self._used is None:
            return super().tree_bytes(path)
        return self._used

    def hostname(self) -> str:
        return self._hostname


class ScriptedPrompter:
    """Interactive prompter answering from a table keyed by question fragments."""

    interactive = True

    def __init__(self, confirms: dict[str, bool] | None = None, answers: dict[str, str] | None = None):
        self._confirms = confirms or {}
        self._answers = answers or {}
        self.asked: list[str] = []

    def confirm(self, question: str, default: bool) -> bool:
        self.asked.append(question)
        for fragment, value in self._confirms.items():
            if fragment in question:
                return value
        return default

    def ask(self, question: str, default: str) -> str:
        self.asked.append(question)
        for fragment, value in self._answers.items():
            if fragment in question:
                return value
        return default


def _write(path: Path, text: str, mode: int = 0o644) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    os.chmod(path, mode)
    return path


def build_legacy_installation(
    home_root: Path,
    user: str = "moltbot",
    *,
    system: FakeSystem | None = None,
    grant_dir: Path | None = None,
    unit_dir: Path | None = None,
) -> Path:
    """A moltbot-era install: legacy config dir, custom workspace, user unit, crontab."""

    home = home_root / user
    legacy = home / ".moltbot"
    config = {
        "workspace": str(home / "workspace"),
        "agents": {"defaults": {"dir": str(home / ".moltbot" / "agents")}},
        "logs": str(home / ".moltbot" / "logs"),
    }
    _write(legacy / "moltbot.json", json.dumps(config, indent=2) + "\n")
    _write(legacy / ".env", f"OPENCLAW_HOME={home}/.moltbot\n")
    _write(legacy / "agents" / "main" / "agent" / "auth.json", json.dumps({"store": f"{home}/.moltbot/credentials"}) + "\n")
    _write(legacy / "cron" / "jobs.json", json.dumps({"jobs": [{"cwd": f"{home}/workspace"}]}) + "\n")
    _write(legacy / "credentials" / "token.json", '{"token": "x"}\n')
    os.chmod(legacy / "credentials", 0o755)

    ws = home / "workspace"
    _write(ws / "AGENTS.md", "# Agents\n")
    _write(ws / "SOUL.md", f"Read {home}/workspace/MEMORY.md first.\n")
    _write(ws / "memory" / "2026-01-01.md", f"Logs live in {home}/.moltbot/logs\n")

    _write(home / ".bashrc", f"export PATH={home}/.local/bin:$PATH\n")
    _write(
        home / ".config" / "systemd" / "user" / "openclaw-gateway.service",
        f"[Service]\nExecStart={home}/.local/bin/openclaw gateway\nWorkingDirectory={home}/workspace\n",
    )
    _write(home / ".ssh" / "authorized_keys", "ssh-ed25519 AAAA test\n", 0o600)

    if grant_dir is not None:
        _write(grant_dir / user, f"{user} ALL=(ALL) NOPASSWD: ALL\n", 0o440)
    if unit_dir is not None:
        _write(unit_dir / "moltbot.service", f"[Service]\nUser={user}\n")
    if system is not None:
        system.add_user(user, home)
        system.active_units.add(("openclaw-gateway.service", user))
        system.sessions.add(user)
        system.processes.add(user)
        system.crontabs[user] = f"# m h dom mon dow command\n0 * * * * {home}/.local/bin/openclaw cron run\n"
    return home


def build_canonical_installation(home_root: Path, user: str, *, system: FakeSystem | None = None) -> Path:
    home = home_root / user
    _write(home / ".openclaw" / "openclaw.json", json.dumps({"workspace": "~/.openclaw/workspace"}) + "\n", 0o600)
    _write(home / ".openclaw" / "workspace" / "AGENTS.md", "# Agents\n")
    if system is not None:
        system.add_user(user, home)
    return home


def snapshot(root: Path) -> dict[str, str]:
    """Path -> 'dir' | 'link:<target>' | file text, for comparing whole trees."""

    out: dict[str, str] = {}
    for dirpath, dirnames, filenames in os.walk(root):
        base = Path(dirpath)
        for name in sorted(dirnames + filenames):
            p = base / name
            rel = str(p.relative_to(root))
            if p.is_symlink():
                out[rel] = f"link:{os.readlink(p)}"
            elif p.is_dir():
                out[rel] = "dir"
            else:
                out[rel] = p.read_text(encoding="utf-8", errors="replace")
    return out


def deny_access(monkeypatch, root: Path) -> None:
    """Make every stat below ``root`` fail with EACCES, as for a 0750 home seen by another user."""

    def guard(real):
        def call(path, *args, **kwargs):
            if not isinstance(path, int) and Path(root) in Path(os.fsdecode(path)).parents:
                raise PermissionError(errno.EACCES, "Permission denied", os.fsdecode(path))
            return real(path, *args, **kwargs)

        return call

    monkeypatch.setattr(os, "stat", guard(os.stat))
    monkeypatch.setattr(os, "lstat", guard(os.lstat))
