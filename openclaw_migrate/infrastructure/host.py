"""Read-only host queries.

Everything here observes the host; nothing mutates it. Mutations go through
``openclaw_migrate.engine.execution`` so that dry-run stays faithful.
"""

from __future__ import annotations

import os
from pathlib import Path
import shutil
import socket
from typing import Protocol

from openclaw_migrate.infrastructure.commands import CommandRunner


class HostProbe(Protocol):
    def user_exists(self, name: str) -> bool:
        ...

    def group_exists(self, name: str) -> bool:
        ...

    def home_of(self, name: str) -> Path | None:
        ...

    def service_active(self, unit: str, *, user: str | None = None) -> bool:
        ...

    def has_session(self, user: str) -> bool:
        ...

    def has_processes(self, user: str) -> bool:
        ...

    def read_crontab(self, user: str) -> str | None:
        ...

    def open_file_count(self, path: Path) -> int:
        ...

    def free_bytes(self, path: Path) -> int:
        ...

    def tree_bytes(self, path: Path) -> int:
        ...

    def hostname(self) -> str:
        ...


def _nearest_existing(path: Path) -> Path:
    candidate = path
    while not os.path.exists(candidate):
        if candidate == candidate.parent:
            return candidate
        candidate = candidate.parent
    return candidate


class LocalHost:
    """HostProbe backed by the real account database, systemd, and cron."""

    def __init__(self, runner: CommandRunner):
        self._runner = runner

    def _passwd_entry(self, name: str) -> list[str] | None:
        r = self._runner.run(["getent", "passwd", name])
        if not r.ok or not r.stdout.strip():
            return None
        return r.stdout.strip().splitlines()[0].split(":")

    def user_exists(self, name: str) -> bool:
        return self._passwd_entry(name) is not None

    def group_exists(self, name: str) -> bool:
        return self._runner.run(["getent", "group", name]).ok

    def home_of(self, name: str) -> Path | None:
        entry = self._passwd_entry(name)
        if entry is None or len(entry) < 6 or not entry[5]:
            return None
        return Path(entry[5])

    def service_active(self, unit: str, *, user: str | None = None) -> bool:
        argv = ["systemctl"]
        if user is not None:
            argv += ["--user", "-M", f"{user}@"]
        argv += ["is-active", "--quiet", unit]
        return self._runner.run(argv).ok

    def has_session(self, user: str) -> bool:
        return self._runner.run(["loginctl", "show-user", user]).ok

    def has_processes(self, user: str) -> bool:
        return self._runner.run(["pgrep", "-u", user]).ok

    def read_crontab(self, user: str) -> str | None:
        r = self._runner.run(["crontab", "-u", user, "-l"])
        if not r.ok:
            return None
        return r.stdout

    def open_file_count(self, path: Path) -> int:
        r = self._runner.run(["lsof", "+D", str(path)])
        lines = [line for line in r.stdout.splitlines() if line.strip()]
        # first line is the lsof header
        return max(len(lines) - 1, 0)

    def free_bytes(self, path: Path) -> int:
        return shutil.disk_usage(_nearest_existing(path)).free

    def tree_bytes(self, path: Path) -> int:
        total = 0
        for dirpath, dirnames, filenames in os.walk(path, followlinks=False):
            for name in filenames:
                try:
                    total += os.lstat(os.path.join(dirpath, name)).st_size
                except OSError:
                    continue
        return total

    def hostname(self) -> str:
        return socket.gethostname().split(".")[0].strip().lower()
