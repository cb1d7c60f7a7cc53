"""Preflight checks run against the live host before any mutation."""

from __future__ import annotations

import os
from pathlib import Path

from openclaw_migrate.domain.models import Finding, PreflightReport
from openclaw_migrate.engine.file_view import within
from openclaw_migrate.infrastructure.host import HostProbe
from openclaw_migrate.infrastructure.policy_loader import MigrationSettings


def _mib(n: int) -> str:
    return f"{n / (1024 * 1024):.1f} MiB"


class PreflightValidator:
    def __init__(self, settings: MigrationSettings, host: HostProbe):
        self._settings = settings
        self._host = host

    def _disk_space(self, home: Path) -> Finding | None:
        free = self._host.free_bytes(self._settings.home_root)
        needed = self._host.tree_bytes(home)
        if free < needed:
            return Finding(
                "error",
                "disk-space",
                f"not enough free space under {self._settings.home_root}: {_mib(free)} available, {_mib(needed)} needed",
            )
        return None

    def _ssh(self, home: Path) -> Finding:
        ssh_dir = home / ".ssh"
        if not os.path.isdir(ssh_dir):
            return Finding("warning", "no-ssh", f"no {ssh_dir}; make sure you can still log in after the rename")
        keys = ssh_dir / "authorized_keys"
        detail = "authorized_keys present" if os.path.isfile(keys) else "no authorized_keys"
        return Finding("info", "ssh", f"{ssh_dir} will move with the home directory", (detail,))

    def _external_symlinks(self, home: Path) -> Finding | None:
        depth = self._settings.symlink_scan_depth
        real_home = Path(os.path.realpath(home))
        external: list[str] = []
        level = [home]
        for _ in range(depth):
            next_level: list[Path] = []
            for base in level:
                try:
                    names = sorted(os.listdir(base))
                except OSError:
                    continue
                for name in names:
                    path = base / name
                    if os.path.islink(path):
                        target = Path(os.path.realpath(path))
                        if not within(target, real_home):
                            external.append(f"{path} -> {target}")
                    elif os.path.isdir(path):
                        next_level.append(path)
            level = next_level
        if not external:
            return None
        return Finding("info", "external-symlinks", "symlinks pointing outside the home directory", tuple(external))

    def _gateway(self, user: str) -> Finding | None:
        unit = self._settings.gateway_unit
        if self._host.service_active(unit, user=user):
            return Finding("warning", "service-active", f"{unit} is running for {user}; it will be stopped")
        return None

    def _session_material(self, home: Path) -> Finding | None:
        present = [str(home / m) for m in self._settings.session_markers if os.path.exists(home / m)]
        if not present:
            return None
        return Finding(
            "warning",
            "session-material",
            "third-party session data found; linked devices may need to re-pair",
            tuple(present),
        )

    def _open_files(self, home: Path) -> Finding | None:
        count = self._host.open_file_count(home)
        if count > 0:
            return Finding("warning", "open-files", f"{count} open file handle(s) under {home}")
        return None

    def _crontab(self, user: str) -> Finding | None:
        text = self._host.read_crontab(user)
        if not text:
            return None
        jobs = [line for line in text.splitlines() if line.strip() and not line.lstrip().startswith("#")]
        if not jobs:
            return None
        return Finding("info", "crontab", f"{len(jobs)} scheduled job(s) for {user} will be rewritten")

    def validate(self, old_user: str, old_home: Path) -> PreflightReport:
        checks = (
            self._disk_space(old_home),
            self._ssh(old_home),
            self._external_symlinks(old_home),
            self._gateway(old_user),
            self._session_material(old_home),
            self._open_files(old_home),
            self._crontab(old_user),
        )
        return PreflightReport(findings=tuple(f for f in checks if f is not None))
