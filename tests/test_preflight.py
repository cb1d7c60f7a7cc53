from __future__ import annotations

import os
from pathlib import Path

import pytest

from openclaw_migrate.engine.preflight import PreflightValidator

from .util import FakeHost, build_legacy_installation, deny_access

MIB = 1024 * 1024


def _codes(findings) -> list[str]:
    return [f.code for f in findings]


@pytest.mark.migration
def test_insufficient_disk_space_is_the_only_blocking_finding(settings, system):
    home = build_legacy_installation(settings.home_root, system=system)
    host = FakeHost(system, free=10 * MIB, used=50 * MIB)

    report = PreflightValidator(settings, host).validate("moltbot", home)
    assert not report.passed
    assert _codes(report.errors) == ["disk-space"]
    assert "10.0 MiB available, 50.0 MiB needed" in report.errors[0].message


@pytest.mark.migration
def test_live_install_produces_warnings_but_passes(settings, system):
    home = build_legacy_installation(settings.home_root, system=system)
    system.open_files = 3
    report = PreflightValidator(settings, FakeHost(system)).validate("moltbot", home)

    assert report.passed
    assert _codes(report.warnings) == ["service-active", "open-files"]
    assert "3 open file handle(s)" in report.warnings[1].message
    assert _codes(report.info) == ["ssh", "crontab"]
    assert report.info[0].details == ("authorized_keys present",)


@pytest.mark.migration
def test_missing_ssh_and_session_material_are_warned(settings, system):
    home = settings.home_root / "moltbot"
    (home / ".openclaw" / "credentials" / "whatsapp").mkdir(parents=True)
    system.add_user("moltbot", home)

    report = PreflightValidator(settings, FakeHost(system)).validate("moltbot", home)
    assert _codes(report.warnings) == ["no-ssh", "session-material"]
    assert report.warnings[1].details == (str(home / ".openclaw" / "credentials" / "whatsapp"),)


@pytest.mark.migration
def test_symlinks_leaving_the_home_are_listed(settings, system, tmp_path: Path):
    home = build_legacy_installation(settings.home_root, system=system)
    outside = tmp_path / "data"
    outside.mkdir()
    os.symlink(outside, home / "data")
    os.symlink(home / "workspace", home / "ws")

    report = PreflightValidator(settings, FakeHost(system)).validate("moltbot", home)
    found = [f for f in report.findings if f.code == "external-symlinks"]
    assert len(found) == 1
    assert found[0].details == (f"{home / 'data'} -> {outside.resolve()}",)


@pytest.mark.migration
def test_unreadable_home_is_reported_not_raised(settings, system, monkeypatch):
    home = build_legacy_installation(settings.home_root, system=system)
    (home / ".openclaw" / "credentials" / "whatsapp").mkdir(parents=True)
    deny_access(monkeypatch, home)

    report = PreflightValidator(settings, FakeHost(system, used=0)).validate("moltbot", home)
    assert report.passed
    assert "no-ssh" in _codes(report.warnings)
    assert "session-material" not in _codes(report.warnings)
