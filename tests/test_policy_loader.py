from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from openclaw_migrate.domain.errors import PolicyError
from openclaw_migrate.infrastructure.policy_loader import (
    POLICY_ENV,
    default_policy_path,
    load_settings,
    resolve_policy_path,
)

from .util import write_policy


@pytest.mark.migration
def test_shipped_policy_loads_with_documented_defaults():
    s = load_settings(default_policy_path())
    assert s.canonical_name == "openclaw"
    assert s.config_dir_name == ".openclaw"
    assert s.legacy_dirs == (".moltbot", ".clawdbot", ".clawd")
    assert s.weights.canonical_dir == 100
    assert s.weights.legacy_dir == 80
    assert s.weights.workspace_marker == 25
    assert s.stop_grace_seconds == 2
    assert s.home_root == Path("/home")
    assert s.grant_dir == Path("/etc/sudoers.d")
    assert s.standard_workspace(Path("/home/a")) == Path("/home/a/.openclaw/workspace")
    assert s.legacy_config_files() == ("moltbot.json", "clawdbot.json")


@pytest.mark.migration
def test_env_override_selects_alternate_policy(tmp_path: Path):
    alt = write_policy(tmp_path)
    assert resolve_policy_path(None, {POLICY_ENV: str(alt)}) == alt
    assert resolve_policy_path(tmp_path / "explicit.yaml", {POLICY_ENV: str(alt)}) == tmp_path / "explicit.yaml"
    s = load_settings(env={POLICY_ENV: str(alt)})
    assert s.home_root == tmp_path / "home"


@pytest.mark.migration
def test_missing_policy_file_is_rejected(tmp_path: Path):
    with pytest.raises(PolicyError) as exc:
        load_settings(tmp_path / "nope.yaml")
    assert "BLOCKED-POLICY" in str(exc.value)


@pytest.mark.migration
@pytest.mark.parametrize(
    "mutate, fragment",
    [
        (lambda d: d.pop("legacy"), "legacy"),
        (lambda d: d["policy"].update(schema="v0"), "schema"),
        (lambda d: d["paths"].update(home_root="home"), "absolute"),
        (lambda d: d["discovery"]["weights"].update(canonical_dir="many"), "canonical_dir"),
        (lambda d: d["files"].update(shell_files=".bashrc"), "shell_files"),
        (lambda d: d["services"].update(stop_grace_seconds=-1), "stop_grace_seconds"),
    ],
)
def test_invalid_policy_fails_closed(tmp_path: Path, mutate, fragment):
    path = write_policy(tmp_path)
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    mutate(data)
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    with pytest.raises(PolicyError) as exc:
        load_settings(path)
    assert fragment in str(exc.value)


@pytest.mark.migration
def test_path_overrides_only_accept_known_paths(tmp_path: Path):
    s = load_settings(write_policy(tmp_path))
    moved = s.with_paths(home_root=tmp_path / "elsewhere")
    assert moved.home_root == tmp_path / "elsewhere"
    assert moved.grant_dir == s.grant_dir
    with pytest.raises(PolicyError):
        s.with_paths(config_dir_name=Path(".x"))
