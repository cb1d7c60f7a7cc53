"""Loader for the migration policy.

Fail-closed: a policy that is missing a section, has a wrong type, or names
a relative system path is rejected instead of being patched with defaults.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import os
from pathlib import Path
from typing import Any, Mapping

import yaml

from openclaw_migrate.domain.errors import PolicyError

POLICY_SCHEMA = "openclaw-migrate.policy.v1"
POLICY_ENV = "OPENCLAW_MIGRATE_POLICY"

_WEIGHT_KEYS = (
    "canonical_dir",
    "legacy_dir",
    "canonical_config",
    "legacy_config",
    "user_service",
    "global_package",
    "workspace_marker",
)


def default_policy_path() -> Path:
    return Path(__file__).resolve().parent.parent / "policy" / "migration_policy.yaml"


@dataclass(frozen=True)
class DiscoveryWeights:
    canonical_dir: int
    legacy_dir: int
    canonical_config: int
    legacy_config: int
    user_service: int
    global_package: int
    workspace_marker: int


@dataclass(frozen=True)
class MigrationSettings:
    canonical_name: str
    config_dir_name: str
    config_file_name: str
    workspace_dir_name: str
    canonical_subdirs: tuple[str, ...]
    legacy_names: tuple[str, ...]
    legacy_dirs: tuple[str, ...]
    legacy_config_names: tuple[str, ...]
    weights: DiscoveryWeights
    package_globs: tuple[str, ...]
    workspace_probes: tuple[str, ...]
    workspace_markers: tuple[str, ...]
    custom_markers: tuple[str, ...]
    custom_locations: tuple[str, ...]
    legacy_locations: tuple[str, ...]
    markdown_globs: tuple[str, ...]
    canonical_workspace_field: str
    system_units: tuple[str, ...]
    legacy_system_units: tuple[str, ...]
    user_units: tuple[str, ...]
    user_unit_globs: tuple[str, ...]
    stop_grace_seconds: float
    shell_files: tuple[str, ...]
    ownership_subtrees: tuple[str, ...]
    private_files: tuple[str, ...]
    private_dirs: tuple[str, ...]
    session_markers: tuple[str, ...]
    gateway_unit: str
    symlink_scan_depth: int
    home_root: Path
    grant_dir: Path
    system_unit_dir: Path
    log_dir: Path

    def config_dir(self, home: Path) -> Path:
        return home / self.config_dir_name

    def config_file(self, home: Path) -> Path:
        return home / self.config_dir_name / self.config_file_name

    def standard_workspace(self, home: Path) -> Path:
        return home / self.config_dir_name / self.workspace_dir_name

    def legacy_config_files(self) -> tuple[str, ...]:
        return tuple(f"{name}.json" for name in self.legacy_config_names)

    def with_paths(self, **paths: Path) -> "MigrationSettings":
        unknown = set(paths) - {"home_root", "grant_dir", "system_unit_dir", "log_dir"}
        if unknown:
            raise PolicyError(f"unknown path override(s): {', '.join(sorted(unknown))}")
        return replace(self, **{k: Path(v) for k, v in paths.items()})


def _section(data: Mapping[str, Any], key: str, source: Path) -> Mapping[str, Any]:
    value = data.get(key)
    if not isinstance(value, dict):
        raise PolicyError(f"policy section '{key}' missing or not a mapping: {source}")
    return value


def _str(section: Mapping[str, Any], key: str, where: str) -> str:
    value = section.get(key)
    if not isinstance(value, str) or not value.strip():
        raise PolicyError(f"{where}.{key} must be a non-empty string")
    return value.strip()


def _names(section: Mapping[str, Any], key: str, where: str, *, allow_empty: bool = False) -> tuple[str, ...]:
    value = section.get(key)
    if not isinstance(value, list) or (not value and not allow_empty):
        raise PolicyError(f"{where}.{key} must be a {'' if allow_empty else 'non-empty '}list")
    out: list[str] = []
    for item in value:
        if not isinstance(item, str) or not item.strip():
            raise PolicyError(f"{where}.{key} entries must be non-empty strings")
        out.append(item.strip())
    return tuple(out)


def _number(section: Mapping[str, Any], key: str, where: str) -> float:
    value = section.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise PolicyError(f"{where}.{key} must be a non-negative number")
    return value


def _abs_path(section: Mapping[str, Any], key: str) -> Path:
    raw = _str(section, key, "paths")
    path = Path(raw).expanduser()
    if not path.is_absolute():
        raise PolicyError(f"paths.{key} must be absolute: {raw}")
    return Path(os.path.normpath(str(path)))


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.is_file():
        raise PolicyError(f"policy file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise PolicyError(f"policy parse failed ({path}): {exc}")
    if not isinstance(data, dict) or not data:
        raise PolicyError(f"policy empty/invalid: {path}")
    meta = data.get("policy")
    if not isinstance(meta, dict) or meta.get("schema") != POLICY_SCHEMA:
        raise PolicyError(f"policy schema must be {POLICY_SCHEMA}: {path}")
    return data


def resolve_policy_path(explicit: Path | None = None, env: Mapping[str, str] | None = None) -> Path:
    if explicit is not None:
        return Path(explicit).expanduser()
    environ = os.environ if env is None else env
    from_env = str(environ.get(POLICY_ENV, "")).strip()
    if from_env:
        return Path(from_env).expanduser()
    return default_policy_path()


def load_settings(path: Path | None = None, *, env: Mapping[str, str] | None = None) -> MigrationSettings:
    source = resolve_policy_path(path, env)
    data = _load_yaml(source)

    product = _section(data, "product", source)
    legacy = _section(data, "legacy", source)
    discovery = _section(data, "discovery", source)
    workspace = _section(data, "workspace", source)
    services = _section(data, "services", source)
    files = _section(data, "files", source)
    ownership = _section(data, "ownership", source)
    preflight = _section(data, "preflight", source)
    paths = _section(data, "paths", source)

    raw_weights = discovery.get("weights")
    if not isinstance(raw_weights, dict):
        raise PolicyError(f"discovery.weights missing: {source}")
    weights = DiscoveryWeights(**{k: int(_number(raw_weights, k, "discovery.weights")) for k in _WEIGHT_KEYS})

    depth = _number(preflight, "symlink_scan_depth", "preflight")
    return MigrationSettings(
        canonical_name=_str(product, "canonical_name", "product"),
        config_dir_name=_str(product, "config_dir", "product"),
        config_file_name=_str(product, "config_file", "product"),
        workspace_dir_name=_str(product, "workspace_dir", "product"),
        canonical_subdirs=_names(product, "canonical_subdirs", "product"),
        legacy_names=_names(legacy, "names", "legacy", allow_empty=True),
        legacy_dirs=_names(legacy, "dirs", "legacy", allow_empty=True),
        legacy_config_names=_names(legacy, "config_names", "legacy", allow_empty=True),
        weights=weights,
        package_globs=_names(discovery, "package_globs", "discovery", allow_empty=True),
        workspace_probes=_names(discovery, "workspace_probes", "discovery"),
        workspace_markers=_names(workspace, "markers", "workspace"),
        custom_markers=_names(workspace, "custom_markers", "workspace"),
        custom_locations=_names(workspace, "custom_locations", "workspace", allow_empty=True),
        legacy_locations=_names(workspace, "legacy_locations", "workspace", allow_empty=True),
        markdown_globs=_names(workspace, "markdown_globs", "workspace", allow_empty=True),
        canonical_workspace_field=_str(workspace, "canonical_field", "workspace"),
        system_units=_names(services, "system_units", "services", allow_empty=True),
        legacy_system_units=_names(services, "legacy_system_units", "services", allow_empty=True),
        user_units=_names(services, "user_units", "services", allow_empty=True),
        user_unit_globs=_names(services, "user_unit_globs", "services", allow_empty=True),
        stop_grace_seconds=float(_number(services, "stop_grace_seconds", "services")),
        shell_files=_names(files, "shell_files", "files", allow_empty=True),
        ownership_subtrees=_names(ownership, "subtrees", "ownership", allow_empty=True),
        private_files=_names(ownership, "private_files", "ownership", allow_empty=True),
        private_dirs=_names(ownership, "private_dirs", "ownership", allow_empty=True),
        session_markers=_names(preflight, "session_markers", "preflight", allow_empty=True),
        gateway_unit=_str(preflight, "gateway_unit", "preflight"),
        symlink_scan_depth=int(depth),
        home_root=_abs_path(paths, "home_root"),
        grant_dir=_abs_path(paths, "grant_dir"),
        system_unit_dir=_abs_path(paths, "system_unit_dir"),
        log_dir=_abs_path(paths, "log_dir"),
    )
