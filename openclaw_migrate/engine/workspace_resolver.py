"""Workspace resolution.

Strict priority, first hit wins; later hits are reported as conflicts and
never merged:

1. the ``workspace`` field of the config file, if it names a directory
2. the canonical ``~/.openclaw/workspace`` holding a marker file
3. conventional custom locations holding a marker file
4. legacy user-named directories holding a marker file
"""

from __future__ import annotations

from pathlib import Path

from openclaw_migrate.domain.models import WorkspaceResolution, WorkspaceSource
from openclaw_migrate.domain.rewrite import expand_home, read_workspace_field
from openclaw_migrate.engine.file_view import FileView, RealView
from openclaw_migrate.infrastructure.policy_loader import MigrationSettings


class WorkspaceResolver:
    def __init__(self, settings: MigrationSettings, view: FileView | None = None):
        self._settings = settings
        self._view = view or RealView()

    def _has_marker(self, path: Path, markers: tuple[str, ...]) -> bool:
        view = self._view
        return view.is_dir(path) and any(view.is_file(path / m) for m in markers)

    def configured_path(self, home: Path, config_file: Path | None) -> tuple[str | None, Path | None]:
        """Raw and expanded value of the config ``workspace`` field."""

        if config_file is None or not self._view.is_file(config_file):
            return None, None
        try:
            raw = read_workspace_field(self._view.read_text(config_file))
        except (OSError, UnicodeDecodeError):
            return None, None
        if raw is None:
            return None, None
        path = expand_home(raw, home)
        if not path.is_absolute():
            path = home / path
        return raw, path

    def resolve(self, home: Path, user: str, config_file: Path | None) -> WorkspaceResolution:
        settings = self._settings
        view = self._view
        hits: list[tuple[Path, WorkspaceSource]] = []
        notes: list[str] = []

        raw, configured = self.configured_path(home, config_file)
        if configured is not None:
            if view.is_dir(configured):
                hits.append((configured, "config"))
            else:
                notes.append(f"config declares workspace '{raw}' but {configured} is not a directory")

        standard = settings.standard_workspace(home)
        if self._has_marker(standard, settings.workspace_markers):
            hits.append((standard, "standard"))

        for location in settings.custom_locations:
            path = home / location.format(user=user)
            if self._has_marker(path, settings.custom_markers):
                hits.append((path, "custom"))

        for location in settings.legacy_locations:
            path = home / location.format(user=user)
            if self._has_marker(path, settings.workspace_markers):
                hits.append((path, "legacy"))

        # a compatibility symlink to an earlier hit is the same workspace
        unique: list[tuple[Path, WorkspaceSource]] = []
        seen: set[Path] = set()
        for path, source in hits:
            real = view.resolve(path)
            if real in seen:
                continue
            seen.add(real)
            unique.append((path, source))

        if not unique:
            return WorkspaceResolution(path=None, source=None, conflicts=tuple(notes))
        chosen, source = unique[0]
        conflicts = notes + [f"{other_source} workspace also found at {other}" for other, other_source in unique[1:]]
        return WorkspaceResolution(path=chosen, source=source, conflicts=tuple(conflicts))
