"""Installation discovery.

Scores every home directory under the home root by weighted evidence of an
installation and builds the ``InstallationRecord`` for the chosen owner.
Read-only.
"""

from __future__ import annotations

from pathlib import Path

from openclaw_migrate.domain.models import Candidate, InstallationRecord
from openclaw_migrate.engine.file_view import FileView, RealView
from openclaw_migrate.engine.workspace_resolver import WorkspaceResolver
from openclaw_migrate.infrastructure.policy_loader import MigrationSettings


class DiscoveryEngine:
    def __init__(self, settings: MigrationSettings, view: FileView | None = None):
        self._settings = settings
        self._view = view or RealView()
        self._candidates: list[Candidate] = []

    def home_dirs(self) -> list[Path]:
        """Real directories under the home root; compatibility symlinks are skipped."""

        root = self._settings.home_root
        view = self._view
        if not view.is_dir(root):
            return []
        return [root / n for n in view.listdir(root) if view.is_dir(root / n) and not view.is_symlink(root / n)]

    def _user_service_present(self, home: Path) -> bool:
        settings = self._settings
        unit_dir = home / ".config" / "systemd" / "user"
        if any(self._view.lexists(unit_dir / u) for u in settings.user_units):
            return True
        prefixes = (settings.canonical_name, *settings.legacy_names)
        for path in self._view.glob(unit_dir, "*.service"):
            if path.name.startswith(prefixes):
                return True
        return False

    def score_home(self, home: Path) -> Candidate:
        settings = self._settings
        weights = settings.weights
        view = self._view
        score = 0
        notes: list[str] = []
        config_dir = settings.config_dir(home)

        if view.is_dir(config_dir):
            score += weights.canonical_dir
            notes.append(f"{settings.config_dir_name} directory")
        for legacy_dir in settings.legacy_dirs:
            if view.is_dir(home / legacy_dir) and not view.is_symlink(home / legacy_dir):
                score += weights.legacy_dir
                notes.append(f"legacy {legacy_dir} directory")
        if view.is_file(settings.config_file(home)):
            score += weights.canonical_config
            notes.append(settings.config_file_name)
        for name in settings.legacy_config_names:
            file_name = f"{name}.json"
            own_dir = home / f".{name}"
            if view.is_file(config_dir / file_name) or view.is_file(own_dir / file_name):
                score += weights.legacy_config
                notes.append(f"legacy {file_name}")
        if self._user_service_present(home):
            score += weights.user_service
            notes.append("user service unit")
        if any(view.glob(home, pattern) for pattern in settings.package_globs):
            score += weights.global_package
            notes.append("global package install")
        for probe in settings.workspace_probes:
            path = home / probe.format(user=home.name)
            if view.is_dir(path) and any(view.is_file(path / m) for m in settings.workspace_markers):
                score += weights.workspace_marker
                notes.append(f"workspace markers in {probe.format(user=home.name)}")
                break
        return Candidate(username=home.name, home_path=home, evidence_score=score, evidence_notes=tuple(notes))

    def scan(self, home_dirs: list[Path] | None = None) -> list[Candidate]:
        homes = self.home_dirs() if home_dirs is None else home_dirs
        scored = [self.score_home(h) for h in homes]
        self._candidates = sorted(
            (c for c in scored if c.evidence_score > 0),
            key=lambda c: (-c.evidence_score, c.username),
        )
        return list(self._candidates)

    def pick_best(self) -> Candidate | None:
        return self._candidates[0] if self._candidates else None

    def ties(self) -> list[Candidate]:
        if len(self._candidates) < 2:
            return []
        top = self._candidates[0].evidence_score
        tied = [c for c in self._candidates if c.evidence_score == top]
        return tied if len(tied) > 1 else []


def locate_installation(
    user: str,
    home: Path,
    settings: MigrationSettings,
    view: FileView | None = None,
) -> InstallationRecord:
    view = view or RealView()
    notes: list[str] = []

    config_dir: Path | None = None
    canonical_dir = settings.config_dir(home)
    if view.is_dir(canonical_dir):
        config_dir = canonical_dir
    else:
        for legacy_dir in settings.legacy_dirs:
            if view.is_dir(home / legacy_dir):
                config_dir = home / legacy_dir
                notes.append(f"using legacy config directory {legacy_dir}")
                break

    config_file: Path | None = None
    if config_dir is not None:
        candidates = [config_dir / settings.config_file_name]
        candidates += [config_dir / n for n in settings.legacy_config_files()]
        candidates += [home / f".{n}" / f"{n}.json" for n in settings.legacy_config_names]
        for path in candidates:
            if view.is_file(path):
                config_file = path
                if path.name != settings.config_file_name:
                    notes.append(f"using legacy config file {path.name}")
                break

    resolution = WorkspaceResolver(settings, view).resolve(home, user, config_file)
    return InstallationRecord(
        owning_user=user,
        home_path=home,
        config_dir=config_dir,
        config_file=config_file,
        workspace_path=resolution.path,
        workspace_source=resolution.source,
        conflicts=resolution.conflicts,
        notes=tuple(notes),
    )
