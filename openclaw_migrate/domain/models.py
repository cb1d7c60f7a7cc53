from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import re
from typing import Literal

from openclaw_migrate.domain.errors import ValidationError

WorkspaceSource = Literal["config", "standard", "custom", "legacy"]
FindingLevel = Literal["error", "warning", "info"]

_USERNAME = re.compile(r"^[a-z_][a-z0-9_-]*$")
MAX_USERNAME_LENGTH = 32


def validate_username(name: str, *, purpose: str) -> str:
    token = (name or "").strip()
    if not token:
        raise ValidationError(f"{purpose}: username cannot be empty")
    if len(token) > MAX_USERNAME_LENGTH:
        raise ValidationError(f"{purpose}: username longer than {MAX_USERNAME_LENGTH} characters")
    if not _USERNAME.fullmatch(token):
        raise ValidationError(
            f"{purpose}: invalid username '{token}' (use lowercase letters, digits, underscore, hyphen)"
        )
    return token


@dataclass(frozen=True)
class Candidate:
    username: str
    home_path: Path
    evidence_score: int
    evidence_notes: tuple[str, ...] = ()


@dataclass(frozen=True)
class WorkspaceResolution:
    path: Path | None
    source: WorkspaceSource | None
    conflicts: tuple[str, ...] = ()


@dataclass(frozen=True)
class InstallationRecord:
    owning_user: str
    home_path: Path
    config_dir: Path | None
    config_file: Path | None
    workspace_path: Path | None
    workspace_source: WorkspaceSource | None
    conflicts: tuple[str, ...] = ()
    notes: tuple[str, ...] = ()

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)


@dataclass(frozen=True)
class MigrationPlan:
    old_user: str
    new_user: str
    home_root: Path
    rename_user: bool = True
    standardize_workspace: bool = False
    migrate_legacy_dirs: bool = True
    create_symlinks: bool = True
    dry_run: bool = False

    @property
    def old_home(self) -> Path:
        return self.home_root / self.old_user

    @property
    def new_home(self) -> Path:
        return self.home_root / self.new_user

    @property
    def renames_account(self) -> bool:
        return self.rename_user and self.old_user != self.new_user


@dataclass(frozen=True)
class Finding:
    level: FindingLevel
    code: str
    message: str
    details: tuple[str, ...] = ()


@dataclass(frozen=True)
class PreflightReport:
    findings: tuple[Finding, ...] = ()

    @property
    def errors(self) -> tuple[Finding, ...]:
        return tuple(f for f in self.findings if f.level == "error")

    @property
    def warnings(self) -> tuple[Finding, ...]:
        return tuple(f for f in self.findings if f.level == "warning")

    @property
    def info(self) -> tuple[Finding, ...]:
        return tuple(f for f in self.findings if f.level == "info")

    @property
    def passed(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class StepResult:
    actions: int = 0
    problems: tuple[str, ...] = ()

    @property
    def complete(self) -> bool:
        return not self.problems


@dataclass
class PipelineSummary:
    completed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    incomplete: list[tuple[str, tuple[str, ...]]] = field(default_factory=list)
    aborted_at: str | None = None
    abort_reason: str | None = None
    journal: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.aborted_at is None and not self.incomplete
