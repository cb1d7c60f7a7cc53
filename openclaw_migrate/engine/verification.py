"""Post-migration verification of the canonical layout."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from openclaw_migrate.domain.models import MigrationPlan
from openclaw_migrate.engine.context import AccountLookup, home_rules_for
from openclaw_migrate.engine.file_view import FileView, RealView
from openclaw_migrate.infrastructure.policy_loader import MigrationSettings


@dataclass(frozen=True)
class Check:
    name: str
    ok: bool
    detail: str = ""


@dataclass(frozen=True)
class VerificationReport:
    checks: tuple[Check, ...]

    @property
    def passed(self) -> bool:
        return all(c.ok for c in self.checks)

    @property
    def failures(self) -> tuple[Check, ...]:
        return tuple(c for c in self.checks if not c.ok)


def stale_references(
    settings: MigrationSettings,
    plan: MigrationPlan,
    view: FileView | None = None,
    accounts: AccountLookup | None = None,
    workspace: Path | None = None,
) -> list[tuple[Path, str]]:
    """Text files under the canonical dir still naming the old or a legacy alias home.

    The workspace subtree is not inspected. An alias home that belongs to a
    live account in ``accounts`` is not stale.
    """

    view = view or RealView()
    home = plan.new_home if plan.renames_account else plan.old_home
    config_dir = settings.config_dir(home)
    rules = home_rules_for(settings, plan, accounts)
    skip = (settings.standard_workspace(home),) + ((workspace,) if workspace is not None else ())
    found: list[tuple[Path, str]] = []
    for path in view.walk_files(config_dir, skip=skip):
        try:
            data = view.read_bytes(path)
        except OSError:
            continue
        if b"\0" in data:
            continue
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            continue
        for rule in rules:
            m = rule.pattern.search(text)
            if m is not None:
                found.append((path, m.group(0)))
                break
    return found


def verify_installation(
    settings: MigrationSettings,
    plan: MigrationPlan,
    workspace: Path | None,
    view: FileView | None = None,
    accounts: AccountLookup | None = None,
) -> VerificationReport:
    view = view or RealView()
    home = plan.new_home if plan.renames_account else plan.old_home
    config_dir = settings.config_dir(home)
    config_file = settings.config_file(home)
    checks: list[Check] = [
        Check("config-dir", view.is_dir(config_dir), str(config_dir)),
        Check("config-file", view.is_file(config_file), str(config_file)),
    ]
    ws = workspace or settings.standard_workspace(home)
    checks.append(Check("workspace", view.is_dir(ws), str(ws)))

    stale = stale_references(settings, plan, view, accounts, workspace)
    checks.append(
        Check(
            "no-stale-paths",
            not stale,
            "; ".join(f"{p} mentions {ref}" for p, ref in stale) if stale else "no old home paths under the config dir",
        )
    )

    if plan.renames_account and plan.create_symlinks and view.is_symlink(plan.old_home):
        checks.append(
            Check("old-home-link", view.samefile(plan.old_home, home), f"{plan.old_home} -> {view.readlink(plan.old_home)}")
        )
    for legacy_dir in settings.legacy_dirs:
        link = home / legacy_dir
        if view.is_symlink(link):
            checks.append(Check(f"link {legacy_dir}", view.samefile(link, config_dir), f"{link} -> {view.readlink(link)}"))
    return VerificationReport(checks=tuple(checks))
