from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from openclaw_migrate.domain.models import InstallationRecord, MigrationPlan, PipelineSummary
from openclaw_migrate.domain.rewrite import RewriteRule, home_path_rules, legacy_dir_rules, translate_path
from openclaw_migrate.engine.execution import AccountView, ExecutionContext, Executor
from openclaw_migrate.engine.file_view import FileView
from openclaw_migrate.infrastructure.policy_loader import MigrationSettings
from openclaw_migrate.presentation.console import Console


class AccountLookup(Protocol):
    def user_exists(self, name: str) -> bool: ...


@dataclass
class MigrationContext:
    """Everything a step may touch. Replaces process-wide state."""

    settings: MigrationSettings
    plan: MigrationPlan
    record: InstallationRecord
    execution: ExecutionContext
    console: Console
    workspace: Path | None = None
    summary: PipelineSummary = field(default_factory=PipelineSummary)

    @property
    def executor(self) -> Executor:
        return self.execution.executor

    @property
    def view(self) -> FileView:
        return self.execution.view

    @property
    def accounts(self) -> AccountView:
        return self.execution.accounts

    @property
    def target_user(self) -> str:
        return self.plan.new_user if self.plan.renames_account else self.plan.old_user

    @property
    def target_home(self) -> Path:
        return self.plan.new_home if self.plan.renames_account else self.plan.old_home

    def rewrite_rules(self) -> list[RewriteRule]:
        return rewrite_rules_for(self.settings, self.plan, self.accounts)

    def translate(self, path: Path) -> Path:
        return translate_path(path, self.rewrite_rules())


def home_rules_for(
    settings: MigrationSettings,
    plan: MigrationPlan,
    accounts: AccountLookup | None = None,
) -> list[RewriteRule]:
    """Rules mapping the old home and unowned legacy alias homes to the target home.

    Legacy alias homes are only rewritten when no other account owns them.
    """

    target = plan.new_user if plan.renames_account else plan.old_user
    aliases = [
        name
        for name in settings.legacy_names
        if name != plan.old_user and (accounts is None or not accounts.user_exists(name))
    ]
    return home_path_rules(plan.home_root, plan.old_user, target, aliases)


def rewrite_rules_for(
    settings: MigrationSettings,
    plan: MigrationPlan,
    accounts: AccountLookup | None = None,
) -> list[RewriteRule]:
    """Path rewrite rules for ``plan``, longest match first."""

    rules = home_rules_for(settings, plan, accounts)
    if plan.migrate_legacy_dirs:
        rules += legacy_dir_rules(settings.legacy_dirs, settings.config_dir_name)
    return rules
