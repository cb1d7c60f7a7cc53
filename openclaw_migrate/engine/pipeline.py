"""The ordered migration pipeline.

The order is fixed and built once. ``fatal`` is data on the step: a fatal
step that fails aborts the run, any other step that fails is recorded as
incomplete and the run goes on.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable, Sequence

from openclaw_migrate.domain.errors import CommandFailed, FatalMigrationError, RecoverableStepError
from openclaw_migrate.domain.models import MigrationPlan, StepResult
from openclaw_migrate.engine import steps
from openclaw_migrate.engine.compat_links import create_compat_links
from openclaw_migrate.engine.context import MigrationContext


def _always(plan: MigrationPlan) -> bool:
    return True


@dataclass(frozen=True)
class MutationStep:
    name: str
    description: str
    apply: Callable[[MigrationContext], StepResult]
    fatal: bool = False
    enabled: Callable[[MigrationPlan], bool] = _always


def build_pipeline() -> tuple[MutationStep, ...]:
    return (
        MutationStep("stop-services", "Stop services and sessions of the owning user", steps.stop_services),
        MutationStep(
            "rename-account",
            "Rename the account and relocate its home",
            steps.rename_account,
            fatal=True,
            enabled=lambda plan: plan.renames_account,
        ),
        MutationStep("cleanup-legacy-units", "Remove legacy system service units", steps.cleanup_legacy_units),
        MutationStep("update-configs", "Migrate the config directory and rewrite config paths", steps.update_configs),
        MutationStep("update-user-services", "Rewrite paths in user service units", steps.update_user_services),
        MutationStep("update-shell-configs", "Rewrite paths in shell startup files", steps.update_shell_configs),
        MutationStep("migrate-workspace", "Locate, standardize, and rewrite the workspace", steps.migrate_workspace),
        MutationStep("update-scheduled-tasks", "Rewrite paths in the crontab", steps.update_scheduled_tasks),
        MutationStep("fix-ownership", "Fix ownership and permissions", steps.fix_ownership),
        MutationStep(
            "create-compat-links",
            "Create backward-compatible symlinks",
            create_compat_links,
            enabled=lambda plan: plan.create_symlinks,
        ),
    )


def run_pipeline(ctx: MigrationContext, pipeline: Sequence[MutationStep] | None = None) -> None:
    """Run every enabled step in order, filling ``ctx.summary``.

    Raises FatalMigrationError when a fatal step fails; the summary then
    names the step the run stopped at.
    """

    console = ctx.console
    summary = ctx.summary
    journal = ctx.execution.journal
    try:
        for step in pipeline if pipeline is not None else build_pipeline():
            if not step.enabled(ctx.plan):
                summary.skipped.append(step.name)
                console.section(f"{step.name}: skipped")
                continue
            console.section(f"{step.name}: {step.description}")
            before = len(journal)
            try:
                result = step.apply(ctx)
            except FatalMigrationError as exc:
                summary.aborted_at = step.name
                summary.abort_reason = str(exc)
                raise
            except (OSError, CommandFailed, RecoverableStepError) as exc:
                if step.fatal:
                    summary.aborted_at = step.name
                    summary.abort_reason = str(exc)
                    raise FatalMigrationError(f"{step.name}: {exc}") from exc
                result = StepResult(problems=(str(exc),))
            result = replace(result, actions=len(journal) - before)
            if result.complete:
                summary.completed.append(step.name)
                if result.actions == 0:
                    console.ok("nothing to do")
            else:
                summary.incomplete.append((step.name, result.problems))
                for problem in result.problems:
                    console.warn(problem)
    finally:
        summary.journal = ctx.execution.descriptions()
