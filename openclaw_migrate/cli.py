"""openclaw-migrate command line.

Discovers the installation, asks the operator for the decisions that cannot
be inferred, and runs the migration pipeline (or describes it with
``--dry-run``). Exit codes:

    0  success, or the operator declined a confirmation
    2  invalid input or policy
    3  preflight reported errors and no override was given
    4  a fatal step failed; the run stopped part way
    5  the run finished but some steps are incomplete
"""

from __future__ import annotations

import argparse
from dataclasses import asdict
import getpass
import os
from pathlib import Path
import re
import sys

from openclaw_migrate import __version__
from openclaw_migrate.domain.errors import (
    FatalMigrationError,
    MigrationError,
    PolicyError,
    PreflightError,
    UserAbort,
    ValidationError,
)
from openclaw_migrate.domain.models import InstallationRecord, MigrationPlan, PreflightReport, validate_username
from openclaw_migrate.engine.context import MigrationContext, rewrite_rules_for
from openclaw_migrate.engine.discovery import DiscoveryEngine, locate_installation
from openclaw_migrate.engine.execution import AccountView, ExecutionContext
from openclaw_migrate.engine.pipeline import run_pipeline
from openclaw_migrate.engine.preflight import PreflightValidator
from openclaw_migrate.engine.verification import verify_installation
from openclaw_migrate.infrastructure.commands import CommandRunner, SubprocessRunner
from openclaw_migrate.infrastructure.host import HostProbe, LocalHost
from openclaw_migrate.infrastructure.policy_loader import MigrationSettings, load_settings
from openclaw_migrate.infrastructure.run_report import create_run_report, write_error_event, write_run_report
from openclaw_migrate.presentation.console import Console
from openclaw_migrate.presentation.prompts import (
    InteractivePrompter,
    NonInteractivePrompter,
    Prompter,
    is_interactive,
)

EXIT_OK = 0
EXIT_INVALID = 2
EXIT_PREFLIGHT = 3
EXIT_FATAL = 4
EXIT_INCOMPLETE = 5

SKIP_ROOT_CHECK_ENV = "OPENCLAW_MIGRATE_SKIP_ROOT_CHECK"


def parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="openclaw-migrate",
        description="Find an OpenClaw installation and migrate it to a renamed account and the canonical layout.",
    )
    p.add_argument("--dry-run", action="store_true", help="Show every action without changing anything.")
    p.add_argument("--non-interactive", action="store_true", help="Never prompt; use flags and defaults.")
    p.add_argument("--old-user", default=None, help="Account that owns the installation (default: discovered).")
    p.add_argument("--new-user", default=None, help="New account name (default: prompt, suggested from hostname).")
    p.add_argument(
        "--rename-user",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Rename the owning account (default: prompt, yes).",
    )
    p.add_argument(
        "--standardize-workspace",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Move the workspace to ~/.openclaw/workspace (default: prompt, no).",
    )
    p.add_argument(
        "--migrate-legacy-dirs",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Move legacy config directories to ~/.openclaw (default: prompt, yes).",
    )
    p.add_argument(
        "--create-symlinks",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Leave backward-compatible symlinks (default: prompt, yes).",
    )
    p.add_argument(
        "--ignore-preflight-errors",
        action="store_true",
        help="Continue even when preflight reports errors.",
    )
    p.add_argument("--policy", type=Path, default=None, help="Alternate migration policy file.")
    p.add_argument("--home-root", type=Path, default=None, help="Override the home root (default: from policy).")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return p.parse_args(argv)


def suggest_username(hostname: str, old_user: str, fallback: str) -> str:
    token = re.sub(r"[^a-z0-9_-]+", "-", hostname.strip().lower()).strip("-")
    token = re.sub(r"^[^a-z_]+", "", token)[:32]
    if token and token != old_user:
        return token
    return fallback


def _resolve_prompter(args: argparse.Namespace, prompter: Prompter | None) -> Prompter:
    if prompter is not None:
        return prompter
    if args.non_interactive:
        return NonInteractivePrompter()
    if not is_interactive():
        raise ValidationError("not running on a terminal; pass --non-interactive to use flags and defaults")
    return InteractivePrompter()


def _check_root(dry_run: bool) -> None:
    if dry_run or os.environ.get(SKIP_ROOT_CHECK_ENV) == "1":
        return
    if hasattr(os, "geteuid") and os.geteuid() != 0:
        raise ValidationError("a live migration must run as root (use sudo, or --dry-run to preview)")


def _load(args: argparse.Namespace) -> MigrationSettings:
    settings = load_settings(args.policy)
    if args.home_root is not None:
        settings = settings.with_paths(home_root=Path(os.path.abspath(args.home_root)))
    return settings


def _select_old_user(
    args: argparse.Namespace,
    settings: MigrationSettings,
    prompter: Prompter,
    console: Console,
) -> str:
    engine = DiscoveryEngine(settings)
    candidates = engine.scan()
    console.section(f"Discovery under {settings.home_root}")
    if not candidates:
        console.warn("no installation found")
    for c in candidates:
        console.line(f"  {c.username:<16} score {c.evidence_score:>4}  ({', '.join(c.evidence_notes)})")

    if args.old_user:
        return validate_username(args.old_user, purpose="--old-user")
    best = engine.pick_best()
    if best is None:
        if not prompter.interactive:
            raise ValidationError("no installation found; pass --old-user")
        return validate_username(prompter.ask("Which user owns the installation?", ""), purpose="old user")
    ties = engine.ties()
    if ties:
        names = ", ".join(c.username for c in ties)
        console.warn(f"several candidates share the top score: {names}")
        if not prompter.interactive:
            raise ValidationError(f"ambiguous discovery ({names}); pass --old-user")
    return validate_username(
        prompter.ask("Which user owns the installation?", best.username),
        purpose="old user",
    )


def _print_record(record: InstallationRecord, console: Console) -> None:
    console.section("Installation")
    console.line(f"  Owner:      {record.owning_user}")
    console.line(f"  Home:       {record.home_path}")
    console.line(f"  Config dir: {record.config_dir or '(none)'}")
    console.line(f"  Config:     {record.config_file or '(none)'}")
    ws = f"{record.workspace_path} ({record.workspace_source})" if record.workspace_path else "(none)"
    console.line(f"  Workspace:  {ws}")
    for note in record.notes:
        console.info(note)
    for conflict in record.conflicts:
        console.warn(conflict)


def _print_plan(plan: MigrationPlan, settings: MigrationSettings, accounts: AccountView, console: Console) -> None:
    console.section("Plan")
    if plan.renames_account:
        console.line(f"  Rename {plan.old_user} -> {plan.new_user}, home {plan.old_home} -> {plan.new_home}")
    else:
        console.line(f"  Keep account {plan.old_user} ({plan.old_home})")
    console.line(f"  Standardize workspace: {'yes' if plan.standardize_workspace else 'no'}")
    console.line(f"  Migrate legacy dirs:   {'yes' if plan.migrate_legacy_dirs else 'no'}")
    console.line(f"  Compatibility links:   {'yes' if plan.create_symlinks else 'no'}")
    rules = rewrite_rules_for(settings, plan, accounts)
    if rules:
        console.line("  Path rewrites:")
        for rule in rules:
            console.line(f"    {rule.label}")


def _print_preflight(report: PreflightReport, console: Console) -> None:
    console.section("Preflight")
    for f in report.findings:
        text = f"[{f.code}] {f.message}"
        if f.level == "error":
            console.error(text)
        elif f.level == "warning":
            console.warn(text)
        else:
            console.info(text)
        for detail in f.details:
            console.line(f"      {detail}")
    if not report.findings:
        console.ok("no findings")


def _next_steps(plan: MigrationPlan, incomplete: bool, console: Console) -> None:
    user = plan.new_user if plan.renames_account else plan.old_user
    console.section("Next steps")
    console.line(f"  1. Log in as {user} and reinstall the gateway service: openclaw gateway install")
    console.line("  2. Check it: systemctl --user status openclaw-gateway.service")
    if plan.renames_account:
        console.line(f"  3. Reboot so no process keeps running as {plan.old_user}")
    if incomplete:
        console.line("  Some steps are incomplete; fix the problems above and run the migration again.")


def _log_error(settings: MigrationSettings, plan: MigrationPlan, console: Console, **event) -> None:
    try:
        write_error_event(settings.log_dir, old_user=plan.old_user, new_user=plan.new_user, **event)
    except OSError as exc:
        console.warn(f"could not write error log to {settings.log_dir}: {exc}")


def _run(
    args: argparse.Namespace,
    *,
    runner: CommandRunner | None,
    host: HostProbe | None,
    prompter: Prompter | None,
    console: Console,
) -> int:
    settings = _load(args)
    console.banner(
        "OpenClaw Migration",
        (f"Version: {__version__}", f"Mode: {'DRY-RUN' if args.dry_run else 'LIVE'}"),
    )
    _check_root(args.dry_run)
    prompter = _resolve_prompter(args, prompter)
    runner = runner or SubprocessRunner()
    host = host or LocalHost(runner)

    if not prompter.confirm("Search this host for an OpenClaw installation?", True):
        raise UserAbort("start")

    old_user = _select_old_user(args, settings, prompter, console)

    rename = args.rename_user if args.rename_user is not None else prompter.confirm(f"Rename the account {old_user}?", True)
    new_user = old_user
    if rename:
        if args.new_user:
            new_user = args.new_user
        else:
            suggestion = suggest_username(host.hostname(), old_user, settings.canonical_name)
            new_user = prompter.ask("New username", suggestion)
        new_user = validate_username(new_user, purpose="new user")

    resume = False
    if host.user_exists(old_user):
        if rename and new_user != old_user and host.user_exists(new_user):
            raise ValidationError(f"user {new_user} already exists; migrating into an existing account is not supported")
    elif rename and new_user != old_user and host.user_exists(new_user):
        resume = True
        console.info(f"{old_user} is gone and {new_user} exists; resuming an earlier migration")
    else:
        raise ValidationError(f"user {old_user} does not exist")

    if rename and new_user != old_user and not args.dry_run:
        invoking = os.environ.get("SUDO_USER") or getpass.getuser()
        if invoking == old_user:
            raise ValidationError(f"you are logged in as {old_user}; run the migration from another account")

    owner = new_user if resume else old_user
    home = settings.home_root / owner
    record = locate_installation(owner, home, settings)
    _print_record(record, console)
    if record.has_conflicts and prompter.interactive:
        if not prompter.confirm(f"Use {record.workspace_path} and leave the other locations alone?", False):
            raise UserAbort("workspace-conflicts")

    if args.standardize_workspace is not None:
        standardize = args.standardize_workspace
    elif record.workspace_path is None or record.workspace_path == settings.standard_workspace(home):
        console.ok("workspace is already in the standard location")
        standardize = False
    else:
        standardize = prompter.confirm("Move the workspace to ~/.openclaw/workspace?", False)

    if args.migrate_legacy_dirs is not None:
        migrate_legacy = args.migrate_legacy_dirs
    elif any(os.path.isdir(home / d) and not os.path.islink(home / d) for d in settings.legacy_dirs):
        migrate_legacy = prompter.confirm(f"Move legacy config directories to {settings.config_dir_name}?", True)
    else:
        migrate_legacy = True

    links = args.create_symlinks if args.create_symlinks is not None else prompter.confirm(
        "Create backward-compatible symlinks?", True
    )

    plan = MigrationPlan(
        old_user=old_user,
        new_user=new_user,
        home_root=settings.home_root,
        rename_user=rename,
        standardize_workspace=standardize,
        migrate_legacy_dirs=migrate_legacy,
        create_symlinks=links,
        dry_run=args.dry_run,
    )
    _print_plan(plan, settings, AccountView(host), console)

    report = PreflightValidator(settings, host).validate(owner, home)
    _print_preflight(report, console)
    if not report.passed:
        if args.ignore_preflight_errors:
            console.warn("continuing despite preflight errors (--ignore-preflight-errors)")
        elif prompter.interactive and prompter.confirm("Preflight reported errors. Continue anyway?", False):
            console.warn("continuing despite preflight errors")
        else:
            raise PreflightError(f"preflight reported {len(report.errors)} error(s)")
    if report.warnings and prompter.interactive:
        if not prompter.confirm("Acknowledge the warnings above and continue?", True):
            raise UserAbort("preflight-warnings")

    gate = "Describe the migration now?" if plan.dry_run else "Proceed with the migration?"
    if not prompter.confirm(gate, True):
        raise UserAbort("plan")
    if not plan.dry_run and not prompter.confirm("Have you taken a backup or snapshot of this machine?", True):
        raise UserAbort("backup")

    execution = ExecutionContext(dry_run=plan.dry_run, runner=runner, host=host, console=console)
    ctx = MigrationContext(settings=settings, plan=plan, record=record, execution=execution, console=console)
    exit_code = EXIT_OK
    try:
        run_pipeline(ctx)
    except FatalMigrationError as exc:
        console.error(str(exc))
        exit_code = EXIT_FATAL
        if not plan.dry_run:
            _log_error(settings, plan, console, reason_key=exc.reason, message=str(exc), step=ctx.summary.aborted_at or "unknown")
    summary = ctx.summary
    if exit_code == EXIT_OK and summary.incomplete:
        exit_code = EXIT_INCOMPLETE

    console.section("Summary")
    for name in summary.completed:
        console.ok(name)
    for name in summary.skipped:
        console.info(f"{name} (skipped)")
    for name, problems in summary.incomplete:
        console.warn(f"{name}: incomplete ({len(problems)} problem(s))")
        if not plan.dry_run:
            _log_error(
                settings,
                plan,
                console,
                reason_key="WARN-STEP-INCOMPLETE",
                message=f"{name} incomplete",
                step=name,
                result="incomplete",
                details=list(problems),
            )
    if summary.aborted_at:
        console.error(f"stopped at {summary.aborted_at}; fix the cause and run the migration again")

    if plan.dry_run:
        console.line(f"\n✅ DRY-RUN complete: {len(summary.journal)} planned action(s), no changes were made.")
        return exit_code

    run_report = create_run_report(
        plan=asdict(plan),
        record=asdict(record),
        journal=summary.journal,
        completed=summary.completed,
        skipped=summary.skipped,
        incomplete=summary.incomplete,
        aborted_at=summary.aborted_at,
        abort_reason=summary.abort_reason,
        exit_code=exit_code,
    )
    try:
        path = write_run_report(run_report, settings.log_dir)
        console.info(f"run report: {path}")
    except OSError as exc:
        console.warn(f"could not write run report to {settings.log_dir}: {exc}")

    if summary.aborted_at is None:
        verification = verify_installation(settings, plan, ctx.workspace, accounts=ctx.accounts)
        console.section("Verification")
        for check in verification.checks:
            if check.ok:
                console.ok(f"{check.name}: {check.detail}")
            else:
                console.warn(f"{check.name}: {check.detail}")
        _next_steps(plan, bool(summary.incomplete), console)
    return exit_code


def main(
    argv: list[str],
    *,
    runner: CommandRunner | None = None,
    host: HostProbe | None = None,
    prompter: Prompter | None = None,
    console: Console | None = None,
) -> int:
    args = parse_args(argv)
    console = console or Console()
    try:
        return _run(args, runner=runner, host=host, prompter=prompter, console=console)
    except UserAbort as exc:
        console.line(f"\nCancelled ({exc.gate}); nothing was changed.")
        return EXIT_OK
    except (ValidationError, PolicyError) as exc:
        console.error(str(exc))
        return EXIT_INVALID
    except PreflightError as exc:
        console.error(str(exc))
        console.line("Re-run with --ignore-preflight-errors to override.")
        return EXIT_PREFLIGHT
    except MigrationError as exc:
        console.error(str(exc))
        return EXIT_FATAL
    except OSError as exc:
        console.error(f"filesystem error: {exc}")
        return EXIT_FATAL


def entrypoint() -> None:
    raise SystemExit(main(sys.argv[1:]))


if __name__ == "__main__":
    entrypoint()
