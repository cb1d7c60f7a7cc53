"""The mutation steps of a migration.

Each step re-reads state through the context's views and does nothing when
its precondition already holds, so a step can always be re-run. Per-item
failures are collected as problems; only the account rename raises.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Sequence

from openclaw_migrate.domain.errors import CommandFailed, FatalMigrationError
from openclaw_migrate.domain.models import StepResult
from openclaw_migrate.domain.rewrite import RewriteRule, apply_rules, identifier_rule, workspace_field_rule
from openclaw_migrate.engine.context import MigrationContext
from openclaw_migrate.engine.file_view import within
from openclaw_migrate.engine.workspace_resolver import WorkspaceResolver

GRANT_MODE = 0o440
PRIVATE_FILE_MODE = 0o600
PRIVATE_DIR_MODE = 0o700


class _Problems:
    def __init__(self) -> None:
        self.items: list[str] = []

    def attempt(self, label: str, fn: Callable[[], object]) -> bool:
        try:
            fn()
        except (OSError, CommandFailed) as exc:
            self.items.append(f"{label}: {exc}")
            return False
        return True

    def add(self, message: str) -> None:
        self.items.append(message)

    def result(self) -> StepResult:
        return StepResult(problems=tuple(self.items))


def rewrite_file(ctx: MigrationContext, path: Path, rules: Sequence[RewriteRule], problems: _Problems) -> bool:
    """Rewrite one text file in place. Symlinks and non-UTF-8 files are left alone."""

    view = ctx.view
    if view.is_symlink(path) or not view.is_file(path):
        return False
    try:
        data = view.read_bytes(path)
    except OSError as exc:
        problems.add(f"read {path}: {exc}")
        return False
    if b"\0" in data:
        return False
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        ctx.console.info(f"skipping non-text file {path}")
        return False
    outcome = apply_rules(text, rules)
    if not outcome.changed:
        return False
    return problems.attempt(
        f"rewrite {path}",
        lambda: ctx.executor.write_text(
            path, outcome.text, description=f"rewrite {path} ({outcome.replacements} path reference(s))"
        ),
    )


def _rewrite_glob(ctx: MigrationContext, root: Path, patterns: Sequence[str], problems: _Problems) -> None:
    view = ctx.view
    if not view.is_dir(root):
        return
    rules = ctx.rewrite_rules()
    seen: set[Path] = set()
    for pattern in patterns:
        for path in view.glob(root, pattern):
            if path in seen:
                continue
            seen.add(path)
            rewrite_file(ctx, path, rules, problems)


def _rewrite_tree(ctx: MigrationContext, root: Path, problems: _Problems) -> None:
    """Rewrite every text file under ``root`` except the workspace subtree."""

    rules = ctx.rewrite_rules()
    for path in ctx.view.walk_files(root, skip=_workspace_dirs(ctx, root)):
        rewrite_file(ctx, path, rules, problems)


def _workspace_dirs(ctx: MigrationContext, root: Path) -> tuple[Path, ...]:
    skip = [root / ctx.settings.workspace_dir_name]
    if ctx.record.workspace_path is not None:
        skip.append(ctx.translate(ctx.record.workspace_path))
    if ctx.workspace is not None:
        skip.append(ctx.workspace)
    return tuple(skip)


# 1 ---------------------------------------------------------------------------


def stop_services(ctx: MigrationContext) -> StepResult:
    accounts = ctx.accounts
    executor = ctx.executor
    settings = ctx.settings
    problems = _Problems()

    if accounts.user_exists(ctx.plan.old_user):
        user = ctx.plan.old_user
    elif accounts.user_exists(ctx.plan.new_user):
        user = ctx.plan.new_user
    else:
        return problems.result()

    for unit in settings.system_units:
        if accounts.service_active(unit):
            problems.attempt(f"stop {unit}", lambda u=unit: executor.service("stop", u))
    for unit in settings.user_units:
        if accounts.service_active(unit, user=user):
            problems.attempt(f"stop {unit} for {user}", lambda u=unit: executor.service("stop", u, user=user))
    if accounts.has_session(user):
        problems.attempt(f"terminate session of {user}", lambda: executor.terminate_session(user))
    if accounts.has_processes(user):
        problems.attempt(f"signal processes of {user}", lambda: executor.signal_processes(user, "TERM"))
        executor.pause(settings.stop_grace_seconds)
        if accounts.has_processes(user):
            problems.attempt(f"kill processes of {user}", lambda: executor.signal_processes(user, "KILL"))
            if accounts.has_processes(user):
                problems.add(f"processes of {user} survived SIGKILL")
    return problems.result()


# 2 ---------------------------------------------------------------------------


def _migrate_grant(ctx: MigrationContext) -> None:
    view = ctx.view
    executor = ctx.executor
    old, new = ctx.plan.old_user, ctx.plan.new_user
    grant_dir = ctx.settings.grant_dir
    old_grant = grant_dir / old
    new_grant = grant_dir / new
    if not view.is_file(old_grant) or view.is_symlink(old_grant):
        return
    outcome = apply_rules(view.read_text(old_grant), [identifier_rule(old, new)])
    # sudo ignores file names containing a dot
    pending = grant_dir / f".{new}.pending"
    executor.write_text(pending, outcome.text, mode=GRANT_MODE, description=f"write pending grant {pending}")
    try:
        executor.validate_grant(pending)
    except CommandFailed as exc:
        executor.remove(pending)
        raise FatalMigrationError(f"privilege grant for {new} failed validation, left {old_grant} untouched: {exc}")
    executor.move(pending, new_grant)
    executor.remove(old_grant)


def rename_account(ctx: MigrationContext) -> StepResult:
    accounts = ctx.accounts
    view = ctx.view
    executor = ctx.executor
    plan = ctx.plan
    old, new = plan.old_user, plan.new_user

    if accounts.user_exists(old):
        if accounts.user_exists(new):
            raise FatalMigrationError(f"both {old} and {new} exist; refusing to merge accounts")
        executor.rename_account(old, new)
    elif not accounts.user_exists(new):
        raise FatalMigrationError(f"neither {old} nor {new} exists")

    if accounts.group_exists(old) and not accounts.group_exists(new):
        executor.rename_group(old, new)

    current_home = accounts.home_of(new)
    if current_home != plan.new_home:
        if view.lexists(plan.new_home):
            if current_home is not None and view.lexists(current_home) and not view.is_symlink(current_home):
                raise FatalMigrationError(
                    f"cannot relocate {current_home}: {plan.new_home} already exists"
                )
            executor.relocate_home(new, current_home or plan.old_home, plan.new_home, move=False)
        else:
            executor.relocate_home(new, current_home or plan.old_home, plan.new_home, move=True)

    _migrate_grant(ctx)
    return StepResult()


# 3 ---------------------------------------------------------------------------


def cleanup_legacy_units(ctx: MigrationContext) -> StepResult:
    view = ctx.view
    executor = ctx.executor
    problems = _Problems()
    removed = False
    for unit in ctx.settings.legacy_system_units:
        unit_file = ctx.settings.system_unit_dir / f"{unit}.service"
        if not view.lexists(unit_file):
            continue
        problems.attempt(f"disable {unit}", lambda u=unit: executor.service("disable", u))
        if problems.attempt(f"remove {unit_file}", lambda f=unit_file: executor.remove(f)):
            removed = True
    if removed:
        problems.attempt("daemon-reload", executor.reload_units)
    return problems.result()


# 4 ---------------------------------------------------------------------------


def update_configs(ctx: MigrationContext) -> StepResult:
    settings = ctx.settings
    view = ctx.view
    executor = ctx.executor
    problems = _Problems()
    home = ctx.target_home
    config_dir = settings.config_dir(home)

    if ctx.plan.migrate_legacy_dirs and not view.lexists(config_dir):
        for legacy_dir in settings.legacy_dirs:
            source = home / legacy_dir
            if view.is_dir(source) and not view.is_symlink(source):
                problems.attempt(f"move {source}", lambda s=source: executor.move(s, config_dir))
                break

    roots = [config_dir]
    roots += [home / d for d in settings.legacy_dirs if view.is_dir(home / d) and not view.is_symlink(home / d)]
    for root in roots:
        _rewrite_tree(ctx, root, problems)

    canonical = settings.config_file(home)
    for name in settings.legacy_config_files():
        legacy = config_dir / name
        if not view.lexists(legacy) or view.is_symlink(legacy):
            continue
        if not view.lexists(canonical):
            problems.attempt(f"rename {legacy}", lambda l=legacy: executor.move(l, canonical))
        else:
            problems.attempt(f"remove duplicate {legacy}", lambda l=legacy: executor.remove(l))
    return problems.result()


# 5 ---------------------------------------------------------------------------


def update_user_services(ctx: MigrationContext) -> StepResult:
    problems = _Problems()
    unit_dir = ctx.target_home / ".config" / "systemd" / "user"
    _rewrite_glob(ctx, unit_dir, ctx.settings.user_unit_globs, problems)
    return problems.result()


# 6 ---------------------------------------------------------------------------


def update_shell_configs(ctx: MigrationContext) -> StepResult:
    problems = _Problems()
    rules = ctx.rewrite_rules()
    for name in ctx.settings.shell_files:
        rewrite_file(ctx, ctx.target_home / name, rules, problems)
    return problems.result()


# 7 ---------------------------------------------------------------------------


def _free_name(ctx: MigrationContext, path: Path) -> Path:
    candidate = path.with_name(f"{path.name}.migrated")
    n = 1
    while ctx.view.lexists(candidate):
        candidate = path.with_name(f"{path.name}.migrated.{n}")
        n += 1
    return candidate


def merge_tree(ctx: MigrationContext, source: Path, dest: Path, problems: _Problems) -> bool:
    """Copy ``source`` into ``dest`` without overwriting anything.

    Identical files are skipped; a differing file is kept next to the
    existing one as ``<name>.migrated[.N]`` and reported. Returns False when
    any copy failed.
    """

    view = ctx.view
    executor = ctx.executor
    ok = True
    for name in view.listdir(source):
        src = source / name
        dst = dest / name
        if view.is_dir(src) and not view.is_symlink(src):
            if not view.lexists(dst):
                ok = problems.attempt(f"create {dst}", lambda d=dst: executor.mkdir(d)) and ok
            if view.is_dir(dst):
                ok = merge_tree(ctx, src, dst, problems) and ok
            else:
                problems.add(f"cannot merge directory {src}: {dst} is not a directory")
                ok = False
            continue
        if not view.lexists(dst):
            ok = problems.attempt(f"copy {src}", lambda s=src, d=dst: executor.copy_file(s, d)) and ok
            continue
        if view.is_file(src) and view.is_file(dst) and view.read_bytes(src) == view.read_bytes(dst):
            continue
        if view.is_symlink(src) and view.is_symlink(dst) and view.readlink(src) == view.readlink(dst):
            continue
        kept = _free_name(ctx, dst)
        if problems.attempt(f"copy {src}", lambda s=src, k=kept: executor.copy_file(s, k)):
            problems.add(f"{dst} differs from {src}; incoming copy kept as {kept.name}")
        else:
            ok = False
    return ok


def _live_config_file(ctx: MigrationContext) -> Path:
    """The config file the installation reads: the one discovery found, else the canonical one."""

    view = ctx.view
    if ctx.record.config_file is not None:
        found = ctx.translate(ctx.record.config_file)
        if view.is_file(found) and not view.is_symlink(found):
            return found
    return ctx.settings.config_file(ctx.target_home)


def _current_workspace(ctx: MigrationContext) -> Path | None:
    view = ctx.view
    if ctx.record.workspace_path is not None:
        translated = ctx.translate(ctx.record.workspace_path)
        if view.is_dir(translated):
            return translated
    home = ctx.target_home
    _raw, configured = WorkspaceResolver(ctx.settings, view).configured_path(home, _live_config_file(ctx))
    if configured is not None and view.is_dir(configured):
        return configured
    return None


def migrate_workspace(ctx: MigrationContext) -> StepResult:
    settings = ctx.settings
    view = ctx.view
    executor = ctx.executor
    problems = _Problems()
    home = ctx.target_home
    canonical = settings.standard_workspace(home)

    current = _current_workspace(ctx)
    if current is None:
        problems.attempt(f"create {canonical}", lambda: executor.mkdir(canonical))
        final = canonical
    elif ctx.plan.standardize_workspace and not view.samefile(current, canonical):
        if view.is_dir(canonical) and view.listdir(canonical):
            if merge_tree(ctx, current, canonical, problems):
                problems.attempt(f"remove {current}", lambda: executor.remove_tree(current))
        else:
            if view.lexists(canonical):
                problems.attempt(f"remove empty {canonical}", lambda: executor.remove(canonical))
            problems.attempt(f"move {current}", lambda: executor.move(current, canonical))
        final = canonical
    else:
        final = current
    ctx.workspace = final

    config_file = _live_config_file(ctx)
    if view.samefile(final, canonical) and view.is_file(config_file) and not view.is_symlink(config_file):
        rewrite_file(ctx, config_file, [workspace_field_rule(settings.canonical_workspace_field)], problems)

    if view.is_dir(final):
        _rewrite_glob(ctx, final, settings.markdown_globs, problems)
    return problems.result()


# 8 ---------------------------------------------------------------------------


def update_scheduled_tasks(ctx: MigrationContext) -> StepResult:
    problems = _Problems()
    user = ctx.target_user
    text = ctx.accounts.read_crontab(user)
    if not text:
        return problems.result()
    outcome = apply_rules(text, ctx.rewrite_rules())
    if outcome.changed:
        problems.attempt(f"crontab of {user}", lambda: ctx.executor.replace_crontab(user, outcome.text))
    return problems.result()


# 9 ---------------------------------------------------------------------------


def _ensure_mode(ctx: MigrationContext, path: Path, mode: int, problems: _Problems) -> None:
    if ctx.view.mode(path) != mode:
        problems.attempt(f"chmod {path}", lambda: ctx.executor.chmod(path, mode))


def fix_ownership(ctx: MigrationContext) -> StepResult:
    settings = ctx.settings
    view = ctx.view
    executor = ctx.executor
    problems = _Problems()
    user = ctx.target_user
    home = ctx.target_home
    real_home = view.resolve(home)

    if view.is_dir(home):
        problems.attempt(f"chown {home}", lambda: executor.change_owner(user, home))
    if ctx.workspace is not None and view.is_dir(ctx.workspace):
        real_ws = view.resolve(ctx.workspace)
        if not within(real_ws, real_home):
            problems.attempt(f"chown {real_ws}", lambda: executor.change_owner(user, real_ws))
    for sub in settings.ownership_subtrees:
        path = home / sub
        if not view.is_symlink(path):
            continue
        real = view.resolve(path)
        if view.is_dir(real) and not within(real, real_home):
            problems.attempt(f"chown {real}", lambda r=real: executor.change_owner(user, r))

    for rel in settings.private_files:
        path = home / rel
        if view.is_file(path) and not view.is_symlink(path):
            _ensure_mode(ctx, path, PRIVATE_FILE_MODE, problems)
    for rel in settings.private_dirs:
        path = home / rel
        if not view.is_dir(path) or view.is_symlink(path):
            continue
        _ensure_mode(ctx, path, PRIVATE_DIR_MODE, problems)
        for name in view.listdir(path):
            child = path / name
            if view.is_file(child) and not view.is_symlink(child):
                _ensure_mode(ctx, child, PRIVATE_FILE_MODE, problems)

    grant = settings.grant_dir / user
    if view.is_file(grant) and not view.is_symlink(grant):
        _ensure_mode(ctx, grant, GRANT_MODE, problems)
    return problems.result()
