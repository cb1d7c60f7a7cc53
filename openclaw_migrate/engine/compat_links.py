"""Backward-compatible symlinks left behind after a migration.

Links are only created where nothing exists. A link already pointing where
it should is left alone, so the step can run any number of times.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path

from openclaw_migrate.domain.models import StepResult
from openclaw_migrate.engine.context import MigrationContext


@dataclass(frozen=True)
class LinkSpec:
    path: Path
    target: str
    # a required link that cannot be created is reported as a problem
    required: bool = False


def planned_links(ctx: MigrationContext) -> list[LinkSpec]:
    settings = ctx.settings
    view = ctx.view
    plan = ctx.plan
    home = ctx.target_home
    config_dir = settings.config_dir(home)
    links: list[LinkSpec] = []

    if plan.renames_account:
        links.append(LinkSpec(plan.old_home, str(plan.new_home), required=True))

    if view.is_dir(config_dir):
        for legacy_dir in settings.legacy_dirs:
            links.append(LinkSpec(home / legacy_dir, settings.config_dir_name))

    if ctx.record.workspace_path is not None and ctx.workspace is not None:
        previous = ctx.translate(ctx.record.workspace_path)
        if previous != ctx.workspace:
            relative = os.path.relpath(ctx.workspace, previous.parent)
            links.append(LinkSpec(previous, relative, required=True))

    if view.is_file(settings.config_file(home)):
        for name in settings.legacy_config_files():
            links.append(LinkSpec(config_dir / name, settings.config_file_name))
    return links


def create_compat_links(ctx: MigrationContext) -> StepResult:
    view = ctx.view
    problems: list[str] = []
    for link in planned_links(ctx):
        if view.is_symlink(link.path):
            if view.readlink(link.path) != link.target and link.required:
                problems.append(f"{link.path} is a link to {view.readlink(link.path)}, expected {link.target}")
            continue
        if view.lexists(link.path):
            if link.required:
                problems.append(f"{link.path} exists and is not a link; left in place")
            continue
        if not view.is_dir(link.path.parent):
            continue
        try:
            ctx.executor.symlink(link.path, link.target)
        except OSError as exc:
            problems.append(f"link {link.path}: {exc}")
    return StepResult(problems=tuple(problems))
