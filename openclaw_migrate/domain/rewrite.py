"""Ordered text rewrite rules.

A rule set is applied left to right by ``apply_rules``; rules never touch the
filesystem so they can be tested and previewed on their own.
"""

from __future__ import annotations

from dataclasses import dataclass
import re
from pathlib import Path
from typing import Iterable, Sequence

# Characters that may continue a username or directory name. A path rule only
# matches when the name is not followed by one of these.
_NAME_TAIL = r"(?![A-Za-z0-9_.\-])"
_IDENT_EDGE = r"[A-Za-z0-9_\-]"

_WORKSPACE_FIELD = re.compile(r'("workspace"\s*:\s*)"([^"]*)"')


@dataclass(frozen=True)
class RewriteRule:
    pattern: re.Pattern[str]
    replacement: str
    label: str

    def apply(self, text: str) -> tuple[str, int]:
        """Replace every match; only matches that actually change are counted."""

        changed = 0

        def _sub(m: re.Match[str]) -> str:
            nonlocal changed
            if m.group(0) != self.replacement:
                changed += 1
            return self.replacement

        return self.pattern.sub(_sub, text), changed


@dataclass(frozen=True)
class RewriteOutcome:
    text: str
    replacements: int

    @property
    def changed(self) -> bool:
        return self.replacements > 0


def apply_rules(text: str, rules: Sequence[RewriteRule]) -> RewriteOutcome:
    total = 0
    for rule in rules:
        text, n = rule.apply(text)
        total += n
    return RewriteOutcome(text=text, replacements=total)


def literal_path_rule(old: str, new: str) -> RewriteRule:
    return RewriteRule(
        pattern=re.compile(re.escape(old) + _NAME_TAIL),
        replacement=new,
        label=f"{old} → {new}",
    )


def home_path_rules(
    home_root: Path,
    old_user: str,
    new_user: str,
    legacy_names: Iterable[str],
) -> list[RewriteRule]:
    """Rules mapping the old home and every legacy alias home to the new home.

    Longer names come first so ``/home/clawdbot`` is not eaten by ``/home/clawd``.
    Identity rules are dropped.
    """

    new_home = str(home_root / new_user)
    names = [old_user, *[n for n in legacy_names if n != old_user]]
    seen: set[str] = set()
    rules: list[RewriteRule] = []
    for name in sorted(names, key=lambda n: (-len(n), n)):
        old_home = str(home_root / name)
        if old_home == new_home or old_home in seen:
            continue
        seen.add(old_home)
        rules.append(literal_path_rule(old_home, new_home))
    return rules


def legacy_dir_rules(legacy_dirs: Iterable[str], canonical_dir: str) -> list[RewriteRule]:
    rules: list[RewriteRule] = []
    for legacy_dir in sorted(set(legacy_dirs), key=lambda n: (-len(n), n)):
        if legacy_dir == canonical_dir:
            continue
        rules.append(
            RewriteRule(
                pattern=re.compile(r"(?<=/)" + re.escape(legacy_dir) + _NAME_TAIL),
                replacement=canonical_dir,
                label=f"{legacy_dir} → {canonical_dir}",
            )
        )
    return rules


def identifier_rule(old: str, new: str) -> RewriteRule:
    """Whole-identifier replacement, used for account names inside grant files."""

    return RewriteRule(
        pattern=re.compile(rf"(?<!{_IDENT_EDGE}){re.escape(old)}(?!{_IDENT_EDGE})"),
        replacement=new,
        label=f"{old} → {new} (identifier)",
    )


def workspace_field_rule(value: str) -> RewriteRule:
    return RewriteRule(
        pattern=_WORKSPACE_FIELD,
        replacement=f'"workspace": "{value}"',
        label=f"workspace → {value}",
    )


def read_workspace_field(text: str) -> str | None:
    """First ``"workspace": "<path>"`` value in a JSON or JSON5 config."""

    m = _WORKSPACE_FIELD.search(text)
    if m is None:
        return None
    value = m.group(2).strip()
    return value or None


def expand_home(raw: str, home: Path) -> Path:
    if raw == "~":
        return home
    if raw.startswith("~/"):
        return home / raw[2:]
    return Path(raw)


def translate_path(path: Path, rules: Sequence[RewriteRule]) -> Path:
    return Path(apply_rules(str(path), rules).text)
