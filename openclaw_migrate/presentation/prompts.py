"""Confirmation and free-text prompts.

Every prompt has a default so a non-interactive run can answer all of them.
"""

from __future__ import annotations

import sys
from typing import Protocol


def is_interactive() -> bool:
    # conservative: require both stdin and stdout to be TTY
    return sys.stdin.isatty() and sys.stdout.isatty()


class Prompter(Protocol):
    interactive: bool

    def confirm(self, question: str, default: bool) -> bool:
        ...

    def ask(self, question: str, default: str) -> str:
        ...


class InteractivePrompter:
    interactive = True

    def confirm(self, question: str, default: bool) -> bool:
        hint = "[Y/n]" if default else "[y/N]"
        while True:
            try:
                resp = input(f"{question} {hint} ").strip().lower()
            except EOFError:
                return default
            if not resp:
                return default
            if resp in ("y", "yes"):
                return True
            if resp in ("n", "no"):
                return False
            print("  Please answer y or n.")

    def ask(self, question: str, default: str) -> str:
        suffix = f" [{default}]" if default else ""
        try:
            resp = input(f"{question}{suffix}: ").strip()
        except EOFError:
            return default
        return resp or default


class NonInteractivePrompter:
    """Answers every prompt with its default."""

    interactive = False

    def confirm(self, question: str, default: bool) -> bool:
        return default

    def ask(self, question: str, default: str) -> str:
        return default
