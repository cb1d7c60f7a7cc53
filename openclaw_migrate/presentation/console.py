"""Operator-facing output.

Plain ``print`` with status glyphs; errors and warnings about failures go to
stderr. Nothing here decides anything.
"""

from __future__ import annotations

import sys
from typing import Iterable, TextIO


def eprint(*args, **kwargs):
    print(*args, file=sys.stderr, **kwargs)


class Console:
    def __init__(self, out: TextIO | None = None, err: TextIO | None = None):
        self._out = out
        self._err = err

    def _emit(self, text: str, *, error: bool = False) -> None:
        stream = self._err if error else self._out
        if stream is None:
            stream = sys.stderr if error else sys.stdout
        print(text, file=stream)

    def banner(self, title: str, lines: Iterable[str] = ()) -> None:
        self._emit("=" * 60)
        self._emit(title)
        for line in lines:
            self._emit(line)
        self._emit("=" * 60)

    def section(self, title: str) -> None:
        self._emit(f"\n▶ {title}")

    def line(self, text: str = "") -> None:
        self._emit(text)

    def ok(self, text: str) -> None:
        self._emit(f"  ✅ {text}")

    def info(self, text: str) -> None:
        self._emit(f"  ℹ️  {text}")

    def warn(self, text: str) -> None:
        self._emit(f"  ⚠️  {text}")

    def error(self, text: str) -> None:
        self._emit(f"❌ {text}", error=True)

    def dry_run(self, text: str) -> None:
        self._emit(f"  [DRY-RUN] Would {text}")
