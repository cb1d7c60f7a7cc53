"""Synchronous external command execution."""

from __future__ import annotations

from dataclasses import dataclass
import subprocess
from typing import Protocol, Sequence


@dataclass(frozen=True)
class CommandResult:
    argv: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner(Protocol):
    def run(self, argv: Sequence[str], *, input_text: str | None = None) -> CommandResult:
        ...


class SubprocessRunner:
    """Blocks on each command; a missing binary is reported as exit code 127."""

    def __init__(self, timeout_seconds: float | None = None):
        self._timeout = timeout_seconds

    def run(self, argv: Sequence[str], *, input_text: str | None = None) -> CommandResult:
        args = tuple(str(a) for a in argv)
        try:
            proc = subprocess.run(
                list(args),
                input=input_text,
                text=True,
                capture_output=True,
                check=False,
                timeout=self._timeout,
            )
        except FileNotFoundError as exc:
            return CommandResult(argv=args, returncode=127, stderr=str(exc))
        return CommandResult(argv=args, returncode=proc.returncode, stdout=proc.stdout or "", stderr=proc.stderr or "")
