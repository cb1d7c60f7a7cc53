"""Error taxonomy for discovery, validation, and migration.

Each error carries a stable reason code so the CLI, the run report, and the
error log can classify failures without parsing messages.
"""

from __future__ import annotations


class MigrationError(RuntimeError):
    reason = "BLOCKED-MIGRATION"

    def __init__(self, message: str, *, reason: str | None = None):
        super().__init__(message)
        if reason is not None:
            self.reason = reason

    def __str__(self) -> str:
        return f"{self.args[0]} (Reason: {self.reason})"


class ValidationError(MigrationError):
    """Bad input detected before any mutation (username, target, ambiguity)."""

    reason = "BLOCKED-VALIDATION"


class PolicyError(MigrationError):
    """Migration policy file missing or invalid."""

    reason = "BLOCKED-POLICY"


class PreflightError(MigrationError):
    """Preflight reported errors and no override was given."""

    reason = "BLOCKED-PREFLIGHT"


class FatalMigrationError(MigrationError):
    """A fatal step failed; later steps would assume state that does not exist."""

    reason = "BLOCKED-FATAL-STEP"


class RecoverableStepError(MigrationError):
    """A single item inside a step failed; the step is incomplete."""

    reason = "WARN-STEP-INCOMPLETE"


class CommandFailed(MigrationError):
    reason = "BLOCKED-COMMAND-FAILED"

    def __init__(self, argv: tuple[str, ...], returncode: int, stderr: str):
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else "no output"
        super().__init__(f"command failed ({returncode}): {' '.join(argv)}: {detail}")
        self.argv = argv
        self.returncode = returncode
        self.stderr = stderr


class UserAbort(Exception):
    """Operator declined a confirmation gate. Not an error: exit code 0."""

    def __init__(self, gate: str):
        super().__init__(gate)
        self.gate = gate
