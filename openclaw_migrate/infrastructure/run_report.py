"""Run report and error log writer.

One JSON report per apply run plus one JSONL file per error event, both in
the policy log dir. Dry-run callers never reach this module.
"""

from __future__ import annotations

import hashlib
import json
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Sequence

from openclaw_migrate.infrastructure.fs_atomic import atomic_write_json, atomic_write_text

REPORT_SCHEMA = "openclaw-migrate.run-report.v1"
ERROR_SCHEMA = "openclaw-migrate.error-log.v1"


def _utc_now() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _today_iso() -> str:
    return datetime.now(timezone.utc).date().isoformat()


def _normalize_value(value: Any) -> Any:
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(k): _normalize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize_value(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def compute_run_id(old_user: str, new_user: str, timestamp: str) -> str:
    payload = json.dumps(
        {"old_user": old_user, "new_user": new_user, "timestamp": timestamp},
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


def create_run_report(
    *,
    plan: Mapping[str, Any],
    record: Mapping[str, Any] | None,
    journal: Sequence[str],
    completed: Sequence[str],
    skipped: Sequence[str],
    incomplete: Sequence[tuple[str, Sequence[str]]],
    aborted_at: str | None,
    abort_reason: str | None,
    exit_code: int,
) -> dict[str, Any]:
    timestamp = _utc_now()
    if aborted_at is not None:
        result = "ABORTED"
    elif incomplete:
        result = "INCOMPLETE"
    else:
        result = "OK"
    return {
        "schema": REPORT_SCHEMA,
        "run_id": compute_run_id(str(plan.get("old_user", "")), str(plan.get("new_user", "")), timestamp),
        "timestamp": timestamp,
        "result": result,
        "exit_code": exit_code,
        "plan": _normalize_value(dict(plan)),
        "record": _normalize_value(dict(record)) if record is not None else None,
        "steps": {
            "completed": list(completed),
            "skipped": list(skipped),
            "incomplete": [{"step": name, "problems": list(problems)} for name, problems in incomplete],
        },
        "aborted_at": aborted_at,
        "abort_reason": abort_reason,
        "journal": list(journal),
    }


def write_run_report(report: Mapping[str, Any], log_dir: Path) -> Path:
    """Write the report as ``run-<id>.json`` and point ``latest.json`` at it."""

    if not log_dir.is_absolute():
        raise ValueError("log_dir must be absolute")
    log_dir.mkdir(parents=True, exist_ok=True)
    run_file = log_dir / f"run-{report['run_id']}.json"
    atomic_write_json(run_file, dict(report), ensure_ascii=True, indent=2)

    latest_link = log_dir / "latest.json"
    if latest_link.exists() or latest_link.is_symlink():
        latest_link.unlink()
    latest_link.symlink_to(run_file.name)
    return run_file


def write_error_event(
    log_dir: Path,
    *,
    reason_key: str,
    message: str,
    step: str = "unknown",
    old_user: str | None = None,
    new_user: str | None = None,
    result: str = "blocked",
    details: Any = None,
) -> Path:
    event_id = uuid.uuid4().hex
    target = log_dir / f"errors-{_today_iso()}-{event_id}.jsonl"
    record = {
        "schema": ERROR_SCHEMA,
        "eventId": event_id,
        "timestamp": _utc_now(),
        "level": "error" if result == "blocked" else "warning",
        "reasonKey": str(reason_key),
        "step": str(step),
        "oldUser": old_user,
        "newUser": new_user,
        "message": str(message),
        "result": str(result),
        "pid": os.getpid(),
        "details": _normalize_value(details),
    }
    # one file per event, written whole
    atomic_write_text(target, json.dumps(record, ensure_ascii=True) + "\n")
    return target
