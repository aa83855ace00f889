"""JSON sync report built from a finished :class:`SyncRun`."""

from __future__ import annotations

import json
import os
from typing import Any, Dict

from .orchestrator import SyncRun

REPORT_VERSION = 1
MAX_REPORTED_ERRORS = 50


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


def build_sync_report(run: SyncRun) -> Dict[str, Any]:
    report: Dict[str, Any] = {
        "version": REPORT_VERSION,
        "runId": run.run_id,
        "mode": run.mode.value,
        "startedAt": _iso(run.started_at),
        "finishedAt": _iso(run.finished_at),
        "durationMs": run.duration_ms,
        "success": run.success,
        "dryRun": run.dry_run,
        "fetched": {
            "contacts": run.fetched_contacts,
            "events": run.fetched_events,
            "registrations": run.registration_diagnostics.registrations_fetched_total,
        },
        "warnings": [warning.as_dict() for warning in run.warnings],
        "stats": {key: stats.to_dict() for key, stats in run.stats.items()},
        "registrationDiagnostics": run.registration_diagnostics.to_dict(),
        "errors": run.errors[:MAX_REPORTED_ERRORS],
        "totalErrorCount": len(run.errors),
    }
    if run.fatal_error:
        report["fatalError"] = run.fatal_error
    if run.window:
        report["window"] = dict(run.window)
    if run.dry_run:
        report["plannedCreates"] = {
            key: sum(1 for planned in run.planned if planned.entity_type.value == entity)
            for key, entity in (("members", "Member"), ("events", "Event"), ("registrations", "EventRegistration"))
        }
    return report


def write_sync_report(report: Dict[str, Any], path: str) -> str:
    """Write ``report`` as indented JSON, creating parent directories."""

    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(report, handle, indent=2, default=str)
        handle.write("\n")
    return path


def load_sync_report(path: str) -> Dict[str, Any]:
    if not os.path.exists(path):
        raise FileNotFoundError(f"Sync report not found: {path}")
    with open(path, "r", encoding="utf-8") as handle:
        return json.load(handle)


__all__ = ["MAX_REPORTED_ERRORS", "REPORT_VERSION", "build_sync_report", "load_sync_report", "write_sync_report"]
