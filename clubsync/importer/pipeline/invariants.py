"""
Structural checks over sync reports and id-mapping listings.

Validators return a list of :class:`InvariantViolation`; callers that want
to fail fast pass the list to :func:`assert_no_violations`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

ENTITY_KEYS: tuple[str, ...] = ("members", "events", "registrations")
COUNT_FIELDS: tuple[str, ...] = ("parsed", "created", "updated", "skipped", "errors")
REQUIRED_REPORT_FIELDS: tuple[str, ...] = (
    "version",
    "runId",
    "startedAt",
    "finishedAt",
    "durationMs",
    "success",
    "dryRun",
    "fetched",
    "warnings",
    "stats",
    "registrationDiagnostics",
    "errors",
    "totalErrorCount",
)

MISSING_WA_ID = "MISSING_WA_ID"
MISSING_LOCAL_ID = "MISSING_LOCAL_ID"
DUPLICATE_WA_ID = "DUPLICATE_WA_ID"
DUPLICATE_LOCAL_ID = "DUPLICATE_LOCAL_ID"
ORPHANED_MAPPING = "ORPHANED_MAPPING"
EMPTY_MAPPING = "EMPTY_MAPPING"
MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
INVALID_ENTITY_REPORT = "INVALID_ENTITY_REPORT"
NEGATIVE_COUNT = "NEGATIVE_COUNT"
COUNT_MISMATCH = "COUNT_MISMATCH"
MISSING_RUN_ID = "MISSING_RUN_ID"
NON_DETERMINISTIC_COUNTS = "NON_DETERMINISTIC_COUNTS"
RECORDS_EXCEED_PARSED = "RECORDS_EXCEED_PARSED"
INVALID_TIMESTAMP = "INVALID_TIMESTAMP"


@dataclass(frozen=True)
class InvariantViolation:
    code: str
    message: str
    path: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "path": self.path, "details": dict(self.details)}


class InvariantViolationError(AssertionError):
    def __init__(self, violations: Sequence[InvariantViolation]):
        self.violations = list(violations)
        lines = []
        for index, violation in enumerate(self.violations, start=1):
            where = f" at {violation.path}" if violation.path else ""
            lines.append(f"  {index}. [{violation.code}]{where}: {violation.message}")
        super().__init__(f"Sync invariant violations detected ({len(self.violations)}):\n" + "\n".join(lines))


def assert_no_violations(violations: Sequence[InvariantViolation]) -> None:
    if violations:
        raise InvariantViolationError(violations)


def _is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _valid_timestamp(value: Any) -> bool:
    if isinstance(value, datetime):
        return True
    if not isinstance(value, str) or not value:
        return False
    try:
        datetime.fromisoformat(value[:-1] + "+00:00" if value.endswith("Z") else value)
    except ValueError:
        return False
    return True


def validate_entity_stats(entity: Any, path: str) -> List[InvariantViolation]:
    if not isinstance(entity, Mapping):
        return [InvariantViolation(INVALID_ENTITY_REPORT, f"Missing {path} entity report", path)]

    violations: List[InvariantViolation] = []
    for name in COUNT_FIELDS:
        value = entity.get(name)
        if not _is_count(value):
            violations.append(
                InvariantViolation(INVALID_ENTITY_REPORT, f"{path}.{name} must be an integer", f"{path}.{name}")
            )
        elif value < 0:
            violations.append(
                InvariantViolation(
                    NEGATIVE_COUNT, f"{path}.{name} cannot be negative", f"{path}.{name}", {"value": value}
                )
            )
    if violations:
        return violations

    total = entity["created"] + entity["updated"] + entity["skipped"] + entity["errors"]
    if total != entity["parsed"]:
        violations.append(
            InvariantViolation(
                COUNT_MISMATCH,
                f"{path} counts inconsistent: created({entity['created']}) + updated({entity['updated']}) + "
                f"skipped({entity['skipped']}) + errors({entity['errors']}) = {total}, but parsed = {entity['parsed']}",
                path,
                {key: entity[key] for key in COUNT_FIELDS} | {"sum": total},
            )
        )

    records = entity.get("records")
    if records is not None:
        if not isinstance(records, list):
            violations.append(InvariantViolation(INVALID_ENTITY_REPORT, f"{path}.records is not a list", f"{path}.records"))
        elif len(records) > entity["parsed"]:
            violations.append(
                InvariantViolation(
                    RECORDS_EXCEED_PARSED,
                    f"{path}.records length ({len(records)}) exceeds parsed count ({entity['parsed']})",
                    f"{path}.records",
                    {"records_length": len(records), "parsed": entity["parsed"]},
                )
            )
    return violations


def validate_report(report: Mapping[str, Any]) -> List[InvariantViolation]:
    """Check a sync report for required fields, sane counts, and timestamps."""

    violations: List[InvariantViolation] = []
    if not isinstance(report.get("runId"), str) or not report.get("runId"):
        violations.append(InvariantViolation(MISSING_RUN_ID, "Sync report missing runId", "runId"))

    for name in REQUIRED_REPORT_FIELDS:
        if name != "runId" and name not in report:
            violations.append(InvariantViolation(MISSING_REQUIRED_FIELD, f"Sync report missing {name}", name))

    for name in ("startedAt", "finishedAt"):
        if name in report and not _valid_timestamp(report.get(name)):
            violations.append(
                InvariantViolation(INVALID_TIMESTAMP, f"{name} is not a valid ISO timestamp", name, {"value": report.get(name)})
            )

    stats = report.get("stats")
    if isinstance(stats, Mapping):
        for key in ENTITY_KEYS:
            violations.extend(validate_entity_stats(stats.get(key), f"stats.{key}"))

    for name in ("durationMs", "totalErrorCount"):
        value = report.get(name)
        if _is_count(value) and value < 0:
            violations.append(InvariantViolation(NEGATIVE_COUNT, f"{name} cannot be negative", name, {"value": value}))

    fetched = report.get("fetched")
    if isinstance(fetched, Mapping):
        for key, value in fetched.items():
            if _is_count(value) and value < 0:
                violations.append(
                    InvariantViolation(NEGATIVE_COUNT, f"fetched.{key} cannot be negative", f"fetched.{key}", {"value": value})
                )

    errors = report.get("errors")
    total_errors = report.get("totalErrorCount")
    if isinstance(errors, list) and _is_count(total_errors) and len(errors) > total_errors:
        violations.append(
            InvariantViolation(
                COUNT_MISMATCH,
                f"errors sample ({len(errors)}) exceeds totalErrorCount ({total_errors})",
                "errors",
            )
        )
    return violations


def validate_id_mappings(
    mappings: Iterable[Mapping[str, Any]],
    path: str = "mappings",
    *,
    known_local_ids: Optional[Iterable[int]] = None,
    allow_empty: bool = True,
) -> List[InvariantViolation]:
    """Entries are ``{"waId": ..., "localId": ...}`` for a single entity type."""

    entries = list(mappings)
    violations: List[InvariantViolation] = []
    if not entries:
        if allow_empty:
            return []
        return [InvariantViolation(EMPTY_MAPPING, f"{path} contains no mappings", path)]

    known = set(known_local_ids) if known_local_ids is not None else None
    seen_wa: Dict[Any, int] = {}
    seen_local: Dict[Any, int] = {}
    for index, entry in enumerate(entries):
        entry_path = f"{path}[{index}]"
        wa_id = entry.get("waId")
        local_id = entry.get("localId")

        if wa_id in (None, ""):
            violations.append(InvariantViolation(MISSING_WA_ID, "Mapping entry missing waId", entry_path, {"entry": dict(entry)}))
        elif wa_id in seen_wa:
            violations.append(
                InvariantViolation(
                    DUPLICATE_WA_ID,
                    f"Duplicate WA id: {wa_id}",
                    entry_path,
                    {"wa_id": wa_id, "first_index": seen_wa[wa_id], "second_index": index},
                )
            )
        else:
            seen_wa[wa_id] = index

        if local_id in (None, ""):
            violations.append(
                InvariantViolation(MISSING_LOCAL_ID, "Mapping entry missing localId", entry_path, {"entry": dict(entry)})
            )
            continue
        if local_id in seen_local:
            violations.append(
                InvariantViolation(
                    DUPLICATE_LOCAL_ID,
                    f"Duplicate local id: {local_id}",
                    entry_path,
                    {"local_id": local_id, "first_index": seen_local[local_id], "second_index": index},
                )
            )
        else:
            seen_local[local_id] = index
        if known is not None and local_id not in known:
            violations.append(
                InvariantViolation(
                    ORPHANED_MAPPING,
                    f"Mapping points at missing local id {local_id}",
                    entry_path,
                    {"wa_id": wa_id, "local_id": local_id},
                )
            )
    return violations


def validate_determinism_summary(
    first: Mapping[str, Any],
    second: Mapping[str, Any],
) -> List[InvariantViolation]:
    """Two runs over the same input must report identical per-entity counts."""

    violations: List[InvariantViolation] = []
    for label, summary in (("first", first), ("second", second)):
        if not summary.get("runId"):
            violations.append(InvariantViolation(MISSING_RUN_ID, f"{label} summary missing runId", f"{label}.runId"))
        timestamp = summary.get("startedAt") or summary.get("timestamp")
        if not _valid_timestamp(timestamp):
            violations.append(
                InvariantViolation(INVALID_TIMESTAMP, f"{label} summary has an invalid timestamp", f"{label}.startedAt")
            )

    first_stats = first.get("stats") or {}
    second_stats = second.get("stats") or {}
    for key in ENTITY_KEYS:
        for label, stats in (("first", first_stats), ("second", second_stats)):
            violations.extend(validate_entity_stats(stats.get(key), f"{label}.stats.{key}"))
        left = {name: (first_stats.get(key) or {}).get(name) for name in COUNT_FIELDS}
        right = {name: (second_stats.get(key) or {}).get(name) for name in COUNT_FIELDS}
        if left != right:
            violations.append(
                InvariantViolation(
                    NON_DETERMINISTIC_COUNTS,
                    f"{key} counts differ between runs",
                    f"stats.{key}",
                    {"first": left, "second": right},
                )
            )
    return violations


__all__ = [
    "InvariantViolation",
    "InvariantViolationError",
    "assert_no_violations",
    "validate_determinism_summary",
    "validate_entity_stats",
    "validate_id_mappings",
    "validate_report",
]
