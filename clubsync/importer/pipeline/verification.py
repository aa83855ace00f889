"""
Post-sync verification: compare a sync report against what the local store
actually holds. Read-only.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from sqlalchemy import func, select

from clubsync.models import Event, EventRegistration, Member, WaEntityType

from .id_mapping import IdMappingStore
from .invariants import validate_id_mappings, validate_report
from .store import MODELS_BY_ENTITY, LocalStore

SEVERITY_ERROR = "error"
SEVERITY_WARNING = "warning"
SEVERITY_INFO = "info"


@dataclass(frozen=True)
class VerificationCheck:
    category: str
    name: str
    passed: bool
    expected: Any
    actual: Any
    severity: str
    message: str = ""

    def as_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "name": self.name,
            "passed": self.passed,
            "expected": self.expected,
            "actual": self.actual,
            "severity": self.severity,
            "message": self.message,
        }


@dataclass
class VerificationResult:
    run_id: str | None
    duration_ms: int = 0
    checks: List[VerificationCheck] = field(default_factory=list)
    database_counts: Dict[str, int] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return all(check.passed or check.severity != SEVERITY_ERROR for check in self.checks)

    @property
    def summary(self) -> Dict[str, int]:
        return {
            "total": len(self.checks),
            "passed": sum(1 for check in self.checks if check.passed),
            "failed": sum(1 for check in self.checks if not check.passed and check.severity == SEVERITY_ERROR),
            "warnings": sum(1 for check in self.checks if not check.passed and check.severity == SEVERITY_WARNING),
        }

    def as_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "passed": self.passed,
            "duration_ms": self.duration_ms,
            "summary": self.summary,
            "database_counts": dict(self.database_counts),
            "checks": [check.as_dict() for check in self.checks],
        }


def _count_check(name: str, expected_minimum: int, actual: int) -> VerificationCheck:
    passed = actual >= expected_minimum
    message = (
        f"{name}: {actual} rows (report created {expected_minimum})"
        if passed
        else f"{name}: report created {expected_minimum} rows but only {actual} exist"
    )
    return VerificationCheck(
        "counts",
        name,
        passed,
        expected_minimum,
        actual,
        SEVERITY_INFO if passed else SEVERITY_ERROR,
        message,
    )


def _orphaned_registrations(store: LocalStore) -> int:
    stmt = (
        select(func.count(EventRegistration.id))
        .outerjoin(Member, Member.id == EventRegistration.member_id)
        .outerjoin(Event, Event.id == EventRegistration.event_id)
        .where((Member.id.is_(None)) | (Event.id.is_(None)))
    )
    return int(store.session.scalar(stmt) or 0)


def verify_sync(
    report: Mapping[str, Any],
    *,
    store: LocalStore | None = None,
    mappings: IdMappingStore | None = None,
) -> VerificationResult:
    started = time.monotonic()
    store = store or LocalStore()
    mappings = mappings or IdMappingStore(store.session)
    result = VerificationResult(run_id=report.get("runId"))

    violations = validate_report(report)
    result.checks.append(
        VerificationCheck(
            "integrity",
            "Report Structure",
            not violations,
            0,
            len(violations),
            SEVERITY_ERROR if violations else SEVERITY_INFO,
            "; ".join(f"[{item.code}] {item.message}" for item in violations[:5]),
        )
    )

    counts = {
        "members": store.count(WaEntityType.MEMBER),
        "events": store.count(WaEntityType.EVENT),
        "registrations": store.count(WaEntityType.EVENT_REGISTRATION),
    }
    result.database_counts = counts
    stats = report.get("stats") or {}
    if not report.get("dryRun"):
        for key, label in (("members", "Member Count"), ("events", "Event Count"), ("registrations", "Registration Count")):
            created = int((stats.get(key) or {}).get("created") or 0)
            result.checks.append(_count_check(label, created, counts[key]))

    fetched = report.get("fetched") or {}
    for fetched_key, stats_key in (("contacts", "members"), ("events", "events"), ("registrations", "registrations")):
        parsed = (stats.get(stats_key) or {}).get("parsed")
        matches = parsed == fetched.get(fetched_key)
        result.checks.append(
            VerificationCheck(
                "counts",
                f"Fetched vs Parsed ({stats_key})",
                matches,
                fetched.get(fetched_key),
                parsed,
                SEVERITY_INFO if matches else SEVERITY_WARNING,
            )
        )

    orphaned = _orphaned_registrations(store)
    result.checks.append(
        VerificationCheck(
            "integrity",
            "Orphaned Registrations",
            orphaned == 0,
            0,
            orphaned,
            SEVERITY_INFO if orphaned == 0 else SEVERITY_ERROR,
            "Registrations whose member or event row is missing",
        )
    )

    duplicates = mappings.duplicate_wa_ids()
    result.checks.append(
        VerificationCheck(
            "integrity",
            "Duplicate Mappings",
            not duplicates,
            0,
            len(duplicates),
            SEVERITY_INFO if not duplicates else SEVERITY_ERROR,
        )
    )

    for entity_type in WaEntityType:
        model = MODELS_BY_ENTITY[entity_type]
        entries = [{"waId": row.wa_id, "localId": row.local_id} for row in mappings.all(entity_type)]
        local_ids = set(store.session.scalars(select(model.id)))
        mapping_violations = validate_id_mappings(entries, entity_type.value, known_local_ids=local_ids)
        covered = len({entry["localId"] for entry in entries} & local_ids)
        result.checks.append(
            VerificationCheck(
                "integrity",
                f"{entity_type.value} Mapping Coverage",
                not mapping_violations,
                len(local_ids),
                covered,
                SEVERITY_INFO if not mapping_violations else SEVERITY_WARNING,
                "; ".join(f"[{item.code}] {item.message}" for item in mapping_violations[:5]),
            )
        )

    result.duration_ms = int((time.monotonic() - started) * 1000)
    return result


__all__ = ["VerificationCheck", "VerificationResult", "verify_sync"]
