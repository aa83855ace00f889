"""
Per-run counters, the registration skip-reason histogram, and the advisory
warning rules evaluated after a sync finishes.
"""

from __future__ import annotations

import enum
import random
import string
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Dict, List

SUSPICIOUS_CONTACT_THRESHOLD = 100
SUSPICIOUS_EVENT_THRESHOLD = 10
HIGH_MEMBER_SKIP_RATIO = 0.9
HIGH_MEMBER_SKIP_MIN_FETCHED = 100
TOP_SKIP_REASONS_LIMIT = 10

_BASE36 = string.digits + string.ascii_lowercase


class SkipReason(str, enum.Enum):
    """Why a source record was not written."""

    EVENT_NOT_MAPPED = "event_not_mapped"
    MISSING_MEMBER = "missing_member"
    TRANSFORM_ERROR = "transform_error"
    FETCH_FAILED = "fetch_failed"
    PROCESSING_ERROR = "processing_error"
    UNKNOWN_STATUS = "unknown_status"
    DUPLICATE_NATURAL_KEY = "duplicate_natural_key"


class WarningSeverity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class SyncWarning:
    code: str
    message: str
    severity: WarningSeverity

    def as_dict(self) -> Dict[str, str]:
        return {"code": self.code, "message": self.message, "severity": self.severity.value}


@dataclass
class EntityStats:
    parsed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "parsed": self.parsed,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
        }

    @property
    def is_balanced(self) -> bool:
        return self.created + self.updated + self.skipped + self.errors == self.parsed


@dataclass
class RegistrationDiagnostics:
    events_processed: int = 0
    events_skipped_unmapped: int = 0
    registration_fetch_calls: int = 0
    registrations_fetched_total: int = 0
    registrations_transformed_ok: int = 0
    registrations_skipped_missing_event: int = 0
    registrations_skipped_missing_member: int = 0
    registrations_skipped_transform_error: int = 0
    registrations_upserted: int = 0
    skip_reasons: Counter = field(default_factory=Counter)
    skip_details: Dict[SkipReason, str] = field(default_factory=dict)

    def record_skip(self, reason: SkipReason, detail: str | None = None) -> None:
        self.skip_reasons[reason] += 1
        if detail and reason not in self.skip_details:
            self.skip_details[reason] = detail

    def top_skip_reasons(self, limit: int = TOP_SKIP_REASONS_LIMIT) -> List[Dict[str, object]]:
        ordered = sorted(self.skip_reasons.items(), key=lambda item: (-item[1], item[0].value))
        return [
            {"reason": reason.value, "count": count, "detail": self.skip_details.get(reason)}
            for reason, count in ordered[:limit]
        ]

    def to_dict(self) -> Dict[str, object]:
        return {
            "eventsProcessed": self.events_processed,
            "eventsSkippedUnmapped": self.events_skipped_unmapped,
            "registrationFetchCalls": self.registration_fetch_calls,
            "registrationsFetchedTotal": self.registrations_fetched_total,
            "registrationsTransformedOk": self.registrations_transformed_ok,
            "registrationsSkippedMissingEvent": self.registrations_skipped_missing_event,
            "registrationsSkippedMissingMember": self.registrations_skipped_missing_member,
            "registrationsSkippedTransformError": self.registrations_skipped_transform_error,
            "registrationsUpserted": self.registrations_upserted,
            "topSkipReasons": self.top_skip_reasons(),
        }


def generate_run_id(
    *,
    clock: Callable[[], float] = time.time,
    random_fn: Callable[[], float] = random.random,
) -> str:
    """``sync_<epoch ms>_<6 base36 chars>``."""

    suffix = "".join(_BASE36[int(random_fn() * 36) % 36] for _ in range(6))
    return f"sync_{int(clock() * 1000)}_{suffix}"


def generate_warnings(
    *,
    mode: str,
    fetched_contacts: int,
    fetched_events: int,
    diagnostics: RegistrationDiagnostics,
) -> List[SyncWarning]:
    """Advisory checks; low-count rules only apply to full runs."""

    warnings: List[SyncWarning] = []
    full = mode == "full"

    if full and 0 < fetched_contacts < SUSPICIOUS_CONTACT_THRESHOLD:
        warnings.append(
            SyncWarning(
                "LOW_CONTACT_COUNT",
                f"Only {fetched_contacts} contacts fetched from Wild Apricot. Expected at least "
                f"{SUSPICIOUS_CONTACT_THRESHOLD}. Check API filters or credentials.",
                WarningSeverity.HIGH,
            )
        )

    if full and 0 < fetched_events < SUSPICIOUS_EVENT_THRESHOLD:
        warnings.append(
            SyncWarning(
                "LOW_EVENT_COUNT",
                f"Only {fetched_events} events fetched from Wild Apricot. Expected at least "
                f"{SUSPICIOUS_EVENT_THRESHOLD}. Check date range or API filters.",
                WarningSeverity.MEDIUM,
            )
        )

    fetched = diagnostics.registrations_fetched_total
    if fetched > 0 and diagnostics.registrations_upserted == 0:
        top = "; ".join(f"{item['reason']}: {item['count']}" for item in diagnostics.top_skip_reasons(3))
        warnings.append(
            SyncWarning(
                "ZERO_REGISTRATIONS_UPSERTED",
                f"Fetched {fetched} registrations but upserted 0. Top skip reasons: {top or 'unknown'}",
                WarningSeverity.HIGH,
            )
        )

    ratio = diagnostics.registrations_skipped_missing_member / fetched if fetched else 0.0
    if ratio > HIGH_MEMBER_SKIP_RATIO and fetched > HIGH_MEMBER_SKIP_MIN_FETCHED:
        warnings.append(
            SyncWarning(
                "HIGH_MEMBER_SKIP_RATIO",
                f"{round(ratio * 100)}% of registrations skipped due to missing member mapping. "
                "Ensure members are synced before registrations.",
                WarningSeverity.HIGH,
            )
        )

    if full and fetched_contacts == 0:
        warnings.append(
            SyncWarning(
                "ZERO_CONTACTS",
                "No contacts fetched from Wild Apricot. Check API connectivity and credentials.",
                WarningSeverity.HIGH,
            )
        )

    return warnings


__all__ = [
    "EntityStats",
    "RegistrationDiagnostics",
    "SkipReason",
    "SyncWarning",
    "WarningSeverity",
    "generate_run_id",
    "generate_warnings",
]
