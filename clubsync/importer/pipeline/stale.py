"""
Detection and conservative cleanup of id mappings that recent syncs have
not touched. Cleanup removes mapping rows only; local entities stay.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List

from clubsync.models import WaEntityType

from .id_mapping import IdMappingStore
from .sync_state import ensure_utc

DEFAULT_STALE_DAYS = 7
DEFAULT_CLEANUP_DAYS = 30

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class StaleRecord:
    entity_type: str
    wa_id: int
    local_id: int
    last_synced_at: datetime
    stale_days: int

    def as_dict(self) -> Dict[str, object]:
        return {
            "entity_type": self.entity_type,
            "wa_id": self.wa_id,
            "local_id": self.local_id,
            "last_synced_at": self.last_synced_at.isoformat(),
            "stale_days": self.stale_days,
        }


@dataclass
class StaleDetectionResult:
    threshold: datetime
    stale_days_threshold: int
    records: List[StaleRecord] = field(default_factory=list)

    def _of(self, entity_type: WaEntityType) -> List[StaleRecord]:
        return [record for record in self.records if record.entity_type == entity_type.value]

    @property
    def stale_members(self) -> List[StaleRecord]:
        return self._of(WaEntityType.MEMBER)

    @property
    def stale_events(self) -> List[StaleRecord]:
        return self._of(WaEntityType.EVENT)

    @property
    def stale_registrations(self) -> List[StaleRecord]:
        return self._of(WaEntityType.EVENT_REGISTRATION)

    def counts(self) -> Dict[str, object]:
        return {
            "total": len(self.records),
            "members": len(self.stale_members),
            "events": len(self.stale_events),
            "registrations": len(self.stale_registrations),
            "threshold": self.threshold.isoformat(),
        }


def detect_stale_mappings(
    days: int = DEFAULT_STALE_DAYS,
    *,
    mappings: IdMappingStore | None = None,
    now_fn: Callable[[], datetime] = _utcnow,
) -> StaleDetectionResult:
    mappings = mappings or IdMappingStore()
    now = now_fn()
    threshold = now - timedelta(days=days)
    result = StaleDetectionResult(threshold=threshold, stale_days_threshold=days)
    for mapping in mappings.synced_before(threshold):
        synced_at = ensure_utc(mapping.synced_at)
        result.records.append(
            StaleRecord(
                entity_type=mapping.entity_type,
                wa_id=int(mapping.wa_id),
                local_id=int(mapping.local_id),
                last_synced_at=synced_at,
                stale_days=(now - synced_at).days,
            )
        )
    return result


def get_stale_record_counts(
    days: int = DEFAULT_CLEANUP_DAYS,
    *,
    mappings: IdMappingStore | None = None,
    now_fn: Callable[[], datetime] = _utcnow,
) -> Dict[str, object]:
    return detect_stale_mappings(days, mappings=mappings, now_fn=now_fn).counts()


def cleanup_stale_mappings(
    days: int = DEFAULT_CLEANUP_DAYS,
    dry_run: bool = True,
    *,
    mappings: IdMappingStore | None = None,
    now_fn: Callable[[], datetime] = _utcnow,
) -> Dict[str, object]:
    """Count (dry run) or delete stale mapping rows older than ``days``."""

    mappings = mappings or IdMappingStore()
    detection = detect_stale_mappings(days, mappings=mappings, now_fn=now_fn)
    summary = detection.counts()
    summary["dry_run"] = dry_run
    if dry_run:
        summary["removed"] = 0
        return summary

    stale_rows = mappings.synced_before(detection.threshold)
    try:
        removed = mappings.delete(stale_rows)
        mappings.session.commit()
    except Exception:
        mappings.session.rollback()
        raise
    logger.info(
        "Removed stale Wild Apricot id mappings",
        extra={"stale_days": days, "stale_removed": removed},
    )
    summary["removed"] = removed
    return summary


__all__ = [
    "DEFAULT_CLEANUP_DAYS",
    "DEFAULT_STALE_DAYS",
    "StaleDetectionResult",
    "StaleRecord",
    "cleanup_stale_mappings",
    "detect_stale_mappings",
    "get_stale_record_counts",
]
