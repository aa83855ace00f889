"""
Local-store access for the sync pipeline.

Wraps the SQLAlchemy models behind the small surface the orchestrator
needs: natural-key and id lookups, create/update, registration lookup by
(event, member), audit appends, and membership status resolution.
"""

from __future__ import annotations

import enum
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Dict, Mapping

from sqlalchemy import func, select, text
from sqlalchemy.orm import Session

from clubsync.models import AuditLog, Event, EventRegistration, Member, MembershipStatus, WaEntityType, db

AUDIT_SOURCE = "wa_import"

# code -> (label, counts as an active member)
MEMBERSHIP_STATUS_SEEDS: Dict[str, tuple[str, bool]] = {
    "active": ("Active", True),
    "lapsed": ("Lapsed", False),
    "pending_new": ("Pending (new)", False),
    "pending_renewal": ("Pending (renewal)", True),
    "suspended": ("Suspended", False),
    "not_a_member": ("Not a member", False),
    "unknown": ("Unknown", False),
}

MODELS_BY_ENTITY: Dict[WaEntityType, type] = {
    WaEntityType.MEMBER: Member,
    WaEntityType.EVENT: Event,
    WaEntityType.EVENT_REGISTRATION: EventRegistration,
}


def _jsonable(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


def _entity_type(value: WaEntityType | str) -> WaEntityType:
    return value if isinstance(value, WaEntityType) else WaEntityType(value)


class LocalStore:
    """Thin repository over ``db.session`` for members, events, and registrations."""

    def __init__(self, session: Session | None = None):
        self.session = session or db.session

    # Lookups --------------------------------------------------------------------

    def ping(self) -> None:
        self.session.execute(text("SELECT 1"))

    def find_by_id(self, entity_type: WaEntityType | str, local_id: int):
        if local_id is None or local_id < 0:
            return None
        model = MODELS_BY_ENTITY[_entity_type(entity_type)]
        return self.session.get(model, local_id)

    def find_by_natural_key(self, entity_type: WaEntityType | str, key: Any):
        """Members are keyed by email, registrations by ``(event_id, member_id)``; events have none."""

        entity_type = _entity_type(entity_type)
        if entity_type is WaEntityType.MEMBER:
            if not key:
                return None
            return self.session.scalars(select(Member).where(Member.email == key)).first()
        if entity_type is WaEntityType.EVENT_REGISTRATION:
            event_id, member_id = key
            return self.find_registration(event_id, member_id)
        return None

    def find_registration(self, event_id: int, member_id: int) -> EventRegistration | None:
        if event_id is None or member_id is None or event_id < 0 or member_id < 0:
            return None
        stmt = select(EventRegistration).where(
            EventRegistration.event_id == event_id,
            EventRegistration.member_id == member_id,
        )
        return self.session.scalars(stmt).first()

    def count(self, entity_type: WaEntityType | str) -> int:
        model = MODELS_BY_ENTITY[_entity_type(entity_type)]
        return int(self.session.scalar(select(func.count()).select_from(model)) or 0)

    def status_ids_by_code(self) -> Dict[str, int]:
        rows = self.session.execute(select(MembershipStatus.code, MembershipStatus.id))
        return {code: status_id for code, status_id in rows}

    # Writes ---------------------------------------------------------------------

    def seed_membership_statuses(self) -> list[str]:
        """Insert any missing status codes; returns the codes that were created."""

        existing = set(self.session.scalars(select(MembershipStatus.code)))
        created = []
        for code, (label, is_active) in MEMBERSHIP_STATUS_SEEDS.items():
            if code in existing:
                continue
            self.session.add(MembershipStatus(code=code, label=label, is_active_member=is_active))
            created.append(code)
        self.session.flush()
        return created

    def create(self, entity_type: WaEntityType | str, values: Mapping[str, Any]):
        model = MODELS_BY_ENTITY[_entity_type(entity_type)]
        instance = model(**dict(values))
        self.session.add(instance)
        self.session.flush()
        return instance

    def update(self, instance, changes: Mapping[str, Any]):
        for key, value in changes.items():
            setattr(instance, key, value)
        self.session.flush()
        return instance

    def append_audit(
        self,
        action: str,
        entity_type: WaEntityType | str,
        resource_id: int,
        *,
        run_id: str,
        mode: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> AuditLog:
        payload: Dict[str, Any] = {"source": AUDIT_SOURCE, "sync_run_id": run_id, "mode": mode}
        payload.update(metadata or {})
        entry = AuditLog(
            action=action,
            resource_type=_entity_type(entity_type).value,
            resource_id=resource_id,
            metadata_json=_jsonable(payload),
        )
        self.session.add(entry)
        self.session.flush()
        return entry

    @contextmanager
    def transaction(self):
        try:
            yield
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise


__all__ = ["AUDIT_SOURCE", "LocalStore", "MEMBERSHIP_STATUS_SEEDS", "MODELS_BY_ENTITY"]
