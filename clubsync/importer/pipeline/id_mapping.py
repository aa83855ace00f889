"""
Persistent Wild Apricot id -> local id correspondence.

Lookups go through an in-memory view loaded once per entity type, so the
registration phase can resolve member/event ids without a query per row.
Dry runs register placeholder ids in that view without touching the table.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Iterable, List

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from clubsync.models import WaEntityType, WaIdMapping, db


def _type_key(entity_type: WaEntityType | str) -> str:
    return entity_type.value if isinstance(entity_type, WaEntityType) else str(entity_type)


class IdMappingStore:
    def __init__(self, session: Session | None = None):
        self.session = session or db.session
        self._views: Dict[str, Dict[int, int]] = {}

    # In-memory view -------------------------------------------------------------

    def load(self, entity_type: WaEntityType | str) -> Dict[int, int]:
        key = _type_key(entity_type)
        if key not in self._views:
            rows = self.session.execute(
                select(WaIdMapping.wa_id, WaIdMapping.local_id).where(WaIdMapping.entity_type == key)
            )
            self._views[key] = {int(wa_id): int(local_id) for wa_id, local_id in rows}
        return self._views[key]

    def lookup(self, entity_type: WaEntityType | str, wa_id: int | None) -> int | None:
        if wa_id is None:
            return None
        return self.load(entity_type).get(int(wa_id))

    def remember(self, entity_type: WaEntityType | str, wa_id: int, local_id: int) -> None:
        self.load(entity_type)[int(wa_id)] = int(local_id)

    def forget(self, entity_type: WaEntityType | str, wa_id: int) -> None:
        self.load(entity_type).pop(int(wa_id), None)

    def reset(self) -> None:
        self._views.clear()

    # Table access ---------------------------------------------------------------

    def get(self, entity_type: WaEntityType | str, wa_id: int) -> WaIdMapping | None:
        stmt = select(WaIdMapping).where(
            WaIdMapping.entity_type == _type_key(entity_type),
            WaIdMapping.wa_id == int(wa_id),
        )
        return self.session.scalars(stmt).first()

    def get_by_local_id(self, entity_type: WaEntityType | str, local_id: int) -> WaIdMapping | None:
        stmt = select(WaIdMapping).where(
            WaIdMapping.entity_type == _type_key(entity_type),
            WaIdMapping.local_id == int(local_id),
        )
        return self.session.scalars(stmt).first()

    def is_local_id_mapped(self, entity_type: WaEntityType | str, local_id: int) -> bool:
        if local_id < 0:
            return int(local_id) in self.load(entity_type).values()
        return self.get_by_local_id(entity_type, local_id) is not None

    def create(
        self,
        entity_type: WaEntityType | str,
        wa_id: int,
        local_id: int,
        *,
        synced_at: datetime | None = None,
    ) -> WaIdMapping:
        mapping = WaIdMapping(
            entity_type=_type_key(entity_type),
            wa_id=int(wa_id),
            local_id=int(local_id),
            synced_at=synced_at or datetime.now(timezone.utc),
        )
        self.session.add(mapping)
        self.session.flush()
        self.remember(entity_type, wa_id, local_id)
        return mapping

    def repoint(self, mapping: WaIdMapping, local_id: int, *, synced_at: datetime | None = None) -> WaIdMapping:
        mapping.local_id = int(local_id)
        mapping.mark_synced(synced_at=synced_at)
        self.session.flush()
        self.remember(mapping.entity_type, mapping.wa_id, local_id)
        return mapping

    def touch(self, mapping: WaIdMapping, *, synced_at: datetime | None = None) -> WaIdMapping:
        mapping.mark_synced(synced_at=synced_at)
        self.session.flush()
        return mapping

    # Maintenance ----------------------------------------------------------------

    def all(self, entity_type: WaEntityType | str | None = None) -> List[WaIdMapping]:
        stmt = select(WaIdMapping).order_by(WaIdMapping.entity_type, WaIdMapping.wa_id)
        if entity_type is not None:
            stmt = stmt.where(WaIdMapping.entity_type == _type_key(entity_type))
        return list(self.session.scalars(stmt))

    def synced_before(self, cutoff: datetime) -> List[WaIdMapping]:
        stmt = select(WaIdMapping).where(WaIdMapping.synced_at < cutoff).order_by(WaIdMapping.synced_at.asc())
        return list(self.session.scalars(stmt))

    def delete(self, mappings: Iterable[WaIdMapping]) -> int:
        ids = [mapping.id for mapping in mappings]
        if not ids:
            return 0
        result = self.session.execute(delete(WaIdMapping).where(WaIdMapping.id.in_(ids)))
        self.reset()
        return int(result.rowcount or 0)

    def duplicate_wa_ids(self) -> List[tuple[str, int, int]]:
        stmt = (
            select(WaIdMapping.entity_type, WaIdMapping.wa_id, func.count())
            .group_by(WaIdMapping.entity_type, WaIdMapping.wa_id)
            .having(func.count() > 1)
        )
        return [(entity_type, int(wa_id), int(count)) for entity_type, wa_id, count in self.session.execute(stmt)]


__all__ = ["IdMappingStore"]
