"""
SQLAlchemy models backing the Wild Apricot sync engine.

``WaIdMapping`` records which local row a Wild Apricot record was loaded
into, and ``WaSyncState`` keeps the timestamps incremental runs use to
compute their lookback windows.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ..base import BaseModel, db


class WaEntityType(str, enum.Enum):
    """Entity types tracked in the id mapping table."""

    MEMBER = "Member"
    EVENT = "Event"
    EVENT_REGISTRATION = "EventRegistration"


class WaIdMapping(BaseModel):
    """Maps a Wild Apricot identifier to the local entity it was loaded into."""

    __tablename__ = "wa_id_mappings"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    entity_type: Mapped[str] = mapped_column(db.String(50), nullable=False, index=True)
    wa_id: Mapped[int] = mapped_column(db.BigInteger, nullable=False)
    local_id: Mapped[int] = mapped_column(db.Integer, nullable=False)
    synced_at: Mapped[datetime] = mapped_column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        comment="Last time a sync touched this mapping; drives stale detection.",
    )

    __table_args__ = (
        UniqueConstraint("entity_type", "wa_id", name="uq_wa_id_mapping_source"),
        UniqueConstraint("entity_type", "local_id", name="uq_wa_id_mapping_local"),
        Index("idx_wa_id_mapping_synced_at", "synced_at"),
    )

    def mark_synced(self, *, synced_at: datetime | None = None) -> None:
        """Refresh the liveness timestamp after a create, update, or no-op confirmation."""

        self.synced_at = synced_at or datetime.now(timezone.utc)

    def __repr__(self) -> str:
        return f"<WaIdMapping {self.entity_type} wa={self.wa_id} local={self.local_id}>"


class WaSyncState(BaseModel):
    """Singleton (per account) record of the last successful sync timestamps."""

    __tablename__ = "wa_sync_state"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(db.String(64), nullable=False, unique=True)
    last_full_sync: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    last_incremental_sync: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    last_contact_sync: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    last_event_sync: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    last_registration_sync: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<WaSyncState account={self.account_id} full={self.last_full_sync}>"


__all__ = ["WaEntityType", "WaIdMapping", "WaSyncState"]
