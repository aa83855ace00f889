"""Per-account sync timestamps and incremental lookback windows."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from clubsync.models import WaSyncState, db


def ensure_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat them as UTC."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SyncStateStore:
    def __init__(self, account_id: str, session: Session | None = None):
        self.account_id = str(account_id)
        self.session = session or db.session

    def get(self) -> WaSyncState | None:
        stmt = select(WaSyncState).where(WaSyncState.account_id == self.account_id)
        return self.session.scalars(stmt).first()

    def get_or_create(self) -> WaSyncState:
        state = self.get()
        if state is None:
            state = WaSyncState(account_id=self.account_id)
            self.session.add(state)
            self.session.flush()
        return state

    def contacts_since(self, now: datetime, lookback_days: int) -> datetime:
        """Window start for incremental contacts: last contact sync, else ``now - lookback``."""

        state = self.get()
        last = ensure_utc(state.last_contact_sync) if state else None
        return last or (now - timedelta(days=lookback_days))

    @staticmethod
    def events_from(now: datetime, lookback_days: int) -> datetime:
        return now - timedelta(days=lookback_days)

    def record_success(self, *, mode: str, synced_at: datetime) -> WaSyncState:
        state = self.get_or_create()
        if mode == "full":
            state.last_full_sync = synced_at
        else:
            state.last_incremental_sync = synced_at
        state.last_contact_sync = synced_at
        state.last_event_sync = synced_at
        state.last_registration_sync = synced_at
        self.session.flush()
        return state

    def snapshot(self) -> dict:
        state = self.get()
        fields = (
            "last_full_sync",
            "last_incremental_sync",
            "last_contact_sync",
            "last_event_sync",
            "last_registration_sync",
        )
        payload = {"account_id": self.account_id}
        for name in fields:
            value = ensure_utc(getattr(state, name)) if state else None
            payload[name] = value.isoformat() if value else None
        return payload


__all__ = ["SyncStateStore", "ensure_utc"]
