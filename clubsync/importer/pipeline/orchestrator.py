"""
Full and incremental Wild Apricot sync.

One run walks contacts, then events, then registrations for every mapped
event. Each record is reconciled on its own: an existing id mapping wins,
then a natural-key match (member email, or event+member for
registrations), and only then is a new local row created. Record-level
failures are counted and the run keeps going; failing to fetch contacts or
events at all ends the run without further writes.

Dry runs execute the same decisions using reads only. Entities that would
be created get negative placeholder ids so later phases (event chair,
registrations) resolve against them exactly as a live run would.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from clubsync.importer.adapters.wildapricot.client import WildApricotClient
from clubsync.importer.adapters.wildapricot.settings import WildApricotSettings
from clubsync.importer.metrics import record_entity_outcomes, record_sync_run
from clubsync.models import WaEntityType

from .diagnostics import (
    EntityStats,
    RegistrationDiagnostics,
    SkipReason,
    SyncWarning,
    generate_run_id,
    generate_warnings,
)
from .id_mapping import IdMappingStore
from .store import LocalStore
from .sync_state import SyncStateStore
from .transform import (
    contact_status,
    get_event_changes,
    get_member_changes,
    get_registration_changes,
    map_contact_status_to_code,
    transform_contact,
    transform_event,
    transform_registration,
)

REGISTRATION_PROGRESS_INTERVAL = 50
MISSING_MEMBER_LOG_LIMIT = 10

ENTITY_STATS_KEYS: Dict[WaEntityType, str] = {
    WaEntityType.MEMBER: "members",
    WaEntityType.EVENT: "events",
    WaEntityType.EVENT_REGISTRATION: "registrations",
}


class SyncMode(str, enum.Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


@dataclass(frozen=True)
class PlannedEntity:
    """A row a dry run would have created, keyed by its placeholder id."""

    entity_type: WaEntityType
    wa_id: Optional[int]
    placeholder_id: int


@dataclass
class SyncRun:
    run_id: str
    mode: SyncMode
    started_at: datetime
    dry_run: bool
    stats: Dict[str, EntityStats] = field(
        default_factory=lambda: {key: EntityStats() for key in ENTITY_STATS_KEYS.values()}
    )
    registration_diagnostics: RegistrationDiagnostics = field(default_factory=RegistrationDiagnostics)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[SyncWarning] = field(default_factory=list)
    fetched_contacts: int = 0
    fetched_events: int = 0
    finished_at: Optional[datetime] = None
    fatal_error: Optional[str] = None
    window: Dict[str, str] = field(default_factory=dict)
    planned: List[PlannedEntity] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.fatal_error is None and not self.errors

    @property
    def duration_ms(self) -> int:
        if self.finished_at is None:
            return 0
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    def stats_for(self, entity_type: WaEntityType) -> EntityStats:
        return self.stats[ENTITY_STATS_KEYS[entity_type]]

    def add_error(self, entity_type: WaEntityType, wa_id: Any, message: str) -> None:
        self.errors.append({"entityType": entity_type.value, "waId": wa_id, "message": message})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncOrchestrator:
    """Drive a single sync run against one Wild Apricot account."""

    def __init__(
        self,
        client: WildApricotClient,
        settings: WildApricotSettings,
        *,
        store: LocalStore | None = None,
        mappings: IdMappingStore | None = None,
        sync_state: SyncStateStore | None = None,
        dry_run: bool = False,
        now_fn: Callable[[], datetime] = _utcnow,
        run_id_factory: Callable[[], str] = generate_run_id,
        logger: logging.Logger | None = None,
    ) -> None:
        self.client = client
        self.settings = settings
        self.store = store or LocalStore()
        self.mappings = mappings or IdMappingStore(self.store.session)
        self.sync_state = sync_state or SyncStateStore(settings.account_id, self.store.session)
        self.dry_run = dry_run
        self.now = now_fn
        self.run_id_factory = run_id_factory
        self.logger = logger or logging.getLogger(__name__)
        self._status_ids: Dict[str, int] = {}
        self._next_placeholder = -1
        self._planned_keys: Dict[tuple, int] = {}
        # (event id, member id) -> the registration a dry run would leave behind.
        self._planned_registrations: Dict[tuple, Any] = {}

    # Public API -----------------------------------------------------------------

    def run_full(self) -> SyncRun:
        return self.run(SyncMode.FULL)

    def run_incremental(self) -> SyncRun:
        return self.run(SyncMode.INCREMENTAL)

    def run(self, mode: SyncMode | str = SyncMode.FULL) -> SyncRun:
        mode = SyncMode(mode)
        run = SyncRun(run_id=self.run_id_factory(), mode=mode, started_at=self.now(), dry_run=self.dry_run)
        self.mappings.reset()
        self._planned_keys.clear()
        self._planned_registrations.clear()
        self._next_placeholder = -1
        self.logger.info(
            "Starting Wild Apricot sync",
            extra={"importer_run_id": run.run_id, "sync_mode": mode.value, "dry_run": self.dry_run},
        )

        contacts = self._fetch_contacts(run)
        if contacts is not None:
            run.fetched_contacts = len(contacts)
            self._status_ids = self.store.status_ids_by_code()
            self._sync_members(run, contacts)

            events = self._fetch_events(run)
            if events is not None:
                run.fetched_events = len(events)
                self._sync_events(run, events)
                self._sync_registrations(run, events)

        return self._finish(run)

    # Fetch ----------------------------------------------------------------------

    def _fetch_contacts(self, run: SyncRun) -> Optional[List[Mapping[str, Any]]]:
        if run.mode is SyncMode.INCREMENTAL:
            since = self.sync_state.contacts_since(run.started_at, self.settings.contacts_lookback_days)
            run.window["contactsModifiedSince"] = since.isoformat()
            result = self.client.fetch_contacts_modified_since(since)
        else:
            result = self.client.fetch_contacts()
        return self._unwrap_fetch(run, result, WaEntityType.MEMBER, "contacts")

    def _fetch_events(self, run: SyncRun) -> Optional[List[Mapping[str, Any]]]:
        if run.mode is SyncMode.INCREMENTAL:
            start = self.sync_state.events_from(run.started_at, self.settings.events_lookback_days)
            run.window["eventsFrom"] = start.date().isoformat()
            result = self.client.fetch_events_from(start)
        else:
            result = self.client.fetch_events()
        return self._unwrap_fetch(run, result, WaEntityType.EVENT, "events")

    def _unwrap_fetch(self, run: SyncRun, result, entity_type: WaEntityType, label: str):
        if result.ok:
            self.logger.info(
                f"Fetched {len(result.value)} {label} from Wild Apricot",
                extra={"importer_run_id": run.run_id, "wa_fetched": len(result.value)},
            )
            return list(result.value)
        error = result.error
        run.fatal_error = f"Failed to fetch {label}: {error.message}"
        run.add_error(entity_type, None, run.fatal_error)
        self.logger.error(
            "Wild Apricot fetch failed; aborting sync",
            extra={"importer_run_id": run.run_id, "wa_error_kind": error.kind.value, "wa_status_code": error.status_code},
        )
        return None

    # Members --------------------------------------------------------------------

    def _sync_members(self, run: SyncRun, contacts: Sequence[Mapping[str, Any]]) -> None:
        stats = run.stats_for(WaEntityType.MEMBER)
        for batch_index, batch in enumerate(self._batches(contacts), start=1):
            self.logger.info(
                "Processing members batch",
                extra={"importer_run_id": run.run_id, "batch": batch_index, "batch_size": len(batch)},
            )
            for contact in batch:
                stats.parsed += 1
                self._guarded(run, WaEntityType.MEMBER, contact.get("Id"), self._sync_member, run, contact)

    def _sync_member(self, run: SyncRun, contact: Mapping[str, Any]) -> None:
        stats = run.stats_for(WaEntityType.MEMBER)
        wa_id = contact.get("Id")
        code = map_contact_status_to_code(contact_status(contact))
        status_id = self._status_ids.get(code)
        if status_id is None:
            self.logger.warning(
                f"Unknown membership status '{code}' for contact {wa_id}",
                extra={"importer_run_id": run.run_id, "skip_reason": SkipReason.UNKNOWN_STATUS.value},
            )
            stats.skipped += 1
            return

        result = transform_contact(contact, status_id, now=run.started_at)
        if not result.success:
            self.logger.warning(
                f"Transform failed for contact {wa_id}: {result.error}",
                extra={"importer_run_id": run.run_id, "skip_reason": SkipReason.TRANSFORM_ERROR.value},
            )
            stats.skipped += 1
            return
        for message in result.warnings:
            self.logger.warning(message, extra={"importer_run_id": run.run_id})

        data = result.data
        self._reconcile(
            run,
            WaEntityType.MEMBER,
            wa_id,
            data.to_model_kwargs(),
            natural_key=data.email,
            changes_fn=lambda existing: get_member_changes(existing, data),
        )

    # Events ---------------------------------------------------------------------

    def _sync_events(self, run: SyncRun, events: Sequence[Mapping[str, Any]]) -> None:
        stats = run.stats_for(WaEntityType.EVENT)
        for batch_index, batch in enumerate(self._batches(events), start=1):
            self.logger.info(
                "Processing events batch",
                extra={"importer_run_id": run.run_id, "batch": batch_index, "batch_size": len(batch)},
            )
            for event in batch:
                stats.parsed += 1
                self._guarded(run, WaEntityType.EVENT, event.get("Id"), self._sync_event, run, event)

    def _sync_event(self, run: SyncRun, event: Mapping[str, Any]) -> None:
        stats = run.stats_for(WaEntityType.EVENT)
        wa_id = event.get("Id")

        chair_id = None
        organizer_id = ((event.get("Details") or {}).get("Organizer") or {}).get("Id")
        if organizer_id:
            chair_id = self.mappings.lookup(WaEntityType.MEMBER, organizer_id)
            if chair_id is None:
                self.logger.warning(
                    f"Event chair WA ID {organizer_id} not found for event {wa_id}",
                    extra={"importer_run_id": run.run_id},
                )
            elif chair_id < 0:
                chair_id = None

        result = transform_event(event, chair_id)
        if not result.success:
            self.logger.warning(
                f"Transform failed for event {wa_id}: {result.error}",
                extra={"importer_run_id": run.run_id, "skip_reason": SkipReason.TRANSFORM_ERROR.value},
            )
            stats.skipped += 1
            return

        data = result.data
        self._reconcile(
            run,
            WaEntityType.EVENT,
            wa_id,
            data.to_model_kwargs(),
            natural_key=None,
            changes_fn=lambda existing: get_event_changes(existing, data),
        )

    # Shared member/event reconciliation -----------------------------------------

    def _reconcile(
        self,
        run: SyncRun,
        entity_type: WaEntityType,
        wa_id: int,
        values: Mapping[str, Any],
        *,
        natural_key: Any,
        changes_fn: Callable[[Any], Optional[Dict[str, Any]]],
    ) -> None:
        stats = run.stats_for(entity_type)
        local_id = self.mappings.lookup(entity_type, wa_id)

        if local_id is not None and local_id < 0:
            # Seen earlier in this dry run.
            stats.skipped += 1
            return

        if local_id is not None:
            existing = self.store.find_by_id(entity_type, local_id)
            if existing is None:
                self.logger.warning(
                    f"{entity_type.value} {local_id} not found, recreating for WA id {wa_id}",
                    extra={"importer_run_id": run.run_id},
                )
                self._create(run, entity_type, wa_id, values, natural_key, repoint=True)
                return

            changes = changes_fn(existing)
            if self.dry_run:
                if changes:
                    stats.updated += 1
                else:
                    stats.skipped += 1
                return

            with self.store.transaction():
                mapping = self.mappings.get(entity_type, wa_id)
                if changes:
                    self.store.update(existing, changes)
                    self.store.append_audit(
                        "UPDATE",
                        entity_type,
                        existing.id,
                        run_id=run.run_id,
                        mode=run.mode.value,
                        metadata={"wa_id": wa_id, "changes": changes},
                    )
                self.mappings.touch(mapping, synced_at=run.started_at)
            if changes:
                stats.updated += 1
            else:
                stats.skipped += 1
            return

        match = self._find_natural_match(entity_type, natural_key)
        if match is not None:
            self._map_natural_match(run, entity_type, wa_id, match, natural_key)
            return

        self._create(run, entity_type, wa_id, values, natural_key, repoint=False)

    def _find_natural_match(self, entity_type: WaEntityType, natural_key: Any) -> Optional[int]:
        if natural_key is None:
            return None
        planned = self._planned_keys.get((entity_type, natural_key))
        if planned is not None:
            return planned
        existing = self.store.find_by_natural_key(entity_type, natural_key)
        return existing.id if existing is not None else None

    def _map_natural_match(
        self,
        run: SyncRun,
        entity_type: WaEntityType,
        wa_id: int,
        local_id: int,
        natural_key: Any,
    ) -> None:
        stats = run.stats_for(entity_type)
        if self.mappings.is_local_id_mapped(entity_type, local_id):
            self.logger.warning(
                f"{natural_key} already belongs to a mapped {entity_type.value}; skipping WA id {wa_id}",
                extra={"importer_run_id": run.run_id, "skip_reason": SkipReason.DUPLICATE_NATURAL_KEY.value},
            )
            stats.skipped += 1
            return

        self.logger.warning(
            f"{natural_key} already exists, mapping WA id {wa_id} to existing {entity_type.value} {local_id}",
            extra={"importer_run_id": run.run_id},
        )
        if self.dry_run:
            self.mappings.remember(entity_type, wa_id, local_id)
        else:
            with self.store.transaction():
                self.mappings.create(entity_type, wa_id, local_id, synced_at=run.started_at)
        stats.skipped += 1

    def _create(
        self,
        run: SyncRun,
        entity_type: WaEntityType,
        wa_id: int,
        values: Mapping[str, Any],
        natural_key: Any,
        *,
        repoint: bool,
    ) -> None:
        stats = run.stats_for(entity_type)

        if repoint:
            match = self._find_natural_match(entity_type, natural_key)
            if match is not None and not self.mappings.is_local_id_mapped(entity_type, match):
                # The mapped row is gone but the natural key survives under a new id.
                if self.dry_run:
                    self.mappings.remember(entity_type, wa_id, match)
                else:
                    with self.store.transaction():
                        self.mappings.repoint(self.mappings.get(entity_type, wa_id), match, synced_at=run.started_at)
                stats.skipped += 1
                return

        if self.dry_run:
            placeholder = self._plan(run, entity_type, wa_id)
            if natural_key is not None:
                self._planned_keys[(entity_type, natural_key)] = placeholder
            stats.created += 1
            return

        with self.store.transaction():
            instance = self.store.create(entity_type, values)
            if repoint:
                self.mappings.repoint(self.mappings.get(entity_type, wa_id), instance.id, synced_at=run.started_at)
            else:
                self.mappings.create(entity_type, wa_id, instance.id, synced_at=run.started_at)
            self.store.append_audit(
                "CREATE",
                entity_type,
                instance.id,
                run_id=run.run_id,
                mode=run.mode.value,
                metadata={"wa_id": wa_id},
            )
        stats.created += 1

    # Registrations --------------------------------------------------------------

    def _sync_registrations(self, run: SyncRun, events: Sequence[Mapping[str, Any]]) -> None:
        diag = run.registration_diagnostics
        stats = run.stats_for(WaEntityType.EVENT_REGISTRATION)
        total = len(events)

        for index, event in enumerate(events):
            diag.events_processed += 1
            if (index + 1) % REGISTRATION_PROGRESS_INTERVAL == 0 or index == total - 1:
                self.logger.info(
                    f"Registration sync progress: {index + 1}/{total} events",
                    extra={
                        "importer_run_id": run.run_id,
                        "registrations_fetched": diag.registrations_fetched_total,
                        "registrations_upserted": diag.registrations_upserted,
                        "registrations_missing_member": diag.registrations_skipped_missing_member,
                    },
                )

            wa_event_id = event.get("Id")
            event_id = self.mappings.lookup(WaEntityType.EVENT, wa_event_id)
            if event_id is None:
                diag.events_skipped_unmapped += 1
                diag.record_skip(SkipReason.EVENT_NOT_MAPPED, f"Event {wa_event_id} not mapped")
                self.logger.warning(
                    f"Skipping registrations for unmapped event {wa_event_id}",
                    extra={"importer_run_id": run.run_id},
                )
                continue

            diag.registration_fetch_calls += 1
            result = self.client.fetch_event_registrations(wa_event_id)
            if not result.ok:
                diag.record_skip(SkipReason.FETCH_FAILED, f"Fetch error for event {wa_event_id}: {result.error.message}")
                self.logger.error(
                    f"Failed to fetch registrations for event {wa_event_id}",
                    extra={"importer_run_id": run.run_id, "wa_error_kind": result.error.kind.value},
                )
                continue

            registrations = list(result.value or [])
            diag.registrations_fetched_total += len(registrations)
            stats.parsed += len(registrations)
            for registration in registrations:
                self._guarded(
                    run,
                    WaEntityType.EVENT_REGISTRATION,
                    registration.get("Id"),
                    self._sync_registration,
                    run,
                    registration,
                    event_id,
                )

        self.logger.info(
            "Registration sync complete",
            extra={"importer_run_id": run.run_id, "registration_diagnostics": diag.to_dict()},
        )

    def _sync_registration(self, run: SyncRun, registration: Mapping[str, Any], event_id: int) -> None:
        diag = run.registration_diagnostics
        stats = run.stats_for(WaEntityType.EVENT_REGISTRATION)
        wa_id = registration.get("Id")
        contact_id = (registration.get("Contact") or {}).get("Id")

        member_id = self.mappings.lookup(WaEntityType.MEMBER, contact_id)
        if member_id is None:
            diag.registrations_skipped_missing_member += 1
            diag.record_skip(SkipReason.MISSING_MEMBER, f"Member not mapped: WA contact {contact_id}")
            if diag.registrations_skipped_missing_member <= MISSING_MEMBER_LOG_LIMIT:
                self.logger.warning(
                    f"Member not found for registration {wa_id} (contact {contact_id})",
                    extra={"importer_run_id": run.run_id},
                )
            stats.skipped += 1
            return

        result = transform_registration(registration, event_id, member_id)
        if not result.success:
            diag.registrations_skipped_transform_error += 1
            diag.record_skip(SkipReason.TRANSFORM_ERROR, f"Transform error: {result.error}")
            self.logger.warning(
                f"Transform failed for registration {wa_id}: {result.error}",
                extra={"importer_run_id": run.run_id},
            )
            stats.skipped += 1
            return
        diag.registrations_transformed_ok += 1
        data = result.data

        key = (event_id, member_id)
        existing = self._planned_registrations.get(key) if self.dry_run else None
        if existing is None:
            existing = self.store.find_registration(event_id, member_id)
        if existing is not None:
            changes = get_registration_changes(existing, data)
            if self.dry_run:
                if changes:
                    self._planned_registrations[key] = data
            else:
                with self.store.transaction():
                    if changes:
                        old_status = existing.status
                        self.store.update(existing, changes)
                        self.store.append_audit(
                            "UPDATE",
                            WaEntityType.EVENT_REGISTRATION,
                            existing.id,
                            run_id=run.run_id,
                            mode=run.mode.value,
                            metadata={"wa_id": wa_id, "old_status": old_status, "new_status": data.status},
                        )
                    self._ensure_registration_mapping(run, wa_id, existing.id)
            if changes:
                diag.registrations_upserted += 1
                stats.updated += 1
            else:
                stats.skipped += 1
            return

        if self.dry_run:
            if wa_id is not None and self.mappings.lookup(WaEntityType.EVENT_REGISTRATION, wa_id) is None:
                self._plan(run, WaEntityType.EVENT_REGISTRATION, wa_id)
            self._planned_registrations[key] = data
            diag.registrations_upserted += 1
            stats.created += 1
            return

        with self.store.transaction():
            instance = self.store.create(WaEntityType.EVENT_REGISTRATION, data.to_model_kwargs())
            self._ensure_registration_mapping(run, wa_id, instance.id)
            self.store.append_audit(
                "CREATE",
                WaEntityType.EVENT_REGISTRATION,
                instance.id,
                run_id=run.run_id,
                mode=run.mode.value,
                metadata={"wa_id": wa_id},
            )
        diag.registrations_upserted += 1
        stats.created += 1

    def _ensure_registration_mapping(self, run: SyncRun, wa_id: Optional[int], local_id: int) -> None:
        if wa_id is None:
            return
        entity_type = WaEntityType.EVENT_REGISTRATION
        mapping = self.mappings.get(entity_type, wa_id)
        if mapping is None:
            if not self.mappings.is_local_id_mapped(entity_type, local_id):
                self.mappings.create(entity_type, wa_id, local_id, synced_at=run.started_at)
            return
        if mapping.local_id != local_id and not self.mappings.is_local_id_mapped(entity_type, local_id):
            self.mappings.repoint(mapping, local_id, synced_at=run.started_at)
        else:
            self.mappings.touch(mapping, synced_at=run.started_at)

    # Helpers --------------------------------------------------------------------

    def _guarded(self, run: SyncRun, entity_type: WaEntityType, wa_id: Any, fn, *args) -> None:
        try:
            fn(*args)
        except Exception as exc:
            # A rolled-back transaction may have left mappings in the cached view.
            # Dry runs never write, and their view holds the planned placeholders.
            if not self.dry_run:
                self.mappings.reset()
            run.stats_for(entity_type).errors += 1
            run.add_error(entity_type, wa_id, str(exc))
            if entity_type is WaEntityType.EVENT_REGISTRATION:
                run.registration_diagnostics.record_skip(SkipReason.PROCESSING_ERROR, f"Error: {exc}")
            self.logger.exception(
                f"Failed to sync {entity_type.value} {wa_id}",
                extra={"importer_run_id": run.run_id, "wa_id": wa_id},
            )

    def _plan(self, run: SyncRun, entity_type: WaEntityType, wa_id: Optional[int]) -> int:
        placeholder = self._next_placeholder
        self._next_placeholder -= 1
        if wa_id is not None:
            self.mappings.remember(entity_type, wa_id, placeholder)
        run.planned.append(PlannedEntity(entity_type=entity_type, wa_id=wa_id, placeholder_id=placeholder))
        return placeholder

    def _batches(self, items: Sequence[Mapping[str, Any]]):
        size = max(1, self.settings.db_batch_size)
        for start in range(0, len(items), size):
            yield items[start : start + size]

    def _finish(self, run: SyncRun) -> SyncRun:
        run.warnings = generate_warnings(
            mode=run.mode.value,
            fetched_contacts=run.fetched_contacts,
            fetched_events=run.fetched_events,
            diagnostics=run.registration_diagnostics,
        )

        # Record-level errors are counted in the report; only a fatal error holds the state back.
        if run.fatal_error is None and not self.dry_run:
            try:
                with self.store.transaction():
                    self.sync_state.record_success(mode=run.mode.value, synced_at=run.started_at)
            except Exception as exc:
                run.fatal_error = f"Failed to update sync state: {exc}"
                run.add_error(WaEntityType.MEMBER, None, run.fatal_error)
                self.logger.exception("Failed to update Wild Apricot sync state", extra={"importer_run_id": run.run_id})
        elif self.dry_run:
            self.store.session.rollback()

        run.finished_at = self.now()
        for warning in run.warnings:
            self.logger.warning(
                f"[{warning.severity.value}] {warning.code}: {warning.message}",
                extra={"importer_run_id": run.run_id},
            )

        record_sync_run(mode=run.mode.value, success=run.success, duration_seconds=run.duration_ms / 1000.0)
        if not self.dry_run:
            for key, stats in run.stats.items():
                record_entity_outcomes(key, stats.to_dict())

        self.logger.info(
            "Wild Apricot sync finished",
            extra={
                "importer_run_id": run.run_id,
                "sync_mode": run.mode.value,
                "dry_run": run.dry_run,
                "success": run.success,
                "duration_ms": run.duration_ms,
                "stats": {key: stats.to_dict() for key, stats in run.stats.items()},
            },
        )
        return run


__all__ = ["PlannedEntity", "SyncMode", "SyncOrchestrator", "SyncRun"]
