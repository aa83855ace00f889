"""Read-only registration probe for a single Wild Apricot event."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from clubsync.importer.adapters.wildapricot.client import WildApricotClient
from clubsync.models import WaEntityType

from .diagnostics import SkipReason
from .id_mapping import IdMappingStore
from .transform import transform_registration

logger = logging.getLogger(__name__)

@dataclass
class ProbedRegistration:
    wa_registration_id: Optional[int]
    wa_contact_id: Optional[int]
    contact_name: Optional[str]
    status: Optional[str]
    member_mapped: bool
    local_member_id: Optional[int]
    would_skip: bool
    skip_reason: Optional[SkipReason] = None
    skip_detail: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "wa_registration_id": self.wa_registration_id,
            "wa_contact_id": self.wa_contact_id,
            "contact_name": self.contact_name,
            "status": self.status,
            "member_mapped": self.member_mapped,
            "local_member_id": self.local_member_id,
            "would_skip": self.would_skip,
            "skip_reason": self.skip_reason.value if self.skip_reason else None,
            "skip_detail": self.skip_detail,
        }


@dataclass
class ProbeResult:
    event_id: int
    event_found: bool = False
    event_name: Optional[str] = None
    event_mapped: bool = False
    local_event_id: Optional[int] = None
    registrations_from_wa: int = 0
    registrations: List[ProbedRegistration] = field(default_factory=list)

    @property
    def summary(self) -> Dict[str, int]:
        return {
            "would_import": sum(1 for item in self.registrations if not item.would_skip),
            "would_skip_missing_member": sum(
                1 for item in self.registrations if item.skip_reason is SkipReason.MISSING_MEMBER
            ),
            "would_skip_missing_event": sum(
                1 for item in self.registrations if item.skip_reason is SkipReason.EVENT_NOT_MAPPED
            ),
            "would_skip_transform_error": sum(
                1 for item in self.registrations if item.skip_reason is SkipReason.TRANSFORM_ERROR
            ),
        }

    @property
    def all_skipped(self) -> bool:
        return bool(self.registrations) and all(item.would_skip for item in self.registrations)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_found": self.event_found,
            "event_name": self.event_name,
            "event_mapped": self.event_mapped,
            "local_event_id": self.local_event_id,
            "registrations_from_wa": self.registrations_from_wa,
            "registrations": [item.as_dict() for item in self.registrations],
            "summary": self.summary,
        }


def probe_event_registrations(
    client: WildApricotClient,
    wa_event_id: int,
    *,
    mappings: IdMappingStore | None = None,
) -> ProbeResult:
    """Report what a sync would do with one event's registrations, without writing."""

    mappings = mappings or IdMappingStore()
    local_event_id = mappings.lookup(WaEntityType.EVENT, wa_event_id)
    result = ProbeResult(
        event_id=int(wa_event_id),
        event_mapped=local_event_id is not None,
        local_event_id=local_event_id,
    )

    event = client.fetch_event(wa_event_id)
    if not event.ok:
        if event.error.status_code == 404:
            logger.info("Probe: event not found in Wild Apricot", extra={"wa_event_id": wa_event_id})
            return result
        event.unwrap()
    result.event_found = True
    result.event_name = (event.value or {}).get("Name")

    registrations = client.fetch_event_registrations(wa_event_id).unwrap()
    result.registrations_from_wa = len(registrations)

    for registration in registrations:
        contact = registration.get("Contact") or {}
        member_id = mappings.lookup(WaEntityType.MEMBER, contact.get("Id"))
        probed = ProbedRegistration(
            wa_registration_id=registration.get("Id"),
            wa_contact_id=contact.get("Id"),
            contact_name=contact.get("Name"),
            status=registration.get("Status"),
            member_mapped=member_id is not None,
            local_member_id=member_id,
            would_skip=False,
        )
        if member_id is None:
            probed.would_skip = True
            probed.skip_reason = SkipReason.MISSING_MEMBER
            probed.skip_detail = f"Member not mapped (WA contact {contact.get('Id')})"
        elif local_event_id is None:
            probed.would_skip = True
            probed.skip_reason = SkipReason.EVENT_NOT_MAPPED
            probed.skip_detail = f"Event not mapped (WA event {wa_event_id})"
        else:
            transformed = transform_registration(registration, local_event_id, member_id)
            if not transformed.success:
                probed.would_skip = True
                probed.skip_reason = SkipReason.TRANSFORM_ERROR
                probed.skip_detail = f"Transform error: {transformed.error}"
        result.registrations.append(probed)

    logger.info("Probe complete", extra={"wa_event_id": wa_event_id, "probe_summary": result.summary})
    return result


__all__ = ["ProbeResult", "ProbedRegistration", "probe_event_registrations"]
