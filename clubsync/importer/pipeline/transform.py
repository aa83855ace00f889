"""
Pure transforms from Wild Apricot payloads to local-store input shapes.

Each transform returns a :class:`TransformResult`; validation failures are
reported on the result (never raised) so the orchestrator can count them
as skips and keep going.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Generic, Iterable, List, Mapping, Optional, TypeVar

from clubsync.models.event import RegistrationStatus

T = TypeVar("T")

REQUIRED_STATUS_CODES: tuple[str, ...] = (
    "active",
    "lapsed",
    "pending_new",
    "pending_renewal",
    "suspended",
    "not_a_member",
    "unknown",
)

CONTACT_STATUS_CODES: Dict[str, str] = {
    "Active": "active",
    "Lapsed": "lapsed",
    "PendingNew": "pending_new",
    "PendingRenewal": "pending_renewal",
    "Suspended": "suspended",
    "NotAMember": "not_a_member",
}

REGISTRATION_STATUSES: Dict[str, RegistrationStatus] = {
    "Confirmed": RegistrationStatus.CONFIRMED,
    "Cancelled": RegistrationStatus.CANCELLED,
    "Declined": RegistrationStatus.CANCELLED,
    "PendingPayment": RegistrationStatus.PENDING_PAYMENT,
    "WaitList": RegistrationStatus.WAITLISTED,
    "OnWaitlist": RegistrationStatus.WAITLISTED,
    "NoShow": RegistrationStatus.NO_SHOW,
}

# Organizer mailbox prefix -> committee name.
COMMITTEE_PATTERNS: tuple[tuple[str, str], ...] = (
    ("games", "Games"),
    ("wine", "Wine Appreciation"),
    ("hiking", "Happy Hikers"),
    ("books", "Book Club"),
    ("golf", "Golf"),
    ("dining", "Dining Out"),
    ("travel", "Travel"),
    ("garden", "Garden Club"),
)

# Wild Apricot does not expose the real waitlist rank.
WAITLIST_POSITION_UNKNOWN = 999

MEMBER_DIFF_FIELDS: tuple[str, ...] = ("first_name", "last_name", "email", "phone")
EVENT_DIFF_FIELDS: tuple[str, ...] = ("title", "description", "location", "category", "capacity", "is_published")

_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")
_PHONE_STRIP_RE = re.compile(r"[^\d+]")


class TransformValidationError(ValueError):
    """Raised by :meth:`TransformResult.unwrap` for an invalid source record."""


@dataclass
class TransformResult(Generic[T]):
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    @classmethod
    def ok(cls, data: T, warnings: Iterable[str] = ()) -> "TransformResult[T]":
        return cls(success=True, data=data, warnings=list(warnings))

    @classmethod
    def fail(cls, error: str, warnings: Iterable[str] = ()) -> "TransformResult[T]":
        return cls(success=False, error=error, warnings=list(warnings))

    def unwrap(self) -> T:
        if not self.success or self.data is None:
            raise TransformValidationError(self.error or "Transform failed")
        return self.data


@dataclass
class MemberInput:
    first_name: str
    last_name: str
    email: str
    phone: Optional[str]
    joined_at: datetime
    membership_status_id: int
    wa_membership_level: Optional[str]
    wa_raw_data: Dict[str, Any]

    def to_model_kwargs(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EventInput:
    title: str
    description: Optional[str]
    category: Optional[str]
    location: Optional[str]
    start_time: datetime
    end_time: Optional[datetime]
    capacity: Optional[int]
    is_published: bool
    event_chair_id: Optional[int] = None

    def to_model_kwargs(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RegistrationInput:
    event_id: int
    member_id: int
    status: RegistrationStatus
    registered_at: datetime
    waitlist_position: Optional[int]

    def to_model_kwargs(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "member_id": self.member_id,
            "status": self.status,
            "registered_at": self.registered_at,
            "waitlist_position": self.waitlist_position,
        }


# Field helpers ---------------------------------------------------------------


def map_contact_status_to_code(wa_status: Optional[str]) -> str:
    return CONTACT_STATUS_CODES.get(wa_status or "", "unknown")


def contact_status(contact: Mapping[str, Any]) -> Optional[str]:
    """Wild Apricot status of a contact, from ``Status`` or the membership status field."""

    status = contact.get("Status")
    if status:
        return status
    field_values = contact.get("FieldValues")
    value = extract_field_value(field_values, "MembershipStatus") or extract_field_value(field_values, "Membership status")
    if isinstance(value, Mapping):
        return value.get("Value") or value.get("Label")
    return value


def map_registration_status(wa_status: Optional[str], on_waitlist: bool = False) -> RegistrationStatus:
    if on_waitlist:
        return RegistrationStatus.WAITLISTED
    return REGISTRATION_STATUSES.get(wa_status or "", RegistrationStatus.PENDING)


def extract_field_value(field_values: Iterable[Mapping[str, Any]] | None, field_name: str) -> Any:
    for item in field_values or ():
        if item.get("FieldName") == field_name or item.get("SystemCode") == field_name:
            return item.get("Value")
    return None


def extract_phone(field_values: Iterable[Mapping[str, Any]] | None) -> Optional[str]:
    phone = extract_field_value(field_values, "Phone")
    if not phone:
        return None
    return _PHONE_STRIP_RE.sub("", str(phone)) or None


def normalize_email(email: Optional[str]) -> Optional[str]:
    if not email:
        return None
    normalized = str(email).strip().lower()
    if "@" not in normalized or "." not in normalized:
        return None
    return normalized


def parse_date(value: Any) -> Optional[datetime]:
    """Parse a Wild Apricot ISO8601 timestamp into an aware UTC datetime."""

    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def derive_category(event: Mapping[str, Any]) -> Optional[str]:
    organizer = ((event.get("Details") or {}).get("Organizer") or {})
    email = organizer.get("Email")
    if email:
        prefix = str(email).split("@", 1)[0].lower()
        for pattern, committee in COMMITTEE_PATTERNS:
            if pattern in prefix:
                return committee
    tags = event.get("Tags") or []
    if tags:
        return tags[0]
    return None


def extract_description(details: Optional[Mapping[str, Any]]) -> Optional[str]:
    html = (details or {}).get("DescriptionHtml")
    if not html:
        return None
    text = _TAG_RE.sub(" ", html)
    text = text.replace("&nbsp;", " ").replace("&amp;", "&").replace("&lt;", "<").replace("&gt;", ">")
    text = _WHITESPACE_RE.sub(" ", text).strip()
    return text or None


def build_wa_raw_data(contact: Mapping[str, Any], *, imported_at: datetime) -> Dict[str, Any]:
    field_values: Dict[str, Any] = {}
    for item in contact.get("FieldValues") or ():
        name = item.get("FieldName")
        code = item.get("SystemCode")
        key = f"{name} ({code})" if code else name
        field_values[key] = item.get("Value")

    level = contact.get("MembershipLevel")
    return {
        "waContactId": contact.get("Id"),
        "displayName": contact.get("DisplayName"),
        "organization": contact.get("Organization"),
        "membershipLevel": {"id": level.get("Id"), "name": level.get("Name")} if level else None,
        "status": contact.get("Status"),
        "memberSince": contact.get("MemberSince"),
        "profileLastUpdated": contact.get("ProfileLastUpdated"),
        "isAccountAdministrator": contact.get("IsAccountAdministrator"),
        "isSuspendedMember": contact.get("IsSuspendedMember"),
        "balance": contact.get("Balance"),
        "renewalDue": contact.get("RenewalDue"),
        "fieldValues": field_values,
        "importedAt": imported_at.isoformat(),
    }


# Record transforms -------------------------------------------------------------


def transform_contact(
    contact: Mapping[str, Any],
    membership_status_id: int,
    *,
    now: Optional[datetime] = None,
) -> TransformResult[MemberInput]:
    now = now or datetime.now(timezone.utc)
    contact_id = contact.get("Id")
    warnings: List[str] = []

    email = normalize_email(contact.get("Email"))
    if not email:
        return TransformResult.fail(f"Invalid or missing email for contact {contact_id}")

    first_name = (contact.get("FirstName") or "").strip()
    if not first_name:
        return TransformResult.fail(f"Missing first name for contact {contact_id}")

    last_name = (contact.get("LastName") or "").strip()
    if not last_name:
        return TransformResult.fail(f"Missing last name for contact {contact_id}")

    joined_at = parse_date(contact.get("MemberSince")) or parse_date(contact.get("CreationDate"))
    if joined_at is None:
        joined_at = now
        warnings.append(f"No join date found for contact {contact_id}, using current date")

    level = contact.get("MembershipLevel") or {}
    return TransformResult.ok(
        MemberInput(
            first_name=first_name,
            last_name=last_name,
            email=email,
            phone=extract_phone(contact.get("FieldValues")),
            joined_at=joined_at,
            membership_status_id=membership_status_id,
            wa_membership_level=level.get("Name"),
            wa_raw_data=build_wa_raw_data(contact, imported_at=now),
        ),
        warnings,
    )


def transform_event(event: Mapping[str, Any], event_chair_id: Optional[int] = None) -> TransformResult[EventInput]:
    event_id = event.get("Id")

    title = (event.get("Name") or "").strip()
    if not title:
        return TransformResult.fail(f"Missing name for event {event_id}")

    start_time = parse_date(event.get("StartDate"))
    if start_time is None:
        return TransformResult.fail(f"Invalid start date for event {event_id}")

    capacity = event.get("RegistrationsLimit")
    if capacity:
        try:
            capacity = int(capacity)
        except (TypeError, ValueError):
            return TransformResult.fail(f"Invalid registrations limit {capacity!r} for event {event_id}")
    else:
        capacity = None

    return TransformResult.ok(
        EventInput(
            title=title,
            description=extract_description(event.get("Details")),
            category=derive_category(event),
            location=event.get("Location") or None,
            start_time=start_time,
            end_time=parse_date(event.get("EndDate")),
            capacity=capacity,
            is_published=event.get("AccessLevel") == "Public",
            event_chair_id=event_chair_id,
        )
    )


def transform_registration(
    registration: Mapping[str, Any],
    event_id: int,
    member_id: int,
) -> TransformResult[RegistrationInput]:
    registered_at = parse_date(registration.get("RegistrationDate"))
    if registered_at is None:
        return TransformResult.fail(f"Invalid registration date for registration {registration.get('Id')}")

    on_waitlist = bool(registration.get("OnWaitlist"))
    status = map_registration_status(registration.get("Status"), on_waitlist)
    return TransformResult.ok(
        RegistrationInput(
            event_id=event_id,
            member_id=member_id,
            status=status,
            registered_at=registered_at,
            waitlist_position=WAITLIST_POSITION_UNKNOWN if status is RegistrationStatus.WAITLISTED else None,
        )
    )


# Change detection --------------------------------------------------------------


def has_changed(old_value: Any, new_value: Any) -> bool:
    if old_value is None and new_value is None:
        return False
    if old_value is None or new_value is None:
        return True
    if isinstance(old_value, datetime) and isinstance(new_value, datetime):
        return parse_date(old_value) != parse_date(new_value)
    return old_value != new_value


def _diff(existing: Any, incoming: Any, fields: Iterable[str]) -> Optional[Dict[str, Any]]:
    changes = {}
    for name in fields:
        new_value = getattr(incoming, name)
        if has_changed(getattr(existing, name, None), new_value):
            changes[name] = new_value
    return changes or None


def get_member_changes(existing: Any, incoming: MemberInput) -> Optional[Dict[str, Any]]:
    return _diff(existing, incoming, MEMBER_DIFF_FIELDS)


def get_event_changes(existing: Any, incoming: EventInput) -> Optional[Dict[str, Any]]:
    return _diff(existing, incoming, EVENT_DIFF_FIELDS)


def get_registration_changes(existing: Any, incoming: RegistrationInput) -> Optional[Dict[str, Any]]:
    if getattr(existing, "status", None) == incoming.status:
        return None
    return {"status": incoming.status, "waitlist_position": incoming.waitlist_position}
