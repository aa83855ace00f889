from __future__ import annotations

from datetime import datetime, timezone

from clubsync.importer.adapters.wildapricot.errors import ApiErrorKind, ApiResult

SYNC_NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class FakeWildApricotClient:
    """
    In-memory stand-in for ``WildApricotClient``.

    ``failures`` maps a fetch name (``contacts``, ``events``, ``event``,
    ``registrations:<event id>``) to the error kind it should fail with.
    """

    def __init__(self, contacts=(), events=(), registrations=None, *, failures=None, health=None):
        self.contacts = list(contacts)
        self.events = list(events)
        self.registrations = {int(key): list(value) for key, value in (registrations or {}).items()}
        self.failures = dict(failures or {})
        self.health = health or {"ok": True, "account_id": "12345", "membership_levels": 3}
        self.calls: list[tuple] = []

    def _respond(self, name, value, *, status_code=500):
        kind = self.failures.get(name)
        if kind is not None:
            return ApiResult.failure(kind, f"{name} unavailable", status_code=status_code)
        return ApiResult.success(value)

    def fetch_contacts(self, *, filter_expr=None):
        self.calls.append(("contacts",))
        return self._respond("contacts", list(self.contacts))

    def fetch_contacts_modified_since(self, since):
        self.calls.append(("contacts_modified_since", since))
        return self._respond("contacts", list(self.contacts))

    def fetch_events(self, *, filter_expr=None):
        self.calls.append(("events",))
        return self._respond("events", list(self.events))

    def fetch_events_from(self, start):
        self.calls.append(("events_from", start))
        return self._respond("events", list(self.events))

    def fetch_event(self, event_id):
        self.calls.append(("event", event_id))
        for event in self.events:
            if event.get("Id") == event_id:
                return self._respond("event", event)
        return ApiResult.failure(ApiErrorKind.API_ERROR, f"Event {event_id} not found", status_code=404)

    def fetch_event_registrations(self, event_id):
        self.calls.append(("registrations", event_id))
        return self._respond(f"registrations:{event_id}", list(self.registrations.get(int(event_id), [])))

    def health_check(self):
        self.calls.append(("health",))
        return dict(self.health)

    def called(self, name):
        return [call for call in self.calls if call[0] == name]


def make_contact(wa_id, email=None, *, first_name="Pat", last_name=None, status="Active", **extra):
    contact = {
        "Id": wa_id,
        "FirstName": first_name,
        "LastName": last_name or f"Member{wa_id}",
        "Email": email or f"member{wa_id}@club.example",
        "Status": status,
        "MemberSince": "2020-01-15T00:00:00Z",
        "MembershipLevel": {"Id": 1, "Name": "Regular"},
        "FieldValues": [],
    }
    contact.update(extra)
    return contact


def make_event(wa_id, *, name=None, organizer_id=None, start="2024-07-01T18:00:00Z", **extra):
    event = {
        "Id": wa_id,
        "Name": name or f"Event {wa_id}",
        "StartDate": start,
        "EndDate": None,
        "Location": "Clubhouse",
        "AccessLevel": "Public",
        "Tags": [],
        "Details": {"Organizer": {"Id": organizer_id} if organizer_id else None},
    }
    event.update(extra)
    return event


def make_registration(wa_id, contact_id, *, status="Confirmed", on_waitlist=False, date="2024-06-01T10:00:00Z"):
    return {
        "Id": wa_id,
        "Contact": {"Id": contact_id, "Name": f"Contact {contact_id}"},
        "Status": status,
        "OnWaitlist": on_waitlist,
        "RegistrationDate": date,
    }


