# clubsync/models/__init__.py
"""
Database models package
"""

from .audit import AuditLog
from .base import BaseModel, db
from .event import Event, EventRegistration, RegistrationStatus
from .importer import WaEntityType, WaIdMapping, WaSyncState
from .member import Member, MembershipStatus

__all__ = [
    "db",
    "BaseModel",
    "AuditLog",
    "Event",
    "EventRegistration",
    "RegistrationStatus",
    "Member",
    "MembershipStatus",
    "WaEntityType",
    "WaIdMapping",
    "WaSyncState",
]
