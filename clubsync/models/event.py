# clubsync/models/event.py

from enum import Enum as PyEnum

from sqlalchemy import Enum, Index

from .base import BaseModel, db


class RegistrationStatus(PyEnum):
    """Registration status enumeration"""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    WAITLISTED = "waitlisted"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    PENDING_PAYMENT = "pending_payment"


class Event(BaseModel):
    """Club event imported from (or authored alongside) Wild Apricot."""

    __tablename__ = "events"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(100), nullable=True, index=True)
    location = db.Column(db.String(255), nullable=True)

    start_time = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    end_time = db.Column(db.DateTime(timezone=True), nullable=True)

    capacity = db.Column(db.Integer, nullable=True)  # Maximum attendees
    is_published = db.Column(db.Boolean, nullable=False, default=False)

    event_chair_id = db.Column(db.Integer, db.ForeignKey("members.id"), nullable=True)

    event_chair = db.relationship("Member", foreign_keys=[event_chair_id])
    registrations = db.relationship("EventRegistration", back_populates="event", cascade="all, delete-orphan")

    __table_args__ = (Index("idx_event_category_start", "category", "start_time"),)

    def __repr__(self):
        return f"<Event {self.title}>"


class EventRegistration(BaseModel):
    """A member's registration for an event; one row per (event, member)."""

    __tablename__ = "event_registrations"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=False)
    member_id = db.Column(db.Integer, db.ForeignKey("members.id"), nullable=False)
    status = db.Column(
        Enum(RegistrationStatus, name="registration_status_enum"),
        default=RegistrationStatus.PENDING,
        nullable=False,
        index=True,
    )
    registered_at = db.Column(db.DateTime(timezone=True), nullable=False)
    waitlist_position = db.Column(db.Integer, nullable=True)

    event = db.relationship("Event", back_populates="registrations")
    member = db.relationship("Member", back_populates="registrations")

    __table_args__ = (
        Index("idx_event_registration_status", "event_id", "status"),
        db.UniqueConstraint("event_id", "member_id", name="uq_event_registration_member"),
    )

    def __repr__(self):
        return f"<EventRegistration event={self.event_id} member={self.member_id} status={self.status.value}>"
