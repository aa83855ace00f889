# clubsync/models/member.py

from sqlalchemy import Index

from .base import BaseModel, db


class MembershipStatus(BaseModel):
    """Lookup table for membership status codes (active, lapsed, ...)."""

    __tablename__ = "membership_statuses"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False, index=True)
    label = db.Column(db.String(100), nullable=False)
    is_active_member = db.Column(db.Boolean, nullable=False, default=False)

    members = db.relationship("Member", back_populates="membership_status")

    def __repr__(self):
        return f"<MembershipStatus {self.code}>"


class Member(BaseModel):
    """Club member. Email is the natural key and is unique."""

    __tablename__ = "members"

    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    phone = db.Column(db.String(40), nullable=True)
    joined_at = db.Column(db.DateTime(timezone=True), nullable=False)

    membership_status_id = db.Column(db.Integer, db.ForeignKey("membership_statuses.id"), nullable=False)
    wa_membership_level = db.Column(db.String(200), nullable=True)  # raw level name from Wild Apricot
    wa_raw_data = db.Column(db.JSON, nullable=True)

    membership_status = db.relationship("MembershipStatus", back_populates="members")
    registrations = db.relationship("EventRegistration", back_populates="member")

    __table_args__ = (Index("idx_member_name", "last_name", "first_name"),)

    def __repr__(self):
        return f"<Member {self.email}>"
