# clubsync/models/audit.py

from .base import BaseModel, db


class AuditLog(BaseModel):
    """Append-only record of writes made against local entities."""

    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(50), nullable=False, index=True)  # CREATE, UPDATE
    resource_type = db.Column(db.String(50), nullable=False, index=True)
    resource_id = db.Column(db.Integer, nullable=False)
    metadata_json = db.Column(db.JSON, nullable=True)

    def __repr__(self):
        return f"<AuditLog {self.action} {self.resource_type}#{self.resource_id}>"
