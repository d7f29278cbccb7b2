from __future__ import annotations

from ..extensions import db
from labinventory.time_utils import to_utc_z


class AuditLog(db.Model):
    """
    Audit trail of mutating operations.

    IMMUTABLE: Never update or delete. Append-only.
    Written after the primary transaction commits; never read by the
    lifecycle engines themselves.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_entity", "entity_type", "entity_id"),
        db.Index("ix_audit_logs_created", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    # CREATE, UPDATE, DELETE, APPROVE, REJECT, CANCEL, ISSUE, RETURN, TRANSFER, REVOKE_BAN, ...
    action = db.Column(db.String(32), nullable=False, index=True)
    entity_type = db.Column(db.String(64), nullable=False)
    entity_id = db.Column(db.Integer, nullable=True)

    # JSON-encoded payload of what changed
    changes = db.Column(db.Text, nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "changes": self.changes,
            "ip_address": self.ip_address,
            "created_at": to_utc_z(self.created_at),
        }
