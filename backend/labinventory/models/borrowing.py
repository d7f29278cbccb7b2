from __future__ import annotations

from ..extensions import db
from labinventory.time_utils import to_utc_z


class IssueRequest(db.Model):
    """
    A user's request to borrow one item.

    LIFECYCLE:
    1. PENDING: Submitted by the user
    2. APPROVED: Incharge approved, expected return date fixed
    3. REJECTED: Incharge rejected with a reason
    4. CANCELLED: Withdrawn by the user while still PENDING

    An APPROVED request becomes an issued loan when an IssueRecord is
    created for it (one record per request). Its status stays APPROVED;
    completed_at is set when that loan is returned.

    Only one active request (PENDING, or APPROVED and not yet completed) may
    exist per (user, item); the partial unique index enforces it under
    concurrent submissions.
    """
    __tablename__ = "issue_requests"
    __table_args__ = (
        db.Index(
            "uq_issue_requests_active_user_item",
            "user_id",
            "item_id",
            unique=True,
            sqlite_where=db.text("status IN ('PENDING', 'APPROVED') AND completed_at IS NULL"),
            postgresql_where=db.text("status IN ('PENDING', 'APPROVED') AND completed_at IS NULL"),
        ),
        db.Index("ix_issue_requests_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)

    purpose = db.Column(db.Text, nullable=False)
    requested_days = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="PENDING")
    request_date = db.Column(db.DateTime, nullable=False)

    # Set by approve and by reject (tracks who decided)
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approval_date = db.Column(db.DateTime, nullable=True)
    expected_return_date = db.Column(db.DateTime, nullable=True)

    rejection_reason = db.Column(db.Text, nullable=True)
    # Collection instructions given on approval
    remarks = db.Column(db.Text, nullable=True)
    # Set when the loan issued from this request is returned
    completed_at = db.Column(db.DateTime, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User", foreign_keys=[user_id], backref=db.backref("issue_requests", lazy=True))
    approver = db.relationship("User", foreign_keys=[approved_by])
    item = db.relationship("Item", backref=db.backref("issue_requests", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<IssueRequest id={self.id} user_id={self.user_id} item_id={self.item_id} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "item_id": self.item_id,
            "purpose": self.purpose,
            "requested_days": self.requested_days,
            "status": self.status,
            "request_date": to_utc_z(self.request_date),
            "approved_by": self.approved_by,
            "approval_date": to_utc_z(self.approval_date),
            "expected_return_date": to_utc_z(self.expected_return_date),
            "rejection_reason": self.rejection_reason,
            "remarks": self.remarks,
            "completed_at": to_utc_z(self.completed_at),
        }


class IssueRecord(db.Model):
    """
    An issued loan. Open while actual_return_date is NULL.

    INVARIANTS:
    - request_id is unique: a request is issued at most once
    - at most one open record per item (partial unique index)
    - while open, the item's status is ISSUED

    Reminder flags are one-shot: they go False -> True once and are never
    reset while the record is open.
    """
    __tablename__ = "issue_records"
    __table_args__ = (
        db.UniqueConstraint("request_id", name="uq_issue_records_request"),
        db.Index(
            "uq_issue_records_open_item",
            "item_id",
            unique=True,
            sqlite_where=db.text("actual_return_date IS NULL"),
            postgresql_where=db.text("actual_return_date IS NULL"),
        ),
        db.Index("ix_issue_records_open_due", "actual_return_date", "expected_return_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(db.Integer, db.ForeignKey("issue_requests.id"), nullable=False)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=False, index=True)

    issued_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    issue_date = db.Column(db.DateTime, nullable=False)
    expected_return_date = db.Column(db.DateTime, nullable=False)
    actual_return_date = db.Column(db.DateTime, nullable=True)
    returned_to = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # Non-returnable issues are consumed by a project
    is_returnable = db.Column(db.Boolean, nullable=False, default=True)
    project_name = db.Column(db.String(255), nullable=True)
    project_incharge = db.Column(db.String(255), nullable=True)

    return_condition = db.Column(db.String(16), nullable=True)
    damage_remarks = db.Column(db.Text, nullable=True)
    is_pending_replacement = db.Column(db.Boolean, nullable=False, default=False)

    reminder_3days_sent = db.Column(db.Boolean, nullable=False, default=False)
    reminder_1day_sent = db.Column(db.Boolean, nullable=False, default=False)
    overdue_sent = db.Column(db.Boolean, nullable=False, default=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    request = db.relationship("IssueRequest", backref=db.backref("issue_record", uselist=False, lazy=True))
    item = db.relationship("Item", backref=db.backref("issue_records", lazy=True))
    user = db.relationship("User", foreign_keys=[user_id], backref=db.backref("issue_records", lazy=True))
    department = db.relationship("Department")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_open(self) -> bool:
        return self.actual_return_date is None

    def __repr__(self) -> str:
        return f"<IssueRecord id={self.id} item_id={self.item_id} open={self.is_open}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "request_id": self.request_id,
            "item_id": self.item_id,
            "user_id": self.user_id,
            "department_id": self.department_id,
            "issued_by": self.issued_by,
            "issue_date": to_utc_z(self.issue_date),
            "expected_return_date": to_utc_z(self.expected_return_date),
            "actual_return_date": to_utc_z(self.actual_return_date),
            "returned_to": self.returned_to,
            "is_returnable": self.is_returnable,
            "project_name": self.project_name,
            "project_incharge": self.project_incharge,
            "return_condition": self.return_condition,
            "damage_remarks": self.damage_remarks,
            "is_pending_replacement": self.is_pending_replacement,
            "reminder_3days_sent": self.reminder_3days_sent,
            "reminder_1day_sent": self.reminder_1day_sent,
            "overdue_sent": self.overdue_sent,
        }
