from __future__ import annotations

from ..extensions import db
from labinventory.time_utils import to_utc_z


class TransferRequest(db.Model):
    """
    Request to move an item (or a quantity of a consumable) between departments.

    LIFECYCLE:
    1. PENDING: Raised by the destination department
    2. APPROVED: Source department agreed
    3. REJECTED: Source department refused with a reason
    4. COMPLETED: Stock/ownership moved and a TransferRecord written
    """
    __tablename__ = "transfer_requests"
    __table_args__ = (
        db.CheckConstraint("from_department_id <> to_department_id", name="ck_transfer_requests_distinct_departments"),
        db.CheckConstraint("quantity >= 1", name="ck_transfer_requests_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    from_department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=False, index=True)
    to_department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=False, index=True)
    requested_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False, default=1)
    purpose = db.Column(db.Text, nullable=False)

    # PENDING, APPROVED, REJECTED, COMPLETED
    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    request_date = db.Column(db.DateTime, nullable=False)

    approved_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approval_date = db.Column(db.DateTime, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    item = db.relationship("Item", backref=db.backref("transfer_requests", lazy=True))
    from_department = db.relationship("Department", foreign_keys=[from_department_id])
    to_department = db.relationship("Department", foreign_keys=[to_department_id])
    requested_by = db.relationship("User", foreign_keys=[requested_by_id])
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "from_department_id": self.from_department_id,
            "to_department_id": self.to_department_id,
            "requested_by_id": self.requested_by_id,
            "quantity": self.quantity,
            "purpose": self.purpose,
            "status": self.status,
            "request_date": to_utc_z(self.request_date),
            "approved_by_id": self.approved_by_id,
            "approval_date": to_utc_z(self.approval_date),
            "rejection_reason": self.rejection_reason,
        }


class TransferRecord(db.Model):
    """
    Immutable record of a completed transfer. One per TransferRequest.
    """
    __tablename__ = "transfer_records"
    __table_args__ = (
        db.UniqueConstraint("request_id", name="uq_transfer_records_request"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(db.Integer, db.ForeignKey("transfer_requests.id"), nullable=False)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    # Consumables land on a (possibly new) destination stock line
    destination_item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=True)
    from_department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=False)
    to_department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=False)
    transferred_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.Text, nullable=True)
    transfer_date = db.Column(db.DateTime, nullable=False)

    request = db.relationship("TransferRequest", backref=db.backref("transfer_record", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "request_id": self.request_id,
            "item_id": self.item_id,
            "destination_item_id": self.destination_item_id,
            "from_department_id": self.from_department_id,
            "to_department_id": self.to_department_id,
            "transferred_by_id": self.transferred_by_id,
            "quantity": self.quantity,
            "notes": self.notes,
            "transfer_date": to_utc_z(self.transfer_date),
        }
