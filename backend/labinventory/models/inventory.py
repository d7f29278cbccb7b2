from __future__ import annotations

from ..extensions import db
from labinventory.time_utils import to_utc_z


class Category(db.Model):
    """
    Item category. Carries the borrowing policy for every item in it.
    """
    __tablename__ = "categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)

    # Days; 1-365
    max_borrow_duration = db.Column(db.Integer, nullable=False, default=7)
    requires_approval = db.Column(db.Boolean, nullable=False, default=True)
    visible_to_students = db.Column(db.Boolean, nullable=False, default=True)
    visible_to_staff = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "max_borrow_duration": self.max_borrow_duration,
            "requires_approval": self.requires_approval,
            "visible_to_students": self.visible_to_students,
            "visible_to_staff": self.visible_to_staff,
            "created_at": to_utc_z(self.created_at),
        }


class Item(db.Model):
    """
    A physical item (non-consumable) or a stock line (consumable).

    MANUAL ID DESIGN DECISION:
    manual_id is "<DEPTCODE>-NNN" and is reserved through ItemSequence at
    creation time. It is never renumbered: an item keeps its manual ID when
    ownership moves to another department.

    STOCK:
    current_stock / min_stock_level are set iff is_consumable. Consumables are
    never issued to users; they only move between departments by quantity.
    """
    __tablename__ = "items"
    __table_args__ = (
        db.Index("ix_items_department_status", "department_id", "status"),
        db.Index("ix_items_department_name_category", "department_id", "name", "category_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    manual_id = db.Column(db.String(32), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    specifications = db.Column(db.Text, nullable=True)
    serial_number = db.Column(db.String(128), nullable=True, unique=True)
    image_url = db.Column(db.String(512), nullable=True)
    location = db.Column(db.String(255), nullable=True)

    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=False, index=True)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=False, index=True)

    # NEW, GOOD, FAIR, DAMAGED, UNDER_REPAIR
    condition = db.Column(db.String(16), nullable=False, default="GOOD")
    # AVAILABLE, ISSUED, MAINTENANCE, PENDING_REPLACEMENT
    status = db.Column(db.String(24), nullable=False, default="AVAILABLE", index=True)

    is_consumable = db.Column(db.Boolean, nullable=False, default=False)
    current_stock = db.Column(db.Integer, nullable=True)
    min_stock_level = db.Column(db.Integer, nullable=True)

    # Provenance after a transfer
    source_department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=True)
    added_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    category = db.relationship("Category", backref=db.backref("items", lazy=True))
    department = db.relationship("Department", foreign_keys=[department_id], backref=db.backref("items", lazy=True))
    source_department = db.relationship("Department", foreign_keys=[source_department_id])
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Item id={self.id} manual_id={self.manual_id!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "manual_id": self.manual_id,
            "name": self.name,
            "description": self.description,
            "specifications": self.specifications,
            "serial_number": self.serial_number,
            "image_url": self.image_url,
            "location": self.location,
            "category_id": self.category_id,
            "department_id": self.department_id,
            "condition": self.condition,
            "status": self.status,
            "is_consumable": self.is_consumable,
            "current_stock": self.current_stock,
            "min_stock_level": self.min_stock_level,
            "source_department_id": self.source_department_id,
            "added_by_id": self.added_by_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ItemDepartmentAccess(db.Model):
    """
    Cross-department visibility grant: lets another department see an item
    and, when can_transfer is set, request a transfer of it.
    """
    __tablename__ = "item_department_access"
    __table_args__ = (
        db.UniqueConstraint("item_id", "department_id", name="uq_item_department_access"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id"), nullable=False, index=True)
    can_transfer = db.Column(db.Boolean, nullable=False, default=True)

    item = db.relationship("Item", backref=db.backref("department_access", lazy=True, cascade="all, delete-orphan"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "department_id": self.department_id,
            "can_transfer": self.can_transfer,
        }


class ItemSequence(db.Model):
    """
    Atomic per-department-code manual ID sequence.

    WHY: Prevent two concurrent item creations under one department code
    from computing the same "<CODE>-NNN".
    """
    __tablename__ = "item_sequences"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    department_code = db.Column(db.String(10), nullable=False, unique=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
