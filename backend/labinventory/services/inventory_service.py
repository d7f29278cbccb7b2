# Overview: Item registration, cross-department access grants, and stock queries.

"""
Inventory Service

Items are registered by ADMIN or PROCUREMENT. Each new item reserves its
manual ID from the department's sequence in the same transaction as the
insert; a rolled-back insert releases the number. Deleting an item never
releases its number.

Edits and deletions are also open to the incharge of the owning department.

Consumables carry current_stock / min_stock_level; non-consumables never do.
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Category, Department, IssueRequest, Item, ItemDepartmentAccess, TransferRecord, TransferRequest
from .access_service import (
    ROLE_ADMIN,
    ROLE_INCHARGE,
    ROLE_PROCUREMENT,
    get_actor,
    require_department_access,
    require_role,
)
from .borrow_service import (
    CONDITION_GOOD,
    ITEM_CONDITIONS,
    ITEM_STATUS_AVAILABLE,
    ITEM_STATUS_ISSUED,
    ITEM_STATUS_MAINTENANCE,
    ITEM_STATUS_PENDING_REPLACEMENT,
)
from .concurrency import lock_for_update, run_with_retry
from .errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from .identifier_service import next_manual_id
from .settings_service import LabSettings, load_settings
from . import audit_service


INVENTORY_ROLES = (ROLE_ADMIN, ROLE_PROCUREMENT)
# Incharges may also edit or remove items of departments they manage
ITEM_EDIT_ROLES = (ROLE_ADMIN, ROLE_PROCUREMENT, ROLE_INCHARGE)


def _non_negative_int(value, field_name: str) -> int:
    if value is None or value == "" or isinstance(value, bool):
        raise ValidationError(f"{field_name} is required for consumable items")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be a whole number")
    if number < 0:
        raise ValidationError(f"{field_name} cannot be negative")
    return number


def create_item(
    actor_id: int,
    *,
    name: str,
    category_id: int,
    department_id: int,
    description: str | None = None,
    specifications: str | None = None,
    serial_number: str | None = None,
    image_url: str | None = None,
    location: str | None = None,
    condition: str | None = None,
    is_consumable: bool = False,
    current_stock: int | None = None,
    min_stock_level: int | None = None,
    available_department_ids: list[int] | None = None,
) -> Item:
    """
    Register an item under a department with a fresh manual ID.

    available_department_ids grants other departments visibility with
    can_transfer=True in the same transaction.
    """
    actor = get_actor(actor_id)
    require_role(actor, INVENTORY_ROLES)

    name = (name or "").strip()
    if not name or not category_id or not department_id:
        raise ValidationError("Name, category, and department are required")

    condition = (condition or CONDITION_GOOD).strip().upper()
    if condition not in ITEM_CONDITIONS:
        raise ValidationError(f"Invalid condition: {condition}")

    if is_consumable:
        stock = _non_negative_int(current_stock, "Current stock")
        min_level = _non_negative_int(min_stock_level, "Minimum stock level")
    else:
        stock = min_level = None

    grant_ids = []
    for dept_id in available_department_ids or []:
        if dept_id != department_id and dept_id not in grant_ids:
            grant_ids.append(dept_id)

    serial_number = (serial_number or "").strip() or None

    def _op():
        if not db.session.get(Category, category_id):
            raise NotFoundError("Category not found")
        department = db.session.get(Department, department_id)
        if not department:
            raise NotFoundError("Department not found")
        missing = [d for d in grant_ids if db.session.get(Department, d) is None]
        if missing:
            raise NotFoundError(f"Department not found: {missing[0]}")

        item = Item(
            manual_id=next_manual_id(department.code),
            name=name,
            description=(description or "").strip() or None,
            specifications=(specifications or "").strip() or None,
            serial_number=serial_number,
            image_url=(image_url or "").strip() or None,
            location=(location or "").strip() or None,
            category_id=category_id,
            department_id=department.id,
            condition=condition,
            status=ITEM_STATUS_AVAILABLE,
            is_consumable=bool(is_consumable),
            current_stock=stock,
            min_stock_level=min_level,
            added_by_id=actor.id,
        )
        db.session.add(item)
        try:
            db.session.flush()
            for dept_id in grant_ids:
                db.session.add(ItemDepartmentAccess(item_id=item.id, department_id=dept_id, can_transfer=True))
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError("An item with this serial number already exists")
        return item

    item = run_with_retry(_op)

    audit_service.record_audit(
        user_id=actor.id,
        action="CREATE",
        entity_type="Item",
        entity_id=item.id,
        changes={
            "name": item.name,
            "manual_id": item.manual_id,
            "is_consumable": item.is_consumable,
            "available_departments": len(grant_ids),
        },
    )
    return item


def grant_department_access(actor_id: int, item_id: int, department_id: int, can_transfer: bool = True) -> ItemDepartmentAccess:
    """Share an item with another department (upsert)."""
    actor = get_actor(actor_id)
    require_role(actor, INVENTORY_ROLES)

    item = db.session.get(Item, item_id)
    if not item:
        raise NotFoundError("Item not found")
    if not db.session.get(Department, department_id):
        raise NotFoundError("Department not found")
    if item.department_id == department_id:
        raise ValidationError("Item already belongs to this department")

    def _op():
        access = db.session.query(ItemDepartmentAccess).filter_by(item_id=item_id, department_id=department_id).first()
        if access is None:
            access = ItemDepartmentAccess(item_id=item_id, department_id=department_id)
            db.session.add(access)
        access.can_transfer = bool(can_transfer)
        db.session.commit()
        return access

    access = run_with_retry(_op)

    audit_service.record_audit(
        user_id=actor.id,
        action="GRANT_ACCESS",
        entity_type="Item",
        entity_id=item_id,
        changes={"department_id": department_id, "can_transfer": access.can_transfer},
    )
    return access


def get_item(item_id: int) -> Item:
    item = db.session.get(Item, item_id)
    if not item:
        raise NotFoundError("Item not found")
    return item


def list_items(
    *,
    department_id: int | None = None,
    status: str | None = None,
    is_consumable: bool | None = None,
    search: str | None = None,
) -> list[Item]:
    query = db.session.query(Item)
    if department_id is not None:
        query = query.filter(Item.department_id == department_id)
    if status:
        query = query.filter(Item.status == status.upper())
    if is_consumable is not None:
        query = query.filter(Item.is_consumable.is_(is_consumable))
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(db.or_(Item.name.ilike(like), Item.manual_id.ilike(like), Item.serial_number.ilike(like)))
    return query.order_by(Item.manual_id.asc()).all()


def list_transferable_items(department_id: int) -> list[Item]:
    """Items owned elsewhere that are shared with this department."""
    return (
        db.session.query(Item)
        .join(ItemDepartmentAccess, ItemDepartmentAccess.item_id == Item.id)
        .filter(
            ItemDepartmentAccess.department_id == department_id,
            ItemDepartmentAccess.can_transfer.is_(True),
            Item.department_id != department_id,
        )
        .order_by(Item.manual_id.asc())
        .all()
    )


def list_low_stock_items(settings: LabSettings | None = None, department_id: int | None = None) -> list[Item]:
    """
    Consumables at or below their threshold: min_stock_level when set,
    otherwise the consumable_min_stock_alert setting.
    """
    settings = settings or load_settings()
    threshold = db.func.coalesce(Item.min_stock_level, settings.consumable_min_stock_alert)
    query = db.session.query(Item).filter(
        Item.is_consumable.is_(True),
        db.func.coalesce(Item.current_stock, 0) <= threshold,
    )
    if department_id is not None:
        query = query.filter(Item.department_id == department_id)
    return query.order_by(Item.current_stock.asc(), Item.manual_id.asc()).all()


# Fields an item edit may touch; ownership moves only through transfers
ITEM_PATCH_FIELDS = {
    "name",
    "description",
    "specifications",
    "category_id",
    "serial_number",
    "image_url",
    "location",
    "condition",
    "status",
    "current_stock",
    "min_stock_level",
}
ITEM_FIXED_FIELDS = {"manual_id", "department_id", "is_consumable"}
EDITABLE_ITEM_STATUSES = {ITEM_STATUS_AVAILABLE, ITEM_STATUS_MAINTENANCE, ITEM_STATUS_PENDING_REPLACEMENT}


def _require_item_editor(actor, department_id: int) -> None:
    require_department_access(
        actor,
        department_id,
        roles=ITEM_EDIT_ROLES,
        unrestricted=INVENTORY_ROLES,
        message="Access denied",
    )


def _clean_text(value):
    return (str(value).strip() or None) if value is not None else None


def update_item(actor_id: int, item_id: int, patch: dict) -> Item:
    """
    Edit an item's catalogue fields.

    ADMIN / PROCUREMENT may edit any item; an INCHARGE only items of a
    department they manage. Manual ID, owning department and the
    consumable flag are fixed. An ISSUED item's status is owned by the
    borrow lifecycle and cannot be edited here.
    """
    actor = get_actor(actor_id)
    require_role(actor, ITEM_EDIT_ROLES)

    fixed = sorted(ITEM_FIXED_FIELDS & set(patch))
    if fixed:
        raise ValidationError(f"Field cannot be edited: {fixed[0]}")
    unknown = sorted(set(patch) - ITEM_PATCH_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown field: {unknown[0]}")

    changes = {}

    def _op():
        changes.clear()
        item = lock_for_update(db.session.query(Item).filter_by(id=item_id)).first()
        if not item:
            raise NotFoundError("Item not found")
        _require_item_editor(actor, item.department_id)

        values = {}
        if "name" in patch:
            name = _clean_text(patch["name"])
            if not name:
                raise ValidationError("Name cannot be empty")
            values["name"] = name
        for text_field in ("description", "specifications", "image_url", "location"):
            if text_field in patch:
                values[text_field] = _clean_text(patch[text_field])
        if "serial_number" in patch:
            serial = _clean_text(patch["serial_number"])
            if serial and serial != item.serial_number:
                taken = db.session.query(Item.id).filter(Item.serial_number == serial, Item.id != item.id).first()
                if taken:
                    raise ConflictError("Serial number already exists")
            values["serial_number"] = serial
        if "category_id" in patch:
            if not db.session.get(Category, patch["category_id"]):
                raise NotFoundError("Category not found")
            values["category_id"] = patch["category_id"]
        if "condition" in patch:
            condition = (patch["condition"] or "").strip().upper()
            if condition not in ITEM_CONDITIONS:
                raise ValidationError(f"Invalid condition: {condition}")
            values["condition"] = condition
        if "status" in patch:
            status = (patch["status"] or "").strip().upper()
            if status != item.status:
                if item.status == ITEM_STATUS_ISSUED:
                    raise InvalidStateError("Item is currently issued; record the return first")
                if status not in EDITABLE_ITEM_STATUSES:
                    raise ValidationError(f"Invalid status: {status}")
            values["status"] = status
        for stock_field, label in (("current_stock", "Current stock"), ("min_stock_level", "Minimum stock level")):
            if stock_field in patch:
                if not item.is_consumable:
                    raise ValidationError("Stock levels apply to consumable items only")
                values[stock_field] = _non_negative_int(patch[stock_field], label)

        for key, value in values.items():
            old = getattr(item, key)
            if old != value:
                changes[key] = {"old": old, "new": value}
                setattr(item, key, value)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError("Serial number already exists")
        return item

    item = run_with_retry(_op)

    if changes:
        audit_service.record_audit(
            user_id=actor.id,
            action="UPDATE",
            entity_type="Item",
            entity_id=item.id,
            changes=changes,
        )
    return item


def delete_item(actor_id: int, item_id: int) -> None:
    """
    Remove an item from the catalogue.

    Refused while the item is issued, and for items with borrowing or
    transfer history. The manual ID is not released: the department's
    sequence keeps counting past it.
    """
    actor = get_actor(actor_id)
    require_role(actor, ITEM_EDIT_ROLES)
    removed = {}

    def _op():
        item = lock_for_update(db.session.query(Item).filter_by(id=item_id)).first()
        if not item:
            raise NotFoundError("Item not found")
        _require_item_editor(actor, item.department_id)
        if item.status == ITEM_STATUS_ISSUED:
            raise InvalidStateError("Cannot delete item that is currently issued")

        has_history = (
            db.session.query(IssueRequest.id).filter(IssueRequest.item_id == item.id).first()
            or db.session.query(TransferRequest.id).filter(TransferRequest.item_id == item.id).first()
            or db.session.query(TransferRecord.id).filter(TransferRecord.destination_item_id == item.id).first()
        )
        if has_history:
            raise ConflictError("Item has borrowing or transfer history; mark it under maintenance instead")

        removed.update(manual_id=item.manual_id, name=item.name, department_id=item.department_id)
        db.session.delete(item)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError("Item has borrowing or transfer history; mark it under maintenance instead")

    run_with_retry(_op)

    audit_service.record_audit(
        user_id=actor.id,
        action="DELETE",
        entity_type="Item",
        entity_id=item_id,
        changes=removed,
    )


def set_department_access(actor_id: int, item_id: int, grants: list) -> list[ItemDepartmentAccess]:
    """
    Replace the set of departments an item is shared with.

    grants: [{"department_id": int, "can_transfer": bool}], may be empty.
    """
    actor = get_actor(actor_id)
    require_role(actor, INVENTORY_ROLES)
    if not isinstance(grants, list):
        raise ValidationError("Available departments array is required")

    wanted = {}
    for grant in grants:
        if not isinstance(grant, dict) or not grant.get("department_id"):
            raise ValidationError("Each entry needs a department_id")
        wanted[grant["department_id"]] = grant.get("can_transfer", True) is not False

    def _op():
        item = lock_for_update(db.session.query(Item).filter_by(id=item_id)).first()
        if not item:
            raise NotFoundError("Item not found")
        if item.department_id in wanted:
            raise ValidationError("Item already belongs to this department")
        missing = [d for d in wanted if db.session.get(Department, d) is None]
        if missing:
            raise NotFoundError(f"Department not found: {missing[0]}")

        db.session.query(ItemDepartmentAccess).filter_by(item_id=item.id).delete(synchronize_session=False)
        rows = [
            ItemDepartmentAccess(item_id=item.id, department_id=dept_id, can_transfer=can_transfer)
            for dept_id, can_transfer in wanted.items()
        ]
        db.session.add_all(rows)
        db.session.commit()
        return rows

    rows = run_with_retry(_op)

    audit_service.record_audit(
        user_id=actor.id,
        action="UPDATE_ACCESS",
        entity_type="Item",
        entity_id=item_id,
        changes={"departments": sorted(wanted), "departments_count": len(wanted)},
    )
    return rows
