# Overview: Departments (code, incharge assignment) and item categories, with their edits and removal.

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Category, Department, IssueRecord, Item, ItemDepartmentAccess, TransferRequest, User
from .access_service import ROLE_ADMIN, ROLE_INCHARGE, get_actor, require_role
from .concurrency import lock_for_update, run_with_retry
from .errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from .identifier_service import DEPARTMENT_CODE_RE
from .settings_service import load_settings
from . import audit_service


CATEGORY_NAME_MIN = 3
CATEGORY_NAME_MAX = 100
MAX_BORROW_DAYS_MIN = 1
MAX_BORROW_DAYS_MAX = 365

# Category edits are also open to incharges
CATEGORY_EDIT_ROLES = (ROLE_ADMIN, ROLE_INCHARGE)


def _validate_incharge(incharge_id: int) -> User:
    user = db.session.get(User, incharge_id)
    if not user:
        raise NotFoundError("Incharge user not found")
    if user.role != ROLE_INCHARGE:
        raise ValidationError("User must have INCHARGE role")
    if not user.is_approved or not user.is_active:
        raise ValidationError("Incharge must be approved and active")
    return user


def create_department(
    actor_id: int,
    *,
    name: str,
    code: str,
    description: str | None = None,
    incharge_id: int | None = None,
) -> Department:
    actor = get_actor(actor_id)
    require_role(actor, (ROLE_ADMIN,))

    name = (name or "").strip()
    code = (code or "").strip()
    if not name or not code:
        raise ValidationError("Name and code are required")
    if not DEPARTMENT_CODE_RE.match(code):
        raise ValidationError("Code must be 2-10 uppercase alphanumeric characters")

    existing = (
        db.session.query(Department)
        .filter(db.or_(db.func.lower(Department.name) == name.lower(), Department.code == code))
        .first()
    )
    if existing:
        if existing.name.lower() == name.lower():
            raise ConflictError("Department name already exists")
        raise ConflictError("Department code already exists")

    if incharge_id is not None:
        _validate_incharge(incharge_id)

    def _op():
        department = Department(
            name=name,
            code=code,
            description=(description or "").strip() or None,
            incharge_id=incharge_id,
        )
        db.session.add(department)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError("Department name or code already exists")
        return department

    department = run_with_retry(_op)

    audit_service.record_audit(
        user_id=actor.id,
        action="CREATE",
        entity_type="Department",
        entity_id=department.id,
        changes={"name": name, "code": code, "incharge_id": incharge_id},
    )
    return department


def assign_incharge(actor_id: int, department_id: int, incharge_id: int | None) -> Department:
    """Set (or with None, clear) a department's incharge."""
    actor = get_actor(actor_id)
    require_role(actor, (ROLE_ADMIN,))

    department = db.session.get(Department, department_id)
    if not department:
        raise NotFoundError("Department not found")
    if incharge_id is not None:
        _validate_incharge(incharge_id)

    previous = department.incharge_id
    department.incharge_id = incharge_id
    db.session.commit()

    audit_service.record_audit(
        user_id=actor.id,
        action="ASSIGN_INCHARGE",
        entity_type="Department",
        entity_id=department.id,
        changes={"incharge_id": {"old": previous, "new": incharge_id}},
    )
    return department


def list_departments(search: str | None = None) -> list[Department]:
    query = db.session.query(Department)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(db.or_(Department.name.ilike(like), Department.code.ilike(like)))
    return query.order_by(Department.name.asc()).all()


def _parse_duration(value) -> int:
    try:
        duration = int(value)
    except (TypeError, ValueError):
        raise ValidationError("Max borrow duration must be between 1 and 365 days")
    if isinstance(value, bool) or not MAX_BORROW_DAYS_MIN <= duration <= MAX_BORROW_DAYS_MAX:
        raise ValidationError("Max borrow duration must be between 1 and 365 days")
    return duration


def create_category(
    actor_id: int,
    *,
    name: str,
    description: str | None = None,
    max_borrow_duration: int | None = None,
    requires_approval: bool = True,
    visible_to_students: bool = True,
    visible_to_staff: bool = True,
) -> Category:
    actor = get_actor(actor_id)
    require_role(actor, (ROLE_ADMIN,))

    name = (name or "").strip()
    if not name:
        raise ValidationError("Category name is required")
    if not CATEGORY_NAME_MIN <= len(name) <= CATEGORY_NAME_MAX:
        raise ValidationError(f"Category name must be {CATEGORY_NAME_MIN}-{CATEGORY_NAME_MAX} characters")
    if db.session.query(Category.id).filter(db.func.lower(Category.name) == name.lower()).first():
        raise ConflictError("Category name already exists")

    if max_borrow_duration is None:
        duration = load_settings().default_max_borrow_days
    else:
        duration = _parse_duration(max_borrow_duration)

    def _op():
        category = Category(
            name=name,
            description=(description or "").strip() or None,
            max_borrow_duration=duration,
            requires_approval=bool(requires_approval),
            visible_to_students=bool(visible_to_students),
            visible_to_staff=bool(visible_to_staff),
        )
        db.session.add(category)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError("Category name already exists")
        return category

    category = run_with_retry(_op)

    audit_service.record_audit(
        user_id=actor.id,
        action="CREATE",
        entity_type="Category",
        entity_id=category.id,
        changes={"name": name, "max_borrow_duration": duration},
    )
    return category


def list_categories() -> list[Category]:
    return db.session.query(Category).order_by(Category.name.asc()).all()


def update_department(actor_id: int, department_id: int, patch: dict) -> Department:
    """
    Edit name, code, description or incharge (ADMIN only).

    A new code applies to items registered afterwards; existing manual IDs
    keep the code they were issued under.
    """
    actor = get_actor(actor_id)
    require_role(actor, (ROLE_ADMIN,))
    changes = {}

    def _op():
        changes.clear()
        department = lock_for_update(db.session.query(Department).filter_by(id=department_id)).first()
        if not department:
            raise NotFoundError("Department not found")

        values = {}
        if patch.get("code"):
            code = str(patch["code"]).strip().upper()
            if not DEPARTMENT_CODE_RE.match(code):
                raise ValidationError("Code must be 2-10 uppercase alphanumeric characters")
            taken = (
                db.session.query(Department.id)
                .filter(Department.code == code, Department.id != department.id)
                .first()
            )
            if taken:
                raise ConflictError("Department code already exists")
            values["code"] = code
        if patch.get("name"):
            name = str(patch["name"]).strip()
            taken = (
                db.session.query(Department.id)
                .filter(db.func.lower(Department.name) == name.lower(), Department.id != department.id)
                .first()
            )
            if taken:
                raise ConflictError("Department name already exists")
            values["name"] = name
        if "description" in patch:
            values["description"] = (patch["description"] or "").strip() or None
        if "incharge_id" in patch:
            if patch["incharge_id"] is not None:
                _validate_incharge(patch["incharge_id"])
            values["incharge_id"] = patch["incharge_id"]

        for key, value in values.items():
            old = getattr(department, key)
            if old != value:
                changes[key] = {"old": old, "new": value}
                setattr(department, key, value)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError("Department name or code already exists")
        return department

    department = run_with_retry(_op)

    if changes:
        audit_service.record_audit(
            user_id=actor.id,
            action="UPDATE",
            entity_type="Department",
            entity_id=department.id,
            changes=changes,
        )
    return department


def delete_department(actor_id: int, department_id: int) -> None:
    """Remove a department that owns no items (ADMIN only)."""
    actor = get_actor(actor_id)
    require_role(actor, (ROLE_ADMIN,))
    removed = {}

    def _op():
        department = lock_for_update(db.session.query(Department).filter_by(id=department_id)).first()
        if not department:
            raise NotFoundError("Department not found")
        item_count = db.session.query(Item.id).filter(Item.department_id == department.id).count()
        if item_count:
            raise InvalidStateError(
                f"Cannot delete department with {item_count} items. Please reassign or remove items first."
            )
        referenced = (
            db.session.query(IssueRecord.id).filter(IssueRecord.department_id == department.id).first()
            or db.session.query(TransferRequest.id)
            .filter(db.or_(TransferRequest.from_department_id == department.id,
                           TransferRequest.to_department_id == department.id))
            .first()
            or db.session.query(Item.id).filter(Item.source_department_id == department.id).first()
        )
        if referenced:
            raise ConflictError("Department has borrowing or transfer history and cannot be deleted")

        removed.update(name=department.name, code=department.code)
        db.session.query(ItemDepartmentAccess).filter_by(department_id=department.id).delete(synchronize_session=False)
        db.session.delete(department)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError("Department has borrowing or transfer history and cannot be deleted")

    run_with_retry(_op)

    audit_service.record_audit(
        user_id=actor.id,
        action="DELETE",
        entity_type="Department",
        entity_id=department_id,
        changes=removed,
    )


def update_category(actor_id: int, category_id: int, patch: dict) -> Category:
    """
    Edit a category's name or borrowing policy (ADMIN / INCHARGE).

    A new max_borrow_duration applies to requests submitted afterwards;
    due dates already fixed at approval do not move.
    """
    actor = get_actor(actor_id)
    require_role(actor, CATEGORY_EDIT_ROLES)
    changes = {}

    def _op():
        changes.clear()
        category = lock_for_update(db.session.query(Category).filter_by(id=category_id)).first()
        if not category:
            raise NotFoundError("Category not found")

        values = {}
        if patch.get("name"):
            name = str(patch["name"]).strip()
            if not CATEGORY_NAME_MIN <= len(name) <= CATEGORY_NAME_MAX:
                raise ValidationError(f"Category name must be {CATEGORY_NAME_MIN}-{CATEGORY_NAME_MAX} characters")
            taken = (
                db.session.query(Category.id)
                .filter(db.func.lower(Category.name) == name.lower(), Category.id != category.id)
                .first()
            )
            if taken:
                raise ConflictError("Category name already exists")
            values["name"] = name
        if "description" in patch:
            values["description"] = (patch["description"] or "").strip() or None
        if "max_borrow_duration" in patch:
            values["max_borrow_duration"] = _parse_duration(patch["max_borrow_duration"])
        for flag in ("requires_approval", "visible_to_students", "visible_to_staff"):
            if flag in patch:
                values[flag] = patch[flag] is not False

        for key, value in values.items():
            old = getattr(category, key)
            if old != value:
                changes[key] = {"old": old, "new": value}
                setattr(category, key, value)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError("Category name already exists")
        return category

    category = run_with_retry(_op)

    if changes:
        audit_service.record_audit(
            user_id=actor.id,
            action="UPDATE",
            entity_type="Category",
            entity_id=category.id,
            changes=changes,
        )
    return category


def delete_category(actor_id: int, category_id: int) -> None:
    """Remove a category that holds no items (ADMIN / INCHARGE)."""
    actor = get_actor(actor_id)
    require_role(actor, CATEGORY_EDIT_ROLES)
    removed = {}

    def _op():
        category = lock_for_update(db.session.query(Category).filter_by(id=category_id)).first()
        if not category:
            raise NotFoundError("Category not found")
        item_count = db.session.query(Item.id).filter(Item.category_id == category.id).count()
        if item_count:
            raise InvalidStateError(
                f"Cannot delete category with {item_count} items. Please reassign or remove items first."
            )
        removed["name"] = category.name
        db.session.delete(category)
        db.session.commit()

    run_with_retry(_op)

    audit_service.record_audit(
        user_id=actor.id,
        action="DELETE",
        entity_type="Category",
        entity_id=category_id,
        changes=removed,
    )
