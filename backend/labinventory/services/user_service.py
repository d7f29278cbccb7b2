# Overview: Account administration: self-registration, admin creation, approval, status, role and deletion.

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import (
    Department,
    IssueRecord,
    IssueRequest,
    Item,
    Setting,
    TransferRecord,
    TransferRequest,
    User,
)
from .access_service import (
    ALL_ROLES,
    ROLE_ADMIN,
    ROLE_FACULTY,
    ROLE_INCHARGE,
    ROLE_STAFF,
    ROLE_STUDENT,
    ROLE_USER,
    get_actor,
    require_role,
)
from .auth_service import hash_password
from .concurrency import run_with_retry
from .errors import ConflictError, ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from . import audit_service, session_service


# Roles a person may pick for themselves at registration
SELF_SERVICE_ROLES = {ROLE_USER, ROLE_STUDENT, ROLE_STAFF, ROLE_FACULTY}

# Columns that keep a user referenced once they have acted in the system
USER_HISTORY_COLUMNS = (
    IssueRequest.user_id,
    IssueRequest.approved_by,
    IssueRecord.user_id,
    IssueRecord.issued_by,
    IssueRecord.returned_to,
    Item.added_by_id,
    TransferRequest.requested_by_id,
    TransferRequest.approved_by_id,
    TransferRecord.transferred_by_id,
    Setting.updated_by_user_id,
)

HISTORY_CONFLICT_MESSAGE = "User has borrowing, inventory or transfer history; deactivate the account instead"


def _clean(value) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _check_unique_identity(email: str, student_id: str | None, employee_id: str | None) -> None:
    if db.session.query(User.id).filter(db.func.lower(User.email) == email.lower()).first():
        raise ConflictError("An account with this email already exists")
    if student_id and db.session.query(User.id).filter_by(student_id=student_id).first():
        raise ConflictError("This student ID is already registered")
    if employee_id and db.session.query(User.id).filter_by(employee_id=employee_id).first():
        raise ConflictError("This employee ID is already registered")


def _insert_user(user: User) -> User:
    def _op():
        db.session.add(user)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError("An account with these details already exists")
        return user

    return run_with_retry(_op)


def register_user(
    *,
    name: str,
    email: str,
    password: str,
    role: str | None = None,
    phone: str | None = None,
    student_id: str | None = None,
    employee_id: str | None = None,
) -> User:
    """
    Self-registration. The account starts unapproved; an admin approves it.

    Only institutional addresses are accepted.
    """
    name, email = _clean(name), _clean(email)
    if not name or not email or not password:
        raise ValidationError("Name, email, and password are required")
    email = email.lower()

    domain = current_app.config.get("ALLOWED_EMAIL_DOMAIN", "woxsen.edu.in")
    if not email.endswith(f"@{domain}"):
        raise ValidationError(f"Please use your university email (@{domain})")

    role = (_clean(role) or ROLE_USER).upper()
    if role not in SELF_SERVICE_ROLES:
        raise ValidationError("Invalid role")

    student_id, employee_id = _clean(student_id), _clean(employee_id)
    _check_unique_identity(email, student_id, employee_id)

    user = _insert_user(User(
        name=name,
        email=email,
        password_hash=hash_password(password),
        role=role,
        phone=_clean(phone),
        student_id=student_id,
        employee_id=employee_id,
        is_approved=False,
        is_active=True,
    ))

    audit_service.record_audit(
        user_id=user.id,
        action="REGISTER",
        entity_type="User",
        entity_id=user.id,
        changes={"email": user.email, "role": user.role},
    )
    return user


def create_user(
    actor_id: int,
    *,
    name: str,
    email: str,
    password: str,
    role: str,
    phone: str | None = None,
    student_id: str | None = None,
    employee_id: str | None = None,
) -> User:
    """Admin-created accounts are approved immediately and may take any role."""
    actor = get_actor(actor_id)
    require_role(actor, (ROLE_ADMIN,))

    name, email, role = _clean(name), _clean(email), (_clean(role) or "").upper()
    if not name or not email or not password or not role:
        raise ValidationError("Missing required fields")
    if role not in ALL_ROLES:
        raise ValidationError("Invalid role")
    email = email.lower()

    student_id, employee_id = _clean(student_id), _clean(employee_id)
    _check_unique_identity(email, student_id, employee_id)

    user = _insert_user(User(
        name=name,
        email=email,
        password_hash=hash_password(password),
        role=role,
        phone=_clean(phone),
        student_id=student_id,
        employee_id=employee_id,
        is_approved=True,
        is_active=True,
    ))

    audit_service.record_audit(
        user_id=actor.id,
        action="CREATE",
        entity_type="User",
        entity_id=user.id,
        changes={"email": user.email, "role": user.role, "created_by_admin": True},
    )
    return user


def _load_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


def approve_user(actor_id: int, user_id: int) -> User:
    actor = get_actor(actor_id)
    require_role(actor, (ROLE_ADMIN,))
    user = _load_user(user_id)
    if user.is_approved:
        raise InvalidStateError("User is already approved")

    user.is_approved = True
    db.session.commit()

    audit_service.record_audit(
        user_id=actor.id,
        action="APPROVE",
        entity_type="User",
        entity_id=user.id,
        changes={"is_approved": True},
    )
    return user


def reject_user(actor_id: int, user_id: int) -> None:
    """Discard a pending registration."""
    actor = get_actor(actor_id)
    require_role(actor, (ROLE_ADMIN,))
    user = _load_user(user_id)
    if user.is_approved:
        raise InvalidStateError("Cannot reject an approved user")

    email = user.email
    db.session.delete(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(HISTORY_CONFLICT_MESSAGE)

    audit_service.record_audit(
        user_id=actor.id,
        action="REJECT",
        entity_type="User",
        entity_id=user_id,
        changes={"email": email, "action": "registration rejected"},
    )


def set_user_status(actor_id: int, user_id: int, is_active) -> User:
    actor = get_actor(actor_id)
    require_role(actor, (ROLE_ADMIN,))
    if not isinstance(is_active, bool):
        raise ValidationError("is_active must be a boolean value")
    user = _load_user(user_id)
    if user.id == actor.id and not is_active:
        raise ForbiddenError("Cannot deactivate your own account")

    user.is_active = is_active
    db.session.commit()
    if not is_active:
        session_service.revoke_all_user_sessions(user.id, reason="Account deactivated")

    audit_service.record_audit(
        user_id=actor.id,
        action="UPDATE",
        entity_type="User",
        entity_id=user.id,
        changes={"is_active": is_active},
    )
    return user


def change_role(actor_id: int, user_id: int, role: str) -> User:
    actor = get_actor(actor_id)
    require_role(actor, (ROLE_ADMIN,))
    role = (_clean(role) or "").upper()
    if role not in ALL_ROLES:
        raise ValidationError("Invalid role")
    user = _load_user(user_id)
    if user.id == actor.id:
        raise ForbiddenError("Cannot change your own role")

    previous = user.role
    user.role = role
    # A department incharge must hold the INCHARGE role
    if role != ROLE_INCHARGE:
        db.session.query(Department).filter(Department.incharge_id == user.id).update(
            {Department.incharge_id: None}, synchronize_session=False
        )
    db.session.commit()

    audit_service.record_audit(
        user_id=actor.id,
        action="UPDATE",
        entity_type="User",
        entity_id=user.id,
        changes={"role": {"old": previous, "new": role}},
    )
    return user


def delete_user(actor_id: int, user_id: int) -> None:
    """
    Remove an account.

    Refused for one's own account and while the user still holds items.
    Accounts referenced by any borrowing, inventory, transfer or settings
    row are kept for the record; deactivate them instead.
    """
    actor = get_actor(actor_id)
    require_role(actor, (ROLE_ADMIN,))
    user = _load_user(user_id)
    if user.id == actor.id:
        raise ForbiddenError("Cannot delete your own account")

    open_records = (
        db.session.query(IssueRecord.id)
        .filter(IssueRecord.user_id == user.id, IssueRecord.actual_return_date.is_(None))
        .first()
    )
    if open_records:
        raise InvalidStateError(
            "Cannot delete user with active borrowed items. Please ensure all items are returned first."
        )

    has_history = any(
        db.session.query(column).filter(column == user.id).first() is not None for column in USER_HISTORY_COLUMNS
    )
    if has_history:
        raise ConflictError(HISTORY_CONFLICT_MESSAGE)

    email, name = user.email, user.name
    db.session.query(Department).filter(Department.incharge_id == user.id).update(
        {Department.incharge_id: None}, synchronize_session=False
    )
    db.session.delete(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(HISTORY_CONFLICT_MESSAGE)

    audit_service.record_audit(
        user_id=actor.id,
        action="DELETE",
        entity_type="User",
        entity_id=user_id,
        changes={"email": email, "name": name, "action": "deleted"},
    )


def list_users(*, role: str | None = None, is_approved: bool | None = None, search: str | None = None) -> list[User]:
    query = db.session.query(User)
    if role:
        query = query.filter(User.role == role.upper())
    if is_approved is not None:
        query = query.filter(User.is_approved.is_(is_approved))
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(db.or_(User.name.ilike(like), User.email.ilike(like)))
    return query.order_by(User.created_at.desc(), User.id.desc()).all()
