# Overview: Role constants and the incharge -> department scope checks used by every engine.

from __future__ import annotations

from typing import Iterable

from ..extensions import db
from ..models import User, Department
from .errors import ForbiddenError, UnauthenticatedError


ROLE_ADMIN = "ADMIN"
ROLE_INCHARGE = "INCHARGE"
ROLE_PROCUREMENT = "PROCUREMENT"
ROLE_FACULTY = "FACULTY"
ROLE_STAFF = "STAFF"
ROLE_STUDENT = "STUDENT"
ROLE_USER = "USER"

ALL_ROLES = {
    ROLE_ADMIN,
    ROLE_INCHARGE,
    ROLE_PROCUREMENT,
    ROLE_FACULTY,
    ROLE_STAFF,
    ROLE_STUDENT,
    ROLE_USER,
}

# Who may approve/issue/return loans; INCHARGE only for managed departments
LIFECYCLE_ROLES = (ROLE_INCHARGE, ROLE_ADMIN)
# Who may raise a transfer request
TRANSFER_REQUEST_ROLES = (ROLE_INCHARGE, ROLE_ADMIN)
# Who may approve/reject/complete transfers
TRANSFER_ROLES = (ROLE_INCHARGE, ROLE_ADMIN, ROLE_PROCUREMENT)


def departments_managed_by(user_id: int) -> set[int]:
    """Department IDs whose incharge is this user."""
    rows = db.session.query(Department.id).filter(Department.incharge_id == user_id).all()
    return {row[0] for row in rows}


def get_actor(user_id: int | None) -> User:
    if user_id is None:
        raise UnauthenticatedError("Unauthorized")
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        raise UnauthenticatedError("Unauthorized")
    return user


def require_role(actor: User, roles: Iterable[str]) -> None:
    if actor.role not in set(roles):
        raise ForbiddenError("Unauthorized")


def can_manage_department(actor: User, department_id: int | None, *, unrestricted: Iterable[str] = (ROLE_ADMIN,)) -> bool:
    """
    ADMIN (and any role in `unrestricted`) may act on every department;
    INCHARGE only on the departments they manage; everyone else on none.
    """
    if department_id is None:
        return False
    if actor.role in set(unrestricted):
        return True
    if actor.role == ROLE_INCHARGE:
        return department_id in departments_managed_by(actor.id)
    return False


def require_department_access(
    actor: User,
    department_ids: int | Iterable[int],
    *,
    roles: Iterable[str] = LIFECYCLE_ROLES,
    unrestricted: Iterable[str] = (ROLE_ADMIN,),
    message: str = "You do not have access to this department",
) -> None:
    """
    Capability check: actor has one of `roles` and manages at least one of
    `department_ids`.
    """
    require_role(actor, roles)
    if isinstance(department_ids, int):
        department_ids = (department_ids,)
    if not any(can_manage_department(actor, dept_id, unrestricted=unrestricted) for dept_id in department_ids):
        raise ForbiddenError(message)


def visible_department_ids(actor: User, *, unrestricted: Iterable[str] = (ROLE_ADMIN,)) -> set[int] | None:
    """None means every department."""
    if actor.role in set(unrestricted):
        return None
    if actor.role == ROLE_INCHARGE:
        return departments_managed_by(actor.id)
    return set()
