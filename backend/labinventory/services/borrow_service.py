# Overview: Borrow lifecycle engine: request, approve/reject/cancel, issue and return of items.

"""
Borrow lifecycle service.

WHY: One place owns every IssueRequest / IssueRecord transition and the
Item status coupling, so the invariants hold no matter which caller
(blueprint, CLI, test) drives them.

LIFECYCLE:
1. PENDING: submit_request
2. APPROVED / REJECTED: approve_request / reject_request (incharge)
3. CANCELLED: cancel_request (owner, PENDING only)
4. ISSUED: issue_item creates the IssueRecord and flips the Item to ISSUED
5. RETURNED: return_item closes the record, restores the Item and applies bans

VALIDATION ORDER: eligibility -> resource state -> business rule ->
idempotency, so the same bad input always yields the same error.

INVARIANTS:
- at most one open IssueRecord per item (partial unique index)
- a non-consumable item is ISSUED iff it has an open IssueRecord
- one IssueRecord per request (unique request_id)

SIDE EFFECTS: audit rows and emails are written after the commit and
never affect the outcome of the operation.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import IssueRecord, IssueRequest, Item, User
from ..time_utils import SECONDS_PER_DAY, days_after, to_utc_z, utcnow
from .access_service import (
    LIFECYCLE_ROLES,
    get_actor,
    require_department_access,
    require_role,
    visible_department_ids,
)
from .ban_service import BanOutcome, apply_return_penalties, check_borrow_eligibility
from .concurrency import lock_for_update, run_with_retry
from .errors import (
    AlreadyIssuedError,
    DuplicateRequestError,
    DurationExceededError,
    ForbiddenError,
    InvalidStateError,
    ItemUnavailableError,
    NotFoundError,
    ValidationError,
)
from .settings_service import LabSettings, load_settings
from . import audit_service, notification_service


logger = logging.getLogger(__name__)


# Request status constants
REQUEST_STATUS_PENDING = "PENDING"
REQUEST_STATUS_APPROVED = "APPROVED"
REQUEST_STATUS_REJECTED = "REJECTED"
REQUEST_STATUS_CANCELLED = "CANCELLED"
REQUEST_STATUSES = {
    REQUEST_STATUS_PENDING,
    REQUEST_STATUS_APPROVED,
    REQUEST_STATUS_REJECTED,
    REQUEST_STATUS_CANCELLED,
}
ACTIVE_REQUEST_STATUSES = (REQUEST_STATUS_PENDING, REQUEST_STATUS_APPROVED)

# Item status constants
ITEM_STATUS_AVAILABLE = "AVAILABLE"
ITEM_STATUS_ISSUED = "ISSUED"
ITEM_STATUS_MAINTENANCE = "MAINTENANCE"
ITEM_STATUS_PENDING_REPLACEMENT = "PENDING_REPLACEMENT"

# Item condition constants
CONDITION_NEW = "NEW"
CONDITION_GOOD = "GOOD"
CONDITION_FAIR = "FAIR"
CONDITION_DAMAGED = "DAMAGED"
CONDITION_UNDER_REPAIR = "UNDER_REPAIR"
ITEM_CONDITIONS = {CONDITION_NEW, CONDITION_GOOD, CONDITION_FAIR, CONDITION_DAMAGED, CONDITION_UNDER_REPAIR}
CONDITIONS_REQUIRING_REMARKS = {CONDITION_DAMAGED, CONDITION_UNDER_REPAIR}


@dataclass
class ReturnResult:
    record: IssueRecord
    is_late: bool
    days_late: int
    ban: BanOutcome
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "issue_record": self.record.to_dict(),
            "is_late": self.is_late,
            "days_late": self.days_late,
            "banned_until": to_utc_z(self.ban.banned_until),
            "banned_indefinitely": self.ban.indefinite,
            "warnings": self.warnings,
        }


def _parse_positive_int(value, message: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(message)
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(message)
    if number != value and not isinstance(value, str):
        raise ValidationError(message)
    if number < 1:
        raise ValidationError(message)
    return number


def _notify(func, *args, **kwargs) -> None:
    """Fire a notification after commit; failures are logged, never raised."""
    try:
        func(*args, **kwargs)
    except Exception:
        logger.exception("Notification %s failed", getattr(func, "__name__", func))


# =============================================================================
# Requests
# =============================================================================

def submit_request(
    user_id: int,
    item_id: int,
    purpose: str,
    requested_days: int,
    *,
    now: datetime | None = None,
    settings: LabSettings | None = None,
) -> IssueRequest:
    """
    Create a PENDING request for an item and tell the department incharge.

    Raises:
        ValidationError: missing item, purpose or duration
        NotFoundError: unknown user or item
        AccountNotEligibleError: unapproved, inactive or banned user
        ItemUnavailableError: consumable or not AVAILABLE
        DurationExceededError: longer than the category allows
        DuplicateRequestError: an active request already exists
    """
    if not item_id or not (purpose or "").strip() or not requested_days:
        raise ValidationError("Item ID, purpose, and requested days are required")
    days = _parse_positive_int(requested_days, "Requested days must be a positive whole number")
    now = now or utcnow()

    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    check_borrow_eligibility(user, now)

    def _op():
        item = lock_for_update(db.session.query(Item).filter_by(id=item_id)).first()
        if not item:
            raise NotFoundError("Item not found")

        if item.is_consumable:
            raise ItemUnavailableError("Consumable items cannot be borrowed")
        if item.status != ITEM_STATUS_AVAILABLE:
            raise ItemUnavailableError("Item is not available for borrowing")

        max_days = item.category.max_borrow_duration
        if days > max_days:
            raise DurationExceededError(f"Requested duration exceeds maximum allowed ({max_days} days)")

        existing = (
            db.session.query(IssueRequest.id)
            .filter(
                IssueRequest.user_id == user.id,
                IssueRequest.item_id == item.id,
                IssueRequest.status.in_(ACTIVE_REQUEST_STATUSES),
                IssueRequest.completed_at.is_(None),
            )
            .first()
        )
        if existing:
            raise DuplicateRequestError("You already have an active request for this item")

        issue_request = IssueRequest(
            user_id=user.id,
            item_id=item.id,
            purpose=purpose.strip(),
            requested_days=days,
            status=REQUEST_STATUS_PENDING,
            request_date=now,
        )
        db.session.add(issue_request)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise DuplicateRequestError("You already have an active request for this item")
        return issue_request

    issue_request = run_with_retry(_op)

    audit_service.record_audit(
        user_id=user.id,
        action="CREATE",
        entity_type="IssueRequest",
        entity_id=issue_request.id,
        changes={
            "item_name": issue_request.item.name,
            "item_id": issue_request.item.manual_id,
            "purpose": issue_request.purpose,
            "requested_days": issue_request.requested_days,
        },
    )
    _notify(notification_service.notify_request_submitted, issue_request, settings)
    return issue_request


def _load_request_for_update(request_id: int) -> IssueRequest:
    issue_request = lock_for_update(db.session.query(IssueRequest).filter_by(id=request_id)).first()
    if not issue_request:
        raise NotFoundError("Request not found")
    return issue_request


def approve_request(
    actor_id: int,
    request_id: int,
    collection_instructions: str | None = None,
    *,
    now: datetime | None = None,
    settings: LabSettings | None = None,
) -> IssueRequest:
    """
    Approve a PENDING request. Fixes expected_return_date = now + requested_days.
    """
    actor = get_actor(actor_id)
    require_role(actor, LIFECYCLE_ROLES)
    now = now or utcnow()

    def _op():
        issue_request = _load_request_for_update(request_id)
        require_department_access(actor, issue_request.item.department_id)

        if issue_request.status != REQUEST_STATUS_PENDING:
            raise InvalidStateError(f"Cannot approve request in {issue_request.status} status")

        issue_request.status = REQUEST_STATUS_APPROVED
        issue_request.approved_by = actor.id
        issue_request.approval_date = now
        issue_request.expected_return_date = days_after(now, issue_request.requested_days)
        issue_request.remarks = (collection_instructions or "").strip() or None
        db.session.commit()
        return issue_request

    issue_request = run_with_retry(_op)

    audit_service.record_audit(
        user_id=actor.id,
        action="APPROVE",
        entity_type="IssueRequest",
        entity_id=issue_request.id,
        changes={
            "status": REQUEST_STATUS_APPROVED,
            "expected_return_date": issue_request.expected_return_date,
            "collection_instructions": issue_request.remarks,
        },
    )
    _notify(notification_service.notify_request_status, issue_request, settings)
    return issue_request


def reject_request(
    actor_id: int,
    request_id: int,
    reason: str,
    *,
    now: datetime | None = None,
    settings: LabSettings | None = None,
) -> IssueRequest:
    """Reject a PENDING request with a mandatory reason."""
    if not (reason or "").strip():
        raise ValidationError("Rejection reason is required")
    actor = get_actor(actor_id)
    require_role(actor, LIFECYCLE_ROLES)
    now = now or utcnow()

    def _op():
        issue_request = _load_request_for_update(request_id)
        require_department_access(actor, issue_request.item.department_id)

        if issue_request.status != REQUEST_STATUS_PENDING:
            raise InvalidStateError(f"Cannot reject request in {issue_request.status} status")

        issue_request.status = REQUEST_STATUS_REJECTED
        issue_request.rejection_reason = reason.strip()
        issue_request.approved_by = actor.id
        issue_request.approval_date = now
        db.session.commit()
        return issue_request

    issue_request = run_with_retry(_op)

    audit_service.record_audit(
        user_id=actor.id,
        action="REJECT",
        entity_type="IssueRequest",
        entity_id=issue_request.id,
        changes={"status": REQUEST_STATUS_REJECTED, "reason": issue_request.rejection_reason},
    )
    _notify(notification_service.notify_request_status, issue_request, settings)
    return issue_request


def cancel_request(user_id: int, request_id: int) -> IssueRequest:
    """Withdraw one's own PENDING request."""
    def _op():
        issue_request = _load_request_for_update(request_id)
        if issue_request.user_id != user_id:
            raise ForbiddenError("You can only cancel your own requests")
        if issue_request.status != REQUEST_STATUS_PENDING:
            raise InvalidStateError("Only pending requests can be cancelled")

        issue_request.status = REQUEST_STATUS_CANCELLED
        db.session.commit()
        return issue_request

    issue_request = run_with_retry(_op)

    audit_service.record_audit(
        user_id=user_id,
        action="CANCEL",
        entity_type="IssueRequest",
        entity_id=issue_request.id,
        changes={"status": REQUEST_STATUS_CANCELLED},
    )
    return issue_request


# =============================================================================
# Issue / return
# =============================================================================

def issue_item(
    actor_id: int,
    request_id: int,
    is_returnable: bool = True,
    project_name: str | None = None,
    *,
    now: datetime | None = None,
) -> IssueRecord:
    """
    Hand an APPROVED request's item to the requester.

    The IssueRecord insert and the Item -> ISSUED flip commit together.
    A concurrent second issue of the same request (or of the same item)
    loses on the unique indexes and surfaces as AlreadyIssued / ItemUnavailable.
    """
    project_name = (project_name or "").strip() or None
    if not is_returnable and not project_name:
        raise ValidationError("Project name is required for non-returnable items")
    actor = get_actor(actor_id)
    require_role(actor, LIFECYCLE_ROLES)
    now = now or utcnow()

    def _op():
        issue_request = _load_request_for_update(request_id)
        require_department_access(actor, issue_request.item.department_id)

        existing = db.session.query(IssueRecord.id).filter_by(request_id=issue_request.id).first()
        if existing:
            raise AlreadyIssuedError("This request has already been issued")

        if issue_request.status != REQUEST_STATUS_APPROVED:
            raise InvalidStateError("Only approved requests can be issued")

        item = lock_for_update(db.session.query(Item).filter_by(id=issue_request.item_id)).first()
        if item.status != ITEM_STATUS_AVAILABLE:
            raise ItemUnavailableError("Item is not available for issuance")

        expected = issue_request.expected_return_date or days_after(now, issue_request.requested_days)
        record = IssueRecord(
            request_id=issue_request.id,
            item_id=item.id,
            user_id=issue_request.user_id,
            department_id=item.department_id,
            issued_by=actor.id,
            issue_date=now,
            expected_return_date=expected,
            is_returnable=bool(is_returnable),
            project_name=None if is_returnable else project_name,
            project_incharge=None if is_returnable else issue_request.user.name,
        )
        db.session.add(record)
        item.status = ITEM_STATUS_ISSUED

        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            if db.session.query(IssueRecord.id).filter_by(request_id=request_id).first():
                raise AlreadyIssuedError("This request has already been issued")
            raise ItemUnavailableError("Item is not available for issuance")
        return record

    record = run_with_retry(_op)

    audit_service.record_audit(
        user_id=actor.id,
        action="ISSUE",
        entity_type="IssueRecord",
        entity_id=record.id,
        changes={
            "item_name": record.item.name,
            "item_id": record.item.manual_id,
            "issued_to": record.user.name,
            "expected_return_date": record.expected_return_date,
            "is_returnable": record.is_returnable,
            "project_name": record.project_name,
        },
    )
    return record


def _item_status_after_return(return_condition: str, is_pending_replacement: bool) -> str:
    if return_condition == CONDITION_UNDER_REPAIR:
        return ITEM_STATUS_MAINTENANCE
    if return_condition == CONDITION_DAMAGED and is_pending_replacement:
        return ITEM_STATUS_PENDING_REPLACEMENT
    return ITEM_STATUS_AVAILABLE


def return_item(
    actor_id: int,
    issue_record_id: int,
    return_condition: str,
    damage_remarks: str | None = None,
    is_pending_replacement: bool = False,
    *,
    now: datetime | None = None,
    settings: LabSettings | None = None,
) -> ReturnResult:
    """
    Close an open IssueRecord.

    Item status afterwards:
    - UNDER_REPAIR -> MAINTENANCE
    - DAMAGED with pending replacement -> PENDING_REPLACEMENT
    - anything else -> AVAILABLE (condition records the damage)

    Late returns and pending replacements go through the ban policy in the
    same transaction; the ban notice is emailed after commit.
    """
    return_condition = (return_condition or "").strip().upper()
    if not return_condition:
        raise ValidationError("Return condition is required")
    if return_condition not in ITEM_CONDITIONS:
        raise ValidationError(f"Invalid return condition: {return_condition}")
    damage_remarks = (damage_remarks or "").strip() or None
    if return_condition in CONDITIONS_REQUIRING_REMARKS and not damage_remarks:
        raise ValidationError("Damage remarks are required for damaged items")

    actor = get_actor(actor_id)
    require_role(actor, LIFECYCLE_ROLES)
    now = now or utcnow()
    settings = settings or load_settings()

    def _op():
        record = lock_for_update(db.session.query(IssueRecord).filter_by(id=issue_record_id)).first()
        if not record:
            raise NotFoundError("Issue record not found")
        require_department_access(actor, record.department_id)

        if record.actual_return_date is not None:
            raise InvalidStateError("This item has already been returned")

        is_late = now > record.expected_return_date
        days_late = (
            math.ceil((now - record.expected_return_date).total_seconds() / SECONDS_PER_DAY)
            if is_late else 0
        )

        record.actual_return_date = now
        record.returned_to = actor.id
        record.return_condition = return_condition
        record.damage_remarks = damage_remarks
        record.is_pending_replacement = bool(is_pending_replacement)

        item = lock_for_update(db.session.query(Item).filter_by(id=record.item_id)).first()
        item.status = _item_status_after_return(return_condition, bool(is_pending_replacement))
        item.condition = return_condition

        record.request.completed_at = now

        borrower = lock_for_update(db.session.query(User).filter_by(id=record.user_id)).first()
        ban = apply_return_penalties(
            borrower,
            is_late=is_late,
            is_pending_replacement=bool(is_pending_replacement),
            now=now,
            settings=settings,
        )
        db.session.commit()

        warnings = []
        if is_late:
            warnings.append(f"Item returned {days_late} day(s) late")
        if ban.indefinite:
            warnings.append("User banned until the damaged item is replaced")
        elif ban.banned_until:
            warnings.append(f"User banned until {notification_service.format_date(ban.banned_until)}")
        return ReturnResult(record=record, is_late=is_late, days_late=days_late, ban=ban, warnings=warnings)

    result = run_with_retry(_op)
    record = result.record

    audit_service.record_audit(
        user_id=actor.id,
        action="RETURN",
        entity_type="IssueRecord",
        entity_id=record.id,
        changes={
            "item_name": record.item.name,
            "item_id": record.item.manual_id,
            "returned_by": record.user.name,
            "return_condition": return_condition,
            "is_late": result.is_late,
            "days_late": result.days_late,
            "is_pending_replacement": record.is_pending_replacement,
        },
    )

    if result.ban.banned_until:
        _notify(notification_service.notify_late_return_ban, record, result.days_late, result.ban.banned_until, settings)
    if result.ban.indefinite:
        _notify(notification_service.notify_damage_compensation, record, actor, settings)
    return result


# =============================================================================
# Read side
# =============================================================================

def list_user_requests(user_id: int, status: str | None = None) -> list[IssueRequest]:
    query = db.session.query(IssueRequest).filter(IssueRequest.user_id == user_id)
    if status:
        status = status.upper()
        if status not in REQUEST_STATUSES:
            raise ValidationError(f"Invalid status: {status}")
        query = query.filter(IssueRequest.status == status)
    return query.order_by(IssueRequest.request_date.desc(), IssueRequest.id.desc()).all()


def _scoped_request_query(actor: User):
    query = db.session.query(IssueRequest).join(Item, IssueRequest.item_id == Item.id)
    department_ids = visible_department_ids(actor)
    if department_ids is not None:
        query = query.filter(Item.department_id.in_(department_ids or [-1]))
    return query


def list_department_requests(actor_id: int, status: str | None = None) -> list[IssueRequest]:
    """Requests for items in the departments the actor manages (ADMIN: all)."""
    actor = get_actor(actor_id)
    require_role(actor, LIFECYCLE_ROLES)
    query = _scoped_request_query(actor)
    if status:
        status = status.upper()
        if status not in REQUEST_STATUSES:
            raise ValidationError(f"Invalid status: {status}")
        query = query.filter(IssueRequest.status == status)
    return query.order_by(IssueRequest.request_date.desc(), IssueRequest.id.desc()).all()


def list_ready_to_issue(actor_id: int) -> list[IssueRequest]:
    """APPROVED requests with no IssueRecord yet, oldest approval first."""
    actor = get_actor(actor_id)
    require_role(actor, LIFECYCLE_ROLES)
    issued = db.session.query(IssueRecord.request_id)
    return (
        _scoped_request_query(actor)
        .filter(
            IssueRequest.status == REQUEST_STATUS_APPROVED,
            ~IssueRequest.id.in_(issued),
        )
        .order_by(IssueRequest.approval_date.asc(), IssueRequest.id.asc())
        .all()
    )


def list_open_records(actor_id: int, now: datetime | None = None) -> list[dict]:
    """Open loans in the actor's departments, soonest due first, with overdue info."""
    actor = get_actor(actor_id)
    require_role(actor, LIFECYCLE_ROLES)
    now = now or utcnow()

    query = db.session.query(IssueRecord).filter(IssueRecord.actual_return_date.is_(None))
    department_ids = visible_department_ids(actor)
    if department_ids is not None:
        query = query.filter(IssueRecord.department_id.in_(department_ids or [-1]))
    records = query.order_by(IssueRecord.expected_return_date.asc()).all()

    out = []
    for record in records:
        is_overdue = now > record.expected_return_date
        days_overdue = (
            math.ceil((now - record.expected_return_date).total_seconds() / SECONDS_PER_DAY)
            if is_overdue else 0
        )
        row = record.to_dict()
        row["item"] = record.item.to_dict()
        row["user"] = {"id": record.user.id, "name": record.user.name, "email": record.user.email}
        row["is_overdue"] = is_overdue
        row["days_overdue"] = days_overdue
        out.append(row)
    return out
