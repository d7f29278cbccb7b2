# backend/labinventory/services/transfer_service.py
"""
Inter-department transfer service.

WHY: Move ownership of an item, or a quantity of a consumable, from one
department to another with approval and a permanent record.

LIFECYCLE:
1. PENDING: Raised by the destination department's incharge
2. APPROVED: Source department agreed
3. REJECTED: Source department refused (reason required)
4. COMPLETED: Stock/ownership moved and TransferRecord written

COMPLETION (one transaction):
- Consumable: source stock -= quantity (floored at 0); the destination's
  matching stock line (same name + category, consumable) gains quantity,
  or a new line is created with a fresh manual ID.
- Non-consumable: the item itself moves; source_department_id records
  where it came from and it becomes AVAILABLE.

The unique TransferRecord.request_id stops a request completing twice.
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Department, Item, ItemDepartmentAccess, TransferRecord, TransferRequest
from ..time_utils import utcnow
from .access_service import (
    ROLE_ADMIN,
    ROLE_PROCUREMENT,
    TRANSFER_REQUEST_ROLES,
    TRANSFER_ROLES,
    get_actor,
    require_department_access,
    require_role,
    visible_department_ids,
)
from .borrow_service import ITEM_STATUS_AVAILABLE
from .concurrency import lock_for_update, run_with_retry
from .errors import (
    AccessDeniedError,
    ConflictError,
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from .identifier_service import next_manual_id
from . import audit_service


# Transfer status constants
TRANSFER_STATUS_PENDING = "PENDING"
TRANSFER_STATUS_APPROVED = "APPROVED"
TRANSFER_STATUS_REJECTED = "REJECTED"
TRANSFER_STATUS_COMPLETED = "COMPLETED"
TRANSFER_STATUSES = {
    TRANSFER_STATUS_PENDING,
    TRANSFER_STATUS_APPROVED,
    TRANSFER_STATUS_REJECTED,
    TRANSFER_STATUS_COMPLETED,
}

# ADMIN and PROCUREMENT act on every department
UNRESTRICTED_TRANSFER_ROLES = (ROLE_ADMIN, ROLE_PROCUREMENT)


def _parse_quantity(quantity) -> int | None:
    if quantity is None or quantity == "" or isinstance(quantity, bool):
        return None
    try:
        return int(quantity)
    except (TypeError, ValueError):
        raise ValidationError("Quantity must be a whole number")


def request_transfer(
    actor_id: int,
    item_id: int,
    to_department_id: int,
    purpose: str,
    quantity: int | None = None,
    *,
    now: datetime | None = None,
) -> TransferRequest:
    """
    Create a PENDING transfer request into `to_department_id`.

    Raises:
        ValidationError: missing fields, same department, missing quantity
        ForbiddenError: actor does not manage the destination department
        NotFoundError: item absent
        AccessDeniedError: item not shared with the destination, or not transferable
        InsufficientStockError: consumable quantity above current stock
    """
    if not item_id or not to_department_id or not (purpose or "").strip():
        raise ValidationError("Item ID, department ID, and purpose are required")
    actor = get_actor(actor_id)
    require_department_access(
        actor,
        to_department_id,
        roles=TRANSFER_REQUEST_ROLES,
        message="You do not have access to request for this department",
    )
    qty = _parse_quantity(quantity)
    now = now or utcnow()

    def _op():
        item = lock_for_update(db.session.query(Item).filter_by(id=item_id)).first()
        if not item:
            raise NotFoundError("Item not found")

        access = (
            db.session.query(ItemDepartmentAccess)
            .filter_by(item_id=item.id, department_id=to_department_id)
            .first()
        )
        if access is None:
            raise AccessDeniedError("This item is not available for transfer to your department")
        if not access.can_transfer:
            raise AccessDeniedError("Transfer is not allowed for this item")

        if item.department_id == to_department_id:
            raise ValidationError("Cannot request transfer from same department")

        if item.is_consumable:
            if qty is None or qty < 1:
                raise ValidationError("Quantity is required for consumable items")
            if qty > (item.current_stock or 0):
                raise InsufficientStockError(f"Insufficient stock. Available: {item.current_stock or 0}")
            transfer_qty = qty
        else:
            transfer_qty = 1

        transfer = TransferRequest(
            item_id=item.id,
            from_department_id=item.department_id,
            to_department_id=to_department_id,
            requested_by_id=actor.id,
            quantity=transfer_qty,
            purpose=purpose.strip(),
            status=TRANSFER_STATUS_PENDING,
            request_date=now,
        )
        db.session.add(transfer)
        db.session.commit()
        return transfer

    transfer = run_with_retry(_op)

    audit_service.record_audit(
        user_id=actor.id,
        action="CREATE_TRANSFER_REQUEST",
        entity_type="TransferRequest",
        entity_id=transfer.id,
        changes={
            "item_name": transfer.item.name,
            "item_id": transfer.item.manual_id,
            "from_department": transfer.from_department.name,
            "to_department": transfer.to_department.name,
            "quantity": transfer.quantity,
            "purpose": transfer.purpose,
        },
    )
    return transfer


def _load_transfer_for_update(request_id: int) -> TransferRequest:
    transfer = lock_for_update(db.session.query(TransferRequest).filter_by(id=request_id)).first()
    if not transfer:
        raise NotFoundError("Transfer request not found")
    return transfer


def approve_transfer(actor_id: int, request_id: int, *, now: datetime | None = None) -> TransferRequest:
    """Source department agrees to a PENDING transfer."""
    actor = get_actor(actor_id)
    require_role(actor, TRANSFER_ROLES)
    now = now or utcnow()

    def _op():
        transfer = _load_transfer_for_update(request_id)
        require_department_access(
            actor,
            transfer.from_department_id,
            roles=TRANSFER_ROLES,
            unrestricted=UNRESTRICTED_TRANSFER_ROLES,
            message="You do not have access to approve this transfer",
        )
        if transfer.status != TRANSFER_STATUS_PENDING:
            raise InvalidStateError(f"Cannot approve transfer in {transfer.status} status")

        transfer.status = TRANSFER_STATUS_APPROVED
        transfer.approved_by_id = actor.id
        transfer.approval_date = now
        db.session.commit()
        return transfer

    transfer = run_with_retry(_op)

    audit_service.record_audit(
        user_id=actor.id,
        action="APPROVE_TRANSFER",
        entity_type="TransferRequest",
        entity_id=transfer.id,
        changes={"status": TRANSFER_STATUS_APPROVED},
    )
    return transfer


def reject_transfer(actor_id: int, request_id: int, reason: str, *, now: datetime | None = None) -> TransferRequest:
    """Source department refuses a PENDING transfer."""
    if not (reason or "").strip():
        raise ValidationError("Rejection reason is required")
    actor = get_actor(actor_id)
    require_role(actor, TRANSFER_ROLES)
    now = now or utcnow()

    def _op():
        transfer = _load_transfer_for_update(request_id)
        require_department_access(
            actor,
            transfer.from_department_id,
            roles=TRANSFER_ROLES,
            unrestricted=UNRESTRICTED_TRANSFER_ROLES,
            message="You do not have access to reject this transfer",
        )
        if transfer.status != TRANSFER_STATUS_PENDING:
            raise InvalidStateError(f"Cannot reject transfer in {transfer.status} status")

        transfer.status = TRANSFER_STATUS_REJECTED
        transfer.rejection_reason = reason.strip()
        transfer.approved_by_id = actor.id
        transfer.approval_date = now
        db.session.commit()
        return transfer

    transfer = run_with_retry(_op)

    audit_service.record_audit(
        user_id=actor.id,
        action="REJECT_TRANSFER",
        entity_type="TransferRequest",
        entity_id=transfer.id,
        changes={"status": TRANSFER_STATUS_REJECTED, "reason": transfer.rejection_reason},
    )
    return transfer


def _credit_destination_stock(source: Item, to_department: Department, quantity: int, actor_id: int) -> Item:
    """Find or create the destination's stock line for a consumable."""
    destination = lock_for_update(
        db.session.query(Item).filter(
            Item.department_id == to_department.id,
            Item.name == source.name,
            Item.category_id == source.category_id,
            Item.is_consumable.is_(True),
        )
    ).first()

    if destination is not None:
        destination.current_stock = (destination.current_stock or 0) + quantity
        return destination

    destination = Item(
        manual_id=next_manual_id(to_department.code),
        name=source.name,
        description=source.description,
        specifications=source.specifications,
        image_url=source.image_url,
        location=source.location,
        category_id=source.category_id,
        department_id=to_department.id,
        condition=source.condition,
        status=ITEM_STATUS_AVAILABLE,
        is_consumable=True,
        current_stock=quantity,
        min_stock_level=source.min_stock_level,
        source_department_id=source.department_id,
        added_by_id=actor_id,
    )
    db.session.add(destination)
    db.session.flush()
    return destination


def complete_transfer(
    actor_id: int,
    request_id: int,
    notes: str | None = None,
    *,
    now: datetime | None = None,
) -> TransferRecord:
    """
    Carry out an APPROVED transfer. Either department's incharge may complete it.
    """
    actor = get_actor(actor_id)
    require_role(actor, TRANSFER_ROLES)
    now = now or utcnow()

    def _op():
        transfer = _load_transfer_for_update(request_id)
        if transfer.status != TRANSFER_STATUS_APPROVED:
            raise InvalidStateError("Only approved transfer requests can be completed")
        require_department_access(
            actor,
            (transfer.from_department_id, transfer.to_department_id),
            roles=TRANSFER_ROLES,
            unrestricted=UNRESTRICTED_TRANSFER_ROLES,
            message="You do not have access to complete this transfer",
        )

        item = lock_for_update(db.session.query(Item).filter_by(id=transfer.item_id)).first()
        to_department = db.session.get(Department, transfer.to_department_id)
        destination_item_id = None

        if item.department_id != transfer.from_department_id:
            raise InvalidStateError("Item is no longer held by the source department")

        if item.is_consumable:
            item.current_stock = max(0, (item.current_stock or 0) - transfer.quantity)
            destination = _credit_destination_stock(item, to_department, transfer.quantity, actor.id)
            destination_item_id = destination.id
        else:
            if item.status != ITEM_STATUS_AVAILABLE:
                raise InvalidStateError("Only available items can be transferred")
            item.source_department_id = item.department_id
            item.department_id = to_department.id
            item.status = ITEM_STATUS_AVAILABLE
            destination_item_id = item.id

        record = TransferRecord(
            request_id=transfer.id,
            item_id=item.id,
            destination_item_id=destination_item_id,
            from_department_id=transfer.from_department_id,
            to_department_id=transfer.to_department_id,
            transferred_by_id=actor.id,
            quantity=transfer.quantity,
            notes=(notes or "").strip() or None,
            transfer_date=now,
        )
        db.session.add(record)
        transfer.status = TRANSFER_STATUS_COMPLETED

        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError("This transfer has already been completed")
        return record

    record = run_with_retry(_op)

    audit_service.record_audit(
        user_id=actor.id,
        action="TRANSFER",
        entity_type="TransferRecord",
        entity_id=record.id,
        changes={
            "request_id": record.request_id,
            "item_id": record.item_id,
            "destination_item_id": record.destination_item_id,
            "from_department_id": record.from_department_id,
            "to_department_id": record.to_department_id,
            "quantity": record.quantity,
        },
    )
    return record


def list_transfer_requests(
    actor_id: int,
    direction: str | None = None,
    status: str | None = None,
) -> list[TransferRequest]:
    """
    Transfers touching the actor's departments.

    direction: "incoming" (to my departments), "outgoing" (from them), or None for both.
    """
    if direction not in (None, "", "incoming", "outgoing"):
        raise ValidationError("direction must be 'incoming' or 'outgoing'")
    actor = get_actor(actor_id)
    require_role(actor, TRANSFER_ROLES)

    query = db.session.query(TransferRequest)
    department_ids = visible_department_ids(actor, unrestricted=UNRESTRICTED_TRANSFER_ROLES)
    if department_ids is not None:
        ids = list(department_ids) or [-1]
        if direction == "incoming":
            query = query.filter(TransferRequest.to_department_id.in_(ids))
        elif direction == "outgoing":
            query = query.filter(TransferRequest.from_department_id.in_(ids))
        else:
            query = query.filter(
                db.or_(
                    TransferRequest.to_department_id.in_(ids),
                    TransferRequest.from_department_id.in_(ids),
                )
            )
    if status:
        status = status.upper()
        if status not in TRANSFER_STATUSES:
            raise ValidationError(f"Invalid status: {status}")
        query = query.filter(TransferRequest.status == status)
    return query.order_by(TransferRequest.request_date.desc(), TransferRequest.id.desc()).all()
