# Overview: Flask API routes for inter-department transfers.

"""
Inter-department transfer API routes.

Lifecycle: PENDING -> APPROVED -> COMPLETED, or PENDING -> REJECTED.
The destination incharge requests, the source incharge approves, and
either side completes. ADMIN and PROCUREMENT act on every department.
"""

from flask import Blueprint, request, jsonify, g

from ..extensions import db
from ..decorators import require_auth, require_role, error_response, unexpected_error, json_body
from ..services import transfer_service
from ..services.access_service import TRANSFER_REQUEST_ROLES, TRANSFER_ROLES
from ..services.errors import LabInventoryError


transfers_bp = Blueprint("transfers", __name__, url_prefix="/api/transfers")


def _transfer_row(transfer) -> dict:
    row = transfer.to_dict()
    row["item"] = transfer.item.to_dict()
    row["from_department"] = transfer.from_department.to_dict()
    row["to_department"] = transfer.to_department.to_dict()
    return row


@transfers_bp.route("", methods=["GET"])
@require_auth
@require_role(*TRANSFER_ROLES)
def list_transfers():
    """
    Query params:
        direction: incoming | outgoing (optional)
        status: PENDING | APPROVED | REJECTED | COMPLETED (optional)
    """
    try:
        transfers = transfer_service.list_transfer_requests(
            g.current_user.id,
            direction=request.args.get("direction"),
            status=request.args.get("status"),
        )
        return jsonify({"transfers": [_transfer_row(t) for t in transfers]}), 200
    except LabInventoryError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to list transfers")


@transfers_bp.route("", methods=["POST"])
@require_auth
@require_role(*TRANSFER_REQUEST_ROLES)
def create_transfer():
    """
    Request a transfer into one of the actor's departments.

    Request body:
    {
        "item_id": int,
        "to_department_id": int,
        "purpose": str,
        "quantity": int (required for consumables)
    }

    Returns:
        201: Transfer request created
        400: Invalid request or insufficient stock
        403: Forbidden or item not shared with the department
        404: Item not found
    """
    data = json_body()
    try:
        transfer = transfer_service.request_transfer(
            g.current_user.id,
            data.get("item_id"),
            data.get("to_department_id"),
            data.get("purpose"),
            quantity=data.get("quantity"),
        )
        return jsonify({"transfer": _transfer_row(transfer)}), 201
    except LabInventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to create transfer request")


@transfers_bp.route("/<int:transfer_id>/approve", methods=["POST"])
@require_auth
@require_role(*TRANSFER_ROLES)
def approve_transfer(transfer_id: int):
    try:
        transfer = transfer_service.approve_transfer(g.current_user.id, transfer_id)
        return jsonify({"transfer": _transfer_row(transfer)}), 200
    except LabInventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to approve transfer")


@transfers_bp.route("/<int:transfer_id>/reject", methods=["POST"])
@require_auth
@require_role(*TRANSFER_ROLES)
def reject_transfer(transfer_id: int):
    data = json_body()
    try:
        transfer = transfer_service.reject_transfer(g.current_user.id, transfer_id, data.get("reason"))
        return jsonify({"transfer": _transfer_row(transfer)}), 200
    except LabInventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to reject transfer")


@transfers_bp.route("/<int:transfer_id>/complete", methods=["POST"])
@require_auth
@require_role(*TRANSFER_ROLES)
def complete_transfer(transfer_id: int):
    """
    Move the item (or its stock) to the destination department.

    Request body (optional):
    {
        "notes": str
    }
    """
    data = json_body()
    try:
        record = transfer_service.complete_transfer(g.current_user.id, transfer_id, data.get("notes"))
        return jsonify({"transfer_record": record.to_dict()}), 200
    except LabInventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to complete transfer")
