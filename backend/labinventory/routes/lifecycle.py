# Overview: Flask API routes for the borrow lifecycle: request, approve/reject, issue, return.

"""
Borrow lifecycle API routes.

Borrowers:
- GET  /api/requests                   own requests
- POST /api/requests                   submit a request
- POST /api/requests/<id>/cancel       cancel a pending request

Incharge / Admin (scoped to managed departments):
- GET  /api/incharge/requests          department requests
- POST /api/incharge/requests/<id>/approve
- POST /api/incharge/requests/<id>/reject
- GET  /api/incharge/issue             approved, not yet issued
- POST /api/incharge/issue
- GET  /api/incharge/return            open loans
- POST /api/incharge/return
"""

from flask import Blueprint, request, jsonify, g

from ..extensions import db
from ..decorators import require_auth, require_role, error_response, unexpected_error, json_body
from ..services import borrow_service
from ..services.access_service import LIFECYCLE_ROLES
from ..services.errors import LabInventoryError


lifecycle_bp = Blueprint("lifecycle", __name__, url_prefix="/api")


def _request_row(issue_request) -> dict:
    row = issue_request.to_dict()
    row["item"] = issue_request.item.to_dict()
    row["user"] = {
        "id": issue_request.user.id,
        "name": issue_request.user.name,
        "email": issue_request.user.email,
    }
    return row


# =============================================================================
# Borrower
# =============================================================================

@lifecycle_bp.get("/requests")
@require_auth
def list_my_requests():
    try:
        requests = borrow_service.list_user_requests(g.current_user.id, status=request.args.get("status"))
        return jsonify({"requests": [_request_row(r) for r in requests]}), 200
    except LabInventoryError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to list requests")


@lifecycle_bp.post("/requests")
@require_auth
def submit_request():
    """
    Request body:
    {
        "item_id": int,
        "purpose": str,
        "requested_days": int
    }

    Returns:
        201: Request created (PENDING)
        400: Missing fields or duration too long
        403: Account pending, inactive or banned
        404: Item not found
        409: Item unavailable or duplicate active request
    """
    data = json_body()
    try:
        issue_request = borrow_service.submit_request(
            g.current_user.id,
            data.get("item_id"),
            data.get("purpose"),
            data.get("requested_days"),
        )
        return jsonify({"request": _request_row(issue_request)}), 201
    except LabInventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to submit request")


@lifecycle_bp.post("/requests/<int:request_id>/cancel")
@require_auth
def cancel_request(request_id: int):
    try:
        issue_request = borrow_service.cancel_request(g.current_user.id, request_id)
        return jsonify({"request": issue_request.to_dict()}), 200
    except LabInventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to cancel request")


# =============================================================================
# Incharge: approval
# =============================================================================

@lifecycle_bp.get("/incharge/requests")
@require_auth
@require_role(*LIFECYCLE_ROLES)
def list_department_requests():
    try:
        requests = borrow_service.list_department_requests(g.current_user.id, status=request.args.get("status"))
        return jsonify({"requests": [_request_row(r) for r in requests]}), 200
    except LabInventoryError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to list department requests")


@lifecycle_bp.post("/incharge/requests/<int:request_id>/approve")
@require_auth
@require_role(*LIFECYCLE_ROLES)
def approve_request(request_id: int):
    """
    Request body (optional):
    {
        "collection_instructions": str
    }
    """
    data = json_body()
    try:
        issue_request = borrow_service.approve_request(
            g.current_user.id,
            request_id,
            data.get("collection_instructions"),
        )
        return jsonify({"request": _request_row(issue_request)}), 200
    except LabInventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to approve request")


@lifecycle_bp.post("/incharge/requests/<int:request_id>/reject")
@require_auth
@require_role(*LIFECYCLE_ROLES)
def reject_request(request_id: int):
    data = json_body()
    try:
        issue_request = borrow_service.reject_request(g.current_user.id, request_id, data.get("reason"))
        return jsonify({"request": _request_row(issue_request)}), 200
    except LabInventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to reject request")


# =============================================================================
# Incharge: issue
# =============================================================================

@lifecycle_bp.get("/incharge/issue")
@require_auth
@require_role(*LIFECYCLE_ROLES)
def list_ready_to_issue():
    try:
        requests = borrow_service.list_ready_to_issue(g.current_user.id)
        return jsonify({"requests": [_request_row(r) for r in requests]}), 200
    except LabInventoryError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to list approved requests")


@lifecycle_bp.post("/incharge/issue")
@require_auth
@require_role(*LIFECYCLE_ROLES)
def issue_item():
    """
    Request body:
    {
        "request_id": int,
        "is_returnable": bool (default true),
        "project_name": str (required when is_returnable is false)
    }
    """
    data = json_body()
    if not data.get("request_id"):
        return jsonify({"error": "Request ID is required"}), 400

    try:
        record = borrow_service.issue_item(
            g.current_user.id,
            data["request_id"],
            is_returnable=data.get("is_returnable", True) is not False,
            project_name=data.get("project_name"),
        )
        return jsonify({"issue_record": record.to_dict()}), 201
    except LabInventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to issue item")


# =============================================================================
# Incharge: return
# =============================================================================

@lifecycle_bp.get("/incharge/return")
@require_auth
@require_role(*LIFECYCLE_ROLES)
def list_open_records():
    try:
        return jsonify({"records": borrow_service.list_open_records(g.current_user.id)}), 200
    except LabInventoryError as e:
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to list issued items")


@lifecycle_bp.post("/incharge/return")
@require_auth
@require_role(*LIFECYCLE_ROLES)
def return_item():
    """
    Request body:
    {
        "issue_record_id": int,
        "return_condition": "NEW" | "GOOD" | "FAIR" | "DAMAGED" | "UNDER_REPAIR",
        "damage_remarks": str (required for DAMAGED / UNDER_REPAIR),
        "is_pending_replacement": bool
    }

    Returns the closed record plus late/ban outcome and warnings.
    """
    data = json_body()
    if not data.get("issue_record_id"):
        return jsonify({"error": "Issue record ID is required"}), 400

    try:
        result = borrow_service.return_item(
            g.current_user.id,
            data["issue_record_id"],
            data.get("return_condition"),
            damage_remarks=data.get("damage_remarks"),
            is_pending_replacement=data.get("is_pending_replacement") is True,
        )
        return jsonify(result.to_dict()), 200
    except LabInventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to return item")
