# Overview: Flask API routes for browsing departments and items, and for procurement.

"""
Inventory API routes.

Any signed-in user may browse departments and items. Procurement
(ADMIN / PROCUREMENT) registers items and shares them with other
departments; incharges see stock alerts and items offered to them, and
may edit or remove items of their own departments.
"""

from flask import Blueprint, request, jsonify, g

from ..extensions import db
from ..decorators import require_auth, require_role, error_response, unexpected_error, json_body
from ..services import department_service, inventory_service
from ..services.access_service import (
    ROLE_ADMIN,
    ROLE_INCHARGE,
    ROLE_PROCUREMENT,
    visible_department_ids,
)
from ..services.errors import ForbiddenError, LabInventoryError


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api")


def _bool_arg(name: str):
    value = request.args.get(name)
    if value is None:
        return None
    return value.strip().lower() in {"1", "true", "yes"}


@inventory_bp.get("/departments")
@require_auth
def list_departments():
    departments = department_service.list_departments(search=request.args.get("search"))
    return jsonify({"departments": [d.to_dict() for d in departments]}), 200


@inventory_bp.get("/categories")
@require_auth
def list_categories():
    return jsonify({"categories": [c.to_dict() for c in department_service.list_categories()]}), 200


@inventory_bp.get("/items")
@require_auth
def list_items():
    """
    Query params:
        department_id: int (optional)
        status: AVAILABLE | ISSUED | MAINTENANCE | PENDING_REPLACEMENT (optional)
        consumable: true | false (optional)
        search: matches name, manual ID or serial number (optional)
    """
    try:
        items = inventory_service.list_items(
            department_id=request.args.get("department_id", type=int),
            status=request.args.get("status"),
            is_consumable=_bool_arg("consumable"),
            search=request.args.get("search"),
        )
        return jsonify({"items": [i.to_dict() for i in items]}), 200
    except Exception:
        return unexpected_error("Failed to list items")


@inventory_bp.get("/items/<int:item_id>")
@require_auth
def get_item(item_id: int):
    try:
        item = inventory_service.get_item(item_id)
        row = item.to_dict()
        row["category"] = item.category.to_dict()
        row["department"] = item.department.to_dict()
        return jsonify({"item": row}), 200
    except LabInventoryError as e:
        return error_response(e)


@inventory_bp.put("/items/<int:item_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_PROCUREMENT, ROLE_INCHARGE)
def update_item(item_id: int):
    """
    Edit an item. Only the keys present in the body change.

    Request body (all optional):
    {
        "name", "description", "specifications", "serial_number",
        "image_url", "location": str,
        "category_id": int,
        "condition": str, "status": AVAILABLE | MAINTENANCE | PENDING_REPLACEMENT,
        "current_stock", "min_stock_level": int (consumables only)
    }
    """
    data = json_body()
    try:
        item = inventory_service.update_item(g.current_user.id, item_id, data)
        return jsonify({"message": "Item updated successfully", "item": item.to_dict()}), 200
    except LabInventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to update item")


@inventory_bp.delete("/items/<int:item_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_PROCUREMENT, ROLE_INCHARGE)
def delete_item(item_id: int):
    try:
        inventory_service.delete_item(g.current_user.id, item_id)
        return jsonify({"message": "Item deleted successfully"}), 200
    except LabInventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to delete item")


@inventory_bp.post("/procurement/items")
@require_auth
@require_role(ROLE_ADMIN, ROLE_PROCUREMENT)
def create_item():
    """
    Register an item.

    Request body:
    {
        "name": str, "category_id": int, "department_id": int,
        "description": str, "specifications": str, "serial_number": str,
        "image_url": str, "location": str, "condition": str (optional),
        "is_consumable": bool,
        "current_stock": int, "min_stock_level": int (consumables only),
        "available_department_ids": [int] (optional)
    }

    Returns:
        201: Item created with its manual ID
        400: Invalid request
        404: Category or department not found
    """
    data = json_body()
    try:
        item = inventory_service.create_item(
            g.current_user.id,
            name=data.get("name"),
            category_id=data.get("category_id"),
            department_id=data.get("department_id"),
            description=data.get("description"),
            specifications=data.get("specifications"),
            serial_number=data.get("serial_number"),
            image_url=data.get("image_url"),
            location=data.get("location"),
            condition=data.get("condition"),
            is_consumable=data.get("is_consumable") is True,
            current_stock=data.get("current_stock"),
            min_stock_level=data.get("min_stock_level"),
            available_department_ids=data.get("available_department_ids") or [],
        )
        return jsonify({"item": item.to_dict()}), 201
    except LabInventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to create item")


@inventory_bp.post("/procurement/items/<int:item_id>/access")
@require_auth
@require_role(ROLE_ADMIN, ROLE_PROCUREMENT)
def grant_access(item_id: int):
    data = json_body()
    if not data.get("department_id"):
        return jsonify({"error": "Department ID is required"}), 400
    try:
        access = inventory_service.grant_department_access(
            g.current_user.id,
            item_id,
            data["department_id"],
            can_transfer=data.get("can_transfer", True) is not False,
        )
        return jsonify({"access": access.to_dict()}), 200
    except LabInventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to grant department access")


@inventory_bp.put("/procurement/items/<int:item_id>/access")
@require_auth
@require_role(ROLE_ADMIN, ROLE_PROCUREMENT)
def replace_access(item_id: int):
    """
    Replace the departments an item is shared with.

    Request body:
    {"available_departments": [{"department_id": int, "can_transfer": bool}]}
    """
    data = json_body()
    try:
        rows = inventory_service.set_department_access(
            g.current_user.id, item_id, data.get("available_departments")
        )
        return jsonify({
            "message": "Department availability updated successfully",
            "access": [row.to_dict() for row in rows],
        }), 200
    except LabInventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to update department availability")


@inventory_bp.get("/inventory/low-stock")
@require_auth
@require_role(ROLE_ADMIN, ROLE_PROCUREMENT, ROLE_INCHARGE)
def low_stock():
    """Consumables at or below their alert threshold, within the caller's departments."""
    department_ids = visible_department_ids(g.current_user, unrestricted=(ROLE_ADMIN, ROLE_PROCUREMENT))
    items = inventory_service.list_low_stock_items()
    if department_ids is not None:
        items = [i for i in items if i.department_id in department_ids]
    return jsonify({"items": [i.to_dict() for i in items]}), 200


@inventory_bp.get("/inventory/transferable")
@require_auth
@require_role(ROLE_ADMIN, ROLE_INCHARGE)
def transferable_items():
    """Items other departments have shared with `department_id`."""
    department_id = request.args.get("department_id", type=int)
    if not department_id:
        return jsonify({"error": "department_id is required"}), 400
    department_ids = visible_department_ids(g.current_user)
    if department_ids is not None and department_id not in department_ids:
        return error_response(ForbiddenError("You do not have access to this department"))
    items = inventory_service.list_transferable_items(department_id)
    return jsonify({"items": [i.to_dict() for i in items]}), 200
