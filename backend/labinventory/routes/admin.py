# Overview: Flask API routes for administrators: users, bans, departments, categories and audit log.

"""
Admin API routes

All endpoints require the ADMIN role; category edits also admit INCHARGE.

USER MANAGEMENT:
- GET    /api/admin/users               list users
- POST   /api/admin/users               create an approved user
- POST   /api/admin/users/<id>/approve  approve a registration
- POST   /api/admin/users/<id>/reject   discard a pending registration
- PATCH  /api/admin/users/<id>/status   activate / deactivate
- PATCH  /api/admin/users/<id>/role     change role
- POST   /api/admin/users/<id>/revoke-ban
- DELETE /api/admin/users/<id>

DEPARTMENTS & CATEGORIES:
- POST   /api/admin/departments
- PUT    /api/admin/departments/<id>
- DELETE /api/admin/departments/<id>   refused while it owns items
- PUT    /api/admin/departments/<id>/incharge
- POST   /api/admin/categories
- PUT    /api/admin/categories/<id>
- DELETE /api/admin/categories/<id>    refused while it holds items

AUDIT:
- GET    /api/admin/audit-logs
"""

from flask import Blueprint, request, jsonify, g

from ..extensions import db
from ..decorators import require_auth, require_role, error_response, unexpected_error, json_body
from ..services import audit_service, auth_service, ban_service, department_service, user_service
from ..services.access_service import ROLE_ADMIN, ROLE_INCHARGE
from ..services.errors import LabInventoryError


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


# =============================================================================
# USERS
# =============================================================================

@admin_bp.get("/users")
@require_auth
@require_role(ROLE_ADMIN)
def list_users():
    """
    Query params:
        role: str (optional)
        pending: true to list only unapproved registrations (optional)
        search: matches name or email (optional)
    """
    pending = request.args.get("pending")
    is_approved = None
    if pending is not None:
        is_approved = pending.strip().lower() not in {"1", "true", "yes"}
    users = user_service.list_users(
        role=request.args.get("role"),
        is_approved=is_approved,
        search=request.args.get("search"),
    )
    return jsonify({"users": [u.to_dict() for u in users]}), 200


@admin_bp.post("/users")
@require_auth
@require_role(ROLE_ADMIN)
def create_user():
    """
    Request body:
    {
        "name": str, "email": str, "password": str, "role": str,
        "phone": str, "student_id": str, "employee_id": str (optional)
    }
    """
    data = json_body()
    try:
        auth_service.validate_password_strength(data.get("password") or "")
        user = user_service.create_user(
            g.current_user.id,
            name=data.get("name"),
            email=data.get("email"),
            password=data.get("password"),
            role=data.get("role"),
            phone=data.get("phone"),
            student_id=data.get("student_id"),
            employee_id=data.get("employee_id"),
        )
        return jsonify({"user": user.to_dict()}), 201
    except LabInventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to create user")


@admin_bp.post("/users/<int:user_id>/approve")
@require_auth
@require_role(ROLE_ADMIN)
def approve_user(user_id: int):
    try:
        user = user_service.approve_user(g.current_user.id, user_id)
        return jsonify({"user": user.to_dict()}), 200
    except LabInventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to approve user")


@admin_bp.post("/users/<int:user_id>/reject")
@require_auth
@require_role(ROLE_ADMIN)
def reject_user(user_id: int):
    try:
        user_service.reject_user(g.current_user.id, user_id)
        return jsonify({"message": "Registration rejected"}), 200
    except LabInventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to reject user")


@admin_bp.patch("/users/<int:user_id>/status")
@require_auth
@require_role(ROLE_ADMIN)
def set_user_status(user_id: int):
    data = json_body()
    try:
        user = user_service.set_user_status(g.current_user.id, user_id, data.get("is_active"))
        return jsonify({"user": user.to_dict()}), 200
    except LabInventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to update user status")


@admin_bp.patch("/users/<int:user_id>/role")
@require_auth
@require_role(ROLE_ADMIN)
def change_user_role(user_id: int):
    data = json_body()
    try:
        user = user_service.change_role(g.current_user.id, user_id, data.get("role"))
        return jsonify({"user": user.to_dict()}), 200
    except LabInventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to change user role")


@admin_bp.post("/users/<int:user_id>/revoke-ban")
@require_auth
@require_role(ROLE_ADMIN)
def revoke_ban(user_id: int):
    try:
        user = ban_service.revoke_ban(g.current_user.id, user_id)
        return jsonify({"user": user.to_dict(), "message": "Ban revoked"}), 200
    except LabInventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to revoke ban")


@admin_bp.delete("/users/<int:user_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_user(user_id: int):
    try:
        user_service.delete_user(g.current_user.id, user_id)
        return jsonify({"message": "User deleted"}), 200
    except LabInventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to delete user")


# =============================================================================
# DEPARTMENTS & CATEGORIES
# =============================================================================

@admin_bp.post("/departments")
@require_auth
@require_role(ROLE_ADMIN)
def create_department():
    """
    Request body:
    {
        "name": str,
        "code": str (2-10 uppercase alphanumeric, prefix of item manual IDs),
        "description": str (optional),
        "incharge_id": int (optional)
    }
    """
    data = json_body()
    try:
        department = department_service.create_department(
            g.current_user.id,
            name=data.get("name"),
            code=data.get("code"),
            description=data.get("description"),
            incharge_id=data.get("incharge_id"),
        )
        return jsonify({"department": department.to_dict()}), 201
    except LabInventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to create department")


@admin_bp.put("/departments/<int:department_id>/incharge")
@require_auth
@require_role(ROLE_ADMIN)
def assign_incharge(department_id: int):
    """Request body: {"incharge_id": int | null}"""
    data = json_body()
    try:
        department = department_service.assign_incharge(g.current_user.id, department_id, data.get("incharge_id"))
        return jsonify({"department": department.to_dict()}), 200
    except LabInventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to assign incharge")


@admin_bp.put("/departments/<int:department_id>")
@require_auth
@require_role(ROLE_ADMIN)
def update_department(department_id: int):
    """Request body (all optional): {"name", "code", "description": str, "incharge_id": int | null}"""
    data = json_body()
    try:
        department = department_service.update_department(g.current_user.id, department_id, data)
        return jsonify({"message": "Department updated successfully", "department": department.to_dict()}), 200
    except LabInventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to update department")


@admin_bp.delete("/departments/<int:department_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_department(department_id: int):
    try:
        department_service.delete_department(g.current_user.id, department_id)
        return jsonify({"message": "Department deleted successfully"}), 200
    except LabInventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to delete department")


@admin_bp.post("/categories")
@require_auth
@require_role(ROLE_ADMIN)
def create_category():
    data = json_body()
    try:
        category = department_service.create_category(
            g.current_user.id,
            name=data.get("name"),
            description=data.get("description"),
            max_borrow_duration=data.get("max_borrow_duration"),
            requires_approval=data.get("requires_approval", True) is not False,
            visible_to_students=data.get("visible_to_students", True) is not False,
            visible_to_staff=data.get("visible_to_staff", True) is not False,
        )
        return jsonify({"category": category.to_dict()}), 201
    except LabInventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to create category")


@admin_bp.put("/categories/<int:category_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_INCHARGE)
def update_category(category_id: int):
    data = json_body()
    try:
        category = department_service.update_category(g.current_user.id, category_id, data)
        return jsonify({"message": "Category updated successfully", "category": category.to_dict()}), 200
    except LabInventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to update category")


@admin_bp.delete("/categories/<int:category_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_INCHARGE)
def delete_category(category_id: int):
    try:
        department_service.delete_category(g.current_user.id, category_id)
        return jsonify({"message": "Category deleted successfully"}), 200
    except LabInventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to delete category")


# =============================================================================
# AUDIT
# =============================================================================

@admin_bp.get("/audit-logs")
@require_auth
@require_role(ROLE_ADMIN)
def list_audit_logs():
    """
    Query params:
        entity_type: str (optional)
        entity_id: int (optional)
        limit: int (default 100, max 500)
    """
    limit = min(max(request.args.get("limit", 100, type=int), 1), 500)
    logs = audit_service.list_audit_logs(
        entity_type=request.args.get("entity_type"),
        entity_id=request.args.get("entity_id", type=int),
        limit=limit,
    )
    return jsonify({"audit_logs": [log.to_dict() for log in logs]}), 200
