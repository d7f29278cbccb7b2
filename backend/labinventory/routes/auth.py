# Overview: Flask API routes for registration, login, logout and the current identity.

"""
Authentication API routes

SECURITY FEATURES:
- Institutional email domain enforced on self-registration
- New accounts wait for admin approval before they can log in
- Opaque bearer tokens, hashed at rest, with idle and absolute timeouts
"""

from flask import Blueprint, request, jsonify, g

from ..services import auth_service
from ..services import session_service
from ..services import user_service
from ..services.access_service import departments_managed_by
from ..services.errors import LabInventoryError
from ..decorators import require_auth, bearer_token, error_response, unexpected_error, json_body
from ..extensions import db


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/register")
def register_route():
    """
    Self-registration. The account is created unapproved.

    Request body:
    {
        "name": str, "email": str, "password": str,
        "role": str (optional, USER/STUDENT/STAFF/FACULTY),
        "phone": str, "student_id": str, "employee_id": str (optional)
    }
    """
    data = json_body()
    try:
        auth_service.validate_password_strength(data.get("password") or "")
        user = user_service.register_user(
            name=data.get("name"),
            email=data.get("email"),
            password=data.get("password"),
            role=data.get("role"),
            phone=data.get("phone"),
            student_id=data.get("student_id"),
            employee_id=data.get("employee_id"),
        )
        return jsonify({
            "user": user.to_dict(),
            "message": "Registration successful. Your account is pending admin approval.",
        }), 201
    except LabInventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to register user")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Token must be included in the Authorization header for protected routes.
    """
    data = json_body()
    email = data.get("email")
    password = data.get("password")
    if not email or not password:
        return jsonify({"error": "Email and password are required"}), 400

    try:
        user = auth_service.authenticate(email, password)
        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "session": session.to_dict(),
            "message": "Login successful",
        }), 200
    except LabInventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to login user")


@auth_bp.post("/logout")
def logout_route():
    """
    Revoke session token (logout).

    WHY: Explicit logout prevents token reuse.
    """
    token = bearer_token()
    if not token:
        return jsonify({"error": "Authorization header required"}), 401

    try:
        if not session_service.revoke_session(token, reason="User logout"):
            return jsonify({"error": "Invalid or expired token"}), 401
        return jsonify({"message": "Logout successful"}), 200
    except Exception:
        return unexpected_error("Failed to logout user")


@auth_bp.get("/me")
@require_auth
def me_route():
    """Current user plus the departments they manage (empty unless INCHARGE)."""
    user = g.current_user
    return jsonify({
        "user": user.to_dict(),
        "managed_department_ids": sorted(departments_managed_by(user.id)),
    }), 200
