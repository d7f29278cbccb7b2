# Overview: Flask API routes for reading and editing system settings.

from __future__ import annotations

from flask import Blueprint, jsonify, g

from ..extensions import db
from ..decorators import require_auth, require_role, error_response, unexpected_error, json_body
from ..services import settings_service
from ..services.access_service import ROLE_ADMIN
from ..services.errors import LabInventoryError


settings_bp = Blueprint("settings", __name__, url_prefix="/api/admin/settings")


@settings_bp.get("")
@require_auth
@require_role(ROLE_ADMIN)
def get_settings():
    """Every known key with its effective value; unset keys report is_default=true."""
    data = settings_service.get_all_settings()
    return jsonify({"settings": data, "count": len(data)})


@settings_bp.put("")
@require_auth
@require_role(ROLE_ADMIN)
def update_settings():
    """
    Request body: {"settings": {"<key>": <value>, ...}}

    The whole batch is rejected if any key is unknown or any value invalid.
    """
    payload = json_body()
    updates = payload.get("settings", payload)
    try:
        data = settings_service.update_settings(g.current_user.id, updates)
        return jsonify({"settings": data, "message": "Settings updated"})
    except LabInventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to update settings")


@settings_bp.post("/reset")
@require_auth
@require_role(ROLE_ADMIN)
def reset_settings():
    try:
        data = settings_service.reset_to_defaults(g.current_user.id)
        return jsonify({"settings": data, "message": "Settings reset to defaults"})
    except LabInventoryError as e:
        db.session.rollback()
        return error_response(e)
    except Exception:
        return unexpected_error("Failed to reset settings")
