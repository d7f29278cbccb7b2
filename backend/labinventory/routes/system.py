# Overview: Liveness endpoint reporting database reachability and inventory counts.

import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import Department, Item, User
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__, url_prefix="/api")


@system_bp.get("/health")
def health():
    """
    200 with row counts when the database answers, 503 otherwise.
    """
    start_time = time.time()
    try:
        details = {
            "users": db.session.query(User).count(),
            "departments": db.session.query(Department).count(),
            "items": db.session.query(Item).count(),
        }
        status, http_status = "healthy", 200
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Database health check failed")
        details = {"error": "Database error"}
        status, http_status = "unhealthy", 503

    return {
        "status": status,
        "timestamp": to_utc_z(utcnow()),
        "latency_ms": round((time.time() - start_time) * 1000, 2),
        "database": details,
    }, http_status
