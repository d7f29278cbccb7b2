# Overview: Best-effort audit trail writer, invoked after a mutating operation has committed.

from __future__ import annotations

import json
import logging
from typing import Any

from flask import has_request_context, request

from ..extensions import db
from ..models import AuditLog


logger = logging.getLogger(__name__)


def _client_ip() -> str | None:
    if not has_request_context():
        return None
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.remote_addr


def record_audit(
    *,
    user_id: int | None,
    action: str,
    entity_type: str,
    entity_id: int | None,
    changes: Any = None,
) -> AuditLog | None:
    """
    Append one audit row in its own commit.

    - Call only after the primary unit of work has committed.
    - Never raises: a failed write is logged and rolled back, and the
      operation being audited keeps its outcome.
    """
    try:
        entry = AuditLog(
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            changes=json.dumps(changes, default=str) if changes is not None else None,
            ip_address=_client_ip(),
        )
        db.session.add(entry)
        db.session.commit()
        return entry
    except Exception:
        db.session.rollback()
        logger.exception("Failed to write audit log: %s %s %s", action, entity_type, entity_id)
        return None


def list_audit_logs(*, entity_type: str | None = None, entity_id: int | None = None, limit: int = 100) -> list[AuditLog]:
    query = db.session.query(AuditLog)
    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(AuditLog.entity_id == entity_id)
    return query.order_by(AuditLog.id.desc()).limit(limit).all()
