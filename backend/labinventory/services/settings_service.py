# Overview: System settings resolver: typed defaults, validated updates, per-operation snapshots.

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..extensions import db
from ..models import Setting
from .access_service import ROLE_ADMIN, get_actor, require_role
from .errors import ValidationError
from .concurrency import run_with_retry
from . import audit_service


DEFAULT_SETTINGS: dict[str, dict[str, Any]] = {
    "late_return_ban_months": {
        "value": "6",
        "type": "int",
        "min": 0,
        "max": 60,
        "description": "Number of months to ban users for late returns",
    },
    "late_return_auto_ban": {
        "value": "true",
        "type": "bool",
        "description": "Automatically ban users who return items late",
    },
    "default_max_borrow_days": {
        "value": "7",
        "type": "int",
        "min": 1,
        "max": 365,
        "description": "Default maximum borrowing duration in days",
    },
    "reminder_3days_enabled": {
        "value": "true",
        "type": "bool",
        "description": "Send reminder 3 days before due date",
    },
    "reminder_1day_enabled": {
        "value": "true",
        "type": "bool",
        "description": "Send reminder 1 day before due date",
    },
    "overdue_reminder_enabled": {
        "value": "true",
        "type": "bool",
        "description": "Send reminder when item is overdue",
    },
    "email_sender_name": {
        "value": "Inventory System",
        "type": "string",
        "description": "Name shown as email sender",
    },
    "email_footer_text": {
        "value": "Woxsen University Inventory Management",
        "type": "string",
        "description": "Footer text in emails",
    },
    "max_items_per_user": {
        "value": "3",
        "type": "int",
        "min": 1,
        "max": 100,
        "description": "Maximum items a user can borrow simultaneously",
    },
    "consumable_min_stock_alert": {
        "value": "10",
        "type": "int",
        "min": 0,
        "max": 100000,
        "description": "Alert when consumable stock falls below this level",
    },
}


@dataclass(frozen=True)
class LabSettings:
    """
    Typed snapshot of the settings table, resolved once per operation.

    Engines accept `settings=` so callers (and tests) can pass a fixed
    snapshot instead of reading the table.
    """
    late_return_ban_months: int = 6
    late_return_auto_ban: bool = True
    default_max_borrow_days: int = 7
    reminder_3days_enabled: bool = True
    reminder_1day_enabled: bool = True
    overdue_reminder_enabled: bool = True
    email_sender_name: str = "Inventory System"
    email_footer_text: str = "Woxsen University Inventory Management"
    max_items_per_user: int = 3
    consumable_min_stock_alert: int = 10


def _coerce_value(key: str, raw_value: Any) -> Any:
    definition = DEFAULT_SETTINGS[key]
    t = definition["type"]
    v = raw_value
    if t == "bool":
        if isinstance(v, bool):
            return v
        if isinstance(v, str):
            s = v.strip().lower()
            if s in {"true", "1", "yes", "on"}:
                return True
            if s in {"false", "0", "no", "off"}:
                return False
        raise ValidationError(f"{key}: expected boolean")
    if t == "int":
        if isinstance(v, bool):
            raise ValidationError(f"{key}: expected integer")
        if isinstance(v, int):
            value = v
        elif isinstance(v, float) and int(v) == v:
            value = int(v)
        elif isinstance(v, str) and v.strip().lstrip("-").isdigit():
            value = int(v.strip())
        else:
            raise ValidationError(f"{key}: expected integer")
        if "min" in definition and value < definition["min"]:
            raise ValidationError(f"{key}: must be >= {definition['min']}")
        if "max" in definition and value > definition["max"]:
            raise ValidationError(f"{key}: must be <= {definition['max']}")
        return value
    if v is None:
        raise ValidationError(f"{key}: value is required")
    return str(v)


def _serialize(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def load_settings() -> LabSettings:
    """
    Resolve every known setting into a LabSettings snapshot.

    A stored value that no longer validates falls back to its default.
    """
    stored = {row.key: row.value for row in db.session.query(Setting).all()}
    values: dict[str, Any] = {}
    for key, definition in DEFAULT_SETTINGS.items():
        raw = stored.get(key, definition["value"])
        try:
            values[key] = _coerce_value(key, raw)
        except ValidationError:
            values[key] = _coerce_value(key, definition["value"])
    return LabSettings(**values)


def get_all_settings() -> list[dict]:
    stored = {row.key: row for row in db.session.query(Setting).all()}
    out = []
    for key, definition in DEFAULT_SETTINGS.items():
        row = stored.get(key)
        out.append({
            "key": key,
            "value": row.value if row else definition["value"],
            "type": definition["type"],
            "description": definition["description"],
            "is_default": row is None,
            "updated_at": row.to_dict()["updated_at"] if row else None,
        })
    return out


def update_settings(actor_id: int, updates: dict[str, Any]) -> list[dict]:
    """
    Validate and upsert several settings in one transaction.

    Unknown keys and out-of-range values fail the whole batch.
    """
    require_role(get_actor(actor_id), (ROLE_ADMIN,))
    if not isinstance(updates, dict) or not updates:
        raise ValidationError("Settings payload must be a non-empty object")

    normalized = {}
    for key, raw in updates.items():
        if key not in DEFAULT_SETTINGS:
            raise ValidationError(f"Unknown setting: {key}")
        normalized[key] = _serialize(_coerce_value(key, raw))

    changes = {}

    def _op():
        changes.clear()
        for key, value in normalized.items():
            row = db.session.query(Setting).filter_by(key=key).first()
            if row is None:
                row = Setting(key=key, value=value, description=DEFAULT_SETTINGS[key]["description"])
                db.session.add(row)
                changes[key] = {"old": None, "new": value}
            elif row.value != value:
                changes[key] = {"old": row.value, "new": value}
                row.value = value
            row.updated_by_user_id = actor_id
        db.session.commit()

    run_with_retry(_op)

    audit_service.record_audit(
        user_id=actor_id,
        action="UPDATE",
        entity_type="Settings",
        entity_id=None,
        changes=changes,
    )
    return get_all_settings()


def reset_to_defaults(actor_id: int) -> list[dict]:
    """Drop every stored override so all keys resolve to their defaults."""
    require_role(get_actor(actor_id), (ROLE_ADMIN,))

    def _op():
        deleted = db.session.query(Setting).delete()
        db.session.commit()
        return deleted

    deleted = run_with_retry(_op)

    audit_service.record_audit(
        user_id=actor_id,
        action="RESET",
        entity_type="Settings",
        entity_id=None,
        changes={"cleared": deleted},
    )
    return get_all_settings()
