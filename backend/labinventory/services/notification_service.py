# Overview: Outbound email for lifecycle events and reminders, sent through Flask-Mail.

"""
Notification port.

send_email() never raises: transport failures are logged and reported as
False. Lifecycle notifications are fired after the state change has
committed, so a failed send never undoes it. Reminder sends use the return
value to decide whether the one-shot flag may be set.
"""

from __future__ import annotations

import logging
from datetime import datetime

from flask import current_app, render_template
from flask_mail import Message

from ..extensions import mail
from .settings_service import LabSettings, load_settings


logger = logging.getLogger(__name__)

DATE_FORMAT = "%d %b %Y"


def format_date(value: datetime | None) -> str:
    return value.strftime(DATE_FORMAT) if value else ""


def send_email(to: str, subject: str, html: str, *, sender_name: str | None = None) -> bool:
    if not current_app.config.get("NOTIFICATIONS_ENABLED", True):
        logger.info("Notifications disabled; not sending %r to %s", subject, to)
        return False
    if not to:
        logger.warning("No recipient for %r", subject)
        return False
    try:
        sender = current_app.config.get("MAIL_DEFAULT_SENDER")
        if sender_name and isinstance(sender, str):
            sender = (sender_name, sender)
        msg = Message(subject=subject, recipients=[to], html=html, sender=sender)
        mail.send(msg)
        return True
    except Exception:
        logger.exception("Failed to send email %r to %s", subject, to)
        return False


def _send_template(to: str, subject: str, template: str, settings: LabSettings | None, **context) -> bool:
    settings = settings or load_settings()
    try:
        html = render_template(
            f"email/{template}",
            sender_name=settings.email_sender_name,
            footer_text=settings.email_footer_text,
            **context,
        )
    except Exception:
        logger.exception("Failed to render email template %s", template)
        return False
    return send_email(to, subject, html, sender_name=settings.email_sender_name)


def notify_request_submitted(issue_request, settings: LabSettings | None = None) -> bool:
    item = issue_request.item
    department = item.department
    incharge = department.incharge if department else None
    if incharge is None:
        logger.info("Department %s has no incharge; request %s not announced", item.department_id, issue_request.id)
        return False
    requester = issue_request.user
    return _send_template(
        incharge.email,
        f"New Item Request: {item.name}",
        "request_submitted.html",
        settings,
        header_color="#0066cc",
        incharge_name=incharge.name,
        requester_name=requester.name,
        requester_email=requester.email,
        item_name=item.name,
        item_manual_id=item.manual_id,
        department_name=department.name,
        purpose=issue_request.purpose,
        requested_days=issue_request.requested_days,
        dashboard_url=f"{current_app.config.get('APP_URL', '')}/dashboard/incharge/requests",
    )


def notify_request_status(issue_request, settings: LabSettings | None = None) -> bool:
    approved = issue_request.status == "APPROVED"
    item = issue_request.item
    return _send_template(
        issue_request.user.email,
        f"Request {'Approved' if approved else 'Rejected'}: {item.name}",
        "request_status.html",
        settings,
        header_color="#28a745" if approved else "#dc3545",
        approved=approved,
        user_name=issue_request.user.name,
        item_name=item.name,
        item_manual_id=item.manual_id,
        expected_return_date=format_date(issue_request.expected_return_date),
        collection_instructions=issue_request.remarks,
        reason=issue_request.rejection_reason,
    )


def send_due_reminder(record, days_remaining: int, settings: LabSettings | None = None) -> bool:
    settings = settings or load_settings()
    due = format_date(record.expected_return_date)
    return _send_template(
        record.user.email,
        f"Reminder: Return {record.item.name} by {due}",
        "due_reminder.html",
        settings,
        header_color="#ffc107",
        user_name=record.user.name,
        item_name=record.item.name,
        item_manual_id=record.item.manual_id,
        due_date=due,
        days_remaining=days_remaining,
        auto_ban=settings.late_return_auto_ban,
        ban_months=settings.late_return_ban_months,
    )


def send_overdue_notice(record, days_overdue: int, settings: LabSettings | None = None) -> bool:
    settings = settings or load_settings()
    return _send_template(
        record.user.email,
        f"OVERDUE: {record.item.name} - Action Required",
        "overdue.html",
        settings,
        header_color="#dc3545",
        user_name=record.user.name,
        item_name=record.item.name,
        item_manual_id=record.item.manual_id,
        due_date=format_date(record.expected_return_date),
        days_overdue=days_overdue,
        auto_ban=settings.late_return_auto_ban,
        ban_months=settings.late_return_ban_months,
    )


def notify_late_return_ban(record, days_late: int, banned_until: datetime, settings: LabSettings | None = None) -> bool:
    return _send_template(
        record.user.email,
        f"Borrowing Suspended: Late Return of {record.item.name}",
        "late_return_ban.html",
        settings,
        header_color="#dc3545",
        user_name=record.user.name,
        item_name=record.item.name,
        item_manual_id=record.item.manual_id,
        days_late=days_late,
        banned_until=format_date(banned_until),
    )


def notify_damage_compensation(record, incharge, settings: LabSettings | None = None) -> bool:
    return _send_template(
        record.user.email,
        f"Replacement Required: {record.item.name}",
        "damage_compensation.html",
        settings,
        header_color="#dc3545",
        user_name=record.user.name,
        item_name=record.item.name,
        item_manual_id=record.item.manual_id,
        damage_remarks=record.damage_remarks or "No remarks provided",
        incharge_name=incharge.name if incharge else "the lab incharge",
        incharge_email=incharge.email if incharge else "",
    )
