# Overview: Batch job that sends the 3-day, 1-day and overdue notices for open loans.

"""
Reminder Service

WHY: Borrowers get one notice per milestone: 3 days before the due date,
1 day before, and once when overdue.

ONE-SHOT FLAGS: each milestone has a flag on the IssueRecord that goes
False -> True once and is never reset. The flag is set only after the
email was accepted by the mail transport, so a failed send is retried on
the next run.

CONCURRENCY: every record is handled in its own transaction with the row
locked and the flag re-read immediately before sending, so overlapping runs
do not double-send on databases that honour SELECT ... FOR UPDATE.
"""

from __future__ import annotations

import logging
from datetime import datetime

from ..extensions import db
from ..models import IssueRecord
from ..time_utils import days_until, utcnow
from .concurrency import lock_for_update
from .settings_service import LabSettings, load_settings
from . import notification_service


logger = logging.getLogger(__name__)

THREE_DAY_MILESTONE = 3
ONE_DAY_MILESTONE = 1


def _empty_summary() -> dict:
    return {"records": 0, "sent_3day": 0, "sent_1day": 0, "sent_overdue": 0, "failed": 0}


def _process_record(record_id: int, now: datetime, settings: LabSettings, summary: dict) -> None:
    record = lock_for_update(
        db.session.query(IssueRecord).filter(
            IssueRecord.id == record_id,
            IssueRecord.actual_return_date.is_(None),
        )
    ).first()
    if record is None:
        # Returned since the scan started
        db.session.rollback()
        return

    remaining = days_until(record.expected_return_date, now)

    if remaining == THREE_DAY_MILESTONE and settings.reminder_3days_enabled and not record.reminder_3days_sent:
        if notification_service.send_due_reminder(record, remaining, settings):
            record.reminder_3days_sent = True
            summary["sent_3day"] += 1
        else:
            summary["failed"] += 1

    if remaining == ONE_DAY_MILESTONE and settings.reminder_1day_enabled and not record.reminder_1day_sent:
        if notification_service.send_due_reminder(record, remaining, settings):
            record.reminder_1day_sent = True
            summary["sent_1day"] += 1
        else:
            summary["failed"] += 1

    if remaining < 0 and settings.overdue_reminder_enabled and not record.overdue_sent:
        if notification_service.send_overdue_notice(record, abs(remaining), settings):
            record.overdue_sent = True
            summary["sent_overdue"] += 1
        else:
            summary["failed"] += 1

    db.session.commit()


def send_due_reminders(now: datetime | None = None, settings: LabSettings | None = None) -> dict:
    """
    Scan every open IssueRecord once and send whatever milestone is due.

    Returns counts: records scanned, emails sent per milestone, failed sends.
    """
    now = now or utcnow()
    settings = settings or load_settings()
    summary = _empty_summary()

    record_ids = [
        row[0]
        for row in db.session.query(IssueRecord.id)
        .filter(IssueRecord.actual_return_date.is_(None))
        .order_by(IssueRecord.expected_return_date.asc())
        .all()
    ]
    summary["records"] = len(record_ids)

    for record_id in record_ids:
        try:
            _process_record(record_id, now, settings, summary)
        except Exception:
            db.session.rollback()
            summary["failed"] += 1
            logger.exception("Failed to process reminders for issue record %s", record_id)

    logger.info(
        "Reminder run: %s open records, %s 3-day, %s 1-day, %s overdue, %s failed",
        summary["records"],
        summary["sent_3day"],
        summary["sent_1day"],
        summary["sent_overdue"],
        summary["failed"],
    )
    return summary
