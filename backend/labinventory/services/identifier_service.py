# Overview: Manual item ID allocation ("<DEPTCODE>-NNN") from an atomic per-code sequence.

"""
Identifier Service - manual item IDs

FORMAT: "<DEPTCODE>-NNN", NNN zero-padded to 3 digits, increasing per code.

CONCURRENCY: the next number is reserved with a single
UPDATE ... SET next_number = next_number + 1 on the ItemSequence row, so two
concurrent creations under one code can never read the same value. The
first allocation for a code seeds the row from the greatest suffix already
in use; a concurrent seed loses on the unique constraint and the caller's
unit of work is retried.

Gaps are tolerated: deleted items are never renumbered. A code holds at
most 999 items; the allocation past that fails and rolls back with the
caller's transaction.
"""

from __future__ import annotations

import re

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Item, ItemSequence
from .errors import InvalidStateError, ValidationError


DEPARTMENT_CODE_RE = re.compile(r"^[A-Z0-9]{2,10}$")
MANUAL_ID_PAD = 3
MANUAL_ID_MAX = 10 ** MANUAL_ID_PAD - 1


def normalize_department_code(code: str) -> str:
    """Normalize to uppercase, no spaces."""
    return (code or "").upper().strip().replace(" ", "")


def format_manual_id(code: str, number: int) -> str:
    if not 1 <= number <= MANUAL_ID_MAX:
        raise InvalidStateError(f"Manual ID numbers for {code} are exhausted (limit {MANUAL_ID_MAX})")
    return f"{code}-{number:0{MANUAL_ID_PAD}d}"


def _highest_existing_suffix(code: str) -> int:
    prefix = f"{code}-"
    rows = db.session.query(Item.manual_id).filter(Item.manual_id.like(f"{prefix}%")).all()
    highest = 0
    for (manual_id,) in rows:
        suffix = manual_id[len(prefix):]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return highest


def next_manual_id(department_code: str) -> str:
    """
    Reserve the next manual ID for a department code.

    Runs inside the caller's transaction (flush only, no commit), so the
    reservation is rolled back together with a failed item creation.
    """
    code = normalize_department_code(department_code)
    if not DEPARTMENT_CODE_RE.match(code):
        raise ValidationError("Department code must be 2-10 uppercase letters or digits")

    stmt = (
        update(ItemSequence)
        .where(ItemSequence.department_code == code)
        .values(next_number=ItemSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(ItemSequence.next_number)
            .filter_by(department_code=code)
            .scalar()
        )
        return format_manual_id(code, current - 1)

    number = _highest_existing_suffix(code) + 1
    db.session.add(ItemSequence(department_code=code, next_number=number + 1))
    try:
        db.session.flush()
    except IntegrityError as exc:
        # Another transaction seeded this code first; retry the whole unit of work.
        raise StaleDataError(f"Concurrent sequence seed for {code}") from exc
    return format_manual_id(code, number)
