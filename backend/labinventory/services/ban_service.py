# Overview: Borrowing eligibility checks and the late-return / damage ban policy.

"""
Ban policy.

BAN STATE (on User):
- is_banned=False                      -> no ban
- is_banned=True, banned_until=<date>  -> timed ban (late return)
- is_banned=True, banned_until=None    -> indefinite ban pending compensation

EXPIRY: a timed ban whose banned_until has passed is lifted by the next
eligibility check, and the lift is committed right away.

PRECEDENCE at return time:
- pending replacement -> indefinite ban (overrides any timed ban)
- late return with late_return_auto_ban -> ban until now + late_return_ban_months
- an existing longer or indefinite ban is never shortened
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from dateutil.relativedelta import relativedelta

from ..extensions import db
from ..models import User
from ..time_utils import utcnow
from .access_service import ROLE_ADMIN, get_actor, require_role
from .concurrency import lock_for_update, run_with_retry
from .errors import AccountNotEligibleError, InvalidStateError, NotFoundError
from .settings_service import LabSettings
from . import audit_service


logger = logging.getLogger(__name__)


@dataclass
class BanOutcome:
    banned: bool = False
    indefinite: bool = False
    banned_until: datetime | None = None


def is_ban_expired(user: User, now: datetime) -> bool:
    return bool(user.is_banned and user.banned_until is not None and user.banned_until <= now)


def lift_expired_ban(user: User, now: datetime | None = None) -> bool:
    """Clear a timed ban that has run out. Commits; returns True when lifted."""
    now = now or utcnow()
    if not is_ban_expired(user, now):
        return False
    previous = user.banned_until
    user.is_banned = False
    user.banned_until = None
    db.session.commit()
    logger.info("Lifted expired ban for user %s (was until %s)", user.id, previous)
    audit_service.record_audit(
        user_id=None,
        action="BAN_EXPIRED",
        entity_type="User",
        entity_id=user.id,
        changes={"previous_banned_until": previous},
    )
    return True


def check_borrow_eligibility(user: User, now: datetime | None = None) -> None:
    """
    Raise AccountNotEligibleError unless the user may borrow.

    Order: approval, active flag, ban.
    """
    now = now or utcnow()
    if not user.is_approved:
        raise AccountNotEligibleError("Your account is pending approval")
    if not user.is_active:
        raise AccountNotEligibleError("Your account is inactive")
    if user.is_banned:
        if lift_expired_ban(user, now):
            return
        if user.banned_until is not None:
            raise AccountNotEligibleError(f"You are banned until {user.banned_until.strftime('%d %b %Y')}")
        raise AccountNotEligibleError("You are banned indefinitely pending compensation")


def apply_return_penalties(
    user: User,
    *,
    is_late: bool,
    is_pending_replacement: bool,
    now: datetime,
    settings: LabSettings,
) -> BanOutcome:
    """
    Apply the ban policy for a return. Runs inside the caller's transaction.

    A return that is both late and pending replacement gets only the
    indefinite ban: no banned_until is computed and the late-return
    suspension email is not sent, since the replacement email already
    announces the ban.
    """
    if is_pending_replacement:
        user.is_banned = True
        user.banned_until = None
        return BanOutcome(banned=True, indefinite=True)

    if not is_late or not settings.late_return_auto_ban or settings.late_return_ban_months <= 0:
        return BanOutcome()

    if user.is_banned and user.banned_until is None:
        # Already indefinitely banned
        return BanOutcome()

    until = now + relativedelta(months=settings.late_return_ban_months)
    if user.is_banned and user.banned_until is not None and user.banned_until >= until:
        return BanOutcome()

    user.is_banned = True
    user.banned_until = until
    return BanOutcome(banned=True, banned_until=until)


def revoke_ban(actor_id: int, user_id: int) -> User:
    """Manually lift a timed or indefinite ban (ADMIN only)."""
    actor = get_actor(actor_id)
    require_role(actor, (ROLE_ADMIN,))
    previous = {}

    def _op():
        user = lock_for_update(db.session.query(User).filter_by(id=user_id)).first()
        if not user:
            raise NotFoundError("User not found")
        if not user.is_banned:
            raise InvalidStateError("User is not currently banned")
        previous["banned_until"] = user.banned_until
        user.is_banned = False
        user.banned_until = None
        db.session.commit()
        return user

    user = run_with_retry(_op)

    audit_service.record_audit(
        user_id=actor.id,
        action="REVOKE_BAN",
        entity_type="User",
        entity_id=user.id,
        changes={
            "action": "Manual ban revocation",
            "target_user": user.name,
            "target_email": user.email,
            "previous_banned_until": previous.get("banned_until"),
        },
    )
    return user
