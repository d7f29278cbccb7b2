# Overview: Opaque bearer session tokens: issue, validate with timeouts, revoke.

"""
Bearer sessions for the portal API.

The client holds a random 64-hex-character token; only its SHA-256 digest
is stored. A session ends at the absolute timeout, after the idle timeout
without use, on logout, or when the account is deactivated.
"""

import hashlib
import secrets
from datetime import timedelta

from ..extensions import db
from ..models import SessionToken, User
from labinventory.time_utils import utcnow


SESSION_ABSOLUTE_TIMEOUT = timedelta(hours=24)
SESSION_IDLE_TIMEOUT = timedelta(hours=2)


def _digest(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _revoke(session: SessionToken, reason: str, now) -> None:
    session.is_revoked = True
    session.revoked_at = now
    session.revoked_reason = reason


def create_session(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None
) -> tuple[SessionToken, str]:
    """Open a session for a user; returns (row, plaintext token)."""
    if db.session.get(User, user_id) is None:
        raise ValueError("User not found")

    token = secrets.token_hex(32)
    now = utcnow()
    session = SessionToken(
        user_id=user_id,
        token_hash=_digest(token),
        created_at=now,
        last_used_at=now,
        expires_at=now + SESSION_ABSOLUTE_TIMEOUT,
        user_agent=user_agent,
        ip_address=ip_address,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, token


def validate_session(token: str) -> User | None:
    """
    Resolve a token to its active user, or None.

    Idle sessions and sessions of deactivated accounts are revoked on the
    way out; a successful lookup refreshes last_used_at.
    """
    now = utcnow()
    session = db.session.query(SessionToken).filter_by(token_hash=_digest(token), is_revoked=False).first()
    if not session or session.expires_at < now:
        return None

    if now - session.last_used_at > SESSION_IDLE_TIMEOUT:
        _revoke(session, "Idle timeout", now)
        db.session.commit()
        return None

    user = session.user
    if not user or not user.is_active:
        _revoke(session, "User account deactivated", now)
        db.session.commit()
        return None

    session.last_used_at = now
    db.session.commit()
    return user


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """Revoke one session; False when the token is unknown or already revoked."""
    session = db.session.query(SessionToken).filter_by(token_hash=_digest(token), is_revoked=False).first()
    if not session:
        return False
    _revoke(session, reason, utcnow())
    db.session.commit()
    return True


def revoke_all_user_sessions(user_id: int, reason: str) -> int:
    """Revoke every open session of a user; returns how many."""
    now = utcnow()
    sessions = db.session.query(SessionToken).filter_by(user_id=user_id, is_revoked=False).all()
    for session in sessions:
        _revoke(session, reason, now)
    db.session.commit()
    return len(sessions)
