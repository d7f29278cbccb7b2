# Overview: Password hashing and credential checks for portal logins.

"""
Authentication Service

WHY: Every action must be attributable. Uses bcrypt for password hashing.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 6 characters required
- Only approved, active accounts may log in
- Session tokens managed separately (see session_service.py)
"""

import bcrypt
from ..extensions import db
from ..models import User
from labinventory.time_utils import utcnow
from .errors import AccountNotEligibleError, UnauthenticatedError, ValidationError


MIN_PASSWORD_LENGTH = 6


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt with cost factor 12.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    bcrypt.checkpw() is timing-safe.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except (ValueError, TypeError):
        return False


def authenticate(email: str, password: str) -> User:
    """
    Check credentials and account state.

    Raises:
        UnauthenticatedError: unknown email or wrong password
        AccountNotEligibleError: account pending approval or deactivated

    Updates last_login_at on success.
    """
    email = (email or "").strip().lower()
    user = db.session.query(User).filter(db.func.lower(User.email) == email).first()
    if not user or not verify_password(password or "", user.password_hash):
        raise UnauthenticatedError("Invalid email or password")
    if not user.is_approved:
        raise AccountNotEligibleError("Your account is pending approval")
    if not user.is_active:
        raise AccountNotEligibleError("Your account is inactive")

    user.last_login_at = utcnow()
    db.session.commit()
    return user
