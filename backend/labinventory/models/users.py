from __future__ import annotations

from ..extensions import db
from labinventory.time_utils import to_utc_z


class User(db.Model):
    """
    Portal accounts for borrowers, incharges, procurement and admins.

    WHY: Every request, issue, return and transfer must be attributable.

    BAN STATE:
    - is_banned=False: may borrow (subject to approval/active flags)
    - is_banned=True, banned_until set: timed ban (late return)
    - is_banned=True, banned_until NULL: indefinite ban pending compensation
    """
    __tablename__ = "users"
    __table_args__ = (
        db.Index("ix_users_role", "role"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    # ADMIN, INCHARGE, PROCUREMENT, FACULTY, STAFF, STUDENT, USER
    role = db.Column(db.String(32), nullable=False, default="USER")

    student_id = db.Column(db.String(64), nullable=True, unique=True)
    employee_id = db.Column(db.String(64), nullable=True, unique=True)
    phone = db.Column(db.String(32), nullable=True)

    is_approved = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_banned = db.Column(db.Boolean, nullable=False, default=False)
    banned_until = db.Column(db.DateTime, nullable=True)

    reset_token = db.Column(db.String(255), nullable=True)
    reset_token_expiry = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "student_id": self.student_id,
            "employee_id": self.employee_id,
            "phone": self.phone,
            "is_approved": self.is_approved,
            "is_active": self.is_active,
            "is_banned": self.is_banned,
            "banned_until": to_utc_z(self.banned_until),
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at) if self.last_login_at else None,
        }


class Department(db.Model):
    """
    Lab / department that owns items.

    One department has at most one incharge (incharge_id). An incharge may
    manage several departments; the association is read back through
    access_service.departments_managed_by(user_id).
    """
    __tablename__ = "departments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, unique=True)
    # 2-10 uppercase alphanumeric; prefix of every manual ID in this department
    code = db.Column(db.String(10), nullable=False, unique=True, index=True)
    description = db.Column(db.Text, nullable=True)

    incharge_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    incharge = db.relationship("User", backref=db.backref("departments", lazy=True))

    def __repr__(self) -> str:
        return f"<Department id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "description": self.description,
            "incharge_id": self.incharge_id,
            "created_at": to_utc_z(self.created_at),
        }
