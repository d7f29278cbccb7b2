"""
Account administration, departments, and the best-effort audit / email channels.
"""

import pytest
from sqlalchemy import text

from conftest import NOW
from labinventory.extensions import db, mail
from labinventory.models import AuditLog, Department, User
from labinventory.services import audit_service, borrow_service, department_service, user_service
from labinventory.services.errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    ValidationError,
)


@pytest.fixture
def enforced_foreign_keys(db_session):
    """SQLite ignores foreign keys unless asked; turn them on for one test."""
    db.session.commit()
    db.session.execute(text("PRAGMA foreign_keys=ON"))
    yield
    db.session.rollback()
    db.session.execute(text("PRAGMA foreign_keys=OFF"))
    db.session.commit()


class TestRegistration:
    def test_self_registration_is_pending(self, db_session):
        user = user_service.register_user(name="Ravi", email="Ravi@woxsen.edu.in", password="secret123")
        assert user.is_approved is False
        assert user.role == "USER"
        assert user.email == "ravi@woxsen.edu.in"

    def test_privileged_roles_not_self_service(self, db_session):
        with pytest.raises(ValidationError):
            user_service.register_user(name="Eve", email="eve@woxsen.edu.in", password="secret123", role="ADMIN")

    def test_duplicate_email(self, student):
        with pytest.raises(ConflictError):
            user_service.register_user(name="Copy", email=student.email.upper(), password="secret123")

    def test_admin_approves(self, admin, db_session):
        user = user_service.register_user(name="Ravi", email="ravi@woxsen.edu.in", password="secret123")
        approved = user_service.approve_user(admin.id, user.id)
        assert approved.is_approved is True
        with pytest.raises(InvalidStateError):
            user_service.approve_user(admin.id, user.id)


class TestAdministration:
    def test_cannot_deactivate_self(self, admin):
        with pytest.raises(ForbiddenError):
            user_service.set_user_status(admin.id, admin.id, False)

    def test_is_active_must_be_boolean(self, admin, student):
        with pytest.raises(ValidationError):
            user_service.set_user_status(admin.id, student.id, "no")

    def test_demoting_incharge_clears_department(self, admin, incharge, robotics):
        user_service.change_role(admin.id, incharge.id, "FACULTY")
        assert db.session.get(Department, robotics.id).incharge_id is None

    def test_delete_refused_with_open_loan(self, admin, student, arduino, incharge):
        req = borrow_service.submit_request(student.id, arduino.id, "x", 2, now=NOW)
        borrow_service.approve_request(incharge.id, req.id, now=NOW)
        borrow_service.issue_item(incharge.id, req.id, now=NOW)
        with pytest.raises(InvalidStateError):
            user_service.delete_user(admin.id, student.id)

    def test_delete_refused_with_history(self, admin, student, arduino):
        req = borrow_service.submit_request(student.id, arduino.id, "x", 2, now=NOW)
        borrow_service.cancel_request(student.id, req.id)
        with pytest.raises(ConflictError):
            user_service.delete_user(admin.id, student.id)

    def test_delete_refused_for_staff_who_acted(self, admin, student, arduino, incharge):
        req = borrow_service.submit_request(student.id, arduino.id, "x", 2, now=NOW)
        borrow_service.reject_request(incharge.id, req.id, "Reserved for workshop", now=NOW)
        with pytest.raises(ConflictError):
            user_service.delete_user(admin.id, incharge.id)
        assert db.session.get(User, incharge.id) is not None

    def test_delete_refused_for_item_registrar(self, admin, make_user, make_item, robotics, electronics):
        registrar = make_user("PROCUREMENT")
        item = make_item(robotics, electronics)
        item.added_by_id = registrar.id
        db.session.commit()
        with pytest.raises(ConflictError):
            user_service.delete_user(admin.id, registrar.id)

    def test_foreign_key_failure_becomes_conflict(self, admin, incharge, robotics, make_item, electronics,
                                                  monkeypatch, enforced_foreign_keys):
        item = make_item(robotics, electronics)
        item.added_by_id = incharge.id
        db.session.commit()
        monkeypatch.setattr(user_service, "USER_HISTORY_COLUMNS", ())

        with pytest.raises(ConflictError):
            user_service.delete_user(admin.id, incharge.id)
        assert db.session.get(User, incharge.id) is not None

    def test_delete_clean_account(self, admin, make_user):
        user = make_user("STAFF")
        user_id = user.id
        user_service.delete_user(admin.id, user_id)
        assert db.session.get(User, user_id) is None


class TestDepartments:
    def test_incharge_must_hold_role(self, admin, student):
        with pytest.raises(ValidationError):
            department_service.create_department(admin.id, name="Physics Lab", code="PHY", incharge_id=student.id)

    def test_code_format(self, admin):
        with pytest.raises(ValidationError):
            department_service.create_department(admin.id, name="Physics Lab", code="phy lab")

    def test_duplicate_code(self, admin, robotics):
        with pytest.raises(ConflictError):
            department_service.create_department(admin.id, name="Another", code="ROBO")

    def test_category_defaults_to_setting(self, admin, db_session):
        category = department_service.create_category(admin.id, name="Optics")
        assert category.max_borrow_duration == 7


class TestBestEffortChannels:
    def test_audit_failure_does_not_raise(self, db_session, monkeypatch):
        def _boom(**kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(audit_service, "AuditLog", _boom)
        assert audit_service.record_audit(
            user_id=None, action="CREATE", entity_type="Item", entity_id=1, changes={"x": 1}
        ) is None

    def test_failed_email_keeps_request(self, student, arduino, monkeypatch):
        def _boom(message):
            raise ConnectionRefusedError("smtp down")

        monkeypatch.setattr(mail, "send", _boom)
        req = borrow_service.submit_request(student.id, arduino.id, "Line follower", 3, now=NOW)
        assert req.id is not None
        assert req.status == "PENDING"
        assert db.session.query(AuditLog).filter_by(entity_type="IssueRequest", entity_id=req.id).count() == 1
