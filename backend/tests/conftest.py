"""
Pytest fixtures for the lab inventory backend tests.

Provides the app on in-memory SQLite, a per-test table wipe, entity
factories, and bearer-token headers.
"""

from datetime import datetime
from itertools import count

import pytest
from labinventory import create_app
from labinventory.extensions import db, mail
from labinventory.models import Category, Department, Item, User
from labinventory.services import session_service
from labinventory.services.auth_service import hash_password
from labinventory.services.settings_service import load_settings


# Fixed clock for service-level tests
NOW = datetime(2026, 3, 2, 9, 0, 0)

PASSWORD = "secret123"

_seq = count(1)

# bcrypt is deliberately slow; hash once for every factory user
PASSWORD_HASH = hash_password(PASSWORD)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'NOTIFICATIONS_ENABLED': True,
        'ALLOWED_EMAIL_DOMAIN': 'woxsen.edu.in',
        'MAIL_DEFAULT_SENDER': 'inventory@woxsen.edu.in',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def outbox(app, db_session):
    """Messages handed to Flask-Mail during the test (sending is suppressed)."""
    with mail.record_messages() as messages:
        yield messages


@pytest.fixture(scope='function')
def settings(db_session):
    """Defaults, resolved once like a service call would."""
    return load_settings()


# =============================================================================
# FACTORIES
# =============================================================================

@pytest.fixture(scope='function')
def make_user(db_session):
    def _make(role="STUDENT", *, name=None, email=None, is_approved=True, is_active=True,
              is_banned=False, banned_until=None):
        n = next(_seq)
        user = User(
            name=name or f"{role.title()} {n}",
            email=email or f"{role.lower()}{n}@woxsen.edu.in",
            password_hash=PASSWORD_HASH,
            role=role,
            is_approved=is_approved,
            is_active=is_active,
            is_banned=is_banned,
            banned_until=banned_until,
        )
        db_session.add(user)
        db_session.commit()
        return user
    return _make


@pytest.fixture(scope='function')
def make_department(db_session):
    def _make(code, *, incharge=None, name=None):
        department = Department(
            name=name or f"{code} Lab",
            code=code,
            incharge_id=incharge.id if incharge else None,
        )
        db_session.add(department)
        db_session.commit()
        return department
    return _make


@pytest.fixture(scope='function')
def make_category(db_session):
    def _make(name=None, *, max_borrow_duration=7):
        category = Category(
            name=name or f"Category {next(_seq)}",
            max_borrow_duration=max_borrow_duration,
        )
        db_session.add(category)
        db_session.commit()
        return category
    return _make


@pytest.fixture(scope='function')
def make_item(db_session):
    def _make(department, category, *, name=None, status="AVAILABLE", is_consumable=False,
              current_stock=None, min_stock_level=None, manual_id=None):
        n = next(_seq)
        item = Item(
            manual_id=manual_id or f"{department.code}-{n + 100:03d}",
            name=name or f"Item {n}",
            category_id=category.id,
            department_id=department.id,
            status=status,
            is_consumable=is_consumable,
            current_stock=current_stock,
            min_stock_level=min_stock_level,
        )
        db_session.add(item)
        db_session.commit()
        return item
    return _make


# =============================================================================
# COMMON SETUP
# =============================================================================

@pytest.fixture(scope='function')
def admin(make_user):
    return make_user("ADMIN", name="Admin")


@pytest.fixture(scope='function')
def incharge(make_user):
    return make_user("INCHARGE", name="Robotics Incharge")


@pytest.fixture(scope='function')
def other_incharge(make_user):
    return make_user("INCHARGE", name="Chemistry Incharge")


@pytest.fixture(scope='function')
def student(make_user):
    return make_user("STUDENT", name="Asha Student")


@pytest.fixture(scope='function')
def robotics(make_department, incharge):
    return make_department("ROBO", incharge=incharge, name="Robotics Lab")


@pytest.fixture(scope='function')
def chemistry(make_department, other_incharge):
    return make_department("CHEM", incharge=other_incharge, name="Chemistry Lab")


@pytest.fixture(scope='function')
def electronics(make_category):
    return make_category("Electronics", max_borrow_duration=7)


@pytest.fixture(scope='function')
def arduino(make_item, robotics, electronics):
    return make_item(robotics, electronics, name="Arduino Uno", manual_id="ROBO-001")


# =============================================================================
# AUTH HELPERS
# =============================================================================

def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def headers_for(db_session):
    """Session token headers for a user, without going through /login."""
    def _headers(user):
        _session, token = session_service.create_session(user.id)
        return auth_headers(token)
    return _headers
