# backend/labinventory/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/labinventory.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///labinventory.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Self-registration is restricted to institutional addresses
    ALLOWED_EMAIL_DOMAIN = os.environ.get("ALLOWED_EMAIL_DOMAIN", "woxsen.edu.in")

    # Used to build dashboard links inside notification emails
    APP_URL = os.environ.get("APP_URL", "http://localhost:3000")

    # Outbound email (Flask-Mail)
    MAIL_SERVER = os.environ.get("EMAIL_SERVER_HOST", "localhost")
    MAIL_PORT = int(os.environ.get("EMAIL_SERVER_PORT", "587"))
    MAIL_USE_TLS = _env_flag("EMAIL_SERVER_TLS", "true")
    MAIL_USERNAME = os.environ.get("EMAIL_SERVER_USER")
    MAIL_PASSWORD = os.environ.get("EMAIL_SERVER_PASSWORD")
    MAIL_DEFAULT_SENDER = os.environ.get("EMAIL_FROM", "inventory@localhost")

    # Master switch for lifecycle and reminder email
    NOTIFICATIONS_ENABLED = _env_flag("NOTIFICATIONS_ENABLED", "true")
