"""Initial lab inventory schema

Revision ID: 20261017_initial
Revises:
Create Date: 2026-10-17

Creates users/departments, categories/items with cross-department access
grants and manual ID sequences, the borrow lifecycle (issue_requests,
issue_records), transfers, settings, audit_logs and session_tokens.

CONCURRENCY:
- uq_issue_requests_active_user_item: one active request per (user, item)
- uq_issue_records_open_item: one open loan per item
- uq_issue_records_request / uq_transfer_records_request: at most one
  record per request
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261017_initial"
down_revision = None
branch_labels = None
depends_on = None


ACTIVE_REQUEST_WHERE = "status IN ('PENDING', 'APPROVED') AND completed_at IS NULL"
OPEN_RECORD_WHERE = "actual_return_date IS NULL"


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.Column("student_id", sa.String(length=64), nullable=True),
        sa.Column("employee_id", sa.String(length=64), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("is_approved", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_banned", sa.Boolean(), nullable=False),
        sa.Column("banned_until", sa.DateTime(), nullable=True),
        sa.Column("reset_token", sa.String(length=255), nullable=True),
        sa.Column("reset_token_expiry", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("student_id"),
        sa.UniqueConstraint("employee_id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "departments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("code", sa.String(length=10), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("incharge_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("name"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_departments_code", "departments", ["code"], unique=True)
    op.create_index("ix_departments_incharge_id", "departments", ["incharge_id"])

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("max_borrow_duration", sa.Integer(), nullable=False),
        sa.Column("requires_approval", sa.Boolean(), nullable=False),
        sa.Column("visible_to_students", sa.Boolean(), nullable=False),
        sa.Column("visible_to_staff", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("name"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("manual_id", sa.String(length=32), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("specifications", sa.Text(), nullable=True),
        sa.Column("serial_number", sa.String(length=128), nullable=True),
        sa.Column("image_url", sa.String(length=512), nullable=True),
        sa.Column("location", sa.String(length=255), nullable=True),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False),
        sa.Column("department_id", sa.Integer(), sa.ForeignKey("departments.id"), nullable=False),
        sa.Column("condition", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=24), nullable=False),
        sa.Column("is_consumable", sa.Boolean(), nullable=False),
        sa.Column("current_stock", sa.Integer(), nullable=True),
        sa.Column("min_stock_level", sa.Integer(), nullable=True),
        sa.Column("source_department_id", sa.Integer(), sa.ForeignKey("departments.id"), nullable=True),
        sa.Column("added_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("serial_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_items_manual_id", "items", ["manual_id"], unique=True)
    op.create_index("ix_items_category_id", "items", ["category_id"])
    op.create_index("ix_items_department_id", "items", ["department_id"])
    op.create_index("ix_items_status", "items", ["status"])
    op.create_index("ix_items_department_status", "items", ["department_id", "status"])
    op.create_index("ix_items_department_name_category", "items", ["department_id", "name", "category_id"])

    op.create_table(
        "item_department_access",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("item_id", sa.Integer(), sa.ForeignKey("items.id"), nullable=False),
        sa.Column("department_id", sa.Integer(), sa.ForeignKey("departments.id"), nullable=False),
        sa.Column("can_transfer", sa.Boolean(), nullable=False),
        sa.UniqueConstraint("item_id", "department_id", name="uq_item_department_access"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_item_department_access_item_id", "item_department_access", ["item_id"])
    op.create_index("ix_item_department_access_department_id", "item_department_access", ["department_id"])

    op.create_table(
        "item_sequences",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("department_code", sa.String(length=10), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("department_code"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "issue_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("item_id", sa.Integer(), sa.ForeignKey("items.id"), nullable=False),
        sa.Column("purpose", sa.Text(), nullable=False),
        sa.Column("requested_days", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("request_date", sa.DateTime(), nullable=False),
        sa.Column("approved_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("approval_date", sa.DateTime(), nullable=True),
        sa.Column("expected_return_date", sa.DateTime(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_issue_requests_user_id", "issue_requests", ["user_id"])
    op.create_index("ix_issue_requests_item_id", "issue_requests", ["item_id"])
    op.create_index("ix_issue_requests_status", "issue_requests", ["status"])
    op.create_index(
        "uq_issue_requests_active_user_item",
        "issue_requests",
        ["user_id", "item_id"],
        unique=True,
        sqlite_where=sa.text(ACTIVE_REQUEST_WHERE),
        postgresql_where=sa.text(ACTIVE_REQUEST_WHERE),
    )

    op.create_table(
        "issue_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("request_id", sa.Integer(), sa.ForeignKey("issue_requests.id"), nullable=False),
        sa.Column("item_id", sa.Integer(), sa.ForeignKey("items.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("department_id", sa.Integer(), sa.ForeignKey("departments.id"), nullable=False),
        sa.Column("issued_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("issue_date", sa.DateTime(), nullable=False),
        sa.Column("expected_return_date", sa.DateTime(), nullable=False),
        sa.Column("actual_return_date", sa.DateTime(), nullable=True),
        sa.Column("returned_to", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("is_returnable", sa.Boolean(), nullable=False),
        sa.Column("project_name", sa.String(length=255), nullable=True),
        sa.Column("project_incharge", sa.String(length=255), nullable=True),
        sa.Column("return_condition", sa.String(length=16), nullable=True),
        sa.Column("damage_remarks", sa.Text(), nullable=True),
        sa.Column("is_pending_replacement", sa.Boolean(), nullable=False),
        sa.Column("reminder_3days_sent", sa.Boolean(), nullable=False),
        sa.Column("reminder_1day_sent", sa.Boolean(), nullable=False),
        sa.Column("overdue_sent", sa.Boolean(), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.UniqueConstraint("request_id", name="uq_issue_records_request"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_issue_records_item_id", "issue_records", ["item_id"])
    op.create_index("ix_issue_records_user_id", "issue_records", ["user_id"])
    op.create_index("ix_issue_records_department_id", "issue_records", ["department_id"])
    op.create_index("ix_issue_records_open_due", "issue_records", ["actual_return_date", "expected_return_date"])
    op.create_index(
        "uq_issue_records_open_item",
        "issue_records",
        ["item_id"],
        unique=True,
        sqlite_where=sa.text(OPEN_RECORD_WHERE),
        postgresql_where=sa.text(OPEN_RECORD_WHERE),
    )

    op.create_table(
        "transfer_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("item_id", sa.Integer(), sa.ForeignKey("items.id"), nullable=False),
        sa.Column("from_department_id", sa.Integer(), sa.ForeignKey("departments.id"), nullable=False),
        sa.Column("to_department_id", sa.Integer(), sa.ForeignKey("departments.id"), nullable=False),
        sa.Column("requested_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("purpose", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("request_date", sa.DateTime(), nullable=False),
        sa.Column("approved_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("approval_date", sa.DateTime(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.CheckConstraint("from_department_id <> to_department_id", name="ck_transfer_requests_distinct_departments"),
        sa.CheckConstraint("quantity >= 1", name="ck_transfer_requests_quantity_positive"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_transfer_requests_item_id", "transfer_requests", ["item_id"])
    op.create_index("ix_transfer_requests_from_department_id", "transfer_requests", ["from_department_id"])
    op.create_index("ix_transfer_requests_to_department_id", "transfer_requests", ["to_department_id"])
    op.create_index("ix_transfer_requests_status", "transfer_requests", ["status"])

    op.create_table(
        "transfer_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("request_id", sa.Integer(), sa.ForeignKey("transfer_requests.id"), nullable=False),
        sa.Column("item_id", sa.Integer(), sa.ForeignKey("items.id"), nullable=False),
        sa.Column("destination_item_id", sa.Integer(), sa.ForeignKey("items.id"), nullable=True),
        sa.Column("from_department_id", sa.Integer(), sa.ForeignKey("departments.id"), nullable=False),
        sa.Column("to_department_id", sa.Integer(), sa.ForeignKey("departments.id"), nullable=False),
        sa.Column("transferred_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("transfer_date", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("request_id", name="uq_transfer_records_request"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_transfer_records_item_id", "transfer_records", ["item_id"])

    op.create_table(
        "settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(length=128), nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("updated_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_settings_key", "settings", ["key"], unique=True)

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("action", sa.String(length=32), nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=True),
        sa.Column("changes", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_audit_logs_user_id", "audit_logs", ["user_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"])
    op.create_index("ix_audit_logs_created", "audit_logs", ["created_at"])

    op.create_table(
        "session_tokens",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("token_hash", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("last_used_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("is_revoked", sa.Boolean(), nullable=False),
        sa.Column("revoked_at", sa.DateTime(), nullable=True),
        sa.Column("revoked_reason", sa.String(length=255), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_session_tokens_user_id", "session_tokens", ["user_id"])
    op.create_index("ix_session_tokens_token_hash", "session_tokens", ["token_hash"], unique=True)
    op.create_index("ix_session_tokens_expires_at", "session_tokens", ["expires_at"])
    op.create_index("ix_session_tokens_is_revoked", "session_tokens", ["is_revoked"])
    op.create_index("ix_session_tokens_user_active", "session_tokens", ["user_id", "is_revoked"])


def downgrade():
    op.drop_table("session_tokens")
    op.drop_table("audit_logs")
    op.drop_table("settings")
    op.drop_table("transfer_records")
    op.drop_table("transfer_requests")
    op.drop_table("issue_records")
    op.drop_table("issue_requests")
    op.drop_table("item_sequences")
    op.drop_table("item_department_access")
    op.drop_table("items")
    op.drop_table("categories")
    op.drop_table("departments")
    op.drop_table("users")
