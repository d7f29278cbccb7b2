# Overview: Flask CLI command groups for bootstrap, user inspection, and the reminder job.

# backend/labinventory/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--admin-email admin@woxsen.edu.in]
#   Create tables (if missing) and a default ADMIN account.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list [--role INCHARGE] [--pending]
#   List users with role, approval and ban state.
# - python -m flask users create --name "Lab Admin" --email a@woxsen.edu.in --password "secret1" --role ADMIN
#   Create an approved user (prompts if options are omitted).
#
# Scheduled jobs:
# - python -m flask reminders send
#   Send due-date reminders and overdue notices. Run daily from cron.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .services import reminder_service
from .services.access_service import ALL_ROLES, ROLE_ADMIN
from .services.auth_service import hash_password, validate_password_strength, PasswordValidationError
from .time_utils import to_utc_z


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--admin-name', default='Administrator', help='Name of the default admin')
@click.option('--admin-email', default='admin@woxsen.edu.in', help='Email of the default admin')
@click.option('--admin-password', default='Password123!', help='Password of the default admin')
@with_appcontext
def init_system(admin_name, admin_email, admin_password):
    """
    Initialize the lab inventory: create tables and a default ADMIN.

    Idempotent: an existing account with the same email is left alone.

    SECURITY: Change the default password immediately in production!
    """
    click.echo("START Initializing lab inventory...")

    db.create_all()
    click.echo("PASS Tables ready")

    email = admin_email.strip().lower()
    existing = db.session.query(User).filter(db.func.lower(User.email) == email).first()
    if existing:
        click.echo(f"WARN  User '{email}' already exists, skipping...")
    else:
        user = User(
            name=admin_name,
            email=email,
            password_hash=hash_password(admin_password),
            role=ROLE_ADMIN,
            is_approved=True,
            is_active=True,
        )
        db.session.add(user)
        db.session.commit()
        click.echo(f"PASS Created admin: {email} (ID: {user.id})")

    click.echo("\nDONE Lab inventory initialized.")
    click.echo("SECURITY WARNING: change the default admin password in production!")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


# =============================================================================
# USER COMMANDS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('list')
@click.option('--role', default=None, help='Filter by role')
@click.option('--pending', is_flag=True, help='Only accounts awaiting approval')
@with_appcontext
def list_users(role, pending):
    """List users with role, approval and ban state."""
    query = db.session.query(User)
    if role:
        query = query.filter(User.role == role.upper())
    if pending:
        query = query.filter(User.is_approved.is_(False))
    users = query.order_by(User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Email':<35} {'Role':<12} {'Approved':<9} {'Active':<7} {'Banned'}")
    click.echo("="*100)

    for user in users:
        if not user.is_banned:
            banned = "-"
        elif user.banned_until is None:
            banned = "indefinite"
        else:
            banned = f"until {to_utc_z(user.banned_until)}"
        click.echo(
            f"{user.id:<5} {user.email:<35} {user.role:<12} "
            f"{'Yes' if user.is_approved else 'No':<9} {'Yes' if user.is_active else 'No':<7} {banned}"
        )

    click.echo("="*100 + "\n")


@users_group.command('create')
@click.option('--name', prompt=True, help='Full name')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(sorted(ALL_ROLES), case_sensitive=False), prompt=True, help='Role')
@with_appcontext
def create_user_cli(name, email, password, role):
    """
    Create an approved, active user.

    Bypasses the email domain rule so service accounts can be added.
    """
    try:
        validate_password_strength(password)
    except PasswordValidationError as e:
        click.echo(f"FAIL {e.message}")
        return

    email = email.strip().lower()
    if db.session.query(User.id).filter(db.func.lower(User.email) == email).first():
        click.echo(f"FAIL User '{email}' already exists")
        return

    user = User(
        name=name.strip(),
        email=email,
        password_hash=hash_password(password),
        role=role.upper(),
        is_approved=True,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created user: {email} (ID: {user.id}) with role '{user.role}'")


# =============================================================================
# SCHEDULED JOBS
# =============================================================================

@click.group('reminders')
def reminders_group():
    """Due-date reminder job."""


@reminders_group.command('send')
@with_appcontext
def send_reminders():
    """Send 3-day / 1-day reminders and overdue notices for open loans."""
    summary = reminder_service.send_due_reminders()
    click.echo(
        f"PASS Checked {summary['records']} open loans: "
        f"{summary['sent_3day']} 3-day, {summary['sent_1day']} 1-day, "
        f"{summary['sent_overdue']} overdue, {summary['failed']} failed"
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(reminders_group)
