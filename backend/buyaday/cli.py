# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/buyaday/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--year 2027]
#   Idempotent bootstrap: tables, settings singleton, order sequence, calendar days.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Calendar:
# - python -m flask calendar seed [--year 2027]
#   Create one AVAILABLE row per day (skips existing days).
# - python -m flask calendar status
#   Count days per state.
# - python -m flask calendar expire-holds
#   Revert checkout holds past their expiry (safe to run from cron).
# - python -m flask calendar reset-holds --yes
#   Release ALL checkout holds, expired or not.
#
# Admin accounts:
# - python -m flask admins create --email ops@example.org --name "Ops"
#   Create an admin (prompts for password; 12+ chars).
# - python -m flask admins reset-password --email ops@example.org
#   Set a new password and revoke existing sessions.
# - python -m flask admins list
#   List admins.

import click
from flask.cli import with_appcontext
from sqlalchemy import func

from .extensions import db
from .models import AdminUser, CalendarDay, STATES
from .services import calendar_service, maintenance_service, session_service
from .services.auth_service import AdminAccountError, PasswordValidationError, create_admin, set_password
from .services.order_service import ensure_order_sequence
from .services.settings_service import ensure_settings


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--year', type=int, default=None, help='Calendar year (defaults to CALENDAR_YEAR)')
@with_appcontext
def init_system(year):
    """
    Initialize the calendar backend.

    Creates:
    - All tables (if missing)
    - Sales settings singleton
    - Order number sequence for the year
    - One AVAILABLE day per date of the year
    """
    click.echo("START Initializing calendar backend...")
    db.create_all()

    settings = ensure_settings()
    year = year or settings.calendar_year
    if year != settings.calendar_year:
        settings.calendar_year = year
        db.session.commit()
    click.echo(f"PASS Settings ready (year {settings.calendar_year}, price {settings.price_cents} cents)")

    ensure_order_sequence(year)
    db.session.commit()
    click.echo(f"PASS Order sequence ready for {year}")

    created = calendar_service.seed_calendar_days(year)
    click.echo(f"PASS Created {created} calendar day(s)")

    if not db.session.query(AdminUser).count():
        click.echo("\nWARN No admin accounts yet. Run: python -m flask admins create --email you@example.org")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including the audit trail!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()
    click.echo("BUILD Creating all tables...")
    db.create_all()
    click.echo("PASS Database reset. Run 'python -m flask system init' next.")


@click.group('calendar')
def calendar_group():
    """Calendar provisioning and hold maintenance."""


@calendar_group.command('seed')
@click.option('--year', type=int, default=None, help='Calendar year (defaults to settings)')
@with_appcontext
def seed_calendar(year):
    """Create calendar days for a year (idempotent)."""
    settings = ensure_settings()
    year = year or settings.calendar_year
    ensure_order_sequence(year)
    db.session.commit()
    created = calendar_service.seed_calendar_days(year)
    click.echo(f"PASS Created {created} calendar day(s) for {year}")


@calendar_group.command('status')
@with_appcontext
def calendar_status():
    """Count days per state."""
    counts = dict(
        db.session.query(CalendarDay.state, func.count(CalendarDay.id))
        .group_by(CalendarDay.state)
        .all()
    )
    click.echo("\n" + "=" * 40)
    for state in STATES:
        click.echo(f"{state:<16} {counts.get(state, 0):>6}")
    click.echo("=" * 40)


@calendar_group.command('expire-holds')
@with_appcontext
def expire_holds_command():
    """Revert expired checkout holds and prune old sessions."""
    result = maintenance_service.run_sweep()
    click.echo(f"PASS Expired {result['expiredHolds']} hold(s), deleted {result['deletedSessions']} session(s)")


@calendar_group.command('reset-holds')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_holds_command(yes):
    """Release every checkout hold, including live ones."""
    if not yes:
        click.confirm("WARN Customers mid-checkout will lose their hold. Continue?", abort=True)
    released = calendar_service.reset_checkout_holds(actor="cli")
    click.echo(f"PASS Released {released} checkout hold(s)")


@click.group('admins')
def admins_group():
    """Admin account management."""


@admins_group.command('create')
@click.option('--email', required=True)
@click.option('--name', default=None)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@with_appcontext
def create_admin_command(email, name, password):
    """Create an administrator account."""
    try:
        admin = create_admin(email, password, name=name)
    except (AdminAccountError, PasswordValidationError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created admin {admin.email} (ID: {admin.id})")


@admins_group.command('reset-password')
@click.option('--email', required=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@with_appcontext
def reset_password_command(email, password):
    """Set a new password and revoke all of the admin's sessions."""
    try:
        admin = set_password(email, password)
    except (AdminAccountError, PasswordValidationError) as e:
        raise click.ClickException(str(e))
    revoked = session_service.revoke_all_admin_sessions(admin.id)
    click.echo(f"PASS Password updated for {admin.email}; revoked {revoked} session(s)")


@admins_group.command('list')
@with_appcontext
def list_admins():
    """List all admin accounts."""
    admins = db.session.query(AdminUser).order_by(AdminUser.id).all()
    if not admins:
        click.echo("No admins found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<5} {'Email':<35} {'Name':<25} {'Active':<8}")
    click.echo("=" * 80)
    for admin in admins:
        active_str = "Yes" if admin.is_active else "No"
        click.echo(f"{admin.id:<5} {admin.email:<35} {(admin.name or ''):<25} {active_str:<8}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(calendar_group)
    app.cli.add_command(admins_group)
