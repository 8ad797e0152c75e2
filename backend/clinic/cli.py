# Overview: Flask CLI command group for bootstrap, inspection, and maintenance.

# backend/clinic/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP (PowerShell: $env:FLASK_APP="clinic:create_app").
# - Use: python -m flask clinic <command> [options]
#
# - python -m flask clinic init-db
#   Create all tables (no-op for tables that already exist).
# - python -m flask clinic reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask clinic create-admin --name "Admin" --email admin@clinic.local --password "Password123!"
#   Create an admin account (prompts if options are omitted).
# - python -m flask clinic low-stock
#   List inventory items at or below their low-stock threshold.
# - python -m flask clinic cleanup-sessions
#   Delete expired/revoked sessions older than 30 days.

import click
from flask.cli import with_appcontext

from .errors import ClinicError
from .extensions import db
from .models.accounts import ACCOUNT_ADMIN
from .services import account_service, inventory_service, session_service


@click.group('clinic')
def clinic_group():
    """Clinic bootstrap and maintenance commands."""


@clinic_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables."""
    db.create_all()
    click.echo("PASS Database tables created.")


@clinic_group.command('reset-db')
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

    click.echo("PASS Database reset complete. Run 'python -m flask clinic create-admin' to add an admin.")


@clinic_group.command('create-admin')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Login email')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@with_appcontext
def create_admin(name, email, password):
    """Create an admin account."""
    try:
        account = account_service.register_account(
            account_type=ACCOUNT_ADMIN,
            name=name,
            email=email,
            password=password,
        )
    except ClinicError as e:
        raise click.ClickException(e.message)

    click.echo(f"PASS Created admin {account.email} (ID: {account.id})")


@clinic_group.command('low-stock')
@with_appcontext
def low_stock():
    """List items at or below their low-stock threshold."""
    items = inventory_service.list_low_stock_items()
    if not items:
        click.echo("No low-stock items.")
        return

    click.echo(f"{'ID':<6} {'Name':<32} {'On hand':>8} {'Threshold':>10}")
    for item in items:
        click.echo(f"{item.id:<6} {item.name[:32]:<32} {item.quantity_on_hand:>8} {item.low_stock_threshold:>10}")


@clinic_group.command('cleanup-sessions')
@with_appcontext
def cleanup_sessions():
    """Delete expired or revoked sessions older than 30 days."""
    deleted = session_service.cleanup_expired_sessions()
    click.echo(f"PASS Deleted {deleted} session(s).")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(clinic_group)
