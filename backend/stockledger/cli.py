# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/stockledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--admin-username admin --admin-password "Password123"]
#   Idempotent bootstrap: creates tables and a super_admin user.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
# - python -m flask users create --username alice --password "Password123" --role stock_in_manager
# - python -m flask users deactivate alice
# - python -m flask users set-password alice --password "NewPassword123"
#
# Inventory:
# - python -m flask products list [--all]
# - python -m flask stock verify
#   Recompute every balance from the ledger; exits 1 on any mismatch.
#
# Alerts (cron-friendly):
# - python -m flask alerts check

import sys

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .permissions import ROLES, SUPER_ADMIN
from .validation import ValidationError, ConflictError
from .services import alert_service, auth_service, products_service, stock_service
from .services.auth_service import PasswordValidationError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--admin-username', default='admin', help='Username of the bootstrap super_admin')
@click.option('--admin-password', default='Password123', help='Password of the bootstrap super_admin')
@with_appcontext
def init_system(admin_username, admin_password):
    """
    Create tables and a super_admin account.

    Safe to run repeatedly: an existing user with the same name is left alone.

    SECURITY: Change the default password immediately in production!
    """
    click.echo("START Initializing stock ledger...")
    db.create_all()
    click.echo("PASS Tables ready")

    existing = db.session.query(User).filter_by(username=admin_username).first()
    if existing:
        click.echo(f"WARN  User '{admin_username}' already exists, skipping...")
        return

    try:
        auth_service.create_user(admin_username, admin_password, roles=[SUPER_ADMIN])
    except (ValidationError, ConflictError) as e:
        click.echo(f"FAIL Failed to create '{admin_username}': {e}")
        sys.exit(1)

    click.echo(f"PASS Created user: {admin_username} with role '{SUPER_ADMIN}'")
    click.echo("\nSECURITY WARNING: change the bootstrap password in production!")


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


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', default=None, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', 'roles', multiple=True, type=click.Choice(ROLES), help='Role (repeatable)')
@with_appcontext
def create_user_cli(username, email, password, roles):
    """
    Create a user.

    Password must be 8+ characters with at least one letter and one digit.
    """
    try:
        user = auth_service.create_user(username, password, email=email, roles=list(roles))
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e}")
        sys.exit(1)
    except (ValidationError, ConflictError) as e:
        click.echo(f"FAIL Failed to create user: {e}")
        sys.exit(1)

    click.echo(f"PASS Created user: {user.username} (ID: {user.id}) roles: {', '.join(user.roles) or 'none'}")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = auth_service.list_users()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<30} {'Active':<8} {'Roles'}")
    click.echo("="*90)

    for user in users:
        roles_str = ", ".join(user.roles or []) or "none"
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.email or '-':<30} {active_str:<8} {roles_str}")

    click.echo("="*90 + "\n")


@users_group.command('deactivate')
@click.argument('username')
@with_appcontext
def deactivate_user_cli(username):
    """Deactivate a user and revoke their sessions."""
    user = db.session.query(User).filter_by(username=username).first()
    if not user:
        click.echo(f"FAIL User '{username}' not found")
        sys.exit(1)

    try:
        auth_service.set_active(user.id, False)
    except ConflictError as e:
        click.echo(f"FAIL {e}")
        sys.exit(1)
    click.echo(f"PASS Deactivated user: {username}")


@users_group.command('set-password')
@click.argument('username')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='New password')
@with_appcontext
def set_password_cli(username, password):
    """Reset a user's password and revoke their sessions."""
    user = db.session.query(User).filter_by(username=username).first()
    if not user:
        click.echo(f"FAIL User '{username}' not found")
        sys.exit(1)

    try:
        auth_service.set_password(user.id, password)
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e}")
        sys.exit(1)
    click.echo(f"PASS Password updated for user: {username}")


@click.group('products')
def products_group():
    """Product inspection commands."""


@products_group.command('list')
@click.option('--all', 'include_inactive', is_flag=True, help='Include inactive products')
@with_appcontext
def list_products_cli(include_inactive):
    products = products_service.list_products(include_inactive=include_inactive)
    if not products:
        click.echo("No products found.")
        return

    click.echo(f"{'ID':<5} {'Name':<30} {'Unit':<6} {'Current':>16} {'Active':<6}")
    for p in products:
        click.echo(
            f"{p.id:<5} {p.name:<30} {p.unit:<6} {p.to_dict()['current_stock']:>16} "
            f"{'Yes' if p.is_active else 'No':<6}"
        )


@click.group('stock')
def stock_group():
    """Ledger audit commands."""


@stock_group.command('verify')
@with_appcontext
def verify_stock_cli():
    """
    Conservation audit: current_stock == opening + stock_in - stock_out for
    every product. Exits 1 when any product disagrees with its ledger.
    """
    mismatches = stock_service.verify_all_balances()
    if not mismatches:
        click.echo("PASS Every product balance matches its ledger")
        return

    for report in mismatches:
        click.echo(
            f"FAIL product {report['product_id']}: current_stock {report['current_stock']} "
            f"!= ledger {report['ledger_balance']} {report['unit']}"
        )
    sys.exit(1)


@click.group('alerts')
def alerts_group():
    """Low-stock alert commands."""


@alerts_group.command('check')
@with_appcontext
def check_alerts_cli():
    """Run the low-stock check (intended for cron)."""
    result = alert_service.run_alert_check()
    click.echo(
        f"PASS Low-stock check: {len(result.created)} created, "
        f"{len(result.escalated)} re-levelled, {len(result.resolved)} resolved"
    )
    for alert in result.created:
        click.echo(
            f"  NEW {alert.alert_level:<8} product {alert.product_id} "
            f"current {alert.current_quantity} < planned {alert.planned_quantity}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(products_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(alerts_group)
