# Overview: Flask CLI command groups for bootstrap, inspection, and supplier maintenance.

# backend/teasupply/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--unit-price 50]
#   Idempotent bootstrap: creates tables, default staff accounts and the global unit price.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list [--role supplier]
#   List users with role and status.
# - python -m flask users create --name "Admin" --email admin@teasupply.local --password "Password123!" --role admin
#   Create a staff/manager/admin user (prompts if options are omitted).
#
# Supplier maintenance:
# - python -m flask suppliers deactivate-stale
#   Run the 6-month inactivity sweep once.
# - python -m flask suppliers backfill-ids
#   Assign supplier ids to suppliers that have none.
# - python -m flask suppliers reset-ids --yes
#   Renumber every supplier from SUP000001.
# - python -m flask suppliers id-stats
#   Show supplier id coverage and the next sequence number.

import click
from flask.cli import with_appcontext

from .errors import LedgerError
from .extensions import db
from .models import User
from .models.auth import ROLE_ADMIN, ROLE_MANAGER, ROLE_STAFF, VALID_ROLES
from .services.auth_service import create_user, PasswordValidationError
from .services import settings_service
from .services import supplier_service


DEFAULT_PASSWORD = "Password123!"
DEFAULT_USERS = (
    ("Administrator", "admin@teasupply.local", ROLE_ADMIN),
    ("Factory Manager", "manager@teasupply.local", ROLE_MANAGER),
    ("Weighing Clerk", "staff@teasupply.local", ROLE_STAFF),
)


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--unit-price', default=None, help='Global price per kg to set if none exists')
@with_appcontext
def init_system(unit_price):
    """
    Initialize the tea supply backend.

    Creates:
    - All tables (no-op for existing ones)
    - Users: admin@, manager@ and staff@teasupply.local
    - All passwords default to: "Password123!"
    - The global unit price, when --unit-price is given and none is set

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing tea supply system...")
    db.create_all()

    for name, email, role in DEFAULT_USERS:
        existing = db.session.query(User).filter_by(email=email).first()
        if existing:
            click.echo(f"PASS Using existing {role}: {email}")
            continue
        create_user(name, email, DEFAULT_PASSWORD, role, must_change_password=True)
        click.echo(f"PASS Created {role}: {email}")

    if unit_price is not None:
        if settings_service.get_unit_price() is None:
            price = settings_service.set_unit_price(unit_price, reason="Initial setup")
            click.echo(f"PASS Global unit price set to {price}")
        else:
            click.echo(f"PASS Global unit price already set ({settings_service.get_unit_price()})")

    click.echo("DONE System initialized. Default password: " + DEFAULT_PASSWORD)


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
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice([r for r in VALID_ROLES if r != 'supplier']), prompt=True, help='Role')
@with_appcontext
def create_user_cli(name, email, password, role):
    """
    Create a new staff, manager or admin account.

    Suppliers are registered through the API so they receive a supplier id.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    try:
        user = create_user(name, email, password, role)
        click.echo(f"PASS Created user: {user.email} with role '{role}' (ID: {user.id})")
        click.echo("SECURITY Password securely hashed with bcrypt")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
    except LedgerError as e:
        click.echo(f"FAIL Failed to create user: {str(e)}")


@users_group.command('list')
@click.option('--role', type=click.Choice(list(VALID_ROLES)), help='Filter by role')
@with_appcontext
def list_users(role):
    """List all users with their roles."""
    query = db.session.query(User)
    if role:
        query = query.filter_by(role=role)
    users = query.order_by(User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Supplier ID':<12} {'Name':<24} {'Email':<32} {'Role':<10} {'Status'}")
    click.echo("="*100)
    for user in users:
        click.echo(
            f"{user.id:<5} {user.supplier_id or '-':<12} {user.name[:23]:<24} "
            f"{user.email[:31]:<32} {user.role:<10} {user.status}"
        )
    click.echo("="*100 + "\n")


@click.group('suppliers')
def suppliers_group():
    """Supplier id and lifecycle maintenance."""


@suppliers_group.command('deactivate-stale')
@with_appcontext
def deactivate_stale():
    """Deactivate suppliers with no supply in the last 6 months."""
    count = supplier_service.deactivate_old_suppliers()
    click.echo(f"PASS Deactivated {count} supplier(s)")


@suppliers_group.command('backfill-ids')
@with_appcontext
def backfill_ids():
    count = supplier_service.backfill_supplier_ids()
    click.echo(f"PASS Assigned supplier ids to {count} supplier(s)")


@suppliers_group.command('reset-ids')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_ids(yes):
    """
    Renumber all suppliers SUP000001, SUP000002 ... by registration order.

    Printed or exported supplier ids become stale.
    """
    if not yes:
        click.confirm("WARN This renumbers EVERY supplier. Are you sure?", abort=True)
    result = supplier_service.reset_all_supplier_ids()
    click.echo(f"PASS Renumbered {result['updated']} supplier(s); next id {result['next_supplier_id']}")


@suppliers_group.command('id-stats')
@with_appcontext
def id_stats():
    stats = supplier_service.get_supplier_id_stats()
    for key, value in stats.items():
        click.echo(f"{key:<24} {value}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(suppliers_group)
