# Overview: Flask CLI command groups for bootstrap and user management.

# backend/app/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates all tables and the default admin/staff users.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
#   List all users with role and active status.
# - python -m flask users create --username cashier2 --password "Password123!" --role staff
#   Create a user (prompts if options are omitted).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .models.auth import ROLE_ADMIN, ROLE_STAFF, VALID_ROLES
from .services.auth_service import create_user, list_users, PasswordValidationError

DEFAULT_PASSWORD = "Password123!"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--password', default=DEFAULT_PASSWORD, show_default=True, help='Password for the default users')
@with_appcontext
def init_system(password):
    """
    Initialize the POS database and default users.

    Creates:
    - All tables (no-op for existing ones)
    - Users: admin (admin role), staff (staff role)

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing POS system...")
    db.create_all()
    click.echo("PASS Tables ready")

    for username, role in (("admin", ROLE_ADMIN), ("staff", ROLE_STAFF)):
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"SKIP User '{username}' already exists")
            continue
        create_user(username=username, password=password, name=username.title(), role=role)
        click.echo(f"PASS Created user '{username}' ({role})")

    click.echo("\nDONE System initialized.")


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
    """User management commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--name', default=None, help='Display name (defaults to username)')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(VALID_ROLES)), prompt=True, help='Role')
@with_appcontext
def create_user_cli(username, name, password, role):
    """Create a new user."""
    try:
        user = create_user(username=username, password=password, name=name, role=role)
    except (ValueError, PasswordValidationError) as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS Created user '{user.username}' (ID: {user.id}, role: {user.role})")


@users_group.command('list')
@with_appcontext
def list_users_cli():
    """List all users with their roles."""
    users = list_users()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Username':<20} {'Name':<25} {'Role':<8} {'Active'}")
    click.echo("="*70)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.name:<25} {user.role:<8} {active_str}")

    click.echo("="*70 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
