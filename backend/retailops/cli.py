# Overview: Flask CLI command groups for bootstrap, users and API tokens.

# backend/retailops/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init
#   Idempotent: create tables, a default store and an admin user.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Add a demo customer and a few catalog products to the default store.
#
# Users and tokens:
# - python -m flask users list
# - python -m flask users create --username alice --role manager --store-id 1
# - python -m flask users token alice
#   Print a signed bearer token for the API.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import ROLE_ADMIN, VALID_ROLES, Customer, Product, Store, User
from .services.auth_service import issue_token


DEFAULT_STORE_NAME = "Main Store"
DEFAULT_STORE_CODE = "MAIN"

DEMO_PRODUCTS = [
    ("LAP-001", "ThinkPad E14", "Lenovo", "E14 Gen 5", 5499900, 5),
    ("LAP-002", "Inspiron 15", "Dell", "3520", 4299900, 3),
    ("ACC-001", "USB-C Charger 65W", "Lenovo", "ADLX65", 249900, 20),
]


def _default_store() -> Store | None:
    return db.session.query(Store).filter_by(code=DEFAULT_STORE_CODE).first()


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create tables, the default store and an admin user if missing."""
    click.echo("START Initializing retailops...")
    db.create_all()

    store = _default_store()
    if not store:
        store = Store(name=DEFAULT_STORE_NAME, code=DEFAULT_STORE_CODE)
        db.session.add(store)
        db.session.commit()
        click.echo(f"PASS Created default store: {store.name} (ID: {store.id})")
    else:
        click.echo(f"PASS Using existing store: {store.name} (ID: {store.id})")

    admin = db.session.query(User).filter_by(username="admin").first()
    if not admin:
        admin = User(username="admin", email="admin@retailops.local", role=ROLE_ADMIN)
        db.session.add(admin)
        db.session.commit()
        click.echo(f"PASS Created user: admin (ID: {admin.id}) with role 'admin'")
    else:
        click.echo("WARN  User 'admin' already exists, skipping...")

    click.echo("DONE Run 'python -m flask users token admin' to get an API token.")


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


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Add a demo customer and catalog products to the default store."""
    store = _default_store()
    if not store:
        click.echo("FAIL No default store. Run 'python -m flask system init' first.")
        return

    customer = db.session.query(Customer).filter_by(email="demo.customer@example.com").first()
    if not customer:
        customer = Customer(
            name="Demo Customer",
            email="demo.customer@example.com",
            phone="+919876543210",
            store_id=store.id,
            city="Bengaluru",
            state="Karnataka",
        )
        db.session.add(customer)

    created = 0
    for sku, name, brand, model, price_cents, stock in DEMO_PRODUCTS:
        if db.session.query(Product).filter_by(store_id=store.id, sku=sku).first():
            continue
        db.session.add(Product(
            store_id=store.id,
            sku=sku,
            name=name,
            brand=brand,
            model=model,
            price_cents=price_cents,
            stock_quantity=stock,
        ))
        created += 1

    db.session.commit()
    click.echo(f"PASS Demo customer ID {customer.id}; {created} product(s) added to {store.name}")


@click.group('users')
def users_group():
    """User inspection and API token commands."""


@users_group.command('list')
@with_appcontext
def list_users():
    users = db.session.query(User).order_by(User.id.asc()).all()
    if not users:
        click.echo("No users found.")
        return
    for user in users:
        status = "active" if user.is_active else "inactive"
        click.echo(f"{user.id:>4}  {user.username:<20} {user.role:<8} store={user.store_id}  {status}")


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', default=None, help='Email address')
@click.option('--role', type=click.Choice(sorted(VALID_ROLES)), prompt=True, help='Role')
@click.option('--store-id', type=int, default=None, help='Store (required for manager/staff)')
@with_appcontext
def create_user_cli(username, email, role, store_id):
    """Create a user. Non-admin users must be assigned to a store."""
    if db.session.query(User).filter_by(username=username).first():
        click.echo(f"FAIL User '{username}' already exists")
        return

    if role != ROLE_ADMIN:
        if store_id is None:
            click.echo("FAIL --store-id is required for manager and staff users")
            return
        if db.session.get(Store, store_id) is None:
            click.echo(f"FAIL Store ID {store_id} not found")
            return

    user = User(username=username, email=email, role=role, store_id=store_id)
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created user: {username} (ID: {user.id}) with role '{role}'")


@users_group.command('token')
@click.argument('username')
@with_appcontext
def issue_token_cli(username):
    """Print a signed bearer token for USERNAME."""
    user = db.session.query(User).filter_by(username=username).first()
    if not user:
        click.echo(f"FAIL User '{username}' not found")
        return
    if not user.is_active:
        click.echo(f"FAIL User '{username}' is inactive")
        return
    click.echo(issue_token(user))


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
