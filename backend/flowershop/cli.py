# Flask CLI for the flower shop backend. From backend/, with FLASK_APP=wsgi.py:
#
#   flask system init [--email ... --password ...]   create tables and the first OWNER
#   flask system reset-db --yes                      drop and recreate every table (dev only)
#   flask users list | users create                  inspect or add accounts
#   flask inventory list [--all] | inventory seed    show stock, load the starter catalogue

import click
from flask.cli import with_appcontext

from .errors import ConflictError, ShopError
from .extensions import db
from .models import AppUser, InventoryItem
from .services.auth_service import create_user, PasswordValidationError
from .services.inventory_service import InventoryLedger, describe_stock_value

PASSWORD_RULES = "Requirements: 8+ chars, uppercase, lowercase, digit"
RULE = "=" * 80

STARTER_CATALOGUE = [
    # (name, quality, quantity, unit_price)
    ("Rosa", "Premium", 50, "2.50"),
    ("Rosa", "Standard", 80, "1.50"),
    ("Clavel", "Standard", 100, "0.80"),
    ("Girasol", "Premium", 30, "3.00"),
    ("Lirio", "Premium", 25, "4.20"),
    ("Tulipán", "Standard", 40, "2.00"),
    ("Orquídea", "Premium", 10, "12.00"),
    ("Margarita", "Standard", 60, "0.60"),
]


def _yes_no(flag: bool) -> str:
    return "Yes" if flag else "No"


def _print_table(header: str, rows) -> None:
    click.echo(RULE)
    click.echo(header)
    click.echo(RULE)
    for row in rows:
        click.echo(row)
    click.echo(RULE)


def _create_account(failure: str, **kwargs):
    """create_user with CLI-friendly error reporting; returns None on failure."""
    try:
        return create_user(**kwargs)
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e}")
        click.echo(PASSWORD_RULES)
    except ShopError as e:
        click.echo(f"FAIL {failure}: {e}")
    return None


@click.group("system")
def system_group():
    """Bootstrap and repair."""


@system_group.command("init")
@click.option("--email", default="owner@flowershop.local", show_default=True, help="OWNER email")
@click.option("--password", default="Password123", show_default=True, help="OWNER password")
@with_appcontext
def init_system(email, password):
    """Create missing tables and, if there is no OWNER yet, the OWNER account.

    Change the default password before running this anywhere real.
    """
    click.echo("START Initializing flower shop...")
    db.create_all()
    click.echo("PASS Tables ready")

    existing = db.session.query(AppUser).filter_by(role="OWNER").first()
    if existing is not None:
        click.echo(f"PASS Using existing OWNER: {existing.email}")
        return

    owner = _create_account("Could not create OWNER", email=email, password=password, display_name="Owner")
    if owner is not None:
        click.echo(f"PASS Created OWNER: {owner.email} (role {owner.role})")


@system_group.command("reset-db")
@click.option("--yes", is_flag=True, help="Skip confirmation")
@with_appcontext
def reset_db(yes):
    """Drop every table and build the schema again. All data is lost."""
    if not yes:
        click.confirm("WARN Every table will be dropped. Continue?", abort=True)
    db.drop_all()
    db.create_all()
    click.echo("PASS Schema rebuilt. Next: flask system init")


@click.group("users")
def users_group():
    """Account inspection and creation."""


@users_group.command("create")
@click.option("--email", prompt=True, help="Email address")
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True, help="Password")
@click.option("--role", type=click.Choice(["OWNER", "STAFF"]), default="STAFF", show_default=True)
@click.option("--display-name", default=None, help="Display name")
@with_appcontext
def create_user_cli(email, password, role, display_name):
    """Add an account. The very first account becomes OWNER whatever --role says."""
    user = _create_account(
        "Failed to create user", email=email, password=password, display_name=display_name, role=role
    )
    if user is not None:
        click.echo(f"PASS Created user {user.email} (ID: {user.id}, role: {user.role})")


@users_group.command("list")
@with_appcontext
def list_users():
    users = db.session.query(AppUser).order_by(AppUser.id).all()
    if not users:
        click.echo("No users found.")
        return
    _print_table(
        f"{'ID':<5} {'Email':<35} {'Role':<8} {'Active':<8} Name",
        (
            f"{u.id:<5} {u.email:<35} {u.role:<8} {_yes_no(u.is_active):<8} {u.display_name or ''}"
            for u in users
        ),
    )


@click.group("inventory")
def inventory_group():
    """Stock inspection and seeding."""


@inventory_group.command("list")
@click.option("--all", "show_all", is_flag=True, help="Include archived items")
@with_appcontext
def list_inventory(show_all):
    query = db.session.query(InventoryItem)
    if not show_all:
        query = query.filter(InventoryItem.is_active.is_(True))
    items = query.order_by(InventoryItem.name, InventoryItem.quality).all()
    if not items:
        click.echo("No inventory items found.")
        return
    _print_table(
        f"{'ID':<5} {'Item':<30} {'Qty':>6} {'Price':>10} {'Active':>8}",
        (
            f"{i.id:<5} {i.label:<30} {i.quantity:>6} {i.to_dict()['unit_price']:>10} {_yes_no(i.is_active):>8}"
            for i in items
        ),
    )
    click.echo(f"Active stock value: {describe_stock_value(db.session)}")


@inventory_group.command("seed")
@with_appcontext
def seed_inventory():
    """Load STARTER_CATALOGUE, skipping (name, quality) pairs already on file."""
    ledger = InventoryLedger(db.session)
    created = 0
    for name, quality, quantity, price in STARTER_CATALOGUE:
        try:
            ledger.create_item(name, quality, quantity, price)
        except ConflictError:
            click.echo(f"SKIP {name} ({quality}) already exists")
        else:
            created += 1
    click.echo(f"PASS Seeded {created} inventory item(s)")


def register_commands(app):
    for group in (system_group, users_group, inventory_group):
        app.cli.add_command(group)
