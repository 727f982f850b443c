# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/salonledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Inventory:
# - python -m flask inventory levels [--salon-id S1]
#   Print every product with its projected stock level.
# - python -m flask inventory rebuild-stock [--product-id 3]
#   Recompute the stock projection from the movement ledger.
#
# Wallets:
# - python -m flask wallets credit emp-7 50000
#   Top up a wallet (created on first credit).
# - python -m flask wallets show emp-7
#   Print balance and recent journal entries.
#
# Commissions:
# - python -m flask commissions create --employee-id emp-7 --sale-amount 20000 --rate 10 --sale-item-id SI-1
#   Record an unpaid commission (normally done by the sales flow).

import click
from flask.cli import with_appcontext

from .errors import LedgerError
from .extensions import db


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables. Use 'flask db upgrade' for migrated deployments."""
    from . import models  # noqa: F401

    db.create_all()
    click.echo("PASS Database tables created.")


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

    click.echo("PASS Database reset complete.")


@click.group('inventory')
def inventory_group():
    """Stock ledger inspection and repair commands."""


@inventory_group.command('levels')
@click.option('--salon-id', help='Filter by salon ID')
@with_appcontext
def levels_cli(salon_id):
    """
    List products with their projected stock level.

    Example:
        flask inventory levels --salon-id S1
    """
    from .services.stock_projection_service import list_stock_levels

    items = list_stock_levels(salon_id=salon_id)
    if not items:
        click.echo("No products found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<6} {'Name':<30} {'Level':<14} {'Moves':<7} {'Status'}")
    click.echo("="*80)

    for item in items:
        if item["unlimited"]:
            status = "-"
        elif item["is_out_of_stock"]:
            status = "OUT"
        elif item["is_low_stock"]:
            status = "LOW"
        else:
            status = "OK"
        click.echo(
            f"{item['product_id']:<6} {item['name'][:30]:<30} {item['display']:<14} "
            f"{item['movement_count']:<7} {status}"
        )

    click.echo("="*80 + "\n")


@inventory_group.command('rebuild-stock')
@click.option('--product-id', type=int, help='Rebuild one product only')
@with_appcontext
def rebuild_stock_cli(product_id):
    """
    Recompute stock_levels from stock_movements.

    Example:
        flask inventory rebuild-stock
        flask inventory rebuild-stock --product-id 3
    """
    from .services.stock_projection_service import rebuild_projection

    try:
        rebuilt = rebuild_projection(product_id)
    except LedgerError as e:
        raise click.ClickException(str(e))

    for pid, level in rebuilt.items():
        click.echo(f"  product {pid}: {level}")
    click.echo(f"PASS Rebuilt {len(rebuilt)} product(s).")


@click.group('wallets')
def wallets_group():
    """Wallet inspection and top-up commands."""


@wallets_group.command('credit')
@click.argument('owner_id')
@click.argument('amount')
@click.option('--description', default='CLI top-up', help='Journal description')
@with_appcontext
def credit_wallet_cli(owner_id, amount, description):
    """
    Credit a wallet.

    Example:
        flask wallets credit emp-7 50000
    """
    from .services import wallet_service

    try:
        balance = wallet_service.credit(
            owner_id, amount, reference_type="top_up", description=description
        )
    except LedgerError as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS Wallet {owner_id} balance: {balance}")


@wallets_group.command('show')
@click.argument('owner_id')
@click.option('--limit', type=int, default=20, help='Journal entries to show')
@with_appcontext
def show_wallet_cli(owner_id, limit):
    """Print a wallet's balance and latest journal entries."""
    from .services import wallet_service

    try:
        wallet = wallet_service.get_wallet(owner_id)
        transactions = wallet_service.list_wallet_transactions(owner_id, limit=limit)
    except LedgerError as e:
        raise click.ClickException(str(e))

    active_str = "active" if wallet.is_active else "BLOCKED"
    click.echo(f"Wallet {wallet.owner_id}: {wallet.balance} {wallet.currency} ({active_str})")
    for tx in transactions:
        click.echo(
            f"  {tx.id:<6} {tx.transaction_type:<7} {tx.amount:>14} -> {tx.balance_after:>14}  "
            f"{tx.description or ''}"
        )


@click.group('commissions')
def commissions_group():
    """Commission bootstrap commands."""


@commissions_group.command('create')
@click.option('--employee-id', required=True, help='Employee (wallet owner) ID')
@click.option('--sale-amount', required=True, help='Sale amount')
@click.option('--rate', required=True, help='Commission rate in percent')
@click.option('--sale-item-id', help='Sale item reference')
@click.option('--appointment-id', help='Appointment reference')
@click.option('--salon-id', help='Salon ID')
@with_appcontext
def create_commission_cli(employee_id, sale_amount, rate, sale_item_id, appointment_id, salon_id):
    """
    Record an unpaid commission.

    Example:
        flask commissions create --employee-id emp-7 --sale-amount 20000 --rate 10 --sale-item-id SI-1
    """
    from .services.commission_service import create_commission

    try:
        commission = create_commission(
            employee_id=employee_id,
            sale_amount=sale_amount,
            commission_rate=rate,
            sale_item_id=sale_item_id,
            appointment_id=appointment_id,
            salon_id=salon_id,
        )
    except LedgerError as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS Created commission {commission.id}: {commission.amount} for {commission.employee_id}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(wallets_group)
    app.cli.add_command(commissions_group)
