# Overview: Flask CLI command groups for bootstrap and stock ledger inspection.

# backend/shopledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (use "flask db upgrade" for managed schemas).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Stock ledger:
# - python -m flask stock verify [--product-id 3]
#   Check every product's stock_quantity against the sum of its history.
# - python -m flask stock history --product-id 3 --limit 20
#   Print recent stock history rows, newest first.

import click
from flask.cli import with_appcontext

from .extensions import db
from .services.stock_service import list_history, verify_ledger
from .time_utils import to_utc_z


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create tables that do not exist yet. Existing data is untouched."""
    db.create_all()
    click.echo("PASS Database tables are in place.")


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


@click.group('stock')
def stock_group():
    """Stock ledger inspection commands."""


@stock_group.command('verify')
@click.option('--product-id', type=int, default=None, help='Limit the check to one product')
@with_appcontext
def verify_stock(product_id):
    """Exit with status 1 when any product does not reconcile."""
    discrepancies = verify_ledger(product_id)
    if not discrepancies:
        click.echo("PASS Stock quantities match stock history.")
        return

    click.echo(f"FAIL {len(discrepancies)} product(s) out of balance:")
    for row in discrepancies:
        click.echo(
            f"  #{row['product_id']} {row['name']}: stock={row['stock_quantity']} "
            f"ledger={row['ledger_total']} diff={row['difference']:+d}"
        )
    raise SystemExit(1)


@stock_group.command('history')
@click.option('--product-id', type=int, default=None, help='Filter by product')
@click.option('--change-type', default=None, help='Filter by change type (restock, sale, ...)')
@click.option('--limit', type=int, default=50, show_default=True)
@with_appcontext
def stock_history(product_id, change_type, limit):
    entries = list_history(product_id=product_id, change_type=change_type, limit=limit)
    if not entries:
        click.echo("No stock history found.")
        return

    for e in entries:
        bill = f" {e.bill_variant}#{e.bill_id}" if e.bill_variant else ""
        clamp = f" (requested {e.requested_change:+d})" if e.was_clamped else ""
        click.echo(
            f"{to_utc_z(e.created_at)}  #{e.product_id} {e.product_name}  {e.change_type:<10} "
            f"{e.quantity_change:+d}{clamp}  {e.previous_quantity} -> {e.new_quantity}{bill}"
            + (f"  {e.notes}" if e.notes else "")
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
