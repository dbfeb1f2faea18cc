# Overview: Flask CLI command groups for ledger reconciliation and dev schema reset.

# backend/stockledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Ledger reconciliation (run offline, outside live traffic):
# - python -m flask ledger backfill [--dry-run]
#   Create backfill_legacy layers for inventory rows with stock but no layers.
#   Safe to re-run: rows that already have layers are skipped.
# - python -m flask ledger reconcile [--store-id 1]
#   List inventory rows whose aggregates disagree with their cost layers.
#   Exits non-zero when any are found.
# - python -m flask ledger shortfalls [--store-id 1]
#   List recorded LEDGER_SHORTFALL events (oversold quantities).
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).

import sys

import click
from flask.cli import with_appcontext

from .errors import BackfillError
from .extensions import db
from .services import backfill_service


@click.group('ledger')
def ledger_group():
    """Cost layer ledger reconciliation commands."""


@ledger_group.command('backfill')
@click.option('--dry-run', is_flag=True, help='Report what would be created, then roll back')
@with_appcontext
def backfill(dry_run):
    """
    Derive cost layers for legacy inventory rows.

    One transaction: either every qualifying row gets a layer or none does.
    """
    try:
        report = backfill_service.backfill_cost_layers(dry_run=dry_run)
    except BackfillError as e:
        click.echo(f"FAIL {e}")
        click.echo(f"  inspected={e.inspected} created={e.created} skipped={e.skipped}")
        click.echo("  No layers were written; fix the cause and re-run.")
        sys.exit(1)

    prefix = "DRY RUN " if dry_run else ""
    click.echo(f"{prefix}inspected={report.inspected} created={report.created} skipped={report.skipped}")
    for layer in report.layers:
        click.echo(
            f"  store={layer.store_id} product={layer.product_id} "
            f"quantity={layer.quantity_received} unit_cost={layer.unit_cost}"
        )


@ledger_group.command('reconcile')
@click.option('--store-id', type=int, default=None, help='Limit to one store')
@with_appcontext
def reconcile(store_id):
    """Check inventory aggregates against their cost layers."""
    found = backfill_service.find_discrepancies(store_id=store_id)
    if not found:
        click.echo("PASS No discrepancies")
        return

    click.echo(f"FAIL {len(found)} discrepancies")
    for row in found:
        click.echo(
            f"  store={row['storeId']} product={row['productId']} issues={','.join(row['issues'])} "
            f"quantity={row['quantity']} layers={row['layerQuantity']} "
            f"avg_cost={row['avgCost']} layer_avg_cost={row['layerAvgCost']}"
        )
    sys.exit(1)


@ledger_group.command('shortfalls')
@click.option('--store-id', type=int, default=None, help='Limit to one store')
@with_appcontext
def shortfalls(store_id):
    """List oversold quantities recorded at settlement."""
    events = backfill_service.list_shortfalls(store_id=store_id)
    if not events:
        click.echo("No shortfalls recorded")
        return

    for ev in events:
        payload = ev.get("payload") or {}
        click.echo(
            f"{ev['occurredAt']} store={ev['storeId']} product={ev['productId']} sale={ev['saleId']} "
            f"shortfall={payload.get('shortfallQuantity')} unit_cost={payload.get('unitCost')}"
        )


@click.group('system')
def system_group():
    """System repair commands."""


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


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(ledger_group)
    app.cli.add_command(system_group)
