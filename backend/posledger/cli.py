# Overview: Flask CLI command groups for bootstrap, ledger inspection, and maintenance.

# backend/posledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Ledger inspection:
# - python -m flask ledger reconcile [--variant-id 7]
#   Replay movements and compare with cached stock. Exit code 1 on drift.
# - python -m flask ledger history 7 --kind SALE --limit 20
#   Show a variant's movements, newest first.
#
# Customers:
# - python -m flask customers recompute-totals
#   Re-aggregate total_spent_cents for every customer from their transactions.

import sys

import click
from flask.cli import with_appcontext

from .errors import LedgerError
from .extensions import db
from .models.inventory import MOVEMENT_KINDS
from .services import get_services


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


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


@click.group('ledger')
def ledger_group():
    """Stock ledger inspection commands."""


@ledger_group.command('reconcile')
@click.option('--variant-id', type=int, default=None, help='Check a single variant')
@click.option('--only-drift', is_flag=True, help='Print only variants that do not reconcile')
@with_appcontext
def reconcile(variant_id, only_drift):
    """Compare cached stock with the ledger replay."""
    reconciler = get_services().reconciler
    try:
        reports = [reconciler.reconcile(variant_id)] if variant_id is not None else reconciler.reconcile_all()
    except LedgerError as e:
        raise click.ClickException(e.message)

    drift = 0
    for report in reports:
        if not report.ok:
            drift += 1
        elif only_drift:
            continue
        status = "OK   " if report.ok else "DRIFT"
        line = (
            f"{status} variant={report.variant_id} cached={report.cached_stock} "
            f"ledger={report.ledger_derived_stock} movements={report.movement_count}"
        )
        if report.clamped_movements:
            line += f" clamped={report.clamped_movements}"
        if report.chain_breaks:
            line += f" chain_breaks={report.chain_breaks}"
        click.echo(line)

    click.echo(f"\n{len(reports)} variant(s) checked, {drift} with drift")
    if drift:
        sys.exit(1)


@ledger_group.command('history')
@click.argument('variant_id', type=int)
@click.option('--kind', type=click.Choice(MOVEMENT_KINDS), default=None, help='Filter by movement type')
@click.option('--limit', type=int, default=20, help='Max rows to show')
@with_appcontext
def history(variant_id, kind, limit):
    """Show a variant's stock movements, newest first."""
    try:
        page = get_services().store.get_movement_history(variant_id, kind=kind, limit=limit)
    except LedgerError as e:
        raise click.ClickException(e.message)

    if not page.items:
        click.echo("No movements found.")
        return

    click.echo(f"\n{'ID':<6} {'When':<21} {'Type':<11} {'Delta':>6} {'Prev':>6} {'New':>6}  Reason")
    click.echo("-" * 80)
    for m in page.items:
        flag = " (clamped)" if m.is_clamped else ""
        click.echo(
            f"{m.id:<6} {m.created_at.strftime('%Y-%m-%d %H:%M:%S'):<21} {m.type:<11} "
            f"{m.quantity_delta:>6} {m.previous_stock:>6} {m.new_stock:>6}  {m.reason or ''}{flag}"
        )
    if page.next_cursor:
        click.echo(f"\nMore movements available (cursor: {page.next_cursor})")


@click.group('customers')
def customers_group():
    """Customer maintenance commands."""


@customers_group.command('recompute-totals')
@with_appcontext
def recompute_totals():
    """Re-aggregate total_spent_cents (net of refunds) for every customer."""
    changed = get_services().customers.recompute_all()
    click.echo(f"PASS Recomputed customer totals ({changed} changed)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(customers_group)
