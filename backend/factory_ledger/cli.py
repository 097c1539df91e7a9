# Overview: Flask CLI command group for bootstrap, inspection, and maintenance of the ledger.

# backend/factory_ledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask ledger <command> [options]
#
# - python -m flask ledger init-db [--drop --yes]
#   Create all tables (dev/test; production uses flask db upgrade).
# - python -m flask ledger seed-demo
#   Demo workers, materials and rates with a bill of materials.
# - python -m flask ledger reconcile [--item-id 3] [--repair]
#   Compare cached stock with the journal; --repair rebuilds drifted balances.
# - python -m flask ledger preview-payroll 2025-01-01 2025-01-31
#   Read-only payroll preview for a period.
# - python -m flask ledger low-stock
#   Items under their minimum stock level.

import click
from flask.cli import with_appcontext

from .errors import LedgerError
from .extensions import db
from .models import InventoryItem, Worker
from .services import catalog_service, inventory_service, payroll_service


def _money(cents: int) -> str:
    return f"{cents / 100:,.2f}"


@click.group("ledger")
def ledger_group():
    """Factory ledger bootstrap and maintenance commands."""


@ledger_group.command("init-db")
@click.option("--drop", is_flag=True, help="Drop existing tables first")
@click.option("--yes", is_flag=True, help="Skip confirmation")
@with_appcontext
def init_db(drop, yes):
    """Create the schema."""
    if drop:
        if not yes:
            click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)
        click.echo("DELETE  Dropping all tables...")
        db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()
    click.echo("PASS Schema ready.")


@ledger_group.command("seed-demo")
@click.option("--actor", default=None, help="Audit identity for the seeded rows")
@with_appcontext
def seed_demo(actor):
    """Idempotent demo data: two workers, two materials, one rate with a BOM."""
    if Worker.query.first() is not None or InventoryItem.query.first() is not None:
        click.echo("SKIP Database already has data; nothing seeded.")
        return

    weaver = catalog_service.create_worker(name="Aye Aye", role="WEAVER")
    supervisor = catalog_service.create_worker(
        name="Ko Min",
        role="SUPERVISOR",
        salary_type="MONTHLY",
        base_salary_cents=30000000,
        is_ssb=True,
    )
    yarn = catalog_service.create_inventory_item(
        name="Cotton Yarn",
        category="Yarn",
        unit="kg",
        opening_stock=100,
        min_stock_level=20,
        cost_per_unit_cents=500000,
        actor=actor,
    )
    dye = catalog_service.create_inventory_item(
        name="Indigo Dye",
        category="Dye",
        unit="l",
        opening_stock=40,
        min_stock_level=5,
        cost_per_unit_cents=250000,
        actor=actor,
    )
    rate = catalog_service.create_rate(
        task_name="Longyi Weaving",
        price_per_unit_cents=150000,
        unit="pcs",
        materials=[
            {"item_id": yarn.id, "quantity_per_unit": "0.5"},
            {"item_id": dye.id, "quantity_per_unit": "0.1"},
        ],
        actor=actor,
    )

    click.echo(f"PASS Workers: {weaver.id} ({weaver.name}), {supervisor.id} ({supervisor.name})")
    click.echo(f"PASS Items: {yarn.id} ({yarn.name}), {dye.id} ({dye.name})")
    click.echo(f"PASS Rate: {rate.id} ({rate.task_name}) with {len(rate.materials)} material(s)")


@ledger_group.command("reconcile")
@click.option("--item-id", type=int, default=None, help="Only check one item")
@click.option("--repair", is_flag=True, help="Rebuild drifted balances from the journal")
@click.option("--actor", default=None, help="Audit identity for repairs")
@with_appcontext
def reconcile(item_id, repair, actor):
    """Check the journal/stock invariant."""
    try:
        drifts = inventory_service.reconcile_stock(item_id=item_id, repair=repair, actor=actor)
    except LedgerError as e:
        raise click.ClickException(str(e))

    if not drifts:
        click.echo("PASS Stock matches the journal.")
        return

    for drift in drifts:
        click.echo(
            f"  {drift.item_name} (#{drift.item_id}): cached {drift.cached}, "
            f"journal {drift.journal}, difference {drift.difference}"
        )
    if repair:
        click.echo(f"PASS Repaired {len(drifts)} item(s).")
    else:
        click.echo(f"WARN {len(drifts)} item(s) drifted. Re-run with --repair to rebuild from the journal.")
        raise SystemExit(1)


@ledger_group.command("preview-payroll")
@click.argument("start")
@click.argument("end")
@with_appcontext
def preview_payroll(start, end):
    """Read-only payroll preview for START..END (YYYY-MM-DD)."""
    try:
        items = payroll_service.generate_payroll(start, end)
    except LedgerError as e:
        raise click.ClickException(str(e))

    if not items:
        click.echo("No unsettled production in the period.")
        return

    click.echo(f"{'Worker':<24} {'Gross':>14} {'Base':>14} {'Deduct':>14} {'Statutory':>12} {'Net':>14}")
    click.echo("-" * 97)
    for item in items:
        click.echo(
            f"{item.worker_name[:24]:<24} {_money(item.gross_pay_cents):>14} "
            f"{_money(item.base_salary_cents):>14} {_money(item.deductions_cents):>14} "
            f"{_money(item.statutory_deductions_cents):>12} {_money(item.net_pay_cents):>14}"
        )
    click.echo("-" * 97)
    click.echo(f"{'Total net':<24} {_money(sum(i.net_pay_cents for i in items)):>72}")


@ledger_group.command("low-stock")
@with_appcontext
def low_stock():
    """List items under their minimum stock level."""
    items = inventory_service.list_low_stock_items()
    if not items:
        click.echo("PASS No items below minimum.")
        return
    for item in items:
        click.echo(f"  {item.name}: {item.current_stock} {item.unit} (minimum {item.min_stock_level})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(ledger_group)
