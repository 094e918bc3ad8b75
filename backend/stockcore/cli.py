# Overview: Flask CLI commands for tenant bootstrap, stock inspection, shifts and retention.

# backend/stockcore/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask stock <command> [options]
#
# Bootstrap:
# - python -m flask stock init-org --name "Acme Corp" --code "ACME"
#   Create an organization (tenant); idempotent on code.
#
# Inspection:
# - python -m flask stock products --org-id 1 [--search shirt]
#   List products with stock and thresholds.
# - python -m flask stock low-stock --org-id 1
#   List products at or below their low-stock threshold.
# - python -m flask stock shift --org-id 1
#   Show the open shift with running expected cash.
#
# Maintenance:
# - python -m flask stock prune --org-id 1 --sales-days 365 --po-days 365 --notification-days 30
#   Delete history older than the given windows (sales cascade to returns and ledger rows).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Organization
from .services import maintenance_service, products_service, shift_service
from .services.tenant_service import tenant_context


def _require_org(org_id: int) -> Organization:
    org = db.session.get(Organization, org_id)
    if org is None:
        raise click.ClickException(f"Organization {org_id} not found")
    return org


def _money(cents) -> str:
    if cents is None:
        return "-"
    return f"{cents / 100:,.2f}"


@click.group('stock')
def stock_group():
    """Inventory, shift and retention commands."""


@stock_group.command('init-org')
@click.option('--name', required=True, help='Organization name')
@click.option('--code', required=True, help='Short code (unique)')
@with_appcontext
def init_org(name, code):
    """Create an organization (tenant)."""
    existing = db.session.query(Organization).filter_by(code=code).first()
    if existing:
        click.echo(f"PASS Using existing organization: {existing.name} (ID: {existing.id})")
        return

    org = Organization(name=name, code=code, is_active=True)
    db.session.add(org)
    db.session.commit()
    click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code})")


@stock_group.command('products')
@click.option('--org-id', type=int, required=True)
@click.option('--search', default=None, help='Filter by name or SKU')
@with_appcontext
def list_products_cli(org_id, search):
    """List products with current stock."""
    _require_org(org_id)
    with tenant_context(org_id):
        products = products_service.list_products(search=search)

        if not products:
            click.echo("No products found.")
            return

        click.echo("\n" + "=" * 80)
        click.echo(f"{'ID':<6} {'SKU':<16} {'Name':<30} {'Stock':>7} {'Low@':>6} {'Retail':>10}")
        click.echo("=" * 80)
        for p in products:
            click.echo(
                f"{p.id:<6} {p.sku:<16} {p.name[:30]:<30} {p.stock:>7} "
                f"{p.low_stock_threshold:>6} {_money(p.retail_price_cents):>10}"
            )
            for v in p.variants:
                click.echo(f"{'':<6} {'  ' + (v.sku or '-'):<16} {'  ' + v.label[:28]:<30} {v.stock:>7}")
        click.echo("=" * 80 + "\n")


@stock_group.command('low-stock')
@click.option('--org-id', type=int, required=True)
@with_appcontext
def low_stock_cli(org_id):
    """List products at or below their low-stock threshold."""
    _require_org(org_id)
    with tenant_context(org_id):
        products = products_service.list_low_stock_products()
        if not products:
            click.echo("PASS No products below threshold.")
            return
        for p in products:
            state = "OUT" if p.stock <= 0 else "LOW"
            click.echo(f"{state:<4} {p.sku:<16} {p.name} ({p.stock} left, threshold {p.low_stock_threshold})")


@stock_group.command('shift')
@click.option('--org-id', type=int, required=True)
@with_appcontext
def shift_cli(org_id):
    """Show the open shift."""
    _require_org(org_id)
    with tenant_context(org_id):
        shift = shift_service.get_current_shift()
        if shift is None:
            click.echo("No open shift.")
            return
        click.echo(f"Shift {shift.id} opened by {shift.opened_by_name or '-'} at {shift.start_time}")
        click.echo(f"  Float:         {_money(shift.start_float_cents)}")
        click.echo(f"  Cash sales:    {_money(shift.cash_sales_cents)}")
        click.echo(f"  Cash refunds:  {_money(shift.cash_refunds_cents)}")
        click.echo(f"  Expected cash: {_money(shift.running_expected_cash_cents)}")


@stock_group.command('prune')
@click.option('--org-id', type=int, required=True)
@click.option('--sales-days', type=int, default=None, help='Delete sales older than N days')
@click.option('--status', 'statuses', multiple=True, help='Restrict sales pruning to these statuses')
@click.option('--po-days', type=int, default=None, help='Delete purchase orders older than N days')
@click.option('--notification-days', type=int, default=None, help='Delete notifications older than N days')
@with_appcontext
def prune_cli(org_id, sales_days, statuses, po_days, notification_days):
    """Delete history older than the given retention windows."""
    _require_org(org_id)
    if sales_days is None and po_days is None and notification_days is None:
        raise click.UsageError("Give at least one of --sales-days, --po-days, --notification-days")

    with tenant_context(org_id):
        summary = maintenance_service.run_retention(
            sales_days=sales_days,
            sale_statuses=list(statuses) or None,
            purchase_order_days=po_days,
            notification_days=notification_days,
        )
    for target, outcome in summary.items():
        click.echo(f"{target}: {outcome}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(stock_group)
