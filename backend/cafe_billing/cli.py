# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/cafe_billing/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use "flask db upgrade" for migrations).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Devices:
# - python -m flask devices list [--status available]
# - python -m flask devices create --name "PS5 #1" --type playstation [--number PS-01] [--rate 1800]
# - python -m flask devices maintenance 3 --on|--off
#
# Bills:
# - python -m flask bills list [--status overdue]
# - python -m flask bills show 7
#   Totals, sessions, orders and per-item remaining quantities.
# - python -m flask bills recompute 7
#   Rebuild derived totals from attached records.
#
# Sessions:
# - python -m flask sessions active
#   Active rentals with their live cost.

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import bill_service, device_service, device_session_service
from .validation import BillingError
from .time_utils import utcnow


def _cents(value: int | None) -> str:
    if value is None:
        return "-"
    return f"{value / 100:.2f}"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables (idempotent)."""
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


# =============================================================================
# DEVICES
# =============================================================================

@click.group('devices')
def devices_group():
    """Device registry commands."""


@devices_group.command('list')
@click.option('--status', default=None, help='available, active or maintenance')
@with_appcontext
def list_devices(status):
    """List devices."""
    devices = device_service.list_devices(status=status)
    if not devices:
        click.echo("No devices found.")
        return

    click.echo(f"{'ID':<5} {'Number':<8} {'Type':<12} {'Status':<12} Name")
    click.echo("-" * 60)
    for d in devices:
        click.echo(f"{d.id:<5} {d.number:<8} {d.device_type:<12} {d.status:<12} {d.name}")


@devices_group.command('create')
@click.option('--name', prompt=True, help='Display name')
@click.option('--type', 'device_type', type=click.Choice(['playstation', 'computer']), prompt=True)
@click.option('--number', default=None, help='Unique number (auto-assigned if omitted)')
@click.option('--rate', 'hourly_rate_cents', type=int, default=None, help='Computer hourly rate override in cents')
@with_appcontext
def create_device(name, device_type, number, hourly_rate_cents):
    """Register a device."""
    try:
        device = device_service.create_device(
            name=name,
            device_type=device_type,
            number=number,
            hourly_rate_cents=hourly_rate_cents,
        )
    except BillingError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Created device {device.number} (ID: {device.id})")


@devices_group.command('maintenance')
@click.argument('device_id', type=int)
@click.option('--on/--off', 'enabled', default=True, help='Enter or leave maintenance')
@with_appcontext
def set_maintenance(device_id, enabled):
    """Put a device into (or out of) maintenance."""
    try:
        device = device_service.set_maintenance(device_id, enabled)
    except BillingError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Device {device.number} is now {device.status}")


# =============================================================================
# BILLS
# =============================================================================

@click.group('bills')
def bills_group():
    """Bill inspection and repair commands."""


@bills_group.command('list')
@click.option('--status', default=None, help='draft, partial, paid, cancelled or overdue')
@with_appcontext
def list_bills(status):
    """List bills, newest first."""
    now = utcnow()
    bills = bill_service.list_bills(status=status, now=now)
    if not bills:
        click.echo("No bills found.")
        return

    click.echo(f"{'ID':<5} {'Number':<12} {'Status':<10} {'Total':>10} {'Paid':>10} {'Remaining':>10}")
    click.echo("-" * 62)
    for b in bills:
        click.echo(
            f"{b.id:<5} {b.bill_number:<12} {b.effective_status(now):<10} "
            f"{_cents(b.total_cents):>10} {_cents(b.paid_cents):>10} {_cents(b.remaining_cents):>10}"
        )


@bills_group.command('show')
@click.argument('bill_id', type=int)
@with_appcontext
def show_bill(bill_id):
    """Show totals, sessions and items of a bill."""
    try:
        summary = bill_service.get_bill_summary(bill_id)
    except BillingError as e:
        raise click.ClickException(e.message)

    click.echo(f"{summary['bill_number']} [{summary['status']}] {summary['customer_name'] or ''}")
    click.echo(f"  Subtotal:  {_cents(summary['subtotal_cents'])}")
    click.echo(f"  Discount:  {_cents(summary['applied_discount_cents'])}")
    click.echo(f"  Tax:       {_cents(summary['tax_cents'])}")
    click.echo(f"  Total:     {_cents(summary['total_cents'])}")
    click.echo(f"  Paid:      {_cents(summary['paid_cents'])}")
    click.echo(f"  Remaining: {_cents(summary['remaining_cents'])}")
    if summary["live_estimate_cents"]:
        click.echo(f"  Running sessions (not in total): {_cents(summary['live_estimate_cents'])}")

    for s in summary["sessions"]:
        click.echo(f"  Session {s['id']} {s['device_type']} {s['status']} cost={_cents(s['final_cost_cents'])}")
    for item in summary["items"]:
        click.echo(
            f"  {item['order_number']} {item['item_name']} x{item['quantity']} "
            f"@ {_cents(item['price_cents'])} paid={item['paid_quantity']} left={item['remaining_quantity']}"
        )


@bills_group.command('recompute')
@click.argument('bill_id', type=int)
@with_appcontext
def recompute_bill(bill_id):
    """Rebuild a bill's derived totals."""
    try:
        bill = bill_service.recompute_bill_totals(bill_id)
    except BillingError as e:
        raise click.ClickException(e.message)
    click.echo(
        f"PASS {bill.bill_number}: total {_cents(bill.total_cents)}, "
        f"paid {_cents(bill.paid_cents)}, remaining {_cents(bill.remaining_cents)} [{bill.status}]"
    )


# =============================================================================
# SESSIONS
# =============================================================================

@click.group('sessions')
def sessions_group():
    """Rental session inspection commands."""


@sessions_group.command('active')
@with_appcontext
def active_sessions():
    """List active rentals with their live cost."""
    now = utcnow()
    sessions = device_session_service.list_active_sessions()
    if not sessions:
        click.echo("No active sessions.")
        return

    click.echo(f"{'ID':<5} {'Device':<8} {'Ctrl':<5} {'Minutes':>8} {'Cost':>8} Bill")
    click.echo("-" * 50)
    for s in sessions:
        cost = device_session_service.live_cost(s.id, now=now)
        click.echo(
            f"{s.id:<5} {s.device.number:<8} {s.controller_count or '-':<5} "
            f"{cost['elapsed_minutes']:>8} {_cents(cost['cost_cents']):>8} {s.bill_id or '-'}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(devices_group)
    app.cli.add_command(bills_group)
    app.cli.add_command(sessions_group)
