# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/scrapledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Ledger inspection:
# - python -m flask ledger balance [--start 2024-05-01T00:00:00Z] [--end ...]
#   Print the cash balance folded from ledger entries.
# - python -m flask ledger subtotals [--start ...] [--end ...]
#   Print category subtotals (opening, income, expense, adjustment).
# - python -m flask ledger verify
#   Cross-check the ledger against completed transactions. Exit code 1 on problems.
# - python -m flask ledger opening 500000 [--employee Ana]
#   Record an opening cash balance (cents).
#
# Transactions:
# - python -m flask transactions next-id
#   Allocate and print the next transaction id.
#
# Employees:
# - python -m flask employees refresh-stats
#   Recompute sessions handled and current advances for every employee.

import click
from flask.cli import with_appcontext

from .extensions import db
from .time_utils import parse_iso_datetime
from .services import employee_service, ledger_service, sequence_service
from .validation import ValidationError


def _format_cents(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    cents = abs(cents)
    return f"{sign}{cents // 100:,}.{cents % 100:02d}"


def _parse_range(start, end):
    try:
        return parse_iso_datetime(start), parse_iso_datetime(end)
    except ValueError as e:
        raise click.BadParameter(f"start/end must be ISO-8601 datetimes ({e})")


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

    click.echo("PASS Database reset complete")


@click.group('ledger')
def ledger_group():
    """Cash ledger inspection commands."""


@ledger_group.command('balance')
@click.option('--start', default=None, help='Inclusive ISO-8601 start')
@click.option('--end', default=None, help='Inclusive ISO-8601 end')
@with_appcontext
def ledger_balance(start, end):
    start_dt, end_dt = _parse_range(start, end)
    click.echo(_format_cents(ledger_service.balance(start_dt, end_dt)))


@ledger_group.command('subtotals')
@click.option('--start', default=None, help='Inclusive ISO-8601 start')
@click.option('--end', default=None, help='Inclusive ISO-8601 end')
@with_appcontext
def ledger_subtotals(start, end):
    start_dt, end_dt = _parse_range(start, end)
    totals = ledger_service.subtotals(start_dt, end_dt)
    for key, value in totals.items():
        click.echo(f"{key:<20} {_format_cents(value):>16}")


@ledger_group.command('verify')
@with_appcontext
def ledger_verify():
    """Exit non-zero when the ledger disagrees with itself or with completed transactions."""
    problems = ledger_service.verify_ledger()
    if not problems:
        click.echo("PASS Ledger is consistent")
        return
    for problem in problems:
        click.echo(f"FAIL {problem}")
    raise SystemExit(1)


@ledger_group.command('opening')
@click.argument('amount_cents', type=int)
@click.option('--employee', default=None, help='Who counted the drawer')
@click.option('--description', default='Opening balance')
@with_appcontext
def ledger_opening(amount_cents, employee, description):
    try:
        entry = ledger_service.record_opening_balance(
            amount_cents, employee=employee, description=description
        )
    except ValidationError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Recorded opening balance {_format_cents(entry.amount_cents)} (entry {entry.id})")


@click.group('transactions')
def transactions_group():
    """Transaction helpers."""


@transactions_group.command('next-id')
@with_appcontext
def transactions_next_id():
    click.echo(sequence_service.next_transaction_id())


@click.group('employees')
def employees_group():
    """Employee aggregate maintenance."""


@employees_group.command('refresh-stats')
@with_appcontext
def employees_refresh_stats():
    count = employee_service.refresh_all_employee_stats()
    click.echo(f"PASS Refreshed {count} employees")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(transactions_group)
    app.cli.add_command(employees_group)
