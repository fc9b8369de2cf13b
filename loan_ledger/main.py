"""Command-line interface for the loan ledger.

This module uses the ``click`` library to implement a multi-command
interface. Users can compute installments and amortization schedules, manage
client records, record payments and review payment history. Schedules and
ledgers can be printed to the terminal or exported to JSON/CSV files.

The CLI is an operator tool run on the server itself, so every command acts
with a local administrator identity.
"""

from __future__ import annotations

import csv
import json
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

import click

from .auth import Identity, register_user
from .config import AppConfig
from .data_models import AmortizationRow, Client, ClientStatus, PaymentLedgerEntry, Role
from .engine import check_term, compute_breakdown, generate_schedule, round_breakdown, summarize_loan
from .exceptions import LoanLedgerError
from .formatter import (
    print_breakdown,
    print_client,
    print_clients,
    print_ledger,
    print_loan_summary,
    print_portfolio,
    print_schedule,
)
from .ledger import LedgerService
from .logging import setup_logging
from .store import create_store_from_config
from .utils import parse_optional_date, to_decimal

LOCAL_ADMIN = Identity(user_id=0, role=Role.ADMIN, email="cli@localhost")


def parse_amount(value: str) -> Decimal:
    """Parse a numeric string with optional suffixes.

    Accepts plain numbers ("500000") and shorthand with ``k``/``m`` suffixes
    (e.g., "500k" meaning 500_000).
    """
    value = value.strip().lower().replace(",", "")
    factor = Decimal(1)
    if value.endswith("k"):
        factor = Decimal(1_000)
        value = value[:-1]
    elif value.endswith("m"):
        factor = Decimal(1_000_000)
        value = value[:-1]
    try:
        return to_decimal(value) * factor
    except ValueError:
        raise click.BadParameter(f"Invalid amount: {value}")


def parse_rate(value: str) -> Decimal:
    """Parse an annual interest rate in percent."""
    try:
        return to_decimal(value)
    except ValueError:
        raise click.BadParameter(f"Invalid rate: {value}")


def schedule_to_dicts(schedule: List[AmortizationRow]) -> List[Dict[str, Any]]:
    return [
        {
            "month": row.month,
            "starting_balance": float(row.starting_balance),
            "payment": float(row.scheduled_payment),
            "principal": float(row.principal_portion),
            "interest": float(row.interest_portion),
            "ending_balance": float(row.ending_balance),
        }
        for row in schedule
    ]


def ledger_to_dicts(entries: List[PaymentLedgerEntry]) -> List[Dict[str, Any]]:
    return [
        {
            "payment_date": e.payment_date.isoformat(),
            "amount_paid": float(e.amount_paid),
            "principal_paid": float(e.principal_paid),
            "interest_paid": float(e.interest_paid),
            "remaining_balance": float(e.remaining_balance_after),
            "payment_month": e.period_month,
            "payment_year": e.period_year,
        }
        for e in entries
    ]


def clients_to_dicts(clients: List[Client]) -> List[Dict[str, Any]]:
    return [
        {
            "id": c.client_id,
            "name": c.name,
            "email": c.email,
            "phone": c.phone,
            "status": c.status.value,
            "joined_date": c.joined_date.isoformat() if c.joined_date else "",
            "revenue": float(c.revenue),
            "loan_amount": float(c.loan_amount),
            "interest_rate": float(c.interest_rate),
            "loan_term_months": c.loan_term_months,
            "current_outstanding_balance": float(c.loan_state().current_outstanding_balance),
        }
        for c in clients
    ]


def export_to_json(path: Path, rows: List[Dict[str, Any]], key: str) -> None:
    with path.open("w", encoding="utf-8") as f:
        json.dump({key: rows}, f, indent=2)


def export_to_csv(path: Path, rows: List[Dict[str, Any]]) -> None:
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        if not rows:
            return
        writer.writerow(list(rows[0].keys()))
        for row in rows:
            writer.writerow(list(row.values()))


def _export(output: str, rows: List[Dict[str, Any]], key: str) -> None:
    path = Path(output)
    if path.suffix.lower() == ".json":
        export_to_json(path, rows, key)
    elif path.suffix.lower() == ".csv":
        export_to_csv(path, rows)
    else:
        raise click.BadParameter("Unsupported output format; use .json or .csv")
    click.echo(f"Exported {len(rows)} rows to {path}")


def _service(ctx: click.Context) -> LedgerService:
    obj = ctx.ensure_object(dict)
    if "service" not in obj:
        config: AppConfig = obj["config"]
        obj["service"] = LedgerService(create_store_from_config(config.database.url, config.database.echo))
    return obj["service"]


@click.group()
@click.option("--database-url", "database_url", help="SQLAlchemy database URL (overrides LOAN_LEDGER_DATABASE_URL)")
@click.option("--log-level", "log_level", help="Log level (overrides LOG_LEVEL)")
@click.pass_context
def cli(ctx: click.Context, database_url: Optional[str], log_level: Optional[str]) -> None:
    """Track client loans, payments and amortization schedules."""
    config = AppConfig.from_env()
    if database_url:
        config.database.url = database_url
    if log_level:
        config.log_level = log_level
    setup_logging(config.log_level, config.log_format)
    ctx.ensure_object(dict)["config"] = config


@cli.command()
@click.option("--principal", "-p", "principal", required=True, help="Loan amount")
@click.option("--rate", "-r", "rate", required=True, help="Annual interest rate (percent)")
@click.option("--term", "-t", "term", required=True, type=int, help="Loan term in months")
def emi(principal: str, rate: str, term: int) -> None:
    """Compute the monthly installment and lifetime totals of a loan."""
    print_loan_summary(summarize_loan(parse_amount(principal), parse_rate(rate), term))


@cli.command()
@click.option("--balance", "-b", "balance", required=True, help="Outstanding balance")
@click.option("--rate", "-r", "rate", required=True, help="Annual interest rate (percent)")
@click.option("--remaining", "-n", "remaining", required=True, type=int, help="Remaining term in months")
def breakdown(balance: str, rate: str, remaining: int) -> None:
    """Split the next installment into interest and principal."""
    print_breakdown(round_breakdown(compute_breakdown(parse_amount(balance), parse_rate(rate), remaining)))


@cli.command()
@click.option("--principal", "-p", "principal", required=True, help="Loan amount")
@click.option("--rate", "-r", "rate", required=True, help="Annual interest rate (percent)")
@click.option("--term", "-t", "term", required=True, type=int, help="Loan term in months")
@click.option("--output", "output", type=str, help="Output file path (.json or .csv)")
def schedule(principal: str, rate: str, term: int, output: Optional[str]) -> None:
    """Compute and print the full amortization schedule."""
    try:
        term = check_term(term)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="--term")
    amount, annual_rate = parse_amount(principal), parse_rate(rate)
    rows = generate_schedule(amount, annual_rate, term)
    if not rows:
        raise click.UsageError("Enter a positive principal and term and a non-negative rate.")
    if output:
        _export(output, schedule_to_dicts(rows), "schedule")
    else:
        print_loan_summary(summarize_loan(amount, annual_rate, term))
        print_schedule(rows)


@cli.group()
def client() -> None:
    """Manage client records."""


@client.command("add")
@click.option("--name", required=True)
@click.option("--email", default="")
@click.option("--phone", default="")
@click.option("--address", default="")
@click.option("--joined", "joined", help="Joined date (YYYY-MM-DD)")
@click.option("--status", type=click.Choice([s.value for s in ClientStatus]), default=ClientStatus.ACTIVE.value)
@click.option("--revenue", default="0")
@click.option("--loan-amount", "loan_amount", default="0")
@click.option("--rate", default="0", help="Annual interest rate (percent)")
@click.option("--term", type=int, default=0, help="Loan term in months")
@click.pass_context
def client_add(
    ctx: click.Context,
    name: str,
    email: str,
    phone: str,
    address: str,
    joined: Optional[str],
    status: str,
    revenue: str,
    loan_amount: str,
    rate: str,
    term: int,
) -> None:
    """Create a client with an optional loan."""
    try:
        joined_date = parse_optional_date(joined) or date.today()
    except ValueError as exc:
        raise click.BadParameter(str(exc))
    try:
        term = check_term(term)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="--term")
    new_client = Client(
        name=name,
        email=email,
        phone=phone,
        address=address,
        joined_date=joined_date,
        status=ClientStatus(status),
        revenue=parse_amount(revenue),
        loan_amount=parse_amount(loan_amount),
        interest_rate=parse_rate(rate),
        loan_term_months=term,
    )
    stored = _service(ctx).add_client(LOCAL_ADMIN, new_client)
    click.echo(f"Created client {stored.client_id}")


@client.command("list")
@click.option("--search", "search", help="Filter by name, email, loan amount, balance or rate")
@click.option("--output", "output", type=str, help="Output file path (.json or .csv)")
@click.pass_context
def client_list(ctx: click.Context, search: Optional[str], output: Optional[str]) -> None:
    """List clients and a portfolio summary."""
    service = _service(ctx)
    clients = service.list_clients(LOCAL_ADMIN, search)
    if output:
        _export(output, clients_to_dicts(clients), "clients")
        return
    print_clients(clients)
    if not search:
        print_portfolio(service.portfolio(LOCAL_ADMIN))


@client.command("show")
@click.argument("client_id", type=int)
@click.pass_context
def client_show(ctx: click.Context, client_id: int) -> None:
    """Show a client and the breakdown of their next installment."""
    service = _service(ctx)
    try:
        record = service.get_client(LOCAL_ADMIN, client_id)
    except LoanLedgerError as exc:
        raise click.ClickException(str(exc))
    print_client(record)
    print_breakdown(service.next_breakdown(LOCAL_ADMIN, client_id))


@client.command("delete")
@click.argument("client_id", type=int)
@click.confirmation_option(prompt="Delete this client and their payment history?")
@click.pass_context
def client_delete(ctx: click.Context, client_id: int) -> None:
    """Delete a client and their payment history."""
    try:
        _service(ctx).delete_client(LOCAL_ADMIN, client_id)
    except LoanLedgerError as exc:
        raise click.ClickException(str(exc))
    click.echo(f"Deleted client {client_id}")


@cli.command()
@click.argument("client_id", type=int)
@click.option("--amount", "-a", "amount", required=True, help="Amount paid")
@click.option("--date", "payment_date", help="Payment date (YYYY-MM-DD); defaults to now")
@click.pass_context
def pay(ctx: click.Context, client_id: int, amount: str, payment_date: Optional[str]) -> None:
    """Record a payment against a client's loan."""
    try:
        result = _service(ctx).record_payment(LOCAL_ADMIN, client_id, parse_amount(amount), payment_date)
    except (LoanLedgerError, ValueError) as exc:
        raise click.ClickException(str(exc))
    entry = result.entry
    click.echo(
        f"Recorded {entry.amount_paid:.2f}: interest {entry.interest_paid:.2f}, "
        f"principal {entry.principal_paid:.2f}, balance {entry.remaining_balance_after:.2f}"
    )


@cli.command()
@click.argument("client_id", type=int)
@click.option("--output", "output", type=str, help="Output file path (.json or .csv)")
@click.pass_context
def history(ctx: click.Context, client_id: int, output: Optional[str]) -> None:
    """Show the payment history of a client."""
    try:
        entries = _service(ctx).payment_history(LOCAL_ADMIN, client_id)
    except LoanLedgerError as exc:
        raise click.ClickException(str(exc))
    if output:
        _export(output, ledger_to_dicts(entries), "payments")
    else:
        print_ledger(entries)


@cli.group()
def user() -> None:
    """Manage user accounts."""


@user.command("add")
@click.option("--email", required=True)
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
@click.option("--role", type=click.Choice([r.value for r in Role]), default=Role.USER.value)
@click.pass_context
def user_add(ctx: click.Context, email: str, password: str, role: str) -> None:
    """Register a user who can sign in to the HTTP API."""
    service = _service(ctx)
    try:
        created = register_user(service.store, email, password, Role(role))
    except LoanLedgerError as exc:
        raise click.ClickException(str(exc))
    click.echo(f"Created user {created.email} ({created.role.value})")


if __name__ == "__main__":
    cli()
