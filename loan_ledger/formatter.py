"""Output helpers for the loan ledger.

This module renders schedules, payment breakdowns, ledgers and client
records as plain tab-separated text for the terminal. Amounts are printed
with two decimals; no locale or currency formatting is applied.
"""

from __future__ import annotations

from typing import Iterable

from .data_models import AmortizationRow, Client, LoanSummary, PaymentBreakdown, PaymentLedgerEntry
from .portfolio import PortfolioSummary


def print_loan_summary(summary: LoanSummary) -> None:
    """Print the installment and lifetime totals of a loan."""
    print("Loan summary")
    print("-" * 72)
    print(f"Monthly payment    : {summary.monthly_payment:.2f}")
    print(f"Total interest     : {summary.total_interest:.2f}")
    print(f"Total amount       : {summary.total_amount:.2f}")
    print("-" * 72)


def print_breakdown(breakdown: PaymentBreakdown) -> None:
    print(f"Next installment   : {breakdown.monthly_payment:.2f}")
    print(f"  Interest portion : {breakdown.interest_portion:.2f}")
    print(f"  Principal portion: {breakdown.principal_portion:.2f}")


def print_schedule(schedule: Iterable[AmortizationRow]) -> None:
    """Print an amortization schedule as a simple table."""
    headers = ["Month", "StartBal", "Payment", "Principal", "Interest", "EndBal"]
    print("\t".join(headers))
    for row in schedule:
        print(
            "\t".join(
                [
                    str(row.month),
                    f"{row.starting_balance:.2f}",
                    f"{row.scheduled_payment:.2f}",
                    f"{row.principal_portion:.2f}",
                    f"{row.interest_portion:.2f}",
                    f"{row.ending_balance:.2f}",
                ]
            )
        )


def print_ledger(entries: Iterable[PaymentLedgerEntry]) -> None:
    """Print recorded payments in the order they were recorded."""
    headers = ["Date", "Period", "Paid", "Principal", "Interest", "Balance"]
    print("\t".join(headers))
    for entry in entries:
        print(
            "\t".join(
                [
                    entry.payment_date.strftime("%Y-%m-%d"),
                    f"{entry.period_year}-{entry.period_month:02d}",
                    f"{entry.amount_paid:.2f}",
                    f"{entry.principal_paid:.2f}",
                    f"{entry.interest_paid:.2f}",
                    f"{entry.remaining_balance_after:.2f}",
                ]
            )
        )


def print_client(client: Client) -> None:
    """Print one client's profile and loan position."""
    print(f"Client #{client.client_id}: {client.name}")
    print("-" * 72)
    print(f"Status             : {client.status.value}")
    print(f"Email              : {client.email or '-'}")
    print(f"Phone              : {client.phone or '-'}")
    print(f"Joined             : {client.joined_date.isoformat() if client.joined_date else '-'}")
    print(f"Revenue            : {client.revenue:.2f}")
    print(f"Loan amount        : {client.loan_amount:.2f}")
    print(f"Interest rate      : {client.interest_rate}%")
    print(f"Term (months)      : {client.loan_term_months}")
    print(f"Outstanding        : {client.loan_state().current_outstanding_balance:.2f}")
    print(f"Payments recorded  : {len(client.payment_history)}")


def print_clients(clients: Iterable[Client]) -> None:
    headers = ["ID", "Name", "Status", "Loan", "Rate", "Term", "Outstanding"]
    print("\t".join(headers))
    for client in clients:
        print(
            "\t".join(
                [
                    str(client.client_id),
                    client.name,
                    client.status.value,
                    f"{client.loan_amount:.2f}",
                    f"{client.interest_rate}",
                    str(client.loan_term_months),
                    f"{client.loan_state().current_outstanding_balance:.2f}",
                ]
            )
        )


def print_portfolio(summary: PortfolioSummary) -> None:
    print("Portfolio")
    print("=" * 72)
    print(f"Clients            : {summary.total_clients} ({summary.active_clients} active)")
    print(f"Total revenue      : {summary.total_revenue:.2f}")
    print(f"Average revenue    : {summary.average_revenue:.2f}")
    print(f"Loans issued       : {summary.total_loan_amount:.2f}")
    print(f"Outstanding        : {summary.total_outstanding:.2f}")
    for status, count in summary.clients_by_status.items():
        print(f"  {status:17s}: {count}")
