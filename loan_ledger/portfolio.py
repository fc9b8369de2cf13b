"""Portfolio-level figures across all clients."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable

from .data_models import Client, ClientStatus
from .utils import ZERO, quantize_money


@dataclass(frozen=True)
class PortfolioSummary:
    total_clients: int
    active_clients: int
    total_revenue: Decimal
    average_revenue: Decimal
    total_loan_amount: Decimal
    total_outstanding: Decimal
    clients_by_status: Dict[str, int] = field(default_factory=dict)


def summarize_portfolio(clients: Iterable[Client]) -> PortfolioSummary:
    """Aggregate client counts, revenue and loan exposure."""
    total_clients = 0
    total_revenue = ZERO
    total_loan_amount = ZERO
    total_outstanding = ZERO
    by_status: Dict[str, int] = {status.value: 0 for status in ClientStatus}

    for client in clients:
        total_clients += 1
        total_revenue += client.revenue
        total_loan_amount += client.loan_amount
        total_outstanding += client.loan_state().current_outstanding_balance
        status = ClientStatus(client.status).value
        by_status[status] = by_status.get(status, 0) + 1

    average = total_revenue / total_clients if total_clients else ZERO
    return PortfolioSummary(
        total_clients=total_clients,
        active_clients=by_status[ClientStatus.ACTIVE.value],
        total_revenue=quantize_money(total_revenue),
        average_revenue=quantize_money(average),
        total_loan_amount=quantize_money(total_loan_amount),
        total_outstanding=quantize_money(total_outstanding),
        clients_by_status=by_status,
    )
