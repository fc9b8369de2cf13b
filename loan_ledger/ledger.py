"""Payment ledger and allocation engine.

``record_payment`` is the only transition of a loan's balance. It reconciles
an actual payment against the theoretical breakdown of the next installment
using an interest-first waterfall and returns the new state together with the
ledger entry describing what happened. It is pure: persisting the result is
the job of ``LedgerService``, which also serializes payments per client and
checks the caller's role before touching a client's loan.
"""

from __future__ import annotations

import re
import threading
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Union

from .auth import Action, Authorizer, Identity
from .data_models import (
    AmortizationRow,
    Client,
    ClientLoanState,
    PaymentBreakdown,
    PaymentLedgerEntry,
    PaymentResult,
)
from .engine import compute_breakdown, generate_schedule, remaining_term, round_breakdown
from .exceptions import InvalidPaymentAmount, LoanAlreadyPaidOff, StorageFailure
from .logging import get_logger, ledger_context
from .portfolio import PortfolioSummary, summarize_portfolio
from .utils import ZERO, Number, parse_payment_date, quantize_money, to_decimal

logger = get_logger(__name__)

PaymentDate = Union[str, date, datetime, None]

# Profile fields that may change after origination; loan terms may not.
UPDATABLE_CLIENT_FIELDS = frozenset(
    {"name", "email", "phone", "address", "joined_date", "status", "revenue"}
)


def _plain_number(value: Decimal) -> str:
    return format(value.normalize(), "f")


def client_matches(client: Client, search: Optional[str]) -> bool:
    """Case-insensitive match of ``search`` against a client.

    Name and email match on any substring. When the search holds digits it
    also matches the loan amount, outstanding balance and interest rate, so
    ``"120"`` finds a 120 000 loan and ``"12.5"`` a 12.5 % rate.
    """
    term = (search or "").strip().lower()
    if not term:
        return True
    if term in client.name.lower() or term in client.email.lower():
        return True
    digits = re.sub(r"[^0-9.]", "", term)
    if not digits:
        return False
    amounts = (
        client.loan_amount,
        client.loan_state().current_outstanding_balance,
        client.interest_rate,
    )
    return any(digits in _plain_number(amount) for amount in amounts)


def _validate_amount(amount_paid: Number) -> Decimal:
    """Parse a payment amount and round it to cents."""
    try:
        amount = quantize_money(to_decimal(amount_paid))
    except (ValueError, InvalidOperation) as exc:
        raise InvalidPaymentAmount(f"Payment amount must be a finite number; got {amount_paid!r}") from exc
    if amount <= 0:
        raise InvalidPaymentAmount(f"Payment amount must be positive; got {amount_paid!r}")
    return amount


def next_payment_breakdown(state: ClientLoanState) -> PaymentBreakdown:
    """Breakdown of the next installment for ``state``, rounded to cents."""
    terms = state.loan_terms
    breakdown = compute_breakdown(
        state.current_outstanding_balance,
        terms.annual_rate_percent,
        remaining_term(terms.term_months, state.payment_count),
    )
    return round_breakdown(breakdown)


def record_payment(
    state: ClientLoanState,
    amount_paid: Number,
    payment_date: PaymentDate = None,
) -> PaymentResult:
    """Apply one payment to a loan.

    Interest due for the month is settled first. Whatever is left goes to
    principal, capped at the scheduled principal portion and at the balance;
    any amount beyond the full installment is not applied. A payment smaller
    than the interest due is booked entirely as interest and the shortfall is
    not capitalized.

    Parameters
    ----------
    state: ClientLoanState
        Current state of the client's loan. It is not modified.
    amount_paid: Number
        Amount received.
    payment_date: str | date | datetime | None
        When the payment was made; defaults to now.

    Returns
    -------
    PaymentResult
        The new state (balance reduced, payment count incremented) and the
        ledger entry to append.

    Raises
    ------
    LoanAlreadyPaidOff
        If the balance is already zero.
    InvalidPaymentAmount
        If ``amount_paid`` is not a positive finite number.
    """
    if state.is_paid_off:
        raise LoanAlreadyPaidOff("Loan is already fully paid.")
    amount = _validate_amount(amount_paid)
    paid_at = parse_payment_date(payment_date)

    balance = state.current_outstanding_balance
    breakdown = next_payment_breakdown(state)

    if amount >= breakdown.interest_portion:
        interest_paid = breakdown.interest_portion
        principal_paid = min(amount - interest_paid, breakdown.principal_portion, balance)
    else:
        interest_paid = amount
        principal_paid = ZERO

    new_balance = max(ZERO, balance - principal_paid)

    entry = PaymentLedgerEntry(
        payment_date=paid_at,
        amount_paid=amount,
        principal_paid=principal_paid,
        interest_paid=interest_paid,
        remaining_balance_after=new_balance,
        period_month=paid_at.month,
        period_year=paid_at.year,
    )
    new_state = replace(
        state,
        current_outstanding_balance=new_balance,
        payment_count=state.payment_count + 1,
    )
    return PaymentResult(state=new_state, entry=entry)


class LedgerService:
    """Authorized, persisted operations on the client loan book.

    Parameters
    ----------
    store:
        Storage backend (``InMemoryClientStore`` or ``SqlClientStore``).
    authorizer: Authorizer | None
        Role policy; defaults to the standard role table.
    """

    def __init__(self, store, authorizer: Optional[Authorizer] = None) -> None:
        self._store = store
        self._authorizer = authorizer or Authorizer()
        self._locks: Dict[int, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _client_lock(self, client_id: int) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(client_id)
            if lock is None:
                lock = self._locks[client_id] = threading.Lock()
            return lock

    @property
    def store(self):
        return self._store

    # Payments
    def record_payment(
        self,
        identity: Identity,
        client_id: int,
        amount_paid: Number,
        payment_date: PaymentDate = None,
    ) -> PaymentResult:
        """Record a payment for a client and persist the outcome."""
        self._authorizer.require(identity, Action.RECORD_PAYMENT)
        with self._client_lock(client_id):
            state = self._store.load_client_loan_state(client_id)
            try:
                result = record_payment(state, amount_paid, payment_date)
            except (LoanAlreadyPaidOff, InvalidPaymentAmount) as exc:
                logger.warning(
                    "Payment rejected for client %s: %s",
                    client_id,
                    exc,
                    extra=ledger_context(client_id, identity.user_id),
                )
                raise
            self._store.save_client_loan_state(client_id, result.state)
            try:
                self._store.append_ledger_entry(client_id, result.entry)
            except StorageFailure:
                logger.error(
                    "Balance of client %s saved as %s but the ledger entry was not appended",
                    client_id,
                    result.state.current_outstanding_balance,
                    extra=ledger_context(client_id, identity.user_id),
                )
                raise

        entry = result.entry
        logger.info(
            "Recorded payment of %s for client %s (interest %s, principal %s, balance %s)",
            entry.amount_paid,
            client_id,
            entry.interest_paid,
            entry.principal_paid,
            entry.remaining_balance_after,
            extra=ledger_context(client_id, identity.user_id),
        )
        return result

    def next_breakdown(self, identity: Identity, client_id: int) -> PaymentBreakdown:
        self._authorizer.require(identity, Action.VIEW_SCHEDULE)
        return next_payment_breakdown(self._store.load_client_loan_state(client_id))

    def payment_history(self, identity: Identity, client_id: int) -> List[PaymentLedgerEntry]:
        self._authorizer.require(identity, Action.VIEW_CLIENTS)
        return self._store.list_ledger_entries(client_id)

    # Schedules
    def client_schedule(self, identity: Identity, client_id: int) -> List[AmortizationRow]:
        """Projected schedule from the client's original loan terms."""
        self._authorizer.require(identity, Action.VIEW_SCHEDULE)
        terms = self._store.load_client_loan_state(client_id).loan_terms
        return generate_schedule(terms.principal, terms.annual_rate_percent, terms.term_months)

    def scenario_schedule(
        self,
        identity: Identity,
        principal: Number,
        annual_rate_percent: Number,
        term_months: int,
    ) -> List[AmortizationRow]:
        """What-if schedule for hypothetical loan terms."""
        self._authorizer.require(identity, Action.VIEW_SCHEDULE)
        return generate_schedule(principal, annual_rate_percent, term_months)

    # Clients
    def add_client(self, identity: Identity, client: Client) -> Client:
        self._authorizer.require(identity, Action.MANAGE_CLIENTS)
        stored = self._store.add_client(client)
        logger.info(
            "Created client %s (%s)",
            stored.client_id,
            stored.name,
            extra=ledger_context(stored.client_id, identity.user_id),
        )
        return stored

    def get_client(self, identity: Identity, client_id: int) -> Client:
        self._authorizer.require(identity, Action.VIEW_CLIENTS)
        return self._store.get_client(client_id)

    def list_clients(self, identity: Identity, search: Optional[str] = None) -> List[Client]:
        """All clients, or those matching ``search`` (see ``client_matches``)."""
        self._authorizer.require(identity, Action.VIEW_CLIENTS)
        return [c for c in self._store.list_clients() if client_matches(c, search)]

    def update_client(self, identity: Identity, client_id: int, **changes) -> Client:
        """Update profile fields of a client.

        Loan terms, balance and payment history cannot be edited; they only
        change through recorded payments.
        """
        self._authorizer.require(identity, Action.MANAGE_CLIENTS)
        locked = set(changes) - UPDATABLE_CLIENT_FIELDS
        if locked:
            raise ValueError(f"Fields cannot be updated: {', '.join(sorted(locked))}")
        with self._client_lock(client_id):
            return self._store.update_client(client_id, **changes)

    def delete_client(self, identity: Identity, client_id: int) -> None:
        """Delete a client together with its payment history."""
        self._authorizer.require(identity, Action.DELETE_CLIENTS)
        with self._client_lock(client_id):
            self._store.delete_client(client_id)
        with self._locks_guard:
            self._locks.pop(client_id, None)
        logger.info("Deleted client %s", client_id, extra=ledger_context(client_id, identity.user_id))

    def portfolio(self, identity: Identity) -> PortfolioSummary:
        self._authorizer.require(identity, Action.VIEW_CLIENTS)
        return summarize_portfolio(self._store.list_clients())
