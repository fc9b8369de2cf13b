"""Data models for the loan ledger.

This module defines dataclasses for the entities the ledger works with: the
terms a loan is originated with, the mutable balance state of a client's
loan, the immutable ledger entries written for every recorded payment and the
rows of a projected amortization schedule. ``Client`` and ``User`` give the
stored records an explicit schema with defaulted optional fields.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from .utils import ZERO


class ClientStatus(str, Enum):
    """Lifecycle status of a client record."""

    ACTIVE = "Active"
    INACTIVE = "Inactive"
    LEAD = "Lead"


class Role(str, Enum):
    """Roles a user of the system can hold."""

    USER = "USER"
    EMPLOYEE = "EMPLOYEE"
    ADMIN = "ADMIN"


@dataclass(frozen=True)
class LoanTerms:
    """Terms fixed at loan origination.

    Attributes
    ----------
    principal: Decimal
        Amount borrowed.
    annual_rate_percent: Decimal
        Nominal annual interest rate in percent (``12`` means 12 %).
    term_months: int
        Number of monthly installments.
    """

    principal: Decimal
    annual_rate_percent: Decimal
    term_months: int

    @property
    def is_valid(self) -> bool:
        return self.principal > 0 and self.term_months > 0 and self.annual_rate_percent >= 0


@dataclass(frozen=True)
class ClientLoanState:
    """Balance state of one client's loan.

    ``payment_count`` is the number of ledger entries recorded so far and is
    used to derive the remaining term. A new state is produced for every
    recorded payment; instances are never changed in place.
    """

    loan_terms: LoanTerms
    current_outstanding_balance: Decimal
    payment_count: int = 0

    @property
    def is_paid_off(self) -> bool:
        return self.current_outstanding_balance <= 0


@dataclass(frozen=True)
class PaymentBreakdown:
    """Theoretical split of the next installment."""

    monthly_payment: Decimal
    interest_portion: Decimal
    principal_portion: Decimal


@dataclass(frozen=True)
class PaymentLedgerEntry:
    """A realized payment event. Entries are append-only."""

    payment_date: datetime
    amount_paid: Decimal
    principal_paid: Decimal
    interest_paid: Decimal
    remaining_balance_after: Decimal
    period_month: int
    period_year: int


@dataclass(frozen=True)
class PaymentResult:
    """Outcome of applying one payment: the new state and its ledger entry."""

    state: ClientLoanState
    entry: PaymentLedgerEntry


@dataclass(frozen=True)
class AmortizationRow:
    """One month of a projected amortization schedule."""

    month: int
    starting_balance: Decimal
    scheduled_payment: Decimal
    principal_portion: Decimal
    interest_portion: Decimal
    ending_balance: Decimal


@dataclass(frozen=True)
class LoanSummary:
    """Totals over the life of a loan paid exactly on schedule."""

    monthly_payment: Decimal
    total_interest: Decimal
    total_amount: Decimal


@dataclass
class Client:
    """A client record together with its loan and payment history."""

    name: str
    client_id: Optional[int] = None
    email: str = ""
    phone: str = ""
    address: str = ""
    joined_date: Optional[date] = None
    status: ClientStatus = ClientStatus.ACTIVE
    revenue: Decimal = ZERO
    transactions: int = 0
    loan_amount: Decimal = ZERO
    interest_rate: Decimal = ZERO
    loan_term_months: int = 0
    # None until the client is stored; the store starts it at loan_amount
    current_outstanding_balance: Optional[Decimal] = None
    payment_history: List[PaymentLedgerEntry] = field(default_factory=list)

    @property
    def loan_terms(self) -> LoanTerms:
        return LoanTerms(
            principal=self.loan_amount,
            annual_rate_percent=self.interest_rate,
            term_months=self.loan_term_months,
        )

    def loan_state(self) -> ClientLoanState:
        balance = self.current_outstanding_balance
        if balance is None:
            balance = self.loan_amount
        return ClientLoanState(
            loan_terms=self.loan_terms,
            current_outstanding_balance=balance,
            payment_count=len(self.payment_history),
        )


@dataclass
class User:
    """An operator account that can sign in to the system."""

    email: str
    password_hash: str
    role: Role = Role.USER
    user_id: Optional[int] = None
