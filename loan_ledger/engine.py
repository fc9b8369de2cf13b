"""Core calculation engine for the loan ledger.

This module implements the pure financial logic: the equated monthly
installment (EMI) of an annuity loan, the interest/principal breakdown of the
next installment for an outstanding balance, and the projected amortization
schedule of a loan from origination to payoff.

Degenerate inputs (non-positive principal or term, negative rate) never raise;
they resolve to zero-valued results or an empty schedule. Calculations run in
full ``Decimal`` precision and are rounded to cents only when reported.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterator, List

from .data_models import AmortizationRow, LoanSummary, LoanTerms, PaymentBreakdown
from .utils import ZERO, Number, quantize_money, to_decimal

# Longest schedule the API will project: a hundred years of monthly payments.
MAX_TERM_MONTHS = 1200


def check_term(term_months: int) -> int:
    """Return ``term_months`` as an int, refusing terms above ``MAX_TERM_MONTHS``.

    Non-positive terms pass through; the calculators treat them as degenerate.
    """
    term_months = int(term_months)
    if term_months > MAX_TERM_MONTHS:
        raise ValueError(f"Loan term must be at most {MAX_TERM_MONTHS} months; got {term_months}")
    return term_months


def _monthly_rate(annual_rate_percent: Decimal) -> Decimal:
    return annual_rate_percent / Decimal(100) / Decimal(12)


def _is_degenerate(principal: Decimal, annual_rate_percent: Decimal, term_months: int) -> bool:
    return not LoanTerms(principal, annual_rate_percent, term_months).is_valid


def _annuity_payment(principal: Decimal, rate_per_month: Decimal, term: int) -> Decimal:
    """Return the annuity payment for already validated inputs.

    The formula is:

        payment = P * i / (1 - (1 + i)^-n)

    where ``P`` is the principal, ``i`` is the monthly interest rate and
    ``n`` is the number of payments. When the interest rate is zero, the
    payment simplifies to ``P / n``.
    """
    if rate_per_month == 0:
        return principal / Decimal(term)
    return principal * rate_per_month / (1 - (1 + rate_per_month) ** -term)


def compute_monthly_payment(
    principal: Number,
    annual_rate_percent: Number,
    term_months: int,
    round_result: bool = False,
) -> Decimal:
    """Return the fixed monthly installment of an annuity loan.

    Parameters
    ----------
    principal: Number
        Amount borrowed.
    annual_rate_percent: Number
        Nominal annual rate in percent.
    term_months: int
        Number of monthly payments.
    round_result: bool
        Round the payment to cents. Leave it off when the value feeds further
        calculations.

    Returns
    -------
    Decimal
        The installment, or ``0`` when the inputs are degenerate.
    """
    principal = to_decimal(principal)
    annual_rate_percent = to_decimal(annual_rate_percent)
    term_months = int(term_months)
    if _is_degenerate(principal, annual_rate_percent, term_months):
        return ZERO
    payment = _annuity_payment(principal, _monthly_rate(annual_rate_percent), term_months)
    return quantize_money(payment) if round_result else payment


def remaining_term(original_term_months: int, payments_made: int) -> int:
    """Months left on a loan, never less than one.

    A loan that has run past its nominal term without reaching a zero balance
    is treated as due in a single final month.
    """
    return max(1, original_term_months - payments_made)


def compute_breakdown(
    outstanding_balance: Number,
    annual_rate_percent: Number,
    remaining_term_months: int,
) -> PaymentBreakdown:
    """Split the next installment into interest and principal.

    The balance is re-amortized over the remaining term on every call, so the
    split follows the current balance rather than the original schedule.
    Values are returned in full precision.
    """
    balance = to_decimal(outstanding_balance)
    annual_rate_percent = to_decimal(annual_rate_percent)
    remaining_term_months = int(remaining_term_months)
    if _is_degenerate(balance, annual_rate_percent, remaining_term_months):
        return PaymentBreakdown(ZERO, ZERO, ZERO)

    rate_per_month = _monthly_rate(annual_rate_percent)
    monthly_payment = _annuity_payment(balance, rate_per_month, remaining_term_months)
    interest_portion = balance * rate_per_month
    return PaymentBreakdown(
        monthly_payment=monthly_payment,
        interest_portion=interest_portion,
        principal_portion=monthly_payment - interest_portion,
    )


def round_breakdown(breakdown: PaymentBreakdown) -> PaymentBreakdown:
    """Return ``breakdown`` with every portion rounded to cents."""
    return PaymentBreakdown(
        monthly_payment=quantize_money(breakdown.monthly_payment),
        interest_portion=quantize_money(breakdown.interest_portion),
        principal_portion=quantize_money(breakdown.principal_portion),
    )


def iter_schedule(
    principal: Number,
    annual_rate_percent: Number,
    term_months: int,
) -> Iterator[AmortizationRow]:
    """Yield the amortization schedule of a loan one month at a time.

    The installment is computed once for the whole loan. In the final month
    the principal portion is set to whatever balance remains so rounding drift
    is absorbed and the schedule ends at exactly zero.
    """
    principal = to_decimal(principal)
    annual_rate_percent = to_decimal(annual_rate_percent)
    term_months = int(term_months)
    if _is_degenerate(principal, annual_rate_percent, term_months):
        return

    rate_per_month = _monthly_rate(annual_rate_percent)
    monthly_payment = _annuity_payment(principal, rate_per_month, term_months)
    current_balance = principal

    for month in range(1, term_months + 1):
        starting_balance = current_balance
        interest_payment = current_balance * rate_per_month
        principal_payment = monthly_payment - interest_payment
        row_payment = monthly_payment
        if month == term_months:
            principal_payment = current_balance
            row_payment = principal_payment + interest_payment

        current_balance -= principal_payment
        if current_balance < 0:
            current_balance = ZERO

        yield AmortizationRow(
            month=month,
            starting_balance=quantize_money(starting_balance),
            scheduled_payment=quantize_money(row_payment),
            principal_portion=quantize_money(principal_payment),
            interest_portion=quantize_money(interest_payment),
            ending_balance=quantize_money(current_balance),
        )


def generate_schedule(
    principal: Number,
    annual_rate_percent: Number,
    term_months: int,
) -> List[AmortizationRow]:
    """Return the full schedule: ``term_months`` rows, or none for degenerate terms."""
    return list(iter_schedule(principal, annual_rate_percent, term_months))


def summarize_loan(
    principal: Number,
    annual_rate_percent: Number,
    term_months: int,
) -> LoanSummary:
    """Return the installment, total interest and total repaid for a loan.

    Totals assume every installment is paid exactly as scheduled.
    """
    principal = to_decimal(principal)
    monthly_payment = compute_monthly_payment(principal, annual_rate_percent, term_months)
    if monthly_payment == 0:
        return LoanSummary(ZERO, ZERO, ZERO)
    total_amount = monthly_payment * int(term_months)
    return LoanSummary(
        monthly_payment=quantize_money(monthly_payment),
        total_interest=quantize_money(total_amount - principal),
        total_amount=quantize_money(total_amount),
    )
