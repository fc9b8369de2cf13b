"""Utility functions for the loan ledger.

This module provides helpers for turning user input into ``Decimal`` values,
rounding amounts to currency precision and normalizing payment dates.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, getcontext
from typing import Optional, Union

getcontext().prec = 28  # increase decimal precision to avoid rounding errors

CENT = Decimal("0.01")
RATE_STEP = Decimal("0.0001")
ZERO = Decimal("0")

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    """Convert a number or numeric string into a ``Decimal``.

    Strings may contain thousands separators (``"120,000"``). Floats are
    converted through their ``str`` form so ``0.1`` becomes ``Decimal("0.1")``
    rather than its binary expansion.

    Raises
    ------
    ValueError
        If the value is a boolean, cannot be parsed or is not finite
        (``NaN``, ``Infinity``).
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid numeric value: {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    else:
        try:
            if isinstance(value, float):
                result = Decimal(str(value))
            else:
                result = Decimal(str(value).strip().replace(",", ""))
        except (InvalidOperation, ValueError) as exc:
            raise ValueError(f"Invalid numeric value: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Numeric value must be finite: {value!r}")
    return result


def quantize_money(value: Decimal) -> Decimal:
    """Round ``value`` to cents using half-up rounding."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def quantize_rate(value: Decimal) -> Decimal:
    """Round an interest rate to the four decimals the database keeps."""
    return value.quantize(RATE_STEP, rounding=ROUND_HALF_UP)


def parse_payment_date(value: Union[str, date, datetime, None]) -> datetime:
    """Return the effective payment timestamp.

    ``None`` means "now". Plain dates are promoted to midnight and ISO strings
    (``"2024-03-15"``, ``"2024-03-15T10:30:00"`` or the ``"...Z"`` form sent
    by browsers) are parsed. Timestamps with an offset are converted to naive
    UTC so every stored payment date has the same form.
    """
    if value is None or value == "":
        return datetime.now()
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValueError(f"Invalid payment date: {value}") from exc
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_optional_date(value: Optional[str]) -> Optional[date]:
    """Parse a ``YYYY-MM-DD`` string, returning ``None`` for empty input."""
    if not value:
        return None
    try:
        return date.fromisoformat(value.strip())
    except ValueError as exc:
        raise ValueError(f"Invalid date: {value}") from exc
