"""Pytest configuration and fixtures."""

import logging
from datetime import date
from decimal import Decimal

import pytest

from loan_ledger.auth import Identity
from loan_ledger.data_models import Client, Role
from loan_ledger.ledger import LedgerService
from loan_ledger.store import InMemoryClientStore


@pytest.fixture
def admin() -> Identity:
    return Identity(user_id=1, role=Role.ADMIN, email="admin@example.com")


@pytest.fixture
def employee() -> Identity:
    return Identity(user_id=2, role=Role.EMPLOYEE, email="staff@example.com")


@pytest.fixture
def viewer() -> Identity:
    return Identity(user_id=3, role=Role.USER, email="viewer@example.com")


@pytest.fixture
def store() -> InMemoryClientStore:
    """Create a fresh store for each test."""
    return InMemoryClientStore()


@pytest.fixture
def service(store: InMemoryClientStore) -> LedgerService:
    return LedgerService(store)


@pytest.fixture
def amortizing_client() -> Client:
    """120 000 at 12 % over a year: 1 % per month."""
    return Client(
        name="Asha Traders",
        email="accounts@asha.example",
        joined_date=date(2024, 1, 15),
        revenue=Decimal("50000"),
        loan_amount=Decimal("120000"),
        interest_rate=Decimal("12"),
        loan_term_months=12,
    )


@pytest.fixture
def interest_free_client() -> Client:
    """1 000 at 0 % over ten months."""
    return Client(
        name="Ravi Stores",
        joined_date=date(2024, 2, 1),
        loan_amount=Decimal("1000"),
        interest_rate=Decimal("0"),
        loan_term_months=10,
    )


@pytest.fixture(autouse=True)
def _restore_logging():
    """Undo ``setup_logging`` calls made by the code under test."""
    root = logging.getLogger()
    package_loggers = [logging.getLogger(name) for name in ("loan_ledger", "loan_ledger_web")]
    level = root.level
    package_levels = [lg.level for lg in package_loggers]
    yield
    for handler in root.handlers[:]:
        if type(handler) is logging.StreamHandler:
            root.removeHandler(handler)
    root.setLevel(level)
    for lg, lvl in zip(package_loggers, package_levels):
        lg.setLevel(lvl)
