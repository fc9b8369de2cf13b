"""Storage backends for clients, their payment ledgers and users.

Two interchangeable stores are provided. ``InMemoryClientStore`` keeps
everything in dictionaries and is handy for tests and what-if tooling.
``SqlClientStore`` persists to any SQLAlchemy-compatible database, defaulting
to SQLite for local development.

Both expose the same interface. The ledger relies on three calls:

- ``load_client_loan_state(client_id)``
- ``save_client_loan_state(client_id, state)``
- ``append_ledger_entry(client_id, entry)``

Each call is atomic on its own; there is no transaction spanning a save and
the following append.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterator, List, Optional

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    create_engine,
    delete,
    select,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .data_models import (
    Client,
    ClientLoanState,
    ClientStatus,
    PaymentLedgerEntry,
    Role,
    User,
)
from .exceptions import ClientNotFound, StorageFailure
from .logging import get_logger
from .utils import ZERO, quantize_money, quantize_rate, to_decimal

logger = get_logger(__name__)


def _normalize_client(client: Client) -> Client:
    """Round stored amounts to what the database columns hold.

    Money is kept in cents and rates in four decimals so both stores return
    the same values for the same input. The opening balance is the loan
    amount unless one is given.
    """
    loan_amount = quantize_money(to_decimal(client.loan_amount))
    balance = client.current_outstanding_balance
    return replace(
        client,
        status=ClientStatus(client.status),
        revenue=quantize_money(to_decimal(client.revenue)),
        loan_amount=loan_amount,
        interest_rate=quantize_rate(to_decimal(client.interest_rate)),
        current_outstanding_balance=loan_amount if balance is None else quantize_money(to_decimal(balance)),
    )


def _normalize_client_changes(changes: dict) -> dict:
    normalized = dict(changes)
    if "status" in normalized:
        normalized["status"] = ClientStatus(normalized["status"])
    if "revenue" in normalized:
        normalized["revenue"] = quantize_money(to_decimal(normalized["revenue"]))
    return normalized


@dataclass
class InMemoryClientStore:
    """Dictionary-backed store with a client-to-ledger index."""

    clients: Dict[int, Client] = field(default_factory=dict)
    users: Dict[str, User] = field(default_factory=dict)

    _client_entries: Dict[int, List[PaymentLedgerEntry]] = field(default_factory=dict)
    _next_client_id: int = 1
    _next_user_id: int = 1

    def _require(self, client_id: int) -> Client:
        client = self.clients.get(client_id)
        if client is None:
            raise ClientNotFound(f"Client {client_id} not found")
        return client

    def add_client(self, client: Client) -> Client:
        """Add a client; its balance starts at the loan amount."""
        client_id = self._next_client_id
        self._next_client_id += 1
        stored = replace(_normalize_client(client), client_id=client_id, payment_history=[])
        self.clients[client_id] = stored
        self._client_entries[client_id] = []
        return self.get_client(client_id)

    def get_client(self, client_id: int) -> Client:
        client = self._require(client_id)
        return replace(client, payment_history=list(self._client_entries[client_id]))

    def list_clients(self) -> List[Client]:
        return [self.get_client(client_id) for client_id in sorted(self.clients)]

    def update_client(self, client_id: int, **changes) -> Client:
        client = self._require(client_id)
        self.clients[client_id] = replace(client, **_normalize_client_changes(changes))
        return self.get_client(client_id)

    def delete_client(self, client_id: int) -> None:
        self._require(client_id)
        del self.clients[client_id]
        del self._client_entries[client_id]

    def load_client_loan_state(self, client_id: int) -> ClientLoanState:
        return self.get_client(client_id).loan_state()

    def save_client_loan_state(self, client_id: int, state: ClientLoanState) -> None:
        client = self._require(client_id)
        self.clients[client_id] = replace(
            client,
            current_outstanding_balance=state.current_outstanding_balance,
            transactions=client.transactions + 1,
        )

    def append_ledger_entry(self, client_id: int, entry: PaymentLedgerEntry) -> None:
        self._require(client_id)
        self._client_entries[client_id].append(entry)

    def list_ledger_entries(self, client_id: int) -> List[PaymentLedgerEntry]:
        self._require(client_id)
        return list(self._client_entries[client_id])

    def add_user(self, user: User) -> User:
        stored = replace(user, user_id=self._next_user_id)
        self._next_user_id += 1
        self.users[stored.email] = stored
        return stored

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self.users.get(email)


Base = declarative_base()


class ClientModel(Base):
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, default="")
    phone = Column(String(64), nullable=False, default="")
    address = Column(Text, nullable=False, default="")
    joined_date = Column(Date, nullable=True)
    status = Column(String(16), nullable=False, default=ClientStatus.ACTIVE.value)
    revenue = Column(Numeric(18, 2), nullable=False, default=0)
    transactions = Column(Integer, nullable=False, default=0)
    loan_amount = Column(Numeric(18, 2), nullable=False, default=0)
    interest_rate = Column(Numeric(9, 4), nullable=False, default=0)
    loan_term_months = Column(Integer, nullable=False, default=0)
    current_outstanding_loan_amount = Column(Numeric(18, 2), nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class PaymentHistoryModel(Base):
    __tablename__ = "payment_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    client_id = Column(Integer, ForeignKey("clients.id"), index=True, nullable=False)
    payment_date = Column(DateTime, nullable=False)
    amount_paid = Column(Numeric(18, 2), nullable=False)
    principal_paid = Column(Numeric(18, 2), nullable=False)
    interest_paid = Column(Numeric(18, 2), nullable=False)
    remaining_balance = Column(Numeric(18, 2), nullable=False)
    payment_month = Column(Integer, nullable=False)
    payment_year = Column(Integer, nullable=False)


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password = Column(String(255), nullable=False)
    role = Column(String(16), nullable=False, default=Role.USER.value)


class SqlClientStore:
    """Database-backed client store."""

    def __init__(self, url: str, *, echo: bool = False) -> None:
        try:
            self._engine = create_engine(url, echo=echo, future=True)
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as exc:
            raise StorageFailure(f"Cannot open database {url}: {exc}") from exc
        self._session_factory = sessionmaker(self._engine, expire_on_commit=False, future=True)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("Storage operation failed: %s", exc)
            raise StorageFailure(str(exc)) from exc
        finally:
            session.close()

    @staticmethod
    def _require(session: Session, client_id: int) -> ClientModel:
        row = session.get(ClientModel, client_id)
        if row is None:
            raise ClientNotFound(f"Client {client_id} not found")
        return row

    def add_client(self, client: Client) -> Client:
        client = _normalize_client(client)
        row = ClientModel(
            name=client.name,
            email=client.email,
            phone=client.phone,
            address=client.address,
            joined_date=client.joined_date,
            status=client.status.value,
            revenue=client.revenue,
            transactions=client.transactions,
            loan_amount=client.loan_amount,
            interest_rate=client.interest_rate,
            loan_term_months=client.loan_term_months,
            current_outstanding_loan_amount=client.current_outstanding_balance,
        )
        with self._session() as session:
            session.add(row)
            session.commit()
            return self._to_client(row, [])

    def get_client(self, client_id: int) -> Client:
        with self._session() as session:
            row = self._require(session, client_id)
            return self._to_client(row, self._entries(session, client_id))

    def list_clients(self) -> List[Client]:
        with self._session() as session:
            rows = session.execute(select(ClientModel).order_by(ClientModel.id.asc())).scalars().all()
            return [self._to_client(row, self._entries(session, row.id)) for row in rows]

    def update_client(self, client_id: int, **changes) -> Client:
        changes = _normalize_client_changes(changes)
        with self._session() as session:
            row = self._require(session, client_id)
            for name, value in changes.items():
                if name == "status":
                    value = value.value
                setattr(row, name, value)
            session.commit()
            return self._to_client(row, self._entries(session, client_id))

    def delete_client(self, client_id: int) -> None:
        with self._session() as session:
            row = self._require(session, client_id)
            session.execute(delete(PaymentHistoryModel).where(PaymentHistoryModel.client_id == client_id))
            session.delete(row)
            session.commit()

    def load_client_loan_state(self, client_id: int) -> ClientLoanState:
        return self.get_client(client_id).loan_state()

    def save_client_loan_state(self, client_id: int, state: ClientLoanState) -> None:
        with self._session() as session:
            row = self._require(session, client_id)
            row.current_outstanding_loan_amount = state.current_outstanding_balance
            row.transactions = row.transactions + 1
            session.commit()

    def append_ledger_entry(self, client_id: int, entry: PaymentLedgerEntry) -> None:
        with self._session() as session:
            self._require(session, client_id)
            session.add(
                PaymentHistoryModel(
                    client_id=client_id,
                    payment_date=entry.payment_date,
                    amount_paid=entry.amount_paid,
                    principal_paid=entry.principal_paid,
                    interest_paid=entry.interest_paid,
                    remaining_balance=entry.remaining_balance_after,
                    payment_month=entry.period_month,
                    payment_year=entry.period_year,
                )
            )
            session.commit()

    def list_ledger_entries(self, client_id: int) -> List[PaymentLedgerEntry]:
        with self._session() as session:
            self._require(session, client_id)
            return self._entries(session, client_id)

    def add_user(self, user: User) -> User:
        row = UserModel(email=user.email, password=user.password_hash, role=Role(user.role).value)
        with self._session() as session:
            session.add(row)
            session.commit()
            return self._to_user(row)

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._session() as session:
            row = session.execute(select(UserModel).where(UserModel.email == email)).scalars().first()
            return self._to_user(row) if row else None

    @staticmethod
    def _entries(session: Session, client_id: int) -> List[PaymentLedgerEntry]:
        rows = session.execute(
            select(PaymentHistoryModel)
            .where(PaymentHistoryModel.client_id == client_id)
            .order_by(PaymentHistoryModel.id.asc())
        ).scalars()
        return [
            PaymentLedgerEntry(
                payment_date=row.payment_date,
                amount_paid=_as_decimal(row.amount_paid),
                principal_paid=_as_decimal(row.principal_paid),
                interest_paid=_as_decimal(row.interest_paid),
                remaining_balance_after=_as_decimal(row.remaining_balance),
                period_month=row.payment_month,
                period_year=row.payment_year,
            )
            for row in rows
        ]

    @staticmethod
    def _to_client(row: ClientModel, entries: List[PaymentLedgerEntry]) -> Client:
        return Client(
            client_id=row.id,
            name=row.name,
            email=row.email,
            phone=row.phone,
            address=row.address,
            joined_date=row.joined_date,
            status=ClientStatus(row.status),
            revenue=_as_decimal(row.revenue),
            transactions=row.transactions,
            loan_amount=_as_decimal(row.loan_amount),
            interest_rate=_as_decimal(row.interest_rate),
            loan_term_months=row.loan_term_months,
            current_outstanding_balance=_as_decimal(row.current_outstanding_loan_amount),
            payment_history=entries,
        )

    @staticmethod
    def _to_user(row: UserModel) -> User:
        return User(user_id=row.id, email=row.email, password_hash=row.password, role=Role(row.role))


def _as_decimal(value) -> Decimal:
    return ZERO if value is None else to_decimal(value)


def create_store_from_config(url: Optional[str], echo: bool = False) -> SqlClientStore:
    return SqlClientStore(url or "sqlite:///loan_ledger.sqlite3", echo=echo)
