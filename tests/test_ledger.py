"""Tests for payment allocation and the ledger service."""

import threading
import logging
from datetime import date, datetime
from decimal import Decimal

import pytest

from loan_ledger.auth import Authorizer
from loan_ledger.data_models import Client, ClientLoanState, LoanTerms, PaymentLedgerEntry
from loan_ledger.exceptions import (
    ClientNotFound,
    InvalidPaymentAmount,
    LoanAlreadyPaidOff,
    PermissionDenied,
    StorageFailure,
)
from loan_ledger.ledger import LedgerService, client_matches, next_payment_breakdown, record_payment
from loan_ledger.store import InMemoryClientStore


def _state(principal, rate, term, balance=None, payments=0) -> ClientLoanState:
    terms = LoanTerms(Decimal(str(principal)), Decimal(str(rate)), term)
    return ClientLoanState(
        loan_terms=terms,
        current_outstanding_balance=terms.principal if balance is None else Decimal(str(balance)),
        payment_count=payments,
    )


class TestRecordPayment:
    """Test the interest-first allocation of a single payment."""

    def test_full_installment(self) -> None:
        result = record_payment(_state(120000, 12, 12), Decimal("10661.85"), date(2024, 3, 5))
        entry = result.entry
        assert entry.interest_paid == Decimal("1200.00")
        assert entry.principal_paid == Decimal("9461.85")
        assert entry.remaining_balance_after == Decimal("110538.15")
        assert result.state.current_outstanding_balance == Decimal("110538.15")
        assert result.state.payment_count == 1

    def test_entry_period_follows_payment_date(self) -> None:
        entry = record_payment(_state(1000, 0, 10), 100, "2023-11-30").entry
        assert entry.payment_date == datetime(2023, 11, 30)
        assert (entry.period_month, entry.period_year) == (11, 2023)

    def test_payment_date_defaults_to_now(self) -> None:
        before = datetime.now()
        entry = record_payment(_state(1000, 0, 10), 100).entry
        assert before <= entry.payment_date <= datetime.now()

    def test_input_state_is_not_modified(self) -> None:
        state = _state(1000, 0, 10)
        record_payment(state, 100)
        assert state.current_outstanding_balance == Decimal("1000")
        assert state.payment_count == 0

    def test_underpayment_goes_to_interest_only(self) -> None:
        # 8000 at 12 % accrues 80 of interest for the month
        state = _state(8000, 12, 24)
        result = record_payment(state, 50)
        assert result.entry.interest_paid == Decimal("50")
        assert result.entry.principal_paid == 0
        assert result.state.current_outstanding_balance == Decimal("8000")
        assert result.state.payment_count == 1

    def test_partial_principal(self) -> None:
        result = record_payment(_state(8000, 12, 24), 300)
        assert result.entry.interest_paid == Decimal("80.00")
        assert result.entry.principal_paid == Decimal("220.00")
        assert result.state.current_outstanding_balance == Decimal("7780.00")

    def test_excess_beyond_installment_is_not_applied(self) -> None:
        result = record_payment(_state(120000, 12, 12), 20000)
        assert result.entry.amount_paid == Decimal("20000")
        assert result.entry.principal_paid == Decimal("9461.85")
        assert result.state.current_outstanding_balance == Decimal("110538.15")

    def test_past_nominal_term_collects_whole_balance(self) -> None:
        state = _state(1000, 12, 2, payments=2)
        breakdown = next_payment_breakdown(state)
        assert breakdown.principal_portion == Decimal("1000.00")
        result = record_payment(state, Decimal("1010.00"))
        assert result.state.current_outstanding_balance == 0
        assert result.state.is_paid_off

    def test_paid_off_loan_rejects_payment(self) -> None:
        with pytest.raises(LoanAlreadyPaidOff):
            record_payment(_state(1000, 0, 10, balance=0), 100)

    @pytest.mark.parametrize(
        "amount", [0, -10, "abc", None, True, float("nan"), float("inf"), "NaN", "Infinity", "-5", "0.004"]
    )
    def test_invalid_amounts(self, amount) -> None:
        with pytest.raises(InvalidPaymentAmount):
            record_payment(_state(1000, 0, 10), amount)

    def test_fractional_cents_are_rounded(self) -> None:
        result = record_payment(_state(1000, 0, 10), "50.555")
        assert result.entry.amount_paid == Decimal("50.56")
        assert result.entry.principal_paid == Decimal("50.56")
        assert result.state.current_outstanding_balance == Decimal("949.44")

    def test_invalid_date(self) -> None:
        with pytest.raises(ValueError):
            record_payment(_state(1000, 0, 10), 100, "not-a-date")

    def test_interest_free_loan_pays_down_in_ten_payments(self) -> None:
        state = _state(1000, 0, 10)
        balances = []
        for _ in range(10):
            state = record_payment(state, 100).state
            balances.append(state.current_outstanding_balance)
        assert balances[4] == Decimal("500")
        assert balances[-1] == 0
        with pytest.raises(LoanAlreadyPaidOff):
            record_payment(state, 100)

    def test_balance_never_negative(self) -> None:
        state = _state(5000, 18, 6)
        for amount in ["2000", "75", "10000", "1", "3000", "900", "5000", "5000", "5000"]:
            if state.is_paid_off:
                break
            state = record_payment(state, amount).state
            assert state.current_outstanding_balance >= 0


class TestLedgerService:
    """Test persistence, authorization and serialization of payments."""

    def test_record_payment_persists_state_and_entry(
        self, service: LedgerService, store: InMemoryClientStore, employee, amortizing_client: Client
    ) -> None:
        client = service.add_client(employee, amortizing_client)
        service.record_payment(employee, client.client_id, "10661.85", "2024-02-15")

        stored = store.get_client(client.client_id)
        assert stored.current_outstanding_balance == Decimal("110538.15")
        assert stored.transactions == 1
        assert len(stored.payment_history) == 1
        assert stored.payment_history[0].principal_paid == Decimal("9461.85")

    def test_second_payment_uses_remaining_term(self, service, employee, amortizing_client) -> None:
        client = service.add_client(employee, amortizing_client)
        service.record_payment(employee, client.client_id, "10661.85")
        breakdown = service.next_breakdown(employee, client.client_id)
        assert breakdown.interest_portion == Decimal("1105.38")
        assert breakdown.monthly_payment == Decimal("10661.86")

    def test_paid_off_loan_leaves_balance_unchanged(self, service, store, employee, interest_free_client) -> None:
        client = service.add_client(employee, interest_free_client)
        for _ in range(10):
            service.record_payment(employee, client.client_id, 100)
        with pytest.raises(LoanAlreadyPaidOff):
            service.record_payment(employee, client.client_id, 100)
        stored = store.get_client(client.client_id)
        assert stored.current_outstanding_balance == 0
        assert len(stored.payment_history) == 10
        assert stored.transactions == 10

    def test_rejected_payment_is_not_recorded(self, service, store, employee, interest_free_client) -> None:
        client = service.add_client(employee, interest_free_client)
        with pytest.raises(InvalidPaymentAmount):
            service.record_payment(employee, client.client_id, -1)
        assert store.list_ledger_entries(client.client_id) == []

    def test_viewer_cannot_record_payment(self, service, employee, viewer, interest_free_client) -> None:
        client = service.add_client(employee, interest_free_client)
        with pytest.raises(PermissionDenied):
            service.record_payment(viewer, client.client_id, 100)

    def test_missing_identity_is_denied(self, service) -> None:
        with pytest.raises(PermissionDenied):
            service.list_clients(None)

    def test_unknown_client(self, service, employee) -> None:
        with pytest.raises(ClientNotFound):
            service.record_payment(employee, 999, 100)

    def test_custom_authorizer(self, store, admin, interest_free_client) -> None:
        service = LedgerService(store, Authorizer(permissions={}))
        with pytest.raises(PermissionDenied):
            service.add_client(admin, interest_free_client)

    def test_failed_append_surfaces_storage_failure(self, employee, interest_free_client, caplog) -> None:
        class FlakyStore(InMemoryClientStore):
            def append_ledger_entry(self, client_id: int, entry: PaymentLedgerEntry) -> None:
                raise StorageFailure("disk full")

        store = FlakyStore()
        service = LedgerService(store)
        client = service.add_client(employee, interest_free_client)
        with pytest.raises(StorageFailure):
            service.record_payment(employee, client.client_id, 100)
        # The balance write is not rolled back.
        assert store.get_client(client.client_id).current_outstanding_balance == Decimal("900")
        assert "ledger entry was not appended" in caplog.text

    def test_concurrent_payments_are_serialized(self, service, store, employee, interest_free_client) -> None:
        client = service.add_client(employee, interest_free_client)
        errors = []

        def pay() -> None:
            try:
                service.record_payment(employee, client.client_id, 100)
            except Exception as exc:  # pragma: no cover - surfaced via assertion
                errors.append(exc)

        threads = [threading.Thread(target=pay) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        entries = store.list_ledger_entries(client.client_id)
        assert [e.remaining_balance_after for e in entries] == [Decimal(900 - 100 * i) for i in range(10)]
        assert store.get_client(client.client_id).current_outstanding_balance == 0

    def test_client_schedule_uses_original_terms(self, service, employee, viewer, amortizing_client) -> None:
        client = service.add_client(employee, amortizing_client)
        service.record_payment(employee, client.client_id, 5000)
        rows = service.client_schedule(viewer, client.client_id)
        assert len(rows) == 12
        assert rows[0].starting_balance == Decimal("120000.00")

    def test_scenario_schedule(self, service, viewer) -> None:
        rows = service.scenario_schedule(viewer, 60000, 9, 24)
        assert len(rows) == 24
        assert rows[-1].ending_balance == 0

    def test_update_client_profile(self, service, employee, amortizing_client) -> None:
        client = service.add_client(employee, amortizing_client)
        updated = service.update_client(employee, client.client_id, phone="555-0100", status="Inactive")
        assert updated.phone == "555-0100"
        assert updated.status.value == "Inactive"

    def test_update_client_rejects_loan_fields(self, service, employee, amortizing_client) -> None:
        client = service.add_client(employee, amortizing_client)
        with pytest.raises(ValueError, match="loan_amount"):
            service.update_client(employee, client.client_id, loan_amount=Decimal("1"))

    def test_only_admin_deletes(self, service, store, admin, employee, amortizing_client) -> None:
        client = service.add_client(employee, amortizing_client)
        service.record_payment(employee, client.client_id, 5000)
        with pytest.raises(PermissionDenied):
            service.delete_client(employee, client.client_id)
        service.delete_client(admin, client.client_id)
        with pytest.raises(ClientNotFound):
            store.get_client(client.client_id)

    def test_payment_history_in_insertion_order(self, service, employee, viewer, interest_free_client) -> None:
        client = service.add_client(employee, interest_free_client)
        service.record_payment(employee, client.client_id, 100, "2024-05-01")
        service.record_payment(employee, client.client_id, 100, "2024-03-01")
        history = service.payment_history(viewer, client.client_id)
        assert [e.period_month for e in history] == [5, 3]

    def test_log_records_carry_client_id(self, service, employee, interest_free_client, caplog) -> None:
        client = service.add_client(employee, interest_free_client)
        with caplog.at_level(logging.INFO, logger="loan_ledger"):
            service.record_payment(employee, client.client_id, 100)
            with pytest.raises(InvalidPaymentAmount):
                service.record_payment(employee, client.client_id, "NaN")
        payment_records = [r for r in caplog.records if "payment" in r.getMessage().lower()]
        assert len(payment_records) == 2
        assert {r.client_id for r in payment_records} == {client.client_id}
        assert {r.user_id for r in payment_records} == {employee.user_id}


class TestClientSearch:
    """Test filtering of the client list."""

    @pytest.fixture
    def clients(self, service, employee, amortizing_client, interest_free_client):
        first = service.add_client(employee, amortizing_client)
        second = service.add_client(employee, interest_free_client)
        return first, second

    @pytest.mark.parametrize(
        "search,expected",
        [
            ("asha", [0]),
            ("RAVI", [1]),
            ("asha.example", [0]),
            ("120000", [0]),
            ("1000", [1]),
            ("12", [0]),
            ("  ", [0, 1]),
            (None, [0, 1]),
            ("nobody", []),
        ],
    )
    def test_list_clients_search(self, service, viewer, clients, search, expected) -> None:
        found = service.list_clients(viewer, search)
        assert [c.client_id for c in found] == [clients[i].client_id for i in expected]

    def test_outstanding_balance_is_searchable(self, service, employee, viewer, clients) -> None:
        service.record_payment(employee, clients[1].client_id, 100)
        assert [c.client_id for c in service.list_clients(viewer, "900")] == [clients[1].client_id]

    def test_digits_are_extracted_from_search(self, interest_free_client) -> None:
        assert client_matches(interest_free_client, "rs 1,000")
        assert not client_matches(interest_free_client, "xyz")
