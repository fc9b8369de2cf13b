"""JSON HTTP API for the loan ledger.

Every route except registration and login expects a bearer token. The
identity decoded from the token is handed to the view as an argument and
from there into the ledger service; nothing is kept in ambient request state.
"""

import os
from functools import wraps
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request

from loan_ledger.auth import Action, Authorizer, Identity, authenticate, issue_token, register_user, verify_token
from loan_ledger.config import AppConfig
from loan_ledger.data_models import AmortizationRow, Client, ClientStatus, PaymentLedgerEntry, Role
from loan_ledger.engine import check_term, summarize_loan
from loan_ledger.exceptions import (
    AuthenticationError,
    ClientNotFound,
    InvalidPaymentAmount,
    LoanAlreadyPaidOff,
    LoanLedgerError,
    PermissionDenied,
    StorageFailure,
    UserAlreadyExists,
)
from loan_ledger.ledger import LedgerService
from loan_ledger.logging import get_logger, setup_logging
from loan_ledger.store import create_store_from_config
from loan_ledger.utils import parse_optional_date, to_decimal

logger = get_logger(__name__)

ERROR_STATUS = {
    ClientNotFound: 404,
    LoanAlreadyPaidOff: 400,
    InvalidPaymentAmount: 400,
    UserAlreadyExists: 400,
    AuthenticationError: 401,
    PermissionDenied: 403,
    StorageFailure: 500,
}


def client_to_dict(client: Client) -> Dict[str, Any]:
    return {
        "id": client.client_id,
        "name": client.name,
        "email": client.email,
        "phone": client.phone,
        "address": client.address,
        "joined_date": client.joined_date.isoformat() if client.joined_date else None,
        "status": client.status.value,
        "revenue": float(client.revenue),
        "transactions": client.transactions,
        "loan_amount": float(client.loan_amount),
        "interest_rate": float(client.interest_rate),
        "loan_term_months": client.loan_term_months,
        "current_outstanding_balance": float(client.loan_state().current_outstanding_balance),
        "payment_history": [entry_to_dict(e) for e in client.payment_history],
    }


def entry_to_dict(entry: PaymentLedgerEntry) -> Dict[str, Any]:
    return {
        "payment_date": entry.payment_date.isoformat(),
        "amount_paid": float(entry.amount_paid),
        "principal_paid": float(entry.principal_paid),
        "interest_paid": float(entry.interest_paid),
        "remaining_balance": float(entry.remaining_balance_after),
        "payment_month": entry.period_month,
        "payment_year": entry.period_year,
    }


def row_to_dict(row: AmortizationRow) -> Dict[str, Any]:
    return {
        "month": row.month,
        "starting_balance": float(row.starting_balance),
        "payment": float(row.scheduled_payment),
        "principal": float(row.principal_portion),
        "interest": float(row.interest_portion),
        "ending_balance": float(row.ending_balance),
    }


def _client_from_json(data: Dict[str, Any]) -> Client:
    name = (data.get("name") or "").strip()
    if not name:
        raise ValueError("Client name is required")
    return Client(
        name=name,
        email=data.get("email") or "",
        phone=data.get("phone") or "",
        address=data.get("address") or "",
        joined_date=parse_optional_date(data.get("joined_date")),
        status=ClientStatus(data.get("status") or ClientStatus.ACTIVE.value),
        revenue=to_decimal(data.get("revenue") or 0),
        transactions=int(data.get("transactions") or 0),
        loan_amount=to_decimal(data.get("loan_amount") or 0),
        interest_rate=to_decimal(data.get("interest_rate") or 0),
        loan_term_months=check_term(data.get("loan_term_months") or 0),
    )


def _profile_changes_from_json(data: Dict[str, Any]) -> Dict[str, Any]:
    changes = dict(data)
    if "joined_date" in changes:
        changes["joined_date"] = parse_optional_date(changes["joined_date"])
    return changes


def create_app(config: Optional[AppConfig] = None, store=None) -> Flask:
    """Build the Flask application.

    Parameters
    ----------
    config: AppConfig | None
        Configuration; read from the environment when omitted.
    store:
        Storage backend; a ``SqlClientStore`` for ``config.database.url`` when
        omitted.
    """
    config = config or AppConfig.from_env()
    if store is None:
        store = create_store_from_config(config.database.url, config.database.echo)
    authorizer = Authorizer()
    service = LedgerService(store, authorizer)

    app = Flask(__name__)
    app.config["LEDGER_SERVICE"] = service

    def require_identity(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            header = request.headers.get("Authorization", "")
            if not header:
                raise AuthenticationError("No token, authorization denied.")
            identity = verify_token(header, config.auth.secret_key)
            return view(identity, *args, **kwargs)

        return wrapper

    @app.errorhandler(LoanLedgerError)
    def handle_ledger_error(exc: LoanLedgerError):
        status = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 400)
        if status >= 500:
            logger.error("Request failed: %s", exc)
        return jsonify({"message": str(exc)}), status

    @app.errorhandler(ValueError)
    def handle_value_error(exc: ValueError):
        return jsonify({"message": str(exc)}), 400

    @app.errorhandler(ArithmeticError)
    def handle_arithmetic_error(exc: ArithmeticError):
        # Decimal overflow or precision loss on absurdly large inputs
        return jsonify({"message": "Amount is out of range"}), 400

    @app.get("/")
    def index():
        return jsonify({"message": "Loan ledger API is running"})

    @app.post("/api/auth/register")
    def register():
        data = request.get_json(silent=True) or {}
        role = Role(data.get("role") or Role.USER.value)
        if role is not Role.USER:
            # Elevated accounts can only be created by an administrator.
            identity = verify_token(request.headers.get("Authorization", ""), config.auth.secret_key)
            authorizer.require(identity, Action.MANAGE_USERS)
        user = register_user(store, data.get("email") or "", data.get("password") or "", role)
        return jsonify({"message": "User registered successfully!", "user_id": user.user_id}), 201

    @app.post("/api/auth/login")
    def login():
        data = request.get_json(silent=True) or {}
        identity = authenticate(store, data.get("email") or "", data.get("password") or "")
        token = issue_token(identity, config.auth.secret_key, config.auth.token_ttl_minutes)
        return jsonify({"message": "Logged in successfully!", "token": token})

    @app.get("/api/clients")
    @require_identity
    def list_clients(identity: Identity):
        clients = service.list_clients(identity, request.args.get("search"))
        return jsonify([client_to_dict(c) for c in clients])

    @app.post("/api/clients")
    @require_identity
    def create_client(identity: Identity):
        client = _client_from_json(request.get_json(silent=True) or {})
        return jsonify(client_to_dict(service.add_client(identity, client))), 201

    @app.get("/api/clients/<int:client_id>")
    @require_identity
    def get_client(identity: Identity, client_id: int):
        return jsonify(client_to_dict(service.get_client(identity, client_id)))

    @app.put("/api/clients/<int:client_id>")
    @require_identity
    def update_client(identity: Identity, client_id: int):
        changes = _profile_changes_from_json(request.get_json(silent=True) or {})
        return jsonify(client_to_dict(service.update_client(identity, client_id, **changes)))

    @app.delete("/api/clients/<int:client_id>")
    @require_identity
    def delete_client(identity: Identity, client_id: int):
        service.delete_client(identity, client_id)
        return jsonify({"message": "Client deleted successfully."})

    @app.put("/api/clients/<int:client_id>/record-payment")
    @require_identity
    def record_payment(identity: Identity, client_id: int):
        data = request.get_json(silent=True) or {}
        if "amount_paid" not in data:
            raise InvalidPaymentAmount("amount_paid is required")
        result = service.record_payment(identity, client_id, data["amount_paid"], data.get("payment_date"))
        return jsonify({"message": "Payment recorded successfully!", "entry": entry_to_dict(result.entry)})

    @app.get("/api/clients/<int:client_id>/payments")
    @require_identity
    def payments(identity: Identity, client_id: int):
        return jsonify([entry_to_dict(e) for e in service.payment_history(identity, client_id)])

    @app.get("/api/clients/<int:client_id>/schedule")
    @require_identity
    def client_schedule(identity: Identity, client_id: int):
        return jsonify([row_to_dict(r) for r in service.client_schedule(identity, client_id)])

    @app.get("/api/clients/<int:client_id>/breakdown")
    @require_identity
    def breakdown(identity: Identity, client_id: int):
        result = service.next_breakdown(identity, client_id)
        return jsonify(
            {
                "monthly_payment": float(result.monthly_payment),
                "interest_portion": float(result.interest_portion),
                "principal_portion": float(result.principal_portion),
            }
        )

    @app.get("/api/loan/calculate")
    @require_identity
    def calculate(identity: Identity):
        principal = to_decimal(request.args.get("principal", "0"))
        rate = to_decimal(request.args.get("rate", "0"))
        term = check_term(request.args.get("term", "0"))
        summary = summarize_loan(principal, rate, term)
        schedule = service.scenario_schedule(identity, principal, rate, term)
        return jsonify(
            {
                "monthly_payment": float(summary.monthly_payment),
                "total_interest": float(summary.total_interest),
                "total_amount": float(summary.total_amount),
                "schedule": [row_to_dict(r) for r in schedule],
            }
        )

    @app.get("/api/dashboard")
    @require_identity
    def dashboard(identity: Identity):
        summary = service.portfolio(identity)
        return jsonify(
            {
                "total_clients": summary.total_clients,
                "active_clients": summary.active_clients,
                "total_revenue": float(summary.total_revenue),
                "average_revenue": float(summary.average_revenue),
                "total_loan_amount": float(summary.total_loan_amount),
                "total_outstanding": float(summary.total_outstanding),
                "clients_by_status": summary.clients_by_status,
            }
        )

    return app


def main() -> None:
    config = AppConfig.from_env()
    setup_logging(config.log_level, config.log_format)
    app = create_app(config)
    logger.info("Starting loan ledger API on %s:%s", config.server.host, config.server.port)
    app.run(host=config.server.host, port=config.server.port, debug=os.environ.get("FLASK_DEBUG") == "1")


if __name__ == "__main__":
    main()
