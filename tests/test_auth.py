"""Tests for roles, password handling and tokens."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from loan_ledger.auth import (
    Action,
    Authorizer,
    Identity,
    authenticate,
    check_password,
    hash_password,
    issue_token,
    register_user,
    verify_token,
)
from loan_ledger.data_models import Role
from loan_ledger.exceptions import AuthenticationError, PermissionDenied, UserAlreadyExists

SECRET = "test-secret-key-with-enough-length-for-hs256"


class TestAuthorizer:
    @pytest.mark.parametrize(
        "role,action,allowed",
        [
            (Role.USER, Action.VIEW_CLIENTS, True),
            (Role.USER, Action.VIEW_SCHEDULE, True),
            (Role.USER, Action.RECORD_PAYMENT, False),
            (Role.USER, Action.MANAGE_CLIENTS, False),
            (Role.EMPLOYEE, Action.RECORD_PAYMENT, True),
            (Role.EMPLOYEE, Action.MANAGE_CLIENTS, True),
            (Role.EMPLOYEE, Action.DELETE_CLIENTS, False),
            (Role.EMPLOYEE, Action.MANAGE_USERS, False),
            (Role.ADMIN, Action.DELETE_CLIENTS, True),
            (Role.ADMIN, Action.MANAGE_USERS, True),
        ],
    )
    def test_role_table(self, role, action, allowed) -> None:
        identity = Identity(user_id=1, role=role)
        assert Authorizer().is_allowed(identity, action) is allowed

    def test_anonymous_is_denied(self) -> None:
        with pytest.raises(PermissionDenied, match="anonymous"):
            Authorizer().require(None, Action.VIEW_CLIENTS)

    def test_require_names_role_and_action(self, viewer) -> None:
        with pytest.raises(PermissionDenied, match="USER.*record_payment"):
            Authorizer().require(viewer, Action.RECORD_PAYMENT)


class TestPasswords:
    def test_hash_is_not_plaintext(self) -> None:
        hashed = hash_password("s3cret")
        assert hashed != "s3cret"
        assert check_password(hashed, "s3cret")
        assert not check_password(hashed, "wrong")


class TestTokens:
    def test_round_trip(self, employee) -> None:
        token = issue_token(employee, SECRET)
        assert verify_token(token, SECRET) == employee

    def test_bearer_prefix_accepted(self, admin) -> None:
        token = issue_token(admin, SECRET)
        assert verify_token(f"Bearer {token}", SECRET) == admin

    def test_wrong_secret(self, admin) -> None:
        token = issue_token(admin, SECRET)
        with pytest.raises(AuthenticationError):
            verify_token(token, "other-secret")

    def test_expired(self, admin) -> None:
        token = issue_token(admin, SECRET, ttl_minutes=-1)
        with pytest.raises(AuthenticationError, match="expired"):
            verify_token(token, SECRET)

    def test_garbage(self) -> None:
        with pytest.raises(AuthenticationError):
            verify_token("not-a-token", SECRET)

    def test_missing_claims(self) -> None:
        exp = datetime.now(timezone.utc) + timedelta(minutes=5)
        token = jwt.encode({"id": 1, "exp": exp}, SECRET, algorithm="HS256")
        with pytest.raises(AuthenticationError, match="claims"):
            verify_token(token, SECRET)

    def test_unknown_role(self) -> None:
        exp = datetime.now(timezone.utc) + timedelta(minutes=5)
        token = jwt.encode({"id": 1, "role": "ROOT", "exp": exp}, SECRET, algorithm="HS256")
        with pytest.raises(AuthenticationError):
            verify_token(token, SECRET)


class TestRegistration:
    def test_register_and_authenticate(self, store) -> None:
        user = register_user(store, "  Ops@Example.com ", "pw", Role.EMPLOYEE)
        assert user.email == "ops@example.com"
        assert user.password_hash != "pw"

        identity = authenticate(store, "OPS@example.com", "pw")
        assert identity == Identity(user_id=user.user_id, role=Role.EMPLOYEE, email="ops@example.com")

    def test_duplicate_email(self, store) -> None:
        register_user(store, "a@example.com", "pw")
        with pytest.raises(UserAlreadyExists):
            register_user(store, "A@example.com", "other")

    @pytest.mark.parametrize("email,password", [("", "pw"), ("a@example.com", "")])
    def test_missing_credentials(self, store, email, password) -> None:
        with pytest.raises(AuthenticationError):
            register_user(store, email, password)

    def test_wrong_password(self, store) -> None:
        register_user(store, "a@example.com", "pw")
        with pytest.raises(AuthenticationError, match="Invalid credentials"):
            authenticate(store, "a@example.com", "nope")

    def test_unknown_user(self, store) -> None:
        with pytest.raises(AuthenticationError):
            authenticate(store, "ghost@example.com", "pw")
