"""Authentication and role-based authorization.

Identities are passed explicitly into every operation that needs one; nothing
here keeps session state. Tokens are HS256 JWTs carrying the user id and role.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, FrozenSet, Optional

import jwt
from werkzeug.security import check_password_hash, generate_password_hash

from .data_models import Role, User
from .exceptions import AuthenticationError, PermissionDenied, UserAlreadyExists
from .logging import get_logger

logger = get_logger(__name__)

TOKEN_ALGORITHM = "HS256"


class Action(str, Enum):
    """Operations guarded by the role policy."""

    VIEW_CLIENTS = "view_clients"
    MANAGE_CLIENTS = "manage_clients"
    DELETE_CLIENTS = "delete_clients"
    RECORD_PAYMENT = "record_payment"
    VIEW_SCHEDULE = "view_schedule"
    MANAGE_USERS = "manage_users"


_READ_ONLY = frozenset({Action.VIEW_CLIENTS, Action.VIEW_SCHEDULE})

ROLE_PERMISSIONS: Dict[Role, FrozenSet[Action]] = {
    Role.USER: _READ_ONLY,
    Role.EMPLOYEE: _READ_ONLY | {Action.MANAGE_CLIENTS, Action.RECORD_PAYMENT},
    Role.ADMIN: frozenset(Action),
}


@dataclass(frozen=True)
class Identity:
    """The authenticated caller of an operation."""

    user_id: int
    role: Role
    email: str = ""


class Authorizer:
    """Allow/deny decisions from a role-to-actions table."""

    def __init__(self, permissions: Optional[Dict[Role, FrozenSet[Action]]] = None) -> None:
        self._permissions = permissions if permissions is not None else ROLE_PERMISSIONS

    def is_allowed(self, identity: Optional[Identity], action: Action) -> bool:
        if identity is None:
            return False
        return action in self._permissions.get(identity.role, frozenset())

    def require(self, identity: Optional[Identity], action: Action) -> None:
        """Raise ``PermissionDenied`` unless ``identity`` may perform ``action``."""
        if not self.is_allowed(identity, action):
            role = identity.role.value if identity else "anonymous"
            raise PermissionDenied(f"Role {role} is not allowed to {action.value}")


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def check_password(password_hash: str, password: str) -> bool:
    return check_password_hash(password_hash, password)


def issue_token(identity: Identity, secret: str, ttl_minutes: int = 60) -> str:
    """Sign a token for ``identity`` that expires after ``ttl_minutes``."""
    payload = {
        "id": identity.user_id,
        "role": identity.role.value,
        "email": identity.email,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=ttl_minutes),
    }
    return jwt.encode(payload, secret, algorithm=TOKEN_ALGORITHM)


def verify_token(token: str, secret: str) -> Identity:
    """Decode a bearer token back into an ``Identity``.

    A leading ``"Bearer "`` prefix is accepted.

    Raises
    ------
    AuthenticationError
        If the token is expired, tampered with or missing claims.
    """
    if token.startswith("Bearer "):
        token = token[len("Bearer "):]
    try:
        payload = jwt.decode(token, secret, algorithms=[TOKEN_ALGORITHM])
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationError("Token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthenticationError("Token is not valid") from exc
    try:
        return Identity(
            user_id=int(payload["id"]),
            role=Role(payload["role"]),
            email=payload.get("email", ""),
        )
    except (KeyError, ValueError) as exc:
        raise AuthenticationError("Token is missing required claims") from exc


def register_user(store, email: str, password: str, role: Role = Role.USER) -> User:
    """Create a user account with a hashed password."""
    email = email.strip().lower()
    if not email or not password:
        raise AuthenticationError("Email and password are required")
    if store.get_user_by_email(email) is not None:
        raise UserAlreadyExists(f"User {email} already exists")
    user = store.add_user(User(email=email, password_hash=hash_password(password), role=role))
    logger.info("Registered user %s with role %s", email, role.value)
    return user


def authenticate(store, email: str, password: str) -> Identity:
    """Check credentials and return the caller's identity."""
    user = store.get_user_by_email(email.strip().lower())
    if user is None or not check_password(user.password_hash, password):
        logger.warning("Failed sign-in for %s", email)
        raise AuthenticationError("Invalid credentials")
    return Identity(user_id=user.user_id, role=user.role, email=user.email)
