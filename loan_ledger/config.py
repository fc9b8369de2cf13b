"""Configuration management for loan-ledger."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from .exceptions import ConfigurationError


@dataclass
class DatabaseConfig:
    """Storage backend configuration."""

    url: str = "sqlite:///loan_ledger.sqlite3"
    echo: bool = False


@dataclass
class AuthConfig:
    """Token signing configuration."""

    secret_key: str = "dev-secret-key"
    token_ttl_minutes: int = 60


@dataclass
class ServerConfig:
    """HTTP API bind address."""

    host: str = "0.0.0.0"
    port: int = 5000


@dataclass
class AppConfig:
    """Main configuration for loan-ledger."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    log_level: str = "INFO"
    log_format: str = "standard"

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Create config from environment variables."""
        database = DatabaseConfig(
            url=os.getenv("LOAN_LEDGER_DATABASE_URL", "sqlite:///loan_ledger.sqlite3"),
            echo=os.getenv("LOAN_LEDGER_DATABASE_ECHO", "false").lower() == "true",
        )
        auth = AuthConfig(
            secret_key=os.getenv("LOAN_LEDGER_SECRET_KEY", "dev-secret-key"),
            token_ttl_minutes=_int_from_env("LOAN_LEDGER_TOKEN_TTL_MINUTES", 60),
        )
        server = ServerConfig(
            host=os.getenv("LOAN_LEDGER_HOST", "0.0.0.0"),
            port=_int_from_env("LOAN_LEDGER_PORT", 5000),
        )
        log_format = os.getenv("LOG_FORMAT", "standard").lower()
        if log_format not in ("standard", "json"):
            raise ConfigurationError(f"LOG_FORMAT must be 'standard' or 'json'; got {log_format}")

        return cls(
            database=database,
            auth=auth,
            server=server,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=log_format,
        )


def _int_from_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer; got {raw!r}") from exc
