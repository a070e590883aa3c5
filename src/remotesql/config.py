"""
Client configuration for remotesql.

This module provides:
- ClientConfig: Connection, retry and naming settings for a backend
- ClientConfig.from_env: Build a configuration from environment variables

Environment variables:
    SUPABASE_URL / VITE_SUPABASE_URL: Project URL (required)
    SUPABASE_ANON_KEY / VITE_SUPABASE_ANON_KEY: Anonymous API key (required)
    SUPABASE_ACCESS_TOKEN: User session token used as the bearer token
    SUPABASE_DB_URL: Direct Postgres DSN for the database fallback
    REMOTESQL_TIMEOUT: HTTP timeout in seconds
    REMOTESQL_MAX_RETRIES: Default retry budget
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from remotesql.exceptions import ConfigurationError
from remotesql.retry import RetryConfig

_URL_VARS = ("SUPABASE_URL", "VITE_SUPABASE_URL")
_KEY_VARS = ("SUPABASE_ANON_KEY", "VITE_SUPABASE_ANON_KEY")


@dataclass(frozen=True)
class ClientConfig:
    """
    Configuration for talking to a hosted Postgres backend.

    Attributes:
        url: Project base URL (e.g. "https://abc.supabase.co")
        anon_key: Anonymous API key, sent as the ``apikey`` header
        access_token: Session token for ``Authorization: Bearer``.
            Falls back to ``anon_key`` when absent.
        database_url: Optional direct DSN (``postgresql+asyncpg://...``)
            enabling the SQLAlchemy direct executor and log store
        timeout: HTTP timeout in seconds
        max_retries: Default retry budget for public operations
        retry: Backoff configuration shared by every retry loop
        exec_function: Name of the server-side SQL execution function
        edge_function: Edge function used by the executor
        bootstrap_edge_function: Edge function used by the bootstrapper
        status_function: Remote aggregate status function
        log_table: Audit table name
        enable_tracing: Whether to create OpenTelemetry spans

    Example:
        >>> config = ClientConfig(
        ...     url="https://abc.supabase.co",
        ...     anon_key="public-anon-key",
        ... )
        >>> config.rest_url
        'https://abc.supabase.co/rest/v1'
    """

    url: str
    anon_key: str
    access_token: str | None = None
    database_url: str | None = None

    timeout: float = 30.0
    max_retries: int = 2
    retry: RetryConfig = field(default_factory=RetryConfig)

    exec_function: str = "exec_sql"
    edge_function: str = "execute-sql"
    bootstrap_edge_function: str = "sql-executor"
    status_function: str = "check_migration_system_status"
    log_table: str = "migration_logs"

    enable_tracing: bool = True

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if not self.url or not self.url.strip():
            raise ConfigurationError("url", "a backend URL is required")

        if not self.url.startswith(("http://", "https://")):
            raise ConfigurationError("url", f"must start with http:// or https://, got {self.url!r}")

        if not self.anon_key or not self.anon_key.strip():
            raise ConfigurationError("anon_key", "an API key is required")

        if self.timeout <= 0:
            raise ConfigurationError("timeout", f"must be positive, got {self.timeout}")

        if self.max_retries < 0:
            raise ConfigurationError(
                "max_retries", f"must be >= 0, got {self.max_retries}. Use 0 for no retries."
            )

        # Normalise the base URL once so path joins never double the slash
        object.__setattr__(self, "url", self.url.rstrip("/"))

    @property
    def bearer_token(self) -> str:
        return self.access_token or self.anon_key

    @property
    def rest_url(self) -> str:
        return f"{self.url}/rest/v1"

    @property
    def auth_url(self) -> str:
        return f"{self.url}/auth/v1"

    @property
    def functions_url(self) -> str:
        return f"{self.url}/functions/v1"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides: object) -> ClientConfig:
        """
        Build a configuration from environment variables.

        Args:
            environ: Mapping to read from (defaults to ``os.environ``)
            **overrides: Explicit values that win over the environment

        Returns:
            A validated ClientConfig

        Raises:
            ConfigurationError: If a required variable is missing or a
                numeric variable cannot be parsed
        """
        env = os.environ if environ is None else environ

        def first(names: tuple[str, ...]) -> str | None:
            for name in names:
                value = env.get(name)
                if value:
                    return value
            return None

        values: dict[str, object] = {
            "url": first(_URL_VARS) or "",
            "anon_key": first(_KEY_VARS) or "",
            "access_token": env.get("SUPABASE_ACCESS_TOKEN") or None,
            "database_url": env.get("SUPABASE_DB_URL") or None,
        }

        if timeout := env.get("REMOTESQL_TIMEOUT"):
            try:
                values["timeout"] = float(timeout)
            except ValueError as e:
                raise ConfigurationError("timeout", f"not a number: {timeout!r}") from e

        if max_retries := env.get("REMOTESQL_MAX_RETRIES"):
            try:
                values["max_retries"] = int(max_retries)
            except ValueError as e:
                raise ConfigurationError("max_retries", f"not an integer: {max_retries!r}") from e

        values.update(overrides)
        return cls(**values)  # type: ignore[arg-type]


__all__ = ["ClientConfig"]
