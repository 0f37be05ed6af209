"""Client configuration loaded from environment variables.

Uses pydantic-settings so every field can be overridden via env vars,
e.g. ``TEMPMAIL_POLL_INTERVAL_SECONDS=2.5``.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings


class RetryConfig(BaseSettings):
    """Backoff settings for transient failures, driven by Tenacity.

    The wait before retry *n* (0-indexed) is
    ``initial_wait_seconds * multiplier ** n``: 1 s, 2 s, 4 s by default.
    """

    model_config = {"env_prefix": "TEMPMAIL_RETRY_"}

    max_retries: int = Field(
        default=3,
        description="Retries after the first attempt for transient failures",
    )
    initial_wait_seconds: float = Field(
        default=1.0,
        description="Wait before the first retry in seconds",
    )
    max_wait_seconds: float = Field(
        default=30.0,
        description="Upper bound for a single backoff wait in seconds",
    )
    multiplier: float = Field(default=2.0, description="Exponential backoff base")


class HttpConfig(BaseSettings):
    """HTTP client settings."""

    model_config = {"env_prefix": "TEMPMAIL_HTTP_"}

    timeout_seconds: float = Field(default=30.0, description="HTTP request timeout")
    user_agent: str = Field(
        default="tempmail-client",
        description="User-Agent header sent with every request",
    )


class PollerConfig(BaseSettings):
    """Mail poller settings."""

    model_config = {"env_prefix": "TEMPMAIL_POLL_"}

    interval_seconds: float = Field(
        default=1.0,
        description="Seconds between inbox polls",
    )


class StorageConfig(BaseSettings):
    """Durable state location. No path means state lives in memory only."""

    model_config = {"env_prefix": "TEMPMAIL_STORAGE_"}

    path: Path | None = Field(
        default=None,
        description="JSON file holding sessions, API key and provider caches",
    )


class ClientConfig(BaseSettings):
    """Root configuration for a :class:`~tempmail_client.client.TempMailClient`.

    Nested configs are populated from their own env-var prefixes.
    """

    model_config = {"env_prefix": "TEMPMAIL_"}

    default_provider: str = Field(
        default="duckmail",
        description="Provider id used when none can be inferred",
    )
    remember_passwords: bool = Field(
        default=True,
        description="Keep account passwords in the session so tokens can be re-issued",
    )
    serialize_mutations: bool = Field(
        default=True,
        description="Run login/switch/delete one at a time",
    )
    api_key: SecretStr | None = Field(
        default=None,
        description="API key overriding the stored one (domain listing, registration)",
    )
    address: str | None = Field(default=None, description="Address used by the CLI")
    password: SecretStr | None = Field(default=None, description="Password used by the CLI")
    log_level: str = Field(default="INFO", description="Log level")
    log_json: bool = Field(
        default=False,
        description="Use JSON log output instead of the console renderer",
    )

    retry: RetryConfig = Field(default_factory=RetryConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    poller: PollerConfig = Field(default_factory=PollerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
