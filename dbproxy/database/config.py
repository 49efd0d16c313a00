"""Database configuration module.

Provides type-safe database settings with environment variable support and
builds the immutable connection parameters used for every connect attempt.
"""

import ssl
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL

DEFAULT_MAX_RETRIES = 5
DEFAULT_RETRY_DELAY = 5.0


class ConnectionConfig(BaseModel):
    """Connection parameters for a single connect attempt."""

    model_config = ConfigDict(frozen=True)

    host: str
    port: int = 5432
    database: str
    user: str
    password: str | None = Field(default=None, repr=False)
    ssl_enabled: bool = True
    ssl_verify: bool = False
    connect_timeout: float = 30.0
    query_timeout: float = 30.0

    def get_sqlalchemy_url(self) -> URL:
        """Get SQLAlchemy URL for the asyncpg driver."""
        return URL.create(
            "postgresql+asyncpg",
            username=self.user,
            password=self.password,
            host=self.host,
            port=self.port,
            database=self.database,
        )

    def get_ssl_context(self) -> ssl.SSLContext | bool:
        """Get the TLS policy in the form asyncpg expects."""
        if not self.ssl_enabled:
            return False

        context = ssl.create_default_context()
        if not self.ssl_verify:
            # Accept self-signed server certificates
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    def get_connect_args(self) -> dict[str, Any]:
        """Get driver-level connect arguments."""
        return {
            "timeout": self.connect_timeout,
            "command_timeout": self.query_timeout,
            "ssl": self.get_ssl_context(),
        }

    def describe(self) -> dict[str, Any]:
        """Describe the target without credentials, for logging."""
        return {
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "user": self.user,
            "ssl": self.ssl_enabled,
        }


class DatabaseSettings(BaseSettings):
    """Database settings with environment variable support.

    Connection target, first match wins:
    - host: PGHOST, VITE_AZURE_DB_HOST (default: localhost)
    - database: PGDATABASE, VITE_AZURE_DB_NAME (default: postgres)
    - user: PGUSER, VITE_AZURE_DB_USER (default: postgres)
    - password: PGPASSWORD, VITE_AZURE_DB_PASSWORD (default: none)
    - port: PGPORT (default: 5432)

    Connection policy:
    - DB_SSL: Use TLS (default: true)
    - DB_SSL_VERIFY: Verify the server certificate (default: false)
    - DB_CONNECT_TIMEOUT: Connect timeout in seconds (default: 30)
    - DB_QUERY_TIMEOUT: Statement timeout in seconds (default: 30)
    - DB_HEALTH_PROBE_TIMEOUT: Liveness probe timeout in seconds (default: 5)
    - DB_MAX_RETRIES: Connect retries before giving up (default: 5)
    - DB_RETRY_DELAY: Delay between connect retries in seconds (default: 5)
    - DB_LOG_QUERY_VALUES: Log raw query parameter values (default: false)
    """

    host: str = Field(
        default="localhost",
        validation_alias=AliasChoices("PGHOST", "VITE_AZURE_DB_HOST"),
        description="Database host",
    )
    port: int = Field(
        default=5432,
        validation_alias=AliasChoices("PGPORT"),
        description="Database port",
    )
    database: str = Field(
        default="postgres",
        validation_alias=AliasChoices("PGDATABASE", "VITE_AZURE_DB_NAME"),
        description="Database name",
    )
    user: str = Field(
        default="postgres",
        validation_alias=AliasChoices("PGUSER", "VITE_AZURE_DB_USER"),
        description="Database user",
    )
    password: str | None = Field(
        default=None,
        validation_alias=AliasChoices("PGPASSWORD", "VITE_AZURE_DB_PASSWORD"),
        description="Database password",
        repr=False,
    )

    ssl: bool = Field(default=True, description="Use TLS for the connection")
    ssl_verify: bool = Field(
        default=False, description="Verify the server TLS certificate"
    )
    connect_timeout: float = Field(
        default=30.0, gt=0, description="Connection timeout in seconds"
    )
    query_timeout: float = Field(
        default=30.0, gt=0, description="Statement timeout in seconds"
    )
    health_probe_timeout: float = Field(
        default=5.0, gt=0, description="Liveness probe timeout in seconds"
    )
    max_retries: int = Field(
        default=DEFAULT_MAX_RETRIES,
        ge=0,
        description="Connect retries before the supervisor gives up",
    )
    retry_delay: float = Field(
        default=DEFAULT_RETRY_DELAY,
        ge=0,
        description="Delay between connect retries in seconds",
    )
    log_query_values: bool = Field(
        default=False, description="Log raw query parameter values"
    )

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    def to_connection_config(self) -> ConnectionConfig:
        """Build the immutable connection parameters."""
        return ConnectionConfig(
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.user,
            password=self.password,
            ssl_enabled=self.ssl,
            ssl_verify=self.ssl_verify,
            connect_timeout=self.connect_timeout,
            query_timeout=self.query_timeout,
        )


def get_database_settings() -> DatabaseSettings:
    """Read database settings from the current environment."""
    return DatabaseSettings()


def build_connection_config() -> ConnectionConfig:
    """Build connection parameters from the current environment.

    Settings are read again on every call so that a reconnect picks up
    environment changes.
    """
    return get_database_settings().to_connection_config()
