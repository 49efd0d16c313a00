"""Server configuration module.

Provides HTTP listener and runtime settings with environment variable support.
"""

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerSettings(BaseSettings):
    """Server settings with environment variable support.

    Environment variables:
    - PORT: Listener port (default: 8080)
    - BIND_HOST: Listener address (default: 0.0.0.0)
    - ENVIRONMENT or NODE_ENV: Runtime environment (default: production)
    - STATIC_DIR: Prebuilt application directory (default: dist)
    - SHUTDOWN_GRACE_PERIOD: Seconds to wait for the database to close (default: 5)
    - LOG_LEVEL: Log level (default: INFO)
    """

    port: int = Field(default=8080, description="Listener port")
    bind_host: str = Field(default="0.0.0.0", description="Listener address")
    environment: str = Field(
        default="production",
        validation_alias=AliasChoices("ENVIRONMENT", "NODE_ENV"),
        description="Runtime environment",
    )
    static_dir: str = Field(
        default="dist", description="Directory holding the prebuilt application"
    )
    shutdown_grace_period: float = Field(
        default=5.0,
        gt=0,
        description="Seconds to wait for the database connection to close",
    )
    log_level: str = Field(default="INFO", description="Log level")

    model_config = SettingsConfigDict(
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment.lower() == "development"
