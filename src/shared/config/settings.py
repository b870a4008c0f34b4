"""Configuration management with Pydantic Settings.

Environment variables are loaded from:
1. Environment variables (highest priority)
2. .env file (development)
3. Defaults (lowest priority)
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Logging level."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Logging format."""

    JSON = "json"
    TEXT = "text"


class DatabaseSettings(BaseSettings):
    """Relational storage configuration.

    PostgreSQL is used unless DATABASE_URL points somewhere else
    (e.g. ``sqlite+aiosqlite:///installer.db`` for a local install).
    """

    model_config = SettingsConfigDict(env_prefix="POSTGRES_", populate_by_name=True)

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    user: str = Field(default="installer", description="Database user")
    password: str = Field(default="", description="Database password")
    database: str = Field(default="installer", description="Database name")
    url_override: str | None = Field(
        default=None,
        alias="DATABASE_URL",
        description="Full SQLAlchemy async URL, takes precedence over the fields above",
    )
    echo: bool = Field(default=False, description="Log every SQL statement")

    @property
    def async_url(self) -> str:
        """Build async database URL (asyncpg driver unless overridden)."""
        if self.url_override:
            return self.url_override
        return f"postgresql+asyncpg://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"


class EventBusSettings(BaseSettings):
    """Event fan-out configuration."""

    model_config = SettingsConfigDict(env_prefix="EVENTS_")

    subscription_buffer_size: int = Field(
        default=1000,
        description="Events buffered per subscriber before the oldest is dropped",
    )

    @field_validator("subscription_buffer_size")
    @classmethod
    def validate_buffer_size(cls, v: int) -> int:
        """A subscription must be able to hold at least one event."""
        return max(1, v)


class CredentialSettings(BaseSettings):
    """Cloud credential resolution."""

    model_config = SettingsConfigDict(env_prefix="CREDENTIALS_")

    env_credential_id: str = Field(
        default="aws_env",
        description="Reserved id that resolves credentials from the process environment",
    )


class AWSDefaults(BaseSettings):
    """Defaults applied to AWS launch requests."""

    model_config = SettingsConfigDict(env_prefix="AWS_DEFAULT_")

    region: str = Field(default="us-east-1", description="AWS region")
    instance_type: str = Field(default="m4.large", description="EC2 instance type")
    num_instances: int = Field(default=1, description="Cluster size")
    vpc_cidr: str = Field(default="10.0.0.0/16", description="VPC CIDR block")
    subnet_cidr: str = Field(default="10.0.0.0/21", description="Subnet CIDR block")


class Settings(BaseSettings):
    """Main application settings.

    All settings can be overridden via environment variables.
    For nested settings, use the appropriate prefix (e.g., POSTGRES_HOST).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application metadata
    app_name: str = Field(default="cluster-installer", description="Application name")
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        alias="ENV",
        description="Deployment environment",
    )

    # Logging configuration
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    log_format: LogFormat = Field(default=LogFormat.JSON, description="Logging format")

    # Nested settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    events: EventBusSettings = Field(default_factory=EventBusSettings)
    credentials: CredentialSettings = Field(default_factory=CredentialSettings)
    aws: AWSDefaults = Field(default_factory=AWSDefaults)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses LRU cache to avoid re-parsing environment variables.
    """
    return Settings()
