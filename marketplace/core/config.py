"""Application configuration using pydantic-settings."""

import uuid
from decimal import Decimal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All required database parameters must be provided via environment
    variables or a .env file. Missing required parameters will raise
    a ValidationError at application startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra environment variables
    )

    # Database - Required
    POSTGRES_HOST: str
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str
    POSTGRES_PASSWORD: str
    POSTGRES_DB: str

    # Full URL override, e.g. sqlite+aiosqlite:///./dev.db for local runs
    DATABASE_URL: str | None = None

    # Redis - Optional with defaults
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379

    # Commission defaults (percentages) used when no CommissionConfig row is active
    DEFAULT_COMMISSION_RATE: Decimal = Field(default=Decimal("5.00"))
    DEFAULT_AFFILIATE_COMMISSION_RATE: Decimal = Field(default=Decimal("1.00"))

    # Owner of the wallet that collects platform commission
    PLATFORM_USER_ID: uuid.UUID | None = None

    # Transactions
    LOCK_TIMEOUT_MS: int = Field(default=5000, gt=0)
    TRANSIENT_RETRY_ATTEMPTS: int = Field(default=3, ge=1)

    # Application
    LOG_LEVEL: str = "INFO"
    DEBUG: bool = False

    @field_validator("DEFAULT_COMMISSION_RATE", "DEFAULT_AFFILIATE_COMMISSION_RATE")
    @classmethod
    def validate_rate(cls, value: Decimal) -> Decimal:
        """Commission rates are percentages in the closed range [0, 100]."""
        if value < Decimal("0") or value > Decimal("100"):
            raise ValueError("commission rate must be between 0 and 100")
        return value

    @property
    def database_url(self) -> str:
        """Construct async PostgreSQL database URL with asyncpg driver."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def celery_broker_url(self) -> str:
        """Construct Celery broker URL using Redis settings."""
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/0"

    @property
    def celery_result_backend(self) -> str:
        """Construct Celery result backend URL using Redis settings."""
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/0"


# Singleton settings instance - lazily loaded
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the application settings singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
