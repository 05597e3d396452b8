"""Application configuration using pydantic-settings."""

from functools import lru_cache

from pydantic import Field, PositiveInt, RedisDsn, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

from throttle.constants import (
    DEFAULT_EXCEEDED_HANDLER,
    DEFAULT_LIMIT,
    DEFAULT_PERIOD_SECONDS,
)


class Settings(BaseSettings):
    """Settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Throttled Application"
    environment: str = "development"  # development, staging, production
    log_level: str = "INFO"

    # Redis counter store; throttling is inactive while this is unset
    redis_url: RedisDsn | None = None

    # Throttle rule
    throttle_limit: PositiveInt = DEFAULT_LIMIT
    throttle_period: PositiveInt = DEFAULT_PERIOD_SECONDS
    throttle_prefix: str | None = None
    throttle_exceeded: str = Field(default=DEFAULT_EXCEEDED_HANDLER, min_length=1)
    throttle_fail_open: bool = True

    # Proxies whose X-Forwarded-For header is trusted for the client address
    trusted_proxies: list[str] = []

    # API Documentation
    api_docs_base_url: str = "https://api.example.com"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
