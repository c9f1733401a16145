"""Application configuration via pydantic-settings."""

from __future__ import annotations

from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Borrowhood"
    app_version: str = "1.0.0"
    environment: Literal["development", "test", "staging", "production"] = "development"
    debug: bool = False
    api_prefix: str = "/api/v1"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    workers: int = 4

    # Database
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "borrowhood"
    postgres_password: str = Field(default="borrowhood_secret")
    postgres_db: str = "borrowhood"
    db_pool_size: int = 20
    db_max_overflow: int = 10
    database_url_override: Optional[str] = None  # e.g. sqlite+aiosqlite:// for tests

    @computed_field
    @property
    def database_url(self) -> str:
        """Async database connection URL."""
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # Redis
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: Optional[str] = None
    redis_db: int = 0

    @computed_field
    @property
    def redis_url(self) -> str:
        """Redis connection URL."""
        auth = f":{self.redis_password}@" if self.redis_password else ""
        return f"redis://{auth}{self.redis_host}:{self.redis_port}/{self.redis_db}"

    # JWT Authentication
    jwt_secret_key: str = Field(default="your-super-secret-key-change-in-production")
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 15

    # Payments
    payment_gateway: Literal["stripe", "manual"] = "manual"
    stripe_secret_key: Optional[str] = None
    stripe_api_version: str = "2024-06-20"
    stripe_test_mode: bool = False  # allow sk_test_ keys outside production
    currency: str = "usd"
    min_charge_cents: int = 50

    # Fees (percent)
    platform_fee_percent: float = 2.0
    organizer_fee_percent: float = 2.0

    # Access gate
    access_check_fail_open: bool = True  # server stays the authority on failure
    subscription_access_backend: Literal["local", "http"] = "local"
    subscription_service_url: Optional[str] = None
    subscription_check_timeout: float = 5.0

    # Lifecycle policy
    completion_requires_both_ratings: bool = True
    max_dispute_evidence: int = 20
    max_evidence_per_request: int = 10

    # Idempotency
    idempotency_ttl_hours: int = 24

    # Push Notifications (Firebase HTTP v1)
    firebase_project_id: Optional[str] = None
    firebase_access_token: Optional[str] = None

    # Throttling of transaction actions (per user, per minute)
    transaction_actions_per_minute: int = 30
    rating_actions_per_minute: int = 10
    actions_per_transaction_per_minute: int = 10

    # Logging
    slow_request_seconds: float = 1.0

    # CORS
    cors_origins: List[str] = ["http://localhost:3000", "http://localhost:8081"]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
