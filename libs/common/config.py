from decimal import Decimal
from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings."""

    # Application
    ENVIRONMENT: Literal["local", "development", "production", "test"] = "local"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800

    # Redis (ARQ worker) and rate limiting
    REDIS_URL: str = "redis://localhost:6379/0"
    RATE_LIMIT_STORAGE_URI: str = "memory://"

    # Auth
    # Placeholder keeps local/test runs from failing; real deployments override via env.
    AUTH_JWT_SECRET: str = "test-jwt-secret"
    AUTH_JWT_ALGORITHM: str = "HS256"

    # Pricing
    CURRENCY: str = "usd"
    TAX_RATE: Decimal = Decimal("0.0875")  # Flat regional rate

    # Cart sessions
    CART_TTL_SECONDS: int = 604800  # 7 days
    CART_MAX_LINE_QUANTITY: int = 10

    # Inventory
    LOW_STOCK_THRESHOLD: int = 5

    # Payment gateways
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_API_BASE: str = "https://api.stripe.com"
    SQUARE_ACCESS_TOKEN: str = ""
    SQUARE_LOCATION_ID: str = ""
    SQUARE_API_BASE: str = "https://connect.squareup.com"

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("DATABASE_URL")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str]) -> str:
        if isinstance(v, str):
            if v.startswith("postgresql://"):
                return v.replace("postgresql://", "postgresql+psycopg://", 1)
        return v

    @field_validator("TAX_RATE")
    @classmethod
    def tax_rate_is_fraction(cls, v: Decimal) -> Decimal:
        if v < 0 or v >= 1:
            raise ValueError("TAX_RATE must be a fraction between 0 and 1")
        return v


@lru_cache
def get_settings() -> Settings:
    """
    Return the global settings instance, cached.
    """
    return Settings()
