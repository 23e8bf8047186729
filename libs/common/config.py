from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings."""

    # Application
    ENVIRONMENT: Literal["local", "test", "development", "production"] = "local"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800

    # Auth (Supabase-issued HS256 tokens)
    SUPABASE_JWT_SECRET: str = "test-jwt-secret"

    # Payment gateways
    # "flutterwave" is the primary gateway, "paystack" the legacy one.
    PAYMENTS_PROVIDER: Literal["flutterwave", "paystack"] = "flutterwave"
    PAYSTACK_SECRET_KEY: str = ""
    PAYSTACK_API_BASE_URL: str = "https://api.paystack.co"
    FLUTTERWAVE_SECRET_KEY: str = ""
    FLUTTERWAVE_API_BASE_URL: str = "https://api.flutterwave.com"
    GATEWAY_TIMEOUT_SECONDS: float = 30.0

    # Settlement
    SETTLEMENT_CURRENCY: str = "NGN"
    ESCROW_HOLD_MINUTES: int = 5
    SETTLEMENT_MAX_ATTEMPTS: int = 3

    # Payment plans
    MAX_PLAN_INSTALLMENTS: int = 36
    MAX_PLAN_DAYS: int = 3650

    # Escrow sweep (cron)
    ESCROW_SWEEP_SCAN_LIMIT: int = 300
    ESCROW_SWEEP_BATCH_SIZE: int = 60

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_STORAGE_URI: str = "memory://"
    API_RATE_LIMIT: str = "100/minute"
    PAYMENT_RATE_LIMIT: str = "30/minute"

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

    @field_validator("SETTLEMENT_CURRENCY")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.strip().upper()


@lru_cache
def get_settings() -> Settings:
    """
    Return the global settings instance, cached.
    """
    return Settings()
