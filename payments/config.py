from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service settings loaded from environment variables / .env."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="Payments", alias="APP_NAME")
    environment: Literal["development", "staging", "production", "test"] = Field(
        default="development",
        alias="ENVIRONMENT",
    )
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./payments.db",
        alias="DATABASE_URL",
    )

    stripe_secret_key: Optional[str] = Field(default=None, alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: Optional[str] = Field(default=None, alias="STRIPE_WEBHOOK_SECRET")
    stripe_price_pro: str = Field(default="price_pro_monthly", alias="STRIPE_PRICE_PRO")
    stripe_price_enterprise: str = Field(
        default="price_enterprise_monthly",
        alias="STRIPE_PRICE_ENTERPRISE",
    )
    checkout_success_url: str = Field(
        default="https://xaostech.io/account?checkout=success",
        alias="CHECKOUT_SUCCESS_URL",
    )
    checkout_cancel_url: str = Field(
        default="https://xaostech.io/pricing?checkout=canceled",
        alias="CHECKOUT_CANCEL_URL",
    )
    checkout_period_days: int = Field(default=30, ge=1, alias="CHECKOUT_PERIOD_DAYS")

    jwt_secret: Optional[str] = Field(default=None, alias="JWT_SECRET")

    cors_origins: str = Field(default="*", alias="CORS_ORIGINS")

    @property
    def cors_origin_list(self) -> list[str]:
        """CORS_ORIGINS is comma-separated."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        return value.strip().upper()


@lru_cache
def get_settings() -> Settings:
    return Settings()
