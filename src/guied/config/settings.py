"""Application configuration schema and validation."""

from typing import Literal

from pydantic import AliasChoices, Field, PostgresDsn, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    env: Literal["dev", "staging", "prod"] = Field(
        ...,
        description="Application environment",
    )
    db_dsn: PostgresDsn = Field(
        ...,
        description="PostgreSQL database connection string",
    )
    db_pool_min: int = Field(
        default=2,
        ge=1,
        description="Minimum database connection pool size",
    )
    db_pool_max: int = Field(
        default=10,
        ge=1,
        description="Maximum database connection pool size",
    )
    mp_access_token: SecretStr = Field(
        default=SecretStr(""),
        description="Mercado Pago access token (Bearer)",
    )
    mp_api_base_url: str = Field(
        default="https://api.mercadopago.com",
        description="Mercado Pago REST API base URL",
    )
    provider_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=60,
        description="Total timeout for each outbound provider call",
    )
    notification_url: str = Field(
        default="https://guied-subscriptions-api.onrender.com/webhook/mercadopago",
        description="Webhook URL sent to Mercado Pago with each preference",
    )
    checkout_success_url: str = Field(
        default="https://guied.app/success",
        description="Redirect after approved checkout",
    )
    checkout_failure_url: str = Field(
        default="https://guied.app/failure",
        description="Redirect after failed checkout",
    )
    checkout_pending_url: str = Field(
        default="https://guied.app/pending",
        description="Redirect after pending checkout",
    )
    currency_id: str = Field(
        default="BRL",
        description="Currency for checkout items",
    )
    plan_prices: dict[str, float] = Field(
        default={"pro": 9.9, "pro_plus": 19.9},
        description="Monthly unit price per plan",
    )
    plan_titles: dict[str, str] = Field(
        default={
            "pro": "Assinatura Guied – PRO (Mensal)",
            "pro_plus": "Assinatura Guied – PRO+ (Mensal)",
        },
        description="Checkout item title per plan",
    )
    subscription_period_days: int = Field(
        default=30,
        ge=1,
        le=366,
        description="Length of one paid period (days)",
    )
    supabase_url: str = Field(
        default="",
        description="Supabase project URL for account erasure",
    )
    supabase_service_role_key: SecretStr = Field(
        default=SecretStr(""),
        description="Supabase service role key (admin API)",
    )
    server_host: str = Field(
        default="0.0.0.0",
        description="HTTP bind address",
    )
    server_port: int = Field(
        default=10000,
        ge=1,
        le=65535,
        validation_alias=AliasChoices("server_port", "port"),
        description="HTTP port (PORT is honored for hosted platforms)",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )

    @field_validator("db_pool_max")
    @classmethod
    def validate_pool_max(cls, v: int, info) -> int:
        """Ensure pool_max >= pool_min."""
        if "db_pool_min" in info.data and v < info.data["db_pool_min"]:
            raise ValueError("db_pool_max must be >= db_pool_min")
        return v

    @field_validator("plan_prices")
    @classmethod
    def validate_plan_prices(cls, v: dict[str, float]) -> dict[str, float]:
        """Prices must be positive."""
        for plan, price in v.items():
            if price <= 0:
                raise ValueError(f"price for plan {plan!r} must be > 0")
        return v


_config: AppConfig | None = None


def get_config() -> AppConfig:
    """Get or create the singleton AppConfig instance."""
    global _config
    if _config is None:
        _config = AppConfig()
    return _config
