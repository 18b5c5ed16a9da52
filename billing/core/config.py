"""Korner Billing Service - Core Configuration."""

from dataclasses import dataclass
from functools import lru_cache
from typing import Literal

from pydantic import Field, MySQLDsn
from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class GatewayConfig:
    """Credentials and merchant identifiers for the card payment gateway.

    Built once at startup and passed to the gateway client explicitly, so
    tests can run the protocol against fixture secrets.
    """

    api_url: str
    api_key: str
    secret_key: str
    merchant_id: str
    service_id: str
    merchant_name: str = "Korner"
    currency: str = "KZT"
    timeout_seconds: float = 30.0
    payment_lifetime: int = 3600
    recurrent_profile_lifetime: int = 365
    lang: str = "ru"
    test_mode: bool = False
    callback_base_url: str = "http://localhost:3002"
    frontend_url: str = "http://localhost:3000"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Korner Billing Service"
    service_name: str = "korner-billing-service"
    debug: bool = False
    environment: Literal["development", "production"] = "development"

    # Database
    database_url: MySQLDsn = Field(..., description="MySQL connection string with aiomysql driver")
    database_pool_size: int = Field(default=10, description="Connections kept open per process")
    database_max_overflow: int = Field(default=20, description="Extra connections allowed under load")

    # Redis (cache and task queue)
    redis_url: str = Field(
        default="redis://localhost:6379",
        description="Redis connection URL for cache and task queue",
    )
    cache_ttl_seconds: int = Field(default=86400, description="Read-through cache TTL")

    # Public URLs
    api_base_url: str = Field(
        default="http://localhost:3002",
        description="Public URL of this service, used for gateway callback URLs",
    )
    frontend_url: str = Field(
        default="http://localhost:3000",
        description="Frontend application URL for payment redirects",
    )

    # Payment gateway
    gateway_api_url: str = Field(default="", description="Payment gateway API base URL")
    gateway_api_key: str = Field(default="", description="Payment gateway API key")
    gateway_secret_key: str = Field(default="", description="Shared HMAC secret")
    gateway_merchant_id: str = Field(default="", description="Merchant identifier")
    gateway_service_id: str = Field(default="", description="Merchant service identifier")
    gateway_merchant_name: str = Field(default="Korner", description="Merchant display name")
    gateway_currency: str = Field(default="KZT", description="Charge currency code")
    gateway_timeout_seconds: float = Field(default=30.0, description="Gateway request timeout")
    gateway_payment_lifetime: int = Field(default=3600, description="Checkout lifetime in seconds")
    gateway_recurrent_profile_lifetime: int = Field(
        default=365, description="Recurring profile lifetime in days"
    )
    gateway_lang: str = Field(default="ru", description="Checkout page language")

    # Main (profile/content) service
    main_service_url: str = Field(
        default="http://localhost:3001",
        description="Base URL of the main service internal API",
    )
    main_service_timeout_seconds: float = Field(default=5.0)

    # Notifications
    loki_url: str = Field(default="", description="Loki base URL, empty disables the sink")
    loki_enabled: bool = Field(default=False)
    notification_queue_size: int = Field(default=1000)

    # Telegram (payout request alerts)
    telegram_bot_token: str = Field(default="", description="Bot token, empty disables alerts")
    telegram_chat_id: str = Field(default="", description="Admin chat receiving payout alerts")
    telegram_alert_max_attempts: int = Field(default=3)

    # Subscriptions
    renewal_delay_seconds: float = Field(
        default=1.0, description="Pause between renewal attempts in one pass"
    )
    renewal_window_hours: int = Field(default=24)
    subscription_retention_months: int = Field(
        default=12, description="Months after expiry before a subscription is purged"
    )
    renewal_scheduler_enabled: bool = Field(default=True)

    # Wallet
    default_currency_id: int = Field(default=1)

    # Reconciliation
    reconcile_pending_after_minutes: int = Field(
        default=30, description="Age of pending gateway transactions before status polling"
    )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def gateway_config(self) -> GatewayConfig:
        """Build the injected gateway configuration."""
        return GatewayConfig(
            api_url=self.gateway_api_url.rstrip("/"),
            api_key=self.gateway_api_key,
            secret_key=self.gateway_secret_key,
            merchant_id=self.gateway_merchant_id,
            service_id=self.gateway_service_id,
            merchant_name=self.gateway_merchant_name,
            currency=self.gateway_currency,
            timeout_seconds=self.gateway_timeout_seconds,
            payment_lifetime=self.gateway_payment_lifetime,
            recurrent_profile_lifetime=self.gateway_recurrent_profile_lifetime,
            lang=self.gateway_lang,
            test_mode=not self.is_production,
            callback_base_url=self.api_base_url.rstrip("/"),
            frontend_url=self.frontend_url.rstrip("/"),
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()  # type: ignore[call-arg]
