"""Central environment-driven settings shared by all services.

Each service process loads this once at startup. Service-specific behavior is
controlled by environment variables (see `.env.example`).
"""

from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "unknown-service"
    log_level: str = "INFO"
    kafka_bootstrap_servers: str = "kafka:9092"
    redis_url: str = "redis://redis:6379/0"
    postgres_dsn: str
    api_key: str
    # Requests presenting this key are forwarded with the admin role; empty disables admin access.
    admin_api_key: str = ""
    servers_url: str = "http://servers:8001"
    payments_url: str = "http://payments:8002"
    otel_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    rate_limit_per_minute: int = 60

    # Cloud provider (Linode v4 compatible).
    provider_base_url: str = "https://api.linode.com/v4"
    provider_api_token: str = ""
    provider_timeout_seconds: float = 15.0
    default_image: str = "linode/ubuntu24.04"
    catalog_path: str | None = None
    minimum_billing_hours: int = 1

    # Crypto payment gateway (NOWPayments compatible).
    gateway_base_url: str = "https://api.nowpayments.io"
    gateway_api_key: str = ""
    gateway_ipn_secret: str = ""
    gateway_callback_url: str = "http://localhost:8000/deposits/callback"
    gateway_timeout_seconds: float = 10.0
    min_deposit_amount: Decimal = Decimal("20.00")
    max_deposit_amount: Decimal = Decimal("10000.00")
    wallet_currency: str = "usd"

    # Admin alerts.
    telegram_bot_token: str = ""
    telegram_admin_chat_id: str = ""
    deposits_topic: str = "wallet.deposits"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = CommonSettings()
