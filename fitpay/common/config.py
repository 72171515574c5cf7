"""Central environment-driven settings for the FitPay service.

The process loads this once at startup. Gateway credentials are not read from
the environment; they live in the `payment_gateways` table and are loaded by
the gateway client (see `.env.example` for the variables read here).
"""

from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "fitpay"
    log_level: str = "INFO"
    database_url: str = "sqlite:///./fitpay.sqlite3"
    redis_url: str = "redis://redis:6379/0"
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    api_key: str = "change-me"

    gateway_code: str = "OPP"
    gateway_sandbox_url: str = "https://sandbox-api.openpay.pe/v1"
    gateway_production_url: str = "https://api.openpay.pe/v1"
    gateway_timeout_seconds: float = 30.0
    gateway_config_ttl_seconds: int = 3600
    gateway_user_agent: str = "FitPay/1.0"

    rate_limit_window_seconds: int = 60
    rate_limit_max_requests: int = 30
    retry_max_attempts: int = 3
    retry_base_delay_seconds: float = 1.0
    retry_backoff_multiplier: float = 2.0
    idempotency_ttl_seconds: int = 300
    cache_backend: str = "memory"

    session_ttl_seconds: int = 3600
    business_timezone: str = "America/Lima"
    commission_tax_rate: Decimal = Decimal("0")
    min_amount: Decimal = Decimal("1.00")
    max_amount: Decimal = Decimal("50000.00")
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = CommonSettings()
