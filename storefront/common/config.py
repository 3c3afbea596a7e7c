from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_APP_NAME = "storefront-service"


class StorefrontSettings(BaseSettings):
    """Settings shared by the storefront FastAPI services."""

    app_name: str = Field(default=DEFAULT_APP_NAME)
    environment: Literal["local", "dev", "staging", "prod"] = Field(default="local")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    service_host: str = Field(default="0.0.0.0")
    service_port: int = Field(default=8000)
    enable_metrics: bool = Field(default=True)
    enable_tracing: bool = Field(default=False)
    tracing_endpoint: str | None = Field(default=None)
    tracing_protocol: Literal["http/protobuf", "grpc"] = Field(default="http/protobuf")
    tracing_insecure: bool = Field(default=True)
    tracing_sample_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    database_url: str | None = Field(default=None)
    redis_url: str | None = Field(default=None)
    event_bus_servers: str | None = Field(default=None)
    storage_backend: Literal["sql", "memory"] = Field(default="sql")

    frontend_url: str = Field(default="http://localhost:5000")
    gateway_timeout_seconds: float = Field(default=10.0, gt=0.0)
    intent_guard_ttl_seconds: int = Field(default=30, ge=1)
    default_currency: str = Field(default="USD", min_length=3, max_length=3)
    tax_rate_percent: float = Field(default=0.0, ge=0.0, le=100.0)

    paypal_enabled: bool = Field(default=False)
    paypal_mode: Literal["sandbox", "live"] = Field(default="sandbox")
    paypal_client_id: str | None = Field(default=None)
    paypal_secret_key: str | None = Field(default=None)
    paypal_webhook_id: str | None = Field(default=None)
    paypal_webhook_allow_unverified: bool = Field(default=False)

    payoneer_enabled: bool = Field(default=False)
    payoneer_env: Literal["sandbox", "production"] = Field(default="sandbox")
    payoneer_mode: Literal["mock", "live"] = Field(default="mock")
    payoneer_checkout_url: str = Field(default="https://checkout.payoneer.com/stubs/payment")

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"), env_prefix="STOREFRONT_", extra="ignore"
    )


@lru_cache
def get_settings() -> StorefrontSettings:
    """Return cached storefront settings."""

    return StorefrontSettings()
