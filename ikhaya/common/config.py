"""Central environment-driven settings shared by all services.

Each service process loads this once at startup. Service-specific behavior is
controlled by environment variables (see `.env.example`).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


PAYFAST_SANDBOX_URL = "https://sandbox.payfast.co.za/eng/process"
PAYFAST_PRODUCTION_URL = "https://www.payfast.co.za/eng/process"


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "unknown-service"
    log_level: str = "INFO"
    postgres_dsn: str
    redis_url: str = "redis://redis:6379/0"
    api_key: str
    otel_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    payfast_merchant_id: str = ""
    payfast_merchant_key: str = ""
    payfast_passphrase: str = ""
    payfast_sandbox: bool = True
    site_url: str = "http://localhost:5173"
    notify_url: str = "http://localhost:8002/payfast/notify"
    currency: str = "ZAR"
    pending_order_ttl_seconds: int = 3600
    rate_limit_per_minute: int = 10
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def payfast_process_url(self) -> str:
        return PAYFAST_SANDBOX_URL if self.payfast_sandbox else PAYFAST_PRODUCTION_URL


settings = CommonSettings()
