"""Central environment-driven settings shared by all services.

Each service process loads this once at startup. Service-specific behavior is
controlled by environment variables (see `.env.example`).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "unknown-service"
    log_level: str = "INFO"
    database_url: str = "sqlite+pysqlite:///./magsub.db"

    portone_api_url: str = "https://api.portone.io"
    portone_api_secret: str = ""
    portone_timeout_seconds: float = 10.0

    identity_url: str = "http://localhost:54321"
    identity_anon_key: str = ""
    storage_bucket: str = "vibe-coding-storage"

    require_auth: bool = True
    strict_cancel_ownership: bool = True

    billing_period_days: int = 30
    grace_period_days: int = 1
    schedule_offset_days: int = 1
    schedule_hour: int = 10
    schedule_jitter_minutes: int = 60
    schedule_timezone: str = "Asia/Seoul"
    schedule_lookup_window_days: int = 1

    currency: str = "KRW"
    subscription_order_name: str = "IT Magazine Monthly Subscription"
    subscription_amount: int = 9900
    cancel_reason: str = "No reason provided"

    redis_url: str = ""
    rate_limit_per_minute: int = 30
    admin_api_key: str = ""
    otel_exporter_otlp_endpoint: str = ""
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = CommonSettings()
