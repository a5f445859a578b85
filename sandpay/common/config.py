"""Central environment-driven settings for the gateway process.

Loaded once at startup. Fee and fraud policy values here are platform
defaults; operators may override them at runtime through `platform_settings`.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class GatewaySettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "sandpay-gateway"
    log_level: str = "INFO"
    database_url: str = "sqlite:///./sandpay.db"
    checkout_base_url: str = "http://localhost:5173"
    otel_exporter_otlp_endpoint: str = ""
    session_ttl_seconds: int = 3600
    fee_percent: float = 2.5
    fee_fixed: int = 30
    fraud_amount_threshold: int = 100_000
    fraud_score: int = 85
    processing_delay_seconds: float = 2.0
    simulator_seed: int | None = None
    webhook_signature_header: str = "X-SandPay-Signature"
    webhook_max_attempts: int = 5
    webhook_timeout_seconds: float = 5.0
    webhook_poll_interval_seconds: float = 1.0
    webhook_batch_size: int = 50
    webhook_max_concurrency: int = 10
    model_config = SettingsConfigDict(env_prefix="SANDPAY_", env_file=".env", extra="ignore")


settings = GatewaySettings()
