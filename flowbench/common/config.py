"""Central environment-driven settings for the flowbench API.

The process loads this once at startup. Behavior is controlled by environment
variables (see `.env.example`).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "flowbench-api"
    log_level: str = "INFO"
    postgres_dsn: str
    stripe_secret_key: str
    stripe_webhook_secret: str = ""
    # Stripe rejects signatures older than this many seconds.
    stripe_webhook_tolerance_seconds: int = 300
    # Shared with the identity provider; signs the sign-in callback body.
    identity_callback_secret: str = ""
    payment_currency: str = "usd"
    # Funds are held until the buyer accepts delivery.
    payment_capture_method: str = "manual"
    tracing_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = CommonSettings()
