"""Central environment-driven settings for the payments service.

The process loads this once at startup. Behavior is controlled by environment
variables (see `.env.example`).
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "payments"
    log_level: str = "INFO"
    postgres_dsn: str
    credential_encryption_keys: str
    kafka_bootstrap_servers: str = "kafka:9092"
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    processor_mode: str = "http"
    processor_base_urls: dict[str, str] = {}
    processor_timeout_seconds: float = 5.0
    processor_max_retries: int = 2
    simulated_success_rate: float = 0.5
    simulated_latency_seconds: float = 1.0
    transaction_history_limit: int = 100
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def encryption_keys(self) -> list[str]:
        """Fernet keys in priority order; the first one encrypts."""

        return [key.strip() for key in self.credential_encryption_keys.split(",") if key.strip()]


settings = CommonSettings()
