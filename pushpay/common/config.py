"""Central environment-driven settings for the gateway process.

Loaded once at startup. Every value can be overridden with an environment
variable of the same name (see `.env.example`).
"""

import base64

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "pushpay-gateway"
    log_level: str = "INFO"
    postgres_dsn: str
    api_key: str
    redis_url: str = "redis://redis:6379/0"
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    document_backend: str = "sql"
    event_sink: str = "documents"
    kafka_bootstrap_servers: str = "kafka:9092"
    kafka_analytics_topic: str = "payments.analytics"

    mpesa_base_url: str = "https://sandbox.safaricom.co.ke"
    mpesa_consumer_key: str | None = None
    mpesa_consumer_secret: str | None = None
    mpesa_shortcode: str | None = None
    mpesa_passkey: str | None = None
    mpesa_callback_url: str | None = None
    mpesa_transaction_type: str = "CustomerPayBillOnline"
    mpesa_account_reference: str = "PUSHPAY"
    mpesa_transaction_desc: str = "Payment"
    mpesa_initiator: str = "testapiuser"
    mpesa_security_credential: str = ""
    mpesa_party_a: str = "600782"
    mpesa_identifier_type: str = "4"
    mpesa_result_url: str = "http://myservice:8080/transactionstatus/result"
    mpesa_timeout_url: str = "http://myservice:8080/timeout"
    mpesa_confirmation_url: str | None = None
    mpesa_validation_url: str | None = None

    pending_ttl_seconds: int = 15 * 60
    pending_sweep_interval_seconds: float = 5 * 60.0
    status_cache_ttl_seconds: int = 2 * 60
    initiate_max_attempts: int = 5
    initiate_window_minutes: int = 15
    event_batch_size: int = 10
    event_flush_interval_seconds: float = 5.0
    event_queue_max_size: int = 10_000
    status_poll_interval_seconds: float = 0.0
    status_poll_min_age_seconds: int = 16
    status_query_timeout_seconds: float = 10.0
    status_query_max_retries: int = 3
    status_query_retry_delay_seconds: float = 5.0
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def basic_auth(self) -> str | None:
        """`base64(consumer_key:consumer_secret)` or None when either is unset."""

        if not self.mpesa_consumer_key or not self.mpesa_consumer_secret:
            return None
        raw = f"{self.mpesa_consumer_key}:{self.mpesa_consumer_secret}".encode("utf-8")
        return base64.b64encode(raw).decode("ascii")


settings = CommonSettings()
