"""
Application configuration.
All settings are loaded from environment variables.
Use env.example as a reference for required variables.
"""
from dataclasses import dataclass

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Credentials have no defaults - they MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    # Comma separated. Empty = default list in app.main.
    cors_origins: str = ""

    # ===========================================
    # DATABASE (PostgreSQL)
    # ===========================================
    database_url: str  # Required, no default

    # ===========================================
    # REDIS & CELERY
    # ===========================================
    redis_url: str  # Required, no default
    celery_broker_url: str  # Required, no default
    celery_result_backend: str  # Required, no default

    # ===========================================
    # PAYSTACK
    # ===========================================
    paystack_secret_key: str  # Required, no default
    paystack_initialize_url: str = "https://api.paystack.co/transaction/initialize"
    # Reference is appended as the last path segment.
    paystack_verify_url: str = "https://api.paystack.co/transaction/verify/"
    # Empty = sign-check webhooks with paystack_secret_key.
    paystack_webhook_secret: str = ""
    paystack_callback_url: str = ""
    default_currency: str = "NGN"
    gateway_timeout: float = 15.0

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30
    cb_storage: str = "redis"  # redis, memory

    # ===========================================
    # RECONCILIATION
    # ===========================================
    webhook_replay_ttl: int = 86400  # 24 hours
    pending_reverify_after_minutes: int = 30
    pending_reverify_batch: int = 100

    # ===========================================
    # LOGGING
    # ===========================================
    request_id_header: str = "X-Request-Id"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("default_currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("cb_storage")
    @classmethod
    def validate_cb_storage(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("redis", "memory"):
            raise ValueError("cb_storage must be 'redis' or 'memory'")
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def gateway_config(self) -> "GatewayConfig":
        """Build the immutable config handed to the gateway client and signature verifier."""
        return GatewayConfig(
            api_key=self.paystack_secret_key,
            initialize_url=self.paystack_initialize_url,
            verify_url=self.paystack_verify_url,
            webhook_secret=self.paystack_webhook_secret or self.paystack_secret_key,
            callback_url=self.paystack_callback_url or None,
            timeout=self.gateway_timeout,
        )

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


@dataclass(frozen=True)
class GatewayConfig:
    """Payment gateway credentials and endpoints, built once at startup."""
    api_key: str
    initialize_url: str
    verify_url: str
    webhook_secret: str
    callback_url: str | None = None
    timeout: float = 15.0


settings = Settings()
