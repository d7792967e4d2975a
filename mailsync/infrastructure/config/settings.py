from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # App
    app_name: str = "MailSync"
    app_version: str = "1.0.0"
    debug: bool = False

    # Database
    database_url: str = ""  # Loaded from environment, validated in model_validator
    database_echo: bool = False

    # Security
    secret_key: str = ""  # Loaded from environment, validated in model_validator
    encryption_salt: str = ""  # Loaded from environment, validated in model_validator

    # OAuth clients (per provider)
    google_client_id: str | None = None
    google_client_secret: str | None = None
    microsoft_client_id: str | None = None
    microsoft_client_secret: str | None = None
    oauth_redirect_uri: str = "http://localhost:8080/callback"
    oauth_timeout_seconds: float = 30.0

    # Quota scheduler (Gmail allows 250 units/s per user, keep a buffer)
    quota_units_per_window: int = 150
    quota_window_seconds: float = 1.0
    scheduler_max_queue_size: int = 1000
    scheduler_max_retries: int = 5
    scheduler_backoff_base_seconds: float = 1.0
    scheduler_backoff_max_seconds: float = 60.0
    scheduler_backoff_jitter_seconds: float = 1.0

    # Provider quota costs, in units per call
    gmail_list_cost: int = 5
    gmail_get_cost: int = 5
    gmail_send_cost: int = 100

    # Sync
    sync_batch_size: int = 50
    sync_batch_pause_seconds: float = 0.1
    sync_list_max_results: int = 500  # Gmail's single-page maximum
    sync_max_concurrent_accounts: int = 3
    sync_max_error_entries: int = 100
    sync_lock_timeout_seconds: int = 3600  # A "syncing" flag older than this is stale

    # Background sync dispatcher
    dispatcher_workers: int = 3
    dispatcher_queue_size: int = 100

    # Token lifecycle
    token_refresh_margin_seconds: int = 300  # 5 minutes
    token_refresh_cooldown_seconds: int = 30
    token_refresh_when_expiry_unknown: bool = False

    # Redis pub/sub for live progress
    redis_enabled: bool = True
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: str | None = None

    # Message scoring hook (optional, black box)
    scoring_enabled: bool = False
    scoring_primary_url: str | None = None  # e.g. "http://localhost:11434"
    scoring_fallback_url: str | None = None
    scoring_timeout_seconds: float = 30.0

    @model_validator(mode="after")
    def validate_sync_config(self) -> "Settings":
        """Validate required secrets and quota configuration"""
        # Validate required fields are loaded from environment
        if not self.database_url:
            raise ValueError("DATABASE_URL is required. Set in environment or .env file.")
        if not self.secret_key:
            raise ValueError("SECRET_KEY is required. Generate with: openssl rand -hex 32")
        if not self.encryption_salt:
            raise ValueError("ENCRYPTION_SALT is required. Generate with: openssl rand -hex 16")

        if self.quota_units_per_window <= 0:
            raise ValueError("quota_units_per_window must be positive")
        if self.quota_window_seconds <= 0:
            raise ValueError("quota_window_seconds must be positive")

        # An operation costing more than the whole budget could never be admitted
        for name in ("gmail_list_cost", "gmail_get_cost", "gmail_send_cost"):
            cost = getattr(self, name)
            if cost <= 0 or cost > self.quota_units_per_window:
                raise ValueError(
                    f"Invalid {name} {cost}. "
                    f"Must be between 1 and quota_units_per_window ({self.quota_units_per_window})"
                )

        if self.sync_batch_size <= 0:
            raise ValueError("sync_batch_size must be positive")
        if self.sync_max_concurrent_accounts <= 0:
            raise ValueError("sync_max_concurrent_accounts must be positive")
        return self

    def quota_cost(self, provider_type: str, operation: str) -> int:
        """Declared quota cost of ``operation`` (list, get, send) for a provider"""
        cost = getattr(self, f"{provider_type}_{operation}_cost", None)
        if cost is None:
            raise ValueError(f"No quota cost configured for {provider_type}.{operation}")
        return int(cost)

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="allow", case_sensitive=False
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
