from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Supabase settings
    SUPABASE_URL: str = "http://localhost:54321"
    SUPABASE_JWKS_URL: str | None = None
    SUPABASE_DB_URL: str | None = None

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 8
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    # =================================================================
    # UPSTREAM RESILIENCE
    # =================================================================
    RETRY_MAX_RETRIES: int = 3
    RETRY_BASE_DELAY_SECONDS: float = 1.0
    RETRY_MAX_DELAY_SECONDS: float = 30.0
    RETRY_BACKOFF_FACTOR: float = 2.0

    CIRCUIT_FAILURE_THRESHOLD: int = 5
    CIRCUIT_RESET_TIMEOUT_SECONDS: float = 60.0

    GMAIL_REQUEST_TIMEOUT_SECONDS: float = 30.0

    # =================================================================
    # CACHE
    # =================================================================
    CACHE_MESSAGES_TTL_SECONDS: int = 300  # 5 minutes
    CACHE_ANALYTICS_TTL_SECONDS: int = 3600  # 1 hour
    CACHE_COUNTS_TTL_SECONDS: int = 300
    CACHE_LABELS_TTL_SECONDS: int = 3600  # labels rarely change
    CACHE_MAX_ENTRIES: int = 1000  # per namespace
    CACHE_SWEEP_INTERVAL_SECONDS: int = 60

    # =================================================================
    # SCHEDULER
    # =================================================================
    SCHEDULER_POLL_INTERVAL_SECONDS: int = 60
    JOB_EXECUTION_RETENTION: int = 100

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def jwks_url(self) -> str:
        if self.SUPABASE_JWKS_URL:
            return self.SUPABASE_JWKS_URL
        base = self.SUPABASE_URL.rstrip("/")
        return f"{base}/auth/v1/.well-known/jwks.json"

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            # The worker and the API share a small local database
            config.update({"min_size": 1, "max_size": 4, "timeout": 15.0})

        return config

    def get_retry_policy(self):
        """Build the retry policy used by the resilience service."""
        from inbox_automation.services.resilience.retry import RetryPolicy

        return RetryPolicy(
            max_retries=self.RETRY_MAX_RETRIES,
            base_delay=self.RETRY_BASE_DELAY_SECONDS,
            max_delay=self.RETRY_MAX_DELAY_SECONDS,
            backoff_factor=self.RETRY_BACKOFF_FACTOR,
        )

    def get_circuit_breaker_config(self) -> dict:
        return {
            "failure_threshold": self.CIRCUIT_FAILURE_THRESHOLD,
            "reset_timeout": self.CIRCUIT_RESET_TIMEOUT_SECONDS,
        }

    def get_cache_config(self):
        """Per-namespace TTL and capacity for the mail cache."""
        from inbox_automation.services.cache_service import CacheNamespace, NamespaceConfig

        return {
            CacheNamespace.MESSAGES: NamespaceConfig(
                self.CACHE_MESSAGES_TTL_SECONDS, self.CACHE_MAX_ENTRIES
            ),
            CacheNamespace.ANALYTICS: NamespaceConfig(
                self.CACHE_ANALYTICS_TTL_SECONDS, self.CACHE_MAX_ENTRIES
            ),
            CacheNamespace.COUNTS: NamespaceConfig(
                self.CACHE_COUNTS_TTL_SECONDS, self.CACHE_MAX_ENTRIES
            ),
            CacheNamespace.LABELS: NamespaceConfig(
                self.CACHE_LABELS_TTL_SECONDS, self.CACHE_MAX_ENTRIES
            ),
        }


settings = Settings()
