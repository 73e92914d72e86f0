"""
Application configuration.
All settings are loaded from environment variables.
Use env.example as a reference for required variables.
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: database_url has no default - it MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    cors_origins: str = ""

    # ===========================================
    # DATABASE (PostgreSQL)
    # ===========================================
    database_url: str  # Required, no default
    database_pool_size: int = 10
    database_max_overflow: int = 20
    database_connect_timeout: int = 5

    # Docker-compose variables (not used by app directly)
    postgres_db: str | None = None
    postgres_user: str | None = None
    postgres_password: str | None = None

    # ===========================================
    # REDIS & CELERY
    # ===========================================
    # Optional: circuit breaker state is kept in-process when empty
    redis_url: str = ""
    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: str = "redis://localhost:6379/1"

    # ===========================================
    # LIPIA (M-Pesa aggregator)
    # ===========================================
    lipia_api_base: str = "https://lipia-api.kreativelabske.com/api"
    lipia_payment_url: str = "https://lipia-online.vercel.app/link/andikar"
    lipia_api_key: str | None = None  # Optional, sent as Bearer token when set
    lipia_timeout: float = 30.0

    # ===========================================
    # LEDGER
    # ===========================================
    # Pending payments older than this are cancelled by the sweep
    pending_expiry_minutes: int = 30
    payment_history_page_size: int = 10

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30

    # ===========================================
    # LOGGING
    # ===========================================
    log_level: str = "INFO"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unsupported log_level: {v}")
        return level

    @field_validator("pending_expiry_minutes")
    @classmethod
    def validate_expiry(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("pending_expiry_minutes must be positive")
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
