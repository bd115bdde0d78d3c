"""
SeedLedger Configuration.

Pydantic Settings v2: loads from .env, environment variables.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────────────────
    app_version: str = "1.0.0"
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    # ── API ───────────────────────────────────────────────────────────────
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8002, alias="API_PORT")

    # ── Database ─────────────────────────────────────────────────────────
    database_url: str = Field(
        default="sqlite:///./seedledger.db",
        alias="DATABASE_URL",
    )
    db_pool_size: int = Field(default=10, alias="DB_POOL_SIZE")
    db_max_overflow: int = Field(default=20, alias="DB_MAX_OVERFLOW")
    db_pool_recycle: int = Field(default=3600, alias="DB_POOL_RECYCLE")

    # ── Redis ─────────────────────────────────────────────────────────────
    # Empty means no cache; rankings are then always computed from the DB.
    redis_url: str = Field(default="", alias="REDIS_URL")

    # ── Scoring Rules ─────────────────────────────────────────────────────
    scoring_base_multiplier: float = Field(default=1.5, alias="SEEDLEDGER_SCORING_BASE_MULTIPLIER")
    scoring_exact_bonus: float = Field(default=1.5, alias="SEEDLEDGER_SCORING_EXACT_BONUS")
    scoring_partial_bonus: float = Field(default=1.2, alias="SEEDLEDGER_SCORING_PARTIAL_BONUS")
    scoring_loss_rate: float = Field(default=0.5, alias="SEEDLEDGER_SCORING_LOSS_RATE")
    scoring_min_gain: int = Field(default=1, ge=1, alias="SEEDLEDGER_SCORING_MIN_GAIN")
    scoring_min_loss: int = Field(default=1, ge=1, alias="SEEDLEDGER_SCORING_MIN_LOSS")

    # ── Settlement ────────────────────────────────────────────────────────
    competition_tag: str = Field(default="municipales_2026", alias="SEEDLEDGER_COMPETITION_TAG")
    settlement_batch_size: int = Field(
        default=100, ge=1, le=500, alias="SEEDLEDGER_SETTLEMENT_BATCH_SIZE",
        description="Maximum decisions settled per batch run",
    )
    settlement_concurrency: int = Field(
        default=8, ge=1, alias="SEEDLEDGER_SETTLEMENT_CONCURRENCY",
        description="Predictions of one decision settled in parallel",
    )

    # ── Rankings ──────────────────────────────────────────────────────────
    ranking_debounce_seconds: float = Field(default=2.0, ge=0, alias="SEEDLEDGER_RANKING_DEBOUNCE_SECONDS")
    ranking_cache_ttl: int = Field(default=60, alias="SEEDLEDGER_RANKING_CACHE_TTL")

    # ── Scheduler ─────────────────────────────────────────────────────────
    settlement_interval_minutes: int = Field(default=15, alias="SEEDLEDGER_SETTLEMENT_INTERVAL_MINUTES")
    reconcile_cron_hour: int = Field(default=3, ge=0, le=23, alias="SEEDLEDGER_RECONCILE_CRON_HOUR")
    reconcile_batch_size: int = Field(default=500, ge=1, alias="SEEDLEDGER_RECONCILE_BATCH_SIZE")

    # ── Operational ────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="console", alias="LOG_FORMAT")

    @property
    def async_database_url(self) -> str:
        """Ensure the database URL uses an async driver."""
        url = self.database_url
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if url.startswith("sqlite://"):
            url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return url


settings = Settings()
