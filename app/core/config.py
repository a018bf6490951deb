from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ReadStrategyName = Literal[
    "live_only", "aggregate_with_fallback", "shadow_compare", "aggregate_shadow_compare"
]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = "postgresql://pulse:pulse@db:5432/pulse"
    APP_ENV: str = "development"

    # Comma-separated allowed origins, or "*" to allow all.
    # Example: "https://myapp.com,https://api.myapp.com"
    CORS_ORIGINS: str = "*"

    LOG_LEVEL: str = "INFO"
    # "json" or "console". Development always renders to the console.
    LOG_FORMAT: str = "json"

    # Legacy read-path toggles. READ_STRATEGY, when set, wins over both.
    USE_AGGREGATES: bool = False
    ENABLE_SHADOW_READS: bool = False
    READ_STRATEGY: Optional[ReadStrategyName] = None
    # Persist live results for windows the aggregate store missed.
    AGGREGATE_WRITE_THROUGH: bool = False

    COMPLIANCE_GRACE_DAYS: int = 0
    DEFAULT_RANGE_DAYS: int = 30
    BACKFILL_MAX_DAYS: int = 90
    LEADERBOARD_DEFAULT_LIMIT: int = 10

    # Incremental aggregate maintenance, run in-process by the API.
    SWEEP_ENABLED: bool = False
    SWEEP_INTERVAL_MINUTES: int = 15
    # How far back the first sweep of an organization looks.
    SWEEP_INITIAL_LOOKBACK_DAYS: int = 7

    @field_validator("READ_STRATEGY", mode="before")
    @classmethod
    def _normalize_read_strategy(cls, value):
        if isinstance(value, str):
            value = value.strip().lower()
            return value or None
        return value

    @property
    def cors_origins_list(self) -> list[str]:
        if self.CORS_ORIGINS.strip() == "*":
            return ["*"]
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def dev_mode(self) -> bool:
        return self.APP_ENV.lower() in ("development", "dev", "local")


settings = Settings()
