"""Pydantic-settings configuration for the cost-of-carry engine.

Loads database connection parameters and engine tuning knobs from the .env
file with sensible defaults for local development. Invalid values fail at
load time, which is the only configuration failure mode of the process.
"""

from datetime import time

from pydantic import Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # Project
    project_name: str = "Cost of Carry Engine"
    debug: bool = False

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # JSON lines instead of the console renderer

    # PostgreSQL
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "cost_of_carry"
    postgres_user: str = "carry_user"
    postgres_password: str = ""

    # SQLAlchemy pool settings
    db_pool_size: int = 10
    db_max_overflow: int = 5
    db_pool_pre_ping: bool = True
    db_sslmode: str = "prefer"  # Set to "require" in production

    # Underlying
    underlying: str = "NIFTY"
    spot_token: str = "256265"
    spot_symbol: str = "NIFTY 50"
    exchange: str = "NSE"
    strike_interval: float = Field(default=50.0, gt=0)

    # Pricing inputs
    risk_free_rate: float = 0.065
    dividend_yield: float = 0.0
    iv_max_iterations: int = Field(default=100, gt=0)
    iv_tolerance: float = Field(default=1e-6, gt=0)

    # Computation cadence
    compute_interval_seconds: float = Field(default=2.0, gt=0)
    staleness_seconds: float = Field(default=30.0, gt=0)
    run_outside_market_hours: bool = False

    # Storage retry budget
    storage_max_retries: int = Field(default=5, ge=1)
    storage_retry_initial_seconds: float = 0.5
    storage_retry_max_seconds: float = 10.0
    storage_retry_jitter_seconds: float = 0.5

    # Ingestion
    ingest_concurrency: int = Field(default=10, gt=0)

    # Market session (exchange local time)
    market_timezone: str = "Asia/Kolkata"
    market_open: time = time(9, 15)
    market_close: time = time(15, 30)
    trading_calendar: str = "XBOM"

    # Spread analytics
    spread_history_size: int = Field(default=100, ge=2)
    spread_min_points: int = Field(default=10, ge=2)

    @field_validator("market_close")
    @classmethod
    def _close_after_open(cls, v: time, info) -> time:
        market_open = info.data.get("market_open")
        if market_open is not None and v <= market_open:
            raise ValueError("market_close must be later than market_open")
        return v

    @field_validator("log_level")
    @classmethod
    def _known_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level {v!r}")
        return v

    @computed_field
    @property
    def async_database_url(self) -> str:
        """Async connection string for asyncpg."""
        base = (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )
        if self.db_sslmode and self.db_sslmode != "disable":
            return f"{base}?ssl={self.db_sslmode}"
        return base


# Singleton instance
settings = Settings()
