"""
Engine configuration loaded from environment variables.

Uses Pydantic BaseSettings for automatic env var loading and validation.
Connection URLs, retention windows and cache behaviour all come from the
environment or a .env file; nothing is hardcoded at the call sites.

CHANGELOG:
- 2026-03-02: Add INTEGRATION_MAX_GAP_S for power-to-energy integration
- 2026-02-27: Add LATEST_REJECT_OUT_OF_ORDER switch for the latest-value cache
- 2026-02-20: Initial creation

TODO:
- None
"""

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings


class EngineSettings(BaseSettings):
    """Telemetry engine configuration.

    Attributes:
        database_url: SQLAlchemy async URL of the relational store
            (``postgresql+asyncpg://...`` or ``sqlite+aiosqlite://...``).
        redis_url: Redis URL for the latest-value cache.
        redis_key_prefix: Optional namespace prepended to every Redis key.
        raw_retention_days: Days of raw readings to keep.
        agg_5m_retention_days: Days of 5-minute aggregates to keep.
        agg_1d_retention_days: Days of daily aggregates to keep (0 = forever).
        latest_reject_out_of_order: When true, a latest-value write whose
            measurement time is older than the cached entry is dropped.
        integration_max_gap_s: Longest gap between two power samples that is
            still integrated into energy.
        max_observations_per_request: Upper bound for one ingest batch.
        log_level: Root log level.
    """

    database_url: str
    redis_url: str
    redis_key_prefix: str = ""
    raw_retention_days: int = 14
    agg_5m_retention_days: int = 180
    agg_1d_retention_days: int = 0
    latest_reject_out_of_order: bool = True
    integration_max_gap_s: int = 900
    max_observations_per_request: int = 5000
    log_level: str = "INFO"

    @field_validator("raw_retention_days", "agg_5m_retention_days")
    @classmethod
    def retention_must_be_positive(cls, v: int) -> int:
        """Validate that raw and 5-minute retention keep at least one day."""
        if v < 1:
            raise ValueError("retention windows must be >= 1 day")
        return v

    @field_validator("agg_1d_retention_days")
    @classmethod
    def daily_retention_must_be_non_negative(cls, v: int) -> int:
        """Validate daily retention (0 disables purging of daily rows)."""
        if v < 0:
            raise ValueError("AGG_1D_RETENTION_DAYS must be >= 0")
        return v

    @field_validator("integration_max_gap_s")
    @classmethod
    def max_gap_must_cover_one_interval(cls, v: int) -> int:
        """Validate the integration gap spans at least one 5-minute bucket.

        A shorter gap would drop the segment that joins two adjacent buckets.
        """
        if v < 300:
            raise ValueError("INTEGRATION_MAX_GAP_S must be >= 300")
        return v

    @field_validator("max_observations_per_request")
    @classmethod
    def batch_limit_must_be_valid(cls, v: int) -> int:
        """Validate batch limit is between 1 and 100000."""
        if v < 1 or v > 100_000:
            raise ValueError("MAX_OBSERVATIONS_PER_REQUEST must be >= 1 and <= 100000")
        return v

    @field_validator("log_level")
    @classmethod
    def log_level_must_be_known(cls, v: str) -> str:
        """Normalise and validate the log level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"LOG_LEVEL must be a standard level name (got: '{v}')")
        return level

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> EngineSettings:
    """Return the process-wide settings, read once from the environment."""
    return EngineSettings()
