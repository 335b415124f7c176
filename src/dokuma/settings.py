"""Client configuration (environment and .env).

Uses pydantic-settings; every field can be set through a DOKUMA_* variable,
e.g. DOKUMA_BASE_URL or DOKUMA_STALE_TIME=30s.
"""

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from dokuma.duration import parse_duration
from dokuma.types import Duration


class Settings(BaseSettings):
    """Settings for the resource client and query cache."""

    model_config = SettingsConfigDict(
        env_prefix="DOKUMA_",
        env_file=".env",
        extra="ignore",
    )

    # API
    base_url: str = ""
    timeout: float = 30.0

    # Query cache
    # Durations in seconds; "30s", "5m" style strings are accepted
    stale_time: float = 60.0
    gc_time: float = 300.0
    retry: int = 1
    retry_delay: float = 1.0

    debug: bool = False

    @field_validator("stale_time", "gc_time", "retry_delay", mode="before")
    @classmethod
    def parse_durations(cls, value: Duration) -> float:
        if isinstance(value, str):
            try:
                return parse_duration(float(value))
            except ValueError:
                pass
        return parse_duration(value)

    @field_validator("retry")
    @classmethod
    def check_retry(cls, value: int) -> int:
        if value < 0:
            raise ValueError("retry must be >= 0")
        return value


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
