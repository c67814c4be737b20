from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - enables detailed error responses
    debug: bool = False

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # Rate limiting settings (defaults for the combined limiter)
    rate_limit_enabled: bool = True
    rate_limit_max_tokens: int = 10
    rate_limit_refill_rate: float = 1.0
    rate_limit_refill_interval_ms: int = 1000
    rate_limit_max_requests: int = 100
    rate_limit_window_ms: int = 60000

    # Store maintenance
    rate_limit_cleanup_interval_seconds: float = 3600.0  # Hourly
    rate_limit_cleanup_max_age_ms: int = 3600000  # Evict state idle for 1 hour
    rate_limit_store_shards: int = 64  # Lock shards per in-memory store

    # If True, deny requests when the Redis backend is unavailable
    rate_limit_fail_closed: bool = True
    rate_limit_redis_key_ttl_seconds: int = 3600

    # Redis settings (optional, for multi-instance deployments)
    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format is one of the supported formatters."""
        v = v.lower()
        if v not in ("text", "structured", "json"):
            raise ValueError("log_format must be one of: text, structured, json")
        return v

    @field_validator("rate_limit_refill_interval_ms", "rate_limit_window_ms")
    @classmethod
    def validate_durations_positive(cls, v: int) -> int:
        """Validate rate limit durations are positive."""
        if v < 1:
            raise ValueError("Rate limit durations must be at least 1 ms")
        return v

    @field_validator("rate_limit_max_tokens", "rate_limit_max_requests")
    @classmethod
    def validate_capacity_not_negative(cls, v: int) -> int:
        """Validate capacities are not negative (0 denies everything)."""
        if v < 0:
            raise ValueError("Rate limit capacities cannot be negative")
        return v

    @field_validator("rate_limit_cleanup_interval_seconds")
    @classmethod
    def validate_cleanup_interval(cls, v: float) -> float:
        """Validate cleanup interval is reasonable."""
        if v < 1:
            raise ValueError(
                "rate_limit_cleanup_interval_seconds should be at least 1 second"
            )
        return v

    @field_validator("rate_limit_store_shards", "rate_limit_redis_key_ttl_seconds")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate value is positive."""
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
