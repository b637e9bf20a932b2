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

    # Redis settings (optional - the rate limiter fails open without it)
    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"
    redis_socket_timeout: float = 5.0  # Per-command timeout in seconds
    redis_connect_timeout: float = 10.0
    redis_unavailable_cooldown_seconds: float = 5.0  # Skip Redis after a connection failure

    # Rate limiting settings
    rate_limit_enabled: bool = True
    rate_limit_window_seconds: int = 60
    rate_limit_ttl_buffer_seconds: int = 10  # Added to the window for key expiry
    rate_limit_ingest_per_device: int = 1000
    rate_limit_ingest_per_ip: int = 10000
    rate_limit_mutations_per_ip: int = 100
    rate_limit_reads_per_ip: int = 1000

    # Admin API token (admin endpoints are disabled when empty)
    admin_token: str = ""

    @field_validator(
        "rate_limit_window_seconds",
        "rate_limit_ingest_per_device",
        "rate_limit_ingest_per_ip",
        "rate_limit_mutations_per_ip",
        "rate_limit_reads_per_ip",
    )
    @classmethod
    def validate_rate_limit_positive(cls, v: int) -> int:
        """Validate rate limit values are positive."""
        if v < 1:
            raise ValueError("Rate limit values must be at least 1")
        return v

    @field_validator("rate_limit_ttl_buffer_seconds")
    @classmethod
    def validate_ttl_buffer(cls, v: int) -> int:
        if v < 0:
            raise ValueError("rate_limit_ttl_buffer_seconds must not be negative")
        return v

    @field_validator(
        "redis_socket_timeout",
        "redis_connect_timeout",
        "redis_unavailable_cooldown_seconds",
    )
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    @field_validator("admin_token")
    @classmethod
    def strip_admin_token(cls, v: str) -> str:
        # Normalize accidental whitespace/newline from env/secret stores.
        return v.strip()

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
