from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


VALID_BACKENDS = ("memory", "redis", "rest")
VALID_FAILURE_POLICIES = ("raise", "fail_open", "fail_closed")
VALID_LOG_FORMATS = ("text", "structured", "json")


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    The surrounding application loads them once at process start.
    """

    # Counter store selection: memory | redis | rest
    ratelimit_backend: str = "memory"
    ratelimit_prefix: str = "quotaguard"

    # What a gate does when the counter store cannot be reached:
    # raise (surface BackendUnavailableError) | fail_open | fail_closed
    ratelimit_failure_policy: str = "raise"

    # Request quota (one unit per pipeline invocation)
    request_limit_max_count: int = 10
    request_limit_window_seconds: float = 60.0

    # Token quota (prompt or total tokens per window)
    token_limit_max_count: int = 1000
    token_limit_window_seconds: float = 60.0

    # In-memory store
    memory_store_max_entries: int = 10000

    # Redis settings (redis backend)
    redis_url: str = "redis://localhost:6379/0"

    # Redis-over-REST settings (rest backend)
    upstash_redis_rest_url: str = Field(default="", validation_alias="UPSTASH_REDIS_REST_URL")
    upstash_redis_rest_token: str = Field(default="", validation_alias="UPSTASH_REDIS_REST_TOKEN")

    # HTTP client settings for the REST store
    httpx_timeout: float = 5.0
    httpx_connect_timeout: float = 2.0
    httpx_max_connections: int = 20
    httpx_max_keepalive_connections: int = 10

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    @field_validator("ratelimit_backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        """Validate the counter store backend name."""
        v = v.strip().lower()
        if v not in VALID_BACKENDS:
            raise ValueError(f"ratelimit_backend must be one of {VALID_BACKENDS}")
        return v

    @field_validator("ratelimit_failure_policy")
    @classmethod
    def validate_failure_policy(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in VALID_FAILURE_POLICIES:
            raise ValueError(f"ratelimit_failure_policy must be one of {VALID_FAILURE_POLICIES}")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in VALID_LOG_FORMATS:
            raise ValueError(f"log_format must be one of {VALID_LOG_FORMATS}")
        return v

    @field_validator(
        "request_limit_max_count",
        "token_limit_max_count",
        "memory_store_max_entries",
    )
    @classmethod
    def validate_count_positive(cls, v: int) -> int:
        """Validate limit counts are positive."""
        if v < 1:
            raise ValueError("Limit values must be at least 1")
        return v

    @field_validator(
        "request_limit_window_seconds",
        "token_limit_window_seconds",
        "httpx_timeout",
        "httpx_connect_timeout",
    )
    @classmethod
    def validate_duration_positive(cls, v: float) -> float:
        """Validate window and timeout values are positive."""
        if v <= 0:
            raise ValueError("Window and timeout values must be positive")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)


# Global settings instance
settings = Settings()
