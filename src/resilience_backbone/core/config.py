"""Configuration management for the resilience backbone."""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings for the event bus and circuit breakers."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: str = Field(default="json", description="Logging format: json or text")

    # Event bus
    EVENT_BUS_RECORD_HISTORY: bool = Field(default=True, description="Keep a history of published events")
    EVENT_BUS_HISTORY_LIMIT: int = Field(default=1000, ge=1, le=100_000, description="Maximum events kept in history")
    EVENT_BUS_USE_DLQ: bool = Field(default=True, description="Store failed handler invocations in the dead-letter queue")
    DLQ_MAX_ENTRIES: int = Field(default=500, ge=1, le=100_000, description="Maximum dead-letter entries kept in memory")

    # Circuit breaker defaults
    BREAKER_FAILURE_THRESHOLD: int = Field(default=5, ge=1, description="Counted failures in window that open a breaker")
    BREAKER_SUCCESS_THRESHOLD: int = Field(default=1, ge=1, description="Successful probes needed to close a breaker")
    BREAKER_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0, description="Cooldown before an open breaker allows a probe")
    BREAKER_ROLLING_WINDOW_SECONDS: float = Field(default=60.0, gt=0, description="Failure counting window")
    BREAKER_IGNORED_ERROR_CODES: list[str] = Field(
        default_factory=list,
        description="Error codes that never count as breaker failures"
    )

    # AI provider breaker overrides
    AI_BREAKER_FAILURE_THRESHOLD: int = Field(default=8, ge=1, description="Failure threshold for AI provider calls")
    AI_BREAKER_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0, description="Cooldown for AI provider breakers")

    @field_validator('LOG_LEVEL')
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level"""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @field_validator('LOG_FORMAT')
    @classmethod
    def validate_log_format(cls, v):
        """Validate log format"""
        valid_formats = ['json', 'text']
        if v.lower() not in valid_formats:
            raise ValueError(f"Log format must be one of {valid_formats}")
        return v.lower()


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings (for dependency injection)"""
    return settings
