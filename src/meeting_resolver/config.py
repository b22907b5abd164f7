"""Configuration management for the meeting resolver."""

from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from meeting_resolver.constants import (
    DEFAULT_TIMEZONE,
    DEFAULT_WINDOW_HOURS,
    DURATION_TOLERANCE_MINUTES,
    SLOT_STEP_MINUTES,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="RESOLVER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")
    log_to_file: bool = Field(default=False, description="Also write JSON logs to a file")
    log_directory: str = Field(default="logs", description="Directory for log files")
    log_file_max_bytes: int = Field(default=10 * 1024 * 1024, description="Rotate after N bytes")
    log_file_backup_count: int = Field(default=5, description="Rotated files to keep")

    # Resolution
    prioritization: Literal["given-order", "oracle"] = Field(
        default="oracle",
        description="How meetings inside a conflict set are ordered",
    )
    duration_tolerance_minutes: int = Field(
        default=DURATION_TOLERANCE_MINUTES,
        description="Maximum allowed change in meeting duration",
    )
    default_window_hours: int = Field(
        default=DEFAULT_WINDOW_HOURS, description="Window length when none is given"
    )
    default_timezone: str = Field(default=DEFAULT_TIMEZONE, description="Calendar time zone")
    allowed_domains: Annotated[
        list[str],
        Field(
            default_factory=list,
            description="Email domains eligible for resolution (empty allows all)",
        ),
    ]

    # Ranking oracle (Gemini)
    gemini_api_key: SecretStr | None = Field(default=None, description="Gemini API key")
    gemini_model: str = Field(default="gemini-2.0-flash", description="Gemini model name")
    oracle_temperature: float = Field(default=0.1, description="Sampling temperature")
    oracle_max_output_tokens: int = Field(default=2048, description="Oracle reply limit")

    # Calendar
    google_access_token: SecretStr | None = Field(
        default=None, description="Google OAuth2 access token"
    )
    calendar_timeout: float = Field(default=30.0, description="Calendar HTTP timeout (seconds)")

    # Rules store
    rules_service_url: str | None = Field(
        default=None, description="Base URL of the conflict rules service"
    )
    rules_service_token: SecretStr | None = Field(default=None, description="Rules service token")

    # Slot finder
    slot_step_minutes: int = Field(default=SLOT_STEP_MINUTES, description="Slot search granularity")
    working_hours_start: int = Field(default=9, description="Working day start hour")
    working_hours_end: int = Field(default=17, description="Working day end hour")

    @field_validator("duration_tolerance_minutes", "default_window_hours", "slot_step_minutes")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must be >= 0")
        return value

    @field_validator("working_hours_start", "working_hours_end")
    @classmethod
    def _valid_hour(cls, value: int) -> int:
        if not 0 <= value <= 24:
            raise ValueError("hour must be between 0 and 24")
        return value

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"

    @property
    def use_oracle(self) -> bool:
        """Whether conflict sets are ordered by the ranking oracle."""
        return self.prioritization == "oracle"

    @property
    def log_file_path(self) -> str:
        """Path of the main JSON log file."""
        return f"{self.log_directory}/meeting_resolver.log"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
