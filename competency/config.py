"""
Application configuration using pydantic-settings.
Loads from environment variables with .env file support.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_url: str = "sqlite+aiosqlite:///./competency.db"

    # Security (tokens are issued by the identity service; we only verify them)
    secret_key: str = "change-this-in-production-minimum-32-characters-long"
    algorithm: str = "HS256"

    # Application
    debug: bool = False
    environment: str = "development"
    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR

    # API Settings
    api_v1_prefix: str = "/api/v1"
    project_name: str = "Digital Competency Assessment"
    version: str = "1.0.0"

    # Assessment
    questions_per_step: int = 44
    min_questions_per_step: int = 10
    default_question_time_seconds: int = 60
    session_min_seconds: int = 1800   # 30 minutes
    session_max_seconds: int = 14400  # 4 hours
    max_assessment_time_hours: int = 2

    @property
    def session_time_cap_seconds(self) -> int:
        """Upper bound for a session's time budget."""
        return min(self.session_max_seconds, self.max_assessment_time_hours * 3600)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
