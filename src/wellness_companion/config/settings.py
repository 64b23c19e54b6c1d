"""Application settings with YAML defaults and .env overrides."""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from wellness_companion.config.loader import get_yaml_defaults

logger = logging.getLogger(__name__)

_yaml_defaults = get_yaml_defaults()


def _yaml_field(key: str, default, alias: str | None = None):
    """Create a Pydantic Field whose default comes from config.yaml.

    Args:
        key: Flattened YAML key (e.g., "CHECKIN_MODE").
        default: Fallback default if not in YAML.
        alias: Optional field alias.
    """
    yaml_value = _yaml_defaults.get(key.upper(), default)
    if yaml_value is None:
        yaml_value = default
    return Field(default=yaml_value, alias=alias)


class Settings(BaseSettings):
    """Application settings loaded from YAML defaults + environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ============================================================================
    # Agent / users
    # ============================================================================

    AGENT_NAME: str = _yaml_field("AGENT_NAME", "Wellness Companion")
    DEFAULT_USER_ID: str = _yaml_field("USERS_DEFAULT_ID", "default")

    # Per-user storage: data/users/{user_id}/wellness.db
    USERS_ROOT: Path = _yaml_field("STORAGE_PATHS_USERS_ROOT", Path("./data/users"))

    # ============================================================================
    # Preference defaults
    # ============================================================================

    DEFAULT_CHECK_IN_TIME: str = _yaml_field(
        "PREFERENCES_DEFAULT_CHECK_IN_TIME", "09:00"
    )
    DEFAULT_TIMEZONE: str = _yaml_field("PREFERENCES_DEFAULT_TIMEZONE", "UTC")
    DEFAULT_MODEL_PROVIDER: Literal["openai", "workers-ai"] = _yaml_field(
        "PREFERENCES_DEFAULT_MODEL_PROVIDER", "openai"
    )

    # ============================================================================
    # Check-in orchestration
    # ============================================================================

    CHECK_IN_MODE: Literal["workflow", "cron"] = _yaml_field("CHECKIN_MODE", "workflow")
    CHECK_IN_REPLY_TIMEOUT_SECONDS: int = _yaml_field(
        "CHECKIN_REPLY_TIMEOUT_SECONDS", 24 * 60 * 60
    )
    TONE_ANALYZER: Literal["keyword", "llm"] = _yaml_field(
        "CHECKIN_TONE_ANALYZER", "keyword"
    )
    STATE_RECENT_CHECK_INS: int = _yaml_field("CHECKIN_STATE_RECENT_CHECK_INS", 30)

    SCHEDULER_ENABLED: bool = _yaml_field("SCHEDULER_ENABLED", True)

    # ============================================================================
    # LLM Configuration
    # ============================================================================

    OPENAI_API_KEY: str | None = None  # Secret
    OPENAI_MODEL: str = _yaml_field("LLM_OPENAI_MODEL", "gpt-4o-2024-11-20")

    # Workers AI is reached through its OpenAI-compatible endpoint
    WORKERS_AI_ACCOUNT_ID: str | None = None
    WORKERS_AI_API_TOKEN: str | None = None  # Secret
    WORKERS_AI_MODEL: str = _yaml_field(
        "LLM_WORKERS_AI_MODEL", "@cf/meta/llama-3.3-70b-instruct-fp8-fast"
    )

    # ============================================================================
    # HTTP
    # ============================================================================

    HTTP_HOST: str = _yaml_field("HTTP_HOST", "0.0.0.0")
    HTTP_PORT: int = _yaml_field("HTTP_PORT", 8000)

    # Logging
    LOG_LEVEL: str = _yaml_field("LOGGING_LEVEL", "INFO")
    LOG_FILE: str | None = _yaml_field("LOGGING_FILE", None)

    @field_validator("USERS_ROOT", mode="before")
    @classmethod
    def resolve_users_root(cls, v: str | Path) -> Path:
        """Resolve users root to absolute path."""
        return Path(v).resolve()

    @field_validator("CHECK_IN_REPLY_TIMEOUT_SECONDS")
    @classmethod
    def positive_timeout(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("CHECK_IN_REPLY_TIMEOUT_SECONDS must be positive")
        return v

    # ============================================================================
    # Per-user paths
    # ============================================================================

    def _sanitize_id(self, id_str: str) -> str:
        """Sanitize an ID for use as directory name."""
        replacements = {"\\": "_", "/": "_", "@": "_", ":": "_", "..": "_"}
        for old, new in replacements.items():
            id_str = id_str.replace(old, new)
        return id_str

    def get_user_root(self, user_id: str) -> Path:
        """
        Get the root directory for a specific user.

        Returns: data/users/{user_id}/
        """
        user_path = (self.USERS_ROOT / self._sanitize_id(user_id)).resolve()
        user_path.mkdir(parents=True, exist_ok=True)
        return user_path

    def get_user_db_path(self, user_id: str) -> Path:
        """
        Get the wellness database path for a user.

        Returns: data/users/{user_id}/wellness.db
        """
        return self.get_user_root(user_id) / "wellness.db"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Singleton instance
settings = get_settings()
