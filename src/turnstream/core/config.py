"""
Configuration management for the turnstream service.

Loads settings from environment variables and provides a centralized
configuration object for all components.

Configuration precedence (highest to lowest):
1. Keyword arguments passed to TurnConfig
2. Environment variables (TURNSTREAM_* prefix)
3. .env file
4. pyproject.toml [tool.turnstream] section
5. Hardcoded defaults
"""

import logging
import sys
from pathlib import Path
from typing import Any, ClassVar

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

# Import tomllib for Python 3.11+, tomli for Python 3.10
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from ..models.enums import LogLevel

logger = logging.getLogger(__name__)


def load_pyproject_defaults() -> dict[str, Any]:
    """
    Load defaults from [tool.turnstream] section in pyproject.toml.

    Returns:
        Dictionary of configuration overrides from pyproject.toml
    """
    pyproject_path = Path("pyproject.toml")

    if not pyproject_path.exists():
        return {}

    try:
        with pyproject_path.open("rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Could not load pyproject.toml: {e}")
        return {}

    tool_config = data.get("tool", {}).get("turnstream", {})
    if tool_config:
        logger.debug(f"Loaded {len(tool_config)} settings from pyproject.toml")

    return tool_config


class PyProjectTomlSettingsSource(PydanticBaseSettingsSource):
    """Loads configuration from the [tool.turnstream] section of pyproject.toml."""

    def get_field_value(self, field_name: str, field_info: Any) -> tuple[Any, str, bool]:
        """Not used in this implementation."""
        return None, "", False

    def __call__(self) -> dict[str, Any]:
        return load_pyproject_defaults()


class TurnConfig(BaseSettings):
    """
    Main configuration for the turn orchestrator, debate scheduler and HTTP service.
    """

    model_config = SettingsConfigDict(
        env_prefix="TURNSTREAM_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Secret fields that should be excluded from exports by default
    SECRET_FIELDS: ClassVar[frozenset[str]] = frozenset({"api_key"})

    # Upstream provider (LiteLLM)
    api_key: str | None = Field(default=None, description="Upstream provider API key")
    api_base: str | None = Field(
        default=None, description="Base URL of an OpenAI-compatible upstream endpoint"
    )
    chat_model: str = Field(
        default="openai/gpt-4o-mini", description="Model for turns, debates and suggestions"
    )
    image_model: str = Field(default="dall-e-3", description="Image generation model")
    image_size: str = Field(default="1024x1024")
    image_quality: str = Field(default="standard")

    # Turn streaming
    temperature: float = Field(default=0.7, description="Sampling temperature for turns")
    primary_max_tokens: int = Field(default=1000, description="Max tokens for the first stream")
    secondary_max_tokens: int = Field(
        default=2000, description="Max tokens for the stream after tool results"
    )
    history_window: int = Field(
        default=20, description="Most recent stored messages sent as context"
    )
    min_data_uri_length: int = Field(
        default=100, description="Shorter base64 image references are rejected as corrupt"
    )
    tool_timeout_seconds: float = Field(default=60.0, description="Timeout for one tool call")
    tool_instructions: str | None = Field(
        default=None, description="Optional guidance appended to the system directive"
    )

    # Anonymous callers
    anonymous_message_limit: int = Field(
        default=15, description="Turns an anonymous session may start"
    )

    # User memory
    memory_max_items: int = Field(default=50, description="Facts a user may keep in memory")
    memory_max_item_length: int = Field(
        default=500, description="Characters allowed per memory fact"
    )

    # Follow-up suggestions
    suggestion_model: str | None = Field(
        default=None, description="Model for suggestions (defaults to chat_model)"
    )
    suggestion_max_tokens: int = Field(default=200)
    suggestion_temperature: float = Field(default=0.8)
    suggestion_timeout_seconds: float = Field(
        default=10.0, description="Upper bound on the whole suggestion step"
    )
    suggestion_max_attempts: int = Field(default=2, description="Attempts for the suggestion call")

    # Debate
    debate_rounds: int = Field(default=3, description="Rounds per debate, two speakers each")
    debate_max_tokens: int = Field(default=400)
    debate_temperature: float = Field(default=0.8)

    # Monitoring and Logging
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    enable_rich_console: bool = Field(
        default=True, description="Enable rich console output (banners, tables)"
    )
    log_file: Path | None = Field(
        default=None,
        description="Path to main application log file (set to None to disable file logging)",
    )
    log_max_bytes: int = Field(
        default=10 * 1024 * 1024, description="Maximum log file size before rotation"  # 10MB
    )
    log_backup_count: int = Field(default=5, description="Number of backup log files to keep")

    # HTTP server
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """
        Customize the sources and their priority for loading configuration.

        Returns:
            Tuple of settings sources in priority order
        """
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            PyProjectTomlSettingsSource(settings_cls),
            file_secret_settings,
        )

    @field_validator("temperature", "suggestion_temperature", "debate_temperature")
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        if not 0.0 <= v <= 2.0:
            raise ValueError(f"temperature must be 0.0-2.0, got {v}")
        return v

    @field_validator(
        "primary_max_tokens",
        "secondary_max_tokens",
        "suggestion_max_tokens",
        "debate_max_tokens",
    )
    @classmethod
    def validate_token_limits(cls, v: int) -> int:
        """Ensure token limits are positive and reasonable"""
        if v <= 0:
            raise ValueError(f"Token limit must be positive, got {v}")
        if v > 100_000:
            logger.warning(
                f"Very high token limit ({v:,}). Ensure this matches your model's capabilities."
            )
        return v

    @field_validator(
        "history_window",
        "anonymous_message_limit",
        "memory_max_items",
        "memory_max_item_length",
        "debate_rounds",
    )
    @classmethod
    def validate_positive_count(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"must be at least 1, got {v}")
        return v

    @field_validator("suggestion_max_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        if not 1 <= v <= 5:
            raise ValueError(f"suggestion_max_attempts must be 1-5, got {v}")
        return v

    @field_validator("tool_timeout_seconds", "suggestion_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"Timeout must be positive, got {v}")
        return v

    @model_validator(mode="after")
    def validate_cross_field_constraints(self) -> "TurnConfig":
        """Cross-field validation of configuration constraints"""
        if self.secondary_max_tokens < self.primary_max_tokens:
            logger.warning(
                f"secondary_max_tokens ({self.secondary_max_tokens:,}) < "
                f"primary_max_tokens ({self.primary_max_tokens:,}). "
                "Replies after a tool call may be cut short."
            )
        return self

    @property
    def effective_suggestion_model(self) -> str:
        return self.suggestion_model or self.chat_model

    def ensure_log_directory(self) -> None:
        """Ensure the log directory exists."""
        if self.log_file and self.log_file.parent:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)


# Global configuration instance
_config: TurnConfig | None = None


def get_config() -> TurnConfig:
    """
    Get the global configuration instance, creating it on first use.

    Returns:
        TurnConfig instance
    """
    global _config
    if _config is None:
        _config = TurnConfig()
        _config.ensure_log_directory()
    return _config


def reset_config() -> None:
    """Reset the global configuration (mainly for testing)."""
    global _config
    _config = None
