"""Application configuration using pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # LLM (any OpenAI-compatible chat completions endpoint)
    llm_api_key: str = ""
    llm_base_url: str = "https://api.openai.com/v1"
    llm_model: str = "gpt-4o-mini"
    llm_temperature: float = 0.7
    llm_max_tokens: int = 1000
    llm_timeout_seconds: float = 30.0

    # Conversation persistence
    conversation_state_ttl_seconds: int = 86_400
    conversation_stale_after_hours: int = 24

    # Conversation event streams
    conversation_stream_ttl: int = 600
    conversation_stream_maxlen: int = 500

    # Defaults applied when a form config omits its limits
    default_max_turns: int = 15
    default_max_duration_minutes: int = 30
    default_min_confidence: float = 0.75

    # Graceful wrap-up kicks in when this close to a limit
    wrap_up_turns_threshold: int = 2
    wrap_up_minutes_threshold: float = 2.0

    # Extracted fields below this confidence produce a validation warning
    low_confidence_threshold: float = 0.7

    # App
    debug: bool = False
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
