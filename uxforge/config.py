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

    # App
    debug: bool = False
    log_level: str = "INFO"
    cors_origins: list[str] = ["*"]

    # Redis (chat session persistence)
    redis_url: str = "redis://localhost:6379"
    session_key_prefix: str = "uxforge:chat_session"
    session_max_age_hours: int = 24
    session_archive_limit: int = 10  # discarded sessions kept per client
    session_archive_ttl_hours: int = 72
    session_cache_idle_minutes: int = 30  # idle per-client stores are dropped from memory

    # LLM (OpenAI-compatible endpoint)
    llm_api_key: str = ""
    llm_base_url: str = "https://api.mistral.ai/v1"
    llm_model: str = "mistral-medium-latest"
    llm_vision_model: str = "pixtral-large-latest"
    llm_timeout_seconds: float = 120.0

    # Per-use completion limits
    chat_max_tokens: int = 200
    assistant_max_tokens: int = 1024
    analysis_max_tokens: int = 2000
    codegen_max_tokens: int = 4000
    intent_max_tokens: int = 10
    clarification_max_tokens: int = 200

    # --- Sandbox (E2B) ---
    e2b_api_key: str = ""
    sandbox_timeout_seconds: int = 300
    sandbox_port: int = 3000
    sandbox_workdir: str = "/home/user"
    sandbox_command_timeout_seconds: int = 30
    sandbox_ready_max_attempts: int = 30
    sandbox_ready_interval_seconds: float = 1.0

    # --- Instruction assets ---
    brand_guide_path: str | None = None  # overrides the packaged brand guide


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
