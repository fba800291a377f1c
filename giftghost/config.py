from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database - can use either DATABASE_URL or separate params
    database_url: str | None = None

    # Separate DB params (for passwords with special characters)
    db_host: str | None = None
    db_port: int = 5432
    db_user: str = "postgres"
    db_password: str | None = None
    db_name: str = "postgres"

    # Supabase Auth (authenticated callers get the higher tier)
    supabase_url: str | None = None
    supabase_jwt_secret: str | None = None

    # LLM completion service
    openai_api_key: str | None = None
    openai_api_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o"
    openai_timeout_seconds: float = 60.0
    mock_mode: bool = False  # Canned completions, no OpenAI calls

    # Rate limiting
    rate_limit_anonymous_per_day: int = 5
    rate_limit_user_per_day: int = 10
    rate_limit_window_seconds: int = 60
    rate_limit_fail_open: bool = False  # Store outage policy (default: deny)

    # Trace sessions
    trace_input_max_chars: int = 10_000

    # Event tracker
    tracking_endpoint: str = "http://localhost:8000/api/track"
    tracking_batch_size: int = 10
    tracking_flush_interval_seconds: float = 5.0
    tracking_max_queue_size: int = 1000

    # CORS - production frontend URL
    frontend_url: str | None = None


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
