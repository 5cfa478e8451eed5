"""Application Configuration — environment-driven settings via pydantic-settings.

Invariants:
    - All secrets come from environment variables (never hardcoded)
    - get_settings() is cached (lru_cache) — single instance per process

Design Decisions:
    - pydantic-settings over raw os.environ: validation, type coercion, .env file support
    - Defaults provided for all non-secret settings: works out-of-the-box with docker-compose
    - Missing data-API keys are allowed at startup; the tool reports API_UNAVAILABLE when called
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Database
    database_url: str = (
        "postgresql+asyncpg://chatdesk:chatdesk@db:5432/chatdesk"
    )

    @field_validator("database_url", mode="before")
    @classmethod
    def convert_postgres_url(cls, v: str) -> str:
        """Hosting providers hand out postgresql:// but asyncpg needs postgresql+asyncpg://."""
        if isinstance(v, str) and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Anthropic
    anthropic_api_key: str = "sk-ant-placeholder"
    anthropic_timeout_seconds: int = 120
    chat_model: str = "claude-sonnet-4-5"
    chat_max_tokens: int = 4096
    chat_max_tool_rounds: int = 5
    chat_history_limit: int = 50

    # External data tools
    openweather_api_key: str = ""
    openweather_base_url: str = "https://api.openweathermap.org/data/2.5"
    alphavantage_api_key: str = ""
    alphavantage_base_url: str = "https://www.alphavantage.co"
    motorsport_base_url: str = "https://api.jolpi.ca/ergast/f1"
    data_api_timeout_seconds: float = 10.0
    tool_retry_attempts: int = 3
    tool_retry_base_delay_seconds: float = 1.0

    # OAuth
    google_client_id: str = ""
    google_client_secret: str = ""
    github_client_id: str = ""
    github_client_secret: str = ""
    oauth_redirect_base_url: str = "http://localhost:8000"
    post_login_redirect_url: str = "/"

    # Sessions
    session_cookie_name: str = "chatdesk_session"
    session_max_age_days: int = 30
    cookie_secure: bool = False

    # Rate limiting
    rate_limit_sweep_interval_seconds: float = 300.0

    # API
    cors_origins: list[str] = ["http://localhost:3000"]

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"


@lru_cache
def get_settings() -> Settings:
    return Settings()
