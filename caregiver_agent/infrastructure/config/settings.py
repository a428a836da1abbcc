"""
Runtime configuration loaded from the environment (or a local .env file)
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Conversation engine settings"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Service
    SERVICE_NAME: str = "caregiver-agent"
    ENVIRONMENT: Literal["development", "staging", "production"] = "development"
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: Literal["json", "console"] = "json"

    # Conversation loop
    MAX_HISTORY: int = 20
    MAX_TOOL_TURNS: int = 5
    MAX_RETRIES: int = 3
    RETRY_BASE_DELAY_SECONDS: float = 1.0
    DEFAULT_HISTORY_COUNT: int = 3
    HEALTH_HISTORY_COUNT: int = 5

    # Context
    ACTIVITY_LOOKBACK_DAYS: int = 7
    MONTH_LOOKBACK_DAYS: int = 30
    CONTEXT_CACHE_TTL_SECONDS: int = 300

    # Rate limiting (AI chat: 10 requests per minute)
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_REQUESTS: int = 10
    RATE_LIMIT_WINDOW_SECONDS: int = 60

    # Backends
    DATABASE_URL: str = "sqlite+aiosqlite:///./caregiver_agent.db"
    REDIS_URL: Optional[str] = None

    # Model
    MODEL_NAME: str = "gemini-2.5-flash"
    MODEL_PROVIDER: str = "google_genai"
    MODEL_TEMPERATURE: float = 0.3

    # Tracing
    LANGFUSE_PUBLIC_KEY: Optional[str] = None
    LANGFUSE_SECRET_KEY: SecretStr = SecretStr("")
    LANGFUSE_HOST: str = "https://cloud.langfuse.com"

    @property
    def tracing_enabled(self) -> bool:
        return bool(self.LANGFUSE_PUBLIC_KEY and self.LANGFUSE_SECRET_KEY.get_secret_value())


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings instance"""
    return Settings()
