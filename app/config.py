"""Application settings loaded from environment variables and .env."""
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful AI assistant. Provide clear, concise, and helpful responses."
)


class Settings(BaseSettings):
    """Central configuration. Credentials stay optional so the app can boot without them."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # API
    APP_TITLE: str = "HydraChat API"
    APP_URL: str = "http://localhost:5173"
    CORS_ORIGINS: list[str] = Field(default_factory=lambda: ["*"])
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./chat.db"

    # Auth (Supabase-style HS256 access tokens)
    JWT_SECRET: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    JWT_AUDIENCE: Optional[str] = None

    # Completion provider (OpenAI-compatible gateway)
    OPENROUTER_API_KEY: Optional[str] = None
    COMPLETION_BASE_URL: str = "https://openrouter.ai/api/v1"
    COMPLETION_MODEL: str = "deepseek/deepseek-r1"
    COMPLETION_TEMPERATURE: float = 0.7
    COMPLETION_MAX_TOKENS: int = 1000
    COMPLETION_TIMEOUT: float = 60.0
    SYSTEM_PROMPT: str = DEFAULT_SYSTEM_PROMPT

    # Billing
    STRIPE_SECRET_KEY: Optional[str] = None
    BILLING_CURRENCY: str = "usd"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
