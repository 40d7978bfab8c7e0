from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # App settings
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    PROJECT_NAME: str = "StrongBond"
    VERSION: str = "0.1.0"
    API_PREFIX: str = "/api"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"

    # Security
    SECRET_KEY: str = "dev_secret_key_change_in_production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 1440  # 24 hours
    REFRESH_TOKEN_EXPIRE_DAYS: int = 30

    # CORS (companion API only; the relay allows every origin)
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]
    CORS_ORIGIN_REGEX: str = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"

    # Database (persistence gateway URL, credentials embedded in the URL)
    DATABASE_URL: str = "sqlite:///./strongbond.db"

    # OpenAI
    OPENAI_API_KEY: str = ""
    MODEL_NAME: str = "gpt-4o-mini"
    TEMPERATURE: float = 0.7
    MAX_TOKENS: int = 500
    PRESENCE_PENALTY: float = 0.1
    FREQUENCY_PENALTY: float = 0.1

    # Message relay
    RUN_POLL_INTERVAL_S: float = 1.0
    RUN_POLL_MAX_ATTEMPTS: int = 30
    DEFAULT_ASSISTANT_ROLE: str = "Coach"
    FALLBACK_HISTORY_MESSAGES: int = 10
    # When True the bearer token subject must match the userId in the body
    RELAY_REQUIRE_AUTH: bool = True

    # Entitlements (RevenueCat)
    REVENUECAT_API_KEY: str = ""
    REVENUECAT_API_URL: str = "https://api.revenuecat.com/v1"
    REVENUECAT_TIMEOUT_S: float = 8.0
    PRO_ENTITLEMENT_ID: str = "pro_user"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    settings = Settings()

    # Only validate OpenAI API key in production
    if settings.ENVIRONMENT == "production" and not settings.OPENAI_API_KEY:
        raise ValueError("OPENAI_API_KEY is required in production environment")

    return settings
