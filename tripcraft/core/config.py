from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # API Settings
    API_PREFIX: str = "/api"
    PROJECT_NAME: str = "TripCraft Itinerary API"
    VERSION: str = "1.0.0"

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/tripcraft.db"
    DATABASE_ECHO: bool = False

    # Language model
    LLM_PROVIDER: str = "openai"
    LLM_MODEL: Optional[str] = None
    LLM_API_KEY: Optional[str] = None
    OPENAI_API_KEY: Optional[str] = None
    ANTHROPIC_API_KEY: Optional[str] = None
    DEEPSEEK_API_KEY: Optional[str] = None
    LLM_MAX_TOKENS: int = 2000
    LLM_TEMPERATURE: float = 0.7

    # External APIs
    GOOGLE_MAPS_API_KEY: Optional[str] = None
    PROVIDER_TIMEOUT_SECONDS: int = 30

    # Cache TTLs
    ROUTE_CACHE_TTL_DAYS: int = 7
    DURATION_CACHE_TTL_DAYS: int = 30
    PLACE_CACHE_TTL_DAYS: int = 7

    # Retry policies (per provider)
    MAPS_RETRY_ATTEMPTS: int = 3
    MAPS_RETRY_MIN_WAIT: float = 0.5
    MAPS_RETRY_MAX_WAIT: float = 4.0
    LLM_RETRY_ATTEMPTS: int = 3
    LLM_RETRY_MIN_WAIT: float = 4.0
    LLM_RETRY_MAX_WAIT: float = 10.0

    # Planner
    PLANNER_FANOUT: int = 4
    ACTIVITY_CANDIDATES: int = 15
    RESTAURANT_CANDIDATES: int = 10
    HOTEL_CANDIDATES: int = 5
    DURATION_ESTIMATE_LIMIT: int = 10

    # Logging
    LOG_DIR: str = "logs"
    LOG_LEVEL: str = "INFO"
    DEBUG: bool = False

    # Validation notices language (pt-BR or en-US)
    VALIDATION_LOCALE: str = "pt-BR"

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=True, extra="ignore"
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
