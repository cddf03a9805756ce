from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENVIRONMENT: str = "development"

    # "memory" keeps orders in process, "supabase" uses the orders table
    ORDER_STORE_BACKEND: str = "memory"

    SUPABASE_URL: Optional[str] = None
    SUPABASE_KEY: Optional[str] = None
    SUPABASE_SERVICE_KEY: Optional[str] = None

    REDIS_URL: str = "redis://localhost:6379"

    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"

    ACCESS_TOKEN_EXPIRE_MINUTES: int = 1440
    SESSION_TIMEOUT_MINUTES: int = 15

    RESTAURANT_NAME: str = "PayPer-Suite"
    RESTAURANT_TAGLINE: str = "Rooftop Multicuisine"
    CURRENCY_SYMBOL: str = "₹"
    TIMEZONE: str = "Asia/Kolkata"

    OPT_LOCK_MAX_RETRIES: int = 3
    OPT_LOCK_BASE_DELAY_MS: int = 20
    OPT_LOCK_MAX_DELAY_MS: int = 500
    OPT_LOCK_JITTER_MS: int = 20

    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000"]

    @property
    def uses_supabase(self) -> bool:
        return self.ORDER_STORE_BACKEND == "supabase"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
