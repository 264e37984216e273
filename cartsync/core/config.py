from functools import lru_cache
from typing import Literal
import os
from pydantic_settings import BaseSettings, SettingsConfigDict

EnvName = Literal["development", "production"]

def _env_file_for(app_env: EnvName) -> str:
    return ".env.development" if app_env == "development" else ".env.production"

class Settings(BaseSettings):

    # Core
    APP_ENV: EnvName = "development"
    APP_NAME: str = "CartSync"
    DEBUG: bool = False
    ENGINE_DEBUG: bool = False                 # cart engine logs at DEBUG without the HTTP noise
    GIT_SHA: str = "unknown"

    # Mongo (catalog, purchase events, merchant settings)
    MONGO_URI: str = ""
    MONGO_DB: str = "cartsync"

    # Redis (session memory + search cache), optional
    REDIS_URL: str = ""

    # Storefront AJAX cart API
    STOREFRONT_URL: str = "http://localhost:3000"
    storefront_timeout_s: float = 5.0
    DEFAULT_SHOP: str = "default"

    # Cache config
    search_cache_ttl: int = 10 * 60            # keyword searches, 10 minutes
    popular_cache_ttl: int = 5 * 60            # popularity fallback, 5 minutes
    session_ttl: int = 12 * 3600               # gift decline memory lives as long as a browser session

    # Engine timings
    prefetch_ttl_s: float = 5.0                # prefetched cart snapshot is single-use and short-lived
    debounce_s: float = 0.05                   # visible list re-derivation window

    # API
    api_prefix: str = "/api"

    # pydantic-settings config will be set dynamically in the factory below
    model_config = SettingsConfigDict(env_file=None, case_sensitive=True, extra="ignore")

@lru_cache
def get_settings() -> Settings:
    """
    Factory that chooses the right .env file based on APP_ENV.
    Cache makes it cheap to inject via FastAPI dependencies.
    """
    app_env: EnvName = os.getenv("APP_ENV", "development")  # earliest switch
    env_file = _env_file_for(app_env)
    return Settings(
                _env_file=env_file,  # load .env.development or .env.production
                _env_file_encoding="utf-8"
    )
