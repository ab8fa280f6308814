from pydantic_settings import BaseSettings
from functools import lru_cache
from pathlib import Path


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "DocShare Links"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    # Explicit level name (e.g. "WARNING"); blank falls back to DEBUG/INFO
    LOG_LEVEL: str = ""
    # Keep only this many leading characters of link ids in log output
    LOG_LINK_ID_PREFIX: int = 4
    CORS_ORIGINS: list[str] = ["*"]

    # Database. Credentials are spliced into DATABASE_URL per store handle;
    # blank credentials mean the URL is used as is.
    DATABASE_URL: str = "sqlite+aiosqlite:///./docshare.db"
    DATABASE_ADMIN_USER: str = ""
    DATABASE_ADMIN_PASSWORD: str = ""
    DATABASE_ANON_USER: str = ""
    DATABASE_ANON_PASSWORD: str = ""

    # Identity
    JWT_SECRET_KEY: str = "change-me-in-production-please-32chars"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    AUTH_COOKIE_NAME: str = "access_token"

    # Redis
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""

    # Link Settings
    LINK_ID_LENGTH: int = 12
    LINK_CREATE_MAX_ATTEMPTS: int = 5
    ENFORCE_MAX_VIEWS: bool = False
    GATE_LOGGING_ON_ACTIVE_STATE: bool = False

    # Rate Limiting
    RATE_LIMIT_LOG_PER_HOUR: int = 600
    RATE_LIMIT_CREATE_PER_HOUR: int = 120

    class Config:
        # Resolve backend/.env relative to this file so settings load correctly
        env_file = str(Path(__file__).resolve().parents[1] / ".env")
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
