from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    APP_NAME: str = "QuoteDesk"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str = "postgresql+asyncpg://localhost:5432/quotedesk"
    DATABASE_SYNC_URL: str = ""
    DATABASE_SSL: bool = False
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 5
    DB_POOL_RECYCLE: int = 300

    JWT_PUBLIC_KEY_PATH: Optional[str] = "keys/public.pem"
    JWT_SECRET_KEY: Optional[str] = None  # used instead of the key file for HS* algorithms
    JWT_ALGORITHM: str = "RS256"

    EMAIL_GATEWAY_URL: str = ""
    EMAIL_GATEWAY_TOKEN: Optional[str] = None
    EXTRACTION_SERVICE_URL: str = ""
    EXTRACTION_SERVICE_TOKEN: Optional[str] = None
    COLLABORATOR_TIMEOUT_SECONDS: float = 20.0

    OPERATIONAL_PART_PREFIX: str = "MISC-"
    QUOTE_RESPONSE_BUSINESS_DAYS: int = 3
    DEFAULT_QUOTE_VALIDITY_DAYS: int = 30

    INTERNAL_JOB_SECRET: Optional[str] = None  # Required in production for /internal/jobs/* auth
    CORS_ORIGINS: str = "http://localhost:3000"

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",")]

    @property
    def sync_database_url(self) -> str:
        """Driver-less URL for Alembic; derived from DATABASE_URL unless set explicitly."""
        if self.DATABASE_SYNC_URL:
            return self.DATABASE_SYNC_URL
        return self.DATABASE_URL.replace("+asyncpg", "").replace("+aiosqlite", "")

    @property
    def collaborators_configured(self) -> bool:
        return bool(self.EMAIL_GATEWAY_URL and self.EXTRACTION_SERVICE_URL)

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
