"""Application configuration."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


def _csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Application settings loaded from environment variables and ``.env``."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # API
    APP_NAME: str = "OA Workflow Service"
    APP_VERSION: str = "1.0.0"
    API_V1_PREFIX: str = "/api/v1"
    ENVIRONMENT: str = "development"  # development, staging, production

    # Server (used by ``oa-workflow`` / ``app.main.run``)
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 1

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./oa.db"
    SQLALCHEMY_ECHO: bool = False
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10

    # Security; SECRET_KEY must be set in production
    SECRET_KEY: str = ""
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 1440
    REFRESH_TOKEN_EXPIRE_DAYS: int = 30

    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:8080"

    # Workflow engine
    ADMIN_ROLE_CODE: str = "admin"
    ADMIN_OVERRIDE_ENABLED: bool = True
    TIERED_APPROVAL_CATEGORIES: str = "leave,overtime,expense"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def cors_origins_list(self) -> list[str]:
        return _csv(self.ALLOWED_ORIGINS)

    @property
    def tiered_categories(self) -> set[str]:
        """Categories resolved by step position (supervisor, then admin)."""
        return {c.lower() for c in _csv(self.TIERED_APPROVAL_CATEGORIES)}

    def validate_secrets(self) -> None:
        """Refuse to run in production with an empty SECRET_KEY.

        Raises:
            RuntimeError: If production environment has no SECRET_KEY
        """
        if self.is_production and not self.SECRET_KEY:
            raise RuntimeError(
                "CRITICAL: SECRET_KEY environment variable must be set in production."
            )


@lru_cache()
def get_settings() -> Settings:
    """Settings are read from the environment once per process."""
    return Settings()
