"""Service configuration, read from the environment and .env"""

import json
from functools import lru_cache
from typing import Annotated, Any, List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode
from sqlalchemy.engine import URL

DEV_SECRET_KEY = "dev-secret-key-change-in-production-use-openssl-rand-hex-32"


class Settings(BaseSettings):
    """All tunables of the credential service. Names match the environment variables."""

    # Application
    APP_NAME: str = "authcore"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    APP_URL: str = "http://localhost:3000"

    # uvicorn, when started via `python -m authcore.main`
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 2

    # Relational store
    DATABASE_URL: str = ""
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "authcore_db"
    POSTGRES_USER: str = "authcore"
    POSTGRES_PASSWORD: str = "authcore"
    DATABASE_POOL_SIZE: int = 30
    DATABASE_MAX_OVERFLOW: int = 20
    DATABASE_POOL_TIMEOUT: int = 30

    # Redis (session flags, lockout counters, pending purpose tokens)
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_KEY_PREFIX: str = "authcore:"
    REDIS_SOCKET_TIMEOUT: float = 5.0

    # Token signing
    SECRET_KEY: str = DEV_SECRET_KEY
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    REFRESH_REUSE_GRACE_SECONDS: int = 60
    REFRESH_TOKEN_RETENTION_DAYS: int = 7
    MFA_TOKEN_EXPIRE_MINUTES: int = 5
    EMAIL_VERIFICATION_EXPIRE_HOURS: int = 24
    PASSWORD_RESET_EXPIRE_MINUTES: int = 60

    # Brute-force lockout
    MAX_FAILED_LOGIN_ATTEMPTS: int = 5
    FAILED_LOGIN_WINDOW_MINUTES: int = 30
    LOCKOUT_DURATION_MINUTES: int = 30

    # Request throttling (per client IP)
    LOGIN_RATE_LIMIT_PER_MINUTE: int = 10
    LOGIN_RATE_LIMIT_PER_HOUR: int = 50
    REFRESH_RATE_LIMIT_PER_MINUTE: int = 60
    RESET_RATE_LIMIT_PER_HOUR: int = 10

    # MFA
    MFA_ISSUER: str = "authcore"
    MFA_VALID_WINDOW: int = 1
    MFA_BACKUP_CODE_COUNT: int = 10

    # Passwords
    BCRYPT_ROUNDS: int = 12
    PASSWORD_MIN_LENGTH: int = 8

    # Refresh cookie
    REFRESH_COOKIE_NAME: str = "refresh_token"
    COOKIE_SECURE: bool = True
    COOKIE_SAMESITE: str = "strict"
    COOKIE_DOMAIN: Optional[str] = None

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # CORS
    CORS_ORIGINS: Annotated[List[str], NoDecode] = ["http://localhost:3000"]

    # Schema bootstrap at startup
    DB_INIT_MODE: str = "migrate"  # migrate | create_all | off
    DB_REQUIRE_HEAD: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        """CORS_ORIGINS may be a JSON list or a comma-separated string."""
        if isinstance(value, str):
            raw = value.strip()
            if raw.startswith("["):
                return json.loads(raw)
            return [part.strip() for part in raw.split(",") if part.strip()]
        return value

    @property
    def access_token_ttl_seconds(self) -> int:
        return self.ACCESS_TOKEN_EXPIRE_MINUTES * 60

    @property
    def refresh_token_ttl_seconds(self) -> int:
        return self.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 3600

    def get_database_url(self) -> str:
        """DATABASE_URL if set, otherwise a PostgreSQL URL assembled from the POSTGRES_* parts."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return URL.create(
            "postgresql",
            username=self.POSTGRES_USER,
            password=self.POSTGRES_PASSWORD,
            host=self.POSTGRES_HOST,
            port=self.POSTGRES_PORT,
            database=self.POSTGRES_DB,
        ).render_as_string(hide_password=False)

    def validate_security_settings(self) -> None:
        """
        Refuse to run production with development defaults.

        Raises:
            ValueError: listing every insecure setting found
        """
        if self.ENVIRONMENT.lower() != "production":
            return

        problems = []
        if self.SECRET_KEY in (DEV_SECRET_KEY, "change-me") or len(self.SECRET_KEY) < 32:
            problems.append("SECRET_KEY must be a random value of at least 32 characters (openssl rand -hex 32)")
        if not self.COOKIE_SECURE:
            problems.append("COOKIE_SECURE must be enabled")
        if self.REFRESH_REUSE_GRACE_SECONDS >= self.ACCESS_TOKEN_EXPIRE_MINUTES * 60:
            problems.append("REFRESH_REUSE_GRACE_SECONDS must be shorter than the access token lifetime")
        if problems:
            raise ValueError("Insecure production configuration: " + "; ".join(problems))


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
