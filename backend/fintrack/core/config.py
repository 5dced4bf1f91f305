from pydantic_settings import BaseSettings
from typing import Optional
import os


class Settings(BaseSettings):
    # Application settings
    APP_NAME: str = "Fintrack"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # API settings
    API_V1_STR: str = "/api/v1"

    # CORS settings
    BACKEND_CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

    # File paths
    DATA_DIR: str = "./app_data"
    CREDENTIAL_DB_PATH: str = "./app_data/shared/credentials.db"

    # Tenant storage: "per_tenant" (one database per user) or "shared"
    TENANT_STRATEGY: str = "per_tenant"
    TENANT_DATA_DIR: str = "./app_data/tenants"
    SHARED_DATA_DB_PATH: str = "./app_data/shared/finance.db"

    # Token settings
    JWT_SECRET: str = ""
    JWT_REFRESH_SECRET: Optional[str] = None
    JWT_ALGORITHM: str = "HS256"
    JWT_ISSUER: str = "finance-tracker"
    JWT_AUDIENCE: str = "finance-tracker-users"
    ACCESS_TOKEN_EXPIRE_HOURS: int = 24
    REFRESH_TOKEN_EXPIRE_DAYS: int = 30

    # Password and lockout settings
    BCRYPT_ROUNDS: int = 12
    MAX_LOGIN_ATTEMPTS: int = 5
    LOCKOUT_DURATION_MINUTES: int = 15

    # Session settings
    SESSION_CHECK_ON_REQUEST: bool = True
    SESSION_SWEEP_ENABLED: bool = True
    SESSION_SWEEP_INTERVAL_MINUTES: int = 60
    REFRESH_COOKIE_NAME: str = "refreshToken"
    REFRESH_COOKIE_SECURE: bool = False

    # Google OAuth settings
    GOOGLE_CLIENT_ID: Optional[str] = None
    GOOGLE_CLIENT_SECRET: Optional[str] = None
    GOOGLE_REDIRECT_URI: Optional[str] = None
    OAUTH_STATE_TTL_SECONDS: int = 600
    FRONTEND_URL: str = "http://localhost:3000"

    # Rate limits per client address, in limits notation
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_STORAGE_URI: str = "memory://"
    AUTH_RATE_LIMIT: str = "100 per 15 minutes"
    LOGIN_RATE_LIMIT: str = "10 per 15 minutes"

    @property
    def google_oauth_enabled(self) -> bool:
        return bool(self.GOOGLE_CLIENT_ID and self.GOOGLE_CLIENT_SECRET and self.GOOGLE_REDIRECT_URI)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


settings = Settings()

# Create necessary directories
os.makedirs(settings.DATA_DIR, exist_ok=True)
