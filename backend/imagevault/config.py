"""
Configuration Settings
Environment variables and application settings
"""

from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    # MongoDB
    MONGODB_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "imagevault"

    # JWT session tokens
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 7 * 24 * 60  # 7 days

    # Revocation list: per-token negative lookups may be served from cache
    REVOCATION_CACHE_SECONDS: int = 5

    # Verification tokens
    VERIFY_EMAIL_TOKEN_TTL_HOURS: int = 24
    RESET_PASSWORD_TOKEN_TTL_HOURS: int = 1
    VERIFICATION_RESEND_WINDOW_SECONDS: int = 60

    # Password policy
    PASSWORD_MIN_LENGTH: int = 8

    # CORS
    ALLOWED_ORIGINS: str = "*"

    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Links in outgoing emails point at the dashboard
    FRONTEND_URL: str = "http://localhost:5000"

    # OAuth2 Settings - shared
    OAUTH_STATE_TTL_SECONDS: int = 600
    OAUTH_HTTP_TIMEOUT_SECONDS: float = 10.0

    # OAuth2 Settings - Google
    GOOGLE_CLIENT_ID: Optional[str] = None
    GOOGLE_CLIENT_SECRET: Optional[str] = None
    GOOGLE_REDIRECT_URI: str = "http://localhost:8000/api/v1/auth/google/callback"

    # OAuth2 Settings - GitHub
    GITHUB_CLIENT_ID: Optional[str] = None
    GITHUB_CLIENT_SECRET: Optional[str] = None
    GITHUB_REDIRECT_URI: str = "http://localhost:8000/api/v1/auth/github/callback"

    @property
    def oauth_config(self) -> dict:
        """Provider credentials in the shape the OAuth broker expects"""
        return {
            "GOOGLE_CLIENT_ID": self.GOOGLE_CLIENT_ID,
            "GOOGLE_CLIENT_SECRET": self.GOOGLE_CLIENT_SECRET,
            "GOOGLE_REDIRECT_URI": self.GOOGLE_REDIRECT_URI,
            "GITHUB_CLIENT_ID": self.GITHUB_CLIENT_ID,
            "GITHUB_CLIENT_SECRET": self.GITHUB_CLIENT_SECRET,
            "GITHUB_REDIRECT_URI": self.GITHUB_REDIRECT_URI,
        }

    class Config:
        env_file = ".env"

settings = Settings()
