"""
Core settings and environment variables for the City Livability API.
Uses pydantic-settings for type-safe environment variable loading.
"""

from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Create a .env file in the root directory to configure these.
    """

    # Application
    APP_NAME: str = "City Livability API"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - Frontend URLs allowed to access this API
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Firebase/Firestore
    FIREBASE_PROJECT_ID: Optional[str] = None
    FIREBASE_CREDENTIALS_PATH: Optional[str] = None  # Path to service account JSON

    # Review identity: sha256(userId:cityId:salt). Required at startup.
    REVIEW_ID_SALT: Optional[str] = None

    # Optimistic transactions against city_stats
    TRANSACTION_MAX_ATTEMPTS: int = 5
    TRANSACTION_RETRY_BACKOFF_SECONDS: float = 0.05

    # Review stream paging
    REVIEWS_DEFAULT_PAGE_SIZE: int = 10
    REVIEWS_MAX_PAGE_SIZE: int = 50

    # Shared secret for maintenance endpoints (unset = open, local dev only)
    ADMIN_TOKEN: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "allow"  # Allow extra env vars to prevent crashes

    @property
    def cors_origins(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


# Global settings instance
settings = Settings()
