"""Application configuration.

Values come from environment variables or a ``.env`` file in the working
directory; ``get_settings`` caches the parsed result for the process.
"""
from decimal import Decimal
from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import Field, validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from domain.enums import BookingStatus, INITIAL_STATUSES


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    APP_NAME: str = "Homestay Booking API"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    PUBLIC_BASE_URL: str = "https://booklist.app"
    CORS_ORIGINS: List[str] = ["*"]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: Literal["text", "json"] = "text"

    # Security
    SECRET_KEY: str = "change-me-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    ADMIN_EMAIL: Optional[str] = None
    ADMIN_PASSWORD: Optional[str] = None

    # Storage
    STORAGE_BACKEND: Literal["memory", "mongo"] = "memory"
    DATABASE_URL: Optional[str] = None
    DATABASE_NAME: str = "homestay_booking"

    # Booking rules
    DEFAULT_BOOKING_STATUS: BookingStatus = BookingStatus.PENDING
    ADVANCE_PERCENTAGE: Decimal = Field(default=Decimal("50"), ge=0, le=100)
    ENFORCE_STATUS_TRANSITIONS: bool = True

    @validator("DEFAULT_BOOKING_STATUS")
    def initial_status_only(cls, v):
        if v not in INITIAL_STATUSES:
            raise ValueError("DEFAULT_BOOKING_STATUS must be 'pending' or 'confirmed'")
        return v

    @validator("LOG_LEVEL")
    def upper_log_level(cls, v):
        return v.upper()


@lru_cache()
def get_settings() -> Settings:
    return Settings()
