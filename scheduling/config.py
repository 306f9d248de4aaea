"""
Configuration management for the scheduling service.

This module provides centralized configuration using Pydantic settings
for type-safe environment variable management.
"""

from functools import lru_cache
from typing import Dict, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Candidate slots are generated on this step, matching how providers
# configure working hours.
SLOT_GRANULARITY_MINUTES = 30


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Directory (provider profiles, services, customers) Configuration
    directory_backend: str = Field(default="memory", alias="DIRECTORY_BACKEND")
    directory_api_url: str = Field(
        default="http://localhost:8080", alias="DIRECTORY_API_URL"
    )
    directory_api_timeout: int = Field(default=10, alias="DIRECTORY_API_TIMEOUT")
    connection_pool_size: int = Field(default=50, alias="CONNECTION_POOL_SIZE")

    # Scheduling Rules
    min_booking_duration: int = Field(default=15, alias="MIN_BOOKING_DURATION")
    max_recommendations: int = Field(default=5, alias="MAX_RECOMMENDATIONS")
    customer_history_limit: int = Field(default=5, alias="CUSTOMER_HISTORY_LIMIT")

    # Application Configuration
    service_name: str = Field(default="Back Office Scheduling", alias="SERVICE_NAME")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    allowed_origins: List[str] = Field(default=["*"], alias="ALLOWED_ORIGINS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once,
    improving performance for repeated access.
    """
    return Settings()


# Weekday index (date.weekday()) -> working hours key
DAY_NAMES: Dict[int, str] = {
    0: "monday",
    1: "tuesday",
    2: "wednesday",
    3: "thursday",
    4: "friday",
    5: "saturday",
    6: "sunday",
}


RESCHEDULE_DEFAULT_REASON = "Rescheduled via calendar"
