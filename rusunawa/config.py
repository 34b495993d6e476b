"""Application configuration settings.

This module defines the ``Settings`` class using ``pydantic-settings`` to
load configuration from environment variables. It centralises all runtime
configuration for the service, such as the backend API location, retry
behaviour, rental type identifiers and session handling.

A ``.env`` file is loaded first (path taken from ``RUSUNAWA_ENV``) so local
development does not need a long list of exported variables.
"""

import os

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings

load_dotenv(os.getenv("RUSUNAWA_ENV", ".env"))


class Settings(BaseSettings):
    """Configuration values loaded from environment variables.

    Environment variable names map to fields by alias. Every value has a
    default so the service starts against a local backend without any
    configuration at all.
    """

    # Backend API
    api_base_url: str = Field(
        default="http://localhost:8001/v1",
        alias="API_BASE_URL",
        description="Base URL of the rusunawa backend API, including the version prefix.",
    )
    api_timeout_seconds: float = Field(default=30.0, alias="API_TIMEOUT_SECONDS")
    api_max_retries: int = Field(
        default=0,
        alias="API_MAX_RETRIES",
        description="Retries for transient (429/5xx) GET failures. 0 means a single attempt.",
    )
    api_retry_backoff_seconds: float = Field(default=1.0, alias="API_RETRY_BACKOFF_SECONDS")

    # Booking rules
    local_tz: str = Field(
        default="Asia/Jakarta",
        alias="LOCAL_TZ",
        description="Timezone used to decide what 'today' is when validating dates.",
    )
    default_room_capacity: int = Field(
        default=4,
        alias="DEFAULT_ROOM_CAPACITY",
        description="Capacity assumed when the backend omits it for a room.",
    )
    daily_rental_type_id: int = Field(default=1, alias="DAILY_RENTAL_TYPE_ID")
    monthly_rental_type_id: int = Field(default=2, alias="MONTHLY_RENTAL_TYPE_ID")

    # Service behaviour
    rooms_cache_seconds: int = Field(
        default=0,
        alias="ROOMS_CACHE_SECONDS",
        description="Maximum age of the cached room list. 0 disables the cache.",
    )
    skip_token_verification: bool = Field(default=False, alias="SKIP_TOKEN_VERIFICATION")
    session_cookie_name: str = Field(default="tenant_session", alias="SESSION_COOKIE_NAME")
    session_ttl_seconds: int = Field(
        default=7200,
        alias="SESSION_TTL_SECONDS",
        description="Idle time after which a cookie session is dropped. 0 keeps sessions until logout.",
    )
    rooms_cache_max_entries: int = Field(
        default=64,
        alias="ROOMS_CACHE_MAX_ENTRIES",
        description="Most distinct room queries kept in the room list cache.",
    )
    enable_cors: str = Field(default="", alias="ENABLE_CORS")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    class Config:
        extra = "ignore"
        populate_by_name = True


# Instantiate settings at module import time so other modules can import
# ``settings`` directly without re-reading the environment.
settings = Settings()
