# shipkit/core/config.py

import os
from functools import lru_cache
from typing import Optional
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Carrier adapter settings.
    Loads values from environment variables (.env file)
    """
    # UPS
    UPS_USERNAME: str = ""
    UPS_PASSWORD: str = ""
    UPS_ACCESS_LICENSE: str = ""
    UPS_SHIPPER_NUMBER: Optional[str] = None  # Enables negotiated rates when set
    UPS_TEST_MODE: bool = True

    # DHL XML Services
    DHL_SITE_ID: str = ""
    DHL_PASSWORD: str = ""
    DHL_ACCOUNT_NUMBER: str = ""
    DHL_TEST_MODE: bool = True

    # Transport
    HTTP_TIMEOUT: float = 30.0

    # Logging
    LOG_LEVEL: str = "INFO"

    model_config = ConfigDict(
        env_file=os.environ.get('ENV_FILE', '.env') if os.path.exists('.env') else None,
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache()
def get_settings():
    """Cached settings to avoid loading .env file for every carrier"""
    return Settings()

def clear_settings_cache():
    """Clear the settings cache - useful when switching between environments"""
    get_settings.cache_clear()
