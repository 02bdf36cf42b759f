"""Application configuration management."""
import os
from typing import Optional


DEFAULT_STORE_URL = "http://localhost:8000"


def get_store_url() -> str:
    """
    Get the base URL of the incident store service.

    Returns:
        str: LIFESYNC_STORE_URL, or the local default
    """
    return os.getenv("LIFESYNC_STORE_URL", DEFAULT_STORE_URL)


def get_geolocation_config() -> dict:
    """
    Get position-source settings from environment variables.

    Returns:
        dict: `url` of a JSON geolocation endpoint (None disables it) and the
        request `timeout` in seconds
    """
    return {
        "url": os.getenv("GEOLOCATION_URL") or None,
        "timeout": float(os.getenv("GEOLOCATION_TIMEOUT_SECONDS", "10")),
    }


def get_log_level(default: str = "INFO") -> str:
    level: Optional[str] = os.getenv("LIFESYNC_LOG_LEVEL")
    return (level or default).upper()
