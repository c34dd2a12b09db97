"""Configuration module for the hosting panel."""

from .constants import (
    API_KEY_PATTERN,
    BACKOFF_BASE_DELAY,
    BACKOFF_MAX_DELAY,
    BATCH_ACTION_SIZE,
    DEFAULT_BASE_URL,
    DEFAULT_REFRESH_INTERVAL,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_RETRY_DELAY,
    ERROR_VISIBILITY_THRESHOLD,
    MAX_RETRIES,
    RATE_LIMIT_MAX_REQUESTS,
    RATE_LIMIT_WINDOW,
)
from .settings import Settings, get_settings, mask_secret

__all__ = [
    "Settings",
    "get_settings",
    "mask_secret",
    "API_KEY_PATTERN",
    "DEFAULT_BASE_URL",
    "DEFAULT_REQUEST_TIMEOUT",
    "MAX_RETRIES",
    "DEFAULT_RETRY_DELAY",
    "RATE_LIMIT_MAX_REQUESTS",
    "RATE_LIMIT_WINDOW",
    "DEFAULT_REFRESH_INTERVAL",
    "BACKOFF_BASE_DELAY",
    "BACKOFF_MAX_DELAY",
    "ERROR_VISIBILITY_THRESHOLD",
    "BATCH_ACTION_SIZE",
]
