"""Application settings using Pydantic. No side effects at import time."""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .constants import (
    BOT_RATE_LIMIT_REQUESTS,
    BOT_RATE_LIMIT_WINDOW,
    DATA_DIR,
    DEFAULT_BASE_URL,
    DEFAULT_REFRESH_INTERVAL,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_RETRY_DELAY,
    MAX_RETRIES,
    RATE_LIMIT_MAX_REQUESTS,
    RATE_LIMIT_WINDOW,
    STORE_FILENAME,
)

logger = logging.getLogger(__name__)

DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
]


def mask_secret(value: str | None, visible_chars: int = 4) -> str:
    """Mask a secret value for safe logging."""
    if not value:
        return "(not set)"
    if len(value) <= visible_chars * 2:
        return "*" * len(value)
    return f"{value[:visible_chars]}...{value[-visible_chars:]}"


class Settings(BaseSettings):
    """Application settings with validation.

    Settings are loaded from environment variables and .env file.
    No side effects at class definition time - .env is loaded only when
    Settings() is instantiated.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === App ===
    app_name: str = "RDP Panel API"
    app_version: str = "0.1.0"
    debug: bool = False
    log_json: bool = False

    # === Hosting API ===
    api_base_url: str = DEFAULT_BASE_URL
    request_timeout: Annotated[float, Field(gt=0)] = DEFAULT_REQUEST_TIMEOUT
    max_retries: Annotated[int, Field(ge=0)] = MAX_RETRIES
    retry_delay: Annotated[float, Field(ge=0)] = DEFAULT_RETRY_DELAY

    # === Client-side throttle ===
    rate_limit_requests: Annotated[int, Field(gt=0)] = RATE_LIMIT_MAX_REQUESTS
    rate_limit_window: Annotated[float, Field(gt=0)] = RATE_LIMIT_WINDOW

    # === Polling ===
    refresh_interval: Annotated[float, Field(gt=0)] = DEFAULT_REFRESH_INTERVAL

    # === Storage ===
    data_dir: Path = DATA_DIR
    encryption_key: str | None = None

    # === Telegram bot ===
    telegram_bot_token: str | None = None
    allowed_chat_ids: Annotated[list[int], NoDecode] = Field(default_factory=list)
    webapp_url: str | None = None
    bot_rate_limit_requests: Annotated[int, Field(gt=0)] = BOT_RATE_LIMIT_REQUESTS
    bot_rate_limit_window: Annotated[float, Field(gt=0)] = BOT_RATE_LIMIT_WINDOW

    # === Web ===
    api_host: str = "127.0.0.1"
    api_port: Annotated[int, Field(gt=0, lt=65536)] = 8000
    cors_origins: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_CORS_ORIGINS)
    )

    @field_validator("allowed_chat_ids", mode="before")
    @classmethod
    def _split_chat_ids(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [int(part) for part in value.split(",") if part.strip()]
        return value

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @property
    def store_path(self) -> Path:
        """JSON document backing the persisted stores."""
        return self.data_dir / STORE_FILENAME

    @property
    def has_telegram(self) -> bool:
        return bool(self.telegram_bot_token)

    def client_overrides(self) -> dict[str, Any]:
        """Client-related settings, in the shape build_config() expects."""
        return {
            "base_url": self.api_base_url,
            "timeout": self.request_timeout,
            "max_retries": self.max_retries,
            "retry_delay": self.retry_delay,
        }

    def log_config_summary(self) -> None:
        """Log configuration summary with masked secrets."""
        logger.info("=== Configuration Summary ===")
        logger.info(f"App: {self.app_name} v{self.app_version}")
        logger.info(f"API base URL: {self.api_base_url}")
        logger.info(
            f"Timeout: {self.request_timeout}s, retries: {self.max_retries} "
            f"x {self.retry_delay}s"
        )
        logger.info(
            f"Throttle: {self.rate_limit_requests} requests / {self.rate_limit_window}s"
        )
        logger.info(f"Refresh interval: {self.refresh_interval}s")
        logger.info(f"Store: {self.store_path}")
        logger.info(f"ENCRYPTION_KEY: {mask_secret(self.encryption_key)}")
        logger.info(f"TELEGRAM_BOT_TOKEN: {mask_secret(self.telegram_bot_token)}")
        logger.info("=============================")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    This is the recommended way to access settings to avoid
    repeated .env file parsing.
    """
    return Settings()
