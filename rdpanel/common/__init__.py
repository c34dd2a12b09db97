"""Hosting API client and helpers built on it."""

from .client import (
    ClientConfig,
    HostingClient,
    build_config,
    client_from_settings,
    is_valid_api_key,
    limited_client_factory,
)
from .crypto import SecretBox, generate_encryption_key, validate_encryption_key
from .servers import filter_servers, is_expiring_within, sort_servers
from .batch import batch_power_action, run_group_action, stop_running_servers

__all__ = [
    "ClientConfig",
    "HostingClient",
    "SecretBox",
    "batch_power_action",
    "build_config",
    "client_from_settings",
    "filter_servers",
    "generate_encryption_key",
    "is_expiring_within",
    "is_valid_api_key",
    "limited_client_factory",
    "run_group_action",
    "sort_servers",
    "stop_running_servers",
    "validate_encryption_key",
]
