"""Shared in-process state."""

from .servers import RefreshMode, ServersSnapshot, ServersStore

__all__ = ["RefreshMode", "ServersSnapshot", "ServersStore"]
