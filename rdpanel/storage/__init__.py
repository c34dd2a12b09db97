"""Persistence: key-value backends and the stores built on them."""

from .kv import JsonFileStore, KeyValueStore, MemoryStore
from .audit import AuditLog, record_audit
from .accounts import AccountsStore
from .groups import GroupsStore

__all__ = [
    "AccountsStore",
    "AuditLog",
    "GroupsStore",
    "JsonFileStore",
    "KeyValueStore",
    "MemoryStore",
    "record_audit",
]
