"""Key-value persistence backends.

Stores hold JSON-serializable values under string keys, optionally with a
time-to-live. Higher-level stores (accounts, groups, audit, bot sessions)
are written against the ``KeyValueStore`` protocol only.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Callable, Protocol, runtime_checkable

from rdpanel.observability.logger import get_logger

logger = get_logger(__name__)


@runtime_checkable
class KeyValueStore(Protocol):
    """Protocol for key-value backends (memory, JSON file).

    The protocol is runtime checkable, so you can use isinstance() to verify.
    """

    def get(self, key: str) -> Any | None:
        """Return the stored value, or None when absent or expired."""
        ...

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store a JSON-serializable value.

        Args:
            key: Entry key
            value: Value to store
            ttl: Seconds until the entry expires (None keeps it forever)
        """
        ...

    def delete(self, key: str) -> None:
        """Remove an entry. Missing keys are ignored."""
        ...


class BaseStore:
    """Common TTL bookkeeping over an in-memory entry map.

    Each entry is ``{"value": ..., "expires_at": float | None}`` with
    expires_at on the wall clock (seconds since the epoch).
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._is_expired(entry):
                del self._entries[key]
                self._persist()
                return None
            return entry["value"]

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        expires_at = self._clock() + ttl if ttl is not None else None
        with self._lock:
            previous = self._entries.get(key)
            self._entries[key] = {"value": value, "expires_at": expires_at}
            try:
                self._persist()
            except BaseException:
                self._restore(key, previous)
                raise

    def delete(self, key: str) -> None:
        with self._lock:
            previous = self._entries.pop(key, None)
            if previous is None:
                return
            try:
                self._persist()
            except BaseException:
                self._restore(key, previous)
                raise

    def keys(self) -> list[str]:
        with self._lock:
            return [k for k, e in self._entries.items() if not self._is_expired(e)]

    def _is_expired(self, entry: dict[str, Any]) -> bool:
        expires_at = entry.get("expires_at")
        return expires_at is not None and self._clock() >= expires_at

    def _persist(self) -> None:
        """Hook for durable backends. Called with the lock held."""

    def _restore(self, key: str, entry: dict[str, Any] | None) -> None:
        if entry is None:
            self._entries.pop(key, None)
        else:
            self._entries[key] = entry


class MemoryStore(BaseStore):
    """In-process store for tests and ephemeral sessions."""


class JsonFileStore(BaseStore):
    """Single JSON document on disk.

    Every write replaces the whole file: the document is written to a
    temporary file in the same directory, then moved over the old one.
    """

    def __init__(self, path: Path | str, clock: Callable[[], float] = time.time):
        super().__init__(clock)
        self.path = Path(path)
        self._entries = self._load()

    def _load(self) -> dict[str, dict[str, Any]]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(
                "Store file unreadable, starting empty",
                extra={"path": str(self.path), "error": str(e)},
            )
            return {}
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if isinstance(v, dict) and "value" in v}

    def _persist(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._entries, f, ensure_ascii=False, default=str)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
