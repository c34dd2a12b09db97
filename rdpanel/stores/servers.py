"""
Servers polling store

Keeps a cached server list fresh for every consumer in the process without
letting transient failures flicker errors or clobber valid data.

Usage:
    store = ServersStore(account_provider=accounts.active_account_getter, audit=audit)
    store.start_refreshing()        # one visible refresh now, silent ones every 60 s
    ...
    store.state.servers             # always the last good list during outages
    await store.aclose()

Failure handling:
    - Every failure increments `failed_attempts` and restores the last good list
    - Loading and error become visible only for manual refreshes once
      `failed_attempts` reaches ERROR_VISIBILITY_THRESHOLD
    - Each failure also schedules one extra silent refresh after
      min(1 s * 2**failed_attempts, 30 s)
"""

from __future__ import annotations

import asyncio
import dataclasses
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Coroutine

from rdpanel.common.client import HostingClient
from rdpanel.config.constants import (
    BACKOFF_BASE_DELAY,
    BACKOFF_MAX_DELAY,
    DEFAULT_REFRESH_INTERVAL,
    ERROR_VISIBILITY_THRESHOLD,
)
from rdpanel.core.errors import classify_exception
from rdpanel.core.types import Account, AuditStatus, Server, utcnow
from rdpanel.observability.logger import get_logger, log_context
from rdpanel.storage.audit import AuditLog, record_audit

logger = get_logger(__name__)

NO_ACTIVE_ACCOUNT = "No active account"


class RefreshMode(str, Enum):
    """Who asked for a refresh."""

    MANUAL = "manual"  # User-initiated; may surface loading and errors
    SCHEDULED_SILENT = "scheduled_silent"  # Timer or backoff; never surfaces


@dataclass(frozen=True)
class ServersSnapshot:
    """Immutable view of the store. Replaced wholesale on every change."""

    servers: tuple[Server, ...] = ()
    last_known_good: tuple[Server, ...] | None = None
    loading: bool = False
    error: str | None = None
    last_refreshed: datetime | None = None
    failed_attempts: int = 0
    is_refreshing: bool = False  # Recurring schedule active


def backoff_delay(failed_attempts: int) -> float:
    """Seconds before the extra retry after the given number of failures."""
    return min(BACKOFF_BASE_DELAY * 2**failed_attempts, BACKOFF_MAX_DELAY)


class ServersStore:
    """Shared server cache with a recurring silent refresh."""

    def __init__(
        self,
        account_provider: Callable[[], Account | None],
        client_factory: Callable[[str], HostingClient] = HostingClient,
        audit: AuditLog | None = None,
        refresh_interval: float = DEFAULT_REFRESH_INTERVAL,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.account_provider = account_provider
        self.client_factory = client_factory
        self.audit = audit
        self.sleep = sleep
        self._refresh_interval = refresh_interval
        self._state = ServersSnapshot()
        self._listeners: list[Callable[[ServersSnapshot], None]] = []

        self._loop_task: asyncio.Task | None = None
        self._backoff_tasks: set[asyncio.Task] = set()
        self._inflight: set[asyncio.Task] = set()
        # Bumped by stop_refreshing(); refreshes started earlier schedule no backoff
        self._generation = 0
        self._failure_reported = False

    # ==================== State ====================

    @property
    def state(self) -> ServersSnapshot:
        return self._state

    @property
    def servers(self) -> tuple[Server, ...]:
        return self._state.servers

    @property
    def refresh_interval(self) -> float:
        return self._refresh_interval

    def set_refresh_interval(self, seconds: float) -> None:
        """Change the recurring interval. Applies from the next start_refreshing()."""
        if seconds <= 0:
            raise ValueError("refresh interval must be positive")
        self._refresh_interval = seconds

    def add_listener(self, listener: Callable[[ServersSnapshot], None]) -> None:
        """Call `listener` with every new snapshot."""
        self._listeners.append(listener)

    def _update(self, **changes: Any) -> ServersSnapshot:
        self._state = dataclasses.replace(self._state, **changes)
        for listener in list(self._listeners):
            listener(self._state)
        return self._state

    # ==================== Lifecycle ====================

    def start_refreshing(self) -> asyncio.Task | None:
        """
        Start polling. Idempotent while already scheduled.

        Runs one manual refresh right away and arms the recurring silent
        refresh. Must be called from a running event loop.

        Returns:
            Task of the initial refresh, or None if already scheduled
        """
        if self._state.is_refreshing:
            return None

        self._update(is_refreshing=True)
        initial = self._spawn(self.refresh_servers(RefreshMode.MANUAL))
        self._loop_task = asyncio.get_running_loop().create_task(self._run_schedule())
        logger.info(
            "Server polling started", extra={"interval_seconds": self._refresh_interval}
        )
        return initial

    def stop_refreshing(self) -> None:
        """
        Stop the recurring refresh and drop pending backoff retries.

        Idempotent. A refresh already talking to the provider is left to finish.
        """
        self._generation += 1

        if self._loop_task is not None:
            self._loop_task.cancel()
            self._loop_task = None

        for task in list(self._backoff_tasks):
            task.cancel()
        self._backoff_tasks.clear()

        if self._state.is_refreshing:
            self._update(is_refreshing=False)
            logger.info("Server polling stopped")

    async def aclose(self) -> None:
        """Stop polling and wait for in-flight refreshes to settle."""
        self.stop_refreshing()
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    async def _run_schedule(self) -> None:
        interval = self._refresh_interval
        while True:
            await self.sleep(interval)
            self._spawn(self.refresh_servers(RefreshMode.SCHEDULED_SILENT))

    async def _backoff_refresh(self, delay: float) -> None:
        await self.sleep(delay)
        # Past the wait: stop_refreshing() no longer cancels this refresh
        self._backoff_tasks.discard(asyncio.current_task())
        await self.refresh_servers(RefreshMode.SCHEDULED_SILENT)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    # ==================== Refresh ====================

    async def refresh_servers(
        self,
        mode: RefreshMode = RefreshMode.MANUAL,
        *,
        silent: bool | None = None,
    ) -> ServersSnapshot:
        """
        Fetch the server list once.

        Never raises for provider failures: the outcome is reflected in the
        returned snapshot.

        Args:
            mode: MANUAL or SCHEDULED_SILENT
            silent: Shorthand for the mode (True means SCHEDULED_SILENT)
        """
        if silent is not None:
            mode = RefreshMode.SCHEDULED_SILENT if silent else RefreshMode.MANUAL
        visible = mode == RefreshMode.MANUAL

        account = self.account_provider()
        if account is None:
            return self._update(error=NO_ACTIVE_ACCOUNT)

        generation = self._generation
        with log_context(account=account.name, mode=mode.value):
            if visible and self._state.failed_attempts >= ERROR_VISIBILITY_THRESHOLD:
                self._update(loading=True)

            try:
                async with self.client_factory(account.api_key) as client:
                    servers = tuple(await client.list_servers())
            except Exception as e:
                return self._on_failure(e, account, visible, generation)

            return self._on_success(servers, account, visible)

    def _on_success(
        self, servers: tuple[Server, ...], account: Account, visible: bool
    ) -> ServersSnapshot:
        self._failure_reported = False
        state = self._update(
            servers=servers,
            last_known_good=servers,
            last_refreshed=utcnow(),
            loading=False,
            error=None,
            failed_attempts=0,
        )
        logger.debug("Servers refreshed", extra={"count": len(servers)})

        if visible:
            record_audit(
                self.audit,
                action="SERVERS_REFRESH",
                details=f"Successfully refreshed {len(servers)} servers",
                account_name=account.name,
                status=AuditStatus.SUCCESS,
            )
        return state

    def _on_failure(
        self, exc: Exception, account: Account, visible: bool, generation: int
    ) -> ServersSnapshot:
        error = classify_exception(exc)
        failed_attempts = self._state.failed_attempts + 1
        surface = visible and failed_attempts >= ERROR_VISIBILITY_THRESHOLD

        logger.error(
            "Error refreshing servers",
            extra={"failed_attempts": failed_attempts, "error_kind": error.kind.value},
            exc_info=exc,
        )

        restored = self._state.last_known_good
        state = self._update(
            servers=restored if restored is not None else self._state.servers,
            loading=False,
            error=error.message if surface else self._state.error,
            failed_attempts=failed_attempts,
        )

        if surface and not self._failure_reported:
            self._failure_reported = True
            record_audit(
                self.audit,
                action="SERVERS_REFRESH",
                details=f"Failed to refresh servers: {error.message}",
                account_name=account.name,
                status=AuditStatus.FAILURE,
            )

        if generation == self._generation:
            delay = backoff_delay(failed_attempts)
            task = asyncio.get_running_loop().create_task(self._backoff_refresh(delay))
            self._backoff_tasks.add(task)
            task.add_done_callback(self._backoff_tasks.discard)

        return state
