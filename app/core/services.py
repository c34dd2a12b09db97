"""Process-wide stores shared by all requests."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable

from fastapi import Depends, Request

from rdpanel.common.client import HostingClient, limited_client_factory
from rdpanel.common.crypto import SecretBox
from rdpanel.config import Settings
from rdpanel.core.errors import validation_error
from rdpanel.core.types import Account
from rdpanel.observability import get_logger
from rdpanel.storage import AccountsStore, AuditLog, GroupsStore, JsonFileStore, KeyValueStore
from rdpanel.stores.servers import ServersStore

logger = get_logger(__name__)


@dataclass
class Services:
    """Stores and the client factory behind the dashboard API."""

    settings: Settings
    store: KeyValueStore
    audit: AuditLog
    accounts: AccountsStore
    groups: GroupsStore
    servers: ServersStore
    client_factory: Callable[[str], HostingClient]
    background: bool = True
    _tasks: list[asyncio.Task] = field(default_factory=list)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        store: KeyValueStore | None = None,
        client_factory: Callable[[str], HostingClient] | None = None,
        background: bool = True,
    ) -> "Services":
        store = store if store is not None else JsonFileStore(settings.store_path)
        client_factory = client_factory or limited_client_factory(settings)
        secret_box = SecretBox(settings.encryption_key) if settings.encryption_key else None

        audit = AuditLog(store)
        accounts = AccountsStore(store, client_factory=client_factory, secret_box=secret_box)
        groups = GroupsStore(store, audit=audit)
        servers = ServersStore(
            account_provider=lambda: accounts.active_account,
            client_factory=client_factory,
            audit=audit,
            refresh_interval=settings.refresh_interval,
        )
        return cls(
            settings=settings,
            store=store,
            audit=audit,
            accounts=accounts,
            groups=groups,
            servers=servers,
            client_factory=client_factory,
            background=background,
        )

    def start(self) -> None:
        """Start polling and periodic account checks."""
        if not self.background:
            return
        self.servers.start_refreshing()
        self._tasks.append(asyncio.create_task(self.accounts.watch_statuses()))
        logger.info("Background polling started")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        await self.servers.aclose()

    def require_active_account(self) -> Account:
        account = self.accounts.active_account
        if account is None:
            raise validation_error("No active account selected", code="NO_ACTIVE_ACCOUNT")
        return account


def get_services(request: Request) -> Services:
    """Dependency for FastAPI routes."""
    return request.app.state.services


async def get_active_client(
    services: Services = Depends(get_services),
) -> AsyncIterator[HostingClient]:
    """Client for the active account, closed when the request ends."""
    account = services.require_active_account()
    async with services.client_factory(account.api_key) as client:
        yield client
