"""Provider accounts and the active-account selection.

Persisted document (key ``accounts``)::

    {"version": 1, "accounts": [...], "active_account_id": "..." | null}

API keys are encrypted at rest when a SecretBox is configured.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

from pydantic import ValidationError

from rdpanel.common.client import HostingClient, is_valid_api_key
from rdpanel.common.crypto import SecretBox
from rdpanel.config.constants import ACCOUNT_CHECK_INTERVAL
from rdpanel.core.errors import AccountError, ApiError
from rdpanel.core.types import Account, AccountStatus, utcnow
from rdpanel.observability.logger import get_logger, log_context
from rdpanel.storage.kv import KeyValueStore

logger = get_logger(__name__)

ACCOUNTS_KEY = "accounts"
SCHEMA_VERSION = 1

# Fields callers may change through update_account()
_UPDATABLE_FIELDS = frozenset({"name", "status", "last_checked", "error"})

ClientFactory = Callable[[str], HostingClient]


def migrate_accounts_document(data: Any) -> dict[str, Any]:
    """Bring a persisted document to the current schema version.

    Version 0 documents were either a bare list of accounts or a mapping
    without a version field.
    """
    if isinstance(data, list):
        data = {"accounts": data}
    if not isinstance(data, dict):
        return {"version": SCHEMA_VERSION, "accounts": [], "active_account_id": None}

    version = data.get("version", 0)
    if version == 0:
        data = {
            "accounts": data.get("accounts", []),
            "active_account_id": data.get("active_account_id"),
            "version": SCHEMA_VERSION,
        }
    return data


class AccountsStore:
    """Accounts keyed by id, with at most one active account."""

    def __init__(
        self,
        store: KeyValueStore,
        client_factory: ClientFactory = HostingClient,
        secret_box: SecretBox | None = None,
    ):
        self.store = store
        self.client_factory = client_factory
        self.secret_box = secret_box
        self._accounts: list[Account] = []
        self._active_id: str | None = None

        if secret_box is None:
            logger.warning("No encryption key configured; API keys are stored unencrypted")

        self._load()

    # ==================== Queries ====================

    def list_accounts(self) -> list[Account]:
        return list(self._accounts)

    def get_account(self, account_id: str) -> Account:
        for account in self._accounts:
            if account.id == account_id:
                return account
        raise AccountError("Account not found", code="ACCOUNT_NOT_FOUND", status=404)

    @property
    def active_account(self) -> Account | None:
        if self._active_id is None:
            return None
        return next((a for a in self._accounts if a.id == self._active_id), None)

    # ==================== Mutations ====================

    async def add_account(self, name: str, api_key: str) -> Account:
        """
        Register an account after checking the key against the provider.

        The first account added becomes active.

        Raises:
            AccountError: INVALID_API_KEY, DUPLICATE_API_KEY or KEY_REJECTED
        """
        name = (name or "").strip()
        if not name:
            raise AccountError("Account name is required", code="INVALID_NAME")
        if not is_valid_api_key(api_key):
            raise AccountError("Invalid API key format", code="INVALID_API_KEY")
        if any(a.api_key == api_key for a in self._accounts):
            raise AccountError(
                "This API key is already registered", code="DUPLICATE_API_KEY"
            )

        with log_context(account=name):
            try:
                await self._probe(api_key)
            except ApiError as e:
                logger.info("API key rejected", extra={"reason": e.kind.value})
                raise AccountError(
                    "Invalid API key. Unable to connect to the server.", code="KEY_REJECTED"
                ) from e

            account = Account(
                name=name,
                api_key=api_key,
                status=AccountStatus.ACTIVE,
                last_checked=utcnow(),
            )
            self._accounts.append(account)
            if self._active_id is None:
                self._active_id = account.id
            self._save()
            logger.info("Account added", extra={"account_id": account.id})

        return account

    def remove_account(self, account_id: str) -> None:
        """Remove an account. Removing the active one activates the first remaining."""
        account = self.get_account(account_id)
        self._accounts = [a for a in self._accounts if a.id != account.id]
        if self._active_id == account.id:
            self._active_id = self._accounts[0].id if self._accounts else None
        self._save()
        logger.info("Account removed", extra={"account_id": account_id})

    def update_account(self, account_id: str, **updates: Any) -> Account:
        unknown = set(updates) - _UPDATABLE_FIELDS
        if unknown:
            raise AccountError(
                f"Cannot update fields: {', '.join(sorted(unknown))}", code="INVALID_UPDATE"
            )

        current = self.get_account(account_id)
        try:
            updated = Account.model_validate({**current.model_dump(), **updates})
        except ValidationError as e:
            raise AccountError(str(e.errors()[0]["msg"]), code="INVALID_UPDATE") from e

        self._accounts = [updated if a.id == account_id else a for a in self._accounts]
        self._save()
        return updated

    def set_active_account(self, account_id: str) -> Account:
        account = self.get_account(account_id)
        self._active_id = account.id
        self._save()
        return account

    def clear_active_account(self) -> None:
        self._active_id = None
        self._save()

    # ==================== Status checks ====================

    async def check_account_status(self, account_id: str) -> Account | None:
        """Probe one account and record the outcome. Unknown ids are ignored."""
        try:
            account = self.get_account(account_id)
        except AccountError:
            return None

        try:
            await self._probe(account.api_key)
        except ApiError as e:
            return self.update_account(
                account.id,
                status=AccountStatus.ERROR,
                last_checked=utcnow(),
                error=e.message,
            )
        return self.update_account(
            account.id, status=AccountStatus.ACTIVE, last_checked=utcnow(), error=None
        )

    async def check_all_account_statuses(self) -> list[Account]:
        """Probe every account concurrently; one failing check never stops the others."""
        ids = [a.id for a in self._accounts]
        outcomes = await asyncio.gather(
            *(self.check_account_status(i) for i in ids), return_exceptions=True
        )

        checked = []
        for account_id, outcome in zip(ids, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                logger.error(
                    "Account status check failed",
                    extra={"account_id": account_id},
                    exc_info=outcome,
                )
            elif outcome is not None:
                checked.append(outcome)
        return checked

    async def watch_statuses(
        self,
        interval: float = ACCOUNT_CHECK_INTERVAL,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ) -> None:
        """Re-check all accounts every `interval` seconds until cancelled."""
        while True:
            await sleep(interval)
            await self.check_all_account_statuses()

    # ==================== Internals ====================

    async def _probe(self, api_key: str) -> None:
        async with self.client_factory(api_key) as client:
            await client.list_servers()

    def _load(self) -> None:
        data = migrate_accounts_document(self.store.get(ACCOUNTS_KEY))
        accounts = []
        for raw in data.get("accounts", []):
            record = dict(raw)
            if record.get("encrypted"):
                if self.secret_box is None:
                    raise AccountError(
                        "Stored API keys are encrypted but no encryption key is configured",
                        code="DECRYPTION_FAILED",
                    )
                record["api_key"] = self.secret_box.decrypt(record["api_key"])
            record.pop("encrypted", None)
            try:
                accounts.append(Account.model_validate(record))
            except ValidationError:
                logger.warning("Skipping malformed account record")

        self._accounts = accounts
        active_id = data.get("active_account_id")
        self._active_id = active_id if any(a.id == active_id for a in accounts) else None

    def _save(self) -> None:
        records = []
        for account in self._accounts:
            record = account.model_dump(mode="json")
            if self.secret_box is not None:
                record["api_key"] = self.secret_box.encrypt(account.api_key)
                record["encrypted"] = True
            records.append(record)

        self.store.set(
            ACCOUNTS_KEY,
            {
                "version": SCHEMA_VERSION,
                "accounts": records,
                "active_account_id": self._active_id,
            },
        )
