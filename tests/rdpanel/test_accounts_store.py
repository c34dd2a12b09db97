"""Tests for rdpanel/storage/accounts.py."""

import httpx
import pytest

from conftest import OTHER_API_KEY, VALID_API_KEY, FakeProvider, no_sleep
from rdpanel.common.client import HostingClient
from rdpanel.common.crypto import SecretBox, generate_encryption_key
from rdpanel.core.errors import AccountError, ApiError
from rdpanel.core.types import AccountStatus
from rdpanel.storage import AccountsStore
from rdpanel.storage.accounts import ACCOUNTS_KEY, migrate_accounts_document

THIRD_API_KEY = "rdp_third_0123456789abcdefghijklmnopqrstu"


@pytest.fixture
def client_factory(provider: FakeProvider):
    def factory(api_key: str) -> HostingClient:
        return HostingClient(
            api_key, {"max_retries": 0}, transport=provider.transport, sleep=no_sleep
        )

    return factory


@pytest.fixture
def accounts(memory_store, client_factory) -> AccountsStore:
    return AccountsStore(memory_store, client_factory=client_factory)


@pytest.fixture
def healthy(provider: FakeProvider) -> FakeProvider:
    provider.add("GET", "/servers", [])
    return provider


class TestAddAccount:
    """Tests for add_account()."""

    @pytest.mark.asyncio
    async def test_first_account_becomes_active(self, accounts, healthy):
        """The first account added is selected automatically."""
        account = await accounts.add_account("Main", VALID_API_KEY)

        assert account.status == AccountStatus.ACTIVE
        assert account.last_checked is not None
        assert accounts.active_account == account

    @pytest.mark.asyncio
    async def test_second_account_keeps_active(self, accounts, healthy):
        """Later accounts do not steal the selection."""
        first = await accounts.add_account("Main", VALID_API_KEY)
        await accounts.add_account("Backup", OTHER_API_KEY)

        assert accounts.active_account.id == first.id
        assert len(accounts.list_accounts()) == 2

    @pytest.mark.asyncio
    async def test_key_checked_with_provider(self, accounts, healthy):
        """The key is validated by listing servers with it."""
        await accounts.add_account("Main", VALID_API_KEY)

        (call,) = healthy.calls_to("GET", "/servers")
        assert call.headers["Authorization"] == VALID_API_KEY

    @pytest.mark.asyncio
    async def test_bad_format_rejected_locally(self, accounts, provider):
        """Malformed keys fail before contacting the provider."""
        with pytest.raises(AccountError) as exc_info:
            await accounts.add_account("Main", "too-short")

        assert exc_info.value.code == "INVALID_API_KEY"
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_blank_name_rejected(self, accounts, provider):
        """An account needs a name."""
        with pytest.raises(AccountError) as exc_info:
            await accounts.add_account("   ", VALID_API_KEY)
        assert exc_info.value.code == "INVALID_NAME"

    @pytest.mark.asyncio
    async def test_duplicate_key_rejected(self, accounts, healthy):
        """The same key cannot be registered twice."""
        await accounts.add_account("Main", VALID_API_KEY)

        with pytest.raises(AccountError) as exc_info:
            await accounts.add_account("Again", VALID_API_KEY)
        assert exc_info.value.code == "DUPLICATE_API_KEY"

    @pytest.mark.asyncio
    async def test_rejected_key_not_stored(self, accounts, provider):
        """A key the provider refuses is not saved."""
        provider.add("GET", "/servers", httpx.Response(401))

        with pytest.raises(AccountError) as exc_info:
            await accounts.add_account("Main", VALID_API_KEY)

        assert exc_info.value.code == "KEY_REJECTED"
        assert isinstance(exc_info.value.__cause__, ApiError)
        assert accounts.list_accounts() == []


class TestRemoveAccount:
    """Tests for remove_account()."""

    @pytest.mark.asyncio
    async def test_removing_active_selects_first_remaining(self, accounts, healthy):
        """The first remaining account takes over the selection."""
        first = await accounts.add_account("Main", VALID_API_KEY)
        second = await accounts.add_account("Backup", OTHER_API_KEY)

        accounts.remove_account(first.id)

        assert accounts.active_account.id == second.id

    @pytest.mark.asyncio
    async def test_removing_last_clears_selection(self, accounts, healthy):
        """No accounts left means no active account."""
        account = await accounts.add_account("Main", VALID_API_KEY)
        accounts.remove_account(account.id)
        assert accounts.active_account is None

    def test_unknown_id(self, accounts):
        """Unknown ids raise ACCOUNT_NOT_FOUND with status 404."""
        with pytest.raises(AccountError) as exc_info:
            accounts.remove_account("missing")
        assert exc_info.value.code == "ACCOUNT_NOT_FOUND"
        assert exc_info.value.status == 404


class TestUpdateAndSelect:
    """Tests for update_account() and the active selection."""

    @pytest.mark.asyncio
    async def test_rename(self, accounts, healthy):
        """Names can be changed."""
        account = await accounts.add_account("Main", VALID_API_KEY)
        updated = accounts.update_account(account.id, name="Primary")
        assert updated.name == "Primary"
        assert accounts.get_account(account.id).name == "Primary"

    @pytest.mark.asyncio
    async def test_api_key_not_updatable(self, accounts, healthy):
        """Keys are immutable once registered."""
        account = await accounts.add_account("Main", VALID_API_KEY)
        with pytest.raises(AccountError) as exc_info:
            accounts.update_account(account.id, api_key=OTHER_API_KEY)
        assert exc_info.value.code == "INVALID_UPDATE"

    @pytest.mark.asyncio
    async def test_set_and_clear_active(self, accounts, healthy):
        """The selection can be moved and cleared."""
        await accounts.add_account("Main", VALID_API_KEY)
        backup = await accounts.add_account("Backup", OTHER_API_KEY)

        accounts.set_active_account(backup.id)
        assert accounts.active_account.id == backup.id

        accounts.clear_active_account()
        assert accounts.active_account is None


class TestStatusChecks:
    """Tests for account status checks."""

    @pytest.mark.asyncio
    async def test_failed_check_marks_error(self, accounts, provider):
        """A failing probe records error status and message."""
        provider.add("GET", "/servers", [], httpx.Response(401))
        account = await accounts.add_account("Main", VALID_API_KEY)

        checked = await accounts.check_account_status(account.id)

        assert checked.status == AccountStatus.ERROR
        assert "Invalid API key" in checked.error

    @pytest.mark.asyncio
    async def test_recovery_clears_error(self, accounts, provider):
        """A passing probe restores active status."""
        provider.add("GET", "/servers", [], httpx.Response(401), [])
        account = await accounts.add_account("Main", VALID_API_KEY)
        await accounts.check_account_status(account.id)

        checked = await accounts.check_account_status(account.id)

        assert checked.status == AccountStatus.ACTIVE
        assert checked.error is None

    @pytest.mark.asyncio
    async def test_unknown_id_ignored(self, accounts):
        """Checking an unknown id does nothing."""
        assert await accounts.check_account_status("missing") is None

    @pytest.mark.asyncio
    async def test_check_all_settles_every_account(self, accounts, healthy):
        """All accounts are checked even when one fails."""
        await accounts.add_account("Main", VALID_API_KEY)
        await accounts.add_account("Backup", OTHER_API_KEY)
        await accounts.add_account("Third", THIRD_API_KEY)

        def handler(request: httpx.Request) -> httpx.Response:
            if request.headers["Authorization"] == OTHER_API_KEY:
                return httpx.Response(401)
            return httpx.Response(200, json=[])

        accounts.client_factory = lambda key: HostingClient(
            key, {"max_retries": 0}, transport=httpx.MockTransport(handler)
        )

        checked = await accounts.check_all_account_statuses()

        statuses = {a.name: a.status for a in checked}
        assert statuses == {
            "Main": AccountStatus.ACTIVE,
            "Backup": AccountStatus.ERROR,
            "Third": AccountStatus.ACTIVE,
        }


class TestPersistence:
    """Tests for load/save and encryption at rest."""

    @pytest.mark.asyncio
    async def test_reload_from_store(self, memory_store, client_factory, healthy):
        """A new store instance sees saved accounts and selection."""
        first = AccountsStore(memory_store, client_factory=client_factory)
        account = await first.add_account("Main", VALID_API_KEY)

        second = AccountsStore(memory_store, client_factory=client_factory)

        assert second.active_account.id == account.id
        assert second.active_account.api_key == VALID_API_KEY

    @pytest.mark.asyncio
    async def test_keys_encrypted_at_rest(self, memory_store, client_factory, healthy):
        """With a SecretBox the persisted key is not plaintext."""
        box = SecretBox(generate_encryption_key())
        accounts = AccountsStore(memory_store, client_factory=client_factory, secret_box=box)
        await accounts.add_account("Main", VALID_API_KEY)

        record = memory_store.get(ACCOUNTS_KEY)["accounts"][0]
        assert record["encrypted"] is True
        assert record["api_key"] != VALID_API_KEY

        reloaded = AccountsStore(memory_store, client_factory=client_factory, secret_box=box)
        assert reloaded.list_accounts()[0].api_key == VALID_API_KEY

    @pytest.mark.asyncio
    async def test_encrypted_without_key_fails(self, memory_store, client_factory, healthy):
        """Encrypted records cannot be loaded without the key."""
        box = SecretBox(generate_encryption_key())
        accounts = AccountsStore(memory_store, client_factory=client_factory, secret_box=box)
        await accounts.add_account("Main", VALID_API_KEY)

        with pytest.raises(AccountError) as exc_info:
            AccountsStore(memory_store, client_factory=client_factory)
        assert exc_info.value.code == "DECRYPTION_FAILED"

    def test_malformed_records_skipped(self, memory_store, client_factory):
        """Records that fail validation are dropped on load."""
        memory_store.set(
            ACCOUNTS_KEY,
            {
                "version": 1,
                "accounts": [{"name": "no key"}, {"id": "a1", "name": "ok", "api_key": "k"}],
                "active_account_id": "a1",
            },
        )
        accounts = AccountsStore(memory_store, client_factory=client_factory)
        assert [a.id for a in accounts.list_accounts()] == ["a1"]
        assert accounts.active_account.id == "a1"


class TestMigration:
    """Tests for migrate_accounts_document()."""

    def test_bare_list(self):
        """Version 0 stored a bare list."""
        data = migrate_accounts_document([{"id": "a1"}])
        assert data == {"accounts": [{"id": "a1"}], "active_account_id": None, "version": 1}

    def test_unversioned_mapping(self):
        """Unversioned mappings keep their accounts and selection."""
        data = migrate_accounts_document({"accounts": [], "active_account_id": "x"})
        assert data["version"] == 1
        assert data["active_account_id"] == "x"

    def test_garbage(self):
        """Anything else becomes an empty document."""
        assert migrate_accounts_document("oops")["accounts"] == []
