"""Tests for bot/handlers.py."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from bot.handlers import (
    CANCEL_STOPALL,
    CONFIRM_STOPALL,
    HELP_TEXT,
    NO_API_KEY_TEXT,
    SLOW_DOWN_TEXT,
    UNAUTHORIZED_TEXT,
    WELCOME_TEXT,
    BotHandlers,
    describe_error,
)
from bot.storage import BotStorage, ConfirmationContext, UserData
from conftest import VALID_API_KEY, FakeProvider, no_sleep
from rdpanel.common.client import HostingClient
from rdpanel.core.errors import ApiError, ErrorKind, RateLimitOrigin, client_rate_limited
from rdpanel.storage import MemoryStore

CHAT_ID = 1001
USER_ID = 42


def make_update(chat_id: int = CHAT_ID, callback_data: str | None = None) -> MagicMock:
    update = MagicMock()
    update.effective_chat.id = chat_id
    update.effective_user.id = USER_ID
    update.effective_message.reply_text = AsyncMock(return_value=MagicMock(message_id=99))
    if callback_data is None:
        update.callback_query = None
    else:
        update.callback_query.data = callback_data
        update.callback_query.answer = AsyncMock()
        update.callback_query.edit_message_text = AsyncMock()
    return update


def make_context(*args: str) -> MagicMock:
    context = MagicMock()
    context.args = list(args)
    return context


def replies(update: MagicMock) -> list[str]:
    return [c.args[0] for c in update.effective_message.reply_text.await_args_list]


@pytest.fixture
def storage() -> BotStorage:
    return BotStorage(MemoryStore())


@pytest.fixture
def handlers(storage, provider: FakeProvider) -> BotHandlers:
    def factory(api_key: str) -> HostingClient:
        return HostingClient(
            api_key, {"max_retries": 0}, transport=provider.transport, sleep=no_sleep
        )

    return BotHandlers(storage, factory, allowed_chat_ids=[CHAT_ID])


@pytest.fixture
def registered(storage) -> BotStorage:
    storage.save_user_data(USER_ID, UserData(api_key=VALID_API_KEY))
    return storage


class TestGuards:
    """Tests for the allow-list and per-user throttle."""

    @pytest.mark.asyncio
    async def test_unlisted_chat_rejected(self, handlers):
        """Chats outside the allow-list get a refusal."""
        update = make_update(chat_id=666)

        await handlers.help(update, make_context())

        assert replies(update) == [UNAUTHORIZED_TEXT]

    @pytest.mark.asyncio
    async def test_empty_allow_list_denies_all(self, storage):
        """No configured chats means nobody is served."""
        handlers = BotHandlers(storage, MagicMock(), allowed_chat_ids=[])
        update = make_update()

        await handlers.help(update, make_context())

        assert replies(update) == [UNAUTHORIZED_TEXT]

    @pytest.mark.asyncio
    async def test_unlisted_callback_gets_alert(self, handlers):
        """Callbacks from unlisted chats are answered with an alert."""
        update = make_update(chat_id=666, callback_data=CONFIRM_STOPALL)

        await handlers.on_callback(update, make_context())

        update.callback_query.answer.assert_awaited_once_with(UNAUTHORIZED_TEXT, show_alert=True)

    @pytest.mark.asyncio
    async def test_throttled(self, storage):
        """Commands beyond the per-user budget are refused."""
        handlers = BotHandlers(storage, MagicMock(), [CHAT_ID], rate_limit_requests=2)
        update = make_update()

        for _ in range(3):
            await handlers.help(update, make_context())

        assert replies(update) == [HELP_TEXT, HELP_TEXT, SLOW_DOWN_TEXT]

    @pytest.mark.asyncio
    async def test_missing_user_ignored(self, handlers):
        """Updates without a user are dropped silently."""
        update = make_update()
        update.effective_user = None

        await handlers.help(update, make_context())

        update.effective_message.reply_text.assert_not_awaited()


class TestStartAndApiKey:
    """Tests for /start and /setapikey."""

    @pytest.mark.asyncio
    async def test_start_new_user(self, handlers):
        """Unknown users get the welcome text."""
        update = make_update()
        await handlers.start(update, make_context())
        assert replies(update) == [WELCOME_TEXT]

    @pytest.mark.asyncio
    async def test_start_known_user(self, handlers, registered):
        """Configured users get the command list."""
        update = make_update()
        await handlers.start(update, make_context())
        assert replies(update) == [HELP_TEXT]

    @pytest.mark.asyncio
    async def test_set_api_key_usage(self, handlers):
        """Missing arguments show usage."""
        update = make_update()
        await handlers.set_api_key(update, make_context())
        assert replies(update) == ["Usage: /setapikey YOUR_API_KEY"]

    @pytest.mark.asyncio
    async def test_set_api_key_valid(self, handlers, storage, provider):
        """A key the provider accepts is stored."""
        provider.add("GET", "/servers", [])
        update = make_update()

        await handlers.set_api_key(update, make_context(VALID_API_KEY))

        assert replies(update)[0].startswith("✅ API key configured successfully!")
        assert storage.get_user_data(USER_ID).api_key == VALID_API_KEY

    @pytest.mark.asyncio
    async def test_set_api_key_rejected(self, handlers, storage, provider):
        """A refused key is not stored."""
        provider.add("GET", "/servers", httpx.Response(401))
        update = make_update()

        await handlers.set_api_key(update, make_context(VALID_API_KEY))

        assert replies(update)[0].startswith("❌ Invalid API key")
        assert storage.get_user_data(USER_ID) is None

    @pytest.mark.asyncio
    async def test_set_api_key_malformed(self, handlers, provider):
        """Malformed keys are refused without contacting the provider."""
        update = make_update()

        await handlers.set_api_key(update, make_context("short"))

        assert replies(update)[0].startswith("❌ Invalid API key")
        assert provider.calls == []


class TestServerCommands:
    """Tests for /servers and the power commands."""

    @pytest.mark.asyncio
    async def test_requires_api_key(self, handlers):
        """Commands need a configured key."""
        update = make_update()
        await handlers.servers(update, make_context())
        assert replies(update) == [NO_API_KEY_TEXT]

    @pytest.mark.asyncio
    async def test_list_servers(self, handlers, registered, provider, server_payloads):
        """Servers are listed with escaped names."""
        server_payloads[0]["rdns"] = "<b>evil</b>"
        provider.add("GET", "/servers", server_payloads)
        update = make_update()

        await handlers.servers(update, make_context())

        (text,) = replies(update)
        assert "&lt;b&gt;evil&lt;/b&gt;" in text
        assert "srv-2" in text
        assert "Expires: 2030-01-15" in text

    @pytest.mark.asyncio
    async def test_no_servers(self, handlers, registered, provider):
        """An empty account says so."""
        provider.add("GET", "/servers", [])
        update = make_update()

        await handlers.servers(update, make_context())

        assert replies(update) == ["No servers found."]

    @pytest.mark.asyncio
    async def test_start_server(self, handlers, registered, provider):
        """The power command is sent for the given id."""
        provider.add("POST", "/servers/srv-1/power/start", {"status": True})
        update = make_update()

        await handlers.start_server(update, make_context("srv-1"))

        assert replies(update) == ["✅ Server start command sent successfully."]

    @pytest.mark.asyncio
    async def test_power_usage(self, handlers, registered):
        """A missing server id shows usage."""
        update = make_update()
        await handlers.reset_server(update, make_context())
        assert replies(update) == ["Usage: /reset_server SERVER_ID"]

    @pytest.mark.asyncio
    async def test_power_failure(self, handlers, registered, provider):
        """Provider failures are reported in plain words."""
        provider.add("POST", "/servers/srv-1/power/stop", httpx.Response(404))
        update = make_update()

        await handlers.stop_server(update, make_context("srv-1"))

        assert replies(update) == ["❌ Failed to stop server. Please try again."]


class TestStopAll:
    """Tests for /stopall and its confirmation flow."""

    @pytest.mark.asyncio
    async def test_asks_for_confirmation(self, handlers, registered, provider, server_payloads):
        """Running servers are remembered pending confirmation."""
        provider.add("GET", "/servers", server_payloads)
        update = make_update()

        await handlers.stop_all(update, make_context())

        call = update.effective_message.reply_text.await_args
        assert "stop 2 running servers" in call.args[0]
        assert call.kwargs["reply_markup"] is not None
        confirmation = registered.get_confirmation(USER_ID)
        assert confirmation.server_ids == ["srv-1", "srv-3"]
        assert confirmation.message_id == 99

    @pytest.mark.asyncio
    async def test_nothing_running(self, handlers, registered, provider):
        """No running servers means no prompt."""
        provider.add("GET", "/servers", [{"id": "x", "status": "stopped"}])
        update = make_update()

        await handlers.stop_all(update, make_context())

        assert replies(update) == ["No running servers found."]
        assert registered.get_confirmation(USER_ID) is None

    @pytest.mark.asyncio
    async def test_confirm_stops_servers(self, handlers, registered, provider):
        """Confirming stops every remembered server and reports failures."""
        registered.save_confirmation(
            USER_ID,
            ConfirmationContext(action="stopall", message_id=99, server_ids=["a", "b"]),
        )
        provider.add("POST", "/servers/a/power/stop", {"status": True})
        provider.add("POST", "/servers/b/power/stop", httpx.Response(500))
        update = make_update(callback_data=CONFIRM_STOPALL)

        await handlers.on_callback(update, make_context())

        update.callback_query.edit_message_text.assert_awaited_once_with(
            "✅ Stopped 1 servers\n❌ Failed to stop 1 servers"
        )
        assert registered.get_confirmation(USER_ID) is None

    @pytest.mark.asyncio
    async def test_confirm_expired(self, handlers, registered):
        """Without a pending confirmation nothing is stopped."""
        update = make_update(callback_data=CONFIRM_STOPALL)

        await handlers.on_callback(update, make_context())

        update.callback_query.answer.assert_awaited_once_with(
            "❌ Confirmation expired. Please try again.", show_alert=True
        )
        update.callback_query.edit_message_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel(self, handlers, registered):
        """Cancelling clears the pending confirmation."""
        registered.save_confirmation(
            USER_ID, ConfirmationContext(action="stopall", message_id=99, server_ids=["a"])
        )
        update = make_update(callback_data=CANCEL_STOPALL)

        await handlers.on_callback(update, make_context())

        update.callback_query.edit_message_text.assert_awaited_once_with("❌ Operation cancelled.")
        update.callback_query.answer.assert_awaited_once_with()
        assert registered.get_confirmation(USER_ID) is None


class TestDescribeError:
    """Tests for describe_error()."""

    def test_client_throttle(self):
        """Client throttling shows the wait time."""
        text = describe_error(client_rate_limited(2.5), "fetch servers")
        assert text == "⏳ Rate limit exceeded. Try again in 3 seconds"

    def test_server_throttle(self):
        """Provider throttling asks the user to wait."""
        error = ApiError(ErrorKind.RATE_LIMITED, "slow", status=429, origin=RateLimitOrigin.SERVER)
        assert "rate limiting" in describe_error(error, "fetch servers")

    def test_unauthorized(self):
        """A rejected key points to /setapikey."""
        error = ApiError(ErrorKind.UNAUTHORIZED, "no", status=401)
        assert "/setapikey" in describe_error(error, "fetch servers")

    def test_other(self):
        """Everything else is a generic failure."""
        error = ApiError(ErrorKind.NETWORK_ERROR, "down", status=0)
        assert describe_error(error, "fetch servers") == (
            "❌ Failed to fetch servers. Please try again."
        )
