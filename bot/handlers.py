"""Telegram command and callback handlers."""

from __future__ import annotations

import functools
import html
from typing import Any, Awaitable, Callable

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.constants import ParseMode
from telegram.ext import ContextTypes

from bot.storage import BotStorage, ConfirmationContext, UserData
from rdpanel.common.batch import batch_power_action
from rdpanel.common.client import HostingClient
from rdpanel.common.servers import parse_date
from rdpanel.config.constants import BOT_RATE_LIMIT_REQUESTS, BOT_RATE_LIMIT_WINDOW
from rdpanel.core.errors import ApiError, ErrorKind, RateLimitOrigin
from rdpanel.core.types import PowerAction, Server
from rdpanel.observability import get_logger, log_context
from rdpanel.resilience.rate_limiter import RateLimiter

logger = get_logger(__name__)

Handler = Callable[["BotHandlers", Update, ContextTypes.DEFAULT_TYPE], Awaitable[Any]]

CONFIRM_STOPALL = "confirm_stopall"
CANCEL_STOPALL = "cancel_stopall"

UNAUTHORIZED_TEXT = "⛔ Unauthorized access"
SLOW_DOWN_TEXT = "⚠️ Please wait before sending more commands"
NO_API_KEY_TEXT = "⚠️ Please set up your API key first using /setapikey"

HELP_TEXT = (
    "🖥️ <b>Server Manager</b>\n\n"
    "Available commands:\n"
    "/servers - List all servers\n"
    "/start_server ID - Start a server\n"
    "/stop_server ID - Stop a server\n"
    "/reset_server ID - Reset a server\n"
    "/stopall - Stop all running servers\n"
    "/help - Show this message"
)

WELCOME_TEXT = (
    "👋 Welcome to the Server Manager Bot!\n\n"
    "To get started, please set up your API key using:\n"
    "/setapikey YOUR_API_KEY"
)


def describe_error(error: ApiError, failed_to: str) -> str:
    """User-facing text for a failure, depending on its kind."""
    if error.kind == ErrorKind.RATE_LIMITED:
        if error.origin == RateLimitOrigin.CLIENT:
            return f"⏳ {error.message}"
        return "⏳ The provider is rate limiting requests. Please wait a moment and try again."
    if error.kind == ErrorKind.UNAUTHORIZED:
        return "🔑 Your API key was rejected. Set a new one with /setapikey YOUR_API_KEY"
    if error.kind == ErrorKind.VALIDATION_ERROR:
        return f"❌ {html.escape(error.message)}"
    return f"❌ Failed to {failed_to}. Please try again."


def format_server(server: Server) -> str:
    icon = "🟢" if server.is_running else "⚫"
    expiry = parse_date(server.expiry_date)
    return (
        f"{icon} <b>{html.escape(server.display_name)}</b>\n"
        f"ID: <code>{html.escape(server.id)}</code>\n"
        f"IP: <code>{html.escape(server.ip_address or '-')}</code>\n"
        f"Status: {html.escape(server.status)}\n"
        f"Distro: {html.escape(server.distro)}\n"
        f"Expires: {expiry.date().isoformat() if expiry else '-'}\n"
    )


def stopall_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        [
            [
                InlineKeyboardButton("✅ Yes, stop all", callback_data=CONFIRM_STOPALL),
                InlineKeyboardButton("❌ Cancel", callback_data=CANCEL_STOPALL),
            ]
        ]
    )


def guarded(handler: Handler) -> Handler:
    """Check the chat allow-list and the per-user rate limit before handling."""

    @functools.wraps(handler)
    async def wrapper(self: "BotHandlers", update: Update, context: ContextTypes.DEFAULT_TYPE):
        chat = update.effective_chat
        user = update.effective_user
        if chat is None or user is None:
            return None

        if not self.is_allowed(chat.id):
            logger.warning("Rejected update from unlisted chat", extra={"chat_id": chat.id})
            await self.notify(update, UNAUTHORIZED_TEXT)
            return None

        try:
            self.limiter_for(user.id).check_limit()
        except ApiError:
            await self.notify(update, SLOW_DOWN_TEXT)
            return None

        with log_context(account=str(user.id)):
            return await handler(self, update, context)

    return wrapper


class BotHandlers:
    """Handlers bound to storage, a client factory and per-user throttles."""

    def __init__(
        self,
        storage: BotStorage,
        client_factory: Callable[[str], HostingClient],
        allowed_chat_ids: list[int],
        rate_limit_requests: int = BOT_RATE_LIMIT_REQUESTS,
        rate_limit_window: float = BOT_RATE_LIMIT_WINDOW,
    ):
        self.storage = storage
        self.client_factory = client_factory
        self.allowed_chat_ids = set(allowed_chat_ids)
        self.rate_limit_requests = rate_limit_requests
        self.rate_limit_window = rate_limit_window
        self._limiters: dict[int, RateLimiter] = {}

    def is_allowed(self, chat_id: int) -> bool:
        return chat_id in self.allowed_chat_ids

    def limiter_for(self, user_id: int) -> RateLimiter:
        limiter = self._limiters.get(user_id)
        if limiter is None:
            limiter = self._limiters[user_id] = RateLimiter(
                max_requests=self.rate_limit_requests, window=self.rate_limit_window
            )
        return limiter

    @staticmethod
    async def notify(update: Update, text: str) -> None:
        """Answer a callback with an alert, or reply to a message."""
        if update.callback_query is not None:
            await update.callback_query.answer(text, show_alert=True)
        elif update.effective_message is not None:
            await update.effective_message.reply_text(text)

    @staticmethod
    async def reply(update: Update, text: str) -> None:
        await update.effective_message.reply_text(text, parse_mode=ParseMode.HTML)

    async def _require_api_key(self, update: Update) -> str | None:
        user_data = self.storage.get_user_data(update.effective_user.id)
        if user_data is None or not user_data.api_key:
            await self.notify(update, NO_API_KEY_TEXT)
            return None
        return user_data.api_key

    # ==================== Commands ====================

    @guarded
    async def start(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """/start: welcome new users, show commands to configured ones."""
        user_data = self.storage.get_user_data(update.effective_user.id)
        await self.reply(update, HELP_TEXT if user_data else WELCOME_TEXT)

    @guarded
    async def help(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await self.reply(update, HELP_TEXT)

    @guarded
    async def set_api_key(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """/setapikey KEY: check the key with the provider, then store it."""
        if not context.args:
            await self.reply(update, "Usage: /setapikey YOUR_API_KEY")
            return

        api_key = context.args[0].strip()
        try:
            async with self.client_factory(api_key) as client:
                await client.list_servers()
        except ApiError as e:
            logger.info("API key rejected", extra={"reason": e.kind.value})
            if e.kind == ErrorKind.RATE_LIMITED:
                await self.reply(update, describe_error(e, "check the API key"))
            else:
                await self.reply(
                    update, "❌ Invalid API key. Please check your credentials and try again."
                )
            return

        self.storage.save_user_data(update.effective_user.id, UserData(api_key=api_key))
        await self.reply(
            update, "✅ API key configured successfully!\n\nUse /start to see available commands."
        )

    @guarded
    async def servers(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """/servers: list the user's servers."""
        api_key = await self._require_api_key(update)
        if api_key is None:
            return

        try:
            async with self.client_factory(api_key) as client:
                servers = await client.list_servers()
        except ApiError as e:
            await self.reply(update, describe_error(e, "fetch servers"))
            return

        if not servers:
            await self.reply(update, "No servers found.")
            return
        await self.reply(update, "\n".join(format_server(s) for s in servers))

    async def _power(self, update: Update, context: ContextTypes.DEFAULT_TYPE, action: PowerAction):
        api_key = await self._require_api_key(update)
        if api_key is None:
            return
        if not context.args:
            await self.reply(update, f"Usage: /{action.value}_server SERVER_ID")
            return

        server_id = context.args[0]
        try:
            async with self.client_factory(api_key) as client:
                await client.power_action(server_id, action)
        except ApiError as e:
            await self.reply(update, describe_error(e, f"{action.value} server"))
            return
        await self.reply(update, f"✅ Server {action.value} command sent successfully.")

    @guarded
    async def start_server(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await self._power(update, context, PowerAction.START)

    @guarded
    async def stop_server(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await self._power(update, context, PowerAction.STOP)

    @guarded
    async def reset_server(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await self._power(update, context, PowerAction.RESET)

    @guarded
    async def stop_all(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """/stopall: ask for confirmation before stopping every running server."""
        api_key = await self._require_api_key(update)
        if api_key is None:
            return

        try:
            async with self.client_factory(api_key) as client:
                servers = await client.list_servers()
        except ApiError as e:
            await self.reply(update, describe_error(e, "fetch servers"))
            return

        running = [s.id for s in servers if s.is_running]
        if not running:
            await self.reply(update, "No running servers found.")
            return

        message = await update.effective_message.reply_text(
            f"⚠️ Are you sure you want to stop {len(running)} running servers?\n\n"
            "This action cannot be undone.",
            reply_markup=stopall_keyboard(),
        )
        self.storage.save_confirmation(
            update.effective_user.id,
            ConfirmationContext(
                action="stopall", message_id=message.message_id, server_ids=running
            ),
        )

    # ==================== Callbacks ====================

    @guarded
    async def on_callback(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Handle the stop-all confirmation buttons."""
        query = update.callback_query
        user_id = update.effective_user.id

        api_key = await self._require_api_key(update)
        if api_key is None:
            return

        confirmation = self.storage.get_confirmation(user_id)

        if query.data == CONFIRM_STOPALL:
            if confirmation is None or confirmation.action != "stopall":
                await query.answer("❌ Confirmation expired. Please try again.", show_alert=True)
                return

            try:
                async with self.client_factory(api_key) as client:
                    result = await batch_power_action(
                        client, confirmation.server_ids, PowerAction.STOP
                    )
            except ApiError as e:
                await query.edit_message_text(describe_error(e, "stop servers"))
            else:
                text = f"✅ Stopped {len(result.succeeded)} servers"
                if result.failed:
                    text += f"\n❌ Failed to stop {len(result.failed)} servers"
                await query.edit_message_text(text)

        elif query.data == CANCEL_STOPALL and confirmation is not None:
            await query.edit_message_text("❌ Operation cancelled.")

        self.storage.clear_confirmation(user_id)
        await query.answer()

    async def on_error(self, update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
        logger.error("Unhandled error while processing update", exc_info=context.error)
