"""Telegram bot main entry point."""

import logging

from dotenv import load_dotenv
from telegram import Update
from telegram.ext import Application, CallbackQueryHandler, CommandHandler

from bot.handlers import CANCEL_STOPALL, CONFIRM_STOPALL, BotHandlers
from bot.storage import BotStorage
from rdpanel.common.client import limited_client_factory
from rdpanel.common.crypto import SecretBox
from rdpanel.config import Settings, get_settings
from rdpanel.observability import get_logger, reset_logging, setup_logging
from rdpanel.storage.kv import JsonFileStore

load_dotenv()

logger = get_logger(__name__)

BOT_STORE_FILENAME = "bot.json"


def build_application(settings: Settings, handlers: BotHandlers | None = None) -> Application:
    """Create the bot application with all handlers registered."""
    if not settings.telegram_bot_token:
        raise SystemExit("TELEGRAM_BOT_TOKEN must be set")

    if handlers is None:
        if not settings.encryption_key:
            logger.warning("ENCRYPTION_KEY not set; bot credentials are stored unencrypted")
        storage = BotStorage(
            JsonFileStore(settings.data_dir / BOT_STORE_FILENAME),
            SecretBox(settings.encryption_key) if settings.encryption_key else None,
        )
        handlers = BotHandlers(
            storage,
            client_factory=limited_client_factory(settings),
            allowed_chat_ids=settings.allowed_chat_ids,
            rate_limit_requests=settings.bot_rate_limit_requests,
            rate_limit_window=settings.bot_rate_limit_window,
        )

    if not handlers.allowed_chat_ids:
        logger.warning("ALLOWED_CHAT_IDS is empty; every chat will be refused")

    application = Application.builder().token(settings.telegram_bot_token).build()
    application.add_handler(CommandHandler("start", handlers.start))
    application.add_handler(CommandHandler("help", handlers.help))
    application.add_handler(CommandHandler("setapikey", handlers.set_api_key))
    application.add_handler(CommandHandler("servers", handlers.servers))
    application.add_handler(CommandHandler("start_server", handlers.start_server))
    application.add_handler(CommandHandler("stop_server", handlers.stop_server))
    application.add_handler(CommandHandler("reset_server", handlers.reset_server))
    application.add_handler(CommandHandler("stopall", handlers.stop_all))
    application.add_handler(
        CallbackQueryHandler(
            handlers.on_callback, pattern=f"^({CONFIRM_STOPALL}|{CANCEL_STOPALL})$"
        )
    )
    application.add_error_handler(handlers.on_error)
    return application


def main() -> None:
    settings = get_settings()
    reset_logging()
    setup_logging(
        level=logging.DEBUG if settings.debug else logging.INFO,
        json_format=settings.log_json,
    )
    settings.log_config_summary()

    application = build_application(settings)
    logger.info("Bot started")
    application.run_polling(allowed_updates=Update.ALL_TYPES)


if __name__ == "__main__":
    main()
