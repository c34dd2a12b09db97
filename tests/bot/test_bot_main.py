"""Tests for bot/main.py."""

import pytest
from telegram.ext import CallbackQueryHandler, CommandHandler

from bot.main import build_application


class TestBuildApplication:
    """Tests for build_application()."""

    def test_registers_commands(self, settings):
        """Every command and the confirmation callback are wired."""
        application = build_application(settings)

        handlers = application.handlers[0]
        commands = set()
        for handler in handlers:
            if isinstance(handler, CommandHandler):
                commands |= handler.commands

        assert commands == {
            "start",
            "help",
            "setapikey",
            "servers",
            "start_server",
            "stop_server",
            "reset_server",
            "stopall",
        }
        assert any(isinstance(h, CallbackQueryHandler) for h in handlers)
        assert application.error_handlers

    def test_token_required(self, settings):
        """Without a token the bot refuses to start."""
        settings.telegram_bot_token = None
        with pytest.raises(SystemExit):
            build_application(settings)
