"""Tests for the Telegram application factory."""

from unittest.mock import AsyncMock, MagicMock, patch

from telegram.ext import CallbackQueryHandler, CommandHandler

from src.bot import app as bot_app
from src.config import settings


def test_create_app_registers_commands(monkeypatch) -> None:
    monkeypatch.setattr(settings, "telegram_bot_token", "123456:TEST-TOKEN")
    app = bot_app.create_app()

    handlers = app.handlers[0]
    commands = set()
    for handler in handlers:
        if isinstance(handler, CommandHandler):
            commands |= set(handler.commands)
    assert commands == {"start", "agents", "use", "add", "clear", "call", "status"}
    assert any(isinstance(h, CallbackQueryHandler) for h in handlers)


async def test_post_init_skips_server_without_voice(monkeypatch) -> None:
    monkeypatch.setattr(settings, "vapi_api_key", "")
    with patch("src.webhooks.server.WebhookServer") as server_cls:
        await bot_app._post_init(MagicMock())
    server_cls.assert_not_called()
    assert bot_app._webhook_server is None


async def test_post_init_starts_server_with_voice(monkeypatch) -> None:
    monkeypatch.setattr(settings, "vapi_api_key", "key")
    monkeypatch.setattr(settings, "vapi_assistant_id", "asst-1")
    server = MagicMock()
    server.start = AsyncMock()
    server.stop = AsyncMock()
    with patch("src.webhooks.server.WebhookServer", return_value=server):
        await bot_app._post_init(MagicMock())
    server.start.assert_awaited_once()

    with patch("src.bot.app.close_backend", new_callable=AsyncMock) as close_backend:
        await bot_app._post_shutdown(MagicMock())
    server.stop.assert_awaited_once()
    close_backend.assert_awaited_once()
    assert bot_app._webhook_server is None


async def test_post_shutdown_closes_sessions_and_backend() -> None:
    with (
        patch("src.bot.app.shutdown_all", new_callable=AsyncMock, return_value=2) as shutdown,
        patch("src.bot.app.close_backend", new_callable=AsyncMock) as close_backend,
    ):
        await bot_app._post_shutdown(MagicMock())
    shutdown.assert_awaited_once()
    close_backend.assert_awaited_once()
