"""Telegram application factory."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    MessageHandler,
    filters,
)

from src.bot.controllers import shutdown_all
from src.bot.handlers import (
    handle_add,
    handle_agents,
    handle_call,
    handle_callback_query,
    handle_clear,
    handle_message,
    handle_photo,
    handle_start,
    handle_status,
    handle_use,
)
from src.config import settings
from src.playground.wiring import close_backend

if TYPE_CHECKING:
    from src.webhooks.server import WebhookServer

logger = logging.getLogger(__name__)

# Module-level reference so post_shutdown can stop the server.
_webhook_server: WebhookServer | None = None


def voice_configured() -> bool:
    """True when voice calls can be placed, so call events need a receiver."""
    return bool(settings.vapi_api_key and settings.vapi_assistant_id)


async def _post_init(app: Application) -> None:
    """Called after the Application is fully initialized (event loop running)."""
    global _webhook_server  # noqa: PLW0603
    if not voice_configured():
        logger.info("Voice not configured — webhook server not started")
        return

    from src.webhooks.server import WebhookServer

    _webhook_server = WebhookServer()
    await _webhook_server.start()


async def _post_shutdown(app: Application) -> None:
    """Called during graceful shutdown."""
    global _webhook_server  # noqa: PLW0603
    count = await shutdown_all()
    if count:
        logger.info("Closed %d playground session(s)", count)
    if _webhook_server is not None:
        await _webhook_server.stop()
        _webhook_server = None
    await close_backend()


def create_app() -> Application:
    """Build and configure the Telegram application."""
    # Concurrent updates let a /clear confirmation tap arrive while the
    # /clear handler is still waiting on it.
    app = Application.builder().token(settings.telegram_bot_token).concurrent_updates(True).build()

    app.add_handler(CommandHandler("start", handle_start))
    app.add_handler(CommandHandler("agents", handle_agents))
    app.add_handler(CommandHandler("use", handle_use))
    app.add_handler(CommandHandler("add", handle_add))
    app.add_handler(CommandHandler("clear", handle_clear))
    app.add_handler(CommandHandler("call", handle_call))
    app.add_handler(CommandHandler("status", handle_status))
    app.add_handler(CallbackQueryHandler(handle_callback_query))
    app.add_handler(MessageHandler(filters.PHOTO, handle_photo))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_message))

    app.post_init = _post_init
    app.post_shutdown = _post_shutdown

    return app
