"""Per-chat session controllers."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from src.bot.view import TelegramTranscriptView
from src.playground.wiring import build_controller

if TYPE_CHECKING:
    import telegram

    from src.bot.security import Access
    from src.playground.controller import SessionController

logger = logging.getLogger(__name__)

# Live controllers keyed by Telegram chat ID
_controllers: dict[int, SessionController] = {}


async def get_controller(chat_id: int, access: Access, bot: telegram.Bot) -> SessionController:
    """Get or create (and mount) the controller for a chat."""
    controller = _controllers.get(chat_id)
    if controller is not None:
        return controller

    controller = build_controller(
        access.user_id, listener=TelegramTranscriptView(bot, chat_id)
    )
    # Registered before mounting so concurrent updates share it.
    _controllers[chat_id] = controller
    logger.info("New session for chat %s (guest=%s)", chat_id, access.is_guest)
    await controller.mount()
    return controller


async def drop_controller(chat_id: int) -> bool:
    """Unmount, close and forget a chat's controller. Returns True if one existed."""
    controller = _controllers.pop(chat_id, None)
    if controller is None:
        return False
    await controller.unmount()
    await controller.close()
    return True


async def shutdown_all() -> int:
    """Unmount every controller. Returns how many were live."""
    count = 0
    for chat_id in list(_controllers):
        if await drop_controller(chat_id):
            count += 1
    return count
