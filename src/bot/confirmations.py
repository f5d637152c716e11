"""Telegram inline-keyboard confirmation for destructive actions.

``/clear`` deletes the whole chat history, so the bot sends an
Approve / Deny prompt and waits for the user to tap before going ahead.
No answer within the timeout counts as a deny.
"""

from __future__ import annotations

import asyncio
import html
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

if TYPE_CHECKING:
    from telegram import Bot

logger = logging.getLogger(__name__)

# Default timeout before auto-denying a confirmation (seconds)
DEFAULT_TIMEOUT = 60.0

CALLBACK_PREFIX = "cfm"


@dataclass
class PendingConfirmation:
    """An in-flight confirmation prompt waiting for the user to respond."""

    id: str
    chat_id: int
    prompt: str
    future: asyncio.Future[bool]
    message_id: int | None = None
    created_at: float = field(default_factory=time.monotonic)


# Module-level dict of pending confirmations keyed by confirmation ID.
_pending: dict[str, PendingConfirmation] = {}


def generate_confirmation_id() -> str:
    """Return an 8-character hex string suitable for callback data."""
    return uuid.uuid4().hex[:8]


def get_pending(confirmation_id: str) -> PendingConfirmation | None:
    """Look up a pending confirmation by ID."""
    return _pending.get(confirmation_id)


def resolve_confirmation(confirmation_id: str, *, approved: bool) -> bool:
    """Resolve a pending confirmation.

    Returns True if the confirmation was found and resolved, False if it
    was already resolved or expired.
    """
    pc = _pending.get(confirmation_id)
    if pc is None:
        return False
    if pc.future.done():
        return False
    pc.future.set_result(approved)
    return True


async def request_confirmation(
    bot: Bot,
    chat_id: int,
    prompt: str,
    *,
    timeout: float = DEFAULT_TIMEOUT,
) -> bool:
    """Send an inline-keyboard confirmation and wait for the user's tap.

    Returns True if the user approved, False on deny or timeout.
    """
    conf_id = generate_confirmation_id()
    keyboard = InlineKeyboardMarkup([
        [
            InlineKeyboardButton("Approve", callback_data=f"{CALLBACK_PREFIX}:{conf_id}:y"),
            InlineKeyboardButton("Deny", callback_data=f"{CALLBACK_PREFIX}:{conf_id}:n"),
        ]
    ])

    safe_prompt = html.escape(prompt)
    msg = await bot.send_message(
        chat_id=chat_id,
        text=f"<b>Confirm:</b>\n{safe_prompt}",
        reply_markup=keyboard,
        parse_mode="HTML",
    )

    loop = asyncio.get_running_loop()
    future: asyncio.Future[bool] = loop.create_future()
    _pending[conf_id] = PendingConfirmation(
        id=conf_id,
        chat_id=chat_id,
        prompt=prompt,
        future=future,
        message_id=msg.message_id,
    )

    try:
        return await asyncio.wait_for(future, timeout=timeout)
    except TimeoutError:
        logger.info("Confirmation %s timed out", conf_id)
        try:
            await bot.edit_message_text(
                chat_id=chat_id,
                message_id=msg.message_id,
                text=f"<b>Confirm:</b> (timed out)\n{safe_prompt}",
                parse_mode="HTML",
            )
        except Exception:
            logger.debug("Could not edit timed-out confirmation message", exc_info=True)
        return False
    finally:
        _pending.pop(conf_id, None)
