"""Pushes controller output (replies, voice transcripts, call status) to a chat."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from src.marketplace.models import ROLE_SYSTEM, ROLE_USER

if TYPE_CHECKING:
    import telegram

    from src.marketplace.models import Message
    from src.voice.events import VoiceCallState

logger = logging.getLogger(__name__)

# Telegram rejects messages longer than this
MAX_MESSAGE_LENGTH = 4096


def split_text(text: str, limit: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """Split *text* into chunks Telegram will accept, preferring newlines."""
    chunks: list[str] = []
    while len(text) > limit:
        cut = text.rfind("\n", 0, limit)
        if cut <= 0:
            cut = limit
        chunks.append(text[:cut])
        text = text[cut:].lstrip("\n")
    if text:
        chunks.append(text)
    return chunks


def format_message(message: Message) -> str | None:
    """Render a transcript entry for the chat, or None if it should not be shown.

    Typed user messages are already visible in the chat, so they are skipped.
    """
    if message.role == ROLE_USER:
        if not message.is_voice:
            return None
        return f"You (voice): {message.content}"
    if message.role == ROLE_SYSTEM:
        return f"[{message.content}]"
    return message.content or ""


class TelegramTranscriptView:
    """TranscriptListener that writes to one Telegram chat."""

    def __init__(self, bot: telegram.Bot, chat_id: int) -> None:
        self._bot = bot
        self._chat_id = chat_id

    async def on_message(self, message: Message) -> None:
        text = format_message(message)
        if not text:
            return
        for chunk in split_text(text):
            await self._bot.send_message(chat_id=self._chat_id, text=chunk)

    async def on_voice_status(self, state: VoiceCallState, status: str) -> None:
        await self._bot.send_message(chat_id=self._chat_id, text=f"Voice: {status}")
