"""Tests for src/bot/confirmations."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

from src.bot.confirmations import (
    _pending,
    generate_confirmation_id,
    get_pending,
    request_confirmation,
    resolve_confirmation,
)

# -- Helpers -----------------------------------------------------------------


def _make_mock_bot() -> AsyncMock:
    """Create a mock telegram.Bot with send_message returning a Message."""
    bot = AsyncMock()
    msg = MagicMock()
    msg.message_id = 42
    bot.send_message = AsyncMock(return_value=msg)
    bot.edit_message_text = AsyncMock()
    return bot


async def _wait_for_pending() -> str:
    for _ in range(50):
        if _pending:
            return next(iter(_pending))
        await asyncio.sleep(0)
    raise AssertionError("confirmation was never registered")


# -- generate_confirmation_id -----------------------------------------------


def test_id_length() -> None:
    cid = generate_confirmation_id()
    assert len(cid) == 8


def test_id_is_hex() -> None:
    cid = generate_confirmation_id()
    int(cid, 16)  # Raises ValueError if not valid hex


def test_ids_are_unique() -> None:
    ids = {generate_confirmation_id() for _ in range(100)}
    assert len(ids) == 100


# -- resolve_confirmation -----------------------------------------------------


def test_resolve_unknown_returns_false() -> None:
    assert resolve_confirmation("deadbeef", approved=True) is False


# -- request_confirmation -----------------------------------------------------


async def test_approve() -> None:
    bot = _make_mock_bot()
    task = asyncio.create_task(request_confirmation(bot, 123, "Delete everything?"))
    conf_id = await _wait_for_pending()

    assert get_pending(conf_id).message_id == 42
    assert resolve_confirmation(conf_id, approved=True) is True
    assert await task is True
    assert get_pending(conf_id) is None


async def test_deny() -> None:
    bot = _make_mock_bot()
    task = asyncio.create_task(request_confirmation(bot, 123, "Delete everything?"))
    conf_id = await _wait_for_pending()

    resolve_confirmation(conf_id, approved=False)
    assert await task is False


async def test_second_resolve_is_ignored() -> None:
    bot = _make_mock_bot()
    task = asyncio.create_task(request_confirmation(bot, 123, "Delete?"))
    conf_id = await _wait_for_pending()

    assert resolve_confirmation(conf_id, approved=True) is True
    assert resolve_confirmation(conf_id, approved=False) is False
    assert await task is True


async def test_prompt_sent_with_buttons() -> None:
    bot = _make_mock_bot()
    task = asyncio.create_task(request_confirmation(bot, 123, "Delete <all>?"))
    conf_id = await _wait_for_pending()
    resolve_confirmation(conf_id, approved=True)
    await task

    kwargs = bot.send_message.call_args.kwargs
    assert kwargs["chat_id"] == 123
    assert kwargs["parse_mode"] == "HTML"
    assert "Delete &lt;all&gt;?" in kwargs["text"]
    buttons = kwargs["reply_markup"].inline_keyboard[0]
    assert [b.callback_data for b in buttons] == [f"cfm:{conf_id}:y", f"cfm:{conf_id}:n"]


async def test_timeout_denies_and_edits() -> None:
    bot = _make_mock_bot()
    result = await request_confirmation(bot, 123, "Delete?", timeout=0.01)

    assert result is False
    bot.edit_message_text.assert_awaited_once()
    assert "timed out" in bot.edit_message_text.call_args.kwargs["text"]
    assert _pending == {}


async def test_timeout_edit_failure_is_swallowed() -> None:
    bot = _make_mock_bot()
    bot.edit_message_text = AsyncMock(side_effect=RuntimeError("message gone"))
    assert await request_confirmation(bot, 123, "Delete?", timeout=0.01) is False
