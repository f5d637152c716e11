"""Telegram command and message handlers for the agent playground."""

import contextlib
import logging

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.ext import ContextTypes

from src.bot.confirmations import (
    CALLBACK_PREFIX,
    get_pending,
    request_confirmation,
    resolve_confirmation,
)
from src.bot.controllers import get_controller
from src.bot.security import check_access
from src.marketplace.media import encode_image
from src.playground.controller import SessionController
from src.voice.events import VoiceCallState

logger = logging.getLogger(__name__)

AGENT_CALLBACK_PREFIX = "agt"

MAX_UPLOAD_SIZE = 5 * 1024 * 1024  # 5 MB

NO_AGENT_TEXT = "Select an agent first with /agents."
CLEAR_PROMPT = "Delete your entire chat history with every agent? This cannot be undone."


async def _controller_for(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> SessionController | None:
    """Resolve access and return the chat's controller, or None if rejected."""
    access = check_access(update)
    if access is None:
        return None
    return await get_controller(update.effective_chat.id, access, context.bot)


def _agent_line(controller: SessionController) -> str:
    agent = controller.selected_agent
    if agent is None:
        return "No agent selected."
    return f"Talking to {agent.name} ({agent.provider or 'unknown engine'})."


async def handle_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — open a session and greet the user."""
    controller = await _controller_for(update, context)
    if controller is None:
        return

    lines = ["Welcome to the Glance agent playground.", _agent_line(controller)]
    if controller.notice:
        lines.append(controller.notice)
    lines.append("Commands: /agents, /use <id>, /call, /clear, /status")
    await update.message.reply_text("\n".join(lines))


async def handle_agents(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /agents — list agents with select buttons."""
    controller = await _controller_for(update, context)
    if controller is None:
        return

    agents = await controller.load_agents()
    if not agents:
        await update.message.reply_text("No agents available yet.")
        return

    selected = controller.selected_agent
    lines = []
    buttons = []
    for agent in agents:
        marker = "* " if selected and agent.id == selected.id else ""
        price = f"${agent.input_price_1k:.4f}/1k in"
        lines.append(f"{marker}{agent.name} - {agent.description or agent.category} ({price})")
        lines.append(f"  id: {agent.id}")
        buttons.append([
            InlineKeyboardButton(
                agent.name[:60], callback_data=f"{AGENT_CALLBACK_PREFIX}:{agent.id}"
            )
        ])
    if controller.notice:
        lines.append(controller.notice)

    await update.message.reply_text(
        "\n".join(lines), reply_markup=InlineKeyboardMarkup(buttons)
    )


async def handle_use(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /use <id> — switch agents."""
    controller = await _controller_for(update, context)
    if controller is None:
        return

    if not context.args:
        await update.message.reply_text("Usage: /use <agent id>")
        return

    if await controller.select_agent(context.args[0]):
        count = len(controller.transcript)
        await update.message.reply_text(
            f"{_agent_line(controller)} {count} earlier message(s) loaded."
        )
    else:
        await update.message.reply_text(f"Unknown agent '{context.args[0]}'. Try /agents.")


async def handle_add(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /add <id> — add an agent to the user's library."""
    controller = await _controller_for(update, context)
    if controller is None:
        return

    if not context.args:
        await update.message.reply_text("Usage: /add <agent id>")
        return

    if await controller.add_to_library(context.args[0]):
        await update.message.reply_text("Added to your library.")
    else:
        await update.message.reply_text("Could not add that agent to your library.")


async def handle_clear(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /clear — delete chat history after confirmation."""
    controller = await _controller_for(update, context)
    if controller is None:
        return

    chat_id = update.effective_chat.id

    async def confirm() -> bool:
        return await request_confirmation(context.bot, chat_id, CLEAR_PROMPT)

    if await controller.clear_history(confirm):
        await update.message.reply_text("History cleared. Starting fresh.")
    elif controller.notice:
        await update.message.reply_text(controller.notice)
    else:
        await update.message.reply_text("Kept your history.")


async def handle_call(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /call — start or end a voice call."""
    controller = await _controller_for(update, context)
    if controller is None:
        return

    before = controller.voice_state
    state = await controller.toggle_voice_call()

    if state is VoiceCallState.CONNECTING and controller.voice_join_url:
        await update.message.reply_text(f"Join the call: {controller.voice_join_url}")
    elif (
        controller.voice_enabled
        and before is VoiceCallState.IDLE
        and state is VoiceCallState.IDLE
    ):
        await update.message.reply_text(NO_AGENT_TEXT)


async def handle_status(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /status — show session info."""
    controller = await _controller_for(update, context)
    if controller is None:
        return

    access = check_access(update)
    lines = [
        "Glance Status",
        _agent_line(controller),
        f"Messages in transcript: {len(controller.transcript)}",
        f"Voice: {controller.voice_status}",
        f"History: {'transient (guest)' if access and access.is_guest else 'saved'}",
    ]
    if controller.session.attachment:
        lines.append("Image attached, waiting for a message.")
    if controller.notice:
        lines.append(controller.notice)
    await update.message.reply_text("\n".join(lines))


async def handle_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle incoming text — send to the selected agent."""
    controller = await _controller_for(update, context)
    if controller is None:
        return

    text = update.message.text or ""
    logger.info("Message from %s: %s", update.effective_chat.id, text[:80])

    if controller.selected_agent is None:
        await update.message.reply_text(NO_AGENT_TEXT)
        return

    with contextlib.suppress(Exception):
        await context.bot.send_chat_action(chat_id=update.effective_chat.id, action="typing")
    await controller.send_text(text)


async def _download_photo(message) -> str:
    """Download the largest photo size and return it as a data URL.

    Raises ValueError if the photo is too large.
    """
    photo = message.photo[-1]
    if photo.file_size and photo.file_size > MAX_UPLOAD_SIZE:
        msg = f"Image too large (max {MAX_UPLOAD_SIZE // (1024 * 1024)} MB)"
        raise ValueError(msg)
    tg_file = await photo.get_file()
    data = await tg_file.download_as_bytearray()
    return encode_image(bytes(data), "image/jpeg")


async def handle_photo(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle photos — send with the caption, or hold for the next message."""
    controller = await _controller_for(update, context)
    if controller is None:
        return

    try:
        image = await _download_photo(update.message)
    except ValueError as exc:
        await update.message.reply_text(str(exc))
        return
    except Exception:
        logger.exception("Failed to download photo")
        await update.message.reply_text("Something went wrong downloading that image.")
        return

    caption = update.message.caption or ""
    if caption.strip():
        if controller.selected_agent is None:
            await update.message.reply_text(NO_AGENT_TEXT)
            return
        await controller.send_text(caption, image=image)
        return

    controller.attach_image(image)
    await update.message.reply_text("Image attached. Send a message to go with it.")


async def handle_callback_query(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle inline-keyboard callbacks: confirmations and agent selection."""
    query = update.callback_query
    data = query.data or ""

    if data.startswith(f"{AGENT_CALLBACK_PREFIX}:"):
        controller = await _controller_for(update, context)
        if controller is None:
            await query.answer()
            return
        agent_id = data.split(":", 1)[1]
        if await controller.select_agent(agent_id):
            await query.answer(f"Selected {controller.selected_agent.name}")
        else:
            await query.answer("That agent is no longer available.")
        return

    if not data.startswith(f"{CALLBACK_PREFIX}:"):
        await query.answer()
        return

    parts = data.split(":")
    if len(parts) != 3:
        await query.answer("Invalid callback data.")
        return

    _, conf_id, choice = parts
    pc = get_pending(conf_id)

    if pc is None:
        await query.answer("This confirmation has expired.")
        with contextlib.suppress(Exception):
            await query.edit_message_text(text=query.message.text + "\n\n(expired)")
        return

    if pc.future.done():
        await query.answer("Already handled.")
        return

    approved = choice == "y"
    resolve_confirmation(conf_id, approved=approved)

    status = "Approved" if approved else "Denied"
    with contextlib.suppress(Exception):
        await query.edit_message_text(text=query.message.text + f"\n\n→ {status}")
    await query.answer(status)
