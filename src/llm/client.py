"""Text-completion collaborators.

Two interchangeable backends turn a user message plus an agent's persona
into a reply:

- :class:`ChatEngineCompletion` — the hosted ``chat-engine`` edge function
- :class:`AnthropicCompletion` — the Claude Messages API directly

Both make exactly one upstream call per ``complete()`` and never retry.
Any upstream failure is raised as :class:`CollaboratorUnavailable`.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import anthropic

from src.config import settings
from src.errors import CollaboratorUnavailable
from src.marketplace.media import split_data_url

if TYPE_CHECKING:
    from src.marketplace.models import Agent
    from src.marketplace.supabase import SupabaseClient

logger = logging.getLogger(__name__)


@runtime_checkable
class CompletionClient(Protocol):
    """Protocol for anything that can answer a single user message."""

    async def complete(self, user_text: str, agent: Agent, image: str | None = None) -> str:
        ...


class ChatEngineCompletion:
    """Calls the ``chat-engine`` edge function.

    The function answers ``{"reply": "..."}`` with HTTP 200 even for its own
    upstream errors, so those replies are passed through as text.
    """

    def __init__(self, client: SupabaseClient, function: str | None = None) -> None:
        self._client = client
        self._function = function or settings.chat_engine_function

    async def complete(self, user_text: str, agent: Agent, image: str | None = None) -> str:
        payload: dict[str, Any] = {
            "message": user_text,
            "modelId": agent.id,
            "systemPrompt": agent.persona,
        }
        if image:
            payload["image"] = image

        data = await self._client.invoke(self._function, payload)
        reply = data.get("reply")
        if not isinstance(reply, str):
            raise CollaboratorUnavailable(f"{self._function}: response has no reply")
        return reply


def _user_content(user_text: str, image: str | None) -> str | list[dict[str, Any]]:
    """Build Claude message content, adding an image block when attached."""
    if not image:
        return user_text

    try:
        media_type, data = split_data_url(image)
    except ValueError:
        logger.warning("Ignoring malformed image attachment")
        return user_text

    blocks: list[dict[str, Any]] = [
        {
            "type": "image",
            "source": {"type": "base64", "media_type": media_type, "data": data},
        }
    ]
    if user_text.strip():
        blocks.append({"type": "text", "text": user_text})
    return blocks


class AnthropicCompletion:
    """Single-shot Claude call with the agent persona as the system prompt."""

    def __init__(
        self,
        client: anthropic.AsyncAnthropic | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
    ) -> None:
        self._client = client
        self._model = model or settings.claude_model
        self._max_tokens = max_tokens or settings.completion_max_tokens

    def _get_client(self) -> anthropic.AsyncAnthropic:
        """Lazily initialize the Anthropic client."""
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(
                api_key=settings.anthropic_api_key,
                max_retries=0,
            )
        return self._client

    async def complete(self, user_text: str, agent: Agent, image: str | None = None) -> str:
        kwargs: dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "messages": [{"role": "user", "content": _user_content(user_text, image)}],
        }
        if agent.persona:
            kwargs["system"] = agent.persona

        try:
            response = await self._get_client().messages.create(**kwargs)
        except anthropic.APIError as exc:
            logger.warning("Claude completion failed for agent %s: %s", agent.id, exc)
            raise CollaboratorUnavailable(f"anthropic: {exc}") from exc

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        if not text:
            raise CollaboratorUnavailable("anthropic: empty response")
        return text
