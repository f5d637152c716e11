"""Collaborator wiring — builds controllers from settings.

Configuration is resolved once here; the controller itself never reads
keys or URLs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from src.config import settings
from src.llm.client import AnthropicCompletion, ChatEngineCompletion, CompletionClient
from src.marketplace.catalog import (
    AgentCatalog,
    LocalAgentCatalog,
    SupabaseAgentCatalog,
    default_agent_source,
)
from src.marketplace.history import HistoryStore, LocalHistoryStore, SupabaseHistoryStore
from src.marketplace.identity import (
    Identity,
    IdentityProvider,
    StaticIdentityProvider,
    SupabaseIdentityProvider,
)
from src.marketplace.supabase import SupabaseClient
from src.playground.controller import SessionController
from src.voice.vapi import create_voice_client

if TYPE_CHECKING:
    from src.playground.controller import TranscriptListener

logger = logging.getLogger(__name__)


@dataclass
class Backend:
    """Collaborators shared by every controller in the process."""

    catalog: AgentCatalog
    history: HistoryStore
    completion: CompletionClient
    supabase: SupabaseClient


_backend: Backend | None = None


def _create_completion(supabase: SupabaseClient) -> CompletionClient:
    if settings.completion_backend == "anthropic":
        return AnthropicCompletion()
    if settings.completion_backend != "chat_engine":
        logger.warning(
            "Unknown COMPLETION_BACKEND %r — using chat_engine", settings.completion_backend
        )
    return ChatEngineCompletion(supabase)


def get_backend() -> Backend:
    """Return the shared collaborators, creating them on first use."""
    global _backend  # noqa: PLW0603
    if _backend is None:
        supabase = SupabaseClient()
        if settings.backend == "supabase":
            catalog: AgentCatalog = SupabaseAgentCatalog(supabase)
            history: HistoryStore = SupabaseHistoryStore(supabase)
        else:
            catalog = LocalAgentCatalog()
            history = LocalHistoryStore()
        _backend = Backend(
            catalog=catalog,
            history=history,
            completion=_create_completion(supabase),
            supabase=supabase,
        )
        logger.info(
            "Backend: store=%s, completion=%s",
            settings.backend,
            settings.completion_backend,
        )
    return _backend


async def close_backend() -> None:
    """Close the shared HTTP client and drop the collaborators."""
    global _backend  # noqa: PLW0603
    if _backend is None:
        return
    backend, _backend = _backend, None
    await backend.supabase.aclose()
    logger.info("Backend closed")


def _reset() -> None:
    """Drop the shared collaborators (for testing)."""
    global _backend  # noqa: PLW0603
    _backend = None


def create_identity_provider(user_id: str | None) -> IdentityProvider:
    """Identity for a front-end user; ``None`` means guest."""
    if user_id is None:
        return StaticIdentityProvider(None)
    if settings.backend == "supabase":
        return SupabaseIdentityProvider(get_backend().supabase, settings.supabase_access_token)
    return StaticIdentityProvider(Identity(id=user_id))


def build_controller(
    user_id: str | None,
    listener: TranscriptListener | None = None,
) -> SessionController:
    """Assemble a controller with its own voice client."""
    backend = get_backend()
    return SessionController(
        identity=create_identity_provider(user_id),
        catalog=backend.catalog,
        history=backend.history,
        completion=backend.completion,
        voice=create_voice_client(),
        listener=listener,
        agent_source=default_agent_source(),
    )
