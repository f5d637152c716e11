"""Identity providers — who is talking, or ``None`` for a guest."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from src.errors import CollaboratorUnavailable

if TYPE_CHECKING:
    from src.marketplace.supabase import SupabaseClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """An authenticated user."""

    id: str
    email: str = ""


@runtime_checkable
class IdentityProvider(Protocol):
    """Protocol for resolving the current user."""

    async def get_current_user(self) -> Identity | None:
        """Return the authenticated identity, or None in guest mode."""
        ...


class StaticIdentityProvider:
    """Always returns the same identity (or always guest when given None)."""

    def __init__(self, identity: Identity | None) -> None:
        self._identity = identity

    async def get_current_user(self) -> Identity | None:
        return self._identity


class SupabaseIdentityProvider:
    """Resolves the user behind a Supabase access token.

    The first successful lookup is cached for the provider's lifetime.
    Lookup failures fall back to guest mode so reads degrade instead of
    failing.
    """

    def __init__(self, client: SupabaseClient, access_token: str) -> None:
        self._client = client
        self._access_token = access_token
        self._cached: Identity | None = None

    async def get_current_user(self) -> Identity | None:
        if self._cached is not None:
            return self._cached
        if not self._access_token:
            return None

        try:
            user = await self._client.get_user(self._access_token)
        except CollaboratorUnavailable:
            logger.warning("Could not resolve Supabase user — continuing as guest")
            return None

        if not user or not user.get("id"):
            return None
        self._cached = Identity(id=str(user["id"]), email=user.get("email") or "")
        return self._cached
