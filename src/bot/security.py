"""User allowlist gate.

Allowlisted users get a persisted history; everyone else is either rejected
or, with ``ALLOW_GUESTS``, chats as a guest with a transient transcript.
"""

import logging
from dataclasses import dataclass

from telegram import Update

from src.config import settings

logger = logging.getLogger(__name__)

_allowed: set[int] | None = None


@dataclass(frozen=True)
class Access:
    """Who is talking. ``user_id`` is None for guests."""

    user_id: str | None

    @property
    def is_guest(self) -> bool:
        return self.user_id is None


def _get_allowed() -> set[int]:
    """Lazily load and cache the allowed user IDs."""
    global _allowed  # noqa: PLW0603
    if _allowed is None:
        _allowed = settings.get_allowed_user_ids()
        logger.info("Allowed user IDs: %s", _allowed)
    return _allowed


def check_access(update: Update) -> Access | None:
    """Return the caller's access level, or None to silently reject."""
    user = update.effective_user
    if user is None:
        return None

    if user.id in _get_allowed():
        return Access(user_id=str(user.id))

    if settings.allow_guests:
        return Access(user_id=None)

    logger.debug("Rejected message from user %s", user.id)
    return None
