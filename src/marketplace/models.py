"""Agent and Message data models."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_SYSTEM = "system"
ROLES = (ROLE_USER, ROLE_ASSISTANT, ROLE_SYSTEM)

SOURCE_TEXT = "text"
SOURCE_VOICE = "voice"

OFFLINE_AGENT_ID = "offline"


def _now() -> str:
    return datetime.now(UTC).isoformat()


def make_message_id() -> str:
    """Generate a new message ID."""
    return uuid.uuid4().hex


@dataclass
class Agent:
    """A published persona users can chat or talk with.

    Attributes:
        id: Catalog identifier.
        name: Display name.
        description: Marketplace blurb.
        category: Free-form grouping label.
        persona: System instruction sent with every completion.
        provider: Engine label shown to users (e.g. ``"Google"``).
        input_price_1k: Price per 1000 input units.
        output_price_1k: Price per 1000 output units.
        active: Only active agents are listed.
        verified: Set by moderation; new agents start unverified.
        private: Publisher asked to keep the agent out of public listings.
        owner_id: Identity that published the agent.
    """

    id: str
    name: str
    description: str = ""
    category: str = ""
    persona: str = ""
    provider: str = ""
    input_price_1k: float = 0.0
    output_price_1k: float = 0.0
    active: bool = True
    verified: bool = False
    private: bool = False
    owner_id: str | None = None

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Agent:
        """Build from an ``ai_models`` row as returned by the hosted REST API."""
        return cls(
            id=str(record["id"]),
            name=record.get("name") or "",
            description=record.get("description") or "",
            category=record.get("category") or "",
            persona=record.get("system_prompt") or "",
            provider=record.get("provider") or "",
            input_price_1k=float(record.get("input_price_1k") or 0.0),
            output_price_1k=float(record.get("output_price_1k") or 0.0),
            active=bool(record.get("is_active", True)),
            verified=bool(record.get("is_verified", False)),
            private=bool(record.get("is_private", False)),
            owner_id=record.get("owner_id"),
        )

    def to_record(self) -> dict[str, Any]:
        """Serialize to an ``ai_models`` row."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "system_prompt": self.persona,
            "provider": self.provider,
            "input_price_1k": self.input_price_1k,
            "output_price_1k": self.output_price_1k,
            "is_active": self.active,
            "is_verified": self.verified,
            "is_private": self.private,
            "owner_id": self.owner_id,
        }


def offline_agent() -> Agent:
    """The synthetic agent shown when the catalog cannot be reached."""
    return Agent(
        id=OFFLINE_AGENT_ID,
        name="Offline Mode",
        description="The marketplace is unreachable. Chat may not respond.",
        provider="offline",
    )


@dataclass(frozen=True)
class Message:
    """A single transcript entry. Immutable once created."""

    role: str
    agent_id: str | None
    content: str | None = None
    image: str | None = None  # base64 data URL
    source: str = SOURCE_TEXT
    created_at: str = field(default_factory=_now)
    id: str = field(default_factory=make_message_id)

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            msg = f"Unknown message role: {self.role!r}"
            raise ValueError(msg)

    @property
    def is_voice(self) -> bool:
        return self.source == SOURCE_VOICE

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Message:
        """Build from a ``chat_history`` row as returned by the hosted REST API."""
        return cls(
            id=str(record.get("id") or make_message_id()),
            role=record["role"],
            agent_id=record.get("model_id"),
            content=record.get("content"),
            image=record.get("image"),
            source=record.get("source") or SOURCE_TEXT,
            created_at=record.get("created_at") or _now(),
        )

    def to_record(self, user_id: str) -> dict[str, Any]:
        """Serialize to a ``chat_history`` row owned by *user_id*."""
        return {
            "id": self.id,
            "user_id": user_id,
            "model_id": self.agent_id,
            "role": self.role,
            "content": self.content,
            "image": self.image,
            "source": self.source,
            "created_at": self.created_at,
        }
