"""Agent catalog — active agents, the publish flow, and per-user libraries."""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from src.config import settings
from src.db import connect
from src.errors import CollaboratorUnavailable, PersistenceLag
from src.marketplace.models import Agent

if TYPE_CHECKING:
    from pathlib import Path

    from src.marketplace.identity import Identity
    from src.marketplace.supabase import SupabaseClient

logger = logging.getLogger(__name__)


@runtime_checkable
class AgentCatalog(Protocol):
    """Protocol every catalog backend must satisfy."""

    async def query_active_agents(self) -> list[Agent]:
        """All agents with the active flag set, oldest first."""
        ...

    async def query_library(self, identity: Identity) -> list[Agent]:
        """Active agents the user has added to their library."""
        ...

    async def add_to_library(self, identity: Identity, agent_id: str) -> None:
        ...

    async def publish_agent(self, agent: Agent) -> Agent:
        ...


def make_agent_id() -> str:
    """Generate a new agent ID."""
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Local (libSQL)
# ---------------------------------------------------------------------------

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS agents (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        category TEXT NOT NULL DEFAULT '',
        persona TEXT NOT NULL DEFAULT '',
        provider TEXT NOT NULL DEFAULT '',
        input_price_1k REAL NOT NULL DEFAULT 0,
        output_price_1k REAL NOT NULL DEFAULT 0,
        active INTEGER NOT NULL DEFAULT 1,
        verified INTEGER NOT NULL DEFAULT 0,
        private INTEGER NOT NULL DEFAULT 0,
        owner_id TEXT,
        created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now'))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_agents (
        user_id TEXT NOT NULL,
        agent_id TEXT NOT NULL,
        PRIMARY KEY (user_id, agent_id)
    )
    """,
)

_AGENT_COLUMNS = (
    "id, name, description, category, persona, provider, "
    "input_price_1k, output_price_1k, active, verified, private, owner_id"
)


def _agent_from_row(row: tuple) -> Agent:
    return Agent(
        id=row[0],
        name=row[1],
        description=row[2] or "",
        category=row[3] or "",
        persona=row[4] or "",
        provider=row[5] or "",
        input_price_1k=float(row[6] or 0.0),
        output_price_1k=float(row[7] or 0.0),
        active=bool(row[8]),
        verified=bool(row[9]),
        private=bool(row[10]),
        owner_id=row[11],
    )


class LocalAgentCatalog:
    """Agent catalog persisted in libSQL.

    Pass an explicit *db_path* for test isolation (e.g. ``tmp_path / "test.db"``).
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path
        self._initialised = False

    def _connect(self):
        schema = () if self._initialised else _SCHEMA
        self._initialised = True
        return connect(schema, local_path_override=self._db_path)

    async def query_active_agents(self) -> list[Agent]:
        try:
            async with self._connect() as db:
                cursor = await db.execute(
                    f"SELECT {_AGENT_COLUMNS} FROM agents WHERE active = 1 "
                    "ORDER BY created_at, rowid"
                )
                rows = await cursor.fetchall()
        except Exception as exc:
            self._initialised = False
            raise CollaboratorUnavailable(f"agent catalog: {exc}") from exc
        return [_agent_from_row(row) for row in rows]

    async def query_library(self, identity: Identity) -> list[Agent]:
        columns = ", ".join(f"a.{c.strip()}" for c in _AGENT_COLUMNS.split(","))
        try:
            async with self._connect() as db:
                cursor = await db.execute(
                    f"SELECT {columns} FROM agents a "
                    "JOIN user_agents u ON u.agent_id = a.id "
                    "WHERE u.user_id = ? AND a.active = 1 "
                    "ORDER BY a.created_at, a.rowid",
                    (identity.id,),
                )
                rows = await cursor.fetchall()
        except Exception as exc:
            self._initialised = False
            raise CollaboratorUnavailable(f"agent library: {exc}") from exc
        return [_agent_from_row(row) for row in rows]

    async def add_to_library(self, identity: Identity, agent_id: str) -> None:
        try:
            async with self._connect() as db:
                await db.execute(
                    "INSERT OR IGNORE INTO user_agents (user_id, agent_id) VALUES (?, ?)",
                    (identity.id, agent_id),
                )
                await db.commit()
        except Exception as exc:
            self._initialised = False
            raise PersistenceLag(f"add_to_library: {exc}") from exc
        logger.info("Added agent %s to library of %s", agent_id, identity.id)

    async def publish_agent(self, agent: Agent) -> Agent:
        """Insert *agent*. Returns the same object."""
        try:
            async with self._connect() as db:
                await db.execute(
                    f"INSERT INTO agents ({_AGENT_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        agent.id,
                        agent.name,
                        agent.description,
                        agent.category,
                        agent.persona,
                        agent.provider,
                        agent.input_price_1k,
                        agent.output_price_1k,
                        int(agent.active),
                        int(agent.verified),
                        int(agent.private),
                        agent.owner_id,
                    ),
                )
                await db.commit()
        except Exception as exc:
            self._initialised = False
            raise PersistenceLag(f"publish_agent: {exc}") from exc
        logger.info("Published agent: %s (%s)", agent.name, agent.id)
        return agent


# ---------------------------------------------------------------------------
# Hosted (Supabase)
# ---------------------------------------------------------------------------


class SupabaseAgentCatalog:
    """Agent catalog backed by the hosted ``ai_models`` / ``user_models`` tables."""

    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    async def query_active_agents(self) -> list[Agent]:
        rows = await self._client.select(
            "ai_models",
            {"is_active": "eq.true", "order": "created_at.asc"},
        )
        return [Agent.from_record(row) for row in rows]

    async def query_library(self, identity: Identity) -> list[Agent]:
        rows = await self._client.select(
            "user_models",
            {"select": "ai_models(*)", "user_id": f"eq.{identity.id}"},
        )
        agents = []
        for row in rows:
            record = row.get("ai_models")
            if record and record.get("is_active", True):
                agents.append(Agent.from_record(record))
        return agents

    async def add_to_library(self, identity: Identity, agent_id: str) -> None:
        try:
            await self._client.insert(
                "user_models", [{"user_id": identity.id, "model_id": agent_id}]
            )
        except CollaboratorUnavailable as exc:
            raise PersistenceLag(f"add_to_library: {exc}") from exc

    async def publish_agent(self, agent: Agent) -> Agent:
        try:
            await self._client.insert("ai_models", [agent.to_record()])
        except CollaboratorUnavailable as exc:
            raise PersistenceLag(f"publish_agent: {exc}") from exc
        logger.info("Published agent: %s (%s)", agent.name, agent.id)
        return agent


def default_agent_source() -> str:
    """Where the playground lists agents from: ``"catalog"`` or ``"library"``."""
    source = settings.agent_source.strip().lower()
    if source not in ("catalog", "library"):
        logger.warning("Unknown AGENT_SOURCE %r — using catalog", settings.agent_source)
        return "catalog"
    return source
