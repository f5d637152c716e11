"""Chat history stores — blind appends, ordered reads, one bulk delete.

Reads raise :class:`CollaboratorUnavailable` and skip rows that are not
valid messages; writes raise :class:`PersistenceLag` so callers can tell
"nothing to show" apart from "the store is behind the transcript".
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from src.db import connect
from src.errors import CollaboratorUnavailable, PersistenceLag
from src.marketplace.models import Message

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from pathlib import Path

    from src.marketplace.identity import Identity
    from src.marketplace.supabase import SupabaseClient

logger = logging.getLogger(__name__)


@runtime_checkable
class HistoryStore(Protocol):
    """Protocol every history backend must satisfy."""

    async def append_message(self, identity: Identity, message: Message) -> None:
        ...

    async def query_messages(
        self, identity: Identity, agent_id: str | None = None
    ) -> list[Message]:
        """Messages owned by *identity*, ascending by creation time."""
        ...

    async def delete_all_messages(self, identity: Identity) -> int:
        """Delete every message owned by *identity*. Returns the count."""
        ...


# ---------------------------------------------------------------------------
# Local (libSQL)
# ---------------------------------------------------------------------------

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS chat_history (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        agent_id TEXT,
        role TEXT NOT NULL,
        content TEXT,
        image TEXT,
        source TEXT NOT NULL DEFAULT 'text',
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_chat_history_user ON chat_history (user_id, created_at)",
)

_COLUMNS = "id, user_id, agent_id, role, content, image, source, created_at"


def _message_from_row(row: tuple) -> Message:
    return Message(
        id=row[0],
        agent_id=row[2],
        role=row[3],
        content=row[4],
        image=row[5],
        source=row[6] or "text",
        created_at=row[7],
    )


def _decode(rows: Iterable[Any], build: Callable[[Any], Message]) -> list[Message]:
    """Map stored rows to Messages, skipping rows that do not form one."""
    messages = []
    for row in rows:
        try:
            messages.append(build(row))
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            logger.warning("Skipping unreadable chat_history row: %s", exc)
    return messages


class LocalHistoryStore:
    """History persisted in libSQL.

    Pass an explicit *db_path* for test isolation (e.g. ``tmp_path / "test.db"``).
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path
        self._initialised = False

    def _connect(self):
        schema = () if self._initialised else _SCHEMA
        self._initialised = True
        return connect(schema, local_path_override=self._db_path)

    async def append_message(self, identity: Identity, message: Message) -> None:
        try:
            async with self._connect() as db:
                await db.execute(
                    f"INSERT INTO chat_history ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        message.id,
                        identity.id,
                        message.agent_id,
                        message.role,
                        message.content,
                        message.image,
                        message.source,
                        message.created_at,
                    ),
                )
                await db.commit()
        except Exception as exc:
            self._initialised = False
            raise PersistenceLag(f"append_message: {exc}") from exc

    async def query_messages(
        self, identity: Identity, agent_id: str | None = None
    ) -> list[Message]:
        sql = f"SELECT {_COLUMNS} FROM chat_history WHERE user_id = ?"
        params: tuple = (identity.id,)
        if agent_id is not None:
            sql += " AND agent_id = ?"
            params = (identity.id, agent_id)
        sql += " ORDER BY created_at, rowid"

        try:
            async with self._connect() as db:
                cursor = await db.execute(sql, params)
                rows = await cursor.fetchall()
        except Exception as exc:
            self._initialised = False
            raise CollaboratorUnavailable(f"query_messages: {exc}") from exc
        return _decode(rows, _message_from_row)

    async def delete_all_messages(self, identity: Identity) -> int:
        try:
            async with self._connect() as db:
                cursor = await db.execute(
                    "DELETE FROM chat_history WHERE user_id = ?", (identity.id,)
                )
                await db.commit()
                deleted = cursor.rowcount
        except Exception as exc:
            self._initialised = False
            raise CollaboratorUnavailable(f"delete_all_messages: {exc}") from exc
        logger.info("Deleted %d messages for %s", deleted, identity.id)
        return deleted


# ---------------------------------------------------------------------------
# Hosted (Supabase)
# ---------------------------------------------------------------------------


class SupabaseHistoryStore:
    """History backed by the hosted ``chat_history`` table."""

    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    async def append_message(self, identity: Identity, message: Message) -> None:
        try:
            await self._client.insert("chat_history", [message.to_record(identity.id)])
        except CollaboratorUnavailable as exc:
            raise PersistenceLag(f"append_message: {exc}") from exc

    async def query_messages(
        self, identity: Identity, agent_id: str | None = None
    ) -> list[Message]:
        params = {"user_id": f"eq.{identity.id}", "order": "created_at.asc"}
        if agent_id is not None:
            params["model_id"] = f"eq.{agent_id}"
        rows = await self._client.select("chat_history", params)
        return _decode(rows, Message.from_record)

    async def delete_all_messages(self, identity: Identity) -> int:
        deleted = await self._client.delete("chat_history", {"user_id": f"eq.{identity.id}"})
        logger.info("Deleted %d messages for %s", deleted, identity.id)
        return deleted
