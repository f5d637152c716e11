"""Tests for the agent catalog backends."""

from unittest.mock import AsyncMock

import pytest

from src.config import settings
from src.errors import CollaboratorUnavailable, PersistenceLag
from src.marketplace.catalog import (
    AgentCatalog,
    LocalAgentCatalog,
    SupabaseAgentCatalog,
    default_agent_source,
    make_agent_id,
)
from src.marketplace.identity import Identity
from src.marketplace.models import Agent

USER = Identity(id="u1", email="u1@example.com")


# -- Local --------------------------------------------------------------------


class TestLocalAgentCatalog:
    def test_satisfies_protocol(self, catalog):
        assert isinstance(catalog, AgentCatalog)

    async def test_empty_catalog(self, catalog):
        assert await catalog.query_active_agents() == []

    async def test_publish_and_query_in_creation_order(self, catalog):
        await catalog.publish_agent(Agent(id="a1", name="First", persona="p1"))
        await catalog.publish_agent(Agent(id="a2", name="Second", provider="Google"))

        agents = await catalog.query_active_agents()
        assert [a.id for a in agents] == ["a1", "a2"]
        assert agents[0].persona == "p1"
        assert agents[1].provider == "Google"

    async def test_inactive_agents_hidden(self, catalog):
        await catalog.publish_agent(Agent(id="a1", name="Live"))
        await catalog.publish_agent(Agent(id="a2", name="Retired", active=False))

        agents = await catalog.query_active_agents()
        assert [a.id for a in agents] == ["a1"]

    async def test_published_agents_start_unverified(self, catalog):
        await catalog.publish_agent(Agent(id="a1", name="New"))
        (agent,) = await catalog.query_active_agents()
        assert agent.verified is False

    async def test_private_flag_persisted(self, catalog):
        await catalog.publish_agent(Agent(id="a1", name="Mine", private=True))
        (agent,) = await catalog.query_active_agents()
        assert agent.private is True

    async def test_duplicate_publish_is_persistence_lag(self, catalog):
        await catalog.publish_agent(Agent(id="a1", name="One"))
        with pytest.raises(PersistenceLag):
            await catalog.publish_agent(Agent(id="a1", name="Again"))

    async def test_library(self, catalog):
        await catalog.publish_agent(Agent(id="a1", name="One"))
        await catalog.publish_agent(Agent(id="a2", name="Two"))

        await catalog.add_to_library(USER, "a2")
        await catalog.add_to_library(USER, "a2")  # idempotent

        library = await catalog.query_library(USER)
        assert [a.id for a in library] == ["a2"]
        assert await catalog.query_library(Identity(id="someone-else")) == []

    async def test_unreadable_database_is_unavailable(self, tmp_path, _no_turso):
        # A directory where the database file should be cannot be opened.
        bad = tmp_path / "dir.db"
        bad.mkdir()
        catalog = LocalAgentCatalog(db_path=bad)
        with pytest.raises(CollaboratorUnavailable):
            await catalog.query_active_agents()


def test_make_agent_id_unique() -> None:
    assert len({make_agent_id() for _ in range(20)}) == 20


# -- Hosted -------------------------------------------------------------------


class TestSupabaseAgentCatalog:
    async def test_queries_active_ordered(self):
        client = AsyncMock()
        client.select.return_value = [{"id": "a1", "name": "Tutor", "system_prompt": "p"}]

        agents = await SupabaseAgentCatalog(client).query_active_agents()

        client.select.assert_awaited_once_with(
            "ai_models", {"is_active": "eq.true", "order": "created_at.asc"}
        )
        assert agents[0].persona == "p"

    async def test_unavailable_propagates(self):
        client = AsyncMock()
        client.select.side_effect = CollaboratorUnavailable("down")
        with pytest.raises(CollaboratorUnavailable):
            await SupabaseAgentCatalog(client).query_active_agents()

    async def test_library_skips_inactive_and_missing(self):
        client = AsyncMock()
        client.select.return_value = [
            {"ai_models": {"id": "a1", "name": "One", "is_active": True}},
            {"ai_models": {"id": "a2", "name": "Two", "is_active": False}},
            {"ai_models": None},
        ]
        library = await SupabaseAgentCatalog(client).query_library(USER)
        assert [a.id for a in library] == ["a1"]

    async def test_add_to_library_failure_is_lag(self):
        client = AsyncMock()
        client.insert.side_effect = CollaboratorUnavailable("down")
        with pytest.raises(PersistenceLag):
            await SupabaseAgentCatalog(client).add_to_library(USER, "a1")

    async def test_publish_inserts_record(self):
        client = AsyncMock()
        agent = Agent(id="a1", name="Tutor", persona="Be kind.")
        await SupabaseAgentCatalog(client).publish_agent(agent)
        table, rows = client.insert.call_args.args
        assert table == "ai_models"
        assert rows[0]["system_prompt"] == "Be kind."


# -- Source -------------------------------------------------------------------


class TestDefaultAgentSource:
    def test_catalog(self, monkeypatch):
        monkeypatch.setattr(settings, "agent_source", "catalog")
        assert default_agent_source() == "catalog"

    def test_library_case_insensitive(self, monkeypatch):
        monkeypatch.setattr(settings, "agent_source", " Library ")
        assert default_agent_source() == "library"

    def test_unknown_falls_back(self, monkeypatch):
        monkeypatch.setattr(settings, "agent_source", "favourites")
        assert default_agent_source() == "catalog"
