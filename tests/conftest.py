"""Shared test fixtures."""

import pytest

from src.marketplace.catalog import LocalAgentCatalog
from src.marketplace.history import LocalHistoryStore


@pytest.fixture(autouse=False)
def _no_turso(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure tests use local file, not remote Turso."""
    monkeypatch.setattr("src.config.settings.turso_database_url", "")


@pytest.fixture
def catalog(tmp_path, _no_turso) -> LocalAgentCatalog:
    """A LocalAgentCatalog in a temporary database."""
    return LocalAgentCatalog(db_path=tmp_path / "test.db")


@pytest.fixture
def history(tmp_path, _no_turso) -> LocalHistoryStore:
    """A LocalHistoryStore sharing the catalog's temporary database."""
    return LocalHistoryStore(db_path=tmp_path / "test.db")


@pytest.fixture(autouse=True)
def _reset_globals():
    """Clear module-level registries between tests."""
    from src.bot import confirmations, controllers, security
    from src.playground import wiring
    from src.voice import vapi

    yield
    vapi._active_calls.clear()
    confirmations._pending.clear()
    controllers._controllers.clear()
    security._allowed = None
    wiring._reset()
