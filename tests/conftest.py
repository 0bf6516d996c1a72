"""Common test fixtures for the notegraph engine."""

import pytest

from notegraph.config import config
from notegraph.models.db_models import init_db
from notegraph.services.graph_service import GraphService
from notegraph.services.session import SessionContext
from notegraph.storage import AsyncLinkStore, AsyncNoteStore, LinkRepository, NoteRepository
from tests.fakes import RecordingNotifier

OWNER = "owner-1"
OTHER_OWNER = "owner-2"


@pytest.fixture(params=["asyncio"])
def anyio_backend(request):
    """Restrict anyio tests to asyncio only (trio is not installed)."""
    return request.param


@pytest.fixture
def test_config(tmp_path, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    monkeypatch.setattr(config, "database_path", tmp_path / "test_notegraph.db")
    monkeypatch.setattr(config, "in_memory_db", False)
    monkeypatch.setattr(config, "default_owner_id", OWNER)
    monkeypatch.setattr(config, "propagate_renames", False)
    yield config


@pytest.fixture
def engine(test_config):
    """File-backed SQLite engine with the schema created."""
    engine = init_db(test_config.get_db_url())
    yield engine
    engine.dispose()


@pytest.fixture
def note_repository(engine):
    return NoteRepository(engine=engine)


@pytest.fixture
def link_repository(engine):
    return LinkRepository(engine=engine)


@pytest.fixture
def make_note(note_repository):
    """Factory creating notes for the default owner."""

    def _make(title, content="", owner_id=OWNER):
        return note_repository.create_note(owner_id, title, content=content)

    return _make


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def graph_service(note_repository, link_repository, notifier):
    return GraphService(
        AsyncNoteStore(note_repository),
        AsyncLinkStore(link_repository),
        session=SessionContext(OWNER),
        notifier=notifier,
    )
