"""Awaitable facades over the synchronous repositories.

The optimistic coordinator and the reference resolver run on an event loop
and treat the durable store as remote. These gateways push each blocking
SQLAlchemy call onto a worker thread with ``anyio.to_thread.run_sync`` so
the loop keeps serving input while a write is in flight.
"""
import functools
import logging
from typing import Any, Callable, List, Optional, Sequence, TypeVar

from anyio import to_thread

from notegraph.models.schema import BatchResult, EdgeSpec, LinkEdge, Note
from notegraph.storage.link_repository import LinkRepository
from notegraph.storage.note_repository import NoteRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _run(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    return await to_thread.run_sync(functools.partial(func, *args, **kwargs))


class AsyncLinkStore:
    """Async link persistence bound to a LinkRepository."""

    def __init__(self, repository: LinkRepository):
        self.repository = repository

    async def create_edge(self, owner_id: str, spec: EdgeSpec) -> LinkEdge:
        return await _run(self.repository.create_from_spec, owner_id, spec)

    async def delete_edge(self, owner_id: str, edge_id: str) -> None:
        await _run(self.repository.delete_edge, owner_id, edge_id)

    async def batch_create_edges(
        self, owner_id: str, specs: Sequence[EdgeSpec]
    ) -> BatchResult:
        return await _run(self.repository.batch_create_edges, owner_id, list(specs))

    async def get_edge(self, owner_id: str, edge_id: str) -> Optional[LinkEdge]:
        return await _run(self.repository.get_edge, owner_id, edge_id)

    async def list_edges_for_owner(self, owner_id: str) -> List[LinkEdge]:
        return await _run(self.repository.list_edges_for_owner, owner_id)

    async def list_edges_by_source(self, owner_id: str, note_id: str) -> List[LinkEdge]:
        return await _run(self.repository.list_edges_by_source, owner_id, note_id)

    async def list_edges_by_target(self, owner_id: str, note_id: str) -> List[LinkEdge]:
        return await _run(self.repository.list_edges_by_target, owner_id, note_id)

    async def prune_dangling_edges(self, owner_id: str) -> int:
        return await _run(self.repository.prune_dangling_edges, owner_id)

    async def repropagate_canonical(
        self, owner_id: str, target_note_id: str, title: str, slug: str
    ) -> int:
        return await _run(
            self.repository.repropagate_canonical, owner_id, target_note_id, title, slug
        )


class AsyncNoteStore:
    """Async note store collaborator bound to a NoteRepository."""

    def __init__(self, repository: NoteRepository):
        self.repository = repository

    def on_note_deleted(self, callback: Callable[[str, str], None]) -> None:
        self.repository.on_note_deleted(callback)

    async def get_note(self, owner_id: str, note_id: str) -> Optional[Note]:
        return await _run(self.repository.get_note, owner_id, note_id)

    async def get_notes_by_ids(self, owner_id: str, note_ids: List[str]) -> List[Note]:
        return await _run(self.repository.get_notes_by_ids, owner_id, note_ids)

    async def get_note_by_slug(self, owner_id: str, slug: str) -> Optional[Note]:
        return await _run(self.repository.get_note_by_slug, owner_id, slug)

    async def get_note_by_title(self, owner_id: str, title: str) -> Optional[Note]:
        return await _run(self.repository.get_note_by_title, owner_id, title)

    async def list_notes(self, owner_id: str) -> List[Note]:
        return await _run(self.repository.list_notes, owner_id)

    async def recent_notes(
        self, owner_id: str, limit: int, exclude_id: Optional[str] = None
    ) -> List[Note]:
        return await _run(self.repository.recent_notes, owner_id, limit, exclude_id)

    async def search_notes_by_title(
        self, owner_id: str, query: str, limit: int, exclude_id: Optional[str] = None
    ) -> List[Note]:
        return await _run(
            self.repository.search_notes_by_title, owner_id, query, limit, exclude_id
        )

    async def search_notes_by_content(
        self, owner_id: str, query: str, limit: int, exclude_id: Optional[str] = None
    ) -> List[Note]:
        return await _run(
            self.repository.search_notes_by_content, owner_id, query, limit, exclude_id
        )

    async def create_note(
        self, owner_id: str, title: str, slug: Optional[str] = None, content: str = ""
    ) -> Note:
        return await _run(self.repository.create_note, owner_id, title, slug, content)

    async def rename_note(self, owner_id: str, note_id: str, title: str) -> Note:
        return await _run(self.repository.rename_note, owner_id, note_id, title)

    async def delete_note(self, owner_id: str, note_id: str) -> None:
        await _run(self.repository.delete_note, owner_id, note_id)

    async def unique_slug(self, owner_id: str, title: str) -> str:
        return await _run(self.repository.unique_slug, owner_id, title)
