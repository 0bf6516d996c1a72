"""Storage layer for the notegraph engine."""

from notegraph.storage.gateway import AsyncLinkStore, AsyncNoteStore
from notegraph.storage.link_repository import LinkRepository
from notegraph.storage.note_repository import NoteRepository

__all__ = [
    "AsyncLinkStore",
    "AsyncNoteStore",
    "LinkRepository",
    "NoteRepository",
]
