"""Repository for note storage and retrieval.

The note store is an external collaborator of the graph engine. This
implementation keeps notes in the same SQLite database as the edges and
exposes exactly what the engine consumes: lookups, title/content search,
recent notes, inline creation and deletion notifications.
"""
import logging
from contextlib import contextmanager
from typing import Callable, List, Optional

from sqlalchemy import func, or_, select

from notegraph.exceptions import (
    ErrorCode,
    NoteNotFoundError,
    SearchError,
    TransportError,
    ValidationError,
)
from notegraph.models.db_models import DBNote, get_session_factory
from notegraph.models.schema import Note, ensure_timezone_aware, generate_id, utc_now
from notegraph.storage.base import store_session
from notegraph.utils import escape_like_pattern, slugify, unique_slug

logger = logging.getLogger(__name__)

NoteDeletedCallback = Callable[[str, str], None]


def _to_note(db_note: DBNote) -> Note:
    return Note(
        id=db_note.id,
        owner_id=db_note.owner_id,
        title=db_note.title,
        slug=db_note.slug,
        content=db_note.content or "",
        created_at=ensure_timezone_aware(db_note.created_at),
        updated_at=ensure_timezone_aware(db_note.updated_at),
    )


class NoteRepository:
    """Owner-scoped note storage backed by SQLAlchemy."""

    def __init__(self, engine=None, session_factory=None):
        """Initialize the repository.

        Args:
            engine: Pre-configured SQLAlchemy engine shared with other repositories.
            session_factory: Explicit session factory; takes precedence over engine.
        """
        self.session_factory = session_factory or get_session_factory(engine)
        self._deleted_callbacks: List[NoteDeletedCallback] = []

    # ========== Notifications ==========

    def on_note_deleted(self, callback: NoteDeletedCallback) -> None:
        """Register a callback invoked as ``callback(owner_id, note_id)`` after a delete."""
        self._deleted_callbacks.append(callback)

    # ========== Reads ==========

    def get_note(self, owner_id: str, note_id: str) -> Optional[Note]:
        """Get a note by id, or None if it is missing or owned by someone else."""
        with self._session("get_note") as session:
            db_note = session.scalar(
                select(DBNote).where(
                    (DBNote.id == note_id) & (DBNote.owner_id == owner_id)
                )
            )
            return _to_note(db_note) if db_note else None

    def get_notes_by_ids(self, owner_id: str, note_ids: List[str]) -> List[Note]:
        """Batch lookup; ids that do not resolve are skipped."""
        if not note_ids:
            return []
        with self._session("get_notes_by_ids") as session:
            rows = session.scalars(
                select(DBNote).where(
                    (DBNote.owner_id == owner_id) & DBNote.id.in_(set(note_ids))
                )
            ).all()
            return [_to_note(row) for row in rows]

    def get_note_by_slug(self, owner_id: str, slug: str) -> Optional[Note]:
        with self._session("get_note_by_slug") as session:
            db_note = session.scalar(
                select(DBNote).where(
                    (DBNote.owner_id == owner_id) & (DBNote.slug == slug)
                )
            )
            return _to_note(db_note) if db_note else None

    def get_note_by_title(self, owner_id: str, title: str) -> Optional[Note]:
        """Oldest note whose title equals ``title`` ignoring case."""
        with self._session("get_note_by_title") as session:
            db_note = session.scalar(
                select(DBNote)
                .where(
                    (DBNote.owner_id == owner_id)
                    & (func.ng_casefold(DBNote.title) == title.strip().casefold())
                )
                .order_by(DBNote.created_at, DBNote.id)
                .limit(1)
            )
            return _to_note(db_note) if db_note else None

    def list_notes(self, owner_id: str) -> List[Note]:
        """All notes of one owner, most recently updated first."""
        with self._session("list_notes") as session:
            rows = session.scalars(
                select(DBNote)
                .where(DBNote.owner_id == owner_id)
                .order_by(DBNote.updated_at.desc())
            ).all()
            return [_to_note(row) for row in rows]

    def recent_notes(
        self, owner_id: str, limit: int, exclude_id: Optional[str] = None
    ) -> List[Note]:
        """Most recently created notes of one owner."""
        with self._session("recent_notes") as session:
            query = select(DBNote).where(DBNote.owner_id == owner_id)
            if exclude_id:
                query = query.where(DBNote.id != exclude_id)
            rows = session.scalars(
                query.order_by(DBNote.created_at.desc()).limit(limit)
            ).all()
            return [_to_note(row) for row in rows]

    def search_notes_by_title(
        self,
        owner_id: str,
        query: str,
        limit: int,
        exclude_id: Optional[str] = None,
    ) -> List[Note]:
        """Case-insensitive (Unicode casefold) substring match on titles."""
        pattern = f"%{escape_like_pattern(query.casefold())}%"
        with self._search_errors(query), self._session("search_notes_by_title") as session:
            stmt = select(DBNote).where(
                (DBNote.owner_id == owner_id)
                & func.ng_casefold(DBNote.title).like(pattern, escape="\\")
            )
            if exclude_id:
                stmt = stmt.where(DBNote.id != exclude_id)
            rows = session.scalars(
                stmt.order_by(DBNote.updated_at.desc()).limit(limit)
            ).all()
            return [_to_note(row) for row in rows]

    def search_notes_by_content(
        self,
        owner_id: str,
        query: str,
        limit: int,
        exclude_id: Optional[str] = None,
    ) -> List[Note]:
        """Case-insensitive substring match on content (title matches included)."""
        pattern = f"%{escape_like_pattern(query.casefold())}%"
        with self._search_errors(query), self._session("search_notes_by_content") as session:
            stmt = select(DBNote).where(
                (DBNote.owner_id == owner_id)
                & or_(
                    func.ng_casefold(DBNote.content).like(pattern, escape="\\"),
                    func.ng_casefold(DBNote.title).like(pattern, escape="\\"),
                )
            )
            if exclude_id:
                stmt = stmt.where(DBNote.id != exclude_id)
            rows = session.scalars(
                stmt.order_by(DBNote.updated_at.desc()).limit(limit)
            ).all()
            return [_to_note(row) for row in rows]

    def slug_exists(self, owner_id: str, slug: str) -> bool:
        with self._session("slug_exists") as session:
            return session.scalar(
                select(DBNote.id).where(
                    (DBNote.owner_id == owner_id) & (DBNote.slug == slug)
                )
            ) is not None

    def unique_slug(self, owner_id: str, title: str) -> str:
        """Derive a slug from title that is free for this owner."""
        return unique_slug(title, lambda slug: self.slug_exists(owner_id, slug))

    # ========== Writes ==========

    def create_note(
        self,
        owner_id: str,
        title: str,
        slug: Optional[str] = None,
        content: str = "",
    ) -> Note:
        """Create a note. The slug is derived from the title when omitted.

        Raises:
            ValidationError: If the title is empty or the slug is already taken.
        """
        if not title or not title.strip():
            raise ValidationError(
                "Title is required", field="title", code=ErrorCode.NOTE_TITLE_REQUIRED
            )
        title = title.strip()
        slug = slug or self.unique_slug(owner_id, title)
        if slug != slugify(slug):
            raise ValidationError("Slug is not normalized", field="slug", value=slug)
        if self.slug_exists(owner_id, slug):
            raise ValidationError(
                f"Slug '{slug}' is already in use",
                field="slug",
                value=slug,
                code=ErrorCode.NOTE_VALIDATION_FAILED,
            )

        now = utc_now()
        note = Note(
            id=generate_id(),
            owner_id=owner_id,
            title=title,
            slug=slug,
            content=content,
            created_at=now,
            updated_at=now,
        )
        with self._session("create_note") as session:
            session.add(
                DBNote(
                    id=note.id,
                    owner_id=owner_id,
                    title=note.title,
                    slug=note.slug,
                    content=note.content,
                    created_at=now,
                    updated_at=now,
                )
            )
            session.commit()
        logger.debug(f"Created note {note.id} ('{note.title}') for owner {owner_id}")
        return note

    def rename_note(self, owner_id: str, note_id: str, title: str) -> Note:
        """Change a note's title and re-derive its slug.

        Raises:
            NoteNotFoundError: If the note does not exist for this owner.
        """
        if not title or not title.strip():
            raise ValidationError(
                "Title is required", field="title", code=ErrorCode.NOTE_TITLE_REQUIRED
            )
        title = title.strip()
        current = self.get_note(owner_id, note_id)
        if current is None:
            raise NoteNotFoundError(note_id)
        new_slug = slugify(title) or current.slug
        if new_slug != current.slug:
            new_slug = self.unique_slug(owner_id, title)

        with self._session("rename_note") as session:
            db_note = session.get(DBNote, note_id)
            db_note.title = title
            db_note.slug = new_slug
            db_note.updated_at = utc_now()
            session.commit()
            return _to_note(db_note)

    def delete_note(self, owner_id: str, note_id: str) -> None:
        """Delete a note and notify subscribers.

        Raises:
            NoteNotFoundError: If the note does not exist for this owner.
        """
        with self._session("delete_note") as session:
            db_note = session.scalar(
                select(DBNote).where(
                    (DBNote.id == note_id) & (DBNote.owner_id == owner_id)
                )
            )
            if db_note is None:
                raise NoteNotFoundError(note_id)
            session.delete(db_note)
            session.commit()

        logger.info(f"Deleted note {note_id} for owner {owner_id}")
        for callback in list(self._deleted_callbacks):
            callback(owner_id, note_id)

    # ========== Internals ==========

    def _session(self, operation: str):
        return store_session(self.session_factory, operation)

    @contextmanager
    def _search_errors(self, query: str):
        try:
            yield
        except TransportError as e:
            raise SearchError(f"Note search failed: {e.message}", query=query) from e
