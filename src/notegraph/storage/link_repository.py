"""Repository for link edge storage and retrieval."""
import logging
from typing import List, Optional, Sequence

from sqlalchemy import delete, select, update

from notegraph.exceptions import (
    EdgeNotFoundError,
    NoteGraphError,
    NoteNotFoundError,
)
from notegraph.models.db_models import DBLinkEdge, DBNote, get_session_factory
from notegraph.models.schema import (
    BatchItemResult,
    BatchResult,
    EdgeSpec,
    LinkEdge,
    ensure_timezone_aware,
    generate_id,
    utc_now,
    validate_edge_endpoints,
)
from notegraph.storage.base import store_session

logger = logging.getLogger(__name__)


def _to_edge(db_edge: DBLinkEdge) -> LinkEdge:
    return LinkEdge(
        id=db_edge.id,
        owner_id=db_edge.owner_id,
        source_note_id=db_edge.source_note_id,
        target_note_id=db_edge.target_note_id,
        anchor_text=db_edge.anchor_text,
        canonical_title=db_edge.canonical_title,
        canonical_slug=db_edge.canonical_slug,
        created_at=ensure_timezone_aware(db_edge.created_at),
        updated_at=ensure_timezone_aware(db_edge.updated_at),
    )


class LinkRepository:
    """Durable, owner-scoped CRUD over directed note links.

    Every query is bounded by ``owner_id``; edges never cross owners.
    Deletes are not idempotent here: deleting a missing edge raises.
    """

    def __init__(self, engine=None, session_factory=None):
        """Initialize the link repository.

        Args:
            engine: Pre-configured SQLAlchemy engine shared with other repositories.
            session_factory: Explicit session factory; takes precedence over engine.
        """
        self.session_factory = session_factory or get_session_factory(engine)

    def create_edge(
        self,
        owner_id: str,
        source_note_id: str,
        target_note_id: str,
        anchor_text: Optional[str],
        canonical_title: str,
        canonical_slug: str,
    ) -> LinkEdge:
        """Create a new edge.

        Raises:
            ValidationError: If source and target are the same note.
            NoteNotFoundError: If either note does not resolve for this owner.
        """
        validate_edge_endpoints(source_note_id, target_note_id)

        with store_session(self.session_factory, "create_edge") as session:
            found = set(
                session.scalars(
                    select(DBNote.id).where(
                        (DBNote.owner_id == owner_id)
                        & DBNote.id.in_([source_note_id, target_note_id])
                    )
                ).all()
            )
            if source_note_id not in found:
                raise NoteNotFoundError(
                    source_note_id, f"Source note with ID '{source_note_id}' not found"
                )
            if target_note_id not in found:
                raise NoteNotFoundError(
                    target_note_id, f"Target note with ID '{target_note_id}' not found"
                )

            now = utc_now()
            db_edge = DBLinkEdge(
                id=generate_id(),
                owner_id=owner_id,
                source_note_id=source_note_id,
                target_note_id=target_note_id,
                anchor_text=anchor_text,
                canonical_title=canonical_title,
                canonical_slug=canonical_slug,
                created_at=now,
                updated_at=now,
            )
            session.add(db_edge)
            session.commit()
            edge = _to_edge(db_edge)

        logger.debug(f"Created link {edge.id}: {source_note_id} -> {target_note_id}")
        return edge

    def create_from_spec(self, owner_id: str, spec: EdgeSpec) -> LinkEdge:
        return self.create_edge(
            owner_id,
            spec.source_note_id,
            spec.target_note_id,
            spec.anchor_text,
            spec.canonical_title,
            spec.canonical_slug,
        )

    def batch_create_edges(self, owner_id: str, specs: Sequence[EdgeSpec]) -> BatchResult:
        """Create several edges, each in its own transaction.

        Not all-or-nothing: a bad reference fails only its own item. The
        result lists one outcome per spec, in request order.
        """
        items: List[BatchItemResult] = []
        for index, spec in enumerate(specs):
            try:
                edge = self.create_from_spec(owner_id, spec)
                items.append(BatchItemResult(index=index, spec=spec, edge=edge))
            except NoteGraphError as e:
                logger.warning(f"Batch item {index} failed: {e}")
                items.append(
                    BatchItemResult(
                        index=index, spec=spec, error=e.message, error_code=e.code.name
                    )
                )
        result = BatchResult(items=items)
        logger.info(
            f"Batch created {len(result.committed)}/{len(items)} links "
            f"for owner {owner_id}"
        )
        return result

    def get_edge(self, owner_id: str, edge_id: str) -> Optional[LinkEdge]:
        with store_session(self.session_factory, "get_edge") as session:
            db_edge = session.scalar(
                select(DBLinkEdge).where(
                    (DBLinkEdge.id == edge_id) & (DBLinkEdge.owner_id == owner_id)
                )
            )
            return _to_edge(db_edge) if db_edge else None

    def delete_edge(self, owner_id: str, edge_id: str) -> None:
        """Delete an edge.

        Raises:
            EdgeNotFoundError: If the edge is absent or owned by someone else,
                including when it was already deleted.
        """
        with store_session(self.session_factory, "delete_edge") as session:
            result = session.execute(
                delete(DBLinkEdge).where(
                    (DBLinkEdge.id == edge_id) & (DBLinkEdge.owner_id == owner_id)
                )
            )
            if result.rowcount == 0:
                raise EdgeNotFoundError(edge_id)
            session.commit()
        logger.debug(f"Deleted link {edge_id}")

    def list_edges_for_owner(self, owner_id: str) -> List[LinkEdge]:
        """All edges of one owner, oldest first. The sole input to analytics."""
        with store_session(self.session_factory, "list_edges_for_owner") as session:
            rows = session.scalars(
                select(DBLinkEdge)
                .where(DBLinkEdge.owner_id == owner_id)
                .order_by(DBLinkEdge.created_at, DBLinkEdge.id)
            ).all()
            return [_to_edge(row) for row in rows]

    def list_edges_by_source(self, owner_id: str, note_id: str) -> List[LinkEdge]:
        """Outgoing edges of a note, in creation order."""
        with store_session(self.session_factory, "list_edges_by_source") as session:
            rows = session.scalars(
                select(DBLinkEdge)
                .where(
                    (DBLinkEdge.owner_id == owner_id)
                    & (DBLinkEdge.source_note_id == note_id)
                )
                .order_by(DBLinkEdge.created_at, DBLinkEdge.id)
            ).all()
            return [_to_edge(row) for row in rows]

    def list_edges_by_target(self, owner_id: str, note_id: str) -> List[LinkEdge]:
        """Incoming edges of a note, newest first (backlink panel order)."""
        with store_session(self.session_factory, "list_edges_by_target") as session:
            rows = session.scalars(
                select(DBLinkEdge)
                .where(
                    (DBLinkEdge.owner_id == owner_id)
                    & (DBLinkEdge.target_note_id == note_id)
                )
                .order_by(DBLinkEdge.created_at.desc(), DBLinkEdge.id)
            ).all()
            return [_to_edge(row) for row in rows]

    def prune_edges_for_source(self, owner_id: str, note_id: str) -> int:
        """Delete every outgoing edge of a (deleted) note.

        Returns:
            Number of edges removed.
        """
        with store_session(self.session_factory, "prune_edges_for_source") as session:
            result = session.execute(
                delete(DBLinkEdge).where(
                    (DBLinkEdge.owner_id == owner_id)
                    & (DBLinkEdge.source_note_id == note_id)
                )
            )
            session.commit()
            return result.rowcount or 0

    def prune_dangling_edges(self, owner_id: str) -> int:
        """Delete edges whose target note no longer exists.

        Returns:
            Number of edges removed.
        """
        with store_session(self.session_factory, "prune_dangling_edges") as session:
            live_ids = select(DBNote.id).where(DBNote.owner_id == owner_id)
            result = session.execute(
                delete(DBLinkEdge).where(
                    (DBLinkEdge.owner_id == owner_id)
                    & DBLinkEdge.target_note_id.not_in(live_ids)
                )
            )
            session.commit()
            count = result.rowcount or 0
        if count:
            logger.info(f"Pruned {count} dangling links for owner {owner_id}")
        return count

    def repropagate_canonical(
        self, owner_id: str, target_note_id: str, title: str, slug: str
    ) -> int:
        """Rewrite the canonical snapshot of every edge pointing at a note.

        Only run when rename propagation is enabled; anchor text is left
        untouched because it records what the user typed.

        Returns:
            Number of edges updated.
        """
        with store_session(self.session_factory, "repropagate_canonical") as session:
            result = session.execute(
                update(DBLinkEdge)
                .where(
                    (DBLinkEdge.owner_id == owner_id)
                    & (DBLinkEdge.target_note_id == target_note_id)
                )
                .values(canonical_title=title, canonical_slug=slug, updated_at=utc_now())
            )
            session.commit()
            return result.rowcount or 0
