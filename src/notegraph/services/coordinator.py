"""Optimistic link mutations against a local view.

The coordinator owns a local, ordered view of link edges that the user
sees immediately. Every create or delete is applied to that view first and
then confirmed by the durable store. A successful confirmation swaps the
optimistic placeholder for the durable edge in place; a failure rolls the
view back and surfaces the error. Placeholders are matched by their
temporary id, so confirmations may arrive in any order.
"""
import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional, Sequence, Tuple

from notegraph.config import config
from notegraph.exceptions import (
    ConflictError,
    EdgeNotFoundError,
    ErrorCode,
    NoteGraphError,
    ValidationError,
)
from notegraph.models.schema import (
    BatchItemResult,
    BatchResult,
    EdgeSpec,
    LinkEdge,
    MutationState,
    UndoEntry,
    is_temporary_id,
    utc_now,
)
from notegraph.observability import traced
from notegraph.services import notifications
from notegraph.services.notifications import NotificationCenter, Notifier
from notegraph.storage.gateway import AsyncLinkStore

logger = logging.getLogger(__name__)


@dataclass
class MutationRecord:
    """Bookkeeping for one optimistic mutation."""

    key: str
    kind: str
    state: MutationState = MutationState.PENDING
    edge_id: Optional[str] = None
    error: Optional[str] = None


class LinkView:
    """Ordered list of edges as currently shown to the user."""

    def __init__(self, edges: Optional[Sequence[LinkEdge]] = None):
        self._edges: List[LinkEdge] = list(edges or [])

    def __len__(self) -> int:
        return len(self._edges)

    def __iter__(self):
        return iter(self._edges)

    def snapshot(self) -> List[LinkEdge]:
        return list(self._edges)

    def index_of(self, edge_id: str) -> Optional[int]:
        for index, edge in enumerate(self._edges):
            if edge.id == edge_id:
                return index
        return None

    def get(self, edge_id: str) -> Optional[LinkEdge]:
        index = self.index_of(edge_id)
        return None if index is None else self._edges[index]

    def append(self, edge: LinkEdge) -> None:
        self._edges.append(edge)

    def replace(self, edge_id: str, edge: LinkEdge) -> bool:
        """Swap an edge in place. Returns False if the id is no longer shown."""
        index = self.index_of(edge_id)
        if index is None:
            return False
        self._edges[index] = edge
        return True

    def remove(self, edge_id: str) -> Optional[Tuple[int, LinkEdge]]:
        index = self.index_of(edge_id)
        if index is None:
            return None
        return index, self._edges.pop(index)

    def restore(self, index: int, edge: LinkEdge) -> None:
        self._edges.insert(min(index, len(self._edges)), edge)

    def reset(self, edges: Sequence[LinkEdge]) -> None:
        self._edges = list(edges)

    def drop_where(self, predicate) -> int:
        before = len(self._edges)
        self._edges = [edge for edge in self._edges if not predicate(edge)]
        return before - len(self._edges)


class OptimisticLinkCoordinator:
    """Applies link mutations locally first and reconciles with the store.

    A coordinator is scoped to one owner and, optionally, one source note
    (the note being edited). All methods must be called from the same
    event loop; the view itself is never touched from worker threads.
    """

    def __init__(
        self,
        link_store: AsyncLinkStore,
        owner_id: str,
        source_note_id: Optional[str] = None,
        notifier: Optional[Notifier] = None,
        undo_capacity: Optional[int] = None,
    ):
        self.link_store = link_store
        self.owner_id = owner_id
        self.source_note_id = source_note_id
        self.notifier = notifier or NotificationCenter()
        self.undo_capacity = undo_capacity or config.undo_capacity
        self.view = LinkView()
        # In-flight mutations only; settled ones move to the bounded history
        self.mutations: Dict[str, MutationRecord] = {}
        self.history: Deque[MutationRecord] = deque(maxlen=config.mutation_history)
        self._undo_stack: List[UndoEntry] = []

    @property
    def edges(self) -> List[LinkEdge]:
        return self.view.snapshot()

    @property
    def undo_stack(self) -> List[UndoEntry]:
        return list(self._undo_stack)

    @property
    def pending_count(self) -> int:
        return len(self.mutations)

    @property
    def is_idle(self) -> bool:
        """No mutation is awaiting the store."""
        return not self.mutations

    async def load(self) -> List[LinkEdge]:
        """Refresh the view from the store, keeping still-pending placeholders."""
        if self.source_note_id:
            durable = await self.link_store.list_edges_by_source(
                self.owner_id, self.source_note_id
            )
        else:
            durable = await self.link_store.list_edges_for_owner(self.owner_id)
        pending = [edge for edge in self.view if edge.is_optimistic]
        self.view.reset(list(durable) + pending)
        return self.view.snapshot()

    def _check_spec(self, spec: EdgeSpec) -> None:
        spec.validate_endpoints()
        if self.source_note_id and spec.source_note_id != self.source_note_id:
            raise ValidationError(
                "Link source does not match the note being edited",
                field="source_note_id",
                value=spec.source_note_id,
                code=ErrorCode.LINK_INVALID,
            )

    def _notify(self, notification) -> None:
        self.notifier.notify(notification)

    def _settle(self, key: str, state: MutationState, edge_id=None, error=None) -> None:
        record = self.mutations.pop(key, None)
        if record is None:
            return
        record.state = state
        record.edge_id = edge_id
        record.error = error
        self.history.append(record)

    @traced("coordinator_create_link")
    async def create_link(self, spec: EdgeSpec) -> LinkEdge:
        """Create a link optimistically.

        Raises:
            ValidationError: Before any local change, for an invalid spec.
            NoteGraphError: After rolling the view back, if the store refused.
        """
        self._check_spec(spec)

        placeholder = LinkEdge.optimistic(self.owner_id, spec)
        self.view.append(placeholder)
        self.mutations[placeholder.id] = MutationRecord(key=placeholder.id, kind="create")

        try:
            edge = await self.link_store.create_edge(self.owner_id, spec)
        except Exception as e:
            self._roll_back_create(placeholder.id, e)
            self._notify(notifications.error(f"Failed to create link: {_describe(e)}"))
            raise
        except BaseException as e:
            # Cancelled while the store call was in flight
            self._roll_back_create(placeholder.id, e)
            raise

        if not self.view.replace(placeholder.id, edge):
            self._adopt(edge)
        self._settle(placeholder.id, MutationState.COMMITTED, edge_id=edge.id)
        self._notify(notifications.success(f"Linked to {edge.canonical_title}"))
        return edge

    def _roll_back_create(self, placeholder_id: str, error: BaseException) -> None:
        self.view.remove(placeholder_id)
        self._settle(placeholder_id, MutationState.ROLLED_BACK, error=_describe(error))
        logger.warning(f"Rolled back link {placeholder_id}: {_describe(error)}")

    def _adopt(self, edge: LinkEdge) -> None:
        # The placeholder vanished (view reloaded); show the edge unless its
        # source note has since been discarded from this view.
        if self.source_note_id is None or edge.source_note_id == self.source_note_id:
            if self.view.index_of(edge.id) is None:
                self.view.append(edge)

    @traced("coordinator_delete_link")
    async def delete_link(self, edge_id: str) -> UndoEntry:
        """Delete a link optimistically and record an undo entry.

        Raises:
            EdgeNotFoundError: If the edge is not in the view (including a
                second delete of the same edge).
            ConflictError: If the edge is still pending, or the store had
                already lost the edge.
            NoteGraphError: After restoring the view, if the store refused.
        """
        if is_temporary_id(edge_id):
            raise ConflictError("Link is still being saved", edge_id=edge_id)
        removed = self.view.remove(edge_id)
        if removed is None:
            raise EdgeNotFoundError(edge_id)
        index, edge = removed

        entry = UndoEntry(edge=edge.model_copy(deep=True), deleted_at=utc_now())
        self._push_undo(entry)
        self.mutations[entry.token] = MutationRecord(key=entry.token, kind="delete", edge_id=edge_id)

        try:
            await self.link_store.delete_edge(self.owner_id, edge_id)
        except EdgeNotFoundError as e:
            # Already gone in the store; nothing left to undo.
            self._drop_undo(entry.token)
            self._settle(entry.token, MutationState.ROLLED_BACK, edge_id=edge_id, error=str(e))
            self._notify(notifications.error("Link was already deleted"))
            raise ConflictError(
                "Link was already deleted", edge_id=edge_id, original_error=e
            ) from e
        except Exception as e:
            self._roll_back_delete(entry, index, edge, e)
            self._notify(notifications.error(f"Failed to delete link: {_describe(e)}"))
            raise
        except BaseException as e:
            self._roll_back_delete(entry, index, edge, e)
            raise

        self._settle(entry.token, MutationState.COMMITTED, edge_id=edge_id)
        self._notify(notifications.success("Link removed", undo_token=entry.token))
        return entry

    def _roll_back_delete(
        self, entry: UndoEntry, index: int, edge: LinkEdge, error: BaseException
    ) -> None:
        self.view.restore(index, edge)
        self._drop_undo(entry.token)
        self._settle(
            entry.token, MutationState.ROLLED_BACK, edge_id=edge.id, error=_describe(error)
        )
        logger.warning(f"Restored link {edge.id} after failed delete: {_describe(error)}")

    def _push_undo(self, entry: UndoEntry) -> None:
        self._undo_stack.append(entry)
        overflow = len(self._undo_stack) - self.undo_capacity
        if overflow > 0:
            del self._undo_stack[:overflow]

    def _drop_undo(self, token: str) -> Optional[Tuple[int, UndoEntry]]:
        for index, entry in enumerate(self._undo_stack):
            if entry.token == token:
                return index, self._undo_stack.pop(index)
        return None

    @traced("coordinator_undo")
    async def undo(self, token: Optional[str] = None) -> LinkEdge:
        """Recreate a deleted link. The recreated edge gets a new id.

        Without a token the most recent deletion is undone.
        """
        if token is None:
            if not self._undo_stack:
                raise ValidationError("Nothing to undo", field="undo_token")
            token = self._undo_stack[-1].token
        dropped = self._drop_undo(token)
        if dropped is None:
            raise ValidationError(
                "Undo entry not found or expired", field="undo_token", value=token
            )
        position, entry = dropped

        try:
            return await self.create_link(entry.edge.to_spec())
        except NoteGraphError:
            self._undo_stack.insert(min(position, len(self._undo_stack)), entry)
            raise

    @traced("coordinator_batch_create")
    async def batch_create_links(self, specs: Sequence[EdgeSpec]) -> BatchResult:
        """Create several links; failures are counted, successes kept.

        Invalid specs are reported as failed items without touching the
        view. Valid ones get placeholders that are reconciled one by one
        with the store's per-item outcomes.
        """
        items: Dict[int, BatchItemResult] = {}
        pending: List[Tuple[int, EdgeSpec, LinkEdge]] = []
        for index, spec in enumerate(specs):
            try:
                self._check_spec(spec)
            except ValidationError as e:
                items[index] = BatchItemResult(
                    index=index, spec=spec, error=e.message, error_code=e.code.name
                )
                continue
            placeholder = LinkEdge.optimistic(self.owner_id, spec, kind="batch")
            self.view.append(placeholder)
            self.mutations[placeholder.id] = MutationRecord(
                key=placeholder.id, kind="batch_create"
            )
            pending.append((index, spec, placeholder))

        if pending:
            try:
                stored = await self.link_store.batch_create_edges(
                    self.owner_id, [spec for _, spec, _ in pending]
                )
            except Exception as e:
                for _, _, placeholder in pending:
                    self._roll_back_create(placeholder.id, e)
                self._notify(notifications.error(f"Failed to create links: {_describe(e)}"))
                raise
            except BaseException as e:
                for _, _, placeholder in pending:
                    self._roll_back_create(placeholder.id, e)
                raise

            outcomes = {item.index: item for item in stored.items}
            for position, (index, spec, placeholder) in enumerate(pending):
                outcome = outcomes.get(position)
                if outcome is not None and outcome.ok:
                    if not self.view.replace(placeholder.id, outcome.edge):
                        self._adopt(outcome.edge)
                    self._settle(placeholder.id, MutationState.COMMITTED, edge_id=outcome.edge.id)
                    items[index] = BatchItemResult(index=index, spec=spec, edge=outcome.edge)
                else:
                    self.view.remove(placeholder.id)
                    message = outcome.error if outcome else "No result returned for item"
                    self._settle(placeholder.id, MutationState.ROLLED_BACK, error=message)
                    items[index] = BatchItemResult(
                        index=index,
                        spec=spec,
                        error=message,
                        error_code=outcome.error_code if outcome else ErrorCode.STORAGE_WRITE_FAILED.name,
                    )

        result = BatchResult(items=[items[i] for i in sorted(items)])
        if result.committed:
            self._notify(notifications.success(f"Created {len(result.committed)} links"))
        if result.failure_count:
            self._notify(
                notifications.error(f"{result.failure_count} links could not be created")
            )
        return result

    def discard_note(self, note_id: str) -> int:
        """Drop shown edges whose source note was deleted.

        Edges pointing at the deleted note stay visible as dangling links
        until pruned; they still carry the canonical title for display.
        """
        dropped = self.view.drop_where(lambda edge: edge.source_note_id == note_id)
        if dropped:
            logger.debug(f"Discarded {dropped} local links for deleted note {note_id}")
        return dropped


def _describe(error: BaseException) -> str:
    if isinstance(error, NoteGraphError):
        return error.message
    return str(error) or type(error).__name__
