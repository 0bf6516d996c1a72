"""Service layer tying the stores, resolver, coordinators and analytics together."""
import logging
from collections import OrderedDict
from typing import List, Optional, Tuple

from notegraph.config import config
from notegraph.exceptions import NoteNotFoundError
from notegraph.models.schema import (
    Backlink,
    BatchResult,
    EdgeSpec,
    GraphSummary,
    GrowthPoint,
    LinkEdge,
    LinkStats,
    Note,
    NoteSummary,
    OutgoingLink,
    RecentLink,
    Selection,
    TimeWindow,
    UndoEntry,
    VisualSubgraph,
)
from notegraph.services import analytics, export
from notegraph.services.coordinator import OptimisticLinkCoordinator
from notegraph.services.detector import extract_bracket_links
from notegraph.services.layout import layout_subgraph
from notegraph.services.notifications import NotificationCenter, Notifier
from notegraph.services.resolver import (
    ReferenceResolver,
    ResolutionSession,
    build_edge_spec,
)
from notegraph.services.session import SessionContext
from notegraph.storage.gateway import AsyncLinkStore, AsyncNoteStore

logger = logging.getLogger(__name__)


class GraphService:
    """Entry point for the backlink graph engine.

    Holds one optimistic coordinator per source note being edited, all
    for the currently signed-in owner.
    """

    def __init__(
        self,
        note_store: AsyncNoteStore,
        link_store: AsyncLinkStore,
        session: Optional[SessionContext] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.note_store = note_store
        self.link_store = link_store
        self.session = session or SessionContext()
        self.notifier = notifier or NotificationCenter()
        self.resolver = ReferenceResolver(note_store)
        self._coordinators: "OrderedDict[Tuple[str, str], OptimisticLinkCoordinator]" = (
            OrderedDict()
        )
        note_store.on_note_deleted(self._prune_after_note_deleted)

    @property
    def owner_id(self) -> str:
        return self.session.current_owner_id()

    # ========== Editing ==========

    def coordinator_for(self, note_id: str) -> OptimisticLinkCoordinator:
        """The coordinator owning the local link view of one source note.

        Coordinators are cached most-recently-used last. Once the cache is
        over capacity, the oldest idle ones are dropped along with their
        undo history; a coordinator with writes in flight is never evicted.
        """
        key = (self.owner_id, note_id)
        coordinator = self._coordinators.get(key)
        if coordinator is None:
            coordinator = OptimisticLinkCoordinator(
                self.link_store,
                key[0],
                source_note_id=note_id,
                notifier=self.notifier,
            )
            self._coordinators[key] = coordinator
            self._evict_idle_coordinators()
        else:
            self._coordinators.move_to_end(key)
        return coordinator

    def _evict_idle_coordinators(self) -> None:
        overflow = len(self._coordinators) - config.coordinator_cache_size
        if overflow <= 0:
            return
        # The newest entry is the one just requested
        candidates = list(self._coordinators.items())[:-1]
        for key, coordinator in candidates:
            if overflow <= 0:
                break
            if coordinator.is_idle:
                del self._coordinators[key]
                overflow -= 1
                logger.debug(f"Evicted link view for note {key[1]}")

    async def open_note(self, note_id: str) -> OptimisticLinkCoordinator:
        """Load the outgoing-link view for a note about to be edited."""
        if await self.note_store.get_note(self.owner_id, note_id) is None:
            raise NoteNotFoundError(note_id)
        coordinator = self.coordinator_for(note_id)
        await coordinator.load()
        return coordinator

    def resolution_session(
        self, note_id: Optional[str] = None, debounce_ms: Optional[int] = None
    ) -> ResolutionSession:
        return ResolutionSession(self.resolver, self.owner_id, note_id, debounce_ms)

    async def create_note(self, title: str, content: str = "", slug: Optional[str] = None) -> Note:
        owner_id = self.owner_id
        if slug is None:
            slug = await self.note_store.unique_slug(owner_id, title)
        return await self.note_store.create_note(owner_id, title, slug, content)

    async def confirm_reference(self, source_note_id: str, selection: Selection) -> LinkEdge:
        """Materialize the chosen target and link to it.

        Selecting an existing note and creating one inline both end in the
        source note's coordinator.
        """
        target = await self.resolver.materialize(selection, self.owner_id, source_note_id)
        spec = build_edge_spec(source_note_id, target, selection.anchor_text)
        return await self.coordinator_for(source_note_id).create_link(spec)

    async def create_link(self, spec: EdgeSpec) -> LinkEdge:
        return await self.coordinator_for(spec.source_note_id).create_link(spec)

    async def delete_link(self, source_note_id: str, edge_id: str) -> UndoEntry:
        coordinator = self.coordinator_for(source_note_id)
        if coordinator.view.get(edge_id) is None:
            await coordinator.load()
        return await coordinator.delete_link(edge_id)

    async def undo_delete(self, source_note_id: str, token: Optional[str] = None) -> LinkEdge:
        return await self.coordinator_for(source_note_id).undo(token)

    async def sync_note_links(self, source_note_id: str, content: str) -> BatchResult:
        """Link every [[reference]] in content that is not yet linked.

        References are matched to notes by slug, then by title ignoring
        case; unknown ones are created inline. Self references and
        already-linked targets are skipped.
        """
        owner_id = self.owner_id
        coordinator = await self.open_note(source_note_id)
        linked = {edge.target_note_id for edge in coordinator.edges}

        specs: List[EdgeSpec] = []
        for ref in extract_bracket_links(content):
            target = await self.note_store.get_note_by_slug(owner_id, ref.slug)
            if target is None:
                target = await self.note_store.get_note_by_title(owner_id, ref.text)
            if target is None:
                target = await self.resolver.materialize(
                    Selection.create(ref.text), owner_id, source_note_id
                )
            if target.id == source_note_id or target.id in linked:
                continue
            linked.add(target.id)
            specs.append(build_edge_spec(source_note_id, target, ref.text))

        if not specs:
            return BatchResult()
        return await coordinator.batch_create_links(specs)

    # ========== Lifecycle ==========

    def _prune_after_note_deleted(self, owner_id: str, note_id: str) -> None:
        # Called from the store's worker thread, so use the blocking repository.
        pruned = self.link_store.repository.prune_edges_for_source(owner_id, note_id)
        if pruned:
            logger.info(f"Pruned {pruned} links from deleted note {note_id}")

    async def delete_note(self, note_id: str) -> None:
        owner_id = self.owner_id
        await self.note_store.delete_note(owner_id, note_id)
        for (coord_owner, _), coordinator in list(self._coordinators.items()):
            if coord_owner == owner_id:
                coordinator.discard_note(note_id)
        self._coordinators.pop((owner_id, note_id), None)

    async def rename_note(self, note_id: str, title: str) -> Note:
        """Rename a note. Existing edges keep their canonical snapshot unless
        rename propagation is switched on."""
        owner_id = self.owner_id
        note = await self.note_store.rename_note(owner_id, note_id, title)
        if config.propagate_renames:
            updated = await self.link_store.repropagate_canonical(
                owner_id, note.id, note.title, note.slug
            )
            logger.info(f"Propagated rename of {note_id} to {updated} links")
        return note

    async def prune_dangling(self) -> int:
        return await self.link_store.prune_dangling_edges(self.owner_id)

    # ========== Queries ==========

    async def get_backlinks(self, note_id: str) -> List[Backlink]:
        """Edges pointing at a note, newest first, with their source notes."""
        owner_id = self.owner_id
        edges = await self.link_store.list_edges_by_target(owner_id, note_id)
        sources = await self.note_store.get_notes_by_ids(
            owner_id, list({edge.source_note_id for edge in edges})
        )
        by_id = {note.id: NoteSummary.from_note(note) for note in sources}
        return [Backlink(edge=edge, source=by_id.get(edge.source_note_id)) for edge in edges]

    async def get_outgoing_links(self, note_id: str) -> List[OutgoingLink]:
        owner_id = self.owner_id
        edges = await self.link_store.list_edges_by_source(owner_id, note_id)
        targets = await self.note_store.get_notes_by_ids(
            owner_id, list({edge.target_note_id for edge in edges})
        )
        live = {note.id for note in targets}
        return [
            OutgoingLink(edge=edge, target_exists=edge.target_note_id in live)
            for edge in edges
        ]

    async def _graph_inputs(
        self, window: TimeWindow = TimeWindow.ALL, owner_id: Optional[str] = None
    ) -> Tuple[List[LinkEdge], List[Note]]:
        owner_id = self.session.resolve_owner(owner_id)
        edges = await self.link_store.list_edges_for_owner(owner_id)
        notes = await self.note_store.list_notes(owner_id)
        return analytics.filter_by_time(edges, window), notes

    async def get_graph_summary(
        self, limit: int = 10, owner_id: Optional[str] = None
    ) -> GraphSummary:
        """Degree table, top-connected notes and orphans for one owner.

        ``owner_id`` defaults to the signed-in owner; any other owner is
        rejected.
        """
        edges, notes = await self._graph_inputs(owner_id=owner_id)
        return GraphSummary(
            owner_id=self.owner_id,
            degree_counts=analytics.degree_counts(edges, notes),
            most_connected=analytics.most_connected(edges, notes, limit),
            orphans=[NoteSummary.from_note(n) for n in analytics.orphans(edges, notes)],
        )

    async def get_visual_subgraph(
        self, max_nodes: Optional[int] = None, owner_id: Optional[str] = None
    ) -> VisualSubgraph:
        edges, notes = await self._graph_inputs(owner_id=owner_id)
        subgraph = analytics.bounded_subgraph(
            edges, notes, max_nodes or config.visual_max_nodes
        )
        return layout_subgraph(subgraph)

    async def get_link_stats(self, window: TimeWindow = TimeWindow.ALL) -> LinkStats:
        edges, notes = await self._graph_inputs(window)
        return analytics.link_stats(edges, notes)

    async def get_growth(self, window: TimeWindow = TimeWindow.ALL) -> List[GrowthPoint]:
        edges, _ = await self._graph_inputs(window)
        return analytics.growth_by_day(edges)

    async def get_recent_links(self, limit: int = 10) -> List[RecentLink]:
        edges, notes = await self._graph_inputs()
        return analytics.recent_links(edges, notes, limit)

    async def export_network_stats_csv(self) -> str:
        """Every note with its degree as CSV, most connected first."""
        edges, notes = await self._graph_inputs()
        return export.network_stats_csv(analytics.rank_by_degree(edges, notes))

    async def export_recent_links_csv(self, limit: int = 10) -> str:
        edges, notes = await self._graph_inputs()
        return export.recent_links_csv(analytics.recent_links(edges, notes, limit))
