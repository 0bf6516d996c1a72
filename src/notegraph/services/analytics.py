"""Graph analytics over an owner's edge set.

Everything here is a pure function of a retrieved edge list plus note
metadata. Results are recomputed on every call; nothing is cached.
"""
import datetime
from collections import Counter
from typing import Dict, Iterable, List, Optional, Sequence

from notegraph.models.schema import (
    DegreeCount,
    GrowthPoint,
    LinkEdge,
    LinkStats,
    Note,
    NoteWithDegree,
    RecentLink,
    Subgraph,
    TimeWindow,
    ensure_timezone_aware,
    utc_now,
)

_WINDOW_DAYS = {TimeWindow.LAST_7_DAYS: 7, TimeWindow.LAST_30_DAYS: 30}

_EPOCH = datetime.datetime.min.replace(tzinfo=datetime.timezone.utc)


def degree_counts(
    edges: Iterable[LinkEdge], notes: Optional[Iterable[Note]] = None
) -> Dict[str, DegreeCount]:
    """Incoming and outgoing edge counts per note id.

    Every note passed in gets an entry, so orphans show up with zero
    counts. Ids that only appear in edges (dangling targets) are counted too.
    """
    counts: Dict[str, DegreeCount] = {}
    for note in notes or ():
        counts[note.id] = DegreeCount()
    for edge in edges:
        source = counts.setdefault(edge.source_note_id, DegreeCount())
        source.outgoing += 1
        target = counts.setdefault(edge.target_note_id, DegreeCount())
        target.incoming += 1
    return counts


def _with_degree(note: Note, count: Optional[DegreeCount]) -> NoteWithDegree:
    count = count or DegreeCount()
    return NoteWithDegree(
        id=note.id,
        title=note.title,
        slug=note.slug,
        updated_at=note.updated_at,
        incoming=count.incoming,
        outgoing=count.outgoing,
    )


def _rank_key(node: NoteWithDegree):
    updated = ensure_timezone_aware(node.updated_at) if node.updated_at else _EPOCH
    return (-node.total, -updated.timestamp(), node.id)


def rank_by_degree(edges: Sequence[LinkEdge], notes: Sequence[Note]) -> List[NoteWithDegree]:
    """All notes, highest total degree first, ties by most recent update."""
    counts = degree_counts(edges)
    ranked = [_with_degree(note, counts.get(note.id)) for note in notes]
    ranked.sort(key=_rank_key)
    return ranked


def most_connected(
    edges: Sequence[LinkEdge], notes: Sequence[Note], limit: int = 10
) -> List[NoteWithDegree]:
    return rank_by_degree(edges, notes)[:limit]


def orphans(edges: Sequence[LinkEdge], notes: Sequence[Note]) -> List[Note]:
    """Notes with total degree zero, most recently updated first."""
    counts = degree_counts(edges)
    lonely = [
        note for note in notes
        if counts.get(note.id, DegreeCount()).total == 0
    ]
    lonely.sort(key=lambda note: ensure_timezone_aware(note.updated_at), reverse=True)
    return lonely


def bounded_subgraph(
    edges: Sequence[LinkEdge], notes: Sequence[Note], max_nodes: int
) -> Subgraph:
    """Pick up to ``max_nodes`` notes, highest degree first, and the edges
    running between them.

    Node degrees in the result count only the included edges, which is
    what the drawing shows.
    """
    if max_nodes <= 0:
        return Subgraph()
    chosen = rank_by_degree(edges, notes)[:max_nodes]
    chosen_ids = {node.id for node in chosen}
    inner = [
        edge for edge in edges
        if edge.source_note_id in chosen_ids and edge.target_note_id in chosen_ids
    ]
    inner_counts = degree_counts(inner)
    nodes = []
    for node in chosen:
        count = inner_counts.get(node.id, DegreeCount())
        nodes.append(
            node.model_copy(update={"incoming": count.incoming, "outgoing": count.outgoing})
        )
    return Subgraph(nodes=nodes, edges=inner)


def link_stats(edges: Sequence[LinkEdge], notes: Sequence[Note]) -> LinkStats:
    ranked = rank_by_degree(edges, notes)
    top = ranked[0] if ranked and ranked[0].total > 0 else None
    average = round(len(edges) / len(notes), 2) if notes else 0.0
    return LinkStats(
        total_notes=len(notes),
        total_connections=len(edges),
        average_connections_per_note=average,
        orphaned_notes=len(orphans(edges, notes)),
        most_connected=top,
    )


def growth_by_day(edges: Iterable[LinkEdge]) -> List[GrowthPoint]:
    """Edges created per UTC calendar day, oldest day first."""
    per_day = Counter(
        ensure_timezone_aware(edge.created_at).astimezone(datetime.timezone.utc).date()
        for edge in edges
    )
    return [GrowthPoint(date=day, connections=per_day[day]) for day in sorted(per_day)]


def recent_links(
    edges: Sequence[LinkEdge], notes: Sequence[Note], limit: int = 10
) -> List[RecentLink]:
    titles = {note.id: note.title for note in notes}
    newest = sorted(
        edges, key=lambda edge: ensure_timezone_aware(edge.created_at), reverse=True
    )[:limit]
    return [
        RecentLink(
            id=edge.id,
            source_title=titles.get(edge.source_note_id, "Unknown"),
            target_title=titles.get(edge.target_note_id, edge.canonical_title or "Unknown"),
            anchor_text=edge.anchor_text,
            created_at=edge.created_at,
        )
        for edge in newest
    ]


def filter_by_time(
    edges: Iterable[LinkEdge],
    window: TimeWindow = TimeWindow.ALL,
    now: Optional[datetime.datetime] = None,
) -> List[LinkEdge]:
    """Keep edges created within the window ending at ``now``."""
    window = TimeWindow(window)
    days = _WINDOW_DAYS.get(window)
    if days is None:
        return list(edges)
    cutoff = ensure_timezone_aware(now or utc_now()) - datetime.timedelta(days=days)
    return [edge for edge in edges if ensure_timezone_aware(edge.created_at) >= cutoff]
