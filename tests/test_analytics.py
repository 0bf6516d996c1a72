"""Tests for graph analytics."""
import datetime

import pytest

from notegraph.models.schema import LinkEdge, Note, TimeWindow
from notegraph.services import analytics

NOW = datetime.datetime(2024, 6, 15, 12, 0, tzinfo=datetime.timezone.utc)


def _note(note_id, minutes_ago=0):
    stamp = NOW - datetime.timedelta(minutes=minutes_ago)
    return Note(
        id=note_id,
        owner_id="o",
        title=note_id.upper(),
        slug=note_id,
        created_at=stamp,
        updated_at=stamp,
    )


def _edge(source, target, days_ago=0, edge_id=None):
    stamp = NOW - datetime.timedelta(days=days_ago)
    return LinkEdge(
        id=edge_id or f"{source}-{target}-{days_ago}",
        owner_id="o",
        source_note_id=source,
        target_note_id=target,
        canonical_title=target.upper(),
        canonical_slug=target,
        created_at=stamp,
        updated_at=stamp,
    )


@pytest.fixture
def notes():
    return [_note("a", 5), _note("b", 4), _note("c", 3), _note("d", 2), _note("e", 1)]


@pytest.fixture
def edges():
    return [_edge("a", "b"), _edge("a", "c"), _edge("b", "c"), _edge("c", "a", days_ago=10)]


class TestDegrees:
    def test_counts(self, edges, notes):
        counts = analytics.degree_counts(edges, notes)
        assert (counts["a"].incoming, counts["a"].outgoing) == (1, 2)
        assert (counts["c"].incoming, counts["c"].outgoing) == (2, 1)
        assert counts["d"].total == 0

    @pytest.mark.parametrize(
        "edge_set",
        [
            [],
            [("a", "b")],
            [("a", "b"), ("a", "b"), ("b", "a")],
            [("a", "b"), ("b", "c"), ("c", "d"), ("d", "a"), ("a", "x")],
        ],
    )
    def test_degree_symmetry(self, edge_set):
        edges = [_edge(s, t, edge_id=f"e{i}") for i, (s, t) in enumerate(edge_set)]
        counts = analytics.degree_counts(edges)
        assert sum(c.outgoing for c in counts.values()) == len(edges)
        assert sum(c.incoming for c in counts.values()) == len(edges)

    def test_dangling_target_is_counted(self):
        counts = analytics.degree_counts([_edge("a", "gone")])
        assert counts["gone"].incoming == 1


class TestOrphans:
    def test_orphan_iff_degree_zero(self, edges, notes):
        counts = analytics.degree_counts(edges, notes)
        orphan_ids = {n.id for n in analytics.orphans(edges, notes)}
        assert orphan_ids == {n.id for n in notes if counts[n.id].total == 0}

    def test_most_recently_updated_first(self, edges, notes):
        assert [n.id for n in analytics.orphans(edges, notes)] == ["e", "d"]


class TestMostConnected:
    def test_ordering_and_limit(self, edges, notes):
        ranked = analytics.most_connected(edges, notes, limit=3)
        assert [n.id for n in ranked] == ["c", "a", "b"]
        assert ranked[0].total == 3

    def test_ties_broken_by_recent_update(self, notes):
        edges = [_edge("a", "b"), _edge("c", "d")]
        ranked = analytics.most_connected(edges, notes, limit=4)
        # All four have degree 1; d was updated most recently
        assert [n.id for n in ranked] == ["d", "c", "b", "a"]


class TestBoundedSubgraph:
    def test_keeps_only_edges_inside_selection(self, edges, notes):
        subgraph = analytics.bounded_subgraph(edges, notes, max_nodes=2)
        ids = {n.id for n in subgraph.nodes}
        assert ids == {"c", "a"}
        assert all(
            e.source_note_id in ids and e.target_note_id in ids for e in subgraph.edges
        )
        assert len(subgraph.edges) == 2

    def test_node_degrees_count_included_edges(self, edges, notes):
        subgraph = analytics.bounded_subgraph(edges, notes, max_nodes=2)
        assert all(n.total == 2 for n in subgraph.nodes)

    def test_zero_max_nodes(self, edges, notes):
        assert analytics.bounded_subgraph(edges, notes, 0).nodes == []


class TestStats:
    def test_link_stats(self, edges, notes):
        stats = analytics.link_stats(edges, notes)
        assert stats.total_notes == 5
        assert stats.total_connections == 4
        assert stats.average_connections_per_note == 0.8
        assert stats.orphaned_notes == 2
        assert stats.most_connected.id == "c"

    def test_link_stats_empty(self):
        stats = analytics.link_stats([], [])
        assert stats.average_connections_per_note == 0.0
        assert stats.most_connected is None

    def test_growth_by_day(self, edges):
        growth = analytics.growth_by_day(edges)
        assert [(p.date.isoformat(), p.connections) for p in growth] == [
            ("2024-06-05", 1),
            ("2024-06-15", 3),
        ]

    def test_recent_links_resolve_titles(self, edges, notes):
        recent = analytics.recent_links(edges + [_edge("zz", "a", edge_id="x")], notes, limit=10)
        assert recent[-1].source_title == "C"
        unknown = next(r for r in recent if r.id == "x")
        assert unknown.source_title == "Unknown"
        assert unknown.target_title == "A"

    @pytest.mark.parametrize(
        "window, expected",
        [(TimeWindow.LAST_7_DAYS, 3), (TimeWindow.LAST_30_DAYS, 4), ("all", 4)],
    )
    def test_filter_by_time(self, edges, window, expected):
        assert len(analytics.filter_by_time(edges, window, now=NOW)) == expected
