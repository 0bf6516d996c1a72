"""Tests for the circular layout."""
import math

import pytest

from notegraph.models.schema import LinkEdge, NoteWithDegree, Subgraph
from notegraph.services.layout import layout_circular, layout_subgraph, node_size


def _nodes(*degrees):
    return [
        NoteWithDegree(id=f"n{i}", title=f"Node {i}", incoming=d, outgoing=0)
        for i, d in enumerate(degrees)
    ]


def test_same_input_same_positions():
    nodes = _nodes(1, 2, 3, 4, 5)
    assert layout_circular(nodes) == layout_circular(nodes)


def test_nodes_sit_on_the_circle():
    positioned = layout_circular(_nodes(1, 1, 1, 1), center_x=300, center_y=200, radius=150)
    assert positioned[0].x == pytest.approx(450)
    assert positioned[0].y == pytest.approx(200)
    assert positioned[1].x == pytest.approx(300)
    assert positioned[1].y == pytest.approx(350)
    for node in positioned:
        assert math.hypot(node.x - 300, node.y - 200) == pytest.approx(150)


@pytest.mark.parametrize("degree, size", [(0, 8), (3, 8), (4, 8), (7, 14), (10, 20), (50, 20)])
def test_size_is_clamped(degree, size):
    assert node_size(degree) == size


def test_empty_input():
    assert layout_circular([]) == []


def test_layout_subgraph_maps_edges():
    edge = LinkEdge(
        id="e1",
        owner_id="o",
        source_note_id="n0",
        target_note_id="n1",
        anchor_text="see",
        canonical_title="Node 1",
        canonical_slug="node-1",
    )
    visual = layout_subgraph(Subgraph(nodes=_nodes(1, 1), edges=[edge]))
    assert [n.id for n in visual.nodes] == ["n0", "n1"]
    assert visual.edges[0].source == "n0"
    assert visual.edges[0].anchor_text == "see"
