"""Deterministic circular layout for the connection graph."""
import math
from typing import List, Optional, Sequence

from notegraph.config import config
from notegraph.models.schema import (
    GraphEdge,
    NoteWithDegree,
    PositionedNode,
    Subgraph,
    VisualSubgraph,
)

MIN_NODE_SIZE = 8
MAX_NODE_SIZE = 20


def node_size(degree: int) -> float:
    return float(max(MIN_NODE_SIZE, min(MAX_NODE_SIZE, degree * 2)))


def layout_circular(
    nodes: Sequence[NoteWithDegree],
    center_x: Optional[float] = None,
    center_y: Optional[float] = None,
    radius: Optional[float] = None,
) -> List[PositionedNode]:
    """Place nodes evenly on a circle, node ``i`` at angle ``i * 2pi / n``."""
    if not nodes:
        return []
    cx = config.layout_center_x if center_x is None else center_x
    cy = config.layout_center_y if center_y is None else center_y
    r = config.layout_radius if radius is None else radius
    step = 2 * math.pi / len(nodes)

    positioned = []
    for i, node in enumerate(nodes):
        angle = i * step
        positioned.append(
            PositionedNode(
                id=node.id,
                title=node.title,
                degree=node.total,
                x=cx + r * math.cos(angle),
                y=cy + r * math.sin(angle),
                size=node_size(node.total),
            )
        )
    return positioned


def layout_subgraph(subgraph: Subgraph) -> VisualSubgraph:
    return VisualSubgraph(
        nodes=layout_circular(subgraph.nodes),
        edges=[
            GraphEdge(
                source=edge.source_note_id,
                target=edge.target_note_id,
                anchor_text=edge.anchor_text,
            )
            for edge in subgraph.edges
        ],
    )
