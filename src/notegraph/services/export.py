"""CSV export of link analytics.

Two tables are exported: per-note network statistics and the most recent
links. Both are rendered from analytics results, never from the store.
"""
import csv
import io
from typing import List, Sequence

from notegraph.exceptions import ValidationError
from notegraph.models.schema import NoteWithDegree, RecentLink, ensure_timezone_aware

NETWORK_STATS_HEADERS = [
    "Note Title",
    "Slug",
    "Last Updated",
    "Incoming Links",
    "Outgoing Links",
    "Total Connections",
]
RECENT_LINKS_HEADERS = ["Source Note", "Target Note", "Anchor Text", "Created Date"]

NETWORK_STATS_FILENAME = "link-network-stats.csv"
RECENT_LINKS_FILENAME = "recent-links.csv"


def _render(headers: List[str], rows: List[list]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(headers)
    writer.writerows(rows)
    return buffer.getvalue()


def network_stats_csv(ranked: Sequence[NoteWithDegree]) -> str:
    """One row per note with its degree, in the order given.

    Raises:
        ValidationError: If there are no notes to export.
    """
    if not ranked:
        raise ValidationError("No network statistics to export", field="dataset")
    return _render(
        NETWORK_STATS_HEADERS,
        [
            [
                node.title,
                node.slug or "",
                ensure_timezone_aware(node.updated_at).isoformat() if node.updated_at else "",
                node.incoming,
                node.outgoing,
                node.total,
            ]
            for node in ranked
        ],
    )


def recent_links_csv(links: Sequence[RecentLink]) -> str:
    """One row per recent link, newest first as given.

    Raises:
        ValidationError: If there are no links to export.
    """
    if not links:
        raise ValidationError("No recent links to export", field="dataset")
    return _render(
        RECENT_LINKS_HEADERS,
        [
            [
                link.source_title,
                link.target_title,
                link.anchor_text or "",
                ensure_timezone_aware(link.created_at).isoformat(),
            ]
            for link in links
        ],
    )
