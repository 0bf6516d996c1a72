"""MCP server exposing the backlink graph engine as tools."""

import json
import logging
import uuid
from typing import Optional

from mcp.server.fastmcp import FastMCP

from notegraph.config import config
from notegraph.exceptions import NoteGraphError
from notegraph.models.db_models import init_db
from notegraph.models.schema import Selection, TimeWindow
from notegraph.observability import metrics, timed_operation
from notegraph.services import export
from notegraph.services.detector import detect
from notegraph.services.graph_service import GraphService
from notegraph.services.notifications import NotificationCenter
from notegraph.services.session import SessionContext
from notegraph.storage import AsyncLinkStore, AsyncNoteStore, LinkRepository, NoteRepository

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 500
MAX_CONTENT_LENGTH = 1_000_000  # 1 MB


def _validate_input_lengths(
    title: Optional[str] = None, content: Optional[str] = None
) -> None:
    """Validate input string lengths at the MCP boundary."""
    if title and len(title) > MAX_TITLE_LENGTH:
        raise ValueError(
            f"Title exceeds maximum length of {MAX_TITLE_LENGTH} characters"
        )
    if content and len(content) > MAX_CONTENT_LENGTH:
        raise ValueError(
            f"Content exceeds maximum length of {MAX_CONTENT_LENGTH} characters"
        )


class NoteGraphMcpServer:
    """MCP server for the note graph."""

    def __init__(self, engine=None, owner_id: Optional[str] = None):
        """Initialize the MCP server.

        Args:
            engine: Pre-configured SQLAlchemy engine shared by both
                repositories. A new one is created from config when None.
            owner_id: Owner to act for; defaults to config.default_owner_id.
        """
        self.mcp = FastMCP(config.server_name)
        engine = engine if engine is not None else init_db()
        self.notifications = NotificationCenter()
        self.graph_service = GraphService(
            AsyncNoteStore(NoteRepository(engine=engine)),
            AsyncLinkStore(LinkRepository(engine=engine)),
            session=SessionContext(owner_id),
            notifier=self.notifications,
        )
        self._register_tools()
        logger.info("Notegraph MCP server initialized")

    def format_error_response(self, error: Exception) -> str:
        """Format an error response in a consistent way.

        Domain errors are shown as-is; anything else gets a reference id
        that points at the full entry in the log.
        """
        error_id = str(uuid.uuid4())[:8]

        if isinstance(error, NoteGraphError):
            logger.error(
                f"[{error.code.name}] [{error_id}]: {error.message}",
                extra={"error_details": error.details},
            )
            return f"Error: {error.message}"
        elif isinstance(error, ValueError):
            logger.error(f"Validation error [{error_id}]: {str(error)}")
            return f"Error: Invalid input (ref: {error_id})"
        else:
            logger.error(f"Unexpected error [{error_id}]: {str(error)}", exc_info=True)
            return f"Error: An unexpected error occurred (ref: {error_id})"

    def _with_notifications(self, output: str) -> str:
        pending = self.notifications.drain()
        errors = [n.message for n in pending if n.level == "error"]
        if errors:
            output += "\n\nWarnings:\n" + "\n".join(f"- {message}" for message in errors)
        return output

    def _register_tools(self) -> None:
        """Register MCP tools."""
        service = self.graph_service

        @self.mcp.tool(name="ng_detect_reference")
        def ng_detect_reference(text: str, cursor: int) -> str:
            """Find the open [[reference or #hashtag at a cursor position.
            Args:
                text: The note text being edited
                cursor: 0-based cursor offset into the text
            """
            try:
                span = detect(text, cursor)
                if span is None:
                    return "No active reference at cursor."
                return (
                    f"Active {span.kind} reference: query='{span.query}' "
                    f"start={span.start} end={span.end}"
                )
            except Exception as e:
                return self.format_error_response(e)

        @self.mcp.tool(name="ng_resolve_reference")
        async def ng_resolve_reference(query: str, note_id: Optional[str] = None) -> str:
            """List notes a bracket query could link to.
            Args:
                query: Text typed after [[ (empty lists recent notes)
                note_id: The note being edited, excluded from the results
            """
            with timed_operation("ng_resolve_reference", query=query[:30]) as op:
                try:
                    candidates = await service.resolver.resolve(
                        query, service.owner_id, note_id
                    )
                    op["result_count"] = len(candidates.existing)
                    lines = []
                    if candidates.degraded:
                        lines.append("Search is unavailable; only creating a note is offered.")
                    for i, summary in enumerate(candidates.existing, 1):
                        lines.append(f"{i}. {summary.title} (ID: {summary.id})")
                    if candidates.offer_create:
                        lines.append(f"+ Create note '{query.strip()}'")
                    if not lines:
                        return "No matching notes."
                    return "\n".join(lines)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="ng_create_note")
        async def ng_create_note(title: str, content: str = "") -> str:
            """Create a note.
            Args:
                title: The title of the note
                content: The note body (optional)
            """
            with timed_operation("ng_create_note", title=title[:30]) as op:
                try:
                    _validate_input_lengths(title=title, content=content)
                    note = await service.create_note(title, content)
                    op["note_id"] = note.id
                    return f"Note created with ID: {note.id} (slug: {note.slug})"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="ng_create_link")
        async def ng_create_link(
            source_note_id: str,
            target_note_id: Optional[str] = None,
            create_title: Optional[str] = None,
            anchor_text: Optional[str] = None,
        ) -> str:
            """Link a note to an existing note, or to a new note created inline.
            Args:
                source_note_id: The note the link starts from
                target_note_id: ID of an existing target note
                create_title: Title of a new target note (when no target ID is given)
                anchor_text: Text shown for the link (defaults to the target title)
            """
            with timed_operation("ng_create_link", source=source_note_id) as op:
                try:
                    if target_note_id:
                        selection = Selection.existing(target_note_id, anchor_text)
                    elif create_title:
                        _validate_input_lengths(title=create_title)
                        selection = Selection.create(create_title)
                        if anchor_text:
                            selection = selection.model_copy(update={"anchor_text": anchor_text})
                    else:
                        return "Error: Provide either target_note_id or create_title."
                    edge = await service.confirm_reference(source_note_id, selection)
                    op["edge_id"] = edge.id
                    return self._with_notifications(
                        f"Link created with ID: {edge.id} -> {edge.canonical_title}"
                    )
                except Exception as e:
                    self.notifications.drain()
                    return self.format_error_response(e)

        @self.mcp.tool(name="ng_delete_link")
        async def ng_delete_link(source_note_id: str, link_id: str) -> str:
            """Delete a link. The response carries an undo token.
            Args:
                source_note_id: The note the link starts from
                link_id: ID of the link to delete
            """
            try:
                entry = await service.delete_link(source_note_id, link_id)
                self.notifications.drain()
                return f"Link {link_id} deleted. Undo token: {entry.token}"
            except Exception as e:
                self.notifications.drain()
                return self.format_error_response(e)

        @self.mcp.tool(name="ng_undo_delete")
        async def ng_undo_delete(source_note_id: str, undo_token: Optional[str] = None) -> str:
            """Restore a deleted link. The restored link gets a new ID.
            Args:
                source_note_id: The note the link started from
                undo_token: Token from ng_delete_link (defaults to the latest deletion)
            """
            try:
                edge = await service.undo_delete(source_note_id, undo_token)
                self.notifications.drain()
                return f"Link restored with new ID: {edge.id}"
            except Exception as e:
                self.notifications.drain()
                return self.format_error_response(e)

        @self.mcp.tool(name="ng_sync_note_links")
        async def ng_sync_note_links(note_id: str, content: str) -> str:
            """Create links for every [[reference]] in the given content.
            Args:
                note_id: The note the content belongs to
                content: Note text to scan for [[references]]
            """
            with timed_operation("ng_sync_note_links", note_id=note_id) as op:
                try:
                    _validate_input_lengths(content=content)
                    result = await service.sync_note_links(note_id, content)
                    op["created"] = len(result.committed)
                    self.notifications.drain()
                    output = (
                        f"Created {len(result.committed)} links, "
                        f"{result.failure_count} failed."
                    )
                    for item in result.failures:
                        output += f"\n- {item.spec.canonical_title}: {item.error}"
                    return output
                except Exception as e:
                    self.notifications.drain()
                    return self.format_error_response(e)

        @self.mcp.tool(name="ng_get_backlinks")
        async def ng_get_backlinks(note_id: str) -> str:
            """List notes that link to a note, newest first.
            Args:
                note_id: The linked-to note
            """
            try:
                backlinks = await service.get_backlinks(note_id)
                if not backlinks:
                    return "No backlinks."
                lines = [f"{len(backlinks)} backlinks:"]
                for backlink in backlinks:
                    source = backlink.source.title if backlink.source else "Unknown"
                    anchor = f" as '{backlink.edge.anchor_text}'" if backlink.edge.anchor_text else ""
                    lines.append(f"- {source} (ID: {backlink.edge.source_note_id}){anchor}")
                return "\n".join(lines)
            except Exception as e:
                return self.format_error_response(e)

        @self.mcp.tool(name="ng_get_outgoing_links")
        async def ng_get_outgoing_links(note_id: str) -> str:
            """List the links going out of a note.
            Args:
                note_id: The linking note
            """
            try:
                links = await service.get_outgoing_links(note_id)
                if not links:
                    return "No outgoing links."
                lines = [f"{len(links)} outgoing links:"]
                for link in links:
                    missing = "" if link.target_exists else " [missing]"
                    lines.append(
                        f"- {link.edge.canonical_title}{missing} "
                        f"(link ID: {link.edge.id}, target ID: {link.edge.target_note_id})"
                    )
                return "\n".join(lines)
            except Exception as e:
                return self.format_error_response(e)

        @self.mcp.tool(name="ng_graph_summary")
        async def ng_graph_summary(limit: int = 10) -> str:
            """Summarize the graph: most connected notes and orphans.
            Args:
                limit: How many of the most connected notes to list
            """
            try:
                summary = await service.get_graph_summary(limit)
                lines = ["Most connected:"]
                for node in summary.most_connected:
                    lines.append(
                        f"- {node.title}: {node.total} "
                        f"({node.incoming} in, {node.outgoing} out)"
                    )
                lines.append(f"Orphans ({len(summary.orphans)}):")
                for orphan in summary.orphans:
                    lines.append(f"- {orphan.title} (ID: {orphan.id})")
                return "\n".join(lines)
            except Exception as e:
                return self.format_error_response(e)

        @self.mcp.tool(name="ng_visual_subgraph")
        async def ng_visual_subgraph(max_nodes: Optional[int] = None) -> str:
            """Positioned nodes and edges for drawing the graph, as JSON.
            Args:
                max_nodes: Maximum number of nodes to include
            """
            try:
                subgraph = await service.get_visual_subgraph(max_nodes)
                return json.dumps(subgraph.model_dump(mode="json"), indent=2)
            except Exception as e:
                return self.format_error_response(e)

        @self.mcp.tool(name="ng_link_stats")
        async def ng_link_stats(window: str = "all") -> str:
            """Link statistics over a time window.
            Args:
                window: One of 7days, 30days, all
            """
            try:
                try:
                    time_window = TimeWindow(window)
                except ValueError:
                    return f"Invalid window: {window}. Valid windows are: {', '.join(w.value for w in TimeWindow)}"
                stats = await service.get_link_stats(time_window)
                growth = await service.get_growth(time_window)
                recent = await service.get_recent_links()
                lines = [
                    f"Notes: {stats.total_notes}",
                    f"Connections: {stats.total_connections}",
                    f"Average connections per note: {stats.average_connections_per_note:.2f}",
                    f"Orphaned notes: {stats.orphaned_notes}",
                ]
                if stats.most_connected:
                    lines.append(
                        f"Most connected: {stats.most_connected.title} "
                        f"({stats.most_connected.total})"
                    )
                for point in growth:
                    lines.append(f"{point.date.isoformat()}: {point.connections}")
                if recent:
                    lines.append("Recent links:")
                    for link in recent:
                        lines.append(f"- {link.source_title} -> {link.target_title}")
                return "\n".join(lines)
            except Exception as e:
                return self.format_error_response(e)

        @self.mcp.tool(name="ng_export_links")
        async def ng_export_links(dataset: str = "network", limit: int = 10) -> str:
            """Export link analytics as CSV.
            Args:
                dataset: network (per-note connection counts) or recent (latest links)
                limit: Number of recent links to export (recent only)
            """
            exporters = {
                "network": (export.NETWORK_STATS_FILENAME, service.export_network_stats_csv),
                "recent": (
                    export.RECENT_LINKS_FILENAME,
                    lambda: service.export_recent_links_csv(limit),
                ),
            }
            if dataset not in exporters:
                return f"Invalid dataset: {dataset}. Valid datasets are: {', '.join(exporters)}"
            filename, build = exporters[dataset]
            try:
                return f"{filename}\n\n{await build()}"
            except Exception as e:
                return self.format_error_response(e)

        @self.mcp.tool(name="ng_rename_note")
        async def ng_rename_note(note_id: str, title: str) -> str:
            """Rename a note. Existing links keep their recorded title unless
            rename propagation is enabled.
            Args:
                note_id: The note to rename
                title: The new title
            """
            try:
                _validate_input_lengths(title=title)
                note = await service.rename_note(note_id, title)
                return f"Note renamed to '{note.title}' (slug: {note.slug})"
            except Exception as e:
                return self.format_error_response(e)

        @self.mcp.tool(name="ng_delete_note")
        async def ng_delete_note(note_id: str) -> str:
            """Delete a note and the links going out of it.
            Args:
                note_id: The note to delete
            """
            try:
                await service.delete_note(note_id)
                return f"Note {note_id} deleted."
            except Exception as e:
                return self.format_error_response(e)

        @self.mcp.tool(name="ng_prune_links")
        async def ng_prune_links() -> str:
            """Remove links whose target note no longer exists."""
            try:
                count = await service.prune_dangling()
                return f"Pruned {count} dangling links."
            except Exception as e:
                return self.format_error_response(e)

        @self.mcp.tool(name="ng_status")
        def ng_status() -> str:
            """Operation metrics and recent notifications."""
            try:
                calls, failures = metrics.totals()
                lines = [
                    f"Uptime: {metrics.uptime_seconds():.0f}s",
                    f"Operations: {calls}",
                    f"Errors: {failures}",
                ]
                for name, stats in metrics.busiest():
                    line = (
                        f"- {name}: {stats.calls} calls, {stats.failures} failed, "
                        f"avg {stats.average_ms:.1f}ms"
                    )
                    if stats.last_error:
                        line += f" (last error: {stats.last_error})"
                    lines.append(line)
                recent = self.notifications.recent(10)
                if recent:
                    lines.append("Recent notifications:")
                    lines.extend(f"- [{n.level}] {n.message}" for n in recent)
                return "\n".join(lines)
            except Exception as e:
                return self.format_error_response(e)

    def run(self) -> None:
        """Run the MCP server."""
        self.mcp.run()
