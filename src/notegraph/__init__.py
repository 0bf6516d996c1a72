"""
notegraph - Bracket-reference resolution and backlink graph engine.
This package turns free-text [[Title]] references typed inside notes into a
persisted, owner-scoped directed graph of note-to-note links, keeps it
consistent under optimistic user edits, and summarizes it into backlink
lists, connection rankings, orphan lists and bounded network layouts.

The engine is exposed as a Model Context Protocol (MCP) server.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("notegraph-mcp")
except PackageNotFoundError:
    __version__ = "0.3.0"
