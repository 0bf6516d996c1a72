"""MCP server surface for the notegraph engine."""
