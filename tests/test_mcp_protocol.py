"""Protocol integration tests for the notegraph MCP server.

These go through the full JSON-RPC stack with a real ClientSession
connected to a real FastMCP server.
"""

import json

import pytest

from tests.conftest_protocol import mcp_client  # noqa: F401 - fixture used by pytest
from tests.conftest_protocol import mcp_server  # noqa: F401 - fixture used by pytest
from tests.conftest_protocol import (  # noqa: F401 - fixture used by pytest
    extract_id,
    get_text,
    protocol_config,
)
from tests.test_mcp_server import EXPECTED_TOOLS


class TestProtocolDiscovery:
    @pytest.mark.anyio
    async def test_list_tools(self, mcp_client):
        tools_result = await mcp_client.list_tools()
        assert {t.name for t in tools_result.tools} == EXPECTED_TOOLS

    @pytest.mark.anyio
    async def test_create_link_schema(self, mcp_client):
        tools_result = await mcp_client.list_tools()
        tool = next(t for t in tools_result.tools if t.name == "ng_create_link")
        assert tool.inputSchema.get("required", []) == ["source_note_id"]


class TestProtocolWorkflow:
    @pytest.mark.anyio
    async def test_reference_to_backlink(self, mcp_client):
        source = extract_id(await mcp_client.call_tool("ng_create_note", {"title": "Daily Log"}))
        target = extract_id(await mcp_client.call_tool("ng_create_note", {"title": "Project X"}))

        detected = get_text(
            await mcp_client.call_tool(
                "ng_detect_reference", {"text": "Worked on [[Proj", "cursor": 16}
            )
        )
        assert "query='Proj'" in detected

        resolved = get_text(
            await mcp_client.call_tool(
                "ng_resolve_reference", {"query": "Proj", "note_id": source}
            )
        )
        assert resolved.startswith("1. Project X")

        await mcp_client.call_tool(
            "ng_create_link", {"source_note_id": source, "target_note_id": target}
        )
        backlinks = get_text(await mcp_client.call_tool("ng_get_backlinks", {"note_id": target}))
        assert "Daily Log" in backlinks

        visual = json.loads(get_text(await mcp_client.call_tool("ng_visual_subgraph", {})))
        assert {n["id"] for n in visual["nodes"]} == {source, target}
