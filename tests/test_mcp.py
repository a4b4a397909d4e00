"""MCP session manager, server hub and the two MCP tools.

No real MCP server is needed: the transport and ``ClientSession`` are patched
on the session module.
"""
from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from agentic_coder.application.ports import McpToolResult
from agentic_coder.application.task import Task
from agentic_coder.config.schema import MCPServerConfig
from agentic_coder.domain import ToolExecutionError
from agentic_coder.infrastructure.mcp import McpServerHub, MCPSessionManager
from agentic_coder.infrastructure.mcp import session as session_module

from conftest import AutoResponder, ScriptedApi, asks, completion, response, says, tool_block


def _stdio_config(name: str = "fs") -> MCPServerConfig:
    return MCPServerConfig(name=name, transport="stdio", command="npx", args=["-y", "server"])


def _sse_config(name: str = "remote") -> MCPServerConfig:
    return MCPServerConfig(name=name, transport="sse", url="http://localhost:3000/sse")


@asynccontextmanager
async def _noop_transport_cm(*_args, **_kwargs):
    yield MagicMock(), MagicMock()


@asynccontextmanager
async def _session_cm(session_mock):
    yield session_mock


def _tool(name: str, description=None, schema=None) -> MagicMock:
    tool = MagicMock()
    tool.name = name
    tool.description = description
    tool.inputSchema = schema
    return tool


# ---------------------------------------------------------------------------
# MCPSessionManager
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_connect_stdio_initializes_session():
    session_mock = AsyncMock()
    with (
        patch.object(session_module, "StdioServerParameters", MagicMock()),
        patch.object(session_module, "stdio_client", side_effect=_noop_transport_cm) as stdio,
        patch.object(session_module, "ClientSession", side_effect=lambda r, w: _session_cm(session_mock)),
        patch.object(session_module, "_MCP_AVAILABLE", True),
    ):
        mgr = MCPSessionManager(_stdio_config())
        await mgr.connect()

    stdio.assert_called_once()
    session_mock.initialize.assert_awaited_once()
    assert mgr.connected
    await mgr.disconnect()
    assert not mgr.connected


@pytest.mark.asyncio
async def test_connect_sse_passes_url_and_headers():
    session_mock = AsyncMock()
    with (
        patch.object(session_module, "sse_client", side_effect=_noop_transport_cm) as sse,
        patch.object(session_module, "ClientSession", side_effect=lambda r, w: _session_cm(session_mock)),
        patch.object(session_module, "_MCP_AVAILABLE", True),
    ):
        await MCPSessionManager(_sse_config()).connect()

    sse.assert_called_once_with("http://localhost:3000/sse", headers={})


@pytest.mark.asyncio
async def test_connect_without_mcp_package_raises_import_error():
    with patch.object(session_module, "_MCP_AVAILABLE", False):
        with pytest.raises(ImportError, match="mcp.*package"):
            await MCPSessionManager(_stdio_config()).connect()


@pytest.mark.asyncio
async def test_call_tool_read_resource_and_list_tools():
    mgr = MCPSessionManager(_stdio_config())
    session_mock = AsyncMock()
    item = MagicMock()
    item.model_dump.return_value = {"type": "text", "text": "from model"}
    session_mock.call_tool.return_value = MagicMock(isError=True, content=[{"type": "text", "text": "raw"}, item])
    session_mock.read_resource.return_value = MagicMock(contents=[{"uri": "file:///a", "text": "hello"}])
    session_mock.list_tools.return_value = MagicMock(tools=[
        _tool("search", "Search files", {"type": "object", "properties": {"q": {"type": "string"}}}),
        _tool("bare"),
    ])
    mgr._session = session_mock

    result = await mgr.call_tool("search", {"q": "x"})
    assert result == McpToolResult(
        content=[{"type": "text", "text": "raw"}, {"type": "text", "text": "from model"}],
        is_error=True,
    )
    session_mock.call_tool.assert_awaited_once_with("search", {"q": "x"})
    assert await mgr.read_resource("file:///a") == [{"uri": "file:///a", "text": "hello"}]

    tools = await mgr.list_tools()
    assert tools[0]["input_schema"]["properties"]["q"]["type"] == "string"
    assert tools[1] == {"name": "bare", "description": "", "input_schema": {"type": "object", "properties": {}}}


@pytest.mark.asyncio
async def test_call_tool_times_out():
    mgr = MCPSessionManager(MCPServerConfig(name="slow", command="x", timeout_s=0.01))

    async def never(*_args):
        await asyncio.sleep(1)

    mgr._session = MagicMock(call_tool=never)
    with pytest.raises(asyncio.TimeoutError):
        await mgr.call_tool("t", {})


# ---------------------------------------------------------------------------
# McpServerHub
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_hub_connects_lazily_once_per_server():
    connects = []
    session_mock = AsyncMock()
    session_mock.call_tool.return_value = MagicMock(isError=False, content=[])

    async def fake_connect(self):
        connects.append(self.name)
        self._session = session_mock

    hub = McpServerHub([_stdio_config("fs"), _sse_config("remote")])
    assert hub.server_names() == ["fs", "remote"]
    with patch.object(MCPSessionManager, "connect", fake_connect):
        await asyncio.gather(hub.call_tool("fs", "a", {}), hub.call_tool("fs", "b", {}))
    assert connects == ["fs"]

    with patch.object(MCPSessionManager, "disconnect", AsyncMock()) as disconnect:
        await hub.close()
    disconnect.assert_awaited_once()


@pytest.mark.asyncio
async def test_hub_rejects_unknown_server():
    hub = McpServerHub([_stdio_config("fs")])
    with pytest.raises(ToolExecutionError, match="Unknown MCP server 'git'. Connected servers: fs"):
        await hub.read_resource("git", "x://y")


# ---------------------------------------------------------------------------
# use_mcp_tool / access_mcp_resource through the request loop
# ---------------------------------------------------------------------------

class FakeHub:
    def __init__(self) -> None:
        self.calls = []

    def server_names(self):
        return ["docs"]

    async def call_tool(self, server_name, tool_name, arguments):
        self.calls.append((server_name, tool_name, arguments))
        return McpToolResult(content=[{"type": "text", "text": "42 open issues"}])

    async def read_resource(self, server_name, uri):
        self.calls.append((server_name, uri))
        return [{"uri": uri, "text": "# Readme"}]


def _result_text(call) -> str:
    block = next(b for b in call["messages"][-1]["content"] if b.get("type") == "tool_result")
    return "\n".join(c["text"] for c in block["content"] if c.get("type") == "text")


async def _run(task: Task) -> AutoResponder:
    responder = AutoResponder(lambda: [task]).start()
    try:
        await asyncio.wait_for(task.start_task("Use the docs server"), 5)
    finally:
        await responder.stop()
    return responder


@pytest.mark.asyncio
async def test_use_mcp_tool_calls_server_after_approval(make_services):
    hub = FakeHub()
    api = ScriptedApi([
        response(tool_block("use_mcp_tool", {"server_name": "docs", "tool_name": "count", "arguments": '{"repo": "x"}'})),
        completion(),
    ])
    task = Task(make_services(api, mcp_hub=hub))
    responder = await _run(task)

    assert responder.asked_types() == ["use_mcp_server", "completion_result"]
    approval = json.loads(asks(task, "use_mcp_server")[0].text)
    assert approval == {"type": "use_mcp_tool", "serverName": "docs", "toolName": "count", "arguments": '{"repo": "x"}'}
    assert hub.calls == [("docs", "count", {"repo": "x"})]
    assert says(task, "mcp_server_response")[0].text == "42 open issues"
    assert "42 open issues" in _result_text(api.calls[1])
    assert "docs" in api.calls[0]["system_prompt"]


@pytest.mark.asyncio
async def test_use_mcp_tool_with_invalid_json_is_a_mistake(make_services):
    hub = FakeHub()
    counts = []
    api = ScriptedApi([
        response(tool_block("use_mcp_tool", {"server_name": "docs", "tool_name": "count", "arguments": "{bad"})),
        completion(),
    ])
    task = Task(make_services(api, mcp_hub=hub))
    api.on_call = lambda i: counts.append(task.consecutive_mistake_count)
    responder = await _run(task)

    assert counts == [0, 1]
    assert hub.calls == []
    assert responder.asked_types() == ["completion_result"]
    assert "Invalid JSON argument used with docs for count" in _result_text(api.calls[1])


@pytest.mark.asyncio
async def test_access_mcp_resource(make_services):
    hub = FakeHub()
    api = ScriptedApi([
        response(tool_block("access_mcp_resource", {"server_name": "docs", "uri": "docs://readme"})),
        completion(),
    ])
    task = Task(make_services(api, mcp_hub=hub))
    await _run(task)

    assert hub.calls == [("docs", "docs://readme")]
    assert "# Readme" in _result_text(api.calls[1])


@pytest.mark.asyncio
async def test_mcp_tool_without_servers_reports_error(make_services):
    api = ScriptedApi([
        response(tool_block("use_mcp_tool", {"server_name": "docs", "tool_name": "count"})),
        completion(),
    ])
    task = Task(make_services(api))
    await _run(task)
    assert "No MCP servers are configured." in _result_text(api.calls[1])
