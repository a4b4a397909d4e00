"""MCP session manager: connect to one MCP server, call its tools and read its resources."""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack
from typing import Any, Dict, List

from agentic_coder.application.ports import McpToolResult
from agentic_coder.config.schema import MCPServerConfig

logger = logging.getLogger(__name__)

# Top-level imports with fallback so the module is importable even when the
# optional 'mcp' package is not installed.  Actual usage without the package
# installed will raise ImportError inside connect() with a clear message.
try:
    from mcp import ClientSession
    from mcp.client.stdio import stdio_client, StdioServerParameters
    from mcp.client.sse import sse_client
    _MCP_AVAILABLE = True
except ImportError:
    _MCP_AVAILABLE = False
    ClientSession = None       # type: ignore[assignment,misc]
    stdio_client = None        # type: ignore[assignment]
    sse_client = None          # type: ignore[assignment]
    StdioServerParameters = None  # type: ignore[assignment,misc]


def _to_dict(item: Any) -> Dict[str, Any]:
    if isinstance(item, dict):
        return item
    return item.model_dump(mode="json", exclude_none=True)


class MCPSessionManager:
    """Manages the lifecycle of one MCP server connection.

    Usage::

        mgr = MCPSessionManager(config)
        await mgr.connect()
        result = await mgr.call_tool("create_issue", {"title": "..."})
        contents = await mgr.read_resource("file:///README.md")
        await mgr.disconnect()
    """

    def __init__(self, config: MCPServerConfig) -> None:
        self._config = config
        self._session: Any = None
        self._stack: AsyncExitStack = AsyncExitStack()

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def connected(self) -> bool:
        return self._session is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open transport, enter ClientSession, and call initialize()."""
        if not _MCP_AVAILABLE:
            raise ImportError(
                "The 'mcp' package is required for MCP server support. "
                "Install with: pip install agentic-coder[mcp]"
            )

        if self._config.transport == "stdio":
            params = StdioServerParameters(
                command=self._config.command,
                args=self._config.args,
                env=self._config.env,
            )
            read, write = await self._stack.enter_async_context(
                stdio_client(params)
            )
        else:  # sse
            read, write = await self._stack.enter_async_context(
                sse_client(self._config.url, headers=self._config.headers)
            )

        self._session = await self._stack.enter_async_context(
            ClientSession(read, write)
        )
        await self._session.initialize()
        logger.debug(
            "MCPSessionManager: connected to %r (transport=%s)",
            self._config.name, self._config.transport,
        )

    async def disconnect(self) -> None:
        """Close the exit stack, terminating the server connection."""
        await self._stack.aclose()
        self._stack = AsyncExitStack()
        self._session = None
        logger.debug("MCPSessionManager: disconnected from %r", self._config.name)

    # ------------------------------------------------------------------
    # Tools and resources
    # ------------------------------------------------------------------

    async def list_tools(self) -> List[Dict[str, Any]]:
        """``{name, description, input_schema}`` for every tool on this server."""
        result = await self._session.list_tools()
        return [
            {
                "name": tool.name,
                "description": tool.description or "",
                "input_schema": tool.inputSchema or {"type": "object", "properties": {}},
            }
            for tool in result.tools
        ]

    async def call_tool(self, tool_name: str, args: Dict[str, Any]) -> McpToolResult:
        result = await asyncio.wait_for(
            self._session.call_tool(tool_name, args),
            timeout=self._config.timeout_s,
        )
        if result.isError:
            logger.warning(
                "MCPSessionManager: tool %r on server %r returned isError=True",
                tool_name, self._config.name,
            )
        return McpToolResult(
            content=[_to_dict(item) for item in result.content or []],
            is_error=bool(result.isError),
        )

    async def read_resource(self, uri: str) -> List[Dict[str, Any]]:
        result = await asyncio.wait_for(
            self._session.read_resource(uri),
            timeout=self._config.timeout_s,
        )
        return [_to_dict(item) for item in result.contents or []]
