"""The ``McpHub``: configured MCP servers addressed by name, connected on first use."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List

from agentic_coder.application.ports import McpToolResult
from agentic_coder.config.schema import MCPServerConfig
from agentic_coder.domain import ToolExecutionError
from agentic_coder.infrastructure.mcp.session import MCPSessionManager

logger = logging.getLogger(__name__)


class McpServerHub:
    def __init__(self, configs: List[MCPServerConfig]) -> None:
        self._sessions: Dict[str, MCPSessionManager] = {c.name: MCPSessionManager(c) for c in configs}
        self._locks: Dict[str, asyncio.Lock] = {}

    def server_names(self) -> List[str]:
        return list(self._sessions)

    async def _session(self, server_name: str) -> MCPSessionManager:
        session = self._sessions.get(server_name)
        if session is None:
            known = ", ".join(self._sessions) or "(none)"
            raise ToolExecutionError(f"Unknown MCP server {server_name!r}. Connected servers: {known}")
        lock = self._locks.setdefault(server_name, asyncio.Lock())
        async with lock:
            if not session.connected:
                logger.info("Connecting to MCP server %r", server_name)
                await session.connect()
        return session

    async def list_tools(self, server_name: str) -> List[Dict[str, Any]]:
        session = await self._session(server_name)
        return await session.list_tools()

    async def call_tool(self, server_name: str, tool_name: str, arguments: Dict[str, Any]) -> McpToolResult:
        session = await self._session(server_name)
        return await session.call_tool(tool_name, arguments)

    async def read_resource(self, server_name: str, uri: str) -> List[Dict[str, Any]]:
        session = await self._session(server_name)
        return await session.read_resource(uri)

    async def close(self) -> None:
        for name, session in self._sessions.items():
            if not session.connected:
                continue
            try:
                await session.disconnect()
            except Exception:
                logger.warning("Error disconnecting MCP server %r", name, exc_info=True)
