"""MCP (Model Context Protocol) support for agentic-coder.

This package requires the optional ``mcp`` dependency::

    pip install agentic-coder[mcp]

Exports:
    MCPSessionManager  - manages one MCP server connection
    McpServerHub       - the configured servers, addressed by name
"""

from agentic_coder.infrastructure.mcp.session import MCPSessionManager
from agentic_coder.infrastructure.mcp.hub import McpServerHub

__all__ = ["MCPSessionManager", "McpServerHub"]
