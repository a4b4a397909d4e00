"""Tool handlers and the dispatch table that routes tool blocks to them."""

from .base import ToolCall, ToolEnvironment
from .dispatch import TOOL_HANDLERS, ToolDispatcher, handler_for

__all__ = ["TOOL_HANDLERS", "ToolCall", "ToolDispatcher", "ToolEnvironment", "handler_for"]
