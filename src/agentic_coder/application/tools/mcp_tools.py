"""MCP tools: use_mcp_tool and access_mcp_resource."""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable

from agentic_coder.application import responses
from agentic_coder.application.tools.base import ToolCall


def format_tool_content(items: Iterable[Dict[str, Any]], is_error: bool = False) -> str:
    parts = []
    for item in items:
        if item.get("type") == "text":
            parts.append(item.get("text") or "")
        elif item.get("type") == "resource":
            resource = {k: v for k, v in (item.get("resource") or {}).items() if k != "blob"}
            parts.append(json.dumps(resource, indent=2))
    text = "\n\n".join(p for p in parts if p)
    if not text:
        return "(No response)"
    return ("Error:\n" if is_error else "") + text


def format_resource_contents(contents: Iterable[Dict[str, Any]]) -> str:
    text = "\n\n".join(c["text"] for c in contents if c.get("text"))
    return text or "(Empty response)"


def _mcp_message(kind: str, **fields: Any) -> str:
    payload = {"type": kind}
    payload.update({k: v for k, v in fields.items() if v is not None})
    return json.dumps(payload)


async def use_mcp_tool(call: ToolCall) -> None:
    server_name = call.param("server_name")
    tool_name = call.param("tool_name")
    arguments = call.param("arguments")

    if call.partial:
        await call.show_partial("use_mcp_server", _mcp_message(
            "use_mcp_tool",
            serverName=call.remove_closing_tag("server_name", server_name) or "",
            toolName=call.remove_closing_tag("tool_name", tool_name),
            arguments=call.remove_closing_tag("arguments", arguments),
        ))
        return

    try:
        if not server_name:
            await call.missing_param("server_name")
            return
        if not tool_name:
            await call.missing_param("tool_name")
            return

        parsed: Dict[str, Any] = {}
        if arguments:
            try:
                parsed = json.loads(arguments)
            except ValueError:
                parsed = None
            if not isinstance(parsed, dict):
                call.record_mistake()
                await call.env.say("error", f"Tried to use {tool_name} with an invalid JSON argument. Retrying...")
                call.push_tool_result(responses.tool_error(
                    responses.invalid_mcp_tool_argument_error(server_name, tool_name)
                ))
                return
        call.record_success()

        approved = await call.ask_approval("use_mcp_server", _mcp_message(
            "use_mcp_tool", serverName=server_name, toolName=tool_name, arguments=arguments,
        ))
        if not approved:
            return

        hub = call.env.mcp_hub
        if hub is None:
            await call.tool_error("No MCP servers are configured.")
            return
        await call.env.say("mcp_server_request_started", f"Requesting {tool_name} from {server_name}...")
        result = await hub.call_tool(server_name, tool_name, parsed)
        pretty = format_tool_content(result.content, result.is_error)
        await call.env.say("mcp_server_response", pretty)
        call.push_tool_result(responses.tool_result(pretty))
    except Exception as exc:
        await call.handle_error("executing MCP tool", exc)


async def access_mcp_resource(call: ToolCall) -> None:
    server_name = call.param("server_name")
    uri = call.param("uri")

    if call.partial:
        await call.show_partial("use_mcp_server", _mcp_message(
            "access_mcp_resource",
            serverName=call.remove_closing_tag("server_name", server_name) or "",
            uri=call.remove_closing_tag("uri", uri),
        ))
        return

    try:
        if not server_name:
            await call.missing_param("server_name")
            return
        if not uri:
            await call.missing_param("uri")
            return
        call.record_success()

        approved = await call.ask_approval("use_mcp_server", _mcp_message(
            "access_mcp_resource", serverName=server_name, uri=uri,
        ))
        if not approved:
            return

        hub = call.env.mcp_hub
        if hub is None:
            await call.tool_error("No MCP servers are configured.")
            return
        await call.env.say("mcp_server_request_started", f"Accessing resource {uri} from {server_name}...")
        contents = await hub.read_resource(server_name, uri)
        pretty = format_resource_contents(contents)
        await call.env.say("mcp_server_response", pretty)
        call.push_tool_result(responses.tool_result(pretty))
    except Exception as exc:
        await call.handle_error("accessing MCP resource", exc)
