"""fetch_instructions: built-in how-to texts the model can pull on demand."""

from __future__ import annotations

from typing import Optional

from agentic_coder.application.tools.base import ToolCall

_CREATE_MODE = """\
Custom modes live in the "custom_modes" list of the agentic-coder config file
(CODER_CONFIG_PATH). Each entry has:

- slug: unique identifier, lowercase letters, digits and hyphens (e.g. "docs-writer")
- name: display name
- role_definition: who the assistant is in this mode
- groups: tool groups the mode may use, any of "read", "edit", "command", "mcp", "modes"
- edit_file_regex (optional): restricts the "edit" group to matching paths (e.g. "\\\\.md$")
- custom_instructions (optional): extra instructions appended to the system prompt

A custom mode whose slug matches a built-in mode (code, architect, ask, debug)
replaces it. Example:

{
  "slug": "docs-writer",
  "name": "Docs Writer",
  "role_definition": "You are a technical writer.",
  "groups": ["read", "edit"],
  "edit_file_regex": "\\\\.md$"
}
"""

_CREATE_MCP_SERVER = """\
MCP servers are declared in the "mcp_servers" list of the agentic-coder config
file. Each entry has:

- name: unique server name, used as server_name in use_mcp_tool and access_mcp_resource
- transport: "stdio" (spawn a local process) or "sse" (connect to a URL)
- command / args / env: for stdio servers, the executable and its arguments
- url / headers: for sse servers
- timeout_s: per-call timeout

To build a new stdio server in Python, install the "mcp" package and expose tools
with the FastMCP helper:

    from mcp.server.fastmcp import FastMCP

    mcp = FastMCP("weather")

    @mcp.tool()
    async def forecast(city: str) -> str:
        \"\"\"Return the forecast for a city.\"\"\"
        ...

    if __name__ == "__main__":
        mcp.run()

Then register it:

{"name": "weather", "transport": "stdio", "command": "python", "args": ["weather.py"]}
"""

INSTRUCTIONS = {
    "create_mode": _CREATE_MODE,
    "create_mcp_server": _CREATE_MCP_SERVER,
}


def get_instructions(task: str) -> Optional[str]:
    return INSTRUCTIONS.get(task.strip())


async def fetch_instructions(call: ToolCall) -> None:
    task = call.param("task")
    if call.partial:
        return

    try:
        if not task:
            await call.missing_param("task")
            return
        call.record_success()
        text = get_instructions(task)
        if text is None:
            await call.tool_error(f"Could not fetch instructions for task: {task}")
            return
        call.push_tool_result(text)
    except Exception as exc:
        await call.handle_error("fetching instructions", exc)
