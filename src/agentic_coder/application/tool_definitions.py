"""JSON-schema definitions of every tool, in Anthropic ``tools`` shape.

The OpenAI-compatible transport converts these to function definitions.  The
``required`` lists double as the presenter's parameter validation table.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from agentic_coder.domain import ToolName


def _string(description: str) -> Dict[str, Any]:
    return {"type": "string", "description": description}


def _integer(description: str) -> Dict[str, Any]:
    return {"type": "integer", "description": description}


_PATH = _string("Path relative to the workspace directory.")

_DEFINITIONS: Dict[ToolName, Dict[str, Any]] = {
    ToolName.WRITE_TO_FILE: {
        "description": (
            "Write a complete file. Overwrites the file if it exists, creates it (and any "
            "missing directories) otherwise. Always provide the FULL content; never elide "
            "parts with placeholder comments."
        ),
        "properties": {
            "path": _PATH,
            "content": _string("The complete file content."),
            "line_count": _integer("Number of lines in content, including empty lines."),
        },
        "required": ["path", "content", "line_count"],
    },
    ToolName.APPLY_DIFF: {
        "description": (
            "Replace existing code with one or more SEARCH/REPLACE blocks:\n"
            "<<<<<<< SEARCH\n:start_line:N\n-------\n[exact existing lines]\n=======\n"
            "[replacement lines]\n>>>>>>> REPLACE\n"
            "The SEARCH part must match the current file content exactly, including whitespace."
        ),
        "properties": {
            "path": _PATH,
            "diff": _string("One or more SEARCH/REPLACE blocks."),
            "start_line": _integer("Optional first line of the region the diff applies to."),
            "end_line": _integer("Optional last line of the region the diff applies to."),
        },
        "required": ["path", "diff"],
    },
    ToolName.INSERT_CONTENT: {
        "description": (
            "Insert blocks of lines into a file without touching existing lines. Each "
            "operation inserts its content before the given 1-based line (0 appends)."
        ),
        "properties": {
            "path": _PATH,
            "operations": {
                "type": "array",
                "description": "Insert operations.",
                "items": {
                    "type": "object",
                    "properties": {
                        "start_line": {"type": "integer"},
                        "content": {"type": "string"},
                    },
                    "required": ["start_line", "content"],
                },
            },
        },
        "required": ["path", "operations"],
    },
    ToolName.SEARCH_AND_REPLACE: {
        "description": "Find and replace text or regex patterns in a file, optionally within a line range.",
        "properties": {
            "path": _PATH,
            "operations": {
                "type": "array",
                "description": "Search/replace operations, applied in order.",
                "items": {
                    "type": "object",
                    "properties": {
                        "search": {"type": "string"},
                        "replace": {"type": "string"},
                        "start_line": {"type": "integer"},
                        "end_line": {"type": "integer"},
                        "use_regex": {"type": "boolean"},
                        "ignore_case": {"type": "boolean"},
                        "regex_flags": {"type": "string"},
                    },
                    "required": ["search", "replace"],
                },
            },
        },
        "required": ["path", "operations"],
    },
    ToolName.READ_FILE: {
        "description": "Read a file. Output is prefixed with line numbers.",
        "properties": {
            "path": _PATH,
            "start_line": _integer("Optional 1-based first line to read."),
            "end_line": _integer("Optional 1-based last line to read (inclusive)."),
        },
        "required": ["path"],
    },
    ToolName.LIST_FILES: {
        "description": "List files and directories in a directory.",
        "properties": {
            "path": _PATH,
            "recursive": {"type": "boolean", "description": "List recursively."},
        },
        "required": ["path"],
    },
    ToolName.LIST_CODE_DEFINITION_NAMES: {
        "description": "List top-level definitions (classes, functions, methods) in a file or directory.",
        "properties": {"path": _PATH},
        "required": ["path"],
    },
    ToolName.SEARCH_FILES: {
        "description": "Regex search across files in a directory, with surrounding context lines.",
        "properties": {
            "path": _PATH,
            "regex": _string("Python regular expression."),
            "file_pattern": _string("Optional glob filter, e.g. '*.py'."),
        },
        "required": ["path", "regex"],
    },
    ToolName.EXECUTE_COMMAND: {
        "description": "Run a shell command in the workspace (or in cwd).",
        "properties": {
            "command": _string("The command line to execute."),
            "cwd": _string("Optional working directory, relative to the workspace."),
        },
        "required": ["command"],
    },
    ToolName.ASK_FOLLOWUP_QUESTION: {
        "description": "Ask the user a question when information is missing.",
        "properties": {
            "question": _string("The question."),
            "follow_up": _string("Optional suggested answers."),
        },
        "required": ["question"],
    },
    ToolName.ATTEMPT_COMPLETION: {
        "description": "Present the final result once the task is complete.",
        "properties": {
            "result": _string("Final result description."),
            "command": _string("Optional command that demonstrates the result."),
        },
        "required": ["result"],
    },
    ToolName.USE_MCP_TOOL: {
        "description": "Call a tool on a connected MCP server.",
        "properties": {
            "server_name": _string("MCP server name."),
            "tool_name": _string("Tool name on that server."),
            "arguments": _string("JSON object with the tool arguments."),
        },
        "required": ["server_name", "tool_name"],
    },
    ToolName.ACCESS_MCP_RESOURCE: {
        "description": "Read a resource from a connected MCP server.",
        "properties": {
            "server_name": _string("MCP server name."),
            "uri": _string("Resource URI."),
        },
        "required": ["server_name", "uri"],
    },
    ToolName.SWITCH_MODE: {
        "description": "Ask to switch the working mode.",
        "properties": {
            "mode_slug": _string("Target mode slug."),
            "reason": _string("Why the switch is needed."),
        },
        "required": ["mode_slug"],
    },
    ToolName.NEW_TASK: {
        "description": "Start a sub-task in the given mode; this task pauses until it completes.",
        "properties": {
            "mode": _string("Mode slug for the sub-task."),
            "message": _string("Instructions for the sub-task."),
        },
        "required": ["mode", "message"],
    },
    ToolName.FETCH_INSTRUCTIONS: {
        "description": "Fetch detailed instructions for a task type: create_mcp_server or create_mode.",
        "properties": {"task": _string("Instruction topic.")},
        "required": ["task"],
    },
}

# Parameters that may legitimately be empty strings.
ALLOW_EMPTY_PARAMS = frozenset({"content"})


def required_params(tool: ToolName) -> List[str]:
    return list(_DEFINITIONS[tool]["required"])


def is_param_missing(name: str, value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip() and name not in ALLOW_EMPTY_PARAMS
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False


def tool_definitions(allowed: Optional[List[ToolName]] = None) -> List[Dict[str, Any]]:
    """Definitions for ``allowed`` tools (all tools when None), in enum order."""
    names = [t for t in ToolName if allowed is None or t in allowed]
    return [
        {
            "name": t.value,
            "description": _DEFINITIONS[t]["description"],
            "input_schema": {
                "type": "object",
                "properties": _DEFINITIONS[t]["properties"],
                "required": _DEFINITIONS[t]["required"],
            },
        }
        for t in names
    ]


_undefined = set(ToolName) - set(_DEFINITIONS)
if _undefined:
    raise RuntimeError(f"tools without a definition: {sorted(t.value for t in _undefined)}")
