"""Mode registry: built-in modes, custom overrides and per-mode tool permissions."""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Sequence

from agentic_coder.application.tool_definitions import is_param_missing, required_params
from agentic_coder.config.schema import ModeConfig
from agentic_coder.domain import FILE_MUTATING_TOOLS, ToolName

TOOL_GROUPS: Dict[str, List[ToolName]] = {
    "read": [
        ToolName.READ_FILE,
        ToolName.LIST_FILES,
        ToolName.LIST_CODE_DEFINITION_NAMES,
        ToolName.SEARCH_FILES,
    ],
    "edit": [
        ToolName.WRITE_TO_FILE,
        ToolName.APPLY_DIFF,
        ToolName.INSERT_CONTENT,
        ToolName.SEARCH_AND_REPLACE,
    ],
    "command": [ToolName.EXECUTE_COMMAND],
    "mcp": [ToolName.USE_MCP_TOOL, ToolName.ACCESS_MCP_RESOURCE],
    "modes": [ToolName.SWITCH_MODE, ToolName.NEW_TASK],
}

ALWAYS_AVAILABLE_TOOLS: List[ToolName] = [
    ToolName.ASK_FOLLOWUP_QUESTION,
    ToolName.ATTEMPT_COMPLETION,
    ToolName.SWITCH_MODE,
    ToolName.NEW_TASK,
    ToolName.FETCH_INSTRUCTIONS,
]

BUILTIN_MODES: List[ModeConfig] = [
    ModeConfig(
        slug="code",
        name="Code",
        role_definition=(
            "You are a highly skilled software engineer with extensive knowledge in many "
            "programming languages, frameworks, design patterns, and best practices."
        ),
        groups=["read", "edit", "command", "mcp"],
    ),
    ModeConfig(
        slug="architect",
        name="Architect",
        role_definition=(
            "You are an experienced technical leader who is inquisitive and an excellent "
            "planner. You gather context and write a detailed plan before any code is written."
        ),
        groups=["read", "edit", "mcp"],
        edit_file_regex=r"\.md$",
    ),
    ModeConfig(
        slug="ask",
        name="Ask",
        role_definition=(
            "You are a knowledgeable technical assistant focused on answering questions "
            "about software development, technology, and related topics."
        ),
        groups=["read", "mcp"],
    ),
    ModeConfig(
        slug="debug",
        name="Debug",
        role_definition=(
            "You are an expert software debugger specializing in systematic problem "
            "diagnosis and resolution."
        ),
        groups=["read", "edit", "command", "mcp"],
    ),
]

DEFAULT_MODE_SLUG = "code"


def get_all_modes(custom_modes: Optional[Sequence[ModeConfig]] = None) -> List[ModeConfig]:
    """Built-ins in order, each replaced by a custom mode of the same slug, then new customs."""
    custom = list(custom_modes or [])
    by_slug = {m.slug: m for m in custom}
    modes = [by_slug.pop(m.slug, m) for m in BUILTIN_MODES]
    modes.extend(m for m in custom if m.slug in by_slug)
    return modes


def get_mode_by_slug(slug: Optional[str], custom_modes: Optional[Sequence[ModeConfig]] = None) -> Optional[ModeConfig]:
    if not slug:
        return None
    for mode in get_all_modes(custom_modes):
        if mode.slug == slug:
            return mode
    return None


def get_mode_name(slug: Optional[str], custom_modes: Optional[Sequence[ModeConfig]] = None) -> str:
    mode = get_mode_by_slug(slug, custom_modes)
    return mode.name if mode else (slug or "unknown")


def tools_for_mode(mode: ModeConfig, diff_enabled: bool = True) -> List[ToolName]:
    tools: List[ToolName] = []
    for group in mode.groups:
        for tool in TOOL_GROUPS.get(group, []):
            if tool not in tools:
                tools.append(tool)
    for tool in ALWAYS_AVAILABLE_TOOLS:
        if tool not in tools:
            tools.append(tool)
    if not diff_enabled and ToolName.APPLY_DIFF in tools:
        tools.remove(ToolName.APPLY_DIFF)
    return tools


def is_tool_allowed_for_mode(
    tool: str,
    mode_slug: str,
    custom_modes: Optional[Sequence[ModeConfig]] = None,
) -> bool:
    if tool in (t.value for t in ALWAYS_AVAILABLE_TOOLS):
        return True
    mode = get_mode_by_slug(mode_slug, custom_modes)
    if mode is None:
        return False
    return tool in (t.value for t in tools_for_mode(mode))


def validate_tool_use(
    tool: str,
    mode_slug: str,
    params: Dict[str, Any],
    custom_modes: Optional[Sequence[ModeConfig]] = None,
) -> Optional[str]:
    """Return an error message when the call may not run in this mode, else None.

    Covers unknown tools, tools outside the mode's groups and the mode's edit
    file restriction.  Missing parameters are reported separately by
    :func:`missing_required_param`.
    """
    try:
        name = ToolName(tool)
    except ValueError:
        return f"Unknown tool: {tool}"
    if not is_tool_allowed_for_mode(tool, mode_slug, custom_modes):
        return f"Tool '{tool}' is not allowed in mode '{mode_slug}'."
    mode = get_mode_by_slug(mode_slug, custom_modes)
    if mode is not None and mode.edit_file_regex and name in FILE_MUTATING_TOOLS:
        path = params.get("path")
        if isinstance(path, str) and path and not re.search(mode.edit_file_regex, path):
            return (
                f"This mode ({mode.name}) can only edit files matching pattern: "
                f"{mode.edit_file_regex}. Got: {path}"
            )
    return None


def missing_required_param(tool: ToolName, params: Dict[str, Any]) -> Optional[str]:
    for name in required_params(tool):
        if is_param_missing(name, params.get(name)):
            return name
    return None
