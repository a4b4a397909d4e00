"""Mode registry and per-mode tool permissions."""
from __future__ import annotations

import pytest

from agentic_coder.application.modes import (
    get_all_modes,
    get_mode_by_slug,
    get_mode_name,
    is_tool_allowed_for_mode,
    missing_required_param,
    tools_for_mode,
    validate_tool_use,
)
from agentic_coder.application.tool_definitions import is_param_missing, tool_definitions
from agentic_coder.application.tools.dispatch import handler_for
from agentic_coder.config.schema import ModeConfig
from agentic_coder.domain import ToolName


def test_builtin_modes_and_custom_overrides():
    assert [m.slug for m in get_all_modes()] == ["code", "architect", "ask", "debug"]
    custom = [
        ModeConfig(slug="ask", name="Oracle", role_definition="r", groups=["read"]),
        ModeConfig(slug="docs", name="Docs", role_definition="r", groups=["read", "edit"]),
    ]
    modes = get_all_modes(custom)
    assert [m.slug for m in modes] == ["code", "architect", "ask", "debug", "docs"]
    assert get_mode_name("ask", custom) == "Oracle"
    assert get_mode_by_slug("docs", custom).groups == ["read", "edit"]
    assert get_mode_by_slug("nope") is None
    assert get_mode_name("nope") == "nope"


def test_tools_for_mode():
    ask_tools = tools_for_mode(get_mode_by_slug("ask"))
    assert ToolName.READ_FILE in ask_tools
    assert ToolName.WRITE_TO_FILE not in ask_tools
    assert ToolName.EXECUTE_COMMAND not in ask_tools
    assert ToolName.ATTEMPT_COMPLETION in ask_tools and ToolName.NEW_TASK in ask_tools

    code_tools = tools_for_mode(get_mode_by_slug("code"), diff_enabled=False)
    assert ToolName.APPLY_DIFF not in code_tools
    assert len(code_tools) == len(set(code_tools))


def test_every_tool_is_available_to_code_mode():
    assert set(tools_for_mode(get_mode_by_slug("code"))) == set(ToolName)
    assert len(ToolName) == 16


@pytest.mark.parametrize("tool, mode, allowed", [
    ("execute_command", "ask", False),
    ("execute_command", "code", True),
    ("attempt_completion", "ask", True),
    ("switch_mode", "missing-mode", True),
    ("read_file", "missing-mode", False),
])
def test_is_tool_allowed_for_mode(tool, mode, allowed):
    assert is_tool_allowed_for_mode(tool, mode) is allowed


def test_validate_tool_use():
    assert validate_tool_use("fly", "code", {}) == "Unknown tool: fly"
    assert validate_tool_use("execute_command", "ask", {}) == "Tool 'execute_command' is not allowed in mode 'ask'."
    assert validate_tool_use("write_to_file", "architect", {"path": "plan.md"}) is None
    error = validate_tool_use("apply_diff", "architect", {"path": "main.py"})
    assert error.startswith("This mode (Architect) can only edit files matching pattern")
    assert error.endswith("Got: main.py")
    # reading is not restricted by the edit pattern
    assert validate_tool_use("read_file", "architect", {"path": "main.py"}) is None


def test_missing_required_param():
    assert missing_required_param(ToolName.WRITE_TO_FILE, {"path": "a"}) == "content"
    assert missing_required_param(ToolName.WRITE_TO_FILE, {"path": "a", "content": "", "line_count": 0}) is None
    assert missing_required_param(ToolName.READ_FILE, {"path": "  "}) == "path"
    assert is_param_missing("operations", [])
    assert not is_param_missing("line_count", 0)


def test_tool_definitions_filter_and_schema():
    defs = tool_definitions([ToolName.READ_FILE, ToolName.ATTEMPT_COMPLETION])
    assert [d["name"] for d in defs] == ["read_file", "attempt_completion"]
    assert defs[0]["input_schema"]["required"] == ["path"]
    assert len(tool_definitions()) == 16


def test_every_tool_has_a_handler_and_a_definition():
    assert {d["name"] for d in tool_definitions()} == {t.value for t in ToolName}
    assert all(handler_for(t.value) is not None for t in ToolName)
    assert handler_for("browser_action") is None
