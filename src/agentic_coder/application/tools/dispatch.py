"""Tool dispatch table: one handler per :class:`ToolName`.

The table is checked for exhaustiveness at import time, so adding a member to
``ToolName`` without a handler fails fast.  Unknown names never reach a
handler; they come back as an ``Unknown tool`` error result.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, Optional

from agentic_coder.application import responses
from agentic_coder.application.tools import command, file_edit, instructions, interaction, mcp_tools, mode_tools, read
from agentic_coder.application.tools.base import (
    AskApproval,
    HandleError,
    PushToolResult,
    RemoveClosingTag,
    ToolCall,
    ToolEnvironment,
)
from agentic_coder.domain import ToolExecutionResult, ToolName, ToolUse
from agentic_coder.infrastructure.telemetry import get_tracer

logger = logging.getLogger(__name__)

ToolHandler = Callable[[ToolCall], Awaitable[None]]

TOOL_HANDLERS: Dict[ToolName, ToolHandler] = {
    ToolName.WRITE_TO_FILE: file_edit.write_to_file,
    ToolName.APPLY_DIFF: file_edit.apply_diff,
    ToolName.INSERT_CONTENT: file_edit.insert_content,
    ToolName.SEARCH_AND_REPLACE: file_edit.search_and_replace,
    ToolName.READ_FILE: read.read_file,
    ToolName.LIST_FILES: read.list_files,
    ToolName.LIST_CODE_DEFINITION_NAMES: read.list_code_definition_names,
    ToolName.SEARCH_FILES: read.search_files,
    ToolName.EXECUTE_COMMAND: command.execute_command,
    ToolName.ASK_FOLLOWUP_QUESTION: interaction.ask_followup_question,
    ToolName.ATTEMPT_COMPLETION: interaction.attempt_completion,
    ToolName.USE_MCP_TOOL: mcp_tools.use_mcp_tool,
    ToolName.ACCESS_MCP_RESOURCE: mcp_tools.access_mcp_resource,
    ToolName.SWITCH_MODE: mode_tools.switch_mode,
    ToolName.NEW_TASK: mode_tools.new_task,
    ToolName.FETCH_INSTRUCTIONS: instructions.fetch_instructions,
}

_missing = set(ToolName) - set(TOOL_HANDLERS)
if _missing:
    raise RuntimeError(f"tools without a handler: {sorted(t.value for t in _missing)}")


def handler_for(name: str) -> Optional[ToolHandler]:
    try:
        return TOOL_HANDLERS[ToolName(name)]
    except ValueError:
        return None


class ToolDispatcher:
    """Runs tool blocks for one task.

    The per-path diff failure counters live here because they outlive a
    single call; the general mistake counter is owned by the task and passed
    in and out.
    """

    def __init__(self, env: ToolEnvironment) -> None:
        self.env = env
        self.diff_mistakes: Dict[str, int] = {}

    async def execute_tool_block(
        self,
        block: ToolUse,
        *,
        task_id: str,
        is_sub_task: bool,
        consecutive_mistake_count: int,
        push_tool_result: PushToolResult,
        handle_error: HandleError,
        remove_closing_tag: RemoveClosingTag,
        ask_approval: AskApproval,
    ) -> ToolExecutionResult:
        call = ToolCall(
            block=block,
            task_id=task_id,
            is_sub_task=is_sub_task,
            env=self.env,
            push_tool_result=push_tool_result,
            handle_error=handle_error,
            remove_closing_tag=remove_closing_tag,
            approval_callback=ask_approval,
            consecutive_mistake_count=consecutive_mistake_count,
            diff_mistakes=self.diff_mistakes,
        )
        handler = handler_for(block.name)
        if handler is None:
            await self.env.say("error", f"Unknown tool: {block.name}")
            push_tool_result(responses.tool_error(f"Unknown tool: {block.name}"))
            return call.result()

        tracer = get_tracer()
        with tracer.start_as_current_span("coder.tool") as span:
            span.set_attribute("tool.name", block.name)
            span.set_attribute("tool.partial", block.partial)
            try:
                await handler(call)
            except Exception as exc:  # handlers route their own errors; this is the backstop
                span.record_exception(exc)
                await handle_error(f"executing tool {block.name}", exc)
            span.set_attribute("tool.rejected", call.did_reject_tool)
        if not block.partial:
            logger.debug(
                "Tool %s done (edit=%s rejected=%s mistakes=%d pause=%s)",
                block.name, call.did_edit_file, call.did_reject_tool,
                call.consecutive_mistake_count, call.needs_pause,
            )
        return call.result()
