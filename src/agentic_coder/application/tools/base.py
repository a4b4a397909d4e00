"""Shared plumbing for tool handlers.

A handler is ``async def handler(call: ToolCall) -> None``.  It reads parameters
from ``call.block``, talks to the human through ``call.env``, and reports back only
through ``call.push_tool_result`` and the counters on ``call``.  Handlers never
raise for expected failures; the dispatcher routes anything unexpected through
``call.handle_error``.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from agentic_coder.application import responses
from agentic_coder.application.message_channel import AskResult
from agentic_coder.application.ports import (
    AccessPolicy,
    DiffStrategy,
    FileEditor,
    McpHub,
    TaskProvider,
    TerminalBackend,
    WorkspaceFiles,
)
from agentic_coder.config.constants import DIFF_MISTAKE_THRESHOLD, MODE_SWITCH_DELAY_S
from agentic_coder.domain import AskIgnoredError, ToolExecutionResult, ToolResponse, ToolUse

logger = logging.getLogger(__name__)

PushToolResult = Callable[[ToolResponse], None]
HandleError = Callable[[str, BaseException], Awaitable[None]]
RemoveClosingTag = Callable[[str, Optional[str]], Optional[str]]
AskApproval = Callable[..., Awaitable[bool]]


@dataclass
class ToolEnvironment:
    """Everything a tool may touch, injected by the owning task."""

    cwd: str
    ask: Callable[..., Awaitable[AskResult]]
    say: Callable[..., Awaitable[None]]
    editor: FileEditor
    access_policy: AccessPolicy
    terminals: TerminalBackend
    files: WorkspaceFiles
    get_provider: Callable[[], Optional[TaskProvider]]
    diff_strategy: Optional[DiffStrategy] = None
    mcp_hub: Optional[McpHub] = None
    ignore_file_name: str = ".coderignore"
    mode_switch_delay_s: float = MODE_SWITCH_DELAY_S
    diff_mistake_threshold: int = DIFF_MISTAKE_THRESHOLD
    terminal_output_line_limit: int = 500


@dataclass
class ToolCall:
    """One tool invocation in flight, with the callbacks the presenter provides."""

    block: ToolUse
    task_id: str
    is_sub_task: bool
    env: ToolEnvironment
    push_tool_result: PushToolResult
    handle_error: HandleError
    remove_closing_tag: RemoveClosingTag
    approval_callback: AskApproval
    consecutive_mistake_count: int = 0
    diff_mistakes: Dict[str, int] = field(default_factory=dict)
    did_edit_file: bool = False
    did_reject_tool: bool = False
    needs_pause: bool = False
    task_completed: bool = False
    paused_mode_slug: Optional[str] = None

    # ------------------------------------------------------------------
    # Parameters
    # ------------------------------------------------------------------

    @property
    def partial(self) -> bool:
        return self.block.partial

    def param(self, name: str) -> Optional[str]:
        """Parameter as text (structured values are re-serialized as JSON)."""
        value = self.block.params.get(name)
        if value is None:
            return None
        if isinstance(value, str):
            return value
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        return str(value)

    def raw_param(self, name: str) -> Any:
        return self.block.params.get(name)

    def preview(self, name: str) -> Optional[str]:
        """Parameter text with a trailing closing tag stripped while streaming."""
        return self.remove_closing_tag(name, self.param(name))

    def resolve_path(self, rel_path: str) -> str:
        return os.path.abspath(os.path.join(self.env.cwd, rel_path))

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def record_mistake(self) -> None:
        self.consecutive_mistake_count += 1

    def record_success(self) -> None:
        self.consecutive_mistake_count = 0

    async def missing_param(self, name: str, rel_path: Optional[str] = None) -> None:
        """Count a mistake, tell the human, and return the error to the model."""
        self.record_mistake()
        await self.env.say("error", responses.missing_param_notice(self.block.name, name, rel_path))
        self.push_tool_result(responses.tool_error(responses.missing_tool_parameter_error(name)))

    async def tool_error(self, message: str, *, say: bool = True) -> None:
        if say:
            await self.env.say("error", message)
        self.push_tool_result(responses.tool_error(message))

    async def show_partial(self, ask_type: str, text: Optional[str]) -> None:
        """Stream a preview of the call to the human. Never waits."""
        try:
            await self.env.ask(ask_type, text, partial=True)
        except AskIgnoredError:
            pass

    async def ask_approval(
        self,
        ask_type: str,
        message: Optional[str] = None,
        progress_status: Optional[Dict[str, Any]] = None,
    ) -> bool:
        approved = await self.approval_callback(ask_type, message, progress_status)
        if not approved:
            self.did_reject_tool = True
        return approved

    def check_access(self, rel_path: str) -> bool:
        return self.env.access_policy.validate_access(rel_path)

    async def access_denied(self, rel_path: str) -> None:
        await self.env.say("ignore_error", rel_path)
        self.push_tool_result(
            responses.tool_error(responses.ignore_error(rel_path, self.env.ignore_file_name))
        )

    def result(self) -> ToolExecutionResult:
        return ToolExecutionResult(
            did_edit_file=self.did_edit_file,
            did_reject_tool=self.did_reject_tool,
            consecutive_mistake_count=self.consecutive_mistake_count,
            needs_pause=self.needs_pause,
            task_completed=self.task_completed,
            paused_mode_slug=self.paused_mode_slug,
        )


def tool_message(tool: str, **fields: Any) -> str:
    """JSON payload for ``tool`` asks, skipping unset fields."""
    payload = {"tool": tool}
    payload.update({k: v for k, v in fields.items() if v is not None})
    return json.dumps(payload)


def parse_int(value: Any) -> Optional[int]:
    """Int from an int or a numeric string; None when absent or not a number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() == "true" if value is not None else False


def parse_operations(value: Any) -> Optional[List[Dict[str, Any]]]:
    """Operations list from a list or its JSON text; None when malformed."""
    if isinstance(value, list):
        ops = value
    else:
        try:
            ops = json.loads(value)
        except (TypeError, ValueError):
            return None
    if not isinstance(ops, list) or not all(isinstance(op, dict) for op in ops):
        return None
    return ops
