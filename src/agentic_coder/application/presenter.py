"""Assistant-message presenter: shows and executes streamed blocks strictly in order.

The stream consumer pokes :meth:`Presenter.schedule` after every change to the
block list.  A single drain coroutine walks the blocks with an explicit cursor:

* a partial block is presented (text preview or tool preview) and the cursor
  stays put until the block is final;
* a final block is presented once more, then the cursor advances;
* pokes that arrive while the drain is busy only set ``_pending`` so the drain
  re-reads the current block before going idle.

Tool side effects therefore run one at a time, in the order their blocks
finished streaming, however the pokes interleave.  When the cursor passes the
last block and the stream is complete, :attr:`ready` is set and the request
loop can send the collected tool results.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from agentic_coder.application import responses
from agentic_coder.application.modes import missing_required_param, validate_tool_use
from agentic_coder.application.tools import handler_for
from agentic_coder.domain import (
    AskResponse,
    ContentBlock,
    TaskAbortedError,
    TextContent,
    ToolName,
    ToolResponse,
    ToolUse,
)

if TYPE_CHECKING:
    from agentic_coder.application.task import Task

logger = logging.getLogger(__name__)

_THINKING_TAG_RE = re.compile(r"</?thinking>\s?")


def remove_closing_tag(tag: str, text: Optional[str], partial: bool) -> Optional[str]:
    """Strip a (possibly half-streamed) ``</tag>`` from the end of a preview."""
    if not partial or not text:
        return text
    pattern = "".join(f"(?:{re.escape(ch)}" for ch in tag) + ")?" * len(tag)
    return re.sub(rf"\s?</?{pattern}$", "", text)


class Presenter:
    """Ordered single-consumer walk over one turn's content blocks."""

    def __init__(self, task: "Task") -> None:
        self._task = task
        self.blocks: List[ContentBlock] = []
        self.user_message_content: List[Dict[str, Any]] = []
        self.ready = asyncio.Event()
        self.stream_complete = False
        self.used_tool = False
        self.paused_at: Optional[int] = None
        self._index = 0
        self._draining = False
        self._pending = False
        self._drain_task: Optional[asyncio.Task] = None
        self._tool_results: Dict[str, Dict[str, Any]] = {}

    def reset(self) -> None:
        """Start a new turn."""
        self.blocks = []
        self.user_message_content = []
        self.ready = asyncio.Event()
        self.stream_complete = False
        self.used_tool = False
        self.paused_at = None
        self._index = 0
        self._pending = False
        self._tool_results = {}

    @property
    def current_index(self) -> int:
        return self._index

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def schedule(self) -> None:
        """Poke the presenter. Never blocks; coalesces while a drain is running."""
        if self._draining:
            self._pending = True
            return
        self._draining = True
        self._pending = False
        self._drain_task = asyncio.ensure_future(self._drain())

    async def present(self) -> None:
        """Poke, then wait for the drain started by this (or an earlier) poke."""
        self.schedule()
        task = self._drain_task
        if task is not None:
            await asyncio.shield(task)

    def mark_stream_complete(self) -> None:
        self.stream_complete = True
        self.schedule()

    async def _drain(self) -> None:
        try:
            await self._drain_loop()
        except TaskAbortedError:
            logger.debug("Presenter stopped: task %s aborted", self._task.task_id)
            self.ready.set()
        except Exception:
            logger.exception("Presenter failed on block %d of task %s", self._index, self._task.task_id)
            self.ready.set()
        finally:
            self._draining = False

    async def _drain_loop(self) -> None:
        task = self._task
        while True:
            self._pending = False
            if task.aborted or self.paused_at is not None:
                self.ready.set()
                return
            if self._index >= len(self.blocks):
                if self.stream_complete:
                    self.ready.set()
                return

            block = self.blocks[self._index]
            was_partial = block.partial
            await self._present_block(block)

            if task.paused:
                self.paused_at = self._index
                self.ready.set()
                return

            if not was_partial or task.did_reject_tool:
                self._index += 1
                if self._index >= len(self.blocks) and self.stream_complete:
                    self.ready.set()
                    return
                continue
            if not self._pending:
                return

    # ------------------------------------------------------------------
    # Block presentation
    # ------------------------------------------------------------------

    async def _present_block(self, block: ContentBlock) -> None:
        if isinstance(block, TextContent):
            if self._task.did_reject_tool:
                return
            content = _THINKING_TAG_RE.sub("", block.content)
            await self._task.say("text", content, partial=block.partial)
            return
        await self._present_tool(block)

    async def _present_tool(self, block: ToolUse) -> None:
        task = self._task
        push = self._pusher(block)

        if task.did_reject_tool:
            push(f"Skipping tool [{block.name}] due to user rejecting a previous tool.")
            return

        if block.partial:
            if handler_for(block.name) is not None:
                await self._dispatch(block, push)
            return

        self.used_tool = True
        mode, custom_modes = await task.mode_state()
        error = validate_tool_use(block.name, mode, block.params, custom_modes)
        if error is None and block.name == ToolName.APPLY_DIFF.value and not task.diff_enabled:
            error = "Tool 'apply_diff' is not available because diff editing is disabled. Use write_to_file."
        if error is not None:
            task.consecutive_mistake_count += 1
            await task.say("error", error)
            push(responses.tool_error(error))
            return

        missing = missing_required_param(ToolName(block.name), block.params)
        if missing is not None:
            task.consecutive_mistake_count += 1
            await task.say("error", responses.missing_param_notice(block.name, missing, block.params.get("path")))
            push(responses.tool_error(responses.missing_tool_parameter_error(missing)))
            return

        result = await self._dispatch(block, push)

        if result.did_edit_file:
            task.did_edit_file = True
            task.checkpoint_save()
        if result.task_completed:
            task.task_completed = True
        if result.needs_pause:
            task.pause(result.paused_mode_slug)

    async def _dispatch(self, block: ToolUse, push):
        task = self._task

        async def ask_approval(ask_type: str, message: Optional[str] = None, progress_status=None) -> bool:
            answer = await task.ask(ask_type, message, partial=False, progress_status=progress_status)
            approved = answer.response == AskResponse.YES
            if not approved:
                task.did_reject_tool = True
                if answer.text:
                    await task.say("user_feedback", answer.text, answer.images)
                    push(responses.tool_result(responses.tool_denied_with_feedback(answer.text), answer.images))
                else:
                    push(responses.tool_denied())
            elif answer.text:
                await task.say("user_feedback", answer.text, answer.images)
                push(responses.tool_result(responses.tool_approved_with_feedback(answer.text), answer.images))
            return approved

        async def handle_error(action: str, exc: BaseException) -> None:
            if task.aborted:
                logger.debug("Ignoring error while %s on aborted task: %s", action, exc)
                return
            logger.error("Error %s: %s", action, exc)
            message = f"Error {action}: {exc}"
            await task.say("error", message)
            push(responses.tool_error(message))

        result = await task.dispatcher.execute_tool_block(
            block,
            task_id=task.task_id,
            is_sub_task=task.is_sub_task,
            consecutive_mistake_count=task.consecutive_mistake_count,
            push_tool_result=push,
            handle_error=handle_error,
            remove_closing_tag=lambda tag, text: remove_closing_tag(tag, text, block.partial),
            ask_approval=ask_approval,
        )
        task.consecutive_mistake_count = result.consecutive_mistake_count
        if result.did_reject_tool:
            task.did_reject_tool = True
        return result

    def _pusher(self, block: ToolUse):
        """Collect results for ``block`` into one ``tool_result`` entry keyed by its id."""

        def push(content: ToolResponse) -> None:
            entry = self._tool_results.get(block.id)
            if entry is None:
                entry = {"type": "tool_result", "tool_use_id": block.id, "content": []}
                self._tool_results[block.id] = entry
                self.user_message_content.append(entry)
            if isinstance(content, str):
                if content:
                    entry["content"].append({"type": "text", "text": content})
            else:
                entry["content"].extend(content)

        return push

    def history_blocks(self) -> List[ContentBlock]:
        """Blocks to record in history; a pause cuts off everything after the pausing block."""
        if self.paused_at is None:
            return list(self.blocks)
        return list(self.blocks[: self.paused_at + 1])
