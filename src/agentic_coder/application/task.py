"""Task state machine: one run of the agent loop.

A task owns its two logs (the UI message log behind the message channel and the
conversation history sent to the model), the turn state the presenter folds tool
outcomes into, and the request loop.  The loop is a plain ``while`` over
:meth:`Task._make_request`, which returns :class:`Continue` with the next user
content or :class:`Stop`.

Collaborators come in through :class:`TaskServices`; the provider, parent and
root are held weakly and may disappear at any time.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import uuid
import weakref
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from agentic_coder.application import responses
from agentic_coder.application.checkpoints import CheckpointCoordinator
from agentic_coder.application.environment import build_environment_details
from agentic_coder.application.message_channel import AskResult, MessageChannel
from agentic_coder.application.metrics import get_api_metrics, parse_request_info, usage_cost
from agentic_coder.application.modes import get_all_modes, get_mode_by_slug, get_mode_name, tools_for_mode
from agentic_coder.application.ports import (
    AccessPolicy,
    ApiHandler,
    CheckpointServiceFactory,
    DiffStrategy,
    FileEditor,
    McpHub,
    ProviderState,
    TaskProvider,
    TaskStorage,
    TerminalBackend,
    WorkspaceFiles,
)
from agentic_coder.application.presenter import Presenter
from agentic_coder.application.prompts import build_system_prompt
from agentic_coder.application.stream_consumer import StreamConsumer
from agentic_coder.application.subtasks import SubtaskController
from agentic_coder.application.tool_definitions import tool_definitions
from agentic_coder.application.tools import ToolDispatcher, ToolEnvironment
from agentic_coder.config.constants import ABORT_POLL_INTERVAL_S
from agentic_coder.config.schema import DEFAULT_CONFIG, CoderConfig
from agentic_coder.domain import (
    AskResponse,
    HistoryItem,
    Message,
    TaskAbortedError,
    block_to_api,
    now_ms,
)
from agentic_coder.domain.stream import TokenUsage
from agentic_coder.infrastructure.telemetry import get_tracer

logger = logging.getLogger(__name__)


@dataclass
class TaskServices:
    """Collaborators injected into every task."""

    api: ApiHandler
    terminals: TerminalBackend
    files: WorkspaceFiles
    access_policy: AccessPolicy
    editor_factory: Callable[[str], FileEditor]
    storage: Optional[TaskStorage] = None
    diff_strategy: Optional[DiffStrategy] = None
    mcp_hub: Optional[McpHub] = None
    checkpoint_factory: Optional[CheckpointServiceFactory] = None
    config: CoderConfig = field(default_factory=lambda: DEFAULT_CONFIG)


@dataclass
class Continue:
    user_content: List[Dict[str, Any]]


@dataclass
class Stop:
    reason: str = ""


LoopOutcome = Union[Continue, Stop]


_MISTAKE_LIMIT_TEXT = (
    "This may indicate a failure in the model's thought process or inability to use a tool "
    "properly, which can be mitigated with some user guidance "
    '(e.g. "Try breaking down the task into smaller steps").'
)

_EMPTY_RESPONSE_TEXT = (
    "Unexpected API Response: The language model did not provide any assistant messages. "
    "This may indicate an issue with the API or the model's output."
)


def format_content_block(block: Dict[str, Any]) -> str:
    """Markdown-ish rendering of a user content block for the request preview."""
    kind = block.get("type")
    if kind == "text":
        return block.get("text", "")
    if kind == "image":
        return "[Image]"
    if kind == "tool_use":
        return f"[Tool Use: {block.get('name')}]\n{json.dumps(block.get('input', {}), indent=2)}"
    if kind == "tool_result":
        content = block.get("content")
        if isinstance(content, str):
            return f"[Tool]\n{content}"
        parts = [format_content_block(c) for c in content or []]
        return "[Tool]\n" + "\n".join(parts)
    return f"[Unexpected content type: {kind}]"


def _time_ago(ts: int) -> str:
    minutes = max(0, (now_ms() - ts) // 60_000)
    if minutes < 1:
        return "just now"
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    days = hours // 24
    return f"{days} day{'s' if days != 1 else ''} ago"


class Task:
    def __init__(
        self,
        services: TaskServices,
        *,
        provider: Optional[TaskProvider] = None,
        history_item: Optional[HistoryItem] = None,
        parent: Optional["Task"] = None,
        root: Optional["Task"] = None,
        task_number: int = -1,
        mode: Optional[str] = None,
        cwd: Optional[str] = None,
    ) -> None:
        config = services.config
        self.services = services
        self.config = config
        self.task_id = history_item.id if history_item else uuid.uuid4().hex
        self.task_number = history_item.number if history_item else task_number
        self.history_item = history_item
        self.cwd = os.path.abspath(cwd or config.workspace_dir or os.getcwd())
        self.mode = mode or config.default_mode

        self._provider_ref = weakref.ref(provider) if provider is not None else None
        self._parent_ref = weakref.ref(parent) if parent is not None else None
        self._root_ref = weakref.ref(root) if root is not None else None

        self.aborted = False
        self.abandoned = False
        self.did_finish_aborting_stream = False
        self.is_streaming = False
        self.is_initialized = False
        self._loop_done = asyncio.Event()

        # turn state, folded in by the presenter
        self.consecutive_mistake_count = 0
        self.did_reject_tool = False
        self.did_edit_file = False
        self.task_completed = False

        self.api_conversation_history: List[Dict[str, Any]] = []
        self.channel = MessageChannel(
            is_aborted=lambda: self.aborted,
            on_change=self._post_message,
            on_persist=self._save_messages,
            poll_interval_s=config.ask_poll_interval_s,
        )
        self.diff_enabled = config.diff.enabled and services.diff_strategy is not None
        self.editor = services.editor_factory(self.cwd)
        self.dispatcher = ToolDispatcher(ToolEnvironment(
            cwd=self.cwd,
            ask=self.ask,
            say=self.say,
            editor=self.editor,
            access_policy=services.access_policy,
            terminals=services.terminals,
            files=services.files,
            get_provider=self.provider,
            diff_strategy=services.diff_strategy if self.diff_enabled else None,
            mcp_hub=services.mcp_hub,
            ignore_file_name=config.ignore_file,
            mode_switch_delay_s=config.mode_switch_delay_s,
            terminal_output_line_limit=config.terminal.output_line_limit,
        ))
        self.presenter = Presenter(self)
        self.subtasks = SubtaskController(
            self,
            poll_interval_s=config.resume_poll_interval_s,
            mode_switch_delay_s=config.mode_switch_delay_s,
        )
        shadow_dir = config.checkpoints.storage_dir or os.path.join(config.storage_dir, "checkpoints")
        self.checkpoints = CheckpointCoordinator(
            self,
            services.checkpoint_factory,
            enabled=config.checkpoints.enabled,
            shadow_dir=os.path.expanduser(shadow_dir),
            init_timeout_s=config.checkpoints.init_timeout_s,
            poll_interval_s=config.checkpoints.poll_interval_s,
        )
        self._api_req_message: Optional[Message] = None
        self._usage = TokenUsage()

    def __repr__(self) -> str:
        return f"Task(id={self.task_id!r}, number={self.task_number}, mode={self.mode!r})"

    # ------------------------------------------------------------------
    # Weak links
    # ------------------------------------------------------------------

    def provider(self) -> Optional[TaskProvider]:
        """The owning provider, or None (logged) once it has been released."""
        if self._provider_ref is None:
            return None
        provider = self._provider_ref()
        if provider is None:
            logger.warning("Task %s: provider reference lost", self.task_id)
        return provider

    @property
    def parent_task(self) -> Optional["Task"]:
        return self._parent_ref() if self._parent_ref is not None else None

    @property
    def root_task(self) -> Optional["Task"]:
        return self._root_ref() if self._root_ref is not None else None

    @property
    def is_sub_task(self) -> bool:
        return self._parent_ref is not None

    # ------------------------------------------------------------------
    # State the presenter reads
    # ------------------------------------------------------------------

    @property
    def messages(self) -> List[Message]:
        return self.channel.messages

    @property
    def paused(self) -> bool:
        return self.subtasks.paused

    @property
    def paused_mode_slug(self) -> Optional[str]:
        return self.subtasks.paused_mode_slug

    def pause(self, mode_slug: Optional[str] = None) -> None:
        self.subtasks.pause(mode_slug)

    async def resume_paused_task(self, last_message: Optional[str] = None) -> None:
        """Called by the provider when the sub-task this task launched has finished."""
        self.subtasks.resume(last_message)

    async def _state(self) -> ProviderState:
        provider = self.provider()
        if provider is not None:
            return await provider.get_state()
        return ProviderState(
            mode=self.mode,
            custom_modes=list(self.config.custom_modes),
            custom_instructions=self.config.custom_instructions,
            terminal_output_line_limit=self.config.terminal.output_line_limit,
        )

    async def mode_state(self) -> Tuple[str, list]:
        state = await self._state()
        return state.mode, state.custom_modes

    def checkpoint_save(self) -> None:
        self.checkpoints.save()

    # ------------------------------------------------------------------
    # Message channel
    # ------------------------------------------------------------------

    async def ask(
        self,
        ask_type: str,
        text: Optional[str] = None,
        partial: Optional[bool] = None,
        progress_status: Optional[Dict[str, Any]] = None,
    ) -> AskResult:
        return await self.channel.ask(ask_type, text, partial=partial, progress_status=progress_status)

    async def say(
        self,
        say_type: str,
        text: Optional[str] = None,
        images: Optional[List[str]] = None,
        partial: Optional[bool] = None,
        progress_status: Optional[Dict[str, Any]] = None,
    ) -> None:
        await self.channel.say(say_type, text, images, partial=partial, progress_status=progress_status)

    def handle_ask_response(
        self,
        response: AskResponse,
        text: Optional[str] = None,
        images: Optional[List[str]] = None,
    ) -> None:
        self.channel.handle_response(response, text, images)

    async def _post_message(self, message: Message, partial_update: bool) -> None:
        provider = self.provider()
        if provider is not None:
            await provider.post_message(self, message, partial_update)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def add_to_api_history(self, entry: Dict[str, Any]) -> None:
        self.api_conversation_history.append({**entry, "ts": now_ms()})
        self._save_api_history()

    async def overwrite_api_history(self, history: List[Dict[str, Any]]) -> None:
        self.api_conversation_history = list(history)
        self._save_api_history()

    async def overwrite_messages(self, messages: List[Message]) -> None:
        await self.channel.overwrite(messages)

    def _save_api_history(self) -> None:
        storage = self.services.storage
        if storage is None:
            return
        try:
            storage.save_api_history(self.task_id, self.api_conversation_history)
        except OSError as exc:
            logger.warning("Failed to save conversation history for task %s: %s", self.task_id, exc)

    async def _save_messages(self) -> None:
        storage = self.services.storage
        if storage is None:
            return
        try:
            storage.save_ui_messages(self.task_id, self.messages)
            size = storage.task_dir_size(self.task_id)
        except OSError as exc:
            logger.warning("Failed to save messages for task %s: %s", self.task_id, exc)
            return
        provider = self.provider()
        if provider is None or not self.messages:
            return
        metrics = get_api_metrics(self.messages)
        await provider.update_task_history(HistoryItem(
            id=self.task_id,
            number=self.task_number,
            ts=self.messages[-1].ts,
            task=self.messages[0].text or "",
            tokens_in=metrics.total_tokens_in,
            tokens_out=metrics.total_tokens_out,
            cache_writes=metrics.total_cache_writes,
            cache_reads=metrics.total_cache_reads,
            total_cost=metrics.total_cost,
            size=size,
            workspace=self.cwd,
        ))

    def _api_messages(self) -> List[Dict[str, Any]]:
        return [{"role": e["role"], "content": e["content"]} for e in self.api_conversation_history]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start_task(self, task: Optional[str] = None, images: Optional[List[str]] = None) -> None:
        self.channel.load([])
        self.api_conversation_history = []
        await self.say("text", task, images)
        self.is_initialized = True
        content = [{"type": "text", "text": f"<task>\n{task}\n</task>"}, *responses.image_blocks(images)]
        await self.run_loop(content)

    async def resume_from_history(self) -> None:
        """Reload both logs and, once the human agrees, continue where the task stopped."""
        storage = self.services.storage
        if storage is None:
            raise ValueError("resume_from_history needs task storage")

        messages = storage.load_ui_messages(self.task_id)
        # drop the resume prompt left by an earlier resume
        while messages and messages[-1].type == "ask" and messages[-1].ask in ("resume_task", "resume_completed_task"):
            messages.pop()
        for message in messages:
            if message.partial:
                message.partial = False
        self.channel.load(messages)
        history = storage.load_api_history(self.task_id)
        self.api_conversation_history = history
        self.is_initialized = True

        last = self.channel.last_message
        completed = last is not None and last.say == "completion_result"
        answer = await self.ask("resume_completed_task" if completed else "resume_task")
        if answer.response not in (AskResponse.YES, AskResponse.MESSAGE):
            logger.info("Task %s: resume declined", self.task_id)
            return
        if answer.text or answer.images:
            await self.say("user_feedback", answer.text or "", answer.images)

        history, carried = self._repair_history_for_resume(history)
        self.api_conversation_history = history
        self._save_api_history()

        ago = _time_ago(last.ts) if last is not None else "some time ago"
        resumption = (
            f"[TASK RESUMPTION] This task was interrupted {ago}. "
            + ("It was marked complete, but the user wants to continue. " if completed else
               "It may or may not be complete, so please reassess the task context. ")
            + "Be aware that the project state may have changed since then. "
            f"The current working directory is now '{self.cwd.replace(os.sep, '/')}'. "
            "If the task has not been completed, retry the last step before interruption and "
            "proceed with completing the task.\n\n"
            "Note: If you previously attempted a tool use that the user did not provide a result "
            "for, you should assume the tool use was not successful and assess whether you should retry."
        )
        if answer.text:
            resumption += f"\n\nNew instructions for task continuation:\n<user_message>\n{answer.text}\n</user_message>"
        content = carried + [{"type": "text", "text": resumption}, *responses.image_blocks(answer.images)]
        await self.run_loop(content)

    @staticmethod
    def _repair_history_for_resume(
        history: List[Dict[str, Any]],
    ) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
        """Return (history, user blocks to send next) with every tool_use answered.

        A trailing user turn is taken off the history and carried into the next
        request so two user turns never follow each other.
        """
        def unanswered(assistant: Dict[str, Any], answered: set) -> List[Dict[str, Any]]:
            content = assistant.get("content")
            if not isinstance(content, list):
                return []
            return [
                {"type": "tool_result", "tool_use_id": b["id"],
                 "content": "Task was interrupted before this tool call could be completed."}
                for b in content
                if b.get("type") == "tool_use" and b.get("id") not in answered
            ]

        if not history:
            return [], []
        last = history[-1]
        if last.get("role") == "assistant":
            return list(history), unanswered(last, set())

        carried = last.get("content")
        carried = list(carried) if isinstance(carried, list) else [{"type": "text", "text": str(carried or "")}]
        # environment details are rebuilt on the next request
        carried = [
            b for b in carried
            if not (b.get("type") == "text" and str(b.get("text", "")).startswith("<environment_details>"))
        ]
        trimmed = list(history[:-1])
        if trimmed and trimmed[-1].get("role") == "assistant":
            answered = {b.get("tool_use_id") for b in carried if b.get("type") == "tool_result"}
            carried = unanswered(trimmed[-1], answered) + carried
        return trimmed, carried

    async def run_loop(self, user_content: List[Dict[str, Any]]) -> None:
        """Drive requests until the model completes, the human stops, or the task is aborted."""
        self._loop_done.clear()
        next_content = user_content
        include_file_details = True
        try:
            while not self.aborted:
                try:
                    outcome = await self._make_request(next_content, include_file_details)
                except TaskAbortedError:
                    logger.debug("Task %s: loop ended by abort", self.task_id)
                    break
                except Exception as exc:
                    logger.exception("Task %s: request loop failed", self.task_id)
                    if not self.aborted:
                        await self.say("error", f"An unexpected error occurred: {exc}")
                    break
                if isinstance(outcome, Stop):
                    logger.info("Task %s: loop stopped (%s)", self.task_id, outcome.reason or "done")
                    break
                next_content = outcome.user_content
                include_file_details = False
        finally:
            self.is_streaming = False
            self._loop_done.set()

    async def abort_task(self, is_abandoned: bool = False) -> None:
        """Flag the task as aborted; pending asks and the stream notice it at their next check.

        Does not wait: callers that need quiescence await :meth:`wait_until_quiescent`.
        """
        self.aborted = True
        self.abandoned = is_abandoned
        self.subtasks.cancel()
        try:
            self.services.terminals.release_terminals_for_task(self.task_id)
        except Exception as exc:
            logger.warning("Task %s: releasing terminals failed: %s", self.task_id, exc)
        logger.info("Task %s aborted%s", self.task_id, " (abandoned)" if is_abandoned else "")

    async def wait_until_quiescent(self, timeout_s: Optional[float] = None) -> bool:
        """Wait until an aborted stream has been torn down (or no stream was running)."""
        loop = asyncio.get_running_loop()
        deadline = None if timeout_s is None else loop.time() + timeout_s
        while self.is_streaming and not self.did_finish_aborting_stream and not self._loop_done.is_set():
            if deadline is not None and loop.time() >= deadline:
                return False
            await asyncio.sleep(ABORT_POLL_INTERVAL_S)
        await self.checkpoints.wait_idle()
        return True

    # ------------------------------------------------------------------
    # One request
    # ------------------------------------------------------------------

    async def _make_request(self, user_content: List[Dict[str, Any]], include_file_details: bool) -> LoopOutcome:
        if self.aborted:
            raise TaskAbortedError(f"Task {self.task_number} aborted")
        user_content = list(user_content)

        if self.consecutive_mistake_count >= self.config.mistake_limit:
            answer = await self.ask("mistake_limit_reached", _MISTAKE_LIMIT_TEXT)
            if answer.response == AskResponse.MESSAGE:
                await self.say("user_feedback", answer.text or "", answer.images)
                user_content.append({"type": "text", "text": responses.too_many_mistakes(answer.text)})
                user_content.extend(responses.image_blocks(answer.images))
            self.consecutive_mistake_count = 0

        if self.paused:
            last_message = await self.subtasks.wait_and_restore()
            if self.aborted:
                raise TaskAbortedError(f"Task {self.task_number} aborted while paused")
            if last_message:
                await self.say("subtask_result", last_message)
                user_content.append({"type": "text", "text": f"[new_task completed] Result: {last_message}"})

        preview = "\n\n".join(format_content_block(b) for b in user_content)
        await self.say("api_req_started", json.dumps({"request": preview + "\n\nLoading..."}))
        api_req = self.channel.last_message
        self._api_req_message = api_req
        self._usage = TokenUsage()

        mode, custom_modes = await self.mode_state()
        user_content.append({"type": "text", "text": build_environment_details(
            cwd=self.cwd,
            task_id=self.task_id,
            terminals=self.services.terminals,
            files=self.services.files,
            access_policy=self.services.access_policy,
            include_file_details=include_file_details,
            mode_name=get_mode_name(mode, custom_modes),
        )})
        await self.add_to_api_history({"role": "user", "content": user_content})
        api_req.text = json.dumps({"request": "\n\n".join(format_content_block(b) for b in user_content)})
        await self.channel.update(api_req)

        self.did_reject_tool = False
        self.did_edit_file = False
        self.did_finish_aborting_stream = False
        self.presenter.reset()
        await self.editor.reset()

        system_prompt = await self._system_prompt(mode, custom_modes)
        mode_config = get_mode_by_slug(mode, custom_modes) or get_mode_by_slug(self.config.default_mode, custom_modes)
        tools = tool_definitions(tools_for_mode(mode_config, self.diff_enabled)) if mode_config else tool_definitions()

        consumer = StreamConsumer(self.presenter.blocks, self.presenter.schedule)
        self._usage = consumer.usage
        stopped = await self._stream(system_prompt, tools, consumer)
        if stopped is not None:
            return stopped

        self.presenter.mark_stream_complete()
        await self._wait_for_presenter()

        if self.aborted:
            if not self.abandoned:
                await self.abort_stream("user_cancelled")
            return Stop("aborted")

        self._finish_api_req(api_req)
        await self.channel.update(api_req)

        blocks = self.presenter.history_blocks()
        if not blocks:
            await self.say("error", _EMPTY_RESPONSE_TEXT)
            await self.add_to_api_history({
                "role": "assistant",
                "content": [{"type": "text", "text": "Failure: I did not provide a response."}],
            })
            self.consecutive_mistake_count += 1
            return Continue([{"type": "text", "text": responses.no_tools_used()}])

        content = [block_to_api(b) for b in blocks]
        if self.did_reject_tool:
            content.append({"type": "text", "text": responses.interrupted_by_tool_use()})
        await self.add_to_api_history({"role": "assistant", "content": content})

        if self.task_completed:
            return Stop("completed")

        if not self.presenter.used_tool:
            answer = await self.ask("tool", responses.no_tools_used())
            if answer.response != AskResponse.MESSAGE:
                return Stop("no tool used")
            await self.say("user_feedback", answer.text or "", answer.images)
            return Continue([
                {"type": "text", "text": responses.no_tools_used()},
                {"type": "text", "text": f"<feedback>\n{answer.text or ''}\n</feedback>"},
                *responses.image_blocks(answer.images),
            ])

        return Continue(list(self.presenter.user_message_content))

    async def _stream(self, system_prompt: str, tools: List[Dict[str, Any]], consumer: StreamConsumer) -> Optional[Stop]:
        """Feed the model's stream into the consumer; ``Stop`` when the request must end here."""
        tracer = get_tracer()
        while True:
            received = False
            self.is_streaming = True
            with tracer.start_as_current_span("coder.api_request") as span:
                span.set_attribute("task.id", self.task_id)
                span.set_attribute("llm.model", getattr(self.services.api, "model_id", ""))
                try:
                    async for event in self.services.api.create_message(system_prompt, self._api_messages(), tools):
                        received = True
                        consumer.handle(event)
                        if self.aborted:
                            break
                        if self.did_reject_tool:
                            # the rest of the response is moot
                            break
                        if self.presenter.paused_at is not None:
                            break
                except TaskAbortedError:
                    raise
                except Exception as exc:
                    span.record_exception(exc)
                    self.is_streaming = False
                    if self.aborted:
                        if not self.abandoned:
                            await self.abort_stream("user_cancelled")
                        return Stop("aborted")
                    if not received:
                        logger.warning("Task %s: API request failed: %s", self.task_id, exc)
                        answer = await self.ask("api_req_failed", str(exc))
                        if answer.response == AskResponse.YES:
                            await self.say("api_req_retried")
                            continue
                        self._finish_api_req(self._api_req_message, "streaming_failed", str(exc))
                        await self.channel.update(self._api_req_message)
                        return Stop("api request failed")
                    logger.warning("Task %s: stream failed mid-response: %s", self.task_id, exc)
                    await self.say("error", f"API streaming failed: {exc}")
                    await self.abort_stream("streaming_failed", str(exc))
                    await self.abort_task()
                    return Stop("streaming failed")
                span.set_attribute("llm.input_tokens", consumer.usage.input_tokens)
                span.set_attribute("llm.output_tokens", consumer.usage.output_tokens)
            break

        consumer.finish()
        self.is_streaming = False
        if self.aborted:
            if not self.abandoned:
                await self.abort_stream("user_cancelled")
            return Stop("aborted")
        return None

    async def _wait_for_presenter(self) -> None:
        poll = ABORT_POLL_INTERVAL_S
        while not self.presenter.ready.is_set() and not self.aborted:
            try:
                await asyncio.wait_for(self.presenter.ready.wait(), timeout=poll)
            except asyncio.TimeoutError:
                pass

    def _finish_api_req(
        self,
        message: Optional[Message],
        cancel_reason: Optional[str] = None,
        streaming_failed_message: Optional[str] = None,
    ) -> None:
        if message is None:
            return
        info = parse_request_info(message)
        info.update(self._usage.as_dict())
        info["cost"] = usage_cost(self.config.model.pricing, self._usage)
        if cancel_reason:
            info["cancelReason"] = cancel_reason
        if streaming_failed_message:
            info["streamingFailedMessage"] = streaming_failed_message
        message.text = json.dumps(info)

    async def abort_stream(self, cancel_reason: str, streaming_failed_message: Optional[str] = None) -> None:
        """Tear down the current response: revert the preview, keep what was said, record why."""
        if self.did_finish_aborting_stream:
            return
        if self.editor.is_editing:
            await self.editor.revert_changes()

        last = self.channel.last_message
        if last is not None and last.partial:
            last.partial = False
            await self.channel.update(last)

        content = [block_to_api(b) for b in self.presenter.blocks]
        content.append({
            "type": "text",
            "text": responses.interrupted_by_user() if cancel_reason == "user_cancelled"
            else responses.interrupted_by_api_error(),
        })
        await self.add_to_api_history({"role": "assistant", "content": content})

        if self._api_req_message is not None:
            self._finish_api_req(self._api_req_message, cancel_reason, streaming_failed_message)
            await self.channel.update(self._api_req_message)
        self.is_streaming = False
        self.did_finish_aborting_stream = True
        logger.info("Task %s: stream aborted (%s)", self.task_id, cancel_reason)

    async def _system_prompt(self, mode: str, custom_modes: list) -> str:
        state = await self._state()
        mode_config = get_mode_by_slug(mode, custom_modes) or get_mode_by_slug(self.config.default_mode, custom_modes)
        hub = self.services.mcp_hub
        return build_system_prompt(
            cwd=self.cwd,
            mode=mode_config,
            all_modes=get_all_modes(custom_modes),
            diff_enabled=self.diff_enabled,
            custom_instructions=state.custom_instructions,
            ignore_instructions=self.services.access_policy.get_instructions(),
            mcp_servers=hub.server_names() if hub is not None else None,
        )
