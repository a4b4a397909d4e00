"""Pytest fixtures and fakes for agentic-coder tests.

The engine runs against real workspace collaborators on ``tmp_path`` (files,
ignore rules, the disk editor) and a scripted LLM transport.  Asks are answered
by :class:`AutoResponder`, which plays the human.
"""
from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

import pytest

from agentic_coder.application.task import Task, TaskServices
from agentic_coder.config.schema import CheckpointConfig, CoderConfig, ModelConfig
from agentic_coder.domain import AskResponse, Message
from agentic_coder.domain.stream import (
    ContentBlockDelta,
    ContentBlockStart,
    ContentBlockStop,
    MessageDelta,
    MessageStart,
    MessageStop,
    StreamEvent,
)
from agentic_coder.infrastructure.workspace.editor import FileEditSession
from agentic_coder.infrastructure.workspace.files import LocalWorkspaceFiles
from agentic_coder.infrastructure.workspace.ignore import IgnoreController


@pytest.fixture(autouse=True)
def _reset_config_cache():
    """Clear the load_config LRU cache before (and after) every test."""
    from agentic_coder.config import loader as config_loader
    config_loader.load_config.cache_clear()
    yield
    config_loader.load_config.cache_clear()


# ---------------------------------------------------------------------------
# Stream builders
# ---------------------------------------------------------------------------

def text_block(text: str, index: int = 0, chunks: int = 2) -> List[StreamEvent]:
    """A text block streamed in ``chunks`` deltas."""
    size = max(1, len(text) // chunks)
    parts = [text[i:i + size] for i in range(0, len(text), size)] or [""]
    return (
        [ContentBlockStart(index=index, block_type="text")]
        + [ContentBlockDelta(index=index, delta_type="text_delta", text=p) for p in parts]
        + [ContentBlockStop(index=index)]
    )


def tool_block(name: str, params: Dict[str, Any], index: int = 0, tool_id: Optional[str] = None) -> List[StreamEvent]:
    """A tool_use block whose JSON arguments arrive in two deltas."""
    raw = json.dumps(params)
    half = len(raw) // 2
    return [
        ContentBlockStart(index=index, block_type="tool_use", tool_id=tool_id or f"toolu_{index}_{name}", tool_name=name),
        ContentBlockDelta(index=index, delta_type="input_json_delta", partial_json=raw[:half]),
        ContentBlockDelta(index=index, delta_type="input_json_delta", partial_json=raw[half:]),
        ContentBlockStop(index=index),
    ]


def response(*blocks: List[StreamEvent], input_tokens: int = 100, output_tokens: int = 20) -> List[StreamEvent]:
    events: List[StreamEvent] = [MessageStart(input_tokens=input_tokens)]
    for block in blocks:
        events.extend(block)
    events.append(MessageDelta(output_tokens=output_tokens, stop_reason="tool_use"))
    events.append(MessageStop())
    return events


def completion(result: str = "Done", index: int = 0) -> List[StreamEvent]:
    return response(tool_block("attempt_completion", {"result": result}, index=index))


class ScriptedApi:
    """``ApiHandler`` that replays one scripted response per request.

    A script entry is a list of events, an exception raised before the first
    event, or a ``(events, exception)`` tuple that fails mid-stream.
    """

    model_id = "scripted-model"

    def __init__(self, scripts: Sequence[Any], on_call: Optional[Callable[[int], None]] = None) -> None:
        self.scripts = list(scripts)
        self.calls: List[Dict[str, Any]] = []
        self.on_call = on_call

    async def create_message(self, system_prompt, messages, tools=None):
        if self.on_call is not None:
            self.on_call(len(self.calls))
        self.calls.append({"system_prompt": system_prompt, "messages": messages, "tools": tools})
        if not self.scripts:
            raise AssertionError("no more scripted responses")
        script = self.scripts.pop(0)
        if isinstance(script, BaseException):
            raise script
        failure = None
        if isinstance(script, tuple):
            script, failure = script
        for event in script:
            await asyncio.sleep(0)
            yield event
        if failure is not None:
            raise failure


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------

class FakeTerminals:
    """``TerminalBackend`` with no terminals; records releases."""

    def __init__(self) -> None:
        self.released: List[str] = []

    def get_or_create_terminal(self, cwd, required_cwd, task_id):
        raise AssertionError("unexpected command execution")

    def get_terminals(self, busy, task_id=None):
        return []

    def get_unretrieved_output(self, terminal_id):
        return ""

    def is_process_hot(self, terminal_id):
        return False

    def compress_output(self, text, line_limit=None):
        return text

    def release_terminals_for_task(self, task_id):
        self.released.append(task_id)


class AutoResponder:
    """Answers non-partial asks of the watched tasks, playing the human.

    ``script`` maps an ask type to answers consumed in order; an answer is an
    ``AskResponse``, a ``(response, text)`` tuple, or a callable taking the ask
    message.  Unscripted asks get ``default``.
    """

    def __init__(
        self,
        tasks: Callable[[], List[Task]],
        script: Optional[Dict[str, List[Any]]] = None,
        default: Any = AskResponse.YES,
    ) -> None:
        self._tasks = tasks
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.default = default
        self.asked: List[tuple] = []
        self._answered = set()
        self._runner: Optional[asyncio.Future] = None

    def start(self) -> "AutoResponder":
        self._runner = asyncio.ensure_future(self._run())
        return self

    async def stop(self) -> None:
        if self._runner is not None:
            self._runner.cancel()
            try:
                await self._runner
            except asyncio.CancelledError:
                pass

    def asked_types(self) -> List[str]:
        return [kind for kind, _ in self.asked]

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(0.005)
            for task in self._tasks():
                if not task.channel.ask_pending:
                    continue
                pending = next(
                    (m for m in reversed(task.messages) if m.type == "ask" and not m.partial), None,
                )
                if pending is None or (task.task_id, pending.ts) in self._answered:
                    continue
                self._answered.add((task.task_id, pending.ts))
                self.asked.append((pending.ask, pending.text))
                queue = self.script.get(pending.ask)
                answer = queue.pop(0) if queue else self.default
                if callable(answer) and not isinstance(answer, AskResponse):
                    answer = answer(pending)
                response_, text = answer if isinstance(answer, tuple) else (answer, None)
                task.handle_ask_response(response_, text)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def workspace(tmp_path) -> Path:
    ws = tmp_path / "ws"
    ws.mkdir()
    return ws


@pytest.fixture
def make_config(tmp_path, workspace):
    def _make(**overrides) -> CoderConfig:
        data = dict(
            model=ModelConfig(base_url="http://llm.test/v1", model="test-model"),
            workspace_dir=str(workspace),
            storage_dir=str(tmp_path / "storage"),
            checkpoints=CheckpointConfig(enabled=False),
            ask_poll_interval_s=0.01,
            resume_poll_interval_s=0.01,
            mode_switch_delay_s=0.0,
        )
        data.update(overrides)
        return CoderConfig(**data)
    return _make


@pytest.fixture
def make_services(workspace, make_config):
    def _make(api, config: Optional[CoderConfig] = None, **overrides) -> TaskServices:
        config = config or make_config()
        policy = IgnoreController(str(workspace), config.ignore_file)
        data = dict(
            api=api,
            terminals=FakeTerminals(),
            files=LocalWorkspaceFiles(policy),
            access_policy=policy,
            editor_factory=FileEditSession,
            config=config,
        )
        data.update(overrides)
        return TaskServices(**data)
    return _make


def says(task: Task, kind: str) -> List[Message]:
    return [m for m in task.messages if m.type == "say" and m.say == kind]


def asks(task: Task, kind: str) -> List[Message]:
    return [m for m in task.messages if m.type == "ask" and m.ask == kind]
