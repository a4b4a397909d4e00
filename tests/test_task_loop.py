"""Request-loop tests: completion, mistakes, empty responses, API failures and aborts."""
from __future__ import annotations

import asyncio
import json

import pytest

from agentic_coder.application import responses
from agentic_coder.application.task import Task
from agentic_coder.domain import AskResponse
from agentic_coder.domain.stream import (
    ContentBlockDelta,
    ContentBlockStart,
    MessageStart,
)

from conftest import (
    AutoResponder,
    ScriptedApi,
    asks,
    completion,
    response,
    says,
    text_block,
    tool_block,
)


async def _run(task: Task, responder: AutoResponder, prompt: str = "Do the thing") -> None:
    responder.start()
    try:
        await asyncio.wait_for(task.start_task(prompt), timeout=5)
    finally:
        await responder.stop()


def _last_user_text(call) -> str:
    """Every text the last user turn of a request carries, tool results included."""
    parts = []
    for block in call["messages"][-1]["content"]:
        if block.get("type") == "text":
            parts.append(block["text"])
        elif block.get("type") == "tool_result":
            content = block.get("content")
            if isinstance(content, str):
                parts.append(content)
            else:
                parts.extend(c.get("text", "") for c in content)
    return "\n".join(parts)


@pytest.mark.asyncio
async def test_completion_ends_loop(make_services):
    api = ScriptedApi([response(text_block("All done."), tool_block("attempt_completion", {"result": "Built it"}, index=1))])
    task = Task(make_services(api))
    responder = AutoResponder(lambda: [task])
    await _run(task, responder)

    assert len(api.calls) == 1
    assert task.task_completed
    assert responder.asked_types() == ["completion_result"]
    result = says(task, "completion_result")
    assert len(result) == 1 and result[0].text == "Built it"
    assert result[0].partial is False
    # first message is the task text, history ends with the assistant turn
    assert task.messages[0].say == "text" and task.messages[0].text == "Do the thing"
    assert [e["role"] for e in task.api_conversation_history] == ["user", "assistant"]


@pytest.mark.asyncio
async def test_first_request_wraps_task_and_adds_environment(make_services):
    api = ScriptedApi([completion()])
    task = Task(make_services(api))
    await _run(task, AutoResponder(lambda: [task]), prompt="Fix the bug")

    user = api.calls[0]["messages"][0]
    assert user["role"] == "user"
    texts = [b["text"] for b in user["content"] if b["type"] == "text"]
    assert texts[0] == "<task>\nFix the bug\n</task>"
    assert texts[-1].startswith("<environment_details>")
    assert "# Current Working Directory" in texts[-1]


@pytest.mark.asyncio
async def test_api_request_message_records_usage(make_services):
    api = ScriptedApi([response(tool_block("attempt_completion", {"result": "ok"}), input_tokens=120, output_tokens=30)])
    task = Task(make_services(api))
    await _run(task, AutoResponder(lambda: [task]))

    started = says(task, "api_req_started")
    assert len(started) == 1
    info = json.loads(started[0].text)
    assert info["tokensIn"] == 120
    assert info["tokensOut"] == 30
    assert "request" in info


@pytest.mark.asyncio
async def test_missing_parameter_is_a_mistake(make_services):
    counts = []
    api = ScriptedApi([
        response(tool_block("write_to_file", {"path": "a.txt", "line_count": 1})),
        completion(),
    ])
    task = Task(make_services(api))
    api.on_call = lambda i: counts.append(task.consecutive_mistake_count)
    await _run(task, AutoResponder(lambda: [task]))

    assert counts == [0, 1]
    errors = says(task, "error")
    assert any("without value for required parameter 'content'" in m.text for m in errors)
    assert "Missing value for required parameter 'content'" in _last_user_text(api.calls[1])


@pytest.mark.asyncio
async def test_unknown_tool_is_a_mistake(make_services):
    counts = []
    api = ScriptedApi([response(tool_block("launch_rocket", {"target": "moon"})), completion()])
    task = Task(make_services(api))
    api.on_call = lambda i: counts.append(task.consecutive_mistake_count)
    await _run(task, AutoResponder(lambda: [task]))

    assert counts == [0, 1]
    assert "Unknown tool: launch_rocket" in _last_user_text(api.calls[1])


@pytest.mark.asyncio
async def test_mistake_limit_asks_for_guidance_and_resets(make_services, make_config):
    bad = lambda: response(tool_block("read_file", {}))  # noqa: E731
    counts = []
    api = ScriptedApi([bad(), bad(), completion()])
    task = Task(make_services(api, config=make_config(mistake_limit=2)))
    api.on_call = lambda i: counts.append(task.consecutive_mistake_count)
    responder = AutoResponder(
        lambda: [task],
        script={"mistake_limit_reached": [(AskResponse.MESSAGE, "Read src/main.py first")]},
    )
    await _run(task, responder)

    assert responder.asked_types() == ["mistake_limit_reached", "completion_result"]
    # the third request goes out with a cleared counter and the guidance attached
    assert counts == [0, 1, 0]
    assert "Read src/main.py first" in _last_user_text(api.calls[2])
    assert says(task, "user_feedback")[-1].text == "Read src/main.py first"


@pytest.mark.asyncio
async def test_empty_response_counts_mistake_and_retries(make_services):
    counts = []
    api = ScriptedApi([response(), completion()])
    task = Task(make_services(api))
    api.on_call = lambda i: counts.append(task.consecutive_mistake_count)
    await _run(task, AutoResponder(lambda: [task]))

    assert counts == [0, 1]
    assert any("did not provide any assistant messages" in m.text for m in says(task, "error"))
    history = api.calls[1]["messages"]
    assert history[1] == {
        "role": "assistant",
        "content": [{"type": "text", "text": "Failure: I did not provide a response."}],
    }
    assert responses.no_tools_used() in _last_user_text(api.calls[1])


@pytest.mark.asyncio
async def test_no_tool_used_stops_unless_human_replies(make_services):
    api = ScriptedApi([response(text_block("I think it works."))])
    task = Task(make_services(api))
    responder = AutoResponder(lambda: [task])
    await _run(task, responder)

    assert len(api.calls) == 1
    assert responder.asked_types() == ["tool"]
    assert not task.task_completed


@pytest.mark.asyncio
async def test_no_tool_used_with_reply_continues(make_services):
    api = ScriptedApi([response(text_block("I think it works.")), completion()])
    task = Task(make_services(api))
    responder = AutoResponder(lambda: [task], script={"tool": [(AskResponse.MESSAGE, "Please verify")]})
    await _run(task, responder)

    assert len(api.calls) == 2
    sent = _last_user_text(api.calls[1])
    assert "<feedback>\nPlease verify\n</feedback>" in sent
    assert "You did not use a tool" in sent


@pytest.mark.asyncio
async def test_api_failure_before_first_chunk_can_be_retried(make_services):
    api = ScriptedApi([RuntimeError("connection refused"), completion()])
    task = Task(make_services(api))
    responder = AutoResponder(lambda: [task])
    await _run(task, responder)

    assert len(api.calls) == 2
    assert responder.asked[0] == ("api_req_failed", "connection refused")
    assert len(says(task, "api_req_retried")) == 1
    assert task.task_completed
    # the retry reuses the same request, so history holds one user turn
    assert [e["role"] for e in task.api_conversation_history] == ["user", "assistant"]


@pytest.mark.asyncio
async def test_api_failure_declined_ends_loop(make_services):
    api = ScriptedApi([RuntimeError("503 overloaded")])
    task = Task(make_services(api))
    await _run(task, AutoResponder(lambda: [task], script={"api_req_failed": [AskResponse.NO]}))

    assert len(api.calls) == 1
    info = json.loads(says(task, "api_req_started")[0].text)
    assert info["cancelReason"] == "streaming_failed"
    assert info["streamingFailedMessage"] == "503 overloaded"


@pytest.mark.asyncio
async def test_mid_stream_failure_aborts_task(make_services):
    partial = [
        MessageStart(input_tokens=5),
        ContentBlockStart(index=0, block_type="text"),
        ContentBlockDelta(index=0, delta_type="text_delta", text="Let me look"),
    ]
    api = ScriptedApi([(partial, RuntimeError("socket closed"))])
    task = Task(make_services(api))
    await _run(task, AutoResponder(lambda: [task]))

    assert task.aborted
    assert task.did_finish_aborting_stream
    assert any("API streaming failed" in m.text for m in says(task, "error"))
    last = task.api_conversation_history[-1]
    assert last["role"] == "assistant"
    assert last["content"][0] == {"type": "text", "text": "Let me look"}
    assert last["content"][-1]["text"] == responses.interrupted_by_api_error()


class _GatedApi:
    """Streams some text, then blocks until released."""

    model_id = "gated"

    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def create_message(self, system_prompt, messages, tools=None):
        yield MessageStart(input_tokens=1)
        yield ContentBlockStart(index=0, block_type="text")
        yield ContentBlockDelta(index=0, delta_type="text_delta", text="Working on ")
        self.started.set()
        await self.release.wait()
        yield ContentBlockDelta(index=0, delta_type="text_delta", text="it")


@pytest.mark.asyncio
async def test_abort_mid_stream_records_interrupted_turn(make_services):
    api = _GatedApi()
    task = Task(make_services(api))
    run = asyncio.ensure_future(task.start_task("Long job"))
    await asyncio.wait_for(api.started.wait(), 2)

    await task.abort_task()
    assert task.aborted
    api.release.set()
    await asyncio.wait_for(run, 5)
    assert await task.wait_until_quiescent(timeout_s=1)

    assert task.did_finish_aborting_stream
    last = task.api_conversation_history[-1]
    assert last["role"] == "assistant"
    assert last["content"][0]["text"].startswith("Working on")
    assert last["content"][-1]["text"] == responses.interrupted_by_user()
    info = json.loads(says(task, "api_req_started")[0].text)
    assert info["cancelReason"] == "user_cancelled"
    assert task.services.terminals.released == [task.task_id]

    # tearing down twice does not record a second interrupted turn
    entries = len(task.api_conversation_history)
    await task.abort_stream("user_cancelled")
    assert len(task.api_conversation_history) == entries


@pytest.mark.asyncio
async def test_abandoned_task_skips_stream_teardown(make_services):
    api = _GatedApi()
    task = Task(make_services(api))
    run = asyncio.ensure_future(task.start_task("Long job"))
    await asyncio.wait_for(api.started.wait(), 2)

    await task.abort_task(is_abandoned=True)
    api.release.set()
    await asyncio.wait_for(run, 5)

    assert task.abandoned
    assert not task.did_finish_aborting_stream
    assert [e["role"] for e in task.api_conversation_history] == ["user"]


@pytest.mark.asyncio
async def test_abort_unblocks_pending_ask(make_services):
    api = ScriptedApi([response(tool_block("ask_followup_question", {"question": "Which DB?"}))])
    task = Task(make_services(api))
    run = asyncio.ensure_future(task.start_task("Set up storage"))
    for _ in range(200):
        if task.channel.ask_pending:
            break
        await asyncio.sleep(0.01)
    assert asks(task, "followup")

    await task.abort_task()
    await asyncio.wait_for(run, 5)
    assert not task.channel.ask_pending


@pytest.mark.asyncio
async def test_followup_answer_goes_back_to_model(make_services):
    api = ScriptedApi([response(tool_block("ask_followup_question", {"question": "Which DB?"})), completion()])
    task = Task(make_services(api))
    responder = AutoResponder(lambda: [task], script={"followup": [(AskResponse.MESSAGE, "Postgres")]})
    await _run(task, responder)

    assert "<answer>\nPostgres\n</answer>" in _last_user_text(api.calls[1])
    assert says(task, "user_feedback")[0].text == "Postgres"


@pytest.mark.asyncio
async def test_completion_feedback_starts_another_turn(make_services):
    api = ScriptedApi([completion("v1"), completion("v2")])
    task = Task(make_services(api))
    responder = AutoResponder(
        lambda: [task],
        script={"completion_result": [(AskResponse.MESSAGE, "Add tests too"), AskResponse.YES]},
    )
    await _run(task, responder)

    assert len(api.calls) == 2
    assert "<user_feedback>\nAdd tests too\n</user_feedback>" in _last_user_text(api.calls[1])
    assert [m.text for m in says(task, "completion_result")] == ["v1", "v2"]


@pytest.mark.asyncio
async def test_environment_file_details_only_on_first_request(make_services, workspace):
    (workspace / "notes.md").write_text("hi", encoding="utf-8")
    api = ScriptedApi([response(text_block("hmm")), completion()])
    task = Task(make_services(api))
    await _run(task, AutoResponder(lambda: [task], script={"tool": [(AskResponse.MESSAGE, "go on")]}))

    first = api.calls[0]["messages"][0]["content"][-1]["text"]
    second = api.calls[1]["messages"][-1]["content"][-1]["text"]
    assert "notes.md" in first
    assert "notes.md" not in second


def test_repair_history_answers_dangling_tool_use():
    history = [
        {"role": "user", "content": [{"type": "text", "text": "<task>x</task>"}]},
        {"role": "assistant", "content": [
            {"type": "text", "text": "reading"},
            {"type": "tool_use", "id": "t1", "name": "read_file", "input": {"path": "a"}},
        ]},
    ]
    repaired, carried = Task._repair_history_for_resume(history)
    assert repaired == history
    assert carried == [{
        "type": "tool_result",
        "tool_use_id": "t1",
        "content": "Task was interrupted before this tool call could be completed.",
    }]


def test_repair_history_carries_trailing_user_turn():
    history = [
        {"role": "user", "content": [{"type": "text", "text": "<task>x</task>"}]},
        {"role": "assistant", "content": [
            {"type": "tool_use", "id": "t1", "name": "read_file", "input": {}},
            {"type": "tool_use", "id": "t2", "name": "read_file", "input": {}},
        ]},
        {"role": "user", "content": [
            {"type": "tool_result", "tool_use_id": "t1", "content": "ok"},
            {"type": "text", "text": "<environment_details>\nstale\n</environment_details>"},
        ]},
    ]
    repaired, carried = Task._repair_history_for_resume(history)
    assert repaired == history[:2]
    assert [b.get("tool_use_id") for b in carried] == ["t2", "t1"]
    assert not any(b.get("type") == "text" for b in carried)


def test_repair_history_of_empty_history():
    assert Task._repair_history_for_resume([]) == ([], [])
