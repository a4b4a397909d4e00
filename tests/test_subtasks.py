"""Task stack, mode switching and new_task sub-task pause/resume."""
from __future__ import annotations

import asyncio
import gc

import pytest

from agentic_coder.application.provider import TaskStack
from agentic_coder.application.task import Task
from agentic_coder.domain import AskResponse
from agentic_coder.infrastructure.workspace.task_storage import FileTaskStorage

from conftest import AutoResponder, ScriptedApi, completion, response, says, tool_block


async def _drive(stack: TaskStack, start, responder: AutoResponder, timeout: float = 5) -> Task:
    responder.start()
    try:
        task = await start
        await asyncio.wait_for(stack.wait_until_idle(), timeout)
        return task
    finally:
        await responder.stop()


def _last_user_text(call) -> str:
    parts = []
    for block in call["messages"][-1]["content"]:
        if block.get("type") == "text":
            parts.append(block["text"])
        elif block.get("type") == "tool_result":
            parts.extend(c.get("text", "") for c in block["content"])
    return "\n".join(parts)


@pytest.mark.asyncio
async def test_switch_mode_to_current_mode_is_a_no_op(make_services):
    api = ScriptedApi([response(tool_block("switch_mode", {"mode_slug": "code"})), completion()])
    stack = TaskStack(make_services(api))
    responder = AutoResponder(lambda: stack.tasks)
    task = await _drive(stack, stack.init_with_task("Refactor"), responder)

    assert responder.asked_types() == ["completion_result"]
    assert "Already in Code mode." in _last_user_text(api.calls[1])
    assert stack.mode == "code"


@pytest.mark.asyncio
async def test_switch_mode_changes_provider_mode(make_services):
    api = ScriptedApi([
        response(tool_block("switch_mode", {"mode_slug": "architect", "reason": "plan first"})),
        completion(),
    ])
    stack = TaskStack(make_services(api))
    responder = AutoResponder(lambda: stack.tasks)
    task = await _drive(stack, stack.init_with_task("Design a cache"), responder)

    assert stack.mode == "architect"
    assert task.mode == "architect"
    assert responder.asked_types() == ["tool", "completion_result"]
    assert (
        "Successfully switched from Code mode to Architect mode because: plan first."
        in _last_user_text(api.calls[1])
    )
    # the next request is built for the new mode
    assert "Current Mode: Architect" in api.calls[1]["messages"][-1]["content"][-1]["text"]


@pytest.mark.asyncio
async def test_switch_to_unknown_mode_is_a_mistake(make_services):
    api = ScriptedApi([response(tool_block("switch_mode", {"mode_slug": "wizard"})), completion()])
    stack = TaskStack(make_services(api))
    responder = AutoResponder(lambda: stack.tasks)
    await _drive(stack, stack.init_with_task("x"), responder)

    assert "Invalid mode: wizard" in _last_user_text(api.calls[1])
    assert stack.mode == "code"


@pytest.mark.asyncio
async def test_new_task_pauses_parent_until_child_finishes(make_services):
    api = ScriptedApi([
        response(tool_block("new_task", {"mode": "ask", "message": "Explain the parser"})),
        completion("The parser is recursive descent"),
        completion("Parent done"),
    ])
    stack = TaskStack(make_services(api))
    seen = {}

    def watch():
        tasks = stack.tasks
        for t in tasks:
            seen.setdefault(t.task_id, t)
        return tasks

    responder = AutoResponder(watch)
    parent = await _drive(stack, stack.init_with_task("Document the parser"), responder)

    child = next(t for t in seen.values() if t is not parent)
    assert child.parent_task is parent
    assert child.root_task is parent
    assert child.is_sub_task and not parent.is_sub_task
    assert child.task_number == parent.task_number + 1
    assert child.abandoned

    assert responder.asked_types() == ["tool", "finish_sub_task", "completion_result"]
    # the child ran in the requested mode and the parent got its own mode back
    assert "Current Mode: Ask" in api.calls[1]["messages"][0]["content"][-1]["text"]
    assert stack.mode == "code"
    assert parent.mode == "code"

    result = "Sub-task complete: The parser is recursive descent"
    assert says(parent, "subtask_result")[0].text == result
    assert f"[new_task completed] Result: {result}" in _last_user_text(api.calls[2])
    assert parent.task_completed
    assert stack.current_task is parent
    assert not parent.paused


@pytest.mark.asyncio
async def test_new_task_rejected_keeps_parent_running(make_services):
    api = ScriptedApi([
        response(tool_block("new_task", {"mode": "ask", "message": "Explain"})),
        completion(),
    ])
    stack = TaskStack(make_services(api))
    responder = AutoResponder(lambda: stack.tasks, script={"tool": [AskResponse.NO]})
    parent = await _drive(stack, stack.init_with_task("Doc"), responder)

    assert stack.stack_size == 1
    assert stack.mode == "code"
    assert not parent.paused
    assert "The user denied this operation." in _last_user_text(api.calls[1])


@pytest.mark.asyncio
async def test_abort_while_paused_ends_parent_loop(make_services):
    api = ScriptedApi([response(tool_block("new_task", {"mode": "ask", "message": "Explain"}))])
    stack = TaskStack(make_services(api))

    # only the parent is answered so the child stays blocked on its failed request
    responder = AutoResponder(lambda: stack.tasks[:1]).start()
    try:
        parent = await stack.init_with_task("Doc")
        for _ in range(300):
            if parent.paused:
                break
            await asyncio.sleep(0.01)
        assert parent.paused
        child = stack.current_task
        assert child is not parent

        await stack.clear_stack()
        await asyncio.wait_for(stack.wait_until_idle(), 5)
    finally:
        await responder.stop()

    assert parent.aborted and child.aborted
    assert stack.stack_size == 0


@pytest.mark.asyncio
async def test_task_history_is_recorded(make_services, tmp_path):
    storage = FileTaskStorage(str(tmp_path / "store"))
    api = ScriptedApi([response(tool_block("attempt_completion", {"result": "ok"}), input_tokens=50, output_tokens=5)])
    stack = TaskStack(make_services(api, storage=storage))
    task = await _drive(stack, stack.init_with_task("Count lines"), AutoResponder(lambda: stack.tasks))

    items = storage.load_history()
    assert [i.id for i in items] == [task.task_id]
    item = items[0]
    assert item.task == "Count lines"
    assert item.number == 1
    assert item.tokens_in == 50 and item.tokens_out == 5
    assert item.size > 0
    assert stack.find_history_item(task.task_id[:8]) == item


@pytest.mark.asyncio
async def test_resume_from_history_continues_interrupted_task(make_services, tmp_path):
    storage = FileTaskStorage(str(tmp_path / "store"))
    first_api = ScriptedApi([response(tool_block("ask_followup_question", {"question": "Which file?"}))])
    stack = TaskStack(make_services(first_api, storage=storage))

    task = await stack.init_with_task("Tidy imports")
    for _ in range(300):
        if task.channel.ask_pending:
            break
        await asyncio.sleep(0.01)
    await stack.cancel_task()
    await asyncio.wait_for(stack.wait_until_idle(), 5)
    item = stack.find_history_item(task.task_id)
    assert item is not None

    second_api = ScriptedApi([completion("Imports tidied")])
    resumed_stack = TaskStack(make_services(second_api, storage=storage))
    responder = AutoResponder(lambda: resumed_stack.tasks)
    resumed = await _drive(resumed_stack, resumed_stack.init_with_history_item(item), responder)

    assert resumed.task_id == task.task_id
    assert responder.asked_types()[0] == "resume_task"
    sent = second_api.calls[0]["messages"]
    # every tool_use in the restored history has a matching result
    assert sent[-1]["role"] == "user"
    tool_ids = [b["id"] for b in sent[-2]["content"] if b.get("type") == "tool_use"]
    result_ids = [b["tool_use_id"] for b in sent[-1]["content"] if b.get("type") == "tool_result"]
    assert tool_ids and tool_ids == result_ids
    assert "[TASK RESUMPTION]" in _last_user_text(second_api.calls[0])
    assert resumed.task_completed


@pytest.mark.asyncio
async def test_provider_is_held_weakly(make_services):
    api = ScriptedApi([])
    stack = TaskStack(make_services(api))
    task = Task(stack.services, provider=stack)
    assert task.provider() is stack
    del stack
    gc.collect()
    assert task.provider() is None
