"""Conversation tools: ask_followup_question and attempt_completion."""

from __future__ import annotations

import logging

from agentic_coder.application import responses
from agentic_coder.application.tools.base import ToolCall
from agentic_coder.application.tools.command import run_command
from agentic_coder.domain import AskResponse

logger = logging.getLogger(__name__)


async def ask_followup_question(call: ToolCall) -> None:
    question = call.param("question")

    if call.partial:
        await call.show_partial("followup", call.remove_closing_tag("question", question) or "")
        return

    try:
        if not question:
            await call.missing_param("question")
            return
        call.record_success()
        answer = await call.env.ask("followup", question, partial=False)
        await call.env.say("user_feedback", answer.text or "", answer.images)
        call.push_tool_result(responses.tool_result(f"<answer>\n{answer.text}\n</answer>", answer.images))
    except Exception as exc:
        await call.handle_error("asking question", exc)


async def attempt_completion(call: ToolCall) -> None:
    """Announce the result, optionally run a demo command, then hand control back.

    Sub-tasks may return to their parent; top-level tasks collect final feedback,
    which becomes the next turn, or end the loop on an explicit yes.
    """
    result = call.param("result")
    command = call.param("command")

    if call.partial:
        await call.env.say("completion_result", call.remove_closing_tag("result", result) or "", partial=True)
        return

    try:
        if not result:
            await call.missing_param("result")
            return
        call.record_success()
        await call.env.say("completion_result", result, partial=False)

        if command:
            approved = await call.ask_approval("command", command)
            if not approved:
                return
            interjected, command_result = await run_command(call, command, None)
            if interjected:
                call.did_reject_tool = True
                call.push_tool_result(command_result)
                return

        if call.is_sub_task:
            answer = await call.env.ask(
                "finish_sub_task", "Mark sub-task as complete and return to parent task?", partial=False,
            )
            if answer.response == AskResponse.YES:
                provider = call.env.get_provider()
                if provider is None:
                    logger.warning("[subtasks] provider lost, cannot finish sub-task %s", call.task_id)
                else:
                    await provider.finish_subtask(f"Sub-task complete: {result}")
                call.task_completed = True
                return

        answer = await call.env.ask("completion_result", "", partial=False)
        if answer.response == AskResponse.YES:
            call.push_tool_result("")
            call.task_completed = True
            return

        await call.env.say("user_feedback", answer.text or "", answer.images)
        call.push_tool_result(responses.tool_result(
            f"<user_feedback>\n{answer.text}\n</user_feedback>", answer.images,
        ))
    except Exception as exc:
        await call.handle_error("attempting completion", exc)
