"""execute_command: run a shell command in a per-task terminal session.

Output lines stream back to the human.  The first line is posted as a
``command_output`` ask so the human can let the command run on unattended
(yes) or interject feedback, which hands control back to the model while the
process keeps running.  Later lines are plain ``command_output`` says.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from typing import List, Optional, Tuple

from agentic_coder.application import responses
from agentic_coder.application.tools.base import ToolCall
from agentic_coder.domain import (
    AskIgnoredError,
    AskResponse,
    ExitDetails,
    TaskAbortedError,
    ToolExecutionError,
    ToolResponse,
)

logger = logging.getLogger(__name__)


def describe_exit(details: Optional[ExitDetails]) -> Tuple[str, str]:
    """(status text, note appended to the output) for a finished command."""
    if details is None:
        return (
            "Exit code: <unknown, shell integration might be missing>",
            "<exit details unavailable: terminal output and command execution status is unknown.>",
        )
    if details.signal is not None:
        status = f"Process terminated by signal {details.signal} ({details.signal_name})"
        if details.core_dump_possible:
            status += " - core dump possible"
        return status, ""
    if details.exit_code is None:
        return (
            "Exit code: <undefined, notify user>",
            "<exit code is undefined: terminal output and command execution status is unknown.>",
        )
    return f"Exit code: {details.exit_code}", ""


def resolve_working_dir(cwd: str, custom_cwd: Optional[str]) -> str:
    if not custom_cwd:
        return cwd
    if os.path.isabs(custom_cwd):
        return custom_cwd
    return os.path.abspath(os.path.join(cwd, custom_cwd))


async def run_command(call: ToolCall, command: str, custom_cwd: Optional[str]) -> Tuple[bool, ToolResponse]:
    """Run ``command`` and describe the outcome.

    Returns ``(user_interjected, result)``.  Raises ``ToolExecutionError`` when
    the working directory does not exist.
    """
    env = call.env
    working_dir = resolve_working_dir(env.cwd, custom_cwd)
    if not os.path.isdir(working_dir):
        raise ToolExecutionError(f"Working directory '{working_dir}' does not exist.")

    provider = env.get_provider()
    line_limit = env.terminal_output_line_limit
    if provider is not None:
        line_limit = (await provider.get_state()).terminal_output_line_limit

    terminal = env.terminals.get_or_create_terminal(working_dir, bool(custom_cwd), call.task_id)
    working_dir = terminal.get_current_working_directory()
    where = f" from '{working_dir.replace(os.sep, '/')}'" if working_dir else ""

    process = terminal.run_command(command)
    loop = asyncio.get_running_loop()
    pending: List[asyncio.Future] = []
    feedback: dict = {}
    state = {"continued": False, "completed": False, "output": "", "exit": None}

    async def send_first_line(line: str) -> None:
        try:
            answer = await env.ask("command_output", line)
        except (AskIgnoredError, TaskAbortedError):
            return
        if answer.response != AskResponse.YES:
            feedback["text"] = answer.text
            feedback["images"] = answer.images
        state["continued"] = True
        process.continue_()

    first_ask: List[asyncio.Task] = []

    def on_line(line: str) -> None:
        compressed = env.terminals.compress_output(line, line_limit)
        if not first_ask:
            first_ask.append(loop.create_task(send_first_line(compressed)))
        else:
            pending.append(asyncio.ensure_future(env.say("command_output", compressed)))

    def on_completed(output: Optional[str] = None) -> None:
        state["output"] = output or ""
        state["completed"] = True

    def on_exit(details: ExitDetails) -> None:
        state["exit"] = details

    def on_no_shell_integration(message: str) -> None:
        pending.append(asyncio.ensure_future(env.say("shell_integration_warning", message)))

    process.on("line", on_line)
    process.once("completed", on_completed)
    process.once("shell_execution_complete", on_exit)
    process.once("no_shell_integration", on_no_shell_integration)

    await process.wait()

    # An unanswered first-line ask is moot once the command has finished.
    for task in first_ask:
        if not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)

    output = env.terminals.compress_output(state["output"], line_limit)

    if feedback:
        await env.say("user_feedback", feedback.get("text") or "", feedback.get("images"))
        so_far = f"\nHere's the output so far:\n{output}" if output else ""
        return True, responses.tool_result(
            f"Command is still running in terminal {terminal.id}{where}.{so_far}"
            f"\n\nThe user provided the following feedback:\n<feedback>\n{feedback.get('text')}\n</feedback>",
            feedback.get("images"),
        )

    if state["completed"]:
        status, note = describe_exit(state["exit"])
        return False, f"Command executed in terminal {terminal.id}{where}. {status}\nOutput:\n{output}{note}"

    so_far = f"\nHere's the output so far:\n{output}" if output else ""
    return False, (
        f"Command is still running in terminal {terminal.id}{where}.{so_far}"
        "\n\nYou will be updated on the terminal status and new output in the future."
    )


async def execute_command(call: ToolCall) -> None:
    command = call.param("command")
    custom_cwd = call.param("cwd")

    if call.partial:
        await call.show_partial("command", call.remove_closing_tag("command", command))
        return

    try:
        if not command:
            await call.missing_param("command")
            return

        blocked = call.env.access_policy.validate_command(command)
        if blocked:
            await call.env.say("ignore_error", blocked)
            call.push_tool_result(
                responses.tool_error(responses.ignore_error(blocked, call.env.ignore_file_name))
            )
            return

        working_dir = resolve_working_dir(call.env.cwd, custom_cwd)
        if not os.path.isdir(working_dir):
            await call.tool_error(f"Working directory '{working_dir}' does not exist.")
            return

        call.record_success()
        approved = await call.ask_approval("command", command)
        if not approved:
            return

        interjected, result = await run_command(call, command, custom_cwd)
        if interjected:
            call.did_reject_tool = True
        call.push_tool_result(result)
    except Exception as exc:
        await call.handle_error("executing command", exc)
