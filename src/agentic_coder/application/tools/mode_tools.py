"""Mode tools: switch_mode and new_task."""

from __future__ import annotations

import asyncio
import logging

from agentic_coder.application.modes import DEFAULT_MODE_SLUG, get_mode_by_slug
from agentic_coder.application.tools.base import ToolCall, tool_message

logger = logging.getLogger(__name__)


async def _provider_or_error(call: ToolCall):
    provider = call.env.get_provider()
    if provider is None:
        logger.warning("Provider reference lost while running %s", call.block.name)
        await call.tool_error("Provider reference lost")
    return provider


async def switch_mode(call: ToolCall) -> None:
    mode_slug = call.param("mode_slug")
    reason = call.param("reason")

    if call.partial:
        await call.show_partial("tool", tool_message(
            "switchMode",
            mode=call.remove_closing_tag("mode_slug", mode_slug),
            reason=call.remove_closing_tag("reason", reason),
        ))
        return

    try:
        if not mode_slug:
            await call.missing_param("mode_slug")
            return
        provider = await _provider_or_error(call)
        if provider is None:
            return
        state = await provider.get_state()

        target = get_mode_by_slug(mode_slug, state.custom_modes)
        if target is None:
            call.record_mistake()
            await call.tool_error(f"Invalid mode: {mode_slug}")
            return

        current_slug = state.mode or DEFAULT_MODE_SLUG
        if current_slug == mode_slug:
            call.push_tool_result(f"Already in {target.name} mode.")
            return

        call.record_success()
        approved = await call.ask_approval("tool", tool_message("switchMode", mode=mode_slug, reason=reason))
        if not approved:
            return

        await provider.handle_mode_switch(mode_slug)
        current = get_mode_by_slug(current_slug, state.custom_modes)
        because = f" because: {reason}" if reason else ""
        call.push_tool_result(
            f"Successfully switched from {current.name if current else current_slug} mode "
            f"to {target.name} mode{because}."
        )
        # the next tool must not run before the new mode has taken effect
        await asyncio.sleep(call.env.mode_switch_delay_s)
    except Exception as exc:
        await call.handle_error("switching mode", exc)


async def new_task(call: ToolCall) -> None:
    """Start a sub-task in another mode and pause this task until it finishes."""
    mode_slug = call.param("mode")
    message = call.param("message")

    if call.partial:
        await call.show_partial("tool", tool_message(
            "newTask",
            mode=call.remove_closing_tag("mode", mode_slug),
            message=call.remove_closing_tag("message", message),
        ))
        return

    try:
        if not mode_slug:
            await call.missing_param("mode")
            return
        if not message:
            await call.missing_param("message")
            return
        provider = await _provider_or_error(call)
        if provider is None:
            return
        state = await provider.get_state()

        target = get_mode_by_slug(mode_slug, state.custom_modes)
        if target is None:
            call.record_mistake()
            await call.tool_error(f"Invalid mode: {mode_slug}")
            return

        call.record_success()
        approved = await call.ask_approval("tool", tool_message("newTask", mode=target.name, content=message))
        if not approved:
            return

        # snapshot before switching so the parent resumes in its own mode
        call.paused_mode_slug = state.mode or DEFAULT_MODE_SLUG
        await provider.handle_mode_switch(mode_slug)
        await asyncio.sleep(call.env.mode_switch_delay_s)
        await provider.init_with_subtask(message)

        call.push_tool_result(f"Successfully created new task in {target.name} mode with message: {message}")
        call.needs_pause = True
    except Exception as exc:
        await call.handle_error("creating new task", exc)
