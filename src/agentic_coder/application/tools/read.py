"""Read-only workspace tools: read_file, list_files, list_code_definition_names, search_files."""

from __future__ import annotations

import os

from agentic_coder.application import responses
from agentic_coder.application.text_edits import add_line_numbers, extract_line_range
from agentic_coder.application.tools.base import ToolCall, parse_bool, parse_int, tool_message
from agentic_coder.config.constants import LIST_FILES_TOOL_LIMIT


async def read_file(call: ToolCall) -> None:
    rel_path = call.param("path")
    start_raw = call.raw_param("start_line")
    end_raw = call.raw_param("end_line")

    if call.partial:
        await call.show_partial("tool", tool_message(
            "readFile",
            path=call.remove_closing_tag("path", rel_path),
            start_line=call.remove_closing_tag("start_line", call.param("start_line")),
            end_line=call.remove_closing_tag("end_line", call.param("end_line")),
        ))
        return

    try:
        if not rel_path:
            await call.missing_param("path")
            return
        if not call.check_access(rel_path):
            await call.access_denied(rel_path)
            return

        start_line = parse_int(start_raw)
        if start_raw not in (None, "") and start_line is None:
            call.record_mistake()
            await call.env.say("error", f"Invalid start_line parameter: {start_raw}")
            call.push_tool_result(responses.tool_error("Invalid start_line parameter"))
            return
        end_line = parse_int(end_raw)
        if end_raw not in (None, "") and end_line is None:
            call.record_mistake()
            await call.env.say("error", f"Invalid end_line parameter: {end_raw}")
            call.push_tool_result(responses.tool_error("Invalid end_line parameter"))
            return

        call.record_success()
        approved = await call.ask_approval("tool", tool_message(
            "readFile", path=rel_path, start_line=start_line, end_line=end_line,
        ))
        if not approved:
            return

        text = call.env.files.read_text(call.resolve_path(rel_path))
        if start_line is not None or end_line is not None:
            call.push_tool_result(extract_line_range(text, start_line, end_line))
        else:
            call.push_tool_result(add_line_numbers(text))
    except Exception as exc:
        await call.handle_error("reading file", exc)


async def list_files(call: ToolCall) -> None:
    rel_path = call.param("path")
    recursive = parse_bool(call.raw_param("recursive"))
    kind = "listFilesRecursive" if recursive else "listFilesTopLevel"

    if call.partial:
        await call.show_partial("tool", tool_message(kind, path=call.remove_closing_tag("path", rel_path)))
        return

    try:
        if not rel_path:
            await call.missing_param("path")
            return
        call.record_success()
        approved = await call.ask_approval("tool", tool_message(kind, path=rel_path))
        if not approved:
            return

        absolute = call.resolve_path(rel_path)
        files, limited = call.env.files.list_files(absolute, recursive, LIST_FILES_TOOL_LIMIT)
        policy = call.env.access_policy
        listing = responses.format_files_list(
            absolute, files, False,
            is_allowed=lambda p: policy.validate_access(os.path.join(absolute, p)),
        )
        if limited:
            listing += f"\n\n(Result limited to {LIST_FILES_TOOL_LIMIT} items)"
        call.push_tool_result(listing)
    except Exception as exc:
        await call.handle_error("listing files", exc)


async def list_code_definition_names(call: ToolCall) -> None:
    rel_path = call.param("path")

    if call.partial:
        await call.show_partial("tool", tool_message(
            "listCodeDefinitionNames", path=call.remove_closing_tag("path", rel_path), content="",
        ))
        return

    try:
        if not rel_path:
            await call.missing_param("path")
            return
        call.record_success()
        result = call.env.files.list_definitions(call.resolve_path(rel_path))
        approved = await call.ask_approval("tool", tool_message(
            "listCodeDefinitionNames", path=rel_path, content=result,
        ))
        if not approved:
            return
        call.push_tool_result(result)
    except Exception as exc:
        await call.handle_error("parsing source code definitions", exc)


async def search_files(call: ToolCall) -> None:
    rel_path = call.param("path")
    regex = call.param("regex")
    file_pattern = call.param("file_pattern")

    if call.partial:
        await call.show_partial("tool", tool_message(
            "searchFiles",
            path=call.remove_closing_tag("path", rel_path),
            regex=call.remove_closing_tag("regex", regex),
            filePattern=call.remove_closing_tag("file_pattern", file_pattern),
            content="",
        ))
        return

    try:
        if not rel_path:
            await call.missing_param("path")
            return
        if not regex:
            await call.missing_param("regex", rel_path)
            return
        call.record_success()
        results = call.env.files.search(call.env.cwd, call.resolve_path(rel_path), regex, file_pattern)
        approved = await call.ask_approval("tool", tool_message(
            "searchFiles", path=rel_path, regex=regex, filePattern=file_pattern, content=results,
        ))
        if not approved:
            return
        call.push_tool_result(results)
    except Exception as exc:
        await call.handle_error("searching files", exc)
