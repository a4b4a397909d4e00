"""File-mutating tools: write_to_file, apply_diff, insert_content, search_and_replace.

All four share one review flow: compute the new content, show it as a diff,
ask for approval, then save (approved) or revert (denied).  A denial leaves the
file byte-identical to what it was before the call.
"""

from __future__ import annotations

import logging
import os

from agentic_coder.application import responses
from agentic_coder.application.text_edits import (
    add_line_numbers,
    apply_search_replace,
    detect_code_omission,
    every_line_has_line_numbers,
    insert_groups,
    insert_operations_to_groups,
    strip_line_numbers,
)
from agentic_coder.application.tools.base import (
    ToolCall,
    parse_int,
    parse_operations,
    tool_message,
)

logger = logging.getLogger(__name__)


def _read_text(path: str) -> str:
    with open(path, "r", encoding="utf-8", newline="") as fh:
        return fh.read()


def _file_missing_error(absolute_path: str) -> str:
    return (
        f"File does not exist at path: {absolute_path}\n\n<error_details>\n"
        "The specified file could not be found. Please verify the file path and try again.\n"
        "</error_details>"
    )


async def _review_and_save(
    call: ToolCall,
    rel_path: str,
    original: str,
    new_content: str,
    *,
    tool_kind: str,
    file_exists: bool,
    success_text: str,
) -> None:
    """Diff, approve, save or revert.  Pushes exactly one outcome."""
    editor = call.env.editor
    diff = responses.create_pretty_patch(rel_path, original, new_content)
    if not diff and file_exists:
        call.push_tool_result(f"No changes needed for '{rel_path}'")
        return

    await editor.open(rel_path)
    await editor.update(new_content, True)

    approved = await call.ask_approval("tool", tool_message(tool_kind, path=rel_path, diff=diff))
    if not approved:
        await editor.revert_changes()
        return

    saved = await editor.save_changes()
    call.did_edit_file = True
    if saved.user_edits:
        await call.env.say(
            "user_feedback_diff",
            tool_message(
                "editedExistingFile" if file_exists else "newFileCreated",
                path=rel_path,
                diff=saved.user_edits,
            ),
        )
        call.push_tool_result(responses.user_edits_result(
            rel_path.replace(os.sep, "/"),
            saved.user_edits,
            add_line_numbers(saved.final_content or ""),
            saved.new_problems_message,
        ))
    else:
        call.push_tool_result(f"{success_text} {rel_path.replace(os.sep, '/')}.{saved.new_problems_message}")
    await editor.reset()


async def _with_editor_revert(call: ToolCall, action: str, body) -> None:
    try:
        await body()
    except Exception as exc:
        # the preview is already on disk; put the original bytes back
        editor = call.env.editor
        if editor.is_editing:
            await editor.revert_changes()
        await call.handle_error(action, exc)


# ---------------------------------------------------------------------------
# write_to_file
# ---------------------------------------------------------------------------

async def write_to_file(call: ToolCall) -> None:
    rel_path = call.param("path")
    content = call.param("content")
    line_count_raw = call.raw_param("line_count")

    if call.partial:
        await call.show_partial("tool", tool_message(
            "newFileCreated",
            path=call.remove_closing_tag("path", rel_path),
            content=call.remove_closing_tag("content", content),
        ))
        return

    async def body() -> None:
        if not rel_path:
            await call.missing_param("path")
            return
        if content is None:
            await call.missing_param("content", rel_path)
            return
        if line_count_raw is None or line_count_raw == "":
            await call.missing_param("line_count", rel_path)
            return
        line_count = parse_int(line_count_raw)
        if line_count is None:
            call.record_mistake()
            await call.env.say("error", f"Invalid line_count parameter: {line_count_raw}")
            call.push_tool_result(responses.tool_error("Invalid line_count parameter"))
            return

        if not call.check_access(rel_path):
            await call.access_denied(rel_path)
            return

        new_content = content
        if every_line_has_line_numbers(new_content):
            new_content = strip_line_numbers(new_content)

        absolute_path = call.resolve_path(rel_path)
        file_exists = os.path.isfile(absolute_path)
        original = _read_text(absolute_path) if file_exists else ""

        if detect_code_omission(original, new_content, line_count):
            call.record_mistake()
            message = (
                "Potential code omission detected. The generated content might be incomplete. "
                "Please provide the complete file content without placeholder comments."
            )
            await call.tool_error(message)
            return

        call.record_success()
        await _review_and_save(
            call, rel_path, original, new_content,
            tool_kind="editedExistingFile" if file_exists else "newFileCreated",
            file_exists=file_exists,
            success_text="Changes successfully applied to" if file_exists else "File successfully created at",
        )

    await _with_editor_revert(call, "writing file", body)


# ---------------------------------------------------------------------------
# apply_diff
# ---------------------------------------------------------------------------

async def apply_diff(call: ToolCall) -> None:
    rel_path = call.param("path")
    diff_text = call.param("diff")

    if call.partial:
        await call.show_partial("tool", tool_message(
            "appliedDiff",
            path=call.remove_closing_tag("path", rel_path),
            diff=call.remove_closing_tag("diff", diff_text),
        ))
        return

    async def body() -> None:
        if not rel_path:
            await call.missing_param("path")
            return
        if not diff_text:
            await call.missing_param("diff", rel_path)
            return
        if not call.check_access(rel_path):
            await call.access_denied(rel_path)
            return

        absolute_path = call.resolve_path(rel_path)
        if not os.path.isfile(absolute_path):
            call.record_mistake()
            message = _file_missing_error(absolute_path)
            await call.env.say("error", message)
            call.push_tool_result(message)
            return

        strategy = call.env.diff_strategy
        if strategy is None:
            await call.tool_error("Diff editing is disabled; use write_to_file instead.")
            return

        original = _read_text(absolute_path)
        result = strategy.apply_diff(
            original,
            diff_text,
            parse_int(call.raw_param("start_line")),
            parse_int(call.raw_param("end_line")),
        )

        if not result.success:
            call.record_mistake()
            failures = call.diff_mistakes.get(rel_path, 0) + 1
            call.diff_mistakes[rel_path] = failures
            details = [result.error] if result.error else []
            details.extend(part.error for part in result.fail_parts if part.error)
            message = f"Failed to apply changes to {rel_path}:\n" + (
                "\n\n".join(details) or "Unknown diff application error"
            )
            await call.env.say("error", message)
            if failures >= call.env.diff_mistake_threshold:
                message += (
                    "\n\nI have failed to apply the diff multiple times. Please provide the full "
                    "file content using the write_to_file tool instead."
                )
            call.push_tool_result(responses.tool_error(message))
            return

        call.diff_mistakes.pop(rel_path, None)
        call.record_success()
        await _review_and_save(
            call, rel_path, original, result.content,
            tool_kind="appliedDiff",
            file_exists=True,
            success_text="Changes successfully applied to",
        )

    await _with_editor_revert(call, "applying diff", body)


# ---------------------------------------------------------------------------
# insert_content / search_and_replace
# ---------------------------------------------------------------------------

async def _operations_or_error(call: ToolCall, rel_path: str, validate) -> list:
    """Parsed operations, or None after reporting the problem to the model."""
    raw = call.raw_param("operations")
    operations = parse_operations(raw)
    if operations is None or not all(validate(op) for op in operations):
        call.record_mistake()
        await call.env.say("error", f"Failed to parse operations JSON for '{rel_path}'")
        call.push_tool_result(responses.tool_error("Invalid operations JSON format"))
        return None
    if not operations:
        await call.missing_param("operations", rel_path)
        return None
    return operations


def _valid_insert(op) -> bool:
    return parse_int(op.get("start_line")) is not None and isinstance(op.get("content"), str)


def _valid_replace(op) -> bool:
    return isinstance(op.get("search"), str) and isinstance(op.get("replace"), str)


async def _edit_with_operations(call: ToolCall, action: str, validate, transform, success_text: str) -> None:
    rel_path = call.param("path")

    if call.partial:
        await call.show_partial("tool", tool_message(
            "appliedDiff",
            path=call.remove_closing_tag("path", rel_path),
            operations=call.remove_closing_tag("operations", call.param("operations")),
        ))
        return

    async def body() -> None:
        if not rel_path:
            await call.missing_param("path")
            return
        if call.raw_param("operations") in (None, ""):
            await call.missing_param("operations", rel_path)
            return
        if not call.check_access(rel_path):
            await call.access_denied(rel_path)
            return

        absolute_path = call.resolve_path(rel_path)
        if not os.path.isfile(absolute_path):
            call.record_mistake()
            message = _file_missing_error(absolute_path)
            await call.env.say("error", message)
            call.push_tool_result(message)
            return

        operations = await _operations_or_error(call, rel_path, validate)
        if operations is None:
            return

        original = _read_text(absolute_path)
        new_content = transform(original, operations)
        call.record_success()
        await _review_and_save(
            call, rel_path, original, new_content,
            tool_kind="appliedDiff",
            file_exists=True,
            success_text=success_text,
        )

    await _with_editor_revert(call, action, body)


def _insert(original: str, operations) -> str:
    lines = original.split("\n")
    normalized = [dict(op, start_line=parse_int(op.get("start_line"))) for op in operations]
    return "\n".join(insert_groups(lines, insert_operations_to_groups(normalized, len(lines))))


async def insert_content(call: ToolCall) -> None:
    await _edit_with_operations(
        call, "inserting content", _valid_insert, _insert,
        "The content was successfully inserted in",
    )


async def search_and_replace(call: ToolCall) -> None:
    await _edit_with_operations(
        call, "applying search and replace", _valid_replace, apply_search_replace,
        "Changes successfully applied to",
    )
