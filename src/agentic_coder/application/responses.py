"""Canned texts fed back to the model as tool results and user turns."""

from __future__ import annotations

import difflib
import os
from typing import Any, Dict, List, Optional, Sequence

from agentic_coder.domain import ToolResponse

LOCK_TEXT_SYMBOL = "\U0001F512"


def tool_denied() -> str:
    return "The user denied this operation."


def tool_denied_with_feedback(feedback: Optional[str]) -> str:
    return (
        "The user denied this operation and provided the following feedback:\n"
        f"<feedback>\n{feedback}\n</feedback>"
    )


def tool_approved_with_feedback(feedback: Optional[str]) -> str:
    return (
        "The user approved this operation and provided the following context:\n"
        f"<feedback>\n{feedback}\n</feedback>"
    )


def tool_error(error: Optional[str]) -> str:
    return f"The tool execution failed with the following error:\n<error>\n{error}\n</error>"


def ignore_error(path: str, ignore_file: str = ".coderignore") -> str:
    return (
        f"Access to {path} is blocked by the {ignore_file} file settings. You must try to "
        f"continue in the task without using this file, or ask the user to update the "
        f"{ignore_file} file."
    )


def no_tools_used() -> str:
    return (
        "[ERROR] You did not use a tool in your previous response! Please retry with a tool use.\n\n"
        "# Next Steps\n\n"
        "If you have completed the user's task, use the attempt_completion tool. "
        "If you require additional information from the user, use the ask_followup_question tool. "
        "Otherwise, if you have not completed the task and do not need additional information, "
        "then proceed with the next step of the task. "
        "(This is an automated message, so do not respond to it conversationally.)"
    )


def too_many_mistakes(feedback: Optional[str]) -> str:
    return (
        "You seem to be having trouble proceeding. The user has provided the following "
        f"feedback to help guide you:\n<feedback>\n{feedback}\n</feedback>"
    )


def missing_tool_parameter_error(param_name: str) -> str:
    return (
        f"Missing value for required parameter '{param_name}'. "
        "Please retry with complete response."
    )


def missing_param_notice(tool_name: str, param_name: str, rel_path: Optional[str] = None) -> str:
    target = f" for '{rel_path}'" if rel_path else ""
    return (
        f"The assistant tried to use {tool_name}{target} without value for required "
        f"parameter '{param_name}'. Retrying..."
    )


def invalid_mcp_tool_argument_error(server_name: str, tool_name: str) -> str:
    return (
        f"Invalid JSON argument used with {server_name} for {tool_name}. "
        "Please retry with a properly formatted JSON argument."
    )


def interrupted_by_user() -> str:
    return "[Response interrupted by user]"


def interrupted_by_api_error() -> str:
    return "[Response interrupted by API Error]"


def interrupted_by_tool_use() -> str:
    return "[Response interrupted by user feedback]"


def user_edits_result(rel_path: str, user_edits: str, final_content: str, new_problems: str = "") -> str:
    return (
        f"The user made the following updates to your content:\n\n{user_edits}\n\n"
        f"The updated content, which includes both your original modifications and the user's "
        f"edits, has been successfully saved to {rel_path}. Here is the full, updated content "
        f"of the file, including line numbers:\n\n"
        f"<final_file_content path=\"{rel_path}\">\n{final_content}\n</final_file_content>\n\n"
        "Please note:\n"
        "1. You do not need to re-write the file with these changes, as they have already been applied.\n"
        "2. Proceed with the task using this updated file content as the new baseline.\n"
        "3. If the user's edits have addressed part of the task or changed the requirements, "
        "adjust your approach accordingly."
        f"{new_problems}"
    )


def image_blocks(images: Optional[Sequence[str]]) -> List[Dict[str, Any]]:
    """Turn data URLs (``data:image/png;base64,...``) into image content blocks."""
    blocks: List[Dict[str, Any]] = []
    for data_url in images or []:
        header, _, data = data_url.partition(",")
        media_type = header.split(":", 1)[-1].split(";", 1)[0] or "image/png"
        blocks.append({
            "type": "image",
            "source": {"type": "base64", "media_type": media_type, "data": data},
        })
    return blocks


def tool_result(text: str, images: Optional[Sequence[str]] = None) -> ToolResponse:
    if images:
        return [{"type": "text", "text": text}, *image_blocks(images)]
    return text


def create_pretty_patch(filename: str = "file", old_str: Optional[str] = None, new_str: Optional[str] = None) -> str:
    """Unified diff of two versions with the file headers stripped."""
    old_lines = (old_str or "").splitlines(keepends=True)
    new_lines = (new_str or "").splitlines(keepends=True)
    name = filename.replace(os.sep, "/")
    patch = difflib.unified_diff(old_lines, new_lines, fromfile=name, tofile=name)
    lines = list(patch)[2:]
    return "".join(line if line.endswith("\n") else line + "\n" for line in lines).rstrip("\n")


def format_files_list(
    absolute_path: str,
    files: List[str],
    did_hit_limit: bool,
    is_allowed=None,
    show_ignored: bool = True,
) -> str:
    """Relative, sorted listing; blocked entries carry a lock (or are hidden)."""
    rel = []
    for f in files:
        r = os.path.relpath(f, absolute_path).replace(os.sep, "/")
        if f.endswith(("/", os.sep)):
            r += "/"
        rel.append(r)

    def _key(p: str):
        parts = p.rstrip("/").split("/")
        return [(0 if i < len(parts) - 1 or p.endswith("/") else 1, part.lower()) for i, part in enumerate(parts)]

    rel.sort(key=_key)
    shown: List[str] = []
    for path in rel:
        if is_allowed is not None and not is_allowed(path):
            if not show_ignored:
                continue
            path = f"{LOCK_TEXT_SYMBOL} {path}"
        shown.append(path)

    if did_hit_limit:
        return (
            "\n".join(shown)
            + f"\n\n(File list truncated. Use list_files on specific subdirectories if you need to "
            "explore further.)"
        )
    if not shown:
        return "No files found."
    return "\n".join(shown)
