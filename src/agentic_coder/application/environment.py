"""The ``environment_details`` block appended to every user turn."""

from __future__ import annotations

import logging
import os
import platform
from datetime import datetime
from typing import Optional

from agentic_coder.application import responses
from agentic_coder.application.ports import AccessPolicy, TerminalBackend, WorkspaceFiles
from agentic_coder.config.constants import LIST_FILES_LIMIT
from agentic_coder.domain import ToolExecutionError

logger = logging.getLogger(__name__)


def default_shell() -> str:
    if os.name == "nt":
        return os.environ.get("COMSPEC", "cmd.exe")
    return os.environ.get("SHELL", "/bin/sh")


def _time_details(now: Optional[datetime] = None) -> str:
    now = now or datetime.now().astimezone()
    offset = now.utcoffset()
    minutes = int(offset.total_seconds() // 60) if offset is not None else 0
    sign = "+" if minutes >= 0 else "-"
    hours, mins = divmod(abs(minutes), 60)
    utc = f"UTC{sign}{hours}:{mins:02d}"
    return f"\n\n# Current Time\n{now.strftime('%Y-%m-%d %H:%M:%S')} ({now.tzname() or 'local'}, {utc})"


def _terminal_details(terminals: TerminalBackend, task_id: str) -> str:
    busy = terminals.get_terminals(True, task_id)
    if not busy:
        return ""
    sections = []
    for terminal in busy:
        output = terminals.get_unretrieved_output(terminal.id)
        if output and output.strip():
            cwd = terminal.get_current_working_directory().replace(os.sep, "/")
            sections.append(f"## Terminal ID: {terminal.id} (CWD: {cwd})\n```\n{output}\n```")
    body = "\n\n".join(sections) if sections else "(No terminals with recent output)"
    return f"\n\n# Actively Running Terminals\n{body}"


def _file_details(cwd: str, files: WorkspaceFiles, access_policy: AccessPolicy) -> str:
    try:
        listed, limited = files.list_files(cwd, True, LIST_FILES_LIMIT)
    except (OSError, ToolExecutionError) as exc:
        logger.warning("Could not list workspace files for environment details: %s", exc)
        return "\n\n# Current Working Directory Files\n(Error listing files)"
    listing = responses.format_files_list(
        cwd, listed, limited,
        is_allowed=lambda p: access_policy.validate_access(os.path.join(cwd, p)),
    )
    return f"\n\n# Current Working Directory ({cwd.replace(os.sep, '/')}) Files\n{listing}"


def build_environment_details(
    *,
    cwd: str,
    task_id: str,
    terminals: TerminalBackend,
    files: WorkspaceFiles,
    access_policy: AccessPolicy,
    include_file_details: bool = False,
    mode_name: Optional[str] = None,
) -> str:
    mode_line = f"\nCurrent Mode: {mode_name}" if mode_name else ""
    details = (
        "====\n\n"
        "SYSTEM INFORMATION\n\n"
        f"Operating System: {platform.system()} {platform.release()}\n"
        f"Default Shell: {default_shell()}\n"
        f"Home Directory: {os.path.expanduser('~').replace(os.sep, '/')}\n"
        f"Current Working Directory: {cwd.replace(os.sep, '/')}"
        f"{mode_line}"
        f"{_time_details()}"
        f"{_terminal_details(terminals, task_id)}"
    )
    if include_file_details:
        details += _file_details(cwd, files, access_policy)
    return f"<environment_details>\n{details}\n\n====\n</environment_details>"
