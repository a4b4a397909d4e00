"""Default system prompt.

Tool definitions are sent separately as JSON schemas with each request, so the
prompt only describes the role, the rules, and the working context.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

from agentic_coder.config.schema import ModeConfig

_RULES = """\
## Rules
- Work step by step and use exactly one tool when you can; wait for its result
  before deciding the next step. Never assume a tool succeeded.
- Paths are relative to the workspace directory ({cwd}). You cannot `cd` into
  another directory; pass `cwd` to execute_command instead.
- Read a file before editing it. Prefer apply_diff, insert_content or
  search_and_replace for small edits to existing files{diff_note}; use
  write_to_file for new files or full rewrites, always with the COMPLETE content
  and an accurate line_count. Never elide code with placeholder comments.
- Every file change and command needs the user's approval. If the user denies
  a tool, adjust your approach using their feedback.
- Ask the user with ask_followup_question only when the tools cannot answer it.
- When the task is done, call attempt_completion with a final result that does
  not end in a question. Optionally give a command that demonstrates the result.
- Use switch_mode when a different mode suits the next step, and new_task to
  delegate a self-contained sub-task; this task resumes when it finishes.
"""

_MODES_TEMPLATE = """\
## Modes
{modes}
"""

_MCP_TEMPLATE = """\
## MCP servers
Connected servers (use_mcp_tool / access_mcp_resource server_name): {servers}
"""


def build_system_prompt(
    *,
    cwd: str,
    mode: ModeConfig,
    all_modes: Sequence[ModeConfig],
    diff_enabled: bool = True,
    custom_instructions: str = "",
    ignore_instructions: Optional[str] = None,
    mcp_servers: Optional[List[str]] = None,
) -> str:
    sections = [
        mode.role_definition.strip(),
        _RULES.format(
            cwd=cwd.replace("\\", "/"),
            diff_note="" if diff_enabled else " (apply_diff is disabled)",
        ),
        _MODES_TEMPLATE.format(modes="\n".join(
            f"- {m.slug}: {m.name}" + (" (current)" if m.slug == mode.slug else "") for m in all_modes
        )),
    ]
    if mcp_servers:
        sections.append(_MCP_TEMPLATE.format(servers=", ".join(mcp_servers)))

    instructions = [text.strip() for text in (custom_instructions, mode.custom_instructions) if text and text.strip()]
    if ignore_instructions:
        instructions.append(ignore_instructions.strip())
    if instructions:
        sections.append("## User instructions\n" + "\n\n".join(instructions))
    return "\n\n".join(sections).strip() + "\n"
