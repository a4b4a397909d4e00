"""Named constants for values that appear in multiple places or need explanation.

Defaults that users may want to tune live on ``CoderConfig``; the values here are
the fallbacks used when a collaborator is constructed without a config.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Mistake accounting
# ---------------------------------------------------------------------------

# Consecutive malformed tool calls tolerated before the human is asked to step in.
MISTAKE_LIMIT: int = 3

# Failed apply_diff attempts on one path before the error suggests write_to_file.
DIFF_MISTAKE_THRESHOLD: int = 3

# ---------------------------------------------------------------------------
# Polling and delays (seconds)
# ---------------------------------------------------------------------------

# How often a blocked ask re-checks for a response or an abort.
ASK_POLL_INTERVAL_S: float = 0.1

# How often a paused parent task checks whether its sub-task finished.
RESUME_POLL_INTERVAL_S: float = 1.0

# Settle time after a mode switch before the next request goes out.
MODE_SWITCH_DELAY_S: float = 0.5

# How often abort_task checks whether the stream has been torn down.
ABORT_POLL_INTERVAL_S: float = 0.1

# ---------------------------------------------------------------------------
# Checkpoints
# ---------------------------------------------------------------------------

CHECKPOINT_INIT_TIMEOUT_S: float = 15.0
CHECKPOINT_POLL_INTERVAL_S: float = 0.25

# ---------------------------------------------------------------------------
# Workspace listings and output limits
# ---------------------------------------------------------------------------

LIST_FILES_LIMIT: int = 200
LIST_FILES_TOOL_LIMIT: int = 1000
SEARCH_FILES_MAX_RESULTS: int = 300
CODE_DEFINITION_MAX_FILES: int = 50
TERMINAL_OUTPUT_LINE_LIMIT: int = 500

# Directories never descended into when listing or searching the workspace.
DEFAULT_IGNORED_DIRS = frozenset({
    ".git",
    ".hg",
    ".svn",
    "node_modules",
    "__pycache__",
    ".venv",
    "venv",
    "env",
    ".mypy_cache",
    ".pytest_cache",
    ".tox",
    "dist",
    "build",
    "target",
    "out",
    ".next",
    ".idea",
})

# ---------------------------------------------------------------------------
# LLM transport
# ---------------------------------------------------------------------------

LLM_STREAM_DEFAULT_TIMEOUT_S: float = 600.0
