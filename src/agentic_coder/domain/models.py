"""Domain models: messages, content blocks, tool results, checkpoints. Pure data, no I/O."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


# ---------------------------------------------------------------------------
# Message log
# ---------------------------------------------------------------------------

ASK = "ask"
SAY = "say"


class AskResponse(str, Enum):
    """How the human answered an ``ask`` message."""

    YES = "yesButtonClicked"
    NO = "noButtonClicked"
    MESSAGE = "messageResponse"


@dataclass
class Message:
    """One entry of the UI message log.

    ``ts`` is the stable identity of the message: partial updates mutate the same
    entry in place and never change it.  ``partial`` is tri-state: ``True`` while
    streaming, ``False`` once finalized after streaming, ``None`` for messages that
    were never streamed.
    """

    ts: int
    type: str                      # "ask" | "say"
    ask: Optional[str] = None      # ask subtype, set when type == "ask"
    say: Optional[str] = None      # say subtype, set when type == "say"
    text: Optional[str] = None
    images: Optional[List[str]] = None
    partial: Optional[bool] = None
    progress_status: Optional[Dict[str, Any]] = None

    @property
    def subtype(self) -> Optional[str]:
        return self.ask if self.type == ASK else self.say

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"ts": self.ts, "type": self.type}
        for key in ("ask", "say", "text", "images", "partial", "progress_status"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(
            ts=int(data["ts"]),
            type=data["type"],
            ask=data.get("ask"),
            say=data.get("say"),
            text=data.get("text"),
            images=data.get("images"),
            partial=data.get("partial"),
            progress_status=data.get("progress_status") or data.get("progressStatus"),
        )


def now_ms() -> int:
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Assistant content blocks
# ---------------------------------------------------------------------------

@dataclass
class TextContent:
    """Assistant prose. ``content`` grows while ``partial`` is True."""

    content: str = ""
    partial: bool = True
    type: str = "text"


@dataclass
class ToolUse:
    """A tool invocation requested by the model.

    ``raw_input`` accumulates the streamed JSON argument text; ``params`` holds the
    parsed parameter map (best effort while partial, final after block-stop).
    """

    id: str
    name: str
    raw_input: str = ""
    params: Dict[str, Any] = field(default_factory=dict)
    partial: bool = True
    type: str = "tool_use"


ContentBlock = Union[TextContent, ToolUse]


def block_to_api(block: ContentBlock) -> Dict[str, Any]:
    """Render a content block in the conversation-history (Anthropic) shape."""
    if isinstance(block, TextContent):
        return {"type": "text", "text": block.content}
    return {"type": "tool_use", "id": block.id, "name": block.name, "input": dict(block.params)}


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

class ToolName(str, Enum):
    """Every tool the model may invoke. The dispatch table is exhaustive over this."""

    WRITE_TO_FILE = "write_to_file"
    APPLY_DIFF = "apply_diff"
    INSERT_CONTENT = "insert_content"
    SEARCH_AND_REPLACE = "search_and_replace"
    READ_FILE = "read_file"
    LIST_FILES = "list_files"
    LIST_CODE_DEFINITION_NAMES = "list_code_definition_names"
    SEARCH_FILES = "search_files"
    EXECUTE_COMMAND = "execute_command"
    ASK_FOLLOWUP_QUESTION = "ask_followup_question"
    ATTEMPT_COMPLETION = "attempt_completion"
    USE_MCP_TOOL = "use_mcp_tool"
    ACCESS_MCP_RESOURCE = "access_mcp_resource"
    SWITCH_MODE = "switch_mode"
    NEW_TASK = "new_task"
    FETCH_INSTRUCTIONS = "fetch_instructions"


# Tools whose successful execution mutates workspace files (and so triggers a checkpoint).
FILE_MUTATING_TOOLS = frozenset({
    ToolName.WRITE_TO_FILE,
    ToolName.APPLY_DIFF,
    ToolName.INSERT_CONTENT,
    ToolName.SEARCH_AND_REPLACE,
})

# A tool result is either plain text or a list of Anthropic-style content blocks.
ToolResponse = Union[str, List[Dict[str, Any]]]


@dataclass
class ToolExecutionResult:
    """Outcome of one tool dispatch, folded into the task's counters by the presenter."""

    did_edit_file: bool = False
    did_reject_tool: bool = False
    consecutive_mistake_count: int = 0
    needs_pause: bool = False
    task_completed: bool = False
    paused_mode_slug: Optional[str] = None


@dataclass
class DiffResult:
    """Outcome of applying a diff. ``fail_parts`` carries per-block failure details."""

    success: bool
    content: str = ""
    error: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    fail_parts: List["DiffResult"] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Checkpoints
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CheckpointEvent:
    """Emitted by the snapshot service after each commit."""

    from_hash: str
    to_hash: str
    is_first: bool


@dataclass
class FileChange:
    """One file in a checkpoint diff."""

    relative_path: str
    absolute_path: str
    before: str
    after: str


# ---------------------------------------------------------------------------
# Terminal
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ExitDetails:
    """How a command finished: an exit code, a signal, or neither (unknown)."""

    exit_code: Optional[int] = None
    signal: Optional[int] = None
    signal_name: Optional[str] = None
    core_dump_possible: bool = False


# ---------------------------------------------------------------------------
# History index / metrics
# ---------------------------------------------------------------------------

@dataclass
class ApiMetrics:
    total_tokens_in: int = 0
    total_tokens_out: int = 0
    total_cache_writes: int = 0
    total_cache_reads: int = 0
    total_cost: float = 0.0
    context_tokens: int = 0


@dataclass
class HistoryItem:
    """Summary row in the task-history index."""

    id: str
    number: int
    ts: int
    task: str
    tokens_in: int = 0
    tokens_out: int = 0
    cache_writes: int = 0
    cache_reads: int = 0
    total_cost: float = 0.0
    size: int = 0
    workspace: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "number": self.number,
            "ts": self.ts,
            "task": self.task,
            "tokens_in": self.tokens_in,
            "tokens_out": self.tokens_out,
            "cache_writes": self.cache_writes,
            "cache_reads": self.cache_reads,
            "total_cost": self.total_cost,
            "size": self.size,
            "workspace": self.workspace,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoryItem":
        return cls(
            id=data["id"],
            number=int(data.get("number", 0)),
            ts=int(data.get("ts", 0)),
            task=data.get("task", ""),
            tokens_in=int(data.get("tokens_in", 0)),
            tokens_out=int(data.get("tokens_out", 0)),
            cache_writes=int(data.get("cache_writes", 0)),
            cache_reads=int(data.get("cache_reads", 0)),
            total_cost=float(data.get("total_cost", 0.0)),
            size=int(data.get("size", 0)),
            workspace=data.get("workspace"),
        )
