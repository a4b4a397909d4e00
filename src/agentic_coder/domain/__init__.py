"""Domain layer: entities and value objects. No I/O."""

from .models import (
    ASK,
    SAY,
    ApiMetrics,
    AskResponse,
    CheckpointEvent,
    ContentBlock,
    DiffResult,
    ExitDetails,
    FileChange,
    FILE_MUTATING_TOOLS,
    HistoryItem,
    Message,
    TextContent,
    ToolExecutionResult,
    ToolName,
    ToolResponse,
    ToolUse,
    block_to_api,
    now_ms,
)
from .errors import (
    AskAlreadyPendingError,
    AskIgnoredError,
    CheckpointError,
    CoderError,
    DiffApplyError,
    ProviderLostError,
    TaskAbortedError,
    ToolExecutionError,
)

__all__ = [
    "ASK",
    "SAY",
    "ApiMetrics",
    "AskResponse",
    "CheckpointEvent",
    "ContentBlock",
    "DiffResult",
    "ExitDetails",
    "FileChange",
    "FILE_MUTATING_TOOLS",
    "HistoryItem",
    "Message",
    "TextContent",
    "ToolExecutionResult",
    "ToolName",
    "ToolResponse",
    "ToolUse",
    "block_to_api",
    "now_ms",
    "AskAlreadyPendingError",
    "AskIgnoredError",
    "CheckpointError",
    "CoderError",
    "DiffApplyError",
    "ProviderLostError",
    "TaskAbortedError",
    "ToolExecutionError",
]
