"""Ports (abstract interfaces) used by the application layer.

Each port is a ``Protocol`` so the application depends only on the *shape* of the
collaborator, not on a concrete implementation.  Infrastructure adapters must satisfy
these shapes; the application never imports from infrastructure.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Protocol

from agentic_coder.config.schema import ModeConfig
from agentic_coder.domain import DiffResult, FileChange, HistoryItem, Message
from agentic_coder.domain.stream import StreamEvent


class ApiHandler(Protocol):
    """Streaming LLM transport.

    ``messages`` is the conversation history in Anthropic Messages shape (role plus
    content blocks).  ``tools`` are JSON-schema tool definitions.  The iterator
    yields :mod:`agentic_coder.domain.stream` events.
    """

    model_id: str

    def create_message(
        self,
        system_prompt: str,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> AsyncIterator[StreamEvent]: ...


class DiffStrategy(Protocol):
    """Applies a model-authored diff to file content."""

    def apply_diff(
        self,
        original: str,
        diff: str,
        start_line: Optional[int] = None,
        end_line: Optional[int] = None,
    ) -> DiffResult: ...


class AccessPolicy(Protocol):
    """Workspace access rules (the ignore file)."""

    def validate_access(self, path: str) -> bool: ...

    def validate_command(self, command: str) -> Optional[str]:
        """Return the first path the command would read that is blocked, else None."""
        ...

    def get_instructions(self) -> Optional[str]: ...


class WorkspaceFiles(Protocol):
    """Read-only workspace queries backing the read tools and environment details."""

    def list_files(self, dir_path: str, recursive: bool, limit: int) -> "tuple[List[str], bool]":
        """Absolute paths (directories end with ``/``) and whether the limit was hit."""
        ...

    def read_text(self, path: str) -> str:
        """File text; raises ``ToolExecutionError`` for binary or unreadable files."""
        ...

    def search(self, cwd: str, dir_path: str, regex: str, file_pattern: Optional[str] = None) -> str: ...

    def list_definitions(self, path: str) -> str: ...


class FileEditor(Protocol):
    """Preview-then-save editing session for a single file."""

    is_editing: bool
    edit_type: Optional[str]          # "create" | "modify"
    original_content: Optional[str]

    async def open(self, rel_path: str) -> None: ...

    async def update(self, content: str, is_final: bool) -> None: ...

    async def save_changes(self) -> "SaveResult": ...

    async def revert_changes(self) -> None: ...

    async def reset(self) -> None: ...


@dataclass
class SaveResult:
    new_problems_message: str = ""
    user_edits: Optional[str] = None
    final_content: Optional[str] = None


class TerminalProcess(Protocol):
    """A running command.

    Events: ``line`` (str), ``completed`` (full output), ``shell_execution_complete``
    (:class:`ExitDetails`), ``no_shell_integration`` (str).  ``wait()`` returns when
    the command finishes or as soon as ``continue_()`` is called; the process keeps
    running in the latter case.
    """

    def on(self, event: str, listener: Callable[..., Any]) -> None: ...

    def once(self, event: str, listener: Callable[..., Any]) -> None: ...

    def continue_(self) -> None: ...

    async def wait(self) -> None: ...


class TerminalSession(Protocol):
    id: int
    busy: bool
    running: bool

    def run_command(self, command: str) -> TerminalProcess: ...

    def get_current_working_directory(self) -> str: ...


class TerminalBackend(Protocol):
    """Command execution sessions keyed by task id."""

    def get_or_create_terminal(self, cwd: str, required_cwd: bool, task_id: str) -> TerminalSession: ...

    def get_terminals(self, busy: bool, task_id: Optional[str] = None) -> List[TerminalSession]: ...

    def get_unretrieved_output(self, terminal_id: int) -> str: ...

    def is_process_hot(self, terminal_id: int) -> bool: ...

    def compress_output(self, text: str, line_limit: Optional[int] = None) -> str: ...

    def release_terminals_for_task(self, task_id: str) -> None: ...


class CheckpointService(Protocol):
    """Workspace snapshot service (events: ``initialize``, ``checkpoint``, ``restore``)."""

    is_initialized: bool
    base_hash: Optional[str]

    def on(self, event: str, listener: Callable[..., Any]) -> None: ...

    async def init_shadow_git(self) -> None: ...

    async def save_checkpoint(self, message: str) -> Optional[str]: ...

    async def restore_checkpoint(self, commit_hash: str) -> None: ...

    async def get_diff(self, from_hash: Optional[str] = None, to_hash: Optional[str] = None) -> List[FileChange]: ...


@dataclass
class CheckpointServiceOptions:
    task_id: str
    workspace_dir: str
    shadow_dir: str
    log: Callable[[str], None] = print


CheckpointServiceFactory = Callable[[CheckpointServiceOptions], CheckpointService]


@dataclass
class McpToolResult:
    content: List[Dict[str, Any]] = field(default_factory=list)
    is_error: bool = False


class McpHub(Protocol):
    def server_names(self) -> List[str]: ...

    async def call_tool(self, server_name: str, tool_name: str, arguments: Dict[str, Any]) -> McpToolResult: ...

    async def read_resource(self, server_name: str, uri: str) -> List[Dict[str, Any]]: ...


class TaskStorage(Protocol):
    """Per-task persistence of both logs plus the task-history index."""

    def load_api_history(self, task_id: str) -> List[Dict[str, Any]]: ...

    def save_api_history(self, task_id: str, history: List[Dict[str, Any]]) -> None: ...

    def load_ui_messages(self, task_id: str) -> List[Message]: ...

    def save_ui_messages(self, task_id: str, messages: List[Message]) -> None: ...

    def task_dir_size(self, task_id: str) -> int: ...

    def load_history(self) -> List[HistoryItem]: ...

    def save_history(self, items: List[HistoryItem]) -> None: ...


@dataclass
class ProviderState:
    """Snapshot of the provider-level settings a task reads."""

    mode: str
    custom_modes: List[ModeConfig] = field(default_factory=list)
    custom_instructions: str = ""
    terminal_output_line_limit: int = 500


class TaskProvider(Protocol):
    """What a task needs from its owner (the task stack). Held weakly by tasks."""

    async def get_state(self) -> ProviderState: ...

    async def handle_mode_switch(self, mode_slug: str) -> None: ...

    async def add_to_stack(self, task: Any) -> None: ...

    async def init_with_subtask(self, message: str) -> Any:
        """Create a child of the current task and put it on top of the stack."""
        ...

    async def finish_subtask(self, last_message: str) -> None: ...

    async def update_task_history(self, item: HistoryItem) -> None: ...

    async def post_message(self, task: Any, message: Message, partial_update: bool) -> None: ...

    def log(self, message: str) -> None: ...
