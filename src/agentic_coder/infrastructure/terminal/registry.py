"""Terminal sessions keyed by task: the local ``TerminalBackend``."""

from __future__ import annotations

import logging
import os
from typing import Dict, List, Optional

from agentic_coder.config.constants import TERMINAL_OUTPUT_LINE_LIMIT
from agentic_coder.config.schema import TerminalConfig
from agentic_coder.infrastructure.terminal.process import ShellProcess

logger = logging.getLogger(__name__)


def compress_output(text: str, line_limit: Optional[int] = None) -> str:
    """Keep the head and tail of ``text`` when it exceeds ``line_limit`` lines."""
    limit = line_limit or TERMINAL_OUTPUT_LINE_LIMIT
    lines = text.split("\n")
    if len(lines) <= limit:
        return text
    head = limit // 2
    tail = limit - head
    omitted = len(lines) - limit
    return "\n".join(lines[:head] + [f"\n[...{omitted} lines omitted...]\n"] + lines[-tail:])


class Terminal:
    def __init__(self, terminal_id: int, cwd: str, task_id: Optional[str], config: TerminalConfig) -> None:
        self.id = terminal_id
        self.cwd = cwd
        self.task_id = task_id
        self._config = config
        self.process: Optional[ShellProcess] = None

    @property
    def busy(self) -> bool:
        return self.process is not None and not self.process.finished

    @property
    def running(self) -> bool:
        return self.busy

    def run_command(self, command: str) -> ShellProcess:
        if self.busy:
            raise RuntimeError(f"Terminal {self.id} is already running a command")
        self.process = ShellProcess(
            command,
            self.cwd,
            shell=self._config.shell,
            shell_integration=self._config.shell_integration,
        )
        return self.process

    def get_current_working_directory(self) -> str:
        return self.cwd


class TerminalRegistry:
    def __init__(self, config: Optional[TerminalConfig] = None) -> None:
        self.config = config or TerminalConfig()
        self._terminals: Dict[int, Terminal] = {}
        self._next_id = 1

    def _create(self, cwd: str, task_id: Optional[str]) -> Terminal:
        terminal = Terminal(self._next_id, cwd, task_id, self.config)
        self._terminals[terminal.id] = terminal
        self._next_id += 1
        logger.debug("Created terminal %d in %s for task %s", terminal.id, cwd, task_id)
        return terminal

    def get_or_create_terminal(self, cwd: str, required_cwd: bool, task_id: str) -> Terminal:
        cwd = os.path.abspath(cwd)
        idle = [t for t in self._terminals.values() if not t.busy]

        for terminal in idle:
            if terminal.task_id == task_id and terminal.cwd == cwd:
                return terminal
        if not required_cwd:
            for terminal in idle:
                if terminal.task_id == task_id:
                    terminal.cwd = cwd
                    return terminal
        for terminal in idle:
            if terminal.task_id is None and terminal.cwd == cwd:
                terminal.task_id = task_id
                return terminal
        return self._create(cwd, task_id)

    def get_terminals(self, busy: bool, task_id: Optional[str] = None) -> List[Terminal]:
        return [
            t for t in self._terminals.values()
            if t.busy == busy and (task_id is None or t.task_id == task_id)
        ]

    def get_unretrieved_output(self, terminal_id: int) -> str:
        terminal = self._terminals.get(terminal_id)
        if terminal is None or terminal.process is None:
            return ""
        return terminal.process.get_unretrieved_output()

    def is_process_hot(self, terminal_id: int) -> bool:
        terminal = self._terminals.get(terminal_id)
        return bool(terminal and terminal.process and terminal.process.hot())

    def compress_output(self, text: str, line_limit: Optional[int] = None) -> str:
        return compress_output(text, line_limit or self.config.output_line_limit)

    def release_terminals_for_task(self, task_id: str) -> None:
        for terminal in self._terminals.values():
            if terminal.task_id == task_id:
                terminal.task_id = None

    async def close(self) -> None:
        for terminal in self._terminals.values():
            if terminal.process is not None:
                await terminal.process.terminate()
        self._terminals.clear()
