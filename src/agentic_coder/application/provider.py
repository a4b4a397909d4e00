"""Task stack: the provider that owns tasks, the current mode and the history index.

The top of the stack is the task the human is talking to.  ``new_task`` pushes a
child on top of its (now paused) parent; finishing the child pops it and wakes
the parent.  Tasks hold this object through a weak reference.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from agentic_coder.application.modes import get_mode_by_slug
from agentic_coder.application.ports import ProviderState
from agentic_coder.application.task import Task, TaskServices
from agentic_coder.domain import HistoryItem, Message

logger = logging.getLogger(__name__)

MessageListener = Callable[[Task, Message, bool], Awaitable[None]]

QUIESCENT_TIMEOUT_S = 3.0


class TaskStack:
    def __init__(
        self,
        services: TaskServices,
        *,
        mode: Optional[str] = None,
        on_message: Optional[MessageListener] = None,
    ) -> None:
        self.services = services
        self.config = services.config
        self.mode = mode or self.config.default_mode
        self._on_message = on_message
        self._stack: List[Task] = []
        self._runs: Dict[str, asyncio.Task] = {}
        self._history: Dict[str, HistoryItem] = {}
        if services.storage is not None:
            try:
                self._history = {item.id: item for item in services.storage.load_history()}
            except (OSError, ValueError) as exc:
                logger.warning("Could not load task history: %s", exc)

    # ------------------------------------------------------------------
    # Stack
    # ------------------------------------------------------------------

    @property
    def current_task(self) -> Optional[Task]:
        return self._stack[-1] if self._stack else None

    @property
    def stack_size(self) -> int:
        return len(self._stack)

    @property
    def tasks(self) -> List[Task]:
        """The stack, bottom first."""
        return list(self._stack)

    def log(self, message: str) -> None:
        logger.info(message)

    async def add_to_stack(self, task: Task) -> None:
        self._stack.append(task)
        self.log(f"[subtasks] Task: {task.task_number} added to stack (size {len(self._stack)})")

    async def remove_from_stack(self) -> Optional[Task]:
        if not self._stack:
            return None
        task = self._stack.pop()
        await task.abort_task(is_abandoned=True)
        self.log(f"[subtasks] Task: {task.task_number} removed from stack (size {len(self._stack)})")
        return task

    async def clear_stack(self) -> None:
        while self._stack:
            await self.remove_from_stack()

    def _next_number(self) -> int:
        numbers = [item.number for item in self._history.values()]
        numbers.extend(t.task_number for t in self._stack)
        return max(numbers, default=0) + 1

    def _spawn(self, task: Task, coro: Awaitable[None]) -> None:
        run = asyncio.ensure_future(coro)
        self._runs[task.task_id] = run

        def _done(fut: asyncio.Future) -> None:
            if fut.cancelled():
                return
            exc = fut.exception()
            if exc is not None:
                logger.error("Task %s ended with an error: %s", task.task_id, exc, exc_info=exc)

        run.add_done_callback(_done)

    # ------------------------------------------------------------------
    # Starting tasks
    # ------------------------------------------------------------------

    async def init_with_task(self, text: str, images: Optional[List[str]] = None) -> Task:
        """Replace the stack with a new root task and start it."""
        await self.clear_stack()
        task = Task(self.services, provider=self, task_number=self._next_number(), mode=self.mode)
        await self.add_to_stack(task)
        self._spawn(task, task.start_task(text, images))
        return task

    async def init_with_history_item(self, item: HistoryItem) -> Task:
        await self.clear_stack()
        task = Task(self.services, provider=self, history_item=item, mode=self.mode, cwd=item.workspace)
        await self.add_to_stack(task)
        self._spawn(task, task.resume_from_history())
        return task

    async def init_with_subtask(self, message: str) -> Task:
        parent = self.current_task
        if parent is None:
            raise RuntimeError("init_with_subtask without a current task")
        child = Task(
            self.services,
            provider=self,
            parent=parent,
            root=parent.root_task or parent,
            task_number=self._next_number(),
            mode=self.mode,
            cwd=parent.cwd,
        )
        await self.add_to_stack(child)
        self.log(f"[subtasks] Task: {parent.task_number} started sub-task {child.task_number}")
        self._spawn(child, child.start_task(message))
        return child

    async def finish_subtask(self, last_message: str) -> None:
        """Pop the finished child and wake its parent with the child's final message.

        Runs on the child's own presenter, so the child is abandoned without
        waiting for it to wind down.
        """
        await self.remove_from_stack()
        parent = self.current_task
        if parent is None:
            self.log("[subtasks] sub-task finished with no parent left on the stack")
            return
        await parent.resume_paused_task(last_message)

    async def cancel_task(self) -> None:
        task = self.current_task
        if task is None:
            return
        await task.abort_task()
        if not await task.wait_until_quiescent(timeout_s=QUIESCENT_TIMEOUT_S):
            logger.warning("Task %s did not finish aborting within %.1fs", task.task_id, QUIESCENT_TIMEOUT_S)

    async def wait_until_idle(self) -> None:
        """Wait for every task loop started here (children included) to end."""
        while True:
            pending = [run for run in self._runs.values() if not run.done()]
            if not pending:
                return
            await asyncio.wait(pending)

    # ------------------------------------------------------------------
    # TaskProvider
    # ------------------------------------------------------------------

    async def get_state(self) -> ProviderState:
        return ProviderState(
            mode=self.mode,
            custom_modes=list(self.config.custom_modes),
            custom_instructions=self.config.custom_instructions,
            terminal_output_line_limit=self.config.terminal.output_line_limit,
        )

    async def handle_mode_switch(self, mode_slug: str) -> None:
        if get_mode_by_slug(mode_slug, self.config.custom_modes) is None:
            logger.warning("Ignoring switch to unknown mode %r", mode_slug)
            return
        previous, self.mode = self.mode, mode_slug
        task = self.current_task
        if task is not None:
            task.mode = mode_slug
        self.log(f"Mode switched from '{previous}' to '{mode_slug}'")

    async def update_task_history(self, item: HistoryItem) -> None:
        self._history[item.id] = item
        storage = self.services.storage
        if storage is None:
            return
        try:
            storage.save_history(self.history_items())
        except OSError as exc:
            logger.warning("Could not save task history: %s", exc)

    async def post_message(self, task: Task, message: Message, partial_update: bool) -> None:
        if self._on_message is not None:
            await self._on_message(task, message, partial_update)

    def history_items(self) -> List[HistoryItem]:
        """History index, newest first."""
        return sorted(self._history.values(), key=lambda item: item.ts, reverse=True)

    def find_history_item(self, task_id: str) -> Optional[HistoryItem]:
        item = self._history.get(task_id)
        if item is not None:
            return item
        matches = [i for i in self._history.values() if i.id.startswith(task_id)]
        return matches[0] if len(matches) == 1 else None
