"""Sub-task pause/resume for one task: ``Running -> Paused -> Running``.

A parent pauses while the child it launched with ``new_task`` runs.  The
request loop blocks in :meth:`SubtaskController.wait_for_resume` (polling, so
an abort is noticed) until the provider calls :meth:`resume` with the child's
final message.  The mode active at pause time is restored before the parent's
next request.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Optional

from agentic_coder.config.constants import MODE_SWITCH_DELAY_S, RESUME_POLL_INTERVAL_S

if TYPE_CHECKING:
    from agentic_coder.application.task import Task

logger = logging.getLogger(__name__)


class SubtaskController:
    def __init__(
        self,
        task: "Task",
        *,
        poll_interval_s: float = RESUME_POLL_INTERVAL_S,
        mode_switch_delay_s: float = MODE_SWITCH_DELAY_S,
    ) -> None:
        self._task = task
        self._poll_interval_s = poll_interval_s
        self._mode_switch_delay_s = mode_switch_delay_s
        self.paused = False
        self.paused_mode_slug: Optional[str] = None
        self._resume_message: Optional[str] = None

    def _log(self, message: str) -> None:
        logger.info(message)
        provider = self._task.provider()
        if provider is not None:
            provider.log(message)

    def pause(self, mode_slug: Optional[str]) -> None:
        """Stop the task before its next request; ``mode_slug`` is restored on resume."""
        self.paused = True
        self.paused_mode_slug = mode_slug or self._task.mode
        self._resume_message = None
        self._log(f"[subtasks] Task: {self._task.task_number} paused in mode '{self.paused_mode_slug}'")

    def resume(self, last_message: Optional[str] = None) -> None:
        """Wake the paused task; ``last_message`` is handed to its next request."""
        if not self.paused:
            logger.warning("resume() on task %s, which is not paused", self._task.task_id)
        self._resume_message = last_message
        self.paused = False
        self._log(f"[subtasks] Task: {self._task.task_number} resumed")

    def cancel(self) -> None:
        self.paused = False
        self._resume_message = None

    async def wait_for_resume(self) -> None:
        while self.paused and not self._task.aborted:
            await asyncio.sleep(self._poll_interval_s)

    async def restore_mode(self) -> None:
        """Switch back to the paused mode if the child left a different one active."""
        provider = self._task.provider()
        target = self.paused_mode_slug
        if provider is None or not target:
            return
        state = await provider.get_state()
        if state.mode == target:
            return
        await provider.handle_mode_switch(target)
        await asyncio.sleep(self._mode_switch_delay_s)
        self._log(
            f"[subtasks] Task: {self._task.task_number} has switched back to mode: "
            f"'{target}' from mode: '{state.mode}'"
        )

    async def wait_and_restore(self) -> Optional[str]:
        """Block until resumed, restore the mode, and return the child's final message."""
        self._log(f"[subtasks] Task: {self._task.task_number} is waiting for its sub-task")
        await self.wait_for_resume()
        if self._task.aborted:
            return None
        await self.restore_mode()
        message, self._resume_message = self._resume_message, None
        return message
