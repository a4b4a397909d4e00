"""Checkpoint coordinator: workspace snapshots for one task.

The snapshot service is created on the first save, diff or restore of a task and
initialized in the background.  Saving is fire-and-forget: the request loop
never waits on it.
Any failure (no workspace, no storage dir, init timeout, a failed save, diff or
restore) turns checkpoints off for this task and is only logged; it never
reaches the conversation loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import TYPE_CHECKING, List, Optional, Set

from agentic_coder.application.metrics import get_api_metrics
from agentic_coder.application.ports import (
    CheckpointService,
    CheckpointServiceFactory,
    CheckpointServiceOptions,
)
from agentic_coder.config.constants import CHECKPOINT_INIT_TIMEOUT_S, CHECKPOINT_POLL_INTERVAL_S
from agentic_coder.domain import CheckpointEvent, FileChange, TaskAbortedError, now_ms

if TYPE_CHECKING:
    from agentic_coder.application.task import Task

logger = logging.getLogger(__name__)


class CheckpointCoordinator:
    def __init__(
        self,
        task: "Task",
        factory: Optional[CheckpointServiceFactory],
        *,
        enabled: bool = True,
        shadow_dir: Optional[str] = None,
        init_timeout_s: float = CHECKPOINT_INIT_TIMEOUT_S,
        poll_interval_s: float = CHECKPOINT_POLL_INTERVAL_S,
    ) -> None:
        self._task = task
        self._factory = factory
        self.enabled = enabled and factory is not None
        self._shadow_dir = shadow_dir
        self._init_timeout_s = init_timeout_s
        self._poll_interval_s = poll_interval_s
        self._service: Optional[CheckpointService] = None
        self._background: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _log(self, message: str) -> None:
        logger.info(message)
        provider = self._task.provider()
        if provider is not None:
            provider.log(message)

    def disable(self, reason: str) -> None:
        if self.enabled:
            self._log(f"[checkpoints] {reason}, disabling checkpoints for task {self._task.task_id}")
        self.enabled = False

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def get_service(self) -> Optional[CheckpointService]:
        """The task's snapshot service, created (and its init started) on first use."""
        if not self.enabled:
            return None
        if self._service is not None:
            return self._service

        workspace_dir = self._task.cwd
        if not workspace_dir or not os.path.isdir(workspace_dir):
            self.disable("workspace folder not found")
            return None
        if not self._shadow_dir:
            self.disable("checkpoint storage directory not configured")
            return None

        try:
            service = self._factory(CheckpointServiceOptions(
                task_id=self._task.task_id,
                workspace_dir=workspace_dir,
                shadow_dir=self._shadow_dir,
                log=self._log,
            ))
        except Exception as exc:
            logger.warning("Checkpoint service could not be created: %s", exc)
            self.disable("service creation failed")
            return None

        service.on("initialize", self._on_initialize)
        service.on("checkpoint", self._on_checkpoint)
        self._service = service
        self._spawn(self._init_service(service))
        return service

    async def _init_service(self, service: CheckpointService) -> None:
        try:
            await service.init_shadow_git()
        except Exception as exc:
            logger.warning("Checkpoint init failed: %s", exc)
            self.disable("initialization failed")

    def _on_initialize(self, *_args) -> None:
        has_checkpoint = any(m.say == "checkpoint_saved" for m in self._task.messages)
        if not has_checkpoint:
            self._log("[checkpoints] no checkpoints found, saving initial checkpoint")
            self.save()

    def _on_checkpoint(self, event: CheckpointEvent) -> None:
        self._spawn(self._record_checkpoint(event))

    async def _record_checkpoint(self, event: CheckpointEvent) -> None:
        # a say appended under a streaming message would split it in two
        channel = self._task.channel
        while channel.partial_open and not self._task.aborted:
            await asyncio.sleep(self._poll_interval_s)
        try:
            await self._task.say("checkpoint_saved", event.to_hash)
        except TaskAbortedError:
            logger.debug("Checkpoint %s saved after task %s was aborted", event.to_hash, self._task.task_id)

    async def initialized_service(self) -> Optional[CheckpointService]:
        """The service once initialized; ``None`` (and checkpoints off) after the timeout."""
        service = self.get_service()
        if service is None or service.is_initialized:
            return service
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._init_timeout_s
        while not service.is_initialized:
            if not self.enabled:
                return None
            if loop.time() >= deadline:
                self.disable("checkpoints didn't initialize in time")
                return None
            await asyncio.sleep(self._poll_interval_s)
        return service

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def save(self) -> None:
        """Request a snapshot in the background."""
        if not self.enabled:
            return
        self._spawn(self._save())

    async def _save(self) -> None:
        service = await self.initialized_service()
        if service is None:
            return
        try:
            await service.save_checkpoint(f"Task: {self._task.task_id}, Time: {now_ms()}")
        except Exception as exc:
            logger.warning("Checkpoint save failed: %s", exc)
            self.disable("save failed")

    async def diff(
        self,
        ts: int,
        commit_hash: str,
        previous_commit_hash: Optional[str] = None,
        mode: str = "checkpoint",
    ) -> List[FileChange]:
        """Changes up to ``commit_hash``.

        ``mode="checkpoint"`` diffs against the checkpoint saved before ``ts``;
        ``mode="full"`` diffs against the start of the task.
        """
        service = await self.initialized_service()
        if service is None:
            return []
        if previous_commit_hash is None and mode == "checkpoint":
            earlier = [
                m for m in self._task.messages
                if m.say == "checkpoint_saved" and m.ts < ts
            ]
            if earlier:
                previous_commit_hash = max(earlier, key=lambda m: m.ts).text
        if mode == "full":
            previous_commit_hash = service.base_hash
        try:
            return await service.get_diff(previous_commit_hash, commit_hash)
        except Exception as exc:
            logger.warning("Checkpoint diff failed: %s", exc)
            self.disable("diff failed")
            return []

    async def restore(self, ts: int, commit_hash: str, mode: str = "restore") -> bool:
        """Restore the workspace to ``commit_hash``.

        ``mode="restore"`` also rewinds the conversation: history entries from
        ``ts`` on are dropped, the UI log is cut after the message at ``ts``, and
        an ``api_req_deleted`` message records what was removed.  ``"preview"``
        only restores files.
        """
        service = await self.initialized_service()
        if service is None:
            return False
        task = self._task
        index = next((i for i, m in enumerate(task.messages) if m.ts == ts), -1)
        if index == -1:
            return False
        try:
            await service.restore_checkpoint(commit_hash)
            if mode == "restore":
                await task.overwrite_api_history([
                    entry for entry in task.api_conversation_history
                    if not entry.get("ts") or entry["ts"] < ts
                ])
                deleted = task.messages[index + 1:]
                removed = get_api_metrics(deleted)
                await task.overwrite_messages(task.messages[: index + 1])
                await task.say("api_req_deleted", json.dumps({
                    "tokensIn": removed.total_tokens_in,
                    "tokensOut": removed.total_tokens_out,
                    "cacheWrites": removed.total_cache_writes,
                    "cacheReads": removed.total_cache_reads,
                    "cost": removed.total_cost,
                }))
        except Exception as exc:
            logger.warning("Checkpoint restore failed: %s", exc)
            self.disable("restore failed")
            return False
        self._log(f"[checkpoints] restored task {task.task_id} to {commit_hash} ({mode})")
        return True

    async def wait_idle(self) -> None:
        """Wait for background init/save work (used on shutdown and in tests)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
