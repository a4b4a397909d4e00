"""Message channel: the ``ask``/``say`` protocol between a task and its human.

Every interaction appends to, or mutates in place, the task's UI message log.
Streaming updates arrive as ``partial=True`` calls that merge into the last
message when it is a partial of the same type and subtype; ``partial=False``
finalizes that message without changing its ``ts``.  A non-partial ``ask``
suspends the caller until :meth:`MessageChannel.handle_response` supplies an
answer or the task is aborted.

Only one non-partial ask may be outstanding at a time.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from agentic_coder.config.constants import ASK_POLL_INTERVAL_S
from agentic_coder.domain import (
    ASK,
    SAY,
    AskAlreadyPendingError,
    AskIgnoredError,
    AskResponse,
    Message,
    TaskAbortedError,
    now_ms,
)

logger = logging.getLogger(__name__)

ChangeListener = Callable[[Message, bool], Awaitable[None]]
PersistHook = Callable[[], Awaitable[None]]


@dataclass
class AskResult:
    response: AskResponse
    text: Optional[str] = None
    images: Optional[List[str]] = None


async def _noop_change(message: Message, partial_update: bool) -> None:  # noqa: ARG001
    return None


async def _noop_persist() -> None:
    return None


class MessageChannel:
    """Owns the UI message log of one task and the pending-ask slot."""

    def __init__(
        self,
        *,
        is_aborted: Callable[[], bool],
        on_change: ChangeListener = _noop_change,
        on_persist: PersistHook = _noop_persist,
        poll_interval_s: float = ASK_POLL_INTERVAL_S,
    ) -> None:
        self.messages: List[Message] = []
        self._is_aborted = is_aborted
        self._on_change = on_change
        self._on_persist = on_persist
        self._poll_interval_s = poll_interval_s
        self._last_ts = 0
        self._ask_pending = False
        self._response: Optional[AskResponse] = None
        self._response_text: Optional[str] = None
        self._response_images: Optional[List[str]] = None
        self._response_event = asyncio.Event()

    # ------------------------------------------------------------------
    # Log access
    # ------------------------------------------------------------------

    @property
    def last_message(self) -> Optional[Message]:
        return self.messages[-1] if self.messages else None

    @property
    def ask_pending(self) -> bool:
        return self._ask_pending

    @property
    def partial_open(self) -> bool:
        """True while the last message is still being streamed into."""
        last = self.last_message
        return last is not None and bool(last.partial)

    def next_ts(self) -> int:
        """A fresh timestamp, strictly greater than every one handed out before."""
        ts = max(now_ms(), self._last_ts + 1)
        self._last_ts = ts
        return ts

    def load(self, messages: List[Message]) -> None:
        """Replace the log (resume from history)."""
        self.messages = list(messages)
        if self.messages:
            self._last_ts = max(self._last_ts, max(m.ts for m in self.messages))

    async def append(self, message: Message) -> None:
        self.messages.append(message)
        self._last_ts = max(self._last_ts, message.ts)
        await self._on_persist()
        await self._on_change(message, False)

    async def overwrite(self, messages: List[Message]) -> None:
        self.messages = list(messages)
        await self._on_persist()

    async def update(self, message: Message) -> None:
        """Persist and re-publish a message that was mutated in place."""
        await self._on_persist()
        await self._on_change(message, True)

    # ------------------------------------------------------------------
    # ask
    # ------------------------------------------------------------------

    async def ask(
        self,
        ask_type: str,
        text: Optional[str] = None,
        partial: Optional[bool] = None,
        progress_status: Optional[Dict[str, Any]] = None,
    ) -> AskResult:
        """Post a question and, unless ``partial`` is True, wait for the answer.

        Raises ``AskIgnoredError`` for partial asks (nothing to wait for) and
        ``TaskAbortedError`` if the task is aborted before or while waiting.
        """
        if self._is_aborted():
            raise TaskAbortedError(f"ask({ask_type}) on an aborted task")

        last = self.last_message
        updating_partial = (
            last is not None
            and bool(last.partial)
            and last.type == ASK
            and last.ask == ask_type
        )

        if partial is True:
            if updating_partial:
                last.text = text
                last.partial = True
                last.progress_status = progress_status
                await self._on_change(last, True)
            else:
                message = Message(
                    ts=self.next_ts(), type=ASK, ask=ask_type, text=text,
                    partial=True, progress_status=progress_status,
                )
                await self.append(message)
            raise AskIgnoredError("Current ask promise was ignored")

        if self._ask_pending:
            raise AskAlreadyPendingError(
                f"ask({ask_type}) issued while another ask is still waiting for a response"
            )
        self._clear_response()

        if partial is False and updating_partial:
            last.text = text
            last.partial = False
            last.progress_status = progress_status
            await self.update(last)
        else:
            await self.append(Message(
                ts=self.next_ts(), type=ASK, ask=ask_type, text=text,
                progress_status=progress_status,
            ))

        return await self._wait_for_response(ask_type)

    async def _wait_for_response(self, ask_type: str) -> AskResult:
        self._ask_pending = True
        try:
            while self._response is None:
                if self._is_aborted():
                    raise TaskAbortedError(f"task aborted while waiting on ask({ask_type})")
                try:
                    await asyncio.wait_for(self._response_event.wait(), timeout=self._poll_interval_s)
                except asyncio.TimeoutError:
                    pass
            result = AskResult(self._response, self._response_text, self._response_images)
            self._clear_response()
            logger.debug("ask(%s) answered with %s", ask_type, result.response.value)
            return result
        finally:
            self._ask_pending = False

    def handle_response(
        self,
        response: AskResponse,
        text: Optional[str] = None,
        images: Optional[List[str]] = None,
    ) -> None:
        """Supply the answer to the pending ask."""
        self._response = AskResponse(response)
        self._response_text = text
        self._response_images = images
        self._response_event.set()

    def _clear_response(self) -> None:
        self._response = None
        self._response_text = None
        self._response_images = None
        self._response_event.clear()

    # ------------------------------------------------------------------
    # say
    # ------------------------------------------------------------------

    async def say(
        self,
        say_type: str,
        text: Optional[str] = None,
        images: Optional[List[str]] = None,
        partial: Optional[bool] = None,
        progress_status: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Post a notification. Never waits for the human."""
        if self._is_aborted():
            raise TaskAbortedError(f"say({say_type}) on an aborted task")

        last = self.last_message
        updating_partial = (
            last is not None
            and bool(last.partial)
            and last.type == SAY
            and last.say == say_type
        )

        if partial is True:
            if updating_partial:
                last.text = text
                last.images = images
                last.partial = True
                last.progress_status = progress_status
                await self._on_change(last, True)
            else:
                await self.append(Message(
                    ts=self.next_ts(), type=SAY, say=say_type, text=text, images=images,
                    partial=True, progress_status=progress_status,
                ))
            return

        if partial is False and updating_partial:
            last.text = text
            last.images = images
            last.partial = False
            last.progress_status = progress_status
            await self.update(last)
            return

        await self.append(Message(
            ts=self.next_ts(), type=SAY, say=say_type, text=text, images=images,
            progress_status=progress_status,
        ))
