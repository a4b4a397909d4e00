"""Minimal synchronous event emitter for infrastructure adapters."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Tuple

logger = logging.getLogger(__name__)


class EventEmitter:
    """``on`` / ``once`` / ``emit`` with listeners called in registration order.

    A listener that raises is logged and skipped so one bad observer cannot
    break the emitter's own bookkeeping.
    """

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Tuple[Callable[..., Any], bool]]] = {}

    def on(self, event: str, listener: Callable[..., Any]) -> None:
        self._listeners.setdefault(event, []).append((listener, False))

    def once(self, event: str, listener: Callable[..., Any]) -> None:
        self._listeners.setdefault(event, []).append((listener, True))

    def emit(self, event: str, *args: Any) -> None:
        entries = self._listeners.get(event)
        if not entries:
            return
        self._listeners[event] = [(fn, once) for fn, once in entries if not once]
        for listener, _once in entries:
            try:
                listener(*args)
            except Exception:
                logger.exception("Listener for %r failed", event)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))
