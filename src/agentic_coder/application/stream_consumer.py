"""Stream consumer: turns transport events into ordered assistant content blocks.

Blocks are appended in arrival order and start out ``partial``.  Text deltas and
tool-argument deltas always extend the *last* block.  A block-stop finalizes the
last block; for tool blocks the accumulated argument text is parsed into the
parameter map (a parse failure keeps ``raw_input`` and leaves ``params`` empty).
After every mutation the presenter is poked so the human sees progress.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, List

from agentic_coder.domain import ContentBlock, TextContent, ToolUse
from agentic_coder.domain.stream import (
    ContentBlockDelta,
    ContentBlockStart,
    ContentBlockStop,
    MessageDelta,
    MessageStart,
    MessageStop,
    StreamEvent,
    TokenUsage,
)

logger = logging.getLogger(__name__)


def parse_tool_input(raw: str) -> Dict[str, Any]:
    """Parse a finished tool-argument string; ``{}`` when it is not a JSON object."""
    if not raw or not raw.strip():
        return {}
    try:
        value = json.loads(raw)
    except (json.JSONDecodeError, ValueError) as exc:
        logger.warning("Could not parse tool input (%s): %.200s", exc, raw)
        return {}
    return value if isinstance(value, dict) else {}


def parse_partial_tool_input(raw: str) -> Dict[str, Any]:
    """Best-effort parse of an unfinished JSON object for streaming previews.

    Tries closing an open string and the object; returns ``{}`` when neither works.
    """
    if not raw or not raw.strip():
        return {}
    for suffix in ("", '"}', "}", '"]}', "]}"):
        try:
            value = json.loads(raw + suffix)
        except ValueError:
            continue
        if isinstance(value, dict):
            return value
    return {}


class StreamConsumer:
    """Accumulates one streamed assistant response into ``blocks``."""

    def __init__(self, blocks: List[ContentBlock], on_update: Callable[[], None]) -> None:
        self.blocks = blocks
        self.usage = TokenUsage()
        self.stop_reason = None
        self._on_update = on_update

    def handle(self, event: StreamEvent) -> None:
        if isinstance(event, MessageStart):
            self.usage.input_tokens += event.input_tokens
            self.usage.cache_writes += event.cache_creation_input_tokens
            self.usage.cache_reads += event.cache_read_input_tokens
            return

        if isinstance(event, MessageDelta):
            self.usage.output_tokens += event.output_tokens
            self.usage.input_tokens += event.input_tokens
            if event.stop_reason:
                self.stop_reason = event.stop_reason
            return

        if isinstance(event, MessageStop):
            return

        if isinstance(event, ContentBlockStart):
            if event.block_type == "text":
                self.blocks.append(TextContent(content=event.text or "", partial=True))
            elif event.block_type == "tool_use":
                raw = event.input if isinstance(event.input, str) else ""
                params = event.input if isinstance(event.input, dict) else {}
                self.blocks.append(ToolUse(
                    id=event.tool_id, name=event.tool_name, raw_input=raw,
                    params=dict(params), partial=True,
                ))
            else:
                logger.debug("Ignoring content block of type %r", event.block_type)
                return
            self._on_update()
            return

        if isinstance(event, ContentBlockDelta):
            last = self.blocks[-1] if self.blocks else None
            if event.delta_type == "text_delta":
                if isinstance(last, TextContent) and last.partial:
                    last.content += event.text
                else:
                    # text without an open text block: start one rather than drop it
                    self.blocks.append(TextContent(content=event.text, partial=True))
            elif event.delta_type == "input_json_delta" and isinstance(last, ToolUse):
                last.raw_input += event.partial_json
                preview = parse_partial_tool_input(last.raw_input)
                if preview:
                    last.params = preview
            else:
                return
            self._on_update()
            return

        if isinstance(event, ContentBlockStop):
            if not self.blocks:
                return
            self._finalize(self.blocks[-1])
            self._on_update()

    def finish(self) -> None:
        """End of stream: any block still partial is finalized."""
        for block in self.blocks:
            if block.partial:
                self._finalize(block)

    @staticmethod
    def _finalize(block: ContentBlock) -> None:
        if isinstance(block, ToolUse) and block.raw_input:
            block.params = parse_tool_input(block.raw_input)
        block.partial = False
