"""Streaming events emitted by an LLM transport.

The union mirrors the Anthropic Messages streaming protocol; transports for other
wire formats translate into these shapes so the stream consumer only knows one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union


@dataclass
class MessageStart:
    input_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0


@dataclass
class ContentBlockStart:
    index: int
    block_type: str                     # "text" | "tool_use"
    text: str = ""
    tool_id: str = ""
    tool_name: str = ""
    input: Any = field(default_factory=dict)


@dataclass
class ContentBlockDelta:
    index: int
    delta_type: str                     # "text_delta" | "input_json_delta"
    text: str = ""
    partial_json: str = ""


@dataclass
class ContentBlockStop:
    index: int


@dataclass
class MessageDelta:
    output_tokens: int = 0
    input_tokens: int = 0               # transports that only report usage at the end
    stop_reason: Optional[str] = None


@dataclass
class MessageStop:
    pass


StreamEvent = Union[
    MessageStart,
    ContentBlockStart,
    ContentBlockDelta,
    ContentBlockStop,
    MessageDelta,
    MessageStop,
]


@dataclass
class TokenUsage:
    """Token counts accumulated over one streamed response."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_writes: int = 0
    cache_reads: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            "tokensIn": self.input_tokens,
            "tokensOut": self.output_tokens,
            "cacheWrites": self.cache_writes,
            "cacheReads": self.cache_reads,
        }
