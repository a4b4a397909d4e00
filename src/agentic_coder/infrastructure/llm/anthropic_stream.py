"""Streaming client for the Anthropic Messages API.

The domain event union already mirrors this protocol, so translation is a
field-by-field copy.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from agentic_coder.config.constants import LLM_STREAM_DEFAULT_TIMEOUT_S
from agentic_coder.domain.stream import (
    ContentBlockDelta,
    ContentBlockStart,
    ContentBlockStop,
    MessageDelta,
    MessageStart,
    MessageStop,
    StreamEvent,
)
from agentic_coder.infrastructure.llm.sse import iter_sse, raise_for_status

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


def translate_event(data: Dict[str, Any]) -> Optional[StreamEvent]:
    """One Anthropic SSE payload as a domain event (None for pings and unknown types)."""
    kind = data.get("type")
    if kind == "message_start":
        usage = (data.get("message") or {}).get("usage") or {}
        return MessageStart(
            input_tokens=int(usage.get("input_tokens") or 0),
            cache_creation_input_tokens=int(usage.get("cache_creation_input_tokens") or 0),
            cache_read_input_tokens=int(usage.get("cache_read_input_tokens") or 0),
        )
    if kind == "content_block_start":
        block = data.get("content_block") or {}
        if block.get("type") == "tool_use":
            return ContentBlockStart(
                index=data.get("index", 0),
                block_type="tool_use",
                tool_id=block.get("id", ""),
                tool_name=block.get("name", ""),
                input=block.get("input") or "",
            )
        return ContentBlockStart(
            index=data.get("index", 0),
            block_type=block.get("type", "text"),
            text=block.get("text", ""),
        )
    if kind == "content_block_delta":
        delta = data.get("delta") or {}
        if delta.get("type") == "text_delta":
            return ContentBlockDelta(index=data.get("index", 0), delta_type="text_delta", text=delta.get("text", ""))
        if delta.get("type") == "input_json_delta":
            return ContentBlockDelta(
                index=data.get("index", 0), delta_type="input_json_delta",
                partial_json=delta.get("partial_json", ""),
            )
        return None
    if kind == "content_block_stop":
        return ContentBlockStop(index=data.get("index", 0))
    if kind == "message_delta":
        usage = data.get("usage") or {}
        return MessageDelta(
            output_tokens=int(usage.get("output_tokens") or 0),
            stop_reason=(data.get("delta") or {}).get("stop_reason"),
        )
    if kind == "message_stop":
        return MessageStop()
    if kind == "error":
        err = data.get("error") or {}
        raise RuntimeError(f"{err.get('type', 'error')}: {err.get('message', '')}")
    return None


class AnthropicStreamHandler:
    """``ApiHandler`` for ``POST /v1/messages`` with ``stream: true``."""

    def __init__(
        self,
        base_url: str,
        model: str,
        api_key: str = "",
        *,
        temperature: float = 0.0,
        max_tokens: int = 8192,
        timeout_s: float = LLM_STREAM_DEFAULT_TIMEOUT_S,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self.model_id = model
        self._api_key = api_key
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._timeout = timeout_s
        self._transport = transport

    async def create_message(
        self,
        system_prompt: str,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> AsyncIterator[StreamEvent]:
        url = f"{self._base_url}/messages"
        headers = {"anthropic-version": ANTHROPIC_VERSION}
        if self._api_key:
            headers["x-api-key"] = self._api_key
        payload: Dict[str, Any] = {
            "model": self.model_id,
            "system": system_prompt,
            "messages": messages,
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
            "stream": True,
        }
        if tools:
            payload["tools"] = tools

        logger.debug("POST %s model=%s messages=%d tools=%d", url, self.model_id, len(messages), len(tools or []))
        timeout = httpx.Timeout(self._timeout, connect=30.0)
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            async with client.stream("POST", url, headers=headers, json=payload) as response:
                await raise_for_status(response)
                async for _event, data in iter_sse(response):
                    if not isinstance(data, dict):
                        continue
                    event = translate_event(data)
                    if event is not None:
                        yield event
