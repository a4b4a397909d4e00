"""Streaming client for OpenAI-compatible ``/chat/completions`` endpoints.

Works with Ollama, vLLM, LM Studio, OpenAI and anything else that speaks the
same wire format.  The conversation history arrives in Anthropic shape (text,
image, tool_use and tool_result blocks); it is converted to OpenAI messages on
the way out, and the streamed chunks are translated back into the
:mod:`agentic_coder.domain.stream` event union on the way in.
"""

from __future__ import annotations

import json
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
from agentic_coder.infrastructure.llm.sse import auth_headers, iter_sse, raise_for_status

logger = logging.getLogger(__name__)

_STOP_REASONS = {"stop": "end_turn", "tool_calls": "tool_use", "length": "max_tokens"}


# ---------------------------------------------------------------------------
# Request conversion
# ---------------------------------------------------------------------------

def _text_of(content: Any) -> str:
    if isinstance(content, str):
        return content
    parts = []
    for block in content or []:
        if block.get("type") == "text":
            parts.append(block.get("text", ""))
        elif block.get("type") == "image":
            parts.append("[image omitted]")
    return "\n\n".join(parts)


def _image_part(block: Dict[str, Any]) -> Dict[str, Any]:
    source = block.get("source") or {}
    url = f"data:{source.get('media_type', 'image/png')};base64,{source.get('data', '')}"
    return {"type": "image_url", "image_url": {"url": url}}


def to_openai_messages(system_prompt: str, messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = [{"role": "system", "content": system_prompt}]
    for message in messages:
        role = message["role"]
        content = message["content"]
        if isinstance(content, str):
            out.append({"role": role, "content": content})
            continue

        if role == "assistant":
            text = "\n\n".join(b.get("text", "") for b in content if b.get("type") == "text")
            tool_calls = [
                {
                    "id": b["id"],
                    "type": "function",
                    "function": {"name": b["name"], "arguments": json.dumps(b.get("input") or {})},
                }
                for b in content if b.get("type") == "tool_use"
            ]
            entry: Dict[str, Any] = {"role": "assistant", "content": text or None}
            if tool_calls:
                entry["tool_calls"] = tool_calls
            out.append(entry)
            continue

        # tool results must directly follow the assistant message that called them
        parts: List[Dict[str, Any]] = []
        for block in content:
            kind = block.get("type")
            if kind == "tool_result":
                out.append({
                    "role": "tool",
                    "tool_call_id": block.get("tool_use_id"),
                    "content": _text_of(block.get("content")) or "(empty)",
                })
                parts.extend(_image_part(b) for b in block.get("content") or [] if isinstance(b, dict) and b.get("type") == "image")
            elif kind == "text":
                parts.append({"type": "text", "text": block.get("text", "")})
            elif kind == "image":
                parts.append(_image_part(block))
        if parts:
            out.append({"role": "user", "content": parts})
    return out


def to_openai_tools(tools: Optional[List[Dict[str, Any]]]) -> Optional[List[Dict[str, Any]]]:
    if not tools:
        return None
    return [
        {
            "type": "function",
            "function": {
                "name": t["name"],
                "description": t.get("description", ""),
                "parameters": t.get("input_schema") or {"type": "object", "properties": {}},
            },
        }
        for t in tools
    ]


# ---------------------------------------------------------------------------
# Response translation
# ---------------------------------------------------------------------------

class _ChunkTranslator:
    """Turns OpenAI delta chunks into Anthropic-style block events."""

    def __init__(self) -> None:
        self.index = -1
        self.open_kind: Optional[str] = None     # "text" | "tool"
        self.open_tool_index: Optional[int] = None
        self.stop_reason: Optional[str] = None

    def _close(self) -> List[StreamEvent]:
        if self.open_kind is None:
            return []
        self.open_kind = None
        self.open_tool_index = None
        return [ContentBlockStop(index=self.index)]

    def feed(self, chunk: Dict[str, Any]) -> List[StreamEvent]:
        events: List[StreamEvent] = []
        for choice in chunk.get("choices") or []:
            delta = choice.get("delta") or {}
            text = delta.get("content")
            if text:
                if self.open_kind != "text":
                    events.extend(self._close())
                    self.index += 1
                    self.open_kind = "text"
                    events.append(ContentBlockStart(index=self.index, block_type="text"))
                events.append(ContentBlockDelta(index=self.index, delta_type="text_delta", text=text))

            for call in delta.get("tool_calls") or []:
                call_index = call.get("index", 0)
                fn = call.get("function") or {}
                if self.open_kind != "tool" or self.open_tool_index != call_index:
                    events.extend(self._close())
                    self.index += 1
                    self.open_kind = "tool"
                    self.open_tool_index = call_index
                    events.append(ContentBlockStart(
                        index=self.index,
                        block_type="tool_use",
                        tool_id=call.get("id") or f"call_{self.index}",
                        tool_name=fn.get("name") or "",
                        input="",
                    ))
                arguments = fn.get("arguments")
                if arguments:
                    events.append(ContentBlockDelta(
                        index=self.index, delta_type="input_json_delta", partial_json=arguments,
                    ))

            if choice.get("finish_reason"):
                self.stop_reason = _STOP_REASONS.get(choice["finish_reason"], choice["finish_reason"])
        return events

    def finish(self, usage: Optional[Dict[str, Any]]) -> List[StreamEvent]:
        events = self._close()
        usage = usage or {}
        cached = (usage.get("prompt_tokens_details") or {}).get("cached_tokens") or 0
        events.append(MessageDelta(
            input_tokens=max(0, int(usage.get("prompt_tokens") or 0) - int(cached)),
            output_tokens=int(usage.get("completion_tokens") or 0),
            stop_reason=self.stop_reason,
        ))
        if cached:
            events.append(MessageStart(cache_read_input_tokens=int(cached)))
        events.append(MessageStop())
        return events


class OpenAiStreamHandler:
    """``ApiHandler`` for OpenAI-compatible servers."""

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
        url = f"{self._base_url}/chat/completions"
        payload: Dict[str, Any] = {
            "model": self.model_id,
            "messages": to_openai_messages(system_prompt, messages),
            "stream": True,
            "stream_options": {"include_usage": True},
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
        }
        openai_tools = to_openai_tools(tools)
        if openai_tools:
            payload["tools"] = openai_tools

        logger.debug(
            "POST %s model=%s messages=%d tools=%d",
            url, self.model_id, len(payload["messages"]), len(openai_tools or []),
        )
        translator = _ChunkTranslator()
        usage: Optional[Dict[str, Any]] = None
        timeout = httpx.Timeout(self._timeout, connect=30.0)
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            async with client.stream("POST", url, headers=auth_headers(self._api_key), json=payload) as response:
                await raise_for_status(response)
                yield MessageStart()
                async for _event, data in iter_sse(response):
                    if data == "[DONE]":
                        break
                    if not isinstance(data, dict):
                        continue
                    if data.get("error"):
                        err = data["error"]
                        raise RuntimeError(err.get("message") if isinstance(err, dict) else str(err))
                    if data.get("usage"):
                        usage = data["usage"]
                    for event in translator.feed(data):
                        yield event
        for event in translator.finish(usage):
            yield event
