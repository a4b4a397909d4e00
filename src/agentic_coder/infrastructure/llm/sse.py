"""Server-sent events over an ``httpx`` streaming response."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, Optional, Tuple

import httpx

logger = logging.getLogger(__name__)


def extract_error_message(response: httpx.Response) -> str:
    """Human-readable error string from a (likely 4xx/5xx) HTTP response."""
    try:
        body = response.json()
    except ValueError:
        return response.text or ""
    if isinstance(body, dict):
        err = body.get("error") or {}
        if isinstance(err, dict):
            return err.get("message") or response.text or ""
        if isinstance(err, str):
            return err
    return response.text or ""


async def raise_for_status(response: httpx.Response) -> None:
    """Like ``Response.raise_for_status`` but with the server's error text in the message."""
    if response.status_code < 400:
        return
    await response.aread()
    message = extract_error_message(response)
    raise httpx.HTTPStatusError(
        f"{response.status_code} from {response.request.url}: {message}",
        request=response.request,
        response=response,
    )


async def iter_sse(response: httpx.Response) -> AsyncIterator[Tuple[Optional[str], Any]]:
    """Yield ``(event_name, payload)`` pairs; payload is parsed JSON or the raw ``[DONE]`` marker."""
    event: Optional[str] = None
    data_lines = []
    async for line in response.aiter_lines():
        if line == "":
            if data_lines:
                yield event, _decode("\n".join(data_lines))
            event, data_lines = None, []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if field == "event":
            event = value
        elif field == "data":
            data_lines.append(value)
    if data_lines:
        yield event, _decode("\n".join(data_lines))


def _decode(data: str) -> Any:
    if data == "[DONE]":
        return data
    try:
        return json.loads(data)
    except ValueError:
        logger.warning("Skipping malformed SSE payload: %.200s", data)
        return None


def auth_headers(api_key: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {api_key}"} if api_key else {}
