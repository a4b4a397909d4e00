"""Token and cost bookkeeping over the UI message log."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, Optional

from agentic_coder.config.schema import ModelPricing
from agentic_coder.domain import ApiMetrics, Message
from agentic_coder.domain.stream import TokenUsage

logger = logging.getLogger(__name__)


def calculate_api_cost(
    pricing: ModelPricing,
    input_tokens: int,
    output_tokens: int,
    cache_writes: int = 0,
    cache_reads: int = 0,
) -> float:
    """Cost in USD; prices are per million tokens."""
    return (
        pricing.input_price * input_tokens
        + pricing.output_price * output_tokens
        + pricing.cache_writes_price * cache_writes
        + pricing.cache_reads_price * cache_reads
    ) / 1_000_000


def usage_cost(pricing: ModelPricing, usage: TokenUsage) -> float:
    return calculate_api_cost(
        pricing, usage.input_tokens, usage.output_tokens, usage.cache_writes, usage.cache_reads,
    )


def parse_request_info(message: Message) -> Dict[str, Any]:
    """The JSON payload of an ``api_req_started``/``api_req_deleted`` message ({} if unreadable)."""
    try:
        data = json.loads(message.text or "{}")
    except ValueError:
        logger.debug("Unreadable api request payload at ts=%s", message.ts)
        return {}
    return data if isinstance(data, dict) else {}


def get_api_metrics(messages: Iterable[Message]) -> ApiMetrics:
    """Aggregate token and cost totals from ``api_req_started`` messages.

    ``api_req_deleted`` messages (written when a checkpoint restore drops turns)
    subtract what they removed.  ``context_tokens`` is the size of the most
    recent request.
    """
    metrics = ApiMetrics()
    last_request: Optional[Dict[str, Any]] = None
    for message in messages:
        if message.type != "say" or message.say not in ("api_req_started", "api_req_deleted"):
            continue
        info = parse_request_info(message)
        sign = -1 if message.say == "api_req_deleted" else 1
        metrics.total_tokens_in += sign * int(info.get("tokensIn") or 0)
        metrics.total_tokens_out += sign * int(info.get("tokensOut") or 0)
        metrics.total_cache_writes += sign * int(info.get("cacheWrites") or 0)
        metrics.total_cache_reads += sign * int(info.get("cacheReads") or 0)
        metrics.total_cost += sign * float(info.get("cost") or 0.0)
        if message.say == "api_req_started" and "tokensIn" in info:
            last_request = info
    if last_request is not None:
        metrics.context_tokens = sum(
            int(last_request.get(k) or 0) for k in ("tokensIn", "tokensOut", "cacheWrites", "cacheReads")
        )
    return metrics
