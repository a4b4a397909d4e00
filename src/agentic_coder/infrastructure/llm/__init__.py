"""LLM transport factory: build the right streaming ApiHandler for a ModelConfig."""

from __future__ import annotations

from agentic_coder.application.ports import ApiHandler
from agentic_coder.config.schema import ModelConfig


def build_api_handler(model_config: ModelConfig) -> ApiHandler:
    """Return the ``ApiHandler`` for *model_config*.

    Dispatch is based on ``model_config.backend``:

    ``"openai"`` (default)
        :class:`~agentic_coder.infrastructure.llm.openai_stream.OpenAiStreamHandler`,
        any OpenAI-compatible ``/chat/completions`` server (Ollama, vLLM,
        LM Studio, OpenAI).

    ``"anthropic"``
        :class:`~agentic_coder.infrastructure.llm.anthropic_stream.AnthropicStreamHandler`,
        the Anthropic Messages API.

    Raises:
        ValueError: For unknown backend values.
    """
    backend = model_config.backend
    kwargs = dict(
        base_url=model_config.base_url,
        model=model_config.model,
        api_key=model_config.api_key,
        temperature=model_config.temperature,
        max_tokens=model_config.max_tokens,
        timeout_s=model_config.timeout_s,
    )
    if backend == "openai":
        from agentic_coder.infrastructure.llm.openai_stream import OpenAiStreamHandler
        return OpenAiStreamHandler(**kwargs)
    if backend == "anthropic":
        from agentic_coder.infrastructure.llm.anthropic_stream import AnthropicStreamHandler
        return AnthropicStreamHandler(**kwargs)
    raise ValueError(
        f"Unknown LLM backend {backend!r}. Supported backends: 'openai' (default), 'anthropic'."
    )
