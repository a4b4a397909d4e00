"""Configuration schema. Defaults point at an OpenAI-compatible local endpoint; the Anthropic Messages API works via ``backend: anthropic``."""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from .constants import (
    ASK_POLL_INTERVAL_S,
    CHECKPOINT_INIT_TIMEOUT_S,
    CHECKPOINT_POLL_INTERVAL_S,
    LLM_STREAM_DEFAULT_TIMEOUT_S,
    MISTAKE_LIMIT,
    MODE_SWITCH_DELAY_S,
    RESUME_POLL_INTERVAL_S,
    TERMINAL_OUTPUT_LINE_LIMIT,
)


class MCPServerConfig(BaseModel):
    """Configuration for one MCP (Model Context Protocol) server.

    ``use_mcp_tool`` and ``access_mcp_resource`` address servers by ``name``.
    """

    name: str = Field(..., description="Server name the model uses in use_mcp_tool/access_mcp_resource.")
    transport: str = Field("stdio", description="Transport type: 'stdio' or 'sse'.")
    # stdio fields
    command: Optional[str] = Field(None, description="Executable to launch (stdio transport).")
    args: List[str] = Field(default_factory=list, description="Arguments for the command.")
    env: Optional[Dict[str, str]] = Field(None, description="Environment variables for the subprocess.")
    # sse fields
    url: Optional[str] = Field(None, description="SSE endpoint URL (sse transport).")
    headers: Dict[str, str] = Field(default_factory=dict, description="HTTP headers for SSE transport.")
    timeout_s: float = Field(30.0, description="Timeout in seconds for MCP calls.")

    @model_validator(mode="after")
    def _check_transport_fields(self) -> "MCPServerConfig":
        if self.transport == "stdio" and not self.command:
            raise ValueError(
                f"MCPServerConfig {self.name!r}: transport='stdio' requires 'command' to be set."
            )
        if self.transport == "sse" and not self.url:
            raise ValueError(
                f"MCPServerConfig {self.name!r}: transport='sse' requires 'url' to be set."
            )
        return self


class ModelPricing(BaseModel):
    """USD per million tokens. All zero for local models."""
    input_price: float = 0.0
    output_price: float = 0.0
    cache_writes_price: float = 0.0
    cache_reads_price: float = 0.0


class ModelConfig(BaseModel):
    """LLM endpoint and model name."""
    base_url: str = Field(..., description="e.g. http://localhost:11434/v1 or https://api.anthropic.com/v1")
    model: str = Field(..., description="Model id understood by the endpoint.")
    api_key: str = Field("", description="API key; empty for local backends (no auth header sent).")
    backend: str = Field(
        "openai",
        description=(
            "Streaming transport. 'openai' (default): any OpenAI-compatible "
            "/chat/completions endpoint (Ollama, vLLM, LM Studio, OpenAI). "
            "'anthropic': the Anthropic Messages API."
        ),
    )
    temperature: float = 0.0
    max_tokens: int = 8192
    timeout_s: float = Field(
        default=LLM_STREAM_DEFAULT_TIMEOUT_S,
        description="HTTP read timeout for one streamed request.",
    )
    context_window: int = 128_000
    pricing: ModelPricing = Field(default_factory=ModelPricing)


class ModeConfig(BaseModel):
    """A working mode: persona plus the tool groups it may use.

    Groups: ``read``, ``edit``, ``command``, ``mcp``, ``modes``.
    """
    slug: str
    name: str
    role_definition: str
    groups: List[str] = Field(default_factory=list)
    edit_file_regex: Optional[str] = Field(
        None,
        description="When set, edit tools may only touch paths matching this regex.",
    )
    custom_instructions: str = ""


class CheckpointConfig(BaseModel):
    """Shadow-git workspace snapshots."""
    enabled: bool = True
    storage_dir: Optional[str] = Field(
        None,
        description="Where shadow repositories live. Defaults to <storage_dir>/checkpoints.",
    )
    init_timeout_s: float = CHECKPOINT_INIT_TIMEOUT_S
    poll_interval_s: float = CHECKPOINT_POLL_INTERVAL_S


class TerminalConfig(BaseModel):
    """Command execution backend."""
    shell: Optional[str] = Field(None, description="Shell executable; None uses the platform default.")
    output_line_limit: int = TERMINAL_OUTPUT_LINE_LIMIT
    shell_integration: bool = Field(
        True,
        description="When False, exit codes are not reported back and commands finish with an unknown status.",
    )


class DiffConfig(BaseModel):
    """apply_diff settings."""
    enabled: bool = True
    fuzzy_threshold: float = Field(
        1.0,
        description="Minimum similarity (0-1) for a SEARCH block to match. 1.0 means exact.",
    )
    buffer_lines: int = Field(40, description="Lines searched around a :start_line: hint.")


class TelemetryConfig(BaseModel):
    """Optional OpenTelemetry tracing configuration."""
    enabled: bool = False
    service_name: str = "agentic-coder"
    exporter: str = Field(
        "none",
        description="Span exporter: 'none' (default), 'console' (stdout), or 'otlp' (gRPC endpoint).",
    )
    otlp_endpoint: str = Field(
        "",
        description="OTLP gRPC endpoint, e.g. 'http://localhost:4317'. Required when exporter='otlp'.",
    )


class CoderConfig(BaseModel):
    """Root config."""
    model: ModelConfig
    default_mode: str = "code"
    custom_modes: List[ModeConfig] = Field(
        default_factory=list,
        description="Extra modes; a custom mode with a built-in slug replaces the built-in.",
    )
    custom_instructions: str = ""
    workspace_dir: Optional[str] = Field(None, description="Workspace root; None uses the current directory.")
    storage_dir: str = Field("~/.agentic-coder", description="Task history and checkpoint storage root.")
    ignore_file: str = ".coderignore"
    checkpoints: CheckpointConfig = Field(default_factory=CheckpointConfig)
    terminal: TerminalConfig = Field(default_factory=TerminalConfig)
    diff: DiffConfig = Field(default_factory=DiffConfig)
    telemetry: Optional[TelemetryConfig] = None
    mcp_servers: List[MCPServerConfig] = Field(default_factory=list)
    mistake_limit: int = MISTAKE_LIMIT
    mode_switch_delay_s: float = MODE_SWITCH_DELAY_S
    resume_poll_interval_s: float = RESUME_POLL_INTERVAL_S
    ask_poll_interval_s: float = ASK_POLL_INTERVAL_S

    @model_validator(mode="after")
    def _check_mcp_server_names_unique(self) -> "CoderConfig":
        names = [s.name for s in self.mcp_servers]
        if len(names) != len(set(names)):
            duplicates = sorted({n for n in names if names.count(n) > 1})
            raise ValueError(
                f"Duplicate MCP server names in config: {duplicates}. "
                "Each MCP server must have a unique 'name'."
            )
        return self


# Default: Ollama on localhost:11434
DEFAULT_CONFIG = CoderConfig(
    model=ModelConfig(
        base_url="http://localhost:11434/v1",
        model="qwen2.5-coder:14b",
    ),
)
