"""Configuration: schema, loading from env/file, and shared constants."""

from .schema import (
    DEFAULT_CONFIG,
    CheckpointConfig,
    CoderConfig,
    DiffConfig,
    MCPServerConfig,
    ModeConfig,
    ModelConfig,
    ModelPricing,
    TelemetryConfig,
    TerminalConfig,
)
from .loader import load_config

get_config = load_config  # alias

__all__ = [
    "DEFAULT_CONFIG", "CheckpointConfig", "CoderConfig", "DiffConfig",
    "MCPServerConfig", "ModeConfig", "ModelConfig", "ModelPricing",
    "TelemetryConfig", "TerminalConfig",
    "load_config", "get_config",
]
