"""Load config from CODER_CONFIG_PATH or return default.

``load_config()`` is memoised with ``functools.lru_cache`` so the file is read
and parsed at most once per process.  Call ``load_config.cache_clear()`` to
force a re-read (useful in tests and when ``CODER_CONFIG_PATH`` changes at
runtime).
"""

from __future__ import annotations

import functools
import json
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from .schema import CoderConfig, DEFAULT_CONFIG


class _Env(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CODER_", extra="ignore")
    config_path: Optional[str] = None
    workspace_dir: Optional[str] = None


def _get_env() -> _Env:
    return _Env()


@functools.lru_cache(maxsize=1)
def load_config() -> CoderConfig:
    """Load config from CODER_CONFIG_PATH if set and valid; else return DEFAULT_CONFIG.

    ``CODER_WORKSPACE_DIR`` overrides ``workspace_dir`` from the file.  Result is
    cached for the lifetime of the process.
    """
    env = _get_env()
    config = DEFAULT_CONFIG
    path = env.config_path
    if path and path.strip():
        p = Path(path).expanduser().resolve()
        if p.is_file():
            data = json.loads(p.read_text(encoding="utf-8"))
            # Older files kept the model settings under "models": {"default": ...}
            if "model" not in data and isinstance(data.get("models"), dict) and data["models"]:
                models = data.pop("models")
                data["model"] = models.get("default") or next(iter(models.values()))
            config = CoderConfig.model_validate(data)
    if env.workspace_dir:
        config = config.model_copy(update={"workspace_dir": env.workspace_dir})
    return config
