"""
Run settings — knobs for parallelism, retries and timeouts.

Resolved in precedence order:
    CLI flag  >  CONVERGE_* env var  >  manifest ``settings:``  >  default
"""

from __future__ import annotations

import os
from typing import Any

from pydantic import BaseModel, Field

_ENV_PREFIX = "CONVERGE_"


class Settings(BaseModel):
    """Engine settings, usually declared under ``settings:`` in a manifest."""

    parallelism: int = Field(1, ge=1)
    max_retries: int = Field(3, ge=0)
    backoff_base: float = Field(1.0, ge=0)
    backoff_max: float = Field(30.0, ge=0)
    command_timeout: int = Field(900, ge=1)
    fetch_timeout: int = Field(60, ge=1)
    use_sudo: bool = True
    state_dir: str | None = None

    def merged(self, **overrides: Any) -> Settings:
        """Return a copy with every non-None override applied."""
        values = {k: v for k, v in overrides.items() if v is not None}
        return self.model_copy(update=values)

    def with_env(self, environ: dict[str, str] | None = None) -> Settings:
        """Apply ``CONVERGE_*`` environment overrides."""
        env = os.environ if environ is None else environ
        overrides: dict[str, Any] = {}

        if env.get(f"{_ENV_PREFIX}PARALLELISM"):
            overrides["parallelism"] = env[f"{_ENV_PREFIX}PARALLELISM"]
        if env.get(f"{_ENV_PREFIX}MAX_RETRIES"):
            overrides["max_retries"] = env[f"{_ENV_PREFIX}MAX_RETRIES"]
        if env.get(f"{_ENV_PREFIX}STATE_DIR"):
            overrides["state_dir"] = env[f"{_ENV_PREFIX}STATE_DIR"]
        if env.get(f"{_ENV_PREFIX}NO_SUDO", "").lower() in ("1", "true", "yes"):
            overrides["use_sudo"] = False

        return self.model_validate({**self.model_dump(), **overrides})
