"""Environment-backed settings for the completion backend."""

from __future__ import annotations

import os

from pydantic import BaseModel, Field, ValidationError

from tool_agent.engine.transport import DEFAULT_BASE_URL
from tool_agent.errors import ConfigurationError

ENV_API_KEY = "OPENAI_API_KEY"
ENV_BASE_URL = "OPENAI_API_BASE"
ENV_MODEL = "OPENAI_MODEL"
ENV_TIMEOUT = "OPENAI_TIMEOUT"


class AgentSettings(BaseModel):
    api_key: str | None = None
    base_url: str = DEFAULT_BASE_URL
    model: str = "gpt-4o"
    timeout: float = Field(default=30.0, gt=0)

    def require_api_key(self) -> str:
        if not self.api_key:
            raise ConfigurationError(f"{ENV_API_KEY} environment variable is required")
        return self.api_key


def load_settings(**overrides: object) -> AgentSettings:
    """Read settings from the environment; non-None ``overrides`` win.

    Environment variables (all optional):
      OPENAI_API_KEY: required for real backend calls
      OPENAI_API_BASE: default ``https://api.openai.com``
      OPENAI_MODEL: default ``gpt-4o``
      OPENAI_TIMEOUT: request timeout in seconds, default 30
    """
    values: dict[str, object] = {}
    env = {
        "api_key": os.environ.get(ENV_API_KEY),
        "base_url": os.environ.get(ENV_BASE_URL),
        "model": os.environ.get(ENV_MODEL),
        "timeout": os.environ.get(ENV_TIMEOUT),
    }
    for key, value in env.items():
        if value:
            values[key] = value
    values.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return AgentSettings(**values)
    except ValidationError as exc:
        raise ConfigurationError(f"invalid settings: {exc}") from exc
