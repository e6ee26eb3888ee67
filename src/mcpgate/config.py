"""Runtime settings read from the environment.

Library code never loads ``.env`` itself; entry points call ``load_dotenv()``
before ``Settings.from_env()``.
"""

import os
from typing import Mapping, Optional

from pydantic import BaseModel, Field

from mcpgate.base import TIMEOUT_UNSET, resolve_timeout_config
from mcpgate.constants import (
    CONNECT_TIMEOUT,
    DEFAULT_MAX_OUTPUT_TOKENS,
    DEFAULT_MODEL,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_TEMPERATURE,
    HISTORY_LIMIT,
    MAX_TOOL_ROUNDS,
)
from mcpgate.exceptions import ConfigurationError

API_KEY_VARIABLES = ("GEMINI_API_KEY", "GOOGLE_API_KEY")


class Settings(BaseModel):
    """Process-wide configuration."""

    api_key: str = Field(..., repr=False)
    model: str = DEFAULT_MODEL
    temperature: float = DEFAULT_TEMPERATURE
    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS
    connect_timeout: float = CONNECT_TIMEOUT
    request_timeout: Optional[float] = DEFAULT_REQUEST_TIMEOUT
    history_limit: int = HISTORY_LIMIT
    max_tool_rounds: int = MAX_TOOL_ROUNDS
    persistence_url: Optional[str] = None
    persistence_api_key: Optional[str] = Field(None, repr=False)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from environment variables.

        Raises:
            ConfigurationError: If no model-provider API key is set or a value is malformed
        """
        env = os.environ if environ is None else environ

        api_key = next((env[name] for name in API_KEY_VARIABLES if env.get(name)), "")
        if not api_key:
            raise ConfigurationError(
                "Model provider API key missing: set GEMINI_API_KEY or GOOGLE_API_KEY"
            )

        try:
            connect_timeout = resolve_timeout_config(
                TIMEOUT_UNSET, env.get("MCPGATE_CONNECT_TIMEOUT_S"), CONNECT_TIMEOUT
            )
            request_timeout = resolve_timeout_config(
                TIMEOUT_UNSET, env.get("MCPGATE_REQUEST_TIMEOUT_S"), DEFAULT_REQUEST_TIMEOUT
            )
            return cls(
                api_key=api_key,
                model=env.get("MCPGATE_MODEL") or DEFAULT_MODEL,
                temperature=float(env.get("MCPGATE_TEMPERATURE", DEFAULT_TEMPERATURE)),
                max_output_tokens=int(
                    env.get("MCPGATE_MAX_OUTPUT_TOKENS", DEFAULT_MAX_OUTPUT_TOKENS)
                ),
                # Connect always carries a hard deadline
                connect_timeout=connect_timeout if connect_timeout is not None else CONNECT_TIMEOUT,
                request_timeout=request_timeout,
                history_limit=int(env.get("MCPGATE_HISTORY_LIMIT", HISTORY_LIMIT)),
                max_tool_rounds=int(env.get("MCPGATE_MAX_TOOL_ROUNDS", MAX_TOOL_ROUNDS)),
                persistence_url=env.get("MCPGATE_PERSISTENCE_URL") or None,
                persistence_api_key=env.get("MCPGATE_PERSISTENCE_API_KEY") or None,
            )
        except ValueError as exc:
            raise ConfigurationError(f"Invalid configuration: {exc}") from exc
