"""Base classes for model providers (interface and config)."""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Awaitable, Dict, List, Optional, TypeVar, Union, cast

from pydantic import BaseModel, Field

from mcpgate.schemas import Message, StreamChunk

DEFAULT_TIMEOUT_SECONDS = 60.0
TIMEOUT_UNSET = object()
TimeoutSetting = Union[Optional[float], object]
T = TypeVar("T")


def resolve_timeout_config(
    override: TimeoutSetting,
    env_value: Optional[str],
    default: Optional[float] = DEFAULT_TIMEOUT_SECONDS,
) -> Optional[float]:
    """
    Resolve a timeout value from an override, environment string, or default.

    Args:
        override: Explicit timeout override (float, None for no timeout, or TIMEOUT_UNSET)
        env_value: Environment variable string value
        default: Default timeout in seconds when nothing else specified

    Returns:
        Timeout in seconds or None to disable timeouts
    """
    if override is not TIMEOUT_UNSET:
        return cast(Optional[float], override)

    if env_value is None:
        return default

    normalized = env_value.strip().lower()
    if not normalized:
        return default
    if normalized in {"none", "off", "disable", "disabled", "infinite"}:
        return None

    try:
        return float(env_value)
    except ValueError as exc:
        raise ValueError(
            f"Invalid timeout value '{env_value}'. Provide a float or 'none'."
        ) from exc


class ProviderConfig(BaseModel):
    """Configuration for a model provider."""

    api_key: Optional[str] = Field(None, description="API key for the provider")
    base_url: Optional[str] = Field(None, description="Base URL for the API")
    default_model: Optional[str] = Field(None, description="Default model to use")
    timeout_seconds: Optional[float] = Field(
        DEFAULT_TIMEOUT_SECONDS, description="Request timeout in seconds (None disables)"
    )


class BaseLLMProvider(ABC):
    """Base class for streaming model providers."""

    def __init__(self, config: ProviderConfig):
        """
        Initialize the provider.

        Args:
            config: Provider configuration
        """
        self.config = config

    @property
    def default_model(self) -> Optional[str]:
        return self.config.default_model

    @abstractmethod
    async def chat_stream(
        self,
        messages: List[Message],
        model: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[str] = None,
        timeout: TimeoutSetting = TIMEOUT_UNSET,
    ) -> AsyncIterator[StreamChunk]:
        """
        Send a streaming chat request to the provider.

        Args:
            messages: Conversation messages, oldest first
            model: Model identifier to use
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate
            tools: Function declarations offered to the model
            tool_choice: "auto", "none" or "required"
            timeout: Override the request timeout (seconds); None disables timeout

        Returns:
            Async iterator of stream chunks. Closing the iterator must release
            the underlying network stream.
        """
        pass

    async def aclose(self) -> None:
        """Release provider resources."""
        pass

    def _resolve_timeout_value(self, timeout: TimeoutSetting) -> Optional[float]:
        """Return the effective timeout for a request."""
        if timeout is TIMEOUT_UNSET:
            return self.config.timeout_seconds
        return cast(Optional[float], timeout)

    async def _await_with_timeout(self, awaitable: Awaitable[T], timeout: Optional[float]) -> T:
        """Await a coroutine with an optional timeout."""
        if timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout=timeout)
