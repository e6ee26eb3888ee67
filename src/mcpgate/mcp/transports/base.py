"""Transport interface for capability server connections.

A transport moves JSON-RPC message dicts over one bidirectional channel. It
knows nothing about request ids; correlation is the client's job.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

from mcpgate.schemas import ConnectionState

logger = logging.getLogger(__name__)


class Transport(ABC):
    """Abstract channel to one capability server."""

    def __init__(self) -> None:
        self.state = ConnectionState.DISCONNECTED
        self.error_message: str | None = None

    def _set_state(self, state: ConnectionState, error_message: str | None = None) -> None:
        if state is not self.state:
            logger.debug("%s: %s -> %s", type(self).__name__, self.state.value, state.value)
        self.state = state
        self.error_message = error_message

    @abstractmethod
    async def start(self) -> None:
        """Open the channel. Raises ConnectError on spawn/dial failure."""

    @abstractmethod
    async def send(self, message: dict[str, Any]) -> None:
        """Write one JSON-RPC message."""

    @abstractmethod
    async def receive(self) -> dict[str, Any] | None:
        """Return the next inbound message, or None once the channel has ended."""

    @abstractmethod
    async def close(self) -> None:
        """Release the subprocess or sockets. Safe to call more than once."""

    async def on_initialized(self) -> None:
        """Called by the client once the MCP handshake has completed."""

    def is_alive(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    async def __aenter__(self) -> "Transport":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
