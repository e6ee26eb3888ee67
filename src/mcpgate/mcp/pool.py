"""
Connection pool for capability servers.

One pool instance is created per process (see ``mcpgate.api.app``) and passed
by reference to the gateway and the chat bridge. It is the sole owner of every
transport. Callers borrow a client by server id for a single operation and
must not keep it, because the pool may replace or close the entry at any time.

Usage:
    pool = ConnectionPool()
    await pool.connect(descriptor)
    tools = await pool.get("fs1").list_tools()
    await pool.disconnect("fs1")
    await pool.close()
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncIterator, Callable

from mcpgate.constants import CONNECT_TIMEOUT, DEFAULT_REQUEST_TIMEOUT
from mcpgate.exceptions import ConnectError, MCPGateError, ServerNotConnectedError
from mcpgate.mcp.client import AsyncMCPClient
from mcpgate.mcp.transports import StdioTransport, StreamableHTTPTransport, Transport
from mcpgate.schemas import (
    CapabilityServerDescriptor,
    ConnectionState,
    ConnectionStatus,
    TransportKind,
    utcnow,
)

logger = logging.getLogger(__name__)

TransportFactory = Callable[[CapabilityServerDescriptor], Transport]


def create_transport(descriptor: CapabilityServerDescriptor) -> Transport:
    """Build the transport selected by the descriptor's transport kind."""
    if descriptor.transport is TransportKind.STDIO:
        return StdioTransport(descriptor.command or "", descriptor.args, descriptor.env)
    return StreamableHTTPTransport(descriptor.url or "", descriptor.headers)


@dataclass
class PoolEntry:
    """A live connection and the descriptor it was opened from."""

    descriptor: CapabilityServerDescriptor
    client: AsyncMCPClient
    connected_at: datetime = field(default_factory=utcnow)
    last_activity: datetime = field(default_factory=utcnow)

    @property
    def server_id(self) -> str:
        return self.descriptor.id

    @property
    def transport(self) -> Transport:
        return self.client.transport

    def touch(self) -> None:
        self.last_activity = utcnow()


class ConnectionPool:
    """
    Registry of live capability-server connections, keyed by server id.

    The registry lock only guards dict mutations; handshakes, probes and
    teardown happen outside it. Connects and disconnects for the same id are
    serialized by a per-id lock so two live transports never coexist for one id.
    """

    def __init__(
        self,
        connect_timeout: float = CONNECT_TIMEOUT,
        request_timeout: float | None = DEFAULT_REQUEST_TIMEOUT,
        transport_factory: TransportFactory | None = None,
    ):
        """
        Args:
            connect_timeout: Hard deadline for spawn/dial plus handshake, in seconds
            request_timeout: Default per-call deadline handed to each client
            transport_factory: Override transport construction (tests)
        """
        self.connect_timeout = connect_timeout
        self.request_timeout = request_timeout
        self._transport_factory = transport_factory or create_transport
        self._entries: dict[str, PoolEntry] = {}
        self._lock = asyncio.Lock()
        self._id_locks: dict[str, asyncio.Lock] = {}
        self._id_lock_users: dict[str, int] = {}
        self._connecting: set[str] = set()
        self._last_errors: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, server_id: object) -> bool:
        return server_id in self._entries

    @asynccontextmanager
    async def _serialized(self, server_id: str) -> AsyncIterator[None]:
        """Hold the per-id lock; it is dropped once unused and no entry remains."""
        async with self._lock:
            lock = self._id_locks.setdefault(server_id, asyncio.Lock())
            self._id_lock_users[server_id] = self._id_lock_users.get(server_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            async with self._lock:
                self._id_lock_users[server_id] -= 1
                if not self._id_lock_users[server_id]:
                    del self._id_lock_users[server_id]
                    if server_id not in self._entries:
                        del self._id_locks[server_id]

    async def connect(self, descriptor: CapabilityServerDescriptor) -> PoolEntry:
        """
        Open a connection and register it under ``descriptor.id``.

        An existing entry for the same id is closed before the new one is
        registered.

        Raises:
            ConnectError: If the server is disabled, fails to start, or misses the deadline
        """
        server_id = descriptor.id
        if not descriptor.enabled:
            raise ConnectError(f"Server '{server_id}' is disabled", server_id=server_id)

        async with self._serialized(server_id):
            async with self._lock:
                previous = self._entries.pop(server_id, None)
                self._connecting.add(server_id)
                self._last_errors.pop(server_id, None)
            try:
                if previous is not None:
                    logger.info("Replacing existing connection for %s", server_id)
                    await self._close_entry(previous)
                entry = await self._open(descriptor)
            except ConnectError as exc:
                async with self._lock:
                    self._last_errors[server_id] = str(exc)
                raise
            finally:
                async with self._lock:
                    self._connecting.discard(server_id)

            async with self._lock:
                self._entries[server_id] = entry
            logger.info("Registered connection %s (%s)", server_id, descriptor.transport.value)
            return entry

    async def _open(self, descriptor: CapabilityServerDescriptor) -> PoolEntry:
        server_id = descriptor.id
        try:
            transport = self._transport_factory(descriptor)
        except ValueError as exc:
            raise ConnectError(f"Invalid descriptor for '{server_id}': {exc}", server_id=server_id) from exc

        client = AsyncMCPClient(transport, request_timeout=self.request_timeout, server_id=server_id)
        try:
            await asyncio.wait_for(client.connect(), timeout=self.connect_timeout)
        except asyncio.TimeoutError:
            await self._discard(client)
            raise ConnectError(
                f"Connecting to '{server_id}' timed out after {self.connect_timeout}s",
                server_id=server_id,
                timeout=True,
            ) from None
        except ConnectError:
            await self._discard(client)
            raise
        except asyncio.CancelledError:
            await self._discard(client)
            raise
        except Exception as exc:
            await self._discard(client)
            raise ConnectError(f"Failed to connect to '{server_id}': {exc}", server_id=server_id) from exc

        return PoolEntry(descriptor=descriptor, client=client)

    async def _discard(self, client: AsyncMCPClient) -> None:
        try:
            await client.close()
        except Exception as exc:
            logger.warning("Error tearing down failed connection %s: %s", client.server_id, exc)

    async def _close_entry(self, entry: PoolEntry) -> None:
        try:
            await entry.client.close()
        except Exception as exc:
            logger.warning("Error closing connection %s: %s", entry.server_id, exc)

    async def disconnect(self, server_id: str) -> None:
        """Close and remove a connection. Unknown ids are a no-op."""
        async with self._serialized(server_id):
            async with self._lock:
                entry = self._entries.pop(server_id, None)
                self._last_errors.pop(server_id, None)
            if entry is None:
                return
            await self._close_entry(entry)
            logger.info("Disconnected %s", server_id)

    async def status(self, server_id: str) -> ConnectionStatus:
        """Derive the connection state, probing live entries with ``list_resources``."""
        async with self._lock:
            if server_id in self._connecting:
                return ConnectionStatus(connected=False, status=ConnectionState.CONNECTING)
            entry = self._entries.get(server_id)
            last_error = self._last_errors.get(server_id)

        if entry is None:
            if last_error:
                return ConnectionStatus(
                    connected=False, status=ConnectionState.ERROR, error_message=last_error
                )
            return ConnectionStatus(connected=False, status=ConnectionState.DISCONNECTED)

        try:
            await entry.client.list_resources()
        except (MCPGateError, ValueError) as exc:
            return ConnectionStatus(
                connected=False, status=ConnectionState.ERROR, error_message=str(exc)
            )
        entry.touch()
        return ConnectionStatus(
            connected=True, status=ConnectionState.CONNECTED, last_connected=entry.last_activity
        )

    def get(self, server_id: str) -> AsyncMCPClient:
        """
        Borrow the client for one operation.

        Raises:
            ServerNotConnectedError: If no entry exists for the id
        """
        entry = self._entries.get(server_id)
        if entry is None:
            raise ServerNotConnectedError(server_id)
        entry.touch()
        return entry.client

    def get_entry(self, server_id: str) -> PoolEntry | None:
        return self._entries.get(server_id)

    def active_entries(self) -> list[PoolEntry]:
        """Snapshot of live entries in registration order."""
        return [entry for entry in list(self._entries.values()) if entry.client.is_alive()]

    def active_clients(self) -> list[AsyncMCPClient]:
        return [entry.client for entry in self.active_entries()]

    def active_servers(self) -> list[CapabilityServerDescriptor]:
        return [entry.descriptor for entry in self.active_entries()]

    async def close(self) -> None:
        """Drain the pool and close every connection."""
        async with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
        if entries:
            await asyncio.gather(*(self._close_entry(entry) for entry in entries))
            logger.info("Closed %d pooled connection(s)", len(entries))

    async def __aenter__(self) -> "ConnectionPool":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
