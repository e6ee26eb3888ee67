"""Capability server connections: transports, protocol client, pool and gateway."""

from mcpgate.mcp.client import AsyncMCPClient
from mcpgate.mcp.gateway import Gateway, GatewayResponse
from mcpgate.mcp.manifest import ToolManifest
from mcpgate.mcp.pool import ConnectionPool, PoolEntry

__all__ = [
    "AsyncMCPClient",
    "ConnectionPool",
    "Gateway",
    "GatewayResponse",
    "PoolEntry",
    "ToolManifest",
]
