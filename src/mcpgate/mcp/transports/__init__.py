"""Transports for capability server connections."""

from mcpgate.mcp.transports.base import Transport
from mcpgate.mcp.transports.stdio import StdioTransport
from mcpgate.mcp.transports.streamable_http import StreamableHTTPTransport

__all__ = ["StdioTransport", "StreamableHTTPTransport", "Transport"]
