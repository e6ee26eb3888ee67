"""mcpgate - connect a chat model to Model Context Protocol capability servers."""

__version__ = "0.1.0"

from mcpgate.bridge import StreamingToolBridge
from mcpgate.config import Settings
from mcpgate.exceptions import (
    ConfigurationError,
    ConnectError,
    InvalidRequestError,
    MCPGateError,
    ProtocolError,
    ProviderError,
    RequestTimeoutError,
    ServerNotConnectedError,
    ToolInvocationError,
    UnsupportedActionError,
    UnsupportedCapabilityError,
)
from mcpgate.mcp import AsyncMCPClient, ConnectionPool, Gateway, GatewayResponse, ToolManifest
from mcpgate.persistence import (
    ConversationStore,
    HttpConversationStore,
    InMemoryConversationStore,
)
from mcpgate.schemas import (
    CapabilityServerDescriptor,
    ChatRequest,
    ConnectionState,
    ConnectionStatus,
    ConversationTurn,
    TransportKind,
)

__all__ = [
    "__version__",
    "AsyncMCPClient",
    "CapabilityServerDescriptor",
    "ChatRequest",
    "ConfigurationError",
    "ConnectError",
    "ConnectionPool",
    "ConnectionState",
    "ConnectionStatus",
    "ConversationStore",
    "ConversationTurn",
    "Gateway",
    "GatewayResponse",
    "HttpConversationStore",
    "InMemoryConversationStore",
    "InvalidRequestError",
    "MCPGateError",
    "ProtocolError",
    "ProviderError",
    "RequestTimeoutError",
    "ServerNotConnectedError",
    "StreamingToolBridge",
    "ToolInvocationError",
    "ToolManifest",
    "TransportKind",
    "UnsupportedActionError",
    "UnsupportedCapabilityError",
]
