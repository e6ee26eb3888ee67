"""Exception hierarchy for mcpgate.

Infrastructure failures (connect, protocol) surface to the direct caller.
Tool and stream failures are absorbed into the conversation turn by the bridge.
"""

from typing import Any, Optional

from mcpgate.constants import METHOD_NOT_FOUND, REQUEST_TIMEOUT, UNSUPPORTED_ACTION_MESSAGE


class MCPGateError(Exception):
    """Base exception for all mcpgate errors."""

    pass


class ConfigurationError(MCPGateError):
    """Error in configuration (missing keys, invalid values, etc.)."""

    pass


class ConnectError(MCPGateError):
    """Spawning or dialing a capability server failed."""

    def __init__(self, message: str, server_id: Optional[str] = None, timeout: bool = False):
        super().__init__(message)
        self.server_id = server_id
        self.timeout = timeout


class ServerNotConnectedError(MCPGateError):
    """No live connection is registered for the requested server id."""

    def __init__(self, server_id: str):
        super().__init__(f"Server '{server_id}' is not connected")
        self.server_id = server_id


class ProtocolError(MCPGateError):
    """The capability server answered with a JSON-RPC error."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    @classmethod
    def from_error(cls, error: dict[str, Any]) -> "ProtocolError":
        """Build the most specific subclass for a JSON-RPC error object."""
        code = error.get("code")
        message = error.get("message") or "Unknown error"
        if code == METHOD_NOT_FOUND:
            return UnsupportedCapabilityError(message, code=code, data=error.get("data"))
        return cls(message, code=code, data=error.get("data"))

    def __str__(self) -> str:
        if self.code is None:
            return self.message
        return f"JSON-RPC error {self.code}: {self.message}"


class RequestTimeoutError(ProtocolError):
    """A request did not receive its response within the deadline."""

    def __init__(self, message: str):
        super().__init__(message, code=REQUEST_TIMEOUT)


class UnsupportedCapabilityError(ProtocolError):
    """The server does not implement the requested method."""

    pass


class UnsupportedActionError(MCPGateError):
    """The management endpoint received an unknown action name."""

    def __init__(self, action: str):
        super().__init__(f"{UNSUPPORTED_ACTION_MESSAGE}: {action}")
        self.action = action


class InvalidRequestError(MCPGateError):
    """A management or chat request is missing fields or carries invalid values."""

    pass


class ToolInvocationError(MCPGateError):
    """A tool call issued by the model failed."""

    def __init__(self, message: str, tool_name: str, server_id: Optional[str] = None):
        super().__init__(message)
        self.tool_name = tool_name
        self.server_id = server_id


class StreamError(MCPGateError):
    """The model stream failed before finishing."""

    pass


class ProviderError(MCPGateError):
    """Base error for model provider issues."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        original: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.original = original


class ProviderAuthenticationError(ProviderError):
    """Provider authentication failed (invalid API key, etc.)."""

    pass


class ProviderRateLimitError(ProviderError):
    """Provider rate limit exceeded."""

    pass


class ProviderTimeoutError(ProviderError):
    """Provider request timed out."""

    pass


class ProviderResponseError(ProviderError):
    """Provider returned an unusable response."""

    pass
