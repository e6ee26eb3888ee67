"""Common constants used throughout mcpgate."""

# MCP protocol
PROTOCOL_VERSION = "2025-03-26"
CLIENT_INFO = {"name": "mcpgate", "version": "0.1.0"}
SESSION_HEADER = "Mcp-Session-Id"

# JSON-RPC error codes
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
CONNECTION_CLOSED = -32000
REQUEST_TIMEOUT = -32001

# Timeouts (seconds)
CONNECT_TIMEOUT = 30.0
DEFAULT_REQUEST_TIMEOUT = 10.0
PROCESS_TERMINATE_TIMEOUT = 5.0

# Chat defaults
DEFAULT_MODEL = "gemini-2.0-flash-001"
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_OUTPUT_TOKENS = 2048
HISTORY_LIMIT = 10
MAX_TOOL_ROUNDS = 10

# Management actions
MANAGEMENT_ACTIONS = (
    "connect",
    "disconnect",
    "status",
    "list-resources",
    "list-tools",
    "list-prompts",
    "call-tool",
    "read-resource",
    "get-prompt",
)
QUERY_ACTIONS = ("status", "list-resources", "list-tools", "list-prompts")

# User-facing messages
FALLBACK_MESSAGE = "죄송합니다. 응답을 생성하는 중 오류가 발생했습니다. 잠시 후 다시 시도해 주세요."
UNSUPPORTED_ACTION_MESSAGE = "Unsupported action"
