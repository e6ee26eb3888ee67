# ABOUTME: Pydantic schemas for capability servers, manifests, chat turns and stream events.
# ABOUTME: Wire shapes use camelCase aliases; Python attributes stay snake_case.
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WireModel(BaseModel):
    """Base for models exchanged with clients and capability servers."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> Dict[str, Any]:
        """Dump using wire aliases, dropping unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class TransportKind(str, Enum):
    STDIO = "stdio"
    HTTP = "http"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class CapabilityServerDescriptor(WireModel):
    """Identity and connection parameters for one capability server."""

    id: str
    name: str = ""
    description: Optional[str] = None
    transport: TransportKind = Field(
        TransportKind.STDIO,
        validation_alias=AliasChoices("transport", "transportKind", "transport_kind"),
    )
    # stdio
    command: Optional[str] = None
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    # http
    url: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    enabled: bool = True

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        # Stored rows carry explicit nulls for the unused transport group
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data

    @model_validator(mode="after")
    def _check_transport_group(self) -> "CapabilityServerDescriptor":
        if not self.id:
            raise ValueError("server id is required")
        if self.transport is TransportKind.STDIO:
            if not self.command:
                raise ValueError("stdio transport requires 'command'")
            if self.url or self.headers:
                raise ValueError("stdio transport must not set 'url' or 'headers'")
        else:
            if not self.url:
                raise ValueError("http transport requires 'url'")
            if self.command or self.args or self.env:
                raise ValueError("http transport must not set 'command', 'args' or 'env'")
        if not self.name:
            self.name = self.id
        return self


class ConnectionStatus(WireModel):
    """Derived connection state for one server id."""

    connected: bool
    status: ConnectionState
    last_connected: Optional[datetime] = Field(None, alias="lastConnected")
    error_message: Optional[str] = Field(None, alias="errorMessage")


class Tool(WireModel):
    name: str
    description: Optional[str] = None
    input_schema: Optional[Dict[str, Any]] = Field(None, alias="inputSchema")


class Resource(WireModel):
    uri: str
    name: Optional[str] = None
    description: Optional[str] = None
    mime_type: Optional[str] = Field(None, alias="mimeType")


class PromptArgument(WireModel):
    name: str
    description: Optional[str] = None
    required: Optional[bool] = None


class Prompt(WireModel):
    name: str
    description: Optional[str] = None
    arguments: List[PromptArgument] = Field(default_factory=list)


class ManifestTool(BaseModel):
    """A tool offered to the model, tagged with the server that owns it."""

    server_id: str
    name: str
    description: str = ""
    input_schema: Dict[str, Any] = Field(default_factory=dict)


class FunctionCall(BaseModel):
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class FunctionResponse(BaseModel):
    name: str
    response: Any = None


class TurnMessage(BaseModel):
    role: Literal["user", "model", "assistant"]
    text: str


class TurnState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ConversationTurn(BaseModel):
    """One user-message-to-model-response exchange."""

    user_text: str
    prior_turns: List[TurnMessage] = Field(default_factory=list)
    accumulated_text: str = ""
    function_calls: List[FunctionCall] = Field(default_factory=list)
    function_responses: List[FunctionResponse] = Field(default_factory=list)
    state: TurnState = TurnState.IDLE
    error: Optional[str] = None
    session_id: Optional[str] = None
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None

    @property
    def is_finished(self) -> bool:
        return self.state in (TurnState.COMPLETED, TurnState.FAILED, TurnState.CANCELLED)


class TextEvent(WireModel):
    type: Literal["text"] = "text"
    text: str
    # Only serialized for the non-streaming fallback message
    streaming: Optional[bool] = None


class FunctionCallEvent(WireModel):
    type: Literal["function_call"] = "function_call"
    function: Dict[str, Any]

    @classmethod
    def of(cls, call: FunctionCall) -> "FunctionCallEvent":
        return cls(function={"name": call.name, "arguments": call.arguments})


class FunctionResponseEvent(WireModel):
    type: Literal["function_response"] = "function_response"
    function: Dict[str, Any]

    @classmethod
    def of(cls, response: FunctionResponse) -> "FunctionResponseEvent":
        return cls(function={"name": response.name, "response": response.response})


class HistoryPart(WireModel):
    text: Optional[str] = None


class HistoryEntry(WireModel):
    role: str
    parts: List[HistoryPart] = Field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(part.text or "" for part in self.parts)


class ChatRequest(WireModel):
    """Body of the chat streaming endpoint."""

    message: str = ""
    history: List[HistoryEntry] = Field(default_factory=list)
    enable_mcp: bool = Field(True, alias="enableMCP")
    session_id: Optional[str] = Field(None, alias="sessionId")


class ManagementRequest(WireModel):
    """Body of the management endpoint."""

    server_id: Optional[str] = Field(None, alias="serverId")
    server: Optional[Dict[str, Any]] = None
    tool_name: Optional[str] = Field(None, alias="toolName")
    args: Optional[Dict[str, Any]] = None
    uri: Optional[str] = None
    prompt_name: Optional[str] = Field(None, alias="promptName")


class Message(BaseModel):
    """A message sent to the model provider."""

    role: Literal["system", "user", "assistant", "tool"]
    content: Any
    tool_calls: Optional[List[Dict[str, Any]]] = None
    tool_call_id: Optional[str] = None
    name: Optional[str] = None


class StreamChunk(BaseModel):
    """A chunk of a streaming model response."""

    delta: str = ""
    function_calls: Optional[List[FunctionCall]] = None
    model: Optional[str] = None
    finish_reason: Optional[str] = None
    usage: Optional[Dict[str, Any]] = None
