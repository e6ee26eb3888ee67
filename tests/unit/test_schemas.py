"""Tests for wire schemas."""

import pytest
from pydantic import ValidationError

from mcpgate.schemas import (
    CapabilityServerDescriptor,
    ChatRequest,
    ConnectionState,
    ConnectionStatus,
    ConversationTurn,
    FunctionCall,
    FunctionCallEvent,
    FunctionResponse,
    FunctionResponseEvent,
    ManagementRequest,
    TextEvent,
    Tool,
    TransportKind,
    TurnState,
)


class TestCapabilityServerDescriptor:
    def test_stdio_descriptor(self):
        descriptor = CapabilityServerDescriptor.model_validate(
            {"id": "fs1", "command": "mcp-fs", "args": ["/data"]}
        )

        assert descriptor.transport is TransportKind.STDIO
        assert descriptor.args == ["/data"]
        assert descriptor.name == "fs1"
        assert descriptor.enabled is True

    def test_transport_kind_alias(self):
        descriptor = CapabilityServerDescriptor.model_validate(
            {"id": "remote", "transportKind": "http", "url": "https://example.com/mcp"}
        )

        assert descriptor.transport is TransportKind.HTTP
        assert descriptor.url == "https://example.com/mcp"

    def test_null_fields_from_stored_rows_are_ignored(self):
        descriptor = CapabilityServerDescriptor.model_validate(
            {
                "id": "fs1",
                "transport": "stdio",
                "command": "mcp-fs",
                "url": None,
                "headers": None,
                "description": None,
            }
        )

        assert descriptor.url is None
        assert descriptor.headers == {}

    def test_stdio_requires_command(self):
        with pytest.raises(ValidationError, match="requires 'command'"):
            CapabilityServerDescriptor.model_validate({"id": "fs1", "transport": "stdio"})

    def test_stdio_rejects_url(self):
        with pytest.raises(ValidationError, match="must not set 'url'"):
            CapabilityServerDescriptor.model_validate(
                {"id": "fs1", "command": "mcp-fs", "url": "http://localhost"}
            )

    def test_http_requires_url(self):
        with pytest.raises(ValidationError, match="requires 'url'"):
            CapabilityServerDescriptor.model_validate({"id": "r", "transport": "http"})

    def test_http_rejects_subprocess_fields(self):
        with pytest.raises(ValidationError, match="must not set 'command'"):
            CapabilityServerDescriptor.model_validate(
                {"id": "r", "transport": "http", "url": "http://x", "args": ["a"]}
            )

    def test_unknown_transport_rejected(self):
        with pytest.raises(ValidationError):
            CapabilityServerDescriptor.model_validate(
                {"id": "r", "transport": "websocket", "url": "ws://x"}
            )


class TestWireShapes:
    def test_connection_status_uses_camel_case(self):
        status = ConnectionStatus(
            connected=False, status=ConnectionState.ERROR, error_message="서버 응답 없음"
        )

        assert status.to_wire() == {
            "connected": False,
            "status": "error",
            "errorMessage": "서버 응답 없음",
        }

    def test_tool_input_schema_alias(self):
        tool = Tool.model_validate({"name": "read_file", "inputSchema": {"type": "object"}})

        assert tool.input_schema == {"type": "object"}
        assert tool.to_wire()["inputSchema"] == {"type": "object"}

    def test_text_event_omits_streaming_flag_by_default(self):
        assert TextEvent(text="hi").to_wire() == {"type": "text", "text": "hi"}
        assert TextEvent(text="sorry", streaming=False).to_wire() == {
            "type": "text",
            "text": "sorry",
            "streaming": False,
        }

    def test_function_events(self):
        call_event = FunctionCallEvent.of(FunctionCall(name="echo", arguments={"message": "x"}))
        response_event = FunctionResponseEvent.of(
            FunctionResponse(name="echo", response={"error": "boom"})
        )

        assert call_event.to_wire() == {
            "type": "function_call",
            "function": {"name": "echo", "arguments": {"message": "x"}},
        }
        assert response_event.to_wire() == {
            "type": "function_response",
            "function": {"name": "echo", "response": {"error": "boom"}},
        }


class TestRequests:
    def test_chat_request_aliases(self):
        request = ChatRequest.model_validate(
            {
                "message": "hello",
                "history": [{"role": "user", "parts": [{"text": "a"}, {"text": "b"}]}],
                "enableMCP": False,
                "sessionId": "s1",
            }
        )

        assert request.enable_mcp is False
        assert request.session_id == "s1"
        assert request.history[0].text == "ab"

    def test_chat_request_defaults(self):
        request = ChatRequest.model_validate({"message": "hello"})

        assert request.enable_mcp is True
        assert request.history == []

    def test_management_request_aliases(self):
        request = ManagementRequest.model_validate(
            {"serverId": "fs1", "toolName": "read_file", "args": {"path": "a"}, "promptName": "p"}
        )

        assert request.server_id == "fs1"
        assert request.tool_name == "read_file"
        assert request.prompt_name == "p"


def test_turn_is_finished():
    turn = ConversationTurn(user_text="hi")
    assert turn.state is TurnState.IDLE
    assert not turn.is_finished

    turn.state = TurnState.CANCELLED
    assert turn.is_finished
