"""In-memory stand-ins for capability servers and the model provider."""

import asyncio
from typing import Any, Callable, Dict, List, Optional, Union

from mcpgate.base import TIMEOUT_UNSET, BaseLLMProvider, ProviderConfig
from mcpgate.constants import INVALID_PARAMS, METHOD_NOT_FOUND, PROTOCOL_VERSION
from mcpgate.exceptions import ConnectError
from mcpgate.mcp.transports.base import Transport
from mcpgate.schemas import (
    CapabilityServerDescriptor,
    ConnectionState,
    FunctionCall,
    StreamChunk,
)

ToolHandler = Callable[[Dict[str, Any]], Any]


def tool_def(name: str, description: str = "", **properties: str) -> Dict[str, Any]:
    return {
        "name": name,
        "description": description or f"The {name} tool",
        "inputSchema": {
            "type": "object",
            "properties": {key: {"type": kind} for key, kind in properties.items()},
        },
    }


def text_result(text: str) -> Dict[str, Any]:
    return {"content": [{"type": "text", "text": text}]}


class MockTransport(Transport):
    """Transport that answers like a small, compliant MCP server."""

    def __init__(
        self,
        tools: Optional[List[Dict[str, Any]]] = None,
        resources: Optional[List[Dict[str, Any]]] = None,
        prompts: Optional[List[Dict[str, Any]]] = None,
        handlers: Optional[Dict[str, ToolHandler]] = None,
        hang_on: tuple = (),
        stall_send_on: tuple = (),
        fail_start: bool = False,
        server_name: str = "Mock MCP Server",
    ):
        super().__init__()
        self.tools = tools if tools is not None else []
        self.resources = resources
        self.prompts = prompts
        self.handlers = handlers or {}
        self.hang_on = set(hang_on)
        self.stall_send_on = set(stall_send_on)
        self.fail_start = fail_start
        self.server_name = server_name
        self.sent: List[Dict[str, Any]] = []
        self.close_calls = 0
        self.initialized_hook_calls = 0
        self._inbound: asyncio.Queue = asyncio.Queue()

    @property
    def tool_calls(self) -> List[Dict[str, Any]]:
        return [m["params"] for m in self.sent if m.get("method") == "tools/call"]

    @property
    def closed(self) -> bool:
        return self.close_calls > 0

    async def start(self):
        if self.fail_start:
            self._set_state(ConnectionState.ERROR, "spawn failed")
            raise ConnectError("Failed to start mock server")
        self._set_state(ConnectionState.CONNECTED)

    async def send(self, message):
        if not self.is_alive():
            raise ConnectionError("mock transport is not running")
        self.sent.append(message)
        method = message.get("method")
        if method in self.stall_send_on:
            # Like a child process that stopped reading its stdin
            await asyncio.Event().wait()
        message_id = message.get("id")
        if method is None or message_id is None:
            return
        if method in self.hang_on:
            return
        reply = {"jsonrpc": "2.0", "id": message_id}
        reply.update(await self._answer(method, message.get("params") or {}))
        await self._inbound.put(reply)

    async def _answer(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        if method == "initialize":
            return {
                "result": {
                    "protocolVersion": PROTOCOL_VERSION,
                    "serverInfo": {"name": self.server_name, "version": "1.0.0"},
                    "capabilities": {"tools": {}},
                }
            }
        if method == "tools/list":
            return self._listing("tools", self.tools)
        if method == "resources/list":
            return self._listing("resources", self.resources)
        if method == "prompts/list":
            return self._listing("prompts", self.prompts)
        if method == "tools/call":
            handler = self.handlers.get(params.get("name"))
            if handler is None:
                return {"error": {"code": INVALID_PARAMS, "message": f"Unknown tool: {params.get('name')}"}}
            try:
                result = handler(params.get("arguments") or {})
                if asyncio.iscoroutine(result):
                    result = await result
            except Exception as exc:
                return {"error": {"code": -32603, "message": str(exc)}}
            return {"result": result}
        if method == "resources/read":
            return {"result": {"contents": [{"uri": params["uri"], "text": "resource body"}]}}
        if method == "prompts/get":
            return {
                "result": {
                    "messages": [
                        {"role": "user", "content": {"type": "text", "text": f"prompt {params['name']}"}}
                    ],
                    "arguments": params.get("arguments", {}),
                }
            }
        return {"error": {"code": METHOD_NOT_FOUND, "message": f"Method not found: {method}"}}

    @staticmethod
    def _listing(key: str, items: Optional[List[Dict[str, Any]]]) -> Dict[str, Any]:
        if items is None:
            return {"error": {"code": METHOD_NOT_FOUND, "message": "Method not found"}}
        return {"result": {key: items}}

    async def receive(self):
        message = await self._inbound.get()
        if message is None:
            self._inbound.put_nowait(None)
        return message

    async def on_initialized(self):
        self.initialized_hook_calls += 1

    def inject(self, message: Optional[Dict[str, Any]]) -> None:
        """Push a raw inbound message (None ends the stream)."""
        self._inbound.put_nowait(message)

    async def close(self):
        self.close_calls += 1
        if self.state is not ConnectionState.DISCONNECTED:
            self._inbound.put_nowait(None)
        self._set_state(ConnectionState.DISCONNECTED)


class MockServers:
    """Transport factory for a ConnectionPool, keyed by server id."""

    def __init__(self):
        self.specs: Dict[str, Dict[str, Any]] = {}
        self.created: List[tuple[str, MockTransport]] = []

    def add(self, server_id: str, **spec: Any) -> CapabilityServerDescriptor:
        self.specs[server_id] = spec
        return stdio_descriptor(server_id)

    def factory(self, descriptor: CapabilityServerDescriptor) -> MockTransport:
        transport = MockTransport(**self.specs.get(descriptor.id, {}))
        self.created.append((descriptor.id, transport))
        return transport

    def transports(self, server_id: str) -> List[MockTransport]:
        return [t for sid, t in self.created if sid == server_id]

    def latest(self, server_id: str) -> MockTransport:
        return self.transports(server_id)[-1]


def stdio_descriptor(server_id: str, **overrides: Any) -> CapabilityServerDescriptor:
    data = {"id": server_id, "name": server_id, "command": "mock-server", "args": [server_id]}
    data.update(overrides)
    return CapabilityServerDescriptor.model_validate(data)


ScriptItem = Union[StreamChunk, BaseException]


def text(delta: str) -> StreamChunk:
    return StreamChunk(delta=delta, model="fake-model")


def call(name: str, **arguments: Any) -> StreamChunk:
    return StreamChunk(
        model="fake-model", function_calls=[FunctionCall(name=name, arguments=arguments)]
    )


def stop() -> StreamChunk:
    return StreamChunk(model="fake-model", finish_reason="stop")


class FakeProvider(BaseLLMProvider):
    """Provider that replays one scripted stream per invocation."""

    def __init__(self, *rounds: List[ScriptItem], gate: Optional[asyncio.Event] = None):
        super().__init__(ProviderConfig(default_model="fake-model"))
        self.rounds = list(rounds)
        self.invocations: List[Dict[str, Any]] = []
        self.closed_streams = 0
        self.gate = gate

    async def chat_stream(
        self,
        messages,
        model,
        temperature=None,
        max_tokens=None,
        tools=None,
        tool_choice=None,
        timeout=TIMEOUT_UNSET,
    ):
        self.invocations.append(
            {
                "messages": list(messages),
                "model": model,
                "temperature": temperature,
                "max_tokens": max_tokens,
                "tools": tools,
                "tool_choice": tool_choice,
            }
        )
        script = self.rounds.pop(0) if self.rounds else [stop()]
        return self._replay(script)

    async def _replay(self, script: List[ScriptItem]):
        try:
            for item in script:
                await asyncio.sleep(0)
                if isinstance(item, BaseException):
                    raise item
                yield item
                if self.gate is not None:
                    await self.gate.wait()
        finally:
            self.closed_streams += 1
