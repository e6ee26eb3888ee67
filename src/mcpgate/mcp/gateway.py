"""
Management gateway for capability servers.

Maps action names to pool and client operations and wraps the outcome in the
``{..., success}`` / ``{error, success: false}`` envelope used by the HTTP API.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from pydantic import ValidationError

from mcpgate.constants import MANAGEMENT_ACTIONS, QUERY_ACTIONS
from mcpgate.exceptions import (
    ConnectError,
    InvalidRequestError,
    MCPGateError,
    ProtocolError,
    RequestTimeoutError,
    ServerNotConnectedError,
    ToolInvocationError,
    UnsupportedActionError,
)
from mcpgate.mcp.pool import ConnectionPool
from mcpgate.schemas import CapabilityServerDescriptor, ManagementRequest

logger = logging.getLogger(__name__)

Payload = Union[ManagementRequest, Mapping[str, Any], None]
Handler = Callable[[ManagementRequest], Awaitable[dict[str, Any]]]


@dataclass
class GatewayResponse:
    status_code: int
    body: dict[str, Any]

    @property
    def ok(self) -> bool:
        return self.status_code < 400


def status_for(error: BaseException) -> int:
    """HTTP status code for an error raised while handling an action."""
    if isinstance(error, (UnsupportedActionError, InvalidRequestError)):
        return 400
    if isinstance(error, ServerNotConnectedError):
        return 404
    if isinstance(error, ConnectError):
        return 504 if error.timeout else 502
    if isinstance(error, RequestTimeoutError):
        return 504
    if isinstance(error, ProtocolError):
        return 502
    return 500


def _require(value: Optional[str], field: str) -> str:
    if not value:
        raise InvalidRequestError(f"'{field}' is required")
    return value


def _error_text(result: dict[str, Any], tool_name: str) -> str:
    texts = [
        part.get("text", "")
        for part in result.get("content") or []
        if isinstance(part, dict) and part.get("type") == "text"
    ]
    return "\n".join(t for t in texts if t) or f"Tool '{tool_name}' reported an error"


class Gateway:
    """Dispatches management actions against a connection pool."""

    def __init__(self, pool: ConnectionPool):
        self.pool = pool
        self._handlers: dict[str, Handler] = {
            action: getattr(self, "_" + action.replace("-", "_")) for action in MANAGEMENT_ACTIONS
        }

    @property
    def actions(self) -> tuple[str, ...]:
        return tuple(self._handlers)

    async def handle(self, action: str, payload: Payload = None) -> GatewayResponse:
        """
        Run one management action.

        Never raises for request or infrastructure errors; they are reported in
        the response body with the matching status code.
        """
        try:
            handler = self._handlers.get(action)
            if handler is None:
                raise UnsupportedActionError(action)
            body = await handler(self._parse(payload))
        except Exception as exc:
            return self._error_response(action, exc)
        return GatewayResponse(200, body)

    async def handle_query(self, action: str, server_id: Optional[str]) -> GatewayResponse:
        """Read-only variant for actions addressed by ``serverId`` alone."""
        if action not in QUERY_ACTIONS:
            return self._error_response(action, UnsupportedActionError(action))
        return await self.handle(action, ManagementRequest(server_id=server_id))

    @staticmethod
    def _parse(payload: Payload) -> ManagementRequest:
        if isinstance(payload, ManagementRequest):
            return payload
        try:
            return ManagementRequest.model_validate(dict(payload or {}))
        except ValidationError as exc:
            raise InvalidRequestError(f"Invalid request: {exc}") from exc

    def _error_response(self, action: str, error: Exception) -> GatewayResponse:
        status_code = status_for(error)
        if status_code >= 500 and not isinstance(error, MCPGateError):
            logger.exception("Unexpected error handling %s", action)
        else:
            logger.warning("Action %s failed (%d): %s", action, status_code, error)
        return GatewayResponse(status_code, {"error": str(error), "success": False})

    # ----------------------------------------------------------------- actions

    async def _connect(self, request: ManagementRequest) -> dict[str, Any]:
        if not request.server:
            raise InvalidRequestError("'server' is required")
        try:
            descriptor = CapabilityServerDescriptor.model_validate(request.server)
        except ValidationError as exc:
            raise InvalidRequestError(f"Invalid server descriptor: {exc}") from exc
        await self.pool.connect(descriptor)
        return {"success": True}

    async def _disconnect(self, request: ManagementRequest) -> dict[str, Any]:
        await self.pool.disconnect(_require(request.server_id, "serverId"))
        return {"success": True}

    async def _status(self, request: ManagementRequest) -> dict[str, Any]:
        status = await self.pool.status(_require(request.server_id, "serverId"))
        return {"status": status.to_wire()}

    async def _list_resources(self, request: ManagementRequest) -> dict[str, Any]:
        client = self.pool.get(_require(request.server_id, "serverId"))
        return {"resources": [item.to_wire() for item in await client.list_resources()]}

    async def _list_tools(self, request: ManagementRequest) -> dict[str, Any]:
        client = self.pool.get(_require(request.server_id, "serverId"))
        return {"tools": [item.to_wire() for item in await client.list_tools()]}

    async def _list_prompts(self, request: ManagementRequest) -> dict[str, Any]:
        client = self.pool.get(_require(request.server_id, "serverId"))
        return {"prompts": [item.to_wire() for item in await client.list_prompts()]}

    async def _call_tool(self, request: ManagementRequest) -> dict[str, Any]:
        server_id = _require(request.server_id, "serverId")
        name = _require(request.tool_name, "toolName")
        result = await self.pool.get(server_id).call_tool(name, request.args or {})
        return {"result": result}

    async def _read_resource(self, request: ManagementRequest) -> dict[str, Any]:
        server_id = _require(request.server_id, "serverId")
        uri = _require(request.uri, "uri")
        return {"resource": await self.pool.get(server_id).read_resource(uri)}

    async def _get_prompt(self, request: ManagementRequest) -> dict[str, Any]:
        server_id = _require(request.server_id, "serverId")
        name = _require(request.prompt_name, "promptName")
        return {"prompt": await self.pool.get(server_id).get_prompt(name, request.args)}

    # ------------------------------------------------------------- tool calls

    async def call_tool(
        self, server_id: str, name: str, arguments: Optional[dict[str, Any]] = None
    ) -> Any:
        """
        Invoke a tool on behalf of the model.

        Raises:
            ToolInvocationError: If the call fails or the server flags the result
                with ``isError``
        """
        try:
            result = await self.pool.get(server_id).call_tool(name, arguments or {})
        except MCPGateError as exc:
            raise ToolInvocationError(str(exc), tool_name=name, server_id=server_id) from exc

        if isinstance(result, dict) and result.get("isError"):
            raise ToolInvocationError(_error_text(result, name), tool_name=name, server_id=server_id)
        return result
