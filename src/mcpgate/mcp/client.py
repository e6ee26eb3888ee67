"""
Async MCP protocol client.

Wraps a Transport with JSON-RPC request/response correlation and exposes the
capability operations used by the gateway and the chat bridge.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, TypeVar

from mcpgate.base import TIMEOUT_UNSET, TimeoutSetting
from mcpgate.constants import (
    CLIENT_INFO,
    CONNECTION_CLOSED,
    DEFAULT_REQUEST_TIMEOUT,
    METHOD_NOT_FOUND,
    PROTOCOL_VERSION,
)
from mcpgate.exceptions import (
    ProtocolError,
    RequestTimeoutError,
    UnsupportedCapabilityError,
)
from mcpgate.mcp.transports.base import Transport
from mcpgate.schemas import Prompt, Resource, Tool

logger = logging.getLogger(__name__)

M = TypeVar("M", Tool, Resource, Prompt)


class AsyncMCPClient:
    """JSON-RPC client bound to one transport."""

    def __init__(
        self,
        transport: Transport,
        request_timeout: float | None = DEFAULT_REQUEST_TIMEOUT,
        server_id: str | None = None,
    ):
        """
        Args:
            transport: Channel to the capability server (not yet started)
            request_timeout: Default per-call deadline in seconds; None disables it
            server_id: Pool id, used in log messages
        """
        self.transport = transport
        self.request_timeout = request_timeout
        self.server_id = server_id or "?"
        self.server_info: dict[str, Any] = {}
        self.server_capabilities: dict[str, Any] = {}
        self._ids = itertools.count(1)
        self._pending: dict[int | str, asyncio.Future] = {}
        self._reader: asyncio.Task | None = None
        self._replies: set[asyncio.Task] = set()
        self._closed = False

    async def start(self) -> None:
        """Open the transport and begin dispatching inbound messages."""
        await self.transport.start()
        self._reader = asyncio.create_task(self._dispatch_loop())

    async def connect(self) -> dict[str, Any]:
        """Start the transport and run the MCP handshake."""
        await self.start()
        return await self.initialize()

    async def initialize(self) -> dict[str, Any]:
        """Perform the initialize handshake and announce readiness."""
        result = await self.request(
            "initialize",
            {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": CLIENT_INFO,
            },
        )
        result = result or {}
        self.server_info = result.get("serverInfo", {})
        self.server_capabilities = result.get("capabilities", {})
        await self.notify("notifications/initialized")
        await self.transport.on_initialized()
        logger.info(
            "Connected to %s (%s %s)",
            self.server_id,
            self.server_info.get("name", "unknown"),
            self.server_info.get("version", ""),
        )
        return result

    def is_alive(self) -> bool:
        return (
            not self._closed
            and self.transport.is_alive()
            and self._reader is not None
            and not self._reader.done()
        )

    # ---------------------------------------------------------------- dispatch

    async def _dispatch_loop(self) -> None:
        try:
            while True:
                message = await self.transport.receive()
                if message is None:
                    break
                self._dispatch(message)
        finally:
            self._fail_pending(
                ProtocolError(f"Connection to {self.server_id} closed", code=CONNECTION_CLOSED)
            )

    def _dispatch(self, message: dict[str, Any]) -> None:
        if not isinstance(message, dict):
            logger.warning("Discarding non-object message from %s", self.server_id)
            return

        method = message.get("method")
        message_id = message.get("id")

        if method is None and message_id is not None:
            future = self._pending.pop(message_id, None)
            if future is None:
                logger.warning(
                    "Discarding response with unknown id %r from %s", message_id, self.server_id
                )
                return
            if future.done():
                return
            if "error" in message and message["error"] is not None:
                future.set_exception(ProtocolError.from_error(message["error"]))
            else:
                future.set_result(message.get("result"))
        elif method is not None and message_id is not None:
            task = asyncio.create_task(self._answer_server_request(message_id, method))
            self._replies.add(task)
            task.add_done_callback(self._replies.discard)
        elif method is not None:
            logger.debug("Notification from %s: %s", self.server_id, method)
        else:
            logger.warning("Discarding unrecognised message from %s", self.server_id)

    async def _answer_server_request(self, message_id: Any, method: str) -> None:
        if method == "ping":
            reply: dict[str, Any] = {"jsonrpc": "2.0", "id": message_id, "result": {}}
        else:
            reply = {
                "jsonrpc": "2.0",
                "id": message_id,
                "error": {"code": METHOD_NOT_FOUND, "message": f"Method not found: {method}"},
            }
        try:
            await self.transport.send(reply)
        except ConnectionError as exc:
            logger.debug("Could not answer %s from %s: %s", method, self.server_id, exc)

    def _fail_pending(self, error: Exception) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(error)

    # ---------------------------------------------------------------- requests

    async def request(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: TimeoutSetting = TIMEOUT_UNSET,
    ) -> Any:
        """
        Send a request and wait for its response.

        Raises:
            RequestTimeoutError: If no response arrives before the deadline
            ProtocolError: If the server answers with an error or the connection drops
        """
        if self._closed or self._reader is None or self._reader.done():
            raise ProtocolError(f"Connection to {self.server_id} is closed", code=CONNECTION_CLOSED)

        effective_timeout = self.request_timeout if timeout is TIMEOUT_UNSET else timeout
        request_id = next(self._ids)
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        message: dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
        if params is not None:
            message["params"] = params

        async def send_and_wait() -> Any:
            try:
                await self.transport.send(message)
            except ConnectionError as exc:
                raise ProtocolError(str(exc), code=CONNECTION_CLOSED) from exc
            return await future

        # One deadline covers the write and the reply
        try:
            if effective_timeout is None:
                return await send_and_wait()
            try:
                return await asyncio.wait_for(send_and_wait(), timeout=effective_timeout)
            except asyncio.TimeoutError:
                raise RequestTimeoutError(
                    f"{method} on {self.server_id} timed out after {effective_timeout}s"
                ) from None
        finally:
            self._pending.pop(request_id, None)

    async def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        message: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            message["params"] = params
        try:
            await self.transport.send(message)
        except ConnectionError as exc:
            raise ProtocolError(str(exc), code=CONNECTION_CLOSED) from exc

    async def _list(
        self,
        method: str,
        key: str,
        model: type[M],
        timeout: TimeoutSetting,
    ) -> list[M]:
        items: list[M] = []
        cursor: str | None = None
        try:
            while True:
                params = {"cursor": cursor} if cursor else None
                result = await self.request(method, params, timeout=timeout) or {}
                items.extend(model.model_validate(item) for item in result.get(key, []))
                cursor = result.get("nextCursor")
                if not cursor:
                    return items
        except UnsupportedCapabilityError:
            logger.debug("%s does not implement %s", self.server_id, method)
            return []

    # --------------------------------------------------------------- operations

    async def list_resources(self, timeout: TimeoutSetting = TIMEOUT_UNSET) -> list[Resource]:
        return await self._list("resources/list", "resources", Resource, timeout)

    async def list_tools(self, timeout: TimeoutSetting = TIMEOUT_UNSET) -> list[Tool]:
        return await self._list("tools/list", "tools", Tool, timeout)

    async def list_prompts(self, timeout: TimeoutSetting = TIMEOUT_UNSET) -> list[Prompt]:
        return await self._list("prompts/list", "prompts", Prompt, timeout)

    async def call_tool(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
        timeout: TimeoutSetting = TIMEOUT_UNSET,
    ) -> Any:
        """Invoke a tool; the result is returned as the server sent it."""
        return await self.request(
            "tools/call", {"name": name, "arguments": arguments or {}}, timeout=timeout
        )

    async def read_resource(self, uri: str, timeout: TimeoutSetting = TIMEOUT_UNSET) -> Any:
        return await self.request("resources/read", {"uri": uri}, timeout=timeout)

    async def get_prompt(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
        timeout: TimeoutSetting = TIMEOUT_UNSET,
    ) -> Any:
        params: dict[str, Any] = {"name": name}
        if arguments:
            # Prompt arguments are string-valued on the wire
            params["arguments"] = {k: v if isinstance(v, str) else str(v) for k, v in arguments.items()}
        return await self.request("prompts/get", params, timeout=timeout)

    # ---------------------------------------------------------------- teardown

    async def close(self) -> None:
        """Stop dispatching, fail outstanding calls and close the transport."""
        if self._closed:
            return
        self._closed = True
        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
        self._fail_pending(
            ProtocolError(f"Connection to {self.server_id} closed", code=CONNECTION_CLOSED)
        )
        await self.transport.close()

    async def __aenter__(self) -> "AsyncMCPClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
