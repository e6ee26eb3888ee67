"""Streamable HTTP transport for remote capability servers.

Each outbound message is POSTed to the server URL. The reply is either a plain
JSON body or an SSE stream carrying one or more JSON-RPC messages. Every reply
is drained by its own task into one inbound queue, so the client can match
responses by id no matter which stream delivers them first. After the
handshake a GET stream is opened for server-initiated messages when the
server offers one.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import httpx

from mcpgate.constants import INTERNAL_ERROR, SESSION_HEADER
from mcpgate.exceptions import ConnectError
from mcpgate.mcp.transports.base import Transport
from mcpgate.schemas import ConnectionState
from mcpgate.sse import aiter_sse_data

logger = logging.getLogger(__name__)

ACCEPT = "application/json, text/event-stream"


class StreamableHTTPTransport(Transport):
    """HTTP transport with server-sent-event responses."""

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Args:
            url: MCP endpoint of the server
            headers: Extra headers sent with every request
            timeout: Connect/write timeout in seconds; reads on streams are unbounded
            client: Optional shared client; the transport only closes clients it created
        """
        super().__init__()
        self.url = url
        self.headers = dict(headers or {})
        self.timeout = timeout
        self.session_id: str | None = None
        self._client = client
        self._owns_client = client is None
        self._inbound: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
        self._readers: set[asyncio.Task] = set()
        self._listener: asyncio.Task | None = None
        self._closed = False

    async def start(self) -> None:
        if not self.url.startswith(("http://", "https://")):
            self._set_state(ConnectionState.ERROR, "invalid url")
            raise ConnectError(f"Invalid capability server URL: {self.url!r}")

        self._set_state(ConnectionState.CONNECTING)
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, read=None),
                follow_redirects=True,
            )
        logger.info("Streamable HTTP transport ready for %s", self.url)
        self._set_state(ConnectionState.CONNECTED)

    def _request_headers(self) -> dict[str, str]:
        headers = {
            **self.headers,
            "Accept": ACCEPT,
            "Content-Type": "application/json",
        }
        if self.session_id:
            headers[SESSION_HEADER] = self.session_id
        return headers

    async def send(self, message: dict[str, Any]) -> None:
        if not self.is_alive() or self._client is None:
            raise ConnectionError(f"Transport for {self.url} is not running")

        request = self._client.build_request(
            "POST", self.url, json=message, headers=self._request_headers()
        )
        try:
            response = await self._client.send(request, stream=True)
        except httpx.TransportError as exc:
            self._set_state(ConnectionState.ERROR, str(exc))
            raise ConnectionError(f"Failed to reach {self.url}: {exc}") from exc

        session_id = response.headers.get(SESSION_HEADER)
        if session_id:
            self.session_id = session_id

        task = asyncio.create_task(self._consume(response, message.get("id")))
        self._readers.add(task)
        task.add_done_callback(self._readers.discard)

    async def _consume(self, response: httpx.Response, request_id: Any) -> None:
        try:
            if response.status_code >= 400:
                body = (await response.aread()).decode("utf-8", "replace")
                if request_id is not None:
                    await self._inbound.put(self._http_error(request_id, response.status_code, body))
                else:
                    logger.warning("Notification to %s rejected: HTTP %s", self.url, response.status_code)
                return

            if response.status_code == 202:
                return

            content_type = response.headers.get("content-type", "")
            if content_type.startswith("text/event-stream"):
                await self._pump_sse(response)
            else:
                body = await response.aread()
                if body.strip():
                    self._enqueue_payload(body.decode("utf-8"))
        except httpx.HTTPError as exc:
            logger.warning("Response stream from %s failed: %s", self.url, exc)
            if request_id is not None:
                await self._inbound.put(self._http_error(request_id, None, str(exc)))
        finally:
            await response.aclose()

    async def _pump_sse(self, response: httpx.Response) -> None:
        async for data in aiter_sse_data(response.aiter_lines()):
            self._enqueue_payload(data)

    def _enqueue_payload(self, payload: str) -> None:
        try:
            message = json.loads(payload)
        except json.JSONDecodeError:
            logger.warning("Discarding malformed message from %s: %s", self.url, payload[:200])
            return
        if isinstance(message, list):
            for item in message:
                self._inbound.put_nowait(item)
        else:
            self._inbound.put_nowait(message)

    @staticmethod
    def _http_error(request_id: Any, status: int | None, body: str) -> dict[str, Any]:
        detail = f"HTTP {status}: {body[:500]}" if status is not None else body
        return {
            "jsonrpc": "2.0",
            "id": request_id,
            "error": {"code": INTERNAL_ERROR, "message": detail},
        }

    async def on_initialized(self) -> None:
        if self._listener is None:
            self._listener = asyncio.create_task(self._listen())

    async def _listen(self) -> None:
        """Hold the GET stream open for server-initiated messages."""
        assert self._client is not None
        headers = {**self.headers, "Accept": "text/event-stream"}
        if self.session_id:
            headers[SESSION_HEADER] = self.session_id
        try:
            async with self._client.stream("GET", self.url, headers=headers) as response:
                if response.status_code == 405:
                    logger.debug("%s does not offer a server stream", self.url)
                    return
                if response.status_code >= 400:
                    logger.debug("Server stream at %s refused: HTTP %s", self.url, response.status_code)
                    return
                if not response.headers.get("content-type", "").startswith("text/event-stream"):
                    return
                await self._pump_sse(response)
        except httpx.HTTPError as exc:
            logger.debug("Server stream at %s closed: %s", self.url, exc)

    async def receive(self) -> dict[str, Any] | None:
        message = await self._inbound.get()
        if message is None:
            self._inbound.put_nowait(None)
        return message

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        tasks = [t for t in (*self._readers, self._listener) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if self._client is not None:
            if self.session_id:
                try:
                    await self._client.delete(
                        self.url, headers={**self.headers, SESSION_HEADER: self.session_id}
                    )
                except httpx.HTTPError as exc:
                    logger.debug("Session teardown at %s failed: %s", self.url, exc)
            if self._owns_client:
                await self._client.aclose()

        self._inbound.put_nowait(None)
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info("Streamable HTTP transport closed for %s", self.url)
