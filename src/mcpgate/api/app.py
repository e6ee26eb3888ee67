"""
FastAPI application exposing the management gateway and the chat stream.

Run with:
    mcpgate serve
or:
    uvicorn mcpgate.api.app:create_app --factory

Endpoints:
    POST /api/mcp/{action}            management actions (JSON body)
    GET  /api/mcp/{action}?serverId=  read-only management actions
    POST /api/chat/stream             chat turn as server-sent events
    GET  /health
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from fastapi import Body, Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse

from mcpgate import __version__
from mcpgate.base import BaseLLMProvider
from mcpgate.bridge import StreamingToolBridge
from mcpgate.config import Settings
from mcpgate.exceptions import InvalidRequestError
from mcpgate.mcp.gateway import Gateway, GatewayResponse
from mcpgate.mcp.pool import ConnectionPool
from mcpgate.persistence import ConversationStore, HttpConversationStore
from mcpgate.schemas import ChatRequest
from mcpgate.sse import SSE_HEADERS

logger = logging.getLogger(__name__)


def _json(response: GatewayResponse) -> JSONResponse:
    return JSONResponse(response.body, status_code=response.status_code)


def get_gateway(request: Request) -> Gateway:
    return request.app.state.gateway


def get_bridge(request: Request) -> StreamingToolBridge:
    return request.app.state.bridge


def create_app(
    settings: Optional[Settings] = None,
    provider: Optional[BaseLLMProvider] = None,
    store: Optional[ConversationStore] = None,
    pool: Optional[ConnectionPool] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Runtime settings; read from the environment (and ``.env``) if omitted
        provider: Model provider; a GoogleProvider is built from settings if omitted
        store: Conversation store; an HTTP store is built when a persistence URL is set
        pool: Connection pool; one is created per application if omitted

    Raises:
        ConfigurationError: If settings are read from an environment lacking an API key
    """
    if settings is None:
        load_dotenv()
        settings = Settings.from_env()

    if provider is None:
        from mcpgate.providers.google_api import GoogleProvider

        provider = GoogleProvider(api_key=settings.api_key, model=settings.model)

    if store is None and settings.persistence_url:
        store = HttpConversationStore(settings.persistence_url, api_key=settings.persistence_api_key)
    if store is None:
        logger.info("No conversation store configured; turns are not persisted")

    pool = pool or ConnectionPool(
        connect_timeout=settings.connect_timeout, request_timeout=settings.request_timeout
    )
    gateway = Gateway(pool)
    bridge = StreamingToolBridge.from_settings(settings, provider, pool, store=store, gateway=gateway)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("mcpgate %s starting (model=%s)", __version__, bridge.model)
        yield
        logger.info("Shutting down: draining %d connection(s)", len(pool))
        await bridge.drain()
        await pool.close()
        if store is not None:
            await store.close()
        await provider.aclose()

    app = FastAPI(
        title="mcpgate",
        description="Capability server gateway and streaming tool-call bridge",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.pool = pool
    app.state.gateway = gateway
    app.state.bridge = bridge

    @app.get("/health")
    async def health(request: Request) -> Dict[str, Any]:
        """Health check endpoint."""
        return {
            "status": "ok",
            "version": __version__,
            "connections": len(request.app.state.pool),
            "model": request.app.state.bridge.model,
        }

    @app.post("/api/mcp/{action}")
    async def manage(
        action: str,
        payload: Optional[Dict[str, Any]] = Body(None),
        gateway: Gateway = Depends(get_gateway),
    ) -> JSONResponse:
        """Run a management action against the connection pool."""
        return _json(await gateway.handle(action, payload))

    @app.get("/api/mcp/{action}")
    async def query(
        action: str,
        server_id: Optional[str] = Query(None, alias="serverId"),
        gateway: Gateway = Depends(get_gateway),
    ) -> JSONResponse:
        return _json(await gateway.handle_query(action, server_id))

    @app.post("/api/chat/stream")
    async def chat_stream(
        chat_request: ChatRequest,
        bridge: StreamingToolBridge = Depends(get_bridge),
    ):
        """Stream one chat turn as server-sent events ending with ``[DONE]``."""
        try:
            turn = bridge.start_turn(chat_request)
        except InvalidRequestError as exc:
            return JSONResponse({"error": str(exc), "success": False}, status_code=400)

        return StreamingResponse(
            bridge.stream_sse(chat_request, turn),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    return app
