"""
Streaming tool-call bridge.

Drives one chat turn: streams model output to the caller as events, routes
each function call the model issues to the capability server that advertises
the tool, feeds the results back to the model, and persists the turn.

Event order for a turn with one tool call:
    text* function_call function_response text* [DONE]
"""

import asyncio
import logging
from typing import Any, AsyncIterator, List, Optional, Union

from mcpgate.base import BaseLLMProvider
from mcpgate.config import Settings
from mcpgate.constants import (
    DEFAULT_MAX_OUTPUT_TOKENS,
    DEFAULT_TEMPERATURE,
    FALLBACK_MESSAGE,
    HISTORY_LIMIT,
    MAX_TOOL_ROUNDS,
)
from mcpgate.exceptions import InvalidRequestError, ToolInvocationError
from mcpgate.mcp.gateway import Gateway
from mcpgate.mcp.manifest import ToolManifest
from mcpgate.mcp.pool import ConnectionPool
from mcpgate.persistence import ConversationStore, persist_turn
from mcpgate.schemas import (
    ChatRequest,
    ConversationTurn,
    FunctionCall,
    FunctionCallEvent,
    FunctionResponse,
    FunctionResponseEvent,
    Message,
    TextEvent,
    TurnMessage,
    TurnState,
    utcnow,
)
from mcpgate.sse import DONE_EVENT, format_event

logger = logging.getLogger(__name__)

StreamEvent = Union[TextEvent, FunctionCallEvent, FunctionResponseEvent]

_HISTORY_ROLES = ("user", "model", "assistant")


class StreamingToolBridge:
    """Turns a chat request into an ordered stream of text and tool events."""

    def __init__(
        self,
        provider: BaseLLMProvider,
        pool: ConnectionPool,
        gateway: Optional[Gateway] = None,
        store: Optional[ConversationStore] = None,
        model: Optional[str] = None,
        temperature: float = DEFAULT_TEMPERATURE,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
        history_limit: int = HISTORY_LIMIT,
        max_tool_rounds: int = MAX_TOOL_ROUNDS,
    ):
        """
        Args:
            provider: Streaming model provider
            pool: Process-wide connection pool (borrowed, never closed here)
            gateway: Gateway used to dispatch tool calls; built from the pool if omitted
            store: Where finished turns are persisted
            model: Model identifier; defaults to the provider's default model
            temperature: Sampling temperature
            max_output_tokens: Output token cap per model invocation
            history_limit: Most recent history entries forwarded to the model
            max_tool_rounds: Model re-invocations allowed after tool calls
        """
        self.provider = provider
        self.pool = pool
        self.gateway = gateway or Gateway(pool)
        self.store = store
        self.model = model or provider.default_model or ""
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.history_limit = history_limit
        self.max_tool_rounds = max_tool_rounds
        self._detached: set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        provider: BaseLLMProvider,
        pool: ConnectionPool,
        store: Optional[ConversationStore] = None,
        gateway: Optional[Gateway] = None,
    ) -> "StreamingToolBridge":
        return cls(
            provider=provider,
            pool=pool,
            gateway=gateway,
            store=store,
            model=settings.model,
            temperature=settings.temperature,
            max_output_tokens=settings.max_output_tokens,
            history_limit=settings.history_limit,
            max_tool_rounds=settings.max_tool_rounds,
        )

    # ------------------------------------------------------------------ turn

    def start_turn(self, request: ChatRequest) -> ConversationTurn:
        """
        Build an idle turn for a request.

        Raises:
            InvalidRequestError: If the message is empty
        """
        if not request.message or not request.message.strip():
            raise InvalidRequestError("'message' is required")

        history = request.history[-self.history_limit :] if self.history_limit > 0 else []
        prior_turns = []
        for entry in history:
            if entry.role not in _HISTORY_ROLES:
                logger.debug("Skipping history entry with role %r", entry.role)
                continue
            prior_turns.append(TurnMessage(role=entry.role, text=entry.text))

        return ConversationTurn(
            user_text=request.message,
            prior_turns=prior_turns,
            session_id=request.session_id,
        )

    @staticmethod
    def _finish(turn: ConversationTurn, state: TurnState, error: Optional[str] = None) -> None:
        turn.state = state
        turn.error = error
        turn.finished_at = utcnow()

    async def events(
        self, request: ChatRequest, turn: Optional[ConversationTurn] = None
    ) -> AsyncIterator[StreamEvent]:
        """
        Stream the events of one turn.

        Model failures end the turn with a single non-streaming fallback text
        event instead of raising. The turn is persisted whether it completes,
        fails or is cancelled by the consumer.
        """
        turn = turn or self.start_turn(request)
        turn.state = TurnState.STREAMING
        logger.info(
            "Turn started (session=%s, mcp=%s, history=%d)",
            turn.session_id or "-",
            request.enable_mcp,
            len(turn.prior_turns),
        )

        run = self._run(turn, request.enable_mcp)
        failed = False
        try:
            async for event in run:
                yield event
        except (GeneratorExit, asyncio.CancelledError):
            self._finish(turn, TurnState.CANCELLED)
            await run.aclose()
            logger.info("Turn cancelled by consumer (session=%s)", turn.session_id or "-")
            await asyncio.shield(persist_turn(self.store, turn))
            raise
        except Exception as exc:
            logger.error("Model stream failed: %s", exc, exc_info=True)
            self._finish(turn, TurnState.FAILED, error=str(exc))
            failed = True
        else:
            self._finish(turn, TurnState.COMPLETED)
            logger.info(
                "Turn completed (session=%s, %d chars, %d tool call(s))",
                turn.session_id or "-",
                len(turn.accumulated_text),
                len(turn.function_calls),
            )

        await persist_turn(self.store, turn)
        if failed:
            yield TextEvent(text=FALLBACK_MESSAGE, streaming=False)

    async def stream_sse(
        self, request: ChatRequest, turn: Optional[ConversationTurn] = None
    ) -> AsyncIterator[str]:
        """Stream a turn as server-sent-event lines, ending with ``[DONE]``."""
        events = self.events(request, turn)
        try:
            async for event in events:
                yield format_event(event)
        finally:
            await events.aclose()
        yield DONE_EVENT

    # ----------------------------------------------------------------- rounds

    def _initial_messages(self, turn: ConversationTurn) -> List[Message]:
        messages = [
            Message(role="user" if prior.role == "user" else "assistant", content=prior.text)
            for prior in turn.prior_turns
        ]
        messages.append(Message(role="user", content=turn.user_text))
        return messages

    async def _run(self, turn: ConversationTurn, enable_mcp: bool) -> AsyncIterator[StreamEvent]:
        manifest = await ToolManifest.build(self.pool) if enable_mcp else ToolManifest()
        tools = manifest.to_function_declarations() or None
        if tools:
            logger.debug("Offering %d tool(s) to the model", len(tools))

        messages = self._initial_messages(turn)
        tool_rounds = 0
        while True:
            round_text = ""
            round_results: List[tuple[str, FunctionCall, FunctionResponse]] = []

            stream = await self.provider.chat_stream(
                messages,
                model=self.model,
                temperature=self.temperature,
                max_tokens=self.max_output_tokens,
                tools=tools,
                tool_choice="auto" if tools else None,
            )
            try:
                async for chunk in stream:
                    if chunk.delta:
                        turn.accumulated_text += chunk.delta
                        round_text += chunk.delta
                        yield TextEvent(text=chunk.delta)

                    for call in chunk.function_calls or []:
                        call_id = f"call_{len(turn.function_calls)}"
                        turn.function_calls.append(call)
                        yield FunctionCallEvent.of(call)

                        response = await self._invoke(manifest, call)
                        turn.function_responses.append(response)
                        round_results.append((call_id, call, response))
                        yield FunctionResponseEvent.of(response)
            finally:
                aclose = getattr(stream, "aclose", None)
                if aclose is not None:
                    await aclose()

            if not round_results:
                return
            tool_rounds += 1
            if tool_rounds > self.max_tool_rounds:
                logger.warning("Stopping after %d tool round(s)", self.max_tool_rounds)
                return
            messages.extend(self._round_messages(round_text, round_results))

    @staticmethod
    def _round_messages(
        text: str, results: List[tuple[str, FunctionCall, FunctionResponse]]
    ) -> List[Message]:
        messages = [
            Message(
                role="assistant",
                content=text,
                tool_calls=[
                    {
                        "id": call_id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": call.arguments},
                    }
                    for call_id, call, _ in results
                ],
            )
        ]
        for call_id, call, response in results:
            messages.append(
                Message(role="tool", tool_call_id=call_id, name=call.name, content=response.response)
            )
        return messages

    # ------------------------------------------------------------------ tools

    async def _invoke(self, manifest: ToolManifest, call: FunctionCall) -> FunctionResponse:
        """Run one function call; failures become an ``{"error": ...}`` response."""
        try:
            server_id = manifest.resolve(call.name)
            logger.info("Calling tool %s on %s", call.name, server_id)
            result = await self._detach(self.gateway.call_tool(server_id, call.name, call.arguments))
        except ToolInvocationError as exc:
            logger.warning("Tool %s failed: %s", call.name, exc)
            return FunctionResponse(name=call.name, response={"error": str(exc)})
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error calling tool %s", call.name)
            return FunctionResponse(name=call.name, response={"error": str(exc)})
        return FunctionResponse(name=call.name, response=result)

    async def _detach(self, coro: Any) -> Any:
        # A dispatched call runs to completion even if the turn is cancelled
        task = asyncio.ensure_future(coro)
        self._detached.add(task)
        task.add_done_callback(self._reap)
        return await asyncio.shield(task)

    def _reap(self, task: asyncio.Task) -> None:
        self._detached.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Detached tool call ended with %s", task.exception())

    async def drain(self) -> None:
        """Wait for tool calls still running from cancelled turns."""
        if self._detached:
            await asyncio.gather(*list(self._detached), return_exceptions=True)

    @property
    def pending_tool_calls(self) -> int:
        return len(self._detached)

