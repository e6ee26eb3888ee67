"""
Google Gemini provider implementation using the official google-genai library.

Only streaming chat with native function calling is supported.
"""

import asyncio
import json
import logging
import os
import threading
from typing import Any, AsyncIterator, Dict, List, Optional

from google import genai
from google.genai import types

from mcpgate.base import (
    DEFAULT_TIMEOUT_SECONDS,
    TIMEOUT_UNSET,
    BaseLLMProvider,
    ProviderConfig,
    TimeoutSetting,
)
from mcpgate.exceptions import (
    MCPGateError,
    ProviderAuthenticationError,
    ProviderError,
    ProviderRateLimitError,
    ProviderResponseError,
    ProviderTimeoutError,
)
from mcpgate.providers.google_schema_normalizer import GoogleSchemaNormalizer
from mcpgate.schemas import FunctionCall, Message, StreamChunk

logger = logging.getLogger(__name__)

_SENTINEL = object()


def _strip_provider_prefix(model: str) -> str:
    for prefix in ("google:", "gemini:"):
        if model.startswith(prefix):
            return model[len(prefix) :]
    return model


class GoogleProvider(BaseLLMProvider):
    """Streaming Gemini provider with function calling."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: TimeoutSetting = TIMEOUT_UNSET,
        client: Optional[genai.Client] = None,
    ):
        """
        Initialize the Google Gemini provider.

        Args:
            api_key: Google API key; falls back to GEMINI_API_KEY / GOOGLE_API_KEY
            model: Default model to use
            timeout: Longest wait for the next stream chunk; None disables it
            client: Pre-built genai client (tests)
        """
        api_key = (
            api_key
            or os.environ.get("GEMINI_API_KEY", "")
            or os.environ.get("GOOGLE_API_KEY", "")
        )
        if not api_key and client is None:
            raise ProviderAuthenticationError(
                "Google API key must be provided (GEMINI_API_KEY or GOOGLE_API_KEY)",
                provider="google",
            )

        config = ProviderConfig(
            api_key=api_key,
            default_model=model,
            timeout_seconds=(DEFAULT_TIMEOUT_SECONDS if timeout is TIMEOUT_UNSET else timeout),
        )
        super().__init__(config)
        self.client = client or genai.Client(api_key=api_key)

    # ------------------------------------------------------------ conversion

    def _parse_tool_response(self, content: Any) -> Dict[str, Any]:
        """Coerce tool output into the dict a FunctionResponse requires."""
        if isinstance(content, str):
            try:
                response_obj = json.loads(content)
            except json.JSONDecodeError:
                return {"result": content}
            return response_obj if isinstance(response_obj, dict) else {"result": response_obj}
        if isinstance(content, dict):
            return content
        if isinstance(content, list):
            return {"result": content}
        return {"result": str(content)}

    def _build_tools(self, tools: List[Dict[str, Any]]) -> List[types.Tool]:
        declarations = []
        for tool in tools:
            func = tool.get("function", tool)
            parameters, notes = GoogleSchemaNormalizer.normalize(
                func.get("parameters") or {"type": "object", "properties": {}}
            )
            for note in notes:
                logger.debug("Schema for %s: %s", func["name"], note)
            declarations.append(
                types.FunctionDeclaration(
                    name=func["name"],
                    description=func.get("description", ""),
                    parameters=parameters,
                )
            )
        return [types.Tool(function_declarations=declarations)]

    @staticmethod
    def _tool_config(tool_choice: Optional[str]) -> types.ToolConfig:
        mode = {"none": "NONE", "required": "ANY", "any": "ANY"}.get(tool_choice or "auto", "AUTO")
        return types.ToolConfig(function_calling_config=types.FunctionCallingConfig(mode=mode))

    def _convert_messages(
        self, messages: List[Message]
    ) -> tuple[Optional[str], List[types.Content]]:
        system_instruction: Optional[str] = None
        contents: List[types.Content] = []
        tool_name_by_id: Dict[str, str] = {}

        for msg in messages:
            if msg.role == "system":
                system_instruction = str(msg.content)

            elif msg.role == "user":
                contents.append(types.Content(role="user", parts=[types.Part(text=str(msg.content))]))

            elif msg.role == "assistant":
                parts: List[types.Part] = []
                if isinstance(msg.content, str) and msg.content:
                    parts.append(types.Part(text=msg.content))
                for call in msg.tool_calls or []:
                    function = call.get("function", {})
                    name = function.get("name") or ""
                    args = function.get("arguments")
                    if isinstance(args, str):
                        try:
                            args = json.loads(args)
                        except json.JSONDecodeError:
                            args = {}
                    if call.get("id") and name:
                        tool_name_by_id[call["id"]] = name
                    parts.append(
                        types.Part(
                            function_call=types.FunctionCall(
                                name=name, args=args if isinstance(args, dict) else {}
                            )
                        )
                    )
                contents.append(types.Content(role="model", parts=parts or [types.Part(text="")]))

            elif msg.role == "tool":
                name = tool_name_by_id.get(msg.tool_call_id or "", "") or msg.name or ""
                part = types.Part(
                    function_response=types.FunctionResponse(
                        name=name, response=self._parse_tool_response(msg.content)
                    )
                )
                # Responses to one model turn travel together in a single content
                previous = contents[-1] if contents else None
                if (
                    previous is not None
                    and previous.role == "user"
                    and previous.parts
                    and previous.parts[-1].function_response is not None
                ):
                    previous.parts.append(part)
                else:
                    contents.append(types.Content(role="user", parts=[part]))

        return system_instruction, contents

    # ------------------------------------------------------------- streaming

    async def chat_stream(
        self,
        messages: List[Message],
        model: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[str] = None,
        timeout: TimeoutSetting = TIMEOUT_UNSET,
    ) -> AsyncIterator[StreamChunk]:
        """
        Send a streaming chat request to the Google Gemini API.

        Returns:
            Async iterator of stream chunks. Text arrives in ``delta``; each
            function call the model issues arrives in ``function_calls``.

        Example:
            >>> stream = await provider.chat_stream(messages, model="gemini-2.0-flash-001")
            >>> async for chunk in stream:
            ...     print(chunk.delta, end="", flush=True)
        """
        return self._stream_chat(
            messages=messages,
            model=_strip_provider_prefix(model or self.default_model or ""),
            temperature=temperature,
            max_tokens=max_tokens,
            tools=tools,
            tool_choice=tool_choice,
            timeout=self._resolve_timeout_value(timeout),
        )

    async def _stream_chat(
        self,
        messages: List[Message],
        model: str,
        temperature: Optional[float],
        max_tokens: Optional[int],
        tools: Optional[List[Dict[str, Any]]],
        tool_choice: Optional[str],
        timeout: Optional[float],
    ) -> AsyncIterator[StreamChunk]:
        system_instruction, contents = self._convert_messages(messages)

        config_params: Dict[str, Any] = {}
        if system_instruction:
            config_params["system_instruction"] = system_instruction
        if temperature is not None:
            config_params["temperature"] = temperature
        if max_tokens is not None:
            config_params["max_output_tokens"] = max_tokens
        if tools:
            config_params["tools"] = self._build_tools(tools)
            config_params["tool_config"] = self._tool_config(tool_choice)
        config = types.GenerateContentConfig(**config_params)

        # The SDK's stream is a blocking generator, so a worker thread drains
        # it into a queue the event loop can await.
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        stop_event = threading.Event()

        def _forward(item: Any) -> None:
            try:
                loop.call_soon_threadsafe(queue.put_nowait, item)
            except RuntimeError:
                # Loop is closed
                stop_event.set()

        def _producer() -> None:
            try:
                stream = self.client.models.generate_content_stream(
                    model=model, contents=contents, config=config
                )
                for chunk in stream:
                    if stop_event.is_set():
                        break
                    _forward(chunk)
            except Exception as exc:
                if not stop_event.is_set():
                    _forward(("__error__", exc))
            finally:
                if not stop_event.is_set():
                    _forward(_SENTINEL)

        threading.Thread(target=_producer, name=f"gemini-stream-{model}", daemon=True).start()

        try:
            while True:
                try:
                    item = await self._await_with_timeout(queue.get(), timeout)
                except asyncio.TimeoutError as exc:
                    raise ProviderTimeoutError(
                        f"No response from Google within {timeout}s", provider="google", original=exc
                    ) from exc
                if item is _SENTINEL:
                    break
                if isinstance(item, tuple) and item and item[0] == "__error__":
                    raise self._categorize_error(item[1])

                finished = False
                for stream_chunk in self._chunks_from_response(item, model):
                    yield stream_chunk
                    if stream_chunk.finish_reason:
                        finished = True
                if finished:
                    break
        finally:
            stop_event.set()

    def _chunks_from_response(self, response: Any, model: str) -> List[StreamChunk]:
        """Split one SDK response into ordered text and function-call chunks."""
        chunks: List[StreamChunk] = []
        candidates = getattr(response, "candidates", None)
        if not candidates:
            return chunks
        candidate = candidates[0]

        content = getattr(candidate, "content", None)
        text = ""
        for part in (content.parts or []) if content else []:
            if getattr(part, "text", None):
                text += part.text
            elif getattr(part, "function_call", None):
                if text:
                    chunks.append(StreamChunk(delta=text, model=model))
                    text = ""
                call = part.function_call
                chunks.append(
                    StreamChunk(
                        model=model,
                        function_calls=[FunctionCall(name=call.name, arguments=dict(call.args or {}))],
                    )
                )
        if text:
            chunks.append(StreamChunk(delta=text, model=model))

        finish_reason = getattr(candidate, "finish_reason", None)
        if finish_reason:
            chunks.append(
                StreamChunk(
                    model=model,
                    finish_reason=str(getattr(finish_reason, "value", finish_reason)).lower(),
                    usage=self._usage(response),
                )
            )
        return chunks

    @staticmethod
    def _usage(response: Any) -> Optional[Dict[str, Any]]:
        um = getattr(response, "usage_metadata", None)
        if um is None:
            return None
        return {
            "prompt_tokens": getattr(um, "prompt_token_count", None),
            "completion_tokens": getattr(um, "candidates_token_count", None),
            "total_tokens": getattr(um, "total_token_count", None),
        }

    # ---------------------------------------------------------------- errors

    def _categorize_error(self, exc: BaseException) -> ProviderError:
        """Map an SDK exception onto the provider error hierarchy."""
        if isinstance(exc, ProviderError):
            return exc
        if isinstance(exc, MCPGateError):
            return ProviderResponseError(str(exc), provider="google", original=exc)

        error_msg = self._extract_error_message(exc)
        lowered = error_msg.lower()
        if "api_key" in lowered or "api key" in lowered or "unauthorized" in lowered:
            error_cls: type[ProviderError] = ProviderAuthenticationError
            message = f"Google API authentication failed: {error_msg}"
        elif "quota" in lowered or "rate limit" in lowered or "resource_exhausted" in lowered:
            error_cls = ProviderRateLimitError
            message = f"Google API rate limit exceeded: {error_msg}"
        elif "timeout" in lowered or "timed out" in lowered or "deadline" in lowered:
            error_cls = ProviderTimeoutError
            message = f"Google API timeout: {error_msg}"
        else:
            error_cls = ProviderResponseError
            message = f"Google API error: {error_msg}"
        error = error_cls(message, provider="google", original=exc)
        error.__cause__ = exc
        return error

    def _extract_error_message(self, exc: BaseException) -> str:
        """Extract a meaningful error message from an exception chain.

        Prefers deeper cause/context messages and avoids the generic
        'unknown error' sentinel.
        """
        seen = set()

        def _walk(e: Optional[BaseException]) -> str:
            if e is None or id(e) in seen:
                return ""
            seen.add(id(e))

            deeper = _walk(e.__cause__) or _walk(e.__context__)
            if deeper and deeper.strip().lower() != "unknown error":
                return deeper

            if isinstance(e, (asyncio.TimeoutError, TimeoutError)):
                return "Request timed out"

            msg = (str(e) or "").strip()
            if msg and msg.lower() != "unknown error":
                return msg
            return f"{type(e).__name__} (no message available)"

        return _walk(exc)
