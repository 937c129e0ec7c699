"""OpenRouter chat-completions backend (OpenAI-compatible SSE).

Reasoning policy: reasoning text is accumulated and flushed once at stream
completion. ``reasoning_details`` blocks are the continuation: each block is
attached to the tool call whose id it carries, and the full list is replayed
verbatim with the assistant turn.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack
from typing import Any

import httpx

from deskpilot.errors import ModelBackendError
from deskpilot.events import EventSink, default_sink
from deskpilot.llm.adapter import StreamAccumulator
from deskpilot.llm.messages import AgentMessage, ErrorEvent, StreamEvent
from deskpilot.llm.openai_format import to_openai_messages
from deskpilot.llm.sse import iter_sse_data, raise_for_status

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_TIMEOUT = httpx.Timeout(300.0, connect=30.0)


class OpenRouterAdapter:
    """Streams turns from OpenRouter.

    Usage:
        adapter = OpenRouterAdapter("anthropic/claude-sonnet-4", api_key=key)
        async for event in adapter.stream(history, TOOL_SCHEMAS):
            ...
    """

    def __init__(
        self,
        model: str,
        *,
        api_key: str,
        base_url: str | None = None,
        max_tokens: int | None = None,
        client: httpx.AsyncClient | None = None,
        events: EventSink | None = None,
    ) -> None:
        self._model = model
        self._api_key = api_key
        self._base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self._max_tokens = max_tokens
        self._client = client
        self._events = events or default_sink("llm.openrouter")

    @property
    def model(self) -> str:
        return self._model

    def build_request(self, history: list[AgentMessage], tools: list[dict[str, Any]]) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self._model,
            "messages": to_openai_messages(history),
            "stream": True,
        }
        if tools:
            payload["tools"] = tools
        if self._max_tokens:
            payload["max_tokens"] = self._max_tokens
        return payload

    async def stream(
        self,
        history: list[AgentMessage],
        tools: list[dict[str, Any]],
    ) -> AsyncIterator[StreamEvent]:
        payload = self.build_request(history, tools)
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "X-Title": "deskpilot",
        }
        accumulator = StreamAccumulator(self._events)
        self._events.emit("llm.request", level=logging.DEBUG, model=self._model, messages=len(history))

        async with AsyncExitStack() as stack:
            client = self._client or await stack.enter_async_context(
                httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)
            )
            try:
                response = await stack.enter_async_context(
                    client.stream("POST", f"{self._base_url}/chat/completions", json=payload, headers=headers)
                )
                await raise_for_status(response, "OpenRouter")
                async for data in iter_sse_data(response):
                    if data.strip() == "[DONE]":
                        break
                    error = self._apply(accumulator, data)
                    if error is not None:
                        yield error
                        return
            except httpx.HTTPError as e:
                raise ModelBackendError(f"OpenRouter transport failure: {e}") from e

        for event in accumulator.finalize():
            yield event

    def _apply(self, accumulator: StreamAccumulator, data: str) -> ErrorEvent | None:
        try:
            chunk = json.loads(data)
        except json.JSONDecodeError as e:
            self._events.emit("llm.malformed_chunk", level=logging.WARNING, error=e, data=data)
            return None
        if not isinstance(chunk, dict):
            self._events.emit("llm.malformed_chunk", level=logging.WARNING, data=data)
            return None

        if chunk.get("error"):
            error = chunk["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            self._events.emit("llm.stream_error", level=logging.ERROR, message=message)
            return ErrorEvent(message or "Unknown OpenRouter error")

        try:
            choices = chunk.get("choices") or []
            if not choices:
                return None
            choice = choices[0]
            delta = choice.get("delta") or {}
            self._apply_delta(accumulator, delta)
            if choice.get("finish_reason"):
                accumulator.finish(choice["finish_reason"])
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            self._events.emit("llm.malformed_chunk", level=logging.WARNING, error=e, data=data)
        return None

    def _apply_delta(self, accumulator: StreamAccumulator, delta: dict[str, Any]) -> None:
        accumulator.add_text(delta.get("content"))

        details = delta.get("reasoning_details") or []
        if delta.get("reasoning"):
            accumulator.add_reasoning(delta["reasoning"])
        else:
            for block in details:
                if isinstance(block, dict):
                    accumulator.add_reasoning(block.get("text") or block.get("summary"))
        for block in details:
            accumulator.add_continuation_block(block)

        for fragment in delta.get("tool_calls") or []:
            function = fragment.get("function") or {}
            accumulator.add_tool_fragment(
                int(fragment.get("index", 0)),
                id=fragment.get("id"),
                name=function.get("name"),
                arguments=function.get("arguments"),
            )
