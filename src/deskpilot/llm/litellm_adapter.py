"""LiteLLM backend.

Supports 100+ LLM providers through litellm:
- Anthropic: "claude-sonnet-4-20250514"
- OpenAI: "gpt-4o"
- Local: "ollama/llava"

Reasoning policy: ``reasoning_content`` deltas are accumulated and flushed
once at completion. No continuation data is kept.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

import litellm

from deskpilot.errors import ModelBackendError
from deskpilot.events import EventSink, default_sink
from deskpilot.llm.adapter import StreamAccumulator
from deskpilot.llm.messages import AgentMessage, StreamEvent
from deskpilot.llm.openai_format import to_openai_messages


class LiteLLMAdapter:
    """Streams turns through ``litellm.acompletion``.

    Usage:
        adapter = LiteLLMAdapter("gpt-4o")
        adapter = LiteLLMAdapter("ollama/llava", api_base="http://localhost:11434")
    """

    def __init__(
        self,
        model: str,
        *,
        api_key: str | None = None,
        api_base: str | None = None,
        max_tokens: int | None = None,
        events: EventSink | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize the adapter.

        Args:
            model: litellm model identifier
            api_key: API key (litellm falls back to provider env vars)
            api_base: Custom API base URL
            max_tokens: Output token limit
            events: Event sink for diagnostics
            **kwargs: Additional litellm options
        """
        self._model = model
        self._api_key = api_key
        self._api_base = api_base
        self._max_tokens = max_tokens
        self._events = events or default_sink("llm.litellm")
        self._kwargs = kwargs

    @property
    def model(self) -> str:
        return self._model

    def _build_kwargs(self, history: list[AgentMessage], tools: list[dict[str, Any]]) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": to_openai_messages(history, replay_reasoning=False),
            "stream": True,
            **self._kwargs,
        }
        if tools:
            kwargs["tools"] = tools
        if self._max_tokens:
            kwargs["max_tokens"] = self._max_tokens
        if self._api_key:
            kwargs["api_key"] = self._api_key
        if self._api_base:
            kwargs["api_base"] = self._api_base
        return kwargs

    async def stream(
        self,
        history: list[AgentMessage],
        tools: list[dict[str, Any]],
    ) -> AsyncIterator[StreamEvent]:
        accumulator = StreamAccumulator(self._events)
        self._events.emit("llm.request", level=logging.DEBUG, model=self._model, messages=len(history))
        try:
            response = await litellm.acompletion(**self._build_kwargs(history, tools))
            async for chunk in response:
                self._apply(accumulator, chunk)
        except ModelBackendError:
            raise
        except Exception as e:
            raise ModelBackendError(
                f"litellm request failed: {e}",
                status_code=getattr(e, "status_code", None),
                body=getattr(e, "message", None),
            ) from e

        for event in accumulator.finalize():
            yield event

    def _apply(self, accumulator: StreamAccumulator, chunk: Any) -> None:
        try:
            if not chunk.choices:
                return
            choice = chunk.choices[0]
            delta = choice.delta
            if delta is not None:
                accumulator.add_text(getattr(delta, "content", None))
                accumulator.add_reasoning(getattr(delta, "reasoning_content", None))
                for fragment in getattr(delta, "tool_calls", None) or []:
                    function = getattr(fragment, "function", None)
                    accumulator.add_tool_fragment(
                        getattr(fragment, "index", 0) or 0,
                        id=getattr(fragment, "id", None),
                        name=getattr(function, "name", None),
                        arguments=getattr(function, "arguments", None),
                    )
            if choice.finish_reason:
                accumulator.finish(choice.finish_reason)
        except (AttributeError, IndexError, TypeError) as e:
            self._events.emit("llm.malformed_chunk", level=logging.WARNING, error=e)
