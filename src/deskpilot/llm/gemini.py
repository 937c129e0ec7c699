"""Gemini ``streamGenerateContent`` backend (SSE).

Reasoning policy: thought parts are emitted as ReasoningEvents as each chunk
arrives; nothing is flushed at completion. The continuation is the part's
``thoughtSignature``: function-call signatures ride on their ToolCall, a text
part's signature on the final message.
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
from deskpilot.llm.messages import AgentMessage, ErrorEvent, ReasoningEvent, Role, StreamEvent
from deskpilot.llm.sse import iter_sse_data, raise_for_status
from deskpilot.llm.tools import to_gemini_declarations

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_TIMEOUT = httpx.Timeout(300.0, connect=30.0)


def _message_parts(message: AgentMessage) -> list[dict[str, Any]]:
    parts: list[dict[str, Any]] = []
    if message.role is Role.TOOL:
        response: dict[str, Any] = {
            "name": message.name or "unknown",
            "response": {"result": message.text or ""},
        }
        if message.tool_call_id:
            response["id"] = message.tool_call_id
        return [{"functionResponse": response}]

    if message.text:
        part: dict[str, Any] = {"text": message.text}
        if message.role is Role.ASSISTANT and isinstance(message.continuation, str):
            part["thoughtSignature"] = message.continuation
        parts.append(part)
    for image in message.images:
        parts.append({"inlineData": {"mimeType": image.media_type, "data": image.base64()}})
    for call in message.tool_calls:
        try:
            args = call.parsed_arguments()
        except ValueError:
            args = {}
        function_call: dict[str, Any] = {"name": call.name, "args": args}
        if call.id:
            function_call["id"] = call.id
        part = {"functionCall": function_call}
        if isinstance(call.continuation, str):
            part["thoughtSignature"] = call.continuation
        parts.append(part)
    return parts


def to_gemini_contents(history: list[AgentMessage]) -> tuple[list[dict[str, Any]], str | None]:
    """Convert history to Gemini ``contents`` plus the system instruction.

    System turns become the system instruction. Tool results travel as user
    function responses; adjacent turns with the same role are merged.
    """
    system: list[str] = []
    contents: list[dict[str, Any]] = []
    for message in history:
        if message.role is Role.SYSTEM:
            if message.text:
                system.append(message.text)
            continue
        role = "model" if message.role is Role.ASSISTANT else "user"
        parts = _message_parts(message)
        if not parts:
            continue
        if contents and contents[-1]["role"] == role:
            contents[-1]["parts"].extend(parts)
        else:
            contents.append({"role": role, "parts": parts})
    return contents, "\n\n".join(system) or None


class GeminiAdapter:
    """Streams turns from the Gemini API."""

    def __init__(
        self,
        model: str,
        *,
        api_key: str,
        base_url: str | None = None,
        max_tokens: int | None = None,
        include_thoughts: bool = True,
        client: httpx.AsyncClient | None = None,
        events: EventSink | None = None,
    ) -> None:
        self._model = model
        self._api_key = api_key
        self._base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self._max_tokens = max_tokens
        self._include_thoughts = include_thoughts
        self._client = client
        self._events = events or default_sink("llm.gemini")

    @property
    def model(self) -> str:
        return self._model

    def build_request(self, history: list[AgentMessage], tools: list[dict[str, Any]]) -> dict[str, Any]:
        contents, system = to_gemini_contents(history)
        payload: dict[str, Any] = {"contents": contents}
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}
        if tools:
            payload["tools"] = [{"functionDeclarations": to_gemini_declarations(tools)}]
        generation: dict[str, Any] = {}
        if self._max_tokens:
            generation["maxOutputTokens"] = self._max_tokens
        if self._include_thoughts:
            generation["thinkingConfig"] = {"includeThoughts": True}
        if generation:
            payload["generationConfig"] = generation
        return payload

    async def stream(
        self,
        history: list[AgentMessage],
        tools: list[dict[str, Any]],
    ) -> AsyncIterator[StreamEvent]:
        payload = self.build_request(history, tools)
        url = f"{self._base_url}/models/{self._model}:streamGenerateContent"
        headers = {"x-goog-api-key": self._api_key}
        accumulator = StreamAccumulator(self._events)
        self._events.emit("llm.request", level=logging.DEBUG, model=self._model, messages=len(history))

        async with AsyncExitStack() as stack:
            client = self._client or await stack.enter_async_context(
                httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)
            )
            try:
                response = await stack.enter_async_context(
                    client.stream("POST", url, params={"alt": "sse"}, json=payload, headers=headers)
                )
                await raise_for_status(response, "Gemini")
                async for data in iter_sse_data(response):
                    for event in self._apply(accumulator, data):
                        yield event
                        if isinstance(event, ErrorEvent):
                            return
            except httpx.HTTPError as e:
                raise ModelBackendError(f"Gemini transport failure: {e}") from e

        for event in accumulator.finalize(emit_reasoning=False):
            yield event

    def _apply(self, accumulator: StreamAccumulator, data: str) -> list[StreamEvent]:
        try:
            chunk = json.loads(data)
        except json.JSONDecodeError as e:
            self._events.emit("llm.malformed_chunk", level=logging.WARNING, error=e, data=data)
            return []
        if not isinstance(chunk, dict):
            self._events.emit("llm.malformed_chunk", level=logging.WARNING, data=data)
            return []

        if chunk.get("error"):
            error = chunk["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            self._events.emit("llm.stream_error", level=logging.ERROR, message=message)
            return [ErrorEvent(message or "Unknown Gemini error")]

        candidates = chunk.get("candidates") or []
        if not candidates:
            blocked = (chunk.get("promptFeedback") or {}).get("blockReason")
            if blocked:
                return [ErrorEvent(f"Prompt blocked: {blocked}")]
            return []

        events: list[StreamEvent] = []
        try:
            candidate = candidates[0]
            if accumulator.finished:
                if candidate.get("finishReason"):
                    accumulator.finish(candidate["finishReason"])
                return []
            for part in (candidate.get("content") or {}).get("parts") or []:
                signature = part.get("thoughtSignature")
                if part.get("thought"):
                    if part.get("text"):
                        events.append(ReasoningEvent(part["text"]))
                elif part.get("functionCall"):
                    call = part["functionCall"]
                    accumulator.add_tool_call(
                        call.get("name") or "unknown",
                        json.dumps(call.get("args") or {}),
                        id=call.get("id"),
                        continuation=signature,
                    )
                elif part.get("text") is not None:
                    accumulator.add_text(part["text"])
                    accumulator.set_continuation(signature)
            if candidate.get("finishReason"):
                accumulator.finish(candidate["finishReason"])
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            self._events.emit("llm.malformed_chunk", level=logging.WARNING, error=e, data=data)
        return events
