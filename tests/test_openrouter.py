"""Tests for the OpenRouter stream adapter."""

from __future__ import annotations

import json

import httpx
import pytest

from deskpilot.errors import ModelBackendError
from deskpilot.events import RecordingEventSink
from deskpilot.llm.messages import (
    AgentMessage,
    ErrorEvent,
    FinalMessageEvent,
    ReasoningEvent,
    ToolCall,
    ToolCallEvent,
)
from deskpilot.llm.openrouter import OpenRouterAdapter
from deskpilot.llm.tools import TOOL_SCHEMAS
from tests.utils import sse_body


def _delta(delta=None, finish_reason=None):
    return {"choices": [{"index": 0, "delta": delta or {}, "finish_reason": finish_reason}]}


def _adapter(handler, **kwargs) -> tuple[OpenRouterAdapter, list[httpx.Request]]:
    requests: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(record))
    adapter = OpenRouterAdapter(
        "test/model",
        api_key="sk-test",
        client=client,
        events=kwargs.pop("events", RecordingEventSink()),
        **kwargs,
    )
    return adapter, requests


def _sse(*chunks, done=True):
    body = sse_body(*chunks, done=done)
    return lambda request: httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})


async def _collect(adapter: OpenRouterAdapter, history=None):
    history = history or [AgentMessage.user("hi")]
    return [event async for event in adapter.stream(history, TOOL_SCHEMAS)]


class TestStreaming:
    """Chunk parsing into canonical events."""

    @pytest.mark.asyncio
    async def test_fragmented_tool_call(self) -> None:
        """Arguments split across chunks produce one assembled call."""
        adapter, _ = _adapter(
            _sse(
                _delta({"tool_calls": [{"index": 0, "id": "call_1", "function": {"name": "mouse_click"}}]}),
                _delta({"tool_calls": [{"index": 0, "function": {"arguments": '{"x":'}}]}),
                _delta({"tool_calls": [{"index": 0, "function": {"arguments": "10,"}}]}),
                _delta({"tool_calls": [{"index": 0, "function": {"arguments": '"y":20}'}}]}),
                _delta(finish_reason="tool_calls"),
            )
        )
        events = await _collect(adapter)

        assert [type(e) for e in events] == [ToolCallEvent, FinalMessageEvent]
        call = events[0].tool_call
        assert call.id == "call_1"
        assert call.name == "mouse_click"
        assert json.loads(call.arguments) == {"x": 10, "y": 20}
        assert events[1].should_continue is True

    @pytest.mark.asyncio
    async def test_text_and_stop(self) -> None:
        adapter, _ = _adapter(
            _sse(_delta({"content": "The task "}), _delta({"content": "is done."}), _delta(finish_reason="stop"))
        )
        events = await _collect(adapter)
        assert events == [FinalMessageEvent(text="The task is done.", finish_reason="stop")]

    @pytest.mark.asyncio
    async def test_reasoning_flushed_once_at_end(self) -> None:
        """Reasoning deltas are joined into a single event before the final message."""
        adapter, _ = _adapter(
            _sse(
                _delta({"reasoning": "First, "}),
                _delta({"reasoning": "look."}),
                _delta({"content": "ok"}),
                _delta(finish_reason="stop"),
            )
        )
        events = await _collect(adapter)
        assert [type(e) for e in events] == [ReasoningEvent, FinalMessageEvent]
        assert events[0].text == "First, look."

    @pytest.mark.asyncio
    async def test_reasoning_details_become_continuation(self) -> None:
        """Detail blocks are kept verbatim and matched to calls by id."""
        blocks = [
            {"type": "reasoning.text", "text": "Clicking."},
            {"type": "reasoning.encrypted", "data": "opaque", "id": "call_1"},
        ]
        adapter, _ = _adapter(
            _sse(
                _delta({"reasoning_details": blocks[:1]}),
                _delta({"reasoning_details": blocks[1:]}),
                _delta({"tool_calls": [{"index": 0, "id": "call_1", "function": {"name": "screenshot"}}]}),
                _delta(finish_reason="tool_calls"),
            )
        )
        events = await _collect(adapter)
        call = next(e.tool_call for e in events if isinstance(e, ToolCallEvent))
        final = events[-1]
        assert final.continuation == blocks
        assert call.continuation == blocks[1]
        assert next(e for e in events if isinstance(e, ReasoningEvent)).text == "Clicking."

    @pytest.mark.asyncio
    async def test_stream_ends_without_done_marker(self) -> None:
        adapter, _ = _adapter(_sse(_delta({"content": "hi"}), _delta(finish_reason="stop"), done=False))
        events = await _collect(adapter)
        assert events[-1].text == "hi"

    @pytest.mark.asyncio
    async def test_malformed_chunk_skipped(self) -> None:
        events_sink = RecordingEventSink()
        adapter, _ = _adapter(
            _sse("{not json", _delta({"content": "fine"}), _delta(finish_reason="stop")),
            events=events_sink,
        )
        events = await _collect(adapter)
        assert events[-1].text == "fine"
        assert len(events_sink.named("llm.malformed_chunk")) == 1

    @pytest.mark.asyncio
    async def test_in_stream_error_becomes_error_event(self) -> None:
        """An error chunk ends the stream with an ErrorEvent and no final message."""
        adapter, _ = _adapter(
            _sse(_delta({"content": "partial"}), {"error": {"message": "Provider overloaded", "code": 502}})
        )
        events = await _collect(adapter)
        assert events == [ErrorEvent("Provider overloaded")]


class TestHttpErrors:
    """Non-success responses raise ModelBackendError."""

    @pytest.mark.asyncio
    async def test_status_and_body_reported(self) -> None:
        adapter, _ = _adapter(lambda request: httpx.Response(401, text='{"error":"bad key"}'))
        with pytest.raises(ModelBackendError) as exc_info:
            await _collect(adapter)
        assert exc_info.value.status_code == 401
        assert "bad key" in exc_info.value.body
        assert "401" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_transport_failure(self) -> None:
        def fail(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        adapter, _ = _adapter(fail)
        with pytest.raises(ModelBackendError, match="transport failure"):
            await _collect(adapter)


class TestRequest:
    """Outbound request shape."""

    @pytest.mark.asyncio
    async def test_headers_and_payload(self) -> None:
        adapter, requests = _adapter(_sse(_delta(finish_reason="stop")), max_tokens=512)
        await _collect(adapter)

        request = requests[0]
        assert request.url == "https://openrouter.ai/api/v1/chat/completions"
        assert request.headers["authorization"] == "Bearer sk-test"
        body = json.loads(request.content)
        assert body["model"] == "test/model"
        assert body["stream"] is True
        assert body["max_tokens"] == 512
        assert [t["function"]["name"] for t in body["tools"]] == [
            t["function"]["name"] for t in TOOL_SCHEMAS
        ]

    def test_reasoning_details_replayed(self) -> None:
        """An assistant turn's continuation goes back unchanged."""
        blocks = [{"type": "reasoning.encrypted", "data": "opaque", "id": "call_1"}]
        adapter = OpenRouterAdapter("test/model", api_key="k", events=RecordingEventSink())
        history = [
            AgentMessage.user("go"),
            AgentMessage.assistant(None, [ToolCall("call_1", "screenshot")], continuation=blocks),
            AgentMessage.tool_result(ToolCall("call_1", "screenshot"), '{"success": true}'),
        ]
        messages = adapter.build_request(history, [])["messages"]

        assistant = messages[1]
        assert assistant["reasoning_details"] == blocks
        assert assistant["content"] is None
        assert assistant["tool_calls"][0]["id"] == "call_1"
        assert messages[2]["role"] == "tool"
        assert messages[2]["tool_call_id"] == "call_1"

    def test_no_tools_key_without_tools(self) -> None:
        adapter = OpenRouterAdapter("m", api_key="k", events=RecordingEventSink())
        assert "tools" not in adapter.build_request([AgentMessage.user("x")], [])
