"""Stream adapter protocol and the shared per-stream accumulator.

Backends differ in how they fragment a model turn: tool-call arguments
arrive in index-keyed pieces, finish signals can repeat, and reasoning may
come inline or as opaque blocks. Each backend only parses its wire chunks
and feeds a ``StreamAccumulator``; the accumulator turns the turn into the
canonical event sequence

    ToolCallEvent*  ReasoningEvent?  FinalMessageEvent
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from deskpilot.events import EventSink, NullEventSink
from deskpilot.llm.messages import (
    AgentMessage,
    FinalMessageEvent,
    ReasoningEvent,
    StreamEvent,
    ToolCall,
    ToolCallEvent,
)

# finish reasons meaning "output was cut off, keep going"
LENGTH_FINISH_REASONS = frozenset({"length", "max_tokens", "MAX_TOKENS"})


@runtime_checkable
class StreamAdapter(Protocol):
    """Streams one model turn as canonical events."""

    @property
    def model(self) -> str:
        """The model identifier being used."""
        ...

    def stream(
        self,
        history: list[AgentMessage],
        tools: list[dict[str, Any]],
    ) -> AsyncIterator[StreamEvent]:
        """Stream the model's response to ``history``.

        Args:
            history: Outbound context, system prompt first
            tools: Tool schemas in OpenAI function format

        Yields:
            Canonical events, ending with exactly one FinalMessageEvent
            (or an ErrorEvent if the backend reported an in-stream error)

        Raises:
            ModelBackendError: Non-success HTTP status or transport failure
        """
        ...


def new_call_id() -> str:
    return f"call_{uuid.uuid4().hex}"


@dataclass
class _PendingCall:
    index: int
    id: str | None = None
    name: str = ""
    fragments: list[str] = field(default_factory=list)
    continuation: Any = None


class StreamAccumulator:
    """Mutable state for one model turn, discarded once finalized."""

    def __init__(self, events: EventSink | None = None) -> None:
        self._events = events or NullEventSink()
        self._calls: dict[int, _PendingCall] = {}
        self._text: list[str] = []
        self._reasoning: list[str] = []
        self._blocks: list[Any] = []
        self._continuation: Any = None
        self.finish_reason: str | None = None
        self.finished = False
        self._finalized = False

    def add_text(self, text: str | None) -> None:
        if text and not self.finished:
            self._text.append(text)

    def add_reasoning(self, text: str | None) -> None:
        if text and not self.finished:
            self._reasoning.append(text)

    def add_tool_fragment(
        self,
        index: int,
        *,
        id: str | None = None,
        name: str | None = None,
        arguments: str | None = None,
        continuation: Any = None,
    ) -> None:
        """Merge one piece of a streamed tool call into the call at ``index``."""
        if self.finished:
            return
        call = self._calls.get(index)
        if call is None:
            call = self._calls[index] = _PendingCall(index=index)
        if id and not call.id:
            call.id = id
        if name and not call.name:
            call.name = name
        if arguments:
            call.fragments.append(arguments)
        if continuation is not None and call.continuation is None:
            call.continuation = continuation

    def add_tool_call(
        self,
        name: str,
        arguments: str,
        *,
        id: str | None = None,
        continuation: Any = None,
    ) -> None:
        """Record a tool call that arrived whole."""
        index = max(self._calls, default=-1) + 1
        self.add_tool_fragment(index, id=id, name=name, arguments=arguments, continuation=continuation)

    def add_continuation_block(self, block: Any) -> None:
        """Keep an opaque continuation block (verbatim, in arrival order)."""
        if block is not None and not self.finished:
            self._blocks.append(block)

    def set_continuation(self, value: Any) -> None:
        """Set the message-level continuation when the backend has no blocks."""
        if value is not None and not self.finished:
            self._continuation = value

    def finish(self, reason: str | None) -> bool:
        """Record the finish signal. Only the first one counts.

        Returns:
            True if this was the first finish signal.
        """
        if self.finished:
            self._events.emit("llm.duplicate_finish", level=logging.DEBUG, reason=reason)
            return False
        self.finished = True
        self.finish_reason = reason
        return True

    @property
    def reasoning_text(self) -> str:
        return "".join(self._reasoning)

    def finalize(self, *, emit_reasoning: bool = True) -> list[StreamEvent]:
        """Produce the terminal events for this turn.

        A stream that ended without a finish signal is finalized as-is.

        Args:
            emit_reasoning: Flush accumulated reasoning as one event
        """
        if self._finalized:
            return []
        self._finalized = True
        self.finished = True

        calls = [self._build_call(self._calls[i]) for i in sorted(self._calls)]
        result: list[StreamEvent] = [ToolCallEvent(call) for call in calls]
        if emit_reasoning and self._reasoning:
            result.append(ReasoningEvent(self.reasoning_text))

        continuation = list(self._blocks) if self._blocks else self._continuation
        result.append(
            FinalMessageEvent(
                text="".join(self._text),
                continuation=continuation,
                should_continue=bool(calls) or self.finish_reason in LENGTH_FINISH_REASONS,
                finish_reason=self.finish_reason,
            )
        )
        return result

    def _build_call(self, pending: _PendingCall) -> ToolCall:
        call_id = pending.id or new_call_id()
        arguments = "".join(pending.fragments) or "{}"
        try:
            json.loads(arguments)
        except json.JSONDecodeError as e:
            self._events.emit(
                "llm.invalid_tool_arguments",
                level=logging.WARNING,
                tool=pending.name,
                error=e,
            )
        continuation = pending.continuation
        if continuation is None:
            continuation = next(
                (b for b in self._blocks if isinstance(b, dict) and b.get("id") == call_id),
                None,
            )
        return ToolCall(
            id=call_id,
            name=pending.name or "unknown",
            arguments=arguments,
            continuation=continuation,
        )
