"""Conversation messages and canonical stream events."""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Role(Enum):
    """Message role in a conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True, slots=True)
class ImageContent:
    """An image attached to a message."""

    data: bytes
    media_type: str = "image/png"

    def base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def data_url(self) -> str:
        return f"data:{self.media_type};base64,{self.base64()}"


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A tool invocation requested by the model.

    Attributes:
        id: Call id used to match the tool result
        name: Tool name
        arguments: Raw JSON argument text, exactly as streamed
        continuation: Opaque backend data replayed with this call
    """

    id: str
    name: str
    arguments: str = "{}"
    continuation: Any = None

    def parsed_arguments(self) -> dict[str, Any]:
        """Decode the argument text.

        Raises:
            ValueError: The text is not a JSON object
        """
        value = json.loads(self.arguments or "{}")
        if not isinstance(value, dict):
            raise ValueError("tool arguments must be a JSON object")
        return value


@dataclass(slots=True)
class AgentMessage:
    """A turn in the conversation history.

    Attributes:
        role: Who produced the turn
        text: Text content, if any
        images: Attached images (user turns)
        tool_calls: Tool calls requested (assistant turns)
        tool_call_id: Call this turn answers (tool turns)
        name: Tool name (tool turns)
        continuation: Opaque backend data, stored and replayed unmodified
    """

    role: Role
    text: str | None = None
    images: list[ImageContent] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None
    name: str | None = None
    continuation: Any = None

    @property
    def has_images(self) -> bool:
        return bool(self.images)

    @classmethod
    def system(cls, text: str) -> AgentMessage:
        return cls(role=Role.SYSTEM, text=text)

    @classmethod
    def user(cls, text: str | None = None, images: list[ImageContent] | None = None) -> AgentMessage:
        return cls(role=Role.USER, text=text, images=list(images or []))

    @classmethod
    def assistant(
        cls,
        text: str | None = None,
        tool_calls: list[ToolCall] | None = None,
        continuation: Any = None,
    ) -> AgentMessage:
        return cls(
            role=Role.ASSISTANT,
            text=text,
            tool_calls=list(tool_calls or []),
            continuation=continuation,
        )

    @classmethod
    def tool_result(cls, call: ToolCall, text: str) -> AgentMessage:
        return cls(role=Role.TOOL, text=text, tool_call_id=call.id, name=call.name)


# === Canonical stream events ===


@dataclass(frozen=True, slots=True)
class ReasoningEvent:
    text: str


@dataclass(frozen=True, slots=True)
class ToolCallEvent:
    tool_call: ToolCall


@dataclass(frozen=True, slots=True)
class FinalMessageEvent:
    """Terminal event of a model turn; exactly one per stream."""

    text: str
    continuation: Any = None
    should_continue: bool = False
    finish_reason: str | None = None


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    message: str


StreamEvent = ReasoningEvent | ToolCallEvent | FinalMessageEvent | ErrorEvent
