"""Conversation history to OpenAI chat-completions messages."""

from __future__ import annotations

from typing import Any

from deskpilot.llm.messages import AgentMessage, Role


def _content(message: AgentMessage) -> str | list[dict[str, Any]]:
    if not message.images:
        return message.text or ""
    parts: list[dict[str, Any]] = []
    if message.text:
        parts.append({"type": "text", "text": message.text})
    for image in message.images:
        parts.append({"type": "image_url", "image_url": {"url": image.data_url()}})
    return parts


def to_openai_message(message: AgentMessage, *, replay_reasoning: bool = True) -> dict[str, Any]:
    """Serialize one turn.

    Args:
        message: The turn
        replay_reasoning: Send assistant continuations back as ``reasoning_details``
    """
    out: dict[str, Any] = {"role": message.role.value, "content": _content(message)}
    if message.role is Role.ASSISTANT:
        if message.tool_calls:
            out["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": call.arguments},
                }
                for call in message.tool_calls
            ]
            if not message.text:
                out["content"] = None
        if replay_reasoning and message.continuation is not None:
            out["reasoning_details"] = message.continuation
    elif message.role is Role.TOOL:
        out["tool_call_id"] = message.tool_call_id
        if message.name:
            out["name"] = message.name
    return out


def to_openai_messages(history: list[AgentMessage], *, replay_reasoning: bool = True) -> list[dict[str, Any]]:
    return [to_openai_message(m, replay_reasoning=replay_reasoning) for m in history]
