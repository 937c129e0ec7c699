"""Language-model backends behind one canonical stream interface."""

from __future__ import annotations

from typing import TYPE_CHECKING

from deskpilot.config.secrets import GEMINI_API_KEY, OPENROUTER_API_KEY, fetch_secret
from deskpilot.errors import ModelBackendError
from deskpilot.llm.adapter import StreamAccumulator, StreamAdapter
from deskpilot.llm.messages import (
    AgentMessage,
    ErrorEvent,
    FinalMessageEvent,
    ImageContent,
    ReasoningEvent,
    Role,
    StreamEvent,
    ToolCall,
    ToolCallEvent,
)
from deskpilot.llm.tools import TOOL_SCHEMAS

if TYPE_CHECKING:
    from deskpilot.config.schema import LLMConfig
    from deskpilot.events import EventSink

DEFAULT_MODELS = {
    "openrouter": "anthropic/claude-sonnet-4",
    "gemini": "gemini-2.5-flash",
    "litellm": "gpt-4o",
}


def create_adapter(config: LLMConfig, events: EventSink | None = None) -> StreamAdapter:
    """Build the stream adapter selected by ``config.backend``.

    Raises:
        ModelBackendError: Unknown backend or missing API key
    """
    backend = (config.backend or "openrouter").lower()
    model = config.model or DEFAULT_MODELS.get(backend, "")

    if backend == "openrouter":
        from deskpilot.llm.openrouter import OpenRouterAdapter

        api_key = fetch_secret(OPENROUTER_API_KEY)
        if not api_key:
            raise ModelBackendError(f"{OPENROUTER_API_KEY} is not set")
        return OpenRouterAdapter(
            model,
            api_key=api_key,
            base_url=config.api_base,
            max_tokens=config.max_tokens,
            events=events,
        )

    if backend == "gemini":
        from deskpilot.llm.gemini import GeminiAdapter

        api_key = fetch_secret(GEMINI_API_KEY)
        if not api_key:
            raise ModelBackendError(f"{GEMINI_API_KEY} is not set")
        return GeminiAdapter(
            model,
            api_key=api_key,
            base_url=config.api_base,
            max_tokens=config.max_tokens,
            events=events,
        )

    if backend == "litellm":
        from deskpilot.llm.litellm_adapter import LiteLLMAdapter

        return LiteLLMAdapter(
            model,
            api_base=config.api_base,
            max_tokens=config.max_tokens,
            events=events,
        )

    raise ModelBackendError(f"Unknown LLM backend: {config.backend}")


__all__ = [
    "create_adapter",
    "DEFAULT_MODELS",
    "StreamAdapter",
    "StreamAccumulator",
    "TOOL_SCHEMAS",
    # Messages
    "AgentMessage",
    "ImageContent",
    "Role",
    "ToolCall",
    # Events
    "StreamEvent",
    "ReasoningEvent",
    "ToolCallEvent",
    "FinalMessageEvent",
    "ErrorEvent",
]
