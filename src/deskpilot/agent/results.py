"""Results streamed out of an agent run."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from deskpilot.agent.detector import DetectedElement
from deskpilot.llm.messages import ToolCall


class AgentResultKind(Enum):
    REASONING = "reasoning"
    TOOL_CALL = "tool_call"
    SCREENSHOT = "screenshot"
    MESSAGE = "message"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class AgentResult:
    """One item of progress from AgentOrchestrator.run.

    Attributes:
        kind: What happened
        content: Reasoning, message or error text
        tool_call: The call about to be executed (tool_call results)
        screenshot: Raw PNG bytes (screenshot results)
        annotated_screenshot: Detector-annotated PNG, when detection ran
        elements: Detected UI elements, when detection ran
    """

    kind: AgentResultKind
    content: str | None = None
    tool_call: ToolCall | None = None
    screenshot: bytes | None = None
    annotated_screenshot: bytes | None = None
    elements: tuple[DetectedElement, ...] = ()

    @classmethod
    def reasoning(cls, text: str) -> AgentResult:
        return cls(AgentResultKind.REASONING, content=text)

    @classmethod
    def message(cls, text: str) -> AgentResult:
        return cls(AgentResultKind.MESSAGE, content=text)

    @classmethod
    def error(cls, text: str) -> AgentResult:
        return cls(AgentResultKind.ERROR, content=text)

    @classmethod
    def for_tool_call(cls, call: ToolCall) -> AgentResult:
        return cls(AgentResultKind.TOOL_CALL, tool_call=call)
