"""Vision agent: tool execution, context management and the run loop."""

from deskpilot.agent.context import (
    SCREENSHOT_PLACEHOLDER,
    build_context,
    default_system_prompt,
    prune_screenshots,
)
from deskpilot.agent.detector import (
    CloudElementDetector,
    DetectedElement,
    DetectionResult,
    ElementDetector,
    format_elements,
)
from deskpilot.agent.executor import ToolExecutor
from deskpilot.agent.orchestrator import AgentOrchestrator
from deskpilot.agent.results import AgentResult, AgentResultKind

__all__ = [
    "AgentOrchestrator",
    "AgentResult",
    "AgentResultKind",
    "ToolExecutor",
    # Context
    "SCREENSHOT_PLACEHOLDER",
    "build_context",
    "default_system_prompt",
    "prune_screenshots",
    # Detection
    "CloudElementDetector",
    "DetectedElement",
    "DetectionResult",
    "ElementDetector",
    "format_elements",
]
