"""Building the outbound model context from conversation history."""

from __future__ import annotations

from deskpilot.llm.messages import AgentMessage, Role

SCREENSHOT_PLACEHOLDER = "[Earlier screenshot omitted]"

_SYSTEM_PROMPT = """You are an AI agent that can control a computer through vision and actions.

You can see the screen and perform actions like:
- mouse_move(x, y) - Move mouse to coordinates
- mouse_click(button, x?, y?) - Click mouse button
- keyboard_type(text) - Type text
- keyboard_press(key, modifiers?) - Press a key
- screenshot() - Take a screenshot

The screen size is {width}x{height} pixels.

When given a task:
1. Observe the current screen carefully
2. Plan your actions step by step
3. Execute actions to complete the task
4. Verify the results

Be precise with coordinates and actions. If something doesn't work, try a different approach."""


def default_system_prompt(width: int, height: int) -> str:
    return _SYSTEM_PROMPT.format(width=width, height=height)


def prune_screenshots(history: list[AgentMessage], keep: int) -> int:
    """Replace images on all but the newest ``keep`` screenshot turns.

    Turns are modified in place and never removed. A pruned turn keeps its
    text with the placeholder appended. Pruning twice has no further effect.

    Returns:
        Number of turns pruned by this call
    """
    bearing = [message for message in history if message.has_images]
    stale = bearing[: max(len(bearing) - max(keep, 0), 0)]
    for message in stale:
        message.images = []
        message.text = f"{message.text}\n{SCREENSHOT_PLACEHOLDER}" if message.text else SCREENSHOT_PLACEHOLDER
    return len(stale)


def build_context(history: list[AgentMessage], system_prompt: str | None) -> list[AgentMessage]:
    """Prefix history with the system prompt unless it already carries one."""
    if system_prompt is None or any(message.role is Role.SYSTEM for message in history):
        return list(history)
    return [AgentMessage.system(system_prompt), *history]
