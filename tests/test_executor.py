"""Tests for ToolExecutor, mapping model tool calls onto channel commands."""

from __future__ import annotations

import base64
import json

import pytest

from deskpilot.agent.executor import ToolExecutor
from deskpilot.channel.interface import ComputerInterface
from deskpilot.errors import ChannelTimeoutError
from deskpilot.events import RecordingEventSink
from deskpilot.llm.messages import Role, ToolCall
from deskpilot.llm.tools import TOOL_NAMES
from tests.utils import PNG_BYTES, RecordingSender, screen_results


def _executor(results=None):
    sender = RecordingSender(results)
    events = RecordingEventSink()
    return ToolExecutor(ComputerInterface(sender), events=events), sender, events


def _call(name: str, arguments: dict | str = "{}", call_id: str = "call_1") -> ToolCall:
    text = arguments if isinstance(arguments, str) else json.dumps(arguments)
    return ToolCall(id=call_id, name=name, arguments=text)


class TestTools:
    """Each tool issues the expected commands and reports success."""

    def test_tool_names_match_schemas(self) -> None:
        executor, _, _ = _executor()
        assert set(executor.tool_names) == TOOL_NAMES

    @pytest.mark.asyncio
    async def test_mouse_move(self) -> None:
        executor, sender, _ = _executor()
        message = await executor.execute(_call("mouse_move", {"x": 100, "y": 200}))

        assert sender.kinds == ["pointer.move"]
        assert sender.commands[0].x == 100
        assert sender.commands[0].y == 200
        assert message.role is Role.TOOL
        assert message.tool_call_id == "call_1"
        assert message.name == "mouse_move"
        assert json.loads(message.text) == {"success": True, "x": 100, "y": 200}

    @pytest.mark.asyncio
    async def test_mouse_click_with_coordinates_moves_first(self) -> None:
        executor, sender, _ = _executor()
        message = await executor.execute(_call("mouse_click", {"button": "right", "x": 5, "y": 6}))
        assert sender.kinds == ["pointer.move", "pointer.rightClick"]
        assert json.loads(message.text) == {"success": True, "button": "right"}

    @pytest.mark.asyncio
    async def test_mouse_click_defaults_to_left_in_place(self) -> None:
        executor, sender, _ = _executor()
        await executor.execute(_call("mouse_click"))
        assert sender.kinds == ["pointer.leftClick"]

    @pytest.mark.asyncio
    async def test_middle_click_is_down_up(self) -> None:
        executor, sender, _ = _executor()
        await executor.execute(_call("mouse_click", {"button": "middle"}))
        assert sender.kinds == ["pointer.down", "pointer.up"]
        assert all(c.button.value == "middle" for c in sender.commands)

    @pytest.mark.asyncio
    async def test_keyboard_type(self) -> None:
        executor, sender, _ = _executor()
        message = await executor.execute(_call("keyboard_type", {"text": "hello"}))
        assert sender.kinds == ["keyboard.type"]
        assert sender.commands[0].text == "hello"
        assert json.loads(message.text) == {"success": True, "text": "hello"}

    @pytest.mark.asyncio
    async def test_keyboard_press_with_modifiers(self) -> None:
        """Modifiers are joined ahead of the key with '+'."""
        executor, sender, _ = _executor()
        message = await executor.execute(_call("keyboard_press", {"key": "s", "modifiers": ["Ctrl", "Shift"]}))
        assert sender.commands[0].key == "Ctrl+Shift+s"
        assert json.loads(message.text) == {"success": True, "key": "Ctrl+Shift+s"}

    @pytest.mark.asyncio
    async def test_keyboard_press_plain(self) -> None:
        executor, sender, _ = _executor()
        await executor.execute(_call("keyboard_press", {"key": "Enter"}))
        assert sender.commands[0].key == "Enter"

    @pytest.mark.asyncio
    async def test_screenshot(self) -> None:
        executor, sender, _ = _executor(screen_results())
        message = await executor.execute(_call("screenshot"))
        assert sender.kinds == ["screen.screenshot"]
        payload = json.loads(message.text)
        assert payload["success"] is True
        assert base64.b64decode(payload["screenshot"]) == PNG_BYTES

    @pytest.mark.asyncio
    async def test_extra_arguments_ignored(self) -> None:
        executor, sender, _ = _executor()
        await executor.execute(_call("mouse_move", {"x": 1, "y": 2, "speed": "fast"}))
        assert sender.kinds == ["pointer.move"]


class TestRejections:
    """Bad calls become error results without touching the channel."""

    @pytest.mark.asyncio
    async def test_unknown_tool(self) -> None:
        executor, sender, events = _executor()
        message = await executor.execute(_call("launch_rocket"))
        assert message.text == "Error: Unknown tool: launch_rocket"
        assert message.tool_call_id == "call_1"
        assert sender.commands == []
        assert len(events.named("executor.rejected")) == 1

    @pytest.mark.asyncio
    async def test_missing_argument(self) -> None:
        executor, sender, _ = _executor()
        message = await executor.execute(_call("mouse_move", {"x": 1}))
        assert message.text.startswith("Error: Invalid mouse_move arguments:")
        assert "y" in message.text
        assert sender.commands == []

    @pytest.mark.asyncio
    async def test_invalid_button(self) -> None:
        executor, _, _ = _executor()
        message = await executor.execute(_call("mouse_click", {"button": "side"}))
        assert message.text.startswith("Error: Invalid mouse_click arguments: button")

    @pytest.mark.asyncio
    async def test_malformed_json(self) -> None:
        executor, sender, _ = _executor()
        message = await executor.execute(_call("keyboard_type", '{"text": "unterminated'))
        assert message.text.startswith("Error: Invalid keyboard_type arguments:")
        assert sender.commands == []

    @pytest.mark.asyncio
    async def test_non_object_arguments(self) -> None:
        executor, _, _ = _executor()
        message = await executor.execute(_call("keyboard_type", "[1, 2]"))
        assert message.text == "Error: Invalid keyboard_type arguments: tool arguments must be a JSON object"


class TestChannelFailures:
    """Errors from the channel are not converted here."""

    @pytest.mark.asyncio
    async def test_channel_error_propagates(self) -> None:
        executor, sender, _ = _executor()
        sender.failures["pointer.move"] = ChannelTimeoutError("no response")
        with pytest.raises(ChannelTimeoutError):
            await executor.execute(_call("mouse_move", {"x": 1, "y": 2}))
