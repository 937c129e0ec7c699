"""Maps model tool calls onto remote computer actions."""

from __future__ import annotations

import base64
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from deskpilot.channel.commands import MouseButton
from deskpilot.channel.interface import ComputerInterface
from deskpilot.errors import ToolArgumentError, ToolNotSupportedError
from deskpilot.events import EventSink, default_sink
from deskpilot.llm.messages import AgentMessage, ToolCall


class _Args(BaseModel):
    model_config = ConfigDict(extra="ignore")


class MouseMoveArgs(_Args):
    x: int
    y: int


class MouseClickArgs(_Args):
    button: MouseButton = MouseButton.LEFT
    x: int | None = None
    y: int | None = None


class KeyboardTypeArgs(_Args):
    text: str


class KeyboardPressArgs(_Args):
    key: str
    modifiers: list[str] | None = None

    def combo(self) -> str:
        return "+".join([*(self.modifiers or []), self.key])


class ScreenshotArgs(_Args):
    pass


class ToolExecutor:
    """Executes canonical tools against a ComputerInterface.

    Unknown tools and invalid arguments come back as error tool results so
    the model can react. Failures from the channel itself propagate.
    """

    def __init__(self, computer: ComputerInterface, events: EventSink | None = None) -> None:
        self.computer = computer
        self._events = events or default_sink("executor")
        self._tools: dict[str, tuple[type[_Args], Callable[[Any], Awaitable[dict[str, Any]]]]] = {
            "mouse_move": (MouseMoveArgs, self._mouse_move),
            "mouse_click": (MouseClickArgs, self._mouse_click),
            "keyboard_type": (KeyboardTypeArgs, self._keyboard_type),
            "keyboard_press": (KeyboardPressArgs, self._keyboard_press),
            "screenshot": (ScreenshotArgs, self._screenshot),
        }

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    async def execute(self, call: ToolCall) -> AgentMessage:
        """Run one tool call and return its tool-result turn."""
        self._events.emit("executor.execute", tool=call.name, arguments=call.arguments)
        try:
            args_model, handler = self._resolve(call)
            args = self._parse(call, args_model)
        except (ToolNotSupportedError, ToolArgumentError) as e:
            self._events.emit("executor.rejected", level=logging.WARNING, tool=call.name, error=e)
            return AgentMessage.tool_result(call, f"Error: {e}")

        result = await handler(args)
        return AgentMessage.tool_result(call, json.dumps(result))

    def _resolve(self, call: ToolCall) -> tuple[type[_Args], Callable[[Any], Awaitable[dict[str, Any]]]]:
        try:
            return self._tools[call.name]
        except KeyError:
            raise ToolNotSupportedError(f"Unknown tool: {call.name}") from None

    def _parse(self, call: ToolCall, args_model: type[_Args]) -> _Args:
        try:
            return args_model.model_validate(call.parsed_arguments())
        except ValidationError as e:
            details = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}" for err in e.errors()
            )
            raise ToolArgumentError(f"Invalid {call.name} arguments: {details}") from e
        except ValueError as e:
            raise ToolArgumentError(f"Invalid {call.name} arguments: {e}") from e

    async def _mouse_move(self, args: MouseMoveArgs) -> dict[str, Any]:
        await self.computer.pointer.move(args.x, args.y)
        return {"success": True, "x": args.x, "y": args.y}

    async def _mouse_click(self, args: MouseClickArgs) -> dict[str, Any]:
        if args.x is not None and args.y is not None:
            await self.computer.pointer.move(args.x, args.y)
        await self.computer.pointer.click(args.button)
        return {"success": True, "button": args.button.value}

    async def _keyboard_type(self, args: KeyboardTypeArgs) -> dict[str, Any]:
        await self.computer.keyboard.type(args.text)
        return {"success": True, "text": args.text}

    async def _keyboard_press(self, args: KeyboardPressArgs) -> dict[str, Any]:
        combo = args.combo()
        await self.computer.keyboard.press(combo)
        return {"success": True, "key": combo}

    async def _screenshot(self, args: ScreenshotArgs) -> dict[str, Any]:
        image = await self.computer.screen.screenshot()
        return {"success": True, "screenshot": base64.b64encode(image).decode("ascii")}
