"""Capability façades over the command channel.

``ComputerInterface.dispatch`` is the single generic entry point; ``pointer``,
``keyboard``, ``screen``, ``clipboard``, ``files``, ``shell`` and ``windows``
are thin typed wrappers that build the matching command.
"""

from __future__ import annotations

import base64
from collections.abc import Sequence
from enum import Enum
from typing import Any, Protocol

from deskpilot.channel.commands import (
    Command,
    CursorPosition,
    MouseButton,
    PathOptions,
    PathPoint,
    ScreenSize,
    ShellResult,
    WindowInfo,
    command_class,
)


class CommandSender(Protocol):
    async def send(self, command: Command, expects_result: bool | None = None) -> Any: ...


class ClipboardContentType(str, Enum):
    EMPTY = "Empty"
    TEXT = "Text"
    FILES = "Files"
    IMAGE = "Image"
    OTHER = "Other"


class _Facade:
    def __init__(self, computer: ComputerInterface) -> None:
        self._computer = computer

    async def _call(self, kind: str, **fields: Any) -> Any:
        return await self._computer.dispatch(kind, **fields)


class Pointer(_Facade):
    async def left_click(self, x: int | None = None, y: int | None = None) -> None:
        await self._call("pointer.leftClick", x=x, y=y)

    async def right_click(self, x: int | None = None, y: int | None = None) -> None:
        await self._call("pointer.rightClick", x=x, y=y)

    async def double_click(self, x: int | None = None, y: int | None = None) -> None:
        await self._call("pointer.doubleClick", x=x, y=y)

    async def click(self, button: MouseButton | str = MouseButton.LEFT, x: int | None = None, y: int | None = None) -> None:
        """Click with the given button; middle clicks are a down/up pair."""
        button = MouseButton(button)
        if button is MouseButton.LEFT:
            await self.left_click(x, y)
        elif button is MouseButton.RIGHT:
            await self.right_click(x, y)
        else:
            await self.down(x, y, button)
            await self.up(x, y, button)

    async def move(self, x: int, y: int) -> None:
        await self._call("pointer.move", x=x, y=y)

    async def down(self, x: int | None = None, y: int | None = None, button: MouseButton | str = MouseButton.LEFT) -> None:
        await self._call("pointer.down", x=x, y=y, button=MouseButton(button))

    async def up(self, x: int | None = None, y: int | None = None, button: MouseButton | str = MouseButton.LEFT) -> None:
        await self._call("pointer.up", x=x, y=y, button=MouseButton(button))

    async def scroll(self, delta_x: int = 0, delta_y: int = 0) -> None:
        await self._call("pointer.scroll", delta_x=delta_x, delta_y=delta_y)

    async def move_path(self, path: Sequence[PathPoint], options: PathOptions | None = None) -> None:
        await self._call("pointer.movePath", path=list(path), options=options)

    async def drag(
        self,
        path: Sequence[PathPoint],
        button: MouseButton | str = MouseButton.LEFT,
        options: PathOptions | None = None,
    ) -> None:
        await self._call("pointer.drag", path=list(path), button=MouseButton(button), options=options)

    async def drag_to(self, x: int, y: int, button: MouseButton | str = MouseButton.LEFT) -> None:
        await self._call("pointer.dragTo", x=x, y=y, button=MouseButton(button))

    async def get_position(self) -> CursorPosition:
        return CursorPosition.model_validate(await self._call("pointer.getPosition"))


class Keyboard(_Facade):
    async def type(self, text: str) -> None:
        await self._call("keyboard.type", text=text)

    async def press(self, key: str) -> None:
        await self._call("keyboard.press", key=key)

    async def hotkey(self, *keys: str) -> None:
        await self._call("keyboard.hotkey", keys=list(keys))

    async def down(self, key: str) -> None:
        await self._call("keyboard.down", key=key)

    async def up(self, key: str) -> None:
        await self._call("keyboard.up", key=key)


class Screen(_Facade):
    async def screenshot(self) -> bytes:
        """Capture the screen as PNG bytes."""
        encoded = await self._call("screen.screenshot")
        return base64.b64decode(encoded) if encoded else b""

    async def get_size(self) -> ScreenSize:
        return ScreenSize.model_validate(await self._call("screen.getSize"))


class Clipboard(_Facade):
    async def get(self) -> str:
        return await self._call("clipboard.get") or ""

    async def set(self, text: str) -> None:
        await self._call("clipboard.set", text=text)

    async def set_files(self, urls: Sequence[str]) -> None:
        await self._call("clipboard.setFiles", urls=list(urls))

    async def set_files_from_paths(self, paths: Sequence[str]) -> None:
        await self._call("clipboard.setFilesFromPaths", paths=list(paths))

    async def get_files(self) -> list[str] | None:
        return await self._call("clipboard.getFiles")

    async def set_image_from_url(self, url: str) -> None:
        await self._call("clipboard.setImageFromUrl", url=url)

    async def set_image(self, data: bytes) -> None:
        await self._call("clipboard.setImageFromBytes", image_base64=base64.b64encode(data).decode("ascii"))

    async def get_image(self) -> bytes | None:
        encoded = await self._call("clipboard.getImage")
        return base64.b64decode(encoded) if encoded else None

    async def get_content_type(self) -> ClipboardContentType:
        raw = await self._call("clipboard.getContentType")
        for member in ClipboardContentType:
            if isinstance(raw, str) and raw.lower() == member.value.lower():
                return member
        return ClipboardContentType.EMPTY


class Files(_Facade):
    async def exists(self, path: str) -> bool:
        return bool(await self._call("files.exists", path=path))

    async def read_text(self, path: str) -> str:
        return await self._call("files.readText", path=path) or ""

    async def write_text(self, path: str, content: str) -> None:
        await self._call("files.writeText", path=path, content=content)

    async def read_bytes(self, path: str, offset: int = 0, length: int | None = None) -> bytes:
        encoded = await self._call("files.readBytes", path=path, offset=offset, length=length)
        return base64.b64decode(encoded) if encoded else b""

    async def write_bytes(self, path: str, data: bytes) -> None:
        await self._call("files.writeBytes", path=path, content_base64=base64.b64encode(data).decode("ascii"))

    async def delete(self, path: str) -> None:
        await self._call("files.delete", path=path)

    async def directory_exists(self, path: str) -> bool:
        return bool(await self._call("files.directoryExists", path=path))

    async def create_directory(self, path: str) -> None:
        await self._call("files.createDirectory", path=path)

    async def delete_directory(self, path: str, recursive: bool = False) -> None:
        await self._call("files.deleteDirectory", path=path, recursive=recursive)

    async def list_directory(self, path: str) -> list[str]:
        return list(await self._call("files.listDirectory", path=path) or [])


class Shell(_Facade):
    async def run(self, command: str, timeout: float | None = None) -> ShellResult:
        raw = await self._call("shell.run", command=command, timeout_seconds=timeout)
        if raw is None:
            return ShellResult.failed(-1, "No response received")
        return ShellResult.model_validate(raw)


class Windows(_Facade):
    async def get_active_id(self) -> str | None:
        return await self._call("windows.getActiveId")

    async def get_info(self, window_id: str) -> WindowInfo | None:
        raw = await self._call("windows.getInfo", window_id=window_id)
        return WindowInfo.model_validate(raw) if raw else None

    async def activate(self, window_id: str) -> None:
        await self._call("windows.activate", window_id=window_id)

    async def close(self, window_id: str) -> None:
        await self._call("windows.close", window_id=window_id)

    async def maximize(self, window_id: str) -> None:
        await self._call("windows.maximize", window_id=window_id)

    async def minimize(self, window_id: str) -> None:
        await self._call("windows.minimize", window_id=window_id)

    async def restore(self, window_id: str) -> None:
        await self._call("windows.restore", window_id=window_id)

    async def list(self) -> list[WindowInfo]:
        raw = await self._call("windows.list") or []
        return [WindowInfo.model_validate(item) for item in raw]


class ComputerInterface:
    """Typed access to every capability of a remote session.

    Example:
        computer = ComputerInterface(channel)
        await computer.pointer.left_click(100, 200)
        png = await computer.screen.screenshot()
    """

    def __init__(self, sender: CommandSender) -> None:
        self.sender = sender
        self.pointer = Pointer(self)
        self.keyboard = Keyboard(self)
        self.screen = Screen(self)
        self.clipboard = Clipboard(self)
        self.files = Files(self)
        self.shell = Shell(self)
        self.windows = Windows(self)

    async def dispatch(self, kind: str, **fields: Any) -> Any:
        """Build the command registered under ``kind`` and send it.

        None-valued fields are left at their defaults.

        Raises:
            ProtocolError: ``kind`` is not a known command
            pydantic.ValidationError: ``fields`` do not fit the command
        """
        command = command_class(kind)(**{k: v for k, v in fields.items() if v is not None})
        return await self.sender.send(command)
