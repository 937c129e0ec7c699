"""Remote session command channel.

Example usage:
    from deskpilot.channel import CommandChannel, ConnectOptions, ComputerInterface

    async with CommandChannel() as channel:
        await channel.connect(ConnectOptions(api_base_url=url, api_key=key))
        await channel.wait_until_ready()
        computer = ComputerInterface(channel)
        await computer.keyboard.type("hello")
"""

from deskpilot.channel.channel import (
    CommandChannel,
    ConnectOptions,
    PendingRequest,
    RETRYABLE_MARKERS,
)
from deskpilot.channel.commands import (
    AccessCredentials,
    AssetInfo,
    Command,
    CommandResponse,
    CursorPosition,
    EnvironmentInfo,
    InputEvent,
    InputEventType,
    MouseButton,
    PathOptions,
    PathPoint,
    ScreenSize,
    SessionSpec,
    ShellResult,
    WindowInfo,
)
from deskpilot.channel.hub import HubConnection, HubState
from deskpilot.channel.interface import ClipboardContentType, ComputerInterface
from deskpilot.channel.state import Session, SessionState

__all__ = [
    "CommandChannel",
    "ConnectOptions",
    "PendingRequest",
    "RETRYABLE_MARKERS",
    "ComputerInterface",
    "ClipboardContentType",
    "HubConnection",
    "HubState",
    "Session",
    "SessionState",
    # Wire types
    "Command",
    "CommandResponse",
    "SessionSpec",
    "AccessCredentials",
    "AssetInfo",
    "CursorPosition",
    "EnvironmentInfo",
    "InputEvent",
    "InputEventType",
    "MouseButton",
    "PathOptions",
    "PathPoint",
    "ScreenSize",
    "ShellResult",
    "WindowInfo",
]
