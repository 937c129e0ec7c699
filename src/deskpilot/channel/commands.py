"""Command and response schema for the remote session channel.

Every command is a pydantic model registered under its wire ``kind``.
On the wire a command travels inside an envelope:

    {"sessionId": ..., "correlationId": ..., "timestamp": ..., "kind": ...,
     "payload": {...variant fields...}}

and is answered by a ``CommandResponse`` carrying the same correlation id.
"""

from __future__ import annotations

import math
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from deskpilot.errors import ProtocolError

_ENVELOPE_FIELDS = {"session_id", "correlation_id", "timestamp"}


def new_correlation_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WireModel(BaseModel):
    """Base for wire types: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class MouseButton(str, Enum):
    LEFT = "left"
    RIGHT = "right"
    MIDDLE = "middle"


# === Result models ===


class ScreenSize(WireModel):
    width: int
    height: int

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height if self.height else 0.0

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"


class CursorPosition(WireModel):
    x: int
    y: int

    def distance_to(self, other: CursorPosition) -> float:
        return math.hypot(other.x - self.x, other.y - self.y)

    def __str__(self) -> str:
        return f"({self.x}, {self.y})"


class PathPoint(WireModel):
    """One point of a pointer path; the delay is relative to the previous point."""

    x: int
    y: int
    delay_from_previous_ms: int | None = None


class PathOptions(WireModel):
    preserve_timings: bool = True
    total_duration_ms: int | None = None
    speed_multiplier: float = 1.0


class WindowInfo(WireModel):
    id: str
    title: str
    process_name: str | None = None
    process_id: int | None = None
    size: ScreenSize | None = None
    position: CursorPosition | None = None
    is_visible: bool = False
    is_minimized: bool = False
    is_maximized: bool = False


class ShellResult(WireModel):
    """Outcome of ``shell.run``."""

    exit_code: int
    standard_output: str = ""
    standard_error: str = ""
    duration_ms: float | None = None

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @classmethod
    def failed(cls, exit_code: int, error: str = "") -> ShellResult:
        return cls(exit_code=exit_code, standard_error=error)


class AccessCredentials(WireModel):
    """Temporary remote-desktop credentials for a session."""

    gateway: str
    resource: str
    username: str
    password: str
    expires_at: datetime
    rdp_file_content: str = ""

    @property
    def is_expired(self) -> bool:
        return _utcnow() >= self.expires_at


class AssetInfo(WireModel):
    """A captured disk image of a session."""

    image_id: str
    name: str
    size_bytes: int = 0
    created_at: datetime | None = None
    parent_image_id: str | None = None


class CaptureOptions(WireModel):
    name: str
    description: str | None = None
    tags: dict[str, str] | None = None


class EnvironmentOptions(WireModel):
    name: str
    description: str | None = None
    tags: dict[str, str] | None = None
    shutdown_before_capture: bool = True


class EnvironmentInfo(WireModel):
    """A reusable environment saved from a session."""

    id: str
    name: str
    description: str | None = None
    vcpu: int = 0
    memory_gb: int = 0
    storage_gb: int = 0
    created_at: datetime | None = None
    tags: dict[str, str] | None = None


class InputEventType(str, Enum):
    MOUSE_MOVE = "MouseMove"
    MOUSE_DOWN = "MouseDown"
    MOUSE_UP = "MouseUp"
    KEY_DOWN = "KeyDown"
    KEY_UP = "KeyUp"
    CLIPBOARD_TEXT = "ClipboardText"
    CLIPBOARD_FILE = "ClipboardFile"
    CLIPBOARD_IMAGE = "ClipboardImage"

    @classmethod
    def _missing_(cls, value: object) -> InputEventType | None:
        if isinstance(value, str):
            for member in cls:
                if member.value.lower() == value.lower():
                    return member
        return None


class InputEvent(WireModel):
    """Live input observed in the session (mouse moves arrive throttled)."""

    timestamp: datetime
    session_id: str
    event_type: InputEventType
    x: int | None = None
    y: int | None = None
    mouse_button: str | None = None
    key_code: int | None = None
    key_name: str | None = None
    clipboard_text: str | None = None
    clipboard_file_blob_urls: list[str] | None = None
    clipboard_image_blob_url: str | None = None


class SessionSpec(WireModel):
    """Arguments for ``createSession``."""

    environment_id: str | None = None
    vcpu: int | None = None
    memory_gb: int | None = None
    storage_gb: int | None = None
    image: str | None = None
    tags: dict[str, str] | None = None


class SessionInfo(WireModel):
    """Answer to ``createSession`` and ``resumeSession``."""

    session_id: str
    status: str = ""


class CommandResponse(WireModel):
    """Peer answer to a command, matched by correlation id."""

    session_id: str = ""
    correlation_id: str
    success: bool
    result: Any = None
    error_code: str | None = None
    error_message: str | None = None
    duration_ms: float = 0.0


# === Commands ===

_REGISTRY: dict[str, type[Command]] = {}


class Command(WireModel):
    """Base class for every remote command.

    Subclasses set ``kind`` and are registered automatically.
    """

    kind: ClassVar[str] = ""
    expects_result: ClassVar[bool] = False

    session_id: str = ""
    correlation_id: str = Field(default_factory=new_correlation_id)
    timestamp: datetime = Field(default_factory=_utcnow)

    @classmethod
    def __pydantic_init_subclass__(cls, **kwargs: Any) -> None:
        super().__pydantic_init_subclass__(**kwargs)
        kind = cls.__dict__.get("kind")
        if kind:
            if kind in _REGISTRY:
                raise TypeError(f"Duplicate command kind: {kind}")
            _REGISTRY[kind] = cls

    def payload(self) -> dict[str, Any]:
        return self.model_dump(
            by_alias=True, exclude_none=True, exclude=_ENVELOPE_FIELDS, mode="json"
        )

    def to_envelope(self) -> dict[str, Any]:
        header = self.model_dump(by_alias=True, include=_ENVELOPE_FIELDS, mode="json")
        return {**header, "kind": self.kind, "payload": self.payload()}

    @classmethod
    def from_envelope(cls, data: dict[str, Any]) -> Command:
        """Decode an envelope back into its concrete command type."""
        kind = data.get("kind")
        command_cls = _REGISTRY.get(kind) if isinstance(kind, str) else None
        if command_cls is None:
            raise ProtocolError(f"Unknown command kind: {kind!r}", error_code="unknown_kind")
        fields = dict(data.get("payload") or {})
        for key in ("sessionId", "correlationId", "timestamp"):
            if key in data:
                fields[key] = data[key]
        try:
            return command_cls.model_validate(fields)
        except ValidationError as e:
            raise ProtocolError(f"Invalid {kind} payload: {e}", error_code="invalid_payload") from e


def command_kinds() -> list[str]:
    return sorted(_REGISTRY)


def command_class(kind: str) -> type[Command]:
    try:
        return _REGISTRY[kind]
    except KeyError:
        raise ProtocolError(f"Unknown command kind: {kind!r}", error_code="unknown_kind") from None


# --- pointer ---


class PointerLeftClick(Command):
    kind: ClassVar[str] = "pointer.leftClick"
    x: int | None = None
    y: int | None = None


class PointerRightClick(Command):
    kind: ClassVar[str] = "pointer.rightClick"
    x: int | None = None
    y: int | None = None


class PointerDoubleClick(Command):
    kind: ClassVar[str] = "pointer.doubleClick"
    x: int | None = None
    y: int | None = None


class PointerMove(Command):
    kind: ClassVar[str] = "pointer.move"
    x: int
    y: int


class PointerDown(Command):
    kind: ClassVar[str] = "pointer.down"
    x: int | None = None
    y: int | None = None
    button: MouseButton = MouseButton.LEFT


class PointerUp(Command):
    kind: ClassVar[str] = "pointer.up"
    x: int | None = None
    y: int | None = None
    button: MouseButton = MouseButton.LEFT


class PointerScroll(Command):
    kind: ClassVar[str] = "pointer.scroll"
    delta_x: int
    delta_y: int


class PointerMovePath(Command):
    kind: ClassVar[str] = "pointer.movePath"
    path: list[PathPoint]
    options: PathOptions | None = None


class PointerDrag(Command):
    kind: ClassVar[str] = "pointer.drag"
    path: list[PathPoint]
    button: MouseButton = MouseButton.LEFT
    options: PathOptions | None = None


class PointerDragTo(Command):
    kind: ClassVar[str] = "pointer.dragTo"
    x: int
    y: int
    button: MouseButton = MouseButton.LEFT


class PointerGetPosition(Command):
    kind: ClassVar[str] = "pointer.getPosition"
    expects_result: ClassVar[bool] = True


# --- keyboard ---


class KeyboardType(Command):
    kind: ClassVar[str] = "keyboard.type"
    text: str


class KeyboardPress(Command):
    kind: ClassVar[str] = "keyboard.press"
    key: str


class KeyboardHotkey(Command):
    kind: ClassVar[str] = "keyboard.hotkey"
    keys: list[str]


class KeyboardDown(Command):
    kind: ClassVar[str] = "keyboard.down"
    key: str


class KeyboardUp(Command):
    kind: ClassVar[str] = "keyboard.up"
    key: str


# --- screen ---


class ScreenScreenshot(Command):
    """Result is the base64-encoded PNG."""

    kind: ClassVar[str] = "screen.screenshot"
    expects_result: ClassVar[bool] = True


class ScreenGetSize(Command):
    kind: ClassVar[str] = "screen.getSize"
    expects_result: ClassVar[bool] = True


# --- clipboard ---


class ClipboardGet(Command):
    kind: ClassVar[str] = "clipboard.get"
    expects_result: ClassVar[bool] = True


class ClipboardSet(Command):
    kind: ClassVar[str] = "clipboard.set"
    text: str


class ClipboardSetFiles(Command):
    kind: ClassVar[str] = "clipboard.setFiles"
    urls: list[str]


class ClipboardSetFilesFromPaths(Command):
    kind: ClassVar[str] = "clipboard.setFilesFromPaths"
    paths: list[str]


class ClipboardGetFiles(Command):
    kind: ClassVar[str] = "clipboard.getFiles"
    expects_result: ClassVar[bool] = True


class ClipboardSetImageFromUrl(Command):
    kind: ClassVar[str] = "clipboard.setImageFromUrl"
    url: str


class ClipboardSetImageFromBytes(Command):
    kind: ClassVar[str] = "clipboard.setImageFromBytes"
    image_base64: str


class ClipboardGetImage(Command):
    kind: ClassVar[str] = "clipboard.getImage"
    expects_result: ClassVar[bool] = True


class ClipboardGetContentType(Command):
    kind: ClassVar[str] = "clipboard.getContentType"
    expects_result: ClassVar[bool] = True


# --- files ---


class FilesExists(Command):
    kind: ClassVar[str] = "files.exists"
    expects_result: ClassVar[bool] = True
    path: str


class FilesReadText(Command):
    kind: ClassVar[str] = "files.readText"
    expects_result: ClassVar[bool] = True
    path: str


class FilesWriteText(Command):
    kind: ClassVar[str] = "files.writeText"
    path: str
    content: str


class FilesReadBytes(Command):
    kind: ClassVar[str] = "files.readBytes"
    expects_result: ClassVar[bool] = True
    path: str
    offset: int = 0
    length: int | None = None


class FilesWriteBytes(Command):
    kind: ClassVar[str] = "files.writeBytes"
    path: str
    content_base64: str


class FilesDelete(Command):
    kind: ClassVar[str] = "files.delete"
    path: str


class FilesDirectoryExists(Command):
    kind: ClassVar[str] = "files.directoryExists"
    expects_result: ClassVar[bool] = True
    path: str


class FilesCreateDirectory(Command):
    kind: ClassVar[str] = "files.createDirectory"
    path: str


class FilesDeleteDirectory(Command):
    kind: ClassVar[str] = "files.deleteDirectory"
    path: str
    recursive: bool = False


class FilesListDirectory(Command):
    kind: ClassVar[str] = "files.listDirectory"
    expects_result: ClassVar[bool] = True
    path: str


# --- windows ---


class WindowsGetActiveId(Command):
    kind: ClassVar[str] = "windows.getActiveId"
    expects_result: ClassVar[bool] = True


class WindowsGetInfo(Command):
    kind: ClassVar[str] = "windows.getInfo"
    expects_result: ClassVar[bool] = True
    window_id: str


class WindowsActivate(Command):
    kind: ClassVar[str] = "windows.activate"
    window_id: str


class WindowsClose(Command):
    kind: ClassVar[str] = "windows.close"
    window_id: str


class WindowsMaximize(Command):
    kind: ClassVar[str] = "windows.maximize"
    window_id: str


class WindowsMinimize(Command):
    kind: ClassVar[str] = "windows.minimize"
    window_id: str


class WindowsRestore(Command):
    kind: ClassVar[str] = "windows.restore"
    window_id: str


class WindowsList(Command):
    kind: ClassVar[str] = "windows.list"
    expects_result: ClassVar[bool] = True


# --- shell ---


class ShellRun(Command):
    kind: ClassVar[str] = "shell.run"
    expects_result: ClassVar[bool] = True
    command: str
    timeout_seconds: float | None = None
