"""Shared test utilities and fakes for deskpilot tests."""

from __future__ import annotations

import asyncio
import base64
import inspect
import json
from collections.abc import Callable
from dataclasses import replace
from typing import Any

from websockets.exceptions import ConnectionClosed

from deskpilot.channel.commands import Command, ScreenSize
from deskpilot.channel.hub import HubState, encode_frame, split_frames
from deskpilot.llm.messages import AgentMessage, FinalMessageEvent, StreamEvent, ToolCall, ToolCallEvent

# 1x1 transparent PNG
PNG_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the event loop until ``predicate`` holds.

    Raises:
        asyncio.TimeoutError: If the predicate stays false
    """

    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(_poll(), timeout=timeout)


# === Hub transport fakes ===


class FakeHubConnection:
    """In-memory stand-in for HubConnection.

    Invocations are recorded. ``responders`` maps a target to a function
    computing its result (sync or async, may raise). Without a responder,
    ``createSession`` and ``resumeSession`` answer with ``session_id`` and
    ``sendCommand`` pushes a successful ``commandResponse`` when
    ``auto_respond`` is set.
    """

    def __init__(self, session_id: str = "sess-1", status: str = "Provisioning") -> None:
        self.session_id = session_id
        self.status = status
        self.state = HubState.DISCONNECTED
        self.auto_respond = True
        self.command_results: dict[str, Any] = {}
        self.responders: dict[str, Callable[..., Any]] = {}
        self.invocations: list[tuple[str, tuple[Any, ...]]] = []
        self.handlers: dict[str, list[Callable[..., Any]]] = {}
        self.reconnecting: list[Callable[..., Any]] = []
        self.reconnected: list[Callable[..., Any]] = []
        self.closed: list[Callable[..., Any]] = []
        self.started = False
        self.stopped = False

    def on(self, target: str, handler: Callable[..., Any]) -> None:
        self.handlers.setdefault(target.lower(), []).append(handler)

    def on_reconnecting(self, listener: Callable[..., Any]) -> None:
        self.reconnecting.append(listener)

    def on_reconnected(self, listener: Callable[..., Any]) -> None:
        self.reconnected.append(listener)

    def on_closed(self, listener: Callable[..., Any]) -> None:
        self.closed.append(listener)

    async def start(self) -> None:
        self.started = True
        self.state = HubState.CONNECTED

    async def stop(self) -> None:
        self.stopped = True
        self.state = HubState.DISCONNECTED

    async def invoke(self, target: str, *arguments: Any) -> Any:
        self.invocations.append((target, arguments))
        responder = self.responders.get(target)
        if responder is not None:
            result = responder(*arguments)
            if inspect.isawaitable(result):
                result = await result
            return result
        if target in ("createSession", "resumeSession"):
            status = self.status if target == "createSession" else "Ready"
            return {"sessionId": self.session_id, "status": status}
        if target == "sendCommand" and self.auto_respond:
            envelope = arguments[0]
            self.respond(envelope, result=self.command_results.get(envelope["kind"]))
        return None

    # --- helpers for tests ---

    async def push(self, target: str, *arguments: Any) -> None:
        """Deliver a peer invocation to the registered handlers."""
        for handler in self.handlers.get(target.lower(), []):
            result = handler(*arguments)
            if inspect.isawaitable(result):
                await result

    def respond(
        self,
        envelope: dict[str, Any],
        *,
        success: bool = True,
        result: Any = None,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> None:
        """Push a commandResponse answering ``envelope``."""
        response = {
            "sessionId": envelope["sessionId"],
            "correlationId": envelope["correlationId"],
            "success": success,
            "result": result,
            "errorCode": error_code,
            "errorMessage": error_message,
            "durationMs": 3,
        }
        for handler in self.handlers.get("commandresponse", []):
            handler(response)

    async def drop(self, error: BaseException | None = None) -> None:
        """Simulate the transport entering its reconnect cycle."""
        self.state = HubState.RECONNECTING
        for listener in self.reconnecting:
            result = listener(error)
            if inspect.isawaitable(result):
                await result

    async def restore(self) -> None:
        """Simulate a successful reconnect."""
        self.state = HubState.CONNECTED
        for listener in self.reconnected:
            result = listener()
            if inspect.isawaitable(result):
                await result

    async def close(self, error: BaseException | None = None) -> None:
        """Simulate reconnects being exhausted."""
        self.state = HubState.DISCONNECTED
        for listener in self.closed:
            result = listener(error)
            if inspect.isawaitable(result):
                await result

    def calls(self, target: str) -> list[tuple[Any, ...]]:
        return [args for name, args in self.invocations if name == target]

    def sent_envelopes(self) -> list[dict[str, Any]]:
        return [args[0] for args in self.calls("sendCommand")]


# === WebSocket fakes for HubConnection ===


class FakeWebSocket:
    """Scripted WebSocket with the send/recv/close surface HubConnection uses."""

    def __init__(self, handshake: dict[str, Any] | None = None) -> None:
        self.sent: list[str] = []
        self.incoming: asyncio.Queue[Any] = asyncio.Queue()
        self.closed = False
        self.feed(handshake if handshake is not None else {})

    async def send(self, data: str) -> None:
        if self.closed:
            raise ConnectionClosed(None, None)
        self.sent.append(data)

    async def recv(self) -> str:
        item = await self.incoming.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True

    def feed(self, message: dict[str, Any]) -> None:
        self.incoming.put_nowait(encode_frame(message))

    def feed_raw(self, text: str) -> None:
        self.incoming.put_nowait(text)

    def drop(self) -> None:
        """Make the next recv fail as if the peer vanished."""
        self.incoming.put_nowait(ConnectionClosed(None, None))

    def sent_messages(self) -> list[dict[str, Any]]:
        messages, _ = split_frames("".join(self.sent))
        return messages

    def invocations(self, target: str | None = None) -> list[dict[str, Any]]:
        return [
            m
            for m in self.sent_messages()
            if m.get("type") == 1 and (target is None or m.get("target") == target)
        ]


class FakeConnector:
    """Hands out prepared sockets in order; fails once they run out."""

    def __init__(self, *sockets: FakeWebSocket) -> None:
        self.sockets = list(sockets)
        self.calls: list[tuple[str, dict[str, str] | None]] = []

    async def __call__(self, url: str, additional_headers: dict[str, str] | None = None) -> FakeWebSocket:
        self.calls.append((url, additional_headers))
        if not self.sockets:
            raise OSError("connection refused")
        return self.sockets.pop(0)


# === Computer fakes ===


class RecordingSender:
    """CommandSender that records commands and returns canned results by kind."""

    def __init__(self, results: dict[str, Any] | None = None) -> None:
        self.results = dict(results or {})
        self.failures: dict[str, BaseException] = {}
        self.commands: list[Command] = []

    async def send(self, command: Command, expects_result: bool | None = None) -> Any:
        self.commands.append(command)
        if command.kind in self.failures:
            raise self.failures[command.kind]
        return self.results.get(command.kind)

    @property
    def kinds(self) -> list[str]:
        return [c.kind for c in self.commands]


def screen_results(width: int = 1920, height: int = 1080, image: bytes = PNG_BYTES) -> dict[str, Any]:
    """Canned results for the screenshot and screen-size commands."""
    return {
        "screen.screenshot": base64.b64encode(image).decode("ascii"),
        "screen.getSize": ScreenSize(width=width, height=height).to_wire(),
    }


# === Model fakes ===


class ScriptedAdapter:
    """StreamAdapter replaying one scripted event list per call."""

    def __init__(self, *turns: list[StreamEvent], model: str = "fake-model") -> None:
        self.turns = list(turns)
        self.requests: list[list[AgentMessage]] = []
        self._model = model

    @property
    def model(self) -> str:
        return self._model

    async def stream(self, history: list[AgentMessage], tools: list[dict[str, Any]]):
        # Snapshot so later in-place pruning does not rewrite what was sent
        self.requests.append([replace(m, images=list(m.images)) for m in history])
        if not self.turns:
            raise AssertionError("ScriptedAdapter ran out of turns")
        for event in self.turns.pop(0):
            yield event


def tool_turn(*calls: tuple[str, dict[str, Any]], text: str = "") -> list[StreamEvent]:
    """A model turn requesting the given (name, arguments) calls."""
    tool_calls = [
        ToolCall(id=f"call_{i}", name=name, arguments=json.dumps(args))
        for i, (name, args) in enumerate(calls)
    ]
    return [
        *(ToolCallEvent(c) for c in tool_calls),
        FinalMessageEvent(text=text, should_continue=bool(tool_calls), finish_reason="tool_calls"),
    ]


def final_turn(text: str = "Done.") -> list[StreamEvent]:
    return [FinalMessageEvent(text=text, finish_reason="stop")]


# === SSE helpers ===


def sse_body(*chunks: dict[str, Any] | str, done: bool = True) -> bytes:
    """Encode chunks as an SSE response body."""
    lines = []
    for chunk in chunks:
        data = chunk if isinstance(chunk, str) else json.dumps(chunk)
        lines.append(f"data: {data}\n\n")
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode("utf-8")


__all__ = [
    "PNG_BYTES",
    "FakeConnector",
    "FakeHubConnection",
    "FakeWebSocket",
    "RecordingSender",
    "ScriptedAdapter",
    "final_turn",
    "screen_results",
    "sse_body",
    "tool_turn",
    "wait_until",
]
