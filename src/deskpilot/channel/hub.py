"""Hub transport: SignalR JSON protocol over a WebSocket.

Frames are JSON objects terminated by the record separator (0x1E). After
the handshake the peer and client exchange:

    1  invocation   {"type": 1, "invocationId"?, "target", "arguments"}
    3  completion   {"type": 3, "invocationId", "result" | "error"}
    6  ping         {"type": 6}
    7  close        {"type": 7, "error"?, "allowReconnect"?}

Lost connections are re-established on a fixed delay schedule. Listeners
registered with ``on_reconnecting``/``on_reconnected``/``on_closed`` see each
phase.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import json
import logging
from collections.abc import Awaitable, Callable, Sequence
from enum import Enum, IntEnum
from typing import Any

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed

from deskpilot.errors import ChannelConnectionError, ProtocolError
from deskpilot.events import EventSink, default_sink

RECORD_SEPARATOR = "\x1e"
HANDSHAKE = {"protocol": "json", "version": 1}
DEFAULT_RECONNECT_DELAYS = (1.0, 2.0, 5.0)
KEEPALIVE_INTERVAL = 15.0

Handler = Callable[..., Any]
Listener = Callable[..., Awaitable[None] | None]


class MessageType(IntEnum):
    INVOCATION = 1
    STREAM_ITEM = 2
    COMPLETION = 3
    STREAM_INVOCATION = 4
    CANCEL_INVOCATION = 5
    PING = 6
    CLOSE = 7


class HubState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class HubInvocationError(ProtocolError):
    """The peer completed an invocation with an error."""


class ConnectionLost(ChannelConnectionError):
    """The underlying connection dropped while work was outstanding."""


def encode_frame(message: dict[str, Any]) -> str:
    return json.dumps(message, separators=(",", ":")) + RECORD_SEPARATOR


def split_frames(data: str) -> tuple[list[dict[str, Any]], str]:
    """Split buffered text into complete messages and a trailing remainder.

    Raises:
        ProtocolError: A complete frame is not a JSON object
    """
    *complete, rest = data.split(RECORD_SEPARATOR)
    messages = []
    for raw in complete:
        if not raw:
            continue
        try:
            message = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ProtocolError(f"Malformed hub frame: {e}") from e
        if not isinstance(message, dict):
            raise ProtocolError(f"Hub frame is not an object: {raw[:80]!r}")
        messages.append(message)
    return messages, rest


def hub_url(api_base_url: str, path: str = "/hubs/client") -> str:
    """Map an http(s) API base URL to the ws(s) hub endpoint."""
    base = api_base_url.rstrip("/")
    if base.startswith("https://"):
        base = "wss://" + base[len("https://") :]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://") :]
    return base + path


async def _call(listener: Callable[..., Any], *args: Any) -> None:
    result = listener(*args)
    if inspect.isawaitable(result):
        await result


class HubConnection:
    """Persistent hub connection with invocation correlation and reconnects.

    Args:
        url: ws:// or wss:// hub endpoint
        headers: Extra HTTP headers for the WebSocket upgrade
        reconnect_delays: Wait before each reconnect attempt; empty disables reconnects
        connect: WebSocket connect function (injectable for tests)
        events: Event sink for diagnostics
    """

    def __init__(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        reconnect_delays: Sequence[float] = DEFAULT_RECONNECT_DELAYS,
        handshake_timeout: float = 15.0,
        keepalive_interval: float | None = KEEPALIVE_INTERVAL,
        connect: Callable[..., Awaitable[Any]] = ws_connect,
        events: EventSink | None = None,
    ) -> None:
        self.url = url
        self.headers = dict(headers or {})
        self.reconnect_delays = tuple(reconnect_delays)
        self.handshake_timeout = handshake_timeout
        self.keepalive_interval = keepalive_interval
        self._connect = connect
        self._events = events or default_sink("hub")

        self._ws: Any = None
        self._state = HubState.DISCONNECTED
        self._buffer = ""
        self._ids = itertools.count(1)
        self._pending: dict[str, asyncio.Future[Any]] = {}
        self._handlers: dict[str, list[Handler]] = {}
        self._reconnecting: list[Listener] = []
        self._reconnected: list[Listener] = []
        self._closed: list[Listener] = []
        self._reader: asyncio.Task[None] | None = None
        self._keepalive: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()
        self._stopping = False

    @property
    def state(self) -> HubState:
        return self._state

    # --- registration ---

    def on(self, target: str, handler: Handler) -> None:
        """Register a handler for peer invocations of ``target`` (case-insensitive)."""
        self._handlers.setdefault(target.lower(), []).append(handler)

    def on_reconnecting(self, listener: Listener) -> None:
        self._reconnecting.append(listener)

    def on_reconnected(self, listener: Listener) -> None:
        self._reconnected.append(listener)

    def on_closed(self, listener: Listener) -> None:
        self._closed.append(listener)

    # --- lifecycle ---

    async def start(self) -> None:
        """Open the connection and complete the handshake.

        Raises:
            ChannelConnectionError: The socket could not be opened or the handshake failed
        """
        if self._state is not HubState.DISCONNECTED:
            raise ChannelConnectionError(f"Hub connection already {self._state.value}")
        self._stopping = False
        self._state = HubState.CONNECTING
        try:
            await self._open()
        except BaseException:
            self._state = HubState.DISCONNECTED
            raise
        self._state = HubState.CONNECTED
        self._start_tasks()
        self._events.emit("hub.connected", url=self.url)

    async def stop(self) -> None:
        """Close the connection without reconnecting. Never raises."""
        self._stopping = True
        for task in (self._reader, self._keepalive):
            if task is not None and task is not asyncio.current_task():
                task.cancel()
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                self._events.emit("hub.close_failed", level=logging.DEBUG, error=e)
        self._fail_pending(ConnectionLost("Connection closed by client"))
        self._state = HubState.DISCONNECTED

    async def _open(self) -> None:
        try:
            ws = await self._connect(self.url, additional_headers=self.headers)
        except Exception as e:
            raise ChannelConnectionError(f"Failed to connect to {self.url}: {e}") from e

        try:
            await ws.send(encode_frame(HANDSHAKE))
            self._buffer = ""
            messages: list[dict[str, Any]] = []
            while not messages:
                raw = await asyncio.wait_for(ws.recv(), timeout=self.handshake_timeout)
                messages, self._buffer = split_frames(self._buffer + _as_text(raw))
        except (asyncio.TimeoutError, ConnectionClosed, ProtocolError) as e:
            await ws.close()
            raise ChannelConnectionError(f"Hub handshake failed: {e}") from e

        reply, *extra = messages
        if reply.get("error"):
            await ws.close()
            raise ChannelConnectionError(f"Hub handshake rejected: {reply['error']}")
        self._ws = ws
        for message in extra:
            self._dispatch(message)

    def _start_tasks(self) -> None:
        self._reader = asyncio.create_task(self._read_loop(self._ws), name="hub-read")
        if self.keepalive_interval:
            if self._keepalive is not None:
                self._keepalive.cancel()
            self._keepalive = asyncio.create_task(self._keepalive_loop(), name="hub-ping")

    # --- outbound ---

    async def invoke(self, target: str, *arguments: Any) -> Any:
        """Invoke ``target`` on the peer and wait for its completion.

        Raises:
            ChannelConnectionError: Not connected, or the connection dropped first
            HubInvocationError: The peer completed with an error
        """
        invocation_id = str(next(self._ids))
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[invocation_id] = future
        try:
            await self._send(
                {
                    "type": MessageType.INVOCATION,
                    "invocationId": invocation_id,
                    "target": target,
                    "arguments": list(arguments),
                },
                target,
            )
            return await future
        finally:
            self._pending.pop(invocation_id, None)

    async def send(self, target: str, *arguments: Any) -> None:
        """Invoke ``target`` without waiting for a completion."""
        await self._send(
            {"type": MessageType.INVOCATION, "target": target, "arguments": list(arguments)},
            target,
        )

    async def _send(self, message: dict[str, Any], target: str) -> None:
        ws = self._ws
        if ws is None or self._state is not HubState.CONNECTED:
            raise ChannelConnectionError(
                f"Cannot invoke '{target}': connection closed (state: {self._state.value})"
            )
        try:
            await ws.send(encode_frame(message))
        except ConnectionClosed as e:
            raise ConnectionLost(f"Invocation of '{target}' failed, connection was terminated: {e}") from e
        self._events.emit("hub.send", level=logging.DEBUG, target=target)

    async def _keepalive_loop(self) -> None:
        while True:
            await asyncio.sleep(self.keepalive_interval)
            ws = self._ws
            if ws is None or self._state is not HubState.CONNECTED:
                continue
            try:
                await ws.send(encode_frame({"type": MessageType.PING}))
            except ConnectionClosed:
                continue

    # --- inbound ---

    async def _read_loop(self, ws: Any) -> None:
        error: Exception | None = None
        allow_reconnect = True
        try:
            while True:
                raw = await ws.recv()
                try:
                    messages, self._buffer = split_frames(self._buffer + _as_text(raw))
                except ProtocolError as e:
                    self._events.emit("hub.bad_frame", level=logging.WARNING, error=e)
                    self._buffer = ""
                    continue
                for message in messages:
                    if message.get("type") == MessageType.CLOSE:
                        reason = message.get("error")
                        error = ConnectionLost(
                            f"Server closed the connection: {reason}" if reason
                            else "Server closed the connection"
                        )
                        allow_reconnect = bool(message.get("allowReconnect"))
                        return
                    self._dispatch(message)
        except ConnectionClosed as e:
            error = ConnectionLost(f"The connection was terminated: {e}")
        finally:
            if not self._stopping and self._ws is ws:
                self._ws = None
                task = asyncio.create_task(self._connection_lost(ws, error, allow_reconnect))
                self._background.add(task)
                task.add_done_callback(self._background.discard)

    def _dispatch(self, message: dict[str, Any]) -> None:
        kind = message.get("type")
        if kind == MessageType.INVOCATION:
            self._handle_invocation(message)
        elif kind == MessageType.COMPLETION:
            future = self._pending.pop(str(message.get("invocationId")), None)
            if future is None or future.done():
                return
            if message.get("error") is not None:
                future.set_exception(HubInvocationError(str(message["error"])))
            else:
                future.set_result(message.get("result"))
        elif kind == MessageType.PING:
            return
        else:
            self._events.emit("hub.unhandled_message", level=logging.DEBUG, type=kind)

    def _handle_invocation(self, message: dict[str, Any]) -> None:
        target = str(message.get("target", ""))
        handlers = self._handlers.get(target.lower())
        if not handlers:
            self._events.emit("hub.no_handler", level=logging.WARNING, target=target)
            return
        arguments = message.get("arguments") or []
        for handler in handlers:
            try:
                result = handler(*arguments)
            except Exception as e:
                self._events.emit(
                    "hub.handler_failed", level=logging.ERROR, target=target, error=e, exc_info=True
                )
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._background.add(task)
                task.add_done_callback(self._background.discard)

    # --- reconnects ---

    async def _connection_lost(self, ws: Any, error: Exception | None, allow_reconnect: bool) -> None:
        try:
            await ws.close()
        except Exception as e:
            self._events.emit("hub.close_failed", level=logging.DEBUG, error=e)

        error = error or ConnectionLost("The connection was terminated")
        self._fail_pending(error)

        if not allow_reconnect or not self.reconnect_delays:
            await self._close(error)
            return

        self._state = HubState.RECONNECTING
        self._events.emit("hub.reconnecting", level=logging.WARNING, error=error)
        await self._notify(self._reconnecting, error)

        for attempt, delay in enumerate(self.reconnect_delays, start=1):
            await asyncio.sleep(delay)
            if self._stopping:
                return
            try:
                await self._open()
            except ChannelConnectionError as e:
                error = e
                self._events.emit("hub.reconnect_failed", level=logging.WARNING, attempt=attempt, error=e)
                continue
            self._state = HubState.CONNECTED
            self._start_tasks()
            self._events.emit("hub.reconnected", attempt=attempt)
            await self._notify(self._reconnected)
            return

        await self._close(error)

    async def _close(self, error: Exception) -> None:
        self._state = HubState.DISCONNECTED
        if self._keepalive is not None:
            self._keepalive.cancel()
        self._events.emit("hub.closed", level=logging.WARNING, error=error)
        await self._notify(self._closed, error)

    async def _notify(self, listeners: list[Listener], *args: Any) -> None:
        for listener in list(listeners):
            try:
                await _call(listener, *args)
            except Exception as e:
                self._events.emit("hub.listener_failed", level=logging.ERROR, error=e, exc_info=True)

    def _fail_pending(self, error: Exception) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(error)


def _as_text(raw: str | bytes) -> str:
    return raw.decode("utf-8") if isinstance(raw, bytes) else raw
