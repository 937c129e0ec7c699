"""Reliable, correlated command channel to a remote session.

The channel owns one hub connection and one Session. Commands go out with a
correlation id and their ``commandResponse`` is matched back to the waiting
caller. When the transport drops, sends park on a reconnect barrier until the
session has been resumed on the new connection; transient connection
failures are retried with a fresh correlation id.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar

from deskpilot.channel.commands import (
    AccessCredentials,
    AssetInfo,
    CaptureOptions,
    Command,
    CommandResponse,
    EnvironmentInfo,
    EnvironmentOptions,
    InputEvent,
    SessionInfo,
    SessionSpec,
    new_correlation_id,
)
from deskpilot.channel.hub import HubConnection, HubState, hub_url
from deskpilot.channel.state import Session, SessionState, can_transition
from deskpilot.config.schema import ChannelConfig
from deskpilot.config.secrets import SESSION_API_KEY, fetch_secret
from deskpilot.errors import (
    ChannelConnectionError,
    ChannelTimeoutError,
    ProtocolError,
    SessionStateError,
)
from deskpilot.events import EventSink, default_sink

T = TypeVar("T")

RETRYABLE_MARKERS = (
    "connection was terminated",
    "connection closed",
    "server connection which the client routed to is closed",
    "the server returned status code",
)


class HubTransport(Protocol):
    """What the channel needs from a hub connection."""

    @property
    def state(self) -> HubState: ...

    def on(self, target: str, handler: Callable[..., Any]) -> None: ...
    def on_reconnecting(self, listener: Callable[..., Any]) -> None: ...
    def on_reconnected(self, listener: Callable[..., Any]) -> None: ...
    def on_closed(self, listener: Callable[..., Any]) -> None: ...
    async def start(self) -> None: ...
    async def stop(self) -> None: ...
    async def invoke(self, target: str, *arguments: Any) -> Any: ...


@dataclass
class ConnectOptions:
    """Where to connect and what kind of session to ask for."""

    api_base_url: str | None = None
    api_key: str | None = None
    environment_id: str | None = None
    vcpu: int | None = None
    memory_gb: int | None = None
    storage_gb: int | None = None
    image: str | None = None
    tags: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_config(cls, config: ChannelConfig) -> ConnectOptions:
        return cls(
            api_base_url=config.api_base_url,
            api_key=config.api_key or fetch_secret(SESSION_API_KEY),
            environment_id=config.environment_id,
            vcpu=config.vcpu,
            memory_gb=config.memory_gb,
            storage_gb=config.storage_gb,
            image=config.image,
            tags=dict(config.tags),
        )

    def session_spec(self) -> SessionSpec:
        return SessionSpec(
            environment_id=self.environment_id,
            vcpu=self.vcpu,
            memory_gb=self.memory_gb,
            storage_gb=self.storage_gb,
            image=self.image,
            tags=self.tags or None,
        )


ConnectionFactory = Callable[[ConnectOptions], HubTransport]
StateListener = Callable[[SessionState, SessionState], None]
InputListener = Callable[[InputEvent], None]


@dataclass
class PendingRequest:
    """A command waiting for its response."""

    correlation_id: str
    kind: str
    future: asyncio.Future[Any]
    deadline: float
    survives_stop: bool = False  # Kept when the peer stops the session


def _fail_future(future: asyncio.Future[Any] | None, error: BaseException) -> None:
    if future is None or future.done():
        return
    future.set_exception(error)
    # Mark retrieved so an unobserved failure is not reported at GC time
    future.exception()


class CommandChannel:
    """Request/response channel to one remote session.

    Args:
        config: Timeouts and retry settings
        connection_factory: Builds the hub transport for a set of options
        events: Event sink for diagnostics
    """

    def __init__(
        self,
        config: ChannelConfig | None = None,
        *,
        connection_factory: ConnectionFactory | None = None,
        events: EventSink | None = None,
    ) -> None:
        self.config = config or ChannelConfig()
        self._events = events or default_sink("channel")
        self._connection_factory = connection_factory or self._default_connection
        self._hub: HubTransport | None = None
        self._session = Session()
        self._pending: dict[str, PendingRequest] = {}
        self._barrier: asyncio.Future[None] | None = None
        self._ready: asyncio.Future[None] | None = None
        self._resume_state = SessionState.READY
        self._early_ready: set[str] = set()
        self._listeners: list[StateListener] = []
        self._input_listeners: list[InputListener] = []
        self._error: BaseException | None = None
        self._closed = False

    async def __aenter__(self) -> CommandChannel:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # --- public state ---

    @property
    def session(self) -> Session:
        return self._session

    @property
    def session_id(self) -> str | None:
        return self._session.session_id

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def on_state_changed(self, listener: StateListener) -> Callable[[], None]:
        """Call ``listener(old, new)`` on every state change.

        Returns:
            A function that unsubscribes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def on_input_event(self, listener: InputListener) -> Callable[[], None]:
        """Call ``listener(event)`` for each live input event of the session.

        Returns:
            A function that unsubscribes the listener.
        """
        self._input_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._input_listeners:
                self._input_listeners.remove(listener)

        return unsubscribe

    # --- connect / ready / close ---

    def _default_connection(self, options: ConnectOptions) -> HubTransport:
        return HubConnection(
            hub_url(options.api_base_url or ""),
            headers={"X-API-Key": options.api_key or ""},
            reconnect_delays=self.config.reconnect_delays,
            events=self._events,
        )

    async def connect(self, options: ConnectOptions) -> Session:
        """Open the transport and create a session.

        Returns once the peer has assigned a session id; the session is usually
        still provisioning. Use ``wait_until_ready`` before sending commands.

        Raises:
            ChannelConnectionError: Options are incomplete or the transport failed
            ProtocolError: The peer refused to create the session
        """
        if not options.api_base_url:
            raise ChannelConnectionError("api_base_url is required to connect")
        if not options.api_key:
            raise ChannelConnectionError("api_key is required to connect")
        if self._session.state is not SessionState.CREATED:
            raise SessionStateError(f"Channel already used (state: {self.state.value})")

        loop = asyncio.get_running_loop()
        self._ready = loop.create_future()
        self._events.emit("channel.connecting", url=options.api_base_url)
        self._transition(SessionState.CONNECTING)

        hub = self._connection_factory(options)
        self._hub = hub
        hub.on("sessionReady", self._on_session_ready)
        hub.on("sessionStateChanged", self._on_session_state_changed)
        hub.on("commandResponse", self._on_command_response)
        hub.on("error", self._on_error)
        hub.on("assetCaptured", self._on_asset_captured)
        hub.on("checkpointCreated", self._on_checkpoint_created)
        hub.on("checkpointRestored", self._on_checkpoint_restored)
        hub.on("inputEventReceived", self._on_input_event)
        hub.on_reconnecting(self._on_reconnecting)
        hub.on_reconnected(self._on_reconnected)
        hub.on_closed(self._on_closed)

        try:
            await hub.start()
        except ChannelConnectionError as e:
            self._fail(e)
            raise
        except Exception as e:
            error = ChannelConnectionError(f"Failed to connect: {e}")
            self._fail(error)
            raise error from e

        self._transition(SessionState.PROVISIONING)
        try:
            raw = await hub.invoke("createSession", options.session_spec().to_wire())
            info = SessionInfo.model_validate(raw)
        except Exception as e:
            self._fail(e)
            raise

        self._session.session_id = info.session_id
        self._session.status = info.status
        self._events.emit("channel.session_created", session_id=info.session_id, status=info.status)
        if info.session_id in self._early_ready or SessionState.parse(info.status) is SessionState.READY:
            self._transition(SessionState.READY)
        self._early_ready.clear()
        return self._session

    async def wait_until_ready(self, timeout: float | None = None) -> None:
        """Suspend until the session is Ready.

        Raises:
            ChannelTimeoutError: Not ready within ``timeout`` seconds
            SessionStateError: Called before connect
            DeskPilotError: Whatever failure moved the session to Error
        """
        if self._ready is None:
            raise SessionStateError("Not connected; call connect() first")
        if self.state is SessionState.ERROR and self._error is not None:
            raise self._error
        if self.state is SessionState.READY:
            return
        if self.state in (SessionState.STOPPING, SessionState.STOPPED):
            raise SessionStateError(f"Session {self.session_id} is {self.state.value}")
        timeout = self.config.ready_timeout if timeout is None else timeout
        try:
            await asyncio.wait_for(asyncio.shield(self._ready), timeout)
        except asyncio.TimeoutError:
            raise ChannelTimeoutError(
                f"Session {self.session_id} not ready after {timeout:g}s (state: {self.state.value})"
            ) from None

    async def close(self) -> None:
        """End the session and release resources. Never raises."""
        if self._closed:
            return
        self._closed = True
        hub, sid = self._hub, self.session_id

        if not self.state.is_terminal and self.state is not SessionState.CREATED:
            self._transition(SessionState.STOPPING)

        if hub is not None and sid and hub.state is HubState.CONNECTED:
            try:
                await asyncio.wait_for(hub.invoke("endSession", sid), timeout=10)
            except Exception as e:
                self._events.emit("channel.end_session_failed", level=logging.WARNING, error=e)

        error = ChannelConnectionError("Channel closed")
        self._fail_pending(error)
        _fail_future(self._barrier, error)
        self._barrier = None
        _fail_future(self._ready, SessionStateError("Channel closed before the session was ready"))

        if hub is not None:
            try:
                await hub.stop()
            except Exception as e:
                self._events.emit("channel.stop_failed", level=logging.WARNING, error=e)

        if self.state is SessionState.STOPPING:
            self._transition(SessionState.STOPPED)
        self._events.emit("channel.closed", session_id=sid)

    # --- requests ---

    async def send(self, command: Command, expects_result: bool | None = None) -> Any:
        """Send a command and wait for its response.

        Args:
            command: The command; session and correlation ids are filled in
            expects_result: Return the peer's result (defaults to the command's own flag)

        Returns:
            The response result when a result is expected, else None.

        Raises:
            ChannelTimeoutError: No response within the request deadline
            ProtocolError: The peer reported failure (``error_code`` set)
            ChannelConnectionError: Connection lost and retries exhausted
            SessionStateError: The session is not Ready
        """
        wants_result = command.expects_result if expects_result is None else expects_result

        async def attempt(number: int) -> Any:
            update: dict[str, Any] = {"session_id": self._require_ready()}
            # A command object sent again while its first send is in flight gets its own id
            if number > 1 or command.correlation_id in self._pending:
                update["correlation_id"] = new_correlation_id()
            return await self._send_once(command.model_copy(update=update), wants_result)

        return await self._with_retry(command.kind, attempt)

    async def _send_once(self, command: Command, wants_result: bool) -> Any:
        hub = self._require_hub()
        loop = asyncio.get_running_loop()
        timeout = self.config.request_timeout
        request = PendingRequest(
            correlation_id=command.correlation_id,
            kind=command.kind,
            future=loop.create_future(),
            deadline=loop.time() + timeout,
        )
        self._pending[request.correlation_id] = request
        try:
            self._events.emit(
                "channel.send",
                level=logging.DEBUG,
                kind=command.kind,
                correlation_id=command.correlation_id,
            )
            await hub.invoke("sendCommand", command.to_envelope())
            try:
                response: CommandResponse = await asyncio.wait_for(request.future, timeout)
            except asyncio.TimeoutError:
                raise ChannelTimeoutError(
                    f"Command {command.kind} timed out after {timeout:g}s"
                ) from None
        finally:
            self._pending.pop(request.correlation_id, None)

        if not response.success:
            raise ProtocolError(response.error_message or "Command failed", error_code=response.error_code)
        return response.result if wants_result else None

    async def get_access_credentials(self, duration: float | None = None) -> AccessCredentials:
        """Request temporary remote-desktop credentials for the session.

        Args:
            duration: Requested validity in seconds (peer default when None)
        """
        async def attempt(number: int) -> Any:
            sid = self._require_ready()
            return await self._require_hub().invoke("getAccessCredentials", sid, duration)

        raw = await self._with_retry("getAccessCredentials", attempt)
        credentials = AccessCredentials.model_validate(raw)
        self._events.emit("channel.access_granted", expires_at=credentials.expires_at)
        return credentials

    async def capture_asset(
        self,
        name: str,
        description: str | None = None,
        tags: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> AssetInfo:
        """Capture the session's disk as a reusable image.

        Completion arrives through the ``assetCaptured`` event. The session
        ends once the capture is done.

        Raises:
            ChannelTimeoutError: The capture did not finish in time
        """
        sid = self._require_ready()
        options = CaptureOptions(name=name, description=description, tags=tags)
        timeout = self.config.capture_timeout if timeout is None else timeout
        request = self._expect_push("captureAsset", timeout, survives_stop=True)
        try:
            async def attempt(number: int) -> Any:
                return await self._require_hub().invoke(
                    "captureAsset", sid, options.to_wire(), request.correlation_id
                )

            await self._with_retry("captureAsset", attempt)
            self._events.emit("channel.capture_started", session_id=sid, name=name)
            self._transition(SessionState.STOPPING)
            info: AssetInfo = await self._await_push(request, timeout, "Asset capture")
        finally:
            self._pending.pop(request.correlation_id, None)

        self._events.emit("channel.asset_captured", image_id=info.image_id, size_bytes=info.size_bytes)
        self._transition(SessionState.STOPPED)
        return info

    async def create_checkpoint(self, name: str | None = None, timeout: float | None = None) -> str:
        """Snapshot the running session.

        Returns:
            The checkpoint id reported through ``checkpointCreated``.
        """
        sid = self._require_ready()
        timeout = self.config.checkpoint_timeout if timeout is None else timeout
        request = self._expect_push("createCheckpoint", timeout)
        try:
            async def attempt(number: int) -> Any:
                return await self._require_hub().invoke(
                    "createCheckpoint", sid, name, request.correlation_id
                )

            await self._with_retry("createCheckpoint", attempt)
            checkpoint_id: str = await self._await_push(request, timeout, "Checkpoint creation")
        finally:
            self._pending.pop(request.correlation_id, None)

        self._events.emit("channel.checkpoint_created", session_id=sid, checkpoint_id=checkpoint_id)
        return checkpoint_id

    async def restore_checkpoint(self, checkpoint_id: str, timeout: float | None = None) -> None:
        """Roll the session back to a checkpoint made by ``create_checkpoint``."""
        sid = self._require_ready()
        timeout = self.config.checkpoint_timeout if timeout is None else timeout
        request = self._expect_push("restoreCheckpoint", timeout)
        try:
            async def attempt(number: int) -> Any:
                return await self._require_hub().invoke(
                    "restoreCheckpoint", sid, checkpoint_id, request.correlation_id
                )

            await self._with_retry("restoreCheckpoint", attempt)
            await self._await_push(request, timeout, "Checkpoint restore")
        finally:
            self._pending.pop(request.correlation_id, None)

        self._events.emit("channel.checkpoint_restored", session_id=sid, checkpoint_id=checkpoint_id)

    async def save_as_environment(
        self,
        name: str,
        description: str | None = None,
        tags: dict[str, str] | None = None,
        shutdown_before_capture: bool = True,
    ) -> EnvironmentInfo:
        """Save the session as an environment new sessions can start from."""
        options = EnvironmentOptions(
            name=name,
            description=description,
            tags=tags,
            shutdown_before_capture=shutdown_before_capture,
        )

        async def attempt(number: int) -> Any:
            sid = self._require_ready()
            return await self._require_hub().invoke("saveAsEnvironment", sid, options.to_wire())

        raw = await self._with_retry("saveAsEnvironment", attempt)
        info = EnvironmentInfo.model_validate(raw)
        self._events.emit("channel.environment_saved", environment_id=info.id, name=info.name)
        return info

    def _expect_push(self, kind: str, timeout: float, *, survives_stop: bool = False) -> PendingRequest:
        """Register a request completed by a peer push rather than ``commandResponse``."""
        loop = asyncio.get_running_loop()
        request = PendingRequest(
            correlation_id=new_correlation_id(),
            kind=kind,
            future=loop.create_future(),
            deadline=loop.time() + timeout,
            survives_stop=survives_stop,
        )
        self._pending[request.correlation_id] = request
        return request

    async def _await_push(self, request: PendingRequest, timeout: float, what: str) -> Any:
        try:
            return await asyncio.wait_for(request.future, timeout)
        except asyncio.TimeoutError:
            raise ChannelTimeoutError(f"{what} timed out after {timeout:g}s") from None

    # --- retry machinery ---

    def is_retryable(self, error: BaseException) -> bool:
        """Whether ``error`` looks like a transient connection loss."""
        if isinstance(error, (ChannelTimeoutError, SessionStateError)):
            return False
        if self.state.is_terminal or self._closed:
            return False
        if self._hub is not None and self._hub.state is HubState.DISCONNECTED:
            return False
        message = str(error).lower()
        return any(marker in message for marker in RETRYABLE_MARKERS)

    async def _with_retry(self, name: str, attempt: Callable[[int], Awaitable[T]]) -> T:
        max_attempts = max(1, self.config.max_attempts)
        last_error: BaseException | None = None
        for number in range(1, max_attempts + 1):
            if self.state is SessionState.RECONNECTING:
                self._events.emit("channel.waiting_for_reconnect", name=name, attempt=number)
                await self._wait_for_barrier(name)
            try:
                return await attempt(number)
            except Exception as e:
                if not self.is_retryable(e):
                    raise
                last_error = e
                if number == max_attempts:
                    break
                self._events.emit(
                    "channel.retry",
                    level=logging.WARNING,
                    name=name,
                    attempt=number,
                    max_attempts=max_attempts,
                    error=e,
                )
                if self._barrier is not None:
                    await self._wait_for_barrier(name)
                else:
                    await asyncio.sleep(self.config.retry_delay)

        raise ChannelConnectionError(
            f"Failed to invoke {name} after {max_attempts} attempts: {last_error}"
        ) from last_error

    async def _wait_for_barrier(self, name: str) -> None:
        barrier = self._barrier
        if barrier is None:
            return
        wait = self.config.reconnect_wait
        try:
            await asyncio.wait_for(asyncio.shield(barrier), wait)
        except asyncio.TimeoutError:
            raise ChannelTimeoutError(
                f"Timed out after {wait:g}s waiting for reconnection before {name}"
            ) from None

    def _require_hub(self) -> HubTransport:
        if self._hub is None or self._closed:
            raise SessionStateError("Not connected; call connect() first")
        return self._hub

    def _require_ready(self) -> str:
        if self.state is not SessionState.READY or self.session_id is None:
            raise SessionStateError(f"Session is not ready (state: {self.state.value})")
        return self.session_id

    # --- state ---

    def _transition(self, new: SessionState, *, source: str = "local") -> bool:
        old = self._session.state
        if old is new:
            return True
        if not can_transition(old, new):
            self._events.emit(
                "channel.invalid_transition",
                level=logging.WARNING,
                old=old.value,
                new=new.value,
                source=source,
            )
            return False
        self._session.state = new
        self._events.emit("channel.state_changed", old=old.value, new=new.value, source=source)
        if new is SessionState.READY and self._ready is not None and not self._ready.done():
            self._ready.set_result(None)
        for listener in list(self._listeners):
            try:
                listener(old, new)
            except Exception as e:
                self._events.emit("channel.listener_failed", level=logging.ERROR, error=e, exc_info=True)
        return True

    def _fail(self, error: BaseException) -> None:
        """Move to Error and fail everything waiting on the session."""
        self._error = error
        self._session.error = str(error)
        self._transition(SessionState.ERROR)
        self._reset_ready()
        _fail_future(self._ready, error)
        _fail_future(self._barrier, error)
        self._barrier = None
        self._fail_pending(error)

    def _fail_pending(self, error: BaseException, *, stopping: bool = False) -> None:
        pending, self._pending = self._pending, {}
        for correlation_id, request in pending.items():
            if stopping and request.survives_stop:
                self._pending[correlation_id] = request
            else:
                _fail_future(request.future, error)

    def _reset_ready(self) -> None:
        """Replace a settled ready future so later waiters see the current state."""
        if self._ready is not None and self._ready.done():
            self._ready = asyncio.get_running_loop().create_future()

    # --- peer push events ---

    def _on_session_ready(self, session_id: str) -> None:
        self._events.emit("channel.session_ready", session_id=session_id)
        if self.session_id is None:
            self._early_ready.add(session_id)
            return
        if session_id == self.session_id:
            self._transition(SessionState.READY, source="peer")

    def _on_session_state_changed(self, session_id: str, state: str) -> None:
        if session_id != self.session_id:
            return
        new = SessionState.parse(state)
        self._session.status = state
        if new is None:
            self._events.emit("channel.unknown_state", level=logging.WARNING, state=state)
            return
        if new is SessionState.ERROR:
            self._fail(ProtocolError(f"Session entered error state: {state}"))
            return
        if new in (SessionState.STOPPING, SessionState.STOPPED):
            self._on_peer_stopped(new)
            return
        self._transition(new, source="peer")

    def _on_peer_stopped(self, new: SessionState) -> None:
        """The peer is ending the session; nothing sent to it can complete."""
        if self.state.is_terminal:
            return
        self._transition(SessionState.STOPPING, source="peer")
        if new is SessionState.STOPPED:
            self._transition(SessionState.STOPPED, source="peer")
        error = SessionStateError(f"Session {self.session_id} ended by the peer (state: {new.value})")
        self._reset_ready()
        _fail_future(self._ready, error)
        _fail_future(self._barrier, error)
        self._barrier = None
        self._fail_pending(error, stopping=True)

    def _on_command_response(self, envelope: dict[str, Any]) -> None:
        try:
            response = CommandResponse.model_validate(envelope)
        except Exception as e:
            self._events.emit("channel.bad_response", level=logging.WARNING, error=e)
            return
        request = self._pending.pop(response.correlation_id, None)
        if request is None or request.future.done():
            self._events.emit(
                "channel.stale_response",
                level=logging.DEBUG,
                correlation_id=response.correlation_id,
            )
            return
        self._events.emit(
            "channel.response",
            level=logging.DEBUG,
            kind=request.kind,
            correlation_id=response.correlation_id,
            success=response.success,
            duration_ms=response.duration_ms,
        )
        request.future.set_result(response)

    def _on_error(self, session_id: str, code: str, message: str) -> None:
        self._events.emit("channel.peer_error", level=logging.ERROR, code=code, message=message)
        if self.state.is_terminal:
            return
        self._fail(ProtocolError(f"{code}: {message}", error_code=code))

    def _on_asset_captured(self, session_id: str, info: dict[str, Any], correlation_id: str) -> None:
        request = self._pending.pop(correlation_id, None)
        if request is None or request.future.done():
            return
        try:
            request.future.set_result(AssetInfo.model_validate(info))
        except Exception as e:
            _fail_future(request.future, ProtocolError(f"Invalid asset info: {e}"))

    def _on_checkpoint_created(self, session_id: str, checkpoint_id: str, correlation_id: str) -> None:
        request = self._pending.pop(correlation_id, None)
        if request is not None and not request.future.done():
            request.future.set_result(checkpoint_id)

    def _on_checkpoint_restored(self, session_id: str, correlation_id: str) -> None:
        request = self._pending.pop(correlation_id, None)
        if request is not None and not request.future.done():
            request.future.set_result(None)

    def _on_input_event(self, session_id: str, data: dict[str, Any]) -> None:
        if session_id != self.session_id:
            return
        try:
            event = InputEvent.model_validate(data)
        except Exception as e:
            self._events.emit("channel.bad_input_event", level=logging.WARNING, error=e)
            return
        self._events.emit("channel.input_event", level=logging.DEBUG, event_type=event.event_type.value)
        for listener in list(self._input_listeners):
            try:
                listener(event)
            except Exception as e:
                self._events.emit("channel.listener_failed", level=logging.ERROR, error=e, exc_info=True)

    # --- transport lifecycle ---

    def _on_reconnecting(self, error: BaseException | None = None) -> None:
        if self.state not in (SessionState.READY, SessionState.PROVISIONING):
            return
        self._resume_state = self.state
        self._reset_ready()
        if self._barrier is None or self._barrier.done():
            self._barrier = asyncio.get_running_loop().create_future()
        self._transition(SessionState.RECONNECTING)
        self._events.emit("channel.connection_lost", level=logging.WARNING, error=error)

    async def _on_reconnected(self) -> None:
        if self.state is not SessionState.RECONNECTING:
            return
        sid, hub = self.session_id, self._hub
        if sid is None or hub is None:
            self._transition(self._resume_state)
            self._release_barrier()
            return
        try:
            raw = await hub.invoke("resumeSession", sid)
            info = SessionInfo.model_validate(raw)
        except Exception as e:
            self._events.emit("channel.resume_failed", level=logging.ERROR, session_id=sid, error=e)
            error = ChannelConnectionError(f"Failed to resume session {sid} after reconnection: {e}")
            error.__cause__ = e
            self._fail(error)
            return
        self._session.status = info.status
        self._events.emit("channel.session_resumed", session_id=sid, status=info.status)
        self._transition(self._resume_state)
        self._release_barrier()

    def _on_closed(self, error: BaseException | None = None) -> None:
        if self._closed or self.state.is_terminal or self.state is SessionState.STOPPING:
            return
        failure = ChannelConnectionError(f"Connection closed permanently: {error}")
        failure.__cause__ = error
        self._fail(failure)

    def _release_barrier(self) -> None:
        barrier, self._barrier = self._barrier, None
        if barrier is not None and not barrier.done():
            barrier.set_result(None)
