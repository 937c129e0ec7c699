"""Tests for hub framing and the reconnecting HubConnection."""

from __future__ import annotations

import asyncio

import pytest

from deskpilot.channel.hub import (
    HANDSHAKE,
    RECORD_SEPARATOR,
    ConnectionLost,
    HubConnection,
    HubInvocationError,
    HubState,
    MessageType,
    encode_frame,
    hub_url,
    split_frames,
)
from deskpilot.errors import ChannelConnectionError, ProtocolError
from tests.utils import FakeConnector, FakeWebSocket, wait_until


def make_hub(connector: FakeConnector, events, delays=(0, 0)) -> HubConnection:
    return HubConnection(
        "wss://api.example.com/hubs/client",
        headers={"X-API-Key": "k"},
        reconnect_delays=delays,
        keepalive_interval=None,
        connect=connector,
        events=events,
    )


class TestFraming:
    """Record-separator framing."""

    def test_encode_appends_separator(self) -> None:
        frame = encode_frame(HANDSHAKE)
        assert frame == '{"protocol":"json","version":1}' + RECORD_SEPARATOR

    def test_split_multiple_frames(self) -> None:
        data = encode_frame({"type": 6}) + encode_frame({"type": 3, "invocationId": "1"})
        messages, rest = split_frames(data)
        assert messages == [{"type": 6}, {"type": 3, "invocationId": "1"}]
        assert rest == ""

    def test_split_keeps_partial_frame(self) -> None:
        """An unterminated trailing frame is returned as the remainder."""
        data = encode_frame({"type": 6}) + '{"type":1,"tar'
        messages, rest = split_frames(data)
        assert messages == [{"type": 6}]
        assert rest == '{"type":1,"tar'

    def test_partial_frame_completes_later(self) -> None:
        _, rest = split_frames('{"type":')
        messages, rest = split_frames(rest + "6}" + RECORD_SEPARATOR)
        assert messages == [{"type": 6}]
        assert rest == ""

    def test_empty_frames_skipped(self) -> None:
        messages, _ = split_frames(RECORD_SEPARATOR + encode_frame({"type": 6}))
        assert messages == [{"type": 6}]

    def test_malformed_frame_raises(self) -> None:
        with pytest.raises(ProtocolError, match="Malformed hub frame"):
            split_frames("{nope" + RECORD_SEPARATOR)

    def test_non_object_frame_raises(self) -> None:
        with pytest.raises(ProtocolError, match="not an object"):
            split_frames("[1,2]" + RECORD_SEPARATOR)


class TestHubUrl:
    def test_https_maps_to_wss(self) -> None:
        assert hub_url("https://api.example.com/") == "wss://api.example.com/hubs/client"

    def test_http_maps_to_ws(self) -> None:
        assert hub_url("http://localhost:5000") == "ws://localhost:5000/hubs/client"


class TestHandshake:
    """Connection start-up."""

    @pytest.mark.asyncio
    async def test_start_sends_handshake_and_headers(self, events) -> None:
        ws = FakeWebSocket()
        connector = FakeConnector(ws)
        hub = make_hub(connector, events)

        await hub.start()

        assert hub.state is HubState.CONNECTED
        assert ws.sent_messages()[0] == HANDSHAKE
        assert connector.calls == [("wss://api.example.com/hubs/client", {"X-API-Key": "k"})]
        await hub.stop()

    @pytest.mark.asyncio
    async def test_handshake_error_rejected(self, events) -> None:
        """A handshake reply with an error fails start and closes the socket."""
        ws = FakeWebSocket(handshake={"error": "unsupported protocol"})
        hub = make_hub(FakeConnector(ws), events)

        with pytest.raises(ChannelConnectionError, match="unsupported protocol"):
            await hub.start()

        assert hub.state is HubState.DISCONNECTED
        assert ws.closed

    @pytest.mark.asyncio
    async def test_connect_failure(self, events) -> None:
        hub = make_hub(FakeConnector(), events)
        with pytest.raises(ChannelConnectionError, match="Failed to connect"):
            await hub.start()
        assert hub.state is HubState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_start_twice_rejected(self, events) -> None:
        hub = make_hub(FakeConnector(FakeWebSocket()), events)
        await hub.start()
        with pytest.raises(ChannelConnectionError, match="already connected"):
            await hub.start()
        await hub.stop()


class TestInvoke:
    """Invocation correlation."""

    @pytest.mark.asyncio
    async def test_completion_resolves_invoke(self, events) -> None:
        ws = FakeWebSocket()
        hub = make_hub(FakeConnector(ws), events)
        await hub.start()

        task = asyncio.create_task(hub.invoke("createSession", {"image": "win11"}))
        await wait_until(lambda: len(ws.invocations("createSession")) == 1)
        message = ws.invocations("createSession")[0]
        assert message["arguments"] == [{"image": "win11"}]

        ws.feed(
            {
                "type": MessageType.COMPLETION,
                "invocationId": message["invocationId"],
                "result": {"sessionId": "s1", "status": "Provisioning"},
            }
        )
        assert await task == {"sessionId": "s1", "status": "Provisioning"}
        await hub.stop()

    @pytest.mark.asyncio
    async def test_completion_error_raises(self, events) -> None:
        ws = FakeWebSocket()
        hub = make_hub(FakeConnector(ws), events)
        await hub.start()

        task = asyncio.create_task(hub.invoke("endSession", "s1"))
        await wait_until(lambda: len(ws.invocations("endSession")) == 1)
        ws.feed(
            {
                "type": MessageType.COMPLETION,
                "invocationId": ws.invocations("endSession")[0]["invocationId"],
                "error": "Session not found",
            }
        )
        with pytest.raises(HubInvocationError, match="Session not found"):
            await task
        await hub.stop()

    @pytest.mark.asyncio
    async def test_invocation_ids_distinct(self, events) -> None:
        ws = FakeWebSocket()
        hub = make_hub(FakeConnector(ws), events)
        await hub.start()

        tasks = [asyncio.create_task(hub.invoke("sendCommand", i)) for i in range(3)]
        await wait_until(lambda: len(ws.invocations("sendCommand")) == 3)
        ids = [m["invocationId"] for m in ws.invocations("sendCommand")]
        assert len(set(ids)) == 3

        # Answer out of order
        for invocation_id, value in zip(reversed(ids), ("c", "b", "a")):
            ws.feed({"type": MessageType.COMPLETION, "invocationId": invocation_id, "result": value})
        assert await asyncio.gather(*tasks) == ["a", "b", "c"]
        await hub.stop()

    @pytest.mark.asyncio
    async def test_invoke_when_stopped_raises(self, events) -> None:
        hub = make_hub(FakeConnector(FakeWebSocket()), events)
        await hub.start()
        await hub.stop()
        with pytest.raises(ChannelConnectionError, match="connection closed"):
            await hub.invoke("sendCommand", {})

    @pytest.mark.asyncio
    async def test_stop_fails_outstanding_invocations(self, events) -> None:
        ws = FakeWebSocket()
        hub = make_hub(FakeConnector(ws), events)
        await hub.start()

        task = asyncio.create_task(hub.invoke("sendCommand", {}))
        await wait_until(lambda: len(ws.invocations()) == 1)
        await hub.stop()

        with pytest.raises(ConnectionLost):
            await task


class TestInboundInvocations:
    """Peer-to-client invocations."""

    @pytest.mark.asyncio
    async def test_targets_match_case_insensitively(self, events) -> None:
        ws = FakeWebSocket()
        hub = make_hub(FakeConnector(ws), events)
        received: list[str] = []
        hub.on("sessionReady", received.append)
        await hub.start()

        ws.feed({"type": MessageType.INVOCATION, "target": "SESSIONREADY", "arguments": ["s1"]})
        await wait_until(lambda: received == ["s1"])
        await hub.stop()

    @pytest.mark.asyncio
    async def test_async_handler_runs(self, events) -> None:
        ws = FakeWebSocket()
        hub = make_hub(FakeConnector(ws), events)
        received: list[tuple[str, str]] = []

        async def on_state(session_id: str, state: str) -> None:
            received.append((session_id, state))

        hub.on("sessionStateChanged", on_state)
        await hub.start()

        ws.feed(
            {"type": MessageType.INVOCATION, "target": "sessionStateChanged", "arguments": ["s1", "Ready"]}
        )
        await wait_until(lambda: received == [("s1", "Ready")])
        await hub.stop()

    @pytest.mark.asyncio
    async def test_missing_handler_reported(self, events) -> None:
        ws = FakeWebSocket()
        hub = make_hub(FakeConnector(ws), events)
        await hub.start()

        ws.feed({"type": MessageType.INVOCATION, "target": "mystery", "arguments": []})
        await wait_until(lambda: bool(events.named("hub.no_handler")))
        await hub.stop()

    @pytest.mark.asyncio
    async def test_bad_frame_does_not_kill_reader(self, events) -> None:
        ws = FakeWebSocket()
        hub = make_hub(FakeConnector(ws), events)
        received: list[str] = []
        hub.on("sessionReady", received.append)
        await hub.start()

        ws.feed_raw("{broken" + RECORD_SEPARATOR)
        ws.feed({"type": MessageType.INVOCATION, "target": "sessionReady", "arguments": ["s2"]})
        await wait_until(lambda: received == ["s2"])
        assert events.named("hub.bad_frame")
        await hub.stop()


class TestReconnect:
    """Automatic reconnects on a fixed delay schedule."""

    @pytest.mark.asyncio
    async def test_reconnects_after_drop(self, events) -> None:
        first, second = FakeWebSocket(), FakeWebSocket()
        hub = make_hub(FakeConnector(first, second), events)
        reconnecting: list[BaseException | None] = []
        reconnected: list[bool] = []
        hub.on_reconnecting(reconnecting.append)
        hub.on_reconnected(lambda: reconnected.append(True))
        await hub.start()

        first.drop()
        await wait_until(lambda: reconnected == [True])

        assert hub.state is HubState.CONNECTED
        assert len(reconnecting) == 1
        assert "connection was terminated" in str(reconnecting[0]).lower()
        assert second.sent_messages()[0] == HANDSHAKE
        await hub.stop()

    @pytest.mark.asyncio
    async def test_drop_fails_pending_invocation(self, events) -> None:
        """Outstanding invocations fail with a retryable connection-lost error."""
        first = FakeWebSocket()
        hub = make_hub(FakeConnector(first, FakeWebSocket()), events)
        await hub.start()

        task = asyncio.create_task(hub.invoke("sendCommand", {}))
        await wait_until(lambda: len(first.invocations()) == 1)
        first.drop()

        with pytest.raises(ConnectionLost, match="connection was terminated"):
            await task
        await hub.stop()

    @pytest.mark.asyncio
    async def test_gives_up_after_schedule(self, events) -> None:
        """When every reconnect attempt fails the closed listeners run."""
        first = FakeWebSocket()
        connector = FakeConnector(first)
        hub = make_hub(connector, events, delays=(0, 0, 0))
        closed: list[BaseException | None] = []
        hub.on_closed(closed.append)
        await hub.start()

        first.drop()
        await wait_until(lambda: len(closed) == 1)

        assert hub.state is HubState.DISCONNECTED
        assert len(connector.calls) == 4
        assert len(events.named("hub.reconnect_failed")) == 3

    @pytest.mark.asyncio
    async def test_server_close_without_reconnect(self, events) -> None:
        ws = FakeWebSocket()
        hub = make_hub(FakeConnector(ws, FakeWebSocket()), events)
        closed: list[BaseException | None] = []
        reconnecting: list[BaseException | None] = []
        hub.on_closed(closed.append)
        hub.on_reconnecting(reconnecting.append)
        await hub.start()

        ws.feed({"type": MessageType.CLOSE, "error": "shutting down"})
        await wait_until(lambda: len(closed) == 1)

        assert reconnecting == []
        assert "shutting down" in str(closed[0])
        assert hub.state is HubState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_server_close_allowing_reconnect(self, events) -> None:
        ws = FakeWebSocket()
        hub = make_hub(FakeConnector(ws, FakeWebSocket()), events)
        reconnected: list[bool] = []
        hub.on_reconnected(lambda: reconnected.append(True))
        await hub.start()

        ws.feed({"type": MessageType.CLOSE, "allowReconnect": True})
        await wait_until(lambda: reconnected == [True])
        await hub.stop()

    @pytest.mark.asyncio
    async def test_stop_does_not_reconnect(self, events) -> None:
        ws = FakeWebSocket()
        connector = FakeConnector(ws, FakeWebSocket())
        hub = make_hub(connector, events)
        reconnecting: list[BaseException | None] = []
        hub.on_reconnecting(reconnecting.append)
        await hub.start()

        await hub.stop()
        await asyncio.sleep(0)

        assert reconnecting == []
        assert len(connector.calls) == 1
        assert ws.closed
