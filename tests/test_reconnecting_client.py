"""
ReconnectingWebSocketClient resilience tests.

- Backoff doubles from the floor up to floor * cap_factor and resets on open
- State transitions through CONNECTING / OPEN / CLOSED / ERRORED / DISPOSED
- dispose() cancels a pending wait, closes the transport once and stops reconnects
"""

import asyncio
from unittest.mock import patch

import pytest
import pytest_asyncio

from castellan.websockets import ConnectionState, ReconnectBackoff, ReconnectingWebSocketClient

from .fakes import FakeConnector, FakeTransport, settle


class RecordingClient(ReconnectingWebSocketClient):
    """Concrete client that keeps every frame it receives."""

    def __init__(self, connector: FakeConnector, **kwargs):
        super().__init__("ws://test.castellan.local", connector=connector, name="test", **kwargs)
        self.frames: list = []
        self.states: list[ConnectionState] = []
        self.on_connection_change(lambda event: self.states.append(event.new_state))

    async def _handle_frame(self, raw):
        self.frames.append(raw)


def stop_after(client: ReconnectingWebSocketClient, count: int, delays: list[float]):
    """asyncio.sleep replacement that records delays and disposes the client after ``count`` waits."""

    async def track_sleep(delay, *args, **kwargs):
        delays.append(delay)
        if len(delays) >= count:
            await client.dispose()

    return track_sleep


@pytest_asyncio.fixture
async def cleanup():
    clients = []
    yield clients.append
    for client in clients:
        await client.dispose()


class TestReconnectBackoff:
    def test_sequence_caps_at_thirty_times_floor(self):
        backoff = ReconnectBackoff(floor=1.0, cap_factor=30)
        assert [backoff.advance() for _ in range(8)] == [1, 2, 4, 8, 16, 30, 30, 30]

    def test_reset_returns_to_floor(self):
        backoff = ReconnectBackoff(floor=0.5, cap_factor=4)
        for _ in range(5):
            backoff.advance()
        assert backoff.current == 2.0

        backoff.reset()
        assert backoff.advance() == 0.5

    @pytest.mark.parametrize("floor,cap_factor", [(0, 30), (-1, 30), (1.0, 0)])
    def test_rejects_invalid_parameters(self, floor, cap_factor):
        with pytest.raises(ValueError):
            ReconnectBackoff(floor=floor, cap_factor=cap_factor)


class TestReconnectLoop:
    async def test_delays_double_to_cap_while_upstream_is_down(self):
        """
        GIVEN an endpoint that refuses every connection
        WHEN the client keeps retrying
        THEN it waits 1, 2, 4, 8, 16, 30, 30 between attempts
        """
        connector = FakeConnector()
        client = RecordingClient(connector)
        delays: list[float] = []

        with patch("asyncio.sleep", new=stop_after(client, 7, delays)):
            await client.run()

        assert delays == [1, 2, 4, 8, 16, 30, 30]
        assert connector.attempts == 7
        assert client.state is ConnectionState.DISPOSED

    async def test_open_resets_delay(self):
        """
        GIVEN two failures, then a connection that closes cleanly, then failures
        WHEN the client reconnects
        THEN the delay resets to the floor after the successful open
        """
        connector = FakeConnector(OSError("down"), OSError("down"), FakeTransport().end())
        client = RecordingClient(connector)
        delays: list[float] = []

        with patch("asyncio.sleep", new=stop_after(client, 4, delays)):
            await client.run()

        assert delays == [1, 2, 1, 2]
        assert client.states == [
            ConnectionState.CONNECTING,
            ConnectionState.ERRORED,
            ConnectionState.CONNECTING,
            ConnectionState.ERRORED,
            ConnectionState.CONNECTING,
            ConnectionState.OPEN,
            ConnectionState.CLOSED,
            ConnectionState.CONNECTING,
            ConnectionState.ERRORED,
            ConnectionState.DISPOSED,
        ]

    async def test_abnormal_close_is_errored(self):
        connector = FakeConnector(FakeTransport().fail())
        client = RecordingClient(connector)
        delays: list[float] = []

        with patch("asyncio.sleep", new=stop_after(client, 1, delays)):
            await client.run()

        assert ConnectionState.OPEN in client.states
        assert client.states[client.states.index(ConnectionState.OPEN) + 1] is ConnectionState.ERRORED
        assert client.last_error is not None

    async def test_frames_are_dispatched_in_order(self):
        transport = FakeTransport().feed("one", "two", "three").end()
        client = RecordingClient(FakeConnector(transport))
        delays: list[float] = []

        with patch("asyncio.sleep", new=stop_after(client, 1, delays)):
            await client.run()

        assert client.frames == ["one", "two", "three"]
        assert transport.close_calls == 1


class TestDispose:
    async def test_dispose_cancels_pending_wait(self):
        connector = FakeConnector()
        client = RecordingClient(connector, reconnect_floor=10.0)
        task = client.start()
        await settle()
        assert connector.attempts == 1

        await asyncio.wait_for(client.dispose(), timeout=1)

        assert task.done()
        assert client.state is ConnectionState.DISPOSED
        assert connector.attempts == 1

    async def test_dispose_closes_open_transport_once(self):
        transport = FakeTransport()
        connector = FakeConnector(transport, FakeTransport())
        client = RecordingClient(connector)
        client.start()
        await settle()
        assert client.is_open

        await client.dispose()
        await client.dispose()
        await settle()

        assert transport.close_calls == 1
        assert connector.attempts == 1
        assert client.states[-1] is ConnectionState.DISPOSED

    async def test_start_after_dispose_fails(self):
        client = RecordingClient(FakeConnector())
        await client.dispose()
        with pytest.raises(RuntimeError):
            client.start()


class TestSendAndStatus:
    async def test_send_only_when_open(self, cleanup):
        transport = FakeTransport()
        client = RecordingClient(FakeConnector(transport))
        cleanup(client)
        assert await client.send("early") is False

        client.start()
        await settle()
        assert await client.send("hello") is True
        assert transport.sent == ["hello"]

    async def test_status_reports_state(self, cleanup):
        client = RecordingClient(FakeConnector(FakeTransport()))
        cleanup(client)
        client.start()
        await settle()

        status = client.get_status()
        assert status["connected"] is True
        assert status["connection_state"] == "open"
        assert status["successful_connects"] == 1
        assert await client.health_check() is True
