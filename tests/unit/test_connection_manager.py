"""Tests for the client connection state machine."""

import asyncio
import json

import pytest

from controllers.client_controller import (
    MAX_RECONNECT_ATTEMPTS,
    ConnectionManager,
    ConnectionObserver,
    ConnectionState,
    ConnectionStatus,
    ConnectionTarget,
    reconnect_delay,
)
from controllers.client_controller.connection_manager import HEARTBEAT_INTERVAL_SECONDS

TOKEN = "t" * 64
TARGET = ConnectionTarget("100.64.0.1", 8765, TOKEN)

_CLOSED = object()


class FakeConnection:
    def __init__(self):
        self.sent = []
        self.closed = False
        self.close_code = None
        self.fail_sends = False
        self._incoming = asyncio.Queue()

    def feed(self, frame):
        self._incoming.put_nowait(frame)

    def server_close(self, code=1000):
        self.close_code = code
        self._incoming.put_nowait(_CLOSED)

    async def send_str(self, data):
        if self.fail_sends:
            raise ConnectionResetError("broken pipe")
        self.sent.append(json.loads(data))

    def __aiter__(self):
        return self

    async def __anext__(self):
        frame = await self._incoming.get()
        if frame is _CLOSED:
            raise StopAsyncIteration
        return frame

    async def close(self):
        if not self.closed:
            self.closed = True
            self._incoming.put_nowait(_CLOSED)


class FakeDialer:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []
        self.connections = []

    async def __call__(self, url, headers):
        self.calls.append((url, headers))
        if self.fail:
            raise ConnectionRefusedError("refused")
        connection = FakeConnection()
        self.connections.append(connection)
        return connection


class RecordingObserver(ConnectionObserver):
    def __init__(self):
        self.states = []
        self.output = []
        self.errors = []

    def on_state_changed(self, state):
        self.states.append(state)

    def on_output(self, data):
        self.output.append(data)

    def on_server_error(self, message):
        self.errors.append(message)


async def settle():
    for _ in range(10):
        await asyncio.sleep(0)


@pytest.fixture
def observer():
    return RecordingObserver()


def _manager(dialer, scheduler, observer):
    return ConnectionManager(observer=observer, dialer=dialer, scheduler=scheduler)


class TestConnectionTarget:
    def test_websocket_url(self):
        assert TARGET.websocket_url == "ws://100.64.0.1:8765/terminal"

    def test_ipv6_url(self):
        assert ConnectionTarget("fd7a::1", 8765, TOKEN).websocket_url == "ws://[fd7a::1]:8765/terminal"

    @pytest.mark.parametrize("host, expected", [("100.64.0.1", True), ("box.tail1234.ts.net", True), ("10.0.0.1", False)])
    def test_overlay_host(self, host, expected):
        assert ConnectionTarget(host, 8765, TOKEN).is_overlay_host is expected

    @pytest.mark.parametrize(
        "target, message",
        [
            (ConnectionTarget("", 8765, TOKEN), "Host cannot be empty"),
            (ConnectionTarget("host", 0, TOKEN), "Port must be between 1 and 65535"),
            (ConnectionTarget("host", 70000, TOKEN), "Port must be between 1 and 65535"),
            (ConnectionTarget("host", 8765, ""), "Token cannot be empty"),
        ],
    )
    def test_validation(self, target, message):
        assert target.validation_error() == message
        assert not target.is_valid


@pytest.mark.parametrize("attempt, delay", [(1, 2), (2, 4), (5, 10), (15, 30), (40, 30)])
def test_reconnect_delay(attempt, delay):
    assert reconnect_delay(attempt) == delay


@pytest.mark.asyncio
async def test_invalid_target_never_dials(fake_scheduler, observer):
    dialer = FakeDialer()
    manager = _manager(dialer, fake_scheduler, observer)

    assert manager.connect(ConnectionTarget("", 8765, TOKEN)) is False
    await settle()

    assert dialer.calls == []
    assert manager.state == ConnectionState.error("Host cannot be empty")


@pytest.mark.asyncio
async def test_connect_sends_bearer_and_starts_heartbeat(fake_scheduler, observer):
    dialer = FakeDialer()
    manager = _manager(dialer, fake_scheduler, observer)

    assert manager.connect(TARGET)
    await settle()

    url, headers = dialer.calls[0]
    assert url == "ws://100.64.0.1:8765/terminal"
    assert headers == {"Authorization": f"Bearer {TOKEN}"}
    assert [s.status for s in observer.states] == [ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED]
    assert fake_scheduler.delays == [HEARTBEAT_INTERVAL_SECONDS]

    fake_scheduler.fire()
    await settle()
    heartbeat = dialer.connections[0].sent[-1]
    assert heartbeat["type"] == "heartbeat"
    assert isinstance(heartbeat["ts"], int)
    manager.disconnect()


@pytest.mark.asyncio
async def test_backoff_schedule_then_gives_up(fake_scheduler, observer):
    dialer = FakeDialer(fail=True)
    manager = _manager(dialer, fake_scheduler, observer)

    manager.connect(TARGET)
    await settle()

    delays = []
    while fake_scheduler.pending:
        assert manager.state.status is ConnectionStatus.ERROR
        assert fake_scheduler.pending == 1
        delays.append(fake_scheduler.tasks[0].delay)
        fake_scheduler.fire()
        await settle()

    assert delays == [2, 4, 6, 8, 10]
    assert len(dialer.calls) == MAX_RECONNECT_ATTEMPTS + 1
    assert manager.state.status is ConnectionStatus.DISCONNECTED
    assert fake_scheduler.pending == 0


@pytest.mark.asyncio
async def test_successful_reconnect_resets_attempts(fake_scheduler, observer):
    dialer = FakeDialer(fail=True)
    manager = _manager(dialer, fake_scheduler, observer)
    manager.connect(TARGET)
    await settle()
    fake_scheduler.fire()
    await settle()
    assert manager.reconnect_attempts == 2

    dialer.fail = False
    fake_scheduler.fire()
    await settle()

    assert manager.state.is_connected
    assert manager.reconnect_attempts == 0
    manager.disconnect()


@pytest.mark.asyncio
async def test_server_close_schedules_reconnect(fake_scheduler, observer):
    dialer = FakeDialer()
    manager = _manager(dialer, fake_scheduler, observer)
    manager.connect(TARGET)
    await settle()

    dialer.connections[0].server_close(1001)
    await settle()

    assert manager.state.status is ConnectionStatus.ERROR
    assert "1001" in manager.state.reason
    # The heartbeat timer from the closed connection is gone
    assert fake_scheduler.delays == [2]
    manager.disconnect()


@pytest.mark.asyncio
async def test_frames_are_routed(fake_scheduler, observer):
    dialer = FakeDialer()
    manager = _manager(dialer, fake_scheduler, observer)
    manager.connect(TARGET)
    await settle()

    connection = dialer.connections[0]
    connection.feed('{"type": "output", "data": "hello"}')
    connection.feed("garbage")
    connection.feed('{"type": "error", "message": "Process exited with code 0"}')
    connection.feed('{"type": "heartbeat", "ts": 5}')
    await settle()

    assert observer.output == ["hello"]
    assert observer.errors == ["Process exited with code 0"]
    assert manager.last_error == "Process exited with code 0"
    assert manager.state.is_connected
    manager.disconnect()


@pytest.mark.asyncio
async def test_send_requires_connection(fake_scheduler, observer):
    manager = _manager(FakeDialer(), fake_scheduler, observer)
    assert manager.send_input("ls\n") is False
    assert manager.send_resize(80, 24) is False


@pytest.mark.asyncio
async def test_send_input_and_resize(fake_scheduler, observer):
    dialer = FakeDialer()
    manager = _manager(dialer, fake_scheduler, observer)
    manager.connect(TARGET)
    await settle()

    assert manager.send_input("ls\n")
    assert manager.send_resize(120, 40)
    await settle()

    assert dialer.connections[0].sent == [
        {"type": "input", "data": "ls\n"},
        {"type": "resize", "cols": 120, "rows": 40},
    ]
    manager.disconnect()


@pytest.mark.asyncio
async def test_send_failure_moves_to_error(fake_scheduler, observer):
    dialer = FakeDialer()
    manager = _manager(dialer, fake_scheduler, observer)
    manager.connect(TARGET)
    await settle()

    dialer.connections[0].fail_sends = True
    manager.send_input("x")
    await settle()

    assert manager.state.status is ConnectionStatus.ERROR
    assert manager.state.reason.startswith("Send failed")
    manager.disconnect()


@pytest.mark.asyncio
async def test_disconnect_from_any_state(fake_scheduler, observer):
    dialer = FakeDialer()
    manager = _manager(dialer, fake_scheduler, observer)

    manager.disconnect()
    assert observer.states == []

    manager.connect(TARGET)
    await settle()
    connection = dialer.connections[0]

    manager.disconnect()
    manager.disconnect()
    await settle()

    assert manager.state.status is ConnectionStatus.DISCONNECTED
    assert observer.states[-1].status is ConnectionStatus.DISCONNECTED
    assert observer.states[-2].status is ConnectionStatus.CONNECTED
    assert fake_scheduler.pending == 0
    assert connection.closed


@pytest.mark.asyncio
async def test_disconnect_during_backoff_cancels_retry(fake_scheduler, observer):
    dialer = FakeDialer(fail=True)
    manager = _manager(dialer, fake_scheduler, observer)
    manager.connect(TARGET)
    await settle()
    assert fake_scheduler.pending == 1

    manager.disconnect()

    assert fake_scheduler.pending == 0
    assert manager.state.status is ConnectionStatus.DISCONNECTED
