"""
Client Connection Manager

Owns the WebSocket connection to a gateway: the connection state machine,
linear reconnect backoff and the client heartbeat.

    Disconnected --connect()--> Connecting --open--> Connected
    Connecting/Connected --error/close--> Error --backoff--> Connecting
    Error --retry budget exhausted--> Disconnected
    any --disconnect()--> Disconnected
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional

import aiohttp

from tools.errors import ProtocolError
from tools.logger import log_debug, log_info, log_warning
from tools.scheduler import TaskScheduler
from tools.wire_protocol import (
    ErrorMessage,
    HeartbeatMessage,
    InputMessage,
    OutputMessage,
    ResizeMessage,
    WireMessage,
    decode_message,
    encode_message,
    now_ms,
)

MAX_RECONNECT_ATTEMPTS = 5
RECONNECT_STEP_SECONDS = 2.0
MAX_RECONNECT_DELAY_SECONDS = 30.0
HEARTBEAT_INTERVAL_SECONDS = 30.0
CONNECT_TIMEOUT_SECONDS = 30.0
DEFAULT_PORT = 8765
TERMINAL_PATH = "/terminal"


class ConnectionStatus(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass(frozen=True)
class ConnectionState:
    status: ConnectionStatus
    reason: Optional[str] = None

    @classmethod
    def disconnected(cls) -> "ConnectionState":
        return cls(ConnectionStatus.DISCONNECTED)

    @classmethod
    def connecting(cls) -> "ConnectionState":
        return cls(ConnectionStatus.CONNECTING)

    @classmethod
    def connected(cls) -> "ConnectionState":
        return cls(ConnectionStatus.CONNECTED)

    @classmethod
    def error(cls, reason: str) -> "ConnectionState":
        return cls(ConnectionStatus.ERROR, reason)

    @property
    def is_connected(self) -> bool:
        return self.status is ConnectionStatus.CONNECTED

    @property
    def description(self) -> str:
        if self.status is ConnectionStatus.ERROR:
            return f"Error: {self.reason}"
        if self.status is ConnectionStatus.CONNECTING:
            return "Connecting..."
        return self.status.value.capitalize()


@dataclass(frozen=True)
class ConnectionTarget:
    host: str
    port: int = DEFAULT_PORT
    token: str = ""

    @property
    def is_overlay_host(self) -> bool:
        """Overlay network address (100.x.x.x) or MagicDNS name (*.ts.net)."""
        return self.host.startswith("100.") or self.host.endswith(".ts.net")

    def validation_error(self) -> Optional[str]:
        if not isinstance(self.host, str) or not self.host.strip():
            return "Host cannot be empty"
        if isinstance(self.port, bool) or not isinstance(self.port, int) or not 1 <= self.port <= 65535:
            return "Port must be between 1 and 65535"
        if not isinstance(self.token, str) or not self.token:
            return "Token cannot be empty"
        return None

    @property
    def is_valid(self) -> bool:
        return self.validation_error() is None

    @property
    def websocket_url(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"ws://{host}:{self.port}{TERMINAL_PATH}"


def reconnect_delay(attempt: int) -> float:
    """Linear backoff: 2s per attempt, capped at 30s."""
    return min(attempt * RECONNECT_STEP_SECONDS, MAX_RECONNECT_DELAY_SECONDS)


class ConnectionObserver:
    """Receives connection events. Override what you need."""

    def on_state_changed(self, state: ConnectionState) -> None:
        pass

    def on_output(self, data: str) -> None:
        pass

    def on_server_error(self, message: str) -> None:
        pass


class AiohttpConnection:
    """aiohttp client WebSocket plus the session that owns it."""

    def __init__(self, session: aiohttp.ClientSession, ws: aiohttp.ClientWebSocketResponse):
        self._session = session
        self._ws = ws

    async def send_str(self, data: str) -> None:
        await self._ws.send_str(data)

    def __aiter__(self):
        return self._iter_text()

    async def _iter_text(self):
        async for msg in self._ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                yield msg.data
            elif msg.type == aiohttp.WSMsgType.BINARY:
                yield msg.data.decode("utf-8", errors="replace")
            elif msg.type == aiohttp.WSMsgType.ERROR:
                raise ConnectionError(f"WebSocket error: {self._ws.exception()}")

    @property
    def close_code(self) -> Optional[int]:
        return self._ws.close_code

    async def close(self) -> None:
        try:
            await self._ws.close()
        finally:
            await self._session.close()


async def aiohttp_dialer(url: str, headers: Dict[str, str]) -> AiohttpConnection:
    session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=None, connect=CONNECT_TIMEOUT_SECONDS))
    try:
        ws = await session.ws_connect(url, headers=headers)
    except BaseException:
        await session.close()
        raise
    return AiohttpConnection(session, ws)


Dialer = Callable[[str, Dict[str, str]], Awaitable[object]]


class ConnectionManager:
    """
    Connection lifecycle for one gateway target.

    Every timer (reconnect backoff, heartbeat) belongs to one TaskScheduler
    and the whole set is cancelled whenever a new attempt starts or the
    manager is disconnected.
    """

    def __init__(
        self,
        observer: Optional[ConnectionObserver] = None,
        dialer: Optional[Dialer] = None,
        scheduler: Optional[TaskScheduler] = None,
        reconnect: bool = True,
    ):
        self.observer = observer or ConnectionObserver()
        self._dialer = dialer or aiohttp_dialer
        self.scheduler = scheduler or TaskScheduler()
        self._reconnect_enabled = reconnect

        self.state = ConnectionState.disconnected()
        self.reconnect_attempts = 0
        self.last_error: Optional[str] = None

        self._target: Optional[ConnectionTarget] = None
        self._should_reconnect = False
        self._connection = None
        self._connection_task: Optional[asyncio.Task] = None
        self._generation = 0

    ## Public API

    def connect(self, target: ConnectionTarget) -> bool:
        """
        Validate the target and start connecting.

        Returns False, without any network attempt, if the target is invalid.
        """
        error = target.validation_error()
        if error:
            log_warning(f"Refusing to connect: {error}")
            self._set_state(ConnectionState.error(error))
            return False

        self._target = target
        self._should_reconnect = self._reconnect_enabled
        self.reconnect_attempts = 0
        self._start_attempt()
        return True

    def disconnect(self) -> None:
        """User-initiated stop. Idempotent; always ends Disconnected."""
        self._should_reconnect = False
        self._generation += 1
        self._teardown_connection()
        if self.state.status is not ConnectionStatus.DISCONNECTED:
            log_info("Disconnected")
            self._set_state(ConnectionState.disconnected())

    def send(self, message: WireMessage) -> bool:
        """Fire-and-forget send. Returns False if not connected."""
        if not self.state.is_connected or self._connection is None:
            log_debug(f"Cannot send {message.type}, not connected")
            return False

        asyncio.get_running_loop().create_task(
            self._send(self._connection, message, self._generation)
        )
        return True

    def send_input(self, data: str) -> bool:
        return self.send(InputMessage(data))

    def send_resize(self, cols: int, rows: int) -> bool:
        return self.send(ResizeMessage(cols, rows))

    @property
    def target(self) -> Optional[ConnectionTarget]:
        return self._target

    ## Internals

    def _set_state(self, state: ConnectionState) -> None:
        if state == self.state:
            return
        log_debug(f"Connection state: {self.state.description} -> {state.description}")
        self.state = state
        self.observer.on_state_changed(state)

    def _start_attempt(self) -> None:
        self._teardown_connection()
        self._generation += 1
        self._set_state(ConnectionState.connecting())
        log_info(f"Connecting to {self._target.websocket_url}")
        self._connection_task = asyncio.get_running_loop().create_task(
            self._run_connection(self._generation)
        )

    async def _run_connection(self, generation: int) -> None:
        target = self._target
        headers = {"Authorization": f"Bearer {target.token}"}

        try:
            connection = await self._dialer(target.websocket_url, headers)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if generation == self._generation:
                self._handle_failure(f"Connection failed: {e}")
            return

        if generation != self._generation:
            await self._close_quietly(connection)
            return

        self._connection = connection
        self._on_open()

        try:
            async for frame in connection:
                self._handle_frame(frame)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            reason = f"Receive error: {e}"
        else:
            reason = f"Connection closed (code {connection.close_code})"

        if generation == self._generation:
            self._handle_failure(reason)

    def _on_open(self) -> None:
        log_info("Connection opened")
        self.reconnect_attempts = 0
        self.last_error = None
        self.scheduler.call_every(HEARTBEAT_INTERVAL_SECONDS, self._send_heartbeat)
        self._set_state(ConnectionState.connected())

    def _send_heartbeat(self) -> None:
        self.send(HeartbeatMessage(ts=now_ms()))

    async def _send(self, connection, message: WireMessage, generation: int) -> None:
        try:
            await connection.send_str(encode_message(message))
        except Exception as e:
            log_warning(f"Send error: {e}")
            if generation == self._generation:
                self._handle_failure(f"Send failed: {e}")

    def _handle_frame(self, frame) -> None:
        try:
            message = decode_message(frame)
        except ProtocolError as e:
            log_warning(f"Ignoring malformed frame from gateway: {e.message}")
            return

        if isinstance(message, OutputMessage):
            self.observer.on_output(message.data)
        elif isinstance(message, ErrorMessage):
            self.last_error = message.message
            self.observer.on_server_error(message.message)
        elif isinstance(message, HeartbeatMessage):
            log_debug(f"Heartbeat from gateway (ts {message.ts})")
        else:
            log_debug(f"Ignoring unexpected {message.type} message from gateway")

    def _handle_failure(self, reason: str) -> None:
        self._generation += 1
        self._teardown_connection()
        self.last_error = reason
        log_warning(f"Connection error: {reason}")
        self._set_state(ConnectionState.error(reason))

        if self._should_reconnect and self.reconnect_attempts < MAX_RECONNECT_ATTEMPTS:
            self.reconnect_attempts += 1
            delay = reconnect_delay(self.reconnect_attempts)
            log_info(
                f"Reconnection attempt {self.reconnect_attempts}/{MAX_RECONNECT_ATTEMPTS} in {delay:.0f}s"
            )
            self.scheduler.call_later(delay, self._start_attempt)
        else:
            self.disconnect()

    def _teardown_connection(self) -> None:
        self.scheduler.cancel_all()

        task = self._connection_task
        self._connection_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

        connection = self._connection
        self._connection = None
        if connection is not None:
            asyncio.get_running_loop().create_task(self._close_quietly(connection))

    async def _close_quietly(self, connection) -> None:
        try:
            await connection.close()
        except Exception as e:
            log_debug(f"Error closing connection: {e}")
