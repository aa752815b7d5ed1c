"""
Terminal Session

Binds one authenticated WebSocket to one PTY supervisor and relays
messages in both directions until the socket closes, the shell exits or the
client stops sending heartbeats.
"""

import asyncio
import time
from typing import Callable, List, Optional

from aiohttp import WSMsgType, web

from controllers.gateway_controller.emitters.heartbeat import (
    HEARTBEAT_INTERVAL,
    emit_heartbeat,
)
from tools.errors import ProtocolError
from tools.logger import log_debug, log_disconnection, log_error, log_info, log_warning
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
from use_cases.terminal_pty import PTYExit, PTYOutput

# Close codes
NORMAL_CLOSURE = 1000
GOING_AWAY = 1001
ABNORMAL_CLOSURE = 1006
INTERNAL_ERROR = 1011

HEARTBEAT_TIMEOUT = 90
LIVENESS_CHECK_INTERVAL = 5

REASON_HEARTBEAT_TIMEOUT = "Heartbeat timeout"
REASON_SERVER_SHUTDOWN = "Server shutdown"
REASON_PROCESS_EXITED = "Process exited"


def describe_disconnect(explicit_reason: Optional[str], close_code: Optional[int]) -> str:
    """
    Reason recorded in the audit log. Never used to drive protocol decisions.

    Precedence: explicit reason, then normal closure, then abnormal closure,
    then a generic code-annotated fallback.
    """
    if explicit_reason:
        return explicit_reason
    if close_code == NORMAL_CLOSURE:
        return "normal closure"
    if close_code == ABNORMAL_CLOSURE:
        return "connection lost"
    return f"closed with code {close_code}"


class TerminalSession:
    """
    Relays terminal I/O between a WebSocket and a PTY supervisor.

    Message Protocol:
        Client -> gateway:
            {"type": "input", "data": "ls\\n"}
            {"type": "resize", "cols": 120, "rows": 40}
            {"type": "heartbeat", "ts": 1700000000000}

        Gateway -> client:
            {"type": "output", "data": "..."}
            {"type": "heartbeat", "ts": 1700000000000}
            {"type": "error", "message": "..."}

    Malformed or unknown messages are answered with an error message and the
    connection stays open.
    """

    def __init__(
        self,
        ws: web.WebSocketResponse,
        supervisor,
        remote: str,
        clock: Callable[[], float] = time.monotonic,
        heartbeat_interval: float = HEARTBEAT_INTERVAL,
        liveness_check_interval: float = LIVENESS_CHECK_INTERVAL,
    ):
        self.ws = ws
        self.supervisor = supervisor
        self.remote = remote
        self._clock = clock
        self._heartbeat_interval = heartbeat_interval
        self._liveness_check_interval = liveness_check_interval

        self.last_heartbeat_at = clock()
        self.disconnect_reason: Optional[str] = None
        self._tasks: List[asyncio.Task] = []
        self._closed = False

    async def run(self) -> None:
        """Relay until the session ends, then tear everything down."""
        log_info(f"Terminal session started for {self.remote} (pid {self.supervisor.pid})")

        self._tasks = [
            asyncio.create_task(self._relay_pty_events()),
            asyncio.create_task(emit_heartbeat(self, self._heartbeat_interval)),
            asyncio.create_task(self._watch_liveness()),
        ]

        try:
            async for msg in self.ws:
                if msg.type in (WSMsgType.TEXT, WSMsgType.BINARY):
                    await self.handle_raw_message(msg.data)
                elif msg.type == WSMsgType.ERROR:
                    log_error(f"WebSocket error from {self.remote}: {self.ws.exception()}")
        finally:
            await self.close()
            log_disconnection(
                self.remote, describe_disconnect(self.disconnect_reason, self.ws.close_code)
            )

    async def handle_raw_message(self, raw) -> None:
        """Decode and dispatch one client frame."""
        if self._closed:
            return

        try:
            message = decode_message(raw)
        except ProtocolError as e:
            log_warning(f"Protocol error from {self.remote}: {e.message}")
            await self.send(ErrorMessage(e.message))
            return

        await self.dispatch(message)

    async def dispatch(self, message: WireMessage) -> None:
        if isinstance(message, InputMessage):
            self.supervisor.write(message.data)
        elif isinstance(message, ResizeMessage):
            self.supervisor.resize(message.cols, message.rows)
        elif isinstance(message, HeartbeatMessage):
            self.last_heartbeat_at = self._clock()
            await self.send(HeartbeatMessage(ts=now_ms()))
        else:
            log_warning(f"Unexpected {message.type} message from {self.remote}")
            await self.send(ErrorMessage(f"Unexpected message type: {message.type}"))

    async def send(self, message: WireMessage) -> bool:
        """Send a message; returns False instead of raising on failure."""
        if self._closed or self.ws.closed:
            return False

        try:
            await self.ws.send_str(encode_message(message))
            return True
        except Exception as e:
            log_error(f"Error sending {message.type} to {self.remote}: {e}")
            return False

    async def _relay_pty_events(self) -> None:
        async for event in self.supervisor.events():
            if isinstance(event, PTYOutput):
                await self.send(OutputMessage(event.data))
            elif isinstance(event, PTYExit):
                await self.send(ErrorMessage(event.describe()))
                await self.close(NORMAL_CLOSURE, REASON_PROCESS_EXITED)

    async def _watch_liveness(self) -> None:
        while not self._closed:
            await asyncio.sleep(self._liveness_check_interval)
            await self.check_liveness()

    async def check_liveness(self, now: Optional[float] = None) -> bool:
        """
        Close the session if the client has been silent for too long.

        Returns False once the session has been closed for a timeout.
        """
        if self._closed:
            return False

        now = self._clock() if now is None else now
        silence = now - self.last_heartbeat_at
        if silence > HEARTBEAT_TIMEOUT:
            log_warning(
                f"Heartbeat timeout for {self.remote}: no heartbeat for {silence:.0f}s "
                f"(limit {HEARTBEAT_TIMEOUT}s), closing session"
            )
            await self.close(GOING_AWAY, REASON_HEARTBEAT_TIMEOUT)
            return False
        return True

    async def close(self, code: int = NORMAL_CLOSURE, reason: Optional[str] = None) -> None:
        """
        End the session: cancel timers, kill the shell, close the socket.

        Safe to call more than once and from any of the session's own tasks.
        """
        if self._closed:
            return
        self._closed = True
        if reason:
            self.disconnect_reason = reason

        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current and not task.done():
                task.cancel()
        self._tasks = []

        self.supervisor.kill()

        if not self.ws.closed:
            try:
                await self.ws.close(code=code, message=(reason or "").encode("utf-8"))
            except Exception as e:
                log_debug(f"Error closing WebSocket for {self.remote}: {e}")
        else:
            code = self.ws.close_code

        log_info(f"Terminal session closed for {self.remote} ({describe_disconnect(reason, code)})")

    @property
    def is_closed(self) -> bool:
        return self._closed
