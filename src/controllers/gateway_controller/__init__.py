from controllers.gateway_controller.terminal_session import (
    GOING_AWAY,
    INTERNAL_ERROR,
    REASON_SERVER_SHUTDOWN,
    TerminalSession,
)
from tools.errors import AdmissionError, PTYError
from tools.logger import *
from tools.logger import stream_handler
from tools.wire_protocol import ErrorMessage, encode_message
from use_cases.admission import POLICY_VIOLATION, AdmissionController
from use_cases.auth import TokenProvider, authenticate_request
from use_cases.terminal_pty import PTYSupervisor
from aiohttp import web
from typing import Callable, Optional, Set
import asyncio
import logging
import time

TERMINAL_PATH = "/terminal"


class HeartbeatFilter(logging.Filter):
    """Filter to suppress heartbeat-related log messages from aiohttp."""

    def filter(self, record):
        return "heartbeat" not in record.getMessage().lower()


ACCESS_LOGGER = logging.getLogger("aiohttp.access")


def _configure_aiohttp_logging():
    """
    Route aiohttp's access log and its own warnings through the gateway
    stream handler, without heartbeat chatter.
    """
    levels = {
        "aiohttp.access": logging.INFO,
        "aiohttp.server": logging.WARNING,
        "aiohttp.web": logging.WARNING,
        "aiohttp.websocket": logging.WARNING,
    }
    for logger_name, level in levels.items():
        logger = logging.getLogger(logger_name)
        logger.setLevel(level)
        if not any(isinstance(f, HeartbeatFilter) for f in logger.filters):
            logger.addFilter(HeartbeatFilter())
        if stream_handler not in logger.handlers:
            logger.addHandler(stream_handler)


class TerminalGateway:
    """
    HTTP server that upgrades authenticated, admitted requests on
    ``/terminal`` into terminal sessions.

    Authentication failures never reach the WebSocket layer: they get a
    plain 401 and the connection is closed. Capacity rejections are upgraded
    and immediately closed with code 1008, before any PTY is allocated.
    """

    def __init__(
        self,
        config,
        token_provider: TokenProvider,
        admission: Optional[AdmissionController] = None,
        supervisor_factory: Optional[Callable[[], object]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.token_provider = token_provider
        self.admission = admission or AdmissionController()
        self.sessions: Set[TerminalSession] = set()
        self._supervisor_factory = supervisor_factory or self._create_supervisor
        self._clock = clock
        self._runner: Optional[web.AppRunner] = None
        self._shutting_down = False

        self.app = web.Application()
        self.app.router.add_get("/", self.handle_index)
        self.app.router.add_get(TERMINAL_PATH, self.handle_terminal)

    def _create_supervisor(self) -> PTYSupervisor:
        return PTYSupervisor(
            self.config.shell,
            allow_fallback=self.config.allow_pty_fallback,
        )

    async def handle_index(self, request: web.Request) -> web.Response:
        return web.Response(text="Terminal Gateway Server\n")

    async def handle_terminal(self, request: web.Request) -> web.StreamResponse:
        remote = request.remote or "unknown"

        if self._shutting_down:
            response = web.Response(status=503, text="Server shutting down\n")
            response.force_close()
            return response

        if not authenticate_request(request.headers, self.token_provider):
            log_connection(remote, False)
            response = web.Response(status=401, text="Unauthorized\n")
            response.force_close()
            return response

        ws = web.WebSocketResponse()

        try:
            self.admission.acquire()
        except AdmissionError as e:
            log_warning(f"Connection rejected from {remote}: {e.message}")
            await ws.prepare(request)
            await ws.close(code=POLICY_VIOLATION, message=e.message.encode("utf-8"))
            return ws

        try:
            await ws.prepare(request)
            log_connection(remote, True)

            supervisor = self._supervisor_factory()
            try:
                await supervisor.start()
            except PTYError as e:
                log_error(f"Failed to create PTY ({e.code}): {e.message}")
                await ws.send_str(encode_message(ErrorMessage("Failed to create terminal session")))
                await ws.close(code=INTERNAL_ERROR, message=b"Failed to create terminal session")
                return ws

            session = TerminalSession(ws, supervisor, remote, clock=self._clock)
            self.sessions.add(session)
            try:
                await session.run()
            finally:
                self.sessions.discard(session)
        finally:
            self.admission.release()

        return ws

    async def start(self) -> None:
        """
        Load the bearer token and start listening.

        Raises:
            ConfigError: if the token cannot be loaded.
        """
        self.token_provider.load()
        _configure_aiohttp_logging()

        self._runner = web.AppRunner(self.app, access_log=ACCESS_LOGGER)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.config.host, self.config.port)
        await site.start()
        log_server_start(self.config.host, self.config.port)

    async def shutdown(self, reason: str = "shutdown requested") -> None:
        """Close every session with 1001, kill their shells, close the listener."""
        if self._shutting_down:
            return
        self._shutting_down = True
        log_info(f"Shutting down gateway ({reason}), {len(self.sessions)} active session(s)")

        sessions = list(self.sessions)
        results = await asyncio.gather(
            *(session.close(GOING_AWAY, REASON_SERVER_SHUTDOWN) for session in sessions),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                log_error(f"Error closing session during shutdown: {result}")

        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None

        log_server_stop(reason)

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down


__all__ = ["TerminalGateway", "TERMINAL_PATH"]
