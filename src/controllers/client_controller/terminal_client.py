from controllers.client_controller.connection_manager import (
    ConnectionManager,
    ConnectionObserver,
    ConnectionState,
    ConnectionStatus,
    ConnectionTarget,
)
from controllers.client_controller.resize_controller import ResizeController
from tools.logger import *
from tools.scheduler import TaskScheduler
from use_cases.stream_sanitizer import StreamSanitizer
from typing import Optional


class TerminalRenderer:
    """Rendering surface for a terminal client. Override what you need."""

    def write(self, text: str) -> None:
        pass

    def show_error(self, message: str) -> None:
        pass

    def show_state(self, state: ConnectionState) -> None:
        pass


class TerminalClient(ConnectionObserver):
    """
    Ties a connection manager, a stream sanitizer and a resize controller to
    one rendering surface.

    Output is sanitized before rendering; when the sanitizer reports that the
    terminal mode was recovered, the last geometry is resent so the shell
    redraws at the right size. A fresh sanitizer is used for every connection.
    """

    def __init__(
        self,
        renderer: Optional[TerminalRenderer] = None,
        dialer=None,
        scheduler: Optional[TaskScheduler] = None,
        resize_scheduler: Optional[TaskScheduler] = None,
        shell_return_heuristics: bool = True,
    ):
        self.renderer = renderer or TerminalRenderer()
        self._shell_return_heuristics = shell_return_heuristics
        self.sanitizer = StreamSanitizer(shell_return_heuristics=shell_return_heuristics)
        self.connection = ConnectionManager(observer=self, dialer=dialer, scheduler=scheduler)
        self.resize = ResizeController(self.connection.send_resize, scheduler=resize_scheduler)

    def connect(self, target: ConnectionTarget) -> bool:
        return self.connection.connect(target)

    def disconnect(self) -> None:
        self.resize.cancel()
        self.connection.disconnect()

    def send_input(self, data: str) -> bool:
        sent = self.connection.send_input(data)
        if sent:
            self.resize.note_input(data)
        return sent

    def update_viewport(self, cols: int, rows: int) -> None:
        self.resize.update_viewport(cols, rows)

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    ## ConnectionObserver

    def on_state_changed(self, state: ConnectionState) -> None:
        if state.status is ConnectionStatus.CONNECTED:
            self.sanitizer = StreamSanitizer(shell_return_heuristics=self._shell_return_heuristics)
            self.resize.send_now()
        elif state.status in (ConnectionStatus.DISCONNECTED, ConnectionStatus.ERROR):
            self.resize.cancel()
        self.renderer.show_state(state)

    def on_output(self, data: str) -> None:
        result = self.sanitizer.process(data)
        if result.text:
            self.renderer.write(result.text)
        if result.requires_recovery:
            log_debug("Terminal mode recovered, requesting redraw")
            self.resize.request_redraw()

    def on_server_error(self, message: str) -> None:
        log_warning(f"Gateway error: {message}")
        self.renderer.show_error(message)
