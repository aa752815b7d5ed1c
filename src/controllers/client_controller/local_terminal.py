"""
Interactive client for a local TTY.

Puts the controlling terminal in raw mode, forwards keystrokes to the
gateway and follows SIGWINCH. Press Ctrl-] to disconnect.
"""

import asyncio
import os
import signal
import sys
import termios
import tty
from typing import Optional

from controllers.client_controller.connection_manager import ConnectionState, ConnectionStatus, ConnectionTarget
from controllers.client_controller.terminal_client import TerminalClient, TerminalRenderer
from tools.logger import log_info

ESCAPE_CHAR = "\x1d"  # Ctrl-]


class StdoutRenderer(TerminalRenderer):
    def __init__(self, stream=None):
        self.stream = stream or sys.stdout
        self.finished = asyncio.Event()

    def write(self, text: str) -> None:
        self.stream.write(text)
        self.stream.flush()

    def show_error(self, message: str) -> None:
        self.stream.write(f"\r\n[gateway] {message}\r\n")
        self.stream.flush()

    def show_state(self, state: ConnectionState) -> None:
        if state.status is ConnectionStatus.ERROR:
            self.stream.write(f"\r\n[{state.description}]\r\n")
            self.stream.flush()
        elif state.status is ConnectionStatus.DISCONNECTED:
            self.finished.set()


async def run_local_terminal(target: ConnectionTarget) -> int:
    """Run until the connection ends. Returns a process exit code."""
    loop = asyncio.get_running_loop()
    renderer = StdoutRenderer()
    client = TerminalClient(renderer)

    fd = sys.stdin.fileno()
    saved_attrs: Optional[list] = None
    if os.isatty(fd):
        saved_attrs = termios.tcgetattr(fd)
        tty.setraw(fd)

    def on_stdin():
        data = os.read(fd, 1024)
        if not data:
            client.disconnect()
            return
        text = data.decode("utf-8", errors="replace")
        if ESCAPE_CHAR in text:
            client.disconnect()
            return
        client.send_input(text)

    def on_winch():
        size = os.get_terminal_size(sys.stdout.fileno())
        client.update_viewport(size.columns, size.lines)

    try:
        loop.add_reader(fd, on_stdin)
        loop.add_signal_handler(signal.SIGWINCH, on_winch)
        if not client.connect(target):
            return 1
        if os.isatty(sys.stdout.fileno()):
            on_winch()
        await renderer.finished.wait()
    finally:
        loop.remove_reader(fd)
        loop.remove_signal_handler(signal.SIGWINCH)
        client.disconnect()
        if saved_attrs is not None:
            termios.tcsetattr(fd, termios.TCSADRAIN, saved_attrs)

    log_info("Connection closed")
    return 0 if client.connection.last_error is None else 1
