from controllers.client_controller.connection_manager import (
    MAX_RECONNECT_ATTEMPTS,
    ConnectionManager,
    ConnectionObserver,
    ConnectionState,
    ConnectionStatus,
    ConnectionTarget,
    reconnect_delay,
)
from controllers.client_controller.resize_controller import ResizeController, cells_for_viewport
from controllers.client_controller.terminal_client import TerminalClient, TerminalRenderer

__all__ = [
    "MAX_RECONNECT_ATTEMPTS",
    "ConnectionManager",
    "ConnectionObserver",
    "ConnectionState",
    "ConnectionStatus",
    "ConnectionTarget",
    "ResizeController",
    "TerminalClient",
    "TerminalRenderer",
    "cells_for_viewport",
    "reconnect_delay",
]
