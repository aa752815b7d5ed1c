"""
Terminal PTY Use Case

Provides shell access on the gateway host through a pseudo-terminal.
"""

from use_cases.terminal_pty.pty_supervisor import (
    PTYEvent,
    PTYExit,
    PTYOutput,
    PTYSupervisor,
)
from use_cases.terminal_pty.shell_environment import (
    DEFAULT_COLS,
    DEFAULT_ROWS,
    MIN_TERMINAL_COLS,
    MIN_TERMINAL_ROWS,
    is_valid_geometry,
    prepare_spawn_options,
)

__all__ = [
    "PTYEvent",
    "PTYExit",
    "PTYOutput",
    "PTYSupervisor",
    "DEFAULT_COLS",
    "DEFAULT_ROWS",
    "MIN_TERMINAL_COLS",
    "MIN_TERMINAL_ROWS",
    "is_valid_geometry",
    "prepare_spawn_options",
]
