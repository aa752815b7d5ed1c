import logging
import inspect
from colorlog import ColoredFormatter
import os

__all__ = [
    "log_critical",
    "log_error",
    "log_info",
    "log_warning",
    "log_debug",
    "set_log_level",
    "enable_audit_log",
    "log_connection",
    "log_disconnection",
    "log_server_start",
    "log_server_stop",
]

LOGGER = logging.getLogger("terminal_gateway")

## Allow all messages to be passed to handlers
LOGGER.setLevel(logging.DEBUG)
LOGGER.propagate = False

log_format = ColoredFormatter(
    "%(log_color)s%(asctime)s | %(levelname)s | %(message)s%(reset)s"
)
file_format = logging.Formatter("[%(asctime)s] [%(levelname)s] %(message)s")
level = logging.INFO

## Configure logging stream
stream_handler = logging.StreamHandler()
stream_handler.setLevel(level)
stream_handler.setFormatter(log_format)
stream_handler.set_name("stream_handler")
LOGGER.addHandler(stream_handler)

AUDIT_LOG_NAME = "audit.log"


def enable_audit_log(log_dir: str) -> str:
    """
    Attach the audit file handler, creating the log directory if needed.

    Calling it twice replaces the previous audit handler.
    Returns the path of the audit log file.
    """
    log_dir = os.path.expanduser(log_dir)
    os.makedirs(log_dir, mode=0o700, exist_ok=True)
    audit_path = os.path.join(log_dir, AUDIT_LOG_NAME)

    for handler in list(LOGGER.handlers):
        if handler.name == "audit_handler":
            LOGGER.removeHandler(handler)
            handler.close()

    audit_handler = logging.FileHandler(audit_path, mode="a", encoding="utf-8")
    audit_handler.setLevel(stream_handler.level)
    audit_handler.setFormatter(file_format)
    audit_handler.set_name("audit_handler")
    LOGGER.addHandler(audit_handler)
    return audit_path


def log_critical(message: str) -> None:
    """Log a critical error message."""
    LOGGER.critical(
        f"{inspect.stack()[1].function} | {message}",
        stack_info=True,
        stacklevel=3,
    )


def log_error(message: str) -> None:
    """Log an error message."""
    LOGGER.error(
        f"{inspect.stack()[1].function} | {message}",
        stack_info=True,
        stacklevel=3,
    )


def log_info(message: str) -> None:
    """Log an informational message."""
    LOGGER.info(f"{inspect.stack()[1].function} | {message}")


def log_warning(message: str) -> None:
    """Log a warning message."""
    LOGGER.warning(f"{inspect.stack()[1].function} | {message}")


def log_debug(message: str) -> None:
    """Log a debug message."""
    LOGGER.debug(f"{inspect.stack()[1].function} | {message}")


def set_log_level(level) -> None:
    """Set the logging level on every handler."""
    for handler in LOGGER.handlers:
        handler.setLevel(level)


## Audit trail helpers


def log_connection(remote: str, success: bool) -> None:
    status = "successful" if success else "failed"
    LOGGER.info(f"audit | Connection {status} from {remote}")


def log_disconnection(remote: str, reason: str) -> None:
    LOGGER.info(f"audit | Client {remote} disconnected: {reason}")


def log_server_start(host: str, port: int) -> None:
    LOGGER.info(f"audit | Server started on {host}:{port}")


def log_server_stop(reason: str = "stopped") -> None:
    LOGGER.info(f"audit | Server stopped ({reason})")
