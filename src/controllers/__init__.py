from .gateway_controller import TerminalGateway
from .client_controller import ConnectionTarget
from .client_controller.local_terminal import run_local_terminal
from tools.config import GatewayConfig
from tools.logger import *
from tools.secret_store import FileSecretStore
from use_cases.auth import TokenProvider
import asyncio
import os
import signal

FORCE_EXIT_TIMEOUT = 10


async def main_gateway_task(config: GatewayConfig) -> int:
    """
    Run the gateway until SIGINT/SIGTERM or an unhandled loop error.

    Returns the process exit code: 0 for a signal-driven shutdown, 1 when
    shutdown was triggered by a fault. If graceful shutdown takes longer than
    FORCE_EXIT_TIMEOUT seconds the process is terminated.
    """
    loop = asyncio.get_running_loop()
    enable_audit_log(config.log_dir)

    gateway = TerminalGateway(config, TokenProvider(FileSecretStore(config.token_file)))
    stop_event = asyncio.Event()
    exit_code = 0
    force_exit_handle = None

    def request_stop(reason: str, code: int):
        nonlocal exit_code, force_exit_handle
        if stop_event.is_set():
            return
        exit_code = code
        log_warning(f"Stopping gateway: {reason}")
        force_exit_handle = loop.call_later(FORCE_EXIT_TIMEOUT, _force_exit)
        stop_event.set()

    def _force_exit():
        log_critical(f"Graceful shutdown did not finish within {FORCE_EXIT_TIMEOUT}s, forcing exit")
        os._exit(1)

    def handle_exception(loop, context):
        message = context.get("exception") or context.get("message")
        log_critical(f"Unhandled error in event loop: {message}")
        request_stop("unhandled error", 1)

    previous_handler = loop.get_exception_handler()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, request_stop, signal.Signals(sig).name, 0)
    loop.set_exception_handler(handle_exception)

    try:
        await gateway.start()
        await stop_event.wait()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        await gateway.shutdown("signal" if exit_code == 0 else "fault")
        if force_exit_handle is not None:
            force_exit_handle.cancel()
        loop.set_exception_handler(previous_handler)

    return exit_code


async def main_client_task(host: str, port: int, token: str) -> int:
    """Open an interactive terminal on a remote gateway."""
    return await run_local_terminal(ConnectionTarget(host, port, token))
