from tools.logger import *
from tools.wire_protocol import HeartbeatMessage, now_ms
import asyncio

HEARTBEAT_INTERVAL = 30


async def emit_heartbeat(session, interval: float = HEARTBEAT_INTERVAL):
    """
    Emit a heartbeat message to the client at regular intervals.
    Stops as soon as a send fails or the session is closed.
    """
    while True:
        await asyncio.sleep(interval)

        if session.is_closed:
            break

        if not await session.send(HeartbeatMessage(ts=now_ms())):
            log_debug(f"Heartbeat not delivered to {session.remote}, stopping emitter")
            break
