"""
Wire Protocol

JSON messages exchanged over the terminal WebSocket, one object per frame.

    {"type": "input", "data": "ls -la\\n"}           client -> gateway
    {"type": "output", "data": "total 0\\r\\n"}       gateway -> client
    {"type": "resize", "cols": 120, "rows": 40}      client -> gateway
    {"type": "heartbeat", "ts": 1700000000000}       both directions, ts optional
    {"type": "error", "message": "..."}              gateway -> client

Every variant declares exactly the fields it carries. Decoding rejects
unknown types, missing fields, mistyped fields and extra fields.
"""

import json
import time
from dataclasses import dataclass, field
from typing import Optional, Union

from tools.contract_validation import (
    ContractValidationError,
    IntegerType,
    LiteralType,
    OptionalType,
    StringType,
    check_contract,
)
from tools.errors import ProtocolError


@dataclass(frozen=True)
class InputMessage:
    data: str
    type: str = field(default="input", init=False)


@dataclass(frozen=True)
class OutputMessage:
    data: str
    type: str = field(default="output", init=False)


@dataclass(frozen=True)
class ResizeMessage:
    cols: int
    rows: int
    type: str = field(default="resize", init=False)


@dataclass(frozen=True)
class HeartbeatMessage:
    ts: Optional[int] = None
    type: str = field(default="heartbeat", init=False)


@dataclass(frozen=True)
class ErrorMessage:
    message: str
    type: str = field(default="error", init=False)


WireMessage = Union[
    InputMessage, OutputMessage, ResizeMessage, HeartbeatMessage, ErrorMessage
]

MESSAGE_CONTRACTS = {
    "input": {"type": LiteralType("input"), "data": StringType},
    "output": {"type": LiteralType("output"), "data": StringType},
    "resize": {
        "type": LiteralType("resize"),
        "cols": IntegerType,
        "rows": IntegerType,
    },
    "heartbeat": {"type": LiteralType("heartbeat"), "ts": OptionalType(IntegerType)},
    "error": {"type": LiteralType("error"), "message": StringType},
}

MESSAGE_CLASSES = {
    "input": InputMessage,
    "output": OutputMessage,
    "resize": ResizeMessage,
    "heartbeat": HeartbeatMessage,
    "error": ErrorMessage,
}


def now_ms() -> int:
    """Wall-clock timestamp in milliseconds, as carried by heartbeats."""
    return int(time.time() * 1000)


def encode_message(message: WireMessage) -> str:
    """Serialize a message to its JSON text frame."""
    payload = {"type": message.type}
    if isinstance(message, (InputMessage, OutputMessage)):
        payload["data"] = message.data
    elif isinstance(message, ResizeMessage):
        payload["cols"] = message.cols
        payload["rows"] = message.rows
    elif isinstance(message, HeartbeatMessage):
        if message.ts is not None:
            payload["ts"] = message.ts
    elif isinstance(message, ErrorMessage):
        payload["message"] = message.message
    else:
        raise TypeError(f"Not a wire message: {message!r}")
    return json.dumps(payload, ensure_ascii=False)


def decode_message(raw: Union[str, bytes]) -> WireMessage:
    """
    Parse one text frame into a typed message.

    Raises:
        ProtocolError: if the frame is not UTF-8 JSON, has no known ``type``
            or does not match that type's field contract.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"Invalid UTF-8 payload: {e}") from e

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Invalid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise ProtocolError("Invalid message format")

    msg_type = payload.get("type")
    if not isinstance(msg_type, str):
        raise ProtocolError("Invalid message format")

    contract = MESSAGE_CONTRACTS.get(msg_type)
    if contract is None:
        raise ProtocolError(f"Unknown message type: {msg_type}")

    try:
        check_contract(contract, payload)
    except ContractValidationError as e:
        raise ProtocolError(f"Invalid {msg_type} message: {e.message}") from e

    fields = {key: value for key, value in payload.items() if key != "type"}
    return MESSAGE_CLASSES[msg_type](**fields)
