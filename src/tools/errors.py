"""
Error taxonomy for the terminal gateway.

Each class maps to one failure domain and one handling policy:

    ConfigError     fatal at startup, process exits non-zero
    AdmissionError  capacity reject (close code 1008), no resources allocated
    PTYError        session-fatal unless degraded mode was opted into
    ProtocolError   recoverable, reported as an error message
"""


class GatewayError(Exception):
    """Base class for all gateway errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigError(GatewayError):
    """Bad, missing or insecurely permissioned secret or settings."""


class AdmissionError(GatewayError):
    """Session capacity exceeded."""


class PTYError(GatewayError):
    """The shell process could not be spawned."""

    def __init__(self, message: str, code: str = "PTY_SPAWN_FAILED"):
        self.code = code
        super().__init__(message)


class ProtocolError(GatewayError):
    """Malformed, unknown or mistyped wire message."""
