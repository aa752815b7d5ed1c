"""
Admission Use Case

Hard concurrency limit on terminal sessions: one physical shell, one
remote operator.
"""

from tools.errors import AdmissionError
from tools.logger import log_debug

MAX_SESSIONS = 1

# WebSocket close code for a policy violation
POLICY_VIOLATION = 1008


class AdmissionController:
    """In-memory session counter shared by every upgrade request."""

    def __init__(self, max_sessions: int = MAX_SESSIONS):
        self.max_sessions = max_sessions
        self._active = 0

    def acquire(self) -> None:
        """
        Claim a session slot.

        Raises:
            AdmissionError: if every slot is already taken.
        """
        if self._active >= self.max_sessions:
            raise AdmissionError("Maximum connections reached")
        self._active += 1
        log_debug(f"Session slot acquired ({self._active}/{self.max_sessions})")

    def release(self) -> None:
        if self._active > 0:
            self._active -= 1
        log_debug(f"Session slot released ({self._active}/{self.max_sessions})")

    @property
    def active(self) -> int:
        return self._active


__all__ = ["AdmissionController", "MAX_SESSIONS", "POLICY_VIOLATION"]
