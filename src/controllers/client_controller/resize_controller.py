"""
Resize coordination for the client.

Viewport changes are debounced before a resize is sent. Because some shells
miss the window-size signal while they are busy, the last geometry is sent
again a little after any input that contains a newline, and shortly after the
stream sanitizer reports that the terminal mode needed recovering.
"""

from typing import Callable, Optional, Tuple

from tools.logger import log_debug
from tools.scheduler import ScheduledTask, TaskScheduler

RESIZE_DEBOUNCE_SECONDS = 0.12
NEWLINE_RESEND_DELAY_SECONDS = 0.3
REDRAW_RESEND_DELAY_SECONDS = 0.15


def cells_for_viewport(width: float, height: float, cell_width: float, cell_height: float) -> Tuple[int, int]:
    """Convert a pixel viewport into (cols, rows), at least one of each."""
    if cell_width <= 0 or cell_height <= 0:
        raise ValueError("Cell dimensions must be positive")
    cols = max(1, int(width // cell_width))
    rows = max(1, int(height // cell_height))
    return cols, rows


class ResizeController:
    def __init__(self, send_resize: Callable[[int, int], bool], scheduler: Optional[TaskScheduler] = None):
        self._send_resize = send_resize
        self.scheduler = scheduler or TaskScheduler()
        self.pending: Optional[Tuple[int, int]] = None
        self.last_geometry: Optional[Tuple[int, int]] = None
        self._debounce: Optional[ScheduledTask] = None
        self._resend: Optional[ScheduledTask] = None

    def update_viewport(self, cols: int, rows: int) -> None:
        """Record a new geometry and (re)start the debounce window."""
        self.pending = (cols, rows)
        if self._debounce is not None:
            self._debounce.cancel()
        self._debounce = self.scheduler.call_later(RESIZE_DEBOUNCE_SECONDS, self.flush)

    def update_viewport_pixels(self, width: float, height: float, cell_width: float, cell_height: float) -> None:
        self.update_viewport(*cells_for_viewport(width, height, cell_width, cell_height))

    def flush(self) -> None:
        """Send the pending geometry now, if any."""
        if self._debounce is not None:
            self._debounce.cancel()
            self._debounce = None
        if self.pending is None:
            return
        self.last_geometry = self.pending
        self.pending = None
        self._send(self.last_geometry)

    def send_now(self) -> None:
        """Send whatever geometry is known, used right after (re)connecting."""
        if self.pending is not None:
            self.flush()
        elif self.last_geometry is not None:
            self._send(self.last_geometry)

    def note_input(self, data: str) -> None:
        if "\n" in data or "\r" in data:
            self._schedule_resend(NEWLINE_RESEND_DELAY_SECONDS)

    def request_redraw(self) -> None:
        self._schedule_resend(REDRAW_RESEND_DELAY_SECONDS)

    def cancel(self) -> None:
        self.scheduler.cancel_all()
        self._debounce = None
        self._resend = None

    def _schedule_resend(self, delay: float) -> None:
        if self.last_geometry is None:
            return
        if self._resend is not None:
            self._resend.cancel()
        self._resend = self.scheduler.call_later(delay, self._resend_last)

    def _resend_last(self) -> None:
        self._resend = None
        if self.last_geometry is not None:
            self._send(self.last_geometry)

    def _send(self, geometry: Tuple[int, int]) -> None:
        cols, rows = geometry
        if not self._send_resize(cols, rows):
            log_debug(f"Resize {cols}x{rows} not sent, not connected")
