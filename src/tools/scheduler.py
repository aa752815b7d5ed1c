"""
Cancellable timer handles owned by one component.

A TaskScheduler groups every timer a component starts so they can be
cancelled as a unit on any state exit.
"""

import asyncio
from typing import Callable, Optional, Set

from tools.logger import log_error


class ScheduledTask:
    """Handle for a one-shot or repeating timer."""

    def __init__(self, scheduler: "TaskScheduler", delay: float, callback: Callable[[], None], repeat: bool):
        self._scheduler = scheduler
        self.delay = delay
        self.callback = callback
        self.repeat = repeat
        self._handle: Optional[asyncio.TimerHandle] = None
        self.cancelled = False

    def _arm(self, loop: asyncio.AbstractEventLoop) -> None:
        self._handle = loop.call_later(self.delay, self._fire)

    def _fire(self) -> None:
        if self.cancelled:
            return
        if self.repeat:
            self._arm(asyncio.get_running_loop())
        else:
            self._scheduler._discard(self)
        try:
            self.callback()
        except Exception as e:
            log_error(f"Scheduled callback failed: {e}")

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._scheduler._discard(self)


class TaskScheduler:
    """Timer group backed by the running asyncio loop."""

    def __init__(self):
        self._tasks: Set[ScheduledTask] = set()

    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledTask:
        return self._schedule(delay, callback, repeat=False)

    def call_every(self, interval: float, callback: Callable[[], None]) -> ScheduledTask:
        return self._schedule(interval, callback, repeat=True)

    def _schedule(self, delay: float, callback: Callable[[], None], repeat: bool) -> ScheduledTask:
        task = ScheduledTask(self, delay, callback, repeat)
        self._tasks.add(task)
        task._arm(asyncio.get_running_loop())
        return task

    def _discard(self, task: ScheduledTask) -> None:
        self._tasks.discard(task)

    def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()

    @property
    def pending(self) -> int:
        """Number of timers that have not fired (one-shot) or been cancelled."""
        return len(self._tasks)
