"""Shared fixtures and fakes for all tests."""

import os
from typing import Callable, List, Optional

import pytest

GOOD_TOKEN = "a" * 64


class FakeTask:
    def __init__(self, scheduler: "FakeScheduler", delay: float, callback: Callable[[], None], repeat: bool):
        self._scheduler = scheduler
        self.delay = delay
        self.callback = callback
        self.repeat = repeat
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True
        self._scheduler._discard(self)


class FakeScheduler:
    """Records timers instead of arming them; tests fire them by hand."""

    def __init__(self):
        self.tasks: List[FakeTask] = []

    def call_later(self, delay, callback):
        task = FakeTask(self, delay, callback, repeat=False)
        self.tasks.append(task)
        return task

    def call_every(self, interval, callback):
        task = FakeTask(self, interval, callback, repeat=True)
        self.tasks.append(task)
        return task

    def _discard(self, task):
        if task in self.tasks:
            self.tasks.remove(task)

    def cancel_all(self):
        for task in list(self.tasks):
            task.cancel()

    @property
    def pending(self) -> int:
        return len(self.tasks)

    @property
    def delays(self) -> List[float]:
        return [task.delay for task in self.tasks]

    def fire(self, task: Optional[FakeTask] = None) -> None:
        task = task or self.tasks[0]
        if not task.repeat:
            self._discard(task)
        task.callback()


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class MemorySecretStore:
    path = "<memory>"

    def __init__(self, secret: Optional[str] = None):
        self.secret = secret

    def get(self):
        return self.secret

    def set(self, secret):
        self.secret = secret

    def delete(self):
        existed = self.secret is not None
        self.secret = None
        return existed


@pytest.fixture
def fake_scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def good_token() -> str:
    return GOOD_TOKEN


@pytest.fixture
def token_file(tmp_path, good_token) -> str:
    path = tmp_path / "token"
    path.write_text(good_token + "\n")
    os.chmod(path, 0o600)
    return str(path)


@pytest.fixture
def mock_env_clear(monkeypatch: pytest.MonkeyPatch):
    """Clear every gateway-related environment variable."""
    for var in [
        "GATEWAY_HOST",
        "GATEWAY_PORT",
        "GATEWAY_SHELL",
        "GATEWAY_TOKEN_FILE",
        "GATEWAY_CONFIG",
        "ALLOW_NON_PTY_FALLBACK",
    ]:
        monkeypatch.delenv(var, raising=False)
    yield
