"""Tests for the PTY supervisor against a real /bin/sh."""

import asyncio
import pty
import signal

import pytest

from tools.errors import PTYError
from use_cases.terminal_pty import PTYExit, PTYOutput, PTYSupervisor


async def _collect_until(supervisor, predicate, timeout=5.0):
    output = []

    async def _read():
        async for event in supervisor.events():
            if isinstance(event, PTYOutput):
                output.append(event.data)
                if predicate("".join(output)):
                    return None
            else:
                return event

    exit_event = await asyncio.wait_for(_read(), timeout)
    return "".join(output), exit_event


@pytest.mark.asyncio
async def test_echoes_command_output(tmp_path):
    supervisor = PTYSupervisor("/bin/sh", cwd=str(tmp_path))
    await supervisor.start()
    try:
        assert supervisor.pid is not None
        assert supervisor.is_running
        supervisor.write("echo gateway-$((40 + 2))\n")
        output, _ = await _collect_until(supervisor, lambda text: "gateway-42" in text)
        assert "gateway-42" in output
    finally:
        supervisor.kill()


@pytest.mark.asyncio
async def test_exit_event_carries_code(tmp_path):
    supervisor = PTYSupervisor("/bin/sh", cwd=str(tmp_path))
    await supervisor.start()
    supervisor.write("exit 3\n")

    _, exit_event = await _collect_until(supervisor, lambda text: False)

    assert isinstance(exit_event, PTYExit)
    assert exit_event.exit_code == 3
    assert exit_event.describe() == "Process exited with code 3"
    assert not supervisor.is_running
    supervisor.kill()


@pytest.mark.asyncio
async def test_resize_respects_minimum(tmp_path):
    supervisor = PTYSupervisor("/bin/sh", cwd=str(tmp_path), cols=80, rows=24)
    await supervisor.start()
    try:
        assert supervisor.get_window_size() == (80, 24)

        assert supervisor.resize(20, 5) is False
        assert supervisor.get_window_size() == (80, 24)

        assert supervisor.resize(100, 30) is True
        assert supervisor.get_window_size() == (100, 30)
    finally:
        supervisor.kill()


@pytest.mark.asyncio
async def test_kill_is_idempotent_and_ends_stream(tmp_path):
    supervisor = PTYSupervisor("/bin/sh", cwd=str(tmp_path))
    await supervisor.start()

    supervisor.kill()
    supervisor.kill()

    _, exit_event = await _collect_until(supervisor, lambda text: False)
    assert isinstance(exit_event, PTYExit)
    assert exit_event.signal == signal.SIGKILL
    # Writes after kill are dropped
    supervisor.write("echo nope\n")


@pytest.mark.asyncio
async def test_missing_shell_raises():
    supervisor = PTYSupervisor("/no/such/shell")
    with pytest.raises(PTYError):
        await supervisor.start()


@pytest.mark.asyncio
async def test_start_twice_raises(tmp_path):
    supervisor = PTYSupervisor("/bin/sh", cwd=str(tmp_path))
    await supervisor.start()
    try:
        with pytest.raises(PTYError, match="already started"):
            await supervisor.start()
    finally:
        supervisor.kill()


def _fail_fork():
    raise OSError("out of pty devices")


@pytest.mark.asyncio
async def test_pty_failure_is_fatal_without_opt_in(tmp_path, monkeypatch):
    monkeypatch.setattr(pty, "fork", _fail_fork)
    supervisor = PTYSupervisor("/bin/sh", cwd=str(tmp_path))

    with pytest.raises(PTYError) as excinfo:
        await supervisor.start()

    assert excinfo.value.code == "PTY_SPAWN_FAILED"
    assert not supervisor.degraded
    assert supervisor.pid is None


@pytest.mark.asyncio
async def test_opt_in_fallback_runs_without_pty(tmp_path, monkeypatch):
    monkeypatch.setattr(pty, "fork", _fail_fork)
    supervisor = PTYSupervisor("/bin/sh", cwd=str(tmp_path), allow_fallback=True)
    await supervisor.start()
    try:
        assert supervisor.degraded
        assert supervisor.pid is not None
        assert supervisor.resize(100, 40) is False

        supervisor.write("echo hi-there\nexit 3\n")
        output, exit_event = await _collect_until(supervisor, lambda text: False)

        assert "hi-there" in output
        assert exit_event == PTYExit(exit_code=3, signal=None)
    finally:
        supervisor.kill()
