"""
PTY Supervisor

Spawns and owns one shell process attached to a pseudo-terminal and exposes
its output as an async event stream.
"""

import asyncio
import codecs
import fcntl
import os
import pty
import signal
import struct
import termios
from dataclasses import dataclass
from typing import AsyncIterator, Mapping, Optional, Union

import psutil

from tools.errors import PTYError
from tools.logger import log_debug, log_error, log_info, log_warning
from use_cases.terminal_pty.shell_environment import (
    DEFAULT_COLS,
    DEFAULT_ROWS,
    SpawnOptions,
    is_valid_geometry,
    prepare_spawn_options,
)

READ_CHUNK_SIZE = 65536
REAP_POLL_INTERVAL = 0.05


@dataclass(frozen=True)
class PTYOutput:
    data: str


@dataclass(frozen=True)
class PTYExit:
    exit_code: Optional[int]
    signal: Optional[int]

    def describe(self) -> str:
        text = f"Process exited with code {self.exit_code}"
        if self.signal:
            try:
                name = signal.Signals(self.signal).name
            except ValueError:
                name = str(self.signal)
            text += f" (signal: {name})"
        return text


PTYEvent = Union[PTYOutput, PTYExit]


def _set_window_size(fd: int, cols: int, rows: int) -> None:
    winsize = struct.pack("HHHH", rows, cols, 0, 0)
    fcntl.ioctl(fd, termios.TIOCSWINSZ, winsize)


def _exit_from_status(status: int) -> PTYExit:
    if os.WIFSIGNALED(status):
        return PTYExit(exit_code=None, signal=os.WTERMSIG(status))
    return PTYExit(exit_code=os.WEXITSTATUS(status), signal=None)


class PTYSupervisor:
    """
    Owns a single shell process.

    The shell runs on a real pseudo-terminal. Only when ``allow_fallback`` is
    set explicitly does a PTY allocation failure degrade to a plain child
    process with pipes, in which case resize becomes a no-op.

    Output and the final exit are delivered through ``events()``; the
    supervisor never restarts the shell.
    """

    def __init__(
        self,
        shell: Optional[str],
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, Optional[str]]] = None,
        cols: int = DEFAULT_COLS,
        rows: int = DEFAULT_ROWS,
        allow_fallback: bool = False,
    ):
        self.shell = shell
        self.cwd = cwd
        self.env = env
        self.cols = cols
        self.rows = rows
        self.allow_fallback = allow_fallback

        self.pid: Optional[int] = None
        self.resolved_shell: Optional[str] = None
        self.degraded = False

        self._master_fd: Optional[int] = None
        self._process: Optional[asyncio.subprocess.Process] = None
        self._events: asyncio.Queue = asyncio.Queue()
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._write_buffer = bytearray()
        self._writer_registered = False
        self._reap_task: Optional[asyncio.Task] = None
        self._pump_task: Optional[asyncio.Task] = None
        self._started = False
        self._exited = False
        self._killed = False

    async def start(self) -> None:
        """
        Spawn the shell.

        Raises:
            PTYError: if the shell cannot be resolved, or PTY allocation fails
                without the fallback opt-in.
        """
        if self._started:
            raise PTYError("PTY supervisor already started")
        self._started = True

        options = prepare_spawn_options(self.shell, self.cwd, self.env, self.cols, self.rows)
        self.resolved_shell = options.shell

        try:
            self._spawn_pty(options)
        except OSError as e:
            details = (
                f"PTY spawn failed ({e}) shell={options.shell} "
                f"cwd={options.cwd} PATH={options.env.get('PATH')}"
            )
            if not self.allow_fallback:
                raise PTYError(details) from e
            log_warning(f"{details}; falling back to plain child process mode")
            await self._spawn_fallback(options)

    def _spawn_pty(self, options: SpawnOptions) -> None:
        pid, master_fd = pty.fork()
        if pid == 0:
            # Child: fd 0-2 are the PTY slave and it is our controlling terminal
            try:
                _set_window_size(0, options.cols, options.rows)
                os.chdir(options.cwd)
                os.execve(options.shell, [options.shell], options.env)
            except Exception as e:
                os.write(2, f"Failed to start {options.shell}: {e}\r\n".encode())
            finally:
                os._exit(127)

        self.pid = pid
        self._master_fd = master_fd
        try:
            _set_window_size(master_fd, options.cols, options.rows)
        except OSError as e:
            log_debug(f"Initial window size not applied: {e}")
        os.set_blocking(master_fd, False)
        asyncio.get_running_loop().add_reader(master_fd, self._on_readable)
        log_info(
            f"PTY session started (pid {pid}, shell {options.shell}, "
            f"{options.cols}x{options.rows}, cwd {options.cwd})"
        )

    async def _spawn_fallback(self, options: SpawnOptions) -> None:
        try:
            self._process = await asyncio.create_subprocess_exec(
                options.shell,
                "-il",
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=options.cwd,
                env=options.env,
                start_new_session=True,
            )
        except OSError as e:
            raise PTYError(f"Fallback spawn failed ({e}) shell={options.shell}") from e

        self.degraded = True
        self.pid = self._process.pid
        self._pump_task = asyncio.create_task(self._pump_fallback_output())
        log_warning(f"Shell running without a PTY (pid {self.pid}); resize is disabled")

    ## Output

    def _on_readable(self) -> None:
        try:
            data = os.read(self._master_fd, READ_CHUNK_SIZE)
        except BlockingIOError:
            return
        except OSError:
            # EIO once the slave side has no more writers
            data = b""

        if not data:
            self._on_eof()
            return

        text = self._decoder.decode(data)
        if text:
            self._events.put_nowait(PTYOutput(text))

    def _on_eof(self) -> None:
        log_debug(f"PTY EOF for pid {self.pid}")
        self._detach_fd()
        tail = self._decoder.decode(b"", final=True)
        if tail:
            self._events.put_nowait(PTYOutput(tail))
        self._ensure_reaper()

    async def _pump_fallback_output(self) -> None:
        try:
            while True:
                chunk = await self._process.stdout.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                text = self._decoder.decode(chunk)
                if text:
                    self._events.put_nowait(PTYOutput(text))
            tail = self._decoder.decode(b"", final=True)
            if tail:
                self._events.put_nowait(PTYOutput(tail))
            returncode = await self._process.wait()
        except asyncio.CancelledError:
            return
        except Exception as e:
            log_error(f"Fallback output pump failed: {e}")
            returncode = None

        if returncode is not None and returncode < 0:
            self._publish_exit(PTYExit(exit_code=None, signal=-returncode))
        else:
            self._publish_exit(PTYExit(exit_code=returncode, signal=None))

    def _ensure_reaper(self) -> None:
        if self._reap_task is None and self.pid is not None and not self.degraded:
            self._reap_task = asyncio.get_running_loop().create_task(self._reap())

    async def _reap(self) -> None:
        while True:
            try:
                pid, status = os.waitpid(self.pid, os.WNOHANG)
            except ChildProcessError:
                self._publish_exit(PTYExit(exit_code=None, signal=None))
                return
            if pid != 0:
                self._publish_exit(_exit_from_status(status))
                return
            await asyncio.sleep(REAP_POLL_INTERVAL)

    def _publish_exit(self, event: PTYExit) -> None:
        if self._exited:
            return
        self._exited = True
        log_info(f"Shell pid {self.pid} ended: {event.describe()}")
        self._events.put_nowait(event)

    async def events(self) -> AsyncIterator[PTYEvent]:
        """Yield output events until, and including, the exit event."""
        while True:
            event = await self._events.get()
            yield event
            if isinstance(event, PTYExit):
                return

    ## Input and control

    def write(self, data: str) -> None:
        """Forward input verbatim. Never blocks; unsent bytes are queued."""
        if not data or self._killed:
            return

        payload = data.encode("utf-8")
        if self._process is not None:
            if self._process.stdin is not None and not self._process.stdin.is_closing():
                self._process.stdin.write(payload)
            return

        if self._master_fd is None:
            log_debug("Input dropped, PTY is closed")
            return

        self._write_buffer.extend(payload)
        self._flush_writes()

    def _flush_writes(self) -> None:
        while self._write_buffer and self._master_fd is not None:
            try:
                written = os.write(self._master_fd, self._write_buffer)
            except BlockingIOError:
                break
            except OSError as e:
                log_error(f"Error writing to PTY: {e}")
                self._write_buffer.clear()
                break
            del self._write_buffer[:written]

        loop = asyncio.get_running_loop()
        if self._write_buffer and not self._writer_registered and self._master_fd is not None:
            loop.add_writer(self._master_fd, self._flush_writes)
            self._writer_registered = True
        elif not self._write_buffer and self._writer_registered:
            loop.remove_writer(self._master_fd)
            self._writer_registered = False

    def resize(self, cols, rows) -> bool:
        """
        Apply a new geometry. Returns False when ignored.

        Requests below the 30x10 floor, and every request in fallback mode,
        are silently ignored.
        """
        if not is_valid_geometry(cols, rows):
            log_debug(f"Ignoring resize to {cols}x{rows} (below minimum)")
            return False

        if self.degraded or self._master_fd is None:
            return False

        try:
            _set_window_size(self._master_fd, cols, rows)
        except OSError as e:
            log_warning(f"Failed to resize PTY: {e}")
            return False

        self.cols = cols
        self.rows = rows
        log_debug(f"Resized PTY {self.pid} to {cols}x{rows}")
        return True

    def get_window_size(self):
        """Return (cols, rows) as reported by the kernel, or the last applied size."""
        if self._master_fd is None:
            return self.cols, self.rows
        packed = fcntl.ioctl(self._master_fd, termios.TIOCGWINSZ, struct.pack("HHHH", 0, 0, 0, 0))
        rows, cols, _, _ = struct.unpack("HHHH", packed)
        return cols, rows

    def kill(self) -> None:
        """
        Terminate the shell and everything it started.

        Best effort: failures are logged, never raised, and descriptor
        cleanup always happens.
        """
        if self._killed:
            return
        self._killed = True

        try:
            if self.pid is not None and not self._exited:
                root = psutil.Process(self.pid)
                victims = root.children(recursive=True) + [root]
                for proc in victims:
                    try:
                        proc.kill()
                    except psutil.NoSuchProcess:
                        continue
                log_info(f"Killed shell pid {self.pid} ({len(victims)} process(es))")
        except psutil.NoSuchProcess:
            log_debug(f"Shell pid {self.pid} already gone")
        except (psutil.Error, OSError) as e:
            log_error(f"Error killing PTY process: {e}")
        finally:
            self._detach_fd()
            if self._process is not None and self._process.stdin is not None:
                self._process.stdin.close()
            try:
                self._ensure_reaper()
            except RuntimeError as e:
                log_debug(f"No running loop to reap pid {self.pid}: {e}")

    def _detach_fd(self) -> None:
        if self._master_fd is None:
            return
        fd = self._master_fd
        self._master_fd = None
        self._write_buffer.clear()
        try:
            loop = asyncio.get_running_loop()
            loop.remove_reader(fd)
            if self._writer_registered:
                loop.remove_writer(fd)
        except RuntimeError as e:
            log_debug(f"Event loop gone while detaching PTY descriptor: {e}")
        self._writer_registered = False
        try:
            os.close(fd)
        except OSError as e:
            log_debug(f"Error closing PTY descriptor: {e}")

    @property
    def is_running(self) -> bool:
        return self._started and not self._exited and not self._killed
