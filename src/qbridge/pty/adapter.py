"""Process adapters — one contract over a pseudo-terminal or plain pipes.

Both backends hand the exact bytes the child produced to ``on_data`` and
report termination exactly once through ``on_exit``. ``kill`` only sends a
signal; the later ``on_exit`` is the authoritative end of the process.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import os
import signal
import struct
import subprocess
import sys
from abc import ABC, abstractmethod
from typing import Callable, ClassVar

from qbridge.pty.environment import EnvironmentSpec

logger = logging.getLogger(__name__)

READ_SIZE = 4096
# How long pipe readers may keep draining once the child has exited.
DRAIN_TIMEOUT = 0.5
EXIT_POLL_INTERVAL = 0.1

DataCallback = Callable[[bytes, bool], None]
ExitCallback = Callable[[int | None, str | None], None]


class Backend(enum.StrEnum):
    """How the child is attached."""

    PTY = "pty"
    PIPE = "pipe"


def pty_supported() -> bool:
    """True when this runtime can open a pseudo-terminal."""
    if sys.platform == "win32":
        return False
    try:
        import fcntl  # noqa: F401
        import pty  # noqa: F401
        import termios  # noqa: F401
    except ImportError:
        return False
    return True


def split_returncode(returncode: int | None) -> tuple[int | None, str | None]:
    """Turn a subprocess return code into ``(exit_code, signal_name)``.

    A negative code ``-N`` means the child died from signal ``N``.
    """
    if returncode is None or returncode >= 0:
        return returncode, None
    try:
        return None, signal.Signals(-returncode).name
    except ValueError:
        return None, f"SIG{-returncode}"


class ProcessAdapter(ABC):
    """A spawned child process plus its output/exit notifications."""

    backend: ClassVar[Backend]

    def __init__(self) -> None:
        self._on_data: DataCallback | None = None
        self._on_exit: ExitCallback | None = None
        self._exited = asyncio.Event()
        self._exit_code: int | None = None
        self._exit_signal: str | None = None

    def set_on_data(self, callback: DataCallback) -> None:
        """Set the callback receiving ``(chunk, is_error)`` per read event."""
        self._on_data = callback

    def set_on_exit(self, callback: ExitCallback) -> None:
        """Set the callback receiving ``(exit_code, signal_name)`` once."""
        self._on_exit = callback

    @abstractmethod
    async def spawn(
        self, executable: str, args: list[str], env_spec: EnvironmentSpec
    ) -> None:
        """Start the child. Raises ``OSError`` if the OS refuses."""

    @abstractmethod
    def write(self, text: str) -> bool:
        """Send a line of input. Returns False instead of raising."""

    @abstractmethod
    def kill(self, sig: int = signal.SIGTERM) -> None:
        """Ask the child to terminate. Does not wait."""

    @property
    @abstractmethod
    def pid(self) -> int | None: ...

    @property
    def exited(self) -> bool:
        return self._exited.is_set()

    @property
    def exit_code(self) -> int | None:
        return self._exit_code

    @property
    def exit_signal(self) -> str | None:
        return self._exit_signal

    async def wait_closed(self, timeout: float | None = None) -> bool:
        """Wait until ``on_exit`` has fired. Returns False on timeout."""
        try:
            await asyncio.wait_for(self._exited.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    def _emit_data(self, chunk: bytes, is_error: bool = False) -> None:
        if self._on_data is None:
            return
        try:
            self._on_data(chunk, is_error)
        except Exception:
            logger.exception("Error in on_data callback (pid=%s)", self.pid)

    def _emit_exit(self, returncode: int | None) -> None:
        if self._exited.is_set():
            return
        self._exit_code, self._exit_signal = split_returncode(returncode)
        self._exited.set()
        logger.info(
            "%s child %s exited (code=%s signal=%s)",
            self.backend.value,
            self.pid,
            self._exit_code,
            self._exit_signal,
        )
        if self._on_exit is None:
            return
        try:
            self._on_exit(self._exit_code, self._exit_signal)
        except Exception:
            logger.exception("Error in on_exit callback (pid=%s)", self.pid)


class PTYAdapter(ProcessAdapter):
    """Child attached to a pseudo-terminal in its own process group.

    Uses subprocess.Popen (not os.fork) to avoid deadlocks when spawned
    from within an asyncio event loop on macOS.
    """

    backend = Backend.PTY

    def __init__(
        self, term: str = "xterm-256color", cols: int = 120, rows: int = 30
    ) -> None:
        super().__init__()
        self.term = term
        self.cols = cols
        self.rows = rows
        self._master_fd: int = -1
        self._proc: subprocess.Popen | None = None
        self._pgid: int = 0
        self._reader_task: asyncio.Task | None = None

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc else None

    async def spawn(
        self, executable: str, args: list[str], env_spec: EnvironmentSpec
    ) -> None:
        import pty

        master_fd, slave_fd = pty.openpty()
        self._set_window_size(slave_fd)

        env = env_spec.to_env({"TERM": self.term, "COLORTERM": "truecolor"})
        try:
            self._proc = subprocess.Popen(
                [executable, *args],
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                start_new_session=True,
                env=env,
                cwd=env_spec.working_directory,
            )
        except OSError:
            os.close(master_fd)
            raise
        finally:
            # Parent always closes slave fd
            os.close(slave_fd)

        self._master_fd = master_fd
        try:
            self._pgid = os.getpgid(self._proc.pid)
        except ProcessLookupError:
            self._pgid = self._proc.pid

        self._reader_task = asyncio.create_task(self._read_loop())
        logger.debug(
            "PTY child started: pid=%d pgid=%d cmd=%s",
            self._proc.pid,
            self._pgid,
            " ".join([executable, *args]),
        )

    def _set_window_size(self, fd: int) -> None:
        import fcntl
        import termios

        try:
            winsize = struct.pack("HHHH", self.rows, self.cols, 0, 0)
            fcntl.ioctl(fd, termios.TIOCSWINSZ, winsize)
        except OSError as e:
            logger.debug("Could not set PTY window size: %s", e)

    async def _read_loop(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            while True:
                try:
                    data = await loop.run_in_executor(
                        None, os.read, self._master_fd, READ_SIZE
                    )
                except OSError:
                    # EIO once the last slave fd is gone
                    break
                if not data:
                    break
                self._emit_data(data)
        finally:
            returncode = None
            if self._proc is not None:
                returncode = await loop.run_in_executor(None, self._proc.wait)
            try:
                os.close(self._master_fd)
            except OSError:
                pass
            self._master_fd = -1
            self._emit_exit(returncode)

    def write(self, text: str) -> bool:
        if self._master_fd < 0 or self.exited:
            return False
        try:
            os.write(self._master_fd, (text.strip() + "\r").encode("utf-8"))
            return True
        except OSError as e:
            logger.debug("PTY write to pid %s failed: %s", self.pid, e)
            return False

    def kill(self, sig: int = signal.SIGTERM) -> None:
        if self._proc is None or self.exited:
            return
        try:
            os.killpg(self._pgid, sig)
            logger.info("Sent %s to PTY child %d (pgid=%d)", sig, self._proc.pid, self._pgid)
        except ProcessLookupError:
            logger.debug("Process group already gone: %d", self._pgid)
        except OSError as e:
            logger.warning("Error signalling PTY child %d: %s", self._proc.pid, e)


class PipeAdapter(ProcessAdapter):
    """Child attached through stdin/stdout/stderr pipes."""

    backend = Backend.PIPE

    def __init__(self) -> None:
        super().__init__()
        self._proc: asyncio.subprocess.Process | None = None
        self._tasks: list[asyncio.Task] = []
        self._waiter: asyncio.Task | None = None

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc else None

    async def spawn(
        self, executable: str, args: list[str], env_spec: EnvironmentSpec
    ) -> None:
        self._proc = await asyncio.create_subprocess_exec(
            executable,
            *args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=env_spec.working_directory,
            env=env_spec.to_env(),
            start_new_session=sys.platform != "win32",
        )
        assert self._proc.stdout is not None and self._proc.stderr is not None
        self._tasks = [
            asyncio.create_task(self._pump(self._proc.stdout, False)),
            asyncio.create_task(self._pump(self._proc.stderr, True)),
        ]
        self._waiter = asyncio.create_task(self._wait())
        logger.debug(
            "Pipe child started: pid=%d cmd=%s",
            self._proc.pid,
            " ".join([executable, *args]),
        )

    async def _pump(self, stream: asyncio.StreamReader, is_error: bool) -> None:
        while True:
            chunk = await stream.read(READ_SIZE)
            if not chunk:
                break
            self._emit_data(chunk, is_error)

    async def _wait(self) -> None:
        # Process.wait() also waits for the pipes to close, which never
        # happens while a grandchild (an MCP server, say) still holds them.
        assert self._proc is not None
        while self._proc.returncode is None:
            await asyncio.sleep(EXIT_POLL_INTERVAL)
        returncode = self._proc.returncode

        _, pending = await asyncio.wait(self._tasks, timeout=DRAIN_TIMEOUT)
        for task in pending:
            task.cancel()
        if pending:
            logger.debug(
                "Pipes of pid %d still held open after exit", self._proc.pid
            )
        self._emit_exit(returncode)

    def write(self, text: str) -> bool:
        if self._proc is None or self.exited:
            return False
        stdin = self._proc.stdin
        if stdin is None or stdin.is_closing():
            return False
        try:
            stdin.write((text + "\n").encode("utf-8"))
            return True
        except (OSError, RuntimeError) as e:
            logger.debug("Pipe write to pid %s failed: %s", self.pid, e)
            return False

    def kill(self, sig: int = signal.SIGTERM) -> None:
        """Signal the child's process group.

        The group outlives the direct child while any descendant is left,
        so this still reaches stragglers after the child itself has exited.
        """
        if self._proc is None:
            return
        try:
            if sys.platform == "win32":
                if self._proc.returncode is not None:
                    return
                self._proc.send_signal(sig)
            else:
                os.killpg(self._proc.pid, sig)
            logger.info("Sent %s to pipe child %d", sig, self._proc.pid)
        except ProcessLookupError:
            logger.debug("Pipe child already gone: %d", self._proc.pid)
        except OSError as e:
            logger.warning("Error signalling pipe child %d: %s", self._proc.pid, e)


def select_backend(preference: str = "auto") -> Backend:
    """Pick the backend once, at session creation."""
    if preference == Backend.PIPE:
        return Backend.PIPE
    if pty_supported():
        return Backend.PTY
    if preference == Backend.PTY:
        logger.warning("PTY backend requested but unavailable, using pipes")
    return Backend.PIPE


def open_adapter(
    preference: str = "auto",
    term: str = "xterm-256color",
    cols: int = 120,
    rows: int = 30,
) -> ProcessAdapter:
    """Create an unspawned adapter for the selected backend."""
    if select_backend(preference) is Backend.PTY:
        return PTYAdapter(term=term, cols=cols, rows=rows)
    return PipeAdapter()
