"""Process supervisor for the launched target command.

Runs the target with a fully composed environment and behaves, as far as the
caller can tell, like the target itself:

- stdin is copied byte-for-byte to the child; child stdout/stderr are copied
  byte-for-byte to ours
- SIGINT/SIGTERM received by the launcher are relayed to the child; if the
  child is still alive after the grace period it is killed
- the child's exit code becomes the launcher's exit code (1 if it was killed
  by a signal or could not be started)

LIFECYCLE:
    SPAWNING -> RUNNING -> TERMINATING -> EXITED
    SPAWNING -> FAILED        (spawn error, never reaches RUNNING)

Signal handlers are installed from SPAWNING until the child exits and the
previous handlers are restored afterwards. A signal that arrives before the
child exists is relayed as soon as it does.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys
import threading
from collections.abc import Mapping, Sequence
from enum import Enum
from typing import IO, Any

logger = logging.getLogger(__name__)

# Signals relayed to the child
RELAYED_SIGNALS = (signal.SIGINT, signal.SIGTERM)

CHUNK_SIZE = 64 * 1024


class SpawnError(Exception):
    """Target command could not be started."""

    def __init__(self, command: str, message: str):
        self.command = command
        super().__init__(message)


class CommandNotFoundError(SpawnError):
    """Target command does not exist or is not on PATH."""

    def __init__(self, command: str):
        super().__init__(
            command,
            f"Command not found: '{command}'. Check that it is installed and on PATH.",
        )


class SupervisorState(str, Enum):
    """Lifecycle state of a supervised child."""

    SPAWNING = "spawning"
    RUNNING = "running"
    TERMINATING = "terminating"
    EXITED = "exited"
    FAILED = "failed"


def exit_code_for(returncode: int) -> int:
    """Map a Popen returncode to the launcher's exit code.

    Negative return codes mean the child was killed by a signal.
    """
    if returncode < 0:
        return 1
    return returncode


def _fileno(stream: IO[bytes]) -> int | None:
    try:
        return stream.fileno()
    except (AttributeError, OSError, ValueError):
        return None


def _read_chunk(stream: IO[bytes], fd: int | None) -> bytes:
    """Read whatever is available, up to CHUNK_SIZE, without waiting to fill."""
    # A pump blocked in os.read holds no buffered-reader lock at shutdown
    if fd is not None:
        return os.read(fd, CHUNK_SIZE)
    read1 = getattr(stream, "read1", None)
    if read1 is not None:
        return read1(CHUNK_SIZE)
    return stream.read(CHUNK_SIZE)


def _write_all(dest: IO[bytes], fd: int | None, chunk: bytes) -> None:
    # Pipes may accept only part of a write
    view = memoryview(chunk)
    while view:
        if fd is not None:
            written = os.write(fd, view)
        else:
            written = dest.write(view)
            if written is None:
                written = len(view)
        view = view[written:]
    if fd is None:
        dest.flush()


def _copy_stream(source: IO[bytes], dest: IO[bytes], close_dest: bool) -> None:
    """Copy ``source`` to ``dest`` until EOF or a closed pipe."""
    source_fd = _fileno(source)
    dest_fd = _fileno(dest)
    try:
        while True:
            chunk = _read_chunk(source, source_fd)
            if not chunk:
                break
            _write_all(dest, dest_fd, chunk)
    except (OSError, ValueError) as e:
        # Closed pipe on either side ends the copy
        logger.debug(f"Stream copy stopped: {e}")
    finally:
        if close_dest:
            try:
                dest.close()
            except (OSError, ValueError):
                pass


class ProcessSupervisor:
    """Spawn one child, relay its stdio and signals, report its exit code.

    USAGE:
        supervisor = ProcessSupervisor(grace_period=1.0)
        code = supervisor.run("npx", ["some-mcp-server"], env=final_env)
        sys.exit(code)
    """

    def __init__(
        self,
        grace_period: float = 1.0,
        stdin: IO[bytes] | None = None,
        stdout: IO[bytes] | None = None,
        stderr: IO[bytes] | None = None,
        drain_timeout: float = 2.0,
    ):
        """Initialize the supervisor.

        Args:
            grace_period: Seconds between relaying a signal and force-killing.
            stdin: Binary stream forwarded to the child (default: our stdin).
            stdout: Binary stream receiving child stdout (default: our stdout).
            stderr: Binary stream receiving child stderr (default: our stderr).
            drain_timeout: Max seconds to wait for output pumps after exit.
        """
        self.grace_period = grace_period
        self.drain_timeout = drain_timeout
        self._stdin = stdin
        self._stdout = stdout
        self._stderr = stderr

        self.state = SupervisorState.SPAWNING
        self._process: subprocess.Popen | None = None
        self._timers: list[threading.Timer] = []
        self._lock = threading.Lock()
        self._previous_handlers: dict[int, Any] = {}
        self._pending_signals: list[int] = []

    def run(self, command: str, args: Sequence[str], env: Mapping[str, str]) -> int:
        """Run the command to completion and return the exit code to use.

        ``env`` is the child's complete environment.
        """
        self.state = SupervisorState.SPAWNING
        self._pending_signals.clear()
        logger.info(f"Spawning '{command}' with {len(args)} argument(s)")

        # Signals received while spawning are queued and relayed once the child exists
        self._install_signal_handlers()
        try:
            try:
                process = subprocess.Popen(
                    [command, *args],
                    env=dict(env),
                    stdin=subprocess.PIPE,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    bufsize=0,
                )
            except FileNotFoundError as e:
                self.state = SupervisorState.FAILED
                raise CommandNotFoundError(command) from e
            except (OSError, ValueError) as e:
                self.state = SupervisorState.FAILED
                raise SpawnError(command, f"Failed to start '{command}': {e}") from e

            self._process = process
            self.state = SupervisorState.RUNNING
            logger.debug(f"Child started with PID {process.pid}")

            pumps = self._start_pumps(process)
            while self._pending_signals:
                self.relay_signal(self._pending_signals.pop(0))
            returncode = process.wait()
        finally:
            self._restore_signal_handlers()
            self._cancel_timers()

        self.state = SupervisorState.EXITED
        for pump in pumps:
            pump.join(timeout=self.drain_timeout)

        if returncode < 0:
            try:
                name = signal.Signals(-returncode).name
            except ValueError:
                name = str(-returncode)
            logger.warning(f"Process killed by signal {name}")
        else:
            logger.info(f"Process exited with code {returncode}")

        self._process = None
        return exit_code_for(returncode)

    def run_and_exit(self, command: str, args: Sequence[str], env: Mapping[str, str]) -> None:
        """Run the command and terminate this process with its exit code."""
        sys.exit(self.run(command, args, env))

    # --- stdio ---

    def _start_pumps(self, process: subprocess.Popen) -> list[threading.Thread]:
        """Start stdio copy threads. Returns the output pumps to join on exit."""
        stdin = self._stdin if self._stdin is not None else sys.stdin.buffer
        stdout = self._stdout if self._stdout is not None else sys.stdout.buffer
        stderr = self._stderr if self._stderr is not None else sys.stderr.buffer

        # Stdin pump is never joined: it may be blocked reading our stdin
        threading.Thread(
            target=_copy_stream,
            args=(stdin, process.stdin, True),
            name="safe-run-stdin",
            daemon=True,
        ).start()

        output_pumps = [
            threading.Thread(
                target=_copy_stream,
                args=(process.stdout, stdout, False),
                name="safe-run-stdout",
                daemon=True,
            ),
            threading.Thread(
                target=_copy_stream,
                args=(process.stderr, stderr, False),
                name="safe-run-stderr",
                daemon=True,
            ),
        ]
        for pump in output_pumps:
            pump.start()
        return output_pumps

    # --- signals ---

    def _install_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on main thread; signal relay disabled")
            return
        for signum in RELAYED_SIGNALS:
            self._previous_handlers[signum] = signal.signal(signum, self._handle_signal)

    def _restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)
        self._previous_handlers.clear()

    def _handle_signal(self, signum: int, frame: Any) -> None:
        self.relay_signal(signum)

    def relay_signal(self, signum: int) -> None:
        """Forward ``signum`` to the child and arm a force-kill timer.

        While spawning, the signal is queued and relayed after the child starts.
        """
        process = self._process
        if process is None:
            if self.state == SupervisorState.SPAWNING:
                self._pending_signals.append(signum)
            return
        if process.poll() is not None:
            return

        logger.warning(f"{signal.Signals(signum).name} received, terminating child...")
        self.state = SupervisorState.TERMINATING
        try:
            process.send_signal(signum)
        except ProcessLookupError:
            return

        timer = threading.Timer(self.grace_period, self._force_kill, args=(process,))
        timer.daemon = True
        with self._lock:
            self._timers.append(timer)
        timer.start()

    def _force_kill(self, process: subprocess.Popen) -> None:
        if process.poll() is not None:
            return
        logger.warning(
            f"Child did not exit within {self.grace_period}s, killing PID {process.pid}"
        )
        try:
            process.kill()
        except ProcessLookupError:
            pass

    def _cancel_timers(self) -> None:
        with self._lock:
            for timer in self._timers:
                timer.cancel()
            self._timers.clear()
