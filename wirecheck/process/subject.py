"""
Process lifecycle management for subjects under test.

This module provides Subject, which spawns a subject executable, keeps its
stdin and stdout open for timed I/O, drains its diagnostic stream in the
background, and kills it at the end of a test case.

A Subject is single-use: NOT_STARTED -> STARTING -> RUNNING -> STOPPED.
STARTING is claimed under the state lock, so only one start() call can spawn.
A stopped subject cannot be restarted; create a new one.
"""

from __future__ import annotations

import enum
import logging
import os
import subprocess
import threading
import time
from typing import BinaryIO, Callable, List, Optional, Sequence

from wirecheck.config import HarnessConfig
from wirecheck.errors import LaunchError, ProcessStopError
from wirecheck.streams.timed_stream import TimedStream

logger = logging.getLogger(__name__)


# Keep only the most recent diagnostic output
DIAGNOSTICS_MAX_BYTES = 64 * 1024

# How long stop() waits for the drain thread after the pipes are closed
DRAIN_JOIN_TIMEOUT_SEC = 0.5


class SubjectState(enum.Enum):
    """Subject lifecycle states."""
    NOT_STARTED = 1
    STARTING = 2
    RUNNING = 3
    STOPPED = 4


class Subject:
    """
    One instance of an external program under test.

    Attributes:
        path: Executable path
        args: Command-line arguments
        name: Short label used in log lines
        stdin: TimedStream over the subject's stdin (None until started)
        stdout: TimedStream over the subject's stdout (None until started, or
                when merge_output folds stdout into the diagnostic stream)
    """

    def __init__(
        self,
        path: str,
        args: Sequence[str] = (),
        config: Optional[HarnessConfig] = None,
        diagnostic_sink: Optional[Callable[[str], None]] = None,
        merge_output: bool = False,
        name: Optional[str] = None,
    ) -> None:
        """
        Initialize subject (does not start it).

        Args:
            path: Path of the executable to run
            args: Arguments passed after the executable
            config: Harness configuration (timeouts, settle delay)
            diagnostic_sink: Optional callback receiving each diagnostic line
            merge_output: Fold stdout into the diagnostic stream instead of
                          keeping it readable (used for client subjects)
            name: Label for logs (default: executable basename)
        """
        self.path = path
        self.args: List[str] = [str(a) for a in args]
        self.config = config or HarnessConfig()
        self.name = name or os.path.basename(path)
        self._diagnostic_sink = diagnostic_sink
        self._merge_output = merge_output

        self._state = SubjectState.NOT_STARTED
        self._state_lock = threading.Lock()

        self._process: Optional[subprocess.Popen] = None
        self.stdin: Optional[TimedStream] = None
        self.stdout: Optional[TimedStream] = None
        self._diag_pipe: Optional[BinaryIO] = None
        self._drain_thread: Optional[threading.Thread] = None

        self._diagnostics = bytearray()
        self._diagnostics_lock = threading.Lock()

    def __repr__(self) -> str:
        return f"Subject({self.name}, state={self._state.name}, pid={self.pid})"

    @property
    def state(self) -> SubjectState:
        with self._state_lock:
            return self._state

    @property
    def is_running(self) -> bool:
        return self.state == SubjectState.RUNNING

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    @property
    def returncode(self) -> Optional[int]:
        """Exit code if the process has exited, else None."""
        if self._process is None:
            return None
        return self._process.poll()

    @property
    def command(self) -> List[str]:
        return [self.path, *self.args]

    @property
    def diagnostics(self) -> bytes:
        """Snapshot of drained diagnostic output (most recent DIAGNOSTICS_MAX_BYTES)."""
        with self._diagnostics_lock:
            return bytes(self._diagnostics)

    def start(self) -> None:
        """
        Spawn the subject and begin draining its diagnostic stream.

        Raises:
            LaunchError: If the subject was already started or fails to spawn
        """
        with self._state_lock:
            if self._state != SubjectState.NOT_STARTED:
                raise LaunchError(f"Cannot start subject {self.name} in state: {self._state.name}")
            self._state = SubjectState.STARTING

        logger.debug("Starting subject", extra={"cmd": self.command})
        try:
            # All pipes stay in blocking mode; timeouts are applied by TimedStream
            self._process = subprocess.Popen(
                self.command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT if self._merge_output else subprocess.PIPE,
                bufsize=0,
            )
        except (OSError, ValueError) as e:
            self._process = None
            with self._state_lock:
                self._state = SubjectState.NOT_STARTED
            raise LaunchError(f"Failed to start {self.name} ({self.path}): {e}") from e

        logger.info(f"Started subject {self.name} PID={self._process.pid}")

        self.stdin = TimedStream(
            self._process.stdin,
            self.config.write_timeout_sec,
            self.config.epsilon_timeout_sec,
            name=f"{self.name}.stdin",
        )
        if self._merge_output:
            self._diag_pipe = self._process.stdout
        else:
            self.stdout = TimedStream(
                self._process.stdout,
                self.config.read_timeout_sec,
                self.config.epsilon_timeout_sec,
                name=f"{self.name}.stdout",
            )
            self._diag_pipe = self._process.stderr

        # Drain immediately so a chatty subject never blocks on a full pipe
        self._drain_thread = threading.Thread(
            target=self._drain_diagnostics,
            args=(self._diag_pipe,),
            daemon=True,
            name=f"SubjectDiagDrain-{self.name}",
        )
        self._drain_thread.start()

        with self._state_lock:
            self._state = SubjectState.RUNNING

    def settle(self) -> None:
        """
        Wait the configured settle delay so the subject can bind or connect.

        This is a heuristic wait, not a readiness guarantee.
        """
        time.sleep(self.config.startup_delay_sec)
        code = self.returncode
        if code is not None:
            logger.warning(f"Subject {self.name} exited during startup (exit code: {code})")

    def stop(self) -> None:
        """
        Forcibly terminate the subject and reap it.

        Raises:
            ProcessStopError: If the subject is not running, or was not reaped
                              within the stop timeout
        """
        with self._state_lock:
            if self._state != SubjectState.RUNNING:
                raise ProcessStopError(f"Attempted to kill subject {self.name} that is not running.")
            self._state = SubjectState.STOPPED

        logger.debug(f"Stopping subject {self.name}...")
        process = self._process
        try:
            process.kill()
        except OSError as e:
            raise ProcessStopError(f"Failed to kill {self.name}: {e}") from e

        try:
            process.wait(timeout=self.config.stop_timeout_sec)
        except subprocess.TimeoutExpired as e:
            raise ProcessStopError(
                f"Subject {self.name} PID={process.pid} was not reaped within "
                f"{self.config.stop_timeout_sec:.1f}s"
            ) from e
        finally:
            self._close_pipes()

        if self._drain_thread is not None and self._drain_thread.is_alive():
            self._drain_thread.join(timeout=DRAIN_JOIN_TIMEOUT_SEC)
            if self._drain_thread.is_alive():
                logger.warning(f"Diagnostic drain thread for {self.name} did not terminate within timeout")
        self._drain_thread = None

        logger.debug(f"Subject {self.name} stopped (exit code: {process.returncode})")

    def _close_pipes(self) -> None:
        if self.stdin is not None:
            self.stdin.close()
        if self.stdout is not None:
            self.stdout.close()
        if self._diag_pipe is not None:
            try:
                self._diag_pipe.close()
            except OSError:
                pass

    def _drain_diagnostics(self, pipe: BinaryIO) -> None:
        """
        Forward the subject's diagnostic stream line by line until it closes.

        Runs on a daemon thread started by start().
        """
        try:
            while True:
                try:
                    line = pipe.readline()
                except (OSError, ValueError) as e:
                    # Pipe closed underneath us during stop()
                    logger.debug(f"Diagnostic read for {self.name} ended: {e}")
                    break
                if not line:
                    break

                with self._diagnostics_lock:
                    self._diagnostics.extend(line)
                    excess = len(self._diagnostics) - DIAGNOSTICS_MAX_BYTES
                    if excess > 0:
                        del self._diagnostics[:excess]

                text = line.decode(errors="replace").rstrip("\n")
                logger.debug(f"[SUBJECT {self.name}] {text}")
                if self._diagnostic_sink is not None:
                    try:
                        self._diagnostic_sink(text)
                    except Exception as e:
                        logger.warning(f"Diagnostic sink raised: {e}")
        finally:
            logger.debug(f"Diagnostic drain for {self.name} exiting")
