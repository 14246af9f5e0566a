"""
Bounded-time reads and writes over sockets and process pipes.

The subjects under test never close their connections to say "that was
everything", so a read cannot wait for end-of-stream. Instead every operation
is bounded by a timeout, and running out of time is reported as an ordinary
outcome (IOOutcome.TIMED_OUT) rather than an error. Whether the bytes gathered
before the timeout are correct is decided later by the verifier.

Two strategies sit behind one TimedStream type, picked once by checking what
the wrapped object can do:

- Deadline strategy (sockets): the socket timeout is set slightly short of the
  requested timeout, then recv()/send() is called directly.
- Race strategy (pipes and other file objects): the blocking call runs on a
  daemon thread and the caller waits on its result for the timeout. If time
  runs out the call is abandoned, not cancelled. The abandoned call stays
  attached to the TimedStream: the next operation in the same direction waits
  on it first, so late bytes are handed to the next read and two writes never
  overlap on one pipe.
"""

from __future__ import annotations

import enum
import logging
import queue
import socket
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

from wirecheck.errors import StreamError

logger = logging.getLogger(__name__)


# Chunk size for accumulating reads
DEFAULT_CHUNK_SIZE = 2048

# Deadlines are set this much short of the timeout so the socket deadline
# fires before any external timer racing it
DEFAULT_EPSILON_SEC = 0.003

# Smallest deadline handed to settimeout(); 0 would switch the socket to non-blocking
MIN_DEADLINE_SEC = 0.001


class IOOutcome(enum.Enum):
    """Result of a single bounded read or write attempt."""
    COMPLETE = 1
    END_OF_STREAM = 2
    TIMED_OUT = 3
    ERROR = 4


@dataclass(frozen=True)
class IOResult:
    """
    Outcome of one bounded operation.

    Attributes:
        outcome: What happened
        data: Bytes read (reads only)
        written: Bytes written (writes only)
        error: Underlying exception when outcome is ERROR
    """
    outcome: IOOutcome
    data: bytes = b""
    written: int = 0
    error: Optional[BaseException] = None


def supports_deadline(stream: Any) -> bool:
    """Return True if the stream accepts a native per-operation timeout (e.g. a socket)."""
    return callable(getattr(stream, "settimeout", None))


class _BackgroundCall:
    """A single blocking call running on its own daemon thread."""

    def __init__(self, fn: Callable[[], Any], name: str) -> None:
        self._result: "queue.Queue[tuple]" = queue.Queue(maxsize=1)
        self._thread = threading.Thread(target=self._run, args=(fn,), daemon=True, name=name)
        self._thread.start()

    def _run(self, fn: Callable[[], Any]) -> None:
        try:
            value = fn()
        except Exception as e:
            self._result.put((None, e))
            return
        self._result.put((value, None))

    def wait(self, timeout: float) -> Optional[tuple]:
        """Return (value, error) if the call finished within timeout, else None."""
        try:
            return self._result.get(timeout=timeout)
        except queue.Empty:
            return None


class TimedStream:
    """
    A byte stream paired with a timeout.

    Each bounded_read()/bounded_write() returns exactly one IOResult; a timeout
    is never confused with end-of-stream.

    Attributes:
        stream: Wrapped socket or binary file object
        timeout_sec: Per-operation timeout
        deadline_capable: True if the deadline strategy is in use
    """

    def __init__(
        self,
        stream: Any,
        timeout_sec: float,
        epsilon_sec: float = DEFAULT_EPSILON_SEC,
        name: Optional[str] = None,
    ) -> None:
        if timeout_sec <= 0:
            raise ValueError(f"Invalid timeout: {timeout_sec} (must be > 0)")
        self.stream = stream
        self.timeout_sec = timeout_sec
        self.epsilon_sec = epsilon_sec
        self.name = name or type(stream).__name__
        self.deadline_capable = supports_deadline(stream)

        self._pending_read: Optional[_BackgroundCall] = None
        self._pending_write: Optional[_BackgroundCall] = None

    def __repr__(self) -> str:
        strategy = "deadline" if self.deadline_capable else "race"
        return f"TimedStream({self.name}, timeout={self.timeout_sec}s, {strategy})"

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def bounded_read(self, size: int = DEFAULT_CHUNK_SIZE) -> IOResult:
        """
        Read up to size bytes, waiting no longer than the timeout.

        Returns:
            IOResult with COMPLETE and data, END_OF_STREAM, TIMED_OUT, or ERROR
        """
        if self.deadline_capable:
            return self._deadline_read(size)
        return self._race_read(size)

    def _deadline_read(self, size: int) -> IOResult:
        try:
            self.stream.settimeout(self._deadline())
            data = self.stream.recv(size)
        except socket.timeout:
            return IOResult(IOOutcome.TIMED_OUT)
        except (OSError, ValueError) as e:
            return IOResult(IOOutcome.ERROR, error=e)
        if not data:
            return IOResult(IOOutcome.END_OF_STREAM)
        return IOResult(IOOutcome.COMPLETE, data=data)

    def _race_read(self, size: int) -> IOResult:
        call = self._pending_read
        if call is None:
            reader = getattr(self.stream, "read1", None) or self.stream.read
            call = _BackgroundCall(lambda: reader(size), name=f"TimedRead-{self.name}")

        result = call.wait(self.timeout_sec)
        if result is None:
            # Abandoned: the read keeps blocking in the background
            self._pending_read = call
            return IOResult(IOOutcome.TIMED_OUT)

        self._pending_read = None
        data, error = result
        if error is not None:
            return IOResult(IOOutcome.ERROR, error=error)
        if not data:
            return IOResult(IOOutcome.END_OF_STREAM)
        return IOResult(IOOutcome.COMPLETE, data=bytes(data))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def bounded_write(self, data: bytes) -> IOResult:
        """
        Write data, waiting no longer than the timeout.

        A COMPLETE result may report fewer bytes written than len(data);
        callers loop (see write_message()).

        Returns:
            IOResult with COMPLETE and written, TIMED_OUT, or ERROR
        """
        if self.deadline_capable:
            return self._deadline_write(data)
        return self._race_write(data)

    def _deadline_write(self, data: bytes) -> IOResult:
        try:
            self.stream.settimeout(self._deadline())
            written = self.stream.send(data)
        except socket.timeout:
            return IOResult(IOOutcome.TIMED_OUT)
        except (OSError, ValueError) as e:
            return IOResult(IOOutcome.ERROR, error=e)
        return IOResult(IOOutcome.COMPLETE, written=written)

    def _race_write(self, data: bytes) -> IOResult:
        if self._pending_write is not None:
            previous = self._pending_write.wait(self.timeout_sec)
            if previous is None:
                return IOResult(IOOutcome.TIMED_OUT)
            self._pending_write = None
            _, error = previous
            if error is not None:
                return IOResult(IOOutcome.ERROR, error=error)

        call = _BackgroundCall(lambda: self._write_through(data), name=f"TimedWrite-{self.name}")
        result = call.wait(self.timeout_sec)
        if result is None:
            self._pending_write = call
            return IOResult(IOOutcome.TIMED_OUT)

        written, error = result
        if error is not None:
            return IOResult(IOOutcome.ERROR, error=error)
        return IOResult(IOOutcome.COMPLETE, written=written)

    def _write_through(self, data: bytes) -> int:
        written = self.stream.write(data)
        flush = getattr(self.stream, "flush", None)
        if flush is not None:
            flush()
        # Buffered writers return None on some platforms; they take everything
        return len(data) if written is None else written

    # ------------------------------------------------------------------

    def _deadline(self) -> float:
        return max(self.timeout_sec - self.epsilon_sec, MIN_DEADLINE_SEC)

    def close(self) -> None:
        """Close the wrapped stream. Abandoned background calls are left to die with it."""
        try:
            self.stream.close()
        except OSError as e:
            logger.debug(f"Error closing {self.name}: {e}")


def bounded_read(stream: Any, timeout_sec: float, size: int = DEFAULT_CHUNK_SIZE) -> IOResult:
    """One-shot bounded read on a raw stream."""
    return TimedStream(stream, timeout_sec).bounded_read(size)


def bounded_write(stream: Any, data: bytes, timeout_sec: float) -> IOResult:
    """One-shot bounded write on a raw stream."""
    return TimedStream(stream, timeout_sec).bounded_write(data)


def read_message(timed: TimedStream, chunk_size: int = DEFAULT_CHUNK_SIZE) -> bytes:
    """
    Read everything that arrives until the stream goes quiet or ends.

    Each chunk gets the full timeout, so a steady trickle of output is read to
    the end; the first window with no data stops the read.

    Args:
        timed: Stream to read from
        chunk_size: Maximum bytes per read attempt

    Returns:
        All bytes read

    Raises:
        StreamError: On any failure other than timeout or end-of-stream
    """
    logger.debug(f"Reading message from {timed!r}")
    response = bytearray()
    while True:
        result = timed.bounded_read(chunk_size)
        response.extend(result.data)

        if result.outcome == IOOutcome.COMPLETE:
            continue
        if result.outcome == IOOutcome.END_OF_STREAM:
            logger.debug(f"Read got end of stream after {len(response)} bytes")
            break
        if result.outcome == IOOutcome.TIMED_OUT:
            logger.debug(f"Read went quiet after {len(response)} bytes")
            break
        raise StreamError(f"Failed to read output: {result.error}", partial=bytes(response))
    return bytes(response)


def write_message(timed: TimedStream, data: bytes) -> int:
    """
    Write all of data, stopping early (without error) if a write times out.

    Args:
        timed: Stream to write to
        data: Payload

    Returns:
        Number of bytes confirmed written

    Raises:
        StreamError: On any failure other than timeout
    """
    logger.debug(f"Writing message ({len(data)} bytes) to {timed!r}")
    view = memoryview(data)
    written = 0
    while written < len(data):
        result = timed.bounded_write(bytes(view[written:]))
        if result.outcome == IOOutcome.TIMED_OUT:
            logger.debug(f"Write timed out after {written} of {len(data)} bytes")
            break
        if result.outcome == IOOutcome.ERROR:
            raise StreamError(f"Failed to write: {result.error}", partial=bytes(view[:written]))
        written += result.written
    return written
