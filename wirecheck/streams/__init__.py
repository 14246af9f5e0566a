"""
Timed I/O boundary for wirecheck.

This package provides bounded-time reads and writes that work the same way
over sockets (native deadlines) and process pipes (raced against a timer).
"""

from wirecheck.streams.timed_stream import (
    IOOutcome,
    IOResult,
    TimedStream,
    bounded_read,
    bounded_write,
    read_message,
    write_message,
)

__all__ = [
    "IOOutcome",
    "IOResult",
    "TimedStream",
    "bounded_read",
    "bounded_write",
    "read_message",
    "write_message",
]
