"""
wirecheck: black-box transmission tests for TCP client and server executables.

The harness starts a subject program, links it to a reference peer over TCP,
pushes byte payloads through, and checks byte-for-byte what came out the
other side.
"""

from wirecheck.config import HarnessConfig
from wirecheck.errors import (
    AcceptError,
    CaseSkipped,
    ConnectTimeout,
    DialError,
    HarnessError,
    LaunchError,
    ProcessStopError,
    StreamError,
    VerificationMismatch,
)

__all__ = [
    "HarnessConfig",
    "HarnessError",
    "LaunchError",
    "ConnectTimeout",
    "DialError",
    "AcceptError",
    "StreamError",
    "VerificationMismatch",
    "ProcessStopError",
    "CaseSkipped",
]
