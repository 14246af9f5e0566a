"""
Error kinds raised by the wirecheck harness.

Every hard case failure is a HarnessError subclass carrying enough detail to
be reported verbatim. A read or write that merely runs out of time is NOT an
error: the timed I/O boundary reports it as IOOutcome.TIMED_OUT and the
verifier decides afterwards whether what arrived was enough.
"""

from __future__ import annotations


class HarnessError(Exception):
    """Base class for all harness failures."""


class LaunchError(HarnessError):
    """The subject executable could not be started."""


class ConnectionEstablishmentError(HarnessError):
    """A TCP link between harness and subject could not be set up."""


class ConnectTimeout(ConnectionEstablishmentError):
    """The subject did not connect to the reference listener in time."""


class DialError(ConnectionEstablishmentError):
    """Dialing the subject's listening port failed."""


class AcceptError(ConnectionEstablishmentError):
    """The reference listener failed while accepting."""


class StreamError(HarnessError):
    """
    I/O failure other than a timeout (reset, broken pipe, closed handle).

    Attributes:
        partial: Bytes successfully transferred before the failure
    """

    def __init__(self, message: str, partial: bytes = b"") -> None:
        super().__init__(message)
        self.partial = partial


class VerificationMismatch(HarnessError):
    """
    Observed bytes differ from the expected bytes.

    Attributes:
        diagnostic: Human-readable report (quoted excerpts, digests, difference)
    """

    def __init__(self, diagnostic: str) -> None:
        super().__init__(diagnostic)
        self.diagnostic = diagnostic


class ProcessStopError(HarnessError):
    """Tearing down the subject failed, or it was not running."""


class CaseSkipped(Exception):
    """Raised by a case body that cannot run (e.g. missing fixture); not a failure."""
