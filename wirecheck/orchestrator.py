"""
Test orchestration: drives subjects through transmission scenarios.

Scenarios:
- single_message_test: write one payload, read the observation channel once,
  compare exactly.
- sequential_multi_connection_test: one fresh connection per payload, opened
  and closed in turn, then one aggregate read.
- concurrent_multi_connection_test: all connections opened and written from
  parallel writer threads; the aggregate read starts only after every writer
  has finished.

Where the observation comes from depends on the role. A server subject is
expected to echo what it receives to its stdout; a client subject is
expected to forward its stdin to the reference listener's socket.

Multi-connection results are compared as multisets of newline-terminated
records, because the order in which a subject services independent
connections is not something the harness controls.

Open limitation: a read that times out cannot tell "slow but correct" from
"hung". Both show up as a short or empty observation and are judged only by
the comparison that follows.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Sequence

from wirecheck.config import HarnessConfig
from wirecheck.errors import (
    CaseSkipped,
    ConnectTimeout,
    HarnessError,
    ProcessStopError,
    StreamError,
    VerificationMismatch,
)
from wirecheck.net.broker import (
    ClientLink,
    Connection,
    ServerLink,
    establish_client_link,
    start_server_subject,
)
from wirecheck.streams.timed_stream import TimedStream, read_message, write_message
from wirecheck.verifier import compare, compare_records

logger = logging.getLogger(__name__)


# Extra time granted to concurrent writers beyond dial + write timeouts
WRITER_JOIN_SLACK_SEC = 1.0


class CaseStatus(enum.Enum):
    PASSED = "pass"
    FAILED = "fail"
    SKIPPED = "skip"


@dataclass
class TestOutcome:
    """
    Result of one named case.

    Attributes:
        name: Case name
        status: Pass, fail, or skip
        diagnostic: Failure or skip detail (empty on pass)
        duration_sec: Wall time spent running the case
    """
    __test__ = False  # not a pytest test class

    name: str
    status: CaseStatus
    diagnostic: str = ""
    duration_sec: float = 0.0

    @property
    def passed(self) -> bool:
        return self.status == CaseStatus.PASSED

    @property
    def failed(self) -> bool:
        return self.status == CaseStatus.FAILED


class TestContext:
    """
    Shared state for all cases run against one kind of subject.

    When the first connectivity check fails, the context is aborted and every
    dependent case fails immediately instead of hanging on a subject that
    cannot connect.
    """
    __test__ = False  # not a pytest test class

    def __init__(self, role: str) -> None:
        self.role = role
        self.reason: Optional[str] = None
        self._aborted = threading.Event()

    @property
    def aborted(self) -> bool:
        return self._aborted.is_set()

    def abort(self, reason: str) -> None:
        if not self.aborted:
            logger.warning(f"Aborting remaining {self.role} cases: {reason}")
        self.reason = reason
        self._aborted.set()


@dataclass
class Channel:
    """
    Where a payload goes in and where it is observed coming out.

    Attributes:
        writer: Stream the harness writes the payload to
        observer: Stream the harness reads the subject's output from
    """
    writer: TimedStream
    observer: TimedStream


def server_channel(link: ServerLink, conn: Connection) -> Channel:
    """Write into a dialed connection; observe the server subject's stdout."""
    config = link.config
    return Channel(
        writer=conn.timed(config.write_timeout_sec, config.epsilon_timeout_sec),
        observer=link.subject.stdout,
    )


def client_channel(link: ClientLink, config: HarnessConfig) -> Channel:
    """Write into the client subject's stdin; observe the accepted reference socket."""
    return Channel(
        writer=link.subject.stdin,
        observer=link.connection.timed(config.read_timeout_sec, config.epsilon_timeout_sec),
    )


# ----------------------------------------------------------------------
# Scenarios
# ----------------------------------------------------------------------

def single_message_test(channel: Channel, message: bytes) -> None:
    """
    Send one payload and require it to be observed intact.

    Raises:
        StreamError: On a write or read failure other than timeout
        VerificationMismatch: If the observed bytes differ
    """
    write_message(channel.writer, message)
    response = read_message(channel.observer)
    compare(message, response)


def sequential_multi_connection_test(link: ServerLink, messages: Sequence[bytes]) -> None:
    """
    Send each payload over its own connection, one connection at a time.

    Nothing is read until every connection has been closed; then a single
    read collects whatever the subject printed for all of them.

    Raises:
        DialError: If a connection cannot be opened
        StreamError: On a write or read failure other than timeout
        VerificationMismatch: If the records observed differ from those sent
    """
    config = link.config
    for message in messages:
        conn = link.connect()
        try:
            write_message(conn.timed(config.write_timeout_sec, config.epsilon_timeout_sec), message)
        finally:
            conn.close()

    response = read_message(link.subject.stdout)
    compare_records(b"".join(messages), response)


def concurrent_multi_connection_test(link: ServerLink, messages: Sequence[bytes]) -> None:
    """
    Send each payload over its own connection, all connections at once.

    One writer thread per payload dials, writes, and closes. The aggregate
    read waits until every writer has finished.

    Raises:
        HarnessError: The first failure any writer hit
        ConnectTimeout: If a writer was still connecting at the deadline
        StreamError: If a writer was still writing at the deadline, or on a
                     read failure other than timeout
        VerificationMismatch: If the records observed differ from those sent
    """
    config = link.config
    # One slot per writer; each thread only touches its own
    failures: List[Optional[BaseException]] = [None] * len(messages)
    stages: List[str] = ["connecting"] * len(messages)

    def writer(index: int, message: bytes) -> None:
        try:
            conn = link.connect()
        except HarnessError as e:
            failures[index] = e
            return
        stages[index] = "writing"
        try:
            write_message(conn.timed(config.write_timeout_sec, config.epsilon_timeout_sec), message)
        except HarnessError as e:
            failures[index] = e
        finally:
            conn.close()

    threads = [
        threading.Thread(target=writer, args=(i, message), daemon=True, name=f"ConcurrentWriter-{i}")
        for i, message in enumerate(messages)
    ]
    for thread in threads:
        thread.start()

    logger.debug("Waiting for all writers to close their connections.")
    deadline = time.monotonic() + config.write_timeout_sec * 2 + config.accept_timeout_sec + WRITER_JOIN_SLACK_SEC
    for thread in threads:
        thread.join(timeout=max(deadline - time.monotonic(), 0.0))
    stuck = [i for i, thread in enumerate(threads) if thread.is_alive()]
    if stuck:
        detail = ", ".join(f"{threads[i].name} ({stages[i]})" for i in stuck)
        if any(stages[i] == "connecting" for i in stuck):
            raise ConnectTimeout(f"Writers did not connect in time: {detail}")
        raise StreamError(f"Writers did not finish writing in time: {detail}")

    errors = [e for e in failures if e is not None]
    if errors:
        raise errors[0]

    response = read_message(link.subject.stdout)
    compare_records(b"".join(messages), response)


def many_short_server_test(link: ServerLink, messages: Sequence[bytes]) -> None:
    """
    Send several payloads over one connection with pauses in between, then
    read once. Order within a single connection must be preserved.
    """
    config = link.config
    conn = link.connect()
    writer = conn.timed(config.write_timeout_sec, config.epsilon_timeout_sec)
    for i, message in enumerate(messages):
        logger.debug(f"==== Starting Many {i} ====")
        write_message(writer, message)
        time.sleep(2 * config.read_timeout_sec)

    response = read_message(link.subject.stdout)
    compare(b"".join(messages), response)


# ----------------------------------------------------------------------
# Sessions and case running
# ----------------------------------------------------------------------

def _release_quietly(release: Callable[[], None], what: str) -> None:
    try:
        release()
    except ProcessStopError as e:
        logger.warning(f"Teardown of {what} after failure: {e}")


@contextmanager
def server_session(config: HarnessConfig, port: Optional[int] = None) -> Iterator[ServerLink]:
    """
    Run a server subject for the duration of the block.

    A teardown failure fails the case only if the block itself succeeded, so
    it never hides the block's own failure.
    """
    link = start_server_subject(config, port)
    try:
        yield link
    except BaseException:
        _release_quietly(link.close, "server subject")
        raise
    link.close()


@contextmanager
def client_session(config: HarnessConfig, port: Optional[int] = None) -> Iterator[ClientLink]:
    """Run a client subject connected to a reference listener for the duration of the block."""
    try:
        link = establish_client_link(config, port)
    except OSError as e:
        # The reference listener could not bind; that is the harness's problem, not the subject's
        raise CaseSkipped(f"Failed to start reference server: {e}") from e
    try:
        yield link
    except BaseException:
        _release_quietly(link.close, "client subject")
        raise
    link.close()


def run_case(name: str, body: Callable[[], None], context: Optional[TestContext] = None) -> TestOutcome:
    """
    Run one case body and turn its result into a TestOutcome.

    HarnessError subclasses become FAILED with their message as diagnostic;
    CaseSkipped becomes SKIPPED. If the context has already been aborted the
    body is not run at all.
    """
    if context is not None and context.aborted:
        return TestOutcome(
            name,
            CaseStatus.FAILED,
            f"Cannot establish connection to {context.role}. Aborting test... ({context.reason})",
        )

    logger.debug(f"Running case {name}")
    start = time.monotonic()
    try:
        body()
    except CaseSkipped as e:
        return TestOutcome(name, CaseStatus.SKIPPED, str(e), time.monotonic() - start)
    except VerificationMismatch as e:
        return TestOutcome(name, CaseStatus.FAILED, e.diagnostic, time.monotonic() - start)
    except HarnessError as e:
        return TestOutcome(name, CaseStatus.FAILED, str(e), time.monotonic() - start)
    except Exception as e:
        logger.error(f"Case {name} raised unexpectedly: {e}", exc_info=True)
        return TestOutcome(name, CaseStatus.FAILED, f"Unexpected error: {e!r}", time.monotonic() - start)
    return TestOutcome(name, CaseStatus.PASSED, "", time.monotonic() - start)


def connectivity_case(name: str, body: Callable[[], None], context: TestContext) -> TestOutcome:
    """Run the first connectivity check for a role; abort the context if it fails."""
    outcome = run_case(name, body, context)
    if outcome.failed:
        context.abort(f"{name} failed: {outcome.diagnostic.strip()}")
    return outcome
