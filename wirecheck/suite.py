"""
Case enumeration for server and client subjects.

Each suite is an ordered list of named cases. The first case of each suite is
the connectivity check; if it fails, the rest of that suite fails fast via the
shared TestContext.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from wirecheck.config import HarnessConfig
from wirecheck.errors import CaseSkipped
from wirecheck.orchestrator import (
    CaseStatus,
    TestContext,
    TestOutcome,
    client_channel,
    client_session,
    concurrent_multi_connection_test,
    connectivity_case,
    many_short_server_test,
    run_case,
    sequential_multi_connection_test,
    server_channel,
    server_session,
    single_message_test,
)
from wirecheck.payloads import (
    BINARY_MESSAGE,
    LONG_BLOCK,
    MULTILINE_MESSAGE,
    PRINTF_MESSAGE,
    SHORT_BLOCK,
    SHORT_MESSAGE,
    connection_records,
    load_corpus,
    make_rng,
    random_block,
    short_records,
)

logger = logging.getLogger(__name__)


# Server subjects are also checked on ports 10316, 11316, ... 20316
PORT_PREFIXES = range(10, 21)

SEQUENTIAL_CONNECTIONS = 9
CONCURRENT_CONNECTIONS = 10


@dataclass
class Case:
    """
    A named case body.

    Attributes:
        name: Case name ("Group/Sub" for enumerated variants)
        body: Callable that raises on failure
        connectivity: True for the check that gates the rest of the suite
    """
    name: str
    body: Callable[[], None]
    connectivity: bool = False


# ----------------------------------------------------------------------
# Server subject cases (harness is the client)
# ----------------------------------------------------------------------

def _server_connect(config: HarnessConfig, port: Optional[int] = None) -> Callable[[], None]:
    def body() -> None:
        with server_session(config, port) as link:
            link.connect()
    return body


def _server_message(config: HarnessConfig, message: Optional[bytes]) -> Callable[[], None]:
    def body() -> None:
        if message is None:
            raise CaseSkipped(f"Unable to locate {config.corpus_file}")
        with server_session(config) as link:
            conn = link.connect()
            single_message_test(server_channel(link, conn), message)
    return body


def _server_sequential(config: HarnessConfig) -> Callable[[], None]:
    def body() -> None:
        with server_session(config) as link:
            sequential_multi_connection_test(link, connection_records(SEQUENTIAL_CONNECTIONS, start=1))
    return body


def _server_concurrent(config: HarnessConfig) -> Callable[[], None]:
    def body() -> None:
        with server_session(config) as link:
            concurrent_multi_connection_test(link, connection_records(CONCURRENT_CONNECTIONS, start=0))
    return body


def _server_many_short(config: HarnessConfig) -> Callable[[], None]:
    def body() -> None:
        with server_session(config) as link:
            many_short_server_test(link, short_records(config.num_short))
    return body


def server_cases(config: HarnessConfig) -> List[Case]:
    """Build the ordered case list for a server subject."""
    rng = make_rng(config.random_seed)
    cases = [Case("ServerBasicConnect", _server_connect(config), connectivity=True)]
    for prefix in PORT_PREFIXES:
        port = int(f"{prefix}316")
        cases.append(Case(f"ServerPortConnect/Port&{port}", _server_connect(config, port)))
    cases += [
        Case("ServerSequentialConnect", _server_sequential(config)),
        Case("ServerConcurrentConnect", _server_concurrent(config)),
        Case("ServerShortNewline", _server_message(config, SHORT_MESSAGE + b"\n")),
        Case("ServerShortNoNewline", _server_message(config, SHORT_MESSAGE)),
        Case("ServerShortPrintf", _server_message(config, PRINTF_MESSAGE)),
        Case("ServerMultiline", _server_message(config, MULTILINE_MESSAGE)),
        Case("ServerManyShort", _server_many_short(config)),
        Case("ServerMobyDick", _server_message(config, load_corpus(config.corpus_file))),
    ]
    cases += _random_cases("Server", config, rng, _server_message)
    return cases


# ----------------------------------------------------------------------
# Client subject cases (harness is the server)
# ----------------------------------------------------------------------

def _client_connect(config: HarnessConfig) -> Callable[[], None]:
    def body() -> None:
        with client_session(config):
            pass
    return body


def _client_message(config: HarnessConfig, message: Optional[bytes]) -> Callable[[], None]:
    def body() -> None:
        if message is None:
            raise CaseSkipped(f"Unable to locate {config.corpus_file}")
        with client_session(config) as link:
            single_message_test(client_channel(link, config), message)
    return body


def _client_many_short(config: HarnessConfig) -> Callable[[], None]:
    def body() -> None:
        with client_session(config) as link:
            for message in short_records(config.num_short, suffix=b"\n\n"):
                single_message_test(client_channel(link, config), message)
    return body


def client_cases(config: HarnessConfig) -> List[Case]:
    """Build the ordered case list for a client subject."""
    rng = make_rng(config.random_seed)
    cases = [
        Case("ClientBasicConnect", _client_connect(config), connectivity=True),
        Case("ClientShortNewline", _client_message(config, SHORT_MESSAGE + b"\n")),
        Case("ClientShortNoNewline", _client_message(config, SHORT_MESSAGE)),
        Case("ClientShortPrintf", _client_message(config, PRINTF_MESSAGE)),
        Case("ClientMultiline", _client_message(config, MULTILINE_MESSAGE)),
        Case("ClientManyShort", _client_many_short(config)),
        Case("ClientMobyDick", _client_message(config, load_corpus(config.corpus_file))),
    ]
    cases += _random_cases("Client", config, rng, _client_message)
    return cases


# ----------------------------------------------------------------------

def _random_cases(prefix: str, config: HarnessConfig, rng, make_body) -> List[Case]:
    cases: List[Case] = []
    groups = [
        ("ShortRandomPrintable", SHORT_BLOCK, True),
        ("LongRandomPrintable", LONG_BLOCK, True),
    ]
    for group, (rows, cols), printable in groups:
        for i in range(1, config.num_random + 1):
            message = random_block(rows, cols, printable, rng)
            cases.append(Case(f"{prefix}{group}/Message&{i}", make_body(config, message)))

    cases.append(Case(f"{prefix}Binary", make_body(config, BINARY_MESSAGE)))

    groups = [
        ("ShortRandomBinary", SHORT_BLOCK, False),
        ("LongRandomBinary", LONG_BLOCK, False),
    ]
    for group, (rows, cols), printable in groups:
        for i in range(1, config.num_random + 1):
            message = random_block(rows, cols, printable, rng)
            cases.append(Case(f"{prefix}{group}/Message&{i}", make_body(config, message)))
    return cases


def run_suite(cases: List[Case], context: TestContext) -> List[TestOutcome]:
    """Run cases in order, sharing one context."""
    outcomes: List[TestOutcome] = []
    for case in cases:
        if case.connectivity:
            outcome = connectivity_case(case.name, case.body, context)
        else:
            outcome = run_case(case.name, case.body, context)
        logger.info(f"--- {outcome.status.name}: {case.name} ({outcome.duration_sec:.2f}s)")
        if outcome.status != CaseStatus.PASSED and outcome.diagnostic:
            logger.info(outcome.diagnostic)
        outcomes.append(outcome)
    return outcomes


def summarize(outcomes: List[TestOutcome]) -> Dict[str, int]:
    """Count outcomes by status name ("PASSED", "FAILED", "SKIPPED")."""
    counts = Counter(outcome.status.name for outcome in outcomes)
    return {status.name: counts.get(status.name, 0) for status in CaseStatus}
