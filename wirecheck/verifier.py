"""
Byte-exact comparison of sent and observed payloads.

On mismatch the report shows both payloads quoted (non-printable bytes
escaped), trimmed to a readable size, with a short SHA-1 digest of each full
payload so large near-identical payloads can still be told apart at a glance.
When one payload is a prefix of the other the report says so outright, since
that almost always means a read stopped early.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import List

from wirecheck.errors import VerificationMismatch

logger = logging.getLogger(__name__)


MAX_HASH_BYTES = 4  # Digest bytes shown (8 hex chars)
MAX_LINES_PER_MESSAGE = 10  # Lines of each payload included in a report
MAX_CHARS_PER_LINE = 55  # Characters per line included in a report
EXCERPT_CHARS = 20  # Context shown around the first difference

FAIL_TEMPLATE = """

*********** Test Failed ************
Message sent does not match message received!

-----------    Sent     ------------
{sent}

-----------  Received   ------------
{received}

{difference}
"""


def _escape_char(ch: str) -> str:
    if ch == "\n":
        return "\n"
    if ch == "\\":
        return "\\\\"
    if ch == '"':
        return '\\"'
    if "\udc80" <= ch <= "\udcff":
        # surrogateescape stand-in for an undecodable byte
        return f"\\x{ord(ch) - 0xDC00:02x}"
    if ch.isprintable():
        return ch
    # repr() gives \t, \r, \x01 style escapes
    return repr(ch)[1:-1]


def quote(data: bytes) -> str:
    """
    Render bytes as a double-quoted string with everything non-printable escaped.

    Newlines are kept as real line breaks so multi-line payloads stay
    readable. Invalid UTF-8 bytes appear as \\xNN.
    """
    text = data.decode("utf-8", errors="surrogateescape")
    return '"' + "".join(_escape_char(ch) for ch in text) + '"'


@dataclass(frozen=True)
class Message:
    """An immutable payload with rendering helpers for failure reports."""
    data: bytes

    def quoted(self) -> str:
        return quote(self.data)

    def digest(self) -> str:
        """First MAX_HASH_BYTES of the SHA-1 of the payload, as hex."""
        return hashlib.sha1(self.data).digest()[:MAX_HASH_BYTES].hex()

    def shortened(self) -> str:
        """Quoted rendering cut after MAX_LINES_PER_MESSAGE + 1 lines of MAX_CHARS_PER_LINE chars."""
        lines = self.quoted().split("\n")
        out: List[str] = []
        for i, line in enumerate(lines):
            if i > MAX_LINES_PER_MESSAGE:
                out.append(f"(... {len(lines) - i} more lines)")
                break
            if len(line) > MAX_CHARS_PER_LINE:
                line = line[:MAX_CHARS_PER_LINE] + "  (...)"
            out.append(line)
        return "\n".join(out) + "\n"

    def tail(self, k: int) -> str:
        """Quoted form of the last k bytes."""
        return quote(self.data[-k:] if k > 0 else b"")

    def summary(self) -> str:
        line_count = self.data.count(b"\n") + 1
        return f"({line_count} lines, {len(self.data)} chars, hash: {self.digest()})\n\n{self.shortened()}"

    def __str__(self) -> str:
        return self.summary()


def describe_difference(expected: bytes, actual: bytes) -> str:
    """
    Describe how actual differs from expected.

    Prefix relationships are called out explicitly; otherwise the first
    differing offset is reported with a short excerpt from each side.
    """
    if expected == actual:
        return "The messages are identical."
    if not actual:
        return "Nothing was received."
    if expected.startswith(actual):
        return (
            f"The received message is a prefix of the sent message "
            f"({len(actual)} of {len(expected)} bytes arrived)."
        )
    if actual.startswith(expected):
        return (
            f"The sent message is a prefix of the received message "
            f"({len(actual) - len(expected)} extra bytes received)."
        )

    position = next(i for i, (a, b) in enumerate(zip(expected, actual)) if a != b)
    return (
        f"The messages differ for the first time at position {position}:\n"
        f"{quote(expected[position:position + EXCERPT_CHARS])}\n\n"
        f"{quote(actual[position:position + EXCERPT_CHARS])}"
    )


def compare(expected: bytes, actual: bytes) -> None:
    """
    Require actual to equal expected byte for byte.

    Raises:
        VerificationMismatch: With a bounded, human-readable report
    """
    logger.debug("Comparing messages...")
    if expected == actual:
        return

    sent = Message(expected)
    received = Message(actual)
    logger.debug(f"expected: {sent}")
    logger.debug(f"found:    {received}")
    raise VerificationMismatch(
        FAIL_TEMPLATE.format(
            sent=sent.summary(),
            received=received.summary(),
            difference=describe_difference(expected, actual),
        )
    )


def split_records(data: bytes, delimiter: bytes = b"\n") -> List[bytes]:
    """
    Split data after each delimiter, keeping the delimiter on its record.

    A trailing fragment without a delimiter is kept as its own record.
    """
    if not data:
        return []
    records: List[bytes] = []
    start = 0
    while True:
        end = data.find(delimiter, start)
        if end == -1:
            if start < len(data):
                records.append(data[start:])
            break
        end += len(delimiter)
        records.append(data[start:end])
        start = end
    return records


def canonical_order(data: bytes, delimiter: bytes = b"\n") -> bytes:
    """Split data into records, sort them, and join them back together."""
    return b"".join(sorted(split_records(data, delimiter)))


def compare_records(expected: bytes, actual: bytes, delimiter: bytes = b"\n") -> None:
    """
    Compare two payloads as multisets of delimiter-terminated records.

    Record contents are still compared exactly; only their order is ignored.

    Raises:
        VerificationMismatch: If the sorted record lists differ
    """
    compare(canonical_order(expected, delimiter), canonical_order(actual, delimiter))
