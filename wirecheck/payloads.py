"""
Payload fixtures for transmission cases.

Fixed messages plus generators for record sequences and random byte blocks.
Random blocks come from a seeded numpy Generator so a run is repeatable.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import numpy as np

logger = logging.getLogger(__name__)


SHORT_MESSAGE = b"Hello World"
PRINTF_MESSAGE = b"Hello Printf! %s %s %% %d %f %2.f"
MULTILINE_MESSAGE = b"""
And when Ruby went over the hill,
Go came in for the kill.
It seemed so fast,
But oh at long last,
We all got tired of err != nil.

By Ryan McDermott

Source: https://www.freecodecamp.org/news/
programming-language-limericks-a8fb3416e0e4/
\t"""
BINARY_MESSAGE = bytes(range(1, 21))

# Printable ASCII range used for printable random blocks
PRINTABLE_LOW = 32
PRINTABLE_HIGH = 127  # exclusive

SHORT_BLOCK = (1, 63)  # rows, cols
LONG_BLOCK = (64, 512)


def make_rng(seed: int) -> np.random.Generator:
    return np.random.default_rng(seed)


def random_block(rows: int, cols: int, printable: bool, rng: np.random.Generator) -> bytes:
    """
    Generate rows lines of cols random bytes, each line followed by a newline.

    Binary blocks draw uniformly from 0-255, so a row may itself contain
    newline bytes.

    Args:
        rows: Number of lines
        cols: Bytes per line before the newline
        printable: Restrict bytes to printable ASCII (32-126)
        rng: Random generator

    Returns:
        rows * (cols + 1) bytes, or b"" if either dimension is not positive
    """
    if rows <= 0 or cols <= 0:
        return b""
    low, high = (PRINTABLE_LOW, PRINTABLE_HIGH) if printable else (0, 256)
    block = rng.integers(low, high, size=(rows, cols), dtype=np.uint8)
    newlines = np.full((rows, 1), ord("\n"), dtype=np.uint8)
    return np.hstack([block, newlines]).tobytes()


def connection_records(count: int, start: int = 1) -> List[bytes]:
    """One newline-terminated record per connection: b"Testing connection N\\n"."""
    return [f"Testing connection {i}\n".encode() for i in range(start, start + count)]


def short_records(count: int, suffix: bytes = b"\n") -> List[bytes]:
    """Numbered greetings sent one after another on a single connection."""
    return [f"Hello World {i}".encode() + suffix for i in range(count)]


def load_corpus(path: Optional[str]) -> Optional[bytes]:
    """
    Read a large text corpus from disk.

    Returns:
        File contents, or None if no path is configured or the file is missing
    """
    if not path:
        return None
    corpus = Path(path)
    if not corpus.exists():
        logger.debug(f"Corpus file not found: {corpus}")
        return None
    return corpus.read_bytes()
