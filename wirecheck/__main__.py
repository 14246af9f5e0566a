#!/usr/bin/env python3
"""
wirecheck main entry point.

Runs the server suite and then the client suite against the executables in
SOLUTION_DIR: python3 -m wirecheck
"""

import logging
import os
import sys

# Set default log level from environment, or INFO if not set
log_level = os.getenv("WIRECHECK_LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, log_level, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
)

from wirecheck.config import load_config
from wirecheck.orchestrator import TestContext
from wirecheck.suite import client_cases, run_suite, server_cases, summarize


def main() -> int:
    config = load_config()
    logging.info(f"Testing executables in {config.solution_dir}")

    outcomes = run_suite(server_cases(config), TestContext("server"))
    outcomes += run_suite(client_cases(config), TestContext("client"))

    counts = summarize(outcomes)
    logging.info(
        f"{counts['PASSED']} passed, {counts['FAILED']} failed, {counts['SKIPPED']} skipped"
    )
    if counts["FAILED"] == 0:
        logging.info("All tests passed")
        return 0
    return 1


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        logging.info("wirecheck interrupted")
        sys.exit(130)
    except Exception as e:
        logging.error(f"wirecheck failed to run: {e}", exc_info=True)
        sys.exit(2)
