"""
Configuration management for wirecheck.

Reads configuration from an optional .env file and environment variables with
defaults tuned for localhost testing of small TCP programs.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


# Default .env file location (relative to the working directory)
DEFAULT_ENV_FILE = Path("wirecheck.env")

logger = logging.getLogger(__name__)


def _load_env_file() -> None:
    """Load environment variables from .env file if it exists."""
    env_file = os.getenv("WIRECHECK_ENV_FILE", str(DEFAULT_ENV_FILE))
    env_path = Path(env_file)

    if env_path.exists():
        load_dotenv(env_path, override=False)  # Don't override existing env vars


def _int_env(name: str, default: int) -> int:
    """
    Read an integer environment variable.

    Raises:
        ValueError: If the variable is set but not an integer
    """
    raw = os.getenv(name, str(default))
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Invalid {name}: {raw} (must be an integer)")


@dataclass
class HarnessConfig:
    """Harness configuration loaded from .env file and environment variables."""

    # Where the subject executables live
    solution_dir: str = "."
    server_executable: str = "server"
    client_executable: str = "client"

    # Network
    host: str = "127.0.0.1"
    default_port: int = 31600

    # Timing (milliseconds)
    epsilon_timeout_ms: int = 3
    accept_timeout_ms: int = 3000
    read_timeout_ms: int = 35
    write_timeout_ms: int = 35
    startup_delay_ms: int = 100
    stop_timeout_ms: int = 2000

    # Payloads
    random_seed: int = 316316316
    corpus_file: Optional[str] = "mobydick.txt"
    num_short: int = 10
    num_random: int = 10

    # Logging
    log_level: str = "INFO"

    @property
    def epsilon_timeout_sec(self) -> float:
        return self.epsilon_timeout_ms / 1000.0

    @property
    def accept_timeout_sec(self) -> float:
        return self.accept_timeout_ms / 1000.0

    @property
    def read_timeout_sec(self) -> float:
        return self.read_timeout_ms / 1000.0

    @property
    def write_timeout_sec(self) -> float:
        return self.write_timeout_ms / 1000.0

    @property
    def startup_delay_sec(self) -> float:
        return self.startup_delay_ms / 1000.0

    @property
    def stop_timeout_sec(self) -> float:
        return self.stop_timeout_ms / 1000.0

    @property
    def server_path(self) -> str:
        """Path of the server subject executable (relative if solution_dir is)."""
        return os.path.join(self.solution_dir, self.server_executable)

    @property
    def client_path(self) -> str:
        """Path of the client subject executable (relative if solution_dir is)."""
        return os.path.join(self.solution_dir, self.client_executable)

    @classmethod
    def load_config(cls) -> "HarnessConfig":
        """
        Load configuration from environment variables.

        SOLUTION_DIR is honoured first so existing build scripts keep working;
        WIRECHECK_SOLUTION_DIR is the namespaced alternative.

        Returns:
            HarnessConfig instance with loaded values

        Raises:
            ValueError: If configuration is invalid
        """
        # Load .env file first (if it exists)
        _load_env_file()

        solution_dir = os.getenv("SOLUTION_DIR") or os.getenv("WIRECHECK_SOLUTION_DIR") or os.getcwd()

        corpus_file = os.getenv("WIRECHECK_CORPUS_FILE", "mobydick.txt")
        if corpus_file == "":
            corpus_file = None

        config = cls(
            solution_dir=solution_dir,
            server_executable=os.getenv("WIRECHECK_SERVER_EXECUTABLE", "server"),
            client_executable=os.getenv("WIRECHECK_CLIENT_EXECUTABLE", "client"),
            host=os.getenv("WIRECHECK_HOST", "127.0.0.1"),
            default_port=_int_env("WIRECHECK_PORT", 31600),
            epsilon_timeout_ms=_int_env("WIRECHECK_EPSILON_TIMEOUT_MS", 3),
            accept_timeout_ms=_int_env("WIRECHECK_ACCEPT_TIMEOUT_MS", 3000),
            read_timeout_ms=_int_env("WIRECHECK_READ_TIMEOUT_MS", 35),
            write_timeout_ms=_int_env("WIRECHECK_WRITE_TIMEOUT_MS", 35),
            startup_delay_ms=_int_env("WIRECHECK_STARTUP_DELAY_MS", 100),
            stop_timeout_ms=_int_env("WIRECHECK_STOP_TIMEOUT_MS", 2000),
            random_seed=_int_env("WIRECHECK_RANDOM_SEED", 316316316),
            corpus_file=corpus_file,
            num_short=_int_env("WIRECHECK_NUM_SHORT", 10),
            num_random=_int_env("WIRECHECK_NUM_RANDOM", 10),
            log_level=os.getenv("WIRECHECK_LOG_LEVEL", "INFO"),
        )

        config.validate()

        return config

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ValueError: If configuration is invalid
        """
        if self.default_port < 1 or self.default_port > 65535:
            raise ValueError(f"Invalid port: {self.default_port} (must be 1-65535)")

        # The socket deadline is set epsilon short of the timeout, so epsilon must fit inside it
        for name in ("read_timeout_ms", "write_timeout_ms"):
            value = getattr(self, name)
            if value <= self.epsilon_timeout_ms:
                raise ValueError(
                    f"Invalid {name}: {value} (must exceed epsilon_timeout_ms={self.epsilon_timeout_ms})"
                )

        if self.epsilon_timeout_ms < 0:
            raise ValueError(f"Invalid epsilon timeout: {self.epsilon_timeout_ms} (must be >= 0)")

        for name in ("accept_timeout_ms", "stop_timeout_ms"):
            if getattr(self, name) <= 0:
                raise ValueError(f"Invalid {name}: {getattr(self, name)} (must be > 0)")

        if self.startup_delay_ms < 0:
            raise ValueError(f"Invalid startup delay: {self.startup_delay_ms} (must be >= 0)")

        if self.num_short < 0 or self.num_random < 0:
            raise ValueError("Case counts must be >= 0")

        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_log_levels:
            raise ValueError(
                f"Invalid log level: {self.log_level} "
                f"(must be one of: {', '.join(valid_log_levels)})"
            )


def load_config() -> HarnessConfig:
    """
    Load and validate harness configuration from environment variables.

    Returns:
        HarnessConfig instance with loaded and validated values

    Raises:
        ValueError: If configuration is invalid
    """
    try:
        return HarnessConfig.load_config()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        raise
