"""
Shared pytest fixtures for wirecheck contract tests.

Subject executables are small Python scripts from subjects/, installed into a
temporary solution directory under the names the harness expects ("server",
"client") with a shebang pointing at the running interpreter.
"""
import sys
import threading
from pathlib import Path

import pytest

from wirecheck.config import HarnessConfig
from wirecheck.net.broker import find_free_port

SUBJECTS_DIR = Path(__file__).parent / "subjects"


def install_subject(directory: Path, script: str, name: str) -> Path:
    """Copy a subject script into directory as an executable called name."""
    target = directory / name
    source = (SUBJECTS_DIR / script).read_text()
    target.write_text(f"#!{sys.executable}\n{source}")
    target.chmod(0o755)
    return target


@pytest.fixture
def harness_config(tmp_path):
    """
    Configuration with timeouts widened for interpreted subjects.

    Python subjects take far longer to start than compiled ones, so the
    settle delay and I/O timeouts are an order of magnitude above the
    production defaults.
    """
    return HarnessConfig(
        solution_dir=str(tmp_path),
        default_port=find_free_port(),
        epsilon_timeout_ms=3,
        accept_timeout_ms=5000,
        read_timeout_ms=300,
        write_timeout_ms=300,
        startup_delay_ms=500,
        stop_timeout_ms=2000,
        corpus_file=None,
        num_short=3,
        num_random=1,
    )


@pytest.fixture
def echo_server(harness_config):
    return install_subject(Path(harness_config.solution_dir), "echo_server.py", "server")


@pytest.fixture
def truncating_server(harness_config):
    return install_subject(Path(harness_config.solution_dir), "truncating_server.py", "server")


@pytest.fixture
def echo_client(harness_config):
    return install_subject(Path(harness_config.solution_dir), "echo_client.py", "client")


@pytest.fixture
def silent_client(harness_config):
    return install_subject(Path(harness_config.solution_dir), "silent_client.py", "client")


@pytest.fixture(autouse=False)  # Request explicitly to check teardown
def thread_leak_guard():
    """
    Detect non-daemon threads left running after a test.

    Daemon threads abandoned by timed reads are expected and ignored.
    """
    before = set(t.ident for t in threading.enumerate())
    yield
    leaked = [
        t for t in threading.enumerate()
        if t.ident not in before and not t.daemon and t.is_alive()
    ]
    if leaked:
        thread_info = "\n".join(f"  - {t.name}" for t in leaked)
        assert False, f"Thread leak detected, teardown incomplete.\nLeaked threads:\n{thread_info}"
