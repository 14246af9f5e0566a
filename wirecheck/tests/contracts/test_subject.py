"""
Contract tests for Subject process lifecycle.

Subjects here are inline Python programs run through the current interpreter,
so no compiled fixtures are needed.
"""

import subprocess
import sys
import threading
import time
from io import BytesIO
from unittest.mock import MagicMock, patch

import pytest

from wirecheck.errors import LaunchError, ProcessStopError
from wirecheck.process.subject import Subject, SubjectState
from wirecheck.streams.timed_stream import read_message, write_message

CAT = """
import os
while True:
    data = os.read(0, 2048)
    if not data:
        break
    os.write(1, data)
"""

CHATTY = """
import sys, time
sys.stderr.write("warming up\\n")
sys.stderr.flush()
print("to stdout", flush=True)
time.sleep(30)
"""


def python_subject(code, harness_config, **kwargs):
    return Subject(sys.executable, ["-c", code], config=harness_config, **kwargs)


def wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return False


class TestSubjectLifecycle:

    def test_new_subject_is_not_started(self, harness_config):
        subject = python_subject(CAT, harness_config)
        assert subject.state == SubjectState.NOT_STARTED
        assert subject.pid is None
        assert subject.returncode is None

    @pytest.mark.timeout(10)
    def test_missing_executable_raises_launch_error(self, harness_config, tmp_path):
        subject = Subject(str(tmp_path / "does-not-exist"), config=harness_config)
        with pytest.raises(LaunchError):
            subject.start()
        assert subject.state == SubjectState.NOT_STARTED

    @pytest.mark.timeout(10)
    def test_start_then_stop(self, harness_config, thread_leak_guard):
        subject = python_subject(CAT, harness_config)
        subject.start()
        assert subject.is_running
        assert subject.pid is not None

        subject.stop()
        assert subject.state == SubjectState.STOPPED
        assert subject.returncode is not None

    @pytest.mark.timeout(10)
    def test_start_twice_raises(self, harness_config):
        subject = python_subject(CAT, harness_config)
        subject.start()
        try:
            with pytest.raises(LaunchError):
                subject.start()
        finally:
            subject.stop()

    @pytest.mark.timeout(10)
    def test_stop_twice_raises(self, harness_config):
        subject = python_subject(CAT, harness_config)
        subject.start()
        subject.stop()
        with pytest.raises(ProcessStopError):
            subject.stop()

    def test_stop_before_start_raises(self, harness_config):
        subject = python_subject(CAT, harness_config)
        with pytest.raises(ProcessStopError):
            subject.stop()

    @pytest.mark.timeout(5)
    def test_unreaped_subject_raises_stop_error(self, harness_config):
        """A process that outlives the stop timeout is reported, not waited on forever."""
        mock_process = MagicMock()
        mock_process.stdin = BytesIO()
        mock_process.stdout = BytesIO(b"")
        mock_process.stderr = BytesIO(b"")
        mock_process.pid = 12345
        mock_process.wait.side_effect = subprocess.TimeoutExpired(cmd="server", timeout=2.0)

        with patch("wirecheck.process.subject.subprocess.Popen", return_value=mock_process):
            subject = Subject("/opt/solution/server", ["31600"], config=harness_config)
            subject.start()
            with pytest.raises(ProcessStopError, match="was not reaped"):
                subject.stop()

        mock_process.kill.assert_called_once()
        assert subject.state == SubjectState.STOPPED

    @pytest.mark.timeout(10)
    def test_overlapping_starts_spawn_one_process(self, harness_config):
        """Only one of several simultaneous start() calls may spawn; the rest are refused."""
        subject = python_subject(CAT, harness_config)
        real_popen = subprocess.Popen
        spawned = []

        def recording_popen(*args, **kwargs):
            time.sleep(0.05)  # Hold the spawn open so the other callers overlap it
            process = real_popen(*args, **kwargs)
            spawned.append(process)
            return process

        callers = 8
        barrier = threading.Barrier(callers)
        refused = []

        def starter():
            barrier.wait()
            try:
                subject.start()
            except LaunchError as e:
                refused.append(e)

        with patch("wirecheck.process.subject.subprocess.Popen", side_effect=recording_popen):
            threads = [threading.Thread(target=starter, daemon=True) for _ in range(callers)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join(timeout=5)

        try:
            assert len(spawned) == 1
            assert len(refused) == callers - 1
            assert subject.is_running
            assert subject.pid == spawned[0].pid
        finally:
            subject.stop()
            for process in spawned[1:]:
                process.kill()
                process.wait()

    @pytest.mark.timeout(10)
    def test_failed_start_can_be_retried(self, harness_config, tmp_path):
        subject = Subject(str(tmp_path / "server"), config=harness_config)
        with pytest.raises(LaunchError):
            subject.start()

        (tmp_path / "server").write_text(f"#!{sys.executable}\nimport time\ntime.sleep(30)\n")
        (tmp_path / "server").chmod(0o755)
        subject.start()
        try:
            assert subject.is_running
        finally:
            subject.stop()

    @pytest.mark.timeout(10)
    def test_stopped_subject_cannot_restart(self, harness_config):
        subject = python_subject(CAT, harness_config)
        subject.start()
        subject.stop()
        with pytest.raises(LaunchError):
            subject.start()


class TestSubjectStreams:

    @pytest.mark.timeout(10)
    def test_stdin_round_trips_to_stdout(self, harness_config):
        subject = python_subject(CAT, harness_config)
        subject.start()
        try:
            write_message(subject.stdin, b"ping\n")
            assert read_message(subject.stdout) == b"ping\n"
        finally:
            subject.stop()

    @pytest.mark.timeout(10)
    def test_diagnostics_are_drained_to_sink(self, harness_config):
        lines = []
        subject = python_subject(CHATTY, harness_config, diagnostic_sink=lines.append)
        subject.start()
        try:
            assert wait_for(lambda: "warming up" in lines)
            assert b"warming up" in subject.diagnostics
            # stdout stays readable and separate
            assert read_message(subject.stdout) == b"to stdout\n"
        finally:
            subject.stop()

    @pytest.mark.timeout(10)
    def test_merged_output_goes_to_diagnostics(self, harness_config):
        lines = []
        subject = python_subject(CHATTY, harness_config, diagnostic_sink=lines.append, merge_output=True)
        subject.start()
        try:
            assert subject.stdout is None
            assert wait_for(lambda: "to stdout" in lines and "warming up" in lines)
        finally:
            subject.stop()

    @pytest.mark.timeout(10)
    def test_failing_sink_does_not_stop_drain(self, harness_config):
        def sink(line):
            raise RuntimeError("sink broke")

        subject = python_subject(CHATTY, harness_config, diagnostic_sink=sink)
        subject.start()
        try:
            assert wait_for(lambda: b"warming up" in subject.diagnostics)
            assert subject.is_running
        finally:
            subject.stop()

    @pytest.mark.timeout(10)
    def test_settle_warns_when_subject_exits_early(self, harness_config, caplog):
        subject = python_subject("import sys; sys.exit(3)", harness_config)
        subject.start()
        try:
            with caplog.at_level("WARNING", logger="wirecheck.process.subject"):
                subject.settle()
            assert "exited during startup" in caplog.text
            assert subject.returncode == 3
        finally:
            subject.stop()
