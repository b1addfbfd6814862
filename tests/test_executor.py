"""
Tests for Subprocess implementation of Executor Protocol.
Covers process execution in isolation from the router, using the
running Python interpreter as the child program.
"""

from __future__ import annotations

import os
import subprocess
import sys

import pytest

from gadb_cli.errors import LaunchError
from gadb_cli.executor import SubprocessExecutor, normalize_exit_code
from gadb_cli.terminal import ProcessSetup

PY = sys.executable

posix_only = pytest.mark.skipif(os.name != "posix", reason="POSIX process model")


def py(code: str, *args: str) -> list[str]:
    return [PY, "-c", code, *args]


@pytest.fixture
def executor() -> SubprocessExecutor:
    """Executor that leaves signal handling alone."""
    return SubprocessExecutor(process_setup=ProcessSetup())


# ----------------------------------------------------------------
# Exit status normalization
# ----------------------------------------------------------------


@pytest.mark.parametrize(
    "returncode, expected",
    [(0, 0), (2, 2), (127, 1), (None, 1), (-2, 130), (-9, 137)],
)
def test_normalize_exit_code(returncode, expected):
    assert normalize_exit_code(returncode) == expected


# ----------------------------------------------------------------
# run_direct
# ----------------------------------------------------------------


def test_run_direct_returns_exit_code(executor):
    result = executor.run_direct(py("import sys; sys.exit(42)"))

    assert result.exit_code == 42


def test_run_direct_writes_to_given_stdout(executor, tmp_path):
    target = tmp_path / "out.txt"
    with target.open("wb") as f:
        result = executor.run_direct(py("print('hello')"), stdout=f)

    assert result.exit_code == 0
    assert target.read_text().strip() == "hello"


def test_run_direct_stderr_can_share_the_file(executor, tmp_path):
    target = tmp_path / "out.txt"
    code = "import sys; print('out'); sys.stdout.flush(); sys.stderr.write('err\\n')"
    with target.open("wb") as f:
        executor.run_direct(py(code), stdout=f, stderr=f)

    assert target.read_text().split() == ["out", "err"]


def test_run_direct_missing_program_raises_launch_error(executor):
    with pytest.raises(LaunchError, match="Error executing command"):
        executor.run_direct(["definitely-not-a-real-adb-binary-xyz"])


def test_executor_sets_color_env_when_force_color_true(tmp_path):
    executor = SubprocessExecutor(force_color=True, process_setup=ProcessSetup())
    target = tmp_path / "env.txt"
    with target.open("wb") as f:
        executor.run_direct(py("import os; print(os.getenv('FORCE_COLOR'))"), stdout=f)

    assert target.read_text().strip() == "1"


def test_executor_does_not_set_color_env_when_force_color_false(tmp_path, monkeypatch):
    monkeypatch.delenv("FORCE_COLOR", raising=False)
    executor = SubprocessExecutor(force_color=False, process_setup=ProcessSetup())
    target = tmp_path / "env.txt"
    with target.open("wb") as f:
        executor.run_direct(py("import os; print(os.getenv('FORCE_COLOR'))"), stdout=f)

    assert target.read_text().strip() == "None"


def test_foreground_wait_is_used_around_waits():
    events = []

    class RecordingSetup(ProcessSetup):
        def popen_kwargs(self, pty=False):
            events.append(("kwargs", pty))
            return {}

        def foreground_wait(self):
            events.append("wait")
            return super().foreground_wait()

    executor = SubprocessExecutor(process_setup=RecordingSetup())
    executor.run_direct(py("pass"))

    assert events == [("kwargs", False), "wait"]


# ----------------------------------------------------------------
# run_capture / run_with_input
# ----------------------------------------------------------------


def test_run_capture_merges_stdout_and_stderr(executor):
    code = "import sys; print('a'); sys.stdout.flush(); sys.stderr.write('b\\n')"
    result = executor.run_capture(py(code))

    assert result.exit_code == 0
    assert result.output.split() == [b"a", b"b"]


def test_run_capture_stdin_is_empty(executor):
    result = executor.run_capture(py("import sys; print(len(sys.stdin.read()))"))

    assert result.output.strip() == b"0"


def test_run_capture_reports_failure_status(executor):
    result = executor.run_capture(py("import sys; print('partial'); sys.exit(5)"))

    assert result.exit_code == 5
    assert b"partial" in result.output


def test_run_with_input_feeds_stdin(executor, tmp_path):
    target = tmp_path / "in.txt"
    code = "import sys; open(sys.argv[1], 'wb').write(sys.stdin.buffer.read())"

    result = executor.run_with_input(py(code, str(target)), b"line1\nline2\n")

    assert result.exit_code == 0
    assert target.read_bytes() == b"line1\nline2\n"


def test_run_with_input_reader_exiting_early_is_not_an_error(executor):
    result = executor.run_with_input(py("pass"), b"x" * (1 << 20))

    assert result.exit_code == 0


# ----------------------------------------------------------------
# run_pipeline
# ----------------------------------------------------------------

UPPER_TO_FILE = (
    "import sys; open(sys.argv[1], 'w').write(sys.stdin.read().upper())"
)


def test_run_pipeline_connects_stdout_to_stdin(executor, tmp_path):
    target = tmp_path / "piped.txt"

    result = executor.run_pipeline(
        py("print('com.android.phone')"),
        py(UPPER_TO_FILE, str(target)),
    )

    assert result.exit_code == 0
    assert result.pipe_exit_code == 0
    assert target.read_text().strip() == "COM.ANDROID.PHONE"


def test_run_pipeline_reports_both_statuses(executor, tmp_path):
    result = executor.run_pipeline(
        py("import sys; sys.exit(2)"),
        py("import sys; sys.stdin.read(); sys.exit(1)"),
    )

    assert result.exit_code == 2
    assert result.pipe_exit_code == 1


def test_run_pipeline_second_launch_failure_kills_first(executor):
    with pytest.raises(LaunchError, match="failed to run piped command"):
        executor.run_pipeline(
            py("import time; time.sleep(30)"),
            ["definitely-not-a-real-grep-xyz"],
        )


def test_run_pipeline_first_launch_failure(executor):
    with pytest.raises(LaunchError):
        executor.run_pipeline(["definitely-not-a-real-adb-xyz"], py("pass"))


def test_run_pipeline_popen_error_is_launch_error(executor, monkeypatch):
    def fake_popen(*args, **kwargs):
        raise OSError("boom")

    monkeypatch.setattr(subprocess, "Popen", fake_popen)

    with pytest.raises(LaunchError, match="boom"):
        executor.run_pipeline(["adb"], ["grep"])


# ----------------------------------------------------------------
# run_pty
# ----------------------------------------------------------------


class PipeTerminal:
    """Two pipes standing in for the controlling terminal."""

    def __init__(self):
        self.in_r, self.in_w = os.pipe()
        self.out_r, self.out_w = os.pipe()
        self._open = {self.in_r, self.in_w, self.out_r, self.out_w}

    def executor(self) -> SubprocessExecutor:
        return SubprocessExecutor(stdin_fd=self.in_r, stdout_fd=self.out_w)

    def type(self, data: bytes) -> None:
        os.write(self.in_w, data)

    def close(self, fd: int) -> None:
        if fd in self._open:
            self._open.discard(fd)
            os.close(fd)

    def output(self) -> bytes:
        self.close(self.out_w)
        chunks = []
        while True:
            data = os.read(self.out_r, 4096)
            if not data:
                break
            chunks.append(data)
        return b"".join(chunks)

    def close_all(self) -> None:
        for fd in list(self._open):
            self.close(fd)


@pytest.fixture
def term():
    pty = pytest.importorskip("pty")
    try:
        m, s = pty.openpty()
    except OSError:
        pytest.skip("no pseudo-terminals available")
    os.close(m)
    os.close(s)

    t = PipeTerminal()
    yield t
    t.close_all()


@posix_only
def test_run_pty_copies_child_output(term):
    result = term.executor().run_pty(
        py("import sys; print('isatty', sys.stdout.isatty())")
    )

    assert result.exit_code == 0
    assert b"isatty True" in term.output()


@posix_only
def test_run_pty_forwards_input(term):
    term.type(b"ping\n")

    result = term.executor().run_pty(py("print('got', input())"))

    assert result.exit_code == 0
    assert b"got ping" in term.output()


@posix_only
def test_run_pty_returns_exit_code(term):
    result = term.executor().run_pty(py("import sys; sys.exit(3)"))

    assert result.exit_code == 3


@posix_only
def test_run_pty_launch_failure(term):
    with pytest.raises(LaunchError):
        term.executor().run_pty(["definitely-not-a-real-adb-xyz"])


def test_supports_pty_matches_platform():
    assert SubprocessExecutor().supports_pty is (os.name == "posix")


# ----------------------------------------------------------------
# run_pty on a real controlling terminal
# ----------------------------------------------------------------

REPORT_TTY_MODE = """
import os, sys, termios, time
time.sleep(0.3)
fd = os.open(sys.argv[1], os.O_RDWR | os.O_NOCTTY)
print('icanon', bool(termios.tcgetattr(fd)[3] & termios.ICANON))
os.close(fd)
sys.exit(int(sys.argv[2]))
"""


@pytest.fixture
def tty_term():
    """A pseudo-terminal slave as controlling input, a pipe as output."""
    pty = pytest.importorskip("pty")
    termios = pytest.importorskip("termios")
    try:
        master, slave = pty.openpty()
    except OSError:
        pytest.skip("no pseudo-terminals available")
    out_r, out_w = os.pipe()
    fds = {"master": master, "slave": slave, "out_r": out_r, "out_w": out_w}
    yield termios, fds
    for fd in fds.values():
        try:
            os.close(fd)
        except OSError:
            pass


def _read_all(fds: dict) -> bytes:
    os.close(fds.pop("out_w"))
    chunks = []
    while True:
        data = os.read(fds["out_r"], 4096)
        if not data:
            break
        chunks.append(data)
    return b"".join(chunks)


@posix_only
@pytest.mark.parametrize("code", [0, 4])
def test_run_pty_holds_raw_mode_and_restores_it(tty_term, code):
    termios, fds = tty_term
    slave = fds["slave"]
    before = termios.tcgetattr(slave)
    assert before[3] & termios.ICANON

    executor = SubprocessExecutor(stdin_fd=slave, stdout_fd=fds["out_w"])
    result = executor.run_pty(py(REPORT_TTY_MODE, os.ttyname(slave), str(code)))

    assert result.exit_code == code
    assert b"icanon False" in _read_all(fds)
    assert termios.tcgetattr(slave) == before
