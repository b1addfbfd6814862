# GADB — Multi-Device ADB REPL Shell
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Subprocess-backed executor implementation for GADB.

This module provides:
- run_direct(): inherit (or redirect) stdio and wait
- run_pty(): full interactive handoff through a pseudo-terminal
  (raw mode, keystroke forwarding, resize propagation)
- run_capture(): buffered stdout+stderr, used to feed pipelines
- run_with_input(): feed bytes to a child's stdin
- run_pipeline(): `a | b` over an OS pipe

Commands always run to their natural exit; there is no timeout. Launch
failures raise LaunchError, exit statuses are returned.
"""

from __future__ import annotations

import os
import select
import subprocess
import sys
import threading
from dataclasses import dataclass
from typing import IO, Any

from .errors import LaunchError
from .terminal import ProcessSetup, ResizeWatcher, default_process_setup, inherit_size, raw_mode


@dataclass(frozen=True)
class ExecResult:
    exit_code: int


@dataclass(frozen=True)
class CaptureResult:
    exit_code: int
    output: bytes


@dataclass(frozen=True)
class PipelineResult:
    """Exit statuses of both sides of `argv | pipe_argv`."""

    exit_code: int
    pipe_exit_code: int


def normalize_exit_code(returncode: int | None) -> int:
    """Map a Popen returncode to a shell-style status.

    127 (command not found) becomes 1 and death by signal N becomes
    128 + N.
    """
    if returncode is None:
        return 1
    if returncode < 0:
        return 128 + (-returncode)
    if returncode == 127:
        return 1
    return returncode


def _flush_std() -> None:
    for stream in (sys.stdout, sys.stderr):
        try:
            stream.flush()
        except Exception:
            pass


class SubprocessExecutor:
    """Subprocess implementation of Executor protocol."""

    def __init__(
        self,
        force_color: bool = False,
        process_setup: ProcessSetup | None = None,
        stdin_fd: int | None = None,
        stdout_fd: int | None = None,
        read_size: int = 4096,
        drain_timeout: float = 1.0,
    ):
        """Initialize executor with configuration.

        Args:
            force_color: If True, set color-forcing env variables
            process_setup: per-platform child preparation
                (default: picked for the running platform)
            stdin_fd: controlling input for PTY sessions
                (default: sys.stdin at call time)
            stdout_fd: controlling output for PTY sessions
                (default: sys.stdout at call time)
            read_size: chunk size for PTY forwarding
            drain_timeout: seconds to wait for PTY output to drain
                after the child exits
        """
        self.force_color = force_color
        self.process_setup = process_setup or default_process_setup()
        self.stdin_fd = stdin_fd
        self.stdout_fd = stdout_fd
        self.read_size = read_size
        self.drain_timeout = drain_timeout

    @property
    def supports_pty(self) -> bool:
        if os.name != "posix":
            return False
        try:
            import pty  # noqa: F401
        except ImportError:
            return False
        return True

    def _build_env(self) -> dict:
        env = os.environ.copy()
        if self.force_color:
            env["PY_COLORS"] = "1"
            env["FORCE_COLOR"] = "1"
            env["CLICOLOR_FORCE"] = "1"
        return env

    def _spawn(self, argv: list[str], pty: bool = False, **kwargs: Any) -> subprocess.Popen:
        kwargs.update(self.process_setup.popen_kwargs(pty=pty))
        try:
            return subprocess.Popen(argv, env=self._build_env(), **kwargs)
        except (OSError, ValueError) as e:
            raise LaunchError(f"Error executing command: {e}") from e

    def run_direct(
        self,
        argv: list[str],
        stdin: IO[Any] | None = None,
        stdout: IO[Any] | None = None,
        stderr: IO[Any] | None = None,
    ) -> ExecResult:
        """Run a command with the given stdio and wait for it.

        None for a stream means it is inherited from this process, which
        gives the child direct access to the real TTY.

        Returns:
            ExecResult with the normalised exit code
        """
        _flush_std()
        proc = self._spawn(argv, stdin=stdin, stdout=stdout, stderr=stderr)
        with self.process_setup.foreground_wait():
            proc.wait()
        return ExecResult(exit_code=normalize_exit_code(proc.returncode))

    def run_capture(self, argv: list[str]) -> CaptureResult:
        """Run a command with stdout and stderr merged into one buffer.

        stdin is the null device so the command cannot wait on the
        terminal.
        """
        proc = self._spawn(
            argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
        )
        with self.process_setup.foreground_wait():
            output, _ = proc.communicate()
        return CaptureResult(
            exit_code=normalize_exit_code(proc.returncode),
            output=output or b"",
        )

    def run_with_input(self, argv: list[str], data: bytes) -> ExecResult:
        """Run a command with data on stdin; stdout/stderr inherited."""
        _flush_std()
        proc = self._spawn(argv, stdin=subprocess.PIPE)
        with self.process_setup.foreground_wait():
            try:
                proc.communicate(data)
            except BrokenPipeError:
                # Reader exited without consuming everything
                proc.wait()
        return ExecResult(exit_code=normalize_exit_code(proc.returncode))

    def run_pipeline(
        self, argv: list[str], pipe_argv: list[str]
    ) -> PipelineResult:
        """Run `argv | pipe_argv`.

        The first command's stdout feeds the second's stdin over an OS
        pipe; the second writes to the terminal. Both are waited for and
        both statuses are returned.
        """
        _flush_std()
        first = self._spawn(
            argv, stdin=subprocess.DEVNULL, stdout=subprocess.PIPE
        )
        assert first.stdout is not None

        try:
            second = self._spawn(pipe_argv, stdin=first.stdout)
        except LaunchError as e:
            first.stdout.close()
            first.kill()
            first.wait()
            raise LaunchError(f"failed to run piped command: {e}") from e

        # Only the second process may hold the read end now, so the first
        # sees a broken pipe if the second exits early.
        first.stdout.close()

        with self.process_setup.foreground_wait():
            second.wait()
            first.wait()
        return PipelineResult(
            exit_code=normalize_exit_code(first.returncode),
            pipe_exit_code=normalize_exit_code(second.returncode),
        )

    def run_pty(self, argv: list[str]) -> ExecResult:
        """Run a command attached to a pseudo-terminal (PTY).

        Use this for interactive programs that require a TTY:
        - remote shells
        - streaming logs that must stop on Ctrl+C
        - tools that change behavior when not in a terminal

        Controlling input is copied into the PTY and PTY output is copied
        to the controlling output, each on its own thread, while the
        controlling terminal is in raw mode. Window size changes are
        propagated until the child exits. Threads are stopped, raw mode
        restored and the PTY closed on every exit path.

        Returns:
            ExecResult with the normalised exit code
        """
        import pty

        in_fd = self.stdin_fd if self.stdin_fd is not None else sys.stdin.fileno()
        out_fd = self.stdout_fd if self.stdout_fd is not None else sys.stdout.fileno()

        try:
            master_fd, slave_fd = pty.openpty()
        except OSError as e:
            raise LaunchError(f"failed to start PTY: {e}") from e

        inherit_size(in_fd, slave_fd)

        _flush_std()
        try:
            proc = self._spawn(
                argv,
                pty=True,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
            )
        except LaunchError:
            os.close(master_fd)
            raise
        finally:
            os.close(slave_fd)

        stop_event = threading.Event()

        def _copy_input() -> None:
            while not stop_event.is_set():
                try:
                    r, _, _ = select.select([in_fd], [], [], 0.05)
                except (OSError, ValueError):
                    break
                if not r:
                    continue
                try:
                    data = os.read(in_fd, self.read_size)
                except OSError:
                    break
                if not data:
                    break
                try:
                    os.write(master_fd, data)
                except OSError:
                    break

        def _copy_output() -> None:
            while True:
                try:
                    r, _, _ = select.select([master_fd], [], [], 0.05)
                except (OSError, ValueError):
                    break
                if not r:
                    if stop_event.is_set():
                        break
                    continue
                try:
                    data = os.read(master_fd, self.read_size)
                except OSError:
                    # EIO: every slave fd is closed
                    break
                if not data:
                    break
                try:
                    os.write(out_fd, data)
                except OSError:
                    break

        t_in = threading.Thread(target=_copy_input, daemon=True)
        t_out = threading.Thread(target=_copy_output, daemon=True)

        try:
            with raw_mode(in_fd), ResizeWatcher(in_fd, master_fd):
                t_in.start()
                t_out.start()
                try:
                    proc.wait()
                except KeyboardInterrupt:
                    proc.terminate()
                    proc.wait()
                    raise
                # Let the output side drain what the child left behind
                t_out.join(timeout=self.drain_timeout)
        finally:
            stop_event.set()
            if t_in.is_alive():
                t_in.join(timeout=1.0)
            if t_out.is_alive():
                t_out.join(timeout=1.0)
            try:
                os.close(master_fd)
            except OSError:
                pass
        return ExecResult(exit_code=normalize_exit_code(proc.returncode))
