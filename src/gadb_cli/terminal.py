# GADB — Multi-Device ADB REPL Shell
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Controlling-terminal helpers.

- raw_mode(): put a TTY in raw mode for the duration of a with-block
- inherit_size(): copy the window size of one terminal onto another
- ResizeWatcher: forward SIGWINCH to a PTY from a background thread
- ProcessSetup: how child processes are prepared for signal delivery,
  picked once per platform by default_process_setup()
"""

from __future__ import annotations

import contextlib
import os
import signal
import threading
from collections.abc import Callable, Iterator
from typing import Any


@contextlib.contextmanager
def raw_mode(fd: int) -> Iterator[None]:
    """Raw mode on fd inside the block; restored on every exit path.

    Does nothing when fd is not a TTY.
    """
    if not os.isatty(fd):
        yield
        return

    import termios
    import tty

    old_state = termios.tcgetattr(fd)
    try:
        tty.setraw(fd)
        yield
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, old_state)


def get_window_size(fd: int) -> bytes | None:
    """Packed winsize of fd, or None if fd is not a sized terminal."""
    if not os.isatty(fd):
        return None
    try:
        import fcntl
        import termios

        return fcntl.ioctl(fd, termios.TIOCGWINSZ, b"\0" * 8)
    except (ImportError, OSError):
        return None


def set_window_size(fd: int, packed: bytes) -> None:
    try:
        import fcntl
        import termios

        fcntl.ioctl(fd, termios.TIOCSWINSZ, packed)
    except (ImportError, OSError):
        pass


def inherit_size(src_fd: int, dst_fd: int) -> bool:
    """Copy src_fd's window size onto dst_fd. Returns True if copied."""
    packed = get_window_size(src_fd)
    if packed is None:
        return False
    set_window_size(dst_fd, packed)
    return True


class ResizeWatcher:
    """Propagate terminal resizes to a PTY while active.

    The SIGWINCH handler only sets an event; a worker thread does the
    ioctl. Signal handlers can only be installed from the main thread, so
    elsewhere (and on platforms without SIGWINCH) this is a no-op.
    """

    def __init__(
        self,
        src_fd: int,
        dst_fd: int,
        apply: Callable[[int, int], Any] = inherit_size,
    ) -> None:
        self.src_fd = src_fd
        self.dst_fd = dst_fd
        self._apply = apply
        self._pending = threading.Event()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._old_handler: Any = None
        self._installed = False

    def _on_signal(self, signum, frame) -> None:
        self._pending.set()

    def _run(self) -> None:
        while not self._stop.is_set():
            if self._pending.wait(timeout=0.1):
                self._pending.clear()
                if not self._stop.is_set():
                    self._apply(self.src_fd, self.dst_fd)

    def start(self) -> None:
        sigwinch = getattr(signal, "SIGWINCH", None)
        if sigwinch is None:
            return
        if threading.current_thread() is not threading.main_thread():
            return

        self._old_handler = signal.signal(sigwinch, self._on_signal)
        self._installed = True
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        self._pending.set()
        if self._thread is not None:
            self._thread.join(timeout=1.0)
            self._thread = None
        if self._installed:
            signal.signal(signal.SIGWINCH, self._old_handler)
            self._installed = False

    def __enter__(self) -> ResizeWatcher:
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.stop()


# -----------------------
# Per-platform process setup
# -----------------------


class ProcessSetup:
    """Prepare child processes for correct signal delivery.

    The base class does nothing (Windows and other non-POSIX hosts).
    """

    def popen_kwargs(self, pty: bool = False) -> dict[str, Any]:
        """Extra subprocess.Popen keyword arguments for a child."""
        return {}

    @contextlib.contextmanager
    def foreground_wait(self) -> Iterator[None]:
        """Wrap waiting on an already-started foreground child."""
        yield


def _acquire_controlling_tty() -> None:
    # Runs in the child between fork and exec; fd 0 is the PTY slave.
    os.setsid()
    import fcntl
    import termios

    tiocsctty = getattr(termios, "TIOCSCTTY", None)
    if tiocsctty is not None:
        with contextlib.suppress(OSError):
            fcntl.ioctl(0, tiocsctty, 0)


class PosixProcessSetup(ProcessSetup):
    """POSIX setup.

    PTY children get their own session with the PTY as controlling
    terminal, so Ctrl-C typed into the PTY reaches them as SIGINT.
    Direct children share our process group; Ctrl-C signals both, so
    SIGINT is ignored here while we wait and the child decides.
    """

    def popen_kwargs(self, pty: bool = False) -> dict[str, Any]:
        if pty:
            return {"preexec_fn": _acquire_controlling_tty}
        return {}

    @contextlib.contextmanager
    def foreground_wait(self) -> Iterator[None]:
        if threading.current_thread() is not threading.main_thread():
            yield
            return

        old_handler = signal.signal(signal.SIGINT, signal.SIG_IGN)
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, old_handler)


def default_process_setup() -> ProcessSetup:
    if os.name == "posix":
        return PosixProcessSetup()
    return ProcessSetup()
