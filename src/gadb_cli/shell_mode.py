# GADB — Multi-Device ADB REPL Shell
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Local shell mode.

A line-oriented shell against one device without a PTY: every line runs
as `adb -s <serial> shell <line>` with output streamed straight to the
terminal. Useful when a full remote shell is overkill but typing `shell`
before every command gets old.

Inside shell mode:
- exit / quit / q, Ctrl+D: back to the GADB prompt
- --pty / -i: open an interactive PTY shell, then return to GADB
- <cmd> --pty / <cmd> -i: run just that command under a PTY
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from .config import tag
from .device import Device
from .errors import GadbError
from .interfaces import ConfigModel
from .router import ExecutionRouter


@dataclass
class ShellMode:
    router: ExecutionRouter
    config: ConfigModel
    read_fn: Callable[[str], str] = input
    write_fn: Callable[[str], None] = print

    exit_triggers: set[str] = field(default_factory=set)
    pty_flags: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.exit_triggers = set(
            self.config.get_list("shell_mode.exit_triggers", ["exit", "quit", "q"])
        )
        self.pty_flags = self.config.get_list(
            "shell_mode.pty_flags", ["--pty", "-i"]
        )

    def prompt(self, device: Device) -> str:
        return f"[{device.serial}] $"

    def _pty_suffix_command(self, line: str) -> str | None:
        """`top --pty` -> `top`; None if line has no PTY suffix."""
        for flag in self.pty_flags:
            suffix = f" {flag}"
            if line.endswith(suffix):
                return line[: -len(suffix)].strip()
        return None

    def run(self, device: Device) -> None:
        """Run the shell-mode loop until the user leaves it."""
        self.write_fn("")
        self.write_fn(f"Entering shell mode for: {device}")
        self.write_fn("Type 'exit', 'quit', or Ctrl+D to return to GADB")
        self.write_fn("For interactive commands (top, logcat), use: --pty")
        self.write_fn("")

        prompt = self.prompt(device)
        while True:
            try:
                line = self.read_fn(prompt + " ")
            except (KeyboardInterrupt, EOFError):
                self.write_fn("\nExiting shell mode...")
                break

            line = (line or "").strip()
            if not line:
                continue

            if line in self.exit_triggers:
                self.write_fn("Exiting shell mode...")
                break

            try:
                if line in self.pty_flags:
                    self.write_fn("Switching to PTY mode...")
                    self.router.run_interactive(device, ["shell"])
                    break

                command = self._pty_suffix_command(line)
                if command:
                    self.write_fn(f"Running in PTY mode: {command}")
                    self.router.run_interactive(device, ["shell", command])
                    continue

                self.router.run_remote_line(device, line)
            except GadbError as e:
                self.write_fn(tag("ERR", str(e)))
