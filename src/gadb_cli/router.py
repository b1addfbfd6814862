# GADB — Multi-Device ADB REPL Shell
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Execution routing: ParsedCommand + device -> running adb.

Dispatch:

  redirect   pipeline  interactive  ->
  none       none      no              direct, inherited stdio
  none       none      yes             PTY (direct if no PTY support)
  file       none      no              direct, stdout -> file
  file       none      yes             direct, stdout+stderr -> file
  any        present   no              adb | cmd over an OS pipe
  any        present   yes             capture adb output (failure ignored),
                                       then feed it to cmd

Nonzero exits raise CommandFailedError. Running on several devices goes
one device at a time and stops at the first failure.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import IO, Any

from .config import tag
from .device import Device
from .errors import CommandFailedError, LaunchError
from .interfaces import ConfigModel, Executor
from .parser import ParsedCommand, RedirectMode
from .utils import format_argv


@dataclass(frozen=True)
class InteractivePolicy:
    """Which adb invocations need a pseudo-terminal.

    commands: first arguments that may need one
    bare_only: of those, the ones that need it only when nothing follows
        (`shell` opens a remote shell, `shell ps` just runs ps)
    non_streaming_flags: flags that turn a streaming command into a
        one-shot dump (`logcat -d`)
    """

    commands: frozenset[str] = frozenset({"shell", "sh", "logcat"})
    bare_only: frozenset[str] = frozenset({"shell", "sh"})
    non_streaming_flags: dict[str, frozenset[str]] = field(
        default_factory=lambda: {
            "logcat": frozenset({
                "-d", "-c", "-g", "-t", "-S", "-L",
                "--clear", "--buffer-size", "--statistics", "--last", "--help",
            })
        }
    )

    @classmethod
    def from_config(cls, cfg: ConfigModel) -> InteractivePolicy:
        raw_flags = cfg.get_path("interactive.non_streaming_flags", {}) or {}
        flags: dict[str, frozenset[str]] = {}
        if isinstance(raw_flags, dict):
            for cmd, values in raw_flags.items():
                if isinstance(values, list):
                    flags[str(cmd)] = frozenset(str(v) for v in values)
        return cls(
            commands=frozenset(
                cfg.get_list("interactive.commands", ["shell", "sh", "logcat"])
            ),
            bare_only=frozenset(
                cfg.get_list("interactive.bare_only", ["shell", "sh"])
            ),
            non_streaming_flags=flags,
        )

    def is_interactive(self, args: Iterable[str]) -> bool:
        args = list(args)
        if not args:
            return False

        cmd, rest = args[0], args[1:]
        if cmd not in self.commands:
            return False

        if cmd in self.bare_only:
            return not rest

        flags = self.non_streaming_flags.get(cmd, frozenset())
        for arg in rest:
            for flag in flags:
                if arg == flag:
                    return False
                # Short flags may carry their value: -t100
                if len(flag) == 2 and not arg.startswith("--") and arg.startswith(flag):
                    return False
                if flag.startswith("--") and arg.startswith(flag + "="):
                    return False
        return True


class ExecutionRouter:
    """Turns parsed commands into adb process topologies."""

    def __init__(
        self,
        executor: Executor,
        adb_path: str = "adb",
        policy: InteractivePolicy | None = None,
        output_fn: Callable[[str], None] | None = None,
        show_run: bool = True,
    ):
        self.executor = executor
        self.adb_path = adb_path
        self.policy = policy or InteractivePolicy()
        self.output_fn = output_fn
        self.show_run = show_run

    @classmethod
    def from_config(
        cls,
        executor: Executor,
        cfg: ConfigModel,
        output_fn: Callable[[str], None] | None = None,
    ) -> ExecutionRouter:
        return cls(
            executor=executor,
            adb_path=str(cfg.get_path("adb.path", "adb")),
            policy=InteractivePolicy.from_config(cfg),
            output_fn=output_fn,
            show_run=bool(cfg.get_path("output.show_run", True)),
        )

    # -----------------------
    # Helpers
    # -----------------------

    def device_argv(self, serial: str, args: Iterable[str]) -> list[str]:
        return [self.adb_path, "-s", serial, *args]

    def is_interactive(self, args: Iterable[str]) -> bool:
        return self.policy.is_interactive(args)

    def _announce(self, text: str) -> None:
        if self.show_run and self.output_fn:
            self.output_fn(tag("RUN", text) + "\n")

    def _ui_hook(self, name: str) -> None:
        # Lets a prompt_toolkit UI tidy up around a TTY handoff
        if self.output_fn and hasattr(self.output_fn, "__self__"):
            ui = self.output_fn.__self__
            hook = getattr(ui, name, None)
            if callable(hook):
                hook()

    @staticmethod
    def _check(argv: list[str], exit_code: int, what: str = "adb command") -> None:
        if exit_code != 0:
            raise CommandFailedError(argv, exit_code, what=what)

    # -----------------------
    # Public API
    # -----------------------

    def execute(self, device: Device, parsed: ParsedCommand) -> None:
        """Run one parsed command against one device."""
        if parsed.has_pipeline:
            self._run_pipeline(device, parsed)
            return

        if parsed.has_redirect:
            self._run_redirected(device, parsed)
            return

        if self.is_interactive(parsed.args):
            self.run_interactive(device, list(parsed.args))
            return

        argv = self.device_argv(device.serial, parsed.args)
        self._announce(format_argv(argv))
        result = self.executor.run_direct(argv)
        self._check(argv, result.exit_code)

    def execute_all(
        self, devices: Iterable[Device], parsed: ParsedCommand
    ) -> None:
        """Run on each device in order; the first failure stops the rest."""
        for device in devices:
            self.execute(device, parsed)

    def run_interactive(self, device: Device, args: list[str]) -> None:
        """Run args under a PTY, or directly where PTYs are unavailable."""
        argv = self.device_argv(device.serial, args)
        self._announce(format_argv(argv))

        if not self.executor.supports_pty:
            result = self.executor.run_direct(argv)
            self._check(argv, result.exit_code)
            return

        self._ui_hook("prepare_tty_handoff")
        try:
            result = self.executor.run_pty(argv)
        finally:
            self._ui_hook("restore_after_tty")
        self._check(argv, result.exit_code)

    def run_remote_line(self, device: Device, line: str) -> None:
        """Run one raw shell line on the device (`adb shell '<line>'`)."""
        argv = self.device_argv(device.serial, ["shell", line])
        result = self.executor.run_direct(argv)
        self._check(argv, result.exit_code)

    # -----------------------
    # Redirection + pipelines
    # -----------------------

    def _open_target(self, parsed: ParsedCommand) -> IO[Any]:
        mode = "ab" if parsed.redirect is RedirectMode.APPEND else "wb"
        try:
            return open(parsed.redirect_file, mode)
        except OSError as e:
            raise LaunchError(f"failed to open output file: {e}") from e

    def _run_redirected(self, device: Device, parsed: ParsedCommand) -> None:
        argv = self.device_argv(device.serial, parsed.args)
        self._announce(
            f"{format_argv(argv)} {parsed.redirect.value} {parsed.redirect_file}"
        )

        with self._open_target(parsed) as target:
            if self.is_interactive(parsed.args):
                # No PTY when the output goes to a file: both streams land there
                result = self.executor.run_direct(
                    argv, stdout=target, stderr=target
                )
            else:
                result = self.executor.run_direct(argv, stdout=target)
        self._check(argv, result.exit_code)

    def _run_pipeline(self, device: Device, parsed: ParsedCommand) -> None:
        argv = self.device_argv(device.serial, parsed.args)
        pipe_argv = list(parsed.pipe_args)
        self._announce(f"{format_argv(argv)} | {format_argv(pipe_argv)}")

        if self.is_interactive(parsed.args):
            # The base command's own failure is ignored; whatever it printed
            # still goes through the pipe.
            try:
                captured = self.executor.run_capture(argv).output
            except LaunchError:
                captured = b""
            result = self.executor.run_with_input(pipe_argv, captured)
            self._check(pipe_argv, result.exit_code, what="piped command")
            return

        result = self.executor.run_pipeline(argv, pipe_argv)
        self._check(pipe_argv, result.pipe_exit_code, what="piped command")
        self._check(argv, result.exit_code)
