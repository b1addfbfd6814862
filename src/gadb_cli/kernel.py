# GADB — Multi-Device ADB REPL Shell
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
GADB kernel.

Core REPL engine:
- startup scan + device selection
- line classification (help / exit / device switch / shell mode / adb)
- help, welcome and status text
- crash log for unexpected failures

Important boundary:
- Kernel does not load YAML; it consumes the injected ConfigModel.
- Kernel does not start processes; ExecutionRouter does.
- Every GadbError raised while handling a line is rendered as an [ERR]
  line and the session keeps running.
"""

from __future__ import annotations

import re
import traceback
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from . import config as cfg_module
from .config import ANSI_COLORS, tag
from .device import Device, format_device_list, select_devices
from .errors import GadbError, InvalidDeviceIndexError, SelectionAborted, SelectionCancelled
from .interfaces import ConfigModel, DeviceRegistry
from .parser import parse_command
from .router import ExecutionRouter
from .session import Session

if TYPE_CHECKING:
    from .shell_mode import ShellMode  # pragma: no cover

_DEVICE_INDEX_RE = re.compile(r"^:?([+-]?\d+)$")


def write_crash_log(
    error: Exception,
    raw_command: str = "",
    serial: str | None = None,
) -> None:
    """Write an entry to the crash log.

    Logs unhandled exceptions. Only creates the log directory when
    actually needed. Appends to crash.log (never overwrites).
    """
    try:
        log_path = cfg_module.crash_log_path(cfg_module.get_data_root())
        log_path.parent.mkdir(parents=True, exist_ok=True)

        lines = [f"{datetime.now().isoformat()}"]
        if raw_command:
            lines.append(f"raw={raw_command}")
        if serial:
            lines.append(f"serial={serial}")

        lines.append(f"error={type(error).__name__}: {error}")
        lines.append("traceback:")
        lines.append(
            "".join(
                traceback.format_exception(
                    type(error), error, error.__traceback__
                )
            )
        )
        lines.append("----")

        with log_path.open("a", encoding="utf-8") as f:
            f.write("\n".join(lines) + "\n")

    except Exception:
        # Already handling a failure; losing the log entry is acceptable
        pass


def parse_device_index(text: str) -> int | None:
    """`3` or `:3` -> 3; anything else -> None."""
    match = _DEVICE_INDEX_RE.match(text)
    if not match:
        return None
    return int(match.group(1))


@dataclass
class Kernel:
    """GADB session engine."""

    registry: DeviceRegistry
    router: ExecutionRouter
    config: ConfigModel

    session: Session = field(default_factory=Session)

    # Used by the startup selection menu
    input_fn: Callable[[str], str] = input

    # If set, status lines go here instead of print()
    output_fn: Callable[[str], None] | None = None

    # Local shell mode, wired by the CLI (built lazily otherwise)
    shell_mode: ShellMode | None = None

    # Derived from config
    help_triggers: set[str] = field(default_factory=set)
    exit_triggers: set[str] = field(default_factory=set)
    shell_mode_triggers: set[str] = field(default_factory=set)

    def __post_init__(self) -> None:
        self.help_triggers = set(
            self.config.get_list("repl.help_triggers", ["help", "h", "?"])
        )
        self.exit_triggers = set(
            self.config.get_list("repl.exit_triggers", ["q", "exit", "quit"])
        )
        self.shell_mode_triggers = set(
            self.config.get_list("repl.shell_mode_triggers", ["$", "shellmode"])
        )

    @property
    def running(self) -> bool:
        return self.session.running

    @property
    def exit_code(self) -> int:
        return self.session.exit_code

    @property
    def current_serial(self) -> str | None:
        return self.session.current_serial

    def _write(self, text: str) -> None:
        if self.output_fn is not None:
            self.output_fn(text if text.endswith("\n") else text + "\n")
        else:
            print(text)

    # -----------------------
    # Session
    # -----------------------

    def start(self) -> str:
        """Scan, pick a device, and return the welcome text.

        With no devices attached (or the menu cancelled) the session is
        stopped with exit code 0 and the returned text says why.
        """
        try:
            devices = self.registry.scan()
        except GadbError as e:
            self._write(tag("ERR", str(e)))
            devices = []

        self.session.start(devices)

        if not devices:
            self.session.stop(0)
            return "No devices found. Exiting..."

        if len(devices) > 1 and self.session.current_device is None:
            max_attempts = int(self.config.get_path("selection.max_attempts", 5))
            try:
                selected = select_devices(
                    devices,
                    read_fn=self.input_fn,
                    write_fn=self._write,
                    max_attempts=max_attempts,
                )
            except SelectionCancelled:
                self.session.stop(0)
                return "Exiting..."
            except SelectionAborted as e:
                self.session.stop(0)
                return f"{e}. Exiting..."
            self.session.select(selected[0])

        return self.welcome_text()

    def prompt(self) -> str:
        """Return the current prompt string with ANSI colors."""
        branding = getattr(self.config, "branding", {}) or {}
        prompt_color = ANSI_COLORS.get(
            branding.get("prompt_color", "reset"), ANSI_COLORS["reset"]
        )
        caret_color = ANSI_COLORS.get(
            branding.get("caret_color", "reset"), ANSI_COLORS["reset"]
        )
        reset = ANSI_COLORS["reset"]

        dev = self.session.current_device
        serial = f" {dev.serial}" if dev is not None else ""
        return f"{prompt_color}[GADB]{reset}{serial} {caret_color}>{reset}"

    # -----------------------
    # Command handling
    # -----------------------

    def handle_command(self, command: str) -> str:
        """Handle a single input line; returns text to show the user."""
        stripped = command.strip()
        self.session.add_to_history(stripped)

        try:
            return self._dispatch(stripped)
        except GadbError as e:
            return tag("ERR", str(e))

    def _dispatch(self, stripped: str) -> str:
        if not stripped:
            self._refresh()
            return self.status_text()

        if stripped in self.help_triggers:
            return self.help_text()

        if stripped in self.exit_triggers:
            self.session.stop(0)
            return "Exiting..."

        if stripped in self.shell_mode_triggers:
            return self._enter_shell_mode()

        index = parse_device_index(stripped)
        if index is not None:
            return self._switch_device(index)

        device = self.session.ensure_device()
        self.router.execute(device, parse_command(stripped))
        return ""

    def _refresh(self) -> list[Device]:
        return self.session.refresh(self.registry)

    def _switch_device(self, index: int) -> str:
        devices = self._refresh()
        if not devices:
            return "No devices found"

        if index == 0:
            return self.device_list_text()

        try:
            dev = self.session.set_current_device(index)
        except InvalidDeviceIndexError as e:
            return tag("ERR", str(e)) + "\n" + self.device_list_text()

        return f"Switched to: {dev}"

    def _enter_shell_mode(self) -> str:
        device = self.session.ensure_device()
        if self.shell_mode is None:
            from .shell_mode import ShellMode

            self.shell_mode = ShellMode(
                router=self.router,
                config=self.config,
                read_fn=self.input_fn,
                write_fn=self._write,
            )
        self.shell_mode.run(device)
        return ""

    # -----------------------
    # Text
    # -----------------------

    def _title(self) -> str:
        branding = getattr(self.config, "branding", {}) or {}
        return str(branding.get("title", "GADB - Fast ADB Device Switcher"))

    def status_text(self) -> str:
        dev = self.session.current_device
        lines = []
        if dev is not None:
            lines.append(f"  Current: {dev}")
        else:
            lines.append("  No device selected")
        lines.append(f"  Devices: {len(self.session.devices)} connected")
        return "\n".join(lines)

    def device_list_text(self) -> str:
        if not self.session.devices:
            return "No devices found"
        return format_device_list(
            self.session.devices, self.session.current_serial
        )

    def welcome_text(self) -> str:
        lines = [
            "",
            f"  {self._title()}",
            "",
            self.status_text(),
            "",
            "Commands:",
            "  <number>       - Switch to device (1, 2, 3...)",
            "  0              - Show device list",
            "  $              - Local shell mode on current device",
            "  help           - Show detailed help",
            "  <adb cmd>      - Execute adb command on current device",
            "  q, exit        - Quit",
            "",
        ]
        return "\n".join(lines)

    def help_text(self) -> str:
        return "\n".join([
            "",
            f"  {self._title()}",
            "",
            "USAGE:",
            "  gadb              - Start interactive REPL mode",
            "  gadb <command>    - Execute adb command on selected device",
            "  gadb devices      - List all connected devices",
            "  gadb app.apk      - Install (adb install -r app.apk)",
            "",
            "REPL COMMANDS:",
            "  help, h, ?       - Show this help message",
            "  <number>, :<n>   - Switch to device (1, 2, 3...)",
            "  0                - Show device list",
            "  Enter (empty)    - Show current device status",
            "  $, shellmode     - Local shell mode (exit to return)",
            "  q, exit, quit    - Quit REPL",
            "",
            "ADB COMMANDS (passed through):",
            "  shell <cmd>      - Execute shell command",
            "  shell            - Enter interactive shell",
            "  logcat [args]    - View logcat output",
            "  install <apk>    - Install APK file",
            "  uninstall <pkg>  - Uninstall package",
            "  push <src> <dst> - Push file to device",
            "  pull <src> <dst> - Pull file from device",
            "  ...any adb cmd   - All other adb commands work too",
            "",
            "REDIRECTION & PIPELINE:",
            "  cmd > file       - Redirect output to file (overwrite)",
            "  cmd >> file      - Append output to file",
            "  cmd | grep x     - Pipe output to another command",
            "",
            "EXAMPLES:",
            "  shell ps                    - List processes",
            "  shell ps | grep com.android - Filter processes",
            "  logcat -d > log.txt         - Save logcat to file",
            "  install app.apk             - Install app",
            "",
        ])
