# GADB — Multi-Device ADB REPL Shell
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Device discovery and selection.

- parse_devices_output(): turn `adb devices -l` text into Device values
- AdbDeviceRegistry: runs the listing command and parses it
- select_devices(): the numbered selection menu used when more than one
  device is attached
"""

from __future__ import annotations

import subprocess
from collections.abc import Callable
from dataclasses import dataclass, field

from .errors import LaunchError, NoDeviceFoundError, SelectionAborted, SelectionCancelled

OFFLINE_STATE = "offline"
LISTING_HEADER = "List of devices"

# serial + state
MIN_FIELDS = 2

_KEYED_FIELDS = {
    "product": "product",
    "model": "model",
    "device": "device_class",
}

# Present only in the keyed `adb devices -l` format
_KEYED_ONLY = {"transport_id"}


@dataclass(frozen=True)
class Device:
    """One attached device. Two Devices are equal if their serials are."""

    serial: str
    state: str = field(default="device", compare=False)
    product: str = field(default="", compare=False)
    model: str = field(default="", compare=False)
    device_class: str = field(default="", compare=False)

    def __str__(self) -> str:
        if self.model:
            return f"{self.serial} ({self.model})"
        return self.serial


def _parse_row(fields: list[str]) -> Device | None:
    if len(fields) < MIN_FIELDS:
        return None

    serial, state = fields[0], fields[1]
    if not serial or state == OFFLINE_STATE:
        return None

    values = {"product": "", "model": "", "device_class": ""}
    extras = fields[2:]

    keyed = False
    for item in extras:
        key, sep, value = item.partition(":")
        if sep and key in _KEYED_FIELDS:
            values[_KEYED_FIELDS[key]] = value
            keyed = True
        elif sep and key in _KEYED_ONLY:
            keyed = True

    if not keyed:
        # Older adb prints bare positional columns:
        # serial state [usb:]product:vendor model device
        if len(extras) > 0:
            parts = extras[0].split(":")
            values["product"] = parts[1] if len(parts) >= 3 else extras[0]
        if len(extras) > 1:
            values["model"] = extras[1]
        if len(extras) > 2:
            values["device_class"] = extras[2]

    return Device(serial=serial, state=state, **values)


def parse_devices_output(text: str) -> list[Device]:
    """Parse `adb devices -l` output into devices, in listing order.

    Skips the header, blank lines, daemon chatter (`* daemon ...`),
    rows shorter than serial + state, and offline devices.
    """
    devices: list[Device] = []
    for line in text.splitlines():
        s = line.strip()
        if not s or s.startswith(LISTING_HEADER) or s.startswith("*"):
            continue
        dev = _parse_row(s.split())
        if dev is not None:
            devices.append(dev)
    return devices


class AdbDeviceRegistry:
    """DeviceRegistry backed by `adb devices -l`."""

    def __init__(self, adb_path: str = "adb", timeout: int = 30):
        self.adb_path = adb_path
        self.timeout = timeout

    def scan(self) -> list[Device]:
        argv = [self.adb_path, "devices", "-l"]
        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise LaunchError(
                f"Device listing timed out after {self.timeout} seconds"
            ) from e
        except OSError as e:
            raise LaunchError(f"Failed to run {self.adb_path}: {e}") from e

        return parse_devices_output(result.stdout)


def format_device_list(
    devices: list[Device], current_serial: str | None = None
) -> str:
    """Numbered device list; the current device is marked with '*'."""
    lines = []
    for i, d in enumerate(devices, start=1):
        prefix = "* " if current_serial and d.serial == current_serial else "  "
        lines.append(f"{prefix}[{i}] {d}")
    return "\n".join(lines)


def select_devices(
    devices: list[Device],
    read_fn: Callable[[str], str] = input,
    write_fn: Callable[[str], None] = print,
    pinned: str | None = None,
    max_attempts: int = 5,
) -> list[Device]:
    """Pick the target devices for one command.

    - no devices: NoDeviceFoundError
    - one device, or a pinned serial that is attached: that device
    - otherwise a menu: number, '0'/'all' for every device, 'q' to quit,
      blank for the first device

    Bad entries re-prompt up to max_attempts times, then SelectionAborted.
    End of input is SelectionAborted; 'q' or Ctrl-C is SelectionCancelled.
    """
    if not devices:
        raise NoDeviceFoundError()

    if len(devices) == 1:
        return [devices[0]]

    if pinned:
        for d in devices:
            if d.serial == pinned:
                return [d]

    count = len(devices)
    menu = ["Connected devices:", "  [0] All devices"]
    menu.extend(f"  [{i}] {d}" for i, d in enumerate(devices, start=1))
    menu.append("  [q] Exit")
    write_fn("\n".join(menu))

    for _attempt in range(max(1, max_attempts)):
        try:
            line = read_fn("Select device [1]: ")
        except EOFError as e:
            raise SelectionAborted("No device selected") from e
        except KeyboardInterrupt as e:
            raise SelectionCancelled() from e

        line = (line or "").strip()
        if not line:
            return [devices[0]]
        if line.lower() in ("0", "all"):
            return list(devices)
        if line.lower() == "q":
            raise SelectionCancelled()

        try:
            choice = int(line)
        except ValueError:
            choice = -1

        if 1 <= choice <= count:
            return [devices[choice - 1]]

        write_fn(f"Invalid input: {line}, please try again")

    raise SelectionAborted(
        f"No valid selection after {max(1, max_attempts)} attempts"
    )
