# GADB — Multi-Device ADB REPL Shell
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
REPL session state.

The current device is stored as a serial and looked up in the latest
device list on every access, so it can never point into a stale scan.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .device import Device
from .errors import InvalidDeviceIndexError, NoDeviceSelectedError
from .interfaces import DeviceRegistry


class SessionState(Enum):
    UNINITIALIZED = "uninitialized"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass
class Session:
    """Device selection, history and run state for one REPL run."""

    devices: list[Device] = field(default_factory=list)
    history: list[str] = field(default_factory=list)
    state: SessionState = SessionState.UNINITIALIZED
    exit_code: int = 0
    current_serial: str | None = None

    @property
    def running(self) -> bool:
        return self.state is SessionState.RUNNING

    @property
    def current_device(self) -> Device | None:
        if self.current_serial is None:
            return None
        for d in self.devices:
            if d.serial == self.current_serial:
                return d
        return None

    def start(self, devices: list[Device]) -> None:
        """Enter RUNNING with an initial scan; one device is auto-selected."""
        self.devices = list(devices)
        self.current_serial = None
        if len(self.devices) == 1:
            self.current_serial = self.devices[0].serial
        self.exit_code = 0
        self.state = SessionState.RUNNING

    def stop(self, code: int = 0) -> None:
        self.state = SessionState.STOPPED
        self.exit_code = code

    def add_to_history(self, command: str) -> None:
        """Append unless empty or equal to the previous entry."""
        if not command:
            return
        if self.history and self.history[-1] == command:
            return
        self.history.append(command)

    def set_current_device(self, index: int) -> Device:
        """Select by 1-based index into the current device list."""
        if index < 1 or index > len(self.devices):
            raise InvalidDeviceIndexError(index)
        dev = self.devices[index - 1]
        self.current_serial = dev.serial
        return dev

    def select(self, device: Device) -> None:
        self.current_serial = device.serial

    def apply_scan(self, devices: list[Device]) -> None:
        """Replace the device list and re-resolve the selection by serial.

        - selected serial still attached: keep it
        - selected serial gone: first device of the new list, or none
        - nothing selected: auto-select only if exactly one device
        """
        self.devices = list(devices)

        if not self.devices:
            self.current_serial = None
            return

        if self.current_serial is not None:
            if self.current_device is None:
                self.current_serial = self.devices[0].serial
            return

        if len(self.devices) == 1:
            self.current_serial = self.devices[0].serial

    def refresh(self, registry: DeviceRegistry) -> list[Device]:
        self.apply_scan(registry.scan())
        return self.devices

    def ensure_device(self) -> Device:
        dev = self.current_device
        if dev is None:
            raise NoDeviceSelectedError()
        return dev
