# GADB — Multi-Device ADB REPL Shell
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Error types for GADB.

Every error a user can cause (or an external process can report) derives
from GadbError. The REPL prints these and keeps going; single-command mode
turns them into the process exit status.
"""

from __future__ import annotations

import shlex


class GadbError(Exception):
    """Base class for reportable GADB errors."""


class NoDeviceFoundError(GadbError):
    def __init__(self) -> None:
        super().__init__("No device found")


class NoDeviceSelectedError(GadbError):
    def __init__(self) -> None:
        super().__init__(
            "No device selected. Type a device number (see '0') first."
        )


class InvalidDeviceIndexError(GadbError):
    def __init__(self, index: int) -> None:
        super().__init__(f"Invalid device index: {index}")
        self.index = index


class SelectionCancelled(GadbError):
    """User chose 'q' at the device selection menu."""

    def __init__(self) -> None:
        super().__init__("Selection cancelled")


class SelectionAborted(GadbError):
    """Selection menu ran out of input or attempts."""


class LaunchError(GadbError):
    """An external process (or its plumbing) could not be started."""


class CommandFailedError(GadbError):
    """An external process exited with a nonzero status."""

    def __init__(
        self, argv: list[str], exit_code: int, what: str = "command"
    ) -> None:
        super().__init__(
            f"{what} failed with exit status {exit_code}: "
            f"{shlex.join(argv)}"
        )
        self.argv = list(argv)
        self.exit_code = exit_code
