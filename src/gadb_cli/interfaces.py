# GADB — Multi-Device ADB REPL Shell
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Protocol definitions for dependency injection.

These interfaces enable clean separation between the REPL kernel,
device discovery, and process execution.
"""

from __future__ import annotations

from typing import IO, TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from .device import Device  # pragma: no cover
    from .executor import CaptureResult, ExecResult, PipelineResult  # pragma: no cover


class DeviceRegistry(Protocol):
    """Protocol for enumerating attached devices."""

    def scan(self) -> list[Device]:
        """Return reachable devices in listing order (offline ones skipped)."""
        ...


class Executor(Protocol):
    """Protocol for launching external processes."""

    @property
    def supports_pty(self) -> bool:
        """Whether run_pty() can allocate a pseudo-terminal here."""
        ...

    def run_direct(
        self,
        argv: list[str],
        stdin: IO[Any] | None = None,
        stdout: IO[Any] | None = None,
        stderr: IO[Any] | None = None,
    ) -> ExecResult:
        """Run to completion; None streams inherit the terminal."""
        ...

    def run_pty(self, argv: list[str]) -> ExecResult:
        """Run attached to a pseudo-terminal bridged to the terminal."""
        ...

    def run_capture(self, argv: list[str]) -> CaptureResult:
        """Run to completion capturing stdout+stderr together."""
        ...

    def run_with_input(self, argv: list[str], data: bytes) -> ExecResult:
        """Run with data on stdin, output to the terminal."""
        ...

    def run_pipeline(
        self, argv: list[str], pipe_argv: list[str]
    ) -> PipelineResult:
        """Run `argv | pipe_argv`, output to the terminal."""
        ...


class ConfigModel(Protocol):
    """Protocol for configuration access."""

    def get_path(self, path: str, default: Any = None) -> Any:
        """Dot-path lookup."""
        ...

    def get_list(self, path: str, default: list[str] | None = None) -> list[str]:
        """Dot-path lookup coerced to a list of strings."""
        ...
