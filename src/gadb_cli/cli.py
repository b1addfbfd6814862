# GADB — Multi-Device ADB REPL Shell
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
GADB CLI entry point and REPL loop.

Design:
- `gadb` with no arguments starts the REPL; with arguments it runs one
  adb command on the selected device(s) and exits with its status.
- Kernel is the session engine (config+registry+router injected).
- UI is terminal-friendly PromptSession (keeps scrollback + copy/select).
"""

from __future__ import annotations

import os
import sys
from collections.abc import Callable

from . import config
from .config import tag
from .device import AdbDeviceRegistry, Device, select_devices
from .errors import CommandFailedError, GadbError, SelectionCancelled
from .executor import SubprocessExecutor
from .interfaces import ConfigModel, DeviceRegistry
from .kernel import Kernel, write_crash_log
from .parser import parse_command
from .router import ExecutionRouter
from .shell_mode import ShellMode
from .ui import PromptToolkitUI, shell_mode_completion_tree
from .utils import format_table


def _line_writer(write: Callable[[str], None]) -> Callable[[str], None]:
    """Adapt a raw writer (no newline added) to print-style lines."""

    def _write(text: str) -> None:
        write(text if text.endswith("\n") else text + "\n")

    return _write


def device_table(devices: list[Device]) -> str:
    rows = [
        [i, d.serial, d.state, d.model, d.product]
        for i, d in enumerate(devices, start=1)
    ]
    return format_table(["#", "SERIAL", "STATE", "MODEL", "PRODUCT"], rows)


def apply_apk_shortcut(args: list[str], cfg: ConfigModel) -> list[str]:
    """`app.apk` alone becomes `install -r app.apk`."""
    ext = str(cfg.get_path("adb.apk_extension", ".apk"))
    if len(args) == 1 and args[0].lower().endswith(ext):
        install = cfg.get_list("adb.apk_install_args", ["install", "-r"])
        return [*install, args[0]]
    return list(args)


def run_repl(
    kernel: Kernel,
    ui: PromptToolkitUI | None = None,
    input_fn: Callable[[str], str] = input,
    output_fn: Callable[[str], None] = print,
) -> int:
    """Run the GADB REPL loop; returns the session exit code."""

    def _emit(text: str) -> None:
        if ui is not None:
            ui.write(text if text.endswith("\n") else text + "\n")
        else:
            output_fn(text)

    while kernel.running:
        try:
            prompt = kernel.prompt()

            if ui is not None:
                line = ui.read(prompt)
            else:
                line = input_fn(prompt + " ")

            line = (line or "").strip()

            try:
                # Empty lines still go through: they refresh + show status
                response = kernel.handle_command(line)
                if response:
                    _emit(response)

            except Exception as e:
                # Unhandled exception - write crash log
                write_crash_log(e, raw_command=line, serial=kernel.current_serial)
                _emit(
                    tag(
                        "ERR",
                        f"Unhandled exception: {type(e).__name__}: {e}",
                    )
                )
                # Continue session

        except (KeyboardInterrupt, EOFError):
            _emit("\nExiting...")
            kernel.session.stop(0)
            break

    return kernel.exit_code


def run_single(
    args: list[str],
    registry: DeviceRegistry,
    router: ExecutionRouter,
    cfg: ConfigModel,
    input_fn: Callable[[str], str] = input,
    output_fn: Callable[[str], None] = print,
) -> int:
    """Run one command from the command line; returns the exit status."""
    if args and args[0] == cfg.get_path("adb.devices_keyword", "devices"):
        try:
            devices = registry.scan()
        except GadbError as e:
            output_fn(tag("ERR", str(e)))
            return 0
        if devices:
            output_fn(device_table(devices))
        else:
            output_fn("No device found")
        return 0

    args = apply_apk_shortcut(args, cfg)
    parsed = parse_command(" ".join(args))

    try:
        devices = select_devices(
            registry.scan(),
            read_fn=input_fn,
            write_fn=output_fn,
            max_attempts=int(cfg.get_path("selection.max_attempts", 5)),
        )
        router.execute_all(devices, parsed)
    except SelectionCancelled:
        output_fn("Exiting...")
        return 0
    except CommandFailedError as e:
        output_fn(tag("ERR", str(e)))
        return e.exit_code or 1
    except GadbError as e:
        output_fn(tag("ERR", str(e)))
        return 1

    return 0


def main() -> None:
    """Main entry point for GADB CLI."""
    args = sys.argv[1:]

    # Explicit wiring: config + registry + executor + router
    cfg = config.load_system_config()
    registry = AdbDeviceRegistry(adb_path=str(cfg.get_path("adb.path", "adb")))
    executor = SubprocessExecutor(
        force_color=bool(cfg.get_path("output.force_color", False))
    )

    if args:
        router = ExecutionRouter.from_config(
            executor, cfg, output_fn=sys.stdout.write
        )
        sys.exit(run_single(args, registry, router, cfg))

    legacy = os.environ.get("GADB_LEGACY_UI") == "1"
    router = ExecutionRouter.from_config(executor, cfg, output_fn=sys.stdout.write)
    kernel = Kernel(registry=registry, router=router, config=cfg)

    # Start kernel (scan + selection menu run before the UI exists)
    start_output = kernel.start()
    if start_output:
        print(start_output)
    if not kernel.running:
        sys.exit(kernel.exit_code)

    # If user explicitly disables prompt_toolkit UI:
    if legacy:
        sys.exit(run_repl(kernel))

    history_limit = int(cfg.get_path("repl.history_limit", 100))

    # Default: PromptToolkitUI (keeps terminal scrollback/copy/select)
    ui = PromptToolkitUI(
        kernel,
        history_file=config.history_path(
            str(cfg.get_path("repl.history_file", "gadb_history"))
        ),
        history_limit=history_limit,
    )
    shell_ui = PromptToolkitUI(
        kernel,
        history_file=config.history_path(
            str(cfg.get_path("repl.shell_history_file", "gadb_shell_history"))
        ),
        history_limit=history_limit,
        completion_tree=shell_mode_completion_tree(),
        show_toolbar=False,
    )

    # Route streaming output through UI (router/kernel may call these)
    kernel.output_fn = ui.write
    router.output_fn = ui.write
    kernel.shell_mode = ShellMode(
        router=router,
        config=cfg,
        read_fn=shell_ui.read,
        write_fn=_line_writer(ui.write),
    )

    sys.exit(run_repl(kernel, ui=ui))
