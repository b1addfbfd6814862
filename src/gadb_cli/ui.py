# GADB — Multi-Device ADB REPL Shell
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

from __future__ import annotations

from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.formatted_text import ANSI
from prompt_toolkit.history import FileHistory
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.patch_stdout import patch_stdout
from prompt_toolkit.shortcuts import print_formatted_text
from prompt_toolkit.styles import Style

if TYPE_CHECKING:
    from .kernel import Kernel  # pragma: no cover


# ----------------------------
# Completion tables
# ----------------------------

ADB_COMMANDS: tuple[str, ...] = (
    "devices", "shell", "logcat", "install", "install-multiple",
    "uninstall", "push", "pull", "sync", "reboot", "root", "unroot",
    "remount", "bugreport", "forward", "reverse", "tcpip", "usb",
    "connect", "disconnect", "get-state", "get-serialno", "get-devpath",
    "wait-for-device", "sideload", "jdwp", "emu", "version",
    "start-server", "kill-server",
)

PM_COMMANDS: tuple[str, ...] = (
    "list", "path", "dump", "install", "uninstall", "clear", "enable",
    "disable", "disable-user", "default-state", "hide", "unhide",
    "suspend", "unsuspend", "grant", "revoke", "reset-permissions",
    "set-install-location", "get-install-location", "trim-caches",
    "create-user", "remove-user", "list-users",
)

AM_COMMANDS: tuple[str, ...] = (
    "start", "start-activity", "startservice", "stopservice",
    "broadcast", "force-stop", "kill", "kill-all", "instrument",
    "profile", "dumpheap", "set-debug-app", "clear-debug-app",
    "monitor", "stack", "task", "to-uri", "to-intent-uri",
)

DUMPSYS_SERVICES: tuple[str, ...] = (
    "activity", "package", "window", "meminfo", "cpuinfo", "battery",
    "batterystats", "wifi", "connectivity", "power", "alarm", "input",
    "display", "SurfaceFlinger", "gfxinfo", "procstats", "usagestats",
    "notification", "audio", "location", "netstats", "deviceidle",
    "jobscheduler", "media.camera", "telephony.registry",
)

SHELL_COMMANDS: tuple[str, ...] = (
    "ps", "top", "getprop", "setprop", "wm", "input", "screencap",
    "screenrecord", "ls", "cd", "pwd", "cat", "grep", "rm", "mv", "cp",
    "mkdir", "mount", "umount", "netstat", "ping", "ifconfig", "ip",
    "route", "netcfg", "su", "id", "whoami", "date", "uptime", "sleep",
    "dmesg", "lsmod", "insmod", "rmmod", "kill", "killall", "chmod",
    "chown", "ln", "df", "du", "free", "uname", "settings", "service",
    "logcat",
)

REPL_BUILTINS: tuple[str, ...] = ("help", "exit", "quit", "shellmode")

SHELL_MODE_BUILTINS: tuple[str, ...] = ("exit", "quit", "q", "--pty", "-i")

CompletionTree = Mapping[str, "CompletionTree"]


def _shell_tree() -> dict[str, Any]:
    tree: dict[str, Any] = {name: {} for name in SHELL_COMMANDS}
    tree["pm"] = {name: {} for name in PM_COMMANDS}
    tree["am"] = {name: {} for name in AM_COMMANDS}
    tree["dumpsys"] = {name: {} for name in DUMPSYS_SERVICES}
    return tree


def repl_completion_tree() -> dict[str, Any]:
    """Completion tree for the GADB prompt (adb commands)."""
    tree: dict[str, Any] = {name: {} for name in ADB_COMMANDS}
    tree["shell"] = _shell_tree()
    tree.update({name: {} for name in REPL_BUILTINS})
    return tree


def shell_mode_completion_tree() -> dict[str, Any]:
    """Completion tree for shell mode (remote commands, no `shell` prefix)."""
    tree = _shell_tree()
    tree.update({name: {} for name in SHELL_MODE_BUILTINS})
    return tree


class CommandTreeCompleter(Completer):
    """Completes words by walking a nested command tree.

    Nothing is offered once the line has a pipe or redirection, since
    what follows is a local command or a file name.
    """

    def __init__(self, tree: CompletionTree) -> None:
        self.tree = tree

    def _node_for(self, path: list[str]) -> CompletionTree | None:
        node: CompletionTree = self.tree
        for word in path:
            child = node.get(word)
            if child is None:
                return None
            node = child
        return node

    def get_completions(
        self, document, complete_event
    ) -> Iterable[Completion]:
        before = document.text_before_cursor or ""
        if "|" in before or ">" in before:
            return

        words = before.split()
        if not before or before[-1].isspace():
            path, prefix = words, ""
        else:
            path, prefix = words[:-1], words[-1]

        node = self._node_for(path)
        if not node:
            return

        for name in sorted(node):
            if name.startswith(prefix):
                yield Completion(name, start_position=-len(prefix))


# ----------------------------
# History
# ----------------------------


class BoundedFileHistory(FileHistory):
    """FileHistory that keeps only the newest `limit` entries on disk."""

    def __init__(self, filename: str | Path, limit: int = 100) -> None:
        self.limit = limit
        super().__init__(str(filename))
        self._trim()

    def store_string(self, string: str) -> None:
        super().store_string(string)
        self._trim()

    def _trim(self) -> None:
        if self.limit <= 0:
            return

        # newest first
        entries = list(self.load_history_strings())
        if len(entries) <= self.limit:
            return

        keep = list(reversed(entries[: self.limit]))
        with open(self.filename, "wb") as f:
            for entry in keep:
                f.write(b"\n# gadb\n")
                for line in entry.split("\n"):
                    f.write(("+" + line + "\n").encode("utf-8"))


# ----------------------------
# Theme / Style
# ----------------------------


def _default_style_dict() -> dict[str, str]:
    return {
        "completion-menu": "bg:#111111 #d0d0d0",
        "completion-menu.completion": "bg:#111111 #d0d0d0",
        "completion-menu.completion.current": "bg:#303030 #ffffff bold",
        "scrollbar.background": "bg:#202020",
        "scrollbar.button": "bg:#505050",
        "bottom-toolbar": "bg:#0b0b0b #d0d0d0",
        "gadb.devicebar": "bg:#0b0b0b #d0d0d0",
        "gadb.devicebar.current": "bg:#d0d0d0 #0b0b0b bold",
    }


def _build_style() -> Style:
    return Style.from_dict(_default_style_dict())


# ----------------------------
# PromptSession UI
# ----------------------------


class PromptToolkitUI:
    """
    Terminal-friendly line editor:
      - Keeps normal terminal scrollback + drag-select copy.
      - Persistent, bounded history file.
      - Tab completion from static command tables.
      - Bottom toolbar with the current device and device count.
      - Ctrl+C clears a non-empty line; on an empty line it ends input.
    """

    def __init__(
        self,
        kernel: Kernel | None = None,
        history_file: str | Path | None = None,
        history_limit: int = 100,
        completion_tree: CompletionTree | None = None,
        show_toolbar: bool = True,
    ) -> None:
        self.kernel = kernel
        self.session: PromptSession[str] | None = None
        self.history_file = history_file
        self.history_limit = history_limit
        self.completion_tree = (
            completion_tree if completion_tree is not None
            else repl_completion_tree()
        )
        self.show_toolbar = show_toolbar
        self._style = _build_style()

        # Track whether we ended on a newline (to prevent prompt mangling)
        self._needs_newline_before_prompt = False

    # ---------- toolbar rendering ----------

    def _bottom_toolbar(self):
        k = self.kernel
        if k is None or not self.show_toolbar:
            return ""

        session = k.session
        dev = session.current_device
        current = str(dev) if dev is not None else "no device"
        return [
            ("class:gadb.devicebar.current", f" {current} "),
            ("class:gadb.devicebar", f"  {len(session.devices)} connected  "),
        ]

    # ---------- session ----------

    def _ensure_session(self) -> None:
        if self.session is not None:
            return

        kwargs: dict[str, Any] = {}
        if self.history_file is not None:
            kwargs["history"] = BoundedFileHistory(
                self.history_file, limit=self.history_limit
            )

        self.session = PromptSession(
            key_bindings=self.build_key_bindings(self.kernel),
            completer=CommandTreeCompleter(self.completion_tree),
            complete_while_typing=False,
            style=self._style,
            bottom_toolbar=self._bottom_toolbar,
            **kwargs,
        )

    # ---------- public API ----------

    def read(self, prompt: str) -> str:
        self._ensure_session()
        assert self.session is not None

        # If last output didn't end with newline, insert one
        # before prompt redraw
        if self._needs_newline_before_prompt:
            print_formatted_text(
                ANSI("\n"), style=self._style, end=""
            )
            self._needs_newline_before_prompt = False

        if not prompt.endswith(" "):
            prompt += " "

        with patch_stdout():
            # prompt may carry ANSI colors from kernel.prompt()
            return self.session.prompt(ANSI(prompt))

    def write(self, text: str) -> None:
        """Write EXACTLY what we receive (no extra newline).

        Track prompt safety.
        """
        if not text:
            return
        print_formatted_text(ANSI(text), style=self._style, end="")
        self._needs_newline_before_prompt = not text.endswith("\n")

    # ---------- TTY handoff support ----------

    def prepare_tty_handoff(self) -> None:
        """Prepare for handing the terminal to a PTY session.

        Prevents the remote shell from starting on the same line as
        previous output.
        """
        if self._needs_newline_before_prompt:
            print_formatted_text(ANSI("\n"), style=self._style, end="")
            self._needs_newline_before_prompt = False

    def restore_after_tty(self) -> None:
        """Restore UI state after the PTY session returns control."""
        self._needs_newline_before_prompt = False

    # ---------- keybindings ----------

    def build_key_bindings(self, kernel: Kernel | None = None) -> KeyBindings:
        kb = KeyBindings()

        @kb.add("c-l")
        def _(event):
            try:
                event.app.renderer.clear()
            except Exception:
                pass
            try:
                event.current_buffer.reset()
            except Exception:
                pass
            event.app.invalidate()

        @kb.add("c-c")
        def _(event):
            buf = event.current_buffer
            if buf.text:
                # Abort the current input, keep the session
                buf.reset()
                return
            event.app.exit(exception=KeyboardInterrupt, style="class:aborting")

        return kb
