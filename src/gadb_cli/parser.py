# GADB — Multi-Device ADB REPL Shell
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Command line parsing for redirection and pipelines.

One input line becomes one ParsedCommand:
- `a b | c d`   -> args=[a, b], pipe_args=[c, d]
- `a b >> f`    -> args=[a, b], redirect=APPEND, redirect_file="f"
- `a b > f`     -> args=[a, b], redirect=OVERWRITE, redirect_file="f"
- anything else -> args = whitespace tokens of the line

Operator precedence is pipe, then `>>`, then `>`. Operators inside single
or double quotes are ignored.

Known limitations:
- Quote tracking is a plain toggle scan. Backslash-escaped quotes are not
  understood and mismatched quotes simply leave the toggle open.
- Tokenizing splits on runs of whitespace and does NOT respect quotes.
  Quotes only matter when locating operators, so `echo "a b"` yields the
  tokens ['echo', '"a', 'b"'].
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class RedirectMode(Enum):
    NONE = "none"
    OVERWRITE = ">"
    APPEND = ">>"


@dataclass(frozen=True)
class ParsedCommand:
    """Structured form of one input line.

    `args` is the adb argument list (without `-s <serial>`). `pipe_args`
    is empty unless the line had a pipe; when it is set, redirect is NONE.
    """

    args: tuple[str, ...]
    redirect: RedirectMode = RedirectMode.NONE
    redirect_file: str = ""
    pipe_args: tuple[str, ...] = ()

    @property
    def has_pipeline(self) -> bool:
        return bool(self.pipe_args)

    @property
    def has_redirect(self) -> bool:
        return self.redirect is not RedirectMode.NONE


def is_in_quotes(text: str, index: int) -> bool:
    """Return True if text[index] sits inside a single or double quote span."""
    in_single = False
    in_double = False
    for ch in text[:index]:
        if ch == "'" and not in_double:
            in_single = not in_single
        elif ch == '"' and not in_single:
            in_double = not in_double
    return in_single or in_double


def find_pipe(text: str) -> int:
    """Index of the first unquoted `|`, or -1."""
    for i, ch in enumerate(text):
        if ch == "|" and not is_in_quotes(text, i):
            return i
    return -1


def find_append(text: str) -> int:
    """Index of the first unquoted `>>`, or -1."""
    for i in range(len(text) - 1):
        if text[i] == ">" and text[i + 1] == ">":
            if not is_in_quotes(text, i):
                return i
    return -1


def find_redirect(text: str) -> int:
    """Index of the first unquoted `>` that does not start a `>>`, or -1.

    The second `>` of a `>>` pair is not followed by another `>`, so it
    would match here; callers check for `>>` first.
    """
    for i, ch in enumerate(text):
        if ch != ">":
            continue
        if i + 1 < len(text) and text[i + 1] == ">":
            continue
        if not is_in_quotes(text, i):
            return i
    return -1


def tokenize(text: str) -> tuple[str, ...]:
    return tuple(text.split())


def parse_command(line: str) -> ParsedCommand:
    """Parse one input line. Never raises."""
    pipe_idx = find_pipe(line)
    if pipe_idx != -1:
        return ParsedCommand(
            args=tokenize(line[:pipe_idx]),
            pipe_args=tokenize(line[pipe_idx + 1:]),
        )

    append_idx = find_append(line)
    if append_idx != -1:
        return ParsedCommand(
            args=tokenize(line[:append_idx]),
            redirect=RedirectMode.APPEND,
            redirect_file=line[append_idx + 2:].strip(),
        )

    redirect_idx = find_redirect(line)
    if redirect_idx != -1:
        return ParsedCommand(
            args=tokenize(line[:redirect_idx]),
            redirect=RedirectMode.OVERWRITE,
            redirect_file=line[redirect_idx + 1:].strip(),
        )

    return ParsedCommand(args=tokenize(line))
