# GADB — Multi-Device ADB REPL Shell
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Utility functions for GADB.
"""

import shlex
from typing import Any


def format_table(
    headers: list[str],
    rows: list[list[Any]],
    title: str = ""
) -> str:
    """
    Render rows as left-aligned columns separated by two spaces.

    Args:
        headers: column names
        rows: one list of values per row (values are str()-ed)
        title: optional first line

    Returns:
        The table, or "" when there are no rows
    """
    if not rows:
        return ""

    cells = [[str(h) for h in headers]]
    cells.extend([str(v) for v in row] for row in rows)

    widths = [
        max(len(line[col]) for line in cells if col < len(line))
        for col in range(len(headers))
    ]

    out = [title] if title else []
    for line in cells:
        padded = (value.ljust(widths[col]) for col, value in enumerate(line))
        out.append("  ".join(padded).rstrip())
    return "\n".join(out)


def format_argv(argv: list[str]) -> str:
    """Render an argv list the way a user would type it."""
    return shlex.join(argv)
