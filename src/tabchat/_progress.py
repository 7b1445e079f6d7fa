# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Spinner and step lines for one-shot CLI commands.

Everything goes to stderr and only when it is a terminal, so piped
``tabchat context`` output stays clean.
"""

from __future__ import annotations

import contextlib
import sys
import time
from collections.abc import Generator

from rich.console import Console
from rich.markup import escape


def _stderr_console() -> Console | None:
    if not sys.stderr.isatty():
        return None
    return Console(stderr=True)


@contextlib.contextmanager
def status_spinner(msg: str, *, done: str | None = None) -> Generator[None, None, None]:
    """Show a spinner with *msg* while the block runs.

    When *done* is given it is printed with the elapsed time once the block
    finishes without raising.
    """
    console = _stderr_console()
    if console is None:
        yield
        return

    start = time.perf_counter()
    with console.status(escape(msg)):
        yield
    if done:
        console.print(f"[green]✓[/green] {escape(done)} [dim]({time.perf_counter() - start:.1f}s)[/dim]", highlight=False)


def print_step(msg: str) -> None:
    """Dim status line on stderr (interactive only)."""
    console = _stderr_console()
    if console is not None:
        console.print(f"[dim]{escape(msg)}[/dim]", highlight=False)
