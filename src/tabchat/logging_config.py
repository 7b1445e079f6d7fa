# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Logging setup: stdlib loggers rendered through structlog.

Every module logs with ``logging.getLogger(__name__)``; this module decides
how records look.  Interactive use gets ConsoleRenderer lines on stderr so
they stay out of the chat transcript on stdout, ``--json-logs`` gets one
JSON object per line.

Leaf module: no tabchat imports. Safe to call early in startup.
"""

from __future__ import annotations

import logging
import sys
from typing import TextIO

import structlog

# Libraries that log every request or query at INFO/DEBUG.
NOISY_LOGGERS = ("httpx", "httpcore", "aiosqlite", "asyncio")


def _shared_processors() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def _quiet_libraries(root_level: int) -> None:
    floor = max(root_level, logging.WARNING)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(floor)


def configure(*, json_output: bool = False, level: str = "WARNING", stream: TextIO | None = None) -> None:
    """Route all stdlib logging through a single structlog-formatted handler.

    Args:
        json_output: JSON lines instead of human-readable console output.
        level: Root logger level name; unknown names fall back to WARNING.
        stream: Destination (default: stderr at call time).
    """
    shared = _shared_processors()
    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(colors=False)
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=shared,
        )
    )

    root_level = getattr(logging, level.upper(), None)
    if not isinstance(root_level, int):
        root_level = logging.WARNING
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(root_level)
    _quiet_libraries(root_level)
