# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Runtime configuration: CLI flags with ``TABCHAT_*`` environment overrides."""

from __future__ import annotations

import argparse
import os
from contextlib import suppress
from dataclasses import dataclass, field
from pathlib import Path

from .browser_session import BrowserConfig
from .llm_client import DEFAULT_API_BASE

DEFAULT_DB_PATH = Path.home() / ".tabchat" / "tabchat.db"
DEFAULT_RETRY_DELAY = 1.5

_TRUTHY = ("1", "true", "yes")


@dataclass
class AppConfig:
    """Everything the CLI needs to wire a session together."""

    db_path: Path = DEFAULT_DB_PATH
    api_base: str = DEFAULT_API_BASE
    log_level: str = "WARNING"
    json_logs: bool = False
    headless: bool = True
    retry_delay: float = DEFAULT_RETRY_DELAY
    browser: BrowserConfig = field(default_factory=BrowserConfig)

    def __post_init__(self) -> None:
        self.browser.headless = self.headless


def _env(name: str) -> str:
    return os.environ.get(name, "").strip()


def from_args(args: argparse.Namespace) -> AppConfig:
    """Build config from parsed CLI args, then apply environment overrides.

    Explicit flags win over environment variables, which win over defaults.
    """
    db_path = getattr(args, "db_path", None) or _env("TABCHAT_DB_PATH") or DEFAULT_DB_PATH
    api_base = _env("TABCHAT_API_BASE") or DEFAULT_API_BASE

    if getattr(args, "verbose", False):
        log_level = "DEBUG"
    else:
        log_level = (_env("TABCHAT_LOG_LEVEL") or "WARNING").upper()

    json_logs = bool(getattr(args, "json_logs", False)) or _env("TABCHAT_LOG_JSON").lower() in _TRUTHY
    headed = bool(getattr(args, "headed", False)) or _env("TABCHAT_HEADED").lower() in _TRUTHY

    retry_delay = DEFAULT_RETRY_DELAY
    env_delay = _env("TABCHAT_RETRY_DELAY")
    if env_delay:
        with suppress(ValueError):
            retry_delay = max(0.0, float(env_delay))

    return AppConfig(
        db_path=Path(db_path).expanduser(),
        api_base=api_base,
        log_level=log_level,
        json_logs=json_logs,
        headless=not headed,
        retry_delay=retry_delay,
    )
