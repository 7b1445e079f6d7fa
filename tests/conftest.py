# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import tabchat  # noqa: F401
except ImportError:
    raise ImportError("tabchat is not installed. Run: pip install -e '.[dev]'") from None

import pytest

from tabchat.storage import InMemoryStore
from tests._helpers import VALID_KEY


@pytest.fixture(autouse=True)
def _block_real_browser(request, monkeypatch):
    """Safety net: prevent real browser sessions in unit tests.

    Tests that need a browser must use a fake page object; tests that
    forget get a clear error instead of silently launching Chromium.
    """

    async def _no_real_browser(self):
        raise RuntimeError("Test tried to launch a real browser. Use a fake page or StaticPageSource.")

    monkeypatch.setattr("tabchat.browser_session.BrowserSession.start", _no_real_browser)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def configured_store() -> InMemoryStore:
    """Store with a valid API key already saved."""
    return InMemoryStore({"apiKey": VALID_KEY, "model": "gpt-4o-mini", "maxTokens": 2000})
