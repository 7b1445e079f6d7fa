# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Where page content comes from.

``PageSource`` is the seam between the dispatcher and whatever holds the
"active tab": a live Chromium tab (``BrowserPageSource``) or a fixed HTML
document (``StaticPageSource``, used by ``tabchat context --html`` and tests).
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from . import PageSnapshot
from .browser_session import BrowserSession
from .extraction.dom import normalize_space, parse_document

__all__ = ["BrowserPageSource", "PageSnapshot", "PageSource", "StaticPageSource"]


@runtime_checkable
class PageSource(Protocol):
    """Anything that can hand over the active tab's content."""

    async def snapshot(self) -> PageSnapshot: ...

    async def current_url(self) -> str: ...


class StaticPageSource:
    """A single in-memory HTML document posing as the active tab."""

    def __init__(
        self,
        html: str,
        url: str = "about:blank",
        *,
        title: str | None = None,
        tab_id: int | None = 1,
        selected_text: str = "",
    ) -> None:
        self.html = html
        self.url = url
        self.title = title
        self.tab_id = tab_id
        self.selected_text = selected_text
        self.snapshot_count = 0

    @classmethod
    def from_file(cls, path: str | Path, url: str | None = None) -> StaticPageSource:
        path = Path(path)
        html = path.read_text(encoding="utf-8", errors="replace")
        return cls(html, url or path.resolve().as_uri())

    def set_html(self, html: str, url: str | None = None) -> None:
        """Simulate a navigation or a late-rendering page."""
        self.html = html
        if url is not None:
            self.url = url

    async def snapshot(self) -> PageSnapshot:
        self.snapshot_count += 1
        title = self.title
        if title is None:
            el = parse_document(self.html).find(".//title")
            title = normalize_space(el.text_content()) if el is not None else ""
        return PageSnapshot(
            url=self.url,
            title=title,
            html=self.html,
            tab_id=self.tab_id,
            selected_text=self.selected_text,
        )

    async def current_url(self) -> str:
        return self.url


class BrowserPageSource:
    """The active tab of a running ``BrowserSession``."""

    def __init__(self, session: BrowserSession) -> None:
        self.session = session

    async def snapshot(self) -> PageSnapshot:
        return await self.session.snapshot()

    async def current_url(self) -> str:
        return await self.session.current_url()
