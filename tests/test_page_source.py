# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for page sources."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

from tabchat import PageSnapshot
from tabchat.page_source import BrowserPageSource, PageSource, StaticPageSource
from tests._helpers import ARTICLE_HTML, EMPTY_SPA_HTML


class TestStaticPageSource:
    async def test_title_from_document(self):
        snap = await StaticPageSource(ARTICLE_HTML, "https://example.com/").snapshot()
        assert snap.title == "Quarterly Report"
        assert snap.url == "https://example.com/"
        assert snap.tab_id == 1
        assert snap.html == ARTICLE_HTML

    async def test_explicit_title(self):
        snap = await StaticPageSource(ARTICLE_HTML, title="Override").snapshot()
        assert snap.title == "Override"

    async def test_no_title_element(self):
        snap = await StaticPageSource("<p>hi</p>").snapshot()
        assert snap.title == ""
        assert snap.url == "about:blank"

    async def test_snapshot_count(self):
        source = StaticPageSource(ARTICLE_HTML)
        await source.snapshot()
        await source.snapshot()
        assert source.snapshot_count == 2

    async def test_set_html(self):
        source = StaticPageSource(EMPTY_SPA_HTML, "https://example.com/app")
        source.set_html(ARTICLE_HTML)
        assert (await source.snapshot()).title == "Quarterly Report"
        assert await source.current_url() == "https://example.com/app"
        source.set_html(ARTICLE_HTML, "https://example.com/other")
        assert await source.current_url() == "https://example.com/other"

    async def test_selected_text(self):
        snap = await StaticPageSource(ARTICLE_HTML, selected_text="Widget").snapshot()
        assert snap.selected_text == "Widget"

    def test_from_file(self, tmp_path):
        path = tmp_path / "page.html"
        path.write_text(ARTICLE_HTML, encoding="utf-8")
        source = StaticPageSource.from_file(path)
        assert source.html == ARTICLE_HTML
        assert source.url.startswith("file://")
        assert StaticPageSource.from_file(path, "http://localhost/page.html").url == "http://localhost/page.html"

    def test_satisfies_protocol(self):
        assert isinstance(StaticPageSource(""), PageSource)


class TestBrowserPageSource:
    async def test_delegates(self):
        snap = PageSnapshot(url="https://example.com/", title="T", html="<p></p>", tab_id=3)
        session = MagicMock()
        session.snapshot = AsyncMock(return_value=snap)
        session.current_url = AsyncMock(return_value="https://example.com/")
        source = BrowserPageSource(session)
        assert await source.snapshot() is snap
        assert await source.current_url() == "https://example.com/"
        assert isinstance(source, PageSource)
