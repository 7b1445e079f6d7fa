# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for ContextDispatcher: tab updates, retries, listeners, chat relay."""

from __future__ import annotations

import json

import httpx
import pytest

from tabchat import Turn
from tabchat.dispatch import (
    INTERNAL_PAGE_CONTENT,
    MAX_HISTORY,
    NO_ACTIVE_TAB,
    ContextDispatcher,
    build_system_message,
    is_analyzable_url,
)
from tabchat.errors import ApiKeyError, HostInvalidatedError, SettingsError
from tabchat.formatter import NO_CONTENT, UNABLE_TO_EXTRACT
from tabchat.llm_client import ChatClient
from tabchat.page_source import StaticPageSource
from tabchat.settings import SettingsManager
from tests._helpers import ARTICLE_HTML, EMPTY_SPA_HTML

# ── Helpers ──────────────────────────────────────────────────────────


class _SleepRecorder:
    def __init__(self, on_sleep=None):
        self.delays: list[float] = []
        self._on_sleep = on_sleep

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self._on_sleep is not None:
            self._on_sleep()


class _BrokenSource:
    def __init__(self, exc: Exception, url: str = "https://example.com/"):
        self.exc = exc
        self.url = url
        self.calls = 0

    async def snapshot(self):
        self.calls += 1
        raise self.exc

    async def current_url(self) -> str:
        return self.url


def _make_dispatcher(source=None, **overrides) -> ContextDispatcher:
    kwargs = {"sleep": _SleepRecorder(), "clock": lambda: 1_700_000_000_000}
    kwargs.update(overrides)
    return ContextDispatcher(source or StaticPageSource(ARTICLE_HTML, "https://example.com/report"), **kwargs)


def _chat_client(replies: list[dict], seen: list[httpx.Request]) -> ChatClient:
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=replies.pop(0))

    return ChatClient("https://api.test/v1", transport=httpx.MockTransport(handler))


def _reply(text: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": text}}]}


# ── URL handling ─────────────────────────────────────────────────────


class TestIsAnalyzableUrl:
    @pytest.mark.parametrize("url", ["http://example.com", "https://example.com/a?b=1"])
    def test_web_pages(self, url):
        assert is_analyzable_url(url)

    @pytest.mark.parametrize(
        "url", ["chrome://newtab", "chrome-extension://abc/popup.html", "about:blank", "file:///tmp/x.html", "", "httpx"]
    )
    def test_internal_pages(self, url):
        assert not is_analyzable_url(url)


# ── update_active_tab ────────────────────────────────────────────────


class TestUpdateActiveTab:
    async def test_builds_context(self):
        dispatcher = _make_dispatcher()
        ctx = await dispatcher.update_active_tab()
        assert ctx.tab_id == 1
        assert ctx.url == "https://example.com/report"
        assert ctx.title == "Quarterly Report"
        assert "HEADERS: Name | Price" in ctx.content
        assert "ROW 1: Widget | $10" in ctx.content
        assert ctx.has_content
        assert ctx.last_updated == 1_700_000_000_000
        assert dispatcher.current is ctx
        assert dispatcher.get_tab_context() is ctx

    async def test_internal_page_skips_extraction(self):
        source = StaticPageSource("<html><body>New tab</body></html>", "chrome://newtab")
        dispatcher = _make_dispatcher(source)
        ctx = await dispatcher.update_active_tab()
        assert ctx.content == INTERNAL_PAGE_CONTENT
        assert ctx.title == "Internal Page"
        assert ctx.url == "chrome://newtab"
        assert ctx.raw is None

    async def test_retries_until_content_appears(self):
        source = StaticPageSource(EMPTY_SPA_HTML, "https://app.example.com/")
        sleep = _SleepRecorder(on_sleep=lambda: source.set_html(ARTICLE_HTML))
        dispatcher = _make_dispatcher(source, sleep=sleep, retry_delay=1.5)
        ctx = await dispatcher.update_active_tab()
        assert sleep.delays == [1.5]
        assert source.snapshot_count == 2
        assert "Widget" in ctx.content

    async def test_retries_are_bounded(self):
        source = StaticPageSource(EMPTY_SPA_HTML, "https://app.example.com/")
        sleep = _SleepRecorder()
        dispatcher = _make_dispatcher(source, sleep=sleep, retry_delay=0.25, max_retries=2)
        ctx = await dispatcher.update_active_tab()
        assert sleep.delays == [0.25, 0.25]
        assert source.snapshot_count == 3
        assert ctx.title == "Loading"
        assert NO_CONTENT in ctx.content

    async def test_snapshot_failure_gives_placeholder(self):
        source = _BrokenSource(RuntimeError("evaluate failed"))
        dispatcher = _make_dispatcher(source)
        ctx = await dispatcher.update_active_tab()
        assert ctx.content == UNABLE_TO_EXTRACT
        assert ctx.title == "Untitled"
        assert source.calls == 3

    async def test_extraction_failure_gives_placeholder(self, monkeypatch):
        def _boom(snapshot):
            raise ValueError("parser exploded")

        monkeypatch.setattr("tabchat.dispatch.extract_page", _boom)
        ctx = await _make_dispatcher().update_active_tab()
        assert ctx.content == UNABLE_TO_EXTRACT
        assert ctx.title == "Quarterly Report"

    async def test_host_invalidated_propagates(self):
        dispatcher = _make_dispatcher(_BrokenSource(HostInvalidatedError()))
        with pytest.raises(HostInvalidatedError):
            await dispatcher.update_active_tab()

    async def test_context_replaced_wholesale(self):
        source = StaticPageSource(ARTICLE_HTML, "https://example.com/report")
        dispatcher = _make_dispatcher(source)
        first = await dispatcher.update_active_tab()
        source.set_html(
            "<html><head><title>Other</title></head><body><p>Different page</p></body></html>",
            "https://other.org/",
        )
        second = await dispatcher.update_active_tab()
        assert second is not first
        assert second.url == "https://other.org/"
        assert "Widget" not in second.content


class TestListeners:
    async def test_every_update_is_broadcast(self):
        dispatcher = _make_dispatcher()
        seen: list[dict] = []
        dispatcher.add_listener(seen.append)
        await dispatcher.update_active_tab()
        await dispatcher.update_active_tab()
        assert len(seen) == 2
        assert seen[0]["url"] == "https://example.com/report"
        assert seen[0]["hasContent"] is True
        assert "content" not in seen[0]

    async def test_async_listener_and_failure_isolation(self):
        dispatcher = _make_dispatcher()
        got: list[str] = []

        def _broken(summary):
            raise RuntimeError("listener bug")

        async def _ok(summary):
            got.append(summary["title"])

        dispatcher.add_listener(_broken)
        dispatcher.add_listener(_ok)
        await dispatcher.update_active_tab()
        assert got == ["Quarterly Report"]


class TestRefresh:
    async def test_no_tab_tracked(self):
        ok, result = await _make_dispatcher().refresh()
        assert ok is False
        assert result == NO_ACTIVE_TAB

    async def test_refresh_rebuilds(self):
        dispatcher = _make_dispatcher()
        first = await dispatcher.update_active_tab()
        ok, result = await dispatcher.refresh()
        assert ok is True
        assert result is not first
        assert result.url == first.url


# ── Chat relay ───────────────────────────────────────────────────────


class TestBuildMessages:
    def test_system_message_wraps_context(self):
        text = build_system_message("Be helpful.", "PAGE BODY")
        assert text.startswith("Be helpful.\n\n")
        assert text.index("CURRENT PAGE CONTENT BELOW") < text.index("PAGE BODY") < text.index("END OF PAGE CONTENT")

    def test_empty_context_placeholder(self):
        assert NO_CONTENT in build_system_message("x", "")

    async def test_history_capped(self, configured_store):
        dispatcher = _make_dispatcher()
        await dispatcher.update_active_tab()
        settings = await SettingsManager(configured_store).load()
        history = [Turn("user" if i % 2 == 0 else "assistant", f"turn {i}") for i in range(30)]
        messages = dispatcher.build_messages(settings, history, "latest?")
        assert len(messages) == 1 + MAX_HISTORY + 1
        assert messages[0]["role"] == "system"
        assert "Widget" in messages[0]["content"]
        assert messages[1]["content"] == "turn 10"
        assert messages[-1] == {"role": "user", "content": "latest?"}

    def test_accepts_dict_history(self):
        from tabchat.settings import Settings

        messages = _make_dispatcher().build_messages(Settings(), [{"role": "assistant", "content": "hi"}], "q")
        assert messages[1] == {"role": "assistant", "content": "hi"}
        assert NO_CONTENT in messages[0]["content"]


class TestHandleChat:
    async def test_sends_context_and_returns_reply(self, configured_store):
        seen: list[httpx.Request] = []
        client = _chat_client([_reply("The widget costs $10.")], seen)
        settings = SettingsManager(configured_store, client)
        dispatcher = _make_dispatcher(settings=settings, client=client)
        await dispatcher.update_active_tab()

        reply = await dispatcher.handle_chat("How much is the widget?", [Turn("user", "hi"), Turn("assistant", "hello")])

        assert reply == "The widget costs $10."
        body = json.loads(seen[0].content)
        assert body["model"] == "gpt-4o-mini"
        assert body["max_tokens"] == 2000
        assert body["temperature"] == 0.7
        assert [m["role"] for m in body["messages"]] == ["system", "user", "assistant", "user"]
        assert "ROW 1: Widget | $10" in body["messages"][0]["content"]
        assert seen[0].headers["authorization"].startswith("Bearer sk-")
        await client.aclose()

    async def test_missing_key_fails_before_network(self, store):
        seen: list[httpx.Request] = []
        client = _chat_client([], seen)
        dispatcher = _make_dispatcher(settings=SettingsManager(store, client), client=client)
        with pytest.raises(ApiKeyError):
            await dispatcher.handle_chat("hello", [])
        assert seen == []
        await client.aclose()

    async def test_unconfigured_dispatcher(self):
        with pytest.raises(SettingsError):
            await _make_dispatcher().handle_chat("hello", [])
