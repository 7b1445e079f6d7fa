# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Playwright browser session: the tab tabchat reads from.

One Chromium window whose current page is the "active tab".  Popups and
new tabs take over as the active tab, main-frame loads fire navigation
hooks, and mouse selections on the page are reported back through an
exposed binding.  Snapshots serialize the live DOM with open shadow roots
as declarative ``<template shadowrootmode>`` elements.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import sys
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass
from typing import Any

from playwright.async_api import (
    Browser,
    BrowserContext,
    Dialog,
    Page,
    Playwright,
    Route,
    async_playwright,
)

from . import PageSnapshot
from .errors import BrowserError, HostInvalidatedError

logger = logging.getLogger(__name__)

# Requests the chat browser never follows (internal pages, local files).
BLOCKED_URL_SCHEMES = (
    "chrome://",
    "devtools://",
    "chrome-extension://",
    "file://",
    "view-source://",
)
DEFAULT_LOCALE = "en-US"

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

MIN_SELECTION_LENGTH = 10
MAX_SELECTION_LENGTH = 500

_ACCEPTED_DIALOGS = frozenset({"alert", "beforeunload"})

NavigationCallback = Callable[[str], Awaitable[None] | None]
SelectionCallback = Callable[[str], Awaitable[None] | None]


@dataclass
class BrowserConfig:
    """Chromium window and page-load settings."""

    headless: bool = True
    locale: str = DEFAULT_LOCALE
    viewport_width: int = 1280
    viewport_height: int = 800
    user_agent: str = DEFAULT_USER_AGENT
    timeout_ms: int = 30000
    idle_budget_ms: int = 5000  # how long to wait for network quiet after load
    settle_quiet_ms: int = 250  # no DOM mutations for this long counts as rendered
    settle_max_ms: int = 3000


@dataclass(frozen=True, slots=True)
class PageLoad:
    """Outcome of ``BrowserSession.navigate``."""

    url: str
    status: int | None  # HTTP status of the main document, None for same-document loads
    network_idle: bool
    settle_ms: int | None  # None when the settle check could not run


_DEAD_BROWSER_MARKERS = (
    "target closed",
    "target page",
    "browser has been closed",
    "connection closed",
    "browser disconnected",
)


def _is_browser_dead_error(exc: BaseException) -> bool:
    """Playwright reports a crashed or closed browser only through the message text."""
    text = str(exc).lower()
    return any(marker in text for marker in _DEAD_BROWSER_MARKERS)


def _is_blocked(url: str) -> bool:
    return url.startswith(BLOCKED_URL_SCHEMES)


def chromium_launch_args(config: BrowserConfig) -> list[str]:
    """Chromium flags: no extensions, no background chatter, no permission prompts."""
    return [
        f"--lang={config.locale}",
        "--disable-blink-features=AutomationControlled",
        "--disable-extensions",
        "--disable-plugins",
        "--disable-sync",
        "--disable-background-networking",
        "--disable-component-update",
        "--disable-domain-reliability",
        "--disable-client-side-phishing-detection",
        "--disable-breakpad",
        "--disable-dev-shm-usage",
        "--deny-permission-prompts",
        "--no-first-run",
        "--no-pings",
        "--noerrdialogs",
    ]


# ── Chromium install ───────────────────────────────────────────────

_INSTALL_TIMEOUT_S = 300
_install_tried = False


async def _install_chromium() -> bool:
    """``playwright install chromium``, at most once per process.

    Output is captured; a progress bar on the terminal would tear up the
    chat screen.
    """
    global _install_tried  # noqa: PLW0603
    if _install_tried:
        return False
    _install_tried = True

    logger.warning("Chromium is missing, installing it (one-time download)")
    proc = await asyncio.create_subprocess_exec(
        sys.executable,
        "-m",
        "playwright",
        "install",
        "chromium",
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        _out, err = await asyncio.wait_for(proc.communicate(), timeout=_INSTALL_TIMEOUT_S)
    except TimeoutError:
        proc.kill()
        logger.warning("Chromium install gave up after %ds", _INSTALL_TIMEOUT_S)
        return False
    if proc.returncode != 0:
        logger.warning("Chromium install failed (rc=%d): %s", proc.returncode, err.decode(errors="replace")[:500])
        return False
    return True


async def _fire(callbacks: list[Callable[[str], Any]], value: str) -> None:
    for cb in list(callbacks):
        try:
            result = cb(value)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.warning("Browser event callback failed", exc_info=True)


class BrowserSession:
    """One Chromium window whose current page is the "active tab"."""

    def __init__(self, config: BrowserConfig | None = None):
        self.config = config or BrowserConfig()
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None
        self._tab_ids: dict[int, int] = {}
        self._next_tab_id = 1
        self._navigation_callbacks: list[NavigationCallback] = []
        self._selection_callbacks: list[SelectionCallback] = []

    @property
    def page(self) -> Page:
        if self._page is None:
            raise RuntimeError("Browser session not started. Use async with or call start().")
        return self._page

    @property
    def context(self) -> BrowserContext:
        if self._context is None:
            raise RuntimeError("Browser session not started.")
        return self._context

    @property
    def tab_id(self) -> int | None:
        """Stable id of the active page, assigned the first time it is seen."""
        if self._page is None:
            return None
        return self._tab_ids.get(id(self._page))

    def on_navigation(self, callback: NavigationCallback) -> None:
        """Call *callback(url)* on main-frame loads and when a popup becomes the active tab."""
        self._navigation_callbacks.append(callback)

    def on_selection(self, callback: SelectionCallback) -> None:
        """Call *callback(text)* when the user selects more than 10 characters."""
        self._selection_callbacks.append(callback)

    # ── Lifecycle ────────────────────────────────────────────────

    async def start(self) -> None:
        """Launch Chromium and open the first tab."""
        self._playwright = await async_playwright().start()
        try:
            self._browser = await self._launch()
        except Exception:
            await self.stop()
            raise
        self._browser.on("disconnected", lambda _browser: logger.warning("Browser disconnected"))

        self._context = await self._browser.new_context(
            viewport={"width": self.config.viewport_width, "height": self.config.viewport_height},
            locale=self.config.locale,
            user_agent=self.config.user_agent,
            accept_downloads=False,
        )
        self._context.on("dialog", self._on_dialog)
        self._context.on("page", self._on_new_page)
        await self._context.route("**/*", self._route)
        await self._context.expose_binding("tabchatTextSelected", self._on_text_selected)
        await self._context.add_init_script(_SELECTION_LISTENER_JS)

        self._attach(await self._context.new_page())
        logger.info("Browser session started (headless=%s)", self.config.headless)

    async def _launch(self) -> Browser:
        kwargs = {"headless": self.config.headless, "args": chromium_launch_args(self.config)}
        try:
            return await self._playwright.chromium.launch(**kwargs)
        except Exception as exc:
            if "executable doesn't exist" not in str(exc).lower():
                raise BrowserError(f"Could not launch Chromium: {exc}") from exc
            if not await _install_chromium():
                raise BrowserError(
                    "Chromium is not installed and the automatic install failed. Run: playwright install chromium"
                ) from exc
        return await self._playwright.chromium.launch(**kwargs)

    async def stop(self) -> None:
        """Close everything that was opened. Safe on a crashed or never-started session."""
        self._page = None
        for closer in (self._context, self._browser):
            if closer is not None:
                with suppress(Exception):
                    await closer.close()
        self._context = None
        self._browser = None
        if self._playwright is not None:
            with suppress(Exception):
                await self._playwright.stop()
            self._playwright = None
        logger.info("Browser session stopped")

    async def __aenter__(self) -> BrowserSession:
        await self.start()
        return self

    async def __aexit__(self, *args) -> None:
        await self.stop()

    # ── Tabs and events ──────────────────────────────────────────

    def _attach(self, page: Page) -> None:
        """Make *page* the active tab."""
        self._page = page
        if id(page) not in self._tab_ids:
            self._tab_ids[id(page)] = self._next_tab_id
            self._next_tab_id += 1
        page.on("load", self._on_load)

    async def _route(self, route: Route) -> None:
        url = route.request.url
        if _is_blocked(url):
            logger.debug("Blocked request to %s", url)
            await route.abort("blockedbyclient")
        else:
            await route.continue_()

    async def _on_dialog(self, dialog: Dialog) -> None:
        """alert/beforeunload are accepted, confirm/prompt dismissed; a page never blocks on a dialog."""
        accept = dialog.type in _ACCEPTED_DIALOGS
        try:
            await (dialog.accept() if accept else dialog.dismiss())
        except Exception:
            logger.warning("Could not answer %s dialog, dismissing", dialog.type, exc_info=True)
            with suppress(Exception):
                await dialog.dismiss()
            return
        logger.info("Answered %s dialog (%s): %.100s", dialog.type, "accept" if accept else "dismiss", dialog.message)

    async def _on_load(self, page: Page) -> None:
        if page is not self._page:
            return
        logger.debug("Main frame loaded: %s", page.url)
        await _fire(self._navigation_callbacks, page.url)

    async def _on_new_page(self, page: Page) -> None:
        """A popup or new tab becomes the active tab."""
        if page is self._page:
            return
        self._attach(page)
        logger.info("Active tab switched to new page: %s", page.url)
        with suppress(Exception):
            await page.wait_for_load_state("load", timeout=self.config.timeout_ms)
        await _fire(self._navigation_callbacks, page.url)

    async def _on_text_selected(self, source: Any, text: str) -> None:
        text = (text or "").strip()
        if len(text) > MIN_SELECTION_LENGTH:
            await _fire(self._selection_callbacks, text[:MAX_SELECTION_LENGTH])

    # ── Navigation ───────────────────────────────────────────────

    async def navigate(self, url: str) -> PageLoad:
        """Open *url* in the active tab and wait until it looks rendered.

        Waits for ``load``, then gives the network ``idle_budget_ms`` to go
        quiet, then waits for DOM mutations to stop.  Only a dead browser
        is an error once ``load`` has fired.
        """
        try:
            response = await self.page.goto(url, wait_until="load", timeout=self.config.timeout_ms)
            network_idle = await self._wait_network_idle()
        except Exception as exc:
            if _is_browser_dead_error(exc):
                raise HostInvalidatedError() from exc
            raise
        settle_ms = await self.wait_for_dom_settle()
        return PageLoad(
            url=self.page.url,
            status=response.status if response else None,
            network_idle=network_idle,
            settle_ms=settle_ms,
        )

    async def _wait_network_idle(self) -> bool:
        try:
            await self.page.wait_for_load_state("networkidle", timeout=self.config.idle_budget_ms)
        except Exception as exc:
            if _is_browser_dead_error(exc):
                raise
            logger.debug("No network idle within %dms, continuing", self.config.idle_budget_ms)
            return False
        return True

    async def wait_for_dom_settle(self) -> int | None:
        """Milliseconds until the DOM stopped changing (capped), None if the check failed."""
        try:
            return await self.page.evaluate(
                _DOM_SETTLE_JS, [self.config.settle_quiet_ms, self.config.settle_max_ms]
            )
        except Exception:
            logger.debug("DOM settle check failed", exc_info=True)
            return None

    # ── Capture ──────────────────────────────────────────────────

    async def snapshot(self) -> PageSnapshot:
        """Capture the active tab: serialized DOM, innerText, selection, favicon."""
        try:
            data = await self.page.evaluate(_SNAPSHOT_JS, _SHADOW_MAX_DEPTH)
        except Exception as exc:
            if _is_browser_dead_error(exc):
                raise HostInvalidatedError() from exc
            raise
        return PageSnapshot(
            url=data.get("url") or self.page.url,
            title=data.get("title") or "",
            html=data.get("html") or "",
            tab_id=self.tab_id,
            favicon=data.get("favicon") or "",
            visible_text=data.get("visibleText"),
            selected_text=data.get("selectedText") or "",
        )

    async def selected_text(self) -> str:
        try:
            return (await self.page.evaluate("() => window.getSelection()?.toString() || ''")).strip()
        except Exception as exc:
            if _is_browser_dead_error(exc):
                raise HostInvalidatedError() from exc
            raise

    async def current_url(self) -> str:
        return self.page.url


_SHADOW_MAX_DEPTH = 10

# ── JS (static, no interpolation) ─────────────────────────────────

_SELECTION_LISTENER_JS = """(() => {
  if (window.__tabchatSelectionHooked) return;
  window.__tabchatSelectionHooked = true;
  document.addEventListener('mouseup', () => {
    const text = window.getSelection()?.toString()?.trim();
    if (text && text.length > 10 && window.tabchatTextSelected) {
      window.tabchatTextSelected(text.substring(0, 500)).catch(() => {});
    }
  });
})();"""

# Serializes the live DOM with open shadow roots as <template shadowrootmode>,
# current form state as attributes and computed-hidden elements as [hidden].
_SNAPSHOT_JS = """(maxDepth) => {
  const VOID = new Set(['area','base','br','col','embed','hr','img','input','link','meta','source','track','wbr']);
  const RAW = new Set(['script','style']);
  const esc = (s) => s.replace(/&/g, '&amp;').replace(/</g, '&lt;').replace(/>/g, '&gt;');
  const escAttr = (s) => s.replace(/&/g, '&amp;').replace(/"/g, '&quot;');
  const hiddenByStyle = (el) => {
    try {
      const st = window.getComputedStyle(el);
      return st.display === 'none' || st.visibility === 'hidden' || st.opacity === '0';
    } catch (e) { return false; }
  };
  const attrs = (el) => {
    const tag = el.localName;
    const skip = new Set();
    let extra = '';
    if (tag === 'input') {
      skip.add('value'); skip.add('checked');
      if (el.type !== 'password' && el.value) extra += ' value="' + escAttr(el.value) + '"';
      if ((el.type === 'checkbox' || el.type === 'radio') && el.checked) extra += ' checked';
    } else if (tag === 'option') {
      skip.add('selected');
      if (el.selected) extra += ' selected';
    }
    if (!el.hasAttribute('hidden') && hiddenByStyle(el)) extra += ' hidden';
    let out = '';
    for (const a of el.attributes) {
      if (!skip.has(a.name)) out += ' ' + a.name + '="' + escAttr(a.value) + '"';
    }
    return out + extra;
  };
  const serialize = (node, depth) => {
    if (node.nodeType === Node.TEXT_NODE) {
      const p = node.parentNode;
      return p && RAW.has(p.localName) ? node.textContent : esc(node.textContent);
    }
    if (node.nodeType !== Node.ELEMENT_NODE) return '';
    const tag = node.localName;
    let out = '<' + tag + attrs(node) + '>';
    if (VOID.has(tag)) return out;
    if (node.shadowRoot && depth < maxDepth) {
      out += '<template shadowrootmode="' + node.shadowRoot.mode + '">';
      for (const c of node.shadowRoot.childNodes) out += serialize(c, depth + 1);
      out += '</template>';
    }
    if (tag === 'textarea') {
      out += esc(node.value || '');
    } else {
      const kids = tag === 'template' ? node.content.childNodes : node.childNodes;
      for (const c of kids) out += serialize(c, depth);
    }
    return out + '</' + tag + '>';
  };
  const icon = document.querySelector('link[rel~="icon"]');
  return {
    url: window.location.href,
    title: document.title,
    html: '<!DOCTYPE html>' + serialize(document.documentElement, 0),
    visibleText: document.body ? document.body.innerText : '',
    selectedText: window.getSelection()?.toString() || '',
    favicon: icon ? icon.href : '',
  };
}"""


# Resolves with the elapsed ms once no mutation has been seen for quietMs,
# or when maxMs runs out.
_DOM_SETTLE_JS = """([quietMs, maxMs]) => new Promise((resolve) => {
  const started = performance.now();
  let last = started;
  const observer = new MutationObserver(() => { last = performance.now(); });
  observer.observe(document, {childList: true, subtree: true, characterData: true, attributes: true});
  const tick = () => {
    const now = performance.now();
    if (now - last >= quietMs || now - started >= maxMs) {
      observer.disconnect();
      resolve(Math.round(now - started));
    } else {
      setTimeout(tick, 50);
    }
  };
  setTimeout(tick, 50);
})"""

