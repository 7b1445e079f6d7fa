# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Active-tab context cache and chat relay.

``ContextDispatcher`` owns the one ``TabContext`` the chat talks about.
It is rebuilt wholesale whenever the active tab changes (navigation,
activation, explicit refresh) and every rebuild is announced to listeners.
Pages that render late (SPAs) get a bounded number of delayed retries.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any
from urllib.parse import urlparse

from . import ROLE_SYSTEM, ROLE_USER, PageSnapshot, TabContext, Turn, now_ms
from .errors import HostInvalidatedError, SettingsError
from .extraction import ExtractedPage, extract_page, has_meaningful_content
from .formatter import NO_CONTENT, banner, count_tokens, format_context
from .llm_client import ChatClient
from .page_source import PageSource
from .settings import Settings, SettingsManager

logger = logging.getLogger(__name__)

MAX_HISTORY = 20
DEFAULT_RETRY_DELAY = 1.5
DEFAULT_MAX_RETRIES = 2

INTERNAL_PAGE_CONTENT = "Cannot analyze internal browser pages."
NO_ACTIVE_TAB = "No active tab"

TabListener = Callable[[dict[str, Any]], Awaitable[None] | None]


def is_analyzable_url(url: str) -> bool:
    return urlparse(url or "").scheme in ("http", "https")


def build_system_message(system_prompt: str, context: str) -> str:
    """System prompt followed by the page context between banners."""
    return (
        f"{system_prompt}\n\n"
        f"{banner('CURRENT PAGE CONTENT BELOW')}\n\n"
        f"{context or NO_CONTENT}\n\n"
        f"{banner('END OF PAGE CONTENT')}"
    )


def _as_message(turn: Turn | dict[str, Any]) -> dict[str, str]:
    if isinstance(turn, Turn):
        return turn.to_message()
    return Turn.from_message(turn).to_message()


class ContextDispatcher:
    """Keeps the active tab's formatted context and relays chat turns."""

    def __init__(
        self,
        source: PageSource,
        *,
        settings: SettingsManager | None = None,
        client: ChatClient | None = None,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        max_retries: int = DEFAULT_MAX_RETRIES,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.source = source
        self.settings = settings
        self.client = client
        self.retry_delay = retry_delay
        self.max_retries = max_retries
        self._sleep = sleep
        self._clock = clock
        self._current = TabContext()
        self._listeners: list[TabListener] = []
        self._lock = asyncio.Lock()

    @property
    def current(self) -> TabContext:
        return self._current

    def get_tab_context(self) -> TabContext:
        return self._current

    # ── Listeners ────────────────────────────────────────────────

    def add_listener(self, listener: TabListener) -> None:
        self._listeners.append(listener)

    async def _broadcast(self) -> None:
        summary = self._current.summary()
        for listener in list(self._listeners):
            try:
                result = listener(summary)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.warning("Tab listener failed", exc_info=True)

    # ── Updates ──────────────────────────────────────────────────

    async def _extract_once(self) -> tuple[PageSnapshot | None, ExtractedPage | None]:
        try:
            snapshot = await self.source.snapshot()
        except HostInvalidatedError:
            raise
        except Exception as e:
            logger.warning("Snapshot failed: %s: %s", type(e).__name__, e)
            return None, None
        try:
            return snapshot, extract_page(snapshot)
        except Exception as e:
            logger.warning("Content extraction failed for %s: %s: %s", snapshot.url, type(e).__name__, e)
            return snapshot, None

    async def update_active_tab(self) -> TabContext:
        """Re-read the active tab and replace the cached context.

        Never raises for extraction problems; only ``HostInvalidatedError``
        (the browser itself is gone) propagates.
        """
        async with self._lock:
            url = await self.source.current_url()
            if not is_analyzable_url(url):
                snapshot = None
                try:
                    snapshot = await self.source.snapshot()
                except HostInvalidatedError:
                    raise
                except Exception:
                    logger.debug("Snapshot of internal page failed", exc_info=True)
                self._current = TabContext(
                    tab_id=snapshot.tab_id if snapshot else None,
                    url=url,
                    title=(snapshot.title if snapshot else "") or "Internal Page",
                    content=INTERNAL_PAGE_CONTENT,
                    last_updated=self._clock(),
                )
                logger.info("Skipping internal page: %s", url)
                await self._broadcast()
                return self._current

            snapshot, page = await self._extract_once()
            attempt = 0
            while not has_meaningful_content(page) and attempt < self.max_retries:
                attempt += 1
                logger.info("No content found, retrying in %.1fs (attempt %d)", self.retry_delay, attempt)
                await self._sleep(self.retry_delay)
                retry_snapshot, retry_page = await self._extract_once()
                if retry_snapshot is not None:
                    snapshot, page = retry_snapshot, retry_page

            content = format_context(page)
            self._current = TabContext(
                tab_id=snapshot.tab_id if snapshot else None,
                url=(snapshot.url if snapshot else "") or url,
                title=(snapshot.title if snapshot else "") or "Untitled",
                favicon=snapshot.favicon if snapshot else "",
                content=content,
                last_updated=self._clock(),
                raw=page,
            )
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug("Context for %s: %d chars, %d tokens", self._current.url, len(content), count_tokens(content))
            await self._broadcast()
            return self._current

    async def refresh(self) -> tuple[bool, TabContext | str]:
        """Rebuild the context of the tab already being tracked."""
        if self._current.tab_id is None and not self._current.url:
            return False, NO_ACTIVE_TAB
        return True, await self.update_active_tab()

    # ── Chat ─────────────────────────────────────────────────────

    def build_messages(
        self,
        settings: Settings,
        history: Sequence[Turn | dict[str, Any]],
        user_message: str,
    ) -> list[dict[str, str]]:
        """System message with page context, the last 20 history turns, then the new turn."""
        messages = [{"role": ROLE_SYSTEM, "content": build_system_message(settings.system_prompt, self._current.content)}]
        messages.extend(_as_message(t) for t in list(history)[-MAX_HISTORY:])
        messages.append({"role": ROLE_USER, "content": user_message})
        return messages

    async def handle_chat(self, user_message: str, history: Sequence[Turn | dict[str, Any]]) -> str:
        """Send one user turn (with the current page context) and return the reply text."""
        if self.settings is None or self.client is None:
            raise SettingsError("Chat is not configured (no settings store or API client)")
        settings = await self.settings.load()
        messages = self.build_messages(settings, history, user_message)
        return await self.client.complete(
            messages,
            api_key=settings.api_key,
            model=settings.model,
            max_tokens=settings.max_tokens,
        )
