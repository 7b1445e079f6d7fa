# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Persisted conversation threads (key ``savedChats``).

Every mutation rewrites the whole thread list in one ``set`` call.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Any

from . import ROLE_USER, SavedChat, Turn, now_ms
from .storage import KeyValueStoreProtocol

logger = logging.getLogger(__name__)

SAVED_CHATS_KEY = "savedChats"
TITLE_MAX_LENGTH = 50
DEFAULT_TITLE = "New Chat"

_ATTACHMENT_MARKER_RE = re.compile(r"\[ATTACHED FILE:.*?\]")


def make_title(history: Sequence[Turn]) -> str:
    """First user turn, cut to 50 chars, attachment markers removed."""
    first = next((t for t in history if t.role == ROLE_USER), None)
    title = (first.content if first else "")[:TITLE_MAX_LENGTH]
    return _ATTACHMENT_MARKER_RE.sub("", title).strip() or DEFAULT_TITLE


def format_relative_date(ts: int, now: int | None = None) -> str:
    """``Just now``, ``5m ago``, ``3h ago``, ``2d ago``; older dates as ISO ``YYYY-MM-DD``."""
    now = now_ms() if now is None else now
    diff_ms = now - ts
    minutes = diff_ms // 60_000
    hours = diff_ms // 3_600_000
    days = diff_ms // 86_400_000
    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes}m ago"
    if hours < 24:
        return f"{hours}h ago"
    if days < 7:
        return f"{days}d ago"
    return datetime.fromtimestamp(ts / 1000).date().isoformat()


class ThreadStore:
    """CRUD over saved chats in a key-value store."""

    def __init__(self, store: KeyValueStoreProtocol, *, clock: Callable[[], int] = now_ms) -> None:
        self._store = store
        self._clock = clock

    async def load(self) -> list[SavedChat]:
        raw = (await self._store.get({SAVED_CHATS_KEY: []}))[SAVED_CHATS_KEY]
        chats: list[SavedChat] = []
        for item in raw or []:
            try:
                chats.append(SavedChat.from_dict(item))
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed saved chat: %.100r", item)
        return chats

    async def _write(self, chats: list[SavedChat]) -> None:
        await self._store.set({SAVED_CHATS_KEY: [c.to_dict() for c in chats]})

    async def list_threads(self) -> list[SavedChat]:
        """Most recently updated first."""
        return sorted(await self.load(), key=lambda c: c.updated_at, reverse=True)

    async def get(self, chat_id: str) -> SavedChat | None:
        for chat in await self.load():
            if chat.id == chat_id:
                return chat
        return None

    def _new_id(self, chats: list[SavedChat], ts: int) -> str:
        taken = {c.id for c in chats}
        chat_id = f"chat-{ts}"
        while chat_id in taken:
            ts += 1
            chat_id = f"chat-{ts}"
        return chat_id

    async def save(self, history: Sequence[Turn], current_id: str | None = None) -> str | None:
        """Create or update a thread from *history*; returns its id.

        Empty history is a no-op returning *current_id*.  An id that no longer
        exists (deleted elsewhere) starts a new thread.
        """
        if not history:
            return current_id
        chats = await self.load()
        ts = self._clock()
        messages = [Turn(t.role, t.content) for t in history]

        if current_id is not None:
            for chat in chats:
                if chat.id == current_id:
                    chat.messages = messages
                    chat.updated_at = ts
                    await self._write(chats)
                    return current_id
            logger.info("Thread %s no longer exists, saving as a new thread", current_id)

        chat = SavedChat(
            id=self._new_id(chats, ts),
            title=make_title(history),
            messages=messages,
            created_at=ts,
            updated_at=ts,
        )
        chats.append(chat)
        await self._write(chats)
        logger.debug("Created thread %s (%s)", chat.id, chat.title)
        return chat.id

    async def delete(self, chat_id: str) -> bool:
        chats = await self.load()
        remaining = [c for c in chats if c.id != chat_id]
        if len(remaining) == len(chats):
            return False
        await self._write(remaining)
        return True

    async def export(self, chat_id: str) -> dict[str, Any] | None:
        """Storage form of one thread (for ``tabchat chats show --json``)."""
        chat = await self.get(chat_id)
        return chat.to_dict() if chat else None
