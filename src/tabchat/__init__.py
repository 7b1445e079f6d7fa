# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""tabchat: chat with an LLM about the page in your active browser tab.

Pipeline:
- extraction: heuristic DOM/Shadow-DOM walk -> ExtractedPage
- formatter: ExtractedPage -> section-delimited context blob
- dispatch: caches the blob per tab and relays chat turns to the API
- ui: terminal chat panel with persisted threads
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_SYSTEM = "system"


def now_ms() -> int:
    """Epoch milliseconds (the persisted timestamp unit)."""
    return int(time.time() * 1000)


@dataclass
class Turn:
    """One role-tagged message in a conversation."""

    role: str  # user | assistant
    content: str

    def to_message(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_message(cls, data: dict[str, Any]) -> Turn:
        return cls(role=str(data.get("role", ROLE_USER)), content=str(data.get("content", "")))


@dataclass(frozen=True)
class PageSnapshot:
    """Raw material captured from a tab, before extraction."""

    url: str
    title: str = ""
    html: str = ""
    tab_id: int | None = None
    favicon: str = ""
    visible_text: str | None = None  # selection-API style snapshot; None when unavailable
    selected_text: str = ""


@dataclass
class TabContext:
    """Formatted context of the active tab. Replaced wholesale on every update."""

    tab_id: int | None = None
    url: str = ""
    title: str = ""
    favicon: str = ""
    content: str = ""
    last_updated: int | None = None  # epoch ms
    raw: Any = field(default=None, repr=False)  # ExtractedPage, when extraction ran

    @property
    def has_content(self) -> bool:
        return len(self.content) > 100

    def summary(self) -> dict[str, Any]:
        """Tab-change notification record (no content blob)."""
        return {
            "tabId": self.tab_id,
            "url": self.url,
            "title": self.title,
            "favicon": self.favicon,
            "hasContent": self.has_content,
            "lastUpdated": self.last_updated,
        }


@dataclass
class SavedChat:
    """A persisted conversation thread."""

    id: str
    title: str
    messages: list[Turn]
    created_at: int  # epoch ms
    updated_at: int  # epoch ms

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "messages": [t.to_message() for t in self.messages],
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SavedChat:
        return cls(
            id=str(data["id"]),
            title=str(data.get("title", "")),
            messages=[Turn.from_message(m) for m in data.get("messages", [])],
            created_at=int(data.get("createdAt", 0)),
            updated_at=int(data.get("updatedAt", 0)),
        )
